#!/usr/bin/env python3

import json

from eddp.commandline.tools import EDDPToolABC
import eddp.config as cfg

__author__ = "The eddp developers"
__date__ = "2023-03-02"


class Config(EDDPToolABC):
    """
    Read and write the paths of external programs in the configuration.

    """

    def _set_arguments(self):
        self.parser.add_argument(
            "--set-program",
            help="Set the command of an external program.",
            default=None,
            action='append',
            metavar=('<program>', '<command>'),
            nargs=2)

        self.parser.add_argument(
            "--file",
            help="Path to the configuration file.  If no path is specified "
                 "the default configuration file will be used.",
            default=None)

    def _man(self):
        return """
        Configure the command used for `buildcell`:

          $ eddp config --set-program buildcell /opt/airss/bin/buildcell

        Without arguments the current configuration is printed.

        """

    def run(self, args):
        if args.set_program is not None:
            programs = cfg.read('external', config_file=args.file)
            for name, command in args.set_program:
                if name not in cfg.DEFAULT['external']:
                    print("Warning: unknown program '{}'".format(name))
                programs[name] = command
            cfg.write_config({'external': programs}, config_file=args.file)
        config_file = args.file or cfg.config_file_path()
        if config_file is None:
            print("No configuration file found. Using defaults.")
        else:
            print("Configuration file: {}".format(config_file))
        print(json.dumps(cfg.read_config(config_file=args.file), indent=2))


if __name__ == "__main__":
    tool = Config()
    args = tool.parser.parse_args()
    tool.run(args)
