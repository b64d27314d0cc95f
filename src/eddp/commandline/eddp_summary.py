#!/usr/bin/env python3

from eddp.commandline.tools import EDDPToolABC

from ..feature import CellFeature
from ..link import Builder, load_builder_config

__author__ = "The eddp developers"
__date__ = "2023-03-02"


class Summary(EDDPToolABC):
    """
    Summarise the status of an iterative build.

    """

    def _set_arguments(self):
        self.parser.add_argument(
            "config",
            help="Path to the JSON configuration of the build.")

        self.parser.add_argument(
            "--walk-forward",
            help="Test the ensemble of each generation on the structures "
                 "of the next one.",
            action="store_true")

    def run(self, args):
        state, trainer, features = load_builder_config(args.config)
        builder = Builder(state, CellFeature.from_options(features), trainer)
        print(builder)
        table = builder.summarise()
        print(table.to_string())
        print("Total training structures: {}".format(
            int(table["evaluated"].sum())))
        if args.walk_forward:
            for gen, results in builder.walk_forward_tests().items():
                print("Ensemble of iteration 0-{} applied to iteration "
                      "{}:".format(gen, gen + 1))
                print(results)


if __name__ == "__main__":
    tool = Summary()
    args = tool.parser.parse_args()
    tool.run(args)
