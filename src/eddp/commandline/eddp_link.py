#!/usr/bin/env python3

from eddp.commandline.tools import EDDPToolABC

from ..feature import CellFeature
from ..link import Builder, load_builder_config

__author__ = "The eddp developers"
__date__ = "2023-03-02"


class Link(EDDPToolABC):
    """
    Iteratively build an ensemble model from a configuration file.

    """

    def _set_arguments(self):
        self.parser.add_argument(
            "config",
            help="Path to the JSON configuration with the sections "
                 "'state', 'trainer' and 'features'.")

        self.parser.add_argument(
            "--max-iterations",
            help="Override the index of the last generation.",
            type=int,
            default=None)

        self.parser.add_argument(
            "--step",
            help="Only carry out a single generation.",
            action="store_true")

    def _man(self):
        return """
        Each generation N writes candidate structures to gen{N}/, runs the
        external evaluator (results in gen{N}-dft/) and trains an
        ensemble on all evaluated structures of generations 0..N, which is
        saved as ensemble-gen{N}.h5.  An interrupted build continues with
        the first generation without ensemble.

        Example configuration:

          {"state": {"seedfile": "SiO2.cell", "workdir": "build",
                     "n_initial": 500, "dft_mode": "pp3"},
           "trainer": {"nmodels": 32},
           "features": {"elements": ["O", "Si"]}}

        """

    def run(self, args):
        state, trainer, features = load_builder_config(args.config)
        if args.max_iterations is not None:
            state.max_iterations = args.max_iterations
        builder = Builder(state, CellFeature.from_options(features), trainer)
        print(builder)
        if args.step:
            builder.step()
        else:
            builder.link()


if __name__ == "__main__":
    tool = Link()
    args = tool.parser.parse_args()
    tool.run(args)
