#!/usr/bin/env python3

from eddp.commandline.tools import EDDPToolABC

import glob

from ..dataset import FeatureContainer, StructureContainer
from ..feature import CellFeature, FeatureOptions

__author__ = "The eddp developers"
__date__ = "2023-03-02"


class Features(EDDPToolABC):
    """
    Compute feature vectors of SHELX structures.

    """

    def _set_arguments(self):
        self.parser.add_argument(
            "files",
            help="SHELX (.res) files or glob patterns.",
            nargs="+")

        self.parser.add_argument(
            "--elements", "-e",
            help="Chemical symbols of all species.",
            nargs="+",
            required=True)

        self.parser.add_argument(
            "--p2",
            help="Exponents of the two-body descriptors.",
            type=float,
            nargs="+",
            default=[2, 4, 6, 8])

        self.parser.add_argument(
            "--p3",
            help="Exponents of the three-body descriptors.",
            type=float,
            nargs="+",
            default=[2, 4, 6, 8])

        self.parser.add_argument(
            "--rcut2",
            help="Two-body cutoff radius (default: 4.0).",
            type=float,
            default=4.0)

        self.parser.add_argument(
            "--rcut3",
            help="Three-body cutoff radius (default: 4.0).",
            type=float,
            default=4.0)

        self.parser.add_argument(
            "--output", "-o",
            help="Save the features to this HDF5 file.",
            default=None)

    def run(self, args):
        opts = FeatureOptions(args.elements, p2=args.p2, p3=args.p3,
                              q3=args.p3, rcut2=args.rcut2,
                              rcut3=args.rcut3)
        cf = CellFeature.from_options(opts)
        n1, n2, n3 = cf.feature_size
        print("Features: {} one-body, {} two-body, {} three-body".format(
            n1, n2, n3))
        files = []
        for pattern in args.files:
            files.extend(sorted(glob.glob(pattern)) or [pattern])
        sc = StructureContainer(files, threshold=float("inf"))
        fc = FeatureContainer.from_structures(sc, cf, show_progress=True)
        print("Computed features of {} structures.".format(len(fc)))
        if args.output is not None:
            fc.to_hdf5(args.output)
            print("Saved to {}.".format(args.output))


if __name__ == "__main__":
    tool = Features()
    args = tool.parser.parse_args()
    tool.run(args)
