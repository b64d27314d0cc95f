"""
Containers for reference structures and their feature vectors.

"""

import glob
import json
import os

import numpy as np
import pandas as pd
import tables as tb
from tqdm import tqdm

from .exceptions import ArgumentError, FormatError
from .feature import CellFeature, feature_vector
from .io.structure import read
from .log import logger

__author__ = "The eddp developers"
__date__ = "2023-03-02"


def _expand(patterns):
    if isinstance(patterns, (str, os.PathLike)):
        patterns = [patterns]
    files = []
    for pattern in patterns:
        files.extend(sorted(glob.glob(str(pattern))))
    return files


class StructureContainer(object):
    """
    Structures with reference enthalpies read from SHELX files.

    Arguments:
      patterns    glob pattern or list of patterns
      threshold   only keep structures whose enthalpy per atom is
                  within `threshold` eV of the lowest one

    Files that cannot be parsed are skipped with a warning.

    """

    def __init__(self, patterns, threshold=10.0):
        cells = []
        for fname in _expand(patterns):
            try:
                cell = read(fname, frmt='res')
            except (FormatError, ValueError) as err:
                logger.warning("Skipping unreadable structure %s: %s",
                               fname, err)
                continue
            if 'enthalpy' not in cell.metadata:
                logger.warning("Skipping %s: no enthalpy", fname)
                continue
            cells.append(cell)
        if len(cells) > 0:
            hpa = np.array([c.metadata['enthalpy']/c.natoms for c in cells])
            keep = hpa <= hpa.min() + threshold
            cells = [c for c, k in zip(cells, keep) if k]
        self.structures = cells
        self.threshold = threshold

    def __len__(self):
        return len(self.structures)

    def __getitem__(self, i):
        return self.structures[i]

    def __repr__(self):
        return "StructureContainer({} structures)".format(len(self))

    @property
    def H(self):
        return np.array([c.metadata['enthalpy'] for c in self.structures])

    @property
    def labels(self):
        return [c.metadata.get('label', '') for c in self.structures]

    @property
    def natoms(self):
        return np.array([c.natoms for c in self.structures])


class FeatureContainer(object):
    """
    Feature vectors, reference enthalpies and labels of a set of
    structures.

    Attributes:
      fvecs    list of feature matrices, each (nfeatures, natoms)
      H        total enthalpies
      labels   structure labels
      cf       the CellFeature used to compute the features
    """

    def __init__(self, fvecs, H, labels, cf):
        if not (len(fvecs) == len(H) == len(labels)):
            raise ArgumentError("Inconsistent number of structures.")
        self.fvecs = list(fvecs)
        self.H = np.asarray(H, dtype=float)
        self.labels = list(labels)
        self.cf = cf

    @classmethod
    def from_structures(cls, sc, cf, nmax=None, show_progress=False):
        """
        Compute the features of (at most nmax) structures of a
        StructureContainer.

        """
        structures = list(sc.structures)
        if nmax is not None and len(structures) > nmax:
            structures = structures[:nmax]
        fvecs = [feature_vector(cf, cell) for cell in
                 tqdm(structures, desc="Features",
                      disable=not show_progress)]
        return cls(fvecs, [c.metadata['enthalpy'] for c in structures],
                   [c.metadata.get('label', '') for c in structures], cf)

    def __len__(self):
        return len(self.fvecs)

    def __repr__(self):
        return "FeatureContainer({} structures, {} features)".format(
            len(self), self.nfeatures)

    @property
    def nfeatures(self):
        return self.cf.nfeatures

    @property
    def natoms(self):
        return np.array([v.shape[1] for v in self.fvecs])

    @property
    def xt(self):
        """
        (mean, std) of each feature over all atoms.
        """
        x = np.concatenate(self.fvecs, axis=1)
        return x.mean(axis=1), x.std(axis=1)

    @property
    def yt(self):
        """
        (mean, std) of the enthalpy per atom.
        """
        hpa = self.H/self.natoms
        return float(hpa.mean()), float(hpa.std())

    def subset(self, indices):
        return FeatureContainer([self.fvecs[i] for i in indices],
                                self.H[list(indices)],
                                [self.labels[i] for i in indices], self.cf)

    def split(self, *fractions, seed=None):
        """
        Randomly split into len(fractions) containers.  The last
        container receives the remainder.

        """
        if abs(sum(fractions) - 1.0) > 1e-8:
            raise ArgumentError("Split fractions must sum to one.")
        rng = np.random.default_rng(seed)
        perm = rng.permutation(len(self))
        out = []
        start = 0
        for frac in fractions[:-1]:
            n = int(round(frac*len(self)))
            out.append(self.subset(perm[start:start + n]))
            start += n
        out.append(self.subset(perm[start:]))
        return tuple(out)

    def to_hdf5(self, filename, complevel=1):
        """
        Save the features to an HDF5 file.

        """
        with tb.open_file(filename, mode='w',
                          title='EDDP feature container') as h5file:
            h5file.root._v_attrs.cellfeature = json.dumps(self.cf.to_dict())
            info = h5file.create_table(
                h5file.root, "info", {
                    "label": tb.StringCol(itemsize=256),
                    "natoms": tb.UInt32Col(),
                    "enthalpy": tb.Float64Col()},
                "Structure information",
                tb.Filters(complevel, shuffle=False))
            features = h5file.create_vlarray(
                h5file.root, "features", tb.Float64Atom(),
                "Feature matrices (flattened, atoms fastest)",
                tb.Filters(complevel, shuffle=False))
            for v, h, label in zip(self.fvecs, self.H, self.labels):
                info.row['label'] = label
                info.row['natoms'] = v.shape[1]
                info.row['enthalpy'] = h
                info.row.append()
                features.append(v.ravel())

    @classmethod
    def from_hdf5(cls, filename):
        with tb.open_file(filename, mode='r') as h5file:
            cf = CellFeature.from_dict(
                json.loads(h5file.root._v_attrs.cellfeature))
            info = h5file.root.info.read()
            fvecs = [np.asarray(v).reshape((cf.nfeatures, int(n)))
                     for v, n in zip(h5file.root.features, info['natoms'])]
        labels = [x.decode() for x in info['label']]
        return cls(fvecs, info['enthalpy'], labels, cf)


class TrainingResults(object):
    """
    Predictions of a model (or ensemble) for a FeatureContainer.

    """

    def __init__(self, model, fc):
        H_pred = np.array([model.energy(v) for v in fc.fvecs])
        natoms = fc.natoms
        self.table = pd.DataFrame({
            "label": fc.labels,
            "natoms": natoms,
            "H_target": fc.H,
            "H_pred": H_pred,
            "error_per_atom": (H_pred - fc.H)/natoms,
        })

    def __len__(self):
        return len(self.table)

    @property
    def rmse(self):
        return float(np.sqrt(np.mean(self.table["error_per_atom"]**2)))

    @property
    def mae(self):
        return float(np.mean(np.abs(self.table["error_per_atom"])))

    @property
    def max_ae(self):
        return float(np.max(np.abs(self.table["error_per_atom"])))

    def __str__(self):
        return ("TrainingResults: {} structures, RMSE {:.5f} eV/atom, "
                "MAE {:.5f} eV/atom, MaxAE {:.5f} eV/atom".format(
                    len(self), self.rmse, self.mae, self.max_ae))
