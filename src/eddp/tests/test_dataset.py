import os
import tempfile
import unittest

import numpy as np
import pytest

from ..dataset import FeatureContainer, StructureContainer, TrainingResults
from ..exceptions import ArgumentError
from ..feature import CellFeature
from ..formats.res import ResParser
from ..geometry import Cell


def write_res(path, label, enthalpy, types=("A", "A"), a=4.0):
    cell = Cell(np.identity(3)*a, [[0, 0, 0], [0.5, 0.5, 0.5]][:len(types)],
                list(types), fractional=True,
                metadata={'label': label, 'enthalpy': enthalpy})
    ResParser().write(cell, outfile=str(path))
    return cell


class SumModel(object):
    """Energy is the sum of all features."""

    def energy(self, v):
        return float(np.sum(v))


@pytest.fixture
def resdir(tmp_path):
    write_res(tmp_path / "s1.res", "s1", -2.0)
    write_res(tmp_path / "s2.res", "s2", -1.0)
    write_res(tmp_path / "s3.res", "s3", 20.0)
    with open(tmp_path / "broken.res", "w") as fp:
        fp.write("TITL broken\nnot a structure\nEND\n")
    return tmp_path


def test_structure_container_threshold(resdir):
    sc = StructureContainer(os.path.join(str(resdir), "*.res"),
                            threshold=2.0)
    # broken.res is skipped, s3 is 11 eV/atom above s1
    assert len(sc) == 2
    assert sc.labels == ["s1", "s2"]
    assert np.allclose(sc.H, [-2.0, -1.0])
    assert np.all(sc.natoms == 2)


def test_structure_container_patterns(resdir):
    sc = StructureContainer([str(resdir / "s1.res"), str(resdir / "s3.res"),
                             str(resdir / "missing*.res")],
                            threshold=np.inf)
    assert sc.labels == ["s1", "s3"]


def test_structure_container_empty(tmp_path):
    sc = StructureContainer(str(tmp_path / "*.res"))
    assert len(sc) == 0


class FeatureContainerTest(unittest.TestCase):

    def setUp(self):
        self.cf = CellFeature.from_elements(["A"], p2=[2, 4], p3=[2],
                                            q3=[2], rcut2=4.0, rcut3=3.0)
        rng = np.random.default_rng(1)
        self.fvecs = [rng.normal(size=(self.cf.nfeatures, n))
                      for n in [1, 2, 3, 2, 4, 1, 2, 3, 2, 2]]
        self.H = [float(v.shape[1]) for v in self.fvecs]
        self.labels = ["x{}".format(i) for i in range(10)]
        self.fc = FeatureContainer(self.fvecs, self.H, self.labels, self.cf)

    def test_inconsistent(self):
        with self.assertRaises(ArgumentError):
            FeatureContainer(self.fvecs, self.H[:-1], self.labels, self.cf)

    def test_normalisation(self):
        xmean, xstd = self.fc.xt
        x = np.concatenate(self.fvecs, axis=1)
        self.assertTrue(np.allclose(xmean, x.mean(axis=1)))
        self.assertTrue(np.allclose(xstd, x.std(axis=1)))
        ymean, ystd = self.fc.yt
        self.assertAlmostEqual(ymean, 1.0)
        self.assertAlmostEqual(ystd, 0.0)

    def test_split(self):
        a, b, c = self.fc.split(0.6, 0.2, 0.2, seed=3)
        self.assertEqual((len(a), len(b), len(c)), (6, 2, 2))
        self.assertEqual(sorted(a.labels + b.labels + c.labels),
                         sorted(self.labels))
        a2, _, _ = self.fc.split(0.6, 0.2, 0.2, seed=3)
        self.assertEqual(a.labels, a2.labels)
        with self.assertRaises(ArgumentError):
            self.fc.split(0.5, 0.2)

    def test_hdf5(self):
        with tempfile.TemporaryDirectory() as d:
            fname = os.path.join(d, "features.h5")
            self.fc.to_hdf5(fname)
            fc2 = FeatureContainer.from_hdf5(fname)
        self.assertEqual(fc2.labels, self.labels)
        self.assertEqual(fc2.cf, self.cf)
        self.assertTrue(np.allclose(fc2.H, self.H))
        for v1, v2 in zip(self.fvecs, fc2.fvecs):
            self.assertTrue(np.allclose(v1, v2))


def test_from_structures(resdir):
    cf = CellFeature.from_elements(["A"], p2=[2], p3=[2], q3=[2],
                                   rcut2=3.5, rcut3=3.0)
    sc = StructureContainer(str(resdir / "s*.res"), threshold=np.inf)
    fc = FeatureContainer.from_structures(sc, cf)
    assert len(fc) == 3
    assert fc.fvecs[0].shape == (cf.nfeatures, 2)
    assert fc.labels == ["s1", "s2", "s3"]
    fc = FeatureContainer.from_structures(sc, cf, nmax=2)
    assert fc.labels == ["s1", "s2"]


def test_training_results():
    cf = CellFeature.from_elements(["A"], p2=[2], p3=[2], q3=[2])
    fvecs = [np.ones((cf.nfeatures, 2)), np.ones((cf.nfeatures, 1))]
    # predictions: 6 and 3
    fc = FeatureContainer(fvecs, [5.0, 3.0], ["a", "b"], cf)
    res = TrainingResults(SumModel(), fc)
    assert len(res) == 2
    assert np.allclose(res.table["error_per_atom"], [0.5, 0.0])
    assert res.mae == pytest.approx(0.25)
    assert res.max_ae == pytest.approx(0.5)
    assert res.rmse == pytest.approx(np.sqrt(0.125))
    assert "2 structures" in str(res)
