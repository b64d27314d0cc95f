import unittest

import numpy as np

from ..exceptions import ArgumentError
from ..geometry import Cell
from ..nblist.neighborlist import NeighborList


class CellTest(unittest.TestCase):

    def setUp(self):
        self.cell = Cell(np.identity(3)*4.0,
                         [[0.0, 0.0, 0.0], [0.5, 0.5, 0.5], [0.5, 0.0, 0.0]],
                         ["O", "Si", "O"], fractional=True,
                         metadata={"label": "test"})

    def test_properties(self):
        self.assertEqual(self.cell.natoms, 3)
        self.assertAlmostEqual(self.cell.volume, 64.0)
        self.assertEqual(self.cell.species, ["O", "Si"])
        self.assertEqual(self.cell.composition, {"O": 2, "Si": 1})
        self.assertEqual(self.cell.formula, "O2Si")
        self.assertTrue(np.allclose(self.cell.coords[1], [2.0, 2.0, 2.0]))

    def test_invalid(self):
        with self.assertRaises(ArgumentError):
            Cell(np.identity(3), [[0, 0, 0]], ["A", "B"])
        with self.assertRaises(ArgumentError):
            Cell(np.identity(2), [[0, 0, 0]], ["A"])
        with self.assertRaises(ArgumentError):
            self.cell.set_positions(np.zeros((2, 3)))

    def test_copy_is_independent(self):
        other = self.cell.copy()
        other.coords[0, 0] = 1.0
        other.metadata["label"] = "changed"
        self.assertEqual(self.cell.coords[0, 0], 0.0)
        self.assertEqual(self.cell.metadata["label"], "test")

    def test_set_lattice(self):
        cell = self.cell.copy()
        cell.set_lattice(np.identity(3)*5.0)
        self.assertTrue(np.allclose(cell.coords[1], [2.5, 2.5, 2.5]))
        cell = self.cell.copy()
        cell.set_lattice(np.identity(3)*5.0, scale_positions=False)
        self.assertTrue(np.allclose(cell.coords[1], [2.0, 2.0, 2.0]))

    def test_apply_strain(self):
        cell = self.cell.copy()
        cell.apply_strain(np.diag([0.1, 0.0, 0.0]))
        self.assertAlmostEqual(cell.volume, 64.0*1.1)
        self.assertTrue(np.allclose(cell.fractional, self.cell.fractional))

    def test_wrap(self):
        cell = self.cell.copy()
        cell.set_positions(cell.coords + np.array([8.0, -4.0, 0.5]))
        cell.wrap()
        frac = cell.fractional
        self.assertTrue(np.all(frac >= 0.0) and np.all(frac < 1.0))

    def test_rattle(self):
        rng = np.random.default_rng(0)
        cell = self.cell.copy().rattle(0.1, 0.0, rng)
        disp = cell.coords - self.cell.coords
        self.assertTrue(np.all(np.abs(disp) <= 0.1))
        self.assertTrue(np.any(disp != 0.0))
        self.assertTrue(np.allclose(cell.avec, self.cell.avec))
        cell = self.cell.copy().rattle(0.0, 0.05, rng)
        self.assertFalse(np.allclose(cell.avec, self.cell.avec))
        # the strain is symmetric
        F = np.linalg.solve(self.cell.avec, cell.avec).T
        self.assertTrue(np.allclose(F, F.T))

    def test_distance(self):
        self.assertAlmostEqual(self.cell.distance(0, 2), 2.0)
        self.assertAlmostEqual(self.cell.distance(0, 1), np.sqrt(12.0))

    def test_reduced(self):
        avec = np.array([[4.0, 0.0, 0.0],
                         [9.0, 3.0, 0.0],
                         [-4.0, 1.0, 5.0]])
        cell = Cell(avec, [[0.1, 0.2, 0.3], [0.6, 0.5, 0.4]], ["A", "B"],
                    fractional=True, metadata={"label": "x"})
        red = cell.reduced()
        self.assertAlmostEqual(red.volume, cell.volume)
        self.assertTrue(np.linalg.det(red.avec) > 0.0)
        self.assertLess(np.sum(np.linalg.norm(red.avec, axis=1)),
                        np.sum(np.linalg.norm(cell.avec, axis=1)))
        self.assertEqual(red.metadata["label"], "x")
        frac = red.fractional
        self.assertTrue(np.all(frac >= -1e-12) and np.all(frac < 1.0))
        # same structure: identical sorted neighbor distances
        d1 = NeighborList.from_cell(cell, 6.0).get_neighbors_and_distances(0)
        d2 = NeighborList.from_cell(red, 6.0).get_neighbors_and_distances(0)
        self.assertTrue(np.allclose(np.sort(d1[2]), np.sort(d2[2])))


if __name__ == "__main__":
    unittest.main()
