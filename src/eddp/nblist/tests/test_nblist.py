import unittest
import numpy as np

from ..neighborlist import NeighborList, check_global_minsep


class NblistTest(unittest.TestCase):

    def test_fcc_nearest_nb(self):
        avec = np.array([[0.0, 0.5, 0.5],
                         [0.5, 0.0, 0.5],
                         [0.5, 0.5, 0.0]])*1.0
        coo = np.array([[0.0, 0.0, 0.0]])
        nbl = NeighborList(coo, avec, 0.75)
        # number of nearest neighbors is 12 for FCC
        nn = list(nbl.neighbors(0))
        self.assertEqual(len(nn), 12)
        for j, j_ext, r in nn:
            self.assertEqual(j, 0)
            self.assertNotEqual(j_ext, 0)
            self.assertAlmostEqual(r, np.sqrt(0.5))

    def test_fcc_cutoff(self):
        a = 1.5
        # primitive unit cell and fractional coordinates
        avec = np.array([[0.0, 0.5, 0.5],
                         [0.5, 0.0, 0.5],
                         [0.5, 0.5, 0.0]])*a
        coo = np.array([[0.0, 0.0, 0.0]])
        nbl = NeighborList(coo, avec, 2.0*a, cartesian=False)
        (nn1, _, dist1) = nbl.get_neighbors_and_distances(0)

        # conventional unit cell and Cartesian coordinates
        avec = np.array([[1.0, 0.0, 0.0],
                         [0.0, 1.0, 0.0],
                         [0.0, 0.0, 1.0]])*a
        coo = np.array([[0.0, 0.0, 0.0],
                        [0.0, 0.75, 0.75],
                        [0.75, 0.0, 0.75],
                        [0.75, 0.75, 0.0]])
        nbl = NeighborList(coo, avec, 2.0*a, cartesian=True)
        (nn2, _, dist2) = nbl.get_neighbors_and_distances(0)

        self.assertEqual(len(nn1), len(nn2))

        dist1 = np.sort(dist1)
        dist2 = np.sort(dist2)
        diff = np.abs(dist1 - dist2)

        self.assertTrue(np.all(diff < 1.0e-6))

    def test_extended_index(self):
        avec = np.identity(3)*3.0
        coo = np.array([[0.1, 0.2, 0.3], [1.6, 1.4, 1.5]])
        nbl = NeighborList(coo, avec, 3.5)
        ext = nbl.ext_positions
        for i in range(2):
            for j, j_ext, r in nbl.neighbors(i):
                self.assertEqual(j_ext % 2, j)
                self.assertAlmostEqual(
                    np.linalg.norm(ext[j_ext] - ext[i]), r)
                jj, T = nbl.ext_to_atom(j_ext)
                self.assertEqual(jj, j)
                self.assertTrue(np.allclose(
                    ext[j_ext], ext[j] + np.dot(T, avec)))

    def test_wrapping(self):
        avec = np.identity(3)*4.0
        coo = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0]])
        nbl1 = NeighborList(coo, avec, 3.0)
        nbl2 = NeighborList(coo + np.array([8.0, -4.0, 12.0]), avec, 3.0)
        d1 = np.sort(nbl1.get_neighbors_and_distances(0)[2])
        d2 = np.sort(nbl2.get_neighbors_and_distances(0)[2])
        self.assertTrue(np.allclose(d1, d2))

    def test_update(self):
        avec = np.identity(3)*5.0
        coo = np.array([[0.0, 0.0, 0.0], [1.2, 0.3, 0.0]])
        nbl = NeighborList(coo, avec, 4.0)
        new = coo.copy()
        new[1, 0] += 0.1
        nbl.update(new)
        ref = NeighborList(new, avec, 4.0)
        for i in range(2):
            d1 = np.sort(nbl.get_neighbors_and_distances(i)[2])
            d2 = np.sort(ref.get_neighbors_and_distances(i)[2])
            self.assertEqual(len(d1), len(d2))
            self.assertTrue(np.allclose(d1, d2))

    def test_min_distance(self):
        avec = np.identity(3)*6.0
        coo = np.array([[0.0, 0.0, 0.0], [0.9, 0.0, 0.0]])
        nbl = NeighborList(coo, avec, 3.0)
        self.assertAlmostEqual(nbl.min_distance(), 0.9)
        self.assertTrue(check_global_minsep(nbl, 0.8))
        self.assertFalse(check_global_minsep(nbl, 1.0))
        nbl = NeighborList(coo[:1], avec, 3.0)
        self.assertEqual(nbl.min_distance(), np.inf)


if __name__ == "__main__":
    unittest.main()
