#!/usr/bin/env python

"""
Neighbor list with explicit periodic images for periodic structures.

Each neighbor is reported as `(j, j_ext, r)`, where j is the index of
the atom in the unit cell, j_ext the index of the periodic image in the
list of extended atoms, and r the distance.  The extended index is
`t*N + j`, where N is the number of atoms and t enumerates the lattice
translations, with t = 0 being the home cell.

"""

import numpy as np

from .. import util

__author__ = "The eddp developers"
__date__ = "2023-03-02"

EPS = 100.0*np.finfo(float).eps


class NeighborList(object):

    def __init__(self, coordinates, lattice_vectors, interaction_range,
                 cartesian=True):
        """
        coordinates       Nx3 2-dimensional array whose N rows are
                          the atomic coordinates (Cartesian unless
                          'cartesian' is False)
        lattice_vectors   3x3 2-dimensional array whose rows are
                          the lattice vectors
        interaction_range neighbors up to this distance will be found
        cartesian         input coordinates are cartesian
        """

        self._avec = np.array(lattice_vectors, dtype=float)
        self._range = float(interaction_range)
        coordinates = np.array(coordinates, dtype=float).reshape((-1, 3))
        if cartesian:
            frac = self.cart2frac(coordinates)
        else:
            frac = coordinates
        self._ncoo = len(frac)
        self._T_latt = np.array([[0, 0, 0]] + self.star_setup(
            self._avec, self._range))
        self._build_neighbor_list(frac)

    @classmethod
    def from_cell(cls, cell, rcut, **kwargs):
        """
        Factory method: initialize neighbor list for an instance of
        eddp.geometry.Cell.

        """
        return cls(cell.coords, cell.avec, rcut, **kwargs)

    def __str__(self):
        ostr = "\n Instance of the NeighborList class\n\n"
        ostr += " interaction range          : {}\n".format(self._range)
        ostr += " number of translations     : {}\n".format(
            len(self._T_latt))
        ostr += " total number of atoms      : {}\n".format(self.num_coords)
        ostr += " av. number of neighbors    : {}\n".format(
            float(np.mean(self.nneigh)) if self._ncoo > 0 else 0.0)
        return ostr

    def __repr__(self):
        return self.__str__()

    @property
    def interaction_range(self):
        return self._range

    @property
    def lattice_vectors(self):
        return self._avec

    @property
    def num_coords(self):
        return self._ncoo

    @property
    def nneigh(self):
        """
        Number of neighbors of each atom.
        """
        return np.array([len(n) for n in self._neigh])

    @property
    def ext_positions(self):
        """
        Cartesian positions of all extended (periodic image) atoms.
        """
        return self._ext_pos

    def ext_to_atom(self, j_ext):
        """
        Return (j, T) for the extended index j_ext.
        """
        return j_ext % self._ncoo, self._T_latt[j_ext // self._ncoo]

    def neighbors(self, i):
        """
        Iterate over the neighbors of atom i.

        Yields:
          (j, j_ext, r) tuples
        """
        for j, j_ext, r in zip(self._neigh[i], self._neigh_ext[i],
                               self._dist[i]):
            yield int(j), int(j_ext), float(r)

    def get_neighbors_and_distances(self, i):
        """
        Arrays with the neighbor indices, extended indices and distances
        of atom i.

        """
        return self._neigh[i], self._neigh_ext[i], self._dist[i]

    def min_distance(self):
        """
        Shortest distance between any two atoms (inf if there are none
        within range).

        """
        dmin = np.inf
        for d in self._dist:
            if len(d) > 0:
                dmin = min(dmin, float(np.min(d)))
        return dmin

    def update(self, coordinates, lattice_vectors=None):
        """
        Recompute positions and distances for new coordinates without
        changing the set of neighbors.  Only valid for small displacements
        compared to the skin of the neighbor list (the difference between
        interaction range and the largest cutoff used).

        """
        if lattice_vectors is not None:
            self._avec = np.array(lattice_vectors, dtype=float)
        frac = self.cart2frac(np.array(coordinates, dtype=float))
        # keep the home-cell assignment of the original build
        frac = frac - self._shift
        self._set_ext_positions(frac)
        for i in range(self._ncoo):
            v = self._ext_pos[self._neigh_ext[i]] - self._ext_pos[i]
            self._dist[i] = np.linalg.norm(v, axis=1)

    def cart2frac(self, cart_coords, avec=None):
        """
        Convert Cartesian coordinates to fractional lattice coordinates.

        Arguments:
          cart_coords[i,j]  j-th component of the Cartesian coordinates of
                            the i-th particle
          avec[i,j]         j-th component of the i-th lattice vector;
                            if no lattice vectors are given, self._avec
                            will be used

        Returns:
          frac_coords  ndarray with the fractional coordinates
        """

        if avec is None:
            avec = self._avec

        bvec = np.linalg.inv(avec)
        frac_coords = np.dot(np.array(cart_coords), bvec)

        return frac_coords

    def frac2cart(self, frac_coords, avec=None):
        """
        Convert fractional lattice coordinates to Cartesian coordinates.
        """

        if avec is None:
            avec = self._avec

        return np.dot(np.array(frac_coords), avec)

    def star_setup(self, lattice_vectors, interaction_range):
        """
        Determine all translation vectors needed to find every periodic
        image within the interaction range of an atom in the home cell.

        Arguments:
          lattice_vectors    2-d ndarray with the lattice vectors as rows
          interaction_range  the range of the interaction

        Returns:
          A list containing the translation vectors (without (0, 0, 0)).

        The number of cells in each direction follows from the spacing of
        the lattice planes, 1/|b_i|, where b_i are the reciprocal vectors.
        Atoms are wrapped into [0, 1[, hence one extra cell is needed.

        """

        star = []
        bvec = np.linalg.inv(lattice_vectors)
        blen = np.linalg.norm(bvec, axis=0)
        n = np.array(np.ceil(interaction_range*blen + EPS), dtype=int) + 1

        for ix in range(-n[0], n[0]+1):
            for iy in range(-n[1], n[1]+1):
                for iz in range(-n[2], n[2]+1):
                    T = (ix, iy, iz)
                    if T == (0, 0, 0):
                        continue
                    star.append(T)

        return star

    def _set_ext_positions(self, frac):
        home = self.frac2cart(frac)
        shifts = self.frac2cart(self._T_latt)
        self._ext_pos = (shifts[:, np.newaxis, :]
                         + home[np.newaxis, :, :]).reshape((-1, 3))

    def _build_neighbor_list(self, frac):
        """
        Wrap coordinates into the home cell and collect all periodic
        images within range of each atom.
        """

        wrapped = util.wrap_frac(frac)
        self._shift = frac - wrapped
        self._set_ext_positions(wrapped)

        self._neigh = []
        self._neigh_ext = []
        self._dist = []
        for i in range(self._ncoo):
            d = np.linalg.norm(self._ext_pos - self._ext_pos[i], axis=1)
            idx = np.where((d <= self._range) & (d > EPS))[0]
            self._neigh_ext.append(idx)
            self._neigh.append(idx % self._ncoo)
            self._dist.append(d[idx])


def check_global_minsep(nl, threshold):
    """
    Check that no two atoms are closer than `threshold`.

    Returns:
      True if all distances are at least `threshold`
    """
    return nl.min_distance() >= threshold
