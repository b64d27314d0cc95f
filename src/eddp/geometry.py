#!/usr/bin/env python

"""
A type to represent a periodic atomic structure together with the
metadata carried by SHELX (res) files.

"""

import copy

import numpy as np

from .exceptions import ArgumentError
from . import util

__author__ = "The eddp developers"
__date__ = "2023-03-02"


class Cell(object):
    """
    A container class for a single periodic atomic structure.

    Class Attributes:

      avec[i]     i-th lattice vector (3x3 ndarray, vectors as rows)
      coords[i]   Cartesian coordinates of atom i (Nx3 ndarray)
      types[i]    chemical symbol of atom i
      metadata    dictionary with additional information, for structures
                  read from SHELX files: label, pressure, volume,
                  enthalpy, spin, abs_spin, symm and flags
    """

    def __init__(self, avec, coords, types, fractional=False,
                 metadata=None):
        """
        Arguments:
          avec[i][j]     j-th component of the i-th lattice vector
          coords[i][j]   j-th component of the coordinates of atom i;
                         Cartesian unless 'fractional' is True
          types[i]       chemical symbol of atom i
          fractional     if True, coords are fractional coordinates
          metadata       (optional) dictionary with structure metadata
        """

        self.avec = np.array(avec, dtype=float)
        if self.avec.shape != (3, 3):
            raise ArgumentError("Lattice vectors must be a 3x3 matrix.")
        coords = np.array(coords, dtype=float).reshape((-1, 3))
        if len(coords) != len(types):
            raise ArgumentError(
                "Number of coordinates ({}) and species ({}) "
                "differ.".format(len(coords), len(types)))
        if fractional:
            coords = np.dot(coords, self.avec)
        self.coords = coords
        self.types = [str(t) for t in types]
        self.metadata = dict(metadata) if metadata is not None else {}

    def __str__(self):
        out = "Cell: {} atoms, volume {:.4f}\n".format(
            self.natoms, self.volume)
        for v in self.avec:
            out += "  {:12.6f} {:12.6f} {:12.6f}\n".format(*v)
        for t, c in zip(self.types, self.coords):
            out += "  {:3s} {:12.6f} {:12.6f} {:12.6f}\n".format(t, *c)
        return out

    def __repr__(self):
        return "Cell({}, natoms={})".format(self.formula, self.natoms)

    def copy(self):
        return Cell(self.avec.copy(), self.coords.copy(), list(self.types),
                    metadata=copy.deepcopy(self.metadata))

    @property
    def natoms(self):
        return len(self.types)

    @property
    def volume(self):
        return abs(np.linalg.det(self.avec))

    @property
    def species(self):
        """
        Sorted list of the unique chemical symbols.
        """
        return sorted(set(self.types))

    @property
    def composition(self):
        """
        Dictionary with the number of atoms of each species.
        """
        comp = {}
        for t in self.types:
            comp[t] = comp.get(t, 0) + 1
        return comp

    @property
    def formula(self):
        comp = self.composition
        return "".join(
            "{}{}".format(s, comp[s] if comp[s] > 1 else "")
            for s in sorted(comp))

    @property
    def fractional(self):
        return np.dot(self.coords, np.linalg.inv(self.avec))

    def set_positions(self, coords):
        coords = np.array(coords, dtype=float).reshape((-1, 3))
        if len(coords) != self.natoms:
            raise ArgumentError("Wrong number of coordinates.")
        self.coords = coords

    def set_lattice(self, avec, scale_positions=True):
        """
        Replace the lattice vectors.

        Arguments:
          avec              new 3x3 matrix of lattice vectors (rows)
          scale_positions   if True, keep the fractional coordinates
                            fixed, i.e., deform the atomic positions
                            together with the cell
        """
        avec = np.array(avec, dtype=float)
        if scale_positions:
            frac = self.fractional
            self.coords = np.dot(frac, avec)
        self.avec = avec

    def apply_strain(self, strain):
        """
        Deform lattice and positions by (1 + strain).
        """
        smat = np.identity(3) + np.asarray(strain, dtype=float)
        self.avec = np.dot(self.avec, smat.T)
        self.coords = np.dot(self.coords, smat.T)

    def wrap(self):
        """
        Wrap all atoms back into the unit cell.
        """
        self.coords = np.dot(util.wrap_frac(self.fractional), self.avec)
        return self

    def rattle(self, amp, cell_amp=0.0, rng=None):
        """
        Randomly displace atoms (and optionally deform the lattice).

        Arguments:
          amp        maximal displacement of each Cartesian component
          cell_amp   maximal component of the random symmetric strain
                     applied to the cell (positions are scaled)
          rng        numpy random Generator

        """
        if rng is None:
            rng = np.random.default_rng()
        if cell_amp > 0.0:
            strain = rng.uniform(-cell_amp, cell_amp, size=(3, 3))
            self.apply_strain(0.5*(strain + strain.T))
        self.coords = self.coords + rng.uniform(
            -amp, amp, size=self.coords.shape)
        return self

    def distance(self, i, j):
        """
        Minimum image distance between atoms i and j.
        """
        d = self.fractional[j] - self.fractional[i]
        d -= np.round(d)
        dmin = None
        for T in np.ndindex(3, 3, 3):
            v = np.dot(d + np.array(T) - 1, self.avec)
            r = np.linalg.norm(v)
            dmin = r if dmin is None else min(dmin, r)
        return dmin

    def reduced(self):
        """
        Return a copy with a reduced lattice (pairwise Lagrange/Gauss
        reduction of the lattice vectors until no vector can be shortened
        by adding or subtracting another one).  Atoms are wrapped into the
        new cell.

        """
        avec = self.avec.copy()
        changed = True
        while changed:
            changed = False
            for i in range(3):
                for j in range(3):
                    if i == j:
                        continue
                    n = np.round(np.dot(avec[i], avec[j])
                                 / np.dot(avec[j], avec[j]))
                    if n != 0:
                        trial = avec[i] - n*avec[j]
                        if np.dot(trial, trial) < \
                                np.dot(avec[i], avec[i]) - 1e-10:
                            avec[i] = trial
                            changed = True
        order = np.argsort(np.linalg.norm(avec, axis=1), kind='stable')
        avec = avec[order]
        if np.linalg.det(avec) < 0:
            avec[2] *= -1
        out = self.copy()
        out.avec = avec
        return out.wrap()
