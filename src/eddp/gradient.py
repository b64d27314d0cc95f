#!/usr/bin/env python

"""
Analytic gradients of the feature vectors with respect to atomic
positions and lattice strain, and their contraction with the gradient of
a model to obtain forces and stress.

Conventions (N atoms, nf two- and three-body features):

  fvec[f, i]         feature f of atom i
  gvec[f, i, j, :]   d fvec[f, i] / d r_j
  svec[f, i, :, :]   d fvec[f, i] / d strain, where the strain e deforms
                     all positions (and the lattice) as r -> (1 + e) r
  forces[j, :]       -dE/dr_j
  stress             -(dE/de)/volume, i.e., trace(stress)/3 is the
                     pressure, positive for compressed structures

"""

import numpy as np

from .feature import (iter_triplets, _max_rcut, feature_vector2,
                      feature_vector3)
from .nblist.neighborlist import NeighborList

__author__ = "The eddp developers"
__date__ = "2023-03-02"


class CoreRepulsion(object):
    """
    Short ranged pair repulsion a*(1 - r/rcore)^12 that keeps atoms
    apart independent of the fitted model.  Every ordered pair of
    neighbors contributes.

    """

    def __init__(self, rcore, a=1.0):
        self.rcore = float(rcore)
        self.a = float(a)

    def __repr__(self):
        return "CoreRepulsion(rcore={}, a={})".format(self.rcore, self.a)

    def energy(self, r):
        if r >= self.rcore:
            return 0.0
        return self.a*(1.0 - r/self.rcore)**12

    def gradient(self, r):
        """
        dE/dr of a single pair.
        """
        if r >= self.rcore:
            return 0.0
        return -12.0*self.a/self.rcore*(1.0 - r/self.rcore)**11


class ForceBuffer(object):
    """
    Buffers for feature values, their gradients, and the resulting
    forces and stress of one structure.

    """

    def __init__(self, nfeatures, natoms, core=None):
        self.fvec = np.zeros((nfeatures, natoms))
        self.gvec = np.zeros((nfeatures, natoms, natoms, 3))
        self.svec = np.zeros((nfeatures, natoms, 3, 3))
        self.forces = np.zeros((natoms, 3))
        self.stress = np.zeros((3, 3))
        self.core = core
        self.ecore = 0.0
        self.fcore = np.zeros((natoms, 3))
        self.score = np.zeros((3, 3))

    @property
    def nfeatures(self):
        return self.fvec.shape[0]

    @property
    def natoms(self):
        return self.fvec.shape[1]

    def reset(self):
        for arr in (self.fvec, self.gvec, self.svec, self.forces,
                    self.stress, self.fcore, self.score):
            arr.fill(0.0)
        self.ecore = 0.0


def _default_nl(cell, two_body, three_body, core):
    rcut = _max_rcut(list(two_body) + list(three_body))
    if core is not None:
        rcut = max(rcut, core.rcore)
    return NeighborList.from_cell(cell, rcut)


def _core_terms(fb, cell, nl):
    """
    Core repulsion energy, forces, and (negative) strain derivative.
    """
    core = fb.core
    if core is None:
        return
    ext = nl.ext_positions
    for i in range(cell.natoms):
        for j, j_ext, r in nl.neighbors(i):
            if r >= core.rcore:
                continue
            fb.ecore += core.energy(r)
            de = core.gradient(r)
            rvec = ext[j_ext] - ext[i]
            u = rvec/r
            fb.fcore[i] += de*u
            fb.fcore[j] -= de*u
            fb.score -= de*np.outer(rvec, rvec)/r


def compute_fv(fb, two_body, three_body, cell, nl=None):
    """
    Feature values (two- and three-body part only) and the core
    repulsion energy, without any gradients.

    """
    fb.fvec.fill(0.0)
    fb.ecore = 0.0
    if nl is None:
        nl = _default_nl(cell, two_body, three_body, fb.core)
    n2 = sum(f.nfeatures for f in two_body)
    feature_vector2(two_body, cell, nl=nl, out=fb.fvec, offset=0)
    feature_vector3(three_body, cell, nl=nl, out=fb.fvec, offset=n2)
    if fb.core is not None:
        for i in range(cell.natoms):
            for _, _, r in nl.neighbors(i):
                fb.ecore += fb.core.energy(r)
    return fb


def _pair_loop(two_body, cell, nl):
    """
    Iterate over all matching (atom, neighbor, descriptor) combinations.

    Yields:
      (i, j, rvec, r, istart, e, g) where e and g are the values and
      radial derivatives of the descriptor starting at row istart
    """
    if len(two_body) == 0:
        return
    rcut = _max_rcut(two_body)
    ext = nl.ext_positions
    types = cell.types
    for i in range(cell.natoms):
        for j, j_ext, rij in nl.neighbors(i):
            if rij > rcut:
                continue
            rvec = ext[j_ext] - ext[i]
            istart = 0
            for feat in two_body:
                if feat.species == tuple(sorted((types[i], types[j]))):
                    e, g = feat.with_gradient(rij)
                    yield i, j, rvec, rij, istart, e, g
                istart += feat.nfeatures


def _triplet_loop(three_body, cell, nl):
    """
    Iterate over all matching (atom, neighbor pair, descriptor)
    combinations.

    Yields:
      (i, j, k, vij, vik, vjk, dists, istart, e, g)
    """
    if len(three_body) == 0:
        return
    rcut = _max_rcut(three_body)
    ext = nl.ext_positions
    types = cell.types
    for i in range(cell.natoms):
        for j, j_ext, k, k_ext, rij, rik, rjk in iter_triplets(nl, i, rcut):
            tag = tuple(sorted((types[i], types[j], types[k])))
            vij = ext[j_ext] - ext[i]
            vik = ext[k_ext] - ext[i]
            vjk = ext[k_ext] - ext[j_ext]
            istart = 0
            for feat in three_body:
                if feat.species == tag:
                    e, g = feat.with_gradient(rij, rik, rjk)
                    yield (i, j, k, vij, vik, vjk, (rij, rik, rjk), istart,
                           e, g)
                istart += feat.nfeatures


def compute_fv_gv(fb, two_body, three_body, cell, nl=None):
    """
    Single-pass computation of the feature values together with their
    gradients with respect to positions (fb.gvec) and strain (fb.svec).

    Arguments:
      fb           ForceBuffer with fb.nfeatures equal to the total width
                   of the two- and three-body descriptors
      two_body     list of TwoBodyFeature
      three_body   list of ThreeBodyFeature
      cell         instance of Cell
      nl           (optional) NeighborList; must cover all cutoffs

    """
    fb.reset()
    if nl is None:
        nl = _default_nl(cell, two_body, three_body, fb.core)

    for i, j, rvec, r, istart, e, g in _pair_loop(two_body, cell, nl):
        sl = slice(istart, istart + len(e))
        u = rvec/r
        fb.fvec[sl, i] += e
        gu = np.outer(g, u)
        fb.gvec[sl, i, j, :] += gu
        fb.gvec[sl, i, i, :] -= gu
        fb.svec[sl, i] += g[:, None, None]*(np.outer(rvec, rvec)/r)

    n2 = sum(f.nfeatures for f in two_body)
    for (i, j, k, vij, vik, vjk, dists, istart, e,
         g) in _triplet_loop(three_body, cell, nl):
        sl = slice(n2 + istart, n2 + istart + len(e))
        rij, rik, rjk = dists
        uij, uik, ujk = vij/rij, vik/rik, vjk/rjk
        fb.fvec[sl, i] += e
        gij = np.outer(g[0], uij)
        gik = np.outer(g[1], uik)
        gjk = np.outer(g[2], ujk)
        fb.gvec[sl, i, i, :] -= gij + gik
        fb.gvec[sl, i, j, :] += gij - gjk
        fb.gvec[sl, i, k, :] += gik + gjk
        fb.svec[sl, i] += (g[0][:, None, None]*(np.outer(vij, vij)/rij)
                           + g[1][:, None, None]*(np.outer(vik, vik)/rik)
                           + g[2][:, None, None]*(np.outer(vjk, vjk)/rjk))

    _core_terms(fb, cell, nl)
    return fb


def apply_chainrule(fb, gv, volume):
    """
    Contract the feature gradients in `fb` with gv = dE/dfvec to obtain
    forces and stress (core repulsion included).

    Arguments:
      fb       ForceBuffer filled by compute_fv_gv()
      gv       ndarray (nfeatures, natoms), derivative of the total
               energy with respect to fb.fvec
      volume   cell volume

    """
    fb.forces[:] = -np.einsum('fi,fijd->jd', gv, fb.gvec) + fb.fcore
    fb.stress[:] = (-np.einsum('fi,fiab->ab', gv, fb.svec)
                    + fb.score)/volume
    return fb


def compute_forces_two_pass(fb, two_body, three_body, cell, gv, volume,
                            nl=None):
    """
    Second pass of the two-pass scheme: with the feature values known
    (compute_fv()) and dE/dfvec computed by the model, accumulate the
    forces and stress directly without storing the full gradient tensor.

    Arguments:
      fb           ForceBuffer
      gv           ndarray (nfeatures, natoms), dE/dfvec
      volume       cell volume

    """
    if nl is None:
        nl = _default_nl(cell, two_body, three_body, fb.core)
    forces = np.zeros_like(fb.forces)
    virial = np.zeros((3, 3))

    for i, j, rvec, r, istart, e, g in _pair_loop(two_body, cell, nl):
        dedr = float(np.dot(gv[istart:istart + len(e), i], g))
        u = rvec/r
        forces[j] -= dedr*u
        forces[i] += dedr*u
        virial -= dedr*np.outer(rvec, rvec)/r

    n2 = sum(f.nfeatures for f in two_body)
    for (i, j, k, vij, vik, vjk, dists, istart, e,
         g) in _triplet_loop(three_body, cell, nl):
        upstream = gv[n2 + istart:n2 + istart + len(e), i]
        dij, dik, djk = np.dot(g, upstream)
        rij, rik, rjk = dists
        uij, uik, ujk = vij/rij, vik/rik, vjk/rjk
        forces[i] += dij*uij + dik*uik
        forces[j] -= dij*uij - djk*ujk
        forces[k] -= dik*uik + djk*ujk
        virial -= (dij*np.outer(vij, vij)/rij + dik*np.outer(vik, vik)/rik
                   + djk*np.outer(vjk, vjk)/rjk)

    fb.fcore.fill(0.0)
    fb.score.fill(0.0)
    fb.ecore = 0.0
    _core_terms(fb, cell, nl)
    fb.forces[:] = forces + fb.fcore
    fb.stress[:] = (virial + fb.score)/volume
    return fb
