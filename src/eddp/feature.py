#!/usr/bin/env python

"""
Generalised potential feature vectors.

The feature vector of an atom consists of three parts:

  one-body     one-hot encoding of the species of the atom
  two-body     sum over neighbors j of f(r_ij)^p for each exponent p
  three-body   sum over neighbor pairs (j, k) of
               f(r_ij)^p f(r_ik)^p f(r_jk)^q for each combination (p, q)

where f(r) = 2(1 - r/rcut) for r <= rcut and 0 beyond the cutoff.  Each
two-body (three-body) descriptor is tied to an unordered pair (triplet)
of species and only contributes when the species of the atoms involved
match.

"""

import itertools
import warnings
from dataclasses import dataclass, field
from typing import List

import numpy as np

from .exceptions import ArgumentError
from .nblist.neighborlist import NeighborList

__author__ = "The eddp developers"
__date__ = "2023-03-02"


def fr(r, rcut):
    """
    Basis function, 2(1 - r/rcut) inside the cutoff and zero beyond.
    """
    if r <= rcut:
        return 2.0*(1.0 - r/rcut)
    return 0.0


def gfr(r, rcut):
    """
    Radial derivative of `fr`.
    """
    if r <= rcut:
        return -2.0/rcut
    return 0.0


# name -> (function, derivative)
BASIS_FUNCTIONS = {
    'fr': (fr, gfr),
}


def fast_pow(x, y):
    """
    x**y with repeated multiplication for the integer exponents
    -1, 0, ..., 12, and the generic power function for all other
    exponents.

    A vanishing basis value (r at or beyond the cutoff) gives zero for
    every exponent other than 0, including negative and fractional ones.

    """
    if x == 0.0:
        return 1.0 if y == 0 else 0.0
    if y == int(y) and -1 <= y <= 12:
        n = int(y)
        if n == -1:
            return 1.0/x
        if n == 0:
            return 1.0
        out = x
        for _ in range(n - 1):
            out *= x
        return out
    return x**y


def _dpow(x, y):
    """
    y*x**(y-1); zero for y == 0 and for x == 0.
    """
    if y == 0 or x == 0.0:
        return 0.0
    return y*fast_pow(x, y - 1)


def permequal(tag, *species):
    """
    True if `species` is a permutation of `tag`.

    Arguments:
      tag       tuple of 2 or 3 species (the descriptor's species)
      species   species of the atoms in the queried pair or triplet

    """
    if len(tag) != len(species):
        return False
    tag = tuple(tag)
    return any(perm == tag for perm in itertools.permutations(species))


def _basis(name):
    try:
        return BASIS_FUNCTIONS[name]
    except KeyError:
        raise ArgumentError("Unknown basis function: {}".format(name))


class TwoBodyFeature(object):
    """
    Two-body descriptor for one unordered pair of species.

    Attributes:
      p         exponents; the width of the descriptor is len(p)
      species   sorted tuple with the two species
      rcut      cutoff radius
      basis     name of the basis function in BASIS_FUNCTIONS

    """

    def __init__(self, p, species, rcut, basis='fr'):
        if len(species) != 2:
            raise ArgumentError(
                "Two-body features need two species, got {}".format(
                    species))
        self.p = tuple(p)
        self.species = tuple(sorted(species))
        self.rcut = float(rcut)
        self.basis = basis
        self.f, self.g = _basis(basis)

    def __repr__(self):
        return "TwoBodyFeature({}-{}, p={}, rcut={})".format(
            self.species[0], self.species[1], list(self.p), self.rcut)

    def __eq__(self, other):
        return (isinstance(other, TwoBodyFeature)
                and self.to_dict() == other.to_dict())

    @property
    def nfeatures(self):
        return len(self.p)

    def to_dict(self):
        return {'p': list(self.p), 'species': list(self.species),
                'rcut': self.rcut, 'basis': self.basis}

    @classmethod
    def from_dict(cls, d):
        return cls(d['p'], d['species'], d['rcut'], basis=d['basis'])

    def compute(self, r):
        """
        Values [f(r)^p_1, ..., f(r)^p_n] for a single distance.
        """
        val = self.f(r, self.rcut)
        return np.array([fast_pow(val, p) for p in self.p])

    def accumulate(self, out, r, iat, istart=0):
        """
        Add the contribution of distance r to out[istart:, iat].
        Distances beyond the cutoff do not contribute.
        """
        if r > self.rcut:
            return out
        val = self.f(r, self.rcut)
        for k, p in enumerate(self.p):
            out[istart + k, iat] += fast_pow(val, p)
        return out

    def accumulate_species(self, out, r, si, sj, iat, istart=0):
        """
        Same as `accumulate()`, but only if (si, sj) matches the species
        of the descriptor.

        Returns:
          True if the contribution was added
        """
        if not permequal(self.species, si, sj):
            return False
        self.accumulate(out, r, iat, istart)
        return True

    def with_gradient(self, r):
        """
        Values and radial derivatives for a single distance.

        Returns:
          (e, g) with e[k] = f(r)^p_k and g[k] = d e[k]/dr
        """
        if r > self.rcut:
            return np.zeros(self.nfeatures), np.zeros(self.nfeatures)
        val = self.f(r, self.rcut)
        gval = self.g(r, self.rcut)
        e = np.empty(self.nfeatures)
        g = np.empty(self.nfeatures)
        for k, p in enumerate(self.p):
            e[k] = fast_pow(val, p)
            g[k] = _dpow(val, p)*gval
        return e, g


class ThreeBodyFeature(object):
    """
    Three-body descriptor for one species triplet.

    The features are f(r_ij)^p f(r_ik)^p f(r_jk)^q for all combinations
    of p and q, ordered with the index of p varying slower.

    Attributes:
      p         exponents applied to the distances from the central atom
      q         exponents applied to the distance between the neighbors
      species   sorted tuple with the three species
      rcut      cutoff radius
      basis     name of the basis function in BASIS_FUNCTIONS

    """

    def __init__(self, p, q, species, rcut, basis='fr'):
        if len(species) != 3:
            raise ArgumentError(
                "Three-body features need three species, got {}".format(
                    species))
        self.p = tuple(p)
        self.q = tuple(q)
        self.species = tuple(sorted(species))
        self.rcut = float(rcut)
        self.basis = basis
        self.f, self.g = _basis(basis)

    def __repr__(self):
        return "ThreeBodyFeature({}, p={}, q={}, rcut={})".format(
            "-".join(self.species), list(self.p), list(self.q), self.rcut)

    def __eq__(self, other):
        return (isinstance(other, ThreeBodyFeature)
                and self.to_dict() == other.to_dict())

    @property
    def nfeatures(self):
        return len(self.p)*len(self.q)

    def to_dict(self):
        return {'p': list(self.p), 'q': list(self.q),
                'species': list(self.species), 'rcut': self.rcut,
                'basis': self.basis}

    @classmethod
    def from_dict(cls, d):
        return cls(d['p'], d['q'], d['species'], d['rcut'],
                   basis=d['basis'])

    def compute(self, rij, rik, rjk):
        out = np.zeros((self.nfeatures, 1))
        return self.accumulate(out, rij, rik, rjk, 0)[:, 0]

    def accumulate(self, out, rij, rik, rjk, iat, istart=0):
        """
        Add the contribution of the triangle (rij, rik, rjk) to
        out[istart:, iat].
        """
        if max(rij, rik, rjk) > self.rcut:
            return out
        fij = self.f(rij, self.rcut)
        fik = self.f(rik, self.rcut)
        fjk = self.f(rjk, self.rcut)
        nq = len(self.q)
        for m, pm in enumerate(self.p):
            ijkp = fast_pow(fij, pm)*fast_pow(fik, pm)
            for o, qo in enumerate(self.q):
                out[istart + m*nq + o, iat] += ijkp*fast_pow(fjk, qo)
        return out

    def accumulate_species(self, out, rij, rik, rjk, si, sj, sk, iat,
                           istart=0):
        """
        Same as `accumulate()`, but only if the species (si, sj, sk)
        are a permutation of the descriptor's species.

        Returns:
          True if the contribution was added
        """
        if not permequal(self.species, si, sj, sk):
            return False
        self.accumulate(out, rij, rik, rjk, iat, istart)
        return True

    def with_gradient(self, rij, rik, rjk):
        """
        Values and derivatives with respect to the three distances.

        Returns:
          (e, g) where e has shape (nfeatures,) and g has shape
          (3, nfeatures) with the derivatives by rij, rik and rjk
        """
        if max(rij, rik, rjk) > self.rcut:
            return np.zeros(self.nfeatures), np.zeros((3, self.nfeatures))
        fij = self.f(rij, self.rcut)
        fik = self.f(rik, self.rcut)
        fjk = self.f(rjk, self.rcut)
        gij = self.g(rij, self.rcut)
        gik = self.g(rik, self.rcut)
        gjk = self.g(rjk, self.rcut)
        nq = len(self.q)
        e = np.empty(self.nfeatures)
        g = np.empty((3, self.nfeatures))
        for m, pm in enumerate(self.p):
            fij_p = fast_pow(fij, pm)
            fik_p = fast_pow(fik, pm)
            ijkp = fij_p*fik_p
            # f(rik)^(p-1) f(rij)^p; zero for a vanishing f(rik)
            tmp = ijkp/fik if fik != 0.0 else 0.0
            dij = _dpow(fij, pm)*fik_p*gij
            for o, qo in enumerate(self.q):
                idx = m*nq + o
                fjk_q = fast_pow(fjk, qo)
                e[idx] = ijkp*fjk_q
                g[0, idx] = dij*fjk_q
                g[1, idx] = tmp*pm*fjk_q*gik
                g[2, idx] = ijkp*_dpow(fjk, qo)*gjk
        return e, g


@dataclass
class FeatureOptions:
    """
    Options for building a complete CellFeature.

    Attributes:
      elements: Chemical symbols of all species.
      p2: Exponents of the two-body descriptors.
      p3: Exponents of the three-body descriptors (central distances).
      q3: Exponents of the three-body descriptors (neighbor distance).
      rcut2: Two-body cutoff radius.
      rcut3: Three-body cutoff radius.
      basis: Name of the basis function.
    """
    elements: List[str]
    p2: List[float] = field(default_factory=lambda: [2, 4, 6, 8])
    p3: List[float] = field(default_factory=lambda: [2, 4, 6, 8])
    q3: List[float] = field(default_factory=lambda: [2, 4, 6, 8])
    rcut2: float = 4.0
    rcut3: float = 4.0
    basis: str = 'fr'

    def __post_init__(self):
        if len(self.elements) == 0:
            raise ArgumentError("At least one element is required.")
        if self.rcut2 <= 0 or self.rcut3 <= 0:
            raise ArgumentError("Cutoff radii must be positive.")
        if not (self.p2 and self.p3 and self.q3):
            raise ArgumentError("Exponent lists must not be empty.")


class CellFeature(object):
    """
    Complete descriptor set for structures made of `elements`.

    The order of the descriptors is fixed on construction and defines
    the layout of the feature vector:

      [one-body (len(elements)); two-body ...; three-body ...]

    """

    def __init__(self, elements, two_body, three_body):
        self.elements = sorted(set(elements))
        self.two_body = list(two_body)
        self.three_body = list(three_body)

    @classmethod
    def from_elements(cls, elements, p2=range(2, 9), p3=range(2, 9),
                      q3=range(2, 9), rcut2=4.0, rcut3=3.0, basis='fr'):
        """
        One two-body descriptor for each unordered pair of elements and
        one three-body descriptor for each triplet (with repetitions).

        """
        elements = sorted(set(elements))
        two_body = [
            TwoBodyFeature(p2, pair, rcut2, basis)
            for pair in itertools.combinations_with_replacement(elements, 2)]
        three_body = [
            ThreeBodyFeature(p3, q3, triplet, rcut3, basis)
            for triplet in itertools.combinations_with_replacement(
                elements, 3)]
        return cls(elements, two_body, three_body)

    @classmethod
    def from_options(cls, opts):
        return cls.from_elements(opts.elements, p2=opts.p2, p3=opts.p3,
                                 q3=opts.q3, rcut2=opts.rcut2,
                                 rcut3=opts.rcut3, basis=opts.basis)

    def __repr__(self):
        return ("CellFeature(elements={}, {} two-body, {} three-body, "
                "{} features)".format(self.elements, len(self.two_body),
                                      len(self.three_body), self.nfeatures))

    def __add__(self, other):
        return CellFeature(set(self.elements) | set(other.elements),
                           self.two_body + other.two_body,
                           self.three_body + other.three_body)

    def __eq__(self, other):
        return (isinstance(other, CellFeature)
                and self.to_dict() == other.to_dict())

    @property
    def feature_size(self):
        """
        (number of one-body, two-body, three-body features)
        """
        return (len(self.elements),
                sum(f.nfeatures for f in self.two_body),
                sum(f.nfeatures for f in self.three_body))

    @property
    def nfeatures(self):
        return sum(self.feature_size)

    def suggest_rcut(self, offset=1.0):
        """
        Neighbor list cutoff: largest descriptor cutoff plus `offset`.
        """
        rcuts = [f.rcut for f in self.two_body + self.three_body]
        return max(rcuts) + offset

    def to_dict(self):
        return {'elements': list(self.elements),
                'two_body': [f.to_dict() for f in self.two_body],
                'three_body': [f.to_dict() for f in self.three_body]}

    @classmethod
    def from_dict(cls, d):
        return cls(d['elements'],
                   [TwoBodyFeature.from_dict(f) for f in d['two_body']],
                   [ThreeBodyFeature.from_dict(f) for f in d['three_body']])


def _check_coverage(required, covered, kind):
    missing = [c for c in required if covered.count(c) == 0]
    repeated = sorted(set(c for c in covered if covered.count(c) > 1))
    if missing:
        warnings.warn("No {} feature for: {}".format(
            kind, ", ".join("-".join(c) for c in missing)))
    if repeated:
        warnings.warn("More than one {} feature for: {}".format(
            kind, ", ".join("-".join(c) for c in repeated)))


def two_body_feature_from_mapping(elements, p_mapping, rcut, basis='fr'):
    """
    Build two-body descriptors from an explicit mapping.

    Arguments:
      elements    all species of the system
      p_mapping   dict {(A, B): exponents}
      rcut        cutoff radius

    A warning is issued for every pair of elements without descriptor.

    """
    features = [TwoBodyFeature(p, pair, rcut, basis)
                for pair, p in p_mapping.items()]
    required = list(itertools.combinations_with_replacement(
        sorted(set(elements)), 2))
    _check_coverage(required, [f.species for f in features], 'two-body')
    return features


def three_body_feature_from_mapping(elements, pq_mapping, rcut, basis='fr',
                                    check=True):
    """
    Build three-body descriptors from an explicit mapping.

    Arguments:
      elements     all species of the system
      pq_mapping   dict {(A, B, C): (p, q)}
      rcut         cutoff radius
      check        warn about triplets without descriptor

    """
    features = [ThreeBodyFeature(pq[0], pq[1], triplet, rcut, basis)
                for triplet, pq in pq_mapping.items()]
    if check:
        required = list(itertools.combinations_with_replacement(
            sorted(set(elements)), 3))
        _check_coverage(required, [f.species for f in features],
                        'three-body')
    return features


def _max_rcut(features):
    return max(f.rcut for f in features)


def one_body_vectors(cell, cf):
    """
    One-hot encoding of the species of each atom, shape
    (len(cf.elements), natoms).

    """
    vecs = np.zeros((len(cf.elements), cell.natoms))
    for i, t in enumerate(cell.types):
        try:
            vecs[cf.elements.index(t), i] = 1.0
        except ValueError:
            raise ArgumentError(
                "Species {} is not part of the feature set {}".format(
                    t, cf.elements))
    return vecs


def feature_vector2(features, cell, nl=None, out=None, offset=0):
    """
    Two-body part of the feature vectors.

    Arguments:
      features   list of TwoBodyFeature
      cell       instance of Cell
      nl         (optional) NeighborList with a sufficient range
      out        (optional) array to accumulate into
      offset     first row of `out` to be used

    Returns:
      out, shape (offset + sum of widths, natoms) if newly allocated
    """
    nf = sum(f.nfeatures for f in features)
    if out is None:
        out = np.zeros((offset + nf, cell.natoms))
    if len(features) == 0:
        return out
    rcut = _max_rcut(features)
    if nl is None:
        nl = NeighborList.from_cell(cell, rcut)
    for i in range(cell.natoms):
        for j, _, rij in nl.neighbors(i):
            if rij > rcut:
                continue
            istart = offset
            for feat in features:
                feat.accumulate_species(out, rij, cell.types[i],
                                        cell.types[j], i, istart)
                istart += feat.nfeatures
    return out


def iter_triplets(nl, i, rcut):
    """
    Iterate over all pairs of neighbors (j, k) of atom i within rcut,
    visiting each unordered pair of periodic images exactly once.

    Yields:
      (j, j_ext, k, k_ext, rij, rik, rjk)
    """
    ext = nl.ext_positions
    neigh = [n for n in nl.neighbors(i) if n[2] <= rcut]
    for j, j_ext, rij in neigh:
        for k, k_ext, rik in neigh:
            if k_ext <= j_ext:
                continue
            rjk = float(np.linalg.norm(ext[k_ext] - ext[j_ext]))
            if rjk > rcut:
                continue
            yield j, j_ext, k, k_ext, rij, rik, rjk


def feature_vector3(features, cell, nl=None, out=None, offset=0):
    """
    Three-body part of the feature vectors; arguments as for
    `feature_vector2()`.

    """
    nf = sum(f.nfeatures for f in features)
    if out is None:
        out = np.zeros((offset + nf, cell.natoms))
    if len(features) == 0:
        return out
    rcut = _max_rcut(features)
    if nl is None:
        nl = NeighborList.from_cell(cell, rcut)
    types = cell.types
    for i in range(cell.natoms):
        for j, _, k, _, rij, rik, rjk in iter_triplets(nl, i, rcut):
            istart = offset
            for feat in features:
                feat.accumulate_species(out, rij, rik, rjk, types[i],
                                        types[j], types[k], i, istart)
                istart += feat.nfeatures
    return out


def feature_vector(cf, cell, nl=None):
    """
    Complete feature vectors of all atoms.

    Returns:
      ndarray with shape (cf.nfeatures, natoms)
    """
    n1, n2, _ = cf.feature_size
    if nl is None:
        nl = NeighborList.from_cell(cell, cf.suggest_rcut(offset=0.0))
    out = np.zeros((cf.nfeatures, cell.natoms))
    out[:n1] = one_body_vectors(cell, cf)
    feature_vector2(cf.two_body, cell, nl=nl, out=out, offset=n1)
    feature_vector3(cf.three_body, cell, nl=nl, out=out, offset=n1 + n2)
    return out
