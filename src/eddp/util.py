#!/usr/bin/env python

"""
Utility functions for lattice geometry and file handling.

"""

import os

import numpy as np

__author__ = "The eddp developers"
__date__ = "2023-03-02"


def ensure_dir(path):
    os.makedirs(path, exist_ok=True)
    return path


def stem(path):
    """
    File name without directory and extension.

    """
    return os.path.splitext(os.path.basename(path))[0]


def swapext(path, ext):
    return os.path.splitext(path)[0] + ext


def cellmatrix_from_params(a, b, c, alpha, beta, gamma, rad=False):
    """
    Return matrix of lattice vectors for a given set of cell paramters.

    Arguments:
      a, b, c             lattice constants = lengths of lattice vectors
      alpha, beta, gamma  cell angles = angles between lattice vectors
      rad                 if True, angles are in radiants (not degrees)

    Returns:
      3x3 ndarray A, with A[i] = (i+1)-th lattice vector; i = 0, 1, 2
    """

    if not rad:
        alpha = alpha/180.0*np.pi
        beta = beta/180.0*np.pi
        gamma = gamma/180.0*np.pi

    # a*b = a1*b1 = |a|*|b|*cos(gamma)
    # a*c = a1*c1 = |a|*|c|*cos(beta)
    # b*c = b1*c1 + b2*c2 = |b|*|c|*cos(alpha)

    b1 = b*np.cos(gamma)
    b2 = np.sqrt(b*b - b1*b1)
    c1 = c*np.cos(beta)
    c2 = (b*c*np.cos(alpha) - b1*c1)/b2
    c3 = np.sqrt(c*c - c1*c1 - c2*c2)

    avec = np.array([[a, 0.0, 0.0],
                     [b1, b2, 0.0],
                     [c1, c2, c3]])

    return avec


def cell_params(avec):
    """
    Lattice constants and angles (in degrees) of a lattice.

    Arguments:
      avec[i][j]  (ndarray) j-th component of the i-th lattice vector

    Returns:
      (a, b, c, alpha, beta, gamma)

    """
    a, b, c = np.linalg.norm(avec, axis=1)
    alpha = np.arccos(np.dot(avec[1], avec[2])/(b*c))/np.pi*180
    beta = np.arccos(np.dot(avec[0], avec[2])/(a*c))/np.pi*180
    gamma = np.arccos(np.dot(avec[0], avec[1])/(a*b))/np.pi*180
    return (a, b, c, alpha, beta, gamma)


def wrap_frac(frac):
    """
    Wrap fractional coordinates back into the unit cell, so that
    0.0 <= frac[i][j] < 1.0 for all i, j.

    """
    frac = np.asarray(frac, dtype=float)
    wrapped = frac - np.floor(frac)
    # floor() of tiny negative numbers can produce exactly 1.0
    wrapped[wrapped >= 1.0] -= 1.0
    return wrapped
