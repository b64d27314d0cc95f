"""
eddp - generalised-potential feature vectors with analytic gradients and
an iterative (active-learning) builder for ensembles of neural network
surrogate models.

"""

import os

__author__ = "The eddp developers"
__date__ = "2023-03-02"

with open(os.path.join(os.path.dirname(__file__), 'VERSION')) as _fp:
    __version__ = _fp.read().strip()
