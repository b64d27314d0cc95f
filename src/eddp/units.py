#!/usr/bin/env python

"""
Constants for unit conversion.

The internal reference units for lengths and energy are Angstrom and eV.
Pressures are given in GPa at the user level.

"""

__author__ = "The eddp developers"
__date__ = "2023-03-02"

# charge
e2C = 1.602176565e-19

# pressure
eVAng3toGPa = 160.21766208
GPatoeVAng3 = 1.0/eVAng3toGPa
