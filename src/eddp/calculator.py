"""
Energy, forces and stress of a structure from a model of atomic
energies, and geometry optimisation.

"""

import numpy as np
from scipy.optimize import minimize

from .exceptions import ArgumentError, RelaxationError
from .feature import one_body_vectors
from .gradient import (ForceBuffer, compute_fv, compute_fv_gv,
                       compute_forces_two_pass, apply_chainrule)
from .nblist.neighborlist import NeighborList
from .units import eVAng3toGPa

__author__ = "The eddp developers"
__date__ = "2023-03-02"


class NNCalc(object):
    """
    Calculator for a single structure.

    Arguments:
      cell     instance of Cell; the calculator works on this object
      cf       CellFeature
      model    object with forward(v) and gradinp(v), e.g., a
               ModelEnsemble
      core     (optional) CoreRepulsion
      mode     'one-pass' (full gradient tensor) or 'two-pass'
      skin     extra range of the neighbor list; the list is only
               rebuilt when an atom moved more than skin/2

    Results are cached until positions or lattice change.

    """

    def __init__(self, cell, cf, model, core=None, mode='one-pass',
                 skin=1.0):
        if mode not in ('one-pass', 'two-pass'):
            raise ArgumentError("Unknown mode: {}".format(mode))
        self.cell = cell
        self.cf = cf
        self.model = model
        self.core = core
        self.mode = mode
        self.skin = skin
        n1, n2, n3 = cf.feature_size
        self._n1 = n1
        self.fb = ForceBuffer(n2 + n3, cell.natoms, core=core)
        self._last = None
        self._nl = None
        self._nl_ref = None
        self.energy = None
        self.eatoms = None
        self.fvec = None

    def _state(self):
        return (self.cell.avec.copy(), self.cell.coords.copy())

    def _changed(self, forces):
        if self._last is None:
            return True
        avec, coords, with_forces = self._last
        if forces and not with_forces:
            return True
        return not (np.array_equal(avec, self.cell.avec)
                    and np.array_equal(coords, self.cell.coords))

    def _neighbor_list(self):
        rcut = self.cf.suggest_rcut(offset=self.skin)
        if self.core is not None:
            rcut = max(rcut, self.core.rcore + self.skin)
        ref = self._nl_ref
        if (self._nl is None or ref is None
                or not np.array_equal(ref[0], self.cell.avec)
                or np.max(np.linalg.norm(self.cell.coords - ref[1],
                                         axis=1)) > 0.5*self.skin):
            self._nl = NeighborList.from_cell(self.cell, rcut)
            self._nl_ref = self._state()
        else:
            self._nl.update(self.cell.coords)
        return self._nl

    def calculate(self, forces=True):
        """
        Compute energy and, if requested, forces and stress.
        """
        if not self._changed(forces):
            return
        nl = self._neighbor_list()
        cf = self.cf
        fb = self.fb
        if forces and self.mode == 'one-pass':
            compute_fv_gv(fb, cf.two_body, cf.three_body, self.cell, nl)
        else:
            compute_fv(fb, cf.two_body, cf.three_body, self.cell, nl)
        v = np.concatenate([one_body_vectors(self.cell, cf), fb.fvec])
        self.fvec = v
        self.eatoms = self.model.forward(v)
        self.energy = float(np.sum(self.eatoms)) + fb.ecore
        if forces:
            gv = self.model.gradinp(v)[self._n1:]
            if self.mode == 'one-pass':
                apply_chainrule(fb, gv, self.cell.volume)
            else:
                compute_forces_two_pass(fb, cf.two_body, cf.three_body,
                                        self.cell, gv, self.cell.volume,
                                        nl)
        self._last = self._state() + (forces,)

    def get_energy(self):
        self.calculate(forces=False)
        return self.energy

    def get_forces(self):
        self.calculate(forces=True)
        return self.fb.forces.copy()

    def get_stress(self):
        self.calculate(forces=True)
        return self.fb.stress.copy()

    def get_pressure_gpa(self):
        return float(np.trace(self.get_stress()))/3.0*eVAng3toGPa

    def get_positions(self):
        return self.cell.coords.copy()

    def set_positions(self, coords):
        self.cell.set_positions(coords)


class VariableCellCalc(object):
    """
    Expose lattice degrees of freedom as three extra "atoms" so that the
    cell can be optimised together with the atomic positions.

    With the deformation gradient F (current cell = F applied to the
    reference cell), the generalised positions are the positions in the
    reference cell (r F^-T) followed by the rows of cell_factor*F.  The
    energy is the enthalpy E + pV.

    Arguments:
      calc            NNCalc
      pressure_gpa    external pressure in GPa
      cell_factor     scaling of the lattice degrees of freedom;
                      defaults to the number of atoms

    """

    def __init__(self, calc, pressure_gpa=0.0, cell_factor=None):
        self.calc = calc
        self.pressure = pressure_gpa/eVAng3toGPa
        self.cell_factor = (float(calc.cell.natoms) if cell_factor is None
                            else float(cell_factor))
        self.orig_avec = calc.cell.avec.copy()

    @property
    def cell(self):
        return self.calc.cell

    def deformation_gradient(self):
        return np.linalg.solve(self.orig_avec, self.cell.avec).T

    def get_positions(self):
        F = self.deformation_gradient()
        pos = np.linalg.solve(F, self.cell.coords.T).T
        return np.concatenate([pos, self.cell_factor*F])

    def set_positions(self, positions):
        positions = np.asarray(positions, dtype=float).reshape((-1, 3))
        natoms = self.cell.natoms
        F = positions[natoms:]/self.cell_factor
        self.cell.set_lattice(np.dot(self.orig_avec, F.T),
                              scale_positions=False)
        self.cell.set_positions(np.dot(positions[:natoms], F.T))

    def get_energy(self):
        return self.calc.get_energy() + self.pressure*self.cell.volume

    def get_forces(self):
        """
        Generalised forces, (natoms + 3, 3).
        """
        F = self.deformation_gradient()
        forces = self.calc.get_forces()
        volume = self.cell.volume
        virial = volume*self.calc.get_stress() \
            - self.pressure*volume*np.identity(3)
        atom_forces = np.dot(forces, F)
        cell_forces = np.linalg.solve(F, virial.T).T/self.cell_factor
        return np.concatenate([atom_forces, cell_forces])

    def get_pressure_gpa(self):
        return self.calc.get_pressure_gpa()


def optimise(calc, gtol=1e-4, maxiter=1000, record_trajectory=False):
    """
    Minimise the energy of `calc` (NNCalc or VariableCellCalc) with
    L-BFGS.

    Returns:
      (result, trajectory) where result is a scipy OptimizeResult and
      trajectory a list of structures if requested

    Raises:
      RelaxationError if the energy or forces become non-finite

    """
    traj = []
    p0 = calc.get_positions().ravel()

    def fun(x):
        calc.set_positions(x.reshape((-1, 3)))
        e = calc.get_energy()
        forces = calc.get_forces()
        if not (np.isfinite(e) and np.all(np.isfinite(forces))):
            raise RelaxationError("Non-finite energy or forces.")
        if record_trajectory:
            cell = calc.cell.copy()
            cell.metadata['enthalpy'] = e
            traj.append(cell)
        return e, -forces.ravel()

    res = minimize(fun, p0, jac=True, method='L-BFGS-B',
                   options={'gtol': gtol, 'maxiter': maxiter})
    calc.set_positions(res.x.reshape((-1, 3)))
    return res, traj
