import numpy as np
import pytest

from ..calculator import NNCalc, VariableCellCalc, optimise
from ..exceptions import ArgumentError, RelaxationError
from ..feature import CellFeature, feature_vector
from ..geometry import Cell
from ..gradient import CoreRepulsion
from ..models import AtomicEnergyModel, ModelEnsemble


class PairModel(object):
    """
    E = sum of w*v over all features and atoms; dE/dv = w.
    """

    def __init__(self, w):
        self.w = np.asarray(w, dtype=float)

    def forward(self, v):
        return np.dot(self.w, v)

    def gradinp(self, v):
        return np.repeat(self.w[:, None], v.shape[1], axis=1)


@pytest.fixture
def cf():
    return CellFeature.from_elements(["A", "B"], p2=[2, 3], p3=[2],
                                     q3=[2], rcut2=3.5, rcut3=3.0)


@pytest.fixture
def cell():
    avec = np.array([[3.3, 0.0, 0.1],
                     [0.2, 3.5, 0.0],
                     [0.0, 0.1, 3.4]])
    frac = np.array([[0.05, 0.0, 0.02],
                     [0.5, 0.45, 0.5],
                     [0.2, 0.6, 0.1]])
    return Cell(avec, frac, ["A", "B", "A"], fractional=True)


@pytest.fixture
def model(cf, cell):
    v = feature_vector(cf, cell)
    models = [AtomicEnergyModel(cf.nfeatures, (6,), xt=(v.mean(axis=1),
                                                        v.std(axis=1)),
                                yt=(-1.0, 0.5), seed=s) for s in (0, 1)]
    return ModelEnsemble(models, weights=[0.3, 0.7])


def numerical_forces(calc, h=1e-6):
    x0 = calc.get_positions()
    out = np.zeros_like(x0)
    for i in range(len(x0)):
        for d in range(3):
            x = x0.copy()
            x[i, d] += h
            calc.set_positions(x)
            ep = calc.get_energy()
            x[i, d] -= 2*h
            calc.set_positions(x)
            em = calc.get_energy()
            out[i, d] = -(ep - em)/(2*h)
    calc.set_positions(x0)
    return out


@pytest.mark.parametrize("mode", ["one-pass", "two-pass"])
def test_forces(cf, cell, model, mode):
    calc = NNCalc(cell, cf, model, core=CoreRepulsion(1.0), mode=mode)
    forces = calc.get_forces()
    assert np.allclose(forces, numerical_forces(calc), atol=1e-5)
    # net force vanishes
    assert np.allclose(forces.sum(axis=0), 0.0, atol=1e-8)


def test_modes_agree(cf, cell, model):
    c1 = NNCalc(cell.copy(), cf, model, mode="one-pass")
    c2 = NNCalc(cell.copy(), cf, model, mode="two-pass")
    assert c1.get_energy() == pytest.approx(c2.get_energy())
    assert np.allclose(c1.get_forces(), c2.get_forces(), atol=1e-10)
    assert np.allclose(c1.get_stress(), c2.get_stress(), atol=1e-10)


def test_invalid_mode(cf, cell, model):
    with pytest.raises(ArgumentError):
        NNCalc(cell, cf, model, mode="three-pass")


def test_energy_is_cached(cf, cell, model):
    calc = NNCalc(cell, cf, model)
    e = calc.get_energy()
    fvec = calc.fvec
    assert calc.get_energy() == e
    assert calc.fvec is fvec
    calc.set_positions(cell.coords + 0.01)
    assert calc.fvec is fvec
    calc.get_energy()
    assert calc.fvec is not fvec


def test_pressure_sign(cf):
    """
    A purely repulsive model has positive pressure.
    """
    avec = np.identity(3)*3.0
    cell = Cell(avec, [[0, 0, 0], [0.5, 0.5, 0.5]], ["A", "A"],
                fractional=True)
    n1, n2, n3 = cf.feature_size
    w = np.zeros(cf.nfeatures)
    w[n1:n1 + n2] = 1.0
    calc = NNCalc(cell, cf, PairModel(w))
    assert calc.get_pressure_gpa() > 0.0


def test_variable_cell_gradient(cf, cell, model):
    calc = NNCalc(cell, cf, model, core=CoreRepulsion(1.0))
    vc = VariableCellCalc(calc, pressure_gpa=5.0)
    # move away from the reference cell
    x = vc.get_positions()
    x[-3:] *= 1.02
    x[-1, 0] += 0.05
    vc.set_positions(x)
    forces = vc.get_forces()
    assert forces.shape == (cell.natoms + 3, 3)
    assert np.allclose(forces, numerical_forces(vc), atol=1e-5)


def test_variable_cell_positions_roundtrip(cf, cell, model):
    calc = NNCalc(cell, cf, model)
    vc = VariableCellCalc(calc, cell_factor=2.0)
    x0 = vc.get_positions()
    assert np.allclose(x0[-3:], 2.0*np.identity(3))
    assert np.allclose(x0[:-3], cell.coords)
    x = x0.copy()
    x[-3:] = 2.0*np.array([[1.01, 0.0, 0.0],
                           [0.0, 0.99, 0.02],
                           [0.0, 0.0, 1.0]])
    vc.set_positions(x)
    assert np.allclose(vc.get_positions(), x)


def test_enthalpy(cf, cell, model):
    calc = NNCalc(cell, cf, model)
    vc = VariableCellCalc(calc, pressure_gpa=10.0)
    assert vc.get_energy() > calc.get_energy()
    assert vc.get_energy() - calc.get_energy() == pytest.approx(
        10.0/160.21766208*cell.volume)


def test_optimise_fixed_cell(cf):
    avec = np.identity(3)*6.0
    cell = Cell(avec, [[0, 0, 0], [1.5, 0.2, 0.0], [0.3, 1.6, 0.1]],
                ["A", "A", "A"])
    n1, n2, n3 = cf.feature_size
    w = np.zeros(cf.nfeatures)
    w[n1:n1 + n2] = 1.0
    calc = NNCalc(cell, cf, PairModel(w))
    e0 = calc.get_energy()
    res, traj = optimise(calc, gtol=1e-6, record_trajectory=True)
    assert calc.get_energy() < e0
    assert len(traj) > 0
    assert calc.get_energy() < 0.1*e0
    assert np.max(np.abs(calc.get_forces())) < 1e-2


def test_optimise_nonfinite(cf, cell):
    class BadModel(PairModel):
        def forward(self, v):
            return np.full(v.shape[1], np.nan)

    calc = NNCalc(cell, cf, BadModel(np.zeros(cf.nfeatures)))
    with pytest.raises(RelaxationError):
        optimise(calc)
