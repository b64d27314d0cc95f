"""
Neural network models of atomic energies and ensembles thereof.

The feature engine only relies on the narrow interface

  forward(v) -> per-atom energies, shape (natoms,)
  gradinp(v) -> dE/dv of the total energy, shape (nfeatures, natoms)

where v is the feature matrix of a structure with shape
(nfeatures, natoms).  Models are implemented with PyTorch; parameters are
kept in float64 so that forces are consistent with finite differences.
"""

from typing import Dict, List, Optional, Sequence

import numpy as np
import tables as tb
import torch
import torch.nn as nn
from scipy.optimize import nnls

from .exceptions import ArgumentError
from .log import logger

__author__ = "The eddp developers"
__date__ = "2023-03-02"

STD_TOL = 1.0e-8

ACTIVATIONS: Dict[str, type] = {
    "linear": nn.Identity,
    "tanh": nn.Tanh,
    "sigmoid": nn.Sigmoid,
}


def build_mlp(n_features: int, n_nodes: Sequence[int],
              activation: str = "tanh") -> nn.Sequential:
    """
    Build a fully connected network mapping (F) -> (1).

    Parameters
    ----------
    n_features : int
        Input dimension.
    n_nodes : sequence of int
        Hidden layer sizes.
    activation : str
        Activation of all hidden layers.

    Raises
    ------
    ArgumentError
        On unsupported activation or empty architecture.
    """
    act = activation.lower()
    if act not in ACTIVATIONS:
        raise ArgumentError(
            f"Unsupported activation '{activation}'. "
            f"Supported: {sorted(ACTIVATIONS)}")
    if len(n_nodes) == 0:
        raise ArgumentError("At least one hidden layer is required.")
    layers: List[nn.Module] = []
    n_in = n_features
    for n in n_nodes:
        layers.append(nn.Linear(n_in, int(n)))
        layers.append(ACTIVATIONS[act]())
        n_in = int(n)
    layers.append(nn.Linear(n_in, 1))
    return nn.Sequential(*layers).double()


class AtomicEnergyModel:
    """
    MLP for per-atom energies with normalisation of inputs and outputs.

    Parameters
    ----------
    n_features : int
        Length of the feature vector of an atom.
    n_nodes : sequence of int
        Hidden layer sizes.
    activation : str
        Hidden layer activation.
    xt : tuple of ndarray, optional
        (mean, std) of the features used to normalise the inputs.
    yt : tuple of float, optional
        (mean, std) of the per-atom energies.
    seed : int, optional
        Seed for the parameter initialisation.
    """

    def __init__(self, n_features: int, n_nodes: Sequence[int] = (8,),
                 activation: str = "tanh", xt=None, yt=None,
                 seed: Optional[int] = None):
        self.n_features = int(n_features)
        self.n_nodes = [int(n) for n in n_nodes]
        self.activation = activation
        if seed is None:
            self.net = build_mlp(self.n_features, self.n_nodes, activation)
        else:
            # seeded initialisation leaves the global torch RNG untouched
            with torch.random.fork_rng(devices=[]):
                torch.manual_seed(seed)
                self.net = build_mlp(self.n_features, self.n_nodes,
                                     activation)
        if xt is None:
            xt = (np.zeros(self.n_features), np.ones(self.n_features))
        if yt is None:
            yt = (0.0, 1.0)
        self.set_normalisation(xt, yt)

    def set_normalisation(self, xt, yt):
        xmean, xstd = (np.asarray(a, dtype=float) for a in xt)
        # features that are constant up to round-off are only shifted
        xstd = np.where(xstd > STD_TOL*np.maximum(1.0, np.abs(xmean)),
                        xstd, 1.0)
        ymean, ystd = float(yt[0]), float(yt[1])
        if not ystd > STD_TOL*max(1.0, abs(ymean)):
            ystd = 1.0
        self.xt = (xmean, xstd)
        self.yt = (ymean, ystd)
        self._xmean = torch.as_tensor(xmean, dtype=torch.float64)
        self._xstd = torch.as_tensor(xstd, dtype=torch.float64)

    def reinit(self, seed: Optional[int] = None) -> "AtomicEnergyModel":
        """
        New model with the same architecture and normalisation.
        """
        return AtomicEnergyModel(self.n_features, self.n_nodes,
                                 self.activation, self.xt, self.yt, seed)

    def atomic_energies(self, x: torch.Tensor) -> torch.Tensor:
        """
        Per-atom energies for x with shape (natoms, nfeatures).
        """
        y = self.net((x - self._xmean)/self._xstd).squeeze(-1)
        return y*self.yt[1] + self.yt[0]

    def _check(self, v):
        v = np.asarray(v, dtype=float)
        if v.ndim != 2 or v.shape[0] != self.n_features:
            raise ArgumentError(
                f"Expected features of shape ({self.n_features}, natoms), "
                f"got {v.shape}")
        return v

    def forward(self, v) -> np.ndarray:
        v = self._check(v)
        with torch.no_grad():
            x = torch.as_tensor(v.T.copy())
            return self.atomic_energies(x).numpy()

    def energy(self, v) -> float:
        return float(np.sum(self.forward(v)))

    def gradinp(self, v) -> np.ndarray:
        """
        Gradient of the total energy with respect to the features.
        """
        v = self._check(v)
        x = torch.as_tensor(v.T.copy()).requires_grad_(True)
        e = self.atomic_energies(x).sum()
        (grad,) = torch.autograd.grad(e, x)
        return grad.numpy().T.copy()

    def parameters(self):
        return list(self.net.parameters())

    def get_arrays(self) -> List[np.ndarray]:
        return [p.detach().numpy().copy() for p in self.net.parameters()]

    def set_arrays(self, arrays: List[np.ndarray]):
        params = list(self.net.parameters())
        if len(params) != len(arrays):
            raise ArgumentError("Parameter arrays do not match the network.")
        with torch.no_grad():
            for p, a in zip(params, arrays):
                p.copy_(torch.as_tensor(np.asarray(a, dtype=float)))


class ModelEnsemble:
    """
    Weighted average of several models.

    Parameters
    ----------
    models : list of AtomicEnergyModel
    weights : array-like, optional
        Non-negative weights; uniform if not given.
    """

    def __init__(self, models: List[AtomicEnergyModel], weights=None):
        if len(models) == 0:
            raise ArgumentError("An ensemble needs at least one model.")
        self.models = list(models)
        if weights is None:
            weights = np.ones(len(models))
        weights = np.asarray(weights, dtype=float)
        if weights.sum() <= 0.0:
            weights = np.ones(len(models))
        self.weights = weights/weights.sum()

    def __len__(self):
        return len(self.models)

    @property
    def n_features(self):
        return self.models[0].n_features

    def forward(self, v) -> np.ndarray:
        return sum(w*m.forward(v) for w, m in zip(self.weights, self.models))

    def energy(self, v) -> float:
        return float(np.sum(self.forward(v)))

    def gradinp(self, v) -> np.ndarray:
        return sum(w*m.gradinp(v) for w, m in zip(self.weights, self.models))

    def energy_std(self, v) -> float:
        """
        Weighted standard deviation of the per-atom energy predicted by
        the members of the ensemble.
        """
        v = np.asarray(v)
        natoms = v.shape[1]
        e = np.array([m.energy(v)/natoms for m in self.models])
        mean = np.dot(self.weights, e)
        return float(np.sqrt(np.dot(self.weights, (e - mean)**2)))

    def to_hdf5(self, h5file, where="/", name="ensemble"):
        """
        Store the ensemble in an open PyTables file.
        """
        group = h5file.create_group(where, name, "Model ensemble")
        group._v_attrs.n_models = len(self.models)
        group._v_attrs.n_features = self.n_features
        group._v_attrs.n_nodes = list(self.models[0].n_nodes)
        group._v_attrs.activation = self.models[0].activation
        h5file.create_array(group, "weights", self.weights)
        for i, model in enumerate(self.models):
            mgroup = h5file.create_group(group, "model_{:04d}".format(i))
            h5file.create_array(mgroup, "xmean", model.xt[0])
            h5file.create_array(mgroup, "xstd", model.xt[1])
            h5file.create_array(mgroup, "yt", np.array(model.yt))
            for k, arr in enumerate(model.get_arrays()):
                h5file.create_array(mgroup, "param_{:02d}".format(k), arr)
        return group

    @classmethod
    def from_hdf5(cls, h5file, where="/ensemble"):
        group = h5file.get_node(where)
        attrs = group._v_attrs
        n_features = int(attrs.n_features)
        n_nodes = [int(n) for n in attrs.n_nodes]
        activation = str(attrs.activation)
        models = []
        for i in range(int(attrs.n_models)):
            mgroup = h5file.get_node(group, "model_{:04d}".format(i))
            yt = mgroup.yt.read()
            model = AtomicEnergyModel(
                n_features, n_nodes, activation,
                xt=(mgroup.xmean.read(), mgroup.xstd.read()),
                yt=(yt[0], yt[1]))
            names = sorted(n for n in mgroup._v_children
                           if n.startswith("param_"))
            model.set_arrays([mgroup._f_get_child(n).read() for n in names])
            models.append(model)
        return cls(models, weights=group.weights.read())

    def save(self, filename):
        with tb.open_file(filename, mode="w", title="EDDP ensemble") as h5:
            self.to_hdf5(h5)

    @classmethod
    def load(cls, filename):
        with tb.open_file(filename, mode="r") as h5:
            return cls.from_hdf5(h5)


def _stack(fc):
    """
    Concatenate the features of all structures of a FeatureContainer.

    Returns
    -------
    x : torch.Tensor (total atoms, nfeatures)
    index : torch.Tensor, structure index of each atom
    """
    x = np.concatenate([v.T for v in fc.fvecs], axis=0)
    index = np.concatenate([np.full(v.shape[1], i)
                            for i, v in enumerate(fc.fvecs)])
    return torch.as_tensor(x), torch.as_tensor(index, dtype=torch.long)


def _per_atom_prediction(model, x, index, natoms):
    e_atoms = model.atomic_energies(x)
    e = torch.zeros(len(natoms), dtype=torch.float64)
    e = e.index_add(0, index, e_atoms)
    return e/natoms


def train_model(model: AtomicEnergyModel, train, test=None,
                max_iter: int = 300, earlystop: int = 30) -> Dict:
    """
    Fit a model to the per-atom enthalpies of a FeatureContainer with
    full-batch L-BFGS.  Training stops early if the test RMSE has not
    improved for `earlystop` iterations; the best parameters are kept.

    Returns
    -------
    dict with the training history ('train_rmse', 'test_rmse').
    """
    x, index = _stack(train)
    target = torch.as_tensor(train.H/train.natoms)
    natoms = torch.as_tensor(train.natoms, dtype=torch.float64)
    if test is not None and len(test) > 0:
        x_t, index_t = _stack(test)
        target_t = torch.as_tensor(test.H/test.natoms)
        natoms_t = torch.as_tensor(test.natoms, dtype=torch.float64)
    else:
        test = None

    optimizer = torch.optim.LBFGS(model.net.parameters(), max_iter=1,
                                  line_search_fn="strong_wolfe")

    def closure():
        optimizer.zero_grad()
        pred = _per_atom_prediction(model, x, index, natoms)
        loss = torch.mean((pred - target)**2)
        loss.backward()
        return loss

    history = {"train_rmse": [], "test_rmse": []}
    best = (np.inf, model.get_arrays())
    nstall = 0
    for _ in range(max_iter):
        loss = optimizer.step(closure)
        history["train_rmse"].append(float(torch.sqrt(loss)))
        if test is None:
            continue
        with torch.no_grad():
            pred_t = _per_atom_prediction(model, x_t, index_t, natoms_t)
            rmse = float(torch.sqrt(torch.mean((pred_t - target_t)**2)))
        history["test_rmse"].append(rmse)
        if rmse < best[0]:
            best = (rmse, model.get_arrays())
            nstall = 0
        else:
            nstall += 1
            if nstall >= earlystop:
                break
    if test is not None:
        model.set_arrays(best[1])
    return history


def ensemble_weights(models, fc) -> np.ndarray:
    """
    Non-negative least squares weights reproducing the per-atom
    enthalpies of `fc` by a combination of the models.
    """
    A = np.array([[m.energy(v)/n for m in models]
                  for v, n in zip(fc.fvecs, fc.natoms)])
    b = fc.H/fc.natoms
    weights, _ = nnls(A, b)
    if weights.sum() <= 0.0:
        weights = np.ones(len(models))
    return weights


class EnsembleTrainer:
    """
    Trains an ensemble of independently initialised models.

    Parameters
    ----------
    options : TrainerOptions
        Number of models, architecture and stopping criteria.
    """

    def __init__(self, options):
        self.options = options

    def train(self, train, test, valid=None) -> ModelEnsemble:
        opts = self.options
        xt, yt = train.xt, train.yt
        rng = np.random.default_rng(opts.seed)
        models = []
        for i in range(opts.nmodels):
            model = AtomicEnergyModel(
                train.nfeatures, opts.n_nodes, xt=xt, yt=yt,
                seed=int(rng.integers(2**31)))
            history = train_model(model, train, test,
                                  max_iter=opts.max_iter,
                                  earlystop=opts.earlystop)
            if opts.show_progress:
                logger.info("Model %d/%d: train RMSE %.5f eV/atom", i + 1,
                            opts.nmodels, history["train_rmse"][-1])
            models.append(model)
        ref = test if (opts.use_test_for_ensemble and len(test) > 0) \
            else train
        return ModelEnsemble(models, ensemble_weights(models, ref))
