"""
Configuration of the iterative builder.

"""

import json
import os
from dataclasses import dataclass, field, fields, asdict
from typing import Any, Dict, List, Optional, Tuple

from ..exceptions import ArgumentError, ConfigurationError
from ..feature import FeatureOptions

__author__ = "The eddp developers"
__date__ = "2023-03-02"


@dataclass
class BuilderState:
    """
    State and options of the iterative builder.

    Attributes:
      iteration: Current generation; set from the working directory on
        start-up.
      workdir: Working directory holding all generations.
      seedfile: AIRSS seed for building random structures.
      seedfile_calc: Seed for the single point calculations (defaults to
        seedfile).
      max_iterations: Index of the last generation to train.
      per_generation: Number of relaxed structures per generation.
      per_generation_threshold: Fraction of the expected structures that
        must be evaluated before training.
      shake_per_minima: Number of shaken copies of each minimum.
      build_timeout: Timeout (s) of a single buildcell call.
      shake_amp: Displacement amplitude for shaking (Angstrom).
      shake_cell_amp: Strain amplitude for shaking the lattice.
      n_parallel: Number of parallel workers/evaluator instances.
      mpinp: MPI processes per external calculation.
      n_initial: Number of random structures of generation 0.
      dft_mode: Name of the external evaluator backend.
      dft_kwargs: Extra keyword arguments of the backend.
      relax_extra_opts: Extra keyword arguments of the relaxation.
      rss_pressure_gpa: Pressure of the random structure search.
      rss_niggli_reduce: Reduce the lattice of relaxed structures.
      core_size: Radius of the core repulsion used in relaxations.
      ensemble_std_min: Discard relaxed structures with a smaller
        ensemble standard deviation (eV/atom).
      ensemble_std_max: Discard relaxed structures with a larger ensemble
        standard deviation; negative values disable the bound.
      poll_interval: Seconds between readiness checks while waiting for
        external results.
      max_wait: Give up waiting after this many seconds (None: wait
        forever).
    """
    seedfile: str
    workdir: str = "."
    iteration: int = 0
    seedfile_calc: Optional[str] = None
    max_iterations: int = 5
    per_generation: int = 100
    per_generation_threshold: float = 0.98
    shake_per_minima: int = 10
    build_timeout: float = 1.0
    shake_amp: float = 0.02
    shake_cell_amp: float = 0.02
    n_parallel: int = 1
    mpinp: int = 2
    n_initial: int = 1000
    dft_mode: str = "castep"
    dft_kwargs: Dict[str, Any] = field(default_factory=dict)
    relax_extra_opts: Dict[str, Any] = field(default_factory=dict)
    rss_pressure_gpa: float = 0.1
    rss_niggli_reduce: bool = True
    core_size: float = 1.0
    ensemble_std_min: float = 0.0
    ensemble_std_max: float = -1.0
    poll_interval: float = 60.0
    max_wait: Optional[float] = None

    def __post_init__(self):
        if self.seedfile_calc is None:
            self.seedfile_calc = self.seedfile
        if self.max_iterations < 0:
            raise ConfigurationError("max_iterations must be >= 0")
        if not 0.0 < self.per_generation_threshold <= 1.0:
            raise ConfigurationError(
                "per_generation_threshold must be in ]0, 1]")
        for name in ("per_generation", "n_initial", "n_parallel", "mpinp"):
            if getattr(self, name) < 1:
                raise ConfigurationError("{} must be positive".format(name))
        if self.shake_per_minima < 0:
            raise ConfigurationError("shake_per_minima must be >= 0")


@dataclass
class TrainerOptions:
    """
    Options for training the ensemble of each generation.

    Attributes:
      energy_threshold: Discard structures more than this (eV/atom)
        above the lowest enthalpy per atom.
      nmax: Maximum number of structures used for training.
      nmodels: Number of models in the ensemble.
      max_iter: Maximum optimiser iterations per model.
      n_nodes: Hidden layer sizes.
      earlystop: Stop when the test error did not improve for this many
        iterations.
      show_progress: Log progress of the training.
      train_split: Fractions of the train, test and validation sets.
      use_test_for_ensemble: Fit the ensemble weights on the test set.
      seed: Random seed for splitting and initialisation.
    """
    energy_threshold: float = 10.0
    nmax: int = 3000
    nmodels: int = 256
    max_iter: int = 300
    n_nodes: List[int] = field(default_factory=lambda: [8])
    earlystop: int = 30
    show_progress: bool = False
    train_split: Tuple[float, float, float] = (0.8, 0.1, 0.1)
    use_test_for_ensemble: bool = True
    seed: Optional[int] = None

    def __post_init__(self):
        self.train_split = tuple(self.train_split)
        if len(self.train_split) != 3 or \
                abs(sum(self.train_split) - 1.0) > 1e-8:
            raise ConfigurationError(
                "train_split must be three fractions summing to one")
        if self.nmodels < 1:
            raise ConfigurationError("nmodels must be positive")


def _from_dict(cls, d, section):
    known = {f.name for f in fields(cls)}
    unknown = set(d) - known
    if unknown:
        raise ConfigurationError("Unknown option(s) in '{}': {}".format(
            section, ", ".join(sorted(unknown))))
    try:
        return cls(**d)
    except (TypeError, ArgumentError) as err:
        raise ConfigurationError("Invalid '{}' section: {}".format(
            section, err))


def load_builder_config(path):
    """
    Read a JSON document with the sections 'state', 'trainer' and
    'features'.  Relative paths of the seed files and the working
    directory are resolved against the location of the document.

    Returns:
      (BuilderState, TrainerOptions, FeatureOptions)
    """
    with open(path) as fp:
        doc = json.load(fp)
    for section in ("state", "features"):
        if section not in doc:
            raise ConfigurationError(
                "Missing section '{}' in {}".format(section, path))
    base = os.path.dirname(os.path.abspath(path))
    state_dict = dict(doc["state"])
    for key in ("workdir", "seedfile", "seedfile_calc"):
        if state_dict.get(key) is not None:
            state_dict[key] = os.path.join(base, state_dict[key])
    state = _from_dict(BuilderState, state_dict, "state")
    trainer = _from_dict(TrainerOptions, doc.get("trainer", {}), "trainer")
    features = _from_dict(FeatureOptions, doc["features"], "features")
    return state, trainer, features


def dump_builder_config(path, state, trainer, features):
    with open(path, "w") as fp:
        json.dump({"state": asdict(state), "trainer": asdict(trainer),
                   "features": asdict(features)}, fp, indent=2)
