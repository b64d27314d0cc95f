"""
Iterative building of an ensemble model.

Each generation N passes through the phases

  generate   write candidate structures to gen{N}/
  evaluate   run the external evaluator, results go to gen{N}-dft/
  check      wait until enough structures have been evaluated
  train      fit an ensemble on the evaluated structures of 0..N
  persist    write ensemble-gen{N}.h5
  advance    continue with generation N+1

The working directory is the only state, so that an interrupted build
continues with the first generation that has no ensemble.

"""

import enum
import os
import time
import warnings

import numpy as np
import pandas as pd

from ..dataset import FeatureContainer, StructureContainer, TrainingResults
from ..exceptions import BuildError
from ..log import logger
from ..models import EnsembleTrainer
from ..util import ensure_dir
from .backends import get_backend
from .generate import SHAKE_TAG, StructureGenerator
from .repository import EnsembleArtifact, GenerationRepository

__author__ = "The eddp developers"
__date__ = "2023-03-02"


class Phase(enum.Enum):
    GENERATE = "generate"
    EVALUATE = "evaluate"
    CHECK = "check"
    TRAIN = "train"
    PERSIST = "persist"
    ADVANCE = "advance"


class Builder(object):
    """
    Drives the generations of an iterative build.

    Arguments:
      state              BuilderState
      cf                 CellFeature of all ensembles
      trainer_options    TrainerOptions
      repository         GenerationRepository (default: one for
                         state.workdir)
      trainer            object with train(train, test, valid) returning
                         a ModelEnsemble (default: EnsembleTrainer)
      backend            external evaluator instance (default: the
                         backend registered for state.dft_mode)
      generator          StructureGenerator-like object

    Raises:
      ConfigurationError if no evaluator backend exists for dft_mode

    """

    def __init__(self, state, cf, trainer_options, repository=None,
                 trainer=None, backend=None, generator=None):
        self.state = state
        self.cf = cf
        self.trainer_options = trainer_options
        self.repository = repository or GenerationRepository(state.workdir)
        self.state.workdir = self.repository.workdir
        self.trainer = trainer or EnsembleTrainer(trainer_options)
        if backend is None:
            backend = get_backend(state.dft_mode)(state, **state.dft_kwargs)
        self.backend = backend
        self.generator = generator or StructureGenerator(state, cf)
        self.phase = Phase.GENERATE
        self._set_iteration()
        self.uuid = self.repository.builder_uuid()

    def __str__(self):
        return ("Builder\n"
                "  Working directory: {}\n"
                "  Iteration: {}\n"
                "  Seed file: {}".format(self.state.workdir,
                                         self.state.iteration,
                                         self.state.seedfile))

    def _set_iteration(self):
        """
        Fast-forward to the first generation without ensemble.
        """
        self.state.iteration = self.repository.first_missing_artifact(
            self.state.max_iterations)
        if self.state.iteration > 0:
            logger.info("Resuming at iteration %d.", self.state.iteration)

    @property
    def done(self):
        return self.state.iteration > self.state.max_iterations

    def link(self):
        """
        Run generations until max_iterations has been trained.
        """
        while not self.done:
            self.step()
        logger.info("Iterative build completed.")
        return self

    def step(self):
        """
        Carry out one generation.
        """
        gen = self.state.iteration
        if self.has_ensemble(gen):
            self.phase = Phase.ADVANCE
            self.state.iteration += 1
            return self

        self.phase = Phase.GENERATE
        self._generate(gen)

        if not self.is_training_data_ready(gen):
            self.phase = Phase.EVALUATE
            logger.info("Starting energy calculations for iteration %d.",
                        gen)
            self._run_external(gen)
            self.phase = Phase.CHECK
            self._await(gen)
        ndft = self.repository.n_evaluated(gen)
        logger.info("Number of new structures in iteration %d: %d", gen,
                    ndft)
        if not self.is_training_data_ready(gen):
            if ndft == 0:
                raise BuildError(
                    "No evaluated structures for iteration {} in {}".format(
                        gen, self.repository.output_dir(gen)))
            logger.warning("Only %d of %d structures of iteration %d "
                           "were evaluated - training anyway.", ndft,
                           self.nexpected(gen), gen)

        self.phase = Phase.TRAIN
        logger.info("Starting training for iteration %d.", gen)
        artifact = self._perform_training(gen)

        self.phase = Phase.PERSIST
        path = self.repository.write_artifact(gen, artifact)
        logger.info("Ensemble of iteration %d saved to %s.", gen, path)

        self.phase = Phase.ADVANCE
        self.state.iteration += 1
        return self

    def _generate(self, gen):
        outdir = ensure_dir(self.repository.input_dir(gen))
        if gen == 0:
            if self.cf.nfeatures > self.state.n_initial:
                warnings.warn(
                    "The number of features ({}) is larger than the "
                    "initial training size ({})!".format(
                        self.cf.nfeatures, self.state.n_initial))
            nstruct = self.state.n_initial - self.repository.n_generated(0)
            if nstruct > 0:
                logger.info("Generating %d initial training structures.",
                            nstruct)
                self.generator.initial(outdir, nstruct)
        else:
            nminima = len([f for f in self.repository.matching_files(
                os.path.join("gen{}".format(gen), "*.res"))
                if SHAKE_TAG not in os.path.basename(f)])
            nstruct = self.state.per_generation - nminima
            if nstruct > 0:
                ensemble = self.load_ensemble(gen - 1)
                logger.info("Generating %d training structures for "
                            "iteration %d.", nstruct, gen)
                self.generator.search(outdir, nstruct, ensemble)
            logger.info("Shaking generated structures.")
            self.generator.shake(outdir)

    def _run_external(self, gen):
        outdir = ensure_dir(self.repository.output_dir(gen))
        self.backend.run(self.repository.input_dir(gen), outdir)

    def _await(self, gen):
        """
        Poll an asynchronous backend until the completed fraction reaches
        per_generation_threshold (or max_wait expired), then retrieve the
        results.
        """
        if not self.backend.asynchronous:
            return
        indir = self.repository.input_dir(gen)
        outdir = self.repository.output_dir(gen)
        threshold = self.state.per_generation_threshold
        start = time.monotonic()
        while True:
            ncomp, nall = self.backend.progress(indir, outdir)
            if nall > 0 and ncomp/nall + 1e-12 >= threshold:
                logger.info("%d/%d calculations completed - moving on.",
                            ncomp, nall)
                break
            if self.state.max_wait is not None and \
                    time.monotonic() - start > self.state.max_wait:
                logger.warning("Stopped waiting after %.0f s with %d/%d "
                               "calculations completed.",
                               self.state.max_wait, ncomp, nall)
                break
            logger.info("Completed calculations: %d/%d - waiting ...",
                        ncomp, nall)
            time.sleep(self.state.poll_interval)
        self.backend.retrieve(indir, outdir)

    def nexpected(self, gen=None):
        """
        Number of structures expected for a generation.
        """
        gen = self.state.iteration if gen is None else gen
        if gen == 0:
            return self.state.n_initial
        return self.state.per_generation*(self.state.shake_per_minima + 1)

    def is_training_data_ready(self, gen=None):
        """
        True if the fraction of evaluated structures reaches
        per_generation_threshold.
        """
        gen = self.state.iteration if gen is None else gen
        if not os.path.isdir(self.repository.output_dir(gen)):
            return False
        ndft = self.repository.n_evaluated(gen)
        return ndft/self.nexpected(gen) + 1e-12 >= \
            self.state.per_generation_threshold

    def _perform_training(self, gen):
        """
        Train on the evaluated structures of all generations up to gen.
        """
        opts = self.trainer_options
        fc = self.load_features(*range(gen + 1),
                                show_progress=opts.show_progress)
        if len(fc) == 0:
            raise BuildError("No usable training structures for iteration "
                             "{}".format(gen))
        train, test, valid = fc.split(*opts.train_split, seed=opts.seed)
        logger.info("Training on %d structures (%d test, %d validation).",
                    len(train), len(test), len(valid))
        ensemble = self.trainer.train(train, test, valid)
        return EnsembleArtifact(ensemble, self.cf,
                                train_labels=train.labels,
                                test_labels=test.labels,
                                valid_labels=valid.labels,
                                builder_uuid=self.uuid, generation=gen)

    def has_ensemble(self, gen=None):
        gen = self.state.iteration if gen is None else gen
        return self.repository.has_artifact(gen)

    def load_ensemble(self, gen=None):
        gen = self.state.iteration if gen is None else gen
        return self.repository.read_artifact(gen).ensemble

    def load_structures(self, *gens):
        """
        Evaluated structures of the given generations (default: 0 to the
        current one).
        """
        if len(gens) == 0:
            gens = range(self.state.iteration + 1)
        patterns = [os.path.join(self.repository.output_dir(g), "*.res")
                    for g in gens]
        return StructureContainer(
            patterns, threshold=self.trainer_options.energy_threshold)

    def load_features(self, *gens, show_progress=True):
        sc = self.load_structures(*gens)
        return FeatureContainer.from_structures(
            sc, self.cf, nmax=self.trainer_options.nmax,
            show_progress=show_progress)

    def summarise(self):
        """
        Number of generated and evaluated structures and the ensemble
        status of each generation.

        Returns:
          pandas DataFrame indexed by iteration
        """
        rows = []
        for gen in range(self.state.max_iterations + 1):
            rows.append({
                "iteration": gen,
                "generated": self.repository.n_generated(gen),
                "evaluated": self.repository.n_evaluated(gen),
                "expected": self.nexpected(gen),
                "ready": self.is_training_data_ready(gen),
                "ensemble": self.has_ensemble(gen)})
        table = pd.DataFrame(rows).set_index("iteration")
        logger.info("Total training structures: %d",
                    int(np.sum(table["evaluated"])))
        return table

    def walk_forward_tests(self, check_training_data=False,
                           show_progress=False):
        """
        Predict the structures of generation N+1 with the ensemble of
        generation N.

        Returns:
          dictionary {N: TrainingResults}
        """
        results = {}
        for gen in range(self.state.iteration):
            if check_training_data:
                if not self.is_training_data_ready(gen + 1):
                    continue
            elif self.repository.n_evaluated(gen + 1) < 1:
                continue
            if not self.has_ensemble(gen):
                break
            logger.info("Testing the ensemble of generation %d on "
                        "generation %d.", gen, gen + 1)
            fc = self.load_features(gen + 1, show_progress=show_progress)
            results[gen] = TrainingResults(self.load_ensemble(gen), fc)
            logger.info("%s", results[gen])
        return results
