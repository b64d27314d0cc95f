"""
Generation of candidate structures: random structures from an AIRSS
seed (`buildcell`), random structure search with a trained ensemble, and
shaking of the resulting minima.

"""

import datetime
import glob
import os
import subprocess
import uuid

import numpy as np
from tenacity import (RetryError, Retrying, retry_if_exception_type,
                      stop_after_attempt)
from tqdm import tqdm

from .. import config
from ..calculator import NNCalc, VariableCellCalc, optimise
from ..exceptions import (BuildError, CandidateRejected, FormatError,
                          RelaxationError)
from ..feature import feature_vector
from ..formats.res import ResParser, parse_res_lines
from ..gradient import CoreRepulsion
from ..log import logger
from ..util import ensure_dir, stem
from .pool import FingerprintSet, run_command, run_jobs

__author__ = "The eddp developers"
__date__ = "2023-03-02"

SHAKE_TAG = "-shake-"


def get_label(seedname):
    """
    Unique label '{seed}-{yy-mm-dd-HH-MM-SS}-{8 random hex digits}'.
    """
    dt = datetime.datetime.now().strftime("%y-%m-%d-%H-%M-%S")
    suffix = str(uuid.uuid4())[-8:]
    return "{}-{}-{}".format(seedname, dt, suffix)


def build_cell_text(seedfile, build_timeout=5.0, cancel_event=None):
    """
    SHELX text of one random structure: `buildcell < seed | cabal cell
    res`.

    Raises:
      BuildError if either program fails or times out
    """
    with open(seedfile) as fp:
        seed = fp.read()
    try:
        cell = run_command([config.executable("buildcell")], cancel_event,
                           timeout=build_timeout, stdin=seed)
        res = run_command([config.executable("cabal"), "cell", "res"],
                          cancel_event, timeout=build_timeout, stdin=cell)
    except subprocess.TimeoutExpired:
        raise BuildError("buildcell timed out after {} s".format(
            build_timeout))
    except subprocess.CalledProcessError as err:
        raise BuildError("{} exited with status {}".format(
            os.path.basename(err.cmd[0]), err.returncode))
    except OSError as err:
        raise BuildError("cannot run structure builder: {}".format(err))
    return res


def _log_retry(message):
    def log(retry_state):
        logger.warning("%s (attempt %d): %s", message,
                       retry_state.attempt_number,
                       retry_state.outcome.exception())
    return log


def _retrying(max_attempts, exceptions, message):
    return Retrying(stop=stop_after_attempt(max_attempts),
                    retry=retry_if_exception_type(exceptions),
                    before_sleep=_log_retry(message))


def _build_once(seedfile, build_timeout, cancel_event):
    text = build_cell_text(seedfile, build_timeout, cancel_event)
    cell = parse_res_lines(text.splitlines(), seedfile)
    cell.metadata['label'] = get_label(stem(seedfile))
    return cell


def build_cell(seedfile, build_timeout=5.0, cancel_event=None,
               max_attempts=999):
    """
    Build one random structure, retrying failed builds.

    Returns:
      Cell labelled with a new unique label

    Raises:
      BuildError when all attempts failed
    """
    retrying = _retrying(max_attempts, (BuildError, FormatError),
                         "buildcell failed to make the structure")
    try:
        return retrying(_build_once, seedfile, build_timeout, cancel_event)
    except RetryError as err:
        raise BuildError("No structure built in {} attempts: {}".format(
            max_attempts, err.last_attempt.exception()))


def build_one_cell(seedfile, outdir, build_timeout=5.0, cancel_event=None,
                   max_attempts=999):
    """
    Build one random structure and write it to '{outdir}/{label}.res'.

    Returns:
      path of the new file
    """
    cell = build_cell(seedfile, build_timeout, cancel_event, max_attempts)
    outpath = os.path.join(outdir, cell.metadata['label'] + ".res")
    ResParser().write(cell, outpath)
    return outpath


def build_cells(seedfile, outdir, num, build_timeout=5.0, n_parallel=1,
                max_attempts=999, show_progress=True):
    """
    Build `num` random structures in parallel.

    Returns:
      list of the written files
    """
    ensure_dir(outdir)

    def work(_, cancel_event):
        return build_one_cell(seedfile, outdir, build_timeout, cancel_event,
                              max_attempts)

    with tqdm(total=num, desc="Build", disable=not show_progress) as pbar:
        return run_jobs(work, lambda: None, num, n_parallel, progress=pbar)


class RelaxedCandidate(object):
    """
    A relaxed structure together with the mean feature vector used to
    detect duplicates and the ensemble uncertainty.
    """

    def __init__(self, cell, fingerprint, std, path=None):
        self.cell = cell
        self.fingerprint = fingerprint
        self.std = std
        self.path = path

    def __repr__(self):
        return "RelaxedCandidate({}, std={:.4f})".format(
            self.cell.metadata.get('label'), self.std)

    def write(self, outdir):
        self.path = os.path.join(outdir, self.cell.metadata['label'] + ".res")
        ResParser().write(self.cell, self.path)
        return self.path


def relax_cell(cell, ensemble, cf, core_size=1.0, pressure_gpa=0.0,
               **relax_opts):
    """
    Variable cell relaxation of `cell` (modified in place) with the
    ensemble.

    Returns:
      the NNCalc of the relaxed structure
    """
    core = CoreRepulsion(core_size) if core_size > 0 else None
    calc = NNCalc(cell, cf, ensemble, core=core)
    vc = VariableCellCalc(calc, pressure_gpa=pressure_gpa)
    res, _ = optimise(vc, **relax_opts)
    if not res.success:
        logger.debug("Relaxation did not converge: %s", res.message)
    cell.metadata['enthalpy'] = vc.get_energy()
    cell.metadata['pressure'] = calc.get_pressure_gpa()
    cell.metadata['volume'] = cell.volume
    cell.metadata['symm'] = "(P1)"
    return calc


def _std_ok(std, std_min, std_max):
    if std < std_min:
        return False
    if std_max > 0 and std > std_max:
        return False
    return True


def build_and_relax_one(seedfile, ensemble, cf, outdir=None,
                        build_timeout=5.0, core_size=1.0, pressure_gpa=0.0,
                        ensemble_std_min=0.0, ensemble_std_max=-1.0,
                        niggli_reduce=True, relax_opts=None,
                        cancel_event=None, max_attempts=999):
    """
    Build a random structure and relax it with the ensemble; repeated
    until a structure passes the uncertainty filter.

    Arguments:
      seedfile           AIRSS seed
      ensemble           ModelEnsemble used for the relaxation
      cf                 CellFeature of the ensemble
      outdir             write the structure to this directory (optional)
      ensemble_std_min   reject structures with a smaller per-atom
                         ensemble standard deviation
      ensemble_std_max   reject structures with a larger one (disabled
                         if negative)
      niggli_reduce      reduce the lattice of the relaxed structure

    Returns:
      RelaxedCandidate

    Raises:
      BuildError if no acceptable structure was obtained
    """
    relax_opts = relax_opts or {}

    def attempt():
        cell = build_cell(seedfile, build_timeout, cancel_event,
                          max_attempts)
        label = cell.metadata['label']
        try:
            calc = relax_cell(cell, ensemble, cf, core_size, pressure_gpa,
                              **relax_opts)
        except (RelaxationError, np.linalg.LinAlgError) as err:
            raise RelaxationError("{}: {}".format(label, err))
        std = ensemble.energy_std(calc.fvec)
        if not _std_ok(std, ensemble_std_min, ensemble_std_max):
            raise CandidateRejected(
                "{}: ensemble std {:.4f} eV/atom outside of the accepted "
                "range".format(label, std))
        fingerprint = calc.fvec.mean(axis=1)
        if niggli_reduce:
            cell = cell.reduced()
        candidate = RelaxedCandidate(cell, fingerprint, std)
        if outdir is not None:
            candidate.write(outdir)
        return candidate

    retrying = _retrying(max_attempts, (RelaxationError, CandidateRejected),
                         "Discarding relaxed structure")
    try:
        return retrying(attempt)
    except RetryError as err:
        raise BuildError("No acceptable structure in {} attempts: {}".format(
            max_attempts, err.last_attempt.exception()))


def existing_fingerprints(files, cf, tol):
    """
    FingerprintSet of already generated structures.
    """
    fps = FingerprintSet(tol)
    for fname in files:
        try:
            cell = ResParser().read(fname)
        except (FormatError, ValueError) as err:
            logger.warning("Skipping unreadable structure %s: %s",
                           fname, err)
            continue
        fps.add(feature_vector(cf, cell).mean(axis=1))
    return fps


def run_rss(seedfile, ensemble, cf, outdir, max=100, n_parallel=1,
            dedup_tol=1e-2, show_progress=True, **kwargs):
    """
    Random structure search with the ensemble.  Candidates are built and
    relaxed by worker threads; the coordinator writes a candidate only if
    its fingerprint is not within `dedup_tol` of a structure found
    before, otherwise a replacement is requested.

    Arguments:
      max     number of structures to generate
      kwargs  passed to build_and_relax_one()

    Returns:
      list of the written files
    """
    ensure_dir(outdir)
    previous = [f for f in glob.glob(os.path.join(outdir, "*.res"))
                if SHAKE_TAG not in os.path.basename(f)]
    fps = existing_fingerprints(previous, cf, dedup_tol)

    def work(_, cancel_event):
        return build_and_relax_one(seedfile, ensemble, cf,
                                   cancel_event=cancel_event, **kwargs)

    def accept(candidate):
        if not fps.add(candidate.fingerprint):
            return False
        candidate.write(outdir)
        return True

    with tqdm(total=max, desc="RSS", disable=not show_progress) as pbar:
        accepted = run_jobs(work, lambda: None, max, n_parallel,
                            accept=accept, progress=pbar)
    return [c.path for c in accepted]


def shake_res(files, nshake, amp, cell_amp=0.0, rng=None):
    """
    Write `nshake` randomly displaced copies of each structure as
    '{name}-shake-{i}.res' (i = 1..nshake).  Existing copies are not
    overwritten and files that are shaken copies themselves are skipped.

    Returns:
      list of the new files
    """
    if rng is None:
        rng = np.random.default_rng()
    parser = ResParser()
    written = []
    for fname in files:
        if SHAKE_TAG in os.path.basename(fname):
            continue
        cell = parser.read(fname)
        label = cell.metadata.get('label', stem(fname))
        for i in range(1, nshake + 1):
            outpath = os.path.splitext(fname)[0] + "{}{}.res".format(
                SHAKE_TAG, i)
            if os.path.exists(outpath):
                continue
            shaken = cell.copy().rattle(amp, cell_amp, rng)
            shaken.metadata['label'] = "{}{}{}".format(label, SHAKE_TAG, i)
            shaken.metadata['volume'] = shaken.volume
            parser.write(shaken, outpath)
            written.append(outpath)
    return written


class StructureGenerator(object):
    """
    Produces the input structures of a generation from the builder
    settings.

    Arguments:
      state   BuilderState
      cf      CellFeature used with the ensembles
    """

    def __init__(self, state, cf):
        self.state = state
        self.cf = cf

    def initial(self, outdir, num):
        """
        Random structures without relaxation (first generation).
        """
        return build_cells(self.state.seedfile, outdir, num,
                           build_timeout=self.state.build_timeout,
                           n_parallel=self.state.n_parallel)

    def search(self, outdir, num, ensemble):
        """
        Relaxed structures from a random search with the ensemble.
        """
        s = self.state
        return run_rss(s.seedfile, ensemble, self.cf, outdir, max=num,
                       n_parallel=s.n_parallel,
                       build_timeout=s.build_timeout,
                       core_size=s.core_size,
                       pressure_gpa=s.rss_pressure_gpa,
                       ensemble_std_min=s.ensemble_std_min,
                       ensemble_std_max=s.ensemble_std_max,
                       niggli_reduce=s.rss_niggli_reduce,
                       relax_opts=s.relax_extra_opts)

    def shake(self, outdir, rng=None):
        files = sorted(glob.glob(os.path.join(outdir, "*.res")))
        return shake_res(files, self.state.shake_per_minima,
                         self.state.shake_amp, self.state.shake_cell_amp,
                         rng)
