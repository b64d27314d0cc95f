"""
External evaluators computing reference energies for generated
structures.

Each backend reads the `*.res` files of an input directory and, on
success, writes one evaluated `.res` file with the same base name into
the output directory.  Backends are looked up by name with
`get_backend()`; new ones can be added with `register_backend()`.

"""

import glob
import json
import os
import shutil
import socket
import subprocess
from abc import ABCMeta, abstractmethod

from .. import config
from ..exceptions import ConfigurationError, ExternalToolError
from ..formats.castep import CastepCellParser
from ..formats.res import ResParser
from ..log import logger
from ..util import ensure_dir, stem, swapext
from .pool import map_jobs, run_command

__author__ = "The eddp developers"
__date__ = "2023-03-02"

BACKENDS = {}


def register_backend(cls):
    """
    Register an evaluator backend class under its `name`.  Can be used as
    a class decorator.
    """
    if not cls.name:
        raise ConfigurationError(
            "Backend {} has no name.".format(cls.__name__))
    BACKENDS[cls.name] = cls
    return cls


def get_backend(mode):
    """
    Backend class for the evaluator mode `mode`.

    Raises:
      ConfigurationError if no backend is registered under that name
    """
    try:
        return BACKENDS[mode]
    except KeyError:
        raise ConfigurationError(
            "Cannot find external code to run for generating training "
            "data: no evaluator backend for dft_mode '{}' (available: {})"
            .format(mode, ", ".join(sorted(BACKENDS))))


def res_files(directory):
    return sorted(glob.glob(os.path.join(directory, "*.res")))


class EvaluatorBackend(metaclass=ABCMeta):
    """
    Base class of the external evaluators.

    Arguments:
      state     BuilderState with workdir, seed files, n_parallel and
                mpinp
      kwargs    backend specific options (BuilderState.dft_kwargs)

    Class Attributes:
      name          name used as dft_mode
      asynchronous  True if run() only submits the calculations, so that
                    progress() must be polled until enough are complete
                    and retrieve() collects the results

    """

    name = None
    asynchronous = False

    def __init__(self, state, **kwargs):
        self.state = state
        self.options = kwargs

    @abstractmethod
    def run(self, indir, outdir):
        pass

    def progress(self, indir, outdir):
        """
        (completed, total) number of calculations.
        """
        return len(res_files(outdir)), len(res_files(indir))

    def retrieve(self, indir, outdir):
        pass


@register_backend
class CrudBackend(EvaluatorBackend):
    """
    CASTEP single points with `crud.pl`.  The structures are staged in
    `{workdir}/hopper`; several crud.pl instances take jobs from there
    and put the finished ones into `{workdir}/good_castep`.  The seed
    files `SEED.cell` and `SEED.param` must be present in the working
    directory.

    """

    name = "castep"

    def run(self, indir, outdir):
        workdir = self.state.workdir
        hopper = ensure_dir(os.path.join(workdir, "hopper"))
        good = os.path.join(workdir, "good_castep")
        ensure_dir(outdir)
        infiles = res_files(indir)
        pending = [f for f in infiles if not os.path.isfile(
            os.path.join(outdir, os.path.basename(f)))]
        for fname in pending:
            shutil.copy(fname, os.path.join(hopper, os.path.basename(fname)))
        logger.info("Running %d crud.pl instance(s) for %d structures.",
                    self.state.n_parallel, len(pending))
        cmd = [config.executable("crud"), "-singlepoint", "-mpinp",
               str(self.state.mpinp)]
        cmd += [str(x) for x in self.options.get("extra_args", [])]

        def work(_, cancel_event):
            return run_command(cmd, cancel_event, cwd=workdir)

        for res in map_jobs(work, range(self.state.n_parallel),
                            self.state.n_parallel):
            if not res.ok:
                logger.warning("crud.pl instance %d failed: %s",
                               res.job_id, res.error)
        self.collect(infiles, good, outdir)

    @staticmethod
    def collect(infiles, good, outdir):
        """
        Copy results of the given inputs from good_castep to outdir.
        """
        ncopied = 0
        for fname in infiles:
            for ext in (".res", ".castep"):
                src = os.path.join(good, stem(fname) + ext)
                if os.path.isfile(src):
                    shutil.copy(src, os.path.join(outdir, stem(fname) + ext))
                    if ext == ".res":
                        ncopied += 1
        return ncopied


def parse_pp3_output(text):
    """
    Enthalpy and pressure from the standard output of pp3.

    Returns:
      (enthalpy, pressure)
    """
    enthalpy = None
    pressure = None
    for line in text.splitlines():
        tokens = line.split()
        if len(tokens) == 0:
            continue
        if "Enthalpy" in line:
            enthalpy = float(tokens[-1])
        elif "Pressure" in line:
            pressure = float(tokens[-1])
    if enthalpy is None:
        raise ExternalToolError("No enthalpy found in pp3 output.")
    return enthalpy, (0.0 if pressure is None else pressure)


@register_backend
class PP3Backend(EvaluatorBackend):
    """
    Pair potential single points with `pp3`, run in `{workdir}/.pp3_work`.
    The potential is taken from the `.pp` file next to seedfile_calc.

    Options:
      keep   keep the intermediate files

    """

    name = "pp3"

    def run(self, indir, outdir):
        workdir = ensure_dir(os.path.join(self.state.workdir, ".pp3_work"))
        ensure_dir(outdir)
        pp_file = swapext(self.state.seedfile_calc, ".pp")
        keep = self.options.get("keep", False)
        files = [f for f in res_files(indir) if not os.path.isfile(
            os.path.join(outdir, os.path.basename(f)))]

        def work(fname, cancel_event):
            return self.single_point(fname, workdir, outdir, pp_file,
                                     cancel_event, keep)

        for res in map_jobs(work, files, self.state.n_parallel):
            if not res.ok:
                logger.warning("Failed to calculate energy for %s (%s): %s",
                               files[res.job_id],
                               type(res.error).__name__, res.error)

    @staticmethod
    def single_point(fname, workdir, outdir, pp_file, cancel_event=None,
                     keep=False):
        cell = ResParser().read(fname)
        base = os.path.join(workdir, stem(fname))
        CastepCellParser().write(cell, base + ".cell")
        shutil.copy(pp_file, base + ".pp")
        try:
            out = run_command([config.executable("pp3"), "-n", base],
                              cancel_event, cwd=workdir)
            enthalpy, pressure = parse_pp3_output(out)
        except subprocess.CalledProcessError as err:
            raise ExternalToolError("pp3 failed", err.returncode)
        finally:
            if not keep:
                for ext in (".cell", ".conv", "-out.cell", ".pp"):
                    if os.path.isfile(base + ext):
                        os.remove(base + ext)
        cell.metadata['enthalpy'] = enthalpy
        cell.metadata['pressure'] = pressure
        cell.metadata['volume'] = cell.volume
        cell.metadata['label'] = stem(fname)
        outpath = os.path.join(outdir, os.path.basename(fname))
        ResParser().write(cell, outpath)
        return outpath


def _first_value(obj):
    while isinstance(obj, dict):
        if len(obj) == 0:
            return None
        obj = next(iter(obj.values()))
    return obj


def parse_disp_output(json_string):
    """
    Parse the output of `disp db summary --json`.  The counts are
    nested one or two levels below keys containing RES, ALL or
    COMPLETED; entries that do not follow this pattern are ignored.

    Returns:
      dictionary with (some of) the keys "RES", "ALL", "COMPLETED"

    Raises:
      ExternalToolError if the output is not valid JSON
    """
    data = {}
    if "No data" in json_string:
        return data
    try:
        doc = json.loads(json_string)
    except json.JSONDecodeError as err:
        raise ExternalToolError(
            "Cannot parse the output of disp: {}".format(err))
    if not isinstance(doc, dict):
        logger.warning("Unexpected disp summary: %s", json_string[:200])
        return data
    for key, value in doc.items():
        for name in ("RES", "ALL", "COMPLETED"):
            if name in key:
                count = _first_value(value)
                try:
                    data[name] = int(count)
                except (TypeError, ValueError):
                    logger.warning("Ignoring disp entry %s: %r", key, value)
                break
    return data


@register_backend
class DispBackend(EvaluatorBackend):
    """
    CASTEP single points submitted through DISP.  The calculations are
    run asynchronously; results are retrieved once enough of them are
    complete.

    Options:
      categories       list of DISP categories (required)
      priority         job priority (default 90)
      project_prefix   prefix of the project name (default 'eddp')
      monitor_only     do not submit, only watch the project

    """

    name = "disp-castep"
    asynchronous = True

    def project_name(self, indir):
        prefix = self.options.get("project_prefix", "eddp")
        return "/".join([socket.gethostname(), prefix,
                         os.path.abspath(indir).lstrip(os.sep)])

    def completed_jobs(self, project):
        """
        (completed, total) as reported by DISP; total is -1 for unknown
        projects.
        """
        out = run_command([config.executable("disp"), "db", "summary",
                           "--singlepoint", "--project", project, "--json"])
        data = parse_disp_output(out)
        return data.get("COMPLETED", 0), data.get("ALL", -1)

    def deploy_command(self, indir):
        seed = os.path.splitext(self.state.seedfile_calc)[0]
        cmd = [config.executable("disp"), "deploy", "singlepoint",
               "--seed", os.path.basename(seed),
               "--base-cell", seed + ".cell",
               "--param", seed + ".param",
               "--cell", os.path.join(indir, "*.res"),
               "--project", self.project_name(indir),
               "--priority", str(self.options.get("priority", 90))]
        categories = self.options.get("categories")
        if not categories:
            raise ConfigurationError(
                "The disp-castep backend requires 'categories' in "
                "dft_kwargs.")
        for category in categories:
            cmd += ["--category", category]
        return cmd

    def run(self, indir, outdir):
        if self.options.get("monitor_only", False):
            logger.info("Not launching jobs - only watching for completion")
            return
        project = self.project_name(indir)
        ncomp, nall = self.completed_jobs(project)
        if nall == -1:
            cmd = self.deploy_command(indir)
            logger.info("Command to be run: %s", " ".join(cmd))
            try:
                run_command(cmd)
            except subprocess.CalledProcessError as err:
                raise ExternalToolError(
                    "disp deploy failed: {}".format(err.stderr),
                    err.returncode)
        else:
            logger.info("%d out of %d jobs already completed - monitoring "
                        "the progress.", ncomp, nall)

    def progress(self, indir, outdir):
        ncomp, nall = self.completed_jobs(self.project_name(indir))
        return ncomp, max(nall, 0)

    def retrieve(self, indir, outdir):
        ensure_dir(outdir)
        run_command([config.executable("disp"), "db", "retrieve-project",
                     "--project", self.project_name(indir)], cwd=outdir)
        logger.info("Calculation results pulled into %s.", outdir)
