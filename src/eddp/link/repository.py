"""
File system layout of an iterative build.

  {workdir}/gen{N}/*.res          structures generated for generation N
  {workdir}/gen{N}-dft/*.res      structures evaluated by the external code
  {workdir}/ensemble-gen{N}.h5    ensemble trained on generations 0..N
  {workdir}/.eddp_builder         identifier of the build

No state is kept elsewhere, so that a build can be resumed by inspecting
the working directory.

"""

import datetime
import glob
import json
import os
import uuid
from dataclasses import dataclass, field
from typing import List, Optional

import tables as tb

from ..exceptions import FormatError
from ..feature import CellFeature
from ..models import ModelEnsemble
from ..util import ensure_dir

__author__ = "The eddp developers"
__date__ = "2023-03-02"


@dataclass
class EnsembleArtifact:
    """
    Everything produced by the training step of one generation.
    """
    ensemble: ModelEnsemble
    cf: CellFeature
    train_labels: List[str] = field(default_factory=list)
    test_labels: List[str] = field(default_factory=list)
    valid_labels: List[str] = field(default_factory=list)
    builder_uuid: Optional[str] = None
    generation: Optional[int] = None


def _write_labels(h5file, group, name, labels):
    table = h5file.create_table(
        group, name, {"label": tb.StringCol(itemsize=256)},
        "Structure labels of the {} set".format(name))
    for label in labels:
        table.row['label'] = label
        table.row.append()
    table.flush()


def _read_labels(group, name):
    return [x.decode() for x in group._f_get_child(name).read()['label']]


def write_artifact_file(path, artifact):
    """
    Write an EnsembleArtifact to an HDF5 file.  The file is written under
    a temporary name and moved into place, so that an existing path
    always refers to a complete artifact.

    """
    tmp = path + ".tmp"
    with tb.open_file(tmp, mode='w', title='EDDP ensemble') as h5file:
        attrs = h5file.root._v_attrs
        attrs.cellfeature = json.dumps(artifact.cf.to_dict())
        attrs.builder_uuid = artifact.builder_uuid or ""
        attrs.generation = (-1 if artifact.generation is None
                            else artifact.generation)
        attrs.created = datetime.datetime.now().isoformat()
        artifact.ensemble.to_hdf5(h5file, "/", "ensemble")
        labels = h5file.create_group("/", "labels", "Data partitions")
        _write_labels(h5file, labels, "train", artifact.train_labels)
        _write_labels(h5file, labels, "test", artifact.test_labels)
        _write_labels(h5file, labels, "valid", artifact.valid_labels)
    os.replace(tmp, path)


def read_artifact_file(path):
    try:
        with tb.open_file(path, mode='r') as h5file:
            attrs = h5file.root._v_attrs
            cf = CellFeature.from_dict(json.loads(attrs.cellfeature))
            ensemble = ModelEnsemble.from_hdf5(h5file, "/ensemble")
            labels = h5file.root.labels
            generation = int(attrs.generation)
            return EnsembleArtifact(
                ensemble, cf,
                train_labels=_read_labels(labels, "train"),
                test_labels=_read_labels(labels, "test"),
                valid_labels=_read_labels(labels, "valid"),
                builder_uuid=str(attrs.builder_uuid) or None,
                generation=None if generation < 0 else generation)
    except (tb.NoSuchNodeError, AttributeError, KeyError) as err:
        raise FormatError("Incomplete ensemble archive: {}".format(err),
                          path)


class GenerationRepository(object):
    """
    Access to the generation-indexed working directory.

    Arguments:
      workdir   path of the working directory (created if necessary)

    """

    def __init__(self, workdir):
        self.workdir = os.path.abspath(workdir)
        ensure_dir(self.workdir)

    def __repr__(self):
        return "GenerationRepository({})".format(self.workdir)

    def path(self, *parts):
        return os.path.join(self.workdir, *parts)

    def input_dir(self, gen):
        return self.path("gen{}".format(gen))

    def output_dir(self, gen):
        return self.path("gen{}-dft".format(gen))

    def artifact_path(self, gen):
        return self.path("ensemble-gen{}.h5".format(gen))

    def has_artifact(self, gen):
        return os.path.isfile(self.artifact_path(gen))

    def write_artifact(self, gen, artifact):
        artifact.generation = gen
        write_artifact_file(self.artifact_path(gen), artifact)
        return self.artifact_path(gen)

    def read_artifact(self, gen):
        return read_artifact_file(self.artifact_path(gen))

    def count_matching_files(self, pattern):
        """
        Number of files matching a glob pattern relative to workdir.
        """
        return len(glob.glob(self.path(pattern)))

    def matching_files(self, pattern):
        return sorted(glob.glob(self.path(pattern)))

    def n_generated(self, gen):
        return self.count_matching_files(
            os.path.join("gen{}".format(gen), "*.res"))

    def n_evaluated(self, gen):
        return self.count_matching_files(
            os.path.join("gen{}-dft".format(gen), "*.res"))

    def first_missing_artifact(self, max_gen):
        """
        Index of the first generation in 0..max_gen without artifact;
        max_gen + 1 if all exist.
        """
        for gen in range(max_gen + 1):
            if not self.has_artifact(gen):
                return gen
        return max_gen + 1

    def builder_uuid(self):
        """
        Identifier of the build, created on first use.
        """
        fname = self.path(".eddp_builder")
        if os.path.isfile(fname):
            with open(fname) as fp:
                return fp.readline().strip()
        value = str(uuid.uuid4())
        with open(fname, "w") as fp:
            fp.write(value + "\n")
        return value
