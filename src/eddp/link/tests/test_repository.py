import os

import numpy as np
import pytest
import tables as tb

from ...exceptions import FormatError
from ...feature import CellFeature
from ...models import AtomicEnergyModel, ModelEnsemble
from ..repository import (EnsembleArtifact, GenerationRepository,
                          read_artifact_file)


@pytest.fixture
def artifact():
    cf = CellFeature.from_elements(["A"], p2=[2], p3=[2], q3=[2])
    models = [AtomicEnergyModel(cf.nfeatures, (3,), seed=s)
              for s in range(2)]
    return EnsembleArtifact(ModelEnsemble(models), cf,
                            train_labels=["a", "b"], test_labels=["c"],
                            valid_labels=[], builder_uuid="1234")


def touch(path):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w") as fp:
        fp.write("")


def test_layout(tmp_path):
    repo = GenerationRepository(str(tmp_path / "work"))
    assert os.path.isdir(repo.workdir)
    assert repo.input_dir(3).endswith("gen3")
    assert repo.output_dir(3).endswith("gen3-dft")
    assert repo.artifact_path(0).endswith("ensemble-gen0.h5")


def test_counts(tmp_path):
    repo = GenerationRepository(str(tmp_path))
    for name in ["x1.res", "x2.res", "x2.cell"]:
        touch(os.path.join(repo.input_dir(1), name))
    touch(os.path.join(repo.output_dir(1), "x1.res"))
    assert repo.n_generated(1) == 2
    assert repo.n_evaluated(1) == 1
    assert repo.n_generated(0) == 0
    assert repo.count_matching_files("gen1/*") == 3
    assert [os.path.basename(f) for f in repo.matching_files(
        "gen1/*.res")] == ["x1.res", "x2.res"]


def test_artifact_roundtrip(tmp_path, artifact):
    repo = GenerationRepository(str(tmp_path))
    assert not repo.has_artifact(2)
    path = repo.write_artifact(2, artifact)
    assert repo.has_artifact(2)
    assert not os.path.exists(path + ".tmp")
    out = repo.read_artifact(2)
    assert out.generation == 2
    assert out.builder_uuid == "1234"
    assert out.cf == artifact.cf
    assert out.train_labels == ["a", "b"]
    assert out.test_labels == ["c"]
    assert out.valid_labels == []
    v = np.random.default_rng(0).normal(size=(artifact.cf.nfeatures, 3))
    assert np.allclose(out.ensemble.forward(v),
                       artifact.ensemble.forward(v))


def test_incomplete_artifact(tmp_path):
    path = str(tmp_path / "ensemble-gen0.h5")
    with tb.open_file(path, mode="w") as h5file:
        h5file.create_group("/", "something")
    with pytest.raises(FormatError):
        read_artifact_file(path)


def test_first_missing_artifact(tmp_path, artifact):
    repo = GenerationRepository(str(tmp_path))
    assert repo.first_missing_artifact(3) == 0
    repo.write_artifact(0, artifact)
    repo.write_artifact(1, artifact)
    repo.write_artifact(3, artifact)
    assert repo.first_missing_artifact(3) == 2
    repo.write_artifact(2, artifact)
    assert repo.first_missing_artifact(3) == 4


def test_builder_uuid(tmp_path):
    repo = GenerationRepository(str(tmp_path))
    uid = repo.builder_uuid()
    assert len(uid) == 36
    assert GenerationRepository(str(tmp_path)).builder_uuid() == uid
