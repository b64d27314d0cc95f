import json
import os

import numpy as np
import pytest

from ..commandline import main
from ..dataset import FeatureContainer
from ..formats.res import ResParser
from ..geometry import Cell


@pytest.fixture
def resfiles(tmp_path):
    paths = []
    for i, a in enumerate([5.4, 5.6, 5.8]):
        cell = Cell(np.identity(3)*a, [[0, 0, 0], [0.5, 0.5, 0.5]],
                    ["Na", "Cl"], fractional=True,
                    metadata={"label": "nacl-{}".format(i),
                              "enthalpy": -3.0 + 0.1*i})
        path = str(tmp_path / "nacl-{}.res".format(i))
        ResParser().write(cell, path)
        paths.append(path)
    return paths


def test_no_tool(capsys):
    assert main([]) == 1
    assert "tools" in capsys.readouterr().out


def test_features(tmp_path, resfiles, capsys):
    out = str(tmp_path / "features.h5")
    pattern = str(tmp_path / "nacl-*.res")
    ret = main(["features", pattern, "-e", "Na", "Cl", "--p2", "2", "4",
                "--p3", "2", "--rcut2", "4.5", "--rcut3", "3.5", "-o", out])
    assert ret == 0
    assert "3 structures" in capsys.readouterr().out
    fc = FeatureContainer.from_hdf5(out)
    assert len(fc) == 3
    assert fc.cf.nfeatures == 2 + 3*2 + 4*1


def test_config(tmp_path, capsys):
    fname = str(tmp_path / "eddp.json")
    ret = main(["config", "--file", fname,
                "--set-program", "buildcell", "/opt/bin/buildcell"])
    assert ret == 0
    with open(fname) as fp:
        doc = json.load(fp)
    assert doc["external"]["buildcell"] == "/opt/bin/buildcell"
    assert doc["external"]["cabal"] == "cabal"
    assert "/opt/bin/buildcell" in capsys.readouterr().out


def write_builder_config(tmp_path, **state):
    doc = {"state": dict(seedfile="NaCl.cell", workdir="build",
                         max_iterations=1, **state),
           "features": {"elements": ["Na", "Cl"], "p2": [2], "p3": [2],
                        "q3": [2]}}
    path = str(tmp_path / "builder.json")
    with open(path, "w") as fp:
        json.dump(doc, fp)
    return path


def test_summary(tmp_path, resfiles, capsys):
    path = write_builder_config(tmp_path, dft_mode="pp3")
    outdir = tmp_path / "build" / "gen0-dft"
    os.makedirs(str(outdir))
    for fname in resfiles:
        os.rename(fname, str(outdir / os.path.basename(fname)))
    assert main(["summary", path]) == 0
    out = capsys.readouterr().out
    assert "Total training structures: 3" in out


def test_link_error(tmp_path, capsys):
    path = write_builder_config(tmp_path, dft_mode="unknown-code")
    assert main(["link", path]) == 1
    assert "Error: Cannot find external code" in capsys.readouterr().err
