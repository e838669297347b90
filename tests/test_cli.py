"""
Tests for the command-line interface.
"""

import logging

import pytest

from dmri_fem.cli import main
from dmri_fem.mesh import save_mesh


@pytest.fixture(autouse=True)
def reset_package_logger():
    """main() installs handlers on captured streams; drop them afterwards."""
    yield
    logger = logging.getLogger("dmri_fem")
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def mesh_file(coupled_mesh, tmp_path):
    filename = tmp_path / "cells.vtu"
    save_mesh(coupled_mesh, str(filename))
    return filename


def _fast_args(mesh_file):
    return [
        str(mesh_file),
        "--diffusivity", "1.0", "0.5",
        "--kappa", "0.0", "0.01", "0.0",
        "--delta", "1.0",
        "--Delta", "2.0",
        "--timestep", "0.25",
        "-b", "0.5",
    ]


class TestMain:
    """Tests for the dmri-simulate entry point."""

    def test_simulation_runs(self, mesh_file, capsys):
        assert main(_fast_args(mesh_file)) == 0

        out = capsys.readouterr().out
        assert "Signal:" in out
        assert "Attenuation:" in out
        assert "Compartment 0:" in out
        assert "Compartment 1:" in out
        assert "Time steps:         12" in out

    def test_double_pgse(self, mesh_file, capsys):
        args = _fast_args(mesh_file) + ["--sequence", "DoublePGSE", "--theta", "1.0"]
        assert main(args) == 0
        assert "Time steps:         24" in capsys.readouterr().out

    def test_verbose(self, mesh_file, capsys):
        assert main(_fast_args(mesh_file) + ["-v", "-j", "2"]) == 0
        out = capsys.readouterr().out
        assert "Compartments:        2" in out

    def test_missing_mesh(self, tmp_path, capsys):
        assert main([str(tmp_path / "missing.vtu")]) == 1
        assert "Error:" in capsys.readouterr().err

    def test_wrong_parameter_count(self, mesh_file, capsys):
        args = _fast_args(mesh_file) + ["--t2", "1.0", "2.0", "3.0"]
        assert main(args) == 1
        assert "T2" in capsys.readouterr().err

    def test_invalid_theta(self, mesh_file, capsys):
        assert main(_fast_args(mesh_file) + ["--theta", "2.0"]) == 1
        assert "theta" in capsys.readouterr().err

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as info:
            main(["--version"])
        assert info.value.code == 0
        assert "0.1.0" in capsys.readouterr().out
