# Copyright 2025 Allard Peper (Dragon Ace / DragonAceNL)
# Licensed under the Apache License, Version 2.0 (see LICENSE).
# This file is part of cfdpack.

"""Tests for the command-line interface."""

import json

import pytest
from click.testing import CliRunner

from cfdpack import __version__
from cfdpack.cli.main import main
from cfdpack.core import load_mesh

from conftest import vtk_text


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def container(tmp_path, runner, snapshot_series):
    """A converted three-step container."""
    output = tmp_path / "flow.c4a"
    args = ["convert", "-o", str(output)]
    for path in snapshot_series:
        args += ["-i", str(path)]
    result = runner.invoke(main, args)
    assert result.exit_code == 0, result.output
    return output


class TestConvertCommand:
    """Tests for 'cfdpack convert'."""

    def test_convert_series(self, container):
        """Test converting three snapshots."""
        mesh = load_mesh(container)
        assert mesh.time_step_count == 3
        assert mesh.version == 2

    def test_summary_output(self, tmp_path, runner, quads_vtk):
        """Test the printed summary."""
        result = runner.invoke(main, ["convert", "-i", str(quads_vtk), "-o", str(tmp_path / "q.c4a")])
        assert result.exit_code == 0, result.output
        assert "Time steps: 1" in result.output
        assert "Triangles: 4" in result.output

    def test_default_output(self, runner, quads_vtk):
        """Test that the output defaults to the first input's name."""
        result = runner.invoke(main, ["convert", "-i", str(quads_vtk)])
        assert result.exit_code == 0, result.output
        assert quads_vtk.with_suffix(".c4a").exists()

    def test_no_inputs(self, runner):
        """Test convert without inputs."""
        result = runner.invoke(main, ["convert"])
        assert result.exit_code == 1
        assert "No input files" in result.output

    def test_existing_output(self, runner, container, snapshot_series):
        """Test that an existing output needs --overwrite."""
        args = ["convert", "-i", str(snapshot_series[0]), "-o", str(container)]
        result = runner.invoke(main, args)
        assert result.exit_code == 1
        assert "--overwrite" in result.output

        result = runner.invoke(main, args + ["--overwrite"])
        assert result.exit_code == 0, result.output
        assert load_mesh(container).time_step_count == 1

    def test_options(self, tmp_path, runner, snapshot_series):
        """Test version, slicing and report options."""
        output = tmp_path / "sliced.c4a"
        report = tmp_path / "reports" / "run.json"
        args = ["convert", "-o", str(output), "--container-version", "1",
                "--slice", "--budget", "4", "--workers", "2", "-r", str(report)]
        for path in snapshot_series:
            args += ["-i", str(path)]
        result = runner.invoke(main, args)
        assert result.exit_code == 0, result.output

        data = json.loads(report.read_text())
        assert data["version"] == 1
        assert data["submeshes"] > 1
        assert load_mesh(output).version == 1

    def test_invalid_budget(self, tmp_path, runner, quads_vtk):
        """Test that invalid settings are listed."""
        result = runner.invoke(
            main, ["convert", "-i", str(quads_vtk), "-o", str(tmp_path / "x.c4a"), "--budget", "1"]
        )
        assert result.exit_code == 1
        assert "budget" in result.output

    def test_job_file(self, tmp_path, runner, snapshot_series):
        """Test convert driven by a job file."""
        job = tmp_path / "run.yaml"
        job.write_text(
            "inputs:\n" + "".join(f"  - {p.name}\n" for p in snapshot_series)
            + "output: from_job.c4a\noptions:\n  probe: random\n  seed: 3\n"
        )
        result = runner.invoke(main, ["convert", "--job", str(job)])
        assert result.exit_code == 0, result.output
        assert load_mesh(tmp_path / "from_job.c4a").time_step_count == 3

    def test_job_file_not_a_mapping(self, tmp_path, runner):
        """Test a job file holding a list instead of settings."""
        job = tmp_path / "run.yaml"
        job.write_text("- t0.vtk\n- t1.vtk\n")
        result = runner.invoke(main, ["convert", "--job", str(job)])
        assert result.exit_code == 1
        assert "Cannot load job" in result.output
        assert "mapping" in result.output

    def test_parse_error(self, tmp_path, runner, write_vtk):
        """Test that conversion errors exit with status 1."""
        bad = write_vtk("bad.vtk", vtk_text("DATASET STRUCTURED_GRID\n"))
        result = runner.invoke(main, ["convert", "-i", str(bad), "-o", str(tmp_path / "x.c4a")])
        assert result.exit_code == 1
        assert "UnsupportedFormatError" in result.output
        assert not (tmp_path / "x.c4a").exists()


class TestInspectCommand:
    """Tests for 'cfdpack inspect'."""

    def test_text(self, runner, container):
        """Test the text summary."""
        result = runner.invoke(main, ["inspect", "-i", str(container)])
        assert result.exit_code == 0, result.output
        assert "Time steps: 3" in result.output
        assert "pressure: 3 step(s) x 1 component(s)" in result.output

    def test_json(self, runner, container):
        """Test the JSON summary."""
        result = runner.invoke(main, ["inspect", "-i", str(container), "--json"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["time_steps"] == 3
        assert data["submeshes"]["0"]["scalars"]["pressure"]["steps"] == 3

    def test_not_a_container(self, tmp_path, runner):
        """Test inspecting a file that is not a container."""
        path = tmp_path / "junk.c4a"
        path.write_bytes(b"\x09\x00\x00\x00")
        result = runner.invoke(main, ["inspect", "-i", str(path)])
        assert result.exit_code == 1
        assert "Unsupported container version" in result.output


class TestExportCommand:
    """Tests for 'cfdpack export'."""

    def test_export_stl(self, tmp_path, runner, container):
        """Test exporting the geometry."""
        output = tmp_path / "out" / "flow.stl"
        result = runner.invoke(main, ["export", "-i", str(container), "-o", str(output)])
        assert result.exit_code == 0, result.output
        assert output.exists()
        assert "4 faces" in result.output

    def test_unknown_submesh(self, tmp_path, runner, container):
        """Test exporting a submesh that does not exist."""
        result = runner.invoke(
            main, ["export", "-i", str(container), "-o", str(tmp_path / "x.stl"), "-s", "7"]
        )
        assert result.exit_code == 1
        assert "No submesh 7" in result.output


class TestMisc:
    """Tests for version and environment commands."""

    def test_version(self, runner):
        """Test --version."""
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_checkenv(self, runner):
        """Test the environment report."""
        result = runner.invoke(main, ["checkenv"])
        assert result.exit_code == 0
        assert "numpy" in result.output
        assert "trimesh" in result.output
