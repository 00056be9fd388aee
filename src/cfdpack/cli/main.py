# Copyright 2025 Allard Peper (Dragon Ace / DragonAceNL)
# Licensed under the Apache License, Version 2.0 (see LICENSE).
# This file is part of cfdpack.

"""
Command-line interface for cfdpack.

Provides commands for:
- convert: Convert VTK snapshots into a .c4a container
- inspect: Summarize a container
- export: Write container geometry to STL/OBJ/PLY
- checkenv: Verify the environment is set up correctly
"""

import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click

from cfdpack import __version__
from cfdpack.core import (
    CfdPackError,
    ConversionJob,
    convert as run_conversion,
    load_mesh,
)


def setup_logging(verbose: bool) -> None:
    """Configure logging based on verbosity."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S"
    )


def _fail(message: str) -> None:
    click.echo(f"Error: {message}")
    sys.exit(1)


def _describe_error(e: Exception) -> str:
    if isinstance(e, CfdPackError):
        return f"{type(e).__name__}: {e}"
    return str(e)


@click.group()
@click.version_option(version=__version__, prog_name="cfdpack")
def main():
    """
    cfdpack - Convert legacy VTK simulation snapshots into .c4a containers.

    Use 'cfdpack COMMAND --help' for more information on each command.
    """
    pass


@main.command()
@click.option("--input", "-i", "input_paths", multiple=True, type=click.Path(exists=True),
              help="VTK snapshot (repeat in time order)")
@click.option("--output", "-o", "output_path", type=click.Path(),
              help="Container output path (default: <first input>.c4a)")
@click.option("--job", "-j", "job_path", type=click.Path(exists=True),
              help="Job file (JSON/YAML) listing inputs, output and options")
@click.option("--container-version", type=click.Choice(["1", "2"]), default=None,
              help="Container version to write (default: 2)")
@click.option("--slice", "slice_mesh", is_flag=True, default=None,
              help="Slice submeshes over the vertex budget")
@click.option("--budget", type=int, default=None, help="Vertex budget per submesh when slicing")
@click.option("--probe", type=click.Choice(["all", "random"]), default=None,
              help="Geometry check across time steps")
@click.option("--seed", type=int, default=None, help="Seed for --probe random")
@click.option("--workers", type=int, default=None, help="Threads used to load files")
@click.option("--report", "-r", "report_path", type=click.Path(),
              help="Path for JSON report output")
@click.option("--overwrite", is_flag=True, help="Overwrite existing output files")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def convert(
    input_paths: tuple[str, ...],
    output_path: Optional[str],
    job_path: Optional[str],
    container_version: Optional[str],
    slice_mesh: Optional[bool],
    budget: Optional[int],
    probe: Optional[str],
    seed: Optional[int],
    workers: Optional[int],
    report_path: Optional[str],
    overwrite: bool,
    verbose: bool
):
    """
    Convert one or more VTK snapshots into a container.

    Examples:

        cfdpack convert -i flow.vtk

        cfdpack convert -i t0.vtk -i t1.vtk -i t2.vtk -o flow.c4a --slice

        cfdpack convert --job run.yaml --report report.json
    """
    setup_logging(verbose)

    if job_path:
        try:
            job = ConversionJob.load(job_path)
        except (ValueError, OSError) as e:
            _fail(f"Cannot load job: {e}")
        click.echo(f"Loaded job: {job_path}")
    else:
        job = ConversionJob()

    # command-line flags override the job file
    if input_paths:
        job.inputs = [Path(p) for p in input_paths]
    if output_path:
        job.output = Path(output_path)
    options = job.options
    if container_version is not None:
        options.version = int(container_version)
    if slice_mesh:
        options.slice = True
    if budget is not None:
        options.budget = budget
    if probe is not None:
        options.probe = probe
    if seed is not None:
        options.seed = seed
    if workers is not None:
        options.workers = workers

    if not job.inputs:
        _fail("No input files (use --input or --job)")
    if job.output is None:
        job.output = job.inputs[0].with_suffix(".c4a")

    errors = job.validate()
    if errors:
        click.echo("Invalid conversion settings:")
        for error in errors:
            click.echo(f"  - {error}")
        sys.exit(1)

    if job.output.exists() and not overwrite:
        click.echo(f"Error: Output file exists: {job.output}")
        click.echo("Use --overwrite to replace it.")
        sys.exit(1)

    click.echo(f"Converting {len(job.inputs)} file(s) -> {job.output}")
    try:
        result = run_conversion(job.inputs, job.output, options)
    except (CfdPackError, ValueError, OSError) as e:
        _fail(_describe_error(e))

    click.echo(f"\nConversion completed in {result.total_seconds:.2f}s")
    click.echo(f"  Container version: {result.version}")
    click.echo(f"  Submeshes: {result.submeshes}")
    click.echo(f"  Time steps: {result.time_steps}")
    click.echo(f"  Geometry: {'shared' if result.shared_geometry else 'varying'}")
    click.echo(f"  Vertices: {result.vertices:,}")
    click.echo(f"  Triangles: {result.triangles:,}")

    if report_path:
        report_path = Path(report_path)
        report_path.parent.mkdir(parents=True, exist_ok=True)
        with open(report_path, "w") as f:
            json.dump(result.to_dict(), f, indent=2)
        click.echo(f"Report saved: {report_path}")


@main.command()
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="Path to container file")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def inspect(input_path: str, json_output: bool, verbose: bool):
    """
    Summarize a container.

    Examples:

        cfdpack inspect --input flow.c4a

        cfdpack inspect -i flow.c4a --json
    """
    setup_logging(verbose)

    try:
        mesh = load_mesh(input_path)
    except (CfdPackError, OSError) as e:
        _fail(_describe_error(e))

    if json_output:
        click.echo(json.dumps(mesh.to_dict(), indent=2))
        return

    click.echo(f"Container: {Path(input_path).name}")
    click.echo("=" * 50)
    click.echo(f"Name: {mesh.name}")
    click.echo(f"Version: {mesh.version}")
    click.echo(f"Time steps: {mesh.time_step_count}")
    click.echo(f"Bounds: {list(mesh.bbox.minimum)} .. {list(mesh.bbox.maximum)}")
    click.echo(f"Vertices: {mesh.vertex_count:,}")
    click.echo(f"Triangles: {mesh.triangle_count:,}")
    click.echo(f"Submeshes: {len(mesh.submeshes)}")
    for key, submesh in mesh.submeshes.items():
        click.echo(
            f"  [{key}] {submesh.name} (t={submesh.time_step}): "
            f"{submesh.vertex_count:,} vertices, {submesh.triangle_count:,} triangles"
        )
        for name in submesh.attribute_names():
            series = submesh.attribute(name)
            components = series[0].shape[1] if series else 0
            click.echo(f"      {name}: {len(series)} step(s) x {components} component(s)")
    click.echo("=" * 50)


@main.command()
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="Path to container file")
@click.option("--output", "-o", "output_path", required=True, type=click.Path(),
              help="Mesh output path (.stl, .obj, .ply)")
@click.option("--submesh", "-s", "submesh_key", type=int, default=None,
              help="Export only this submesh (default: all, concatenated)")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def export(input_path: str, output_path: str, submesh_key: Optional[int], verbose: bool):
    """
    Export container geometry to a standard mesh format.

    Examples:

        cfdpack export -i flow.c4a -o flow.stl

        cfdpack export -i flow.c4a -o part.ply --submesh 2
    """
    setup_logging(verbose)

    try:
        mesh = load_mesh(input_path)
    except (CfdPackError, OSError) as e:
        _fail(_describe_error(e))

    if submesh_key is not None and submesh_key not in mesh.submeshes:
        _fail(f"No submesh {submesh_key} (available: {', '.join(map(str, mesh.submeshes))})")

    keys = None if submesh_key is None else [submesh_key]
    try:
        tm = mesh.to_trimesh(keys)
    except ValueError as e:
        _fail(str(e))

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    tm.export(str(output_path))
    click.echo(f"Exported {len(tm.vertices):,} vertices, {len(tm.faces):,} faces: {output_path}")


@main.command()
def checkenv():
    """
    Check if the environment is set up correctly.

    Verifies that all required dependencies are installed.
    """
    click.echo("cfdpack Environment Check")
    click.echo("=" * 50)

    import platform
    click.echo(f"\nPython: {platform.python_version()}")

    major, minor = sys.version_info[:2]
    if (major, minor) >= (3, 10):
        click.echo("  ✓ Python version is compatible")
    else:
        click.echo("  ⚠ Python 3.10 or newer required")

    click.echo("\nDependencies:")

    try:
        import numpy
        click.echo(f"  ✓ numpy: {numpy.__version__}")
    except ImportError:
        click.echo("  ✗ numpy: NOT INSTALLED")

    try:
        import trimesh
        click.echo(f"  ✓ trimesh: {trimesh.__version__}")
    except ImportError:
        click.echo("  ✗ trimesh: NOT INSTALLED (export unavailable)")

    try:
        import yaml
        click.echo(f"  ✓ PyYAML: {yaml.__version__}")
    except ImportError:
        click.echo("  ✗ PyYAML: NOT INSTALLED (YAML job files unavailable)")

    from importlib.metadata import version
    click.echo(f"  ✓ click: {version('click')}")


if __name__ == "__main__":
    main()
