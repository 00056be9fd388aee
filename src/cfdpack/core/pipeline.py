# Copyright 2025 Allard Peper (Dragon Ace / DragonAceNL)
# Licensed under the Apache License, Version 2.0 (see LICENSE).
# This file is part of cfdpack.

"""
End-to-end conversion: VTK snapshots in, one container out.

    files -> parse -> transcode -> combine -> [slice] -> save

Each stage is timed and logged. Any stage error aborts the run before
the container is written.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence, Union
import logging
import time

from .combiner import combine_time_steps
from .container import save_mesh
from .job import ConvertOptions
from .mesh import CanonicalMesh
from .parser import load_dataset
from .slicer import slice_mesh
from .transcoder import transcode

logger = logging.getLogger(__name__)


@dataclass
class ConversionResult:
    """
    Result of a conversion run.

    Attributes:
        inputs: Source files in time order
        output: Written container
        version: Container version
        submeshes: Submesh count after combining and slicing
        time_steps: Time step count
        shared_geometry: Whether all snapshots shared one geometry
        vertices: Total vertices over all submeshes
        triangles: Total triangles over all submeshes
        durations: Seconds spent per stage
    """
    inputs: list[Path]
    output: Path
    version: int
    submeshes: int = 0
    time_steps: int = 0
    shared_geometry: bool = True
    vertices: int = 0
    triangles: int = 0
    durations: dict[str, float] = field(default_factory=dict)

    @property
    def total_seconds(self) -> float:
        return sum(self.durations.values())

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "inputs": [str(p) for p in self.inputs],
            "output": str(self.output),
            "version": self.version,
            "submeshes": self.submeshes,
            "time_steps": self.time_steps,
            "shared_geometry": self.shared_geometry,
            "vertices": self.vertices,
            "triangles": self.triangles,
            "durations": {k: round(v, 4) for k, v in self.durations.items()},
        }


class _Stage:
    """Context manager timing one stage into a durations dict."""

    def __init__(self, name: str, durations: dict[str, float]):
        self.name = name
        self.durations = durations

    def __enter__(self):
        self.start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb):
        elapsed = time.perf_counter() - self.start
        self.durations[self.name] = elapsed
        if exc_type is None:
            logger.info(f"Stage {self.name} done in {elapsed * 1000:.0f}ms")
        return False


def _load_one(path: Path) -> CanonicalMesh:
    return transcode(load_dataset(path))


def load_meshes(paths: Sequence[Union[str, Path]], workers: int = 1) -> list[CanonicalMesh]:
    """
    Parse and transcode every file, preserving input order.

    Args:
        paths: Source files
        workers: Threads to use; files share no state so they load independently
    """
    paths = [Path(p) for p in paths]
    if workers > 1 and len(paths) > 1:
        with ThreadPoolExecutor(max_workers=min(workers, len(paths))) as pool:
            return list(pool.map(_load_one, paths))
    return [_load_one(p) for p in paths]


def convert(
    paths: Sequence[Union[str, Path]],
    output: Union[str, Path],
    options: Optional[ConvertOptions] = None,
) -> ConversionResult:
    """
    Convert VTK snapshots into one container file.

    Args:
        paths: Source files in time order
        output: Container path to write
        options: Conversion options (defaults if omitted)

    Returns:
        ConversionResult describing the written container

    Raises:
        ValueError: No inputs or invalid options
        CfdPackError: Any parse, transcode, combine or write failure
    """
    options = options or ConvertOptions()
    errors = options.validate()
    if errors:
        raise ValueError("Invalid options: " + "; ".join(errors))
    if not paths:
        raise ValueError("No input files given")

    paths = [Path(p) for p in paths]
    output = Path(output)
    durations: dict[str, float] = {}
    logger.info(f"Converting {len(paths)} file(s) -> {output}")

    with _Stage("load", durations):
        meshes = load_meshes(paths, options.workers)

    with _Stage("combine", durations):
        before = len(meshes[0].submeshes)
        mesh = combine_time_steps(meshes, probe=options.probe, seed=options.seed)
        # varying geometry appends the later snapshots' submeshes
        shared = len(mesh.submeshes) == before

    if options.slice:
        with _Stage("slice", durations):
            slice_mesh(mesh, options.budget)

    with _Stage("save", durations):
        save_mesh(mesh, output, options.version)

    result = ConversionResult(
        inputs=paths,
        output=output,
        version=options.version,
        submeshes=len(mesh.submeshes),
        time_steps=mesh.time_step_count,
        shared_geometry=shared,
        vertices=mesh.vertex_count,
        triangles=mesh.triangle_count,
        durations=durations,
    )
    logger.info(
        f"Wrote {output}: {result.submeshes} submeshes, {result.time_steps} time steps, "
        f"{result.vertices:,} vertices in {result.total_seconds:.2f}s"
    )
    return result
