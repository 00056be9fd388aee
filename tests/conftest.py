# Copyright 2025 Allard Peper (Dragon Ace / DragonAceNL)
# Licensed under the Apache License, Version 2.0 (see LICENSE).
# This file is part of cfdpack.

"""Pytest configuration and fixtures: legacy VTK files built in temp dirs."""

import struct
import sys
from pathlib import Path

import numpy as np
import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from cfdpack.core import CanonicalMesh, Submesh


def vtk_text(body: str, description: str = "test mesh", encoding: str = "ASCII",
             version: str = "3.0") -> bytes:
    """A complete ASCII legacy file: preamble plus ``body``."""
    return f"# vtk DataFile Version {version}\n{description}\n{encoding}\n{body}".encode("latin-1")


class BinaryVtk:
    """
    Builder for binary legacy files.

    Keyword lines are text; value blocks are packed big-endian with
    ``struct`` and followed by a newline, as VTK writers do.
    """

    def __init__(self, description: str = "binary mesh", version: str = "3.0"):
        self.parts = [f"# vtk DataFile Version {version}\n{description}\nBINARY\n".encode()]

    def line(self, text: str) -> "BinaryVtk":
        self.parts.append(text.encode() + b"\n")
        return self

    def values(self, fmt: str, values) -> "BinaryVtk":
        values = list(values)
        self.parts.append(struct.pack(f">{len(values)}{fmt}", *values) + b"\n")
        return self

    def build(self) -> bytes:
        return b"".join(self.parts)


# Two quads sharing an edge, one scalar per point
TWO_QUADS = """DATASET POLYDATA
POINTS 6 float
0 0 0  1 0 0  2 0 0
0 1 0  1 1 0  2 1 0
POLYGONS 2 10
4 0 1 4 3
4 1 2 5 4
POINT_DATA 6
SCALARS pressure float
LOOKUP_TABLE default
0.0 1.0 2.0 3.0 4.0 5.0
"""

# Two hexahedra sharing the x=1 face, with cell data
TWO_HEXES = """DATASET UNSTRUCTURED_GRID
POINTS 12 float
0 0 0  1 0 0  1 1 0  0 1 0
0 0 1  1 0 1  1 1 1  0 1 1
2 0 0  2 1 0  2 0 1  2 1 1
CELLS 2 18
8 0 1 2 3 4 5 6 7
8 1 8 9 2 5 10 11 6
CELL_TYPES 2
12
12
CELL_DATA 2
SCALARS temperature float 1
LOOKUP_TABLE default
10.0 20.0
VECTORS velocity float
1 0 0  0 2 0
"""


@pytest.fixture
def write_vtk(tmp_path):
    """Factory writing raw bytes to a named file under tmp_path."""
    def _write(name: str, data: bytes) -> Path:
        path = tmp_path / name
        path.write_bytes(data)
        return path
    return _write


@pytest.fixture
def quads_vtk(write_vtk) -> Path:
    return write_vtk("quads.vtk", vtk_text(TWO_QUADS, description="quads"))


@pytest.fixture
def hexes_vtk(write_vtk) -> Path:
    return write_vtk("hexes.vtk", vtk_text(TWO_HEXES, description="hexes"))


@pytest.fixture
def snapshot_series(write_vtk):
    """Three quad snapshots with the same geometry and changing pressure."""
    paths = []
    for step in range(3):
        body = TWO_QUADS.replace(
            "0.0 1.0 2.0 3.0 4.0 5.0",
            " ".join(str(float(v + 10 * step)) for v in range(6)),
        )
        paths.append(write_vtk(f"step_{step:03d}.vtk", vtk_text(body, description="quads")))
    return paths


def make_submesh(n_vertices: int, name: str = "block", with_attributes: bool = True) -> Submesh:
    """A strip of triangles (k, k+1, k+2) over ``n_vertices`` points along x."""
    x = np.arange(n_vertices, dtype=np.float32)
    vertices = np.column_stack([x, (np.arange(n_vertices) % 2).astype(np.float32), np.zeros(n_vertices, np.float32)])
    k = np.arange(n_vertices - 2, dtype=np.int32)
    indices = np.column_stack([k, k + 1, k + 2]).ravel()
    submesh = Submesh(name=name, vertices=vertices, indices=indices)
    if with_attributes:
        submesh.scalars["pressure"] = [x.reshape(-1, 1).copy(), (x * 2).reshape(-1, 1)]
        submesh.vectors["velocity"] = [vertices.copy(), vertices * 0.5]
    return submesh


@pytest.fixture
def strip_mesh() -> CanonicalMesh:
    """A two-step mesh with one 10-vertex submesh."""
    mesh = CanonicalMesh(name="strip", submeshes={0: make_submesh(10)}, time_step_count=2)
    return mesh
