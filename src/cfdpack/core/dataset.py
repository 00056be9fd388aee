# Copyright 2025 Allard Peper (Dragon Ace / DragonAceNL)
# Licensed under the Apache License, Version 2.0 (see LICENSE).
# This file is part of cfdpack.

"""
Intermediate model of one parsed legacy VTK file.

A Dataset is transient: the parser fills it, the transcoder flattens it
into a canonical mesh, and it is then discarded. Topology is kept in
offsets/connectivity form so large grids stay in numpy arrays; ``iter_cells()``
gives the per-cell view when one is needed.
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Iterator, Optional

import numpy as np


class DatasetKind(Enum):
    """Dataset structures the parser builds."""

    UNSTRUCTURED_GRID = "UNSTRUCTURED_GRID"
    POLYDATA = "POLYDATA"


class CellType(IntEnum):
    """Legacy cell type codes (linear cells)."""

    VERTEX = 1
    POLY_VERTEX = 2
    LINE = 3
    POLY_LINE = 4
    TRIANGLE = 5
    TRIANGLE_STRIP = 6
    POLYGON = 7
    PIXEL = 8
    QUAD = 9
    TETRA = 10
    VOXEL = 11
    HEXAHEDRON = 12
    WEDGE = 13
    PYRAMID = 14

    @classmethod
    def describe(cls, code: int) -> str:
        """Readable name for a cell code, including codes outside this enum."""
        try:
            return cls(code).name
        except ValueError:
            return f"cell type {code}"


class AttributeKind(Enum):
    """Tag of a DataAttribute; consumers dispatch on it."""

    SCALARS = "SCALARS"
    COLOR_SCALARS = "COLOR_SCALARS"
    VECTORS = "VECTORS"
    NORMALS = "NORMALS"
    TEXTURE_COORDINATES = "TEXTURE_COORDINATES"
    TENSORS = "TENSORS"
    FIELD_DATA = "FIELD"
    LOOKUP_TABLE = "LOOKUP_TABLE"


@dataclass
class Cell:
    """One topological element: a cell kind and the point indices it references."""
    kind: int
    indices: np.ndarray


@dataclass
class CellBlock:
    """
    A run of cells (or polydata items) in offsets/connectivity form.

    Cell ``i`` references ``connectivity[offsets[i]:offsets[i + 1]]``.
    """
    offsets: np.ndarray
    connectivity: np.ndarray

    def __len__(self) -> int:
        return max(len(self.offsets) - 1, 0)

    @property
    def sizes(self) -> np.ndarray:
        return np.diff(self.offsets)

    def item(self, i: int) -> np.ndarray:
        return self.connectivity[self.offsets[i]:self.offsets[i + 1]]

    def __iter__(self) -> Iterator[np.ndarray]:
        for i in range(len(self)):
            yield self.item(i)

    @classmethod
    def empty(cls) -> "CellBlock":
        return cls(np.zeros(1, dtype=np.int64), np.empty(0, dtype=np.int64))


@dataclass
class FieldArray:
    """One named array of a FIELD block; values are (tuples, components)."""
    name: str
    values: np.ndarray

    @property
    def components(self) -> int:
        return int(self.values.shape[1]) if self.values.ndim == 2 else 1


@dataclass
class DataAttribute:
    """
    A point- or cell-indexed attribute record.

    Attributes:
        kind: Which record type this is
        name: Attribute name as declared in the file
        values: (count, components) float32 values; palette rows for
            LOOKUP_TABLE, empty for FIELD_DATA
        lookup_table: Lookup table referenced by SCALARS
        arrays: Sub-arrays of a FIELD_DATA record
    """
    kind: AttributeKind
    name: str
    values: np.ndarray = field(default_factory=lambda: np.empty((0, 1), dtype=np.float32))
    lookup_table: Optional[str] = None
    arrays: list[FieldArray] = field(default_factory=list)

    @property
    def components(self) -> int:
        return int(self.values.shape[1]) if self.values.ndim == 2 else 1

    def __len__(self) -> int:
        return int(self.values.shape[0])


@dataclass
class Dataset:
    """
    Everything read from one legacy VTK file.

    Attributes:
        version: (major, minor) from the header line
        description: Free-text title line
        binary: Whether numeric sections are big-endian binary
        kind: Dataset structure, None until a DATASET section is read
        points: (n, 3) float32 point coordinates
        cells: Unstructured-grid cells
        cell_types: Cell type code per cell
        polygons: Polydata items keyed by section keyword, in file order
        point_data: Point-indexed attributes keyed by name
        cell_data: Cell-indexed attributes keyed by name
        field_data: Dataset-level FIELD blocks, informational
        point_data_count: Count declared by POINT_DATA
        cell_data_count: Count declared by CELL_DATA
        source: Origin of the data (usually a file path)
    """
    version: tuple[int, int] = (0, 0)
    description: str = ""
    binary: bool = False
    kind: Optional[DatasetKind] = None
    points: Optional[np.ndarray] = None
    cells: Optional[CellBlock] = None
    cell_types: Optional[np.ndarray] = None
    polygons: dict[str, CellBlock] = field(default_factory=dict)
    point_data: dict[str, DataAttribute] = field(default_factory=dict)
    cell_data: dict[str, DataAttribute] = field(default_factory=dict)
    field_data: dict[str, DataAttribute] = field(default_factory=dict)
    point_data_count: int = 0
    cell_data_count: int = 0
    source: Optional[str] = None

    @property
    def point_count(self) -> int:
        return 0 if self.points is None else int(self.points.shape[0])

    @property
    def cell_count(self) -> int:
        """Number of cells, or of polydata items across all sections."""
        if self.kind is DatasetKind.POLYDATA:
            return sum(len(block) for block in self.polygons.values())
        return 0 if self.cells is None else len(self.cells)

    def iter_cells(self) -> Iterator[Cell]:
        """Yield the unstructured-grid cells in file order."""
        if self.cells is None:
            return
        types = self.cell_types
        for i, indices in enumerate(self.cells):
            kind = int(types[i]) if types is not None else 0
            yield Cell(kind, indices)

    def summary(self) -> dict:
        """Short description for logs and reports."""
        return {
            "source": self.source,
            "version": f"{self.version[0]}.{self.version[1]}",
            "description": self.description,
            "encoding": "binary" if self.binary else "ascii",
            "kind": self.kind.value if self.kind else None,
            "points": self.point_count,
            "cells": self.cell_count,
            "point_data": list(self.point_data),
            "cell_data": list(self.cell_data),
        }
