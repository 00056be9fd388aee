# Copyright 2025 Allard Peper (Dragon Ace / DragonAceNL)
# Licensed under the Apache License, Version 2.0 (see LICENSE).
# This file is part of cfdpack.

"""
Dataset to canonical mesh transcoding.

Flattens the cells or polygons of one parsed Dataset into a single
triangulated Submesh and turns point- and cell-indexed attributes into
per-vertex attribute series of length one.

Cell data is resolved to vertices through ownership: cells are visited
in file order with a running index, and each vertex takes its value from
the last cell that referenced it.
"""

from typing import Callable
import logging

import numpy as np

from .dataset import AttributeKind, CellBlock, CellType, DataAttribute, Dataset, DatasetKind
from .errors import FormatError, IndexOutOfRangeError, UnsupportedFormatError
from .mesh import INDEX_POINTS, INDEX_TRIANGLES, BoundingBox, CanonicalMesh, Submesh

logger = logging.getLogger(__name__)

# Two triangles per quad face, six faces per solid
HEXAHEDRON_TRIANGLES = np.array([
    0, 1, 2, 2, 3, 0,
    4, 5, 6, 6, 7, 4,
    0, 1, 5, 5, 4, 0,
    1, 2, 6, 6, 5, 1,
    2, 3, 7, 7, 6, 2,
    3, 0, 4, 4, 7, 3,
], dtype=np.int64)

VOXEL_TRIANGLES = np.array([
    0, 1, 3, 3, 2, 0,
    4, 5, 7, 7, 6, 4,
    0, 1, 5, 5, 4, 0,
    1, 3, 7, 7, 5, 1,
    3, 2, 6, 6, 7, 3,
    2, 0, 4, 4, 6, 2,
], dtype=np.int64)

PIXEL_CORNERS = np.array([0, 1, 3, 2], dtype=np.int64)


def fan(indices: np.ndarray) -> np.ndarray:
    """Triangulate a convex polygon as a fan from its first vertex."""
    n = len(indices)
    if n < 3:
        return np.empty(0, dtype=np.int64)
    return np.column_stack([
        np.full(n - 2, indices[0]),
        indices[1:-1],
        indices[2:],
    ]).ravel()


def strip(indices: np.ndarray) -> np.ndarray:
    """Triangulate a triangle strip, flipping every second triangle to keep winding."""
    n = len(indices)
    if n < 3:
        return np.empty(0, dtype=np.int64)
    a = indices[:-2]
    b = indices[1:-1].copy()
    c = indices[2:].copy()
    odd = np.arange(n - 2) % 2 == 1
    b[odd], c[odd] = indices[2:][odd], indices[1:-1][odd]
    return np.column_stack([a, b, c]).ravel()


def _solid(table: np.ndarray, kind: CellType) -> Callable[[np.ndarray], np.ndarray]:
    def triangulate(indices: np.ndarray) -> np.ndarray:
        if len(indices) != 8:
            raise UnsupportedFormatError(
                f"{kind.name} cell with {len(indices)} indices (expected 8)", keyword=kind.name
            )
        return indices[table]
    return triangulate


def _triangle(indices: np.ndarray) -> np.ndarray:
    if len(indices) != 3:
        raise UnsupportedFormatError(
            f"TRIANGLE cell with {len(indices)} indices", keyword="TRIANGLE"
        )
    return indices


def _quad(indices: np.ndarray) -> np.ndarray:
    if len(indices) != 4:
        raise UnsupportedFormatError(f"QUAD cell with {len(indices)} indices", keyword="QUAD")
    return fan(indices)


def _pixel(indices: np.ndarray) -> np.ndarray:
    if len(indices) != 4:
        raise UnsupportedFormatError(f"PIXEL cell with {len(indices)} indices", keyword="PIXEL")
    return fan(indices[PIXEL_CORNERS])


CELL_TRIANGULATORS: dict[int, Callable[[np.ndarray], np.ndarray]] = {
    CellType.TRIANGLE: _triangle,
    CellType.TRIANGLE_STRIP: strip,
    CellType.POLYGON: fan,
    CellType.PIXEL: _pixel,
    CellType.QUAD: _quad,
    CellType.VOXEL: _solid(VOXEL_TRIANGLES, CellType.VOXEL),
    CellType.HEXAHEDRON: _solid(HEXAHEDRON_TRIANGLES, CellType.HEXAHEDRON),
}

POLYDATA_TRIANGULATORS: dict[str, Callable[[np.ndarray], np.ndarray]] = {
    "POLYGONS": fan,
    "TRIANGLE_STRIPS": strip,
}

_SOLID_TABLES = {
    CellType.HEXAHEDRON: HEXAHEDRON_TRIANGLES,
    CellType.VOXEL: VOXEL_TRIANGLES,
}


def transcode(dataset: Dataset) -> CanonicalMesh:
    """
    Convert a parsed dataset into a canonical mesh with one submesh (key 0).

    Args:
        dataset: Parsed dataset

    Returns:
        CanonicalMesh named after the dataset description

    Raises:
        FormatError: Missing geometry or attribute counts that don't match
        UnsupportedFormatError: Cell kinds or attribute shapes not handled
        IndexOutOfRangeError: A cell references a missing point
    """
    if dataset.kind is None or dataset.points is None:
        raise FormatError("Dataset has no DATASET / POINTS section", {"source": dataset.source})

    vertices = np.ascontiguousarray(dataset.points, dtype=np.float32)
    n_points = len(vertices)

    if dataset.kind is DatasetKind.UNSTRUCTURED_GRID:
        blocks = [] if dataset.cells is None else [dataset.cells]
        indices = _triangulate_grid(dataset)
    else:
        blocks = list(dataset.polygons.values())
        indices = _triangulate_polydata(dataset)

    for block in blocks:
        _check_range(block.connectivity, n_points, dataset)

    submesh = Submesh(
        name=dataset.description,
        vertices=vertices,
        indices=indices.astype(np.int32),
        index_type=INDEX_TRIANGLES if blocks else INDEX_POINTS,
        bbox=BoundingBox.from_points(vertices),
    )

    for name, attribute in dataset.point_data.items():
        _add_attribute(submesh, name, attribute, "point", lambda v: _point_values(v, n_points, name))

    if dataset.cell_data:
        owner = vertex_owners(blocks, n_points)
        unowned = int(np.count_nonzero(owner < 0))
        if unowned:
            logger.warning(
                f"{unowned} of {n_points} vertices belong to no cell; their cell attributes are zero"
            )
        n_cells = sum(len(b) for b in blocks)
        for name, attribute in dataset.cell_data.items():
            _add_attribute(
                submesh, name, attribute, "cell",
                lambda v: _cell_values(v, owner, n_cells, name),
            )

    mesh = CanonicalMesh(name=dataset.description, submeshes={0: submesh})
    logger.debug(
        f"Transcoded {dataset.source}: {submesh.vertex_count} vertices, "
        f"{submesh.triangle_count} triangles, attributes {submesh.attribute_names()}"
    )
    return mesh


# ----------------------------------------------------------------------
# Triangulation
# ----------------------------------------------------------------------

def _triangulate_grid(dataset: Dataset) -> np.ndarray:
    cells = dataset.cells
    if cells is None or len(cells) == 0:
        return np.empty(0, dtype=np.int64)
    if dataset.cell_types is None:
        raise FormatError("CELLS without CELL_TYPES", {"source": dataset.source})

    # uniform solid grids are the common case
    kinds = np.unique(dataset.cell_types)
    if len(kinds) == 1 and int(kinds[0]) in _SOLID_TABLES and np.all(cells.sizes == 8):
        table = _SOLID_TABLES[CellType(int(kinds[0]))]
        return cells.connectivity.reshape(-1, 8)[:, table].ravel()

    parts = []
    for cell in dataset.iter_cells():
        triangulate = CELL_TRIANGULATORS.get(cell.kind)
        if triangulate is None:
            raise UnsupportedFormatError(
                f"Cannot triangulate {CellType.describe(cell.kind)}",
                keyword=CellType.describe(cell.kind),
                context={"source": dataset.source},
            )
        parts.append(triangulate(cell.indices))
    return np.concatenate(parts) if parts else np.empty(0, dtype=np.int64)


def _triangulate_polydata(dataset: Dataset) -> np.ndarray:
    parts = []
    for keyword, block in dataset.polygons.items():
        triangulate = POLYDATA_TRIANGULATORS.get(keyword)
        if triangulate is None:
            raise UnsupportedFormatError(
                f"Polydata {keyword} cannot be triangulated",
                keyword=keyword,
                context={"source": dataset.source},
            )
        parts.extend(triangulate(item) for item in block)
    return np.concatenate(parts) if parts else np.empty(0, dtype=np.int64)


def _check_range(connectivity: np.ndarray, n_points: int, dataset: Dataset) -> None:
    if len(connectivity) == 0:
        return
    lo, hi = int(connectivity.min()), int(connectivity.max())
    if lo < 0 or hi >= n_points:
        bad = lo if lo < 0 else hi
        raise IndexOutOfRangeError(
            f"Cell references point {bad} but the dataset has {n_points} points",
            {"source": dataset.source},
        )


# ----------------------------------------------------------------------
# Attributes
# ----------------------------------------------------------------------

def vertex_owners(blocks: list[CellBlock], n_points: int) -> np.ndarray:
    """
    Owning cell of every vertex: the last cell in file order that references it.

    Cell indices run across all blocks in the order given. Vertices no
    cell references get -1.
    """
    owner = np.full(n_points, -1, dtype=np.int64)
    start = 0
    for block in blocks:
        count = len(block)
        if count:
            cell_ids = np.repeat(np.arange(start, start + count, dtype=np.int64), block.sizes)
            np.maximum.at(owner, block.connectivity, cell_ids)
        start += count
    return owner


def _point_values(values: np.ndarray, n_points: int, name: str) -> np.ndarray:
    if len(values) != n_points:
        raise FormatError(
            f"Point attribute '{name}' has {len(values)} values for {n_points} points"
        )
    return values


def _cell_values(values: np.ndarray, owner: np.ndarray, n_cells: int, name: str) -> np.ndarray:
    if len(values) != n_cells:
        raise FormatError(f"Cell attribute '{name}' has {len(values)} values for {n_cells} cells")
    out = np.zeros((len(owner), values.shape[1]), dtype=np.float32)
    owned = owner >= 0
    out[owned] = values[owner[owned]]
    return out


def _put(submesh: Submesh, target: dict, name: str, values: np.ndarray) -> None:
    if name in submesh.scalars or name in submesh.vectors:
        logger.warning(f"Attribute '{name}' declared for both points and cells, keeping the later one")
        submesh.scalars.pop(name, None)
        submesh.vectors.pop(name, None)
    target[name] = [np.ascontiguousarray(values, dtype=np.float32)]


def _add_attribute(
    submesh: Submesh,
    name: str,
    attribute: DataAttribute,
    location: str,
    resolve: Callable[[np.ndarray], np.ndarray],
) -> None:
    kind = attribute.kind
    if kind in (AttributeKind.SCALARS, AttributeKind.COLOR_SCALARS):
        _put(submesh, submesh.scalars, name, resolve(attribute.values))
    elif kind in (AttributeKind.VECTORS, AttributeKind.NORMALS):
        _put(submesh, submesh.vectors, name, resolve(attribute.values))
    elif kind is AttributeKind.TEXTURE_COORDINATES:
        if location != "point":
            raise UnsupportedFormatError(
                f"Cell texture coordinates '{name}' are not supported", keyword="TEXTURE_COORDINATES"
            )
        values = resolve(attribute.values)
        padded = np.zeros((len(values), 4), dtype=np.float32)
        padded[:, :values.shape[1]] = values
        submesh.texcoords = padded
    elif kind is AttributeKind.FIELD_DATA:
        for array in attribute.arrays:
            key = f"{name}_{array.name}"
            target = submesh.vectors if array.components == 3 else submesh.scalars
            _put(submesh, target, key, resolve(array.values))
    elif kind is AttributeKind.LOOKUP_TABLE:
        logger.debug(f"Ignoring lookup table '{name}'")
    else:
        raise UnsupportedFormatError(f"{kind.value} attributes are not supported", keyword=kind.value)
