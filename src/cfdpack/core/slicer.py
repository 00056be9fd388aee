# Copyright 2025 Allard Peper (Dragon Ace / DragonAceNL)
# Licensed under the Apache License, Version 2.0 (see LICENSE).
# This file is part of cfdpack.

"""
Vertex-budget slicing of oversized submeshes.

Some consumers cap the number of vertices per draw batch. The slicer
walks a submesh's triangles in order and cuts it into pieces of roughly
equal vertex count, each below the budget, without splitting a triangle.
"""

import logging
import math

import numpy as np

from .mesh import INDEX_TRIANGLES, CanonicalMesh, Submesh

logger = logging.getLogger(__name__)

DEFAULT_BUDGET = 60000


def slice_submesh(submesh: Submesh, budget: int = DEFAULT_BUDGET) -> list[Submesh]:
    """
    Split one submesh so that no piece has more than ``budget`` vertices.

    Args:
        submesh: Submesh to split
        budget: Maximum vertex count per piece

    Returns:
        ``[submesh]`` (the same object) when already within budget,
        otherwise the pieces named ``<name>_<ordinal>``

    Raises:
        ValueError: If budget is smaller than one triangle
    """
    if budget < 3:
        raise ValueError(f"Vertex budget must be at least 3, got {budget}")

    total = submesh.vertex_count
    if total <= budget:
        return [submesh]

    planned = math.ceil(total / budget)
    target = total // planned
    group = 3 if submesh.index_type == INDEX_TRIANGLES else 1
    indices = submesh.indices.tolist()

    pieces: list[Submesh] = []
    remap: dict[int, int] = {}
    local: list[int] = []

    def close() -> None:
        pieces.append(_make_piece(submesh, list(remap), local, len(pieces)))
        remap.clear()
        local.clear()

    for start in range(0, len(indices), group):
        element = indices[start:start + group]
        added = len({v for v in element if v not in remap})
        if remap and len(remap) + added > budget:
            close()

        for v in element:
            if v not in remap:
                remap[v] = len(remap)
            local.append(remap[v])

        if len(remap) >= target and (len(pieces) < planned - 1 or len(remap) >= budget):
            close()

    if remap:
        close()

    logger.debug(
        f"Sliced '{submesh.name}' ({total:,} vertices) into {len(pieces)} pieces "
        f"(budget {budget:,}, target {target:,})"
    )
    return pieces


def _make_piece(source: Submesh, order: list[int], local: list[int], ordinal: int) -> Submesh:
    """Build a piece holding only the vertices in ``order``, re-indexed by ``local``."""
    take = np.asarray(order, dtype=np.int64)
    total = source.vertex_count

    def pick(values: np.ndarray) -> np.ndarray:
        if len(values) != total:
            return values[:0].copy()
        return values[take]

    return Submesh(
        name=f"{source.name}_{ordinal}",
        vertices=source.vertices[take],
        indices=np.asarray(local, dtype=np.int32),
        index_type=source.index_type,
        time_step=source.time_step,
        normals=pick(source.normals),
        texcoords=pick(source.texcoords),
        colors=pick(source.colors),
        scalars={k: [step[take] for step in v] for k, v in source.scalars.items()},
        vectors={k: [step[take] for step in v] for k, v in source.vectors.items()},
    )


def slice_mesh(mesh: CanonicalMesh, budget: int = DEFAULT_BUDGET) -> CanonicalMesh:
    """
    Slice every oversized submesh of a mesh in place.

    Submesh keys are renumbered sequentially, keeping their order.

    Returns:
        The same mesh
    """
    if budget < 3:
        raise ValueError(f"Vertex budget must be at least 3, got {budget}")

    sliced: dict[int, Submesh] = {}
    for submesh in mesh.submeshes.values():
        for piece in slice_submesh(submesh, budget):
            sliced[len(sliced)] = piece

    if len(sliced) != len(mesh.submeshes):
        logger.info(f"Sliced {len(mesh.submeshes)} submeshes into {len(sliced)} (budget {budget:,})")
    mesh.submeshes = sliced
    return mesh
