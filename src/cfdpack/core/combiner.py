# Copyright 2025 Allard Peper (Dragon Ace / DragonAceNL)
# Licensed under the Apache License, Version 2.0 (see LICENSE).
# This file is part of cfdpack.

"""
Merge per-file canonical meshes into one time-indexed mesh.

When every snapshot shares the first snapshot's geometry, the attribute
series of the later snapshots are appended to the first mesh's submeshes
(one entry per time step). Otherwise the later submeshes are added as
separate submeshes tagged with the time step they came from.
"""

from typing import Optional, Sequence
import logging
import random

from .errors import SeriesMismatchError
from .mesh import CanonicalMesh

logger = logging.getLogger(__name__)

PROBE_MODES = ("all", "random")


def same_geometry(first: CanonicalMesh, other: CanonicalMesh) -> bool:
    """
    Compare two snapshots on submesh count and the first submesh's geometry.

    The first submesh is compared on name, vertex count and positions,
    index type and the element-wise index list.
    """
    if len(first.submeshes) != len(other.submeshes):
        return False
    if not first.submeshes:
        return True
    return first.first().same_geometry(other.first())


def _probes(count: int, probe: str, seed: Optional[int]) -> list[int]:
    if probe == "all":
        return list(range(1, count))
    if probe == "random":
        return [random.Random(seed).randrange(1, count)]
    raise ValueError(f"Unknown probe mode: {probe!r} (expected one of {PROBE_MODES})")


def combine_time_steps(
    meshes: Sequence[CanonicalMesh],
    probe: str = "all",
    seed: Optional[int] = None,
) -> CanonicalMesh:
    """
    Combine snapshots (in time order) into one mesh.

    Args:
        meshes: One canonical mesh per time step
        probe: "all" compares every snapshot with the first; "random"
            compares a single randomly chosen snapshot
        seed: Seed for the random probe

    Returns:
        The first mesh, mutated in place

    Raises:
        ValueError: If no meshes are given or the probe mode is unknown
        SeriesMismatchError: If a snapshot lacks a submesh or attribute
            the first one has (or the reverse)
    """
    if not meshes:
        raise ValueError("No meshes to combine")
    if len(meshes) == 1:
        return meshes[0]

    first = meshes[0]
    probes = _probes(len(meshes), probe, seed)
    shared = all(same_geometry(first, meshes[i]) for i in probes)
    logger.info(
        f"Combining {len(meshes)} time steps ({'shared' if shared else 'varying'} geometry, "
        f"probe={probe})"
    )

    if shared:
        _merge_attributes(first, meshes)
    else:
        _append_submeshes(first, meshes)

    first.time_step_count = len(meshes)
    return first


def _merge_attributes(first: CanonicalMesh, meshes: Sequence[CanonicalMesh]) -> None:
    # validate everything before touching the first mesh
    for step, other in enumerate(meshes[1:], start=1):
        for key, submesh in first.submeshes.items():
            if key not in other.submeshes:
                raise SeriesMismatchError(
                    f"Time step {step} has no submesh {key}", {"step": step, "submesh": key}
                )
            theirs = other.submeshes[key]
            for label, ours_map, theirs_map in (
                ("scalar", submesh.scalars, theirs.scalars),
                ("vector", submesh.vectors, theirs.vectors),
            ):
                missing = set(ours_map) ^ set(theirs_map)
                if missing:
                    raise SeriesMismatchError(
                        f"Time step {step} {label} attributes differ from the first step",
                        {"step": step, "submesh": key, "attributes": sorted(missing)},
                    )

    for other in meshes[1:]:
        for key, submesh in first.submeshes.items():
            theirs = other.submeshes[key]
            for name, series in theirs.scalars.items():
                submesh.scalars[name].extend(series)
            for name, series in theirs.vectors.items():
                submesh.vectors[name].extend(series)


def _append_submeshes(first: CanonicalMesh, meshes: Sequence[CanonicalMesh]) -> None:
    next_key = max(first.submeshes, default=-1) + 1
    for step, other in enumerate(meshes[1:], start=1):
        for submesh in other.submeshes.values():
            submesh.time_step = step
            first.submeshes[next_key] = submesh
            next_key += 1
    first.update_bbox()
