# Copyright 2025 Allard Peper (Dragon Ace / DragonAceNL)
# Licensed under the Apache License, Version 2.0 (see LICENSE).
# This file is part of cfdpack.

"""
Canonical triangulated mesh model.

A CanonicalMesh is built once per conversion, mutated in place by the
combiner and the slicer, then serialized. Each Submesh owns its vertex
arrays, its flat triangle index list and two attribute dictionaries that
map an attribute name to a per-time-step list of (n, c) float32 arrays.
"""

from dataclasses import dataclass, field
from typing import Iterable, Optional
import logging

import numpy as np
import trimesh

logger = logging.getLogger(__name__)

INDEX_POINTS = 0
INDEX_TRIANGLES = 1

AttributeSeries = dict[str, list[np.ndarray]]


def _empty(components: int) -> np.ndarray:
    return np.empty((0, components), dtype=np.float32)


@dataclass
class BoundingBox:
    """Axis-aligned bounding box."""
    minimum: tuple[float, float, float] = (0.0, 0.0, 0.0)
    maximum: tuple[float, float, float] = (0.0, 0.0, 0.0)

    @classmethod
    def from_points(cls, points: np.ndarray) -> "BoundingBox":
        """Per-axis min/max of an (n, 3) array; all zeros when empty."""
        if points is None or len(points) == 0:
            return cls()
        lo = points.min(axis=0)
        hi = points.max(axis=0)
        return cls(tuple(float(v) for v in lo), tuple(float(v) for v in hi))

    def union(self, other: "BoundingBox") -> "BoundingBox":
        return BoundingBox(
            tuple(min(a, b) for a, b in zip(self.minimum, other.minimum)),
            tuple(max(a, b) for a, b in zip(self.maximum, other.maximum)),
        )

    @property
    def extents(self) -> tuple[float, float, float]:
        return tuple(hi - lo for lo, hi in zip(self.minimum, self.maximum))

    def to_dict(self) -> dict:
        return {"min": list(self.minimum), "max": list(self.maximum)}


@dataclass
class Submesh:
    """
    One triangulated geometry block.

    Attributes:
        name: Submesh name
        vertices: (n, 3) float32 positions
        indices: Flat int32 index list; triples form triangles when
            index_type is INDEX_TRIANGLES
        index_type: INDEX_POINTS or INDEX_TRIANGLES
        time_step: Time step this submesh was taken from
        normals: (n, 3) or empty
        texcoords: (n, 4) or empty
        colors: (n, 4) or empty
        scalars: Scalar attribute series, per time step (n, c)
        vectors: Vector attribute series, per time step (n, 3)
        bbox: Bounding box of the vertices
    """
    name: str
    vertices: np.ndarray = field(default_factory=lambda: _empty(3))
    indices: np.ndarray = field(default_factory=lambda: np.empty(0, dtype=np.int32))
    index_type: int = INDEX_TRIANGLES
    time_step: int = 0
    normals: np.ndarray = field(default_factory=lambda: _empty(3))
    texcoords: np.ndarray = field(default_factory=lambda: _empty(4))
    colors: np.ndarray = field(default_factory=lambda: _empty(4))
    scalars: AttributeSeries = field(default_factory=dict)
    vectors: AttributeSeries = field(default_factory=dict)
    bbox: Optional[BoundingBox] = None

    def __post_init__(self):
        if self.bbox is None:
            self.bbox = BoundingBox.from_points(self.vertices)

    @property
    def vertex_count(self) -> int:
        return int(len(self.vertices))

    @property
    def triangle_count(self) -> int:
        if self.index_type != INDEX_TRIANGLES:
            return 0
        return int(len(self.indices) // 3)

    @property
    def series_length(self) -> int:
        """Longest attribute series (0 when the submesh has no attributes)."""
        lengths = [len(s) for s in self.scalars.values()] + [len(s) for s in self.vectors.values()]
        return max(lengths, default=0)

    def attribute(self, name: str) -> list[np.ndarray]:
        """Series of a scalar or vector attribute by name."""
        if name in self.scalars:
            return self.scalars[name]
        if name in self.vectors:
            return self.vectors[name]
        raise KeyError(f"Submesh '{self.name}' has no attribute '{name}'")

    def attribute_names(self) -> list[str]:
        return list(self.scalars) + list(self.vectors)

    def update_bbox(self) -> BoundingBox:
        self.bbox = BoundingBox.from_points(self.vertices)
        return self.bbox

    def same_geometry(self, other: "Submesh") -> bool:
        """True if both submeshes share name, vertices, index type and indices."""
        return (
            self.name == other.name
            and self.vertex_count == other.vertex_count
            and self.index_type == other.index_type
            and len(self.indices) == len(other.indices)
            and np.array_equal(self.vertices, other.vertices)
            and np.array_equal(self.indices, other.indices)
        )

    def to_trimesh(self) -> trimesh.Trimesh:
        """
        Convert to a trimesh object (geometry only).

        Raises:
            ValueError: If the submesh holds points rather than triangles
        """
        if self.index_type != INDEX_TRIANGLES:
            raise ValueError(f"Submesh '{self.name}' holds points, not triangles")
        kwargs = {}
        if len(self.normals) == self.vertex_count and self.vertex_count:
            kwargs["vertex_normals"] = self.normals
        return trimesh.Trimesh(
            vertices=self.vertices.astype(np.float64),
            faces=self.indices.reshape(-1, 3),
            process=False,
            **kwargs,
        )

    def to_dict(self) -> dict:
        """Summary for reports and the inspect command."""
        return {
            "name": self.name,
            "time_step": self.time_step,
            "vertices": self.vertex_count,
            "triangles": self.triangle_count,
            "index_type": "triangles" if self.index_type == INDEX_TRIANGLES else "points",
            "bbox": self.bbox.to_dict(),
            "scalars": {k: _series_shape(v) for k, v in self.scalars.items()},
            "vectors": {k: _series_shape(v) for k, v in self.vectors.items()},
        }


def _series_shape(series: list[np.ndarray]) -> dict:
    components = int(series[0].shape[1]) if series and series[0].ndim == 2 else 1
    return {"steps": len(series), "components": components}


@dataclass
class CanonicalMesh:
    """
    A named, possibly time-varying collection of submeshes.

    Attributes:
        name: Mesh name (taken from the first source's description)
        submeshes: Submeshes keyed by an integer, in key order
        time_step_count: Number of time steps the mesh covers
        version: Container version the mesh was read from or will be written as
        bbox: Global bounding box
    """
    name: str
    submeshes: dict[int, Submesh] = field(default_factory=dict)
    time_step_count: int = 1
    version: int = 2
    bbox: Optional[BoundingBox] = None

    def __post_init__(self):
        if self.bbox is None:
            self.update_bbox()

    @property
    def vertex_count(self) -> int:
        return sum(s.vertex_count for s in self.submeshes.values())

    @property
    def triangle_count(self) -> int:
        return sum(s.triangle_count for s in self.submeshes.values())

    def first(self) -> Submesh:
        return self.submeshes[next(iter(self.submeshes))]

    def update_bbox(self) -> BoundingBox:
        """Recompute the global bounding box as the union of the submesh boxes."""
        boxes = [s.bbox for s in self.submeshes.values() if s.vertex_count]
        if not boxes:
            self.bbox = BoundingBox()
            return self.bbox
        box = boxes[0]
        for other in boxes[1:]:
            box = box.union(other)
        self.bbox = box
        return box

    def attribute_names(self) -> list[str]:
        """Attribute names of the first submesh (the container's directory)."""
        if not self.submeshes:
            return []
        return self.first().attribute_names()

    def to_trimesh(self, keys: Optional[Iterable[int]] = None) -> trimesh.Trimesh:
        """
        Convert one or more submeshes to a single trimesh object.

        Args:
            keys: Submesh keys to include (all triangle submeshes by default)
        """
        if keys is None:
            keys = [k for k, s in self.submeshes.items() if s.index_type == INDEX_TRIANGLES]
        parts = [self.submeshes[k].to_trimesh() for k in keys]
        if not parts:
            raise ValueError(f"Mesh '{self.name}' has no triangle submeshes")
        if len(parts) == 1:
            return parts[0]
        return trimesh.util.concatenate(parts)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "version": self.version,
            "time_steps": self.time_step_count,
            "bbox": self.bbox.to_dict(),
            "vertices": self.vertex_count,
            "triangles": self.triangle_count,
            "submeshes": {str(k): s.to_dict() for k, s in self.submeshes.items()},
        }
