# Copyright 2025 Allard Peper (Dragon Ace / DragonAceNL)
# Licensed under the Apache License, Version 2.0 (see LICENSE).
# This file is part of cfdpack.

"""Tests for vertex-budget slicing."""

import numpy as np
import pytest

from cfdpack.core import (
    INDEX_POINTS,
    CanonicalMesh,
    Submesh,
    slice_mesh,
    slice_submesh,
)

from conftest import make_submesh


def triangles(submesh: Submesh) -> set[tuple]:
    """Triangles as tuples of vertex positions, independent of indexing."""
    corners = submesh.vertices[submesh.indices.reshape(-1, 3)]
    return {tuple(map(tuple, tri)) for tri in corners.tolist()}


class TestSliceSubmesh:
    """Tests for slicing one submesh."""

    def test_within_budget_is_unchanged(self):
        """Test that a small submesh is returned as the same object."""
        submesh = make_submesh(100)
        pieces = slice_submesh(submesh, budget=100)
        assert len(pieces) == 1
        assert pieces[0] is submesh

    def test_large_submesh(self):
        """Test 150,000 vertices with a 60,000 budget."""
        submesh = make_submesh(150_000)
        pieces = slice_submesh(submesh, budget=60_000)

        assert len(pieces) == 3
        assert all(p.vertex_count <= 60_000 for p in pieces)
        assert sum(p.triangle_count for p in pieces) == submesh.triangle_count
        assert [p.name for p in pieces] == ["block_0", "block_1", "block_2"]

    def test_pieces_are_self_contained(self):
        """Test that every piece indexes only its own vertices."""
        pieces = slice_submesh(make_submesh(1000), budget=300)
        for piece in pieces:
            assert piece.indices.min() >= 0
            assert piece.indices.max() < piece.vertex_count
            assert piece.vertex_count <= 300
            assert len(piece.indices) % 3 == 0

    def test_triangles_preserved(self):
        """Test that slicing neither loses nor invents triangles."""
        submesh = make_submesh(500)
        pieces = slice_submesh(submesh, budget=120)
        assert len(pieces) > 1
        combined = set()
        for piece in pieces:
            combined |= triangles(piece)
        assert combined == triangles(submesh)

    def test_attributes_follow_vertices(self):
        """Test that attribute series are gathered with their vertices."""
        submesh = make_submesh(400)
        for piece in slice_submesh(submesh, budget=150):
            pressure = piece.scalars["pressure"]
            assert len(pressure) == 2
            np.testing.assert_array_equal(pressure[0][:, 0], piece.vertices[:, 0])
            np.testing.assert_array_equal(pressure[1][:, 0], piece.vertices[:, 0] * 2)
            assert piece.vectors["velocity"][1].shape == (piece.vertex_count, 3)

    def test_bbox_recomputed(self):
        """Test that pieces get their own bounding boxes."""
        pieces = slice_submesh(make_submesh(400), budget=150)
        assert pieces[0].bbox.maximum[0] < pieces[-1].bbox.maximum[0]
        assert pieces[-1].bbox.maximum[0] == 399.0

    def test_point_submesh(self):
        """Test slicing a submesh of points."""
        submesh = Submesh(
            name="cloud",
            vertices=np.zeros((10, 3), dtype=np.float32),
            indices=np.arange(10, dtype=np.int32),
            index_type=INDEX_POINTS,
        )
        pieces = slice_submesh(submesh, budget=4)
        assert all(p.vertex_count <= 4 for p in pieces)
        assert sum(len(p.indices) for p in pieces) == 10
        assert all(p.index_type == INDEX_POINTS for p in pieces)

    def test_budget_too_small(self):
        """Test a budget that cannot hold a triangle."""
        with pytest.raises(ValueError):
            slice_submesh(make_submesh(10), budget=2)


class TestSliceMesh:
    """Tests for slicing every submesh of a mesh."""

    def test_keys_renumbered(self):
        """Test that keys run sequentially after slicing."""
        mesh = CanonicalMesh(
            name="m",
            submeshes={0: make_submesh(50, name="small"), 5: make_submesh(400, name="big")},
        )
        result = slice_mesh(mesh, budget=150)
        assert result is mesh
        assert list(mesh.submeshes) == list(range(len(mesh.submeshes)))
        assert mesh.submeshes[0].name == "small"
        assert mesh.submeshes[1].name == "big_0"
        assert all(s.vertex_count <= 150 for s in mesh.submeshes.values())

    def test_time_step_kept(self):
        """Test that pieces keep their source time step."""
        submesh = make_submesh(400)
        submesh.time_step = 2
        mesh = CanonicalMesh(name="m", submeshes={0: submesh}, time_step_count=3)
        slice_mesh(mesh, budget=150)
        assert all(s.time_step == 2 for s in mesh.submeshes.values())
