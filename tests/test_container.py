# Copyright 2025 Allard Peper (Dragon Ace / DragonAceNL)
# Licensed under the Apache License, Version 2.0 (see LICENSE).
# This file is part of cfdpack.

"""Tests for the .c4a container."""

import io
import struct

import numpy as np
import pytest

from cfdpack.core import (
    CanonicalMesh,
    ContainerReader,
    ContainerWriter,
    FormatError,
    IndexOutOfRangeError,
    TruncatedInputError,
    UnsupportedFormatError,
    combine_time_steps,
    load_mesh,
    read_mesh,
    save_mesh,
    write_mesh,
)

from conftest import make_submesh


def roundtrip(mesh: CanonicalMesh, version: int) -> CanonicalMesh:
    stream = io.BytesIO()
    write_mesh(mesh, stream, version)
    stream.seek(0)
    return read_mesh(stream)


def assert_same_mesh(expected: CanonicalMesh, actual: CanonicalMesh) -> None:
    assert actual.name == expected.name
    assert list(actual.submeshes) == list(expected.submeshes)
    for key, submesh in expected.submeshes.items():
        other = actual.submeshes[key]
        assert other.name == submesh.name
        assert other.time_step == submesh.time_step
        np.testing.assert_array_equal(other.vertices, submesh.vertices)
        np.testing.assert_array_equal(other.indices, submesh.indices)
        assert set(other.scalars) == set(submesh.scalars)
        for name, series in submesh.scalars.items():
            assert len(other.scalars[name]) == len(series)
            for ours, theirs in zip(series, other.scalars[name]):
                np.testing.assert_array_equal(theirs, ours)
        for name, series in submesh.vectors.items():
            for ours, theirs in zip(series, other.vectors[name]):
                np.testing.assert_array_equal(theirs, ours)


class TestPrimitives:
    """Tests for the little-endian primitives."""

    def test_string_prefix(self):
        """Test the 7-bit length prefix."""
        stream = io.BytesIO()
        writer = ContainerWriter(stream)
        writer.string("ab")
        writer.string("x" * 200)
        data = stream.getvalue()
        assert data[:3] == b"\x02ab"
        # 200 = 0b1_1001000 -> 0xC8 0x01
        assert data[3:5] == b"\xc8\x01"

        reader = ContainerReader(io.BytesIO(data))
        assert reader.string() == "ab"
        assert reader.string() == "x" * 200

    def test_utf8_names(self):
        """Test a non-ASCII string."""
        stream = io.BytesIO()
        ContainerWriter(stream).string("Strömung")
        assert ContainerReader(io.BytesIO(stream.getvalue())).string() == "Strömung"

    def test_int32_little_endian(self):
        """Test the integer byte order."""
        stream = io.BytesIO()
        ContainerWriter(stream).int32(2)
        assert stream.getvalue() == struct.pack("<i", 2)

    def test_patch_offset(self):
        """Test that a reserved offset is filled in later."""
        stream = io.BytesIO()
        writer = ContainerWriter(stream)
        slot = writer.reserve_offset()
        writer.int32(7)
        target = writer.patch_offset(slot)
        writer.int32(9)
        reader = ContainerReader(io.BytesIO(stream.getvalue()))
        assert reader.int32() == target == 8

    def test_non_seekable_stream(self):
        """Test that the writer needs a seekable stream."""

        class Pipe(io.RawIOBase):
            def writable(self):
                return True

            def seekable(self):
                return False

        with pytest.raises(ValueError):
            ContainerWriter(Pipe())

    def test_truncated(self):
        """Test a short read."""
        with pytest.raises(TruncatedInputError):
            ContainerReader(io.BytesIO(b"\x01\x00")).int32()


class TestRoundTrip:
    """Tests for writing and reading back."""

    @pytest.mark.parametrize("version", [1, 2])
    def test_single_step(self, version):
        """Test a one-step mesh in both versions."""
        mesh = CanonicalMesh(name="single", submeshes={0: make_submesh(12, with_attributes=False)})
        mesh.first().scalars["pressure"] = [np.arange(12, dtype=np.float32).reshape(-1, 1)]
        result = roundtrip(mesh, version)
        assert result.version == version
        assert result.time_step_count == 1
        assert_same_mesh(mesh, result)

    def test_v2_time_series(self, strip_mesh):
        """Test a shared-geometry series in version 2."""
        result = roundtrip(strip_mesh, 2)
        assert result.time_step_count == 2
        assert_same_mesh(strip_mesh, result)
        assert result.bbox == strip_mesh.bbox

    def test_v1_time_series(self, strip_mesh):
        """Test that version 1 derives the step count from the series."""
        result = roundtrip(strip_mesh, 1)
        assert result.time_step_count == 2
        assert_same_mesh(strip_mesh, result)

    def test_v2_varying_geometry(self):
        """Test submeshes tagged with their time steps."""
        meshes = [
            CanonicalMesh(name="run", submeshes={0: make_submesh(n)}) for n in (10, 12)
        ]
        for mesh in meshes:
            for series in list(mesh.first().scalars.values()) + list(mesh.first().vectors.values()):
                del series[1:]
        combined = combine_time_steps(meshes)
        result = roundtrip(combined, 2)
        assert [s.time_step for s in result.submeshes.values()] == [0, 1]
        assert_same_mesh(combined, result)

    def test_v2_keys_preserved(self):
        """Test that non-sequential submesh keys survive version 2."""
        mesh = CanonicalMesh(name="keys", submeshes={3: make_submesh(10), 8: make_submesh(10)})
        result = roundtrip(mesh, 2)
        assert list(result.submeshes) == [3, 8]

    def test_normals_and_colors(self):
        """Test the optional per-vertex arrays."""
        submesh = make_submesh(6, with_attributes=False)
        submesh.normals = np.tile(np.array([0, 0, 1], dtype=np.float32), (6, 1))
        submesh.colors = np.ones((6, 4), dtype=np.float32)
        result = roundtrip(CanonicalMesh(name="n", submeshes={0: submesh}), 2)
        np.testing.assert_array_equal(result.first().normals, submesh.normals)
        np.testing.assert_array_equal(result.first().colors, submesh.colors)
        assert result.first().texcoords.shape == (0, 4)

    def test_v2_attribute_directory(self, strip_mesh):
        """Test the directory kinds written in the header."""
        stream = io.BytesIO()
        write_mesh(strip_mesh, stream, 2)
        reader = ContainerReader(io.BytesIO(stream.getvalue()))
        assert reader.int32() == 2
        assert reader.string() == "strip"
        reader.bbox()
        assert reader.int32() == 2
        assert reader.int32() == 1
        reader.int32()
        assert reader.int32() == 2
        assert (reader.string(), reader.int32()) == ("pressure", 0)
        reader.int32()
        assert (reader.string(), reader.int32()) == ("velocity", 1)


class TestValidation:
    """Tests for meshes the container cannot hold."""

    def test_unknown_version(self, strip_mesh):
        """Test writing version 3."""
        with pytest.raises(UnsupportedFormatError):
            write_mesh(strip_mesh, io.BytesIO(), 3)

    def test_read_unknown_version(self):
        """Test reading a version tag of 7."""
        with pytest.raises(UnsupportedFormatError):
            read_mesh(io.BytesIO(struct.pack("<i", 7)))

    def test_read_truncated(self, strip_mesh):
        """Test reading a container cut short."""
        stream = io.BytesIO()
        write_mesh(strip_mesh, stream, 2)
        with pytest.raises(TruncatedInputError):
            read_mesh(io.BytesIO(stream.getvalue()[:-10]))

    def test_index_out_of_range(self, strip_mesh):
        """Test a triangle pointing past the vertices."""
        strip_mesh.first().indices[0] = 99
        with pytest.raises(IndexOutOfRangeError):
            write_mesh(strip_mesh, io.BytesIO(), 2)

    def test_shape_change_between_steps(self, strip_mesh):
        """Test a series whose steps differ in shape."""
        strip_mesh.first().scalars["pressure"][1] = np.zeros((10, 2), dtype=np.float32)
        with pytest.raises(FormatError):
            write_mesh(strip_mesh, io.BytesIO(), 1)

    def test_v2_missing_attribute(self):
        """Test a submesh lacking an attribute in the directory."""
        second = make_submesh(10)
        del second.vectors["velocity"]
        mesh = CanonicalMesh(name="m", submeshes={0: make_submesh(10), 1: second})
        with pytest.raises(FormatError):
            write_mesh(mesh, io.BytesIO(), 2)
        # version 1 stores attributes per submesh
        write_mesh(mesh, io.BytesIO(), 1)

    def test_v2_component_mismatch(self):
        """Test an attribute with different widths across submeshes."""
        second = make_submesh(10)
        second.scalars["pressure"] = [np.zeros((10, 2), dtype=np.float32)] * 2
        mesh = CanonicalMesh(name="m", submeshes={0: make_submesh(10), 1: second})
        with pytest.raises(FormatError):
            write_mesh(mesh, io.BytesIO(), 2)


class TestFiles:
    """Tests for saving and loading files."""

    def test_save_and_load(self, tmp_path, strip_mesh):
        """Test a file round trip."""
        path = save_mesh(strip_mesh, tmp_path / "strip.c4a")
        assert path.exists()
        loaded = load_mesh(path)
        assert loaded.time_step_count == 2
        assert_same_mesh(strip_mesh, loaded)

    def test_failed_save_keeps_destination(self, tmp_path, strip_mesh):
        """Test that a failed write leaves the old file alone."""
        path = tmp_path / "strip.c4a"
        path.write_bytes(b"previous")
        strip_mesh.first().indices[0] = 99
        with pytest.raises(IndexOutOfRangeError):
            save_mesh(strip_mesh, path)
        assert path.read_bytes() == b"previous"
        assert [p.name for p in tmp_path.iterdir()] == ["strip.c4a"]

    def test_interrupted_write_removes_temp_file(self, tmp_path, strip_mesh, monkeypatch):
        """Test a failure after part of the container was written."""
        from cfdpack.core import container

        def broken(writer, mesh):
            writer.int32(2)
            raise OSError("disk full")

        monkeypatch.setattr(container, "_write_v2", broken)
        path = tmp_path / "strip.c4a"
        path.write_bytes(b"previous")
        with pytest.raises(OSError):
            save_mesh(strip_mesh, path)
        assert path.read_bytes() == b"previous"
        assert [p.name for p in tmp_path.iterdir()] == ["strip.c4a"]

    def test_load_missing(self, tmp_path):
        """Test loading a missing container."""
        with pytest.raises(FileNotFoundError):
            load_mesh(tmp_path / "missing.c4a")
