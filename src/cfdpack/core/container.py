# Copyright 2025 Allard Peper (Dragon Ace / DragonAceNL)
# Licensed under the Apache License, Version 2.0 (see LICENSE).
# This file is part of cfdpack.

"""
The .c4a binary container.

All numbers are little-endian int32 / float32. Strings are UTF-8 bytes
preceded by their length as a 7-bit variable-length integer.

Version 1 is flat: every submesh is written inline with its attribute
series. Version 2 is indexed: a header directory holds the byte offset of
the submesh block and of one data block per attribute, so a consumer can
load geometry first and pull attribute series on demand. Offsets are
written as placeholders and patched once the data they point to lands.

Layout (version 2):
    int32 version, string name, 6 x float32 bbox, int32 time steps,
    int32 submesh count, int32 submesh block offset,
    int32 attribute count, per attribute: string name, int32 kind
    (0 scalar, 1 vector), int32 block offset
    submesh block: per submesh: string name, int32 time step, bbox,
    vertices, normals, texcoords, colors (int32 count + floats),
    int32 index type, int32 index count + int32 indices
    attribute block: per submesh: int32 key, int32 steps, int32 items,
    int32 components, int32 type (0 float), float32 values (step-major)
"""

from pathlib import Path
from typing import BinaryIO, Union
import logging
import os
import struct
import tempfile

import numpy as np

from .errors import FormatError, IndexOutOfRangeError, TruncatedInputError, UnsupportedFormatError
from .mesh import BoundingBox, CanonicalMesh, Submesh

logger = logging.getLogger(__name__)

SUPPORTED_VERSIONS = (1, 2)

KIND_SCALAR = 0
KIND_VECTOR = 1

TYPE_FLOAT = 0

_INT32 = struct.Struct("<i")
_FLOAT32 = struct.Struct("<f")
_MAX_OFFSET = 2**31 - 1


class ContainerWriter:
    """
    Little-endian primitive writer over a seekable binary stream.

    Raises:
        ValueError: If the stream cannot seek (offsets could not be patched)
    """

    def __init__(self, stream: BinaryIO):
        if not stream.seekable():
            raise ValueError("Container output must be seekable")
        self.stream = stream

    def int32(self, value: int) -> None:
        self.stream.write(_INT32.pack(int(value)))

    def float32(self, value: float) -> None:
        self.stream.write(_FLOAT32.pack(float(value)))

    def int32s(self, values: np.ndarray) -> None:
        self.stream.write(np.asarray(values, dtype="<i4").tobytes())

    def float32s(self, values: np.ndarray) -> None:
        self.stream.write(np.asarray(values, dtype="<f4").tobytes())

    def string(self, value: str) -> None:
        encoded = value.encode("utf-8")
        n = len(encoded)
        prefix = bytearray()
        while n >= 0x80:
            prefix.append((n & 0x7F) | 0x80)
            n >>= 7
        prefix.append(n)
        self.stream.write(bytes(prefix) + encoded)

    def bbox(self, box: BoundingBox) -> None:
        self.float32s(np.array(list(box.minimum) + list(box.maximum), dtype=np.float32))

    def array(self, values: np.ndarray) -> None:
        """Row count followed by the flattened rows."""
        self.int32(len(values))
        self.float32s(values)

    def reserve_offset(self) -> int:
        """Write a placeholder offset and return where it sits."""
        position = self.stream.tell()
        self.int32(-1)
        return position

    def patch_offset(self, placeholder: int) -> int:
        """Point a placeholder at the current position and return that position."""
        current = self.stream.tell()
        if current > _MAX_OFFSET:
            raise FormatError("Container exceeds the 2 GiB offset range", {"offset": current})
        self.stream.seek(placeholder)
        self.int32(current)
        self.stream.seek(current)
        return current


class ContainerReader:
    """Little-endian primitive reader; short reads raise TruncatedInputError."""

    def __init__(self, stream: BinaryIO):
        self.stream = stream

    def _read(self, size: int) -> bytes:
        data = self.stream.read(size)
        if len(data) < size:
            raise TruncatedInputError(
                f"Expected {size} bytes, found {len(data)}", {"offset": self.stream.tell()}
            )
        return data

    def int32(self) -> int:
        return _INT32.unpack(self._read(4))[0]

    def count(self, what: str) -> int:
        value = self.int32()
        if value < 0:
            raise FormatError(f"Negative {what}: {value}", {"offset": self.stream.tell()})
        return value

    def float32(self) -> float:
        return _FLOAT32.unpack(self._read(4))[0]

    def int32s(self, count: int) -> np.ndarray:
        return np.frombuffer(self._read(4 * count), dtype="<i4").astype(np.int32)

    def float32s(self, count: int) -> np.ndarray:
        return np.frombuffer(self._read(4 * count), dtype="<f4").astype(np.float32)

    def string(self) -> str:
        length = 0
        shift = 0
        while True:
            byte = self._read(1)[0]
            length |= (byte & 0x7F) << shift
            if not byte & 0x80:
                break
            shift += 7
            if shift > 28:
                raise FormatError("Malformed string length prefix", {"offset": self.stream.tell()})
        return self._read(length).decode("utf-8")

    def bbox(self) -> BoundingBox:
        values = self.float32s(6)
        return BoundingBox(
            tuple(float(v) for v in values[:3]),
            tuple(float(v) for v in values[3:]),
        )

    def array(self, components: int) -> np.ndarray:
        rows = self.count("array length")
        return self.float32s(rows * components).reshape(rows, components)

    def seek(self, offset: int) -> None:
        self.stream.seek(offset)


# ----------------------------------------------------------------------
# Validation
# ----------------------------------------------------------------------

def _validate(mesh: CanonicalMesh, version: int) -> None:
    if version not in SUPPORTED_VERSIONS:
        raise UnsupportedFormatError(
            f"Unsupported container version: {version}", context={"version": version}
        )

    for key, submesh in mesh.submeshes.items():
        indices = submesh.indices
        if len(indices) and (int(indices.min()) < 0 or int(indices.max()) >= submesh.vertex_count):
            raise IndexOutOfRangeError(
                f"Submesh '{submesh.name}' indexes past its {submesh.vertex_count} vertices",
                {"submesh": key},
            )
        for name, series in list(submesh.scalars.items()) + list(submesh.vectors.items()):
            shapes = {step.shape for step in series}
            if len(shapes) > 1:
                raise FormatError(
                    f"Attribute '{name}' changes shape between time steps",
                    {"submesh": key, "shapes": sorted(shapes)},
                )

    if version == 2 and mesh.submeshes:
        for name, kind in _directory(mesh):
            components = set()
            for key, submesh in mesh.submeshes.items():
                series = (submesh.scalars if kind == KIND_SCALAR else submesh.vectors).get(name)
                if series is None:
                    raise FormatError(
                        f"Submesh '{submesh.name}' lacks attribute '{name}'", {"submesh": key}
                    )
                if series:
                    components.add(series[0].shape[1])
            if len(components) > 1:
                raise FormatError(
                    f"Attribute '{name}' has differing component counts across submeshes",
                    {"components": sorted(components)},
                )


def _directory(mesh: CanonicalMesh) -> list[tuple[str, int]]:
    first = mesh.first()
    return [(n, KIND_SCALAR) for n in first.scalars] + [(n, KIND_VECTOR) for n in first.vectors]


# ----------------------------------------------------------------------
# Writing
# ----------------------------------------------------------------------

def _write_geometry(writer: ContainerWriter, submesh: Submesh) -> None:
    writer.bbox(submesh.bbox)
    writer.array(submesh.vertices)
    writer.array(submesh.normals)
    writer.array(submesh.texcoords)
    writer.array(submesh.colors)
    writer.int32(submesh.index_type)
    writer.int32(len(submesh.indices))
    writer.int32s(submesh.indices)


def _write_series_v1(writer: ContainerWriter, attributes: dict[str, list[np.ndarray]]) -> None:
    writer.int32(len(attributes))
    for name, series in attributes.items():
        writer.string(name)
        writer.int32(len(series))
        for step in series:
            writer.int32(len(step))
            writer.int32(step.shape[1] if len(step) else 0)
            writer.float32s(step)


def _write_v1(writer: ContainerWriter, mesh: CanonicalMesh) -> None:
    writer.int32(1)
    writer.string(mesh.name)
    writer.bbox(mesh.bbox)
    writer.int32(len(mesh.submeshes))
    for submesh in mesh.submeshes.values():
        writer.string(submesh.name)
        _write_geometry(writer, submesh)
        _write_series_v1(writer, submesh.scalars)
        _write_series_v1(writer, submesh.vectors)


def _write_v2(writer: ContainerWriter, mesh: CanonicalMesh) -> None:
    writer.int32(2)
    writer.string(mesh.name)
    writer.bbox(mesh.bbox)
    writer.int32(mesh.time_step_count)
    writer.int32(len(mesh.submeshes))
    submesh_offset = writer.reserve_offset()

    directory = _directory(mesh) if mesh.submeshes else []
    writer.int32(len(directory))
    placeholders = {}
    for name, kind in directory:
        writer.string(name)
        writer.int32(kind)
        placeholders[name] = writer.reserve_offset()

    writer.patch_offset(submesh_offset)
    for submesh in mesh.submeshes.values():
        writer.string(submesh.name)
        writer.int32(submesh.time_step)
        _write_geometry(writer, submesh)

    for name, kind in directory:
        writer.patch_offset(placeholders[name])
        for key, submesh in mesh.submeshes.items():
            series = submesh.scalars[name] if kind == KIND_SCALAR else submesh.vectors[name]
            items = len(series[0]) if series else 0
            writer.int32(key)
            writer.int32(len(series))
            writer.int32(items)
            writer.int32(series[0].shape[1] if items else 0)
            writer.int32(TYPE_FLOAT)
            for step in series:
                writer.float32s(step)


def write_mesh(mesh: CanonicalMesh, stream: BinaryIO, version: int = 2) -> None:
    """
    Serialize a mesh to a seekable binary stream.

    Raises:
        UnsupportedFormatError: Unknown version
        FormatError: Attribute shapes the container cannot represent
        IndexOutOfRangeError: A triangle references a missing vertex
        ValueError: Stream is not seekable
    """
    _validate(mesh, version)
    writer = ContainerWriter(stream)
    if version == 1:
        _write_v1(writer, mesh)
    else:
        _write_v2(writer, mesh)
    mesh.version = version


def save_mesh(mesh: CanonicalMesh, path: Union[str, Path], version: int = 2) -> Path:
    """
    Write a mesh to a container file, replacing the destination atomically.

    The data goes to a temporary file next to the destination first; on
    any failure the temporary file is removed and the destination is
    left untouched.

    Returns:
        The destination path
    """
    path = Path(path)
    _validate(mesh, version)

    tmp = tempfile.NamedTemporaryFile(
        "wb", prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent), delete=False
    )
    try:
        with tmp:
            write_mesh(mesh, tmp, version)
        os.replace(tmp.name, path)
    except BaseException:
        if os.path.exists(tmp.name):
            os.unlink(tmp.name)
        raise

    logger.info(
        f"Saved {path} (v{version}): {len(mesh.submeshes)} submeshes, "
        f"{mesh.time_step_count} time steps, {path.stat().st_size:,} bytes"
    )
    return path


# ----------------------------------------------------------------------
# Reading
# ----------------------------------------------------------------------

def _read_geometry(reader: ContainerReader, name: str, time_step: int) -> Submesh:
    bbox = reader.bbox()
    vertices = reader.array(3)
    normals = reader.array(3)
    texcoords = reader.array(4)
    colors = reader.array(4)
    index_type = reader.int32()
    indices = reader.int32s(reader.count("index count"))
    return Submesh(
        name=name,
        vertices=vertices,
        indices=indices,
        index_type=index_type,
        time_step=time_step,
        normals=normals,
        texcoords=texcoords,
        colors=colors,
        bbox=bbox,
    )


def _read_series_v1(reader: ContainerReader) -> dict[str, list[np.ndarray]]:
    attributes = {}
    for _ in range(reader.count("attribute count")):
        name = reader.string()
        series = []
        for _ in range(reader.count("time step count")):
            items = reader.count("item count")
            components = reader.count("component count")
            series.append(reader.float32s(items * components).reshape(items, components))
        attributes[name] = series
    return attributes


def _read_v1(reader: ContainerReader) -> CanonicalMesh:
    name = reader.string()
    bbox = reader.bbox()
    submeshes = {}
    for key in range(reader.count("submesh count")):
        submesh = _read_geometry(reader, reader.string(), 0)
        submesh.scalars = _read_series_v1(reader)
        submesh.vectors = _read_series_v1(reader)
        submeshes[key] = submesh

    steps = max((s.series_length for s in submeshes.values()), default=0)
    return CanonicalMesh(
        name=name,
        submeshes=submeshes,
        time_step_count=max(steps, 1),
        version=1,
        bbox=bbox,
    )


def _read_v2(reader: ContainerReader) -> CanonicalMesh:
    name = reader.string()
    bbox = reader.bbox()
    time_steps = reader.int32()
    n_submeshes = reader.count("submesh count")
    submesh_offset = reader.int32()

    directory = []
    for _ in range(reader.count("attribute count")):
        attr_name = reader.string()
        kind = reader.int32()
        if kind not in (KIND_SCALAR, KIND_VECTOR):
            raise FormatError(f"Unknown attribute kind {kind} for '{attr_name}'")
        directory.append((attr_name, kind, reader.int32()))

    reader.seek(submesh_offset)
    ordered = []
    for _ in range(n_submeshes):
        sub_name = reader.string()
        ordered.append(_read_geometry(reader, sub_name, reader.int32()))

    keys = list(range(n_submeshes))
    for attr_name, kind, offset in directory:
        reader.seek(offset)
        for position, submesh in enumerate(ordered):
            keys[position] = reader.int32()
            steps = reader.count("time step count")
            items = reader.count("item count")
            components = reader.count("component count")
            data_type = reader.int32()
            if data_type != TYPE_FLOAT:
                raise UnsupportedFormatError(
                    f"Attribute '{attr_name}' has data type {data_type}", context={"type": data_type}
                )
            values = reader.float32s(steps * items * components).reshape(steps, items, components)
            target = submesh.scalars if kind == KIND_SCALAR else submesh.vectors
            target[attr_name] = list(values)

    return CanonicalMesh(
        name=name,
        submeshes=dict(zip(keys, ordered)),
        time_step_count=time_steps,
        version=2,
        bbox=bbox,
    )


def read_mesh(stream: BinaryIO) -> CanonicalMesh:
    """
    Read a container from a binary stream (version 1 or 2).

    Raises:
        UnsupportedFormatError: Unknown version tag
        TruncatedInputError: Data ends early
    """
    reader = ContainerReader(stream)
    version = reader.int32()
    if version == 1:
        return _read_v1(reader)
    if version == 2:
        return _read_v2(reader)
    raise UnsupportedFormatError(f"Unsupported container version: {version}", context={"version": version})


def load_mesh(path: Union[str, Path]) -> CanonicalMesh:
    """
    Load a container file.

    Raises:
        FileNotFoundError: If the file doesn't exist
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Container not found: {path}")
    with open(path, "rb") as f:
        mesh = read_mesh(f)
    logger.info(
        f"Loaded {path}: v{mesh.version}, {len(mesh.submeshes)} submeshes, "
        f"{mesh.time_step_count} time steps"
    )
    return mesh
