# Copyright 2025 Allard Peper (Dragon Ace / DragonAceNL)
# Licensed under the Apache License, Version 2.0 (see LICENSE).
# This file is part of cfdpack.

"""
Core conversion pipeline.

This module provides the building blocks for turning legacy VTK
snapshots into .c4a containers:
- tokens / parser: Read legacy VTK files into Datasets
- transcoder: Triangulate a Dataset into a canonical mesh
- combiner / slicer: Merge time steps, split oversized submeshes
- container: Read and write the binary container
- pipeline / job: End-to-end conversion and job files
- playback: Time-step cursor and vertex colors for viewers
"""

from .errors import (
    CfdPackError,
    FormatError,
    UnsupportedFormatError,
    TruncatedInputError,
    IndexOutOfRangeError,
    SeriesMismatchError,
)

from .tokens import ScalarType, TokenReader

from .dataset import (
    AttributeKind,
    Cell,
    CellBlock,
    CellType,
    DataAttribute,
    Dataset,
    DatasetKind,
    FieldArray,
)

from .parser import (
    SectionRegistry,
    register_section,
    parse_dataset,
    load_dataset,
)

from .mesh import (
    INDEX_POINTS,
    INDEX_TRIANGLES,
    BoundingBox,
    CanonicalMesh,
    Submesh,
)

from .transcoder import transcode, vertex_owners
from .combiner import combine_time_steps, same_geometry
from .slicer import DEFAULT_BUDGET, slice_mesh, slice_submesh

from .container import (
    ContainerReader,
    ContainerWriter,
    load_mesh,
    read_mesh,
    save_mesh,
    write_mesh,
)

from .job import ConversionJob, ConvertOptions
from .pipeline import ConversionResult, convert, load_meshes
from .playback import TimeStepPlayer

__all__ = [
    # Errors
    "CfdPackError",
    "FormatError",
    "UnsupportedFormatError",
    "TruncatedInputError",
    "IndexOutOfRangeError",
    "SeriesMismatchError",
    # Parsing
    "ScalarType",
    "TokenReader",
    "AttributeKind",
    "Cell",
    "CellBlock",
    "CellType",
    "DataAttribute",
    "Dataset",
    "DatasetKind",
    "FieldArray",
    "SectionRegistry",
    "register_section",
    "parse_dataset",
    "load_dataset",
    # Mesh model
    "INDEX_POINTS",
    "INDEX_TRIANGLES",
    "BoundingBox",
    "CanonicalMesh",
    "Submesh",
    # Processing
    "transcode",
    "vertex_owners",
    "combine_time_steps",
    "same_geometry",
    "DEFAULT_BUDGET",
    "slice_mesh",
    "slice_submesh",
    # Container
    "ContainerReader",
    "ContainerWriter",
    "load_mesh",
    "read_mesh",
    "save_mesh",
    "write_mesh",
    # Pipeline
    "ConversionJob",
    "ConvertOptions",
    "ConversionResult",
    "convert",
    "load_meshes",
    "TimeStepPlayer",
]
