# Copyright 2025 Allard Peper (Dragon Ace / DragonAceNL)
# Licensed under the Apache License, Version 2.0 (see LICENSE).
# This file is part of cfdpack.

"""
Legacy VTK dataset parser.

The grammar is held in a section registry: each keyword of each scope
maps to a handler registered with the @register_section decorator. The
top-level loop reads a keyword, dispatches it, and the handler consumes
its section from the shared TokenReader. Scoped loops (dataset geometry,
point/cell attributes) stop at the first keyword outside their scope and
leave it for the enclosing loop.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Union
import logging
import re

import numpy as np

from .dataset import (
    AttributeKind,
    CellBlock,
    DataAttribute,
    Dataset,
    DatasetKind,
    FieldArray,
)
from .errors import CfdPackError, FormatError, UnsupportedFormatError
from .tokens import ScalarType, TokenReader

logger = logging.getLogger(__name__)

# Grammar scopes
TOP = "top"
UNSTRUCTURED_GRID = "unstructured_grid"
POLYDATA = "polydata"
ATTRIBUTES = "attributes"

MAX_DESCRIPTION_LENGTH = 255

_VERSION = re.compile(r"^(\d+)\.(\d+)$")

# Dataset structures that exist in the format but are not read
_UNSUPPORTED_STRUCTURES = {"STRUCTURED_POINTS", "STRUCTURED_GRID", "RECTILINEAR_GRID", "FIELD"}

# Polydata item sections in canonical order
POLYDATA_SECTIONS = ("VERTICES", "LINES", "POLYGONS", "TRIANGLE_STRIPS")


@dataclass
class ParseState:
    """
    Mutable state shared by section handlers.

    Attributes:
        dataset: The dataset being filled
        attributes: Attribute map the current POINT_DATA / CELL_DATA
            section writes into
        count: Record count declared by that section
        location: "point" or "cell"
    """
    dataset: Dataset
    attributes: Optional[dict[str, DataAttribute]] = None
    count: int = 0
    location: str = ""


SectionHandler = Callable[[TokenReader, ParseState], None]


@dataclass
class SectionDefinition:
    """
    Definition of a registered section.

    Attributes:
        scope: Grammar scope the keyword is recognized in
        keyword: Section keyword (upper case)
        func: Handler consuming the section body
        description: Human-readable description
    """
    scope: str
    keyword: str
    func: SectionHandler
    description: str = ""


class SectionRegistry:
    """
    Registry of section handlers per grammar scope.

    Handlers are registered at import time using the @register_section
    decorator. The same handler may be registered in several scopes.
    """

    _sections: dict[tuple[str, str], SectionDefinition] = {}

    @classmethod
    def register(cls, scope: str, keyword: str, func: SectionHandler, description: str = "") -> None:
        cls._sections[(scope, keyword.upper())] = SectionDefinition(
            scope=scope,
            keyword=keyword.upper(),
            func=func,
            description=description,
        )
        logger.debug(f"Registered section: {scope}/{keyword}")

    @classmethod
    def get(cls, scope: str, keyword: str) -> Optional[SectionDefinition]:
        """Get a section handler by scope and keyword (case-insensitive)."""
        return cls._sections.get((scope, keyword.upper()))

    @classmethod
    def exists(cls, scope: str, keyword: str) -> bool:
        return (scope, keyword.upper()) in cls._sections

    @classmethod
    def keywords(cls, scope: Optional[str] = None) -> set[str]:
        """Keywords known in one scope, or in any scope."""
        return {kw for (sc, kw) in cls._sections if scope is None or sc == scope}

    @classmethod
    def get_all(cls) -> dict[tuple[str, str], SectionDefinition]:
        return cls._sections.copy()


def register_section(scope: str, keyword: str, description: str = ""):
    """
    Decorator to register a section handler.

    Example:
        @register_section(ATTRIBUTES, "VECTORS", "3-component vectors")
        def _section_vectors(reader, state):
            ...
    """
    def decorator(func: SectionHandler) -> SectionHandler:
        SectionRegistry.register(scope, keyword, func, description)
        return func
    return decorator


# ----------------------------------------------------------------------
# Entry points
# ----------------------------------------------------------------------

def load_dataset(path: Union[str, Path]) -> Dataset:
    """
    Load and parse one legacy VTK file.

    Args:
        path: Path to the file

    Returns:
        The parsed Dataset

    Raises:
        FileNotFoundError: If the file doesn't exist
        CfdPackError: If the file cannot be parsed
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Dataset file not found: {path}")

    logger.info(f"Loading dataset: {path}")
    reader = TokenReader.from_file(path)
    try:
        dataset = parse_dataset(reader)
    except CfdPackError as e:
        logger.error(f"Failed to parse {path}: {e}")
        raise
    logger.info(
        f"Loaded {path.name}: {dataset.point_count:,} points, {dataset.cell_count:,} cells"
    )
    return dataset


def parse_dataset(reader: TokenReader) -> Dataset:
    """
    Parse a complete dataset from a reader positioned at the file start.

    Raises:
        FormatError: Bad preamble, malformed numbers, inconsistent counts
        UnsupportedFormatError: Unknown or unimplemented section keyword
        TruncatedInputError: Data ends before a declared count is read
    """
    dataset = _read_preamble(reader)
    state = ParseState(dataset=dataset)

    while True:
        token = reader.peek_token()
        if token is None:
            break
        section = SectionRegistry.get(TOP, token)
        if section is None:
            raise UnsupportedFormatError(
                f"Unsupported section: {token}", keyword=token, context=reader.context()
            )
        reader.next_token()
        section.func(reader, state)

    return dataset


def _read_preamble(reader: TokenReader) -> Dataset:
    if reader.peek_line() is None:
        raise FormatError("Empty dataset file", reader.context())

    header = reader.next_line().split()
    match = _VERSION.match(header[-1]) if header else None
    if match is None:
        raise FormatError("Header line does not end with a major.minor version", reader.context())
    version = (int(match.group(1)), int(match.group(2)))

    if reader.peek_line() is None:
        raise FormatError("Missing description line", reader.context())
    description = reader.next_line().strip()
    if len(description) > MAX_DESCRIPTION_LENGTH:
        raise FormatError(
            f"Description exceeds {MAX_DESCRIPTION_LENGTH} characters",
            {**reader.context(), "length": len(description)},
        )

    if reader.peek_line() is None:
        raise FormatError("Missing format line", reader.context())
    encoding = reader.next_line().strip().upper()
    if encoding not in ("ASCII", "BINARY"):
        raise FormatError(f"Unknown data format: {encoding!r}", reader.context())

    reader.binary = encoding == "BINARY"
    logger.debug(f"Header: version {version[0]}.{version[1]}, {encoding}, {description!r}")
    return Dataset(
        version=version,
        description=description,
        binary=reader.binary,
        source=reader.source,
    )


def _read_scope(reader: TokenReader, state: ParseState, scope: str) -> None:
    """Dispatch sections of ``scope`` until a keyword outside it appears."""
    while True:
        token = reader.peek_token()
        if token is None:
            return
        section = SectionRegistry.get(scope, token)
        if section is None:
            return
        reader.next_token()
        section.func(reader, state)


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------

def _header_int(reader: TokenReader, what: str) -> int:
    """Parse a count from a keyword line (always text, even in binary files)."""
    token = reader.next_token()
    try:
        value = int(token, 10)
    except ValueError:
        raise FormatError(f"Malformed {what}: {token!r}", reader.context()) from None
    if value < 0:
        raise FormatError(f"Negative {what}: {value}", reader.context())
    return value


def _expect_keyword(reader: TokenReader, keyword: str) -> None:
    token = reader.next_token()
    if token.upper() != keyword:
        raise FormatError(f"Expected {keyword}, found {token!r}", reader.context())


def _read_legacy_block(reader: TokenReader, count: int, size: int, keyword: str) -> CellBlock:
    """
    Read ``n size`` style topology: each item is its index count followed by the indices.

    Items are read one at a time until ``count`` are in; the declared size
    is only compared afterwards, since some writers count it differently.
    """
    offsets = np.zeros(count + 1, dtype=np.int64)
    items = []
    for i in range(count):
        n = reader.read_int()
        if n < 0:
            raise FormatError(f"{keyword} item {i} has negative length {n}", reader.context())
        items.append(reader.read_ints(n))
        offsets[i + 1] = offsets[i] + n

    used = count + int(offsets[-1])
    if used != size:
        logger.debug(f"{keyword} declared size {size} but items use {used}")
    connectivity = np.concatenate(items) if items else np.empty(0, dtype=np.int64)
    return CellBlock(offsets, connectivity)


def _read_offset_block(reader: TokenReader, n_offsets: int, n_connectivity: int, keyword: str) -> CellBlock:
    """Read the OFFSETS/CONNECTIVITY topology layout."""
    _expect_keyword(reader, "OFFSETS")
    offsets = reader.read_ints(n_offsets, ScalarType.parse(reader.next_token()))
    _expect_keyword(reader, "CONNECTIVITY")
    connectivity = reader.read_ints(n_connectivity, ScalarType.parse(reader.next_token()))

    if n_offsets == 0:
        offsets = np.zeros(1, dtype=np.int64)
    if offsets[0] != 0 or offsets[-1] != n_connectivity or np.any(np.diff(offsets) < 0):
        raise FormatError(f"{keyword} offsets are inconsistent with connectivity", reader.context())
    return CellBlock(offsets, connectivity)


def _read_topology(reader: TokenReader, keyword: str) -> CellBlock:
    first = _header_int(reader, f"{keyword} count")
    second = _header_int(reader, f"{keyword} size")
    upcoming = reader.peek_line()
    if upcoming is not None and upcoming.strip().upper().startswith("OFFSETS"):
        return _read_offset_block(reader, first, second, keyword)
    return _read_legacy_block(reader, first, second, keyword)


def _store_attribute(state: ParseState, attribute: DataAttribute) -> None:
    if attribute.name in state.attributes:
        logger.warning(
            f"{state.location} attribute '{attribute.name}' declared twice, keeping the later one"
        )
    state.attributes[attribute.name] = attribute
    logger.debug(
        f"Read {state.location} {attribute.kind.value} '{attribute.name}' "
        f"({len(attribute)} x {attribute.components})"
    )


def _require_attribute_section(reader: TokenReader, state: ParseState, keyword: str) -> None:
    if state.attributes is None:
        raise FormatError(f"{keyword} outside POINT_DATA / CELL_DATA", reader.context())


def _read_field(reader: TokenReader) -> DataAttribute:
    name = reader.next_token()
    n_arrays = _header_int(reader, "FIELD array count")
    arrays = []
    for _ in range(n_arrays):
        token = reader.peek_token()
        while token is not None and token.upper() == "METADATA":
            reader.next_token()
            _skip_metadata(reader)
            token = reader.peek_token()

        array_name = reader.next_token()
        components = _header_int(reader, f"components of {array_name}")
        tuples = _header_int(reader, f"tuples of {array_name}")
        scalar_type = ScalarType.parse(reader.next_token())
        values = reader.read_values(scalar_type, components * tuples)
        arrays.append(FieldArray(array_name, values.reshape(tuples, components)))

    return DataAttribute(kind=AttributeKind.FIELD_DATA, name=name, arrays=arrays)


def _skip_metadata(reader: TokenReader) -> None:
    """Discard lines until a blank line or one starting with a known keyword."""
    reader.skip_line()
    known = SectionRegistry.keywords()
    while True:
        line = reader.peek_line()
        if line is None:
            return
        words = line.split()
        if not words:
            reader.next_line()
            return
        if words[0].upper() in known:
            return
        reader.next_line()


# ----------------------------------------------------------------------
# Top-level sections
# ----------------------------------------------------------------------

@register_section(TOP, "DATASET", "Dataset structure and geometry")
def _section_dataset(reader: TokenReader, state: ParseState) -> None:
    token = reader.next_token()
    structure = token.upper()
    if state.dataset.kind is not None:
        raise FormatError("Duplicate DATASET section", reader.context())
    if structure in _UNSUPPORTED_STRUCTURES:
        raise UnsupportedFormatError(
            f"Dataset structure {structure} is not supported", keyword=structure, context=reader.context()
        )
    try:
        kind = DatasetKind(structure)
    except ValueError:
        raise UnsupportedFormatError(
            f"Unknown dataset structure: {token}", keyword=token, context=reader.context()
        ) from None

    state.dataset.kind = kind
    logger.debug(f"DATASET {kind.value}")
    scope = UNSTRUCTURED_GRID if kind is DatasetKind.UNSTRUCTURED_GRID else POLYDATA
    _read_scope(reader, state, scope)


@register_section(TOP, "POINT_DATA", "Point-indexed attributes")
def _section_point_data(reader: TokenReader, state: ParseState) -> None:
    count = _header_int(reader, "POINT_DATA count")
    state.dataset.point_data_count = count
    state.attributes = state.dataset.point_data
    state.count = count
    state.location = "point"
    _read_scope(reader, state, ATTRIBUTES)


@register_section(TOP, "CELL_DATA", "Cell-indexed attributes")
def _section_cell_data(reader: TokenReader, state: ParseState) -> None:
    count = _header_int(reader, "CELL_DATA count")
    state.dataset.cell_data_count = count
    state.attributes = state.dataset.cell_data
    state.count = count
    state.location = "cell"
    _read_scope(reader, state, ATTRIBUTES)


@register_section(TOP, "METADATA", "Skipped metadata block")
@register_section(UNSTRUCTURED_GRID, "METADATA", "Skipped metadata block")
@register_section(POLYDATA, "METADATA", "Skipped metadata block")
@register_section(ATTRIBUTES, "METADATA", "Skipped metadata block")
def _section_metadata(reader: TokenReader, state: ParseState) -> None:
    _skip_metadata(reader)


# ----------------------------------------------------------------------
# Geometry sections
# ----------------------------------------------------------------------

@register_section(UNSTRUCTURED_GRID, "POINTS", "Point coordinates")
@register_section(POLYDATA, "POINTS", "Point coordinates")
def _section_points(reader: TokenReader, state: ParseState) -> None:
    count = _header_int(reader, "POINTS count")
    scalar_type = ScalarType.parse(reader.next_token())
    values = reader.read_values(scalar_type, count * 3)
    state.dataset.points = values.reshape(count, 3)
    logger.debug(f"POINTS {count} {scalar_type.value}")


@register_section(UNSTRUCTURED_GRID, "CELLS", "Cell connectivity")
def _section_cells(reader: TokenReader, state: ParseState) -> None:
    state.dataset.cells = _read_topology(reader, "CELLS")
    logger.debug(f"CELLS {len(state.dataset.cells)}")


@register_section(UNSTRUCTURED_GRID, "CELL_TYPES", "Cell type codes")
def _section_cell_types(reader: TokenReader, state: ParseState) -> None:
    count = _header_int(reader, "CELL_TYPES count")
    cells = state.dataset.cells
    if cells is None:
        raise FormatError("CELL_TYPES before CELLS", reader.context())
    if count != len(cells):
        raise FormatError(
            f"CELL_TYPES count {count} does not match cell count {len(cells)}", reader.context()
        )
    state.dataset.cell_types = reader.read_ints(count)


@register_section(POLYDATA, "VERTICES", "Polydata vertices")
@register_section(POLYDATA, "LINES", "Polydata lines")
@register_section(POLYDATA, "POLYGONS", "Polydata polygons")
@register_section(POLYDATA, "TRIANGLE_STRIPS", "Polydata triangle strips")
def _section_polydata_items(reader: TokenReader, state: ParseState) -> None:
    # the dispatched keyword is the last token consumed
    keyword = reader.last_token.upper()
    if keyword in state.dataset.polygons:
        raise FormatError(f"Duplicate {keyword} section", reader.context())
    state.dataset.polygons[keyword] = _read_topology(reader, keyword)
    logger.debug(f"{keyword} {len(state.dataset.polygons[keyword])}")


@register_section(UNSTRUCTURED_GRID, "FIELD", "Dataset-level field data")
@register_section(POLYDATA, "FIELD", "Dataset-level field data")
def _section_dataset_field(reader: TokenReader, state: ParseState) -> None:
    field_data = _read_field(reader)
    state.dataset.field_data[field_data.name] = field_data


# ----------------------------------------------------------------------
# Attribute sections
# ----------------------------------------------------------------------

@register_section(ATTRIBUTES, "SCALARS", "Scalar values with lookup table")
def _section_scalars(reader: TokenReader, state: ParseState) -> None:
    _require_attribute_section(reader, state, "SCALARS")
    name = reader.next_token()
    scalar_type = ScalarType.parse(reader.next_token())
    components = 1
    if reader.has_line_tokens():
        components = _header_int(reader, "SCALARS component count")
        if components < 1:
            raise FormatError(f"SCALARS {name} has no components", reader.context())

    if reader.peek_token() is None or reader.peek_token().upper() != "LOOKUP_TABLE":
        raise FormatError(f"SCALARS {name} must be followed by LOOKUP_TABLE", reader.context())
    reader.next_token()
    table = reader.next_token()

    values = reader.read_values(scalar_type, state.count * components)
    # binary scalars are stored as fractions of 255 whatever their type
    if reader.binary:
        values = values / np.float32(255.0)
    _store_attribute(state, DataAttribute(
        kind=AttributeKind.SCALARS,
        name=name,
        values=values.reshape(state.count, components),
        lookup_table=table,
    ))


@register_section(ATTRIBUTES, "COLOR_SCALARS", "RGBA color values")
def _section_color_scalars(reader: TokenReader, state: ParseState) -> None:
    _require_attribute_section(reader, state, "COLOR_SCALARS")
    name = reader.next_token()
    n_values = _header_int(reader, "COLOR_SCALARS value count")
    if n_values != 4:
        raise UnsupportedFormatError(
            f"COLOR_SCALARS {name} with {n_values} components (only 4 supported)",
            keyword="COLOR_SCALARS",
            context=reader.context(),
        )
    # binary colors are unsigned bytes; text colors are taken as written
    if reader.binary:
        values = reader.read_values(ScalarType.UNSIGNED_CHAR, state.count * 4) / np.float32(255.0)
    else:
        values = reader.read_values(ScalarType.FLOAT, state.count * 4)
    _store_attribute(state, DataAttribute(
        kind=AttributeKind.COLOR_SCALARS,
        name=name,
        values=values.astype(np.float32).reshape(state.count, 4),
    ))


@register_section(ATTRIBUTES, "VECTORS", "3-component vectors")
@register_section(ATTRIBUTES, "NORMALS", "3-component normals")
def _section_vectors(reader: TokenReader, state: ParseState) -> None:
    keyword = reader.last_token.upper()
    _require_attribute_section(reader, state, keyword)
    name = reader.next_token()
    scalar_type = ScalarType.parse(reader.next_token())
    values = reader.read_values(scalar_type, state.count * 3)
    _store_attribute(state, DataAttribute(
        kind=AttributeKind(keyword),
        name=name,
        values=values.reshape(state.count, 3),
    ))


@register_section(ATTRIBUTES, "TEXTURE_COORDINATES", "Texture coordinates")
def _section_texture_coordinates(reader: TokenReader, state: ParseState) -> None:
    _require_attribute_section(reader, state, "TEXTURE_COORDINATES")
    name = reader.next_token()
    dim = _header_int(reader, "TEXTURE_COORDINATES dimension")
    if not 1 <= dim <= 3:
        raise FormatError(f"TEXTURE_COORDINATES {name} has dimension {dim}", reader.context())
    scalar_type = ScalarType.FLOAT
    if reader.has_line_tokens():
        scalar_type = ScalarType.parse(reader.next_token())
    values = reader.read_values(scalar_type, state.count * dim)
    _store_attribute(state, DataAttribute(
        kind=AttributeKind.TEXTURE_COORDINATES,
        name=name,
        values=values.reshape(state.count, dim),
    ))


@register_section(ATTRIBUTES, "TENSORS", "3x3 tensors (not supported)")
def _section_tensors(reader: TokenReader, state: ParseState) -> None:
    raise UnsupportedFormatError(
        "TENSORS attributes are not supported", keyword="TENSORS", context=reader.context()
    )


@register_section(ATTRIBUTES, "FIELD", "Named field arrays")
def _section_attribute_field(reader: TokenReader, state: ParseState) -> None:
    _require_attribute_section(reader, state, "FIELD")
    _store_attribute(state, _read_field(reader))


@register_section(ATTRIBUTES, "LOOKUP_TABLE", "RGBA palette")
def _section_lookup_table(reader: TokenReader, state: ParseState) -> None:
    _require_attribute_section(reader, state, "LOOKUP_TABLE")
    name = reader.next_token()
    size = _header_int(reader, "LOOKUP_TABLE size")
    if reader.binary:
        values = reader.read_values(ScalarType.UNSIGNED_CHAR, size * 4) / np.float32(255.0)
    else:
        values = reader.read_values(ScalarType.FLOAT, size * 4)
    _store_attribute(state, DataAttribute(
        kind=AttributeKind.LOOKUP_TABLE,
        name=name,
        values=values.astype(np.float32).reshape(size, 4),
    ))
