# Copyright 2025 Allard Peper (Dragon Ace / DragonAceNL)
# Licensed under the Apache License, Version 2.0 (see LICENSE).
# This file is part of cfdpack.

"""
Format-aware token cursor for legacy VTK files.

Legacy VTK files interleave ASCII keyword lines with data sections that
are either whitespace-separated text or raw big-endian binary. A single
cursor serves both: lines and tokens are scanned from the same byte
position that binary reads advance, so a numeric read never desyncs the
token state.

The cursor is an explicit value: the parser passes it to every section
handler instead of keeping hidden position state of its own.
"""

from enum import Enum
from pathlib import Path
from typing import Optional, Union
import logging
import re
import struct

import numpy as np

from .errors import FormatError, TruncatedInputError, UnsupportedFormatError

logger = logging.getLogger(__name__)

_EOL = re.compile(rb"[\r\n]")


class ScalarType(Enum):
    """Declared data type of a numeric section.

    The value is the canonical legacy type name; ``dtype`` is the
    big-endian numpy dtype used to decode binary sections.
    """

    BIT = "bit"
    UNSIGNED_CHAR = "unsigned_char"
    CHAR = "char"
    UNSIGNED_SHORT = "unsigned_short"
    SHORT = "short"
    UNSIGNED_INT = "unsigned_int"
    INT = "int"
    UNSIGNED_LONG = "unsigned_long"
    LONG = "long"
    FLOAT = "float"
    DOUBLE = "double"

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(_BIG_ENDIAN_DTYPES[self])

    @property
    def is_integer(self) -> bool:
        return self not in (ScalarType.FLOAT, ScalarType.DOUBLE)

    @classmethod
    def parse(cls, name: str) -> "ScalarType":
        """Resolve a declared type name (case-insensitive, VTK 5 aliases included)."""
        key = name.lower()
        if key in _TYPE_ALIASES:
            return _TYPE_ALIASES[key]
        try:
            return cls(key)
        except ValueError:
            raise UnsupportedFormatError(f"Unsupported data type: {name}", keyword=name) from None


# "bit" is stored one value per byte
_BIG_ENDIAN_DTYPES = {
    ScalarType.BIT: "u1",
    ScalarType.UNSIGNED_CHAR: "u1",
    ScalarType.CHAR: "i1",
    ScalarType.UNSIGNED_SHORT: ">u2",
    ScalarType.SHORT: ">i2",
    ScalarType.UNSIGNED_INT: ">u4",
    ScalarType.INT: ">i4",
    ScalarType.UNSIGNED_LONG: ">u8",
    ScalarType.LONG: ">i8",
    ScalarType.FLOAT: ">f4",
    ScalarType.DOUBLE: ">f8",
}

_TYPE_ALIASES = {
    "vtkidtype": ScalarType.INT,
    "vtktypeint8": ScalarType.CHAR,
    "vtktypeuint8": ScalarType.UNSIGNED_CHAR,
    "vtktypeint16": ScalarType.SHORT,
    "vtktypeuint16": ScalarType.UNSIGNED_SHORT,
    "vtktypeint32": ScalarType.INT,
    "vtktypeuint32": ScalarType.UNSIGNED_INT,
    "vtktypeint64": ScalarType.LONG,
    "vtktypeuint64": ScalarType.UNSIGNED_LONG,
    "vtktypefloat32": ScalarType.FLOAT,
    "vtktypefloat64": ScalarType.DOUBLE,
}


class TokenReader:
    """
    Cursor over the bytes of one legacy VTK file.

    Attributes:
        data: Raw file contents
        binary: True once the preamble declared BINARY; numeric reads then
            decode raw big-endian bytes instead of text tokens
        source: Name used in error context (usually the file path)
        pos: Byte offset of the cursor
        line_number: Number of lines consumed so far
        last_token: Most recently consumed token
    """

    def __init__(self, data: bytes, binary: bool = False, source: str = "<memory>"):
        self.data = data
        self.binary = binary
        self.source = source
        self.pos = 0
        self.line_number = 0
        self._tokens: list[str] = []
        self._token_index = 0
        self.last_token: Optional[str] = None

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "TokenReader":
        """Read a whole file into a new cursor; the handle is closed on return."""
        path = Path(path)
        with open(path, "rb") as f:
            data = f.read()
        logger.debug(f"Read {len(data):,} bytes from {path}")
        return cls(data, source=str(path))

    def context(self) -> dict:
        """Position info attached to raised errors."""
        return {"source": self.source, "line": self.line_number}

    # ------------------------------------------------------------------
    # Lines
    # ------------------------------------------------------------------

    def _scan_line(self, start: int) -> tuple[bytes, int]:
        """Return the line starting at ``start`` and the offset after its terminator."""
        match = _EOL.search(self.data, start)
        if match is None:
            return self.data[start:], len(self.data)
        end = match.start()
        after = end + 1
        if self.data[end:after] == b"\r" and self.data[after:after + 1] == b"\n":
            after += 1
        return self.data[start:end], after

    def next_line(self) -> str:
        """Consume and return the next raw line; pending tokens are discarded."""
        if self.pos >= len(self.data):
            raise TruncatedInputError("Unexpected end of data while reading a line", self.context())
        raw, self.pos = self._scan_line(self.pos)
        self.line_number += 1
        self._tokens = []
        self._token_index = 0
        return raw.decode("latin-1")

    def peek_line(self) -> Optional[str]:
        """Return the next raw line without consuming it (None at end of data)."""
        if self.pos >= len(self.data):
            return None
        raw, _ = self._scan_line(self.pos)
        return raw.decode("latin-1")

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def _fill_tokens(self) -> bool:
        while self._token_index >= len(self._tokens):
            if self.pos >= len(self.data):
                return False
            tokens = self.next_line().replace("\0", " ").split()
            self._tokens = tokens
            self._token_index = 0
        return True

    def next_token(self) -> str:
        """Consume the next whitespace-delimited token, advancing lines as needed."""
        if not self._fill_tokens():
            raise TruncatedInputError("Unexpected end of data, expected a token", self.context())
        token = self._tokens[self._token_index]
        self._token_index += 1
        self.last_token = token
        return token

    def peek_token(self) -> Optional[str]:
        """Return the next token without consuming it (None at end of data)."""
        if not self._fill_tokens():
            return None
        return self._tokens[self._token_index]

    def next_tokens(self, count: int) -> list[str]:
        """Consume ``count`` tokens, spanning as many lines as necessary."""
        out: list[str] = []
        while len(out) < count:
            if not self._fill_tokens():
                raise TruncatedInputError(
                    f"Expected {count} values, found {len(out)}", self.context()
                )
            take = min(count - len(out), len(self._tokens) - self._token_index)
            out.extend(self._tokens[self._token_index:self._token_index + take])
            self._token_index += take
        return out

    def has_line_tokens(self) -> bool:
        """True if unread tokens remain on the current line."""
        return self._token_index < len(self._tokens)

    def skip_line(self) -> None:
        """Drop whatever remains of the current line."""
        self._tokens = []
        self._token_index = 0

    def at_end(self) -> bool:
        return self.peek_token() is None

    def peek_byte(self) -> Optional[int]:
        """Return the byte under the cursor without consuming it."""
        if self.pos >= len(self.data):
            return None
        return self.data[self.pos]

    # ------------------------------------------------------------------
    # Numbers
    # ------------------------------------------------------------------

    def _take(self, size: int) -> bytes:
        if self.has_line_tokens():
            raise FormatError("Binary data requested while text tokens remain on the line", self.context())
        end = self.pos + size
        if end > len(self.data):
            raise TruncatedInputError(
                f"Expected {size} bytes of binary data, found {len(self.data) - self.pos}",
                self.context(),
            )
        raw = self.data[self.pos:end]
        self.pos = end
        return raw

    def read_values(self, scalar_type: ScalarType, count: int) -> np.ndarray:
        """Read ``count`` values of the declared type as a flat float32 array."""
        if count <= 0:
            return np.empty(0, dtype=np.float32)
        if self.binary:
            dtype = scalar_type.dtype
            raw = self._take(count * dtype.itemsize)
            return np.frombuffer(raw, dtype=dtype, count=count).astype(np.float32)

        tokens = self.next_tokens(count)
        try:
            if scalar_type.is_integer:
                return np.array([int(t) for t in tokens], dtype=np.float64).astype(np.float32)
            return np.array(tokens, dtype=np.float64).astype(np.float32)
        except ValueError as e:
            raise FormatError(f"Malformed {scalar_type.value} value: {e}", self.context()) from e

    def read_value(self, scalar_type: ScalarType) -> float:
        return float(self.read_values(scalar_type, 1)[0])

    def read_int(self) -> int:
        """Read one 4-byte big-endian integer (binary) or base-10 integer token (text)."""
        if self.binary:
            return struct.unpack(">i", self._take(4))[0]
        token = self.next_token()
        try:
            return int(token, 10)
        except ValueError:
            raise FormatError(f"Malformed integer: {token!r}", self.context()) from None

    def read_ints(self, count: int, scalar_type: ScalarType = ScalarType.INT) -> np.ndarray:
        """Read ``count`` integers as an int64 array."""
        if count <= 0:
            return np.empty(0, dtype=np.int64)
        if self.binary:
            dtype = scalar_type.dtype
            raw = self._take(count * dtype.itemsize)
            return np.frombuffer(raw, dtype=dtype, count=count).astype(np.int64)

        tokens = self.next_tokens(count)
        try:
            return np.array([int(t, 10) for t in tokens], dtype=np.int64)
        except ValueError as e:
            raise FormatError(f"Malformed integer: {e}", self.context()) from e
