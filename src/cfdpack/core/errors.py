# Copyright 2025 Allard Peper (Dragon Ace / DragonAceNL)
# Licensed under the Apache License, Version 2.0 (see LICENSE).
# This file is part of cfdpack.

"""
Typed exceptions for the conversion pipeline.

Every error carries an optional context dict that is appended to the
message in compact ``key=value`` form, so the CLI can surface the
offending section or keyword without extra plumbing.

All errors derive from ValueError, matching how the loaders have always
reported unreadable input.
"""

from typing import Optional

__all__ = [
    "CfdPackError",
    "FormatError",
    "UnsupportedFormatError",
    "TruncatedInputError",
    "IndexOutOfRangeError",
    "SeriesMismatchError",
]


def _format_context(ctx: Optional[dict]) -> str:
    """Return a compact ' | key1=val1, key2=val2' string or '' if no context."""
    if not ctx:
        return ""
    parts = []
    for key in sorted(ctx):
        value = repr(ctx[key])
        if len(value) > 120:
            value = value[:117] + "..."
        parts.append(f"{key}={value}")
    return " | " + ", ".join(parts)


class CfdPackError(ValueError):
    """
    Base class for all conversion errors.

    Args:
        message: Human-readable error
        context: Extra fields shown in the string form
            (e.g. {"keyword": "TENSORS", "line": 12})
    """

    def __init__(self, message: str, context: Optional[dict] = None):
        self.context = dict(context) if context else None
        super().__init__(message)

    def __str__(self) -> str:
        return super().__str__() + _format_context(self.context)


class FormatError(CfdPackError):
    """Malformed header, numeric token, or inconsistent declared counts."""


class UnsupportedFormatError(CfdPackError):
    """
    Unrecognized or recognized-but-unimplemented keyword, cell kind,
    attribute shape, or container version.
    """

    def __init__(self, message: str, keyword: Optional[str] = None, context: Optional[dict] = None):
        self.keyword = keyword
        if keyword is not None:
            context = dict(context or {})
            context.setdefault("keyword", keyword)
        super().__init__(message, context)


class TruncatedInputError(CfdPackError):
    """End of data reached before a declared count was satisfied."""


class IndexOutOfRangeError(CfdPackError):
    """A cell or triangle references a vertex that does not exist."""


class SeriesMismatchError(CfdPackError):
    """Time-step snapshots cannot be merged (missing submesh or attribute)."""
