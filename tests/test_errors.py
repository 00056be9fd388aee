# Copyright 2025 Allard Peper (Dragon Ace / DragonAceNL)
# Licensed under the Apache License, Version 2.0 (see LICENSE).
# This file is part of cfdpack.

"""Tests for the error types."""

from cfdpack.core import CfdPackError, FormatError, UnsupportedFormatError


class TestErrors:
    """Tests for error messages and hierarchy."""

    def test_context_in_message(self):
        """Test that context is appended in key order."""
        error = FormatError("Bad header", {"line": 1, "source": "a.vtk"})
        assert str(error) == "Bad header | line=1, source='a.vtk'"

    def test_no_context(self):
        """Test a plain message."""
        assert str(FormatError("Bad header")) == "Bad header"

    def test_keyword_added_to_context(self):
        """Test that the keyword shows up in the message."""
        error = UnsupportedFormatError("No tensors", keyword="TENSORS", context={"line": 9})
        assert error.keyword == "TENSORS"
        assert error.context == {"line": 9, "keyword": "TENSORS"}
        assert "keyword='TENSORS'" in str(error)

    def test_hierarchy(self):
        """Test that every error is a ValueError."""
        assert isinstance(UnsupportedFormatError("x"), CfdPackError)
        assert isinstance(FormatError("x"), ValueError)

    def test_long_values_truncated(self):
        """Test that long context values are shortened."""
        error = FormatError("Bad", {"source": "x" * 500})
        assert str(error).endswith("...")
        assert len(str(error)) < 150
