"""Tests for whitespace normalization, chunk windows and chunk ids."""

import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from tutor.services.chunking import chunk_id, chunk_text, normalize_whitespace, parse_chunk_id


class TestChunkText:
    """Test fixed-size overlapping windows."""

    def test_empty_and_whitespace_input_yield_nothing(self):
        assert chunk_text("") == []
        assert chunk_text("   \n\t  ") == []

    def test_short_text_is_one_chunk(self):
        assert chunk_text("hello   world\n") == ["hello world"]

    def test_windows_advance_by_size_minus_overlap(self):
        text = "".join(str(i % 10) for i in range(25))
        chunks = chunk_text(text, chunk_size=10, overlap=4)
        assert chunks[0] == text[0:10]
        assert chunks[1] == text[6:16]
        assert chunks[2] == text[12:22]
        # last window clipped to the end of the text
        assert chunks[-1] == text[18:25]
        assert len(chunks) == 4

    def test_overlap_not_smaller_than_size_still_advances(self):
        chunks = chunk_text("abcdef", chunk_size=3, overlap=5)
        assert chunks[0] == "abc"
        assert chunks[-1].endswith("f")

    def test_deterministic(self):
        text = "The quick brown fox jumps over the lazy dog. " * 100
        assert chunk_text(text, 1000, 200) == chunk_text(text, 1000, 200)

    def test_normalize_whitespace(self):
        assert normalize_whitespace("  a \n\n b\t c ") == "a b c"


class TestChunkIds:
    """Test citation id formatting and parsing."""

    def test_format(self):
        assert chunk_id("docA", 2) == "docA#2"

    def test_parse(self):
        assert parse_chunk_id("docA#2") == ("docA", 2)

    def test_parse_uses_last_hash(self):
        assert parse_chunk_id("a#b#7") == ("a#b", 7)

    @pytest.mark.parametrize("value", ["", "#3", "docA", "docA#", "docA#x", "docA#-1"])
    def test_parse_rejects_malformed(self, value):
        with pytest.raises(ValueError):
            parse_chunk_id(value)
