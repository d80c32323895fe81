"""Tests for the boundary-aware document chunker."""

import pytest

from docvault.pipelines.chunker import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_OVERLAP,
    DocumentChunker,
    estimate_token_count,
)


class TestDocumentChunker:
    """Chunking behaviour."""

    @pytest.fixture
    def chunker(self):
        return DocumentChunker(chunk_size=600, chunk_overlap=100)

    def test_blank_content_yields_no_chunks(self, chunker):
        """Test that empty and whitespace-only text produce nothing."""
        assert chunker.chunk("") == []
        assert chunker.chunk("   \n\t ") == []
        assert chunker.chunk(None) == []

    def test_short_content_is_single_chunk(self, chunker):
        """Test that text no longer than the chunk size is returned whole."""
        chunks = chunker.chunk("Short text")
        assert len(chunks) == 1
        assert chunks[0].index == 0
        assert chunks[0].content == "Short text"

    def test_breaks_at_paragraph_boundary(self, chunker):
        """Test the A/B example: the first chunk ends right after the blank line."""
        text = "A" * 500 + "\n\n" + "B" * 500
        chunks = chunker.chunk(text)

        assert len(chunks[0].content) == 502
        assert chunks[0].content.endswith("\n\n")
        second = chunks[1]
        assert second.content == text[402:1002]
        assert "B" * 500 in second.content

    def test_prefers_newline_then_sentence_then_space(self):
        """Test the boundary priority when no blank line is available."""
        text = "word " * 30 + "End of sentence. " + "x" * 40 + "\n" + "y" * 100
        end = DocumentChunker.find_natural_break_point(text, 0, len(text) - 50)
        assert text[end - 1] == "\n"

        text = "word " * 30 + "End of sentence. " + "z" * 40
        end = DocumentChunker.find_natural_break_point(text, 0, len(text) - 5)
        assert text[:end].endswith("sentence. ")

        text = "alpha beta gamma"
        assert DocumentChunker.find_natural_break_point(text, 0, 12) == len("alpha beta ")

    def test_cjk_sentence_terminator(self):
        """Test that full-width terminators count as sentence ends."""
        text = "中文。 " + "字" * 50
        end = DocumentChunker.find_natural_break_point(text, 0, 30)
        assert end == 4

    def test_no_boundary_falls_back_to_preferred_end(self):
        """Test that a text without any boundary is cut at the preferred end."""
        text = "x" * 2000
        assert DocumentChunker.find_natural_break_point(text, 0, 1000) == 1000

    @pytest.mark.parametrize("size,overlap", [(100, 0), (100, 99), (250, 50), (1000, 200), (7, 3)])
    def test_indices_contiguous_and_lengths_bounded(self, size, overlap):
        """Test index contiguity, the size bound and full coverage of the input."""
        text = ("Lorem ipsum dolor sit amet. Consectetur adipiscing elit!\n" * 40
                + "Final paragraph.\n\n" + "tail " * 60)
        chunks = DocumentChunker(size, overlap).chunk(text)

        assert [c.index for c in chunks] == list(range(len(chunks)))
        assert all(len(c.content) <= size for c in chunks)
        assert all(c.content for c in chunks)

        # Each chunk starts exactly one overlap before the previous end
        chunker_overlap = DocumentChunker(size, overlap).chunk_overlap
        start = 0
        for chunk in chunks:
            assert text[start:start + len(chunk.content)] == chunk.content
            end = start + len(chunk.content)
            start = end - chunker_overlap
        assert end == len(text)

    def test_invalid_settings_are_repaired(self):
        """Test that non-positive size and oversized overlap get safe values."""
        chunker = DocumentChunker(chunk_size=0, chunk_overlap=-5)
        assert chunker.chunk_size == DEFAULT_CHUNK_SIZE
        assert chunker.chunk_overlap == DEFAULT_OVERLAP

        chunker = DocumentChunker(chunk_size=100, chunk_overlap=100)
        assert chunker.chunk_overlap < chunker.chunk_size

    def test_per_call_overrides(self):
        """Test that chunk size and overlap can be overridden per call."""
        chunker = DocumentChunker()
        chunks = chunker.chunk("abc " * 100, chunk_size=50, overlap=10)
        assert len(chunks) > 1
        assert all(len(c.content) <= 50 for c in chunks)

    def test_chunk_result_to_dict(self, chunker):
        """Test the dictionary form of a chunk."""
        chunk = chunker.chunk("hello world")[0]
        assert chunk.to_dict() == {"index": 0, "content": "hello world", "token_count": chunk.token_count}


class TestTokenEstimate:
    """Token estimation for mixed scripts."""

    def test_empty(self):
        """Test that empty text has no tokens."""
        assert estimate_token_count("") == 0

    def test_english_text(self):
        """Test that Latin letters and other characters count a quarter each."""
        assert estimate_token_count("abcd") == 1
        assert estimate_token_count("abcd efgh") == 2

    def test_cjk_text(self):
        """Test that CJK ideographs count two thirds of a token."""
        assert estimate_token_count("中文字") == 2
