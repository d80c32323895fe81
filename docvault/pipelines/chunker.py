"""Document chunking for DocVault.

Splits document text into overlapping character windows. Window ends are
moved back to the nearest natural boundary so chunks do not cut through
paragraphs or sentences when avoidable.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_OVERLAP = 200

# How far back from the preferred end a boundary may be found
BOUNDARY_SEARCH_WINDOW = 200

SENTENCE_TERMINATORS = frozenset('.!?\u3002\uff01\uff1f')


@dataclass
class ChunkResult:
    """A chunk of text and its position in the source document."""
    index: int
    content: str
    token_count: int

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "index": self.index,
            "content": self.content,
            "token_count": self.token_count,
        }


def estimate_token_count(text: str) -> int:
    """Estimate tokens for mixed English and CJK text.

    Non-CJK letters and all other characters count a quarter token each,
    CJK ideographs count two thirds of a token.
    """
    if not text:
        return 0

    english_chars = 0
    cjk_chars = 0
    other_chars = 0
    for ch in text:
        if ch.isalpha():
            if '\u4e00' <= ch <= '\u9fff':
                cjk_chars += 1
            else:
                english_chars += 1
        else:
            other_chars += 1

    return int(english_chars / 4.0 + cjk_chars / 1.5 + other_chars / 4.0)


class DocumentChunker:
    """Chunks documents into overlapping pieces for embedding."""

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE, chunk_overlap: int = DEFAULT_OVERLAP):
        """Initialize chunker.

        Args:
            chunk_size: Target size for each chunk in characters
            chunk_overlap: Number of characters shared by consecutive chunks
        """
        self.chunk_size, self.chunk_overlap = self._repair(chunk_size, chunk_overlap)

    @staticmethod
    def _repair(chunk_size: int, overlap: int):
        """Replace invalid settings with safe values."""
        if chunk_size <= 0:
            chunk_size = DEFAULT_CHUNK_SIZE
        if overlap < 0 or overlap >= chunk_size:
            overlap = min(DEFAULT_OVERLAP, chunk_size // 5)
        return chunk_size, overlap

    def chunk(self, content: str, chunk_size: int = None, overlap: int = None) -> List[ChunkResult]:
        """Split ``content`` into chunks.

        ``chunk_size`` and ``overlap`` override the instance settings for
        this call only. Blank content yields no chunks; content no longer
        than one chunk is returned whole.
        """
        if content is None or not content.strip():
            return []

        size, overlap = self._repair(
            self.chunk_size if chunk_size is None else chunk_size,
            self.chunk_overlap if overlap is None else overlap,
        )

        content_length = len(content)
        if content_length <= size:
            return [ChunkResult(0, content, estimate_token_count(content))]

        chunks = []
        start = 0
        chunk_index = 0
        while start < content_length:
            end = min(start + size, content_length)
            if end < content_length:
                # Break points stay past the overlap so each step moves forward
                end = self.find_natural_break_point(content, start + overlap, end)

            chunk_content = content[start:end]
            chunks.append(ChunkResult(chunk_index, chunk_content, estimate_token_count(chunk_content)))

            step = end - start - overlap
            if step <= 0:
                step = size - overlap
            start += step
            chunk_index += 1

            # The last window already reached the end of the text
            if end >= content_length:
                break

        logger.debug(f"Split {content_length} characters into {len(chunks)} chunks")
        return chunks

    @staticmethod
    def find_natural_break_point(content: str, start: int, preferred_end: int) -> int:
        """Find where to end a chunk, searching back from ``preferred_end``.

        Candidates, best first: blank line, newline, sentence terminator
        followed by whitespace, space. The returned position never exceeds
        ``preferred_end``; if no candidate lies within the search window,
        ``preferred_end`` itself is returned.
        """
        search_start = max(start, preferred_end - BOUNDARY_SEARCH_WINDOW)

        paragraph_break = content.rfind("\n\n", search_start, preferred_end)
        if paragraph_break >= 0:
            return paragraph_break + 2

        line_break = content.rfind("\n", search_start, preferred_end)
        if line_break >= 0:
            return line_break + 1

        for i in range(preferred_end - 2, search_start - 1, -1):
            if content[i] in SENTENCE_TERMINATORS and content[i + 1].isspace():
                return i + 2

        space_break = content.rfind(" ", search_start, preferred_end)
        if space_break >= 0:
            return space_break + 1

        return preferred_end
