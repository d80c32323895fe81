"""Ingestion pipeline components for DocVault.

Sources (GitHub, local files), document parsers and the chunker.
"""

from .chunker import ChunkResult, DocumentChunker, estimate_token_count
from .local_files import FileContent, LocalFileClient
from .parsers import (
    AsciiDocParser,
    CodeBlock,
    DocumentParser,
    HtmlParser,
    MarkdownParser,
    ParsedDocument,
    ParserRegistry,
)

__all__ = [
    'ChunkResult',
    'DocumentChunker',
    'estimate_token_count',
    'FileContent',
    'LocalFileClient',
    'AsciiDocParser',
    'CodeBlock',
    'DocumentParser',
    'HtmlParser',
    'MarkdownParser',
    'ParsedDocument',
    'ParserRegistry',
]
