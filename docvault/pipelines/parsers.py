"""Document parsers for DocVault.

Each parser turns raw file content into a ``ParsedDocument`` with a title,
the text to index, and the code blocks found in the document.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 200


@dataclass
class CodeBlock:
    """A code sample extracted from a document."""
    language: str
    code: str
    description: str = ""
    start_line: int = 0
    end_line: int = 0


@dataclass
class ParsedDocument:
    """Result of parsing one source file."""
    title: str
    content: str
    code_blocks: List[CodeBlock] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


def file_stem(path: Optional[str]) -> str:
    """File name without directory or extension."""
    if not path:
        return ""
    name = PurePosixPath(path.replace("\\", "/")).name
    dot = name.rfind(".")
    return name[:dot] if dot > 0 else name


def _truncate_description(text: str) -> str:
    text = text.strip()
    if len(text) > MAX_DESCRIPTION_LENGTH:
        return text[:MAX_DESCRIPTION_LENGTH] + "..."
    return text


class DocumentParser:
    """Base class for format specific parsers."""

    doc_type = ""
    extensions = ()

    def supports(self, path: Optional[str]) -> bool:
        if not path:
            return False
        return path.lower().endswith(self.extensions)

    def parse(self, content: str, path: str) -> ParsedDocument:
        raise NotImplementedError


class MarkdownParser(DocumentParser):
    """Parses Markdown: first H1 as title, fenced code blocks as examples."""

    doc_type = "markdown"
    extensions = (".md", ".markdown")

    _heading_re = re.compile(r'^ {0,3}#\s+(.+?)\s*#*\s*$')
    _fence_re = re.compile(r'^ {0,3}(`{3,}|~{3,})\s*([^`\s]*)')

    def parse(self, content: str, path: str) -> ParsedDocument:
        if content is None or not content.strip():
            return ParsedDocument("", "")

        lines = content.split("\n")
        title = None
        code_blocks = []
        paragraph: List[str] = []
        previous_block = ""

        i = 0
        while i < len(lines):
            line = lines[i]
            fence = self._fence_re.match(line)
            if fence:
                marker, language = fence.group(1), fence.group(2)
                if paragraph:
                    previous_block = "\n".join(paragraph)
                    paragraph = []
                start_line = i + 1
                body = []
                i += 1
                while i < len(lines) and not lines[i].strip().startswith(marker):
                    body.append(lines[i])
                    i += 1
                end_line = min(i + 1, len(lines))
                code_blocks.append(CodeBlock(
                    language=language or "text",
                    code="\n".join(body) + ("\n" if body else ""),
                    description=_truncate_description(previous_block),
                    start_line=start_line,
                    end_line=end_line,
                ))
                previous_block = ""
                i += 1
                continue

            if title is None:
                heading = self._heading_re.match(line)
                if heading:
                    title = heading.group(1).strip()

            if line.strip():
                paragraph.append(line)
            elif paragraph:
                previous_block = "\n".join(paragraph)
                paragraph = []
            i += 1

        if not title:
            title = file_stem(path)

        metadata = {
            "path": path,
            "format": "markdown",
            "codeBlockCount": len(code_blocks),
        }
        return ParsedDocument(title, content, code_blocks, metadata)


class HtmlParser(DocumentParser):
    """Parses HTML with BeautifulSoup and keeps the readable main content."""

    doc_type = "html"
    extensions = (".html", ".htm")

    COMMON_LANGUAGES = {
        "java", "javascript", "js", "python", "py", "ruby", "go", "rust",
        "c", "cpp", "csharp", "cs", "typescript", "ts", "kotlin", "swift",
        "php", "bash", "shell", "sh", "sql", "yaml", "yml", "json", "xml",
        "html", "css", "scss", "sass", "markdown", "md",
    }

    def parse(self, content: str, path: str) -> ParsedDocument:
        if content is None or not content.strip():
            return ParsedDocument("", "")

        try:
            soup = BeautifulSoup(content, "html.parser")
            title = self._extract_title(soup, path)
            code_blocks = self._extract_code_blocks(soup)
            text = self._extract_main_text(soup)
        except Exception as e:
            logger.warning(f"Failed to parse HTML {path}: {e}")
            return ParsedDocument(
                file_stem(path),
                content,
                [],
                {"path": path, "format": "html", "parseError": str(e)},
            )

        metadata = {
            "path": path,
            "format": "html",
            "originalFormat": "html",
            "codeBlockCount": len(code_blocks),
        }
        return ParsedDocument(title, text, code_blocks, metadata)

    def _extract_title(self, soup: BeautifulSoup, path: str) -> str:
        if soup.title and soup.title.get_text(strip=True):
            return soup.title.get_text(strip=True)
        h1 = soup.find("h1")
        if h1 and h1.get_text(strip=True):
            return h1.get_text(strip=True)
        return file_stem(path)

    def _extract_code_blocks(self, soup: BeautifulSoup) -> List[CodeBlock]:
        blocks = []
        for element in soup.select("pre code, pre.highlight, code.highlight"):
            description = ""
            anchor = element.parent if element.parent is not None and element.parent.name == "pre" else element
            prev = anchor.find_previous_sibling()
            if prev is not None and (prev.name == "p" or re.fullmatch(r"h[1-6]", prev.name or "")):
                description = _truncate_description(prev.get_text(" ", strip=True))
            blocks.append(CodeBlock(
                language=self._detect_language(element),
                code=element.get_text(),
                description=description,
            ))
        return blocks

    def _detect_language(self, element) -> str:
        classes = element.get("class") or []
        for cls in classes:
            if cls.startswith("language-") and len(cls) > len("language-"):
                return cls[len("language-"):]
            if cls.startswith("lang-") and len(cls) > len("lang-"):
                return cls[len("lang-"):]
        for cls in classes:
            if cls.lower() in self.COMMON_LANGUAGES:
                return cls
        data_lang = element.get("data-language")
        if data_lang:
            return data_lang
        return "text"

    def _extract_main_text(self, soup: BeautifulSoup) -> str:
        for tag in soup.select("script, style, nav, footer, header"):
            tag.decompose()
        main = soup.select_one("article, main, .content, #content, .documentation") or soup.body or soup
        text = main.get_text("\n")
        # Collapse the blank runs left behind by markup
        return re.sub(r"\n\s*\n+", "\n\n", text).strip()


class AsciiDocParser(DocumentParser):
    """Parses AsciiDoc: ``= Title`` header and ``[source,lang]`` listings."""

    doc_type = "asciidoc"
    extensions = (".adoc", ".asciidoc", ".asc")

    _title_re = re.compile(r'^=\s+(.+?)\s*$')
    _source_re = re.compile(r'^\[source(?:,\s*([^,\]\s]+))?[^\]]*\]\s*$')
    _block_title_re = re.compile(r'^\.([^.\s].*)$')

    def parse(self, content: str, path: str) -> ParsedDocument:
        if content is None or not content.strip():
            return ParsedDocument("", "")

        lines = content.split("\n")
        title = None
        code_blocks = []
        pending_title = ""
        pending_language = None

        i = 0
        while i < len(lines):
            stripped = lines[i].strip()

            if title is None:
                match = self._title_re.match(stripped)
                if match:
                    title = match.group(1)
                    i += 1
                    continue

            block_title = self._block_title_re.match(stripped)
            if block_title:
                pending_title = block_title.group(1).strip()
                i += 1
                continue

            source = self._source_re.match(stripped)
            if source:
                pending_language = source.group(1) or "text"
                i += 1
                continue

            if stripped.startswith("----") and set(stripped) == {"-"}:
                delimiter = stripped
                start_line = i + 1
                body = []
                i += 1
                while i < len(lines) and lines[i].strip() != delimiter:
                    body.append(lines[i])
                    i += 1
                if pending_language is not None:
                    code_blocks.append(CodeBlock(
                        language=pending_language,
                        code="\n".join(body),
                        description=pending_title,
                        start_line=start_line,
                        end_line=min(i + 1, len(lines)),
                    ))
                pending_title = ""
                pending_language = None
                i += 1
                continue

            if stripped:
                # Attributes only bind to the block directly below them
                if not stripped.startswith(("[", ".")):
                    pending_title = ""
                    pending_language = None
            i += 1

        if not title:
            title = file_stem(path)

        metadata = {
            "path": path,
            "format": "asciidoc",
            "codeBlockCount": len(code_blocks),
        }
        return ParsedDocument(title, content, code_blocks, metadata)


class ParserRegistry:
    """Selects the parser for a path by file extension."""

    def __init__(self, parsers: Optional[List[DocumentParser]] = None):
        self.parsers = parsers if parsers is not None else [
            MarkdownParser(),
            HtmlParser(),
            AsciiDocParser(),
        ]

    def supports(self, path: str) -> bool:
        return any(p.supports(path) for p in self.parsers)

    def find(self, path: str) -> Optional[DocumentParser]:
        """Return the first parser supporting ``path``, or None."""
        for parser in self.parsers:
            if parser.supports(path):
                return parser
        return None
