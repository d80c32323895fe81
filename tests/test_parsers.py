"""Tests for the Markdown, HTML and AsciiDoc parsers."""

from unittest.mock import patch

import pytest

from docvault.pipelines.parsers import (
    AsciiDocParser,
    HtmlParser,
    MarkdownParser,
    ParserRegistry,
    file_stem,
)


class TestMarkdownParser:
    """Markdown parsing."""

    @pytest.fixture
    def parser(self):
        return MarkdownParser()

    def test_title_from_first_h1(self, parser):
        """Test that the first level-one heading becomes the title."""
        doc = parser.parse("Intro\n\n# Getting Started\n\n## Details\n# Second", "docs/start.md")
        assert doc.title == "Getting Started"

    def test_title_falls_back_to_file_name(self, parser):
        """Test the file-name fallback when there is no H1."""
        doc = parser.parse("## Only a subheading\n\ntext", "docs/guide/configuration.md")
        assert doc.title == "configuration"

    def test_code_blocks_with_description(self, parser):
        """Test fenced code extraction, language, description and line numbers."""
        content = "# Title\n\nInstall the starter first.\n\n```java\nclass App {}\n```\n\n```\nplain\n```\n"
        doc = parser.parse(content, "a.md")

        assert len(doc.code_blocks) == 2
        java, plain = doc.code_blocks
        assert java.language == "java"
        assert java.code == "class App {}\n"
        assert java.description == "Install the starter first."
        assert java.start_line == 5
        assert java.end_line == 7
        assert plain.language == "text"
        assert doc.metadata["codeBlockCount"] == 2

    def test_long_description_is_truncated(self, parser):
        """Test that descriptions are cut at 200 characters plus an ellipsis."""
        content = "x" * 250 + "\n\n```py\npass\n```\n"
        block = parser.parse(content, "a.md").code_blocks[0]
        assert block.description == "x" * 200 + "..."

    def test_blank_content(self, parser):
        """Test that blank input gives an empty document."""
        doc = parser.parse("  \n", "a.md")
        assert doc.title == ""
        assert doc.content == ""
        assert doc.code_blocks == []


class TestHtmlParser:
    """HTML parsing with BeautifulSoup."""

    @pytest.fixture
    def parser(self):
        return HtmlParser()

    def test_title_and_main_content(self, parser):
        """Test the title tag and main-content selection without navigation."""
        html = """<html><head><title>Reference Guide</title><script>var x;</script></head>
        <body><nav>Menu</nav><main><h1>Heading</h1><p>Body text.</p></main><footer>Foot</footer></body></html>"""
        doc = parser.parse(html, "ref.html")

        assert doc.title == "Reference Guide"
        assert "Body text." in doc.content
        assert "Menu" not in doc.content
        assert "Foot" not in doc.content
        assert "var x" not in doc.content

    def test_title_from_h1_then_file_name(self, parser):
        """Test the title fallbacks."""
        assert parser.parse("<body><h1>Only H1</h1></body>", "x.html").title == "Only H1"
        assert parser.parse("<body><p>none</p></body>", "docs/page.htm").title == "page"

    def test_code_language_detection(self, parser):
        """Test language detection from classes and data attributes."""
        html = """<body>
        <p>Run this:</p><pre><code class="language-python">print(1)</code></pre>
        <pre><code class="lang-go">fmt.Println()</code></pre>
        <pre><code class="java">class A {}</code></pre>
        <pre><code data-language="sql">SELECT 1</code></pre>
        <pre><code>plain</code></pre>
        </body>"""
        blocks = parser.parse(html, "x.html").code_blocks

        assert [b.language for b in blocks] == ["python", "go", "java", "sql", "text"]
        assert blocks[0].description == "Run this:"
        assert blocks[0].code == "print(1)"

    def test_parse_failure_keeps_raw_content(self, parser):
        """Test that a parser error returns the raw content with parseError."""
        with patch("docvault.pipelines.parsers.BeautifulSoup", side_effect=ValueError("boom")):
            doc = parser.parse("<p>broken</p>", "docs/broken.html")

        assert doc.title == "broken"
        assert doc.content == "<p>broken</p>"
        assert doc.metadata["parseError"] == "boom"


class TestAsciiDocParser:
    """AsciiDoc parsing."""

    def test_title_and_source_blocks(self):
        """Test the document title and titled source listings."""
        content = """= Spring Guide

Some intro.

.Application class
[source,java]
----
@SpringBootApplication
class App {}
----

[source]
----
no language
----

----
not a source block
----
"""
        doc = AsciiDocParser().parse(content, "guide.adoc")

        assert doc.title == "Spring Guide"
        assert len(doc.code_blocks) == 2
        first, second = doc.code_blocks
        assert first.language == "java"
        assert first.description == "Application class"
        assert "@SpringBootApplication" in first.code
        assert second.language == "text"
        assert second.description == ""


class TestParserRegistry:
    """Parser selection by extension."""

    def test_find_by_extension(self):
        """Test that each supported extension maps to its parser."""
        registry = ParserRegistry()
        assert isinstance(registry.find("a/b.MD"), MarkdownParser)
        assert isinstance(registry.find("index.htm"), HtmlParser)
        assert isinstance(registry.find("x.asciidoc"), AsciiDocParser)

    def test_unsupported_extensions(self):
        """Test that text and reStructuredText files have no parser."""
        registry = ParserRegistry()
        assert registry.find("notes.txt") is None
        assert not registry.supports("index.rst")
        assert not registry.supports("")

    def test_file_stem(self):
        """Test file stem extraction."""
        assert file_stem("docs/a/b.tar.md") == "b.tar"
        assert file_stem("README") == "README"
        assert file_stem(None) == ""
