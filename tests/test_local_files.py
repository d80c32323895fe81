"""Tests for the local file client."""

import pytest

from docvault.pipelines.local_files import LocalFileClient, compile_glob


@pytest.fixture
def docs_tree(tmp_path):
    (tmp_path / "guide").mkdir()
    (tmp_path / "guide" / "nested").mkdir()
    (tmp_path / "index.md").write_text("# Index", encoding="utf-8")
    (tmp_path / "guide" / "intro.md").write_text("# Intro", encoding="utf-8")
    (tmp_path / "guide" / "nested" / "deep.adoc").write_text("= Deep", encoding="utf-8")
    (tmp_path / "guide" / "notes.txt").write_text("notes", encoding="utf-8")
    return tmp_path


class TestCompileGlob:
    """Glob to regex translation."""

    def test_double_star_matches_zero_or_more_directories(self):
        """Test that **/ also matches files at the top level."""
        matcher = compile_glob("**/*.md")
        assert matcher.match("index.md")
        assert matcher.match("a/b/c.md")
        assert not matcher.match("a/b/c.adoc")

    def test_single_star_stays_in_segment(self):
        """Test that * does not cross directories."""
        matcher = compile_glob("*.md")
        assert matcher.match("index.md")
        assert not matcher.match("guide/intro.md")

    def test_alternation(self):
        """Test brace alternation."""
        matcher = compile_glob("**/*.{md,adoc}")
        assert matcher.match("x/y.adoc")
        assert matcher.match("y.md")
        assert not matcher.match("y.txt")


class TestLocalFileClient:
    """Directory reading."""

    def test_read_directory_with_pattern(self, docs_tree):
        """Test that matching files are read with relative posix paths."""
        files = LocalFileClient().read_directory(docs_tree, "**/*.md")
        paths = sorted(f.path for f in files)
        assert paths == ["guide/intro.md", "index.md"]
        intro = next(f for f in files if f.path == "guide/intro.md")
        assert intro.content == "# Intro"
        assert intro.size == len("# Intro")

    def test_list_files(self, docs_tree):
        """Test listing every file."""
        paths = sorted(LocalFileClient().list_files(docs_tree, "**/*"))
        assert paths == ["guide/intro.md", "guide/nested/deep.adoc", "guide/notes.txt", "index.md"]

    def test_missing_directory(self, tmp_path):
        """Test that a missing base raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            LocalFileClient().read_directory(tmp_path / "absent", "**/*")

    def test_base_is_a_file(self, docs_tree):
        """Test that a file base raises NotADirectoryError."""
        with pytest.raises(NotADirectoryError):
            LocalFileClient().read_directory(docs_tree / "index.md", "**/*")

    def test_undecodable_file_is_skipped(self, docs_tree):
        """Test that unreadable files are logged and skipped."""
        (docs_tree / "binary.md").write_bytes(b"\xff\xfe\x00bad")
        files = LocalFileClient().read_directory(docs_tree, "*.md")
        assert [f.path for f in files] == ["index.md"]

    def test_read_file(self, docs_tree):
        """Test reading a single file."""
        content = LocalFileClient().read_file(docs_tree / "index.md")
        assert content.path == "index.md"
        assert content.content == "# Index"
