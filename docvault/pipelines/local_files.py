"""Local filesystem source for DocVault.

Reads documentation files from a directory tree, selecting them with a glob
pattern matched against each file's path relative to the base directory.
"""

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Pattern, Union

logger = logging.getLogger(__name__)


@dataclass
class FileContent:
    """A local file read for ingestion."""
    path: str
    content: str
    size: int
    last_modified: float


def compile_glob(pattern: str) -> Pattern:
    """Compile a glob into a regex over ``/`` separated relative paths.

    ``**/`` matches zero or more directories, ``**`` anything, ``*`` and
    ``?`` stay within one path segment and ``{a,b}`` is an alternation.
    """
    i = 0
    out = []
    n = len(pattern)
    while i < n:
        c = pattern[i]
        if pattern.startswith("**/", i):
            out.append("(?:.*/)?")
            i += 3
            continue
        if pattern.startswith("**", i):
            out.append(".*")
            i += 2
            continue
        if c == "*":
            out.append("[^/]*")
        elif c == "?":
            out.append("[^/]")
        elif c == "{":
            close = pattern.find("}", i)
            if close == -1:
                out.append(re.escape(c))
            else:
                options = pattern[i + 1:close].split(",")
                out.append("(?:" + "|".join(re.escape(o) for o in options) + ")")
                i = close + 1
                continue
        elif c == "[":
            close = pattern.find("]", i)
            if close == -1:
                out.append(re.escape(c))
            else:
                body = pattern[i + 1:close]
                if body.startswith("!"):
                    body = "^" + body[1:]
                out.append("[" + body + "]")
                i = close + 1
                continue
        else:
            out.append(re.escape(c))
        i += 1
    return re.compile("^" + "".join(out) + "$")


class LocalFileClient:
    """Reads files under a base directory."""

    def _check_directory(self, base: Path) -> None:
        if not base.exists():
            raise FileNotFoundError(f"Directory does not exist: {base}")
        if not base.is_dir():
            raise NotADirectoryError(f"Path is not a directory: {base}")

    def _walk(self, base: Path, pattern: str):
        matcher = compile_glob(pattern)

        def on_error(error: OSError):
            logger.warning(f"Failed to visit {error.filename}: {error}")

        for root, _dirs, files in os.walk(base, onerror=on_error):
            for name in sorted(files):
                file_path = Path(root) / name
                relative = file_path.relative_to(base).as_posix()
                if matcher.match(relative):
                    yield file_path, relative

    def read_directory(self, base_path: Union[str, Path], pattern: str) -> List[FileContent]:
        """Read every file under ``base_path`` whose relative path matches ``pattern``."""
        base = Path(base_path)
        self._check_directory(base)

        files = []
        for file_path, relative in self._walk(base, pattern):
            try:
                stat = file_path.stat()
                content = file_path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                logger.warning(f"Failed to read file {file_path}: {e}")
                continue
            files.append(FileContent(relative, content, stat.st_size, stat.st_mtime))

        logger.info(f"Read {len(files)} files from {base} (pattern: {pattern})")
        return files

    def read_file(self, file_path: Union[str, Path]) -> FileContent:
        """Read a single file."""
        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(f"File does not exist: {path}")
        if not path.is_file():
            raise IsADirectoryError(f"Path is not a file: {path}")
        stat = path.stat()
        return FileContent(path.name, path.read_text(encoding="utf-8"), stat.st_size, stat.st_mtime)

    def list_files(self, base_path: Union[str, Path], pattern: str) -> List[str]:
        """List relative paths under ``base_path`` matching ``pattern``."""
        base = Path(base_path)
        self._check_directory(base)
        return [relative for _path, relative in self._walk(base, pattern)]
