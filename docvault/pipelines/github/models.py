"""Data types for GitHub fetching."""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

SUPPORTED_EXTENSIONS = (".md", ".markdown", ".adoc", ".asciidoc", ".html", ".htm", ".txt", ".rst")


def is_supported_file(path: str) -> bool:
    """Whether ``path`` has a documentation file extension."""
    return path.lower().endswith(SUPPORTED_EXTENSIONS)


GITHUB_URL_PATTERN = re.compile(r"https://github\.com/([^/]+)/([^/]+)")


def parse_github_url(url: Optional[str]) -> Optional[Tuple[str, str]]:
    """``(owner, repo)`` from a GitHub repository URL, or None."""
    if not url:
        return None
    match = GITHUB_URL_PATTERN.search(url)
    if match is None:
        return None
    repo = match.group(2)
    if repo.endswith(".git"):
        repo = repo[:-4]
    return match.group(1), repo


@dataclass
class GitHubFile:
    """A file or directory entry in a repository."""
    name: str
    path: str
    sha: str = ""
    size: int = 0
    type: str = "file"
    download_url: Optional[str] = None

    @property
    def is_file(self) -> bool:
        return self.type == "file"

    @property
    def is_directory(self) -> bool:
        return self.type == "dir"

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'GitHubFile':
        """Build from a Contents API entry."""
        return cls(
            name=data.get("name", ""),
            path=data.get("path", ""),
            sha=data.get("sha") or "",
            size=int(data.get("size") or 0),
            type=data.get("type", "file"),
            download_url=data.get("download_url"),
        )


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@dataclass
class GitHubRelease:
    """A published release of a repository."""
    id: int
    tag_name: str
    name: Optional[str] = None
    body: Optional[str] = None
    draft: bool = False
    prerelease: bool = False
    published_at: Optional[datetime] = None
    tarball_url: Optional[str] = None
    zipball_url: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'GitHubRelease':
        """Build from a Releases API entry."""
        return cls(
            id=data["id"],
            tag_name=data["tag_name"],
            name=data.get("name"),
            body=data.get("body"),
            draft=bool(data.get("draft", False)),
            prerelease=bool(data.get("prerelease", False)),
            published_at=_parse_timestamp(data.get("published_at")),
            tarball_url=data.get("tarball_url"),
            zipball_url=data.get("zipball_url"),
        )


@dataclass
class FetchResult:
    """Files discovered by a fetch strategy.

    ``contents`` maps path to file text when the strategy already
    downloaded the bytes; otherwise it is empty and content is fetched per
    file later.
    """
    files: List[GitHubFile]
    strategy_used: str
    contents: Dict[str, str] = field(default_factory=dict)

    def has_content(self, path: str) -> bool:
        return path in self.contents

    def get_content(self, path: str) -> Optional[str]:
        return self.contents.get(path)

    @property
    def is_empty(self) -> bool:
        return not self.files
