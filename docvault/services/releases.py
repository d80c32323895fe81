"""GitHub release discovery.

Lists the published releases of a library's repository, registers the ones
that have no version yet and starts a GitHub sync for each of them. The docs
folder of a release comes from ``SyncConfig.known_docs_paths``.
"""

import logging
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..config import SyncConfig
from ..errors import DocVaultError, LibraryNotFoundError
from ..pipelines.github.client import GitHubClient
from ..pipelines.github.models import parse_github_url
from .shared.models import Library
from .shared.registry import DocumentRegistry
from .sync import SyncService

logger = logging.getLogger(__name__)

DEFAULT_RELEASE_LIMIT = 20
RELEASES_PAGE_SIZE = 100


def normalize_version(tag_name: str) -> str:
    """``v3.2.0`` -> ``3.2.0``."""
    if tag_name[:1] in ("v", "V"):
        return tag_name[1:]
    return tag_name


def _matches_version(pattern: str, version: str) -> bool:
    if "*" in pattern:
        return version.startswith(pattern.replace("*", ""))
    if pattern.isdigit():
        # Bare major version
        return version.startswith(f"{pattern}.")
    return pattern == version


def resolve_docs_path(known_docs_paths: Dict[str, Any], owner_repo: str, version: Optional[str] = None,
                      default: str = "docs") -> str:
    """Docs folder for ``owner/repo`` at ``version``.

    Keys are compared case-insensitively and without slashes. An entry is a
    path, or a mapping with a ``default`` path and ``versions`` patterns
    (``3.*``, ``3`` or an exact version) checked in order.
    """
    key = owner_repo.replace("/", "").lower()
    entry = next((value for name, value in known_docs_paths.items()
                  if name.replace("/", "").lower() == key), None)
    if entry is None:
        return default
    if isinstance(entry, str):
        return entry
    if not isinstance(entry, dict):
        logger.warning(f"Ignoring docs path entry for {owner_repo}: {entry!r}")
        return default

    fallback = entry.get("default") or default
    if not version:
        return fallback
    normalized = normalize_version(version)
    for pattern, path in (entry.get("versions") or {}).items():
        if _matches_version(str(pattern), normalized):
            return str(path)
    return fallback


@dataclass
class ReleaseCandidate:
    """A published release and whether the library already tracks it."""
    tag_name: str
    version: str
    name: Optional[str]
    published_at: Optional[str]
    exists: bool
    docs_path: str


@dataclass
class ReleaseSyncItem:
    tag_name: str
    docs_path: Optional[str] = None


@dataclass
class StartedSync:
    version_id: str
    version: str
    sync_id: str
    future: Optional[Future] = field(default=None, repr=False, compare=False)

    def to_dict(self) -> Dict[str, str]:
        return {"version_id": self.version_id, "version": self.version, "sync_id": self.sync_id}


class ReleaseService:
    """Turns GitHub releases into tracked versions with running syncs."""

    def __init__(self, registry: DocumentRegistry, sync_service: SyncService, client: GitHubClient,
                 config: Optional[SyncConfig] = None):
        self.registry = registry
        self.sync_service = sync_service
        self.client = client
        self.config = config or SyncConfig()

    def _library(self, library_name: str) -> Tuple[Library, str, str]:
        library = self.registry.find_library_by_name(library_name)
        if library is None:
            raise LibraryNotFoundError(f"Library not found: {library_name}")
        coordinates = parse_github_url(library.source_url)
        if coordinates is None:
            raise DocVaultError(f"Library {library.name} has no GitHub source URL")
        owner, repo = coordinates
        return library, owner, repo

    def _docs_path(self, owner: str, repo: str, version: Optional[str] = None) -> str:
        return resolve_docs_path(self.config.known_docs_paths, f"{owner}/{repo}", version,
                                 default=self.config.default_docs_path)

    def _known_versions(self, library_id: str) -> set:
        return {normalize_version(v.version) for v in self.registry.list_versions(library_id)}

    def list_releases(self, library_name: str,
                      limit: int = DEFAULT_RELEASE_LIMIT) -> Tuple[str, List[ReleaseCandidate]]:
        """Published releases, newest first, with the library's default docs path.

        Drafts and pre-releases are left out.

        Raises:
            LibraryNotFoundError: If no library has this name
            GitHubAPIError: If the releases cannot be listed
        """
        library, owner, repo = self._library(library_name)
        known = self._known_versions(library.id)

        candidates = []
        for release in self.client.get_releases(owner, repo, per_page=RELEASES_PAGE_SIZE):
            if release.draft or release.prerelease:
                continue
            version = normalize_version(release.tag_name)
            candidates.append(ReleaseCandidate(
                tag_name=release.tag_name,
                version=version,
                name=release.name,
                published_at=release.published_at.isoformat() if release.published_at else None,
                exists=version in known,
                docs_path=self._docs_path(owner, repo, version),
            ))
            if len(candidates) >= limit:
                break

        logger.info(f"Found {len(candidates)} releases for {library.name} ({owner}/{repo})")
        return self._docs_path(owner, repo), candidates

    def sync_releases(self, library_name: str, items: Optional[List[ReleaseSyncItem]] = None,
                      default_docs_path: Optional[str] = None,
                      limit: int = DEFAULT_RELEASE_LIMIT) -> List[StartedSync]:
        """Register releases as versions and start a GitHub sync for each.

        Without ``items`` every listed release that is not tracked yet is
        taken. Versions are stored under their tag name, so scheduled syncs
        resolve the same ref. The first item becomes the latest version when
        it is the newest release or was picked explicitly. A release that
        fails to register or start is logged and skipped.
        """
        library, owner, repo = self._library(library_name)

        latest_tag = None
        if items is None:
            _, candidates = self.list_releases(library_name, limit)
            items = [ReleaseSyncItem(c.tag_name, c.docs_path) for c in candidates if not c.exists]
            if candidates and not candidates[0].exists:
                latest_tag = candidates[0].tag_name
        elif items:
            latest_tag = items[0].tag_name

        known = self._known_versions(library.id)
        started = []
        for item in items:
            if normalize_version(item.tag_name) in known:
                logger.info(f"Version {item.tag_name} of {library.name} already exists, skipping")
                continue

            docs_path = (item.docs_path or default_docs_path
                         or self._docs_path(owner, repo, normalize_version(item.tag_name)))
            try:
                version = self.registry.add_version(library.id, item.tag_name,
                                                    is_latest=item.tag_name == latest_tag, docs_path=docs_path)
                future = self.sync_service.sync_from_github(version.id, owner, repo, docs_path, item.tag_name)
            except DocVaultError as e:
                logger.error(f"Failed to create and sync version {item.tag_name} of {library.name}: {e}")
                continue

            known.add(normalize_version(item.tag_name))
            started.append(StartedSync(version.id, version.version, future.sync_id, future))
            logger.info(f"Created version {item.tag_name} and started sync for {library.name}")

        return started

    def sync_latest_release(self, library_name: str, docs_path: Optional[str] = None) -> List[StartedSync]:
        """Track and sync the repository's latest release, if it is new."""
        _, owner, repo = self._library(library_name)
        release = self.client.get_latest_release(owner, repo)
        if release is None:
            logger.info(f"{owner}/{repo} has no published release")
            return []
        return self.sync_releases(library_name, [ReleaseSyncItem(release.tag_name)], docs_path)
