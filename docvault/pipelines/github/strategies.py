"""Fetch strategies for GitHub repositories.

Each strategy lists the documentation files under a path at a ref. The
``ContentFetcher`` tries them in priority order (lowest first) and uses the
first one that returns files.
"""

import logging
import os
import re
import tarfile
import tempfile
import threading
import time
from typing import List, Optional

import requests

from ...config import RateLimitConfig, StrategyConfig, ContentsApiConfig
from ...errors import (
    GitHubAPIError,
    MaxRequestsExceededError,
    RateLimitExceededError,
    ResourceNotFoundError,
    SyncCancelledError,
)
from .client import GitHubClient
from .models import FetchResult, GitHubFile, is_supported_file

logger = logging.getLogger(__name__)

TAG_REF_PATTERN = re.compile(r'^v?\d+(\.\d+)*.*$')


def normalize_target_path(path: Optional[str]) -> str:
    """Strip slashes; an empty result means the repository root."""
    return (path or "").strip("/")


def is_under(path: str, target: str) -> bool:
    return not target or path.startswith(target + "/")


def interruptible_sleep(delay_ms: int, cancel_event: Optional[threading.Event] = None) -> None:
    """Sleep for ``delay_ms``, waking early and raising if the run is cancelled."""
    if delay_ms <= 0:
        return
    if cancel_event is None:
        time.sleep(delay_ms / 1000.0)
        return
    if cancel_event.wait(delay_ms / 1000.0):
        raise SyncCancelledError()


class FetchStrategy:
    """Base class for fetch strategies."""

    name = ""

    def __init__(self, client: GitHubClient, priority: int):
        self.client = client
        self.priority = priority

    def supports(self, owner: str, repo: str, ref: str) -> bool:
        return True

    def fetch(self, owner: str, repo: str, path: str, ref: str,
              cancel_event: Optional[threading.Event] = None) -> Optional[FetchResult]:
        """Return the files found, or None when this strategy cannot help."""
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(priority={self.priority})"


class ArchiveFetchStrategy(FetchStrategy):
    """Downloads the tag tarball once and reads files straight out of it.

    Only tag-like refs are supported because codeload serves tag archives
    by name. Content is pre-loaded into the result.
    """

    name = "Archive"

    def supports(self, owner: str, repo: str, ref: str) -> bool:
        return bool(ref) and TAG_REF_PATTERN.match(ref) is not None

    def fetch(self, owner: str, repo: str, path: str, ref: str,
              cancel_event: Optional[threading.Event] = None) -> Optional[FetchResult]:
        logger.info(f"Trying archive download for {owner}/{repo}@{ref}")

        fd, temp_path = tempfile.mkstemp(prefix="docvault-archive-", suffix=".tar.gz")
        try:
            with os.fdopen(fd, "wb") as temp_file:
                size = self.client.download_archive(owner, repo, ref, temp_file)
            logger.info(f"Archive downloaded: {size} bytes")

            if cancel_event is not None and cancel_event.is_set():
                raise SyncCancelledError()

            return self._extract(temp_path, path, cancel_event)
        except SyncCancelledError:
            raise
        except (GitHubAPIError, requests.RequestException, tarfile.TarError, OSError) as e:
            logger.warning(f"Archive strategy failed for {owner}/{repo}@{ref}: {e}")
            return None
        finally:
            try:
                os.remove(temp_path)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Failed to delete temporary archive {temp_path}: {e}")

    def _extract(self, archive_path: str, path: str,
                 cancel_event: Optional[threading.Event]) -> Optional[FetchResult]:
        target = normalize_target_path(path)
        files: List[GitHubFile] = []
        contents = {}

        with tarfile.open(archive_path, mode="r:gz") as tar:
            for member in tar:
                if not member.isfile():
                    continue
                # Entries live under a single "<repo>-<tag>/" root directory
                parts = member.name.split("/", 1)
                if len(parts) < 2 or not parts[1]:
                    continue
                relative_path = parts[1]
                if not is_under(relative_path, target) or not is_supported_file(relative_path):
                    continue

                extracted = tar.extractfile(member)
                if extracted is None:
                    continue
                with extracted:
                    content = extracted.read().decode("utf-8", errors="replace")

                files.append(GitHubFile(
                    name=relative_path.rsplit("/", 1)[-1],
                    path=relative_path,
                    size=member.size,
                    type="file",
                ))
                contents[relative_path] = content

                if len(files) % 50 == 0:
                    logger.debug(f"Extracted {len(files)} files...")
                    if cancel_event is not None and cancel_event.is_set():
                        raise SyncCancelledError()

        if not files:
            logger.warning(f"No documentation files found in archive under {path!r}")
            return None

        logger.info(f"Archive extracted: {len(files)} files")
        return FetchResult(files=files, strategy_used=self.name, contents=contents)


class GitTreeFetchStrategy(FetchStrategy):
    """Lists files with one recursive git tree call; works for any ref."""

    name = "GitTree"

    def fetch(self, owner: str, repo: str, path: str, ref: str,
              cancel_event: Optional[threading.Event] = None) -> Optional[FetchResult]:
        logger.info(f"Trying git tree API for {owner}/{repo}@{ref}")
        try:
            tree = self.client.get_tree(owner, repo, ref)
        except (GitHubAPIError, requests.RequestException, ValueError) as e:
            logger.warning(f"Git tree strategy failed for {owner}/{repo}@{ref}: {e}")
            return None

        if tree.get("truncated", False):
            logger.warning(f"Git tree for {owner}/{repo} is truncated, falling back")
            return None

        target = normalize_target_path(path)
        files = []
        for node in tree.get("tree", []):
            node_path = node.get("path", "")
            if node.get("type") != "blob":
                continue
            if not is_under(node_path, target) or not is_supported_file(node_path):
                continue
            files.append(GitHubFile(
                name=node_path.rsplit("/", 1)[-1],
                path=node_path,
                sha=node.get("sha", ""),
                size=int(node.get("size") or 0),
                type="file",
            ))

        if not files:
            logger.warning(f"No documentation files in git tree under {path!r}")
            return None

        logger.info(f"Git tree API found {len(files)} files")
        return FetchResult(files=files, strategy_used=self.name)


class ContentsApiFetchStrategy(FetchStrategy):
    """Walks directories through the Contents API; the last resort.

    Requests are paced by ``rate_limit.delay_ms`` and capped at
    ``rate_limit.max_requests_per_sync`` per fetch. Transient failures are
    retried after ``retry_delay_ms``; HTTP 403/429 wait
    ``rate_limit_wait_ms`` first. A missing path yields no files.
    """

    name = "ContentsAPI"

    def __init__(self, client: GitHubClient, priority: int, rate_limit: Optional[RateLimitConfig] = None):
        super().__init__(client, priority)
        self.rate_limit = rate_limit or RateLimitConfig()

    def fetch(self, owner: str, repo: str, path: str, ref: str,
              cancel_event: Optional[threading.Event] = None) -> Optional[FetchResult]:
        logger.info(f"Listing {owner}/{repo} path={path!r} ref={ref} via Contents API")
        files: List[GitHubFile] = []
        request_count = [0]

        self._list_recursively(owner, repo, normalize_target_path(path), ref, files, request_count, cancel_event)

        if not files:
            logger.warning(f"Contents API found no documentation files under {path!r}")
            return None

        logger.info(f"Contents API found {len(files)} files in {request_count[0]} requests")
        return FetchResult(files=files, strategy_used=self.name)

    def _list_recursively(self, owner, repo, path, ref, result, request_count, cancel_event):
        if request_count[0] >= self.rate_limit.max_requests_per_sync:
            raise MaxRequestsExceededError(self.rate_limit.max_requests_per_sync)

        if request_count[0] > 0:
            interruptible_sleep(self.rate_limit.delay_ms, cancel_event)

        entries = self._list_with_retry(owner, repo, path, ref, cancel_event)
        request_count[0] += 1
        if request_count[0] % 10 == 0:
            logger.debug(f"{request_count[0]} Contents API requests, {len(result)} files so far")

        for entry in entries:
            if entry.is_file and is_supported_file(entry.path):
                result.append(entry)
            elif entry.is_directory:
                self._list_recursively(owner, repo, entry.path, ref, result, request_count, cancel_event)

    def _list_with_retry(self, owner, repo, path, ref, cancel_event) -> List[GitHubFile]:
        config = self.rate_limit
        last_error: Optional[Exception] = None
        rate_limited = False

        for attempt in range(config.retry_count + 1):
            if cancel_event is not None and cancel_event.is_set():
                raise SyncCancelledError()
            try:
                return self.client.list_directory(owner, repo, path, ref)
            except ResourceNotFoundError:
                logger.debug(f"Path not found: {path!r}")
                return []
            except GitHubAPIError as e:
                last_error = e
                if e.status_code in (403, 429):
                    rate_limited = True
                    logger.warning(f"Rate limited (HTTP {e.status_code}), waiting {config.rate_limit_wait_ms}ms")
                    delay = config.rate_limit_wait_ms
                else:
                    rate_limited = False
                    logger.warning(f"Request failed (HTTP {e.status_code}), retry {attempt + 1}/{config.retry_count}")
                    delay = config.retry_delay_ms
            except (requests.RequestException, ValueError) as e:
                last_error = e
                rate_limited = False
                logger.warning(f"Request failed, retry {attempt + 1}/{config.retry_count}: {e}")
                delay = config.retry_delay_ms

            if attempt < config.retry_count:
                interruptible_sleep(delay, cancel_event)

        message = f"Listing {path!r} failed after {config.retry_count} retries: {last_error}"
        if rate_limited:
            raise RateLimitExceededError(message)
        raise GitHubAPIError(message, status_code=getattr(last_error, "status_code", None))


def build_strategies(client: GitHubClient, archive: StrategyConfig, git_tree: StrategyConfig,
                     contents_api: ContentsApiConfig) -> List[FetchStrategy]:
    """Instantiate the enabled strategies, sorted by priority."""
    strategies: List[FetchStrategy] = []
    if archive.enabled:
        strategies.append(ArchiveFetchStrategy(client, archive.priority))
    if git_tree.enabled:
        strategies.append(GitTreeFetchStrategy(client, git_tree.priority))
    if contents_api.enabled:
        strategies.append(ContentsApiFetchStrategy(client, contents_api.priority, contents_api.rate_limit))
    return sorted(strategies, key=lambda s: s.priority)
