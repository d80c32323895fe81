"""GitHub REST client for DocVault.

Thin wrapper over a ``requests.Session`` that applies the common headers,
timeouts and error mapping used by every fetch strategy.
"""

import logging
from typing import Any, BinaryIO, Dict, List, Optional
from urllib.parse import quote

import requests

from ...config import GitHubFetchConfig
from ...errors import GitHubAPIError, ResourceNotFoundError
from .models import GitHubFile, GitHubRelease

logger = logging.getLogger(__name__)

USER_AGENT = "Documentation-Platform"
ARCHIVE_CHUNK_SIZE = 64 * 1024


class GitHubClient:
    """Synchronous client for the GitHub REST API v3 and raw endpoints."""

    API_BASE = "https://api.github.com"
    RAW_BASE = "https://raw.githubusercontent.com"
    CODELOAD_BASE = "https://codeload.github.com"

    def __init__(self, config: Optional[GitHubFetchConfig] = None,
                 session: Optional[requests.Session] = None):
        """
        Initialize GitHub client.

        Args:
            config: Fetch configuration (timeouts, token)
            session: Optional preconfigured session, mainly for tests
        """
        self.config = config or GitHubFetchConfig()
        self.session = session or requests.Session()
        self.session.headers.update(self._default_headers())

    def _default_headers(self) -> Dict[str, str]:
        headers = {
            'Accept': 'application/vnd.github.v3+json',
            'User-Agent': USER_AGENT,
        }
        if self.config.token:
            headers['Authorization'] = f'Bearer {self.config.token}'
        return headers

    def _get(self, url: str, **kwargs) -> requests.Response:
        """GET ``url`` and map error statuses to exceptions.

        Raises:
            ResourceNotFoundError: On HTTP 404
            GitHubAPIError: On any other non-2xx status
        """
        response = self.session.get(url, timeout=self.config.timeouts, **kwargs)
        if response.status_code == 404:
            response.close()
            raise ResourceNotFoundError(f"Resource not found: {url}")
        if not response.ok:
            status = response.status_code
            response.close()
            raise GitHubAPIError(f"GitHub request failed with HTTP {status}: {url}", status_code=status)
        return response

    def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self._get(url, params=params).json()

    # Repository listings

    def get_tree(self, owner: str, repo: str, ref: str) -> Dict[str, Any]:
        """Fetch the recursive git tree for ``ref``."""
        url = f"{self.API_BASE}/repos/{owner}/{repo}/git/trees/{quote(ref, safe='')}"
        return self._get_json(url, params={"recursive": "1"})

    def list_directory(self, owner: str, repo: str, path: str, ref: str) -> List[GitHubFile]:
        """List one directory through the Contents API."""
        clean_path = quote(path.strip("/"))
        url = f"{self.API_BASE}/repos/{owner}/{repo}/contents/{clean_path}"
        data = self._get_json(url, params={"ref": ref})
        if isinstance(data, list):
            return [GitHubFile.from_api(item) for item in data]
        # A file path returns a single object
        return [GitHubFile.from_api(data)]

    # Content

    def raw_url(self, owner: str, repo: str, path: str, ref: str) -> str:
        return f"{self.RAW_BASE}/{owner}/{repo}/{quote(ref)}/{quote(path.lstrip('/'))}"

    def get_raw_content(self, owner: str, repo: str, path: str, ref: str) -> str:
        """Download one file from raw.githubusercontent.com as UTF-8 text."""
        response = self._get(self.raw_url(owner, repo, path, ref))
        response.encoding = 'utf-8'
        return response.text

    def archive_url(self, owner: str, repo: str, ref: str) -> str:
        return f"{self.CODELOAD_BASE}/{owner}/{repo}/tar.gz/refs/tags/{quote(ref)}"

    def download_archive(self, owner: str, repo: str, ref: str, dest: BinaryIO) -> int:
        """Stream the tag tarball into ``dest``.

        Returns:
            Number of bytes written
        """
        url = self.archive_url(owner, repo, ref)
        written = 0
        with self._get(url, stream=True) as response:
            for chunk in response.iter_content(chunk_size=ARCHIVE_CHUNK_SIZE):
                if chunk:
                    dest.write(chunk)
                    written += len(chunk)
        dest.flush()
        return written

    # Releases

    def get_releases(self, owner: str, repo: str, per_page: int = 30) -> List[GitHubRelease]:
        """List releases, newest first."""
        url = f"{self.API_BASE}/repos/{owner}/{repo}/releases"
        data = self._get_json(url, params={"per_page": per_page})
        return [GitHubRelease.from_api(item) for item in data]

    def get_latest_release(self, owner: str, repo: str) -> Optional[GitHubRelease]:
        """Latest published release, or None if the repository has none."""
        url = f"{self.API_BASE}/repos/{owner}/{repo}/releases/latest"
        try:
            return GitHubRelease.from_api(self._get_json(url))
        except ResourceNotFoundError:
            logger.debug(f"No releases for {owner}/{repo}")
            return None

    def close(self) -> None:
        self.session.close()
