"""Exception hierarchy for DocVault.

Every error raised on purpose by the ingestion pipeline or the retrieval
engine derives from ``DocVaultError`` so callers can catch one base class.
"""

from typing import Optional


class DocVaultError(Exception):
    """Base exception for DocVault errors."""
    pass


# Fetching

class FetchError(DocVaultError):
    """Base exception for repository content fetching."""
    pass


class FetchExhaustedError(FetchError):
    """Raised when every fetch strategy failed or returned nothing."""

    def __init__(self, owner: str, repo: str, path: str = "", ref: str = ""):
        self.owner = owner
        self.repo = repo
        self.path = path
        self.ref = ref
        super().__init__(
            f"All fetch strategies failed for {owner}/{repo} (path={path!r}, ref={ref!r})"
        )


class GitHubAPIError(FetchError):
    """Raised on a non-success GitHub response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ResourceNotFoundError(GitHubAPIError):
    """Raised when a GitHub resource does not exist (HTTP 404)."""

    def __init__(self, message: str):
        super().__init__(message, status_code=404)


class RateLimitExceededError(FetchError):
    """Raised when rate-limit retries are exhausted."""
    pass


class MaxRequestsExceededError(FetchError):
    """Raised when a single sync run exceeds its request budget."""

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Exceeded maximum requests per sync: {limit}")


# Sync

class SyncError(DocVaultError):
    """Base exception for ingestion runs."""
    pass


class SyncAlreadyRunningError(SyncError):
    """Raised when a version already has a RUNNING sync."""

    def __init__(self, version_id: str):
        self.version_id = version_id
        super().__init__(f"Already running a sync task for version {version_id}")


class SyncCancelledError(SyncError):
    """Raised inside a run once it has been cancelled."""

    def __init__(self, message: str = "Sync cancelled"):
        super().__init__(message)


class ConcurrentModificationError(DocVaultError):
    """Raised when an optimistic-lock version check fails. Safe to retry."""
    pass


# Indexing and retrieval

class EmbeddingError(DocVaultError):
    """Raised when the embedding provider fails."""
    pass


class FilterExpressionError(DocVaultError):
    """Raised for a metadata filter that cannot be parsed."""

    def __init__(self, message: str, expression: Optional[str] = None, position: Optional[int] = None):
        self.expression = expression
        self.position = position
        if position is not None:
            message = f"{message} at position {position}"
        super().__init__(message)


# Registry lookups

class LibraryNotFoundError(DocVaultError):
    """Raised when a library cannot be resolved."""
    pass


class VersionNotFoundError(DocVaultError):
    """Raised when a library version cannot be resolved."""
    pass


class DocumentNotFoundError(DocVaultError):
    """Raised when a document id does not exist."""
    pass
