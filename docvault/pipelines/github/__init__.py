"""GitHub source: REST client, fetch strategies and the content fetcher."""

from .client import GitHubClient
from .fetcher import ContentFetcher
from .models import FetchResult, GitHubFile, GitHubRelease, SUPPORTED_EXTENSIONS, is_supported_file
from .strategies import (
    ArchiveFetchStrategy,
    ContentsApiFetchStrategy,
    FetchStrategy,
    GitTreeFetchStrategy,
    build_strategies,
)

__all__ = [
    'GitHubClient',
    'ContentFetcher',
    'FetchResult',
    'GitHubFile',
    'GitHubRelease',
    'SUPPORTED_EXTENSIONS',
    'is_supported_file',
    'ArchiveFetchStrategy',
    'ContentsApiFetchStrategy',
    'FetchStrategy',
    'GitTreeFetchStrategy',
    'build_strategies',
]
