"""Content fetcher: ordered fallback across fetch strategies."""

import logging
import threading
from typing import List, Optional

from ...config import GitHubFetchConfig
from ...errors import FetchExhaustedError, SyncCancelledError
from ...observability.metrics import fetch_attempts
from .client import GitHubClient
from .models import FetchResult
from .strategies import FetchStrategy, build_strategies

logger = logging.getLogger(__name__)


class ContentFetcher:
    """Fetches repository documentation with the best available strategy."""

    def __init__(self, client: GitHubClient, strategies: List[FetchStrategy]):
        self.client = client
        self.strategies = sorted(strategies, key=lambda s: s.priority)
        logger.info(f"Content fetcher strategies: {[s.name for s in self.strategies]}")

    @classmethod
    def from_config(cls, config: GitHubFetchConfig, client: Optional[GitHubClient] = None) -> 'ContentFetcher':
        client = client or GitHubClient(config)
        return cls(client, build_strategies(client, config.archive, config.git_tree, config.contents_api))

    def fetch(self, owner: str, repo: str, path: str, ref: str,
              cancel_event: Optional[threading.Event] = None) -> FetchResult:
        """List documentation files under ``path`` at ``ref``.

        Strategies that do not support the ref are skipped. A strategy that
        raises or finds nothing hands over to the next one.

        Raises:
            FetchExhaustedError: If no strategy returned files
            SyncCancelledError: If ``cancel_event`` is set while fetching
        """
        for strategy in self.strategies:
            if not strategy.supports(owner, repo, ref):
                logger.debug(f"Strategy {strategy.name} does not support ref {ref}")
                fetch_attempts.labels(strategy=strategy.name, outcome="unsupported").inc()
                continue

            logger.info(f"Fetching {owner}/{repo} with strategy {strategy.name}")
            try:
                result = strategy.fetch(owner, repo, path, ref, cancel_event=cancel_event)
            except SyncCancelledError:
                raise
            except Exception as e:
                logger.warning(f"Strategy {strategy.name} failed: {type(e).__name__}: {e}")
                fetch_attempts.labels(strategy=strategy.name, outcome="error").inc()
                continue

            if result is not None and not result.is_empty:
                logger.info(f"Strategy {strategy.name} found {len(result.files)} files")
                fetch_attempts.labels(strategy=strategy.name, outcome="success").inc()
                return result

            fetch_attempts.labels(strategy=strategy.name, outcome="empty").inc()
            logger.info(f"Strategy {strategy.name} returned no files, trying next")

        raise FetchExhaustedError(owner, repo, path, ref)

    def get_file_content(self, result: FetchResult, owner: str, repo: str, path: str, ref: str) -> str:
        """Pre-loaded content when the strategy kept it, else a raw download."""
        if result.has_content(path):
            return result.get_content(path)
        return self.client.get_raw_content(owner, repo, path, ref)
