"""Tests for the content fetcher's strategy fallback."""

from unittest.mock import Mock

import pytest

from docvault.config import GitHubFetchConfig, StrategyConfig
from docvault.errors import FetchExhaustedError, GitHubAPIError, SyncCancelledError
from docvault.pipelines.github.client import GitHubClient
from docvault.pipelines.github.fetcher import ContentFetcher
from docvault.pipelines.github.models import FetchResult, GitHubFile


def make_strategy(name, priority, result=None, error=None, supported=True):
    strategy = Mock()
    strategy.name = name
    strategy.priority = priority
    strategy.supports.return_value = supported
    if error is not None:
        strategy.fetch.side_effect = error
    else:
        strategy.fetch.return_value = result
    return strategy


def result_with(path, strategy="Test", contents=None):
    return FetchResult(files=[GitHubFile(name=path, path=path)], strategy_used=strategy, contents=contents or {})


@pytest.fixture
def client():
    return Mock(spec=GitHubClient)


class TestContentFetcher:
    """Ordered fallback."""

    def test_strategies_sorted_by_priority(self, client):
        """Test that strategies run lowest priority first."""
        late = make_strategy("late", 9, result_with("b.md", "late"))
        early = make_strategy("early", 1, result_with("a.md", "early"))

        result = ContentFetcher(client, [late, early]).fetch("o", "r", "docs", "main")

        assert result.strategy_used == "early"
        late.fetch.assert_not_called()

    def test_falls_through_errors_and_empty_results(self, client):
        """Test that a raising or empty strategy hands over to the next."""
        failing = make_strategy("failing", 1, error=GitHubAPIError("down", 503))
        empty = make_strategy("empty", 2, FetchResult(files=[], strategy_used="empty"))
        absent = make_strategy("absent", 3, None)
        working = make_strategy("working", 4, result_with("docs/a.md", "working"))

        result = ContentFetcher(client, [failing, empty, absent, working]).fetch("o", "r", "docs", "main")

        assert result.strategy_used == "working"
        for strategy in (failing, empty, absent, working):
            strategy.fetch.assert_called_once()

    def test_unsupported_strategy_is_skipped(self, client):
        """Test that supports() gates fetch()."""
        archive = make_strategy("archive", 1, supported=False)
        tree = make_strategy("tree", 2, result_with("a.md", "tree"))

        assert ContentFetcher(client, [archive, tree]).fetch("o", "r", "docs", "main").strategy_used == "tree"
        archive.fetch.assert_not_called()

    def test_exhaustion_names_repository(self, client):
        """Test the terminal error when nothing works."""
        strategies = [make_strategy("a", 1, None), make_strategy("b", 2, error=ValueError("bad json"))]

        with pytest.raises(FetchExhaustedError) as exc_info:
            ContentFetcher(client, strategies).fetch("spring", "boot", "docs", "main")

        assert "spring/boot" in str(exc_info.value)
        assert exc_info.value.owner == "spring"

    def test_cancellation_is_not_swallowed(self, client):
        """Test that a cancelled run does not fall through to later strategies."""
        cancelled = make_strategy("a", 1, error=SyncCancelledError())
        later = make_strategy("b", 2, result_with("a.md"))

        with pytest.raises(SyncCancelledError):
            ContentFetcher(client, [cancelled, later]).fetch("o", "r", "docs", "main")
        later.fetch.assert_not_called()

    def test_get_file_content_prefers_preloaded(self, client):
        """Test pre-loaded content and the raw download fallback."""
        fetcher = ContentFetcher(client, [])
        preloaded = result_with("docs/a.md", contents={"docs/a.md": "cached"})
        assert fetcher.get_file_content(preloaded, "o", "r", "docs/a.md", "v1") == "cached"
        client.get_raw_content.assert_not_called()

        client.get_raw_content.return_value = "downloaded"
        listing_only = result_with("docs/b.md")
        assert fetcher.get_file_content(listing_only, "o", "r", "docs/b.md", "v1") == "downloaded"
        client.get_raw_content.assert_called_once_with("o", "r", "docs/b.md", "v1")

    def test_from_config(self, client):
        """Test that disabled strategies are not built."""
        config = GitHubFetchConfig(archive=StrategyConfig(enabled=False, priority=1))
        fetcher = ContentFetcher.from_config(config, client=client)
        assert [s.name for s in fetcher.strategies] == ["GitTree", "ContentsAPI"]
