"""Tests for full-text, semantic and hybrid search."""

from unittest.mock import Mock

import pytest

from docvault.config import SearchConfig
from docvault.errors import LibraryNotFoundError, VersionNotFoundError
from docvault.indexer.filters import eq
from docvault.indexer.vector_store import SimilarityHit
from docvault.services.search import (
    RRF_K,
    SearchMode,
    SearchResultItem,
    SearchService,
    fuse_results,
    normalize_rrf_score,
    rrf_scores,
    truncate_content,
)
from docvault.services.shared.models import Document, new_id
from docvault.services.sync import SyncService


def doc_item(document_id, score=1.0):
    return SearchResultItem(document_id=document_id, title=document_id, path=f"{document_id}.md",
                            content="", score=score)


def chunk_item(chunk_id, document_id="d", score=0.9):
    return SearchResultItem(document_id=document_id, title="t", path="p", content="chunk",
                            score=score, chunk_id=chunk_id, chunk_index=0)


def save(registry, version_id, path, title, content):
    return registry.save_document(Document(
        id=new_id(), version_id=version_id, title=title, path=path, content=content,
        content_hash="h", doc_type="markdown", metadata_={},
    ))


class TestFusion:
    """Reciprocal Rank Fusion."""

    def test_weighted_scores(self):
        """Test per-key scores with alpha weighting the keyword side."""
        scores = rrf_scores([doc_item("a"), doc_item("b")], [doc_item("b"), doc_item("c")], alpha=0.3)

        assert scores["doc:a"] == pytest.approx(0.3 / 61)
        assert scores["doc:b"] == pytest.approx(0.3 / 62 + 0.7 / 61)
        assert scores["doc:c"] == pytest.approx(0.7 / 62)

    def test_fused_order_and_normalized_scores(self):
        """Test ranking, the merged item and score normalization."""
        semantic_b = SearchResultItem(document_id="b", title="B", path="b.md", content="semantic", score=0.9)
        fused = fuse_results([doc_item("a"), doc_item("b")], [semantic_b, doc_item("c")], limit=10, alpha=0.3)

        assert [r.document_id for r in fused] == ["b", "c", "a"]
        assert fused[0].content == "semantic"
        assert fused[0].score == pytest.approx((0.3 / 62 + 0.7 / 61) / (2 / 61))
        assert fused[2].score == pytest.approx((0.3 / 61) / (2 / 61))

    def test_chunk_and_document_keys_do_not_merge(self):
        """Test that a chunk hit and its document hit rank separately."""
        fused = fuse_results([doc_item("d")], [chunk_item("c1", document_id="d")], limit=10, alpha=0.5)
        assert len(fused) == 2

    def test_ties_keep_keyword_first(self):
        """Test that equal scores keep insertion order."""
        fused = fuse_results([doc_item("k")], [chunk_item("s")], limit=10, alpha=0.5)
        assert [r.result_key for r in fused] == ["doc:k", "chunk:s"]

    def test_limit(self):
        """Test truncation after ranking."""
        keyword = [doc_item(f"k{i}") for i in range(5)]
        semantic = [chunk_item(f"s{i}") for i in range(5)]
        assert len(fuse_results(keyword, semantic, limit=3, alpha=0.3)) == 3

    def test_one_side_empty(self):
        """Test that a single ranking passes through with its own scores."""
        semantic = [chunk_item("s1", score=0.8), chunk_item("s2", score=0.7)]
        assert fuse_results([], semantic, limit=1, alpha=0.3) == semantic[:1]
        keyword = [doc_item("k1"), doc_item("k2")]
        assert fuse_results(keyword, [], limit=5, alpha=0.3) == keyword
        assert fuse_results([], [], limit=5, alpha=0.3) == []

    def test_normalize(self):
        """Test scaling and clamping."""
        best = 2.0 / (RRF_K + 1)
        assert normalize_rrf_score(best) == pytest.approx(1.0)
        assert normalize_rrf_score(best * 2) == 1.0
        assert normalize_rrf_score(-1.0) == 0.0

    def test_truncate_content(self):
        """Test the full-text content cap."""
        assert truncate_content("x" * 500) == "x" * 500
        assert truncate_content("x" * 501) == "x" * 500 + "..."
        assert truncate_content(None) == ""


@pytest.fixture
def store_mock():
    store = Mock()
    store.similarity_search.return_value = []
    return store


@pytest.fixture
def search(registry, store_mock):
    return SearchService(registry, store_mock, SearchConfig())


class TestSearchService:
    """Search entry points over the registry and a mocked vector store."""

    def test_unknown_library(self, search):
        """Test library resolution."""
        with pytest.raises(LibraryNotFoundError):
            search.search("missing", None, "query")

    def test_unknown_version(self, search, version):
        """Test version resolution."""
        with pytest.raises(VersionNotFoundError):
            search.search("spring-boot", "v0.1", "query")

    def test_blank_query(self, search):
        """Test that a blank query returns nothing before any lookup."""
        assert search.search("missing", None, "   ") == []

    def test_invalid_mode(self, search, version):
        """Test that unknown modes are rejected."""
        with pytest.raises(ValueError):
            search.search("spring-boot", None, "query", mode="fuzzy")

    def test_full_text(self, search, registry, version):
        """Test lexical hits: placeholder score and truncated content."""
        doc = save(registry, version.id, "actuator.md", "Actuator", "actuator " * 100)

        results = search.search("spring-boot", "", "actuator", mode="fulltext")

        assert len(results) == 1
        assert results[0].document_id == doc.id
        assert results[0].score == 1.0
        assert results[0].chunk_id is None
        assert results[0].content.endswith("...")

    def test_semantic_drops_missing_documents(self, search, store_mock, registry, version):
        """Test hit mapping and the version filter."""
        doc = save(registry, version.id, "a.md", "A", "text")
        store_mock.similarity_search.return_value = [
            SimilarityHit(id="c1", document_id=doc.id, chunk_index=2, content="chunk text", score=0.9,
                          metadata={"documentId": doc.id}),
            SimilarityHit(id="c2", document_id="gone", chunk_index=0, content="orphan", score=0.8,
                          metadata={"documentId": "gone"}),
        ]

        results = search.search("spring-boot", "v3.2.0", "query", mode=SearchMode.SEMANTIC, limit=5)

        assert [(r.chunk_id, r.title, r.score) for r in results] == [("c1", "A", 0.9)]
        kwargs = store_mock.similarity_search.call_args[1]
        assert kwargs["top_k"] == 5
        assert kwargs["similarity_threshold"] == 0.5
        assert kwargs["filter_expression"] == eq("versionId", version.id)

    def test_hybrid_fetches_double(self, search, store_mock, registry, version):
        """Test hybrid fetch sizes and fusion of both sides."""
        doc = save(registry, version.id, "a.md", "Security", "security filters")
        store_mock.similarity_search.return_value = [
            SimilarityHit(id="c1", document_id=doc.id, chunk_index=0, content="security filters", score=0.7,
                          metadata={"documentId": doc.id}),
        ]

        results = search.search("spring-boot", None, "security", limit=4)

        assert store_mock.similarity_search.call_args[1]["top_k"] == 8
        assert [r.result_key for r in results] == ["chunk:c1", f"doc:{doc.id}"]
        assert results[0].score == pytest.approx((0.7 / 61) / (2 / 61))

    def test_default_limit(self, search, store_mock, version):
        """Test that a non-positive limit uses the configured default."""
        search.search("spring-boot", None, "query", mode="semantic", limit=0)
        assert store_mock.similarity_search.call_args[1]["top_k"] == 10


class TestEndToEnd:
    """Ingest with the sync service, then search."""

    def test_semantic_and_hybrid(self, registry, vector_store, version):
        """Test that ingested chunks are found by meaning and by keyword."""
        sync = SyncService(registry, vector_store)
        try:
            sync.process_file(version.id, "config.md",
                              "# Configuration\n\nExternalized configuration with application properties.\n")
            sync.process_file(version.id, "kafka.md", "# Kafka\n\nListeners consume topics.\n")
        finally:
            sync.shutdown()

        search = SearchService(registry, vector_store, SearchConfig(default_min_similarity=0.0))
        semantic = search.search("spring-boot", None, "externalized configuration properties", mode="semantic")
        hybrid = search.search("spring-boot", None, "configuration", mode="hybrid")

        assert semantic[0].path == "config.md"
        assert semantic[0].chunk_id is not None
        assert {r.path for r in hybrid} >= {"config.md"}
        assert all(0.0 <= r.score <= 1.0 for r in hybrid)
