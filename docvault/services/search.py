"""Search engine for DocVault.

Full-text, semantic and hybrid retrieval over one library version. Hybrid
search fuses the lexical and semantic rankings with Reciprocal Rank Fusion.
"""

import logging
import time
from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Any, Dict, List, Optional

from ..config import SearchConfig
from ..errors import LibraryNotFoundError
from ..indexer.filters import eq
from ..indexer.vector_store import META_DOCUMENT_ID, META_VERSION_ID, VectorStore
from ..observability.logging import log_performance
from ..observability.metrics import search_duration, search_requests
from .shared.registry import DocumentRegistry

logger = logging.getLogger(__name__)

# RRF rank constant
RRF_K = 60

FULL_TEXT_CONTENT_LENGTH = 500

# Placeholder score for lexical hits; their order carries the ranking
FULL_TEXT_SCORE = 1.0


class SearchMode(str, Enum):
    FULLTEXT = "fulltext"
    SEMANTIC = "semantic"
    HYBRID = "hybrid"


@dataclass(frozen=True)
class SearchResultItem:
    """One search hit, either a whole document or a chunk of one."""
    document_id: str
    title: str
    path: str
    content: str
    score: float
    chunk_id: Optional[str] = None
    chunk_index: Optional[int] = None

    @property
    def result_key(self) -> str:
        """Identity used to merge hits from different rankings."""
        if self.chunk_id:
            return f"chunk:{self.chunk_id}"
        return f"doc:{self.document_id}"

    def with_score(self, score: float) -> 'SearchResultItem':
        return replace(self, score=score)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def truncate_content(content: Optional[str], max_length: int = FULL_TEXT_CONTENT_LENGTH) -> str:
    if content is None:
        return ""
    if len(content) <= max_length:
        return content
    return content[:max_length] + "..."


def rrf_scores(keyword_results: List[SearchResultItem], semantic_results: List[SearchResultItem],
               alpha: float) -> Dict[str, float]:
    """Weighted RRF score per result key; keyword hits weigh ``alpha``."""
    scores: Dict[str, float] = {}
    for rank, item in enumerate(keyword_results):
        key = item.result_key
        scores[key] = scores.get(key, 0.0) + alpha * (1.0 / (RRF_K + rank + 1))
    for rank, item in enumerate(semantic_results):
        key = item.result_key
        scores[key] = scores.get(key, 0.0) + (1.0 - alpha) * (1.0 / (RRF_K + rank + 1))
    return scores


def normalize_rrf_score(score: float) -> float:
    """Scale by the best possible score (rank 0 on both sides), capped at 1."""
    max_possible = 2.0 / (RRF_K + 1)
    return max(0.0, min(1.0, score / max_possible))


def fuse_results(keyword_results: List[SearchResultItem], semantic_results: List[SearchResultItem],
                 limit: int, alpha: float) -> List[SearchResultItem]:
    """Merge two rankings with RRF.

    When one side is empty the other is returned as is, truncated to
    ``limit``. A key present on both sides keeps the semantic hit, which
    carries the chunk fields.
    """
    if not keyword_results and not semantic_results:
        return []
    if not keyword_results:
        return semantic_results[:limit]
    if not semantic_results:
        return keyword_results[:limit]

    scores = rrf_scores(keyword_results, semantic_results, alpha)

    merged: Dict[str, SearchResultItem] = {}
    for item in semantic_results:
        merged.setdefault(item.result_key, item)
    for item in keyword_results:
        merged.setdefault(item.result_key, item)

    ranked = sorted(scores.items(), key=lambda kv: kv[1], reverse=True)[:limit]
    return [merged[key].with_score(normalize_rrf_score(score)) for key, score in ranked]


class SearchService:
    """Full-text, semantic and hybrid search."""

    def __init__(self, registry: DocumentRegistry, vector_store: VectorStore,
                 config: Optional[SearchConfig] = None):
        self.registry = registry
        self.vector_store = vector_store
        self.config = config or SearchConfig()

    def resolve_version_id(self, library_name: str, version: Optional[str] = None) -> str:
        """Version id for a library name and version; blank version means latest.

        Raises:
            LibraryNotFoundError: If no library has that name
            VersionNotFoundError: If the library has no such version
        """
        library = self.registry.find_library_by_name(library_name)
        if library is None:
            raise LibraryNotFoundError(f"Library not found: {library_name}")
        if version is not None and not version.strip():
            version = None
        return self.registry.resolve_version_id(library.id, version)

    def search(self, library_name: str, version: Optional[str], query: str,
               mode: SearchMode = SearchMode.HYBRID, limit: Optional[int] = None) -> List[SearchResultItem]:
        """Resolve the version and run the search ``mode`` selects.

        A blank query returns no results. ``mode`` may be a ``SearchMode`` or
        its string value.

        Raises:
            ValueError: If ``mode`` is not a known search mode
        """
        mode = SearchMode(mode)
        if query is None or not query.strip():
            return []
        if limit is None or limit <= 0:
            limit = self.config.default_limit

        version_id = self.resolve_version_id(library_name, version)

        start = time.time()
        try:
            if mode == SearchMode.FULLTEXT:
                results = self.full_text_search(version_id, query, limit)
            elif mode == SearchMode.SEMANTIC:
                results = self.semantic_search(version_id, query, limit)
            else:
                results = self.hybrid_search(version_id, query, limit)
        except Exception:
            search_requests.labels(search_type=mode.value, status="error").inc()
            raise
        finally:
            search_duration.labels(search_type=mode.value).observe(time.time() - start)

        search_requests.labels(search_type=mode.value, status="success").inc()
        return results

    def full_text_search(self, version_id: str, query: str, limit: int) -> List[SearchResultItem]:
        """Lexical search; each hit is a whole document with a placeholder score."""
        if query is None or not query.strip():
            return []

        documents = self.registry.full_text_search(version_id, query, limit)
        return [
            SearchResultItem(
                document_id=doc.id,
                title=doc.title,
                path=doc.path,
                content=truncate_content(doc.content),
                score=FULL_TEXT_SCORE,
            )
            for doc in documents
        ]

    def semantic_search(self, version_id: str, query: str, limit: int,
                        threshold: Optional[float] = None) -> List[SearchResultItem]:
        """Vector search over the version's chunks.

        Hits whose parent document no longer exists are dropped.
        """
        if query is None or not query.strip():
            return []
        if threshold is None:
            threshold = self.config.default_min_similarity

        hits = self.vector_store.similarity_search(
            query,
            top_k=limit,
            similarity_threshold=threshold,
            filter_expression=eq(META_VERSION_ID, version_id),
        )
        if not hits:
            return []

        document_ids = [hit.metadata.get(META_DOCUMENT_ID) or hit.document_id for hit in hits]
        documents = self.registry.get_documents(document_ids)

        results = []
        for hit, document_id in zip(hits, document_ids):
            document = documents.get(document_id)
            if document is None:
                logger.debug(f"Dropping chunk {hit.id}: document {document_id} not found")
                continue
            results.append(SearchResultItem(
                document_id=document.id,
                title=document.title,
                path=document.path,
                content=hit.content,
                score=hit.score,
                chunk_id=hit.id,
                chunk_index=hit.chunk_index,
            ))
        return results

    @log_performance(threshold_ms=2000.0)
    def hybrid_search(self, version_id: str, query: str, limit: int, alpha: Optional[float] = None,
                      min_similarity: Optional[float] = None) -> List[SearchResultItem]:
        """Fuse full-text and semantic rankings with weighted RRF.

        Both sides fetch twice ``limit`` results. ``alpha`` weighs the
        lexical side and ``1 - alpha`` the semantic side.
        """
        if query is None or not query.strip():
            return []
        if alpha is None:
            alpha = self.config.default_alpha
        if min_similarity is None:
            min_similarity = self.config.default_min_similarity

        fetch_limit = limit * 2
        keyword_results = self.full_text_search(version_id, query, fetch_limit)
        semantic_results = self.semantic_search(version_id, query, fetch_limit, min_similarity)
        logger.debug(f"Hybrid search: {len(keyword_results)} keyword results, "
                     f"{len(semantic_results)} semantic results (alpha={alpha})")

        return fuse_results(keyword_results, semantic_results, limit, alpha)
