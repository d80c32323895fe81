"""Prometheus metrics for DocVault ingestion and retrieval."""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from prometheus_client.core import CollectorRegistry

# Private registry so tests and embedded use never collide with the default one
docvault_registry = CollectorRegistry()

# Sync metrics
sync_runs = Counter(
    'docvault_sync_runs_total',
    'Sync runs by terminal status',
    ['source', 'status'],
    registry=docvault_registry
)

documents_processed = Counter(
    'docvault_documents_processed_total',
    'Documents created or replaced by sync runs',
    registry=docvault_registry
)

chunks_created = Counter(
    'docvault_chunks_created_total',
    'Chunks written by sync runs',
    registry=docvault_registry
)

fetch_attempts = Counter(
    'docvault_fetch_attempts_total',
    'Fetch strategy attempts by outcome',
    ['strategy', 'outcome'],
    registry=docvault_registry
)

# Search metrics
search_requests = Counter(
    'docvault_search_requests_total',
    'Total number of search requests',
    ['search_type', 'status'],
    registry=docvault_registry
)

search_duration = Histogram(
    'docvault_search_duration_seconds',
    'Search request duration in seconds',
    ['search_type'],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
    registry=docvault_registry
)

embedding_duration = Histogram(
    'docvault_embedding_duration_seconds',
    'Embedding batch duration in seconds',
    ['model'],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 10.0],
    registry=docvault_registry
)


def render_metrics() -> bytes:
    """Return the exposition text for the DocVault registry."""
    return generate_latest(docvault_registry)


__all__ = [
    'CONTENT_TYPE_LATEST',
    'docvault_registry',
    'sync_runs',
    'documents_processed',
    'chunks_created',
    'fetch_attempts',
    'search_requests',
    'search_duration',
    'embedding_duration',
    'render_metrics',
]
