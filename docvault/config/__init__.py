"""Configuration module for DocVault.

Provides configuration management for storage, GitHub fetching, embeddings,
chunking, search and sync scheduling.
"""

from .settings import (
    AppConfig,
    ChunkingConfig,
    ContentsApiConfig,
    DatabaseConfig,
    EmbeddingConfig,
    GitHubFetchConfig,
    LoggingConfig,
    RateLimitConfig,
    SearchConfig,
    StrategyConfig,
    SyncConfig,
)

__all__ = [
    'AppConfig',
    'ChunkingConfig',
    'ContentsApiConfig',
    'DatabaseConfig',
    'EmbeddingConfig',
    'GitHubFetchConfig',
    'LoggingConfig',
    'RateLimitConfig',
    'SearchConfig',
    'StrategyConfig',
    'SyncConfig',
]
