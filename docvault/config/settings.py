"""Configuration for DocVault.

Settings are pydantic models. Each one can be built from environment
variables with ``from_env()``; ``AppConfig`` can also be loaded from YAML.
"""

import os
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class RateLimitConfig(BaseModel):
    """Request pacing for the Contents API strategy."""
    delay_ms: int = Field(default=100, description="Delay between consecutive requests")
    max_requests_per_sync: int = Field(default=500, description="Hard cap on requests per sync run")
    retry_count: int = Field(default=3, description="Retries on transient errors")
    retry_delay_ms: int = Field(default=1000, description="Delay before a retry")
    rate_limit_wait_ms: int = Field(default=60000, description="Cooldown after HTTP 403/429")


class StrategyConfig(BaseModel):
    """Enable flag and priority for one fetch strategy."""
    enabled: bool = True
    priority: int = 0


class ContentsApiConfig(StrategyConfig):
    """Contents API strategy settings."""
    priority: int = 3
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)


class GitHubFetchConfig(BaseModel):
    """GitHub fetching configuration."""
    archive: StrategyConfig = Field(default_factory=lambda: StrategyConfig(enabled=True, priority=1))
    git_tree: StrategyConfig = Field(default_factory=lambda: StrategyConfig(enabled=True, priority=2))
    contents_api: ContentsApiConfig = Field(default_factory=ContentsApiConfig)
    connect_timeout_ms: int = Field(default=10000, description="HTTP connect timeout")
    read_timeout_ms: int = Field(default=30000, description="HTTP read timeout")
    token: Optional[str] = Field(default=None, description="GitHub token sent as a bearer token")

    @property
    def timeouts(self) -> tuple:
        """(connect, read) timeout tuple in seconds, as requests expects."""
        return (self.connect_timeout_ms / 1000.0, self.read_timeout_ms / 1000.0)

    @classmethod
    def from_env(cls) -> 'GitHubFetchConfig':
        """Create configuration from environment variables."""
        rate_limit = RateLimitConfig(
            delay_ms=int(os.getenv('GITHUB_FETCH_DELAY_MS', '100')),
            max_requests_per_sync=int(os.getenv('GITHUB_FETCH_MAX_REQUESTS', '500')),
            retry_count=int(os.getenv('GITHUB_FETCH_RETRY_COUNT', '3')),
            retry_delay_ms=int(os.getenv('GITHUB_FETCH_RETRY_DELAY_MS', '1000')),
            rate_limit_wait_ms=int(os.getenv('GITHUB_FETCH_RATE_LIMIT_WAIT_MS', '60000')),
        )
        return cls(
            archive=StrategyConfig(
                enabled=_env_bool('GITHUB_FETCH_ARCHIVE_ENABLED', True),
                priority=int(os.getenv('GITHUB_FETCH_ARCHIVE_PRIORITY', '1')),
            ),
            git_tree=StrategyConfig(
                enabled=_env_bool('GITHUB_FETCH_GIT_TREE_ENABLED', True),
                priority=int(os.getenv('GITHUB_FETCH_GIT_TREE_PRIORITY', '2')),
            ),
            contents_api=ContentsApiConfig(
                enabled=_env_bool('GITHUB_FETCH_CONTENTS_API_ENABLED', True),
                priority=int(os.getenv('GITHUB_FETCH_CONTENTS_API_PRIORITY', '3')),
                rate_limit=rate_limit,
            ),
            connect_timeout_ms=int(os.getenv('GITHUB_CONNECT_TIMEOUT_MS', '10000')),
            read_timeout_ms=int(os.getenv('GITHUB_READ_TIMEOUT_MS', '30000')),
            token=os.getenv('GITHUB_TOKEN') or None,
        )


class DatabaseConfig(BaseModel):
    """Database configuration."""
    url: str = Field(default="sqlite:///docvault.db", description="SQLAlchemy database URL")
    pool_size: int = Field(default=10, description="Connection pool size")
    max_overflow: int = Field(default=20, description="Maximum pool overflow")
    pool_timeout: int = Field(default=30, description="Pool timeout in seconds")
    echo: bool = Field(default=False, description="Log emitted SQL")

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @property
    def is_postgresql(self) -> bool:
        return self.url.startswith("postgresql")

    @classmethod
    def from_env(cls) -> 'DatabaseConfig':
        """Create configuration from environment variables."""
        return cls(
            url=os.getenv('DOCVAULT_DATABASE_URL', 'sqlite:///docvault.db'),
            pool_size=int(os.getenv('DB_POOL_SIZE', '10')),
            max_overflow=int(os.getenv('DB_MAX_OVERFLOW', '20')),
            pool_timeout=int(os.getenv('DB_POOL_TIMEOUT', '30')),
            echo=_env_bool('DB_ECHO', False),
        )


class EmbeddingConfig(BaseModel):
    """Embedding provider configuration."""
    model: str = Field(default="all-MiniLM-L6-v2", description="sentence-transformers model")
    batch_size: int = Field(default=100, description="Maximum texts per embedding call")
    dimensions: Optional[int] = Field(default=None, description="Override for the vector size")
    cache_dir: Optional[str] = Field(default=None, description="Model cache folder")

    @classmethod
    def from_env(cls) -> 'EmbeddingConfig':
        """Create configuration from environment variables."""
        dimensions = os.getenv('EMBEDDING_DIMENSIONS')
        return cls(
            model=os.getenv('EMBEDDING_MODEL', 'all-MiniLM-L6-v2'),
            batch_size=int(os.getenv('EMBEDDING_BATCH_SIZE', '100')),
            dimensions=int(dimensions) if dimensions else None,
            cache_dir=os.getenv('EMBEDDING_CACHE_DIR') or None,
        )


class ChunkingConfig(BaseModel):
    """Chunker configuration."""
    chunk_size: int = 1000
    chunk_overlap: int = 200

    @classmethod
    def from_env(cls) -> 'ChunkingConfig':
        return cls(
            chunk_size=int(os.getenv('CHUNK_SIZE', '1000')),
            chunk_overlap=int(os.getenv('CHUNK_OVERLAP', '200')),
        )


class SearchConfig(BaseModel):
    """Search defaults."""
    default_alpha: float = Field(default=0.3, description="Keyword weight in hybrid search")
    default_min_similarity: float = Field(default=0.5, description="Semantic similarity threshold")
    default_limit: int = 10

    @classmethod
    def from_env(cls) -> 'SearchConfig':
        return cls(
            default_alpha=float(os.getenv('SEARCH_ALPHA', '0.3')),
            default_min_similarity=float(os.getenv('SEARCH_MIN_SIMILARITY', '0.5')),
            default_limit=int(os.getenv('SEARCH_DEFAULT_LIMIT', '10')),
        )


class SyncConfig(BaseModel):
    """Sync worker pool, schedule and release discovery."""
    max_workers: int = Field(default=4, description="Concurrent sync runs")
    schedule_enabled: bool = Field(default=False, description="Run the nightly sync")
    schedule_cron: str = Field(default="0 2 * * *", description="Five-field cron expression")
    default_docs_path: str = "docs"
    recover_interrupted_runs: bool = Field(
        default=True, description="Fail runs left RUNNING by a previous process at startup"
    )
    # owner/repo -> path, or {"default": path, "versions": {"3.*": path}}
    known_docs_paths: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_env(cls) -> 'SyncConfig':
        return cls(
            max_workers=int(os.getenv('SYNC_MAX_WORKERS', '4')),
            schedule_enabled=_env_bool('SYNC_SCHEDULE_ENABLED', False),
            schedule_cron=os.getenv('SYNC_SCHEDULE_CRON', '0 2 * * *'),
            default_docs_path=os.getenv('SYNC_DEFAULT_DOCS_PATH', 'docs'),
            recover_interrupted_runs=_env_bool('SYNC_RECOVER_INTERRUPTED', True),
        )


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    use_json: bool = False
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls) -> 'LoggingConfig':
        return cls(
            level=os.getenv('LOG_LEVEL', 'INFO'),
            use_json=_env_bool('LOG_JSON', False),
            log_file=os.getenv('LOG_FILE') or None,
        )


class AppConfig(BaseModel):
    """Top-level configuration."""
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    github: GitHubFetchConfig = Field(default_factory=GitHubFetchConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls) -> 'AppConfig':
        """Create configuration from environment variables."""
        return cls(
            database=DatabaseConfig.from_env(),
            github=GitHubFetchConfig.from_env(),
            embedding=EmbeddingConfig.from_env(),
            chunking=ChunkingConfig.from_env(),
            search=SearchConfig.from_env(),
            sync=SyncConfig.from_env(),
            logging=LoggingConfig.from_env(),
        )

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> 'AppConfig':
        """Load configuration from a YAML file.

        Sections missing from the file keep their defaults. The GitHub token
        falls back to ``GITHUB_TOKEN`` so it need not live in the file.
        """
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Configuration file must contain a mapping: {config_path}")

        config = cls(**data)
        if not config.github.token and os.getenv('GITHUB_TOKEN'):
            config.github.token = os.getenv('GITHUB_TOKEN')

        logger.info(f"Loaded configuration from {config_path}")
        return config
