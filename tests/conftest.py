"""Shared fixtures for DocVault tests."""

import re
import threading
import zlib
from typing import List

import pytest

from docvault.config import DatabaseConfig
from docvault.indexer.vector_store import VectorStore
from docvault.services.shared.db import Database
from docvault.services.shared.models import SourceType
from docvault.services.shared.registry import DocumentRegistry


class FakeEmbeddings:
    """Deterministic bag-of-words embeddings.

    Each word is hashed into one of ``dims`` buckets, so texts sharing words
    have a high cosine similarity and unrelated texts have none.
    """

    def __init__(self, dims: int = 64, max_batch_size: int = 100):
        self.dims = dims
        self.max_batch_size = max_batch_size
        self.batch_calls: List[List[str]] = []
        self.fail_after = None
        self._lock = threading.Lock()

    @property
    def dimensions(self) -> int:
        return self.dims

    def _vector(self, text: str) -> List[float]:
        vector = [0.0] * self.dims
        for word in re.findall(r"\w+", (text or "").lower()):
            vector[zlib.crc32(word.encode("utf-8")) % self.dims] += 1.0
        return vector

    def embed(self, text: str) -> List[float]:
        return self._vector(text)

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        from docvault.errors import EmbeddingError

        with self._lock:
            if self.fail_after is not None and len(self.batch_calls) >= self.fail_after:
                raise EmbeddingError("embedding service unavailable")
            self.batch_calls.append(list(texts))
        return [self._vector(t) for t in texts]


@pytest.fixture
def database():
    """In-memory SQLite database with all tables."""
    db = Database(DatabaseConfig(url="sqlite://"))
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def registry(database):
    return DocumentRegistry(database)


@pytest.fixture
def embeddings():
    return FakeEmbeddings()


@pytest.fixture
def vector_store(database, embeddings):
    return VectorStore(database, embeddings)


@pytest.fixture
def library(registry):
    return registry.create_library(
        name="spring-boot",
        display_name="Spring Boot",
        source_type=SourceType.GITHUB,
        source_url="https://github.com/spring-projects/spring-boot",
    )


@pytest.fixture
def version(registry, library):
    return registry.add_version(library.id, "v3.2.0", is_latest=True, docs_path="docs")
