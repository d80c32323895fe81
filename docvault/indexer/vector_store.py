"""Chunk vector store.

Stores document chunks with their embeddings in the relational database and
answers cosine-similarity queries restricted by metadata filters.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Union

import numpy as np
from pgvector.sqlalchemy import Vector
from sqlalchemy import Float, bindparam, case, cast, delete, func, literal, select
from sqlalchemy.dialects.postgresql import JSONPATH

from ..errors import EmbeddingError
from ..services.shared.db import Database
from ..services.shared.models import DocumentChunk
from .embeddings import cosine_distances
from .filters import Expression, parse_filter

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 10

# Metadata keys written with every chunk
META_VERSION_ID = "versionId"
META_DOCUMENT_ID = "documentId"
META_CHUNK_INDEX = "chunkIndex"
META_TOKEN_COUNT = "tokenCount"
META_DOCUMENT_TITLE = "documentTitle"
META_DOCUMENT_PATH = "documentPath"

FilterInput = Union[str, Expression, None]


@dataclass
class ChunkRecord:
    """A chunk ready to be embedded and stored."""
    id: str
    document_id: str
    chunk_index: int
    content: str
    token_count: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SimilarityHit:
    """A stored chunk matching a similarity query."""
    id: str
    document_id: str
    chunk_index: int
    content: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def distance(self) -> float:
        return 1.0 - self.score


def _as_expression(filter_expression: FilterInput) -> Optional[Expression]:
    if filter_expression is None:
        return None
    if isinstance(filter_expression, Expression):
        return filter_expression
    return parse_filter(filter_expression)


def jsonpath_clause(expression: Expression):
    """``metadata @@ jsonpath`` predicate for PostgreSQL."""
    return DocumentChunk.metadata_.op("@@")(cast(literal(expression.to_jsonpath()), JSONPATH))


def similarity_statement(query_vector, top_k: int, max_distance: float, expression: Optional[Expression] = None):
    """pgvector query returning the ``top_k`` closest chunks with their cosine ``distance``.

    Embeddings of another dimension get a NULL distance instead of an error,
    which also drops them from the result.
    """
    dims = len(query_vector)
    query = bindparam("query_vector", [float(v) for v in query_vector], type_=Vector(dims))
    distance = case(
        (func.vector_dims(DocumentChunk.embedding) == dims,
         DocumentChunk.embedding.op("<=>", return_type=Float)(query)),
        else_=None,
    )

    stmt = (
        select(
            DocumentChunk.id,
            DocumentChunk.document_id,
            DocumentChunk.chunk_index,
            DocumentChunk.content,
            DocumentChunk.metadata_.label("metadata_"),
            distance.label("distance"),
        )
        .where(DocumentChunk.embedding.isnot(None))
        .where(distance < max_distance)
        .order_by(distance, DocumentChunk.id)
        .limit(top_k)
    )
    if expression is not None:
        stmt = stmt.where(jsonpath_clause(expression))
    return stmt


class VectorStore:
    """Chunk storage plus similarity search over an embedding provider."""

    def __init__(self, database: Database, embeddings):
        """
        Args:
            database: Relational store holding ``document_chunks``
            embeddings: Provider with ``embed``, ``embed_batch`` and ``max_batch_size``
        """
        self.db = database
        self.embeddings = embeddings

    def add(self, chunks: List[ChunkRecord]) -> int:
        """Embed and upsert chunks, one embedding call and one transaction per batch.

        Returns the number of rows written. An embedding failure aborts the
        current batch; batches already written stay committed.

        Raises:
            EmbeddingError: If the provider fails or returns the wrong number of vectors
        """
        if not chunks:
            return 0

        batch_size = max(1, int(self.embeddings.max_batch_size or 1))
        written = 0
        for offset in range(0, len(chunks), batch_size):
            batch = chunks[offset:offset + batch_size]
            vectors = self.embeddings.embed_batch([c.content for c in batch])
            if len(vectors) != len(batch):
                raise EmbeddingError(f"Provider returned {len(vectors)} vectors for {len(batch)} chunks")
            self._upsert(batch, vectors)
            written += len(batch)
            logger.debug(f"Stored chunk batch {offset // batch_size + 1} ({len(batch)} chunks)")

        return written

    def _upsert(self, batch: List[ChunkRecord], vectors: List[List[float]]) -> None:
        with self.db.session() as session:
            for record, vector in zip(batch, vectors):
                values = [float(v) for v in vector]
                row = session.get(DocumentChunk, record.id)
                if row is None:
                    session.add(DocumentChunk(
                        id=record.id,
                        document_id=record.document_id,
                        chunk_index=record.chunk_index,
                        content=record.content,
                        embedding=values,
                        token_count=record.token_count,
                        metadata_=dict(record.metadata),
                    ))
                else:
                    row.document_id = record.document_id
                    row.chunk_index = record.chunk_index
                    row.content = record.content
                    row.embedding = values
                    row.token_count = record.token_count
                    row.metadata_ = dict(record.metadata)

    def delete(self, ids: Iterable[str]) -> int:
        ids = list(ids)
        if not ids:
            return 0
        with self.db.session() as session:
            result = session.execute(delete(DocumentChunk).where(DocumentChunk.id.in_(ids)))
            return result.rowcount or 0

    def delete_by_filter(self, filter_expression: FilterInput) -> int:
        """Delete the chunks whose metadata matches the filter.

        Raises:
            FilterExpressionError: If the filter cannot be parsed
        """
        expression = _as_expression(filter_expression)
        if expression is None:
            raise ValueError("delete_by_filter requires a filter")

        if self.db.is_postgresql:
            with self.db.session() as session:
                stmt = delete(DocumentChunk).where(jsonpath_clause(expression))
                deleted = session.execute(stmt, execution_options={"synchronize_session": False}).rowcount or 0
        else:
            with self.db.session() as session:
                rows = session.execute(select(DocumentChunk.id, DocumentChunk.metadata_.label("metadata_"))).all()
            deleted = self.delete([row.id for row in rows if expression.evaluate(row.metadata_ or {})])

        logger.info(f"Deleted {deleted} chunks matching {expression.to_jsonpath()}")
        return deleted

    def similarity_search(self, query: str, top_k: int = DEFAULT_TOP_K, similarity_threshold: float = 0.0,
                          filter_expression: FilterInput = None) -> List[SimilarityHit]:
        """Chunks closest to ``query`` by cosine distance.

        Only rows with an embedding of the query's dimension are considered.
        Rows must satisfy ``distance < 1 - similarity_threshold``; each hit's
        score is ``1 - distance``. Results are ordered by ascending distance.
        PostgreSQL ranks in the database with pgvector; other databases rank
        in numpy.
        """
        if top_k <= 0:
            top_k = DEFAULT_TOP_K
        expression = _as_expression(filter_expression)

        query_vector = np.asarray(self.embeddings.embed(query), dtype=np.float32)
        max_distance = 1.0 - similarity_threshold

        if self.db.is_postgresql:
            stmt = similarity_statement(query_vector, top_k, max_distance, expression)
            with self.db.session() as session:
                rows = session.execute(stmt).all()
            return [
                SimilarityHit(
                    id=row.id,
                    document_id=row.document_id,
                    chunk_index=row.chunk_index,
                    content=row.content,
                    score=1.0 - float(row.distance),
                    metadata=dict(row.metadata_ or {}),
                )
                for row in rows
            ]

        return self._rank_in_memory(query_vector, top_k, max_distance, expression)

    def _rank_in_memory(self, query_vector: np.ndarray, top_k: int, max_distance: float,
                        expression: Optional[Expression]) -> List[SimilarityHit]:
        stmt = select(DocumentChunk).where(DocumentChunk.embedding.isnot(None))
        with self.db.session() as session:
            rows = list(session.execute(stmt).scalars())

        candidates = []
        for row in rows:
            if row.embedding is None:
                continue
            if expression is not None and not expression.evaluate(row.metadata_ or {}):
                continue
            if len(row.embedding) != len(query_vector):
                logger.warning(f"Skipping chunk {row.id}: embedding has {len(row.embedding)} dimensions, "
                               f"query has {len(query_vector)}")
                continue
            candidates.append(row)

        if not candidates:
            return []

        matrix = np.asarray([row.embedding for row in candidates], dtype=np.float32)
        distances = cosine_distances(query_vector, matrix)

        order = np.argsort(distances, kind="stable")
        hits = []
        for i in order:
            distance = float(distances[i])
            if distance >= max_distance:
                break
            row = candidates[i]
            hits.append(SimilarityHit(
                id=row.id,
                document_id=row.document_id,
                chunk_index=row.chunk_index,
                content=row.content,
                score=1.0 - distance,
                metadata=dict(row.metadata_ or {}),
            ))
            if len(hits) >= top_k:
                break
        return hits
