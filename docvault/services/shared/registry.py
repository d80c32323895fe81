"""Document and version registry.

Persistence operations used by the sync orchestrator and the search engine:
library and version lookup, document storage, sync history bookkeeping and
lexical search.
"""

import logging
import re
import threading
from collections import Counter
from typing import Dict, Iterable, List, Optional

from sqlalchemy import delete, desc, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from ...errors import (
    ConcurrentModificationError,
    DocumentNotFoundError,
    LibraryNotFoundError,
    SyncAlreadyRunningError,
    SyncError,
    VersionNotFoundError,
)
from .db import Database
from .models import (
    CodeExample,
    Document,
    DocumentChunk,
    Library,
    LibraryVersion,
    SourceType,
    SyncHistory,
    SyncStatus,
    new_id,
    utcnow,
)

logger = logging.getLogger(__name__)

_TERM_RE = re.compile(r"\w+", re.UNICODE)


class DocumentRegistry:
    """Registry over the relational store."""

    def __init__(self, database: Database):
        self.db = database
        # Serializes the RUNNING check with the RUNNING insert in this process;
        # the partial unique index covers other processes.
        self._sync_lock = threading.Lock()

    # Libraries and versions

    def create_library(self, name: str, display_name: Optional[str] = None,
                       source_type: SourceType = SourceType.GITHUB,
                       source_url: Optional[str] = None, description: Optional[str] = None,
                       category: Optional[str] = None, tags: Optional[List[str]] = None) -> Library:
        library = Library(
            id=new_id(),
            name=name,
            display_name=display_name or name,
            source_type=source_type,
            source_url=source_url,
            description=description,
            category=category,
            tags=list(tags or []),
        )
        with self.db.session() as session:
            session.add(library)
        logger.info(f"Created library {name}")
        return library

    def get_library(self, library_id: str) -> Library:
        with self.db.session() as session:
            library = session.get(Library, library_id)
        if library is None:
            raise LibraryNotFoundError(f"Library not found: {library_id}")
        return library

    def find_library_by_name(self, name: str) -> Optional[Library]:
        with self.db.session() as session:
            return session.execute(select(Library).where(Library.name == name)).scalar_one_or_none()

    def list_libraries(self, source_type: Optional[SourceType] = None) -> List[Library]:
        stmt = select(Library).order_by(Library.name)
        if source_type is not None:
            stmt = stmt.where(Library.source_type == source_type)
        with self.db.session() as session:
            return list(session.execute(stmt).scalars())

    def add_version(self, library_id: str, version: str, is_latest: bool = False,
                    docs_path: Optional[str] = None, is_lts: bool = False) -> LibraryVersion:
        """Register a version; marking it latest clears the flag on the others."""
        entity = LibraryVersion(
            id=new_id(),
            library_id=library_id,
            version=version,
            is_latest=is_latest,
            is_lts=is_lts,
            docs_path=docs_path,
        )
        with self.db.session() as session:
            if session.get(Library, library_id) is None:
                raise LibraryNotFoundError(f"Library not found: {library_id}")
            if is_latest:
                for other in session.execute(
                    select(LibraryVersion).where(
                        LibraryVersion.library_id == library_id,
                        LibraryVersion.is_latest.is_(True),
                    )
                ).scalars():
                    other.is_latest = False
            session.add(entity)
        return entity

    def list_versions(self, library_id: str) -> List[LibraryVersion]:
        stmt = (
            select(LibraryVersion)
            .where(LibraryVersion.library_id == library_id)
            .order_by(desc(LibraryVersion.created_at))
        )
        with self.db.session() as session:
            return list(session.execute(stmt).scalars())

    def get_version(self, version_id: str) -> LibraryVersion:
        with self.db.session() as session:
            entity = session.get(LibraryVersion, version_id)
        if entity is None:
            raise VersionNotFoundError(f"Version not found: {version_id}")
        return entity

    def resolve_version_id(self, library_id: str, version: Optional[str] = None) -> str:
        """Version id for ``version`` of a library; None or "latest" picks the latest.

        Raises:
            VersionNotFoundError: If no matching version exists
        """
        with self.db.session() as session:
            stmt = select(LibraryVersion).where(LibraryVersion.library_id == library_id)
            if version is None or version == "latest":
                stmt = stmt.order_by(desc(LibraryVersion.is_latest), desc(LibraryVersion.created_at))
            else:
                stmt = stmt.where(LibraryVersion.version == version)
            entity = session.execute(stmt.limit(1)).scalar_one_or_none()

        if entity is None:
            raise VersionNotFoundError(f"No version {version or 'latest'!r} for library {library_id}")
        return entity.id

    # Documents

    def find_document(self, version_id: str, path: str) -> Optional[Document]:
        stmt = select(Document).where(Document.version_id == version_id, Document.path == path)
        with self.db.session() as session:
            return session.execute(stmt).scalar_one_or_none()

    def get_document(self, document_id: str) -> Document:
        with self.db.session() as session:
            document = session.get(Document, document_id)
        if document is None:
            raise DocumentNotFoundError(f"Document not found: {document_id}")
        return document

    def get_documents(self, document_ids: Iterable[str]) -> Dict[str, Document]:
        """Documents by id; ids that do not resolve are absent from the result."""
        ids = list(set(document_ids))
        if not ids:
            return {}
        with self.db.session() as session:
            rows = session.execute(select(Document).where(Document.id.in_(ids))).scalars()
            return {doc.id: doc for doc in rows}

    def list_documents(self, version_id: str) -> List[Document]:
        stmt = select(Document).where(Document.version_id == version_id).order_by(Document.path)
        with self.db.session() as session:
            return list(session.execute(stmt).scalars())

    def save_document(self, document: Document) -> Document:
        with self.db.session() as session:
            session.add(document)
        return document

    def replace_document(self, document: Document, code_examples: Optional[List[CodeExample]] = None,
                         previous_id: Optional[str] = None) -> Document:
        """Insert ``document`` after removing the one it supersedes.

        The previous document's code examples, chunks and row are deleted in
        the same transaction as the insert.
        """
        with self.db.session() as session:
            if previous_id is not None:
                self._delete_document_rows(session, previous_id)
                # The delete must reach the database before the (version_id, path) insert
                session.flush()
            session.add(document)
            for example in code_examples or []:
                example.document_id = document.id
                session.add(example)
        return document

    def mark_document_stale(self, document_id: str) -> None:
        """Clear the content hash so the next sync re-ingests the document."""
        with self.db.session() as session:
            document = session.get(Document, document_id)
            if document is not None:
                document.content_hash = ""

    def delete_document(self, document_id: str) -> None:
        with self.db.session() as session:
            self._delete_document_rows(session, document_id)

    def delete_chunks_by_document(self, document_id: str) -> int:
        with self.db.session() as session:
            result = session.execute(delete(DocumentChunk).where(DocumentChunk.document_id == document_id))
            return result.rowcount or 0

    @staticmethod
    def _delete_document_rows(session, document_id: str) -> None:
        session.execute(delete(CodeExample).where(CodeExample.document_id == document_id))
        session.execute(delete(DocumentChunk).where(DocumentChunk.document_id == document_id))
        session.execute(delete(Document).where(Document.id == document_id))

    def find_code_examples(self, document_id: str) -> List[CodeExample]:
        stmt = select(CodeExample).where(CodeExample.document_id == document_id)
        with self.db.session() as session:
            return list(session.execute(stmt).scalars())

    def save_code_examples(self, examples: List[CodeExample]) -> None:
        with self.db.session() as session:
            session.add_all(examples)

    def count_chunks(self, document_id: str) -> int:
        stmt = select(func.count()).select_from(DocumentChunk).where(DocumentChunk.document_id == document_id)
        with self.db.session() as session:
            return session.execute(stmt).scalar_one()

    # Lexical search

    def full_text_search(self, version_id: str, query: str, limit: int) -> List[Document]:
        """Documents of a version ranked by lexical relevance to ``query``."""
        if not query or not query.strip():
            return []
        if self.db.is_postgresql:
            return self._full_text_search_postgres(version_id, query, limit)
        return self._full_text_search_terms(version_id, query, limit)

    def _full_text_search_postgres(self, version_id: str, query: str, limit: int) -> List[Document]:
        vector = func.to_tsvector('english', func.coalesce(Document.title, '') + ' ' + Document.content)
        ts_query = func.plainto_tsquery('english', query)
        rank = func.ts_rank(vector, ts_query)
        stmt = (
            select(Document)
            .where(Document.version_id == version_id, vector.op('@@')(ts_query))
            .order_by(desc(rank))
            .limit(limit)
        )
        with self.db.session() as session:
            return list(session.execute(stmt).scalars())

    def _full_text_search_terms(self, version_id: str, query: str, limit: int) -> List[Document]:
        terms = [t.lower() for t in _TERM_RE.findall(query)]
        if not terms:
            return []

        conditions = []
        for term in set(terms):
            pattern = f"%{term}%"
            conditions.append(Document.content.ilike(pattern))
            conditions.append(Document.title.ilike(pattern))
        stmt = select(Document).where(Document.version_id == version_id, or_(*conditions))

        with self.db.session() as session:
            candidates = list(session.execute(stmt).scalars())

        def score(doc: Document) -> float:
            words = Counter(_TERM_RE.findall(f"{doc.title} {doc.content}".lower()))
            total = sum(words.values()) or 1
            matched = sum(1 for t in set(terms) if words.get(t))
            frequency = sum(words.get(t, 0) for t in terms) / total
            title_bonus = sum(1 for t in set(terms) if t in doc.title.lower())
            return matched * 10 + title_bonus * 5 + frequency

        candidates.sort(key=score, reverse=True)
        return candidates[:limit]

    # Sync history

    def create_sync_history(self, version_id: str) -> SyncHistory:
        history = SyncHistory(
            id=new_id(),
            version_id=version_id,
            status=SyncStatus.PENDING,
            started_at=utcnow(),
            documents_processed=0,
            chunks_created=0,
            metadata_={},
        )
        with self.db.session() as session:
            session.add(history)
        return history

    def has_running_sync_task(self, version_id: str) -> bool:
        stmt = select(func.count()).select_from(SyncHistory).where(
            SyncHistory.version_id == version_id,
            SyncHistory.status == SyncStatus.RUNNING,
        )
        with self.db.session() as session:
            return session.execute(stmt).scalar_one() > 0

    def start_sync(self, version_id: str) -> SyncHistory:
        """Create a sync history row and move it to RUNNING.

        The RUNNING check and the transition happen under one lock, so two
        callers can never both start a run for the same version.

        Raises:
            SyncAlreadyRunningError: If the version already has a RUNNING run
        """
        with self._sync_lock:
            if self.has_running_sync_task(version_id):
                logger.warning(f"Sync task already running for version: {version_id}")
                raise SyncAlreadyRunningError(version_id)

            history = self.create_sync_history(version_id)
            try:
                return self.update_sync_status(history.id, SyncStatus.RUNNING, expected_version=history.version)
            except IntegrityError:
                # Another process won the race between the check and the update
                self.update_sync_status(history.id, SyncStatus.FAILED,
                                        error_message="Already running a sync task for this version")
                raise SyncAlreadyRunningError(version_id)

    def update_sync_status(self, sync_id: str, status: SyncStatus, error_message: Optional[str] = None,
                           documents_processed: Optional[int] = None, chunks_created: Optional[int] = None,
                           expected_version: Optional[int] = None) -> SyncHistory:
        """Transition a sync run.

        ``expected_version`` enables the optimistic-lock check. Terminal
        rows cannot change.

        Raises:
            ConcurrentModificationError: If the row changed since it was read
            SyncError: If the run already finished
        """
        try:
            with self.db.session() as session:
                history = session.get(SyncHistory, sync_id)
                if history is None:
                    raise SyncError(f"Sync history not found: {sync_id}")
                if expected_version is not None and history.version != expected_version:
                    raise ConcurrentModificationError(
                        f"Sync history {sync_id} changed: expected version {expected_version}, found {history.version}"
                    )
                if history.status.is_terminal:
                    raise SyncError(f"Sync {sync_id} already finished with status {history.status.value}")

                history.status = status
                history.error_message = error_message[:5000] if error_message else None
                if documents_processed is not None:
                    history.documents_processed = documents_processed
                if chunks_created is not None:
                    history.chunks_created = chunks_created
                if status.is_terminal:
                    history.completed_at = utcnow()
                session.flush()
                return history
        except StaleDataError as e:
            raise ConcurrentModificationError(f"Sync history {sync_id} was modified concurrently") from e

    def complete_sync(self, sync_id: str, status: SyncStatus, documents_processed: int = 0,
                      chunks_created: int = 0, error_message: Optional[str] = None) -> SyncHistory:
        return self.update_sync_status(
            sync_id, status,
            error_message=error_message,
            documents_processed=documents_processed,
            chunks_created=chunks_created,
        )

    def get_sync_history(self, sync_id: str) -> Optional[SyncHistory]:
        with self.db.session() as session:
            return session.get(SyncHistory, sync_id)

    def get_latest_sync_history(self, version_id: str) -> Optional[SyncHistory]:
        stmt = (
            select(SyncHistory)
            .where(SyncHistory.version_id == version_id)
            .order_by(desc(SyncHistory.started_at))
            .limit(1)
        )
        with self.db.session() as session:
            return session.execute(stmt).scalar_one_or_none()

    def list_sync_history(self, version_id: Optional[str] = None, limit: int = 20) -> List[SyncHistory]:
        stmt = select(SyncHistory).order_by(desc(SyncHistory.started_at)).limit(limit)
        if version_id is not None:
            stmt = stmt.where(SyncHistory.version_id == version_id)
        with self.db.session() as session:
            return list(session.execute(stmt).scalars())

    def fail_stale_runs(self, version_id: Optional[str] = None, message: str = "Interrupted") -> int:
        """Mark RUNNING rows FAILED, e.g. after a restart killed their workers."""
        stmt = (
            update(SyncHistory)
            .where(SyncHistory.status == SyncStatus.RUNNING)
            .values(status=SyncStatus.FAILED, completed_at=utcnow(), error_message=message,
                    version=SyncHistory.version + 1)
        )
        if version_id is not None:
            stmt = stmt.where(SyncHistory.version_id == version_id)
        with self.db.session() as session:
            return session.execute(stmt).rowcount or 0
