"""Sync orchestration for DocVault.

Drives ingestion of one library version from GitHub or a local directory:
fetch the file list, skip unchanged files by content hash, parse, chunk,
embed and store. Each run executes on a worker thread and is recorded in
``sync_history`` as PENDING, RUNNING, then SUCCESS or FAILED.
"""

import hashlib
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from ..config import AppConfig
from ..errors import EmbeddingError, SyncCancelledError, SyncError
from ..indexer.vector_store import (
    META_CHUNK_INDEX,
    META_DOCUMENT_ID,
    META_DOCUMENT_PATH,
    META_DOCUMENT_TITLE,
    META_TOKEN_COUNT,
    META_VERSION_ID,
    ChunkRecord,
    VectorStore,
)
from ..observability.logging import ContextLogger, get_context_logger
from ..observability.metrics import chunks_created, documents_processed, sync_runs
from ..pipelines.chunker import DocumentChunker
from ..pipelines.github import ContentFetcher
from ..pipelines.local_files import LocalFileClient
from ..pipelines.parsers import ParserRegistry, file_stem
from .shared.models import CodeExample, Document, SyncHistory, SyncStatus, new_id
from .shared.registry import DocumentRegistry

logger = logging.getLogger(__name__)


def content_hash(content: str) -> str:
    """SHA-256 hex digest of the UTF-8 encoded content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


@dataclass
class SyncProgress:
    """Counters for a run in flight."""
    documents_processed: int = 0
    chunks_created: int = 0


@dataclass
class _RunHandle:
    history: SyncHistory
    cancel_event: threading.Event
    future: Optional[Future] = None


class SyncService:
    """Runs sync jobs on a bounded worker pool.

    ``sync_from_github`` and ``sync_from_local`` check the per-version guard
    and record the run as RUNNING before returning, then hand the work to a
    worker thread. The returned future resolves to the final
    ``SyncHistory``.
    """

    def __init__(self, registry: DocumentRegistry, vector_store: VectorStore,
                 fetcher: Optional[ContentFetcher] = None,
                 chunker: Optional[DocumentChunker] = None,
                 parsers: Optional[ParserRegistry] = None,
                 local_client: Optional[LocalFileClient] = None,
                 max_workers: int = 4):
        self.registry = registry
        self.vector_store = vector_store
        self.fetcher = fetcher
        self.chunker = chunker or DocumentChunker()
        self.parsers = parsers or ParserRegistry()
        self.local_client = local_client or LocalFileClient()
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="docvault-sync")
        self._runs: Dict[str, _RunHandle] = {}
        self._runs_lock = threading.Lock()

    @classmethod
    def from_config(cls, config: AppConfig, registry: DocumentRegistry, vector_store: VectorStore,
                    fetcher: Optional[ContentFetcher] = None) -> 'SyncService':
        return cls(
            registry,
            vector_store,
            fetcher=fetcher or ContentFetcher.from_config(config.github),
            chunker=DocumentChunker(config.chunking.chunk_size, config.chunking.chunk_overlap),
            max_workers=config.sync.max_workers,
        )

    # Entry points

    def sync_from_github(self, version_id: str, owner: str, repo: str, docs_path: str, ref: str) -> Future:
        """Start a GitHub sync.

        Raises:
            SyncAlreadyRunningError: If the version already has a RUNNING sync
        """
        if self.fetcher is None:
            raise SyncError("GitHub sync requires a content fetcher")
        logger.info(f"Starting GitHub sync for version: {version_id} from {owner}/{repo} "
                    f"path={docs_path} ref={ref}")
        history = self.registry.start_sync(version_id)
        return self._submit(history, "github", self._run_github, owner, repo, docs_path, ref)

    def sync_from_local(self, version_id: str, local_path: Union[str, Path], pattern: str = "**/*") -> Future:
        """Start a sync from a local directory.

        Raises:
            SyncAlreadyRunningError: If the version already has a RUNNING sync
        """
        logger.info(f"Starting local sync for version: {version_id} from path={local_path} pattern={pattern}")
        history = self.registry.start_sync(version_id)
        return self._submit(history, "local", self._run_local, Path(local_path), pattern)

    def cancel_sync(self, sync_id: str) -> bool:
        """Ask a run to stop. Returns False if the run is unknown or finished.

        A queued run is cancelled outright; a running one stops at its next
        file boundary or rate-limit sleep.
        """
        with self._runs_lock:
            handle = self._runs.get(sync_id)
        if handle is None:
            return False
        handle.cancel_event.set()
        if handle.future is not None:
            handle.future.cancel()
        logger.info(f"Cancellation requested for sync {sync_id}")
        return True

    def shutdown(self, wait: bool = True, cancel_running: bool = False) -> None:
        """Stop the worker pool. Queued runs are cancelled and marked FAILED."""
        if cancel_running:
            with self._runs_lock:
                handles = list(self._runs.values())
            for handle in handles:
                handle.cancel_event.set()
        self.executor.shutdown(wait=wait, cancel_futures=True)
        logger.info("Sync service stopped")

    # Queries

    def get_sync_status(self, sync_id: str) -> Optional[SyncHistory]:
        return self.registry.get_sync_history(sync_id)

    def get_latest_sync_history(self, version_id: str) -> Optional[SyncHistory]:
        return self.registry.get_latest_sync_history(version_id)

    def get_sync_history(self, version_id: Optional[str] = None, limit: int = 20) -> List[SyncHistory]:
        return self.registry.list_sync_history(version_id, limit)

    def is_active(self, sync_id: str) -> bool:
        with self._runs_lock:
            return sync_id in self._runs

    # Execution

    def _submit(self, history: SyncHistory, source: str, runner: Callable, *args) -> Future:
        handle = _RunHandle(history, threading.Event())
        with self._runs_lock:
            self._runs[history.id] = handle

        try:
            future = self.executor.submit(self._execute, handle, source, runner, *args)
        except RuntimeError as e:
            # Pool already shut down
            self._forget(history.id)
            self._finish(history, SyncStatus.FAILED, SyncProgress(), str(e))
            sync_runs.labels(source=source, status="failed").inc()
            raise SyncError(f"Sync {history.id} could not be scheduled: {e}") from e

        handle.future = future
        future.sync_id = history.id
        future.add_done_callback(lambda f: self._on_done(handle, source, f))
        return future

    def _on_done(self, handle: _RunHandle, source: str, future: Future) -> None:
        if future.cancelled():
            logger.info(f"Sync {handle.history.id} cancelled before it started")
            self._finish(handle.history, SyncStatus.FAILED, SyncProgress(), str(SyncCancelledError()))
            sync_runs.labels(source=source, status="failed").inc()
        self._forget(handle.history.id)

    def _forget(self, sync_id: str) -> None:
        with self._runs_lock:
            self._runs.pop(sync_id, None)

    def _execute(self, handle: _RunHandle, source: str, runner: Callable, *args) -> SyncHistory:
        history = handle.history
        log = get_context_logger(__name__, sync_id=history.id, version_id=history.version_id, source=source)
        progress = SyncProgress()

        try:
            self._check_cancelled(handle.cancel_event)
            strategy = runner(history.version_id, handle.cancel_event, progress, log, *args)
        except Exception as e:
            log.exception(f"Sync failed for version: {history.version_id}: {e}")
            sync_runs.labels(source=source, status="failed").inc()
            return self._finish(history, SyncStatus.FAILED, progress, str(e) or type(e).__name__)

        log.info(f"Sync completed for version: {history.version_id}. Processed "
                 f"{progress.documents_processed} documents, created {progress.chunks_created} chunks"
                 + (f" (strategy: {strategy})" if strategy else ""))
        sync_runs.labels(source=source, status="success").inc()
        return self._finish(history, SyncStatus.SUCCESS, progress)

    def _finish(self, history: SyncHistory, status: SyncStatus, progress: SyncProgress,
                error_message: Optional[str] = None) -> SyncHistory:
        try:
            return self.registry.complete_sync(
                history.id, status,
                documents_processed=progress.documents_processed,
                chunks_created=progress.chunks_created,
                error_message=error_message,
            )
        except SyncError as e:
            # Already terminal, e.g. marked FAILED by fail_stale_runs
            logger.warning(f"Could not record {status.value} for sync {history.id}: {e}")
            return self.registry.get_sync_history(history.id) or history

    def _run_github(self, version_id: str, cancel_event: threading.Event, progress: SyncProgress,
                    log: ContextLogger, owner: str, repo: str, docs_path: str, ref: str) -> str:
        result = self.fetcher.fetch(owner, repo, docs_path, ref, cancel_event=cancel_event)
        log.info(f"Found {len(result.files)} files to sync using strategy: {result.strategy_used}")

        for file in result.files:
            self._check_cancelled(cancel_event)
            if not file.is_file or not self.parsers.supports(file.path):
                continue
            try:
                content = self.fetcher.get_file_content(result, owner, repo, file.path, ref)
                self._record(progress, self.process_file(version_id, file.path, content))
            except (SyncCancelledError, EmbeddingError):
                raise
            except Exception as e:
                log.exception(f"Failed to process file: {file.path}: {e}", path=file.path)

        return result.strategy_used

    def _run_local(self, version_id: str, cancel_event: threading.Event, progress: SyncProgress,
                   log: ContextLogger, local_path: Path, pattern: str) -> Optional[str]:
        files = self.local_client.read_directory(local_path, pattern)
        log.info(f"Found {len(files)} files to sync from local")

        for file in files:
            self._check_cancelled(cancel_event)
            if not self.parsers.supports(file.path):
                continue
            try:
                self._record(progress, self.process_file(version_id, file.path, file.content))
            except (SyncCancelledError, EmbeddingError):
                raise
            except Exception as e:
                log.exception(f"Failed to process local file: {file.path}: {e}", path=file.path)

        return None

    @staticmethod
    def _check_cancelled(cancel_event: threading.Event) -> None:
        if cancel_event.is_set():
            raise SyncCancelledError()

    @staticmethod
    def _record(progress: SyncProgress, chunk_count: Optional[int]) -> None:
        if chunk_count is None:
            return
        progress.documents_processed += 1
        progress.chunks_created += chunk_count
        documents_processed.inc()
        chunks_created.inc(chunk_count)

    def process_file(self, version_id: str, path: str, content: str) -> Optional[int]:
        """Ingest one file.

        Returns the number of chunks created, or None when the file was
        skipped (unchanged content or no parser).
        """
        digest = content_hash(content)
        existing = self.registry.find_document(version_id, path)
        if existing is not None and existing.content_hash == digest:
            logger.debug(f"Skipping unchanged file: {path}")
            return None

        parser = self.parsers.find(path)
        if parser is None:
            logger.warning(f"No parser found for file: {path}")
            return None

        parsed = parser.parse(content, path)
        title = parsed.title or file_stem(path)
        document = Document(
            id=new_id(),
            version_id=version_id,
            title=title[:500],
            path=path,
            content=parsed.content,
            content_hash=digest,
            doc_type=parser.doc_type,
            metadata_=dict(parsed.metadata),
        )
        examples = [
            CodeExample(
                id=new_id(),
                language=block.language or "text",
                code=block.code,
                description=(block.description or None),
                start_line=block.start_line or None,
                end_line=block.end_line or None,
                metadata_={},
            )
            for block in parsed.code_blocks
        ]
        self.registry.replace_document(document, examples, previous_id=existing.id if existing else None)

        chunks = self.chunker.chunk(parsed.content)
        records = [
            ChunkRecord(
                id=new_id(),
                document_id=document.id,
                chunk_index=chunk.index,
                content=chunk.content,
                token_count=chunk.token_count,
                metadata={
                    META_VERSION_ID: version_id,
                    META_DOCUMENT_ID: document.id,
                    META_CHUNK_INDEX: chunk.index,
                    META_TOKEN_COUNT: chunk.token_count,
                    META_DOCUMENT_TITLE: title,
                    META_DOCUMENT_PATH: path,
                },
            )
            for chunk in chunks
        ]
        try:
            self.vector_store.add(records)
        except Exception:
            # Forces the next run to re-ingest this file
            self.registry.mark_document_stale(document.id)
            raise

        return len(chunks)
