"""Tests for the document registry."""

import threading
from unittest.mock import patch

import pytest

from docvault.errors import (
    ConcurrentModificationError,
    LibraryNotFoundError,
    SyncAlreadyRunningError,
    SyncError,
    VersionNotFoundError,
)
from docvault.config import DatabaseConfig
from docvault.services.shared.db import Database
from docvault.services.shared.models import CodeExample, Document, DocumentChunk, SourceType, SyncStatus, new_id
from docvault.services.shared.registry import DocumentRegistry


def make_document(version_id, path="docs/guide.md", title="Guide", content="content", content_hash="h"):
    return Document(
        id=new_id(), version_id=version_id, title=title, path=path, content=content,
        content_hash=content_hash, doc_type="markdown", metadata_={},
    )


class TestLibrariesAndVersions:
    """Library and version lookup."""

    def test_find_library_by_name(self, registry, library):
        """Test lookup by unique name."""
        assert registry.find_library_by_name("spring-boot").id == library.id
        assert registry.find_library_by_name("missing") is None

    def test_get_library_missing(self, registry):
        """Test that an unknown id raises."""
        with pytest.raises(LibraryNotFoundError):
            registry.get_library("nope")

    def test_add_version_to_unknown_library(self, registry):
        """Test that a version needs an existing library."""
        with pytest.raises(LibraryNotFoundError):
            registry.add_version("nope", "1.0")

    def test_latest_flag_moves(self, registry, library, version):
        """Test that a new latest version clears the previous one."""
        newer = registry.add_version(library.id, "v3.3.0", is_latest=True)

        assert registry.get_version(newer.id).is_latest is True
        assert registry.get_version(version.id).is_latest is False

    def test_resolve_version_id(self, registry, library, version):
        """Test explicit, latest and unknown versions."""
        older = registry.add_version(library.id, "v3.1.0")

        assert registry.resolve_version_id(library.id, "v3.1.0") == older.id
        assert registry.resolve_version_id(library.id) == version.id
        assert registry.resolve_version_id(library.id, "latest") == version.id
        with pytest.raises(VersionNotFoundError):
            registry.resolve_version_id(library.id, "v9")


class TestDocuments:
    """Document storage."""

    def test_replace_document_removes_previous(self, registry, version, database):
        """Test that replacing removes the old row, chunks and examples."""
        old = registry.save_document(make_document(version.id, content_hash="old"))
        with database.session() as session:
            session.add(DocumentChunk(id="chunk-1", document_id=old.id, chunk_index=0, content="c",
                                      embedding=[1.0], metadata_={}))
        registry.save_code_examples([CodeExample(id=new_id(), document_id=old.id, language="java", code="x")])

        new = make_document(version.id, content_hash="new")
        registry.replace_document(new, [CodeExample(id=new_id(), language="yaml", code="a: 1")], previous_id=old.id)

        assert registry.find_document(version.id, "docs/guide.md").id == new.id
        assert registry.count_chunks(old.id) == 0
        assert registry.find_code_examples(old.id) == []
        assert [e.language for e in registry.find_code_examples(new.id)] == ["yaml"]

    def test_mark_document_stale(self, registry, version):
        """Test that the hash is cleared."""
        doc = registry.save_document(make_document(version.id))
        registry.mark_document_stale(doc.id)
        assert registry.get_document(doc.id).content_hash == ""

    def test_get_documents_skips_missing(self, registry, version):
        """Test bulk lookup."""
        doc = registry.save_document(make_document(version.id))
        assert list(registry.get_documents([doc.id, "missing", doc.id])) == [doc.id]
        assert registry.get_documents([]) == {}


class TestFullTextSearch:
    """Term-matching search on SQLite."""

    def test_ranking(self, registry, version):
        """Test that more matched terms and title hits rank first."""
        best = registry.save_document(make_document(version.id, "a.md", "Security", "Configure security filters"))
        other = registry.save_document(make_document(version.id, "b.md", "Web", "Web apps need security"))
        registry.save_document(make_document(version.id, "c.md", "Data", "Repositories and queries"))

        results = registry.full_text_search(version.id, "security filters", 10)

        assert [d.id for d in results] == [best.id, other.id]

    def test_limit_and_version_scope(self, registry, library, version):
        """Test the limit and that other versions are ignored."""
        other_version = registry.add_version(library.id, "v2")
        registry.save_document(make_document(version.id, "a.md", content="actuator endpoints"))
        registry.save_document(make_document(version.id, "b.md", content="actuator health"))
        registry.save_document(make_document(other_version.id, "a.md", content="actuator"))

        assert len(registry.full_text_search(version.id, "actuator", 1)) == 1
        assert len(registry.full_text_search(other_version.id, "actuator", 10)) == 1

    def test_blank_query(self, registry, version):
        """Test that a blank query finds nothing."""
        registry.save_document(make_document(version.id))
        assert registry.full_text_search(version.id, "   ", 10) == []


class TestSyncHistory:
    """The single-RUNNING guard and status transitions."""

    def test_start_sync(self, registry, version):
        """Test that a started run is RUNNING."""
        history = registry.start_sync(version.id)
        assert history.status == SyncStatus.RUNNING
        assert registry.has_running_sync_task(version.id)

    def test_second_start_rejected(self, registry, version):
        """Test the guard and that it lifts once the run finishes."""
        first = registry.start_sync(version.id)
        with pytest.raises(SyncAlreadyRunningError):
            registry.start_sync(version.id)

        registry.complete_sync(first.id, SyncStatus.SUCCESS, documents_processed=2, chunks_created=5)
        second = registry.start_sync(version.id)

        assert second.id != first.id
        finished = registry.get_sync_history(first.id)
        assert finished.documents_processed == 2
        assert finished.completed_at is not None

    def test_unique_index_catches_race(self, registry, version):
        """Test the database guard when the in-process check is bypassed."""
        registry.start_sync(version.id)

        with patch.object(registry, "has_running_sync_task", return_value=False):
            with pytest.raises(SyncAlreadyRunningError):
                registry.start_sync(version.id)

        statuses = sorted(h.status.value for h in registry.list_sync_history(version.id))
        assert statuses == ["FAILED", "RUNNING"]

    def test_expected_version_mismatch(self, registry, version):
        """Test the optimistic-lock check."""
        history = registry.create_sync_history(version.id)
        with pytest.raises(ConcurrentModificationError):
            registry.update_sync_status(history.id, SyncStatus.RUNNING, expected_version=history.version + 1)

    def test_terminal_rows_are_final(self, registry, version):
        """Test that a finished run cannot change."""
        history = registry.start_sync(version.id)
        registry.complete_sync(history.id, SyncStatus.FAILED, error_message="boom")
        with pytest.raises(SyncError):
            registry.update_sync_status(history.id, SyncStatus.SUCCESS)

    def test_error_message_truncated(self, registry, version):
        """Test the error message cap."""
        history = registry.start_sync(version.id)
        registry.complete_sync(history.id, SyncStatus.FAILED, error_message="x" * 6000)
        assert len(registry.get_sync_history(history.id).error_message) == 5000

    def test_unknown_sync(self, registry):
        """Test updating a missing row."""
        with pytest.raises(SyncError):
            registry.update_sync_status("missing", SyncStatus.FAILED)

    def test_fail_stale_runs(self, registry, version):
        """Test recovery of runs left RUNNING."""
        history = registry.start_sync(version.id)

        assert registry.fail_stale_runs(message="Interrupted by restart") == 1

        stale = registry.get_sync_history(history.id)
        assert stale.status == SyncStatus.FAILED
        assert stale.error_message == "Interrupted by restart"
        assert not registry.has_running_sync_task(version.id)

    def test_concurrent_start_single_running(self, registry, version):
        """Test that racing callers on one registry start exactly one run."""
        barrier = threading.Barrier(8)
        started, rejected = [], []

        def start():
            barrier.wait()
            try:
                started.append(registry.start_sync(version.id))
            except SyncAlreadyRunningError:
                rejected.append(version.id)

        threads = [threading.Thread(target=start) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(10)

        assert len(started) == 1
        assert len(rejected) == 7
        running = [h for h in registry.list_sync_history(version.id) if h.status == SyncStatus.RUNNING]
        assert [h.id for h in running] == [started[0].id]

    def test_concurrent_start_across_registries(self, tmp_path):
        """Test two registries on one database file racing for the same version."""
        url = f"sqlite:///{tmp_path / 'docvault.db'}"
        databases = [Database(DatabaseConfig(url=url)) for _ in range(2)]
        databases[0].create_all()
        registries = [DocumentRegistry(db) for db in databases]
        library = registries[0].create_library("spring-boot", "Spring Boot", SourceType.GITHUB)
        version = registries[0].add_version(library.id, "v3.2.0")

        barrier = threading.Barrier(2)
        outcomes = []

        def start(registry):
            barrier.wait()
            try:
                registry.start_sync(version.id)
                outcomes.append("started")
            except SyncAlreadyRunningError:
                outcomes.append("rejected")

        try:
            threads = [threading.Thread(target=start, args=(r,)) for r in registries]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join(10)

            assert sorted(outcomes) == ["rejected", "started"]
            statuses = [h.status for h in registries[1].list_sync_history(version.id)]
            assert statuses.count(SyncStatus.RUNNING) == 1
        finally:
            for db in databases:
                db.dispose()
