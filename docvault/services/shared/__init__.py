"""Shared persistence layer: ORM models, database access and the registry."""

from .catalog import LibraryEntry, VersionEntry, load_catalog, parse_catalog
from .db import Database
from .models import (
    Base,
    CodeExample,
    Document,
    DocumentChunk,
    DocumentType,
    Library,
    LibraryVersion,
    SourceType,
    SyncHistory,
    SyncStatus,
    VersionStatus,
    new_id,
    utcnow,
)
from .registry import DocumentRegistry

__all__ = [
    "Base",
    "CodeExample",
    "Database",
    "Document",
    "DocumentChunk",
    "DocumentRegistry",
    "DocumentType",
    "Library",
    "LibraryEntry",
    "LibraryVersion",
    "SourceType",
    "SyncHistory",
    "SyncStatus",
    "VersionEntry",
    "VersionStatus",
    "load_catalog",
    "new_id",
    "parse_catalog",
    "utcnow",
]
