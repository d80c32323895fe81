"""Shared database models for DocVault."""
import uuid
from datetime import datetime, timezone
from enum import Enum

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    Boolean, Column, Date, DateTime, Enum as SAEnum, ForeignKey, Index, Integer, JSON,
    String, Text, UniqueConstraint, text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")

# pgvector on PostgreSQL; elsewhere a JSON array, with None stored as SQL NULL
VectorType = JSON(none_as_null=True).with_variant(Vector(), "postgresql")


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SourceType(str, Enum):
    """Where a library's documentation comes from."""
    GITHUB = "GITHUB"
    LOCAL = "LOCAL"
    MANUAL = "MANUAL"


class VersionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    DEPRECATED = "DEPRECATED"
    EOL = "EOL"


class SyncStatus(str, Enum):
    """Sync run state. SUCCESS and FAILED are terminal."""
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (SyncStatus.SUCCESS, SyncStatus.FAILED)


class DocumentType(str, Enum):
    MARKDOWN = "markdown"
    HTML = "html"
    ASCIIDOC = "asciidoc"


class Library(Base):
    """A tracked documentation source."""
    __tablename__ = 'libraries'

    id = Column(String(32), primary_key=True, default=new_id)
    name = Column(String(100), nullable=False, unique=True)
    display_name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    source_type = Column(SAEnum(SourceType, native_enum=False, length=16), nullable=False, default=SourceType.GITHUB)
    source_url = Column(String(500), nullable=True)
    category = Column(String(50), nullable=True)
    tags = Column(JSONType, nullable=False, default=list)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    versions = relationship("LibraryVersion", back_populates="library", cascade="all, delete-orphan")

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Library {self.name} ({self.source_type})>"


class LibraryVersion(Base):
    """A released version of a library; owns documents and sync runs."""
    __tablename__ = 'library_versions'

    id = Column(String(32), primary_key=True, default=new_id)
    library_id = Column(String(32), ForeignKey('libraries.id'), nullable=False)
    version = Column(String(50), nullable=False)
    is_latest = Column(Boolean, nullable=False, default=False)
    is_lts = Column(Boolean, nullable=False, default=False)
    status = Column(SAEnum(VersionStatus, native_enum=False, length=16), nullable=False, default=VersionStatus.ACTIVE)
    docs_path = Column(String(500), nullable=True)
    release_date = Column(Date, nullable=True)
    entity_version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    library = relationship("Library", back_populates="versions")

    __table_args__ = (
        UniqueConstraint('library_id', 'version', name='uq_library_versions_library_version'),
        Index('idx_library_versions_library_id', 'library_id'),
    )
    __mapper_args__ = {"version_id_col": entity_version}


class Document(Base):
    """One source file resolved to one library version."""
    __tablename__ = 'documents'

    id = Column(String(32), primary_key=True, default=new_id)
    version_id = Column(String(32), ForeignKey('library_versions.id'), nullable=False)
    title = Column(String(500), nullable=False)
    path = Column(String(1000), nullable=False)
    content = Column(Text, nullable=False)
    content_hash = Column(String(64), nullable=False)
    doc_type = Column(String(20), nullable=False)
    metadata_ = Column("metadata", JSONType, nullable=False, default=dict)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    chunks = relationship("DocumentChunk", back_populates="document", cascade="all, delete-orphan",
                          order_by="DocumentChunk.chunk_index")
    code_examples = relationship("CodeExample", back_populates="document", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint('version_id', 'path', name='uq_documents_version_path'),
        Index('idx_documents_version_id', 'version_id'),
        Index('idx_documents_content_hash', 'content_hash'),
    )
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Document {self.path} v={self.version_id}>"


class DocumentChunk(Base):
    """A slice of a document with its embedding.

    ``embedding`` is either the complete vector or NULL.
    """
    __tablename__ = 'document_chunks'

    id = Column(String(32), primary_key=True, default=new_id)
    document_id = Column(String(32), ForeignKey('documents.id'), nullable=False)
    chunk_index = Column(Integer, nullable=False)
    content = Column(Text, nullable=False)
    embedding = Column(VectorType, nullable=True)
    token_count = Column(Integer, nullable=False, default=0)
    metadata_ = Column("metadata", JSONType, nullable=False, default=dict)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    document = relationship("Document", back_populates="chunks")

    __table_args__ = (
        Index('idx_document_chunks_document_id', 'document_id'),
    )
    __mapper_args__ = {"version_id_col": version}


class CodeExample(Base):
    """A code block extracted from a document."""
    __tablename__ = 'code_examples'

    id = Column(String(32), primary_key=True, default=new_id)
    document_id = Column(String(32), ForeignKey('documents.id'), nullable=False)
    language = Column(String(50), nullable=False, default="text")
    code = Column(Text, nullable=False)
    description = Column(String(1000), nullable=True)
    start_line = Column(Integer, nullable=True)
    end_line = Column(Integer, nullable=True)
    metadata_ = Column("metadata", JSONType, nullable=False, default=dict)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    document = relationship("Document", back_populates="code_examples")

    __table_args__ = (
        Index('idx_code_examples_document_id', 'document_id'),
    )
    __mapper_args__ = {"version_id_col": version}


class SyncHistory(Base):
    """One ingestion run against one library version."""
    __tablename__ = 'sync_history'

    id = Column(String(32), primary_key=True, default=new_id)
    version_id = Column(String(32), ForeignKey('library_versions.id'), nullable=False)
    status = Column(SAEnum(SyncStatus, native_enum=False, length=16), nullable=False, default=SyncStatus.PENDING)
    started_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    documents_processed = Column(Integer, nullable=False, default=0)
    chunks_created = Column(Integer, nullable=False, default=0)
    error_message = Column(String(5000), nullable=True)
    metadata_ = Column("metadata", JSONType, nullable=False, default=dict)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index('idx_sync_history_version_started', 'version_id', 'started_at'),
        # At most one RUNNING row per version
        Index(
            'uq_sync_history_running', 'version_id', unique=True,
            postgresql_where=text("status = 'RUNNING'"),
            sqlite_where=text("status = 'RUNNING'"),
        ),
    )
    __mapper_args__ = {"version_id_col": version}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "version_id": self.version_id,
            "status": self.status.value if self.status else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "documents_processed": self.documents_processed,
            "chunks_created": self.chunks_created,
            "error_message": self.error_message,
        }
