"""HTTP surface for DocVault: search, sync triggers, sync history and metrics."""

import logging
from dataclasses import asdict
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Response
from pydantic import BaseModel, Field

from ..config import AppConfig
from ..errors import (
    DocVaultError,
    FilterExpressionError,
    GitHubAPIError,
    LibraryNotFoundError,
    SyncAlreadyRunningError,
    VersionNotFoundError,
)
from ..indexer.embeddings import SentenceTransformerEmbeddings
from ..indexer.vector_store import VectorStore
from ..observability.metrics import CONTENT_TYPE_LATEST, render_metrics
from ..pipelines.github import ContentFetcher
from ..pipelines.github.models import parse_github_url
from ..services.releases import ReleaseService, ReleaseSyncItem
from ..services.search import SearchMode, SearchService
from ..services.shared.db import Database
from ..services.shared.registry import DocumentRegistry
from ..services.sync import SyncService
from .scheduler import SyncScheduler

logger = logging.getLogger(__name__)


class SearchRequest(BaseModel):
    library_name: str
    query: str
    version: Optional[str] = None
    mode: SearchMode = SearchMode.HYBRID
    limit: int = Field(default=10, ge=1, le=100)


class SearchResultModel(BaseModel):
    document_id: str
    title: str
    path: str
    content: str
    score: float
    chunk_id: Optional[str] = None
    chunk_index: Optional[int] = None


class SyncRequest(BaseModel):
    """GitHub sync trigger. Missing fields come from the version's library."""
    version_id: str
    owner: Optional[str] = None
    repo: Optional[str] = None
    docs_path: Optional[str] = None
    ref: Optional[str] = None


class ReleaseModel(BaseModel):
    tag_name: str
    version: str
    name: Optional[str] = None
    published_at: Optional[str] = None
    exists: bool
    docs_path: str


class ReleasesResponse(BaseModel):
    default_docs_path: str
    releases: List[ReleaseModel]


class ReleaseSyncItemModel(BaseModel):
    tag_name: str
    docs_path: Optional[str] = None


class BatchSyncRequest(BaseModel):
    """Releases to register and sync. Without ``versions`` every untracked release is taken."""
    versions: Optional[List[ReleaseSyncItemModel]] = None
    default_docs_path: Optional[str] = None
    limit: int = Field(default=20, ge=1, le=100)


class StartedSyncModel(BaseModel):
    version_id: str
    version: str
    sync_id: str


class SyncHistoryModel(BaseModel):
    id: str
    version_id: str
    status: str
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    documents_processed: int = 0
    chunks_created: int = 0
    error_message: Optional[str] = None


def create_app(config: Optional[AppConfig] = None, database: Optional[Database] = None,
               embeddings=None, fetcher: Optional[ContentFetcher] = None) -> FastAPI:
    """Build the application and its services.

    ``database``, ``embeddings`` and ``fetcher`` override the instances the
    configuration would create.
    """
    config = config or AppConfig.from_env()
    database = database or Database(config.database)
    database.create_all()

    registry = DocumentRegistry(database)
    if config.sync.recover_interrupted_runs:
        recovered = registry.fail_stale_runs(message="Interrupted by restart")
        if recovered:
            logger.warning(f"Marked {recovered} interrupted sync runs as failed")
    embeddings = embeddings or SentenceTransformerEmbeddings.from_config(config.embedding)
    vector_store = VectorStore(database, embeddings)
    sync_service = SyncService.from_config(config, registry, vector_store, fetcher=fetcher)
    search_service = SearchService(registry, vector_store, config.search)
    release_service = ReleaseService(registry, sync_service, sync_service.fetcher.client, config.sync)
    scheduler = SyncScheduler(sync_service, registry, config.sync)

    app = FastAPI(title="DocVault API", version="0.1.0")
    app.state.config = config
    app.state.database = database
    app.state.registry = registry
    app.state.sync_service = sync_service
    app.state.search_service = search_service
    app.state.release_service = release_service
    app.state.scheduler = scheduler

    @app.on_event("startup")
    def start_scheduler():
        scheduler.start()

    @app.on_event("shutdown")
    def shutdown():
        scheduler.shutdown()
        sync_service.shutdown(wait=False, cancel_running=True)
        database.dispose()

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.get("/metrics")
    def metrics():
        return Response(content=render_metrics(), media_type=CONTENT_TYPE_LATEST)

    @app.post("/search", response_model=List[SearchResultModel])
    def search(request: SearchRequest):
        try:
            results = search_service.search(
                request.library_name, request.version, request.query, request.mode, request.limit
            )
        except (LibraryNotFoundError, VersionNotFoundError) as e:
            raise HTTPException(status_code=404, detail=str(e))
        except FilterExpressionError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except DocVaultError as e:
            logger.error(f"Search failed: {e}")
            raise HTTPException(status_code=500, detail="Search failed")
        return [item.to_dict() for item in results]

    @app.post("/sync", response_model=SyncHistoryModel, status_code=202)
    def trigger_sync(request: SyncRequest):
        try:
            version = registry.get_version(request.version_id)
            library = registry.get_library(version.library_id)
        except (LibraryNotFoundError, VersionNotFoundError) as e:
            raise HTTPException(status_code=404, detail=str(e))

        owner, repo = request.owner, request.repo
        if not owner or not repo:
            coordinates = parse_github_url(library.source_url)
            if coordinates is None:
                raise HTTPException(status_code=400, detail=f"Library {library.name} has no GitHub source URL")
            owner, repo = coordinates

        docs_path = request.docs_path or version.docs_path or config.sync.default_docs_path
        ref = request.ref or version.version
        try:
            future = sync_service.sync_from_github(version.id, owner, repo, docs_path, ref)
        except SyncAlreadyRunningError as e:
            raise HTTPException(status_code=409, detail=str(e))

        history = registry.get_sync_history(future.sync_id)
        return history.to_dict()

    @app.get("/sync/{sync_id}", response_model=SyncHistoryModel)
    def get_sync(sync_id: str):
        history = sync_service.get_sync_status(sync_id)
        if history is None:
            raise HTTPException(status_code=404, detail=f"Sync not found: {sync_id}")
        return history.to_dict()

    @app.post("/sync/{sync_id}/cancel")
    def cancel_sync(sync_id: str):
        if not sync_service.cancel_sync(sync_id):
            raise HTTPException(status_code=404, detail=f"No active sync: {sync_id}")
        return {"sync_id": sync_id, "cancelled": True}

    @app.get("/versions/{version_id}/sync-history", response_model=List[SyncHistoryModel])
    def version_sync_history(version_id: str, limit: int = 20):
        try:
            registry.get_version(version_id)
        except VersionNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return [h.to_dict() for h in sync_service.get_sync_history(version_id, limit)]

    @app.get("/libraries/{library_name}/github-releases", response_model=ReleasesResponse)
    def github_releases(library_name: str, limit: int = 20):
        try:
            default_docs_path, releases = release_service.list_releases(library_name, limit)
        except LibraryNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except GitHubAPIError as e:
            raise HTTPException(status_code=502, detail=str(e))
        except DocVaultError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {"default_docs_path": default_docs_path, "releases": [asdict(r) for r in releases]}

    @app.post("/libraries/{library_name}/batch-sync", response_model=List[StartedSyncModel], status_code=202)
    def batch_sync(library_name: str, request: BatchSyncRequest):
        items = None
        if request.versions is not None:
            items = [ReleaseSyncItem(v.tag_name, v.docs_path) for v in request.versions]
        try:
            started = release_service.sync_releases(library_name, items, request.default_docs_path, request.limit)
        except LibraryNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except GitHubAPIError as e:
            raise HTTPException(status_code=502, detail=str(e))
        except DocVaultError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return [s.to_dict() for s in started]

    return app
