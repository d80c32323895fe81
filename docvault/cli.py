"""Command line entry point for DocVault.

    docvault load-catalog catalog.yaml
    docvault sync-local --library spring-boot --version 3.2.0 ./docs --pattern "**/*.md"
    docvault sync-github --library spring-boot --version v3.2.0
    docvault sync-releases --library spring-boot --limit 5
    docvault search --library spring-boot --mode hybrid "configure datasource"
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from .config import AppConfig
from .errors import DocVaultError
from .indexer.embeddings import SentenceTransformerEmbeddings
from .indexer.vector_store import VectorStore
from .observability.logging import setup_logging
from .pipelines.github.models import parse_github_url
from .services.releases import ReleaseService, ReleaseSyncItem
from .services.search import SearchMode, SearchService
from .services.shared.catalog import load_catalog
from .services.shared.db import Database
from .services.shared.registry import DocumentRegistry
from .services.sync import SyncService

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="docvault", description="Documentation ingestion and search")
    parser.add_argument("--config", help="YAML configuration file (defaults to environment variables)")
    commands = parser.add_subparsers(dest="command", required=True)

    catalog = commands.add_parser("load-catalog", help="Create libraries and versions from a catalog file")
    catalog.add_argument("path")

    local = commands.add_parser("sync-local", help="Ingest a local directory into a version")
    local.add_argument("--library", required=True)
    local.add_argument("--version", help="Library version (default: latest)")
    local.add_argument("--pattern", default="**/*", help="Glob relative to the directory")
    local.add_argument("path")

    github = commands.add_parser("sync-github", help="Ingest a version from its GitHub repository")
    github.add_argument("--library", required=True)
    github.add_argument("--version", help="Library version (default: latest)")
    github.add_argument("--docs-path", help="Repository folder holding the docs")
    github.add_argument("--ref", help="Git ref (default: the version string)")

    releases = commands.add_parser("sync-releases", help="Register GitHub releases as versions and sync them")
    releases.add_argument("--library", required=True)
    releases.add_argument("--tag", action="append", help="Release tag to sync (repeatable; default: all untracked)")
    releases.add_argument("--docs-path", help="Docs folder overriding the configured paths")
    releases.add_argument("--limit", type=int, default=20, help="Releases to consider when no tag is given")
    releases.add_argument("--latest", action="store_true", help="Only the latest published release")

    search = commands.add_parser("search", help="Search a library version")
    search.add_argument("--library", required=True)
    search.add_argument("--version")
    search.add_argument("--mode", choices=[m.value for m in SearchMode], default=SearchMode.HYBRID.value)
    search.add_argument("--limit", type=int, default=None)
    search.add_argument("query")
    return parser


def _resolve_version(registry: DocumentRegistry, library_name: str, version: Optional[str]):
    library = registry.find_library_by_name(library_name)
    if library is None:
        raise DocVaultError(f"Library not found: {library_name}")
    return library, registry.get_version(registry.resolve_version_id(library.id, version))


def _sync_releases(args, sync_service: SyncService, registry: DocumentRegistry, config: AppConfig) -> int:
    releases = ReleaseService(registry, sync_service, sync_service.fetcher.client, config.sync)
    items = [ReleaseSyncItem(tag) for tag in args.tag] if args.tag else None
    if args.latest:
        started = releases.sync_latest_release(args.library, args.docs_path)
    else:
        started = releases.sync_releases(args.library, items, args.docs_path, args.limit)

    results = []
    for item in started:
        history = item.future.result()
        results.append({**item.to_dict(), "status": history.status.value,
                        "documents_processed": history.documents_processed})
    print(json.dumps(results, indent=2))
    return 0 if all(r["status"] == "SUCCESS" for r in results) else 1


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = AppConfig.from_yaml(args.config) if args.config else AppConfig.from_env()
    setup_logging(config.logging.level, log_file=config.logging.log_file, use_json=config.logging.use_json)

    database = Database(config.database)
    database.create_all()
    registry = DocumentRegistry(database)
    if config.sync.recover_interrupted_runs:
        recovered = registry.fail_stale_runs(message="Interrupted by restart")
        if recovered:
            logger.warning(f"Marked {recovered} interrupted sync runs as failed")

    try:
        if args.command == "load-catalog":
            created = load_catalog(args.path, registry)
            print(json.dumps(created))
            return 0

        vector_store = VectorStore(database, SentenceTransformerEmbeddings.from_config(config.embedding))

        if args.command == "search":
            service = SearchService(registry, vector_store, config.search)
            results = service.search(args.library, args.version, args.query, SearchMode(args.mode), args.limit)
            print(json.dumps([r.to_dict() for r in results], indent=2, ensure_ascii=False))
            return 0

        if args.command == "sync-releases":
            sync_service = SyncService.from_config(config, registry, vector_store)
            try:
                return _sync_releases(args, sync_service, registry, config)
            finally:
                sync_service.shutdown()

        library, version = _resolve_version(registry, args.library, args.version)
        sync_service = SyncService.from_config(config, registry, vector_store)
        try:
            if args.command == "sync-local":
                future = sync_service.sync_from_local(version.id, args.path, args.pattern)
            else:
                coordinates = parse_github_url(library.source_url)
                if coordinates is None:
                    raise DocVaultError(f"Library {library.name} has no GitHub source URL")
                owner, repo = coordinates
                docs_path = args.docs_path or version.docs_path or config.sync.default_docs_path
                future = sync_service.sync_from_github(version.id, owner, repo, docs_path,
                                                       args.ref or version.version)
            history = future.result()
        finally:
            sync_service.shutdown()

        print(json.dumps(history.to_dict(), indent=2))
        return 0 if history.status.value == "SUCCESS" else 1
    except DocVaultError as e:
        logger.error(str(e))
        return 2
    finally:
        database.dispose()


if __name__ == "__main__":
    sys.exit(main())
