"""Nightly documentation sync."""

import logging
from concurrent.futures import Future
from typing import List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from ..config import SyncConfig
from ..pipelines.github.models import parse_github_url
from ..services.shared.models import Library, SourceType
from ..services.shared.registry import DocumentRegistry
from ..services.sync import SyncService

logger = logging.getLogger(__name__)

JOB_ID = "docvault-scheduled-sync"


class SyncScheduler:
    """Triggers a GitHub sync of every tracked version on a cron schedule."""

    def __init__(self, sync_service: SyncService, registry: DocumentRegistry,
                 config: Optional[SyncConfig] = None):
        self.sync_service = sync_service
        self.registry = registry
        self.config = config or SyncConfig()
        self.scheduler: Optional[BackgroundScheduler] = None

    def start(self) -> bool:
        """Start the cron job. Returns False when scheduling is disabled."""
        if not self.config.schedule_enabled:
            logger.info("Sync scheduling is disabled")
            return False

        # Five-field crontab: minute hour day month day_of_week
        cron_parts = self.config.schedule_cron.split()
        if len(cron_parts) != 5:
            raise ValueError("Cron expression must have 5 parts: minute hour day month day_of_week")

        self.scheduler = BackgroundScheduler(job_defaults={"coalesce": True, "max_instances": 1})
        self.scheduler.add_job(
            self.scheduled_sync,
            CronTrigger.from_crontab(self.config.schedule_cron),
            id=JOB_ID,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info(f"Scheduled sync with cron: {self.config.schedule_cron}")
        return True

    def shutdown(self) -> None:
        if self.scheduler is not None:
            self.scheduler.shutdown(wait=False)
            self.scheduler = None
            logger.info("Sync scheduler stopped")

    def scheduled_sync(self) -> List[Future]:
        """Start a sync for every version of every GitHub library."""
        logger.info("Starting scheduled sync for all libraries")
        started = []
        try:
            for library in self.registry.list_libraries():
                if library.source_type != SourceType.GITHUB:
                    logger.debug(f"Skipping non-GitHub library: {library.name}")
                    continue
                started.extend(self.sync_library(library))
            logger.info(f"Scheduled sync started {len(started)} runs")
        except Exception as e:
            logger.exception(f"Scheduled sync failed: {e}")
        return started

    def sync_library(self, library: Library) -> List[Future]:
        coordinates = parse_github_url(library.source_url)
        if coordinates is None:
            if not library.source_url:
                logger.warning(f"Library {library.name} has no source URL, skipping")
            else:
                logger.warning(f"Invalid GitHub URL for library {library.name}: {library.source_url}")
            return []

        owner, repo = coordinates
        futures = []
        for version in self.registry.list_versions(library.id):
            try:
                logger.info(f"Syncing library: {library.name} version: {version.version}")
                docs_path = version.docs_path or self.config.default_docs_path
                futures.append(self.sync_service.sync_from_github(version.id, owner, repo, docs_path, version.version))
            except Exception as e:
                logger.error(f"Failed to sync library {library.name} version {version.version}: {e}")
        return futures
