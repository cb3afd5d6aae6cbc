"""
Archive Orchestrator

Owns the run context: opens and migrates the store, builds the shared
transport, scheduler, API client and media capability, resolves targets
into jobs and runs them through a bounded pool of tasks.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from reddit_archiver.api.auth import OAuthSession, load_credentials
from reddit_archiver.api.client import RedditAPI
from reddit_archiver.core.base import (
    BaseComponent,
    JobResult,
    TargetStatus,
    TraversalJob
)
from reddit_archiver.core.config import ArchiverConfig
from reddit_archiver.core.crawl_engine import CrawlEngine
from reddit_archiver.core.scheduler import Scheduler
from reddit_archiver.core.targets import TargetResolver
from reddit_archiver.core.transport import Transport
from reddit_archiver.processors.media import MediaCapability, MediaDownloader
from reddit_archiver.storage.store import Store, open_store


@dataclass
class RunReport:
    """Outcome of one archiver run"""
    results: List[JobResult] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    stats: Dict[str, Any] = field(default_factory=dict)

    def status_of(self, target: str) -> Optional[TargetStatus]:
        for result in self.results:
            if result.target == target:
                return result.status
        return None

    @property
    def success(self) -> bool:
        return all(r.status != TargetStatus.SKIPPED for r in self.results)

    def to_summary(self) -> Dict[str, Any]:
        """Stats dict for LoggingManager.generate_summary_report()"""
        duration = None
        if self.start_time and self.end_time:
            duration = self.end_time - self.start_time
        return dict(
            self.stats,
            start_time=self.start_time,
            end_time=self.end_time,
            duration=duration,
            warnings=self.warnings,
            targets=[
                {
                    'target': r.target,
                    'status': r.status.value,
                    'items_written': r.items_written,
                    'items_skipped': r.items_skipped,
                    'error': r.error_message
                }
                for r in self.results
            ]
        )


class ArchiveOrchestrator(BaseComponent):
    """
    Coordinates one archiver run

    Components can be injected (tests pass fakes); anything not supplied
    is built from the configuration in initialize().
    """

    def __init__(self, config: ArchiverConfig, store: Optional[Store] = None,
                 transport: Optional[Transport] = None, scheduler: Optional[Scheduler] = None,
                 api: Optional[RedditAPI] = None, capability: Optional[MediaCapability] = None):
        super().__init__(config)
        self.logger = logging.getLogger(__name__)
        self.store = store
        self.transport = transport
        self.scheduler = scheduler
        self.api = api
        self.capability = capability
        self.engine: Optional[CrawlEngine] = None
        self._owns_store = store is None
        self._owns_transport = transport is None

    async def initialize(self) -> None:
        """
        Open the store and build the shared components

        StoreUnavailableError and MigrationFailedError propagate: nothing
        is traversed against a store that is not at the current schema.
        """
        self.logger.info("Initializing archive orchestrator")

        if self.store is None:
            self.store = await open_store(self.config.db_path)
            self.logger.info(f"Store ready at {self.config.db_path} "
                             f"(schema {await self.store.get_schema_version()})")

        if self.transport is None:
            self.transport = Transport(self.config.request)
            await self.transport.initialize()

        if self.scheduler is None:
            self.scheduler = Scheduler(self.config.request)

        if self.api is None:
            oauth = None
            if self.config.auth_file:
                oauth = OAuthSession(load_credentials(self.config.auth_file), self.transport)
            self.api = RedditAPI(self.transport, self.scheduler, oauth)

        if self.capability is None:
            self.capability = MediaCapability(self.config.ffmpeg_path)

        media = None
        if self.config.download.download_media:
            media = MediaDownloader(self.transport, self.scheduler, self.store,
                                    self.config.media_dir, self.capability)
        self.engine = CrawlEngine(self.api, self.store, self.config.download, media)

        self._initialized = True
        self.logger.info("Archive orchestrator initialized")

    async def cleanup(self) -> None:
        self.logger.info("Cleaning up archive orchestrator")
        if self.scheduler:
            self.scheduler.close()
        if self.transport and self._owns_transport:
            await self.transport.cleanup()
        if self.store and self._owns_store:
            await self.store.close()
        self._initialized = False

    async def run(self, raw_targets: Iterable[str]) -> RunReport:
        """
        Resolve raw targets and archive each of them

        Invalid targets are reported as skipped; their siblings still run.
        On cancellation the scheduler is closed and outstanding jobs are
        cancelled before CancelledError propagates.
        """
        if not self._initialized:
            await self.initialize()

        report = RunReport(start_time=datetime.now())
        resolver = TargetResolver(self.store)
        jobs, invalid = await resolver.resolve_all(raw_targets)

        for raw, error in invalid:
            report.results.append(JobResult(
                target=raw, status=TargetStatus.SKIPPED, error_message=str(error)
            ))
            report.warnings.append(str(error))

        self.logger.info(f"Resolved {len(jobs)} job(s) from targets")
        pool = asyncio.Semaphore(self.config.download.max_parallel_jobs)

        async def run_one(job: TraversalJob) -> JobResult:
            async with pool:
                return await self._run_job(job)

        tasks = [asyncio.ensure_future(run_one(job)) for job in jobs]
        try:
            results = await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            self.logger.warning("Run cancelled; stopping outstanding jobs")
            self.scheduler.close()
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        for result in results:
            report.results.append(result)
            report.warnings.extend(result.warnings)

        report.end_time = datetime.now()
        report.stats = self._collect_stats()
        return report

    async def _run_job(self, job: TraversalJob) -> JobResult:
        start_time = time.time()
        try:
            return await self.engine.run_job(job)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Store failures mid-job end this job only
            self.logger.error(f"Job {job.target} failed: {e}", exc_info=True)
            return JobResult(
                target=job.target.raw_identifier,
                status=TargetStatus.PARTIAL,
                error_message=str(e),
                warnings=[f"{job.target}: {e}"],
                processing_time=time.time() - start_time
            )

    def _collect_stats(self) -> Dict[str, Any]:
        scheduler_stats = self.scheduler.get_stats() if self.scheduler else {}
        engine_stats = self.engine.get_stats() if self.engine else {}
        return {
            'requests': scheduler_stats.get('dispatched', 0),
            'retries': scheduler_stats.get('retries', 0),
            'rate_limit_hits': scheduler_stats.get('rate_limit_hits', 0),
            'media_downloaded': engine_stats.get('media_downloaded', 0),
            'items_written': engine_stats.get('items_written', 0)
        }
