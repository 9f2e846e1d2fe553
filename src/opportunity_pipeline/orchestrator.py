from __future__ import annotations

import logging
import secrets
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from datetime import datetime
from typing import Callable

from opportunity_pipeline.index.base import SearchIndex
from opportunity_pipeline.models import JobStatus, Opportunity, ScrapingJob, Source
from opportunity_pipeline.quality.engine import CandidateRejectedError, QualityEngine
from opportunity_pipeline.quality.validation import CandidateValidationError
from opportunity_pipeline.scrapers.registry import ScraperRegistry
from opportunity_pipeline.state import PipelineState
from opportunity_pipeline.store.base import OpportunityStore
from opportunity_pipeline.utils.datetime_utils import hours_since, utcnow

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Job cancelled by user"


class JobStartError(RuntimeError):
    """Raised when a scraping job cannot be started."""


class SourceNotFoundError(JobStartError):
    def __init__(self) -> None:
        super().__init__("Source not found")


class SourceInactiveError(JobStartError):
    def __init__(self) -> None:
        super().__init__("Source is not active")


class JobAlreadyRunningError(JobStartError):
    def __init__(self) -> None:
        super().__init__("Scraping job already running for this source")


class JobNotFoundError(LookupError):
    """Raised when a job id is not tracked by this process."""


class JobNotRunningError(RuntimeError):
    """Raised when cancelling a job that already finished."""


def is_due(source: Source, now: datetime) -> bool:
    """A source is due once its scrape frequency has elapsed since the last run."""
    return hours_since(source.last_scraped_at, now) >= source.scrape_frequency_hours


def new_job_id(now: datetime) -> str:
    return f"job_{int(now.timestamp() * 1000)}_{secrets.token_hex(5)[:9]}"


class JobOrchestrator:
    """Runs one scraping job per source on a worker executor.

    ``start_job`` registers the job as pending and returns at once; the
    worker moves it to running, fetches through the source's plugin, gates
    each candidate through the quality engine and persists what passes.
    A source stays busy from the moment its job is registered until the job
    reaches a terminal status.
    """

    def __init__(
        self,
        *,
        store: OpportunityStore,
        index: SearchIndex,
        engine: QualityEngine,
        scrapers: ScraperRegistry,
        state: PipelineState,
        executor: Executor | None = None,
        max_workers: int = 4,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.index = index
        self.engine = engine
        self.scrapers = scrapers
        self.state = state
        self.clock = clock
        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="scrape",
        )
        self._futures: dict[str, Future] = {}
        self._futures_lock = threading.Lock()

    def start_job(self, source_id: str) -> ScrapingJob:
        source = self.store.get_source(source_id)
        if source is None:
            raise SourceNotFoundError()
        if not source.is_active:
            raise SourceInactiveError()

        with self.state.jobs_lock:
            if any(
                job.source_id == source_id and job.status.is_active
                for job in self.state.jobs.values()
            ):
                raise JobAlreadyRunningError()

            job = ScrapingJob(
                id=new_job_id(self.clock()),
                source_id=source_id,
                url=source.url,
                status=JobStatus.PENDING,
            )
            self.state.jobs[job.id] = job
            snapshot = job.snapshot()

        logger.info("Started scraping job %s for source %s", job.id, source_id)
        future = self.executor.submit(self._run_job, job.id, source)
        with self._futures_lock:
            self._futures[job.id] = future
        future.add_done_callback(lambda _done, job_id=job.id: self._forget_future(job_id))
        return snapshot

    def get_job_status(self, job_id: str) -> ScrapingJob:
        with self.state.jobs_lock:
            job = self.state.jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(f"Job not found: {job_id}")
            return job.snapshot()

    def get_active_jobs(self) -> list[ScrapingJob]:
        with self.state.jobs_lock:
            return [job.snapshot() for job in self.state.jobs.values() if job.status.is_active]

    def list_jobs(self) -> list[ScrapingJob]:
        with self.state.jobs_lock:
            return [job.snapshot() for job in self.state.jobs.values()]

    def cancel_job(self, job_id: str) -> ScrapingJob:
        """Mark an active job failed. Work already in flight is not interrupted."""
        with self.state.jobs_lock:
            job = self.state.jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(f"Job not found: {job_id}")
            if not job.status.is_active:
                raise JobNotRunningError(f"Job {job_id} is not running")

            job.status = JobStatus.FAILED
            job.completed_at = self.clock()
            job.errors.append(CANCELLED_MESSAGE)
            self.state.cancelled_job_ids.add(job_id)
            snapshot = job.snapshot()

        logger.info("Cancelled scraping job %s", job_id)
        return snapshot

    def schedule_regular_scraping(self) -> list[ScrapingJob]:
        now = self.clock()
        started: list[ScrapingJob] = []
        for source in self.store.list_sources(active_only=True):
            if not is_due(source, now):
                continue
            try:
                started.append(self.start_job(source.id))
            except JobStartError as exc:
                logger.info("Skipping scheduled scrape of %s: %s", source.id, exc)
        logger.info("Scheduled %d scraping jobs", len(started))
        return started

    def wait_for_job(self, job_id: str, timeout: float | None = None) -> ScrapingJob:
        with self._futures_lock:
            future = self._futures.get(job_id)
        if future is not None:
            future.result(timeout=timeout)
        return self.get_job_status(job_id)

    def shutdown(self, wait: bool = True) -> None:
        if self._owns_executor:
            self.executor.shutdown(wait=wait)

    def _run_job(self, job_id: str, source: Source) -> None:
        try:
            self._execute(job_id, source)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Scraping job %s failed", job_id)
            self._finish(job_id, JobStatus.FAILED, error=f"Scraping failed: {exc}")

    def _forget_future(self, job_id: str) -> None:
        with self._futures_lock:
            self._futures.pop(job_id, None)

    def _execute(self, job_id: str, source: Source) -> None:
        with self.state.jobs_lock:
            job = self.state.jobs[job_id]
            if job_id in self.state.cancelled_job_ids:
                return
            job.status = JobStatus.RUNNING
            job.started_at = self.clock()

        plugin = self.scrapers.get(source.id)
        if plugin is None:
            raise RuntimeError(f"No scraper registered for source {source.id}")

        candidates = plugin.fetch(source.url)
        logger.info("Source %s returned %d candidates", source.id, len(candidates))

        accepted: list[Opportunity] = []
        for position, candidate in enumerate(candidates, start=1):
            if self._is_cancelled(job_id):
                logger.info("Job %s cancelled; stopping after %d items", job_id, position - 1)
                return

            label = candidate.title or candidate.external_url or f"item #{position}"
            try:
                opportunity = self.engine.admit(candidate, source_id=source.id)
                stored, created = self.store.upsert_by_natural_key(opportunity)
            except (CandidateValidationError, CandidateRejectedError) as exc:
                self._record_error(job_id, f"{label}: {exc}")
                continue
            except Exception as exc:  # noqa: BLE001
                logger.exception("Failed to process %s from %s", label, source.id)
                self._record_error(job_id, f"{label}: {exc}")
                continue

            logger.debug("%s opportunity %s", "Created" if created else "Updated", stored.id)
            if stored.is_active:
                accepted.append(stored)
            with self.state.jobs_lock:
                if job_id not in self.state.cancelled_job_ids:
                    self.state.jobs[job_id].items_scraped += 1

        if accepted:
            try:
                result = self.index.bulk_index(accepted)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Bulk indexing failed for job %s", job_id)
                self._record_error(job_id, f"Bulk indexing failed: {exc}")
            else:
                for error in result.errors:
                    self._record_error(job_id, error)

        if self._finish(job_id, JobStatus.COMPLETED):
            self.store.mark_source_scraped(source.id, self.clock())

    def _is_cancelled(self, job_id: str) -> bool:
        with self.state.jobs_lock:
            return job_id in self.state.cancelled_job_ids

    def _record_error(self, job_id: str, message: str) -> None:
        with self.state.jobs_lock:
            job = self.state.jobs[job_id]
            if job_id not in self.state.cancelled_job_ids:
                job.errors.append(message)

    def _finish(self, job_id: str, status: JobStatus, *, error: str | None = None) -> bool:
        """Set the terminal status once; False when the job already ended."""
        with self.state.jobs_lock:
            job = self.state.jobs[job_id]
            if not job.status.is_active:
                return False
            job.status = status
            job.completed_at = self.clock()
            if error is not None:
                job.errors.append(error)
            items, error_count = job.items_scraped, len(job.errors)

        logger.info(
            "Scraping job %s %s: %d items, %d errors",
            job_id,
            status.value,
            items,
            error_count,
        )
        return True
