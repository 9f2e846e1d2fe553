from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from opportunity_pipeline.config import SchedulerSettings
from opportunity_pipeline.orchestrator import JobOrchestrator
from opportunity_pipeline.quality.engine import QualityEngine
from opportunity_pipeline.utils.datetime_utils import utcnow

from .sync import SyncGateway

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TaskStats:
    name: str
    interval_seconds: float
    last_run_at: datetime | None = None
    last_error: str | None = None
    run_count: int = 0


class PeriodicScheduler:
    """Named interval tasks on an APScheduler background scheduler.

    Nothing runs until ``start()``. A failing task is recorded, logged by
    APScheduler and retried at its next interval. Each task runs at most one
    instance at a time; missed runs are coalesced into one.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], datetime] = utcnow,
        misfire_grace_seconds: int = 600,
    ) -> None:
        self._clock = clock
        self._scheduler = BackgroundScheduler(
            timezone="UTC",
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": misfire_grace_seconds,
            },
        )
        self._stats: dict[str, TaskStats] = {}
        self._actions: dict[str, Callable[[], Any]] = {}
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._scheduler.running

    def add_task(
        self,
        name: str,
        interval_seconds: float,
        action: Callable[[], Any],
        *,
        run_immediately: bool = False,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")

        job_options: dict[str, Any] = {}
        if run_immediately:
            job_options["next_run_time"] = datetime.now(timezone.utc)

        with self._lock:
            self._stats[name] = TaskStats(name=name, interval_seconds=interval_seconds)
            self._actions[name] = action
        self._scheduler.add_job(
            self._run,
            trigger=IntervalTrigger(seconds=interval_seconds),
            args=[name],
            id=name,
            name=name,
            replace_existing=True,
            **job_options,
        )
        logger.info("Scheduled task %s every %.0f seconds", name, interval_seconds)

    def remove_task(self, name: str) -> bool:
        try:
            self._scheduler.remove_job(name)
        except JobLookupError:
            return False
        with self._lock:
            self._stats.pop(name, None)
            self._actions.pop(name, None)
        return True

    def run_task_now(self, name: str) -> Any:
        """Run a task on the calling thread, outside its schedule."""
        if name not in self._actions:
            raise KeyError(f"Unknown task: {name}")
        return self._run(name)

    def status(self) -> list[dict[str, Any]]:
        with self._lock:
            stats = {name: replace(item) for name, item in self._stats.items()}

        entries: list[dict[str, Any]] = []
        for job in self._scheduler.get_jobs():
            item = stats.get(job.id)
            if item is None:
                continue
            entries.append(
                {
                    "name": item.name,
                    "interval_seconds": item.interval_seconds,
                    "next_run_at": getattr(job, "next_run_time", None),
                    "last_run_at": item.last_run_at,
                    "last_error": item.last_error,
                    "run_count": item.run_count,
                }
            )
        return sorted(entries, key=lambda entry: entry["name"])

    def start(self) -> None:
        if self._scheduler.running:
            return
        self._scheduler.start()
        for job in self._scheduler.get_jobs():
            logger.info("Scheduled task %s next run: %s", job.id, job.next_run_time)

    def stop(self, wait: bool = True) -> None:
        if not self._scheduler.running:
            return
        self._scheduler.shutdown(wait=wait)
        logger.info("Scheduler stopped")

    def _run(self, name: str) -> Any:
        action = self._actions[name]
        try:
            result = action()
        except Exception as exc:
            self._record(name, error=str(exc))
            raise
        self._record(name, error=None)
        return result

    def _record(self, name: str, *, error: str | None) -> None:
        with self._lock:
            item = self._stats.get(name)
            if item is None:
                return
            item.last_run_at = self._clock()
            item.last_error = error
            item.run_count += 1


def build_default_scheduler(
    *,
    settings: SchedulerSettings,
    orchestrator: JobOrchestrator,
    engine: QualityEngine,
    gateway: SyncGateway,
    **scheduler_options: Any,
) -> PeriodicScheduler:
    scheduler = PeriodicScheduler(**scheduler_options)
    scheduler.add_task(
        "regular_scraping",
        settings.scrape_interval_minutes * 60,
        orchestrator.schedule_regular_scraping,
    )
    scheduler.add_task(
        "scheduled_sync",
        settings.sync_interval_minutes * 60,
        gateway.execute_scheduled_sync,
    )
    scheduler.add_task(
        "expired_cleanup",
        settings.cleanup_interval_minutes * 60,
        engine.cleanup_expired_opportunities,
    )
    scheduler.add_task(
        "health_monitoring",
        settings.health_interval_minutes * 60,
        gateway.monitor_api_health,
        run_immediately=True,
    )
    return scheduler
