from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta
from typing import Callable

import requests

from opportunity_pipeline import __version__
from opportunity_pipeline.config import PartnerApiSettings
from opportunity_pipeline.orchestrator import JobOrchestrator, JobStartError, is_due
from opportunity_pipeline.state import PipelineState
from opportunity_pipeline.store.base import OpportunityStore
from opportunity_pipeline.utils.datetime_utils import to_utc, utcnow

from .health import HealthStatus

logger = logging.getLogger(__name__)

HEALTH_CHECK_INTERVAL = timedelta(minutes=5)


class SyncGateway:
    def __init__(
        self,
        *,
        store: OpportunityStore,
        orchestrator: JobOrchestrator,
        state: PipelineState,
        partner_apis: list[PartnerApiSettings] | None = None,
        timeout_seconds: int = 10,
        clock: Callable[[], datetime] = utcnow,
        timer: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.store = store
        self.orchestrator = orchestrator
        self.state = state
        self.partner_apis = list(partner_apis or [])
        self.timeout_seconds = timeout_seconds
        self.clock = clock
        self._timer = timer

    def execute_scheduled_sync(self) -> int:
        """Start a job for every active source whose frequency has elapsed."""
        now = self.clock()
        triggered = 0
        for source in self.store.list_sources(active_only=True):
            if not is_due(source, now):
                continue
            try:
                self.orchestrator.start_job(source.id)
            except JobStartError as exc:
                logger.info("Sync skipped source %s: %s", source.id, exc)
                continue
            triggered += 1

        logger.info("Scheduled sync triggered %d jobs", triggered)
        return triggered

    def monitor_api_health(self) -> list[HealthStatus]:
        """HEAD each active source and partner API not checked recently."""
        targets = [(source.id, source.url) for source in self.store.list_sources(active_only=True)]
        targets.extend((api.id, api.base_url) for api in self.partner_apis)

        now = to_utc(self.clock())
        checked: list[HealthStatus] = []
        for api_id, url in targets:
            previous = self.state.health.get(api_id)
            if previous is not None and now - to_utc(previous.last_checked_at) < HEALTH_CHECK_INTERVAL:
                continue
            checked.append(self._check(api_id, url))
        return checked

    def get_api_health_status(
        self,
        api_id: str | None = None,
    ) -> HealthStatus | dict[str, HealthStatus] | None:
        if api_id is None:
            return self.state.health.all()
        return self.state.health.get(api_id)

    def _check(self, api_id: str, url: str) -> HealthStatus:
        started = self._timer()
        try:
            response = requests.head(
                url,
                timeout=self.timeout_seconds,
                allow_redirects=True,
                headers={"User-Agent": f"opportunity-pipeline/{__version__}"},
            )
            success = response.status_code < 400
            if not success:
                logger.warning("Health check for %s returned %d", api_id, response.status_code)
        except requests.RequestException as exc:
            logger.warning("Health check for %s failed: %s", api_id, exc)
            success = False

        elapsed_ms = (self._timer() - started) * 1000.0
        return self.state.health.record(api_id, success=success, response_time_ms=elapsed_ms)
