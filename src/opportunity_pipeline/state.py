from __future__ import annotations

import threading
from datetime import datetime
from typing import Callable

from opportunity_pipeline.gateway.health import HealthTracker
from opportunity_pipeline.gateway.rate_limit import RateLimiter, monotonic_ms
from opportunity_pipeline.models import ScrapingJob
from opportunity_pipeline.utils.datetime_utils import utcnow


class PipelineState:
    """Process-local state shared by the orchestrator and the sync gateway.

    Construct one per process and pass it to both. Nothing here is persisted;
    per-source exclusivity and rate limits only hold within this process.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], datetime] = utcnow,
        monotonic_clock: Callable[[], float] = monotonic_ms,
    ) -> None:
        self.jobs: dict[str, ScrapingJob] = {}
        self.cancelled_job_ids: set[str] = set()
        self.jobs_lock = threading.Lock()
        self.rate_limiter = RateLimiter(clock=monotonic_clock)
        self.health = HealthTracker(clock=clock)
