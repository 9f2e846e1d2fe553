from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable

from opportunity_pipeline.models import HealthState
from opportunity_pipeline.utils.datetime_utils import utcnow

HEALTHY_SUCCESS_RATE = 0.95
DEGRADED_SUCCESS_RATE = 0.8


@dataclass(slots=True)
class HealthStatus:
    api_id: str
    status: HealthState
    response_time_ms: float
    error_count: int
    success_rate: float
    last_checked_at: datetime


def health_state_for(success_rate: float) -> HealthState:
    if success_rate > HEALTHY_SUCCESS_RATE:
        return HealthState.HEALTHY
    if success_rate > DEGRADED_SUCCESS_RATE:
        return HealthState.DEGRADED
    return HealthState.DOWN


class HealthTracker:
    """Per-API latency and success-rate estimates.

    Response time is a two-point moving average. The success rate treats the
    current error count plus a hundred pseudo-observations at the previous
    rate as history, then folds the new outcome in.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._statuses: dict[str, HealthStatus] = {}
        self._lock = threading.Lock()

    def record(self, api_id: str, *, success: bool, response_time_ms: float) -> HealthStatus:
        now = self._clock()
        with self._lock:
            previous = self._statuses.get(api_id)
            if previous is None:
                success_rate = 1.0 if success else 0.0
                status = HealthStatus(
                    api_id=api_id,
                    status=health_state_for(success_rate),
                    response_time_ms=float(response_time_ms),
                    error_count=0 if success else 1,
                    success_rate=success_rate,
                    last_checked_at=now,
                )
            else:
                total = previous.error_count + previous.success_rate * 100
                successes = previous.success_rate * total
                if success:
                    success_rate = (successes + 1) / (total + 1)
                    error_count = max(0, previous.error_count - 1)
                else:
                    success_rate = successes / (total + 1)
                    error_count = previous.error_count + 1
                status = HealthStatus(
                    api_id=api_id,
                    status=health_state_for(success_rate),
                    response_time_ms=(previous.response_time_ms + response_time_ms) / 2,
                    error_count=error_count,
                    success_rate=success_rate,
                    last_checked_at=now,
                )
            self._statuses[api_id] = status
            return replace(status)

    def get(self, api_id: str) -> HealthStatus | None:
        with self._lock:
            status = self._statuses.get(api_id)
            return replace(status) if status is not None else None

    def all(self) -> dict[str, HealthStatus]:
        with self._lock:
            return {api_id: replace(status) for api_id, status in self._statuses.items()}
