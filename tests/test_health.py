from __future__ import annotations

import pytest

from opportunity_pipeline.gateway.health import HealthTracker, health_state_for
from opportunity_pipeline.models import HealthState


def test_first_observation_sets_rate_from_outcome() -> None:
    tracker = HealthTracker()

    ok = tracker.record("up", success=True, response_time_ms=120)
    failed = tracker.record("down", success=False, response_time_ms=3000)

    assert ok.success_rate == 1.0
    assert ok.status is HealthState.HEALTHY
    assert ok.error_count == 0
    assert failed.success_rate == 0.0
    assert failed.status is HealthState.DOWN
    assert failed.error_count == 1


def test_response_time_is_two_point_average() -> None:
    tracker = HealthTracker()
    tracker.record("api", success=True, response_time_ms=100)
    tracker.record("api", success=True, response_time_ms=300)
    status = tracker.record("api", success=True, response_time_ms=100)

    assert status.response_time_ms == pytest.approx(150)


def test_failure_after_success_lowers_rate_and_counts_error() -> None:
    tracker = HealthTracker()
    tracker.record("api", success=True, response_time_ms=100)

    status = tracker.record("api", success=False, response_time_ms=100)

    # history: 0 errors + 100 pseudo-observations at rate 1.0
    assert status.success_rate == pytest.approx(100 / 101)
    assert status.error_count == 1
    assert status.status is HealthState.HEALTHY


def test_repeated_failures_degrade_then_bring_down() -> None:
    tracker = HealthTracker()
    tracker.record("api", success=True, response_time_ms=50)

    states = [tracker.record("api", success=False, response_time_ms=50).status for _ in range(40)]

    assert HealthState.DEGRADED in states
    assert states[-1] is HealthState.DOWN


def test_success_decrements_error_count_but_not_below_zero() -> None:
    tracker = HealthTracker()
    tracker.record("api", success=False, response_time_ms=10)
    tracker.record("api", success=True, response_time_ms=10)
    status = tracker.record("api", success=True, response_time_ms=10)

    assert status.error_count == 0


@pytest.mark.parametrize(
    ("rate", "expected"),
    [
        (1.0, HealthState.HEALTHY),
        (0.951, HealthState.HEALTHY),
        (0.95, HealthState.DEGRADED),
        (0.81, HealthState.DEGRADED),
        (0.8, HealthState.DOWN),
        (0.0, HealthState.DOWN),
    ],
)
def test_health_state_thresholds(rate: float, expected: HealthState) -> None:
    assert health_state_for(rate) is expected


def test_statuses_are_returned_as_copies() -> None:
    tracker = HealthTracker()
    tracker.record("api", success=True, response_time_ms=10)

    snapshot = tracker.get("api")
    snapshot.error_count = 99

    assert tracker.get("api").error_count == 0
    assert set(tracker.all()) == {"api"}
    assert tracker.get("missing") is None
