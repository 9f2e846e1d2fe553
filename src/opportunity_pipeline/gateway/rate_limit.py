from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass(slots=True, frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_in_ms: int


@dataclass(slots=True)
class RateLimitWindow:
    request_count: int
    window_reset_at: float


class RateLimiter:
    """Fixed-window request counter, one window per external API id.

    A window opens empty on the first call and lasts ``window_ms``. Calls
    made once the window has elapsed start a fresh window. Calls made while
    the window is full are rejected with the time left until it resets.
    """

    def __init__(self, clock: Callable[[], float] = monotonic_ms) -> None:
        self._clock = clock
        self._windows: dict[str, RateLimitWindow] = {}
        self._lock = threading.Lock()

    def check(self, api_id: str, requests: int, window_ms: int) -> RateLimitDecision:
        now = self._clock()
        with self._lock:
            window = self._windows.get(api_id)
            if window is None or now >= window.window_reset_at:
                window = RateLimitWindow(request_count=0, window_reset_at=now + window_ms)
                self._windows[api_id] = window

            reset_in_ms = max(0, int(window.window_reset_at - now))
            if window.request_count >= requests:
                return RateLimitDecision(allowed=False, remaining=0, reset_in_ms=reset_in_ms)

            window.request_count += 1
            return RateLimitDecision(
                allowed=True,
                remaining=requests - window.request_count,
                reset_in_ms=reset_in_ms,
            )

    def window(self, api_id: str) -> RateLimitWindow | None:
        with self._lock:
            window = self._windows.get(api_id)
            if window is None:
                return None
            return RateLimitWindow(window.request_count, window.window_reset_at)

    def reset(self, api_id: str | None = None) -> None:
        with self._lock:
            if api_id is None:
                self._windows.clear()
            else:
                self._windows.pop(api_id, None)
