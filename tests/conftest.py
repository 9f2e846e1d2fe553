from __future__ import annotations

from concurrent.futures import Executor, Future
from typing import Any, Callable

import pytest

from opportunity_pipeline.store.sqlite_store import SQLiteStore


class ImmediateExecutor(Executor):
    """Runs submitted work inline so job outcomes are visible on return."""

    def submit(self, fn: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Future:
        future: Future = Future()
        try:
            result = fn(*args, **kwargs)
        except BaseException as exc:  # noqa: BLE001
            future.set_exception(exc)
        else:
            future.set_result(result)
        return future


class DeferredExecutor(Executor):
    """Queues submitted work until the test calls ``run_all``."""

    def __init__(self) -> None:
        self.queued: list[tuple[Future, Callable[..., Any], tuple, dict]] = []

    def submit(self, fn: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Future:
        future: Future = Future()
        self.queued.append((future, fn, args, kwargs))
        return future

    def run_all(self) -> None:
        queued, self.queued = self.queued, []
        for future, fn, args, kwargs in queued:
            try:
                future.set_result(fn(*args, **kwargs))
            except BaseException as exc:  # noqa: BLE001
                future.set_exception(exc)


@pytest.fixture
def store(tmp_path) -> SQLiteStore:
    sqlite_store = SQLiteStore(str(tmp_path / "opportunities.sqlite"))
    sqlite_store.init_db()
    return sqlite_store
