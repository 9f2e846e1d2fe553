from __future__ import annotations

import threading
from typing import Any

from opportunity_pipeline.models import Opportunity

from .base import BulkIndexResult, SearchIndex


class InMemorySearchIndex(SearchIndex):
    """Process-local index used for dry runs and tests."""

    def __init__(self) -> None:
        self._documents: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def index(self, opportunity: Opportunity) -> None:
        with self._lock:
            self._documents[opportunity.id] = opportunity.to_document()

    def bulk_index(self, opportunities: list[Opportunity]) -> BulkIndexResult:
        result = BulkIndexResult()
        for opportunity in opportunities:
            self.index(opportunity)
            result.indexed_count += 1
        return result

    def remove(self, opportunity_id: str) -> None:
        with self._lock:
            self._documents.pop(opportunity_id, None)

    def get(self, opportunity_id: str) -> dict[str, Any] | None:
        with self._lock:
            return self._documents.get(opportunity_id)

    def ids(self) -> list[str]:
        with self._lock:
            return sorted(self._documents)
