from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from opportunity_pipeline.models import Opportunity


@dataclass(slots=True)
class BulkIndexResult:
    indexed_count: int = 0
    errors: list[str] = field(default_factory=list)


class SearchIndex(ABC):
    @abstractmethod
    def index(self, opportunity: Opportunity) -> None:
        """Add or replace a single document."""

    @abstractmethod
    def bulk_index(self, opportunities: list[Opportunity]) -> BulkIndexResult:
        """Index many documents, reporting per-item failures instead of raising."""

    @abstractmethod
    def remove(self, opportunity_id: str) -> None:
        """Remove a document; removing an unknown id is not an error."""
