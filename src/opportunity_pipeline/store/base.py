from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from opportunity_pipeline.models import Opportunity, Source


class OpportunityStore(ABC):
    @abstractmethod
    def init_db(self) -> None:
        """Create any required schema."""

    @abstractmethod
    def upsert_source(self, source: Source) -> None:
        """Create or update a source, preserving its last_scraped_at."""

    @abstractmethod
    def get_source(self, source_id: str) -> Source | None:
        """Return the source if configured, otherwise None."""

    @abstractmethod
    def list_sources(self, *, active_only: bool = False) -> list[Source]:
        """Return configured sources ordered by id."""

    @abstractmethod
    def mark_source_scraped(self, source_id: str, scraped_at: datetime) -> None:
        """Record the completion time of a scrape run."""

    @abstractmethod
    def deactivate_sources_except(self, source_ids: set[str]) -> list[str]:
        """Deactivate every active source not in ``source_ids`` and return their ids."""

    @abstractmethod
    def upsert_by_natural_key(self, opportunity: Opportunity) -> tuple[Opportunity, bool]:
        """Update the active record sharing title+organizer+deadline, else insert.

        Deactivated records are never refreshed; a match against one inserts a
        new record. Returns the stored record and whether it was newly created.
        """

    @abstractmethod
    def upsert_by_external_url(self, opportunity: Opportunity) -> tuple[Opportunity, bool]:
        """Update the active record sharing the external URL, else insert."""

    @abstractmethod
    def find_by_id(self, opportunity_id: str) -> Opportunity | None:
        """Return a record by id regardless of its active flag."""

    @abstractmethod
    def find_by_natural_key(
        self,
        title: str,
        organizer_name: str | None,
        application_deadline: datetime,
        *,
        active_only: bool = False,
    ) -> Opportunity | None:
        """Return the record matching the natural key exactly."""

    @abstractmethod
    def find_similar(
        self,
        *,
        title: str | None,
        organizer_name: str | None,
        application_deadline: datetime | None,
        external_url: str | None,
        exclude_id: str | None = None,
    ) -> list[Opportunity]:
        """Active records that could be duplicates of the given fields."""

    @abstractmethod
    def update_opportunity(self, opportunity: Opportunity) -> None:
        """Overwrite the stored record with the given one."""

    @abstractmethod
    def deactivate(self, opportunity_id: str) -> bool:
        """Soft-deactivate a record; False if it does not exist."""

    @abstractmethod
    def deactivate_expired(self, now: datetime) -> list[str]:
        """Soft-deactivate active records whose deadline passed; return their ids."""

    @abstractmethod
    def count_by_organizer(self, organizer_name: str, *, exclude_id: str | None = None) -> int:
        """Number of records posted by an organizer."""
