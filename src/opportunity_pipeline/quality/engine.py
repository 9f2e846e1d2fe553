from __future__ import annotations

import dataclasses
import logging
from datetime import datetime
from typing import Any, Callable

from opportunity_pipeline.index.base import SearchIndex
from opportunity_pipeline.models import (
    DataQualityScore,
    DuplicateDetectionResult,
    FraudDetectionResult,
    Opportunity,
    RawCandidate,
    StandardizationResult,
)
from opportunity_pipeline.store.base import OpportunityStore
from opportunity_pipeline.utils.datetime_utils import utcnow

from .fraud import assess_fraud
from .scoring import calculate_quality_score
from .similarity import best_duplicate_match
from .standardize import standardize
from .validation import validate_candidate

logger = logging.getLogger(__name__)

_MERGED_SCALAR_FIELDS = (
    "description",
    "type",
    "organizer_name",
    "organizer_type",
    "organizer_logo",
    "experience_required",
    "education_required",
    "mode",
    "location",
    "duration",
    "stipend",
    "start_date",
    "end_date",
    "source_url",
)
_MERGED_LIST_FIELDS = ("skills", "eligibility_criteria", "prizes", "tags")


class QualityEngineError(RuntimeError):
    """Raised when a quality operation fails on storage or index I/O."""


class OpportunityNotFoundError(LookupError):
    """Raised when a referenced opportunity does not exist."""


class CandidateRejectedError(ValueError):
    """Raised when a valid candidate fails the duplicate, quality or fraud gate."""


class QualityEngine:
    """Standardize, de-duplicate, score and fraud-screen opportunity records.

    Scoring and standardization never raise on malformed input. Operations
    that read or write the catalog wrap collaborator failures in
    ``QualityEngineError``.
    """

    def __init__(
        self,
        *,
        store: OpportunityStore,
        index: SearchIndex,
        min_quality_score: float = 0.6,
        reject_suspicious: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.index = index
        self.min_quality_score = min_quality_score
        self.reject_suspicious = reject_suspicious
        self.clock = clock

    def standardize(self, candidate: RawCandidate) -> StandardizationResult:
        return standardize(candidate)

    def validate(self, candidate: RawCandidate, *, source_id: str) -> Opportunity:
        return validate_candidate(candidate, source_id=source_id, now=self.clock())

    def calculate_quality_score(self, candidate: Any) -> DataQualityScore:
        return calculate_quality_score(candidate, now=self.clock())

    def detect_duplicates(self, candidate: Any) -> DuplicateDetectionResult:
        try:
            similar = self.store.find_similar(
                title=candidate.title,
                organizer_name=candidate.organizer_name,
                application_deadline=candidate.application_deadline,
                external_url=candidate.external_url,
                exclude_id=candidate.id,
            )
        except Exception as exc:  # noqa: BLE001
            raise QualityEngineError("Failed to detect duplicates") from exc

        return best_duplicate_match(candidate, similar)

    def detect_fraud(self, candidate: Any) -> FraudDetectionResult:
        organizer_post_count = 0
        organizer_name = (candidate.organizer_name or "").strip()
        if organizer_name:
            try:
                organizer_post_count = self.store.count_by_organizer(
                    organizer_name,
                    exclude_id=candidate.id,
                )
            except Exception as exc:  # noqa: BLE001
                raise QualityEngineError("Failed to detect fraud") from exc

        return assess_fraud(candidate, organizer_post_count=organizer_post_count, now=self.clock())

    def admit(
        self,
        candidate: RawCandidate,
        *,
        source_id: str,
        upsert_key: str = "natural_key",
    ) -> Opportunity:
        """Run a raw candidate through the full quality gate.

        Returns the scored canonical record ready for upsert. A duplicate is
        only let through when the matched record is the one the upsert would
        refresh anyway (same natural key, or same external URL for webhook
        records).

        Raises:
            CandidateValidationError: required fields are missing or invalid.
            CandidateRejectedError: duplicate, low quality or suspicious.
            QualityEngineError: the catalog could not be read.
        """
        result = self.standardize(candidate)
        for warning in result.warnings:
            logger.debug("Standardization warning for %r: %s", result.standardized.title, warning)

        opportunity = self.validate(result.standardized, source_id=source_id)

        duplicate = self.detect_duplicates(opportunity)
        if duplicate.is_duplicate and not self._is_refresh_of(
            opportunity, duplicate.existing_id, upsert_key
        ):
            raise CandidateRejectedError(
                f"Duplicate of {duplicate.existing_id} "
                f"(similarity {duplicate.similarity_score:.2f})"
            )

        score = self.calculate_quality_score(
            dataclasses.replace(result.standardized, id=opportunity.id)
        )
        if score.overall < self.min_quality_score:
            raise CandidateRejectedError(
                f"Quality score {score.overall:.2f} below threshold {self.min_quality_score:.2f}"
            )
        opportunity.quality_score = score.overall

        fraud = self.detect_fraud(opportunity)
        if fraud.is_suspicious and self.reject_suspicious:
            raise CandidateRejectedError(
                f"Suspicious listing (risk {fraud.risk_score:.2f}): {', '.join(fraud.flags)}"
            )
        return opportunity

    def _is_refresh_of(self, opportunity: Opportunity, existing_id: str | None, upsert_key: str) -> bool:
        """True when the matched record is the one this candidate would upsert."""
        if existing_id is None:
            return False
        try:
            if upsert_key == "external_url":
                existing = self.store.find_by_id(existing_id)
                return existing is not None and existing.external_url == opportunity.external_url
            existing = self.store.find_by_natural_key(
                opportunity.title,
                opportunity.organizer_name,
                opportunity.application_deadline,
                active_only=True,
            )
        except Exception as exc:  # noqa: BLE001
            raise QualityEngineError("Failed to detect duplicates") from exc
        return existing is not None and existing.id == existing_id

    def merge_duplicate_opportunities(self, primary_id: str, duplicate_id: str) -> Opportunity:
        if primary_id == duplicate_id:
            raise ValueError("Cannot merge an opportunity into itself")

        try:
            primary = self.store.find_by_id(primary_id)
            duplicate = self.store.find_by_id(duplicate_id)
        except Exception as exc:  # noqa: BLE001
            raise QualityEngineError("Failed to merge duplicate opportunities") from exc

        if primary is None or duplicate is None:
            raise OpportunityNotFoundError("One or both opportunities not found")

        merged = merge_records(primary, duplicate, now=self.clock())

        try:
            self.store.update_opportunity(merged)
            self.store.deactivate(duplicate_id)
            self.index.remove(duplicate_id)
            if merged.is_active:
                self.index.index(merged)
        except Exception as exc:  # noqa: BLE001
            raise QualityEngineError("Failed to merge duplicate opportunities") from exc

        logger.info("Merged opportunity %s into %s", duplicate_id, primary_id)
        return merged

    def cleanup_expired_opportunities(self, now: datetime | None = None) -> int:
        try:
            expired_ids = self.store.deactivate_expired(now or self.clock())
        except Exception as exc:  # noqa: BLE001
            raise QualityEngineError("Failed to cleanup expired opportunities") from exc

        for opportunity_id in expired_ids:
            try:
                self.index.remove(opportunity_id)
            except Exception:  # noqa: BLE001
                logger.exception("Failed to remove expired opportunity %s from index", opportunity_id)

        logger.info("Cleaned up %d expired opportunities", len(expired_ids))
        return len(expired_ids)


def merge_records(primary: Opportunity, duplicate: Opportunity, *, now: datetime) -> Opportunity:
    """Primary wins on scalars unless empty; list fields are unioned in order."""
    updates: dict[str, Any] = {}
    for name in _MERGED_SCALAR_FIELDS:
        primary_value = getattr(primary, name)
        if primary_value is None or primary_value == "":
            updates[name] = getattr(duplicate, name)
    for name in _MERGED_LIST_FIELDS:
        updates[name] = _union(getattr(primary, name), getattr(duplicate, name))
    updates["updated_at"] = now
    return dataclasses.replace(primary, **updates)


def _union(first: list[str], second: list[str]) -> list[str]:
    merged: list[str] = []
    for item in [*first, *second]:
        if item not in merged:
            merged.append(item)
    return merged