from __future__ import annotations

from typing import Any

from rapidfuzz.distance import Levenshtein

from opportunity_pipeline.models import DuplicateDetectionResult
from opportunity_pipeline.utils.datetime_utils import same_calendar_day

DUPLICATE_THRESHOLD = 0.8
FIELD_MATCH_THRESHOLD = 0.8

TITLE_WEIGHT = 0.30
ORGANIZER_WEIGHT = 0.25
DEADLINE_WEIGHT = 0.20
URL_WEIGHT = 0.15
TYPE_WEIGHT = 0.10


def string_similarity(first: str | None, second: str | None) -> float:
    """Normalized edit-distance closeness in [0, 1]; identical strings score 1."""
    left = (first or "").lower().strip()
    right = (second or "").lower().strip()
    if left == right:
        return 1.0

    return Levenshtein.normalized_similarity(left, right)


def similarity_score(candidate: Any, existing: Any) -> float:
    score = 0.0
    score += string_similarity(candidate.title, existing.title) * TITLE_WEIGHT
    score += string_similarity(candidate.organizer_name, existing.organizer_name) * ORGANIZER_WEIGHT
    if same_calendar_day(candidate.application_deadline, existing.application_deadline):
        score += DEADLINE_WEIGHT
    if _exact_url_match(candidate, existing):
        score += URL_WEIGHT
    if candidate.type is not None and candidate.type == existing.type:
        score += TYPE_WEIGHT
    return min(1.0, max(0.0, score))


def matched_fields(candidate: Any, existing: Any) -> list[str]:
    fields: list[str] = []
    if string_similarity(candidate.title, existing.title) > FIELD_MATCH_THRESHOLD:
        fields.append("title")
    if string_similarity(candidate.organizer_name, existing.organizer_name) > FIELD_MATCH_THRESHOLD:
        fields.append("organizer")
    if _exact_url_match(candidate, existing):
        fields.append("externalUrl")
    if candidate.type is not None and candidate.type == existing.type:
        fields.append("type")
    if same_calendar_day(candidate.application_deadline, existing.application_deadline):
        fields.append("deadline")
    return fields


def best_duplicate_match(candidate: Any, existing_records: list[Any]) -> DuplicateDetectionResult:
    """Score ``candidate`` against every record and keep the strongest match."""
    best_record = None
    best_score = 0.0
    for existing in existing_records:
        score = similarity_score(candidate, existing)
        if score > best_score:
            best_score = score
            best_record = existing

    if best_record is None:
        return DuplicateDetectionResult(is_duplicate=False, similarity_score=0.0)

    is_duplicate = best_score > DUPLICATE_THRESHOLD
    return DuplicateDetectionResult(
        is_duplicate=is_duplicate,
        similarity_score=best_score,
        matched_fields=matched_fields(candidate, best_record),
        existing_id=best_record.id if is_duplicate else None,
    )


def _exact_url_match(candidate: Any, existing: Any) -> bool:
    return bool(candidate.external_url) and candidate.external_url == existing.external_url
