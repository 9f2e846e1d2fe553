from __future__ import annotations

from datetime import datetime
from typing import Any

from opportunity_pipeline.models import DataQualityScore
from opportunity_pipeline.utils.datetime_utils import days_between, to_utc, utcnow
from opportunity_pipeline.utils.url_utils import is_valid_url

COMPLETENESS_WEIGHT = 0.4
ACCURACY_WEIGHT = 0.3
CONSISTENCY_WEIGHT = 0.2
FRESHNESS_WEIGHT = 0.1

FRESH_DAYS = 30
STALE_DAYS = 365

REQUIRED_FIELDS = (
    ("title", "title"),
    ("description", "description"),
    ("type", "type"),
    ("organizer_name", "organizer.name"),
    ("organizer_type", "organizer.type"),
    ("skills", "requirements.skills"),
    ("mode", "details.mode"),
    ("application_deadline", "timeline.applicationDeadline"),
    ("external_url", "externalUrl"),
)

TYPE_KEYWORDS = {
    "hackathon": ("programming", "coding", "development", "tech"),
    "internship": ("experience", "learning", "training"),
    "workshop": ("learning", "training", "education", "skill"),
}


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False


def freshness_score(created_at: datetime | None, now: datetime) -> float:
    """1.0 up to 30 days old, then linear decay reaching 0 at day 365."""
    if created_at is None:
        return 1.0
    age_days = days_between(created_at, now)
    if age_days <= FRESH_DAYS:
        return 1.0
    return max(0.0, 1 - (age_days - FRESH_DAYS) / (STALE_DAYS - FRESH_DAYS))


def calculate_quality_score(candidate: Any, now: datetime | None = None) -> DataQualityScore:
    now = to_utc(now or utcnow())
    missing_fields: list[str] = []
    inconsistencies: list[str] = []
    quality_issues: list[str] = []

    completeness = 1.0
    for attribute, label in REQUIRED_FIELDS:
        if _is_missing(getattr(candidate, attribute, None)):
            missing_fields.append(label)
            completeness -= 0.1
    completeness = max(0.0, completeness)

    accuracy = 1.0
    if not is_valid_url(candidate.external_url):
        quality_issues.append("Invalid external URL")
        accuracy -= 0.2

    deadline = to_utc(candidate.application_deadline) if candidate.application_deadline else None
    start_date = to_utc(candidate.start_date) if candidate.start_date else None
    if deadline is not None and deadline < now:
        quality_issues.append("Application deadline is in the past")
        accuracy -= 0.3

    if start_date is not None and deadline is not None and start_date < deadline:
        inconsistencies.append("Start date is before application deadline")
        accuracy -= 0.1
    accuracy = max(0.0, accuracy)

    consistency = 1.0
    skills = [str(skill).lower() for skill in candidate.skills or []]
    keywords = TYPE_KEYWORDS.get((candidate.type or "").lower(), ())
    has_relevant_skill = any(keyword in skill for skill in skills for keyword in keywords)
    if skills and not has_relevant_skill:
        inconsistencies.append("Skills may not match opportunity type")
        consistency -= 0.2
    consistency = max(0.0, consistency)

    freshness = freshness_score(getattr(candidate, "created_at", None), now)

    overall = (
        completeness * COMPLETENESS_WEIGHT
        + accuracy * ACCURACY_WEIGHT
        + consistency * CONSISTENCY_WEIGHT
        + freshness * FRESHNESS_WEIGHT
    )

    return DataQualityScore(
        overall=round(overall, 2),
        completeness=round(completeness, 2),
        accuracy=round(accuracy, 2),
        consistency=round(consistency, 2),
        freshness=round(freshness, 2),
        missing_fields=missing_fields,
        inconsistencies=inconsistencies,
        quality_issues=quality_issues,
    )
