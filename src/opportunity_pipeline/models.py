from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

from opportunity_pipeline.utils.datetime_utils import parse_datetime_utc


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_active(self) -> bool:
        return self in (JobStatus.PENDING, JobStatus.RUNNING)


class HealthState(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    DOWN = "down"


@dataclass(slots=True)
class Source:
    id: str
    url: str
    kind: str = "rss"
    is_active: bool = True
    scrape_frequency_hours: float = 24.0
    last_scraped_at: datetime | None = None
    name: str | None = None


@dataclass(slots=True)
class ScrapingJob:
    id: str
    source_id: str
    url: str
    status: JobStatus = JobStatus.PENDING
    started_at: datetime | None = None
    completed_at: datetime | None = None
    items_scraped: int = 0
    errors: list[str] = field(default_factory=list)

    def snapshot(self) -> ScrapingJob:
        return ScrapingJob(
            id=self.id,
            source_id=self.source_id,
            url=self.url,
            status=self.status,
            started_at=self.started_at,
            completed_at=self.completed_at,
            items_scraped=self.items_scraped,
            errors=list(self.errors),
        )


@dataclass(slots=True)
class RawCandidate:
    """Unvalidated listing as produced by a scraper, partner API or webhook."""

    title: str | None = None
    description: str | None = None
    type: str | None = None
    organizer_name: str | None = None
    organizer_type: str | None = None
    organizer_logo: str | None = None
    skills: list[str] = field(default_factory=list)
    experience_required: str | None = None
    education_required: str | None = None
    eligibility_criteria: list[str] = field(default_factory=list)
    mode: str | None = None
    location: str | None = None
    duration: str | None = None
    stipend: str | None = None
    prizes: list[str] = field(default_factory=list)
    application_deadline: datetime | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    external_url: str | None = None
    source_url: str | None = None
    tags: list[str] = field(default_factory=list)
    created_at: datetime | None = None
    id: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> RawCandidate:
        """Build a candidate from a flat or nested (partner/webhook) mapping.

        Accepts snake_case keys, camelCase keys and the nested
        ``organizer``/``requirements``/``details``/``timeline`` shape.
        Unknown keys are ignored; unparseable values become ``None``.
        """
        organizer = _as_mapping(data.get("organizer"))
        requirements = _as_mapping(data.get("requirements"))
        details = _as_mapping(data.get("details"))
        timeline = _as_mapping(data.get("timeline"))

        def pick(*candidates: Any) -> Any:
            for value in candidates:
                if value is not None:
                    return value
            return None

        return cls(
            title=_as_text(data.get("title")),
            description=_as_text(data.get("description")),
            type=_as_text(data.get("type")),
            organizer_name=_as_text(
                pick(data.get("organizer_name"), data.get("organizerName"), organizer.get("name"))
            ),
            organizer_type=_as_text(
                pick(data.get("organizer_type"), data.get("organizerType"), organizer.get("type"))
            ),
            organizer_logo=_as_text(
                pick(data.get("organizer_logo"), data.get("organizerLogo"), organizer.get("logo"))
            ),
            skills=_as_text_list(
                pick(
                    data.get("skills"),
                    data.get("required_skills"),
                    data.get("requiredSkills"),
                    requirements.get("skills"),
                )
            ),
            experience_required=_as_text(
                pick(
                    data.get("experience_required"),
                    data.get("experienceRequired"),
                    requirements.get("experience"),
                )
            ),
            education_required=_as_text(
                pick(
                    data.get("education_required"),
                    data.get("educationRequired"),
                    requirements.get("education"),
                )
            ),
            eligibility_criteria=_as_text_list(
                pick(
                    data.get("eligibility_criteria"),
                    data.get("eligibilityCriteria"),
                    requirements.get("eligibility"),
                )
            ),
            mode=_as_text(pick(data.get("mode"), details.get("mode"))),
            location=_as_text(pick(data.get("location"), details.get("location"))),
            duration=_as_text(pick(data.get("duration"), details.get("duration"))),
            stipend=_as_text(pick(data.get("stipend"), details.get("stipend"))),
            prizes=_as_text_list(pick(data.get("prizes"), details.get("prizes"))),
            application_deadline=parse_datetime_utc(
                pick(
                    data.get("application_deadline"),
                    data.get("applicationDeadline"),
                    data.get("deadline"),
                    timeline.get("applicationDeadline"),
                )
            ),
            start_date=parse_datetime_utc(
                pick(data.get("start_date"), data.get("startDate"), timeline.get("startDate"))
            ),
            end_date=parse_datetime_utc(
                pick(data.get("end_date"), data.get("endDate"), timeline.get("endDate"))
            ),
            external_url=_as_text(
                pick(data.get("external_url"), data.get("externalUrl"), data.get("url"))
            ),
            source_url=_as_text(pick(data.get("source_url"), data.get("sourceUrl"))),
            tags=_as_text_list(data.get("tags")),
            created_at=parse_datetime_utc(pick(data.get("created_at"), data.get("createdAt"))),
            id=_as_text(data.get("id")),
            raw=dict(data),
        )


@dataclass(slots=True)
class Opportunity:
    id: str
    source_id: str
    title: str
    external_url: str
    application_deadline: datetime
    description: str = ""
    type: str | None = None
    organizer_name: str | None = None
    organizer_type: str | None = None
    organizer_logo: str | None = None
    skills: list[str] = field(default_factory=list)
    experience_required: str | None = None
    education_required: str | None = None
    eligibility_criteria: list[str] = field(default_factory=list)
    mode: str | None = None
    location: str | None = None
    duration: str | None = None
    stipend: str | None = None
    prizes: list[str] = field(default_factory=list)
    start_date: datetime | None = None
    end_date: datetime | None = None
    source_url: str | None = None
    tags: list[str] = field(default_factory=list)
    is_active: bool = True
    quality_score: float = 0.0
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_document(self) -> dict[str, Any]:
        """Serialize for the search index."""
        return {
            "id": self.id,
            "sourceId": self.source_id,
            "title": self.title,
            "description": self.description,
            "type": self.type,
            "organizerName": self.organizer_name,
            "organizerType": self.organizer_type,
            "skills": list(self.skills),
            "mode": self.mode,
            "location": self.location,
            "stipend": self.stipend,
            "prizes": list(self.prizes),
            "applicationDeadline": self.application_deadline.isoformat(),
            "startDate": self.start_date.isoformat() if self.start_date else None,
            "endDate": self.end_date.isoformat() if self.end_date else None,
            "externalUrl": self.external_url,
            "tags": list(self.tags),
            "isActive": self.is_active,
            "qualityScore": self.quality_score,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


@dataclass(slots=True)
class StandardizationResult:
    standardized: RawCandidate
    changes: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass(slots=True)
class DuplicateDetectionResult:
    is_duplicate: bool
    similarity_score: float
    matched_fields: list[str] = field(default_factory=list)
    existing_id: str | None = None


@dataclass(slots=True)
class DataQualityScore:
    overall: float
    completeness: float
    accuracy: float
    consistency: float
    freshness: float
    missing_fields: list[str] = field(default_factory=list)
    inconsistencies: list[str] = field(default_factory=list)
    quality_issues: list[str] = field(default_factory=list)


@dataclass(slots=True)
class FraudDetectionResult:
    is_suspicious: bool
    risk_score: float
    flags: list[str] = field(default_factory=list)
    reasons: list[str] = field(default_factory=list)


@dataclass(slots=True)
class WebhookPayload:
    event: str
    data: dict[str, Any]
    timestamp: datetime
    source: str

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> WebhookPayload:
        body = data.get("data")
        return cls(
            event=str(data.get("event", "")).strip(),
            data=dict(body) if isinstance(body, Mapping) else {},
            timestamp=parse_datetime_utc(data.get("timestamp")) or datetime.now(timezone.utc),
            source=str(data.get("source", "")).strip(),
        )


def _as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        return str(value)
    return None


def _as_text_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [part for part in (item.strip() for item in value.split(",")) if part]
    if not isinstance(value, (list, tuple)):
        return []
    return [str(item) for item in value if isinstance(item, (str, int, float))]
