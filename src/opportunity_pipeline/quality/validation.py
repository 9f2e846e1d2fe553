from __future__ import annotations

import uuid
from datetime import datetime

from opportunity_pipeline.models import Opportunity, RawCandidate
from opportunity_pipeline.utils.datetime_utils import to_utc, utcnow
from opportunity_pipeline.utils.url_utils import is_valid_url

MIN_TITLE_LENGTH = 5


class CandidateValidationError(ValueError):
    """Raised when a raw candidate cannot become a canonical opportunity."""


def new_opportunity_id() -> str:
    return f"opp_{uuid.uuid4().hex}"


def validate_candidate(
    candidate: RawCandidate,
    *,
    source_id: str,
    now: datetime | None = None,
) -> Opportunity:
    now = to_utc(now or utcnow())

    title = (candidate.title or "").strip()
    if len(title) < MIN_TITLE_LENGTH:
        raise CandidateValidationError(
            f"Title is required and must be at least {MIN_TITLE_LENGTH} characters"
        )

    if candidate.application_deadline is None or to_utc(candidate.application_deadline) < now:
        raise CandidateValidationError("Valid future application deadline is required")

    if not is_valid_url(candidate.external_url):
        raise CandidateValidationError("Valid external URL is required")

    return Opportunity(
        id=candidate.id or new_opportunity_id(),
        source_id=source_id,
        title=title,
        description=candidate.description or "",
        type=candidate.type,
        organizer_name=candidate.organizer_name,
        organizer_type=candidate.organizer_type,
        organizer_logo=candidate.organizer_logo,
        skills=list(candidate.skills),
        experience_required=candidate.experience_required,
        education_required=candidate.education_required,
        eligibility_criteria=list(candidate.eligibility_criteria),
        mode=candidate.mode,
        location=candidate.location,
        duration=candidate.duration,
        stipend=candidate.stipend,
        prizes=list(candidate.prizes),
        application_deadline=to_utc(candidate.application_deadline),
        start_date=candidate.start_date,
        end_date=candidate.end_date,
        external_url=(candidate.external_url or "").strip(),
        source_url=candidate.source_url,
        tags=list(candidate.tags),
        is_active=True,
        created_at=now,
        updated_at=now,
    )
