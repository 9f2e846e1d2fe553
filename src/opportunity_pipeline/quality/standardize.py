"""Normalization of raw candidates before validation and scoring.

Every function here is total: malformed input yields best-effort output,
never an exception.
"""

from __future__ import annotations

import dataclasses
import re
from datetime import datetime

from opportunity_pipeline.models import RawCandidate, StandardizationResult
from opportunity_pipeline.utils.datetime_utils import to_utc

MAX_TAGS = 10

_MULTISPACE = re.compile(r"\s+")
_TITLE_DISALLOWED = re.compile(r"[^\w\s\-&()]")
_CORPORATE_SUFFIX = re.compile(
    r"\b(?:inc|ltd|llc|corp|corporation|company|pvt|private|limited)\b\.?",
    re.IGNORECASE,
)

SKILL_ALIASES = {
    "js": "JavaScript",
    "javascript": "JavaScript",
    "ts": "TypeScript",
    "typescript": "TypeScript",
    "py": "Python",
    "python": "Python",
    "java": "Java",
    "c++": "C++",
    "cpp": "C++",
    "c#": "C#",
    "csharp": "C#",
    "html": "HTML",
    "css": "CSS",
    "react": "React",
    "reactjs": "React",
    "vue": "Vue.js",
    "vuejs": "Vue.js",
    "angular": "Angular",
    "node": "Node.js",
    "nodejs": "Node.js",
    "ml": "Machine Learning",
    "ai": "Artificial Intelligence",
    "ds": "Data Science",
}

CITY_ALIASES = {
    "mumbai": "Mumbai",
    "bombay": "Mumbai",
    "bangalore": "Bangalore",
    "bengaluru": "Bangalore",
    "delhi": "Delhi",
    "new delhi": "Delhi",
    "hyderabad": "Hyderabad",
    "chennai": "Chennai",
    "madras": "Chennai",
    "kolkata": "Kolkata",
    "calcutta": "Kolkata",
    "pune": "Pune",
    "ahmedabad": "Ahmedabad",
    "jaipur": "Jaipur",
    "surat": "Surat",
    "lucknow": "Lucknow",
    "kanpur": "Kanpur",
    "nagpur": "Nagpur",
    "indore": "Indore",
    "thane": "Thane",
    "bhopal": "Bhopal",
    "visakhapatnam": "Visakhapatnam",
    "pimpri": "Pimpri-Chinchwad",
    "patna": "Patna",
    "vadodara": "Vadodara",
    "ghaziabad": "Ghaziabad",
    "ludhiana": "Ludhiana",
    "agra": "Agra",
    "nashik": "Nashik",
    "faridabad": "Faridabad",
    "meerut": "Meerut",
    "rajkot": "Rajkot",
    "kalyan": "Kalyan-Dombivli",
    "vasai": "Vasai-Virar",
    "varanasi": "Varanasi",
    "srinagar": "Srinagar",
    "aurangabad": "Aurangabad",
    "dhanbad": "Dhanbad",
    "amritsar": "Amritsar",
    "navi mumbai": "Navi Mumbai",
    "allahabad": "Prayagraj",
    "prayagraj": "Prayagraj",
    "howrah": "Howrah",
    "ranchi": "Ranchi",
    "gwalior": "Gwalior",
    "jabalpur": "Jabalpur",
    "coimbatore": "Coimbatore",
}


def normalize_whitespace(value: str) -> str:
    return _MULTISPACE.sub(" ", value).strip()


def _capitalize(word: str) -> str:
    return word[:1].upper() + word[1:].lower()


def title_case(value: str) -> str:
    return " ".join(_capitalize(word) for word in value.split(" ") if word)


def standardize_title(title: str) -> str:
    cleaned = _TITLE_DISALLOWED.sub("", normalize_whitespace(title))
    return title_case(normalize_whitespace(cleaned))


def standardize_organizer_name(name: str) -> str:
    without_suffix = _CORPORATE_SUFFIX.sub("", normalize_whitespace(name))
    return normalize_whitespace(without_suffix).strip(" ,")


def standardize_skills(skills: list[str]) -> list[str]:
    standardized: list[str] = []
    seen: set[str] = set()
    for skill in skills:
        normalized = normalize_whitespace(str(skill)).lower()
        if not normalized:
            continue
        mapped = SKILL_ALIASES.get(normalized) or _capitalize(normalized)
        key = mapped.lower()
        if key in seen:
            continue
        seen.add(key)
        standardized.append(mapped)
    return standardized


def standardize_location(location: str) -> str:
    normalized = normalize_whitespace(location)
    return CITY_ALIASES.get(normalized.lower(), normalized)


def standardize_tags(tags: list[str]) -> list[str]:
    standardized: list[str] = []
    seen: set[str] = set()
    for tag in tags:
        normalized = title_case(normalize_whitespace(str(tag)))
        if not normalized or normalized in seen:
            continue
        seen.add(normalized)
        standardized.append(normalized)
    return standardized[:MAX_TAGS]


def standardize(candidate: RawCandidate) -> StandardizationResult:
    """Return a normalized copy of ``candidate`` with a log of what changed."""
    raw_skills = list(candidate.skills or [])
    raw_tags = list(candidate.tags or [])
    standardized = dataclasses.replace(
        candidate,
        skills=list(raw_skills),
        eligibility_criteria=list(candidate.eligibility_criteria or []),
        prizes=list(candidate.prizes or []),
        tags=list(raw_tags),
    )
    changes: list[str] = []
    warnings: list[str] = []

    if candidate.title is not None:
        standardized.title = standardize_title(candidate.title)
        if standardized.title != candidate.title:
            changes.append(f'Title standardized: "{candidate.title}" -> "{standardized.title}"')

    if candidate.organizer_name is not None:
        standardized.organizer_name = standardize_organizer_name(candidate.organizer_name)
        if standardized.organizer_name != candidate.organizer_name:
            changes.append(
                f'Organizer standardized: "{candidate.organizer_name}" -> '
                f'"{standardized.organizer_name}"'
            )

    standardized.skills = standardize_skills(raw_skills)
    if standardized.skills != raw_skills:
        changes.append(
            f"Skills standardized: {', '.join(map(str, raw_skills))} -> "
            f"{', '.join(standardized.skills)}"
        )

    if candidate.location:
        standardized.location = standardize_location(candidate.location)
        if standardized.location != candidate.location:
            changes.append(
                f'Location standardized: "{candidate.location}" -> "{standardized.location}"'
            )

    standardized.tags = standardize_tags(raw_tags)
    if standardized.tags != raw_tags:
        changes.append(
            f"Tags standardized: {', '.join(map(str, raw_tags))} -> {', '.join(standardized.tags)}"
        )

    deadline = _utc_or_none(standardized.application_deadline)
    start_date = _utc_or_none(standardized.start_date)
    end_date = _utc_or_none(standardized.end_date)
    if start_date and deadline and start_date < deadline:
        warnings.append("Start date is before application deadline")
    if end_date and start_date and end_date < start_date:
        warnings.append("End date is before start date")

    return StandardizationResult(standardized=standardized, changes=changes, warnings=warnings)


def _utc_or_none(value: datetime | None) -> datetime | None:
    return to_utc(value) if isinstance(value, datetime) else None
