from __future__ import annotations

from datetime import datetime, timezone

from opportunity_pipeline.models import RawCandidate
from opportunity_pipeline.quality.standardize import (
    standardize,
    standardize_organizer_name,
    standardize_skills,
    standardize_tags,
    standardize_title,
)


def test_title_is_trimmed_cleaned_and_title_cased() -> None:
    assert standardize_title("  build   the FUTURE!!  hackathon @ 2025 ") == "Build The Future Hackathon 2025"
    assert standardize_title("R&D (Phase-2) workshop") == "R&d (phase-2) Workshop"


def test_organizer_suffixes_are_removed_case_insensitively() -> None:
    assert standardize_organizer_name("TechCorp Inc.") == "TechCorp"
    assert standardize_organizer_name("Acme Pvt Ltd") == "Acme"
    assert standardize_organizer_name("Globex LIMITED") == "Globex"
    assert standardize_organizer_name("Initech, LLC") == "Initech"


def test_skill_aliases_map_and_deduplicate() -> None:
    assert standardize_skills(["js", "JavaScript", "ml", "rust", " Rust "]) == [
        "JavaScript",
        "Machine Learning",
        "Rust",
    ]


def test_tags_are_title_cased_deduplicated_and_capped() -> None:
    tags = ["open source", "Open Source"] + [f"tag{number}" for number in range(15)]

    result = standardize_tags(tags)

    assert result[0] == "Open Source"
    assert len(result) == 10
    assert result.count("Open Source") == 1


def test_standardize_logs_one_change_per_altered_field() -> None:
    candidate = RawCandidate(
        title="ai   hackathon",
        organizer_name="TechCorp Inc",
        skills=["py"],
        location="bombay",
        tags=["ai"],
    )

    result = standardize(candidate)

    assert result.standardized.title == "Ai Hackathon"
    assert result.standardized.organizer_name == "TechCorp"
    assert result.standardized.skills == ["Python"]
    assert result.standardized.location == "Mumbai"
    assert result.standardized.tags == ["Ai"]
    assert len(result.changes) == 5
    assert candidate.title == "ai   hackathon"
    assert candidate.skills == ["py"]


def test_standardize_leaves_clean_candidate_unchanged() -> None:
    candidate = RawCandidate(
        title="Ai Hackathon",
        organizer_name="TechCorp",
        skills=["Python"],
        location="Mumbai",
        tags=["Ai"],
    )

    result = standardize(candidate)

    assert result.changes == []
    assert result.warnings == []


def test_standardize_warns_about_inconsistent_dates() -> None:
    candidate = RawCandidate(
        title="Summer Internship",
        application_deadline=datetime(2030, 5, 1, tzinfo=timezone.utc),
        start_date=datetime(2030, 4, 1, tzinfo=timezone.utc),
        end_date=datetime(2030, 3, 1),
    )

    result = standardize(candidate)

    assert result.warnings == [
        "Start date is before application deadline",
        "End date is before start date",
    ]


def test_standardize_never_raises_on_empty_candidate() -> None:
    result = standardize(RawCandidate())

    assert result.standardized.title is None
    assert result.changes == []


def test_standardize_treats_missing_lists_as_empty() -> None:
    candidate = RawCandidate(title="Open Hack Day")
    candidate.skills = None
    candidate.tags = None
    candidate.prizes = None
    candidate.eligibility_criteria = None

    result = standardize(candidate)

    assert result.standardized.skills == []
    assert result.standardized.tags == []
    assert result.standardized.prizes == []
    assert result.standardized.eligibility_criteria == []
    assert result.changes == []
