"""Standardization, de-duplication, scoring and fraud screening."""

from .engine import (
    CandidateRejectedError,
    OpportunityNotFoundError,
    QualityEngine,
    QualityEngineError,
    merge_records,
)
from .fraud import assess_fraud
from .scoring import calculate_quality_score
from .similarity import best_duplicate_match, string_similarity
from .standardize import standardize
from .validation import CandidateValidationError, validate_candidate

__all__ = [
    "CandidateRejectedError",
    "CandidateValidationError",
    "OpportunityNotFoundError",
    "QualityEngine",
    "QualityEngineError",
    "assess_fraud",
    "best_duplicate_match",
    "calculate_quality_score",
    "merge_records",
    "standardize",
    "string_similarity",
    "validate_candidate",
]
