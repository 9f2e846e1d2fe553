from __future__ import annotations

import re
from datetime import datetime
from typing import Any

from opportunity_pipeline.models import FraudDetectionResult
from opportunity_pipeline.utils.datetime_utils import days_between, to_utc, utcnow
from opportunity_pipeline.utils.url_utils import url_host

SUSPICIOUS_KEYWORDS = (
    "guaranteed",
    "easy money",
    "no experience required",
    "work from home guaranteed",
    "instant",
    "urgent",
    "limited time",
    "act now",
    "exclusive opportunity",
    "make money fast",
    "get rich quick",
    "no investment",
    "free money",
)

SUSPICIOUS_DOMAINS = (
    "bit.ly",
    "tinyurl.com",
    "short.link",
    "tiny.cc",
    "ow.ly",
    "blogspot.com",
    "wordpress.com",
    "wix.com",
    "weebly.com",
)

# One crore, the upper bound for a believable prize.
HIGH_VALUE_PRIZE = 10_000_000
MIN_ORGANIZER_NAME_LENGTH = 3
PROLIFIC_ORGANIZER_POSTS = 10
SUSPICION_THRESHOLD = 0.5
MAX_FLAGS_BEFORE_SUSPICIOUS = 2

_PRIZE_NUMBER = re.compile(r"\d[\d,]*")


def max_prize_amount(prizes: list[str]) -> int | None:
    amounts = [
        int(match.replace(",", ""))
        for match in _PRIZE_NUMBER.findall(" ".join(str(prize) for prize in prizes))
        if match.replace(",", "")
    ]
    return max(amounts) if amounts else None


def assess_fraud(
    candidate: Any,
    *,
    organizer_post_count: int = 0,
    now: datetime | None = None,
) -> FraudDetectionResult:
    """Accumulate a risk score from independent heuristics.

    ``organizer_post_count`` is the number of other records the candidate's
    organizer already has in the catalog.
    """
    now = to_utc(now or utcnow())
    flags: list[str] = []
    reasons: list[str] = []
    risk = 0.0

    text = f"{candidate.title or ''} {candidate.description or ''}".lower()
    keyword_hits = [keyword for keyword in SUSPICIOUS_KEYWORDS if keyword in text]
    if keyword_hits:
        flags.append("suspicious_keywords")
        reasons.append(f"Contains suspicious keywords: {', '.join(keyword_hits)}")
        risk += 0.1 * len(keyword_hits)

    top_prize = max_prize_amount(list(candidate.prizes or []))
    if top_prize is not None and top_prize > HIGH_VALUE_PRIZE:
        flags.append("unrealistic_prizes")
        reasons.append("Prize amount seems unrealistic")
        risk += 0.3

    organizer_name = (candidate.organizer_name or "").strip()
    if len(organizer_name) < MIN_ORGANIZER_NAME_LENGTH:
        flags.append("missing_organizer_info")
        reasons.append("Organizer information is incomplete")
        risk += 0.2

    host = url_host(candidate.external_url)
    if host is None:
        flags.append("invalid_url")
        reasons.append("Invalid or malformed URL")
        risk += 0.3
    elif any(host == domain or host.endswith(f".{domain}") for domain in SUSPICIOUS_DOMAINS):
        flags.append("suspicious_url")
        reasons.append("Uses suspicious or shortened URL")
        risk += 0.2

    if candidate.application_deadline is not None:
        days_until_deadline = days_between(now, candidate.application_deadline)
        if days_until_deadline < 1:
            flags.append("urgent_deadline")
            reasons.append("Extremely short application deadline")
            risk += 0.2
        elif days_until_deadline > 365:
            flags.append("distant_deadline")
            reasons.append("Unusually distant application deadline")
            risk += 0.1

    if organizer_post_count > PROLIFIC_ORGANIZER_POSTS:
        flags.append("prolific_organizer")
        reasons.append("Organizer has posted many opportunities")
        risk += 0.1

    risk = round(min(1.0, risk), 2)
    return FraudDetectionResult(
        is_suspicious=risk > SUSPICION_THRESHOLD or len(flags) > MAX_FLAGS_BEFORE_SUSPICIOUS,
        risk_score=risk,
        flags=flags,
        reasons=reasons,
    )
