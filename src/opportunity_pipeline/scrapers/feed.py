from __future__ import annotations

import html as html_lib
import logging
import re
import time
from typing import Any

import feedparser
import requests

from opportunity_pipeline import __version__
from opportunity_pipeline.config import SourceSettings
from opportunity_pipeline.models import RawCandidate
from opportunity_pipeline.utils.datetime_utils import parse_datetime_utc
from opportunity_pipeline.utils.url_utils import canonicalize_url

from .base import ScraperPlugin
from .registry import ScraperContext, register_scraper

logger = logging.getLogger(__name__)

_BREAK_TAGS = re.compile(r"</?(?:br|p|li|div|tr|h\d|ul|ol|table)[^>]*>", re.IGNORECASE)
_HTML_TAGS = re.compile(r"<[^>]+>")
_MULTISPACE = re.compile(r"\s+")

_FIELD_PREFIXES: tuple[tuple[str, str], ...] = (
    ("application deadline", "deadline"),
    ("deadline", "deadline"),
    ("closing date", "deadline"),
    ("organizer", "organizer"),
    ("organiser", "organizer"),
    ("hosted by", "organizer"),
    ("type", "type"),
    ("mode", "mode"),
    ("location", "location"),
    ("prize", "prizes"),
    ("skills", "skills"),
    ("stipend", "stipend"),
    ("starts", "start_date"),
    ("start date", "start_date"),
    ("ends", "end_date"),
    ("end date", "end_date"),
)


class FeedScraper:
    """RSS/Atom feed scraper.

    Entry title, link, summary and categories map directly. Labelled lines in
    the summary (``Deadline: 1 March 2025``, ``Organizer: TechCorp``) fill the
    remaining fields; the ``organizer`` and ``type`` source options supply
    defaults for feeds that never carry them.
    """

    def __init__(self, settings: SourceSettings) -> None:
        self.source_id = settings.id
        timeout_raw = settings.options.get("timeout_seconds", 30)
        self.timeout_seconds = int(timeout_raw) if timeout_raw is not None else 30
        self.default_organizer = _optional_text(settings.options.get("organizer"))
        self.default_type = _optional_text(settings.options.get("opportunity_type"))

    def fetch(self, url: str) -> list[RawCandidate]:
        headers = {"User-Agent": f"opportunity-pipeline/{__version__}"}
        response = requests.get(url, timeout=self.timeout_seconds, headers=headers)
        response.raise_for_status()

        parsed = feedparser.parse(response.content)
        if getattr(parsed, "bozo", False):
            logger.warning("Feed parsing bozo exception for %s: %s", url, parsed.bozo_exception)

        return [self._entry_to_candidate(entry, url) for entry in parsed.entries]

    def _entry_to_candidate(self, entry: Any, feed_url: str) -> RawCandidate:
        title = _normalize_whitespace(str(entry.get("title", "")))
        link = canonicalize_url(str(entry.get("link", "")).strip())

        summary_html = entry.get("summary") or entry.get("description") or ""
        summary = _html_to_text(str(summary_html))
        fields = _extract_labelled_fields(summary)

        published_at = (
            parse_datetime_utc(entry.get("published"))
            or parse_datetime_utc(entry.get("updated"))
            or parse_datetime_utc(entry.get("published_parsed"))
            or parse_datetime_utc(entry.get("updated_parsed"))
        )

        return RawCandidate(
            title=title or None,
            description=summary or None,
            type=fields.get("type") or self.default_type,
            organizer_name=fields.get("organizer") or _author(entry) or self.default_organizer,
            skills=_split_list(fields.get("skills")),
            mode=fields.get("mode"),
            location=fields.get("location"),
            stipend=fields.get("stipend"),
            prizes=_split_list(fields.get("prizes")),
            application_deadline=parse_datetime_utc(fields.get("deadline")),
            start_date=parse_datetime_utc(fields.get("start_date")),
            end_date=parse_datetime_utc(fields.get("end_date")),
            external_url=link or None,
            source_url=feed_url,
            tags=_extract_tags(entry),
            created_at=published_at,
            raw=_to_serializable_dict(entry),
        )


def _extract_labelled_fields(summary: str) -> dict[str, str]:
    fields: dict[str, str] = {}
    for line in summary.splitlines():
        normalized_line = _normalize_whitespace(line)
        if ":" not in normalized_line:
            continue

        label, value = (part.strip() for part in normalized_line.split(":", 1))
        lowered = label.lower()
        for prefix, name in _FIELD_PREFIXES:
            if lowered.startswith(prefix) and value and name not in fields:
                fields[name] = value
                break
    return fields


def _extract_tags(entry: Any) -> list[str]:
    tags = entry.get("tags")
    if not isinstance(tags, list):
        return []

    terms: list[str] = []
    for tag in tags:
        if isinstance(tag, dict):
            value = str(tag.get("term", "")).strip()
            if value:
                terms.append(value)
    return terms


def _author(entry: Any) -> str | None:
    author = entry.get("author")
    if isinstance(author, str) and author.strip():
        return _normalize_whitespace(author)
    return None


def _split_list(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in re.split(r"[,;]", value) if part.strip()]


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _html_to_text(value: str) -> str:
    with_breaks = _BREAK_TAGS.sub("\n", value)
    without_tags = _HTML_TAGS.sub(" ", with_breaks)
    unescaped = html_lib.unescape(without_tags)

    cleaned_lines = []
    for line in unescaped.splitlines():
        normalized = _normalize_whitespace(line)
        if normalized:
            cleaned_lines.append(normalized)
    return "\n".join(cleaned_lines)


def _normalize_whitespace(value: str) -> str:
    return _MULTISPACE.sub(" ", value).strip()


def _to_serializable_dict(value: Any) -> dict[str, Any]:
    serialized = _to_serializable(value)
    if isinstance(serialized, dict):
        return serialized
    return {"value": serialized}


def _to_serializable(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, dict):
        return {str(key): _to_serializable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_serializable(item) for item in value]
    if isinstance(value, time.struct_time):
        return list(value)
    return str(value)


@register_scraper("rss")
def _build_feed_scraper(settings: SourceSettings, context: ScraperContext) -> ScraperPlugin:
    return FeedScraper(settings)
