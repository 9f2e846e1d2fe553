from __future__ import annotations

from typing import Any, Protocol

from opportunity_pipeline.models import RawCandidate

_DEFAULT_ITEM_KEYS = ("opportunities", "items", "data", "results")


class ScraperPlugin(Protocol):
    def fetch(self, url: str) -> list[RawCandidate]:
        """Fetch raw candidates from the given source URL."""


def extract_items(payload: Any, items_key: str | None = None) -> list[dict[str, Any]]:
    """Find the list of listing mappings inside a decoded JSON body.

    ``items_key`` may be a dotted path (``"data.listings"``). Without one, a
    top-level list is used as is, otherwise the first list found under one of
    the common envelope keys.
    """
    if items_key:
        for part in items_key.split("."):
            payload = payload.get(part) if isinstance(payload, dict) else None
    elif isinstance(payload, dict):
        for key in _DEFAULT_ITEM_KEYS:
            if isinstance(payload.get(key), list):
                payload = payload[key]
                break

    if not isinstance(payload, list):
        raise RuntimeError("Listing payload does not contain a list of items")
    return [item for item in payload if isinstance(item, dict)]


def candidates_from_items(items: list[dict[str, Any]], *, source_url: str) -> list[RawCandidate]:
    candidates: list[RawCandidate] = []
    for item in items:
        candidate = RawCandidate.from_mapping(item)
        if candidate.source_url is None:
            candidate.source_url = source_url
        candidates.append(candidate)
    return candidates
