from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from opportunity_pipeline.index.http_index import (
    HttpSearchIndex,
    build_bulk_body,
    parse_bulk_response,
)
from opportunity_pipeline.models import Opportunity


class _DummyResponse:
    def __init__(self, status_code: int = 200, payload: dict | None = None, text: str = "") -> None:
        self.status_code = status_code
        self._payload = payload or {}
        self.text = text

    def json(self) -> dict:
        return self._payload


def _opportunity(opportunity_id: str) -> Opportunity:
    return Opportunity(
        id=opportunity_id,
        source_id="feed",
        title=f"Event {opportunity_id}",
        external_url=f"https://example.com/{opportunity_id}",
        application_deadline=datetime(2030, 1, 1, tzinfo=timezone.utc),
    )


def test_build_bulk_body_pairs_actions_with_documents() -> None:
    body = build_bulk_body("opportunities", [_opportunity("a"), _opportunity("b")])

    lines = body.splitlines()
    assert body.endswith("\n")
    assert len(lines) == 4
    assert json.loads(lines[0]) == {"index": {"_index": "opportunities", "_id": "a"}}
    assert json.loads(lines[1])["title"] == "Event a"
    assert json.loads(lines[3])["externalUrl"] == "https://example.com/b"


def test_parse_bulk_response_collects_item_errors() -> None:
    payload = {
        "errors": True,
        "items": [
            {"index": {"_id": "a", "status": 201}},
            {"index": {"_id": "b", "error": {"reason": "mapper_parsing_exception"}}},
        ],
    }

    result = parse_bulk_response(payload, submitted=2)

    assert result.indexed_count == 1
    assert result.errors == ["failed to index b: mapper_parsing_exception"]


def test_parse_bulk_response_without_items() -> None:
    assert parse_bulk_response({"errors": False}, submitted=3).indexed_count == 3
    assert parse_bulk_response({"errors": True}, submitted=3).indexed_count == 0


def test_bulk_index_posts_ndjson(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict = {}

    def fake_post(url: str, **kwargs):
        captured["url"] = url
        captured.update(kwargs)
        return _DummyResponse(payload={"items": [{"index": {"_id": "a"}}]})

    monkeypatch.setattr("requests.post", fake_post)
    index = HttpSearchIndex("http://search.local:9200/", index_name="opps")

    result = index.bulk_index([_opportunity("a")])

    assert result.indexed_count == 1
    assert captured["url"] == "http://search.local:9200/_bulk"
    assert captured["headers"] == {"Content-Type": "application/x-ndjson"}
    assert HttpSearchIndex("http://search.local").bulk_index([]).indexed_count == 0


def test_bulk_index_reports_http_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        "requests.post",
        lambda url, **kwargs: _DummyResponse(status_code=503, text="unavailable"),
    )

    result = HttpSearchIndex("http://search.local").bulk_index([_opportunity("a")])

    assert result.indexed_count == 0
    assert result.errors == ["bulk index returned 503: unavailable"]


def test_index_raises_on_error_status(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        "requests.put",
        lambda url, **kwargs: _DummyResponse(status_code=400, text="bad document"),
    )

    with pytest.raises(RuntimeError, match="400"):
        HttpSearchIndex("http://search.local").index(_opportunity("a"))


def test_remove_ignores_missing_documents(monkeypatch: pytest.MonkeyPatch) -> None:
    urls: list[str] = []

    def fake_delete(url: str, **kwargs):
        urls.append(url)
        return _DummyResponse(status_code=404)

    monkeypatch.setattr("requests.delete", fake_delete)

    HttpSearchIndex("http://search.local", index_name="opps").remove("gone")

    assert urls == ["http://search.local/opps/_doc/gone"]
