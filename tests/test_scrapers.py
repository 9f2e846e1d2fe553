from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

import pytest

from opportunity_pipeline.config import AppConfig, ConfigError, PartnerApiSettings, SourceSettings
from opportunity_pipeline.gateway.http_client import create_rest_client
from opportunity_pipeline.scrapers import (
    FeedScraper,
    JsonFeedScraper,
    PartnerListingScraper,
    ScraperRegistrationError,
    ScraperRegistry,
    extract_items,
    registered_scraper_kinds,
)
from opportunity_pipeline.state import PipelineState


class _DummyResponse:
    def __init__(self, content: bytes) -> None:
        self.content = content
        self.text = content.decode("utf-8")
        self.status_code = 200

    def raise_for_status(self) -> None:
        return None

    def json(self) -> Any:
        return json.loads(self.content)


class _FakeSession:
    def __init__(self, body: Any) -> None:
        self.body = body
        self.calls: list[dict[str, Any]] = []

    def request(self, method: str, url: str, **kwargs: Any) -> _DummyResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        return _DummyResponse(json.dumps(self.body).encode("utf-8"))


FEED_XML = b"""<?xml version=\"1.0\" encoding=\"UTF-8\"?>
<rss version=\"2.0\">
  <channel>
    <title>Hackathons</title>
    <item>
      <title>  Open   Data Hackathon </title>
      <link>https://Example.com/events/open-data/?utm_source=rss</link>
      <pubDate>Tue, 06 Jan 2026 10:00:00 +0000</pubDate>
      <category>Open Data</category>
      <category>Civic Tech</category>
      <description><![CDATA[
        <p>Two days of civic hacking.</p>
        <p>Deadline: 1 March 2030</p>
        <p>Organizer: Civic Labs</p>
        <p>Mode: hybrid</p>
        <p>Skills: Python, SQL; Mapping</p>
        <p>Prizes: INR 50,000</p>
      ]]></description>
    </item>
    <item>
      <title>Plain listing</title>
      <link>https://example.com/events/plain</link>
      <description>No labels here.</description>
    </item>
  </channel>
</rss>
"""


def _source(source_type: str, **options: Any) -> SourceSettings:
    return SourceSettings(id=f"{source_type}_source", type=source_type, url="https://example.com/feed", options=options)


def test_feed_scraper_maps_labelled_summary_fields(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("requests.get", lambda *args, **kwargs: _DummyResponse(FEED_XML))

    candidates = FeedScraper(_source("rss")).fetch("https://example.com/feed.xml")

    assert len(candidates) == 2
    candidate = candidates[0]
    assert candidate.title == "Open Data Hackathon"
    assert candidate.external_url == "https://example.com/events/open-data"
    assert candidate.source_url == "https://example.com/feed.xml"
    assert candidate.organizer_name == "Civic Labs"
    assert candidate.mode == "hybrid"
    assert candidate.skills == ["Python", "SQL", "Mapping"]
    assert candidate.application_deadline == datetime(2030, 3, 1, tzinfo=timezone.utc)
    assert candidate.created_at == datetime(2026, 1, 6, 10, 0, tzinfo=timezone.utc)
    assert candidate.tags == ["Open Data", "Civic Tech"]
    assert candidate.description.startswith("Two days of civic hacking.")


def test_feed_scraper_applies_source_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("requests.get", lambda *args, **kwargs: _DummyResponse(FEED_XML))
    scraper = FeedScraper(_source("rss", organizer="Example Events", opportunity_type="hackathon"))

    labelled, plain = scraper.fetch("https://example.com/feed.xml")

    assert labelled.organizer_name == "Civic Labs"
    assert labelled.type == "hackathon"
    assert plain.organizer_name == "Example Events"
    assert plain.application_deadline is None
    assert plain.skills == []


def test_json_feed_scraper_uses_items_key(monkeypatch: pytest.MonkeyPatch) -> None:
    body = {
        "data": {
            "listings": [
                {
                    "title": "Data Science Internship",
                    "organizer": {"name": "Acme", "type": "company"},
                    "requiredSkills": ["Python"],
                    "applicationDeadline": "2030-02-01T00:00:00Z",
                    "url": "https://acme.example.com/jobs/1",
                },
                "not a mapping",
            ]
        }
    }
    captured: dict[str, Any] = {}

    def fake_get(url: str, **kwargs: Any) -> _DummyResponse:
        captured["url"] = url
        captured.update(kwargs)
        return _DummyResponse(json.dumps(body).encode("utf-8"))

    monkeypatch.setattr("requests.get", fake_get)

    candidates = JsonFeedScraper(_source("json_feed", items_key="data.listings")).fetch(
        "https://example.com/internships.json"
    )

    assert len(candidates) == 1
    assert candidates[0].organizer_name == "Acme"
    assert candidates[0].organizer_type == "company"
    assert candidates[0].skills == ["Python"]
    assert candidates[0].external_url == "https://acme.example.com/jobs/1"
    assert candidates[0].source_url == "https://example.com/internships.json"
    assert captured["headers"]["Accept"] == "application/json"


def test_partner_listing_scraper_goes_through_client() -> None:
    session = _FakeSession({"opportunities": [{"title": "Global Hack", "url": "https://p.test/1"}]})
    api = PartnerApiSettings(id="devpost", base_url="https://api.partner.test/v1")
    client = create_rest_client(api, PipelineState(), session=session)
    scraper = PartnerListingScraper(_source("partner_api", params={"status": "open"}), client)

    candidates = scraper.fetch("/opportunities")

    assert [candidate.title for candidate in candidates] == ["Global Hack"]
    assert candidates[0].source_url == "https://api.partner.test/v1/opportunities"
    assert session.calls[0]["params"] == {"status": "open"}


def test_extract_items_envelopes() -> None:
    assert extract_items([{"a": 1}]) == [{"a": 1}]
    assert extract_items({"results": [{"a": 1}]}) == [{"a": 1}]
    with pytest.raises(RuntimeError, match="list of items"):
        extract_items({"count": 3})
    with pytest.raises(RuntimeError):
        extract_items({"data": {"rows": []}}, "data.listings")


def test_registry_builds_plugins_from_config() -> None:
    config = AppConfig(
        sources=[
            SourceSettings(id="feed", type="rss", url="https://example.com/feed"),
            SourceSettings(id="json", type="json_feed", url="https://example.com/x.json"),
            SourceSettings(
                id="partner",
                type="partner_api",
                url="/opportunities",
                options={"api_id": "devpost"},
            ),
        ],
        partner_apis=[PartnerApiSettings(id="devpost", base_url="https://api.partner.test")],
    )

    registry = ScraperRegistry.from_config(config, PipelineState())

    assert registry.source_ids() == ["feed", "json", "partner"]
    assert isinstance(registry.get("feed"), FeedScraper)
    assert isinstance(registry.get("partner"), PartnerListingScraper)
    registry.unregister("feed")
    assert registry.get("feed") is None
    assert {"json_feed", "partner_api", "rss"} <= set(registered_scraper_kinds())


def test_registry_rejects_unknown_kinds_and_partner_ids() -> None:
    unknown_kind = AppConfig(sources=[SourceSettings(id="x", type="carrier_pigeon", url="u")])
    unknown_api = AppConfig(
        sources=[SourceSettings(id="p", type="partner_api", url="/o", options={"api_id": "nope"})]
    )

    with pytest.raises(ScraperRegistrationError, match="carrier_pigeon"):
        ScraperRegistry.from_config(unknown_kind, PipelineState())
    with pytest.raises(ConfigError, match="nope"):
        ScraperRegistry.from_config(unknown_api, PipelineState())
