from __future__ import annotations

from pathlib import Path

import pytest

from opportunity_pipeline.config import ConfigError, load_config


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_load_config_reads_sources_and_partner_apis(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DEVPOST_API_KEY", "  token-123 ")
    path = _write(
        tmp_path,
        """
log_level: debug
storage:
  path: db/opps.sqlite
quality:
  min_quality_score: 0.7
scheduler:
  sync_interval_minutes: 30
partner_apis:
  - id: devpost
    base_url: https://api.partner.test/v1
    api_key_env_var: DEVPOST_API_KEY
    rate_limit:
      requests: 10
sources:
  - id: feed
    type: rss
    url: https://example.com/feed.xml
    scrape_frequency_hours: 6
    organizer: Civic Labs
  - id: partner
    type: partner_api
    api_id: devpost
    url: /opportunities
""",
    )

    config = load_config(path)

    assert [source.id for source in config.sources] == ["feed", "partner"]
    assert config.sources[0].scrape_frequency_hours == 6
    assert config.sources[0].options == {"organizer": "Civic Labs"}
    assert config.partner_api("devpost").api_key == "token-123"
    assert config.partner_api("devpost").rate_limit.requests == 10
    assert config.partner_api("devpost").rate_limit.window_ms == 60_000
    assert config.partner_api("missing") is None
    assert config.quality.min_quality_score == 0.7
    assert config.scheduler.sync_interval_minutes == 30
    assert config.scheduler.cleanup_interval_minutes == 1440
    assert config.storage.path == str((tmp_path / "db" / "opps.sqlite").resolve())
    assert config.search_index.type == "memory"
    assert config.log_level == "DEBUG"


def test_missing_config_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "absent.yaml")


def test_duplicate_source_ids_are_rejected(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        """
sources:
  - {id: feed, type: rss, url: https://example.com/a.xml}
  - {id: feed, type: rss, url: https://example.com/b.xml}
""",
    )

    with pytest.raises(ConfigError, match="Duplicate source id: feed"):
        load_config(path)


def test_partner_source_needs_known_api(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        """
sources:
  - {id: partner, type: partner_api, api_id: nowhere, url: /items}
""",
    )

    with pytest.raises(ConfigError, match="unknown partner API 'nowhere'"):
        load_config(path)


def test_http_index_requires_url(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        """
search_index:
  type: http
sources:
  - {id: feed, type: rss, url: https://example.com/a.xml}
""",
    )

    with pytest.raises(ConfigError, match="search_index.url"):
        load_config(path)


@pytest.mark.parametrize(
    ("snippet", "message"),
    [
        ("partner_apis:\n  - {id: p, base_url: https://p.test, type: soap}\n", "rest' or 'graphql"),
        ("quality:\n  min_quality_score: 1.5\n", "quality.min_quality_score"),
        ("orchestrator:\n  max_workers: 0\n", "orchestrator.max_workers"),
    ],
)
def test_invalid_values_are_rejected(tmp_path: Path, snippet: str, message: str) -> None:
    path = _write(
        tmp_path,
        snippet + "sources:\n  - {id: feed, type: rss, url: https://example.com/a.xml}\n",
    )

    with pytest.raises(ConfigError, match=message):
        load_config(path)


def test_sources_are_required(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="at least one source"):
        load_config(_write(tmp_path, "log_level: INFO\n"))
