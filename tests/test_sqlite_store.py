from __future__ import annotations

from datetime import datetime, timedelta, timezone

from opportunity_pipeline.models import Opportunity, Source

DEADLINE = datetime(2030, 3, 1, 18, 30, tzinfo=timezone.utc)


def _opportunity(opportunity_id: str = "opp_1", **overrides: object) -> Opportunity:
    base = Opportunity(
        id=opportunity_id,
        source_id="hackathons_rss",
        title="Open Data Hackathon",
        description="Two days of civic hacking.",
        type="hackathon",
        organizer_name="Civic Labs",
        skills=["Python"],
        tags=["Open Data"],
        application_deadline=DEADLINE,
        external_url="https://example.com/open-data",
        created_at=datetime(2030, 1, 1, tzinfo=timezone.utc),
        updated_at=datetime(2030, 1, 1, tzinfo=timezone.utc),
    )
    for key, value in overrides.items():
        setattr(base, key, value)
    return base


def test_init_db_is_idempotent(store) -> None:
    store.init_db()
    assert store.list_sources() == []


def test_natural_key_upsert_creates_then_refreshes(store) -> None:
    stored, created = store.upsert_by_natural_key(_opportunity())
    assert created is True
    assert stored.id == "opp_1"

    refreshed, created = store.upsert_by_natural_key(
        _opportunity("opp_other", description="Now three days.", skills=["Python", "Sql"])
    )

    assert created is False
    assert refreshed.id == "opp_1"
    assert refreshed.description == "Now three days."
    assert refreshed.skills == ["Python", "Sql"]
    assert refreshed.created_at == datetime(2030, 1, 1, tzinfo=timezone.utc)
    assert store.find_by_id("opp_other") is None


def test_external_url_upsert_matches_on_url_only(store) -> None:
    store.upsert_by_external_url(_opportunity())

    updated, created = store.upsert_by_external_url(
        _opportunity("opp_2", title="Open Data Hackathon 2030")
    )

    assert created is False
    assert updated.id == "opp_1"
    assert updated.title == "Open Data Hackathon 2030"


def test_find_by_natural_key_round_trips_fields(store) -> None:
    store.upsert_by_natural_key(_opportunity())

    found = store.find_by_natural_key("Open Data Hackathon", "Civic Labs", DEADLINE)

    assert found is not None
    assert found.application_deadline == DEADLINE
    assert found.tags == ["Open Data"]
    assert found.is_active is True
    assert store.find_by_natural_key("Open Data Hackathon", None, DEADLINE) is None


def test_find_by_natural_key_can_skip_inactive_records(store) -> None:
    store.upsert_by_natural_key(_opportunity())
    store.deactivate("opp_1")

    assert store.find_by_natural_key("Open Data Hackathon", "Civic Labs", DEADLINE).id == "opp_1"
    assert (
        store.find_by_natural_key("Open Data Hackathon", "Civic Labs", DEADLINE, active_only=True)
        is None
    )


def test_natural_key_upsert_never_revives_deactivated_records(store) -> None:
    store.upsert_by_natural_key(_opportunity())
    store.deactivate("opp_1")

    stored, created = store.upsert_by_natural_key(_opportunity("opp_2"))

    assert created is True
    assert stored.id == "opp_2"
    assert stored.is_active is True
    assert store.find_by_id("opp_1").is_active is False


def test_external_url_upsert_never_revives_deactivated_records(store) -> None:
    store.upsert_by_external_url(_opportunity())
    store.deactivate("opp_1")

    stored, created = store.upsert_by_external_url(_opportunity("opp_2", description="Relisted."))

    assert created is True
    assert stored.id == "opp_2"
    assert store.find_by_id("opp_1").is_active is False
    assert store.find_by_id("opp_1").description == "Two days of civic hacking."


def test_find_similar_prefilters_candidates(store) -> None:
    store.upsert_by_natural_key(_opportunity())
    store.upsert_by_natural_key(
        _opportunity(
            "opp_same_day",
            title="Unrelated Workshop",
            application_deadline=DEADLINE + timedelta(hours=2),
            external_url="https://example.com/workshop",
        )
    )
    store.upsert_by_natural_key(
        _opportunity(
            "opp_elsewhere",
            title="Something Else",
            organizer_name="Other Org",
            application_deadline=DEADLINE + timedelta(days=40),
            external_url="https://example.com/else",
        )
    )

    by_title = store.find_similar(
        title="data hackathon",
        organizer_name="Civic Labs",
        application_deadline=None,
        external_url=None,
    )
    by_day = store.find_similar(
        title=None,
        organizer_name="Civic Labs",
        application_deadline=DEADLINE,
        external_url=None,
    )
    by_url = store.find_similar(
        title=None,
        organizer_name=None,
        application_deadline=None,
        external_url="https://example.com/else",
    )

    assert [item.id for item in by_title] == ["opp_1"]
    assert sorted(item.id for item in by_day) == ["opp_1", "opp_same_day"]
    assert [item.id for item in by_url] == ["opp_elsewhere"]


def test_find_similar_skips_excluded_and_inactive(store) -> None:
    store.upsert_by_natural_key(_opportunity())
    store.upsert_by_natural_key(_opportunity("opp_2", title="Open Data Hackathon II"))
    store.deactivate("opp_2")

    matches = store.find_similar(
        title="Open Data",
        organizer_name="Civic Labs",
        application_deadline=DEADLINE,
        external_url="https://example.com/open-data",
        exclude_id="opp_1",
    )

    assert matches == []
    assert (
        store.find_similar(
            title=None, organizer_name=None, application_deadline=None, external_url=None
        )
        == []
    )


def test_deactivate_reports_missing_ids(store) -> None:
    store.upsert_by_natural_key(_opportunity())

    assert store.deactivate("opp_1") is True
    assert store.deactivate("missing") is False
    assert store.find_by_id("opp_1").is_active is False


def test_deactivate_expired_returns_ids(store) -> None:
    store.upsert_by_natural_key(_opportunity())
    store.upsert_by_natural_key(
        _opportunity(
            "opp_old",
            title="Past Event",
            application_deadline=DEADLINE - timedelta(days=60),
        )
    )

    expired = store.deactivate_expired(DEADLINE - timedelta(days=1))

    assert expired == ["opp_old"]
    assert store.find_by_id("opp_old").is_active is False
    assert store.deactivate_expired(DEADLINE - timedelta(days=1)) == []


def test_count_by_organizer(store) -> None:
    store.upsert_by_natural_key(_opportunity())
    store.upsert_by_natural_key(_opportunity("opp_2", title="Second Event"))
    store.upsert_by_natural_key(_opportunity("opp_3", title="Third", organizer_name="Other"))

    assert store.count_by_organizer("Civic Labs") == 2
    assert store.count_by_organizer("Civic Labs", exclude_id="opp_2") == 1
    assert store.count_by_organizer("Nobody") == 0


def test_source_upsert_keeps_last_scraped_at(store) -> None:
    scraped_at = datetime(2030, 1, 2, 8, 0, tzinfo=timezone.utc)
    store.upsert_source(Source(id="feed", url="https://example.com/rss"))
    store.mark_source_scraped("feed", scraped_at)

    store.upsert_source(
        Source(id="feed", url="https://example.com/rss2", is_active=False, scrape_frequency_hours=6)
    )
    source = store.get_source("feed")

    assert source.url == "https://example.com/rss2"
    assert source.is_active is False
    assert source.scrape_frequency_hours == 6
    assert source.last_scraped_at == scraped_at
    assert store.list_sources(active_only=True) == []
    assert store.get_source("missing") is None


def test_deactivate_sources_except_keeps_configured_ids(store) -> None:
    for source_id in ("alpha", "beta", "gamma"):
        store.upsert_source(Source(id=source_id, url=f"https://example.com/{source_id}", kind="rss"))

    assert store.deactivate_sources_except({"beta"}) == ["alpha", "gamma"]
    assert [source.id for source in store.list_sources(active_only=True)] == ["beta"]
    assert store.deactivate_sources_except({"beta"}) == []
    assert store.deactivate_sources_except(set()) == ["beta"]
