from __future__ import annotations

import logging

import requests

from opportunity_pipeline import __version__
from opportunity_pipeline.config import ConfigError, SourceSettings
from opportunity_pipeline.gateway.http_client import RestClient, create_rest_client
from opportunity_pipeline.models import RawCandidate

from .base import ScraperPlugin, candidates_from_items, extract_items
from .registry import ScraperContext, register_scraper

logger = logging.getLogger(__name__)


class JsonFeedScraper:
    """Scraper for plain JSON listing endpoints."""

    def __init__(self, settings: SourceSettings) -> None:
        self.source_id = settings.id
        timeout_raw = settings.options.get("timeout_seconds", 30)
        self.timeout_seconds = int(timeout_raw) if timeout_raw is not None else 30
        self.items_key = settings.options.get("items_key")

    def fetch(self, url: str) -> list[RawCandidate]:
        headers = {
            "Accept": "application/json",
            "User-Agent": f"opportunity-pipeline/{__version__}",
        }
        response = requests.get(url, timeout=self.timeout_seconds, headers=headers)
        response.raise_for_status()

        items = extract_items(response.json(), self.items_key)
        logger.debug("Fetched %d listing items from %s", len(items), url)
        return candidates_from_items(items, source_url=url)


class PartnerListingScraper:
    """Scraper for a partner REST API's listing endpoint.

    Requests go through the partner's rate-limited, retrying client, so
    scrapes count against the same window as every other call to that API.
    """

    def __init__(self, settings: SourceSettings, client: RestClient) -> None:
        self.source_id = settings.id
        self.client = client
        self.items_key = settings.options.get("items_key")
        raw_params = settings.options.get("params")
        self.params = dict(raw_params) if isinstance(raw_params, dict) else None

    def fetch(self, url: str) -> list[RawCandidate]:
        payload = self.client.get(url, params=self.params)
        items = extract_items(payload, self.items_key)
        return candidates_from_items(items, source_url=self.client.transport.build_url(url))


@register_scraper("json_feed")
def _build_json_feed_scraper(settings: SourceSettings, context: ScraperContext) -> ScraperPlugin:
    return JsonFeedScraper(settings)


@register_scraper("partner_api")
def _build_partner_listing_scraper(
    settings: SourceSettings,
    context: ScraperContext,
) -> ScraperPlugin:
    api_id = str(settings.options.get("api_id", "")).strip()
    api_settings = context.config.partner_api(api_id)
    if api_settings is None:
        raise ConfigError(f"Source {settings.id} references unknown partner API '{api_id}'")
    return PartnerListingScraper(settings, create_rest_client(api_settings, context.state))
