"""Scraper plugins and the source-id registry."""

from .base import ScraperPlugin, extract_items
from .feed import FeedScraper
from .listing import JsonFeedScraper, PartnerListingScraper
from .registry import (
    ScraperContext,
    ScraperRegistrationError,
    ScraperRegistry,
    create_scraper,
    register_scraper,
    registered_scraper_kinds,
)

__all__ = [
    "FeedScraper",
    "JsonFeedScraper",
    "PartnerListingScraper",
    "ScraperContext",
    "ScraperPlugin",
    "ScraperRegistrationError",
    "ScraperRegistry",
    "create_scraper",
    "extract_items",
    "register_scraper",
    "registered_scraper_kinds",
]
