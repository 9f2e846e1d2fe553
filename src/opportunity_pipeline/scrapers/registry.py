from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from opportunity_pipeline.config import AppConfig, SourceSettings
from opportunity_pipeline.state import PipelineState

from .base import ScraperPlugin


@dataclass(slots=True)
class ScraperContext:
    config: AppConfig
    state: PipelineState


ScraperFactory = Callable[[SourceSettings, ScraperContext], ScraperPlugin]

_KINDS: dict[str, ScraperFactory] = {}


class ScraperRegistrationError(ValueError):
    """Raised when an unknown scraper kind is used."""


def register_scraper(kind: str) -> Callable[[ScraperFactory], ScraperFactory]:
    def decorator(factory: ScraperFactory) -> ScraperFactory:
        _KINDS[kind] = factory
        return factory

    return decorator


def create_scraper(settings: SourceSettings, context: ScraperContext) -> ScraperPlugin:
    factory = _KINDS.get(settings.type)
    if factory is None:
        available = ", ".join(sorted(_KINDS)) or "none"
        raise ScraperRegistrationError(
            f"Unknown scraper kind '{settings.type}'. Registered scraper kinds: {available}"
        )
    return factory(settings, context)


def registered_scraper_kinds() -> list[str]:
    return sorted(_KINDS)


class ScraperRegistry:
    """Lookup table from source id to the plugin that scrapes it."""

    def __init__(self, plugins: dict[str, ScraperPlugin] | None = None) -> None:
        self._plugins: dict[str, ScraperPlugin] = dict(plugins or {})

    @classmethod
    def from_config(cls, config: AppConfig, state: PipelineState) -> ScraperRegistry:
        context = ScraperContext(config=config, state=state)
        return cls({source.id: create_scraper(source, context) for source in config.sources})

    def register(self, source_id: str, plugin: ScraperPlugin) -> None:
        self._plugins[source_id] = plugin

    def unregister(self, source_id: str) -> None:
        self._plugins.pop(source_id, None)

    def get(self, source_id: str) -> ScraperPlugin | None:
        return self._plugins.get(source_id)

    def source_ids(self) -> list[str]:
        return sorted(self._plugins)
