from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


class ConfigError(ValueError):
    """Raised when configuration is invalid."""


@dataclass(slots=True)
class SourceSettings:
    id: str
    type: str
    url: str
    active: bool = True
    scrape_frequency_hours: float = 24.0
    name: str | None = None
    options: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class RateLimitSettings:
    requests: int = 100
    window_ms: int = 60_000


@dataclass(slots=True)
class RetrySettings:
    max_retries: int = 3
    backoff_ms: int = 1_000


@dataclass(slots=True)
class PartnerApiSettings:
    id: str
    base_url: str
    type: str = "rest"
    api_key: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    rate_limit: RateLimitSettings = field(default_factory=RateLimitSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    timeout_seconds: int = 30


@dataclass(slots=True)
class QualitySettings:
    min_quality_score: float = 0.6
    reject_suspicious: bool = True


@dataclass(slots=True)
class OrchestratorSettings:
    max_workers: int = 4


@dataclass(slots=True)
class SchedulerSettings:
    scrape_interval_minutes: int = 360
    sync_interval_minutes: int = 240
    cleanup_interval_minutes: int = 1440
    health_interval_minutes: int = 5


@dataclass(slots=True)
class StorageSettings:
    type: str = "sqlite"
    path: str = "data/opportunities.sqlite"


@dataclass(slots=True)
class SearchIndexSettings:
    type: str = "memory"
    url: str | None = None
    index_name: str = "opportunities"
    timeout_seconds: int = 15


@dataclass(slots=True)
class WebhookSettings:
    secret_env_var: str = "WEBHOOK_SECRET"


@dataclass(slots=True)
class AppConfig:
    sources: list[SourceSettings]
    partner_apis: list[PartnerApiSettings] = field(default_factory=list)
    quality: QualitySettings = field(default_factory=QualitySettings)
    orchestrator: OrchestratorSettings = field(default_factory=OrchestratorSettings)
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    search_index: SearchIndexSettings = field(default_factory=SearchIndexSettings)
    webhooks: WebhookSettings = field(default_factory=WebhookSettings)
    log_level: str = "INFO"

    def partner_api(self, api_id: str) -> PartnerApiSettings | None:
        for settings in self.partner_apis:
            if settings.id == api_id:
                return settings
        return None


def _as_mapping(value: Any, *, field_name: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{field_name} must be a mapping")
    return value


def _as_bool(value: Any, *, field_name: str) -> bool:
    if isinstance(value, bool):
        return value

    if isinstance(value, int) and value in {0, 1}:
        return bool(value)

    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"true", "1", "yes", "on"}:
            return True
        if normalized in {"false", "0", "no", "off"}:
            return False

    raise ConfigError(f"{field_name} must be a boolean")


def _as_int(value: Any, *, field_name: str, minimum: int | None = None) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{field_name} must be an integer")

    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{field_name} must be an integer") from exc

    if minimum is not None and parsed < minimum:
        raise ConfigError(f"{field_name} must be >= {minimum}")
    return parsed


def _as_float(
    value: Any,
    *,
    field_name: str,
    minimum: float | None = None,
    maximum: float | None = None,
) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"{field_name} must be a number")

    try:
        parsed = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{field_name} must be a number") from exc

    if minimum is not None and parsed < minimum:
        raise ConfigError(f"{field_name} must be >= {minimum}")
    if maximum is not None and parsed > maximum:
        raise ConfigError(f"{field_name} must be <= {maximum}")
    return parsed


def _resolve_relative_path(config_path: Path, raw_path: str) -> str:
    candidate = Path(raw_path).expanduser()
    if candidate.is_absolute():
        return str(candidate)
    return str((config_path.parent / candidate).resolve())


def _parse_sources(raw_sources: Any) -> list[SourceSettings]:
    if not isinstance(raw_sources, list) or not raw_sources:
        raise ConfigError("Config must define at least one source")

    sources: list[SourceSettings] = []
    seen_ids: set[str] = set()
    for index, source in enumerate(raw_sources, start=1):
        if not isinstance(source, dict):
            raise ConfigError(f"Source entry #{index} must be a mapping")

        source_id = str(source.get("id", "")).strip()
        source_type = str(source.get("type", "")).strip()
        source_url = str(source.get("url", "")).strip()
        if not source_id or not source_type or not source_url:
            raise ConfigError(f"Source entry #{index} missing one of: id, type, url")
        if source_id in seen_ids:
            raise ConfigError(f"Duplicate source id: {source_id}")
        seen_ids.add(source_id)

        options = {
            key: value
            for key, value in source.items()
            if key not in {"id", "type", "url", "active", "scrape_frequency_hours", "name"}
        }

        sources.append(
            SourceSettings(
                id=source_id,
                type=source_type,
                url=source_url,
                active=_as_bool(
                    source.get("active", True),
                    field_name=f"sources[{source_id}].active",
                ),
                scrape_frequency_hours=_as_float(
                    source.get("scrape_frequency_hours", 24),
                    field_name=f"sources[{source_id}].scrape_frequency_hours",
                    minimum=0,
                ),
                name=str(source["name"]).strip() if source.get("name") else None,
                options=options,
            )
        )
    return sources


def _parse_partner_apis(raw_apis: Any) -> list[PartnerApiSettings]:
    if raw_apis is None:
        return []
    if not isinstance(raw_apis, list):
        raise ConfigError("partner_apis must be a list")

    apis: list[PartnerApiSettings] = []
    for index, raw_api in enumerate(raw_apis, start=1):
        if not isinstance(raw_api, dict):
            raise ConfigError(f"Partner API entry #{index} must be a mapping")

        api_id = str(raw_api.get("id", "")).strip()
        base_url = str(raw_api.get("base_url", "")).strip()
        if not api_id or not base_url:
            raise ConfigError(f"Partner API entry #{index} missing one of: id, base_url")

        api_type = str(raw_api.get("type", "rest")).strip().lower() or "rest"
        if api_type not in {"rest", "graphql"}:
            raise ConfigError(f"partner_apis[{api_id}].type must be 'rest' or 'graphql'")

        api_key = None
        api_key_env_var = str(raw_api.get("api_key_env_var", "")).strip()
        if api_key_env_var:
            api_key = os.getenv(api_key_env_var, "").strip() or None

        raw_headers = _as_mapping(raw_api.get("headers"), field_name=f"partner_apis[{api_id}].headers")
        raw_rate_limit = _as_mapping(
            raw_api.get("rate_limit"), field_name=f"partner_apis[{api_id}].rate_limit"
        )
        raw_retry = _as_mapping(raw_api.get("retry"), field_name=f"partner_apis[{api_id}].retry")

        apis.append(
            PartnerApiSettings(
                id=api_id,
                base_url=base_url,
                type=api_type,
                api_key=api_key,
                headers={str(key): str(value) for key, value in raw_headers.items()},
                rate_limit=RateLimitSettings(
                    requests=_as_int(
                        raw_rate_limit.get("requests", 100),
                        field_name=f"partner_apis[{api_id}].rate_limit.requests",
                        minimum=1,
                    ),
                    window_ms=_as_int(
                        raw_rate_limit.get("window_ms", 60_000),
                        field_name=f"partner_apis[{api_id}].rate_limit.window_ms",
                        minimum=1,
                    ),
                ),
                retry=RetrySettings(
                    max_retries=_as_int(
                        raw_retry.get("max_retries", 3),
                        field_name=f"partner_apis[{api_id}].retry.max_retries",
                        minimum=0,
                    ),
                    backoff_ms=_as_int(
                        raw_retry.get("backoff_ms", 1_000),
                        field_name=f"partner_apis[{api_id}].retry.backoff_ms",
                        minimum=0,
                    ),
                ),
                timeout_seconds=_as_int(
                    raw_api.get("timeout_seconds", 30),
                    field_name=f"partner_apis[{api_id}].timeout_seconds",
                    minimum=1,
                ),
            )
        )
    return apis


def load_config(path: str | Path) -> AppConfig:
    config_path = Path(path).expanduser().resolve()
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    with config_path.open("r", encoding="utf-8") as handle:
        parsed = yaml.safe_load(handle) or {}

    if not isinstance(parsed, dict):
        raise ConfigError("Config root must be a mapping")

    sources = _parse_sources(parsed.get("sources", []))
    partner_apis = _parse_partner_apis(parsed.get("partner_apis"))

    for source in sources:
        api_id = source.options.get("api_id")
        if source.type == "partner_api" and not any(api.id == api_id for api in partner_apis):
            raise ConfigError(
                f"Source {source.id} references unknown partner API '{api_id}'"
            )

    raw_quality = _as_mapping(parsed.get("quality"), field_name="quality")
    quality_settings = QualitySettings(
        min_quality_score=_as_float(
            raw_quality.get("min_quality_score", 0.6),
            field_name="quality.min_quality_score",
            minimum=0,
            maximum=1,
        ),
        reject_suspicious=_as_bool(
            raw_quality.get("reject_suspicious", True),
            field_name="quality.reject_suspicious",
        ),
    )

    raw_orchestrator = _as_mapping(parsed.get("orchestrator"), field_name="orchestrator")
    orchestrator_settings = OrchestratorSettings(
        max_workers=_as_int(
            raw_orchestrator.get("max_workers", 4),
            field_name="orchestrator.max_workers",
            minimum=1,
        ),
    )

    raw_scheduler = _as_mapping(parsed.get("scheduler"), field_name="scheduler")
    scheduler_settings = SchedulerSettings(
        **{
            name: _as_int(
                raw_scheduler.get(name, default),
                field_name=f"scheduler.{name}",
                minimum=1,
            )
            for name, default in (
                ("scrape_interval_minutes", 360),
                ("sync_interval_minutes", 240),
                ("cleanup_interval_minutes", 1440),
                ("health_interval_minutes", 5),
            )
        }
    )

    raw_storage = _as_mapping(parsed.get("storage"), field_name="storage")
    storage_path = (
        str(raw_storage.get("path", "data/opportunities.sqlite")).strip()
        or "data/opportunities.sqlite"
    )
    storage_settings = StorageSettings(
        type=str(raw_storage.get("type", "sqlite")).strip() or "sqlite",
        path=_resolve_relative_path(config_path, storage_path),
    )

    raw_index = _as_mapping(parsed.get("search_index"), field_name="search_index")
    index_type = str(raw_index.get("type", "memory")).strip() or "memory"
    index_url = str(raw_index.get("url", "")).strip() or None
    if index_type == "http" and not index_url:
        raise ConfigError("search_index.url is required when search_index.type is 'http'")
    search_index_settings = SearchIndexSettings(
        type=index_type,
        url=index_url,
        index_name=str(raw_index.get("index_name", "opportunities")).strip() or "opportunities",
        timeout_seconds=_as_int(
            raw_index.get("timeout_seconds", 15),
            field_name="search_index.timeout_seconds",
            minimum=1,
        ),
    )

    raw_webhooks = _as_mapping(parsed.get("webhooks"), field_name="webhooks")
    webhook_settings = WebhookSettings(
        secret_env_var=str(raw_webhooks.get("secret_env_var", "WEBHOOK_SECRET")).strip()
        or "WEBHOOK_SECRET"
    )

    return AppConfig(
        sources=sources,
        partner_apis=partner_apis,
        quality=quality_settings,
        orchestrator=orchestrator_settings,
        scheduler=scheduler_settings,
        storage=storage_settings,
        search_index=search_index_settings,
        webhooks=webhook_settings,
        log_level=str(parsed.get("log_level", "INFO")).upper(),
    )
