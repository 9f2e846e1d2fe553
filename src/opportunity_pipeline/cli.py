from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import threading
from dataclasses import dataclass
from pathlib import Path

from opportunity_pipeline.config import AppConfig, ConfigError, load_config
from opportunity_pipeline.gateway.scheduler import build_default_scheduler
from opportunity_pipeline.gateway.sync import SyncGateway
from opportunity_pipeline.gateway.webhooks import WebhookProcessor, verify_signature
from opportunity_pipeline.index import HttpSearchIndex, InMemorySearchIndex, SearchIndex
from opportunity_pipeline.logging_config import setup_logging
from opportunity_pipeline.models import JobStatus, ScrapingJob, Source
from opportunity_pipeline.orchestrator import JobOrchestrator, JobStartError
from opportunity_pipeline.quality import OpportunityNotFoundError, QualityEngine, QualityEngineError
from opportunity_pipeline.scrapers import ScraperRegistrationError, ScraperRegistry
from opportunity_pipeline.state import PipelineState
from opportunity_pipeline.store import SQLiteStore
from opportunity_pipeline.utils.datetime_utils import format_datetime

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Pipeline:
    store: SQLiteStore
    index: SearchIndex
    state: PipelineState
    engine: QualityEngine
    orchestrator: JobOrchestrator
    gateway: SyncGateway
    webhooks: WebhookProcessor


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="opportunity-pipeline",
        description="Ingest opportunity listings through the quality gate into the catalog.",
    )
    parser.add_argument(
        "-c",
        "--config",
        default="config.yaml",
        help="Path to config YAML file (default: config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        help="Override config log level (e.g. INFO, DEBUG)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("init-db", help="Initialize SQLite schema")

    scrape = subparsers.add_parser("scrape", help="Run one scraping job and wait for it")
    scrape.add_argument("source_id", help="Configured source id")

    subparsers.add_parser("schedule", help="Scrape every source whose frequency has elapsed")
    subparsers.add_parser("sync", help="Run the scheduled partner sync once")
    subparsers.add_parser("cleanup", help="Deactivate opportunities past their deadline")

    merge = subparsers.add_parser("merge", help="Merge a duplicate opportunity into a primary one")
    merge.add_argument("primary_id")
    merge.add_argument("duplicate_id")

    webhook = subparsers.add_parser("webhook", help="Process webhook payloads from a JSON file")
    webhook.add_argument("file", help="JSON file holding one payload or a list of payloads")
    webhook.add_argument("--signature", help="Hex HMAC-SHA256 signature of the file body")

    subparsers.add_parser("health", help="Check source and partner API health")
    subparsers.add_parser("serve", help="Run the periodic scheduler until interrupted")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        app_config = load_config(args.config)
        store = _build_store(app_config)
        index = _build_index(app_config)
    except ConfigError as exc:
        print(f"Config error: {exc}", file=sys.stderr)
        return 2

    log_level = args.log_level or app_config.log_level
    setup_logging(log_level)

    if args.command == "init-db":
        store.init_db()
        logger.info("Initialized SQLite database at %s", app_config.storage.path)
        return 0

    store.init_db()
    try:
        pipeline = build_pipeline(app_config, store=store, index=index)
    except (ConfigError, ScraperRegistrationError) as exc:
        print(f"Config error: {exc}", file=sys.stderr)
        return 2

    try:
        if args.command == "scrape":
            return _run_scrape(pipeline, args.source_id)
        if args.command == "schedule":
            return _wait_for_jobs(pipeline, pipeline.orchestrator.schedule_regular_scraping())
        if args.command == "sync":
            pipeline.gateway.execute_scheduled_sync()
            return _wait_for_jobs(pipeline, pipeline.orchestrator.get_active_jobs())
        if args.command == "cleanup":
            return _run_cleanup(pipeline)
        if args.command == "merge":
            return _run_merge(pipeline, args.primary_id, args.duplicate_id)
        if args.command == "webhook":
            return _run_webhook(pipeline, app_config, Path(args.file), args.signature)
        if args.command == "health":
            return _run_health(pipeline)
        if args.command == "serve":
            return _run_serve(pipeline, app_config)
    finally:
        pipeline.orchestrator.shutdown(wait=True)

    parser.error(f"Unknown command {args.command}")
    return 2


def build_pipeline(
    app_config: AppConfig,
    *,
    store: SQLiteStore,
    index: SearchIndex,
) -> Pipeline:
    _sync_sources(store, app_config)

    state = PipelineState()
    engine = QualityEngine(
        store=store,
        index=index,
        min_quality_score=app_config.quality.min_quality_score,
        reject_suspicious=app_config.quality.reject_suspicious,
    )
    orchestrator = JobOrchestrator(
        store=store,
        index=index,
        engine=engine,
        scrapers=ScraperRegistry.from_config(app_config, state),
        state=state,
        max_workers=app_config.orchestrator.max_workers,
    )
    gateway = SyncGateway(
        store=store,
        orchestrator=orchestrator,
        state=state,
        partner_apis=app_config.partner_apis,
    )
    return Pipeline(
        store=store,
        index=index,
        state=state,
        engine=engine,
        orchestrator=orchestrator,
        gateway=gateway,
        webhooks=WebhookProcessor(store=store, index=index, engine=engine),
    )


def _build_store(app_config: AppConfig) -> SQLiteStore:
    if app_config.storage.type != "sqlite":
        raise ConfigError(f"Unsupported storage type: {app_config.storage.type}")
    return SQLiteStore(app_config.storage.path)


def _build_index(app_config: AppConfig) -> SearchIndex:
    settings = app_config.search_index
    if settings.type == "memory":
        return InMemorySearchIndex()
    if settings.type == "http" and settings.url:
        return HttpSearchIndex(
            settings.url,
            index_name=settings.index_name,
            timeout_seconds=settings.timeout_seconds,
        )
    raise ConfigError(f"Unsupported search index type: {settings.type}")


def _sync_sources(store: SQLiteStore, app_config: AppConfig) -> None:
    for settings in app_config.sources:
        store.upsert_source(
            Source(
                id=settings.id,
                url=settings.url,
                kind=settings.type,
                is_active=settings.active,
                scrape_frequency_hours=settings.scrape_frequency_hours,
                name=settings.name,
            )
        )
    removed = store.deactivate_sources_except({settings.id for settings in app_config.sources})
    if removed:
        logger.info("Deactivated sources missing from config: %s", ", ".join(removed))


def _run_scrape(pipeline: Pipeline, source_id: str) -> int:
    try:
        job = pipeline.orchestrator.start_job(source_id)
    except JobStartError as exc:
        logger.error("Cannot start job for %s: %s", source_id, exc)
        return 1
    return _wait_for_jobs(pipeline, [job])


def _wait_for_jobs(pipeline: Pipeline, jobs: list[ScrapingJob]) -> int:
    failed = 0
    for job in jobs:
        finished = pipeline.orchestrator.wait_for_job(job.id)
        _print_job(finished)
        if finished.status is JobStatus.FAILED:
            failed += 1

    logger.info("Run complete | jobs=%d failed=%d", len(jobs), failed)
    return 0 if failed == 0 else 1


def _print_job(job: ScrapingJob) -> None:
    print(
        f"{job.id} source={job.source_id} status={job.status.value} "
        f"items={job.items_scraped} errors={len(job.errors)} "
        f"completed={format_datetime(job.completed_at)}"
    )
    for error in job.errors:
        print(f"  - {error}")


def _run_cleanup(pipeline: Pipeline) -> int:
    try:
        removed = pipeline.engine.cleanup_expired_opportunities()
    except QualityEngineError:
        logger.exception("Cleanup failed")
        return 1
    print(f"Deactivated {removed} expired opportunities")
    return 0


def _run_merge(pipeline: Pipeline, primary_id: str, duplicate_id: str) -> int:
    try:
        merged = pipeline.engine.merge_duplicate_opportunities(primary_id, duplicate_id)
    except (OpportunityNotFoundError, ValueError) as exc:
        logger.error("Cannot merge: %s", exc)
        return 1
    except QualityEngineError:
        logger.exception("Merge failed")
        return 1
    print(f"Merged {duplicate_id} into {merged.id}")
    return 0


def _run_webhook(
    pipeline: Pipeline,
    app_config: AppConfig,
    path: Path,
    signature: str | None,
) -> int:
    body = path.read_bytes()
    secret = os.getenv(app_config.webhooks.secret_env_var, "").strip()
    if secret and not verify_signature(body, signature, secret):
        logger.error("Invalid webhook signature for %s", path)
        return 1

    try:
        parsed = json.loads(body)
    except json.JSONDecodeError as exc:
        logger.error("Webhook file %s is not valid JSON: %s", path, exc)
        return 1

    payloads = parsed if isinstance(parsed, list) else [parsed]
    results = pipeline.webhooks.process_batch(
        payload for payload in payloads if isinstance(payload, dict)
    )
    for result in results:
        detail = f" {result.opportunity_id}" if result.opportunity_id else ""
        message = f" ({result.message})" if result.message else ""
        print(f"{result.event}: {result.outcome.value}{detail}{message}")

    return 0 if all(result.ok for result in results) else 1


def _run_health(pipeline: Pipeline) -> int:
    pipeline.gateway.monitor_api_health()
    statuses = pipeline.gateway.get_api_health_status()
    for api_id, status in sorted(statuses.items()):
        print(
            f"{api_id}: {status.status.value} success_rate={status.success_rate:.2f} "
            f"response_time_ms={status.response_time_ms:.0f} errors={status.error_count}"
        )
    return 0


def _run_serve(pipeline: Pipeline, app_config: AppConfig) -> int:
    scheduler = build_default_scheduler(
        settings=app_config.scheduler,
        orchestrator=pipeline.orchestrator,
        engine=pipeline.engine,
        gateway=pipeline.gateway,
    )
    stop = threading.Event()
    scheduler.start()
    try:
        stop.wait()
    except KeyboardInterrupt:
        logger.info("Interrupted; shutting down")
    finally:
        scheduler.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
