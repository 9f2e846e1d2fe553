from __future__ import annotations

import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator

from opportunity_pipeline.models import Opportunity, Source
from opportunity_pipeline.utils.datetime_utils import parse_datetime_utc, to_utc, utcnow

from .base import OpportunityStore

_LIST_COLUMNS = ("skills", "eligibility_criteria", "prizes", "tags")
_DATETIME_COLUMNS = ("application_deadline", "start_date", "end_date", "created_at", "updated_at")
_OPPORTUNITY_COLUMNS = (
    "id",
    "source_id",
    "title",
    "description",
    "type",
    "organizer_name",
    "organizer_type",
    "organizer_logo",
    "skills",
    "experience_required",
    "education_required",
    "eligibility_criteria",
    "mode",
    "location",
    "duration",
    "stipend",
    "prizes",
    "application_deadline",
    "start_date",
    "end_date",
    "external_url",
    "source_url",
    "tags",
    "is_active",
    "quality_score",
    "created_at",
    "updated_at",
)
# Columns left untouched when an upsert refreshes an existing record.
_IMMUTABLE_ON_UPDATE = {"id", "source_id", "created_at", "is_active"}


class SQLiteStore(OpportunityStore):
    def __init__(self, db_path: str) -> None:
        self.db_path = Path(db_path)
        self._write_lock = threading.Lock()

    def init_db(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as connection:
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS sources (
                    id TEXT PRIMARY KEY,
                    url TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    name TEXT NULL,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    scrape_frequency_hours REAL NOT NULL,
                    last_scraped_at TEXT NULL
                )
                """
            )
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS opportunities (
                    id TEXT PRIMARY KEY,
                    source_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    type TEXT NULL,
                    organizer_name TEXT NULL,
                    organizer_type TEXT NULL,
                    organizer_logo TEXT NULL,
                    skills TEXT NOT NULL DEFAULT '[]',
                    experience_required TEXT NULL,
                    education_required TEXT NULL,
                    eligibility_criteria TEXT NOT NULL DEFAULT '[]',
                    mode TEXT NULL,
                    location TEXT NULL,
                    duration TEXT NULL,
                    stipend TEXT NULL,
                    prizes TEXT NOT NULL DEFAULT '[]',
                    application_deadline TEXT NOT NULL,
                    start_date TEXT NULL,
                    end_date TEXT NULL,
                    external_url TEXT NOT NULL,
                    source_url TEXT NULL,
                    tags TEXT NOT NULL DEFAULT '[]',
                    is_active INTEGER NOT NULL DEFAULT 1,
                    quality_score REAL NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            connection.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_opportunities_natural_key
                ON opportunities (title, organizer_name, application_deadline)
                """
            )
            connection.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_opportunities_external_url
                ON opportunities (external_url)
                """
            )
            connection.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_opportunities_active_deadline
                ON opportunities (is_active, application_deadline)
                """
            )

    # Sources

    def upsert_source(self, source: Source) -> None:
        with self._write_lock, self._connect() as connection:
            connection.execute(
                """
                INSERT INTO sources (
                    id, url, kind, name, is_active, scrape_frequency_hours, last_scraped_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    url = excluded.url,
                    kind = excluded.kind,
                    name = excluded.name,
                    is_active = excluded.is_active,
                    scrape_frequency_hours = excluded.scrape_frequency_hours,
                    last_scraped_at = COALESCE(sources.last_scraped_at, excluded.last_scraped_at)
                """,
                (
                    source.id,
                    source.url,
                    source.kind,
                    source.name,
                    int(source.is_active),
                    source.scrape_frequency_hours,
                    _encode_datetime(source.last_scraped_at),
                ),
            )

    def get_source(self, source_id: str) -> Source | None:
        with self._connect() as connection:
            row = connection.execute(
                "SELECT * FROM sources WHERE id = ?",
                (source_id,),
            ).fetchone()
        return _row_to_source(row) if row is not None else None

    def list_sources(self, *, active_only: bool = False) -> list[Source]:
        query = "SELECT * FROM sources"
        if active_only:
            query += " WHERE is_active = 1"
        query += " ORDER BY id"
        with self._connect() as connection:
            rows = connection.execute(query).fetchall()
        return [_row_to_source(row) for row in rows]

    def mark_source_scraped(self, source_id: str, scraped_at: datetime) -> None:
        with self._write_lock, self._connect() as connection:
            connection.execute(
                "UPDATE sources SET last_scraped_at = ? WHERE id = ?",
                (_encode_datetime(scraped_at), source_id),
            )

    def deactivate_sources_except(self, source_ids: set[str]) -> list[str]:
        with self._write_lock, self._connect() as connection:
            rows = connection.execute("SELECT id FROM sources WHERE is_active = 1").fetchall()
            stale = sorted(row["id"] for row in rows if row["id"] not in source_ids)
            connection.executemany(
                "UPDATE sources SET is_active = 0 WHERE id = ?",
                [(source_id,) for source_id in stale],
            )
        return stale

    # Opportunities

    def upsert_by_natural_key(self, opportunity: Opportunity) -> tuple[Opportunity, bool]:
        with self._write_lock, self._connect() as connection:
            row = _select_by_natural_key(
                connection,
                opportunity.title,
                opportunity.organizer_name,
                opportunity.application_deadline,
                active_only=True,
            )
            return self._write_upsert(connection, row, opportunity)

    def upsert_by_external_url(self, opportunity: Opportunity) -> tuple[Opportunity, bool]:
        with self._write_lock, self._connect() as connection:
            row = connection.execute(
                "SELECT * FROM opportunities WHERE external_url = ? AND is_active = 1 LIMIT 1",
                (opportunity.external_url,),
            ).fetchone()
            return self._write_upsert(connection, row, opportunity)

    def find_by_id(self, opportunity_id: str) -> Opportunity | None:
        with self._connect() as connection:
            row = connection.execute(
                "SELECT * FROM opportunities WHERE id = ?",
                (opportunity_id,),
            ).fetchone()
        return _row_to_opportunity(row) if row is not None else None

    def find_by_natural_key(
        self,
        title: str,
        organizer_name: str | None,
        application_deadline: datetime,
        *,
        active_only: bool = False,
    ) -> Opportunity | None:
        with self._connect() as connection:
            row = _select_by_natural_key(
                connection,
                title,
                organizer_name,
                application_deadline,
                active_only=active_only,
            )
        return _row_to_opportunity(row) if row is not None else None

    def find_similar(
        self,
        *,
        title: str | None,
        organizer_name: str | None,
        application_deadline: datetime | None,
        external_url: str | None,
        exclude_id: str | None = None,
    ) -> list[Opportunity]:
        clauses: list[str] = []
        params: list[Any] = []

        if title and organizer_name:
            clauses.append("(instr(lower(title), lower(?)) > 0 AND organizer_name = ?)")
            params.extend([title.strip(), organizer_name])
        if organizer_name and application_deadline is not None:
            clauses.append("(organizer_name = ? AND substr(application_deadline, 1, 10) = ?)")
            params.extend([organizer_name, to_utc(application_deadline).date().isoformat()])
        if external_url:
            clauses.append("external_url = ?")
            params.append(external_url)

        if not clauses:
            return []

        query = f"SELECT * FROM opportunities WHERE is_active = 1 AND ({' OR '.join(clauses)})"
        if exclude_id:
            query += " AND id != ?"
            params.append(exclude_id)

        with self._connect() as connection:
            rows = connection.execute(query, params).fetchall()
        return [_row_to_opportunity(row) for row in rows]

    def update_opportunity(self, opportunity: Opportunity) -> None:
        values = _opportunity_to_values(opportunity)
        assignments = ", ".join(f"{column} = ?" for column in _OPPORTUNITY_COLUMNS if column != "id")
        params = [values[column] for column in _OPPORTUNITY_COLUMNS if column != "id"]
        params.append(opportunity.id)
        with self._write_lock, self._connect() as connection:
            connection.execute(f"UPDATE opportunities SET {assignments} WHERE id = ?", params)

    def deactivate(self, opportunity_id: str) -> bool:
        with self._write_lock, self._connect() as connection:
            cursor = connection.execute(
                "UPDATE opportunities SET is_active = 0, updated_at = ? WHERE id = ?",
                (_encode_datetime(utcnow()), opportunity_id),
            )
            return cursor.rowcount > 0

    def deactivate_expired(self, now: datetime) -> list[str]:
        cutoff = _encode_datetime(now)
        with self._write_lock, self._connect() as connection:
            rows = connection.execute(
                "SELECT id FROM opportunities WHERE is_active = 1 AND application_deadline < ?",
                (cutoff,),
            ).fetchall()
            expired_ids = [row["id"] for row in rows]
            if expired_ids:
                connection.executemany(
                    "UPDATE opportunities SET is_active = 0, updated_at = ? WHERE id = ?",
                    [(_encode_datetime(utcnow()), expired_id) for expired_id in expired_ids],
                )
        return expired_ids

    def count_by_organizer(self, organizer_name: str, *, exclude_id: str | None = None) -> int:
        query = "SELECT COUNT(*) AS total FROM opportunities WHERE organizer_name = ?"
        params: list[Any] = [organizer_name]
        if exclude_id:
            query += " AND id != ?"
            params.append(exclude_id)
        with self._connect() as connection:
            row = connection.execute(query, params).fetchone()
        return int(row["total"])

    def _write_upsert(
        self,
        connection: sqlite3.Connection,
        existing_row: sqlite3.Row | None,
        opportunity: Opportunity,
    ) -> tuple[Opportunity, bool]:
        values = _opportunity_to_values(opportunity)

        if existing_row is None:
            placeholders = ", ".join("?" for _ in _OPPORTUNITY_COLUMNS)
            connection.execute(
                f"INSERT INTO opportunities ({', '.join(_OPPORTUNITY_COLUMNS)}) VALUES ({placeholders})",
                [values[column] for column in _OPPORTUNITY_COLUMNS],
            )
            return opportunity, True

        values["updated_at"] = _encode_datetime(utcnow())
        mutable = [column for column in _OPPORTUNITY_COLUMNS if column not in _IMMUTABLE_ON_UPDATE]
        connection.execute(
            f"UPDATE opportunities SET {', '.join(f'{column} = ?' for column in mutable)} WHERE id = ?",
            [values[column] for column in mutable] + [existing_row["id"]],
        )
        updated = connection.execute(
            "SELECT * FROM opportunities WHERE id = ?",
            (existing_row["id"],),
        ).fetchone()
        return _row_to_opportunity(updated), False

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        connection = sqlite3.connect(self.db_path, timeout=30)
        connection.row_factory = sqlite3.Row
        try:
            with connection:
                yield connection
        finally:
            connection.close()


def _encode_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    return to_utc(value).isoformat(timespec="microseconds")


def _opportunity_to_values(opportunity: Opportunity) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for column in _OPPORTUNITY_COLUMNS:
        value = getattr(opportunity, column)
        if column in _LIST_COLUMNS:
            value = json.dumps(list(value))
        elif column in _DATETIME_COLUMNS:
            value = _encode_datetime(value)
        elif column == "is_active":
            value = int(value)
        values[column] = value
    return values


def _row_to_opportunity(row: sqlite3.Row) -> Opportunity:
    kwargs: dict[str, Any] = {}
    for column in _OPPORTUNITY_COLUMNS:
        value = row[column]
        if column in _LIST_COLUMNS:
            value = json.loads(value or "[]")
        elif column in _DATETIME_COLUMNS:
            value = parse_datetime_utc(value)
        elif column == "is_active":
            value = bool(value)
        kwargs[column] = value
    return Opportunity(**kwargs)


def _row_to_source(row: sqlite3.Row) -> Source:
    return Source(
        id=row["id"],
        url=row["url"],
        kind=row["kind"],
        name=row["name"],
        is_active=bool(row["is_active"]),
        scrape_frequency_hours=float(row["scrape_frequency_hours"]),
        last_scraped_at=parse_datetime_utc(row["last_scraped_at"]),
    )


def _select_by_natural_key(
    connection: sqlite3.Connection,
    title: str,
    organizer_name: str | None,
    application_deadline: datetime,
    *,
    active_only: bool,
) -> sqlite3.Row | None:
    query = (
        "SELECT * FROM opportunities "
        "WHERE title = ? AND organizer_name IS ? AND application_deadline = ?"
    )
    if active_only:
        query += " AND is_active = 1"
    return connection.execute(
        query + " LIMIT 1",
        (title, organizer_name, _encode_datetime(application_deadline)),
    ).fetchone()
