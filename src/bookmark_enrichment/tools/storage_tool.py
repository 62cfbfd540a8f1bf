"""Storage tool - persist partial and complete enrichment results."""

import json
import logging
import os
import sqlite3
import threading
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from ..models.enrichment_result import EnrichmentResult, utcnow
from ..models.failure import FailureRecord
from ..models.job import JobStage

logger = logging.getLogger(__name__)

COLUMNS = [
    "title",
    "description",
    "research_text",
    "extracted_content",
    "insight_dev",
    "insight_founder",
    "insight_investor",
    "stars",
    "reading_time_minutes",
    "language",
    "icon",
    "tags",
    "published_at",
    "researched_at",
    "classified_at",
    "enriched_at",
    "status",
]
_DATETIME_COLUMNS = {"published_at", "researched_at", "classified_at", "enriched_at"}

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS bookmarks (
        url TEXT PRIMARY KEY,
        title TEXT,
        description TEXT,
        research_text TEXT,
        extracted_content TEXT,
        insight_dev TEXT,
        insight_founder TEXT,
        insight_investor TEXT,
        stars INTEGER,
        reading_time_minutes INTEGER,
        language TEXT,
        icon TEXT,
        tags TEXT,
        published_at TEXT,
        researched_at TEXT,
        classified_at TEXT,
        enriched_at TEXT,
        status TEXT,
        updated_at TEXT
    )
"""


def _to_sql(column: str, value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, JobStage):
        return value.value
    if column == "tags":
        return json.dumps(list(value), ensure_ascii=False)
    return value


def _from_sql(column: str, value: Any) -> Any:
    if value is None:
        return None
    if column in _DATETIME_COLUMNS:
        return datetime.fromisoformat(value)
    if column == "tags":
        return json.loads(value)
    return value


class EnrichmentStore:
    """
    SQLite-backed persistence for enrichment results.
    Writes for the same URL are serialized; different URLs write concurrently.
    Only provided, non-null columns are written, so a partial write never clobbers
    fields set by an earlier stage.
    """

    def __init__(self, db_path: str | Path, timeout: float = 30.0):
        self.db_path = Path(db_path)
        self.timeout = timeout
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute(_SCHEMA)
        logger.info("Initialized storage at %s", self.db_path.resolve())

    def _connect(self) -> sqlite3.Connection:
        # One connection per call; sqlite3 connections are not shared across threads
        conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        return conn

    def _lock_for(self, url: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(url)
            if lock is None:
                lock = self._locks[url] = threading.Lock()
            return lock

    def upsert_partial(self, url: str, fragment: dict[str, Any]) -> None:
        """Insert or update only the given non-null columns for `url`."""
        values = {
            k: _to_sql(k, v) for k, v in fragment.items() if v is not None and k in COLUMNS
        }
        unknown = set(fragment) - set(COLUMNS)
        if unknown:
            raise ValueError(f"Unknown columns for {url}: {sorted(unknown)}")
        values["updated_at"] = utcnow().isoformat()

        names = list(values)
        placeholders = ", ".join("?" for _ in names)
        assignments = ", ".join(f"{n} = excluded.{n}" for n in names)
        sql = (
            f"INSERT INTO bookmarks (url, {', '.join(names)}) VALUES (?, {placeholders}) "
            f"ON CONFLICT(url) DO UPDATE SET {assignments}"
        )
        with self._lock_for(url):
            conn = self._connect()
            try:
                with conn:
                    conn.execute(sql, [url, *values.values()])
            except sqlite3.Error as e:
                logger.error("Failed to store fragment for %s to %s: %s", url, self.db_path, e, exc_info=True)
                raise
            finally:
                conn.close()
        logger.debug("Stored %s for %s", sorted(names), url)

    def get_existing(self, url: str) -> Optional[EnrichmentResult]:
        conn = self._connect()
        try:
            row = conn.execute("SELECT * FROM bookmarks WHERE url = ?", (url,)).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        return self._row_to_result(row)

    def all_results(self) -> list[EnrichmentResult]:
        conn = self._connect()
        try:
            rows = conn.execute("SELECT * FROM bookmarks ORDER BY url").fetchall()
        finally:
            conn.close()
        return [self._row_to_result(row) for row in rows]

    @staticmethod
    def _row_to_result(row: sqlite3.Row) -> EnrichmentResult:
        columns = {c: _from_sql(c, row[c]) for c in COLUMNS}
        return EnrichmentResult.from_columns(row["url"], columns)

    def export_jsonl(self, output_path: str | Path) -> int:
        """Write every stored result as one JSON line. Returns the record count."""
        results = self.all_results()
        _write_jsonl(output_path, (r.model_dump(mode="json") for r in results))
        logger.info("Exported %d results to %s", len(results), output_path)
        return len(results)


def write_failure_report(output_path: str | Path, records: Iterable[FailureRecord]) -> int:
    """Write failure records as JSON lines for post-run review."""
    rows = [r.model_dump(mode="json") for r in records]
    _write_jsonl(output_path, rows)
    logger.info("Wrote %d failure records to %s", len(rows), output_path)
    return len(rows)


def _write_jsonl(output_path: str | Path, rows: Iterable[dict[str, Any]]) -> None:
    path = Path(output_path).resolve()
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        for row in rows:
            f.write(json.dumps(row, ensure_ascii=False) + "\n")
        f.flush()
        try:
            os.fsync(f.fileno())
        except OSError:
            pass
