"""Failure tracker - stage failure reasons and attempt counts per URL."""

import logging
import threading
from typing import Optional

from ..models.failure import FailureRecord
from ..models.job import Stage

logger = logging.getLogger(__name__)


class FailureTracker:
    """
    In-memory, append-only per run, keyed by URL.
    `records` may be the failures map of a RunState, so the coordinator and the
    tracker see the same data; `lock` is then the coordinator's lock.
    """

    def __init__(
        self,
        lock: Optional[threading.RLock] = None,
        records: Optional[dict[str, list[FailureRecord]]] = None,
    ):
        self._lock = lock or threading.RLock()
        self.records: dict[str, list[FailureRecord]] = records if records is not None else {}
        self._attempts: dict[str, dict[Stage, int]] = {}

    def record(self, record: FailureRecord) -> None:
        with self._lock:
            self.records.setdefault(record.url, []).append(record)
        logger.warning(
            "Stage %s failed for %s (%s after %d attempt(s)): %s",
            record.stage.value if record.stage else "-",
            record.url,
            record.reason_kind.value,
            record.attempts,
            record.message,
        )

    def record_attempts(self, url: str, stage: Stage, attempts: int) -> None:
        with self._lock:
            self._attempts.setdefault(url, {})[stage] = attempts

    def for_url(self, url: str) -> list[FailureRecord]:
        with self._lock:
            return list(self.records.get(url, []))

    def attempts(self, url: str) -> dict[Stage, int]:
        with self._lock:
            return dict(self._attempts.get(url, {}))

    def all(self) -> list[FailureRecord]:
        with self._lock:
            return [r for records in self.records.values() for r in records]
