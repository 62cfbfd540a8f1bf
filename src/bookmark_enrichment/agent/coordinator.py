"""Run coordinator - the single synchronization point for RunState mutations."""

import logging
import threading
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Callable, Optional

from ..config.loader import RunOptions
from ..models.failure import FailureRecord
from ..models.job import BookmarkJob, JobStage, Stage
from ..models.run_state import ProgressEvent, RunState, RunStatus
from .failure_tracker import FailureTracker

logger = logging.getLogger(__name__)


class RunCoordinator:
    """
    Owns RunState for one run. Workers never touch the sets directly: every
    transition (queue -> active -> terminal set, failure records, abort, tool
    halts) goes through a method here, serialized by one lock, and each one
    emits a ProgressEvent while still holding the lock so observers see
    snapshots in transition order. `on_event` must not block; the run
    controller passes a queue's `put`.
    """

    def __init__(
        self,
        queued: Iterable[str],
        options: RunOptions,
        already_completed: Iterable[str] = (),
        on_event: Optional[Callable[[ProgressEvent], None]] = None,
    ):
        self._lock = threading.RLock()
        self._on_event = on_event
        self.options = options
        self.cancel_event = threading.Event()

        queued = list(queued)
        already_completed = list(already_completed)
        self.state = RunState(
            status=RunStatus.RUNNING,
            concurrency_limit=options.concurrency_limit,
            total_jobs=len(queued) + len(already_completed),
        )
        self.state.queue.extend(queued)
        self.state.completed.update(already_completed)
        self.failures = FailureTracker(self._lock, self.state.failures)

        self._active_jobs: dict[str, BookmarkJob] = {}
        self._finished_jobs: dict[str, BookmarkJob] = {}
        now = _now()
        for url in already_completed:
            self._finished_jobs[url] = BookmarkJob(
                url=url, current_stage=JobStage.DONE, started_at=now, finished_at=now
            )

    # -- observation -----------------------------------------------------------

    def _emit(
        self,
        url: Optional[str] = None,
        stage: Optional[JobStage] = None,
        warning: Optional[str] = None,
    ) -> None:
        event = ProgressEvent.from_state(self.state, url=url, stage=stage, warning=warning)
        if self.state.partition_total() != self.state.total_jobs:
            logger.error("Run state partition broken: %s", event)
        if self._on_event is not None:
            self._on_event(event)

    def emit_initial(self) -> None:
        with self._lock:
            self._emit()

    def snapshot(self) -> RunState:
        with self._lock:
            return self.state.model_copy(deep=True)

    def jobs(self) -> dict[str, BookmarkJob]:
        with self._lock:
            merged = {**self._finished_jobs, **self._active_jobs}
            return {url: job.model_copy(deep=True) for url, job in merged.items()}

    @property
    def status(self) -> RunStatus:
        with self._lock:
            return self.state.status

    def is_cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def is_tool_halted(self, stage: Stage) -> bool:
        with self._lock:
            return stage.value in self.state.halted_tools

    # -- job transitions -------------------------------------------------------

    def dequeue(self) -> Optional[BookmarkJob]:
        """Move the next queued URL to active. None when the worker should stop."""
        with self._lock:
            state = self.state
            if state.status != RunStatus.RUNNING or state.halted_tools or not state.queue:
                return None
            if len(state.active_workers) >= state.concurrency_limit:
                raise RuntimeError(
                    f"Concurrency limit {state.concurrency_limit} reached; more workers than allowed"
                )
            url = state.queue.popleft()
            state.active_workers.add(url)
            job = BookmarkJob(url=url, started_at=_now())
            self._active_jobs[url] = job
            self._emit(url=url, stage=job.current_stage)
            return job

    def advance(self, job: BookmarkJob, stage: JobStage) -> None:
        with self._lock:
            job.advance(stage)
            self._emit(url=job.url, stage=stage)

    def record_attempt(self, job: BookmarkJob, stage: Stage, attempt: int) -> None:
        with self._lock:
            job.record_attempt(stage, attempt)
            self.failures.record_attempts(job.url, stage, attempt)

    def record_failure(self, job: BookmarkJob, record: FailureRecord) -> None:
        with self._lock:
            self.failures.record(record)
            job.last_error = record.message
            if record.stage is not None:
                job.mark_degraded(record.stage)

    def mark_degraded(self, job: BookmarkJob, stage: Stage) -> None:
        with self._lock:
            job.mark_degraded(stage)

    def finish(self, job: BookmarkJob, terminal: JobStage) -> None:
        """Move an active job into its terminal set."""
        with self._lock:
            if job.current_stage != terminal:
                job.advance(terminal)
            job.finished_at = _now()
            state = self.state
            state.active_workers.discard(job.url)
            if terminal == JobStage.DONE:
                state.completed.add(job.url)
            elif terminal == JobStage.FAILED:
                state.failed.add(job.url)
            else:
                state.cancelled.add(job.url)
            self._active_jobs.pop(job.url, None)
            self._finished_jobs[job.url] = job
            self._emit(url=job.url, stage=terminal)

    # -- run-level transitions -------------------------------------------------

    def _cancel_queued(self) -> int:
        state = self.state
        now = _now()
        count = 0
        while state.queue:
            url = state.queue.popleft()
            state.cancelled.add(url)
            self._finished_jobs[url] = BookmarkJob(
                url=url, current_stage=JobStage.CANCELLED, finished_at=now
            )
            count += 1
        return count

    def request_abort(self) -> bool:
        """Stop new dequeues and cancel everything still queued. Idempotent."""
        with self._lock:
            if self.state.status != RunStatus.RUNNING:
                return False
            self.state.status = RunStatus.ABORTING
            self.cancel_event.set()
            cancelled = self._cancel_queued()
            logger.info("Abort requested: %d queued job(s) cancelled", cancelled)
            self._emit()
            return True

    def halt_tool(self, stage: Stage, message: str) -> None:
        """Credentials for a tool were rejected: stop starting new jobs."""
        with self._lock:
            if stage.value in self.state.halted_tools:
                return
            self.state.halted_tools.add(stage.value)
            warning = f"{stage.value} tool halted: {message}"
            self.state.warnings.append(warning)
            cancelled = self._cancel_queued()
            logger.error("%s (%d queued job(s) cancelled)", warning, cancelled)
            self._emit(warning=warning)

    def complete(self) -> None:
        with self._lock:
            self.state.status = RunStatus.COMPLETED
            self._emit()


def _now() -> datetime:
    return datetime.now(timezone.utc)
