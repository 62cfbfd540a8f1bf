"""Run controller - control plane for bookmark enrichment runs."""

import logging
import queue
import threading
from collections.abc import Iterable
from typing import Callable, Optional

from ..config.loader import Config, RunOptions
from ..models.failure import FailureRecord
from ..models.job import BookmarkJob
from ..models.run_state import ProgressEvent, RunState
from ..tools.storage_tool import EnrichmentStore
from .coordinator import RunCoordinator
from .stage_executor import StageExecutor
from .toolset import ToolSet
from .worker_pool import WorkerPool

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]


class RunController:
    """
    Orchestrates enrichment runs over batches of bookmark URLs.
    Owns the current run's coordinator, starts and stops the worker pool,
    exposes cancellation and fans progress events out to subscribers.
    One run at a time per instance; a new run may start once the previous
    one has completed.
    """

    def __init__(
        self,
        config: Config,
        store: Optional[EnrichmentStore] = None,
        tools: Optional[ToolSet] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.config = config
        self.store = store or EnrichmentStore(config.output_config.storage_path)
        self.tools = tools or ToolSet.from_config(config)
        self._sleep = sleep
        self._listeners: list[ProgressCallback] = []
        self._listeners_lock = threading.Lock()
        self._start_lock = threading.Lock()
        self._coordinator: Optional[RunCoordinator] = None
        self._finished = threading.Event()
        self._finished.set()

    # -- subscriptions ---------------------------------------------------------

    def on_progress(self, callback: ProgressCallback) -> Callable[[], None]:
        """
        Subscribe to progress events. Returns an unsubscribe function.
        Callbacks run in order on the run's dispatcher thread, never under the
        coordinator's lock, so a slow subscriber delays only later events.
        """
        with self._listeners_lock:
            self._listeners.append(callback)

        def unsubscribe() -> None:
            with self._listeners_lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return unsubscribe

    def _deliver(self, events: "queue.Queue[Optional[ProgressEvent]]") -> None:
        while True:
            event = events.get()
            if event is None:
                return
            self._dispatch(event)

    def _dispatch(self, event: ProgressEvent) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        for callback in listeners:
            try:
                callback(event)
            except Exception:
                logger.exception("Progress callback %r raised", callback)

    # -- run lifecycle ---------------------------------------------------------

    @property
    def is_running(self) -> bool:
        # Includes delivering the last progress events
        return not self._finished.is_set()

    def start(self, urls: Iterable[str], options: Optional[RunOptions] = None) -> bool:
        """
        Begin a run in the background and return immediately.
        Returns False (and does nothing) if a run is already in progress.
        """
        with self._start_lock:
            if self.is_running:
                logger.warning("Run already in progress; start() ignored")
                return False

            options = options or self.config.run
            queued: list[str] = []
            already_completed: list[str] = []
            for url in _unique_urls(urls):
                if not options.force_refresh:
                    existing = self.store.get_existing(url)
                    if existing is not None and existing.is_fully_enriched:
                        logger.debug("Skipping %s: already enriched", url)
                        already_completed.append(url)
                        continue
                queued.append(url)

            # Coordinator events are handed off through a queue and delivered outside its lock
            events: "queue.Queue[Optional[ProgressEvent]]" = queue.Queue()
            coordinator = RunCoordinator(queued, options, already_completed, on_event=events.put)
            executor = StageExecutor(
                coordinator, self.store, self.tools, self.config.retry_policy, sleep=self._sleep
            )
            pool = WorkerPool(coordinator, executor)
            finished = threading.Event()
            self._coordinator = coordinator
            self._finished = finished

            logger.info(
                "Starting run: %d URL(s), %d already enriched, concurrency %d",
                len(queued) + len(already_completed),
                len(already_completed),
                options.concurrency_limit,
            )
            coordinator.emit_initial()
            dispatcher = threading.Thread(
                target=self._deliver, args=(events,), name="enrich-events", daemon=True
            )
            dispatcher.start()
            thread = threading.Thread(
                target=self._run,
                args=(coordinator, pool, events, dispatcher, finished),
                name="enrich-run",
                daemon=True,
            )
            thread.start()
            return True

    def _run(
        self,
        coordinator: RunCoordinator,
        pool: WorkerPool,
        events: "queue.Queue[Optional[ProgressEvent]]",
        dispatcher: threading.Thread,
        finished: threading.Event,
    ) -> None:
        try:
            pool.run()
        except Exception:
            logger.exception("Worker pool crashed")
        finally:
            coordinator.complete()
            state = coordinator.snapshot()
            logger.info(
                "Run complete: %d completed, %d failed, %d cancelled of %d",
                len(state.completed),
                len(state.failed),
                len(state.cancelled),
                state.total_jobs,
            )
            for warning in state.warnings:
                logger.warning("Run warning: %s", warning)
            events.put(None)
            dispatcher.join()
            finished.set()

    def abort(self) -> None:
        """Request a graceful stop. Safe to call repeatedly, before start or after completion."""
        coordinator = self._coordinator
        if coordinator is not None:
            coordinator.request_abort()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the current run completes. Returns False on timeout."""
        return self._finished.wait(timeout)

    # -- inspection ------------------------------------------------------------

    def snapshot(self) -> RunState:
        coordinator = self._coordinator
        if coordinator is None:
            return RunState()
        return coordinator.snapshot()

    def failures(self) -> list[FailureRecord]:
        coordinator = self._coordinator
        return coordinator.failures.all() if coordinator is not None else []

    def jobs(self) -> dict[str, BookmarkJob]:
        coordinator = self._coordinator
        return coordinator.jobs() if coordinator is not None else {}

    @property
    def warnings(self) -> list[str]:
        return list(self.snapshot().warnings)


def _unique_urls(urls: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    unique: list[str] = []
    for url in urls:
        url = url.strip()
        if url and url not in seen:
            seen.add(url)
            unique.append(url)
    return unique
