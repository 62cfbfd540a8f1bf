"""Worker pool - bounded worker threads draining the run queue."""

import logging
import threading

from ..models.failure import FailureRecord, ReasonKind
from ..models.job import BookmarkJob, JobStage
from .coordinator import RunCoordinator
from .stage_executor import StageExecutor

logger = logging.getLogger(__name__)


class WorkerPool:
    """
    Starts up to `concurrency_limit` workers, `stagger_delay_ms` apart, each
    looping dequeue -> execute -> finish until the coordinator stops handing
    out work (queue empty, abort requested or a tool halted).
    """

    def __init__(self, coordinator: RunCoordinator, executor: StageExecutor):
        self.coordinator = coordinator
        self.executor = executor

    def run(self) -> None:
        """Block until every worker has exited."""
        options = self.coordinator.options
        worker_count = min(options.concurrency_limit, len(self.coordinator.snapshot().queue))
        stagger = options.stagger_delay_ms / 1000.0
        threads: list[threading.Thread] = []

        for i in range(worker_count):
            # Stagger first dequeues so the external services are not hit in one burst
            if i > 0 and stagger and self.coordinator.cancel_event.wait(stagger):
                break
            thread = threading.Thread(
                target=self._worker_loop, name=f"enrich-worker-{i + 1}", daemon=True
            )
            thread.start()
            threads.append(thread)
        logger.debug("Started %d worker(s)", len(threads))

        for thread in threads:
            thread.join()

    def _worker_loop(self) -> None:
        while not self.coordinator.is_cancelled():
            job = self.coordinator.dequeue()
            if job is None:
                return
            self._process(job)

    def _process(self, job: BookmarkJob) -> None:
        logger.info("[%s] Processing %s", threading.current_thread().name, job.url)
        try:
            terminal = self.executor.run(job)
        except Exception as e:
            # A single job's failure never stops the pool
            logger.exception("Unhandled error enriching %s: %s", job.url, e)
            self.coordinator.record_failure(
                job,
                FailureRecord(
                    url=job.url,
                    stage=None,
                    reason_kind=ReasonKind.UNEXPECTED,
                    attempts=job.attempt_count,
                    message=f"{type(e).__name__}: {e}",
                ),
            )
            terminal = JobStage.FAILED
        self.coordinator.finish(job, terminal)
