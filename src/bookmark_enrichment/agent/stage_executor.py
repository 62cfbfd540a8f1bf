"""Stage executor - drives one bookmark job through research, extraction and classification."""

import logging
from typing import Any, Callable, Optional

from ..config.loader import RetryPolicy
from ..models.enrichment_result import EnrichmentResult, Fragment, utcnow
from ..models.failure import FailureRecord, ReasonKind
from ..models.job import ACTIVE_STAGE_FOR, STAGE_ORDER, BookmarkJob, JobStage, Stage
from ..tools.errors import ToolError, UpstreamAuthError
from ..tools.normalize_tool import normalize_tool
from ..tools.storage_tool import EnrichmentStore
from .backoff import build_retrying
from .coordinator import RunCoordinator
from .toolset import ToolSet

logger = logging.getLogger(__name__)


class StageExecutor:
    """
    Runs the stages of one job in order, persisting after each successful stage.
    Stage failures are recorded and absorbed: later stages still run on whatever
    output has accumulated. A job fails only if no stage produced usable output.
    """

    def __init__(
        self,
        coordinator: RunCoordinator,
        store: EnrichmentStore,
        tools: ToolSet,
        retry_policy: RetryPolicy,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.coordinator = coordinator
        self.store = store
        self.tools = tools
        self.retry_policy = retry_policy
        # Backoff sleeps wake up as soon as the run is aborted
        self._sleep = sleep or coordinator.cancel_event.wait

    def _enabled(self, stage: Stage) -> bool:
        options = self.coordinator.options
        return {
            Stage.RESEARCH: options.run_research,
            Stage.EXTRACTION: options.run_extraction,
            Stage.CLASSIFICATION: options.run_classification,
        }[stage]

    def run(self, job: BookmarkJob) -> JobStage:
        """Process `job` and return the terminal stage it should land in."""
        url = job.url
        existing = None if self.coordinator.options.force_refresh else self.store.get_existing(url)
        result = existing or EnrichmentResult(url=url)
        has_output = False
        failed_stages = 0

        for stage in STAGE_ORDER:
            if self.coordinator.is_cancelled():
                logger.info("Cancelled %s before %s", url, stage.value)
                if has_output or existing is not None:
                    self.store.upsert_partial(url, {"status": JobStage.CANCELLED})
                return JobStage.CANCELLED
            if not self._enabled(stage):
                continue
            if existing is not None and result.has_stage_output(stage):
                # Resume: output from an earlier run is kept
                logger.debug("Skipping %s for %s: already stored", stage.value, url)
                has_output = True
                continue
            if self.coordinator.is_tool_halted(stage):
                self._record(job, stage, ReasonKind.AUTH_FAILED, 0, f"{stage.value} tool halted for this run")
                failed_stages += 1
                continue

            fragment = self._run_stage(job, stage, result)
            if fragment is None:
                failed_stages += 1
                continue
            result = result.merge(fragment)
            self.store.upsert_partial(url, {**fragment.to_columns(), "status": ACTIVE_STAGE_FOR[stage]})
            has_output = True

        if failed_stages and not has_output:
            logger.warning("All stages failed for %s", url)
            if existing is not None:
                self.store.upsert_partial(url, {"status": JobStage.FAILED})
            return JobStage.FAILED

        self.coordinator.advance(job, JobStage.PERSISTING)
        self.store.upsert_partial(url, {"enriched_at": utcnow(), "status": JobStage.DONE})
        if job.degraded_stages:
            logger.info(
                "Enriched %s (degraded: %s)", url, ", ".join(s.value for s in job.degraded_stages)
            )
        else:
            logger.info("Enriched %s", url)
        return JobStage.DONE

    def _stage_call(self, job: BookmarkJob, stage: Stage, result: EnrichmentResult) -> tuple[Callable[[], Any], dict[str, Any]]:
        """Return (tool call, normalizer context) for one stage."""
        url = job.url
        metadata = {"title": result.title, "description": result.description}
        if stage == Stage.RESEARCH:
            return (lambda: self.tools.research(url, existing_metadata=metadata)), {}
        if stage == Stage.EXTRACTION:
            return (lambda: self.tools.extract(url)), {}

        missing = [
            s.value
            for s, present in ((Stage.RESEARCH, result.research_text), (Stage.EXTRACTION, result.extracted_content))
            if self._enabled(s) and not present
        ]
        if missing:
            logger.warning("Classifying %s without %s", url, " and ".join(missing))
            self.coordinator.mark_degraded(job, Stage.CLASSIFICATION)

        def call() -> Any:
            return self.tools.classify(
                url,
                research_text=result.research_text,
                extracted_content=result.extracted_content,
                metadata=metadata,
            )

        return call, {"extracted_content": result.extracted_content}

    def _run_stage(self, job: BookmarkJob, stage: Stage, result: EnrichmentResult) -> Optional[Fragment]:
        if stage == Stage.CLASSIFICATION and not (result.research_text or result.extracted_content):
            self._record(job, stage, ReasonKind.MISSING_INPUT, 0, "No research or extracted content to classify")
            return None

        self.coordinator.advance(job, ACTIVE_STAGE_FOR[stage])
        call, context = self._stage_call(job, stage, result)
        attempt_number = 0
        fragment: Optional[Fragment] = None
        last_error: Optional[ToolError] = None
        retrying = build_retrying(self.retry_policy, self._sleep, self.coordinator.cancel_event)
        try:
            for attempt in retrying:
                with attempt:
                    if last_error is not None and self.coordinator.is_cancelled():
                        # Aborted during backoff: no further calls
                        raise last_error
                    attempt_number = attempt.retry_state.attempt_number
                    self.coordinator.record_attempt(job, stage, attempt_number)
                    try:
                        fragment = normalize_tool(stage, call(), **context)
                    except ToolError as e:
                        last_error = e
                        raise
        except UpstreamAuthError as e:
            self.coordinator.halt_tool(stage, str(e))
            self._record(job, stage, e.reason_kind, attempt_number, str(e))
            return None
        except ToolError as e:
            self._record(job, stage, e.reason_kind, attempt_number, str(e))
            return None
        return fragment

    def _record(self, job: BookmarkJob, stage: Stage, reason: ReasonKind, attempts: int, message: str) -> None:
        self.coordinator.record_failure(
            job,
            FailureRecord(
                url=job.url,
                stage=stage,
                reason_kind=reason,
                attempts=attempts,
                message=message,
            ),
        )
