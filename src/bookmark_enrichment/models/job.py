"""Bookmark job and pipeline stage models."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class Stage(str, Enum):
    """The three enrichment stages, in pipeline order."""

    RESEARCH = "research"
    EXTRACTION = "extraction"
    CLASSIFICATION = "classification"


STAGE_ORDER = (Stage.RESEARCH, Stage.EXTRACTION, Stage.CLASSIFICATION)


class JobStage(str, Enum):
    """Lifecycle of one job. Transitions are controlled by the stage executor."""

    PENDING = "pending"
    RESEARCHING = "researching"
    EXTRACTING = "extracting"
    CLASSIFYING = "classifying"
    PERSISTING = "persisting"
    DONE = "done"  # terminal
    FAILED = "failed"  # terminal
    CANCELLED = "cancelled"  # terminal


TERMINAL_STAGES = {JobStage.DONE, JobStage.FAILED, JobStage.CANCELLED}

# Forward sequence; FAILED and CANCELLED may be reached from any non-terminal stage.
_SEQUENCE = [
    JobStage.PENDING,
    JobStage.RESEARCHING,
    JobStage.EXTRACTING,
    JobStage.CLASSIFYING,
    JobStage.PERSISTING,
    JobStage.DONE,
]

ACTIVE_STAGE_FOR = {
    Stage.RESEARCH: JobStage.RESEARCHING,
    Stage.EXTRACTION: JobStage.EXTRACTING,
    Stage.CLASSIFICATION: JobStage.CLASSIFYING,
}


class InvalidTransitionError(ValueError):
    """Raised when a job would move backwards or leave a terminal stage."""


class BookmarkJob(BaseModel):
    """In-flight state of one bookmark during a run."""

    url: str
    current_stage: JobStage = Field(default=JobStage.PENDING)
    attempt_count: int = Field(default=0, ge=0)
    last_error: Optional[str] = None
    stage_attempts: dict[Stage, int] = Field(default_factory=dict)
    degraded_stages: list[Stage] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.current_stage in TERMINAL_STAGES

    @property
    def degraded(self) -> bool:
        return self.current_stage == JobStage.DONE and bool(self.degraded_stages)

    def advance(self, stage: JobStage) -> None:
        """Move to `stage`; never backwards, never out of a terminal stage."""
        if self.is_terminal:
            raise InvalidTransitionError(
                f"{self.url}: cannot leave terminal stage {self.current_stage.value}"
            )
        if stage in (JobStage.FAILED, JobStage.CANCELLED):
            self.current_stage = stage
            return
        if _SEQUENCE.index(stage) <= _SEQUENCE.index(self.current_stage):
            raise InvalidTransitionError(
                f"{self.url}: {self.current_stage.value} -> {stage.value} is not forward"
            )
        self.current_stage = stage

    def record_attempt(self, stage: Stage, attempt: int) -> None:
        self.stage_attempts[stage] = attempt
        self.attempt_count = attempt

    def mark_degraded(self, stage: Stage) -> None:
        if stage not in self.degraded_stages:
            self.degraded_stages.append(stage)
