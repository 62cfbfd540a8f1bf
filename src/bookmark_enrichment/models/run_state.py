"""Run state and progress event models."""

from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .failure import FailureRecord
from .job import JobStage


class RunStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    ABORTING = "aborting"
    COMPLETED = "completed"


class RunState(BaseModel):
    """
    Single source of truth for one batch run.
    Only RunCoordinator mutates it, under its lock.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    status: RunStatus = Field(default=RunStatus.IDLE)
    concurrency_limit: int = Field(default=1, ge=1)
    total_jobs: int = Field(default=0, ge=0)
    queue: deque = Field(default_factory=deque)
    active_workers: set[str] = Field(default_factory=set)
    completed: set[str] = Field(default_factory=set)
    failed: set[str] = Field(default_factory=set)
    cancelled: set[str] = Field(default_factory=set)
    failures: dict[str, list[FailureRecord]] = Field(default_factory=dict)
    halted_tools: set[str] = Field(default_factory=set)
    warnings: list[str] = Field(default_factory=list)

    def partition_total(self) -> int:
        return (
            len(self.queue)
            + len(self.active_workers)
            + len(self.completed)
            + len(self.failed)
            + len(self.cancelled)
        )


@dataclass(frozen=True)
class ProgressEvent:
    """Aggregate counts emitted on every run state transition."""

    status: RunStatus
    active_count: int
    completed_count: int
    failed_count: int
    cancelled_count: int
    queued_count: int
    total_count: int
    url: Optional[str] = None
    stage: Optional[JobStage] = None
    warning: Optional[str] = None

    @classmethod
    def from_state(
        cls,
        state: RunState,
        url: Optional[str] = None,
        stage: Optional[JobStage] = None,
        warning: Optional[str] = None,
    ) -> "ProgressEvent":
        return cls(
            status=state.status,
            active_count=len(state.active_workers),
            completed_count=len(state.completed),
            failed_count=len(state.failed),
            cancelled_count=len(state.cancelled),
            queued_count=len(state.queue),
            total_count=state.total_jobs,
            url=url,
            stage=stage,
            warning=warning,
        )
