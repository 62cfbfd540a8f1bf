"""Data models for bookmark enrichment."""

from .job import (
    ACTIVE_STAGE_FOR,
    STAGE_ORDER,
    TERMINAL_STAGES,
    BookmarkJob,
    InvalidTransitionError,
    JobStage,
    Stage,
)
from .enrichment_result import (
    Classification,
    ClassificationFragment,
    EnrichmentResult,
    ExtractionFragment,
    Fragment,
    Insights,
    ResearchFragment,
)
from .failure import FailureRecord, ReasonKind
from .run_state import ProgressEvent, RunState, RunStatus

__all__ = [
    "ACTIVE_STAGE_FOR",
    "STAGE_ORDER",
    "TERMINAL_STAGES",
    "BookmarkJob",
    "InvalidTransitionError",
    "JobStage",
    "Stage",
    "Classification",
    "ClassificationFragment",
    "EnrichmentResult",
    "ExtractionFragment",
    "Fragment",
    "Insights",
    "ResearchFragment",
    "FailureRecord",
    "ReasonKind",
    "ProgressEvent",
    "RunState",
    "RunStatus",
]
