"""Stage failure records."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .enrichment_result import utcnow
from .job import Stage


class ReasonKind(str, Enum):
    """Why a stage failed terminally."""

    TRANSIENT = "transient"
    RATE_LIMITED = "rateLimited"
    INVALID = "invalid"
    AUTH_FAILED = "authFailed"
    MISSING_INPUT = "missingInput"
    UNEXPECTED = "unexpected"


class FailureRecord(BaseModel):
    """One terminal stage failure for one URL."""

    url: str
    stage: Optional[Stage] = None
    reason_kind: ReasonKind
    attempts: int = Field(default=0, ge=0)
    last_attempt_at: datetime = Field(default_factory=utcnow)
    message: str = ""
