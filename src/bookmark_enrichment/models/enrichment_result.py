"""Enrichment result for one bookmark and the per-stage fragments merged into it."""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field

from .job import JobStage, Stage


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Insights(BaseModel):
    """Per-persona insight text (markdown bullet lists)."""

    dev: Optional[str] = None
    founder: Optional[str] = None
    investor: Optional[str] = None


class Classification(BaseModel):
    """Scalar classification fields."""

    stars: Optional[int] = Field(default=None, ge=1, le=5)
    reading_time_minutes: Optional[int] = Field(default=None, ge=0)
    language: Optional[str] = None
    icon: Optional[str] = None


class ResearchFragment(BaseModel):
    """Canonical output of the research stage."""

    research_text: str = Field(..., min_length=1)
    researched_at: datetime = Field(default_factory=utcnow)

    def to_columns(self) -> dict[str, Any]:
        return {"research_text": self.research_text, "researched_at": self.researched_at}


class ExtractionFragment(BaseModel):
    """Canonical output of the extraction stage."""

    extracted_content: str = Field(..., min_length=1)
    title: Optional[str] = None
    description: Optional[str] = None
    published_at: Optional[datetime] = None

    def to_columns(self) -> dict[str, Any]:
        return _non_null(
            {
                "extracted_content": self.extracted_content,
                "title": self.title,
                "description": self.description,
                "published_at": self.published_at,
            }
        )


class ClassificationFragment(BaseModel):
    """Canonical output of the classification stage."""

    classification: Classification
    insights: Insights = Field(default_factory=Insights)
    title: Optional[str] = None
    description: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    published_at: Optional[datetime] = None
    classified_at: datetime = Field(default_factory=utcnow)

    def to_columns(self) -> dict[str, Any]:
        c = self.classification
        return _non_null(
            {
                "stars": c.stars,
                "reading_time_minutes": c.reading_time_minutes,
                "language": c.language,
                "icon": c.icon,
                "insight_dev": self.insights.dev,
                "insight_founder": self.insights.founder,
                "insight_investor": self.insights.investor,
                "title": self.title,
                "description": self.description,
                "tags": self.tags or None,
                "published_at": self.published_at,
                "classified_at": self.classified_at,
            }
        )


Fragment = ResearchFragment | ExtractionFragment | ClassificationFragment


class EnrichmentResult(BaseModel):
    """
    Accumulated enrichment for a URL.
    Fields fill in stage by stage; a set field is never cleared by a later failure.
    """

    url: str
    title: Optional[str] = None
    description: Optional[str] = None
    research_text: Optional[str] = None
    extracted_content: Optional[str] = None
    insights: Optional[Insights] = None
    classification: Optional[Classification] = None
    tags: list[str] = Field(default_factory=list)
    published_at: Optional[datetime] = None
    researched_at: Optional[datetime] = None
    classified_at: Optional[datetime] = None
    enriched_at: Optional[datetime] = None
    status: Optional[JobStage] = None

    def has_stage_output(self, stage: Stage) -> bool:
        if stage == Stage.RESEARCH:
            return bool(self.research_text)
        if stage == Stage.EXTRACTION:
            return bool(self.extracted_content)
        return self.classification is not None and self.classified_at is not None

    @property
    def is_fully_enriched(self) -> bool:
        return all(self.has_stage_output(stage) for stage in Stage)

    def merge(self, fragment: Fragment) -> "EnrichmentResult":
        """Return a copy with the fragment's non-null fields applied."""
        return self.apply_columns(fragment.to_columns())

    def apply_columns(self, columns: dict[str, Any]) -> "EnrichmentResult":
        update: dict[str, Any] = {}
        insights = (self.insights or Insights()).model_dump()
        classification = (self.classification or Classification()).model_dump()
        touched_insights = touched_classification = False
        for key, value in columns.items():
            if value is None:
                continue
            if key.startswith("insight_"):
                insights[key[len("insight_"):]] = value
                touched_insights = True
            elif key in classification:
                classification[key] = value
                touched_classification = True
            elif key == "status":
                update[key] = JobStage(value)
            elif key in EnrichmentResult.model_fields and key != "url":
                update[key] = value
        if touched_insights:
            update["insights"] = Insights(**insights)
        if touched_classification:
            update["classification"] = Classification(**classification)
        return self.model_copy(update=update)

    @classmethod
    def from_columns(cls, url: str, columns: dict[str, Any]) -> "EnrichmentResult":
        return cls(url=url).apply_columns(columns)


def _non_null(data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}
