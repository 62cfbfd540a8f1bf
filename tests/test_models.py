import pytest

from bookmark_enrichment.models.enrichment_result import (
    Classification,
    ClassificationFragment,
    EnrichmentResult,
    ExtractionFragment,
    Insights,
    ResearchFragment,
)
from bookmark_enrichment.models.job import BookmarkJob, InvalidTransitionError, JobStage, Stage


def test_job_advances_forward_and_may_skip_stages() -> None:
    job = BookmarkJob(url="u")
    job.advance(JobStage.RESEARCHING)
    job.advance(JobStage.CLASSIFYING)
    job.advance(JobStage.PERSISTING)
    job.advance(JobStage.DONE)
    assert job.is_terminal


@pytest.mark.parametrize("start,target", [
    (JobStage.EXTRACTING, JobStage.RESEARCHING),
    (JobStage.CLASSIFYING, JobStage.CLASSIFYING),
    (JobStage.PERSISTING, JobStage.PENDING),
])
def test_job_never_regresses(start, target) -> None:
    job = BookmarkJob(url="u", current_stage=start)
    with pytest.raises(InvalidTransitionError):
        job.advance(target)


def test_job_diverts_to_failed_or_cancelled_but_not_out_of_terminal() -> None:
    job = BookmarkJob(url="u", current_stage=JobStage.EXTRACTING)
    job.advance(JobStage.CANCELLED)
    with pytest.raises(InvalidTransitionError):
        job.advance(JobStage.DONE)
    with pytest.raises(InvalidTransitionError):
        job.advance(JobStage.FAILED)


def test_job_attempts_and_degraded() -> None:
    job = BookmarkJob(url="u")
    job.record_attempt(Stage.RESEARCH, 2)
    job.mark_degraded(Stage.EXTRACTION)
    job.mark_degraded(Stage.EXTRACTION)
    assert job.stage_attempts == {Stage.RESEARCH: 2}
    assert job.attempt_count == 2
    assert job.degraded_stages == [Stage.EXTRACTION]
    assert not job.degraded
    job.current_stage = JobStage.DONE
    assert job.degraded


def test_merge_fills_without_retracting() -> None:
    result = EnrichmentResult(url="u")
    result = result.merge(ResearchFragment(research_text="research"))
    result = result.merge(ExtractionFragment(extracted_content="content"))
    result = result.merge(
        ClassificationFragment(
            classification=Classification(stars=2),
            insights=Insights(dev="- dev"),
        )
    )
    assert result.research_text == "research"
    assert result.extracted_content == "content"
    assert result.classification.stars == 2
    assert result.insights.dev == "- dev"
    assert result.is_fully_enriched

    merged = result.apply_columns({"research_text": None, "language": "de"})
    assert merged.research_text == "research"
    assert merged.classification == Classification(stars=2, language="de")
