import json
import threading
from datetime import datetime, timezone

import pytest

from bookmark_enrichment.models.enrichment_result import (
    Classification,
    ClassificationFragment,
    ExtractionFragment,
    Insights,
    ResearchFragment,
)
from bookmark_enrichment.models.failure import FailureRecord, ReasonKind
from bookmark_enrichment.models.job import JobStage, Stage
from bookmark_enrichment.tools.storage_tool import EnrichmentStore, write_failure_report

URL = "https://example.com/tool"


def test_get_existing_unknown_url(store: EnrichmentStore) -> None:
    assert store.get_existing(URL) is None


def test_partial_writes_accumulate(store: EnrichmentStore) -> None:
    store.upsert_partial(URL, ResearchFragment(research_text="research").to_columns())
    store.upsert_partial(URL, ExtractionFragment(extracted_content="content", title="Title").to_columns())
    store.upsert_partial(URL, {"research_text": None, "status": JobStage.EXTRACTING})

    result = store.get_existing(URL)
    assert result is not None
    assert result.research_text == "research"
    assert result.extracted_content == "content"
    assert result.title == "Title"
    assert result.status == JobStage.EXTRACTING
    assert result.researched_at is not None
    assert not result.is_fully_enriched


def test_classification_columns_round_trip(store: EnrichmentStore) -> None:
    published = datetime(2024, 3, 12, tzinfo=timezone.utc)
    fragment = ClassificationFragment(
        classification=Classification(stars=4, reading_time_minutes=5, language="en", icon="🧰"),
        insights=Insights(dev="- a", founder="- b", investor="- c"),
        tags=["persona:vc_investor", "tech:mcp"],
        published_at=published,
    )
    store.upsert_partial(URL, ResearchFragment(research_text="r").to_columns())
    store.upsert_partial(URL, ExtractionFragment(extracted_content="c").to_columns())
    store.upsert_partial(URL, fragment.to_columns())

    result = store.get_existing(URL)
    assert result.classification == Classification(stars=4, reading_time_minutes=5, language="en", icon="🧰")
    assert result.insights == Insights(dev="- a", founder="- b", investor="- c")
    assert result.tags == ["persona:vc_investor", "tech:mcp"]
    assert result.published_at == published
    assert result.is_fully_enriched
    assert result.has_stage_output(Stage.CLASSIFICATION)


def test_later_stage_wins_per_field(store: EnrichmentStore) -> None:
    store.upsert_partial(URL, ExtractionFragment(extracted_content="c", title="Page title").to_columns())
    store.upsert_partial(URL, {"title": "Catchy title"})
    result = store.get_existing(URL)
    assert result.title == "Catchy title"
    assert result.extracted_content == "c"


def test_concurrent_writes_same_url_keep_every_field(store: EnrichmentStore) -> None:
    columns = [
        {"research_text": "r"},
        {"extracted_content": "c"},
        {"stars": 3},
        {"language": "en"},
        {"icon": "📚"},
        {"insight_dev": "- d"},
        {"insight_founder": "- f"},
        {"insight_investor": "- i"},
    ]
    threads = [threading.Thread(target=store.upsert_partial, args=(URL, c)) for c in columns]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    result = store.get_existing(URL)
    assert result.research_text == "r"
    assert result.extracted_content == "c"
    assert result.classification.stars == 3
    assert result.classification.icon == "📚"
    assert result.insights == Insights(dev="- d", founder="- f", investor="- i")


def test_unknown_column_rejected(store: EnrichmentStore) -> None:
    with pytest.raises(ValueError):
        store.upsert_partial(URL, {"not_a_column": 1})


def test_export_and_failure_report(store: EnrichmentStore, tmp_path) -> None:
    store.upsert_partial(URL, {"research_text": "r"})
    store.upsert_partial("https://example.com/other", {"extracted_content": "c"})

    export_path = tmp_path / "out" / "enriched.jsonl"
    assert store.export_jsonl(export_path) == 2
    rows = [json.loads(line) for line in export_path.read_text(encoding="utf-8").splitlines()]
    assert [row["url"] for row in rows] == ["https://example.com/other", URL]

    report_path = tmp_path / "failures.jsonl"
    record = FailureRecord(url=URL, stage=Stage.CLASSIFICATION, reason_kind=ReasonKind.INVALID, attempts=1)
    assert write_failure_report(report_path, [record]) == 1
    row = json.loads(report_path.read_text(encoding="utf-8"))
    assert row["stage"] == "classification"
    assert row["reason_kind"] == "invalid"
