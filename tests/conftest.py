import json
import threading
import time
from typing import Any, Callable, Optional

import pytest

from bookmark_enrichment.agent.toolset import ToolSet
from bookmark_enrichment.config.loader import Config, OutputConfig, RetryPolicy, RunOptions
from bookmark_enrichment.tools.storage_tool import EnrichmentStore

CLASSIFICATION_JSON = json.dumps(
    {
        "stars": 4,
        "reading_time_minutes": 6,
        "language": "en",
        "icon": "🧰",
        "title": "A useful tool",
        "description": "Does useful things.",
        "tags": ["tech:python", "persona:mcp_developer", "type:tool"],
        "insight_dev": ["Clean API.", "Good docs."],
        "insight_founder": ["Solves onboarding."],
        "insight_investor": ["Crowded market."],
        "published_at": "2024-03-12T00:00:00.000Z",
    }
)


class FakeTools:
    """
    Scripted stand-in for the three tool clients.
    Outcomes are queued per (stage, url); an outcome may be a raw payload, an
    exception instance (raised) or a zero-argument callable (its return value).
    The last queued outcome repeats. Unscripted calls return a default success.
    """

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self.calls: list[tuple[str, str]] = []
        self.classify_inputs: dict[str, dict[str, Any]] = {}
        self.scripts: dict[tuple[str, str], list[Any]] = {}
        self.in_flight = 0
        self.max_in_flight = 0
        self.gate: Optional[threading.Event] = None
        self.research_started = threading.Semaphore(0)
        self._lock = threading.Lock()

    def script(self, stage: str, url: str, *outcomes: Any) -> None:
        self.scripts[(stage, url)] = list(outcomes)

    def calls_for(self, stage: str) -> list[str]:
        with self._lock:
            return [url for s, url in self.calls if s == stage]

    def _call(self, stage: str, url: str, default: Any) -> Any:
        with self._lock:
            self.calls.append((stage, url))
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            outcomes = self.scripts.get((stage, url))
            if outcomes:
                outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
            else:
                outcome = default
        try:
            if stage == "research" and self.gate is not None:
                self.research_started.release()
                self.gate.wait(10)
            if self.latency:
                time.sleep(self.latency)
            if isinstance(outcome, Exception):
                raise outcome
            if callable(outcome):
                return outcome()
            return outcome
        finally:
            with self._lock:
                self.in_flight -= 1

    def research(self, url: str, existing_metadata: Optional[dict] = None) -> Any:
        return self._call("research", url, {"answer": f"Research about {url}"})

    def extract(self, url: str) -> Any:
        return self._call("extraction", url, {"markdown": f"# Page\n\nContent of {url}"})

    def classify(
        self,
        url: str,
        research_text: Optional[str] = None,
        extracted_content: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> Any:
        with self._lock:
            self.classify_inputs[url] = {
                "research_text": research_text,
                "extracted_content": extracted_content,
            }
        return self._call("classification", url, CLASSIFICATION_JSON)

    def toolset(self) -> ToolSet:
        return ToolSet(research=self.research, extract=self.extract, classify=self.classify)


def no_sleep(seconds: float) -> None:
    pass


@pytest.fixture
def config(tmp_path) -> Config:
    return Config(
        run=RunOptions(concurrency_limit=3, stagger_delay_ms=0),
        retry_policy=RetryPolicy(max_attempts=3, base_delay_seconds=0.5, jitter_seconds=0),
        output_config=OutputConfig(storage_path=str(tmp_path / "bookmarks.db")),
    )


@pytest.fixture
def store(config) -> EnrichmentStore:
    return EnrichmentStore(config.output_config.storage_path)


@pytest.fixture
def fake_tools() -> FakeTools:
    return FakeTools()


@pytest.fixture
def sleep() -> Callable[[float], None]:
    return no_sleep
