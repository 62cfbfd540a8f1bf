"""External tool clients, response normalizer and storage for bookmark enrichment."""

from .research_tool import research_tool
from .extract_tool import extract_tool
from .classify_llm_tool import classify_llm_tool
from .normalize_tool import normalize_tool
from .storage_tool import EnrichmentStore, write_failure_report

__all__ = [
    "research_tool",
    "extract_tool",
    "classify_llm_tool",
    "normalize_tool",
    "EnrichmentStore",
    "write_failure_report",
]
