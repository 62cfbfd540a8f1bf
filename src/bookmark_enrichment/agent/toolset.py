"""Bundle of the three external tool clients used by the stage executor."""

from dataclasses import dataclass
from functools import partial
from typing import Any, Callable

import httpx

from ..config.loader import Config
from ..tools.classify_llm_tool import classify_llm_tool
from ..tools.extract_tool import extract_tool
from ..tools.research_tool import research_tool


@dataclass
class ToolSet:
    """
    research(url, existing_metadata=...) -> raw
    extract(url) -> raw
    classify(url, research_text=..., extracted_content=..., metadata=...) -> raw
    """

    research: Callable[..., Any]
    extract: Callable[..., Any]
    classify: Callable[..., Any]

    @classmethod
    def from_config(cls, config: Config, http_client: httpx.Client | None = None) -> "ToolSet":
        return cls(
            research=partial(research_tool, config=config, http_client=http_client),
            extract=partial(extract_tool, config=config, http_client=http_client),
            classify=partial(classify_llm_tool, config=config, http_client=http_client),
        )
