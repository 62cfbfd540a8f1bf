"""Configuration loader for bookmark enrichment."""

import json
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field


class RunOptions(BaseModel):
    """Per-run options passed to RunController.start()."""

    concurrency_limit: int = Field(default=5, ge=1)
    force_refresh: bool = Field(default=False)
    stagger_delay_ms: int = Field(default=500, ge=0)
    run_research: bool = Field(default=True)
    run_extraction: bool = Field(default=True)
    run_classification: bool = Field(default=True)


class RetryPolicy(BaseModel):
    """Backoff for retryable tool failures (transient network, rate limit)."""

    max_attempts: int = Field(default=3, ge=1)
    base_delay_seconds: float = Field(default=0.5, ge=0)
    factor: float = Field(default=2.0, ge=1)
    max_delay_seconds: float = Field(default=30.0, ge=0)
    rate_limit_multiplier: float = Field(default=4.0, ge=1)
    jitter_seconds: float = Field(default=0.0, ge=0)


class MeshConfig(BaseModel):
    """MCP mesh gateway used for the research and extraction tools."""

    gateway_url: str = Field(default="http://localhost:3000/mcp")
    api_key_env: str = Field(default="MESH_API_KEY")
    research_tool_name: str = Field(default="perplexity_ask")
    extraction_tool_name: str = Field(default="firecrawl_scrape")
    timeout_seconds: float = Field(default=60.0, gt=0)


class LLMProviderConfig(BaseModel):
    """LLM provider configuration (any OpenAI-compatible endpoint)."""

    provider: str = Field(default="openrouter")
    model: str = Field(default="google/gemini-2.5-flash")
    base_url: Optional[str] = Field(default="https://openrouter.ai/api/v1")
    api_key_env: str = Field(default="OPENROUTER_API_KEY")
    temperature: float = Field(default=0.3, ge=0, le=2)
    max_tokens: int = Field(default=16384, ge=1)
    timeout_seconds: float = Field(default=120.0, gt=0)


class OutputConfig(BaseModel):
    """Output configuration."""

    storage_path: str = Field(default="./output/bookmarks.db")
    export_path: Optional[str] = Field(default=None)
    failure_report_path: Optional[str] = Field(default=None)


class Config(BaseModel):
    """Full system configuration."""

    run: RunOptions = Field(default_factory=RunOptions)
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)
    mesh: MeshConfig = Field(default_factory=MeshConfig)
    llm_provider_config: LLMProviderConfig = Field(default_factory=LLMProviderConfig)
    output_config: OutputConfig = Field(default_factory=OutputConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Config":
        """Load config from YAML file."""
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Config":
        """Load config from dictionary."""
        return cls(**data)


def load_config(path: str | Path) -> Config:
    """Load configuration from file (YAML or JSON)."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, encoding="utf-8") as f:
        content = f.read()

    if path.suffix in (".yaml", ".yml"):
        data = yaml.safe_load(content) or {}
    else:
        data = json.loads(content)

    return Config.from_dict(data)
