"""Configuration for bookmark enrichment."""

from .loader import Config, LLMProviderConfig, MeshConfig, OutputConfig, RetryPolicy, RunOptions, load_config

__all__ = [
    "Config",
    "LLMProviderConfig",
    "MeshConfig",
    "OutputConfig",
    "RetryPolicy",
    "RunOptions",
    "load_config",
]
