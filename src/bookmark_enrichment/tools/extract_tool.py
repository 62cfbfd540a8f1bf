"""Extract tool - scrape the main content of a bookmarked page via the mesh."""

import logging
from typing import Any

import httpx

from ..config.loader import Config
from .mesh_client import call_mesh_tool

logger = logging.getLogger(__name__)


def extract_tool(
    url: str,
    config: Config,
    http_client: httpx.Client | None = None,
) -> Any:
    """Scrape `url` as markdown (main content only). Returns the raw tool result."""
    logger.debug("Extracting %s", url)
    return call_mesh_tool(
        config.mesh.extraction_tool_name,
        {"url": url, "formats": ["markdown"], "onlyMainContent": True},
        config,
        http_client=http_client,
    )
