"""Research tool - deep research about a bookmarked URL via the mesh."""

import logging
from typing import Any, Optional

import httpx

from ..config.loader import Config
from .mesh_client import call_mesh_tool

logger = logging.getLogger(__name__)


RESEARCH_PROMPT_TEMPLATE = """Research {url}:
{context}
1. WHAT: One-sentence description. Key features.
2. TECH: Stack, languages, open source? GitHub stats if available.
3. BUSINESS: Pricing model, competitors, traction (users/funding).
4. TEAM: Who made it? Background.
5. STATUS: Last update, actively maintained?
6. DATE: Original release/publish date (YYYY-MM-DD if possible).

Be factual and concise."""


def research_tool(
    url: str,
    config: Config,
    existing_metadata: Optional[dict[str, Any]] = None,
    http_client: httpx.Client | None = None,
) -> Any:
    """Ask the research service about `url`. Returns the raw tool result."""
    context = ""
    if existing_metadata:
        title = existing_metadata.get("title")
        description = existing_metadata.get("description")
        if title:
            context += f"Title: {title}\n"
        if description:
            context += f"Description: {description}\n"

    prompt = RESEARCH_PROMPT_TEMPLATE.format(url=url, context=context)
    logger.debug("Researching %s", url)
    return call_mesh_tool(
        config.mesh.research_tool_name,
        {"messages": [{"role": "user", "content": prompt}]},
        config,
        http_client=http_client,
    )
