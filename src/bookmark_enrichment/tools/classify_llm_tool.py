"""Classify LLM tool - rate a bookmark and write persona insights with an LLM."""

import logging
import os
import time
from typing import Any, Optional

import httpx
import openai
from openai import OpenAI

from ..config.loader import Config, LLMProviderConfig
from .errors import (
    RateLimitError,
    TransientNetworkError,
    UpstreamAuthError,
    ValidationError,
    parse_retry_after,
)

logger = logging.getLogger(__name__)

TOOL_NAME = "classification"

SYSTEM_PROMPT = """You are a bookmark analyst enriching saved links for a curated library.
You receive:
- RESEARCH: a short research summary (citations, release info, repo data). May be missing.
- PAGE: the scraped page content. May be missing.
- URL: the original resource.

Return ONE valid JSON object, no markdown fences, no explanation:
{
  "stars": <integer 1-5>,
  "reading_time_minutes": <integer>,
  "language": "<ISO 639-1 code>",
  "icon": "<single emoji>",
  "title": "<catchy, at most 60 chars>",
  "description": "<1-2 sentences, at most 240 chars>",
  "tags": ["tech:...", "persona:...", "type:..."],
  "insight_dev": ["<paragraph>", "<paragraph>", "<paragraph>"],
  "insight_founder": ["<paragraph>", "<paragraph>", "<paragraph>"],
  "insight_investor": ["<paragraph>", "<paragraph>", "<paragraph>"],
  "published_at": "<ISO 8601 or null>"
}

STAR RATING (be ruthless, most links are 2-3):
1 spam, broken, outdated or irrelevant
2 generic or shallow
3 solid and useful but common
4 strong execution, distinct insight
5 exceptional or category-defining

TAGS: 3-8 concise tags. Always include at least one persona tag:
persona:mcp_developer, persona:startup_founder, persona:vc_investor.
Other prefixes: tech:, type:, topic:, stage:.

INSIGHTS: each is an array of 3-5 standalone paragraphs of 2-4 sentences, plain text.
insight_dev is technical only, insight_founder is business and strategy only,
insight_investor is market and investment view only. Never mix personas.

PUBLISH DATE: the original publish, release or announcement date as ISO 8601 UTC.
Month only means the first of the month, year only means January 1. Unknown means null.

Output the JSON object only."""

USER_PROMPT_TEMPLATE = """Analyze this resource:

URL: {url}
Title: {title}
Description: {description}

RESEARCH:
{research}

{page}"""


def _default_http_client(timeout: float) -> httpx.Client:
    return httpx.Client(trust_env=False, timeout=timeout)


def classify_llm_tool(
    url: str,
    research_text: Optional[str],
    extracted_content: Optional[str],
    config: Config,
    metadata: Optional[dict[str, Any]] = None,
    http_client: httpx.Client | None = None,
) -> str:
    """
    Invoke the LLM with whatever inputs are available.
    Returns the raw message content; parsing happens in the normalizer.
    """
    metadata = metadata or {}
    user_prompt = USER_PROMPT_TEMPLATE.format(
        url=url,
        title=metadata.get("title") or "Unknown",
        description=metadata.get("description") or "No description",
        research=research_text or "(no research available)",
        page=f"PAGE CONTENT:\n{extracted_content}" if extracted_content else "",
    )

    llm_config = config.llm_provider_config
    api_key = os.environ.get(llm_config.api_key_env, "")
    if not api_key:
        raise UpstreamAuthError(f"{llm_config.api_key_env} is not set", tool=TOOL_NAME)

    # A client created here is closed after the call; an injected one belongs to the caller
    owned_client = None if http_client is not None else _default_http_client(llm_config.timeout_seconds)
    try:
        return _complete(url, user_prompt, llm_config, api_key, http_client or owned_client)
    finally:
        if owned_client is not None:
            owned_client.close()


def _complete(
    url: str, user_prompt: str, llm_config: LLMProviderConfig, api_key: str, http_client: httpx.Client
) -> str:
    # Retries are handled by the stage executor, not the SDK
    client = OpenAI(
        api_key=api_key,
        base_url=llm_config.base_url,
        max_retries=0,
        timeout=llm_config.timeout_seconds,
        http_client=http_client,
    )

    create_params: dict[str, Any] = {
        "model": llm_config.model,
        "messages": [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": user_prompt},
        ],
    }
    # GPT-5 models use max_completion_tokens and only support the default temperature
    if llm_config.model.startswith("gpt-5"):
        create_params["max_completion_tokens"] = llm_config.max_tokens
    else:
        create_params["max_tokens"] = llm_config.max_tokens
        create_params["temperature"] = llm_config.temperature

    start_time = time.time()
    logger.debug("Calling LLM API for %s...", url)
    try:
        response = client.chat.completions.create(**create_params)
    except openai.APITimeoutError as e:
        raise TransientNetworkError(f"LLM call timed out: {e}", tool=TOOL_NAME) from e
    except openai.APIConnectionError as e:
        raise TransientNetworkError(f"LLM connection error: {e}", tool=TOOL_NAME) from e
    except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
        raise UpstreamAuthError(f"LLM auth failed: {e}", tool=TOOL_NAME) from e
    except openai.RateLimitError as e:
        raise RateLimitError(
            f"LLM rate limited: {e}",
            tool=TOOL_NAME,
            retry_after=parse_retry_after(e.response.headers.get("retry-after")),
        ) from e
    except openai.APIStatusError as e:
        if e.status_code == 408 or e.status_code >= 500:
            raise TransientNetworkError(f"LLM HTTP {e.status_code}: {e}", tool=TOOL_NAME) from e
        raise ValidationError(f"LLM HTTP {e.status_code}: {e}", tool=TOOL_NAME) from e

    usage = response.usage
    if usage is not None:
        logger.info(
            "LLM call completed in %.2fs for %s - prompt: %d tokens, completion: %d tokens",
            time.time() - start_time,
            url,
            usage.prompt_tokens,
            usage.completion_tokens,
        )

    if not response.choices:
        raise ValidationError("LLM response has no choices", tool=TOOL_NAME)
    content = response.choices[0].message.content
    if not content:
        raise ValidationError(
            f"Empty LLM response (finish reason: {response.choices[0].finish_reason})",
            tool=TOOL_NAME,
        )
    return content
