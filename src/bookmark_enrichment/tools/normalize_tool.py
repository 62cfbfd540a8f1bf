"""
Normalize tool - per-provider adapters turning raw tool responses into canonical fragments.

Providers answer in several shapes: a direct field, a nested structure, an array of
MCP content blocks (whose text may itself be JSON), or a plain string. Each adapter
accepts those shapes and returns exactly one fragment type, or raises ValidationError.
"""

import json
import logging
import math
import re
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from bs4 import BeautifulSoup

from ..models.enrichment_result import (
    Classification,
    ClassificationFragment,
    ExtractionFragment,
    Fragment,
    Insights,
    ResearchFragment,
)
from ..models.job import Stage
from .errors import ToolError, ValidationError, error_from_text

logger = logging.getLogger(__name__)

WORDS_PER_MINUTE = 200
DEFAULT_STARS = 3
DEFAULT_PERSONA_TAG = "persona:mcp_developer"
PERSONA_TAGS = {"persona:mcp_developer", "persona:startup_founder", "persona:vc_investor"}

PUBLISH_DATE_FIELDS = [
    "article:published_time",
    "og:article:published_time",
    "datePublished",
    "publishedTime",
    "date",
    "pubdate",
    "publish_date",
    "created",
    "createdAt",
]

_INSIGHT_KEYS = {"dev": "insight_dev", "founder": "insight_founder", "investor": "insight_investor"}
_CLASSIFICATION_KEYS = {
    "stars",
    "reading_time_minutes",
    "language",
    "icon",
    "tags",
    *_INSIGHT_KEYS.values(),
}
_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def _shape(raw: Any) -> str:
    if isinstance(raw, dict):
        return f"object with keys {sorted(raw)[:8]}"
    return type(raw).__name__


def _first_text_block(content: list[Any]) -> Optional[str]:
    for block in content:
        if isinstance(block, dict) and block.get("type") == "text" and isinstance(block.get("text"), str):
            return block["text"]
    return None


def _maybe_json(text: str, tool: str) -> Optional[dict[str, Any]]:
    """Parse block text that may be a JSON envelope; raise on embedded tool errors."""
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    if parsed.get("isError") or parsed.get("error"):
        message = parsed.get("error") or parsed.get("text") or "Unknown error"
        raise error_from_text(f"{tool} failed: {message}", tool=tool)
    return parsed


def _parse_datetime(value: Any) -> Optional[datetime]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    if not value or value.lower() == "null":
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _meta_str(metadata: dict[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = metadata.get(key)
        if isinstance(value, list) and value:
            value = value[0]
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


# --- research -----------------------------------------------------------------


def normalize_research(raw: Any) -> ResearchFragment:
    """Research payload: answer | structuredContent.answer | content blocks | string."""
    text: Optional[str] = None
    if isinstance(raw, str):
        text = raw
    elif isinstance(raw, dict):
        structured = raw.get("structuredContent")
        content = raw.get("content")
        if isinstance(raw.get("answer"), str):
            text = raw["answer"]
        elif isinstance(structured, dict) and isinstance(structured.get("answer"), str):
            text = structured["answer"]
        elif isinstance(content, list):
            block = _first_text_block(content)
            if block is not None:
                envelope = _maybe_json(block, "research")
                answer = envelope.get("answer") if envelope else None
                text = answer if isinstance(answer, str) else block
        elif isinstance(content, str):
            text = content

    if text is None:
        raise ValidationError(f"Unrecognized research response: {_shape(raw)}", tool="research")
    text = text.strip()
    if not text or "MCP error" in text or "Invalid arguments" in text:
        raise ValidationError(f"Research failed: {text[:200] or 'No response'}", tool="research")
    return ResearchFragment(research_text=text)


# --- extraction ---------------------------------------------------------------


def _html_to_text(html: str) -> str:
    soup = BeautifulSoup(html, "lxml")
    for tag in soup.find_all(["script", "style", "nav", "footer"]):
        tag.decompose()
    text = soup.get_text(separator="\n", strip=True)
    return re.sub(r"\n{3,}", "\n\n", text)


def _extraction_payload(raw: Any) -> tuple[Optional[str], dict[str, Any]]:
    """Return (content, metadata) from any known extraction shape."""
    if isinstance(raw, str):
        return raw, {}
    if not isinstance(raw, dict):
        return None, {}

    metadata = raw.get("metadata") if isinstance(raw.get("metadata"), dict) else {}
    if isinstance(raw.get("markdown"), str):
        return raw["markdown"], metadata
    if isinstance(raw.get("data"), dict):
        return _extraction_payload(raw["data"])
    content = raw.get("content")
    if isinstance(content, list):
        block = _first_text_block(content)
        if block is None:
            return None, metadata
        envelope = _maybe_json(block, "extraction")
        if envelope is not None:
            inner, inner_meta = _extraction_payload(envelope)
            return (inner if inner is not None else block), (inner_meta or metadata)
        return block, metadata
    if isinstance(content, str):
        return content, metadata
    if isinstance(raw.get("html"), str):
        return _html_to_text(raw["html"]), metadata
    return None, metadata


def normalize_extraction(raw: Any) -> ExtractionFragment:
    """Extraction payload: markdown | data.markdown | content blocks | html | string."""
    content, metadata = _extraction_payload(raw)
    if content is None:
        raise ValidationError(f"Unrecognized extraction response: {_shape(raw)}", tool="extraction")
    content = content.strip()
    if not content:
        raise ValidationError("Extraction returned empty content", tool="extraction")

    published_at = None
    for field in PUBLISH_DATE_FIELDS:
        published_at = _parse_datetime(metadata.get(field))
        if published_at is not None:
            logger.debug("Found publish date from metadata.%s: %s", field, published_at)
            break

    return ExtractionFragment(
        extracted_content=content,
        title=_meta_str(metadata, "title", "ogTitle", "og:title"),
        description=_meta_str(metadata, "description", "ogDescription", "og:description"),
        published_at=published_at,
    )


# --- classification -----------------------------------------------------------


def sanitize_json_text(text: str) -> str:
    """Escape raw newlines inside JSON strings and blank out other control characters."""
    out: list[str] = []
    in_string = False
    escaped = False
    for char in text:
        if escaped:
            out.append(char)
            escaped = False
            continue
        if char == "\\":
            out.append(char)
            escaped = True
            continue
        if char == '"':
            in_string = not in_string
            out.append(char)
            continue
        if in_string and char == "\n":
            out.append("\\n")
            continue
        if in_string and char == "\r":
            continue
        code = ord(char)
        if code <= 8 or code in (11, 12) or 14 <= code <= 31:
            out.append(" ")
            continue
        out.append(char)
    sanitized = "".join(out)
    # Missing comma between two string values on consecutive lines
    return re.sub(r'"\s*\n\s*"', '",\n  "', sanitized)


def parse_json_object(text: str) -> dict[str, Any]:
    """Locate the JSON object in model output (fences, chatter) and parse it."""
    match = _JSON_OBJECT_RE.search(text)
    if not match:
        raise ValidationError(
            f"No JSON object in classification response: {text[:200]}", tool="classification"
        )
    candidate = match.group(0)
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError:
        try:
            data = json.loads(sanitize_json_text(candidate))
        except json.JSONDecodeError as e:
            logger.debug("Problematic JSON: %s", candidate[:1000])
            raise ValidationError(f"Malformed classification JSON: {e}", tool="classification") from e
    if not isinstance(data, dict):
        raise ValidationError("Classification JSON is not an object", tool="classification")
    return data


def format_insight(value: Any) -> Optional[str]:
    """Render an insight as a markdown bullet list."""
    if value is None or value == "" or value == []:
        return None
    if isinstance(value, list):
        paragraphs = [str(p).strip() for p in value if str(p).strip()]
        return "\n\n".join(f"- {p}" for p in paragraphs) or None
    if isinstance(value, str):
        # Older single-string format used " | - " separators
        text = re.sub(r"\s*\|\s*-\s*", "\n\n- ", value)
        text = re.sub(r"\.,\s*-\s*", ".\n\n- ", text)
        return re.sub(r",\s*-\s+", "\n\n- ", text).strip() or None
    raise ValidationError(f"Insight has unexpected type {type(value).__name__}", tool="classification")


def estimate_reading_time(content: Optional[str]) -> Optional[int]:
    if not content:
        return None
    words = len(content.split())
    return max(1, math.ceil(words / WORDS_PER_MINUTE))


def _coerce_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value):
        return int(round(value))
    return None


def _classification_data(raw: Any) -> dict[str, Any]:
    if isinstance(raw, str):
        return parse_json_object(raw)
    if isinstance(raw, dict):
        if _CLASSIFICATION_KEYS & raw.keys():
            return raw
        choices = raw.get("choices")
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            message = choices[0].get("message")
            if isinstance(message, dict) and isinstance(message.get("content"), str):
                return parse_json_object(message["content"])
        content = raw.get("content")
        if isinstance(content, list):
            block = _first_text_block(content)
            if block is not None:
                return parse_json_object(block)
        if isinstance(content, str):
            return parse_json_object(content)
    raise ValidationError(f"Unrecognized classification response: {_shape(raw)}", tool="classification")


def normalize_classification(
    raw: Any,
    extracted_content: Optional[str] = None,
) -> ClassificationFragment:
    """Classification payload: JSON object | chat completion | content blocks | string."""
    data = _classification_data(raw)
    if not _CLASSIFICATION_KEYS & data.keys():
        raise ValidationError(
            f"Classification JSON has none of the expected fields: {sorted(data)[:8]}",
            tool="classification",
        )

    stars = _coerce_int(data.get("stars"))
    stars = DEFAULT_STARS if stars is None else max(1, min(5, stars))
    reading_time = _coerce_int(data.get("reading_time_minutes"))
    if reading_time is None or reading_time < 0:
        reading_time = estimate_reading_time(extracted_content)

    raw_tags = data.get("tags")
    tags = [str(t).strip() for t in raw_tags if str(t).strip()] if isinstance(raw_tags, list) else []
    if not PERSONA_TAGS & set(tags):
        tags.append(DEFAULT_PERSONA_TAG)

    language = data.get("language")
    icon = data.get("icon")
    title = data.get("title")
    description = data.get("description")

    return ClassificationFragment(
        classification=Classification(
            stars=stars,
            reading_time_minutes=reading_time,
            language=language.strip().lower() if isinstance(language, str) and language.strip() else None,
            icon=icon.strip() if isinstance(icon, str) and icon.strip() else None,
        ),
        insights=Insights(
            **{persona: format_insight(data.get(key)) for persona, key in _INSIGHT_KEYS.items()}
        ),
        title=title.strip() if isinstance(title, str) and title.strip() else None,
        description=description.strip() if isinstance(description, str) and description.strip() else None,
        tags=tags,
        published_at=_parse_datetime(data.get("published_at")),
    )


NORMALIZERS: dict[Stage, Callable[..., Fragment]] = {
    Stage.RESEARCH: normalize_research,
    Stage.EXTRACTION: normalize_extraction,
    Stage.CLASSIFICATION: normalize_classification,
}


def normalize_tool(stage: Stage, raw: Any, **context: Any) -> Fragment:
    """
    Dispatch a raw tool response to the adapter for `stage`.
    Anything an adapter trips over is reported as a ValidationError.
    """
    try:
        return NORMALIZERS[stage](raw, **context)
    except ToolError:
        raise
    except Exception as e:
        raise ValidationError(
            f"Malformed {stage.value} response ({type(e).__name__}: {e})", tool=stage.value
        ) from e
