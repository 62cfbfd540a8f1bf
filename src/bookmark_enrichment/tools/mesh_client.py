"""Mesh client - call MCP tools through the mesh gateway (JSON-RPC tools/call over HTTP)."""

import json
import logging
import os
import time
from typing import Any

import httpx

from ..config.loader import Config
from .errors import (
    RateLimitError,
    TransientNetworkError,
    UpstreamAuthError,
    ValidationError,
    error_from_text,
    parse_retry_after,
)

logger = logging.getLogger(__name__)


def call_mesh_tool(
    tool_name: str,
    arguments: dict[str, Any],
    config: Config,
    http_client: httpx.Client | None = None,
) -> Any:
    """
    Invoke `tool_name` on the mesh gateway and return the raw JSON-RPC result.
    Transport and protocol failures are raised as typed ToolErrors.
    """
    mesh = config.mesh
    api_key = os.environ.get(mesh.api_key_env, "")
    if not api_key:
        raise UpstreamAuthError(f"{mesh.api_key_env} is not set", tool=tool_name)

    payload = {
        "jsonrpc": "2.0",
        "id": int(time.time() * 1000),
        "method": "tools/call",
        "params": {"name": tool_name, "arguments": arguments},
    }
    headers = {
        "Content-Type": "application/json",
        "Accept": "application/json, text/event-stream",
        "Authorization": f"Bearer {api_key}",
    }

    start_time = time.time()
    try:
        if http_client is None:
            with httpx.Client(timeout=mesh.timeout_seconds, trust_env=False) as client:
                response = client.post(mesh.gateway_url, json=payload, headers=headers)
        else:
            response = http_client.post(
                mesh.gateway_url, json=payload, headers=headers, timeout=mesh.timeout_seconds
            )
    except httpx.TimeoutException as e:
        raise TransientNetworkError(
            f"{tool_name} timed out after {mesh.timeout_seconds:.0f}s: {e}", tool=tool_name
        ) from e
    except httpx.TransportError as e:
        raise TransientNetworkError(f"{tool_name} transport error: {e}", tool=tool_name) from e

    logger.debug(
        "Mesh call %s returned %d in %.2fs", tool_name, response.status_code, time.time() - start_time
    )
    _raise_for_status(response, tool_name)

    body = _decode_body(response, tool_name)
    if isinstance(body, dict) and body.get("error"):
        error = body["error"]
        message = error.get("message") if isinstance(error, dict) else str(error)
        raise error_from_text(f"{tool_name}: {message or error}", tool=tool_name)

    result = body.get("result", body) if isinstance(body, dict) else body
    if isinstance(result, dict) and result.get("isError"):
        raise error_from_text(f"{tool_name}: {_error_text(result)}", tool=tool_name)
    return result


def _raise_for_status(response: httpx.Response, tool_name: str) -> None:
    status = response.status_code
    if status < 400:
        return
    snippet = response.text[:200]
    if status in (401, 403):
        raise UpstreamAuthError(f"{tool_name}: HTTP {status} - {snippet}", tool=tool_name)
    if status == 429:
        raise RateLimitError(
            f"{tool_name}: HTTP 429 - {snippet}",
            tool=tool_name,
            retry_after=parse_retry_after(response.headers.get("retry-after")),
        )
    if status == 408 or status >= 500:
        raise TransientNetworkError(f"{tool_name}: HTTP {status} - {snippet}", tool=tool_name)
    raise ValidationError(f"{tool_name}: HTTP {status} - {snippet}", tool=tool_name)


def _decode_body(response: httpx.Response, tool_name: str) -> Any:
    """Decode a JSON body, or the last JSON-RPC message of an SSE stream."""
    text = response.text
    content_type = response.headers.get("content-type", "")
    if "text/event-stream" in content_type:
        message = None
        for line in text.splitlines():
            if not line.startswith("data:"):
                continue
            data = line[len("data:"):].strip()
            if not data:
                continue
            try:
                parsed = json.loads(data)
            except json.JSONDecodeError:
                continue
            if isinstance(parsed, dict) and ("result" in parsed or "error" in parsed):
                message = parsed
        if message is None:
            raise ValidationError(f"{tool_name}: no JSON-RPC message in event stream", tool=tool_name)
        return message
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ValidationError(f"{tool_name}: invalid JSON from mesh: {text[:200]}", tool=tool_name) from e


def _error_text(result: dict[str, Any]) -> str:
    content = result.get("content")
    if isinstance(content, list):
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text" and block.get("text"):
                return str(block["text"])
    if isinstance(content, str) and content:
        return content
    return str(result.get("error") or "Unknown error")
