import importlib
import json

import httpx
import pytest

from bookmark_enrichment.config.loader import Config, LLMProviderConfig
from bookmark_enrichment.tools.classify_llm_tool import classify_llm_tool
from bookmark_enrichment.tools.errors import (
    RateLimitError,
    TransientNetworkError,
    UpstreamAuthError,
    ValidationError,
)

URL = "https://example.com/tool"


def completion(content, finish_reason="stop") -> dict:
    return {
        "id": "chatcmpl-test",
        "object": "chat.completion",
        "created": 1700000000,
        "model": "test-model",
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": finish_reason,
            }
        ],
        "usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
    }


@pytest.fixture
def llm_config(monkeypatch) -> Config:
    monkeypatch.setenv("OPENROUTER_API_KEY", "llm-key")
    return Config(
        llm_provider_config=LLMProviderConfig(model="test-model", base_url="https://llm.test/v1", timeout_seconds=5)
    )


def client_for(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def test_returns_message_content_and_sends_inputs(llm_config: Config) -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=completion('{"stars": 4}'))

    content = classify_llm_tool(
        URL,
        "Research summary",
        "Page body",
        llm_config,
        metadata={"title": "Tool"},
        http_client=client_for(handler),
    )

    assert content == '{"stars": 4}'
    assert seen["path"] == "/v1/chat/completions"
    body = seen["body"]
    assert body["model"] == "test-model"
    assert body["temperature"] == 0.3
    user_prompt = body["messages"][1]["content"]
    assert URL in user_prompt
    assert "Research summary" in user_prompt
    assert "PAGE CONTENT:\nPage body" in user_prompt
    assert "Title: Tool" in user_prompt


def test_missing_inputs_are_marked_in_prompt(llm_config: Config) -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=completion('{"stars": 2}'))

    classify_llm_tool(URL, None, "Page body", llm_config, http_client=client_for(handler))
    user_prompt = seen["body"]["messages"][1]["content"]
    assert "(no research available)" in user_prompt


def test_rate_limit_maps_with_retry_after(llm_config: Config) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"error": {"message": "slow down"}}, headers={"retry-after": "9"})

    with pytest.raises(RateLimitError) as exc_info:
        classify_llm_tool(URL, "r", "c", llm_config, http_client=client_for(handler))
    assert exc_info.value.retry_after == 9.0


@pytest.mark.parametrize(
    "status,error",
    [
        (401, UpstreamAuthError),
        (403, UpstreamAuthError),
        (500, TransientNetworkError),
        (503, TransientNetworkError),
        (400, ValidationError),
    ],
)
def test_status_errors_are_mapped(llm_config: Config, status: int, error: type) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json={"error": {"message": "nope"}})

    with pytest.raises(error):
        classify_llm_tool(URL, "r", "c", llm_config, http_client=client_for(handler))


def test_connection_error_is_transient(llm_config: Config) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(TransientNetworkError):
        classify_llm_tool(URL, "r", "c", llm_config, http_client=client_for(handler))


def test_empty_content_is_invalid(llm_config: Config) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=completion(None, finish_reason="length"))

    with pytest.raises(ValidationError):
        classify_llm_tool(URL, "r", "c", llm_config, http_client=client_for(handler))


def test_missing_api_key_is_auth_failure(monkeypatch) -> None:
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
    with pytest.raises(UpstreamAuthError):
        classify_llm_tool(URL, "r", "c", Config())


def test_default_client_is_closed_after_each_call(llm_config: Config, monkeypatch) -> None:
    responses = [httpx.Response(200, json=completion('{"stars": 2}')), httpx.Response(503)]
    created = []

    def make_client(timeout):
        client = client_for(lambda request: responses.pop(0))
        created.append(client)
        return client

    module = importlib.import_module("bookmark_enrichment.tools.classify_llm_tool")
    monkeypatch.setattr(module, "_default_http_client", make_client)

    assert classify_llm_tool(URL, "r", "c", llm_config) == '{"stars": 2}'
    with pytest.raises(TransientNetworkError):
        classify_llm_tool(URL, "r", "c", llm_config)

    assert len(created) == 2
    assert all(client.is_closed for client in created)


def test_injected_client_is_left_open(llm_config: Config) -> None:
    client = client_for(lambda request: httpx.Response(200, json=completion('{"stars": 5}')))
    classify_llm_tool(URL, "r", "c", llm_config, http_client=client)
    assert not client.is_closed
    client.close()
