# ruff: noqa: INP001
"""LLM provider request shaping and response normalization."""

from __future__ import annotations

import json

import httpx
import pytest

from agentflow.services.llm.providers import (
    ANTHROPIC_VERSION,
    LLM_PROVIDERS,
    LLMClient,
    LLMError,
    LLMMessage,
    LLMResponse,
)

_MESSAGES = [
    LLMMessage(role="system", content="You are terse."),
    LLMMessage(role="user", content="Say hi"),
]


def test_registry_lists_the_four_vendors() -> None:
    assert list(LLM_PROVIDERS) == ["openai", "anthropic", "groq", "xai"]
    for provider in LLM_PROVIDERS.values():
        assert provider.default_model in provider.models


@pytest.mark.asyncio
async def test_openai_style_request_and_response() -> None:
    seen: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "model": "llama3-70b-8192",
                "choices": [{"message": {"content": "hi"}, "finish_reason": "stop"}],
                "usage": {"prompt_tokens": 7, "completion_tokens": 1, "total_tokens": 8},
            },
        )

    client = LLMClient(transport=httpx.MockTransport(_handler))
    result = await client.send("groq", "gsk-secret", _MESSAGES, temperature=0.2)

    assert isinstance(result, LLMResponse)
    assert result.content == "hi"
    assert result.finish_reason == "stop"
    assert result.usage is not None
    assert result.usage.total_tokens == 8

    request = seen[0]
    assert str(request.url) == "https://api.groq.com/openai/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer gsk-secret"
    body = json.loads(request.content)
    assert body["model"] == "llama3-70b-8192"
    assert body["temperature"] == 0.2
    assert body["max_tokens"] == 8192
    assert body["messages"][0] == {"role": "system", "content": "You are terse."}


@pytest.mark.asyncio
async def test_anthropic_request_lifts_system_prompt() -> None:
    seen: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "model": "claude-3-haiku-20240307",
                "content": [{"type": "text", "text": "hel"}, {"type": "text", "text": "lo"}],
                "stop_reason": "end_turn",
                "usage": {"input_tokens": 10, "output_tokens": 2},
            },
        )

    client = LLMClient(transport=httpx.MockTransport(_handler))
    result = await client.send(
        "anthropic",
        "sk-ant-secret",
        _MESSAGES,
        model="claude-3-haiku-20240307",
    )

    assert isinstance(result, LLMResponse)
    assert result.content == "hello"
    assert result.usage is not None
    assert result.usage.total_tokens == 12

    request = seen[0]
    assert str(request.url) == "https://api.anthropic.com/v1/messages"
    assert request.headers["x-api-key"] == "sk-ant-secret"
    assert request.headers["anthropic-version"] == ANTHROPIC_VERSION
    body = json.loads(request.content)
    assert body["system"] == "You are terse."
    assert body["messages"] == [{"role": "user", "content": "Say hi"}]


@pytest.mark.asyncio
async def test_http_error_is_normalized() -> None:
    def _handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": {"message": "Invalid API key"}})

    client = LLMClient(transport=httpx.MockTransport(_handler))
    result = await client.send("openai", "sk-bad", _MESSAGES)

    assert isinstance(result, LLMError)
    assert result.error == "OpenAI API error: 401 - Invalid API key"
    assert result.provider == "openai"
    assert result.status_code == 401


@pytest.mark.asyncio
async def test_network_error_is_normalized() -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = LLMClient(transport=httpx.MockTransport(_handler))
    result = await client.send("xai", "xai-key", _MESSAGES)

    assert isinstance(result, LLMError)
    assert result.error == "Network error: connection refused"
    assert result.status_code is None


@pytest.mark.asyncio
async def test_malformed_body_is_normalized() -> None:
    def _handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"not json")

    client = LLMClient(transport=httpx.MockTransport(_handler))
    result = await client.send("openai", "sk-key", _MESSAGES)

    assert isinstance(result, LLMError)
    assert result.error == "OpenAI returned a malformed response"


@pytest.mark.asyncio
async def test_unknown_provider_is_rejected_without_request() -> None:
    def _handler(_request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    client = LLMClient(transport=httpx.MockTransport(_handler))
    result = await client.send("mistral", "key", _MESSAGES)

    assert isinstance(result, LLMError)
    assert result.error == "Provider mistral not supported"
