"""LLM provider registry and HTTP dispatch.

``openai``, ``groq`` and ``xai`` speak the OpenAI ``/chat/completions``
dialect; ``anthropic`` uses ``/messages`` with the system prompt lifted out of
the message list. Every call returns either :class:`LLMResponse` or
:class:`LLMError`; transport failures and malformed replies are never raised.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

import httpx

from agentflow.core.config import settings
from agentflow.core.logging import get_logger

logger = get_logger(__name__)

ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_TEMPERATURE = 0.7


@dataclass(frozen=True)
class LLMProvider:
    """Static description of one supported vendor."""

    id: str
    name: str
    base_url: str
    models: tuple[str, ...]
    default_model: str
    max_tokens: int
    api_style: Literal["openai", "anthropic"] = "openai"


LLM_PROVIDERS: dict[str, LLMProvider] = {
    "openai": LLMProvider(
        id="openai",
        name="OpenAI",
        base_url="https://api.openai.com/v1",
        models=("gpt-4o", "gpt-4o-mini", "gpt-4-turbo", "gpt-4", "gpt-3.5-turbo"),
        default_model="gpt-4o-mini",
        max_tokens=4096,
    ),
    "anthropic": LLMProvider(
        id="anthropic",
        name="Anthropic Claude",
        base_url="https://api.anthropic.com/v1",
        models=(
            "claude-3-opus-20240229",
            "claude-3-sonnet-20240229",
            "claude-3-haiku-20240307",
        ),
        default_model="claude-3-sonnet-20240229",
        max_tokens=4096,
        api_style="anthropic",
    ),
    "groq": LLMProvider(
        id="groq",
        name="Groq",
        base_url="https://api.groq.com/openai/v1",
        models=("llama3-70b-8192", "llama3-8b-8192", "mixtral-8x7b-32768"),
        default_model="llama3-70b-8192",
        max_tokens=8192,
    ),
    "xai": LLMProvider(
        id="xai",
        name="xAI Grok",
        base_url="https://api.x.ai/v1",
        models=("grok-beta",),
        default_model="grok-beta",
        max_tokens=4096,
    ),
}


@dataclass(frozen=True)
class LLMMessage:
    role: Literal["system", "user", "assistant"]
    content: str

    def as_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class LLMUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class LLMResponse:
    """Normalized successful completion."""

    content: str
    model: str | None = None
    finish_reason: str | None = None
    usage: LLMUsage | None = None


@dataclass(frozen=True)
class LLMError:
    """Normalized failure; ``provider`` is ``"none"`` when no provider applies."""

    error: str
    provider: str
    status_code: int | None = None


LLMResult = LLMResponse | LLMError


@dataclass
class _PreparedRequest:
    url: str
    headers: dict[str, str]
    body: dict[str, Any] = field(default_factory=dict)


def get_provider(provider_id: str) -> LLMProvider | None:
    return LLM_PROVIDERS.get(provider_id)


def _prepare_openai(
    provider: LLMProvider,
    api_key: str,
    messages: list[LLMMessage],
    *,
    model: str,
    temperature: float,
    max_tokens: int,
) -> _PreparedRequest:
    return _PreparedRequest(
        url=f"{provider.base_url}/chat/completions",
        headers={"Authorization": f"Bearer {api_key}"},
        body={
            "model": model,
            "messages": [message.as_dict() for message in messages],
            "temperature": temperature,
            "max_tokens": max_tokens,
        },
    )


def _prepare_anthropic(
    provider: LLMProvider,
    api_key: str,
    messages: list[LLMMessage],
    *,
    model: str,
    temperature: float,
    max_tokens: int,
) -> _PreparedRequest:
    system = "\n\n".join(m.content for m in messages if m.role == "system")
    body: dict[str, Any] = {
        "model": model,
        "max_tokens": max_tokens,
        "temperature": temperature,
        "messages": [m.as_dict() for m in messages if m.role != "system"],
    }
    if system:
        body["system"] = system
    return _PreparedRequest(
        url=f"{provider.base_url}/messages",
        headers={"x-api-key": api_key, "anthropic-version": ANTHROPIC_VERSION},
        body=body,
    )


def _parse_openai(data: dict[str, Any]) -> LLMResponse:
    choice = (data.get("choices") or [{}])[0]
    usage = data.get("usage")
    return LLMResponse(
        content=str((choice.get("message") or {}).get("content") or ""),
        model=data.get("model"),
        finish_reason=choice.get("finish_reason"),
        usage=(
            LLMUsage(
                prompt_tokens=int(usage.get("prompt_tokens", 0)),
                completion_tokens=int(usage.get("completion_tokens", 0)),
                total_tokens=int(usage.get("total_tokens", 0)),
            )
            if isinstance(usage, dict)
            else None
        ),
    )


def _parse_anthropic(data: dict[str, Any]) -> LLMResponse:
    blocks = data.get("content") or []
    text = "".join(
        str(block.get("text", ""))
        for block in blocks
        if isinstance(block, dict) and block.get("type", "text") == "text"
    )
    usage = data.get("usage")
    llm_usage = None
    if isinstance(usage, dict):
        prompt = int(usage.get("input_tokens", 0))
        completion = int(usage.get("output_tokens", 0))
        llm_usage = LLMUsage(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=prompt + completion,
        )
    return LLMResponse(
        content=text,
        model=data.get("model"),
        finish_reason=data.get("stop_reason"),
        usage=llm_usage,
    )


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return "Unknown error"
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict):
        return str(error.get("message") or "Unknown error")
    if isinstance(error, str):
        return error
    return "Unknown error"


class LLMClient:
    """Thin async HTTP client over the provider registry."""

    def __init__(
        self,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout if timeout is not None else settings.llm_request_timeout_seconds
        self._transport = transport

    async def send(
        self,
        provider_id: str,
        api_key: str,
        messages: list[LLMMessage],
        *,
        model: str | None = None,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int | None = None,
    ) -> LLMResult:
        provider = get_provider(provider_id)
        if provider is None:
            return LLMError(error=f"Provider {provider_id} not supported", provider=provider_id)

        prepare = _prepare_anthropic if provider.api_style == "anthropic" else _prepare_openai
        parse = _parse_anthropic if provider.api_style == "anthropic" else _parse_openai
        request = prepare(
            provider,
            api_key,
            messages,
            model=model or provider.default_model,
            temperature=temperature,
            max_tokens=max_tokens or provider.max_tokens,
        )

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                response = await client.post(
                    request.url,
                    headers=request.headers,
                    json=request.body,
                )
        except httpx.HTTPError as exc:
            logger.warning(
                "llm.request.network_error",
                extra={"provider": provider.id, "error": str(exc) or exc.__class__.__name__},
            )
            return LLMError(
                error=f"Network error: {str(exc) or exc.__class__.__name__}",
                provider=provider.id,
            )

        if response.is_error:
            logger.warning(
                "llm.request.http_error",
                extra={"provider": provider.id, "status_code": response.status_code},
            )
            return LLMError(
                error=(
                    f"{provider.name} API error: {response.status_code} - "
                    f"{_error_message(response)}"
                ),
                provider=provider.id,
                status_code=response.status_code,
            )

        try:
            data = response.json()
            if not isinstance(data, dict):
                raise TypeError("response body is not an object")
            result = parse(data)
        except (ValueError, TypeError, AttributeError) as exc:
            logger.warning(
                "llm.request.malformed_response",
                extra={"provider": provider.id, "error": str(exc)},
            )
            return LLMError(
                error=f"{provider.name} returned a malformed response",
                provider=provider.id,
                status_code=response.status_code,
            )

        logger.info(
            "llm.request.complete",
            extra={
                "provider": provider.id,
                "model": result.model,
                "total_tokens": result.usage.total_tokens if result.usage else None,
            },
        )
        return result
