"""Provider selection and JSON generation on top of :mod:`providers`."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from agentflow.core.encryption import EncryptionUnavailableError
from agentflow.core.logging import get_logger
from agentflow.services.api_keys import (
    configured_providers,
    get_api_key_row,
    get_decrypted_api_key,
)
from agentflow.services.llm.providers import (
    LLMClient,
    LLMError,
    LLMMessage,
    LLMResponse,
    LLMResult,
    get_provider,
)

if TYPE_CHECKING:
    from uuid import UUID

    from sqlmodel.ext.asyncio.session import AsyncSession

logger = get_logger(__name__)

NO_PROVIDER_MESSAGE = (
    "No LLM providers configured. Please add an API key for OpenAI, Anthropic, Groq, or xAI."
)
JSON_ONLY_INSTRUCTION = "IMPORTANT: Respond only with valid JSON. No additional text or formatting."
_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


@dataclass(frozen=True)
class JSONResult:
    """Outcome of :func:`generate_json`."""

    data: Any = None
    error: str | None = None
    provider: str | None = None
    tokens_used: int | None = None

    @property
    def success(self) -> bool:
        return self.error is None


def extract_json(text: str) -> Any:
    """Parse the JSON document in an LLM reply, tolerating code fences and chatter."""
    candidates = [text.strip()]
    fenced = _FENCE_RE.search(text)
    if fenced:
        candidates.insert(0, fenced.group(1).strip())
    for opener, closer in (("{", "}"), ("[", "]")):
        start, end = text.find(opener), text.rfind(closer)
        if start != -1 and end > start:
            candidates.append(text[start : end + 1])
    for candidate in candidates:
        if not candidate:
            continue
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    raise ValueError("No JSON document found in LLM response")


async def resolve_provider(
    session: AsyncSession,
    user_id: UUID,
    provider: str | None = None,
) -> str | LLMError:
    """Pick ``provider`` when given, else the first provider with a stored key."""
    if provider is not None:
        if get_provider(provider) is None:
            return LLMError(error=f"Provider {provider} not supported", provider=provider)
        return provider
    available = await configured_providers(session, user_id)
    if not available:
        return LLMError(error=NO_PROVIDER_MESSAGE, provider="none")
    return available[0]


async def generate_text(
    session: AsyncSession,
    *,
    user_id: UUID,
    prompt: str,
    system_prompt: str | None = None,
    provider: str | None = None,
    model: str | None = None,
    temperature: float = 0.7,
    max_tokens: int | None = None,
    client: LLMClient | None = None,
) -> LLMResult:
    """Send one prompt to the user's provider, using their stored key and model."""
    selected = await resolve_provider(session, user_id, provider)
    if isinstance(selected, LLMError):
        return selected
    try:
        api_key = await get_decrypted_api_key(session, user_id=user_id, provider=selected)
    except EncryptionUnavailableError:
        return LLMError(error="API key encryption is not configured", provider=selected)
    if not api_key:
        info = get_provider(selected)
        name = info.name if info else selected
        return LLMError(error=f"API key not found for {name}.", provider=selected)

    row = await get_api_key_row(session, user_id=user_id, provider=selected)
    messages: list[LLMMessage] = []
    if system_prompt:
        messages.append(LLMMessage(role="system", content=system_prompt))
    messages.append(LLMMessage(role="user", content=prompt))
    return await (client or LLMClient()).send(
        selected,
        api_key,
        messages,
        model=model or (row.preferred_model if row else None),
        temperature=temperature,
        max_tokens=max_tokens,
    )


async def generate_json(
    session: AsyncSession,
    *,
    user_id: UUID,
    prompt: str,
    system_prompt: str | None = None,
    provider: str | None = None,
    max_tokens: int = 2000,
    client: LLMClient | None = None,
) -> JSONResult:
    """Ask for a JSON reply at low temperature and parse it."""
    selected = await resolve_provider(session, user_id, provider)
    if isinstance(selected, LLMError):
        return JSONResult(error=selected.error, provider=selected.provider)
    system = f"{system_prompt or ''}\n\n{JSON_ONLY_INSTRUCTION}".strip()
    result = await generate_text(
        session,
        user_id=user_id,
        prompt=prompt,
        system_prompt=system,
        provider=selected,
        temperature=0.1,
        max_tokens=max_tokens,
        client=client,
    )
    if not isinstance(result, LLMResponse):
        return JSONResult(error=result.error, provider=result.provider)
    tokens = result.usage.total_tokens if result.usage else None
    try:
        data = extract_json(result.content)
    except ValueError as exc:
        logger.warning(
            "llm.json.parse_failed",
            extra={"provider": selected, "content_preview": result.content[:200]},
        )
        return JSONResult(error=str(exc), provider=selected, tokens_used=tokens)
    return JSONResult(data=data, provider=selected, tokens_used=tokens)
