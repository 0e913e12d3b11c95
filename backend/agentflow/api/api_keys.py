"""LLM provider registry and per-user API key routes."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, HTTPException, status

from agentflow.api.deps import SESSION_DEP, USER_DEP
from agentflow.core.encryption import EncryptionUnavailableError
from agentflow.schemas.api_keys import ApiKeyRead, ApiKeyUpsert, ProviderRead
from agentflow.services.api_keys import (
    UnknownProviderError,
    configured_providers,
    delete_api_key,
    list_api_keys,
    upsert_api_key,
)
from agentflow.services.llm.providers import LLM_PROVIDERS

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

    from agentflow.models.api_keys import UserApiKey
    from agentflow.models.users import User

router = APIRouter(tags=["api-keys"])
ENCRYPTION_UNAVAILABLE_DETAIL = "API key encryption is not configured"


def _require_known_provider(provider: str) -> None:
    if provider not in LLM_PROVIDERS:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown LLM provider: {provider}",
        )


@router.get("/providers", response_model=list[ProviderRead])
async def list_providers(
    user: User = USER_DEP,
    session: AsyncSession = SESSION_DEP,
) -> list[ProviderRead]:
    """List supported providers, flagging those the caller has a key for."""
    configured = set(await configured_providers(session, user.id))
    return [
        ProviderRead(
            id=provider.id,
            name=provider.name,
            models=list(provider.models),
            default_model=provider.default_model,
            configured=provider.id in configured,
        )
        for provider in LLM_PROVIDERS.values()
    ]


@router.get("/api-keys", response_model=list[ApiKeyRead])
async def list_keys(
    user: User = USER_DEP,
    session: AsyncSession = SESSION_DEP,
) -> list[UserApiKey]:
    """List the caller's stored keys as masked hints."""
    return await list_api_keys(session, user.id)


@router.put("/api-keys/{provider}", response_model=ApiKeyRead)
async def put_key(
    provider: str,
    payload: ApiKeyUpsert,
    user: User = USER_DEP,
    session: AsyncSession = SESSION_DEP,
) -> UserApiKey:
    """Store or replace the caller's key for ``provider``."""
    _require_known_provider(provider)
    info = LLM_PROVIDERS[provider]
    if payload.preferred_model is not None and payload.preferred_model not in info.models:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Model {payload.preferred_model} is not offered by {info.name}",
        )
    try:
        return await upsert_api_key(
            session,
            user_id=user.id,
            provider=provider,
            api_key=payload.api_key,
            preferred_model=payload.preferred_model,
        )
    except UnknownProviderError as exc:  # pragma: no cover
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except EncryptionUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=ENCRYPTION_UNAVAILABLE_DETAIL,
        ) from exc


@router.delete("/api-keys/{provider}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_key(
    provider: str,
    user: User = USER_DEP,
    session: AsyncSession = SESSION_DEP,
) -> None:
    """Remove the caller's key for ``provider``."""
    _require_known_provider(provider)
    if not await delete_api_key(session, user_id=user.id, provider=provider):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="API key not found")
