"""Per-user storage of encrypted LLM provider API keys."""

from __future__ import annotations

from typing import TYPE_CHECKING

from agentflow.core.encryption import DecryptionError, decrypt_secret, encrypt_secret, mask_secret
from agentflow.core.logging import get_logger
from agentflow.core.time import utcnow
from agentflow.models.api_keys import UserApiKey
from agentflow.services.llm.providers import LLM_PROVIDERS

if TYPE_CHECKING:
    from uuid import UUID

    from sqlmodel.ext.asyncio.session import AsyncSession

logger = get_logger(__name__)


class UnknownProviderError(ValueError):
    """Raised for provider ids missing from the registry."""


def _require_provider(provider: str) -> str:
    if provider not in LLM_PROVIDERS:
        raise UnknownProviderError(f"Unknown LLM provider: {provider}")
    return provider


async def list_api_keys(session: AsyncSession, user_id: UUID) -> list[UserApiKey]:
    rows = await UserApiKey.objects.filter_by(user_id=user_id).all(session)
    order = list(LLM_PROVIDERS)
    return sorted(rows, key=lambda row: order.index(row.provider) if row.provider in order else 99)


async def configured_providers(session: AsyncSession, user_id: UUID) -> list[str]:
    """Provider ids with a stored key, in registry order."""
    return [row.provider for row in await list_api_keys(session, user_id)]


async def get_api_key_row(
    session: AsyncSession,
    *,
    user_id: UUID,
    provider: str,
) -> UserApiKey | None:
    return await UserApiKey.objects.filter_by(user_id=user_id, provider=provider).first(session)


async def upsert_api_key(
    session: AsyncSession,
    *,
    user_id: UUID,
    provider: str,
    api_key: str,
    preferred_model: str | None = None,
) -> UserApiKey:
    """Encrypt and store ``api_key``, replacing any existing key for the provider.

    Raises :class:`~agentflow.core.encryption.EncryptionUnavailableError` when no
    usable ``ENCRYPTION_KEY`` is configured.
    """
    _require_provider(provider)
    encrypted = encrypt_secret(api_key)
    row = await get_api_key_row(session, user_id=user_id, provider=provider)
    if row is None:
        row = UserApiKey(user_id=user_id, provider=provider, encrypted_key=encrypted)
    else:
        row.encrypted_key = encrypted
        row.updated_at = utcnow()
    row.key_hint = mask_secret(api_key)
    row.preferred_model = preferred_model
    session.add(row)
    await session.commit()
    await session.refresh(row)
    logger.info("api_keys.stored", extra={"user_id": str(user_id), "provider": provider})
    return row


async def delete_api_key(session: AsyncSession, *, user_id: UUID, provider: str) -> bool:
    row = await get_api_key_row(session, user_id=user_id, provider=provider)
    if row is None:
        return False
    await session.delete(row)
    await session.commit()
    logger.info("api_keys.deleted", extra={"user_id": str(user_id), "provider": provider})
    return True


async def get_decrypted_api_key(
    session: AsyncSession,
    *,
    user_id: UUID,
    provider: str,
) -> str | None:
    """Return the plaintext key, or None when absent or undecryptable."""
    row = await get_api_key_row(session, user_id=user_id, provider=provider)
    if row is None:
        return None
    try:
        return decrypt_secret(row.encrypted_key)
    except DecryptionError:
        logger.warning(
            "api_keys.decrypt_failed",
            extra={"user_id": str(user_id), "provider": provider},
        )
        return None
