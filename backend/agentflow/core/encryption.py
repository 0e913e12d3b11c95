"""Fernet encryption for provider API keys stored at rest."""

from __future__ import annotations

from cryptography.fernet import Fernet, InvalidToken

from agentflow.core.config import settings

KEY_HINT_VISIBLE_CHARS = 4


class EncryptionUnavailableError(RuntimeError):
    """Raised when ``ENCRYPTION_KEY`` is missing or not a valid Fernet key."""


class DecryptionError(RuntimeError):
    """Raised when a stored token cannot be decrypted with the configured key."""


def _fernet(key: str | None = None) -> Fernet:
    raw = (key if key is not None else settings.encryption_key).strip()
    if not raw:
        raise EncryptionUnavailableError("ENCRYPTION_KEY is not set")
    try:
        return Fernet(raw.encode("utf-8"))
    except ValueError as exc:
        raise EncryptionUnavailableError("ENCRYPTION_KEY is not a valid Fernet key") from exc


def encryption_configured() -> bool:
    try:
        _fernet()
    except EncryptionUnavailableError:
        return False
    return True


def encrypt_secret(plaintext: str, *, key: str | None = None) -> str:
    return _fernet(key).encrypt(plaintext.encode("utf-8")).decode("ascii")


def decrypt_secret(token: str, *, key: str | None = None) -> str:
    try:
        return _fernet(key).decrypt(token.encode("ascii")).decode("utf-8")
    except InvalidToken as exc:
        raise DecryptionError("Stored secret could not be decrypted") from exc


def mask_secret(secret: str) -> str:
    """Return a display hint such as ``sk-...abcd``."""
    cleaned = secret.strip()
    if len(cleaned) <= KEY_HINT_VISIBLE_CHARS * 2:
        return "*" * len(cleaned)
    prefix = cleaned.split("-", 1)[0] + "-" if "-" in cleaned[:8] else cleaned[:3]
    return f"{prefix}...{cleaned[-KEY_HINT_VISIBLE_CHARS:]}"
