"""Schemas for stored LLM provider API keys."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field, field_validator
from sqlmodel import SQLModel

RUNTIME_ANNOTATION_TYPES = (datetime,)


class ApiKeyUpsert(SQLModel):
    """Payload for storing or replacing a provider API key."""

    api_key: str = Field(min_length=10, max_length=512)
    preferred_model: str | None = Field(default=None, max_length=100)

    @field_validator("api_key", mode="before")
    @classmethod
    def strip_api_key(cls, value: object) -> object:
        """Trim whitespace that would break auth headers."""
        if isinstance(value, str):
            return value.strip()
        return value


class ApiKeyRead(SQLModel):
    """Stored key summary; the secret itself is never returned."""

    provider: str
    key_hint: str = Field(description="Masked key, e.g. `sk-...abcd`.")
    preferred_model: str | None = None
    created_at: datetime
    updated_at: datetime


class ProviderRead(SQLModel):
    """Static LLM provider registry entry."""

    id: str
    name: str
    models: list[str]
    default_model: str
    configured: bool = False
