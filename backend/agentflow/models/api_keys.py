"""Encrypted third-party LLM provider credentials."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import Column, Text, UniqueConstraint
from sqlmodel import Field

from agentflow.core.time import utcnow
from agentflow.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (datetime,)


class UserApiKey(QueryModel, table=True):
    """One Fernet-encrypted API key per user and provider."""

    __tablename__ = "user_api_keys"  # pyright: ignore[reportAssignmentType]
    __table_args__ = (UniqueConstraint("user_id", "provider", name="uq_user_api_keys_provider"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="profiles.id", index=True)
    provider: str = Field(index=True)
    encrypted_key: str = Field(sa_column=Column(Text, nullable=False))
    key_hint: str = Field(default="")
    preferred_model: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
