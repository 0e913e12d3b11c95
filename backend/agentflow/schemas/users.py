"""User profile response schemas."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import Field
from sqlmodel import SQLModel

RUNTIME_ANNOTATION_TYPES = (datetime, UUID)


class UserRead(SQLModel):
    """Profile payload returned by the auth bootstrap endpoint."""

    id: UUID = Field(
        description="Internal user UUID.",
        examples=["11111111-1111-1111-1111-111111111111"],
    )
    clerk_user_id: str = Field(
        description="External auth provider user identifier.",
        examples=["user_2abcXYZ"],
    )
    email: str | None = Field(default=None, examples=["alex@example.com"])
    name: str | None = Field(default=None, examples=["Alex Chen"])
    created_at: datetime
