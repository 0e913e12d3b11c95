"""Authentication bootstrap endpoint."""

from __future__ import annotations

from fastapi import APIRouter, status

from agentflow.api.deps import AUTH_DEP
from agentflow.core.auth import AuthContext
from agentflow.schemas.users import UserRead

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post(
    "/bootstrap",
    response_model=UserRead,
    summary="Bootstrap Authenticated User Context",
    description=(
        "Resolve caller identity from auth headers and return the user profile, "
        "creating it on first sight. This endpoint does not accept a request body."
    ),
    responses={
        status.HTTP_401_UNAUTHORIZED: {"description": "Caller is not authenticated."},
    },
)
async def bootstrap_user(auth: AuthContext = AUTH_DEP) -> UserRead:
    """Return the authenticated user profile."""
    return UserRead.model_validate(auth.user)
