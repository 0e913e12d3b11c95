"""Reusable FastAPI dependencies for auth and agent ownership.

Routes compose these instead of repeating ownership checks: every agent-scoped
route loads the agent through :func:`get_owned_agent`, which answers 404 for
missing agents and 403 for agents owned by someone else.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

from fastapi import Depends, HTTPException, status

from agentflow.core.auth import AuthContext, get_auth_context
from agentflow.db.session import get_session
from agentflow.models.agents import Agent

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

    from agentflow.models.users import User

AUTH_DEP = Depends(get_auth_context)
SESSION_DEP = Depends(get_session)


def require_user(auth: AuthContext = AUTH_DEP) -> User:
    """Return the authenticated user."""
    return auth.user


USER_DEP = Depends(require_user)


async def get_owned_agent(
    agent_id: UUID,
    user: User = USER_DEP,
    session: AsyncSession = SESSION_DEP,
) -> Agent:
    """Load an agent owned by the caller or raise 404/403."""
    agent = await Agent.objects.by_id(agent_id).first(session)
    if agent is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Agent not found")
    if agent.owner_id != user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You don't have permission to access this agent",
        )
    return agent


OWNED_AGENT_DEP = Depends(get_owned_agent)
