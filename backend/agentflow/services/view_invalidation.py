"""Broadcast which dashboard views went stale after a mutation."""

from __future__ import annotations

from typing import TYPE_CHECKING

from agentflow.core.config import settings
from agentflow.core.logging import get_logger
from agentflow.services.queue import publish

if TYPE_CHECKING:
    from collections.abc import Iterable
    from uuid import UUID

logger = get_logger(__name__)

ROOT_PATH = "/"
DASHBOARD_PATH = "/dashboard"
DEPENDENCIES_PATH = "/dashboard/dependencies"


def agent_path(agent_id: UUID) -> str:
    return f"/dashboard/agents/{agent_id}"


def invalidate_views(paths: Iterable[str]) -> list[str]:
    """Publish ``{"paths": [...]}`` on the invalidation channel.

    Delivery is best-effort; the de-duplicated path list is returned either
    way so callers can hand it back to the client.
    """
    unique = list(dict.fromkeys(paths))
    if not unique:
        return unique
    if not publish(settings.view_invalidation_channel, {"paths": unique}):
        logger.warning("views.invalidate_failed", extra={"paths": unique})
    return unique
