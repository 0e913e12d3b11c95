"""Limit/offset pagination helpers built on fastapi-pagination."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi_pagination.ext.sqlalchemy import apaginate

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from sqlmodel.ext.asyncio.session import AsyncSession
    from sqlmodel.sql.expression import SelectOfScalar

    from fastapi_pagination.limit_offset import LimitOffsetPage


async def paginate(
    session: AsyncSession,
    statement: SelectOfScalar[Any],
    *,
    transformer: Callable[[Sequence[Any]], Sequence[Any]] | None = None,
) -> LimitOffsetPage[Any]:
    """Paginate ``statement`` using the request's limit/offset params."""
    return await apaginate(session, statement, transformer=transformer)
