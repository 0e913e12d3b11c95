"""Base model with a small chainable query helper.

``Model.objects`` returns a :class:`ModelQuery` bound to the model class so
services can write ``await Task.objects.filter_by(agent_id=x).all(session)``
instead of assembling ``select()`` statements by hand.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, ClassVar, Generic, Self, TypeVar
from uuid import UUID

from sqlalchemy import false, func
from sqlmodel import SQLModel, col, select

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlalchemy.sql.elements import ColumnElement
    from sqlmodel.ext.asyncio.session import AsyncSession
    from sqlmodel.sql.expression import SelectOfScalar

ModelT = TypeVar("ModelT", bound="QueryModel")


def _coerce_uuid(value: object) -> UUID | None:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


class ModelQuery(Generic[ModelT]):
    """Immutable wrapper around a ``select()`` statement for one model."""

    def __init__(self, model: type[ModelT], statement: SelectOfScalar[ModelT]) -> None:
        self.model = model
        self.statement = statement

    def _with(self, statement: SelectOfScalar[ModelT]) -> ModelQuery[ModelT]:
        return ModelQuery(self.model, statement)

    def filter(self, *criteria: ColumnElement[bool] | bool) -> ModelQuery[ModelT]:
        return self._with(self.statement.where(*criteria))

    def filter_by(self, **kwargs: object) -> ModelQuery[ModelT]:
        return self._with(self.statement.filter_by(**kwargs))

    def order_by(self, *clauses: Any) -> ModelQuery[ModelT]:
        return self._with(self.statement.order_by(*clauses))

    def offset(self, value: int) -> ModelQuery[ModelT]:
        return self._with(self.statement.offset(value))

    def limit(self, value: int) -> ModelQuery[ModelT]:
        return self._with(self.statement.limit(value))

    async def all(self, session: AsyncSession) -> list[ModelT]:
        result = await session.exec(self.statement)
        return list(result.all())

    async def first(self, session: AsyncSession) -> ModelT | None:
        result = await session.exec(self.statement.limit(1))
        return result.first()

    async def count(self, session: AsyncSession) -> int:
        statement = select(func.count()).select_from(self.statement.subquery())
        result = await session.exec(statement)
        return int(result.one())


class ModelManager:
    """Descriptor returning query entry points for the owning model class."""

    def __get__(self, instance: object, owner: type[ModelT]) -> _BoundManager[ModelT]:
        return _BoundManager(owner)


class _BoundManager(Generic[ModelT]):
    def __init__(self, model: type[ModelT]) -> None:
        self.model = model

    def all(self) -> ModelQuery[ModelT]:
        return ModelQuery(self.model, select(self.model))

    def filter(self, *criteria: ColumnElement[bool] | bool) -> ModelQuery[ModelT]:
        return self.all().filter(*criteria)

    def filter_by(self, **kwargs: object) -> ModelQuery[ModelT]:
        return self.all().filter_by(**kwargs)

    def by_id(self, value: object) -> ModelQuery[ModelT]:
        identifier = _coerce_uuid(value)
        if identifier is None:
            return self.all().filter(false())
        return self.all().filter(col(self.model.id) == identifier)  # type: ignore[attr-defined]

    def by_ids(self, values: Iterable[object]) -> ModelQuery[ModelT]:
        identifiers = [uid for uid in (_coerce_uuid(v) for v in values) if uid is not None]
        if not identifiers:
            return self.all().filter(false())
        return self.all().filter(col(self.model.id).in_(identifiers))  # type: ignore[attr-defined]


class QueryModel(SQLModel):
    """SQLModel base exposing ``objects`` query helpers."""

    objects: ClassVar[ModelManager] = ModelManager()

    def merge_json(self, attribute: str, patch: dict[str, Any]) -> Self:
        """Shallow-merge ``patch`` into a JSON column, reassigning so it is flushed."""
        current = getattr(self, attribute) or {}
        setattr(self, attribute, {**current, **patch})
        return self
