"""Chainable query builder bound to SQLModel table classes via `Model.objects`."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from sqlalchemy import func
from sqlmodel import col, select

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlmodel.ext.asyncio.session import AsyncSession
    from sqlmodel.sql.expression import SelectOfScalar

ModelT = TypeVar("ModelT")


@dataclass(frozen=True)
class ModelQuery(Generic[ModelT]):
    """Immutable query wrapper; every refinement returns a new instance."""

    model: type[ModelT]
    statement: SelectOfScalar[ModelT]

    def filter(self, *criteria: Any) -> ModelQuery[ModelT]:
        return replace(self, statement=self.statement.where(*criteria))

    def filter_by(self, **kwargs: Any) -> ModelQuery[ModelT]:
        return replace(self, statement=self.statement.filter_by(**kwargs))

    def order_by(self, *clauses: Any) -> ModelQuery[ModelT]:
        return replace(self, statement=self.statement.order_by(*clauses))

    def offset(self, value: int) -> ModelQuery[ModelT]:
        return replace(self, statement=self.statement.offset(value))

    def limit(self, value: int) -> ModelQuery[ModelT]:
        return replace(self, statement=self.statement.limit(value))

    async def all(self, session: AsyncSession) -> list[ModelT]:
        return list(await session.exec(self.statement))

    async def first(self, session: AsyncSession) -> ModelT | None:
        return (await session.exec(self.statement.limit(1))).first()

    async def count(self, session: AsyncSession) -> int:
        subquery = self.statement.order_by(None).limit(None).offset(None).subquery()
        result = await session.exec(select(func.count()).select_from(subquery))
        return int(result.one())


class ModelManager(Generic[ModelT]):
    """Entry point for queries against one table model."""

    def __init__(self, model: type[ModelT]) -> None:
        self.model = model

    def all(self) -> ModelQuery[ModelT]:
        return ModelQuery(self.model, select(self.model))

    def by_id(self, obj_id: object) -> ModelQuery[ModelT]:
        return self.by_field("id", obj_id)

    def by_ids(self, obj_ids: Iterable[object]) -> ModelQuery[ModelT]:
        return self.by_field_in("id", obj_ids)

    def by_field(self, field_name: str, value: object) -> ModelQuery[ModelT]:
        return self.all().filter(col(getattr(self.model, field_name)) == value)

    def by_field_in(self, field_name: str, values: Iterable[object]) -> ModelQuery[ModelT]:
        return self.all().filter(col(getattr(self.model, field_name)).in_(list(values)))

    def filter(self, *criteria: Any) -> ModelQuery[ModelT]:
        return self.all().filter(*criteria)

    def filter_by(self, **kwargs: Any) -> ModelQuery[ModelT]:
        return self.all().filter_by(**kwargs)


class ManagerDescriptor:
    """Class-level descriptor that hands out a manager for the owning model."""

    def __get__(self, instance: object, owner: type[ModelT]) -> ModelManager[ModelT]:
        return ModelManager(owner)
