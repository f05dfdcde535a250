"""Chainable query helpers exposed on models as ``Model.objects``."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from sqlmodel import col, select

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession
    from sqlmodel.sql.expression import SelectOfScalar

    from kanban_crm.models.base import QueryModel

ModelT = TypeVar("ModelT", bound="QueryModel")


@dataclass(frozen=True)
class QuerySet(Generic[ModelT]):
    """Immutable wrapper around a select statement for a single model."""

    model: type[ModelT]
    statement: SelectOfScalar[ModelT]

    def filter(self, *criteria: Any) -> QuerySet[ModelT]:
        return replace(self, statement=self.statement.where(*criteria))

    def filter_by(self, **kwargs: object) -> QuerySet[ModelT]:
        return replace(self, statement=self.statement.filter_by(**kwargs))

    def order_by(self, *columns: Any) -> QuerySet[ModelT]:
        return replace(self, statement=self.statement.order_by(*columns))

    def limit(self, count: int) -> QuerySet[ModelT]:
        return replace(self, statement=self.statement.limit(count))

    def fresh(self) -> QuerySet[ModelT]:
        """Overwrite identity-map instances with the row values read from the database."""
        return replace(
            self,
            statement=self.statement.execution_options(populate_existing=True),
        )

    async def all(self, session: AsyncSession) -> list[ModelT]:
        return list(await session.exec(self.statement))

    async def first(self, session: AsyncSession) -> ModelT | None:
        return (await session.exec(self.statement)).first()


class ModelManager(Generic[ModelT]):
    """Entry point for building querysets for one model class."""

    def __init__(self, model: type[ModelT]) -> None:
        self.model = model

    def all(self) -> QuerySet[ModelT]:
        return QuerySet(self.model, select(self.model))

    def by_id(self, obj_id: object) -> QuerySet[ModelT]:
        return self.all().filter(col(self.model.id) == obj_id)  # type: ignore[attr-defined]

    def by_ids(self, obj_ids: Iterable[object]) -> QuerySet[ModelT]:
        ids = list(obj_ids)
        return self.all().filter(col(self.model.id).in_(ids))  # type: ignore[attr-defined]

    def filter(self, *criteria: Any) -> QuerySet[ModelT]:
        return self.all().filter(*criteria)

    def filter_by(self, **kwargs: object) -> QuerySet[ModelT]:
        return self.all().filter_by(**kwargs)


class ManagerDescriptor:
    """Descriptor returning a fresh manager bound to the accessing model class."""

    def __get__(self, instance: object, owner: type[ModelT]) -> ModelManager[ModelT]:
        return ModelManager(owner)
