"""Small persistence helpers shared by services."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, TypeVar

from sqlalchemy import delete
from sqlmodel import SQLModel

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

ModelT = TypeVar("ModelT", bound=SQLModel)


async def delete_where(
    session: AsyncSession,
    model: type[SQLModel],
    *criteria: Any,
    commit: bool = True,
) -> int:
    """Bulk delete rows matching *criteria*; returns the affected row count."""
    result = await session.execute(delete(model).where(*criteria))
    if commit:
        await session.commit()
    return int(result.rowcount or 0)


async def save(session: AsyncSession, obj: ModelT, *, commit: bool = True) -> ModelT:
    """Add *obj* to the session and optionally commit and refresh it."""
    session.add(obj)
    if commit:
        await session.commit()
        await session.refresh(obj)
    return obj
