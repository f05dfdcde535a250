"""Kanban column model with movement and auto-delete policy flags."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlmodel import Field

from kanban_crm.core.time import utcnow
from kanban_crm.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (datetime,)


class BoardColumn(QueryModel, table=True):
    """Ordered stage within a board; cards live in exactly one column."""

    __tablename__ = "kanban_columns"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    board_id: UUID = Field(foreign_key="kanban_boards.id", index=True)
    title: str
    position: int = Field(default=0)
    block_backward_movement: bool = Field(default=False)
    is_completion_stage: bool = Field(default=False)
    auto_delete_enabled: bool = Field(default=False)
    auto_delete_hours: int | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
