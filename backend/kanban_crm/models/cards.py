"""Kanban card model: task units that may be lead-linked or collaborative."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlmodel import Field

from kanban_crm.core.time import utcnow
from kanban_crm.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (datetime,)


class Card(QueryModel, table=True):
    """Task card positioned inside a column."""

    __tablename__ = "kanban_cards"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    column_id: UUID = Field(foreign_key="kanban_columns.id", index=True)
    content: str
    description: str | None = None
    due_date: datetime | None = None
    estimated_time: int | None = None
    position: int = Field(default=0)

    # Timer starts on creation unless a start column is set.
    timer_started_at: datetime | None = None
    timer_start_column_id: UUID | None = Field(default=None, foreign_key="kanban_columns.id")

    lead_id: UUID | None = Field(default=None, index=True)
    is_collaborative: bool = Field(default=False)
    requires_all_approval: bool = Field(default=False)

    calendar_event_id: str | None = None
    created_by: UUID | None = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
