"""Card assignee join rows carrying each collaborator's completion flag."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import UniqueConstraint
from sqlmodel import Field

from kanban_crm.core.time import utcnow
from kanban_crm.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (datetime,)


class CardAssignee(QueryModel, table=True):
    """User assigned to a card with an individual completion flag."""

    __tablename__ = "kanban_card_assignees"  # pyright: ignore[reportAssignmentType]
    __table_args__ = (
        UniqueConstraint("card_id", "user_id", name="uq_kanban_card_assignees_card_user"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    card_id: UUID = Field(foreign_key="kanban_cards.id", index=True)
    user_id: UUID = Field(index=True)
    is_completed: bool = Field(default=False)
    completed_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
