"""In-app notification rows addressed to a single user."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlmodel import Field

from kanban_crm.core.time import utcnow
from kanban_crm.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (datetime,)

NOTIFICATION_TYPES = frozenset(
    {
        "task_assigned",
        "task_mention",
        "task_approval",
        "task_ready",
    },
)


class Notification(QueryModel, table=True):
    """Notification delivered to a user's inbox."""

    __tablename__ = "notifications"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(index=True)
    type: str = Field(index=True)
    title: str
    message: str
    card_id: UUID | None = Field(default=None, index=True)
    lead_id: UUID | None = None
    due_date: datetime | None = None
    time_estimate: int | None = None
    from_user_id: UUID | None = None
    read: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
