"""Kanban board model; one board per organization."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlmodel import Field

from kanban_crm.core.time import utcnow
from kanban_crm.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (datetime,)


class Board(QueryModel, table=True):
    """Top-level kanban container owned by an organization."""

    __tablename__ = "kanban_boards"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    organization_id: UUID = Field(foreign_key="organizations.id", index=True, unique=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
