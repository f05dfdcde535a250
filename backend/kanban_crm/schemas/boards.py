"""Schemas for board, column and card API payloads."""

from __future__ import annotations

from datetime import datetime
from typing import Self
from uuid import UUID

from pydantic import model_validator
from sqlmodel import Field, SQLModel

from kanban_crm.schemas.errors import NoticeRead

_ERR_AUTO_DELETE_HOURS = "auto_delete_hours must be positive"
_ERR_DUPLICATE_COLUMNS = "column_ids must not contain duplicates"
RUNTIME_ANNOTATION_TYPES = (datetime, UUID)


class AssigneeRead(SQLModel):
    user_id: UUID
    is_completed: bool
    completed_at: datetime | None = None


class CardRead(SQLModel):
    """Card as shown on the board."""

    id: UUID
    column_id: UUID
    content: str
    description: str | None = None
    due_date: datetime | None = None
    estimated_time: int | None = None
    position: int
    timer_started_at: datetime | None = None
    timer_start_column_id: UUID | None = None
    lead_id: UUID | None = None
    is_collaborative: bool = False
    requires_all_approval: bool = False
    calendar_event_id: str | None = None
    created_by: UUID | None = None
    created_at: datetime
    kind: str = "normal"
    assignees: list[AssigneeRead] = Field(default_factory=list)


class ColumnRead(SQLModel):
    id: UUID
    board_id: UUID
    title: str
    position: int
    block_backward_movement: bool = False
    is_completion_stage: bool = False
    auto_delete_enabled: bool = False
    auto_delete_hours: int | None = None
    cards: list[CardRead] = Field(default_factory=list)


class BoardRead(SQLModel):
    """Board snapshot: ordered columns with their ordered cards."""

    id: UUID
    organization_id: UUID
    columns: list[ColumnRead] = Field(default_factory=list)


class ColumnCreate(SQLModel):
    title: str | None = None


class ColumnUpdate(SQLModel):
    """Partial column update; only fields that are sent are applied."""

    title: str | None = None
    block_backward_movement: bool | None = None
    is_completion_stage: bool | None = None
    auto_delete_enabled: bool | None = None
    auto_delete_hours: int | None = None

    @model_validator(mode="after")
    def validate_hours(self) -> Self:
        if self.auto_delete_hours is not None and self.auto_delete_hours <= 0:
            raise ValueError(_ERR_AUTO_DELETE_HOURS)
        return self


class ColumnOrder(SQLModel):
    column_ids: list[UUID]

    @model_validator(mode="after")
    def validate_unique(self) -> Self:
        if len(set(self.column_ids)) != len(self.column_ids):
            raise ValueError(_ERR_DUPLICATE_COLUMNS)
        return self


class CardCreate(SQLModel):
    """Payload for creating a card at the end of a column."""

    content: str | None = None
    description: str | None = None
    due_date: datetime | None = None
    estimated_time: int | None = Field(default=None, ge=0)
    timer_start_column_id: UUID | None = None
    lead_id: UUID | None = None
    is_collaborative: bool = False
    requires_all_approval: bool = False
    assignee_ids: list[UUID] = Field(default_factory=list)


class CardUpdate(SQLModel):
    content: str | None = None
    description: str | None = None
    due_date: datetime | None = None
    estimated_time: int | None = Field(default=None, ge=0)
    timer_start_column_id: UUID | None = None
    lead_id: UUID | None = None
    requires_all_approval: bool | None = None
    calendar_event_id: str | None = None


class AssigneeSync(SQLModel):
    user_ids: list[UUID]


class AssigneeSyncRead(SQLModel):
    added: list[UUID] = Field(default_factory=list)
    removed: list[UUID] = Field(default_factory=list)
    retained: list[UUID] = Field(default_factory=list)


class CardMove(SQLModel):
    """Drop-time move request; ``position`` defaults to the end of the column."""

    target_column_id: UUID
    position: int | None = Field(default=None, ge=0)


class CardMoveRead(SQLModel):
    card: CardRead
    timer_started: bool = False
    notice: NoticeRead | None = None


class CardReorder(SQLModel):
    card_ids: list[UUID]


class ApprovalAssigneeRead(SQLModel):
    user_id: UUID
    full_name: str | None = None
    avatar_url: str | None = None
    is_completed: bool
    completed_at: datetime | None = None


class ApprovalRead(SQLModel):
    """Completion progress of a collaborative card."""

    card_id: UUID
    completed: int
    total: int
    progress_percent: float
    all_completed: bool
    assignees: list[ApprovalAssigneeRead] = Field(default_factory=list)


class ApprovalConfirmRead(SQLModel):
    completed: int
    total: int
    moved_to_column_id: UUID | None = None
    notice: NoticeRead
