"""Movement gates consulted before a card may leave its column.

Two independent checks exist:

- the collaborative-approval gate, which re-reads assignee completion rows
  from the backend on every call (another collaborator may confirm at any
  moment, so cached state is never trusted);
- the backward-movement check, a pure comparison of cached column order.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from kanban_crm.core.config import settings
from kanban_crm.core.logging import get_logger
from kanban_crm.services.card_kinds import CardKind, is_approval_gated, kind_of
from kanban_crm.services.notices import (
    Notice,
    approval_pending_notice,
    backward_movement_notice,
)

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

    from kanban_crm.models.cards import Card
    from kanban_crm.services.board_backend import BoardBackend
    from kanban_crm.services.board_store import CardState, ColumnState

logger = get_logger(__name__)


@dataclass(frozen=True)
class GateDecision:
    """Outcome of a movement check; ``reason`` is set only when blocked."""

    allowed: bool
    completed: int = 0
    total: int = 0
    pending_user_ids: tuple[UUID, ...] = ()
    pending_names: tuple[str, ...] = ()
    reason: str | None = None
    column_title: str | None = None

    @property
    def notice(self) -> Notice | None:
        if self.allowed:
            return None
        if self.reason == "backward_movement":
            return backward_movement_notice(column_title=self.column_title or "")
        return approval_pending_notice(
            completed=self.completed,
            total=self.total,
            pending_names=self.pending_names,
        )


ALLOWED = GateDecision(allowed=True)


def _kind(card: Card | CardState) -> CardKind:
    kind = getattr(card, "kind", None)
    if kind is not None:
        return kind
    return kind_of(card)  # type: ignore[arg-type]


async def _resolve_names(backend: BoardBackend, user_ids: Sequence[UUID]) -> tuple[str, ...]:
    placeholder = settings.pending_collaborators_placeholder
    try:
        profiles = await backend.fetch_profiles(user_ids)
    except SQLAlchemyError:
        # Names only decorate the notice; the gate decision stands without them.
        logger.warning(
            "kanban.gate.name_resolution_failed",
            extra={"user_count": len(user_ids)},
            exc_info=True,
        )
        return (placeholder,)
    names_by_user = {p.user_id: p.full_name for p in profiles if p.full_name}
    names = tuple(names_by_user[uid] for uid in user_ids if uid in names_by_user)
    return names or (placeholder,)


async def check_collaborative_gate(
    backend: BoardBackend,
    card: Card | CardState,
) -> GateDecision:
    """May this card leave its current column right now?

    Backend read failures propagate; callers decide how to recover.
    """
    if not is_approval_gated(_kind(card)):
        return ALLOWED

    assignees = await backend.fetch_assignees(card.id)
    if not assignees:
        if settings.gate_block_unassigned_collaborative:
            logger.info("kanban.gate.blocked_unassigned", extra={"card_id": str(card.id)})
            return GateDecision(
                allowed=False,
                pending_names=(settings.pending_collaborators_placeholder,),
                reason="approval_pending",
            )
        return ALLOWED

    pending = [a.user_id for a in assignees if not a.is_completed]
    total = len(assignees)
    completed = total - len(pending)
    if not pending:
        return GateDecision(allowed=True, completed=completed, total=total)

    names = await _resolve_names(backend, pending)
    logger.info(
        "kanban.gate.blocked",
        extra={
            "card_id": str(card.id),
            "completed": completed,
            "total": total,
        },
    )
    return GateDecision(
        allowed=False,
        completed=completed,
        total=total,
        pending_user_ids=tuple(pending),
        pending_names=names,
        reason="approval_pending",
    )


def check_backward_movement(
    columns: Sequence[ColumnState],
    *,
    source_column_id: UUID,
    target_column_id: UUID,
) -> GateDecision:
    """Reject moves to an earlier column when the source column forbids them."""
    index = {column.id: i for i, column in enumerate(columns)}
    source_index = index.get(source_column_id)
    target_index = index.get(target_column_id)
    if source_index is None or target_index is None:
        return ALLOWED
    source = columns[source_index]
    if source.block_backward_movement and target_index < source_index:
        return GateDecision(
            allowed=False,
            reason="backward_movement",
            column_title=source.title,
        )
    return ALLOWED


@dataclass(frozen=True)
class AssigneeStatus:
    user_id: UUID
    full_name: str | None
    avatar_url: str | None
    is_completed: bool
    completed_at: datetime | None


@dataclass(frozen=True)
class ApprovalStatus:
    """Completion progress of a collaborative card, for the approval dialog."""

    card_id: UUID
    assignees: tuple[AssigneeStatus, ...]
    completed: int
    total: int

    @property
    def progress_percent(self) -> float:
        if self.total == 0:
            return 0.0
        return self.completed / self.total * 100

    @property
    def all_completed(self) -> bool:
        return self.total > 0 and self.completed == self.total


async def approval_status(backend: BoardBackend, card_id: UUID) -> ApprovalStatus:
    assignees = await backend.fetch_assignees(card_id)
    profiles = await backend.fetch_profiles(a.user_id for a in assignees)
    by_user = {p.user_id: p for p in profiles}
    rows = []
    for assignee in assignees:
        profile = by_user.get(assignee.user_id)
        rows.append(
            AssigneeStatus(
                user_id=assignee.user_id,
                full_name=profile.full_name if profile else None,
                avatar_url=profile.avatar_url if profile else None,
                is_completed=assignee.is_completed,
                completed_at=assignee.completed_at,
            ),
        )
    return ApprovalStatus(
        card_id=card_id,
        assignees=tuple(rows),
        completed=sum(1 for a in assignees if a.is_completed),
        total=len(assignees),
    )
