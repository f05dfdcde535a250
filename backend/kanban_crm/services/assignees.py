"""Assignee synchronisation and collaborator completion for cards."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

from fastapi import status

from kanban_crm.core.logging import get_logger
from kanban_crm.core.time import utcnow
from kanban_crm.services.boards import move_card_to_column, require_collaborators
from kanban_crm.services.notices import Notice, card_moved_notice, rejection
from kanban_crm.services.notifications import (
    notify_partial_completion,
    notify_task_assigned,
    notify_task_ready,
)

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

    from kanban_crm.models.board_columns import BoardColumn
    from kanban_crm.models.cards import Card
    from kanban_crm.services.board_backend import BoardBackend

logger = get_logger(__name__)


@dataclass(frozen=True)
class AssigneeSyncResult:
    added: tuple[UUID, ...] = ()
    removed: tuple[UUID, ...] = ()
    retained: tuple[UUID, ...] = ()


async def sync_card_assignees(
    backend: BoardBackend,
    card: Card,
    desired_user_ids: Sequence[UUID],
    *,
    actor_id: UUID | None,
) -> AssigneeSyncResult:
    """Reconcile the persisted assignee rows of *card* with *desired_user_ids*.

    Users who already confirmed completion are never removed, even when the
    editor left them out. Inserts and deletes are separate commits.
    """
    desired = list(dict.fromkeys(desired_user_ids))
    if card.is_collaborative:
        require_collaborators(desired)

    current = await backend.fetch_assignees(card.id)
    current_by_user = {row.user_id: row for row in current}
    wanted = set(desired)

    to_add = [user_id for user_id in desired if user_id not in current_by_user]
    dropped = [row for row in current if row.user_id not in wanted]
    removable = [row for row in dropped if not row.is_completed]
    retained = [row.user_id for row in dropped if row.is_completed]

    await backend.insert_assignees(card.id, to_add)
    await backend.delete_assignees([row.id for row in removable])
    await notify_task_assigned(backend, card=card, user_ids=to_add, actor_id=actor_id)

    if retained:
        logger.info(
            "kanban.assignees.completed_retained",
            extra={"card_id": str(card.id), "retained": len(retained)},
        )
    return AssigneeSyncResult(
        added=tuple(to_add),
        removed=tuple(row.user_id for row in removable),
        retained=tuple(retained),
    )


@dataclass(frozen=True)
class CompletionResult:
    completed: int
    total: int
    moved_to: BoardColumn | None = None

    @property
    def notice(self) -> Notice:
        if self.moved_to is not None:
            return card_moved_notice(column_title=self.moved_to.title)
        return Notice(
            title="Concluído!",
            description="Sua parte na tarefa foi marcada como concluída.",
        )


def _auto_move_target(
    columns: Sequence[BoardColumn],
    card: Card,
    *,
    completed: int,
    total: int,
) -> BoardColumn | None:
    if completed == total:
        target = next((column for column in columns if column.is_completion_stage), None)
        if target is not None and target.id != card.column_id:
            return target
        return None
    # Advancing on a partial confirmation would bypass the unanimous gate.
    if completed == 1 and not card.requires_all_approval:
        index = next((i for i, c in enumerate(columns) if c.id == card.column_id), None)
        if index is not None and index + 1 < len(columns):
            following = columns[index + 1]
            if not following.is_completion_stage:
                return following
    return None


async def confirm_assignee_completion(
    backend: BoardBackend,
    card: Card,
    user_id: UUID,
    *,
    now: datetime | None = None,
) -> CompletionResult:
    """Mark *user_id*'s part of the card as done and advance the card when due."""
    assignees = await backend.fetch_assignees(card.id)
    mine = next((row for row in assignees if row.user_id == user_id), None)
    if mine is None:
        raise rejection(
            status.HTTP_403_FORBIDDEN,
            code="not_assigned",
            message="You are not assigned to this card.",
        )
    total = len(assignees)
    if mine.is_completed:
        # Repeat confirmations must not move the card or notify again.
        completed = sum(1 for row in assignees if row.is_completed)
        logger.info(
            "kanban.assignee.already_completed",
            extra={"card_id": str(card.id), "completed": completed, "total": total},
        )
        return CompletionResult(completed=completed, total=total)

    now = now or utcnow()
    await backend.update_assignee(mine, is_completed=True, completed_at=now)
    completed = sum(1 for row in assignees if row.is_completed)

    moved_to = None
    column = await backend.get_column(card.column_id)
    if column is not None:
        columns = await backend.list_columns(column.board_id)
        moved_to = _auto_move_target(columns, card, completed=completed, total=total)
        if moved_to is not None:
            await move_card_to_column(backend, card, moved_to.id, now=now)

    await notify_partial_completion(
        backend,
        card=card,
        actor_id=user_id,
        recipient_ids=[row.user_id for row in assignees],
    )
    if completed == total:
        await notify_task_ready(
            backend,
            card=card,
            recipient_ids=[row.user_id for row in assignees],
        )
    logger.info(
        "kanban.assignee.completed",
        extra={
            "card_id": str(card.id),
            "completed": completed,
            "total": total,
            "moved_to": str(moved_to.id) if moved_to else None,
        },
    )
    return CompletionResult(completed=completed, total=total, moved_to=moved_to)
