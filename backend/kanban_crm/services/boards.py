"""Board, column and card operations behind the HTTP API."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from fastapi import status

from kanban_crm.core.config import settings
from kanban_crm.core.logging import get_logger
from kanban_crm.core.time import utcnow
from kanban_crm.models.board_columns import BoardColumn
from kanban_crm.models.cards import Card
from kanban_crm.services.notices import Notice, rejection, timer_started_notice
from kanban_crm.services.notifications import notify_mentions, notify_task_assigned

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

    from kanban_crm.models.boards import Board
    from kanban_crm.models.card_assignees import CardAssignee
    from kanban_crm.models.organization_members import OrganizationMember
    from kanban_crm.services.board_backend import BoardBackend

logger = get_logger(__name__)

COLUMN_POLICY_FIELDS = frozenset(
    {
        "title",
        "block_backward_movement",
        "is_completion_stage",
        "auto_delete_enabled",
        "auto_delete_hours",
    },
)
CARD_EDIT_FIELDS = frozenset(
    {
        "content",
        "description",
        "due_date",
        "estimated_time",
        "timer_start_column_id",
        "lead_id",
        "requires_all_approval",
        "calendar_event_id",
    },
)


@dataclass
class BoardSnapshot:
    """A board with its ordered columns, their cards and card assignees."""

    board: Board
    columns: list[BoardColumn]
    cards_by_column: dict[UUID, list[Card]] = field(default_factory=dict)
    assignees_by_card: dict[UUID, list[CardAssignee]] = field(default_factory=dict)


@dataclass(frozen=True)
class MoveResult:
    card: Card
    timer_started: bool = False
    notice: Notice | None = None


def is_board_admin(member: OrganizationMember) -> bool:
    return member.role in settings.board_admin_roles


async def load_or_create_board(
    backend: BoardBackend,
    *,
    organization_id: UUID,
    member: OrganizationMember,
) -> Board | None:
    """Return the organization's board, creating it for admins on first access."""
    board = await backend.get_board_for_organization(organization_id)
    if board is not None:
        return board
    if not is_board_admin(member):
        return None
    board = await backend.insert_board(organization_id)
    await backend.insert_columns(
        [
            BoardColumn(board_id=board.id, title=title, position=index)
            for index, title in enumerate(settings.default_column_titles)
        ],
    )
    return board


async def board_snapshot(backend: BoardBackend, board: Board) -> BoardSnapshot:
    columns = await backend.list_columns(board.id)
    cards = await backend.list_cards(column.id for column in columns)
    assignees = await backend.fetch_assignees_for_cards(card.id for card in cards)
    snapshot = BoardSnapshot(
        board=board,
        columns=columns,
        cards_by_column={column.id: [] for column in columns},
    )
    for card in cards:
        snapshot.cards_by_column.setdefault(card.column_id, []).append(card)
    for assignee in assignees:
        snapshot.assignees_by_card.setdefault(assignee.card_id, []).append(assignee)
    return snapshot


# -- positions -------------------------------------------------------------------


async def rewrite_card_positions(backend: BoardBackend, cards: Sequence[Card]) -> None:
    """Persist the dense ``0..n-1`` sequence for *cards* in their given order."""
    for index, card in enumerate(cards):
        if card.position != index:
            await backend.update_card(card, position=index)


async def rewrite_column_positions(backend: BoardBackend, columns: Sequence[BoardColumn]) -> None:
    for index, column in enumerate(columns):
        if column.position != index:
            await backend.update_column(column, position=index)


# -- columns ---------------------------------------------------------------------


async def add_column(
    backend: BoardBackend,
    board: Board,
    *,
    title: str | None = None,
) -> BoardColumn:
    columns = await backend.list_columns(board.id)
    return await backend.insert_column(
        BoardColumn(
            board_id=board.id,
            title=title or settings.new_column_title,
            position=len(columns),
        ),
    )


def _column_policy_changes(changes: dict[str, Any]) -> dict[str, Any]:
    clean = {key: value for key, value in changes.items() if key in COLUMN_POLICY_FIELDS}
    if clean.get("auto_delete_enabled") is False:
        clean["auto_delete_hours"] = None
    elif clean.get("auto_delete_enabled") and clean.get("auto_delete_hours") is None:
        clean["auto_delete_hours"] = settings.auto_delete_default_hours
    return clean


async def update_column(
    backend: BoardBackend,
    column: BoardColumn,
    changes: dict[str, Any],
) -> BoardColumn:
    clean = _column_policy_changes(changes)
    if not clean:
        return column
    return await backend.update_column(column, **clean)


async def delete_column(backend: BoardBackend, column: BoardColumn) -> int:
    """Delete a column together with its cards; returns the number of cards removed."""
    cards = await backend.list_cards([column.id])
    deleted = await backend.delete_cards([card.id for card in cards])
    for waiting in await backend.list_cards_timed_to_column(column.id):
        await backend.update_card(waiting, timer_start_column_id=None)
    await backend.delete_column(column)
    await rewrite_column_positions(backend, await backend.list_columns(column.board_id))
    logger.info(
        "kanban.column.deleted",
        extra={"column_id": str(column.id), "cards_deleted": deleted},
    )
    return deleted


async def reorder_columns(
    backend: BoardBackend,
    board: Board,
    column_ids: Sequence[UUID],
) -> list[BoardColumn]:
    columns = await backend.list_columns(board.id)
    by_id = {column.id: column for column in columns}
    if len(column_ids) != len(by_id) or set(column_ids) != set(by_id):
        raise rejection(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            code="invalid_column_order",
            message="Column order must list every column of the board exactly once.",
        )
    ordered = [by_id[column_id] for column_id in column_ids]
    await rewrite_column_positions(backend, ordered)
    return ordered


# -- cards -----------------------------------------------------------------------


def require_collaborators(user_ids: Sequence[UUID]) -> None:
    minimum = settings.collaborative_min_assignees
    if len(set(user_ids)) < minimum:
        raise rejection(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            code="collaborators_required",
            message=f"Collaborative cards need at least {minimum} assignees.",
        )


async def create_card(
    backend: BoardBackend,
    *,
    column: BoardColumn,
    actor_id: UUID | None,
    content: str | None = None,
    assignee_ids: Sequence[UUID] = (),
    is_collaborative: bool = False,
    now: datetime | None = None,
    **fields: Any,
) -> Card:
    """Create a card at the end of *column* and assign its initial users."""
    desired = list(dict.fromkeys(assignee_ids))
    if is_collaborative:
        require_collaborators(desired)

    now = now or utcnow()
    timer_column_id = fields.get("timer_start_column_id")
    existing = await backend.list_cards([column.id])
    card = Card(
        column_id=column.id,
        content=content or settings.new_card_title,
        position=len(existing),
        is_collaborative=is_collaborative,
        created_by=actor_id,
        **{key: value for key, value in fields.items() if key in CARD_EDIT_FIELDS},
    )
    if timer_column_id is None or timer_column_id == column.id:
        card.timer_started_at = now
    card = await backend.insert_card(card)

    await backend.insert_assignees(card.id, desired)
    await notify_task_assigned(backend, card=card, user_ids=desired, actor_id=actor_id)
    logger.info(
        "kanban.card.created",
        extra={
            "card_id": str(card.id),
            "column_id": str(column.id),
            "assignees": len(desired),
        },
    )
    return card


async def update_card(
    backend: BoardBackend,
    card: Card,
    changes: dict[str, Any],
    *,
    organization_id: UUID,
    actor_id: UUID | None,
) -> Card:
    clean = {key: value for key, value in changes.items() if key in CARD_EDIT_FIELDS}
    if not clean:
        return card
    old_description = card.description or ""
    card = await backend.update_card(card, **clean)
    new_description = clean.get("description")
    if new_description and new_description != old_description:
        await notify_mentions(
            backend,
            card=card,
            organization_id=organization_id,
            new_text=new_description,
            old_text=old_description,
            actor_id=actor_id,
        )
    return card


async def delete_card(backend: BoardBackend, card: Card) -> None:
    column_id = card.column_id
    await backend.delete_card(card)
    await rewrite_card_positions(backend, await backend.list_cards([column_id]))


async def move_card_to_column(
    backend: BoardBackend,
    card: Card,
    target_column_id: UUID,
    *,
    now: datetime | None = None,
    index: int | None = None,
) -> MoveResult:
    """Persist a cross-column move, keeping both columns densely positioned.

    The deferred timer starts only when the card enters its designated column
    and has not started yet.
    """
    source_column_id = card.column_id
    target_cards = [c for c in await backend.list_cards([target_column_id]) if c.id != card.id]
    at = len(target_cards) if index is None else max(0, min(index, len(target_cards)))

    changes: dict[str, Any] = {"column_id": target_column_id, "position": at}
    timer_started = (
        card.timer_start_column_id is not None
        and card.timer_start_column_id == target_column_id
        and card.timer_started_at is None
    )
    if timer_started:
        changes["timer_started_at"] = now or utcnow()
    card = await backend.update_card(card, **changes)

    target_cards.insert(at, card)
    await rewrite_card_positions(backend, target_cards)
    if source_column_id != target_column_id:
        await rewrite_card_positions(backend, await backend.list_cards([source_column_id]))

    notice = None
    if timer_started:
        column = await backend.get_column(target_column_id)
        notice = timer_started_notice(column_title=column.title if column else "")
    logger.info(
        "kanban.card.moved",
        extra={
            "card_id": str(card.id),
            "from_column_id": str(source_column_id),
            "to_column_id": str(target_column_id),
            "timer_started": timer_started,
        },
    )
    return MoveResult(card=card, timer_started=timer_started, notice=notice)


async def reorder_cards(
    backend: BoardBackend,
    column_id: UUID,
    card_ids: Sequence[UUID],
) -> list[Card]:
    """Persist a same-column order; cards not listed keep their relative order at the end."""
    cards = await backend.list_cards([column_id])
    by_id = {card.id: card for card in cards}
    ordered = [by_id[card_id] for card_id in card_ids if card_id in by_id]
    listed = set(card_ids)
    ordered.extend(card for card in cards if card.id not in listed)
    await rewrite_card_positions(backend, ordered)
    return ordered
