"""Card endpoints: CRUD, assignees, approval and drop-time moves."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from kanban_crm.api.deps import (
    BACKEND_DEP,
    BOARD_DEP,
    CARD_DEP,
    COLUMN_DEP,
    ORG_MEMBER_DEP,
    OrganizationContext,
)
from kanban_crm.core.logging import get_logger
from kanban_crm.models.board_columns import BoardColumn
from kanban_crm.models.boards import Board
from kanban_crm.models.cards import Card
from kanban_crm.schemas.boards import (
    ApprovalAssigneeRead,
    ApprovalConfirmRead,
    ApprovalRead,
    AssigneeRead,
    AssigneeSync,
    AssigneeSyncRead,
    CardCreate,
    CardMove,
    CardMoveRead,
    CardRead,
    CardReorder,
    CardUpdate,
)
from kanban_crm.schemas.errors import BoardErrorResponse, NoticeRead
from kanban_crm.services import boards as board_ops
from kanban_crm.services.approval_gate import (
    approval_status,
    check_backward_movement,
    check_collaborative_gate,
)
from kanban_crm.services.assignees import confirm_assignee_completion, sync_card_assignees
from kanban_crm.services.board_backend import BoardBackend
from kanban_crm.services.board_store import ColumnState
from kanban_crm.services.card_kinds import CollaborativeCard, LeadLinkedCard, kind_of
from kanban_crm.services.notices import (
    Notice,
    load_failed_notice,
    rejection,
    save_failed_notice,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from kanban_crm.models.card_assignees import CardAssignee

router = APIRouter(prefix="/boards/{board_id}", tags=["cards"])
logger = get_logger(__name__)

_BLOCK_CODES = {
    "approval_pending": "collaborative_approval_pending",
    "backward_movement": "backward_movement_blocked",
}


def _notice_read(notice: Notice | None) -> NoticeRead | None:
    return NoticeRead(**notice.as_dict()) if notice is not None else None


def card_kind_name(card: Card) -> str:
    kind = kind_of(card)
    if isinstance(kind, CollaborativeCard):
        return "collaborative"
    if isinstance(kind, LeadLinkedCard):
        return "lead_linked"
    return "normal"


def card_to_read(card: Card, assignees: Sequence[CardAssignee] = ()) -> CardRead:
    model = CardRead.model_validate(card, from_attributes=True)
    model.kind = card_kind_name(card)
    model.assignees = [AssigneeRead.model_validate(a, from_attributes=True) for a in assignees]
    return model


def _backend_failure(notice: Notice) -> HTTPException:
    return rejection(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        code="backend_failure",
        message=notice.description,
        notice=notice,
    )


@router.post(
    "/columns/{column_id}/cards",
    response_model=CardRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_card(
    payload: CardCreate,
    column: BoardColumn = COLUMN_DEP,
    backend: BoardBackend = BACKEND_DEP,
    ctx: OrganizationContext = ORG_MEMBER_DEP,
) -> CardRead:
    """Create a card at the end of a column."""
    fields = payload.model_dump(exclude={"content", "assignee_ids", "is_collaborative"})
    card = await board_ops.create_card(
        backend,
        column=column,
        actor_id=ctx.user_id,
        content=payload.content,
        assignee_ids=payload.assignee_ids,
        is_collaborative=payload.is_collaborative,
        **fields,
    )
    return card_to_read(card, await backend.fetch_assignees(card.id))


@router.put("/columns/{column_id}/cards/order", response_model=list[CardRead])
async def reorder_cards(
    payload: CardReorder,
    column: BoardColumn = COLUMN_DEP,
    backend: BoardBackend = BACKEND_DEP,
) -> list[CardRead]:
    cards = await board_ops.reorder_cards(backend, column.id, payload.card_ids)
    return [card_to_read(card) for card in cards]


@router.patch("/cards/{card_id}", response_model=CardRead)
async def update_card(
    payload: CardUpdate,
    card: Card = CARD_DEP,
    backend: BoardBackend = BACKEND_DEP,
    ctx: OrganizationContext = ORG_MEMBER_DEP,
) -> CardRead:
    card = await board_ops.update_card(
        backend,
        card,
        payload.model_dump(exclude_unset=True),
        organization_id=ctx.organization.id,
        actor_id=ctx.user_id,
    )
    return card_to_read(card, await backend.fetch_assignees(card.id))


@router.delete("/cards/{card_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_card(
    card: Card = CARD_DEP,
    backend: BoardBackend = BACKEND_DEP,
) -> None:
    await board_ops.delete_card(backend, card)


@router.put("/cards/{card_id}/assignees", response_model=AssigneeSyncRead)
async def sync_assignees(
    payload: AssigneeSync,
    card: Card = CARD_DEP,
    backend: BoardBackend = BACKEND_DEP,
    ctx: OrganizationContext = ORG_MEMBER_DEP,
) -> AssigneeSyncRead:
    """Replace the card's assignee set; confirmed collaborators are always kept."""
    result = await sync_card_assignees(backend, card, payload.user_ids, actor_id=ctx.user_id)
    return AssigneeSyncRead(
        added=list(result.added),
        removed=list(result.removed),
        retained=list(result.retained),
    )


@router.get("/cards/{card_id}/approval", response_model=ApprovalRead)
async def get_approval(
    card: Card = CARD_DEP,
    backend: BoardBackend = BACKEND_DEP,
) -> ApprovalRead:
    approval = await approval_status(backend, card.id)
    return ApprovalRead(
        card_id=approval.card_id,
        completed=approval.completed,
        total=approval.total,
        progress_percent=approval.progress_percent,
        all_completed=approval.all_completed,
        assignees=[
            ApprovalAssigneeRead.model_validate(a, from_attributes=True)
            for a in approval.assignees
        ],
    )


@router.post("/cards/{card_id}/approval/confirm", response_model=ApprovalConfirmRead)
async def confirm_approval(
    card: Card = CARD_DEP,
    backend: BoardBackend = BACKEND_DEP,
    ctx: OrganizationContext = ORG_MEMBER_DEP,
) -> ApprovalConfirmRead:
    """Confirm the caller's part of a card."""
    result = await confirm_assignee_completion(backend, card, ctx.user_id)
    return ApprovalConfirmRead(
        completed=result.completed,
        total=result.total,
        moved_to_column_id=result.moved_to.id if result.moved_to else None,
        notice=NoticeRead(**result.notice.as_dict()),
    )


@router.post(
    "/cards/{card_id}/move",
    response_model=CardMoveRead,
    responses={
        status.HTTP_409_CONFLICT: {"model": BoardErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": BoardErrorResponse},
    },
)
async def move_card(
    payload: CardMove,
    board: Board = BOARD_DEP,
    card: Card = CARD_DEP,
    backend: BoardBackend = BACKEND_DEP,
) -> CardMoveRead:
    """Drop a card into a column after re-checking the movement gates."""
    columns = await backend.list_columns(board.id)
    if payload.target_column_id not in {column.id for column in columns}:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)

    if payload.target_column_id != card.column_id:
        try:
            decision = await check_collaborative_gate(backend, card)
        except SQLAlchemyError:
            logger.exception("kanban.move.read_failed", extra={"card_id": str(card.id)})
            raise _backend_failure(load_failed_notice()) from None
        if decision.allowed:
            decision = check_backward_movement(
                [ColumnState.from_column(column) for column in columns],
                source_column_id=card.column_id,
                target_column_id=payload.target_column_id,
            )
        if not decision.allowed:
            notice = decision.notice
            raise rejection(
                status.HTTP_409_CONFLICT,
                code=_BLOCK_CODES.get(decision.reason or "", "move_blocked"),
                message=notice.description if notice else "Move blocked.",
                notice=notice,
            )

    try:
        if payload.target_column_id == card.column_id:
            siblings = [c.id for c in await backend.list_cards([card.column_id]) if c.id != card.id]
            at = len(siblings) if payload.position is None else min(payload.position, len(siblings))
            siblings.insert(at, card.id)
            await board_ops.reorder_cards(backend, card.column_id, siblings)
            result = board_ops.MoveResult(card=card)
        else:
            result = await board_ops.move_card_to_column(
                backend,
                card,
                payload.target_column_id,
                index=payload.position,
            )
    except SQLAlchemyError:
        logger.exception("kanban.move.write_failed", extra={"card_id": str(card.id)})
        raise _backend_failure(save_failed_notice()) from None

    return CardMoveRead(
        card=card_to_read(result.card, await backend.fetch_assignees(card.id)),
        timer_started=result.timer_started,
        notice=_notice_read(result.notice),
    )
