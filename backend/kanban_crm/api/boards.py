"""Board and column endpoints for the caller's organization."""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING

from fastapi import APIRouter, Request, status
from sse_starlette.sse import EventSourceResponse

from kanban_crm.api.cards import card_to_read
from kanban_crm.api.deps import (
    BACKEND_DEP,
    BOARD_DEP,
    COLUMN_DEP,
    HUB_DEP,
    ORG_MEMBER_DEP,
    OrganizationContext,
)
from kanban_crm.core.logging import get_logger
from kanban_crm.models.board_columns import BoardColumn
from kanban_crm.models.boards import Board
from kanban_crm.models.cards import Card
from kanban_crm.schemas.boards import (
    BoardRead,
    ColumnCreate,
    ColumnOrder,
    ColumnRead,
    ColumnUpdate,
)
from kanban_crm.services import boards as board_ops
from kanban_crm.services.board_backend import BoardBackend
from kanban_crm.services.notices import rejection
from kanban_crm.services.realtime import ChangeEvent, RealtimeHub, ViewSubscriptions

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from uuid import UUID

router = APIRouter(tags=["boards"])
logger = get_logger(__name__)


def _column_to_read(column: BoardColumn) -> ColumnRead:
    return ColumnRead.model_validate(column, from_attributes=True)


def _snapshot_to_read(snapshot: board_ops.BoardSnapshot) -> BoardRead:
    columns = []
    for column in snapshot.columns:
        model = _column_to_read(column)
        model.cards = [
            card_to_read(card, snapshot.assignees_by_card.get(card.id, []))
            for card in snapshot.cards_by_column.get(column.id, [])
        ]
        columns.append(model)
    return BoardRead(
        id=snapshot.board.id,
        organization_id=snapshot.board.organization_id,
        columns=columns,
    )


@router.get("/organizations/me/board", response_model=BoardRead)
async def get_my_board(
    backend: BoardBackend = BACKEND_DEP,
    ctx: OrganizationContext = ORG_MEMBER_DEP,
) -> BoardRead:
    """Return the organization's board, creating it on first access by an admin."""
    board = await board_ops.load_or_create_board(
        backend,
        organization_id=ctx.organization.id,
        member=ctx.member,
    )
    if board is None:
        raise rejection(
            status.HTTP_404_NOT_FOUND,
            code="board_not_found",
            message="The organization has no board yet; an admin must open it first.",
        )
    return _snapshot_to_read(await board_ops.board_snapshot(backend, board))


@router.get("/boards/{board_id}", response_model=BoardRead)
async def get_board(
    board: Board = BOARD_DEP,
    backend: BoardBackend = BACKEND_DEP,
) -> BoardRead:
    return _snapshot_to_read(await board_ops.board_snapshot(backend, board))


@router.post(
    "/boards/{board_id}/columns",
    response_model=ColumnRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_column(
    payload: ColumnCreate,
    board: Board = BOARD_DEP,
    backend: BoardBackend = BACKEND_DEP,
) -> ColumnRead:
    column = await board_ops.add_column(backend, board, title=payload.title)
    return _column_to_read(column)


@router.put("/boards/{board_id}/columns/order", response_model=list[ColumnRead])
async def reorder_columns(
    payload: ColumnOrder,
    board: Board = BOARD_DEP,
    backend: BoardBackend = BACKEND_DEP,
) -> list[ColumnRead]:
    columns = await board_ops.reorder_columns(backend, board, payload.column_ids)
    return [_column_to_read(column) for column in columns]


@router.patch("/boards/{board_id}/columns/{column_id}", response_model=ColumnRead)
async def update_column(
    payload: ColumnUpdate,
    column: BoardColumn = COLUMN_DEP,
    backend: BoardBackend = BACKEND_DEP,
) -> ColumnRead:
    """Rename a column or change its movement and auto-delete policy."""
    column = await board_ops.update_column(
        backend,
        column,
        payload.model_dump(exclude_unset=True),
    )
    return _column_to_read(column)


@router.delete("/boards/{board_id}/columns/{column_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_column(
    column: BoardColumn = COLUMN_DEP,
    backend: BoardBackend = BACKEND_DEP,
) -> None:
    await board_ops.delete_column(backend, column)


class BoardChangeRelay:
    """Queues hub events that concern one board, tracking its column set."""

    def __init__(self, board_id: UUID, column_ids: set[UUID]) -> None:
        self.board_id = str(board_id)
        self.column_ids = {str(column_id) for column_id in column_ids}
        self.queue: asyncio.Queue[ChangeEvent] = asyncio.Queue()

    def on_column(self, event: ChangeEvent) -> None:
        column_id = str(event.row.get("id"))
        if event.event_type == "DELETE":
            if column_id in self.column_ids:
                self.column_ids.discard(column_id)
                self.queue.put_nowait(event)
            return
        if str(event.row.get("board_id")) != self.board_id:
            return
        self.column_ids.add(column_id)
        self.queue.put_nowait(event)

    def on_card(self, event: ChangeEvent) -> None:
        column_id = event.row.get("column_id")
        # Bulk deletes only carry the card id; listeners ignore unknown ids.
        if column_id is None or str(column_id) in self.column_ids:
            self.queue.put_nowait(event)

    def bind(self, hub: RealtimeHub) -> ViewSubscriptions:
        subscriptions = ViewSubscriptions(hub)
        subscriptions.subscribe(BoardColumn.__tablename__, self.on_column)
        subscriptions.subscribe(Card.__tablename__, self.on_card)
        return subscriptions


def serialize_change(event: ChangeEvent) -> dict[str, str]:
    payload = {
        "table": event.table,
        "event_type": event.event_type,
        "new": event.new,
        "old": event.old,
        "occurred_at": event.occurred_at,
    }
    return {"event": "change", "data": json.dumps(payload, default=str)}


@router.get("/boards/{board_id}/stream")
async def stream_board_changes(
    request: Request,
    board: Board = BOARD_DEP,
    backend: BoardBackend = BACKEND_DEP,
    hub: RealtimeHub = HUB_DEP,
) -> EventSourceResponse:
    """Stream column and card changes of a board via server-sent events."""
    columns = await backend.list_columns(board.id)
    relay = BoardChangeRelay(board.id, {column.id for column in columns})

    async def event_generator() -> AsyncIterator[dict[str, str]]:
        with relay.bind(hub):
            logger.info("kanban.stream.opened", extra={"board_id": str(board.id)})
            while not await request.is_disconnected():
                try:
                    event = await asyncio.wait_for(relay.queue.get(), timeout=1.0)
                except TimeoutError:
                    continue
                yield serialize_change(event)
        logger.info("kanban.stream.closed", extra={"board_id": str(board.id)})

    return EventSourceResponse(event_generator(), ping=15)
