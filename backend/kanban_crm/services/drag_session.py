"""Drag session controller: one drag gesture from pick-up to drop.

Hovering applies optimistic moves to the board store after consulting the
movement gates. The drop re-runs the gates because assignee completion or
column flags may have changed in between; when they now refuse the move the
whole board is reloaded from the backend instead of patching local state.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

from sqlalchemy.exc import SQLAlchemyError

from kanban_crm.core.logging import get_logger
from kanban_crm.core.time import utcnow
from kanban_crm.services.approval_gate import (
    GateDecision,
    check_backward_movement,
    check_collaborative_gate,
)
from kanban_crm.services.board_store import (
    MoveCard,
    PatchCard,
    ReorderCards,
    reload_board,
)
from kanban_crm.services.boards import move_card_to_column, reorder_cards
from kanban_crm.services.notices import Notice, load_failed_notice, save_failed_notice

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

    from kanban_crm.services.board_backend import BoardBackend
    from kanban_crm.services.board_store import BoardStore, CardState, ColumnState

logger = get_logger(__name__)

DragStatus = Literal["ignored", "previewed", "blocked", "moved", "reordered", "failed", "stale"]


@dataclass(frozen=True)
class DragOutcome:
    status: DragStatus
    notice: Notice | None = None


IGNORED = DragOutcome("ignored")


@dataclass(frozen=True)
class ActiveDrag:
    """The card being dragged and the column it was picked up from."""

    card_id: UUID
    origin_column_id: UUID


class DragSessionController:
    """Mediates drag events against one board store.

    ``notify`` receives every notice surfaced to the user. Hover checks carry
    a generation number; a check that resolves after a newer hover or the
    drop has started is discarded.
    """

    def __init__(
        self,
        store: BoardStore,
        backend: BoardBackend,
        *,
        notify: Callable[[Notice], None] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.backend = backend
        self._notify = notify
        self._clock = clock
        self._generation = 0
        self.active: ActiveDrag | None = None

    def _surface(self, outcome: DragOutcome) -> DragOutcome:
        if outcome.notice is not None and self._notify is not None:
            self._notify(outcome.notice)
        return outcome

    def _next_generation(self) -> int:
        self._generation += 1
        return self._generation

    async def _reload(self) -> None:
        logger.info("kanban.drag.reload", extra={"board_id": str(self.store.state.board_id)})
        try:
            await reload_board(self.store, self.backend)
        except SQLAlchemyError:
            logger.exception("kanban.drag.reload_failed")

    async def _write_failed(self, card_id: UUID) -> DragOutcome:
        """Drop the failed transaction and resync the store with the backend."""
        logger.exception("kanban.drag.write_failed", extra={"card_id": str(card_id)})
        try:
            await self.backend.session.rollback()
        except SQLAlchemyError:
            logger.exception("kanban.drag.rollback_failed", extra={"card_id": str(card_id)})
        await self._reload()
        return self._surface(DragOutcome("failed", save_failed_notice()))

    async def _check_move(
        self,
        card: CardState,
        *,
        source_column_id: UUID,
        target_column_id: UUID,
    ) -> GateDecision:
        decision = await check_collaborative_gate(self.backend, card)
        if not decision.allowed:
            return decision
        return check_backward_movement(
            self.store.columns,
            source_column_id=source_column_id,
            target_column_id=target_column_id,
        )

    def _resolve(self, card_id: UUID, over_id: UUID) -> tuple[CardState, ColumnState] | None:
        card = self.store.find_card(card_id)
        target = self.store.resolve_target_column(over_id)
        if card is None or target is None:
            return None
        return card, target

    def on_drag_start(self, card_id: UUID) -> DragOutcome:
        column = self.store.column_of(card_id)
        if column is None:
            return IGNORED
        self._next_generation()
        self.active = ActiveDrag(card_id=card_id, origin_column_id=column.id)
        return DragOutcome("previewed")

    async def on_drag_over(self, card_id: UUID, over_id: UUID) -> DragOutcome:
        active = self.active
        if active is None or active.card_id != card_id:
            return IGNORED
        resolved = self._resolve(card_id, over_id)
        if resolved is None:
            return IGNORED
        card, target = resolved
        if target.id == card.column_id:
            return IGNORED

        generation = self._next_generation()
        if target.id == active.origin_column_id:
            # Returning to the pick-up column never needs the gates.
            self.store.dispatch(MoveCard(card_id, target.id))
            return DragOutcome("previewed")

        try:
            decision = await self._check_move(
                card,
                source_column_id=active.origin_column_id,
                target_column_id=target.id,
            )
        except SQLAlchemyError:
            logger.exception("kanban.drag.read_failed", extra={"card_id": str(card_id)})
            await self._reload()
            return self._surface(DragOutcome("failed", load_failed_notice()))

        if generation != self._generation:
            logger.debug("kanban.drag.stale_check", extra={"card_id": str(card_id)})
            return DragOutcome("stale")
        if not decision.allowed:
            return self._surface(DragOutcome("blocked", decision.notice))
        self.store.dispatch(MoveCard(card_id, target.id))
        return DragOutcome("previewed")

    async def on_drag_end(self, card_id: UUID, over_id: UUID) -> DragOutcome:
        active = self.active
        self.active = None
        self._next_generation()
        if active is None or active.card_id != card_id:
            return IGNORED
        resolved = self._resolve(card_id, over_id)
        if resolved is None:
            # Dropped outside any column: undo the hover preview.
            current = self.store.column_of(card_id)
            if current is not None and current.id != active.origin_column_id:
                await self._reload()
            return IGNORED
        card, target = resolved

        if target.id == active.origin_column_id:
            return await self._drop_in_origin(card, target, over_id)
        return await self._drop_across(card, active, target, over_id)

    async def _drop_in_origin(
        self,
        card: CardState,
        target: ColumnState,
        over_id: UUID,
    ) -> DragOutcome:
        if card.column_id != target.id:
            self.store.dispatch(MoveCard(card.id, target.id))
            target = self.store.get_column(target.id) or target

        order = target.card_ids()
        if over_id in order and over_id != card.id:
            new_index = order.index(over_id)
            order.remove(card.id)
            order.insert(new_index, card.id)
        self.store.dispatch(ReorderCards(target.id, tuple(order)))

        try:
            await reorder_cards(self.backend, target.id, order)
        except SQLAlchemyError:
            return await self._write_failed(card.id)
        return DragOutcome("reordered")

    async def _drop_across(
        self,
        card: CardState,
        active: ActiveDrag,
        target: ColumnState,
        over_id: UUID,
    ) -> DragOutcome:
        try:
            decision = await self._check_move(
                card,
                source_column_id=active.origin_column_id,
                target_column_id=target.id,
            )
        except SQLAlchemyError:
            logger.exception("kanban.drag.read_failed", extra={"card_id": str(card.id)})
            await self._reload()
            return self._surface(DragOutcome("failed", load_failed_notice()))

        if not decision.allowed:
            logger.info(
                "kanban.drag.blocked",
                extra={"card_id": str(card.id), "reason": decision.reason},
            )
            await self._reload()
            return self._surface(DragOutcome("blocked", decision.notice))

        siblings = [cid for cid in target.card_ids() if cid != card.id]
        index = siblings.index(over_id) if over_id in siblings else len(siblings)
        try:
            row = await self.backend.get_card(card.id)
            if row is None:
                await self._reload()
                return self._surface(DragOutcome("failed", load_failed_notice()))
            result = await move_card_to_column(
                self.backend,
                row,
                target.id,
                now=self._clock(),
                index=index,
            )
        except SQLAlchemyError:
            return await self._write_failed(card.id)

        self.store.dispatch(MoveCard(card.id, target.id, index))
        for column_id in (active.origin_column_id, target.id):
            column = self.store.get_column(column_id)
            if column is not None:
                self.store.dispatch(ReorderCards(column_id, tuple(column.card_ids())))
        if result.timer_started:
            self.store.dispatch(
                PatchCard(card.id, {"timer_started_at": result.card.timer_started_at}),
            )
        return self._surface(DragOutcome("moved", result.notice))
