# ruff: noqa: INP001, S101
"""Drag gestures against a store loaded from an in-memory database."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

import pytest
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from kanban_crm.models.board_columns import BoardColumn
from kanban_crm.models.boards import Board
from kanban_crm.models.card_assignees import CardAssignee
from kanban_crm.models.cards import Card
from kanban_crm.models.organizations import Organization
from kanban_crm.models.profiles import Profile
from kanban_crm.services.board_backend import BoardBackend
from kanban_crm.services.board_store import BoardStore, reload_board
from kanban_crm.services.drag_session import DragSessionController
from kanban_crm.services.notices import Notice

NOW = datetime(2026, 3, 2, 12, 0, 0)
TITLES = ("A Fazer", "Em Progresso", "Revisão", "Concluído")


async def _make_engine() -> AsyncEngine:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.connect() as conn, conn.begin():
        await conn.run_sync(SQLModel.metadata.create_all)
    return engine


async def _make_session(engine: AsyncEngine) -> AsyncSession:
    return AsyncSession(engine, expire_on_commit=False)


@dataclass
class Fixture:
    session: AsyncSession
    board: Board
    columns: dict[str, BoardColumn]
    notices: list[Notice] = field(default_factory=list)

    def add_card(self, column: str, content: str, **fields: Any) -> Card:
        cards_here = [
            obj
            for obj in self.session.new
            if isinstance(obj, Card) and obj.column_id == self.columns[column].id
        ]
        card = Card(
            column_id=self.columns[column].id,
            content=content,
            position=len(cards_here),
            **fields,
        )
        self.session.add(card)
        return card

    def add_assignee(self, card: Card, name: str, *, completed: bool) -> UUID:
        user_id = uuid4()
        self.session.add(CardAssignee(card_id=card.id, user_id=user_id, is_completed=completed))
        self.session.add(Profile(user_id=user_id, full_name=name))
        return user_id

    async def controller(self, backend: BoardBackend | None = None) -> DragSessionController:
        await self.session.commit()
        backend = backend or BoardBackend(self.session)
        store = BoardStore()
        await reload_board(store, backend, self.board.id)
        return DragSessionController(
            store,
            backend,
            notify=self.notices.append,
            clock=lambda: NOW,
        )


async def _fixture(session: AsyncSession, *, blocking: str | None = None) -> Fixture:
    organization = Organization(name="Acme")
    board = Board(organization_id=organization.id)
    columns = {
        title: BoardColumn(
            board_id=board.id,
            title=title,
            position=index,
            block_backward_movement=title == blocking,
            is_completion_stage=title == "Concluído",
        )
        for index, title in enumerate(TITLES)
    }
    session.add_all([organization, board, *columns.values()])
    await session.commit()
    return Fixture(session=session, board=board, columns=columns)


class FailingReads(BoardBackend):
    async def fetch_assignees(self, card_id: UUID) -> list[CardAssignee]:
        raise OperationalError("SELECT", {}, Exception("connection lost"))


class FailingWrites(BoardBackend):
    async def update_card(self, card: Card, **changes: object) -> Card:
        raise SQLAlchemyError("write refused")


class SlowFirstRead(BoardBackend):
    """Holds the first assignee read until ``release`` is set."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session)
        self.entered = asyncio.Event()
        self.release = asyncio.Event()
        self._calls = 0

    async def fetch_assignees(self, card_id: UUID) -> list[CardAssignee]:
        self._calls += 1
        if self._calls == 1:
            self.entered.set()
            await self.release.wait()
        return await super().fetch_assignees(card_id)


@pytest.mark.asyncio
async def test_pending_collaborator_blocks_drop_until_everyone_confirms() -> None:
    engine = await _make_engine()
    try:
        async with await _make_session(engine) as session:
            fx = await _fixture(session)
            card = fx.add_card(
                "Em Progresso",
                "C",
                is_collaborative=True,
                requires_all_approval=True,
            )
            fx.add_assignee(card, "U1", completed=True)
            pending_user = fx.add_assignee(card, "U2", completed=False)
            controller = await fx.controller()
            done = fx.columns["Concluído"].id

            controller.on_drag_start(card.id)
            outcome = await controller.on_drag_end(card.id, done)

            assert outcome.status == "blocked"
            assert outcome.notice is not None
            assert "U2" in outcome.notice.description
            assert "1/2" in outcome.notice.description
            assert fx.notices == [outcome.notice]
            column = controller.store.column_of(card.id)
            assert column is not None and column.title == "Em Progresso"
            stored = await controller.backend.get_card(card.id)
            assert stored is not None and stored.column_id == fx.columns["Em Progresso"].id

            row = next(
                r for r in await controller.backend.fetch_assignees(card.id)
                if r.user_id == pending_user
            )
            await controller.backend.update_assignee(row, is_completed=True, completed_at=NOW)

            controller.on_drag_start(card.id)
            outcome = await controller.on_drag_end(card.id, done)

            assert outcome.status == "moved"
            column = controller.store.column_of(card.id)
            assert column is not None and column.id == done
            stored = await controller.backend.get_card(card.id)
            assert stored is not None and stored.column_id == done
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_blocked_hover_leaves_card_in_place() -> None:
    engine = await _make_engine()
    try:
        async with await _make_session(engine) as session:
            fx = await _fixture(session)
            card = fx.add_card("A Fazer", "C", is_collaborative=True, requires_all_approval=True)
            fx.add_assignee(card, "Ana", completed=False)
            fx.add_assignee(card, "Bruno", completed=False)
            controller = await fx.controller()

            controller.on_drag_start(card.id)
            outcome = await controller.on_drag_over(card.id, fx.columns["Revisão"].id)

            assert outcome.status == "blocked"
            assert len(fx.notices) == 1
            column = controller.store.column_of(card.id)
            assert column is not None and column.title == "A Fazer"
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_plain_card_moves_without_assignee_reads() -> None:
    engine = await _make_engine()
    try:
        async with await _make_session(engine) as session:
            fx = await _fixture(session)
            card = fx.add_card("Em Progresso", "Normal")
            controller = await fx.controller(FailingReads(session))
            done = fx.columns["Concluído"].id

            controller.on_drag_start(card.id)
            assert (await controller.on_drag_over(card.id, done)).status == "previewed"
            outcome = await controller.on_drag_end(card.id, done)

            assert outcome.status == "moved"
            assert fx.notices == []
            stored = await controller.backend.get_card(card.id)
            assert stored is not None and stored.column_id == done
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_backward_drop_from_locked_column_is_rejected() -> None:
    engine = await _make_engine()
    try:
        async with await _make_session(engine) as session:
            fx = await _fixture(session, blocking="Revisão")
            card = fx.add_card("Revisão", "Normal")
            controller = await fx.controller()

            controller.on_drag_start(card.id)
            outcome = await controller.on_drag_end(card.id, fx.columns["A Fazer"].id)

            assert outcome.status == "blocked"
            assert outcome.notice is not None
            assert "Revisão" in outcome.notice.description
            column = controller.store.column_of(card.id)
            assert column is not None and column.title == "Revisão"

            controller.on_drag_start(card.id)
            forward = await controller.on_drag_end(card.id, fx.columns["Concluído"].id)
            assert forward.status == "moved"
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_same_column_drop_rewrites_dense_positions() -> None:
    engine = await _make_engine()
    try:
        async with await _make_session(engine) as session:
            fx = await _fixture(session)
            first = fx.add_card("A Fazer", "1")
            second = fx.add_card("A Fazer", "2")
            third = fx.add_card("A Fazer", "3")
            controller = await fx.controller()

            controller.on_drag_start(first.id)
            outcome = await controller.on_drag_end(first.id, third.id)

            assert outcome.status == "reordered"
            expected = [second.id, third.id, first.id]
            column = controller.store.get_column(fx.columns["A Fazer"].id)
            assert column is not None and column.card_ids() == expected
            rows = await controller.backend.list_cards([fx.columns["A Fazer"].id])
            assert [r.id for r in rows] == expected
            assert [r.position for r in rows] == [0, 1, 2]
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_cross_column_drop_keeps_both_columns_dense() -> None:
    engine = await _make_engine()
    try:
        async with await _make_session(engine) as session:
            fx = await _fixture(session)
            source = [fx.add_card("A Fazer", str(i)) for i in range(3)]
            target = [fx.add_card("Em Progresso", f"t{i}") for i in range(2)]
            controller = await fx.controller()
            moving = source[1]

            controller.on_drag_start(moving.id)
            outcome = await controller.on_drag_end(moving.id, target[0].id)

            assert outcome.status == "moved"
            left = await controller.backend.list_cards([fx.columns["A Fazer"].id])
            right = await controller.backend.list_cards([fx.columns["Em Progresso"].id])
            assert [r.position for r in left] == [0, 1]
            assert [r.id for r in left] == [source[0].id, source[2].id]
            assert [r.position for r in right] == [0, 1, 2]
            assert [r.id for r in right] == [moving.id, target[0].id, target[1].id]
            column = controller.store.get_column(fx.columns["Em Progresso"].id)
            assert column is not None
            assert [c.position for c in column.cards] == [0, 1, 2]
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_entering_timer_column_starts_timer() -> None:
    engine = await _make_engine()
    try:
        async with await _make_session(engine) as session:
            fx = await _fixture(session)
            review = fx.columns["Revisão"].id
            card = fx.add_card("A Fazer", "Timed", timer_start_column_id=review)
            controller = await fx.controller()

            controller.on_drag_start(card.id)
            outcome = await controller.on_drag_end(card.id, review)

            assert outcome.status == "moved"
            assert outcome.notice is not None and outcome.notice.title == "Timer iniciado"
            cached = controller.store.find_card(card.id)
            assert cached is not None and cached.timer_started_at == NOW
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_read_failure_reloads_board_and_reports() -> None:
    engine = await _make_engine()
    try:
        async with await _make_session(engine) as session:
            fx = await _fixture(session)
            card = fx.add_card("A Fazer", "C", is_collaborative=True, requires_all_approval=True)
            controller = await fx.controller(FailingReads(session))

            controller.on_drag_start(card.id)
            outcome = await controller.on_drag_over(card.id, fx.columns["Revisão"].id)

            assert outcome.status == "failed"
            assert outcome.notice is not None
            assert outcome.notice.title == "Erro ao verificar tarefa"
            column = controller.store.column_of(card.id)
            assert column is not None and column.title == "A Fazer"
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_write_failure_reports_without_retry() -> None:
    engine = await _make_engine()
    try:
        async with await _make_session(engine) as session:
            fx = await _fixture(session)
            card = fx.add_card("A Fazer", "Normal")
            controller = await fx.controller(FailingWrites(session))

            controller.on_drag_start(card.id)
            review = fx.columns["Revisão"].id
            assert (await controller.on_drag_over(card.id, review)).status == "previewed"
            outcome = await controller.on_drag_end(card.id, review)

            assert outcome.status == "failed"
            assert outcome.notice is not None
            assert outcome.notice.title == "Erro ao mover tarefa"
            assert fx.notices == [outcome.notice]
            column = controller.store.column_of(card.id)
            assert column is not None and column.title == "A Fazer"
            stored = await controller.backend.get_card(card.id)
            assert stored is not None and stored.column_id == fx.columns["A Fazer"].id
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_failed_reorder_restores_persisted_order() -> None:
    engine = await _make_engine()
    try:
        async with await _make_session(engine) as session:
            fx = await _fixture(session)
            cards = [fx.add_card("A Fazer", str(i)) for i in range(3)]
            controller = await fx.controller(FailingWrites(session))

            controller.on_drag_start(cards[0].id)
            outcome = await controller.on_drag_end(cards[0].id, cards[2].id)

            assert outcome.status == "failed"
            column = controller.store.get_column(fx.columns["A Fazer"].id)
            assert column is not None
            assert column.card_ids() == [card.id for card in cards]
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_superseded_hover_check_is_discarded() -> None:
    engine = await _make_engine()
    try:
        async with await _make_session(engine) as session:
            fx = await _fixture(session)
            card = fx.add_card("Em Progresso", "C", is_collaborative=True, requires_all_approval=True)
            fx.add_assignee(card, "Ana", completed=True)
            fx.add_assignee(card, "Bruno", completed=True)
            backend = SlowFirstRead(session)
            controller = await fx.controller(backend)
            done = fx.columns["Concluído"].id

            controller.on_drag_start(card.id)
            slow = asyncio.create_task(controller.on_drag_over(card.id, fx.columns["Revisão"].id))
            await backend.entered.wait()
            latest = await controller.on_drag_over(card.id, done)
            backend.release.set()
            stale = await slow

            assert latest.status == "previewed"
            assert stale.status == "stale"
            column = controller.store.column_of(card.id)
            assert column is not None and column.id == done
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_drop_outside_columns_restores_origin() -> None:
    engine = await _make_engine()
    try:
        async with await _make_session(engine) as session:
            fx = await _fixture(session)
            card = fx.add_card("A Fazer", "Normal")
            controller = await fx.controller()

            controller.on_drag_start(card.id)
            await controller.on_drag_over(card.id, fx.columns["Revisão"].id)
            outcome = await controller.on_drag_end(card.id, uuid4())

            assert outcome.status == "ignored"
            column = controller.store.column_of(card.id)
            assert column is not None and column.title == "A Fazer"
    finally:
        await engine.dispose()
