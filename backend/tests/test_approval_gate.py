# ruff: noqa: INP001, S101
"""Collaborative-approval gate and backward-movement checks."""

from __future__ import annotations

from uuid import UUID, uuid4

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlmodel import SQLModel, col
from sqlmodel.ext.asyncio.session import AsyncSession

from kanban_crm.models.board_columns import BoardColumn
from kanban_crm.models.boards import Board
from kanban_crm.models.card_assignees import CardAssignee
from kanban_crm.models.cards import Card
from kanban_crm.models.organizations import Organization
from kanban_crm.models.profiles import Profile
from kanban_crm.services import approval_gate
from kanban_crm.services.approval_gate import (
    approval_status,
    check_backward_movement,
    check_collaborative_gate,
)
from kanban_crm.services.board_backend import BoardBackend
from kanban_crm.services.board_store import ColumnState


async def _make_engine() -> AsyncEngine:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.connect() as conn, conn.begin():
        await conn.run_sync(SQLModel.metadata.create_all)
    return engine


async def _make_session(engine: AsyncEngine) -> AsyncSession:
    return AsyncSession(engine, expire_on_commit=False)


async def _seed_card(
    session: AsyncSession,
    *,
    is_collaborative: bool = True,
    requires_all_approval: bool = True,
    completions: tuple[bool, ...] = (),
    names: tuple[str | None, ...] = (),
) -> tuple[Card, list[UUID]]:
    organization = Organization(name="org")
    board = Board(organization_id=organization.id)
    column = BoardColumn(board_id=board.id, title="Em Progresso", position=0)
    card = Card(
        column_id=column.id,
        content="Proposta",
        is_collaborative=is_collaborative,
        requires_all_approval=requires_all_approval,
    )
    session.add_all([organization, board, column, card])
    user_ids = []
    for index, completed in enumerate(completions):
        user_id = uuid4()
        user_ids.append(user_id)
        session.add(CardAssignee(card_id=card.id, user_id=user_id, is_completed=completed))
        name = names[index] if index < len(names) else f"User {index + 1}"
        if name is not None:
            session.add(Profile(user_id=user_id, full_name=name))
    await session.commit()
    return card, user_ids


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("completions", "allowed"),
    [
        ((True,), True),
        ((False,), False),
        ((True, True), True),
        ((True, False), False),
        ((False, False), False),
        ((True, True, False), False),
        ((True, True, True), True),
    ],
)
async def test_gate_allows_only_when_every_assignee_completed(
    completions: tuple[bool, ...],
    allowed: bool,
) -> None:
    engine = await _make_engine()
    try:
        async with await _make_session(engine) as session:
            card, _ = await _seed_card(session, completions=completions)
            decision = await check_collaborative_gate(BoardBackend(session), card)

            assert decision.allowed is allowed
            assert decision.total == len(completions)
            assert decision.completed == sum(completions)
            if not allowed:
                assert decision.reason == "approval_pending"
                assert decision.notice is not None
                assert f"{sum(completions)}/{len(completions)}" in decision.notice.description
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_gate_reads_completion_rows_fresh_from_the_database() -> None:
    engine = await _make_engine()
    try:
        async with await _make_session(engine) as session:
            card, user_ids = await _seed_card(session, completions=(True, False))
            backend = BoardBackend(session)
            assert (await check_collaborative_gate(backend, card)).allowed is False

            # Another collaborator confirms; the cached row objects are left stale.
            await session.execute(
                update(CardAssignee)
                .where(col(CardAssignee.user_id) == user_ids[1])
                .values(is_completed=True)
                .execution_options(synchronize_session=False),
            )
            await session.commit()

            assert (await check_collaborative_gate(backend, card)).allowed is True
    finally:
        await engine.dispose()


@pytest.mark.asyncio
@pytest.mark.parametrize("requires_all_approval", [True, False])
async def test_non_collaborative_cards_bypass_the_gate(requires_all_approval: bool) -> None:
    engine = await _make_engine()
    try:
        async with await _make_session(engine) as session:
            card, _ = await _seed_card(
                session,
                is_collaborative=False,
                requires_all_approval=requires_all_approval,
                completions=(False, False),
            )
            decision = await check_collaborative_gate(BoardBackend(session), card)
            assert decision.allowed is True
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_collaborative_card_without_unanimous_flag_is_not_gated() -> None:
    engine = await _make_engine()
    try:
        async with await _make_session(engine) as session:
            card, _ = await _seed_card(
                session,
                requires_all_approval=False,
                completions=(False, False),
            )
            assert (await check_collaborative_gate(BoardBackend(session), card)).allowed
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_unassigned_collaborative_card_follows_configured_policy(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    engine = await _make_engine()
    try:
        async with await _make_session(engine) as session:
            card, _ = await _seed_card(session, completions=())
            backend = BoardBackend(session)
            assert (await check_collaborative_gate(backend, card)).allowed is True

            monkeypatch.setattr(
                approval_gate.settings,
                "gate_block_unassigned_collaborative",
                True,
            )
            decision = await check_collaborative_gate(backend, card)
            assert decision.allowed is False
            assert decision.pending_names == ("colaboradores",)
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_blocked_notice_names_pending_collaborators() -> None:
    engine = await _make_engine()
    try:
        async with await _make_session(engine) as session:
            card, user_ids = await _seed_card(
                session,
                completions=(True, False),
                names=("Ana", "Bruno"),
            )
            decision = await check_collaborative_gate(BoardBackend(session), card)

            assert decision.pending_user_ids == (user_ids[1],)
            assert decision.pending_names == ("Bruno",)
            assert decision.notice is not None
            assert "Bruno" in decision.notice.description
            assert "Ana" not in decision.notice.description
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_missing_profiles_fall_back_to_placeholder() -> None:
    engine = await _make_engine()
    try:
        async with await _make_session(engine) as session:
            card, _ = await _seed_card(session, completions=(False, False), names=(None, None))
            decision = await check_collaborative_gate(BoardBackend(session), card)
            assert decision.pending_names == ("colaboradores",)
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_name_lookup_failure_does_not_change_the_decision(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    engine = await _make_engine()
    try:
        async with await _make_session(engine) as session:
            card, _ = await _seed_card(session, completions=(True, False))
            backend = BoardBackend(session)

            async def _broken_profiles(_user_ids: object) -> list[Profile]:
                raise OperationalError("select profiles", {}, Exception("down"))

            monkeypatch.setattr(backend, "fetch_profiles", _broken_profiles)
            decision = await check_collaborative_gate(backend, card)

            assert decision.allowed is False
            assert decision.completed == 1
            assert decision.total == 2
            assert decision.pending_names == ("colaboradores",)
    finally:
        await engine.dispose()


def _columns(*blocking: bool) -> list[ColumnState]:
    board_id = uuid4()
    return [
        ColumnState(
            id=uuid4(),
            board_id=board_id,
            title=f"Col {index}",
            position=index,
            block_backward_movement=flag,
        )
        for index, flag in enumerate(blocking)
    ]


@pytest.mark.parametrize(
    ("source", "target", "allowed"),
    [
        (2, 0, False),
        (2, 1, False),
        (2, 2, True),
        (2, 3, True),
        (1, 0, True),
        (0, 3, True),
    ],
)
def test_backward_movement_block(source: int, target: int, allowed: bool) -> None:
    columns = _columns(False, False, True, False)
    decision = check_backward_movement(
        columns,
        source_column_id=columns[source].id,
        target_column_id=columns[target].id,
    )
    assert decision.allowed is allowed
    if not allowed:
        assert decision.reason == "backward_movement"
        assert decision.column_title == "Col 2"


def test_backward_movement_ignores_unknown_columns() -> None:
    columns = _columns(True)
    decision = check_backward_movement(
        columns,
        source_column_id=columns[0].id,
        target_column_id=uuid4(),
    )
    assert decision.allowed is True


@pytest.mark.asyncio
async def test_approval_status_reports_progress() -> None:
    engine = await _make_engine()
    try:
        async with await _make_session(engine) as session:
            card, _ = await _seed_card(
                session,
                completions=(True, False, False, True),
                names=("Ana", "Bruno", "Carla", "Davi"),
            )
            status = await approval_status(BoardBackend(session), card.id)

            assert status.total == 4
            assert status.completed == 2
            assert status.progress_percent == 50.0
            assert status.all_completed is False
            assert {a.full_name for a in status.assignees} == {"Ana", "Bruno", "Carla", "Davi"}
    finally:
        await engine.dispose()
