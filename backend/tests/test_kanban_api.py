# ruff: noqa: INP001, S101
"""HTTP surface of the board and card routers."""

from __future__ import annotations

from collections.abc import AsyncIterator
from uuid import UUID, uuid4

import pytest
from fastapi import APIRouter, FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from kanban_crm.api.boards import router as boards_router
from kanban_crm.api.cards import router as cards_router
from kanban_crm.core.config import settings
from kanban_crm.core.error_handling import install_error_handling
from kanban_crm.db.session import get_session
from kanban_crm.models.card_assignees import CardAssignee
from kanban_crm.models.organization_members import OrganizationMember
from kanban_crm.models.organizations import Organization
from kanban_crm.models.profiles import Profile


async def _make_engine() -> AsyncEngine:
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.connect() as conn, conn.begin():
        await conn.run_sync(SQLModel.metadata.create_all)
    return engine


def _build_app(engine: AsyncEngine) -> FastAPI:
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def _session() -> AsyncIterator[AsyncSession]:
        async with maker() as session:
            yield session

    app = FastAPI()
    install_error_handling(app)
    api_v1 = APIRouter(prefix="/api/v1")
    api_v1.include_router(boards_router)
    api_v1.include_router(cards_router)
    app.include_router(api_v1)
    app.dependency_overrides[get_session] = _session
    return app


def _headers(user_id: UUID) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {settings.local_auth_token}",
        "X-User-Id": str(user_id),
    }


async def _seed_member(engine: AsyncEngine, *, role: str = "owner") -> UUID:
    user_id = uuid4()
    async with AsyncSession(engine, expire_on_commit=False) as session:
        organization = Organization(name="Acme")
        session.add(organization)
        session.add(
            OrganizationMember(organization_id=organization.id, user_id=user_id, role=role),
        )
        await session.commit()
    return user_id


@pytest.mark.asyncio
async def test_missing_token_is_unauthorized() -> None:
    engine = await _make_engine()
    try:
        async with AsyncClient(
            transport=ASGITransport(app=_build_app(engine)),
            base_url="http://testserver",
        ) as client:
            resp = await client.get(
                "/api/v1/organizations/me/board",
                headers={"X-User-Id": str(uuid4())},
            )
        assert resp.status_code == 401
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_non_member_is_forbidden() -> None:
    engine = await _make_engine()
    try:
        async with AsyncClient(
            transport=ASGITransport(app=_build_app(engine)),
            base_url="http://testserver",
        ) as client:
            resp = await client.get("/api/v1/organizations/me/board", headers=_headers(uuid4()))
        assert resp.status_code == 403
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_regular_member_does_not_create_board() -> None:
    engine = await _make_engine()
    try:
        user_id = await _seed_member(engine, role="member")
        async with AsyncClient(
            transport=ASGITransport(app=_build_app(engine)),
            base_url="http://testserver",
        ) as client:
            resp = await client.get("/api/v1/organizations/me/board", headers=_headers(user_id))
        assert resp.status_code == 404
        assert resp.json()["detail"]["code"] == "board_not_found"
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_card_lifecycle_and_blocked_move() -> None:
    engine = await _make_engine()
    try:
        owner = await _seed_member(engine)
        partner = uuid4()
        async with AsyncSession(engine, expire_on_commit=False) as session:
            session.add(Profile(user_id=partner, full_name="Bruno"))
            await session.commit()

        async with AsyncClient(
            transport=ASGITransport(app=_build_app(engine)),
            base_url="http://testserver",
        ) as client:
            headers = _headers(owner)
            board = (await client.get("/api/v1/organizations/me/board", headers=headers)).json()
            assert [c["title"] for c in board["columns"]] == ["A Fazer", "Em Progresso", "Concluído"]
            todo, _, done = (c["id"] for c in board["columns"])
            base = f"/api/v1/boards/{board['id']}"

            solo = await client.post(
                f"{base}/columns/{todo}/cards",
                json={"content": "Solo", "is_collaborative": True, "assignee_ids": [str(owner)]},
                headers=headers,
            )
            assert solo.status_code == 422
            assert solo.json()["detail"]["code"] == "collaborators_required"

            created = await client.post(
                f"{base}/columns/{todo}/cards",
                json={
                    "content": "Contrato",
                    "is_collaborative": True,
                    "requires_all_approval": True,
                    "assignee_ids": [str(owner), str(partner)],
                },
                headers=headers,
            )
            assert created.status_code == 201
            card = created.json()
            assert card["kind"] == "collaborative"
            assert card["position"] == 0
            assert {a["user_id"] for a in card["assignees"]} == {str(owner), str(partner)}

            blocked = await client.post(
                f"{base}/cards/{card['id']}/move",
                json={"target_column_id": done},
                headers=headers,
            )
            assert blocked.status_code == 409
            detail = blocked.json()["detail"]
            assert detail["code"] == "collaborative_approval_pending"
            assert "Bruno" in detail["notice"]["description"]
            assert "0/2" in detail["notice"]["description"]

            confirmed = await client.post(
                f"{base}/cards/{card['id']}/approval/confirm",
                headers=headers,
            )
            assert confirmed.status_code == 200
            assert confirmed.json()["completed"] == 1
            assert confirmed.json()["moved_to_column_id"] is None

            approval = (
                await client.get(f"{base}/cards/{card['id']}/approval", headers=headers)
            ).json()
            assert approval["completed"] == 1
            assert approval["total"] == 2

            deleted = await client.delete(f"{base}/cards/{card['id']}", headers=headers)
            assert deleted.status_code == 204

        async with AsyncSession(engine) as session:
            assert await CardAssignee.objects.all().all(session) == []
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_unknown_board_is_not_found() -> None:
    engine = await _make_engine()
    try:
        owner = await _seed_member(engine)
        async with AsyncClient(
            transport=ASGITransport(app=_build_app(engine)),
            base_url="http://testserver",
        ) as client:
            resp = await client.get(f"/api/v1/boards/{uuid4()}", headers=_headers(owner))
        assert resp.status_code == 404
        assert resp.json()["detail"]["code"] == "board_not_found"
    finally:
        await engine.dispose()
