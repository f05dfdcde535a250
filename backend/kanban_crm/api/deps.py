"""Reusable FastAPI dependencies for auth, tenancy and board access.

Routes compose these instead of re-implementing lookups:

- resolve the calling user from the shared token and ``X-User-Id``
- require organization membership
- load the caller's board, column or card, or answer 404
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING
from uuid import UUID

from fastapi import Depends, HTTPException, status

from kanban_crm.core.auth import AuthContext, get_auth_context
from kanban_crm.db.session import get_session
from kanban_crm.models.board_columns import BoardColumn
from kanban_crm.models.boards import Board
from kanban_crm.models.cards import Card
from kanban_crm.models.organization_members import OrganizationMember
from kanban_crm.models.organizations import Organization
from kanban_crm.services.board_backend import BoardBackend
from kanban_crm.services.notices import rejection
from kanban_crm.services.realtime import RealtimeHub

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

AUTH_DEP = Depends(get_auth_context)
SESSION_DEP = Depends(get_session)

_realtime_hub = RealtimeHub()


def get_realtime_hub() -> RealtimeHub:
    """Process-wide change feed shared by every request."""
    return _realtime_hub


HUB_DEP = Depends(get_realtime_hub)


def get_backend(
    session: AsyncSession = SESSION_DEP,
    hub: RealtimeHub = HUB_DEP,
) -> BoardBackend:
    return BoardBackend(session, hub)


BACKEND_DEP = Depends(get_backend)


@dataclass
class OrganizationContext:
    """Resolved organization and membership for the active user."""

    organization: Organization
    member: OrganizationMember
    user_id: UUID


async def require_org_member(
    auth: AuthContext = AUTH_DEP,
    session: AsyncSession = SESSION_DEP,
) -> OrganizationContext:
    """Resolve and require organization membership for the current user."""
    member = await OrganizationMember.objects.filter_by(user_id=auth.user_id).first(session)
    if member is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
    organization = await Organization.objects.by_id(member.organization_id).first(session)
    if organization is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
    return OrganizationContext(organization=organization, member=member, user_id=auth.user_id)


ORG_MEMBER_DEP = Depends(require_org_member)


def _board_not_found() -> HTTPException:
    return rejection(
        status.HTTP_404_NOT_FOUND,
        code="board_not_found",
        message="Board not found.",
    )


async def get_board_or_404(
    board_id: UUID,
    backend: BoardBackend = BACKEND_DEP,
    ctx: OrganizationContext = ORG_MEMBER_DEP,
) -> Board:
    """Load a board that belongs to the caller's organization, or 404."""
    board = await backend.get_board(board_id)
    if board is None or board.organization_id != ctx.organization.id:
        raise _board_not_found()
    return board


BOARD_DEP = Depends(get_board_or_404)


async def get_column_or_404(
    column_id: UUID,
    board: Board = BOARD_DEP,
    backend: BoardBackend = BACKEND_DEP,
) -> BoardColumn:
    column = await backend.get_column(column_id)
    if column is None or column.board_id != board.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)
    return column


async def get_card_or_404(
    card_id: UUID,
    board: Board = BOARD_DEP,
    backend: BoardBackend = BACKEND_DEP,
) -> Card:
    card = await backend.get_card(card_id)
    if card is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)
    column = await backend.get_column(card.column_id)
    if column is None or column.board_id != board.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)
    return card


COLUMN_DEP = Depends(get_column_or_404)
CARD_DEP = Depends(get_card_or_404)
