"""Persistence gateway for board, column, card, assignee and notification rows.

Every read the board logic relies on goes through here, and every committed
write is announced on the realtime hub so open views can follow changes made
by other users.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING, Any

from sqlmodel import col

from kanban_crm.core.logging import get_logger
from kanban_crm.core.time import utcnow
from kanban_crm.db import crud
from kanban_crm.models.board_columns import BoardColumn
from kanban_crm.models.boards import Board
from kanban_crm.models.card_assignees import CardAssignee
from kanban_crm.models.cards import Card
from kanban_crm.models.notifications import Notification
from kanban_crm.models.organization_members import OrganizationMember
from kanban_crm.models.profiles import Profile
from kanban_crm.services.realtime import ChangeEvent, ChangeType

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

    from sqlmodel import SQLModel
    from sqlmodel.ext.asyncio.session import AsyncSession

    from kanban_crm.services.realtime import RealtimeHub

logger = get_logger(__name__)


def _row(obj: SQLModel) -> dict[str, Any]:
    return obj.model_dump()


class BoardBackend:
    """Reads and writes board rows through one async session."""

    def __init__(self, session: AsyncSession, hub: RealtimeHub | None = None) -> None:
        self.session = session
        self.hub = hub

    async def _publish(
        self,
        table: str,
        event_type: ChangeType,
        *,
        new: dict[str, Any] | None = None,
        old: dict[str, Any] | None = None,
    ) -> None:
        if self.hub is None:
            return
        await self.hub.publish(
            ChangeEvent(table=table, event_type=event_type, new=new or {}, old=old or {}),
        )

    # -- reads ---------------------------------------------------------------

    async def get_board(self, board_id: UUID) -> Board | None:
        return await Board.objects.by_id(board_id).first(self.session)

    async def get_board_for_organization(self, organization_id: UUID) -> Board | None:
        return await Board.objects.filter_by(organization_id=organization_id).first(
            self.session,
        )

    async def list_columns(self, board_id: UUID) -> list[BoardColumn]:
        return await (
            BoardColumn.objects.filter_by(board_id=board_id)
            .order_by(col(BoardColumn.position).asc())
            .fresh()
            .all(self.session)
        )

    async def get_column(self, column_id: UUID) -> BoardColumn | None:
        return await BoardColumn.objects.by_id(column_id).fresh().first(self.session)

    async def list_cards(self, column_ids: Iterable[UUID]) -> list[Card]:
        ids = list(column_ids)
        if not ids:
            return []
        return await (
            Card.objects.filter(col(Card.column_id).in_(ids))
            .order_by(col(Card.position).asc(), col(Card.created_at).asc())
            .fresh()
            .all(self.session)
        )

    async def get_card(self, card_id: UUID) -> Card | None:
        return await Card.objects.by_id(card_id).fresh().first(self.session)

    async def fetch_assignees(self, card_id: UUID) -> list[CardAssignee]:
        """Read assignee rows straight from the database, never from the identity map."""
        return await (
            CardAssignee.objects.filter_by(card_id=card_id)
            .order_by(col(CardAssignee.created_at).asc())
            .fresh()
            .all(self.session)
        )

    async def fetch_profiles(self, user_ids: Iterable[UUID]) -> list[Profile]:
        ids = list(user_ids)
        if not ids:
            return []
        return await Profile.objects.filter(col(Profile.user_id).in_(ids)).all(self.session)

    async def fetch_organization_profiles(self, organization_id: UUID) -> list[Profile]:
        members = await OrganizationMember.objects.filter_by(
            organization_id=organization_id,
        ).all(self.session)
        return await self.fetch_profiles(member.user_id for member in members)

    async def fetch_assignees_for_cards(self, card_ids: Iterable[UUID]) -> list[CardAssignee]:
        ids = list(card_ids)
        if not ids:
            return []
        return await (
            CardAssignee.objects.filter(col(CardAssignee.card_id).in_(ids))
            .order_by(col(CardAssignee.created_at).asc())
            .fresh()
            .all(self.session)
        )

    async def list_cards_timed_to_column(self, column_id: UUID) -> list[Card]:
        """Cards in any column whose deferred timer waits for *column_id*."""
        return await Card.objects.filter_by(timer_start_column_id=column_id).all(self.session)

    async def list_auto_delete_columns(self) -> list[BoardColumn]:
        return await (
            BoardColumn.objects.filter_by(auto_delete_enabled=True)
            .filter(col(BoardColumn.auto_delete_hours).is_not(None))
            .fresh()
            .all(self.session)
        )

    async def list_cards_created_before(self, column_id: UUID, threshold: datetime) -> list[Card]:
        return await Card.objects.filter(
            col(Card.column_id) == column_id,
            col(Card.created_at) < threshold,
        ).all(self.session)

    # -- boards & columns ----------------------------------------------------

    async def insert_board(self, organization_id: UUID) -> Board:
        board = await crud.save(self.session, Board(organization_id=organization_id))
        logger.info(
            "kanban.board.created",
            extra={"board_id": str(board.id), "organization_id": str(organization_id)},
        )
        return board

    async def insert_column(self, column: BoardColumn) -> BoardColumn:
        column = await crud.save(self.session, column)
        await self._publish(BoardColumn.__tablename__, "INSERT", new=_row(column))
        return column

    async def insert_columns(self, columns: Sequence[BoardColumn]) -> list[BoardColumn]:
        for column in columns:
            self.session.add(column)
        await self.session.commit()
        for column in columns:
            await self.session.refresh(column)
            await self._publish(BoardColumn.__tablename__, "INSERT", new=_row(column))
        return list(columns)

    async def update_column(self, column: BoardColumn, **changes: object) -> BoardColumn:
        old = _row(column)
        for key, value in changes.items():
            setattr(column, key, value)
        column.updated_at = utcnow()
        column = await crud.save(self.session, column)
        await self._publish(BoardColumn.__tablename__, "UPDATE", new=_row(column), old=old)
        return column

    async def delete_column(self, column: BoardColumn) -> None:
        old = _row(column)
        await self.session.delete(column)
        await self.session.commit()
        await self._publish(BoardColumn.__tablename__, "DELETE", old=old)

    # -- cards ---------------------------------------------------------------

    async def insert_card(self, card: Card) -> Card:
        card = await crud.save(self.session, card)
        await self._publish(Card.__tablename__, "INSERT", new=_row(card))
        return card

    async def update_card(self, card: Card, **changes: object) -> Card:
        old = _row(card)
        for key, value in changes.items():
            setattr(card, key, value)
        card.updated_at = utcnow()
        card = await crud.save(self.session, card)
        await self._publish(Card.__tablename__, "UPDATE", new=_row(card), old=old)
        return card

    async def delete_card(self, card: Card) -> None:
        old = _row(card)
        await crud.delete_where(
            self.session,
            CardAssignee,
            col(CardAssignee.card_id) == card.id,
            commit=False,
        )
        await self.session.delete(card)
        await self.session.commit()
        await self._publish(Card.__tablename__, "DELETE", old=old)

    async def delete_cards(self, card_ids: Sequence[UUID]) -> int:
        """Delete cards and their assignee rows in one transaction."""
        if not card_ids:
            return 0
        await crud.delete_where(
            self.session,
            CardAssignee,
            col(CardAssignee.card_id).in_(card_ids),
            commit=False,
        )
        deleted = await crud.delete_where(
            self.session,
            Card,
            col(Card.id).in_(card_ids),
            commit=False,
        )
        await self.session.commit()
        for card_id in card_ids:
            await self._publish(Card.__tablename__, "DELETE", old={"id": card_id})
        return deleted

    # -- assignees & notifications ---------------------------------------------

    async def insert_assignees(
        self,
        card_id: UUID,
        user_ids: Iterable[UUID],
    ) -> list[CardAssignee]:
        rows = [CardAssignee(card_id=card_id, user_id=user_id) for user_id in user_ids]
        if not rows:
            return []
        for row in rows:
            self.session.add(row)
        await self.session.commit()
        for row in rows:
            await self.session.refresh(row)
            await self._publish(CardAssignee.__tablename__, "INSERT", new=_row(row))
        return rows

    async def update_assignee(self, assignee: CardAssignee, **changes: object) -> CardAssignee:
        old = _row(assignee)
        for key, value in changes.items():
            setattr(assignee, key, value)
        assignee = await crud.save(self.session, assignee)
        await self._publish(CardAssignee.__tablename__, "UPDATE", new=_row(assignee), old=old)
        return assignee

    async def delete_assignees(self, assignee_ids: Sequence[UUID]) -> int:
        if not assignee_ids:
            return 0
        deleted = await crud.delete_where(
            self.session,
            CardAssignee,
            col(CardAssignee.id).in_(assignee_ids),
        )
        for assignee_id in assignee_ids:
            await self._publish(CardAssignee.__tablename__, "DELETE", old={"id": assignee_id})
        return deleted

    async def insert_notifications(
        self,
        notifications: Sequence[Notification],
    ) -> list[Notification]:
        if not notifications:
            return []
        for notification in notifications:
            self.session.add(notification)
        await self.session.commit()
        return list(notifications)
