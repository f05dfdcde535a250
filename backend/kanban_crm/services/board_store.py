"""Authoritative in-process mirror of one board's columns and cards.

All mutations go through ``reduce`` via ``BoardStore.dispatch``. When an
optimistic change can no longer be trusted, ``reload_board`` discards the
local state and re-reads everything from the backend; it is the only
conflict-resolution path.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from kanban_crm.core.logging import get_logger
from kanban_crm.models.board_columns import BoardColumn
from kanban_crm.models.cards import Card
from kanban_crm.services.card_kinds import CardKind, CollaborativeCard, card_kind
from kanban_crm.services.realtime import ViewSubscriptions

if TYPE_CHECKING:
    from collections.abc import Iterable

    from kanban_crm.services.board_backend import BoardBackend
    from kanban_crm.services.realtime import ChangeEvent, RealtimeHub

logger = get_logger(__name__)


@dataclass(frozen=True)
class CardState:
    """Cached view of a card row."""

    id: UUID
    column_id: UUID
    content: str
    position: int
    kind: CardKind
    description: str | None = None
    due_date: datetime | None = None
    estimated_time: int | None = None
    timer_started_at: datetime | None = None
    timer_start_column_id: UUID | None = None
    created_by: UUID | None = None

    @property
    def is_collaborative(self) -> bool:
        return isinstance(self.kind, CollaborativeCard)

    @classmethod
    def from_card(cls, card: Card) -> CardState:
        return cls(
            id=card.id,
            column_id=card.column_id,
            content=card.content,
            position=card.position,
            kind=card_kind(
                is_collaborative=card.is_collaborative,
                requires_all_approval=card.requires_all_approval,
                lead_id=card.lead_id,
            ),
            description=card.description,
            due_date=card.due_date,
            estimated_time=card.estimated_time,
            timer_started_at=card.timer_started_at,
            timer_start_column_id=card.timer_start_column_id,
            created_by=card.created_by,
        )

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> CardState:
        return cls.from_card(Card.model_validate(dict(row)))


@dataclass(frozen=True)
class ColumnState:
    """Cached view of a column and its ordered cards."""

    id: UUID
    board_id: UUID
    title: str
    position: int
    block_backward_movement: bool = False
    is_completion_stage: bool = False
    auto_delete_enabled: bool = False
    auto_delete_hours: int | None = None
    cards: tuple[CardState, ...] = ()

    @classmethod
    def from_column(cls, column: BoardColumn, cards: Iterable[Card] = ()) -> ColumnState:
        return cls(
            id=column.id,
            board_id=column.board_id,
            title=column.title,
            position=column.position,
            block_backward_movement=column.block_backward_movement,
            is_completion_stage=column.is_completion_stage,
            auto_delete_enabled=column.auto_delete_enabled,
            auto_delete_hours=column.auto_delete_hours,
            cards=tuple(CardState.from_card(card) for card in cards),
        )

    def card_ids(self) -> list[UUID]:
        return [card.id for card in self.cards]


@dataclass(frozen=True)
class BoardState:
    board_id: UUID | None = None
    columns: tuple[ColumnState, ...] = ()


# -- actions -------------------------------------------------------------------


@dataclass(frozen=True)
class SetColumns:
    columns: tuple[ColumnState, ...]
    board_id: UUID | None = None


@dataclass(frozen=True)
class MoveCard:
    """Move a card into another column, at *index* or at the end."""

    card_id: UUID
    target_column_id: UUID
    index: int | None = None


@dataclass(frozen=True)
class ReorderCards:
    column_id: UUID
    card_ids: tuple[UUID, ...]


@dataclass(frozen=True)
class UpsertCard:
    card: CardState


@dataclass(frozen=True)
class PatchCard:
    card_id: UUID
    changes: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RemoveCard:
    card_id: UUID


Action = SetColumns | MoveCard | ReorderCards | UpsertCard | PatchCard | RemoveCard

_CARD_FIELDS = frozenset(f.name for f in fields(CardState))


def _without_card(columns: tuple[ColumnState, ...], card_id: UUID) -> tuple[ColumnState, ...]:
    return tuple(
        replace(column, cards=tuple(c for c in column.cards if c.id != card_id))
        if any(c.id == card_id for c in column.cards)
        else column
        for column in columns
    )


def _insert_card(
    columns: tuple[ColumnState, ...],
    card: CardState,
    column_id: UUID,
    index: int | None,
) -> tuple[ColumnState, ...]:
    result = []
    for column in columns:
        if column.id == column_id:
            cards = list(column.cards)
            at = len(cards) if index is None else max(0, min(index, len(cards)))
            cards.insert(at, card)
            column = replace(column, cards=tuple(cards))
        result.append(column)
    return tuple(result)


def _find(columns: tuple[ColumnState, ...], card_id: UUID) -> tuple[ColumnState, CardState] | None:
    for column in columns:
        for card in column.cards:
            if card.id == card_id:
                return column, card
    return None


def _has_column(columns: tuple[ColumnState, ...], column_id: UUID) -> bool:
    return any(column.id == column_id for column in columns)


def reduce(state: BoardState, action: Action) -> BoardState:
    """Return the next board state; unknown cards or columns leave it unchanged."""
    columns = state.columns

    if isinstance(action, SetColumns):
        ordered = tuple(sorted(action.columns, key=lambda column: column.position))
        return BoardState(board_id=action.board_id or state.board_id, columns=ordered)

    if isinstance(action, MoveCard):
        found = _find(columns, action.card_id)
        if found is None or not _has_column(columns, action.target_column_id):
            return state
        _, card = found
        columns = _without_card(columns, action.card_id)
        columns = _insert_card(columns, card, action.target_column_id, action.index)
        return replace(state, columns=columns)

    if isinstance(action, ReorderCards):
        result = []
        for column in columns:
            if column.id == action.column_id:
                by_id = {card.id: card for card in column.cards}
                ordered = [by_id[card_id] for card_id in action.card_ids if card_id in by_id]
                listed = set(action.card_ids)
                ordered.extend(card for card in column.cards if card.id not in listed)
                column = replace(
                    column,
                    cards=tuple(
                        replace(card, position=index) for index, card in enumerate(ordered)
                    ),
                )
            result.append(column)
        return replace(state, columns=tuple(result))

    if isinstance(action, UpsertCard):
        card = action.card
        found = _find(columns, card.id)
        if found is not None and found[0].id == card.column_id:
            column = found[0]
            cards = tuple(card if c.id == card.id else c for c in column.cards)
            return replace(
                state,
                columns=tuple(replace(c, cards=cards) if c.id == column.id else c for c in columns),
            )
        columns = _without_card(columns, card.id)
        if not _has_column(columns, card.column_id):
            return replace(state, columns=columns)
        return replace(
            state,
            columns=_insert_card(columns, card, card.column_id, card.position),
        )

    if isinstance(action, PatchCard):
        found = _find(columns, action.card_id)
        if found is None:
            return state
        changes = {k: v for k, v in action.changes.items() if k in _CARD_FIELDS}
        patched = replace(found[1], **changes)
        if patched.column_id == found[0].id:
            return reduce(state, UpsertCard(patched))
        columns = _without_card(columns, patched.id)
        if not _has_column(columns, patched.column_id):
            return replace(state, columns=columns)
        return replace(state, columns=_insert_card(columns, patched, patched.column_id, None))

    if isinstance(action, RemoveCard):
        return replace(state, columns=_without_card(columns, action.card_id))

    raise TypeError(f"Unknown board action: {action!r}")


class BoardStore:
    """Holds the current ``BoardState`` and applies actions to it."""

    def __init__(self, state: BoardState | None = None) -> None:
        self._state = state or BoardState()

    @property
    def state(self) -> BoardState:
        return self._state

    @property
    def columns(self) -> tuple[ColumnState, ...]:
        return self._state.columns

    def dispatch(self, action: Action) -> BoardState:
        self._state = reduce(self._state, action)
        return self._state

    def get_column(self, column_id: UUID) -> ColumnState | None:
        for column in self._state.columns:
            if column.id == column_id:
                return column
        return None

    def find_card(self, card_id: UUID) -> CardState | None:
        found = _find(self._state.columns, card_id)
        return found[1] if found is not None else None

    def column_of(self, card_id: UUID) -> ColumnState | None:
        found = _find(self._state.columns, card_id)
        return found[0] if found is not None else None

    def column_index(self, column_id: UUID) -> int | None:
        for index, column in enumerate(self._state.columns):
            if column.id == column_id:
                return index
        return None

    def resolve_target_column(self, over_id: UUID) -> ColumnState | None:
        """Resolve a hover target that is either a column or a card inside one."""
        column = self.get_column(over_id)
        if column is not None:
            return column
        return self.column_of(over_id)

    def bind_realtime(self, hub: RealtimeHub) -> ViewSubscriptions:
        """Follow card changes pushed by other writers; the caller owns the handles."""
        subscriptions = ViewSubscriptions(hub)
        subscriptions.subscribe(Card.__tablename__, self.apply_change)
        return subscriptions

    def apply_change(self, event: ChangeEvent) -> None:
        if event.event_type == "DELETE":
            raw_id = event.old.get("id")
            if raw_id is not None:
                self.dispatch(RemoveCard(UUID(str(raw_id))))
            return
        # Pushed rows overwrite local fields, including in-flight optimistic edits.
        self.dispatch(UpsertCard(CardState.from_row(event.new)))


async def reload_board(
    store: BoardStore,
    backend: BoardBackend,
    board_id: UUID | None = None,
) -> BoardState:
    """Discard local state and rebuild it from the backend."""
    target_board_id = board_id or store.state.board_id
    if target_board_id is None:
        raise ValueError("Cannot reload a board store that was never loaded")
    columns = await backend.list_columns(target_board_id)
    cards = await backend.list_cards(column.id for column in columns)
    by_column: dict[UUID, list[Card]] = {column.id: [] for column in columns}
    for card in cards:
        by_column.setdefault(card.column_id, []).append(card)
    logger.debug(
        "kanban.board.reloaded",
        extra={
            "board_id": str(target_board_id),
            "columns": len(columns),
            "cards": len(cards),
        },
    )
    return store.dispatch(
        SetColumns(
            columns=tuple(
                ColumnState.from_column(column, by_column[column.id]) for column in columns
            ),
            board_id=target_board_id,
        ),
    )
