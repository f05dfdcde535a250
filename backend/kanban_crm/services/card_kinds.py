"""Closed set of card kinds derived from the persisted card flags."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING
from uuid import UUID

if TYPE_CHECKING:
    from kanban_crm.models.cards import Card


@dataclass(frozen=True)
class NormalCard:
    """Plain task card."""


@dataclass(frozen=True)
class LeadLinkedCard:
    """Card tied to a sales lead."""

    lead_id: UUID


@dataclass(frozen=True)
class CollaborativeCard:
    """Card shared by several assignees; may require unanimous completion to move."""

    requires_all_approval: bool
    lead_id: UUID | None = None


CardKind = NormalCard | LeadLinkedCard | CollaborativeCard


def card_kind(
    *,
    is_collaborative: bool,
    requires_all_approval: bool,
    lead_id: UUID | None,
) -> CardKind:
    if is_collaborative:
        return CollaborativeCard(requires_all_approval=requires_all_approval, lead_id=lead_id)
    if lead_id is not None:
        return LeadLinkedCard(lead_id=lead_id)
    return NormalCard()


def kind_of(card: Card) -> CardKind:
    return card_kind(
        is_collaborative=card.is_collaborative,
        requires_all_approval=card.requires_all_approval,
        lead_id=card.lead_id,
    )


def is_approval_gated(kind: CardKind) -> bool:
    """Whether moves of this kind must pass the unanimous-approval gate."""
    if isinstance(kind, CollaborativeCard):
        return kind.requires_all_approval
    if isinstance(kind, (NormalCard, LeadLinkedCard)):
        return False
    raise TypeError(f"Unknown card kind: {kind!r}")
