"""Notification builders for assignment, mention and approval events."""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import TYPE_CHECKING

from kanban_crm.core.logging import get_logger
from kanban_crm.models.notifications import Notification

if TYPE_CHECKING:
    from uuid import UUID

    from kanban_crm.models.cards import Card
    from kanban_crm.services.board_backend import BoardBackend

logger = get_logger(__name__)

MENTION_PATTERN = re.compile(r"@([A-Za-zÀ-ÿ\s]+?)(?=\s|$|@)")


def detect_mentions(text: str) -> list[str]:
    """Return the ``@Name`` mentions in *text*, in order of appearance."""
    return [match.group(1).strip() for match in MENTION_PATTERN.finditer(text) if match.group(1)]


async def notify_task_assigned(
    backend: BoardBackend,
    *,
    card: Card,
    user_ids: Iterable[UUID],
    actor_id: UUID | None,
) -> list[Notification]:
    """Notify newly assigned users, skipping the actor assigning themselves."""
    rows = [
        Notification(
            user_id=user_id,
            type="task_assigned",
            title="Nova tarefa atribuída",
            message=f'Você foi atribuído à tarefa "{card.content}"',
            card_id=card.id,
            lead_id=card.lead_id,
            due_date=card.due_date,
            time_estimate=card.estimated_time,
            from_user_id=actor_id,
        )
        for user_id in user_ids
        if user_id != actor_id
    ]
    return await backend.insert_notifications(rows)


async def notify_mentions(
    backend: BoardBackend,
    *,
    card: Card,
    organization_id: UUID,
    new_text: str,
    old_text: str,
    actor_id: UUID | None,
) -> list[Notification]:
    """Notify profiles whose name was newly mentioned in the card description."""
    old_mentions = {m.lower() for m in detect_mentions(old_text)}
    added = [m for m in detect_mentions(new_text) if m.lower() not in old_mentions]
    if not added:
        return []

    profiles = await backend.fetch_organization_profiles(organization_id)
    by_name = {p.full_name.lower(): p for p in profiles if p.full_name}
    rows = []
    for mention in dict.fromkeys(m.lower() for m in added):
        profile = by_name.get(mention)
        if profile is None:
            logger.debug("kanban.mention.unmatched", extra={"card_id": str(card.id)})
            continue
        rows.append(
            Notification(
                user_id=profile.user_id,
                type="task_mention",
                title="Mencionado em tarefa",
                message=f'Você foi mencionado na tarefa "{card.content}"',
                card_id=card.id,
                due_date=card.due_date,
                time_estimate=card.estimated_time,
                from_user_id=actor_id,
            ),
        )
    return await backend.insert_notifications(rows)


async def notify_partial_completion(
    backend: BoardBackend,
    *,
    card: Card,
    actor_id: UUID,
    recipient_ids: Iterable[UUID],
) -> list[Notification]:
    profiles = await backend.fetch_profiles([actor_id])
    actor_name = next((p.full_name for p in profiles if p.full_name), None) or "Um colaborador"
    rows = [
        Notification(
            user_id=user_id,
            type="task_approval",
            title="Parte da tarefa concluída",
            message=f'{actor_name} concluiu sua parte em "{card.content}"',
            card_id=card.id,
            from_user_id=actor_id,
        )
        for user_id in recipient_ids
        if user_id != actor_id
    ]
    return await backend.insert_notifications(rows)


async def notify_task_ready(
    backend: BoardBackend,
    *,
    card: Card,
    recipient_ids: Iterable[UUID],
) -> list[Notification]:
    rows = [
        Notification(
            user_id=user_id,
            type="task_ready",
            title="Tarefa finalizada!",
            message=f'Todos concluíram a tarefa colaborativa "{card.content}"!',
            card_id=card.id,
        )
        for user_id in recipient_ids
    ]
    return await backend.insert_notifications(rows)
