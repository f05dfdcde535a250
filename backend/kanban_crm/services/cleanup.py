"""Auto-delete of stale cards from columns that opt into it."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from kanban_crm.core.config import settings
from kanban_crm.core.logging import get_logger
from kanban_crm.core.time import utcnow
from kanban_crm.services.boards import rewrite_card_positions

if TYPE_CHECKING:
    from datetime import datetime

    from kanban_crm.services.board_backend import BoardBackend

logger = get_logger(__name__)


@dataclass(frozen=True)
class ColumnCleanup:
    column_title: str
    count: int


@dataclass
class CleanupReport:
    deleted: int = 0
    details: list[ColumnCleanup] = field(default_factory=list)
    failed_columns: int = 0


async def cleanup_expired_cards(
    backend: BoardBackend,
    *,
    now: datetime | None = None,
) -> CleanupReport:
    """Delete cards older than their column's ``auto_delete_hours``.

    Surviving cards of a cleaned column are renumbered densely.

    A failing column is logged and skipped so the remaining columns are still
    processed.
    """
    now = now or utcnow()
    report = CleanupReport()
    columns = await backend.list_auto_delete_columns()
    logger.info("kanban.cleanup.started", extra={"columns": len(columns)})

    for column in columns:
        hours = column.auto_delete_hours or settings.auto_delete_default_hours
        threshold = now - timedelta(hours=hours)
        try:
            stale = await backend.list_cards_created_before(column.id, threshold)
            if not stale:
                continue
            deleted = await backend.delete_cards([card.id for card in stale])
            await rewrite_card_positions(backend, await backend.list_cards([column.id]))
        except SQLAlchemyError:
            logger.exception(
                "kanban.cleanup.column_failed",
                extra={"column_id": str(column.id)},
            )
            await backend.session.rollback()
            report.failed_columns += 1
            continue
        report.deleted += deleted
        report.details.append(ColumnCleanup(column_title=column.title, count=deleted))
        logger.info(
            "kanban.cleanup.column_done",
            extra={"column_id": str(column.id), "deleted": deleted, "hours": hours},
        )

    logger.info(
        "kanban.cleanup.finished",
        extra={"deleted": report.deleted, "failed_columns": report.failed_columns},
    )
    return report
