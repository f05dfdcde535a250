"""CLI script that deletes stale cards from auto-delete columns."""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path

BACKEND_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BACKEND_ROOT))


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Delete cards older than their column's auto-delete window.",
    )
    parser.add_argument(
        "--now",
        type=datetime.fromisoformat,
        default=None,
        help="Reference time in ISO format (naive UTC); defaults to the current time",
    )
    return parser.parse_args()


async def _run() -> int:
    from kanban_crm.core.logging import configure_logging
    from kanban_crm.db.session import async_session_maker
    from kanban_crm.services.board_backend import BoardBackend
    from kanban_crm.services.cleanup import cleanup_expired_cards

    args = _parse_args()
    configure_logging()

    async with async_session_maker() as session:
        report = await cleanup_expired_cards(BoardBackend(session), now=args.now)

    sys.stdout.write(f"deleted={report.deleted} failed_columns={report.failed_columns}\n")
    for detail in report.details:
        sys.stdout.write(f"- column={detail.column_title!r} deleted={detail.count}\n")
    return 1 if report.failed_columns else 0


def main() -> None:
    """Run the async CLI workflow and exit with its return code."""
    raise SystemExit(asyncio.run(_run()))


if __name__ == "__main__":
    main()
