"""In-process realtime change feed with explicit subscription handles.

Writers publish row-level ``ChangeEvent`` values after a commit; views
subscribe per table (optionally narrowed by a row filter) and own the returned
``Subscription`` handles. A view tears its handles down by closing its
``ViewSubscriptions`` group, so nothing is looked up by channel name.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable, Collection
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal
from uuid import uuid4

from kanban_crm.core.logging import get_logger
from kanban_crm.core.time import utcnow

logger = get_logger(__name__)

ChangeType = Literal["INSERT", "UPDATE", "DELETE"]
ChangeHandler = Callable[["ChangeEvent"], Awaitable[None] | None]


@dataclass(frozen=True)
class ChangeEvent:
    """Row-level change published for one table."""

    table: str
    event_type: ChangeType
    new: dict[str, Any] = field(default_factory=dict)
    old: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utcnow)

    @property
    def row(self) -> dict[str, Any]:
        """Row the event describes: the new image, or the old one for deletes."""
        return self.old if self.event_type == "DELETE" else self.new


@dataclass(eq=False)
class Subscription:
    """Handle for one registered handler; close it to stop delivery."""

    hub: RealtimeHub
    table: str
    handler: ChangeHandler
    event_types: frozenset[str] | None = None
    row_filter: tuple[str, object] | None = None
    key: str = field(default_factory=lambda: uuid4().hex)
    closed: bool = False

    def matches(self, event: ChangeEvent) -> bool:
        if self.closed or event.table != self.table:
            return False
        if self.event_types is not None and event.event_type not in self.event_types:
            return False
        if self.row_filter is not None:
            column, value = self.row_filter
            return str(event.row.get(column)) == str(value)
        return True

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.hub._remove(self)


class RealtimeHub:
    """Fan-out of change events to matching subscriptions, in subscription order."""

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []

    @property
    def active_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(
        self,
        table: str,
        handler: ChangeHandler,
        *,
        event_types: Collection[ChangeType] | None = None,
        row_filter: tuple[str, object] | None = None,
    ) -> Subscription:
        subscription = Subscription(
            hub=self,
            table=table,
            handler=handler,
            event_types=frozenset(event_types) if event_types is not None else None,
            row_filter=row_filter,
        )
        self._subscriptions.append(subscription)
        logger.debug(
            "realtime.subscribed",
            extra={"table": table, "subscription": subscription.key},
        )
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        self._subscriptions = [s for s in self._subscriptions if s is not subscription]
        logger.debug(
            "realtime.unsubscribed",
            extra={"table": subscription.table, "subscription": subscription.key},
        )

    async def publish(self, event: ChangeEvent) -> int:
        """Deliver *event*; returns how many handlers received it."""
        delivered = 0
        # Snapshot so handlers may open or close subscriptions while we iterate.
        for subscription in list(self._subscriptions):
            if not subscription.matches(event):
                continue
            try:
                result = subscription.handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(
                    "realtime.handler.failed",
                    extra={
                        "table": event.table,
                        "event_type": event.event_type,
                        "subscription": subscription.key,
                    },
                )
                continue
            delivered += 1
        return delivered


class ViewSubscriptions:
    """Subscriptions owned by one view, torn down together."""

    def __init__(self, hub: RealtimeHub) -> None:
        self.hub = hub
        self._handles: list[Subscription] = []

    def subscribe(
        self,
        table: str,
        handler: ChangeHandler,
        *,
        event_types: Collection[ChangeType] | None = None,
        row_filter: tuple[str, object] | None = None,
    ) -> Subscription:
        handle = self.hub.subscribe(
            table,
            handler,
            event_types=event_types,
            row_filter=row_filter,
        )
        self._handles.append(handle)
        return handle

    @property
    def handles(self) -> tuple[Subscription, ...]:
        return tuple(self._handles)

    def close(self) -> None:
        for handle in self._handles:
            handle.close()
        self._handles.clear()

    def __enter__(self) -> ViewSubscriptions:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
