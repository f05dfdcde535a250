"""Structured error payload schemas used by API responses."""

from __future__ import annotations

from pydantic import Field
from sqlmodel import SQLModel


class NoticeRead(SQLModel):
    """Timed message the client shows to the acting user."""

    title: str
    description: str = ""
    variant: str = "default"
    duration_ms: int = 5000


class BoardErrorDetail(SQLModel):
    """Machine-readable reason a board operation was refused."""

    code: str = Field(
        description="Stable rejection code.",
        examples=["collaborative_approval_pending", "backward_movement_blocked"],
    )
    message: str
    notice: NoticeRead | None = None


class BoardErrorResponse(SQLModel):
    """Top-level error envelope; ``detail`` is a ``BoardErrorDetail`` for domain errors."""

    detail: str | BoardErrorDetail | dict[str, object] | list[object]
    request_id: str | None = Field(
        default=None,
        description="Request correlation identifier injected by middleware.",
    )
