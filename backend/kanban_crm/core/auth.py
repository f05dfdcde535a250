"""Caller identification for the shared-token auth mode.

Authorisation (row-level security) is owned by the upstream backend; this
layer only checks the shared bearer token and reads the acting user id.
"""

from __future__ import annotations

from dataclasses import dataclass
from hmac import compare_digest
from typing import Literal
from uuid import UUID

from fastapi import HTTPException, Request, status

from kanban_crm.core.config import settings
from kanban_crm.core.logging import get_logger

logger = get_logger(__name__)
USER_ID_HEADER = "X-User-Id"


@dataclass
class AuthContext:
    """Authenticated caller context resolved from inbound auth headers."""

    actor_type: Literal["user"]
    user_id: UUID


def _extract_bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    value = authorization.strip()
    if not value:
        return None
    if not value.lower().startswith("bearer "):
        return None
    token = value.split(" ", maxsplit=1)[1].strip()
    return token or None


def _parse_user_id(raw: str | None) -> UUID | None:
    if raw is None:
        return None
    try:
        return UUID(raw.strip())
    except ValueError:
        return None


async def get_auth_context(request: Request) -> AuthContext:
    """Resolve the authenticated caller or raise 401."""
    token = _extract_bearer_token(request.headers.get("Authorization"))
    expected = settings.local_auth_token.strip()
    if token is None or not expected or not compare_digest(token, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    user_id = _parse_user_id(request.headers.get(USER_ID_HEADER))
    if user_id is None:
        logger.info("auth.user_id.missing path=%s", request.url.path)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    return AuthContext(actor_type="user", user_id=user_id)
