"""User-facing notices surfaced by board operations."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import asdict, dataclass
from typing import Any, Literal

from fastapi import HTTPException

NoticeVariant = Literal["default", "destructive"]

DEFAULT_NOTICE_DURATION_MS = 5000


@dataclass(frozen=True)
class Notice:
    """Timed toast-style message shown to the acting user."""

    title: str
    description: str = ""
    variant: NoticeVariant = "default"
    duration_ms: int = DEFAULT_NOTICE_DURATION_MS

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def approval_pending_notice(
    *,
    completed: int,
    total: int,
    pending_names: Sequence[str],
) -> Notice:
    names = ", ".join(pending_names)
    return Notice(
        title="Tarefa colaborativa pendente",
        description=(
            f"Aguardando confirmação de {names} ({completed}/{total} confirmaram) "
            "antes de mover esta tarefa."
        ),
        variant="destructive",
        duration_ms=7000,
    )


def backward_movement_notice(*, column_title: str) -> Notice:
    return Notice(
        title="Movimento bloqueado",
        description=f'A coluna "{column_title}" não permite mover tarefas para etapas anteriores.',
        variant="destructive",
    )


def timer_started_notice(*, column_title: str) -> Notice:
    return Notice(
        title="Timer iniciado",
        description=f'O timer da tarefa começou ao entrar em "{column_title}".',
    )


def card_moved_notice(*, column_title: str) -> Notice:
    return Notice(
        title="Concluído e movido!",
        description=f'Sua parte foi confirmada e a tarefa foi movida para "{column_title}".',
    )


def load_failed_notice() -> Notice:
    return Notice(
        title="Erro ao verificar tarefa",
        description="Não foi possível verificar o status da tarefa. O quadro foi recarregado.",
        variant="destructive",
    )


def save_failed_notice() -> Notice:
    return Notice(
        title="Erro ao mover tarefa",
        description="Não foi possível salvar a alteração. Tente novamente.",
        variant="destructive",
    )


def rejection(
    status_code: int,
    *,
    code: str,
    message: str,
    notice: Notice | None = None,
) -> HTTPException:
    """Build the ``HTTPException`` raised for a refused board operation."""
    return HTTPException(
        status_code=status_code,
        detail={
            "code": code,
            "message": message,
            "notice": notice.as_dict() if notice is not None else None,
        },
    )
