"""Shared SQLModel base class with the ``objects`` query manager."""

from __future__ import annotations

from typing import ClassVar

from sqlmodel import SQLModel

from kanban_crm.db.query_manager import ManagerDescriptor


class QueryModel(SQLModel, table=False):
    """Base for table models queried through ``Model.objects``."""

    objects: ClassVar[ManagerDescriptor] = ManagerDescriptor()
