"""Base model class exposing the `objects` query manager."""

from __future__ import annotations

from typing import ClassVar

from sqlmodel import SQLModel

from worknest.db.query_manager import ManagerDescriptor


class QueryModel(SQLModel, table=False):
    """SQLModel base whose subclasses are queried through `Model.objects`."""

    objects: ClassVar[ManagerDescriptor] = ManagerDescriptor()
