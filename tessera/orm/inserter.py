"""
Inserter: a prepared INSERT statement reused for many objects of one model.

    async with await o.query_table("user").prepare_insert() as ins:
        for user in users:
            await ins.insert(user)
"""

from __future__ import annotations

from typing import Any

from ..db.utils import set_field_value
from ..faults import QueryFault, StmtClosedFault
from ..models.model_info import ModelInfo
from ..models.utils import get_full_name

__all__ = ["Inserter"]


class Inserter:
    def __init__(self, orm: Any, mi: ModelInfo, stmt: Any):
        self.orm = orm
        self.mi = mi
        self.stmt = stmt
        self.closed = False

    @classmethod
    async def create(cls, orm: Any, mi: ModelInfo) -> "Inserter":
        stmt, _ = await orm.alias.dbbaser.prepare_insert(orm.db, mi)
        return cls(orm, mi, stmt)

    async def insert(self, md: Any) -> int:
        """
        Insert ``md``; a positive id is written back to an auto primary key.

        Raises:
            StmtClosedFault: the inserter was closed
            QueryFault: ``md`` is not an object of the prepared model
        """
        if self.closed:
            raise StmtClosedFault()
        name = get_full_name(type(md))
        if name != self.mi.full_name:
            raise QueryFault(
                self.mi.full_name, "insert",
                f"<Inserter.Insert> need model `{self.mi.full_name}` but found `{name}`",
            )
        id_ = await self.orm.alias.dbbaser.insert_stmt(self.stmt, self.mi, md, self.orm.alias.tz)
        pk = self.mi.fields.pk
        if id_ > 0 and pk is not None and pk.auto:
            set_field_value(md, pk, id_)
        return id_

    async def close(self) -> None:
        if self.closed:
            raise StmtClosedFault()
        self.closed = True
        await self.stmt.close()

    async def __aenter__(self) -> "Inserter":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if not self.closed:
            await self.close()
