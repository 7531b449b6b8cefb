"""
QueryM2M: manage the through rows of one object's many-to-many field.

    m2m = o.query_m2m(post, "tags")
    await m2m.add(tag1, [tag2, tag3])
    await m2m.remove(tag2)
    assert await m2m.exist(tag1)
"""

from __future__ import annotations

from typing import Any, List

from ..db.condition import EXPR_SEP
from ..db.utils import get_exist_pk
from ..faults import MissPKFault, QueryFault
from ..models.field_info import FieldInfo
from ..models.model_info import ModelInfo
from .queryset import QuerySet

__all__ = ["QueryM2M"]


class QueryM2M:
    """
    Through-table operations for the m2m field ``fi`` of ``md``.

    ``qs`` is a QuerySet over the through table.
    """

    def __init__(self, orm: Any, mi: ModelInfo, fi: FieldInfo, md: Any, qs: QuerySet):
        self.orm = orm
        self.mi = mi
        self.fi = fi
        self.md = md
        self.qs = qs

    def _own(self) -> QuerySet:
        return self.qs.filter(self.fi.reverse_field_info.name, self.md)

    async def add(self, *mds: Any, **others: Any) -> int:
        """
        Insert through rows linking ``md`` to each of ``mds``.

        ``mds`` holds related objects, lists of them or raw primary key
        values. Keyword arguments set extra columns of a custom through
        model on every inserted row.

        Raises:
            MissPKFault: ``md`` or a related object has no primary key
            QueryFault: a keyword does not name a column of the through table
        """
        fi = self.fi
        mi = fi.rel_through_model_info
        mfi = fi.reverse_field_info
        rfi = fi.reverse_field_info_two

        other_names: List[str] = []
        other_values: List[Any] = []
        for key, value in others.items():
            ofi = mi.fields.get_by_any(key)
            if ofi is None or not ofi.db_col or ofi in (mfi, rfi, mi.fields.pk):
                raise QueryFault(
                    mi.full_name, "m2m.add", f"wrong field/column name `{key}` for through model"
                )
            other_names.append(ofi.column)
            other_values.append(value)

        models: List[Any] = []
        for md in mds:
            if isinstance(md, (list, tuple)):
                models.extend(md)
            else:
                models.append(md)
        if not models:
            return 0

        _, v1, exist = get_exist_pk(self.mi, self.md)
        if not exist:
            raise MissPKFault()

        names = [mfi.column, rfi.column] + other_names
        values: List[Any] = []
        for md in models:
            if isinstance(md, (int, str)) and not isinstance(md, bool):
                v2 = md
            else:
                _, v2, exist = get_exist_pk(fi.rel_model_info, md)
                if not exist:
                    raise MissPKFault()
            values.extend([v1, v2])
            values.extend(other_values)
        return await self.orm.alias.dbbaser.insert_value(self.orm.db, mi, True, names, values)

    async def remove(self, *mds: Any) -> int:
        """Delete the through rows linking ``md`` to ``mds``."""
        models: List[Any] = []
        for md in mds:
            if isinstance(md, (list, tuple)):
                models.extend(md)
            else:
                models.append(md)
        qs = self._own().filter(f"{self.fi.reverse_field_info_two.name}{EXPR_SEP}in", models)
        return await qs.delete()

    async def exist(self, md: Any) -> bool:
        return await self._own().filter(self.fi.reverse_field_info_two.name, md).exist()

    async def clear(self) -> int:
        """Delete every through row of ``md``."""
        return await self._own().delete()

    async def count(self) -> int:
        return await self._own().count()
