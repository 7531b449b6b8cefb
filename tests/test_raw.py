"""
RawSet Tests — hand-written SQL on in-memory SQLite.

Tests:
- query_row / query_rows into tuples and models
- values / values_list / values_flat / row_to_map
- exec, prepare and set_args
"""

import datetime

import pytest
import pytest_asyncio

from tessera.faults import NoRowsFault, QueryFault, StmtClosedFault

from orm_models import Setting, Tag, User


@pytest_asyncio.fixture
async def settings_table(orm):
    for name, value in (("theme", "dark"), ("lang", "en")):
        await orm.insert(Setting(name=name, value=value))
    return orm


class TestRawRows:
    """Reading rows."""

    @pytest.mark.asyncio
    async def test_query_row_tuple(self, settings_table):
        row = await settings_table.raw("SELECT name, value FROM setting WHERE id = ?", 1).query_row()
        assert tuple(row) == ("theme", "dark")

    @pytest.mark.asyncio
    async def test_query_row_into_class_and_instance(self, orm):
        await orm.insert(User(user_name="slene", nums=4))
        r = orm.raw("SELECT id, user_name, nums, updated FROM user WHERE user_name = ?", "slene")

        user = await r.query_row(User)
        assert isinstance(user, User)
        assert (user.id, user.user_name, user.nums) == (1, "slene", 4)
        assert isinstance(user.updated, datetime.datetime)

        target = User()
        assert await r.query_row(target) is target
        assert target.user_name == "slene"

    @pytest.mark.asyncio
    async def test_query_row_missing(self, orm):
        with pytest.raises(NoRowsFault):
            await orm.raw("SELECT id FROM tag WHERE id = ?", 9).query_row()

    @pytest.mark.asyncio
    async def test_unsupported_container(self, settings_table):
        with pytest.raises(QueryFault, match="unsupported container"):
            await settings_table.raw("SELECT id FROM setting").query_row(dict)

    @pytest.mark.asyncio
    async def test_query_rows(self, settings_table):
        rows = await settings_table.raw("SELECT id, name FROM setting ORDER BY id").query_rows(Setting)
        assert [s.name for s in rows] == ["theme", "lang"]
        assert rows[0].value == ""

        plain = await settings_table.raw("SELECT name FROM setting ORDER BY id").query_rows()
        assert [r[0] for r in plain] == ["theme", "lang"]

    @pytest.mark.asyncio
    async def test_list_arguments_expand(self, settings_table):
        rows = await settings_table.raw(
            "SELECT name FROM setting WHERE id IN (?, ?) ORDER BY id", [1, 2]
        ).values_flat()
        assert rows == ["theme", "lang"]

    @pytest.mark.asyncio
    async def test_model_argument_becomes_pk(self, orm):
        tag = Tag(name="go")
        await orm.insert(tag)
        assert await orm.raw("SELECT name FROM tag WHERE id = ?", tag).values_flat() == ["go"]


class TestRawValues:
    """Column access helpers."""

    @pytest.mark.asyncio
    async def test_values(self, settings_table):
        r = settings_table.raw("SELECT id, name, value FROM setting ORDER BY id")
        assert await r.values("name") == [{"name": "theme"}, {"name": "lang"}]
        assert (await r.values())[1] == {"id": 2, "name": "lang", "value": "en"}

    @pytest.mark.asyncio
    async def test_values_list_and_flat(self, settings_table):
        r = settings_table.raw("SELECT id, name FROM setting ORDER BY id")
        assert await r.values_list() == [[1, "theme"], [2, "lang"]]
        assert await r.values_list("name") == [["theme"], ["lang"]]
        assert await r.values_flat("name") == ["theme", "lang"]
        assert await r.values_flat() == [1, 2]

    @pytest.mark.asyncio
    async def test_row_to_map(self, settings_table):
        options = await settings_table.raw("SELECT name, value FROM setting").row_to_map("name", "value")
        assert options == {"theme": "dark", "lang": "en"}

    @pytest.mark.asyncio
    async def test_unknown_column(self, settings_table):
        with pytest.raises(QueryFault, match="unknown column `nope`"):
            await settings_table.raw("SELECT id FROM setting").values("nope")


class TestRawExec:
    """Statements that change data."""

    @pytest.mark.asyncio
    async def test_exec(self, settings_table):
        res = await settings_table.raw("UPDATE setting SET value = ? WHERE name = ?", "light", "theme").exec()
        assert res.rows_affected() == 1
        assert await settings_table.raw("SELECT value FROM setting WHERE id = 1").values_flat() == ["light"]

    @pytest.mark.asyncio
    async def test_set_args(self, settings_table):
        r = settings_table.raw("SELECT value FROM setting WHERE name = ?", "theme")
        other = r.set_args("lang")
        assert other is not r
        assert await r.values_flat() == ["dark"]
        assert await other.values_flat() == ["en"]

    @pytest.mark.asyncio
    async def test_prepare(self, orm):
        pre = await orm.raw("INSERT INTO tag (name) VALUES (?)").prepare()
        for name in ("a", "b", "c"):
            res = await pre.exec(name)
            assert res.rows_affected() == 1
        await pre.close()
        with pytest.raises(StmtClosedFault):
            await pre.exec("d")
        with pytest.raises(StmtClosedFault):
            await pre.close()
        assert await orm.query_table("tag").count() == 3
