"""
Mock Ormer Tests.

Tests:
- OrmStub answers matching calls with canned results or errors
- Unmatched calls fall through to the database
- DoNothingOrm zero values, alone and under a FilterOrmDecorator
"""

import pytest
import pytest_asyncio

from tessera.db import close_databases, get_db_alias
from tessera.faults import NoRowsFault
from tessera.orm import DoNothingOrm, DoNothingTxOrm, FilterOrmDecorator, new_orm, new_orm_using_db
from tessera.orm.mock import (
    Mock,
    OrmStub,
    SimpleCondition,
    mock_commit,
    mock_db_stats,
    mock_delete,
    mock_insert,
    mock_insert_multi,
    mock_load_related,
    mock_method,
    mock_query_m2m,
    mock_query_table,
    mock_raw,
    mock_read,
    mock_read_or_create,
    mock_table,
    mock_update,
    register_mock_db,
    start_mock,
)

from orm_models import Post, Tag, User


@pytest.fixture
def stub(sqlite_alias):
    stub = start_mock()
    yield stub
    stub.clear()


class TestOrmStub:
    """Mocks installed through start_mock()."""

    def test_start_mock_is_shared(self, stub):
        assert start_mock() is stub
        assert isinstance(new_orm(), FilterOrmDecorator)

    @pytest.mark.asyncio
    async def test_read_fills_model(self, stub):
        stub.mock(mock_read("user", lambda u: setattr(u, "user_name", "slene")))
        user = User(id=1)
        await new_orm().read(user)
        assert user.user_name == "slene"

    @pytest.mark.asyncio
    async def test_read_error(self, stub):
        stub.mock(mock_read("user", error=NoRowsFault()))
        with pytest.raises(NoRowsFault):
            await new_orm().read(User(id=1))

    @pytest.mark.asyncio
    async def test_write_results(self, stub):
        stub.mock(mock_insert("user", 12))
        stub.mock(mock_insert_multi("tag", 3))
        stub.mock(mock_update("user", 2))
        stub.mock(mock_delete("user", 5))
        o = new_orm()
        assert await o.insert(User(user_name="a")) == 12
        assert await o.insert_multi(10, [Tag(name="a"), Tag(name="b")]) == 3
        assert await o.update(User(id=1)) == 2
        assert await o.delete(User(id=1)) == 5
        assert await o.query_table("user").count() == 0

    @pytest.mark.asyncio
    async def test_read_or_create(self, stub):
        stub.mock(mock_read_or_create("user", lambda u: setattr(u, "id", 7), True, 7))
        user = User(user_name="slene")
        assert await new_orm().read_or_create(user, "user_name") == (True, 7)
        assert user.id == 7

    @pytest.mark.asyncio
    async def test_relations(self, stub):
        m2m = object()
        stub.mock(mock_query_m2m("post", "tags", m2m))
        stub.mock(mock_load_related("user", "posts", 4))
        o = new_orm()
        assert o.query_m2m(Post(id=1), "tags") is m2m
        assert await o.load_related(User(id=1), "posts") == 4

    @pytest.mark.asyncio
    async def test_query_helpers(self, stub):
        qs, rs, stats = object(), object(), {"open_connections": 9}
        stub.mock(mock_query_table("tag", qs))
        stub.mock(mock_raw(rs))
        stub.mock(mock_db_stats(stats))
        o = new_orm()
        assert o.query_table("tag") is qs
        assert o.raw("SELECT 1") is rs
        assert o.db_stats() is stats
        assert o.query_table("user") is not qs

    @pytest.mark.asyncio
    async def test_first_match_wins(self, stub):
        stub.mock(mock_table("tag", 1))
        stub.mock(mock_method("insert", 2))
        o = new_orm()
        assert await o.insert(Tag(name="go")) == 1
        assert await o.insert(User(user_name="a")) == 2

    @pytest.mark.asyncio
    async def test_commit_error(self, stub):
        stub.mock(mock_commit(RuntimeError("disk full")))
        tx = await new_orm().begin()
        await tx.insert(Tag(name="go"))
        with pytest.raises(RuntimeError, match="disk full"):
            await tx.commit()
        await tx.rollback()

    @pytest.mark.asyncio
    async def test_unmatched_calls_reach_the_database(self, stub):
        stub.mock(mock_insert("user", 12))
        o = new_orm()
        tag = Tag(name="go")
        assert await o.insert(tag) == 1
        assert await o.query_table("tag").count() == 1

    @pytest.mark.asyncio
    async def test_clear(self, stub):
        stub.mock(mock_insert("tag", 12))
        stub.clear()
        assert await new_orm().insert(Tag(name="go")) == 1


class TestConditions:
    """SimpleCondition matching."""

    @pytest.mark.asyncio
    async def test_callback_sees_invocation(self, registered_models):
        seen = []
        stub = OrmStub()
        stub.mock(Mock(SimpleCondition("tag", "update"), 1, cb=seen.append))
        o = FilterOrmDecorator(DoNothingOrm(), stub.filter_chain)
        assert await o.update(Tag(id=1), "name") == 1
        assert seen[0].args[1] == ("name",)
        assert seen[0].get_table_name() == "tag"

    def test_empty_condition_matches_everything(self):
        cond = SimpleCondition()
        assert repr(cond) == "<SimpleCondition table='' method=''>"

        class Inv:
            method = "raw"

            def get_table_name(self):
                return ""

        assert cond.match(Inv())


class TestRegisterMockDB:
    """register_mock_db."""

    @pytest.mark.asyncio
    async def test_registers_alias(self, registered_models):
        try:
            await register_mock_db("mocked")
            assert get_db_alias("mocked").driver_name == "sqlite3"
            assert new_orm_using_db("mocked").driver().name == "sqlite3"
        finally:
            await close_databases()


class TestDoNothingOrm:
    """DoNothingOrm."""

    @pytest.mark.asyncio
    async def test_zero_values(self):
        o = DoNothingOrm()
        assert await o.read(User()) is None
        assert await o.read_or_create(User(), "user_name") == (False, 0)
        assert await o.insert(User()) == 0
        assert await o.insert_multi(2, [User()]) == 0
        assert await o.update(User()) == 0
        assert await o.delete(User()) == 0
        assert await o.load_related(User(), "posts") == 0
        assert o.query_table("user") is None
        assert o.query_m2m(Post(), "tags") is None
        assert o.raw("SELECT 1") is None
        assert o.driver() is None
        assert o.db_stats() is None

    @pytest.mark.asyncio
    async def test_transactions(self):
        ran = []

        async def task(tx):
            ran.append(tx)

        o = DoNothingOrm()
        tx = await o.begin()
        assert isinstance(tx, DoNothingTxOrm)
        assert await tx.begin() is tx
        await tx.commit()
        await tx.rollback()
        await tx.rollback_unless_commit()
        assert await o.do_tx(task) is None
        assert ran == []

    @pytest.mark.asyncio
    async def test_subclass_fakes_one_method(self):
        class OneUser(DoNothingOrm):
            async def read(self, md, *cols):
                md.user_name = "slene"

        user = User(id=1)
        await OneUser().read(user)
        assert user.user_name == "slene"
        assert await OneUser().insert(user) == 0
