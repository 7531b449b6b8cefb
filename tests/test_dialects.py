"""
Dialect Tests — SQL generation against a mocked querier.

Tests:
- Single-object read/insert/update/delete statements
- Upserts per dialect
- Batch update/delete/count/values
- Value conversion from driver values
- Column types and placeholder rewriting
"""

import datetime
import decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from tessera import Model, column
from tessera.db.backends import ExecResult, QueryResult
from tessera.db.condition import Condition
from tessera.db.dialects import (
    READ_FLAT,
    READ_LISTS,
    READ_MAPS,
    DMDialect,
    MySQLDialect,
    OracleDialect,
    PostgresDialect,
    SQLiteDialect,
    TiDBDialect,
)
from tessera.db.dialects.postgres import replace_qmarks
from tessera.db.utils import COL_ADD, col_value
from tessera.faults import (
    ArgsFault,
    FieldValueFault,
    InsertOrUpdateFault,
    LastInsertIdUnavailableFault,
    MissPKFault,
    NoRowsFault,
    QueryFault,
)
from tessera.models import (
    PositiveIntegerField,
    PositiveSmallIntegerField,
    model_cache,
    register_model,
)
from tessera.orm.queryset import QuerySet

from orm_models import Post, Tag, User

UTC = datetime.timezone.utc

USER_SELECT = (
    "SELECT `id`, `user_name`, `email`, `status`, `is_staff`, `nums`, "
    "`created`, `updated`, `profile_id` FROM `user` WHERE `id` = ? "
)


class Code(Model):
    code: str = column("pk;size(10)")
    label: str


class Counter(Model):
    id: int = column("auto")
    hits: PositiveIntegerField
    misses: PositiveSmallIntegerField


def make_querier(rows=None, columns=None, rowcount=1, lastrowid=1):
    q = MagicMock()
    q.execute = AsyncMock(return_value=ExecResult(rowcount=rowcount, lastrowid=lastrowid))
    q.query = AsyncMock(return_value=QueryResult(columns=columns or [], rows=rows or []))
    q.query_row = AsyncMock(return_value=rows[0] if rows else None)
    return q


def sql_of(mock_call):
    return mock_call.args[0]


@pytest.fixture
def user_mi(registered_models):
    return model_cache.get("user")


class TestRead:
    """BaseDialect.read."""

    @pytest.mark.asyncio
    async def test_read_by_pk(self, user_mi):
        row = (3, "slene", "s@x.io", 1, 1, 0, "2024-01-02", "2024-01-02 03:04:05", None)
        q = make_querier(rows=[row])
        user = User(id=3)
        await SQLiteDialect().read(q, user_mi, user, UTC)

        q.query_row.assert_awaited_once_with(USER_SELECT, [3])
        assert user.user_name == "slene"
        assert user.is_staff is True
        assert user.created == datetime.date(2024, 1, 2)
        assert user.updated == datetime.datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)
        assert user.profile is None

    @pytest.mark.asyncio
    async def test_read_sets_relation_stub(self, user_mi):
        row = (3, "slene", "", 1, 0, 0, None, None, 5)
        q = make_querier(rows=[row])
        user = User(id=3)
        await SQLiteDialect().read(q, user_mi, user, UTC)
        assert user.profile is not None
        assert user.profile.id == 5
        assert user.created is None

    @pytest.mark.asyncio
    async def test_read_by_columns(self, user_mi):
        q = make_querier(rows=[(1, "slene", "", 1, 0, 0, None, None, None)])
        await SQLiteDialect().read(q, user_mi, User(user_name="slene"), UTC, ["user_name"])
        assert "WHERE `user_name` = ?" in sql_of(q.query_row.await_args)
        assert q.query_row.await_args.args[1] == ["slene"]

    @pytest.mark.asyncio
    async def test_no_rows(self, user_mi):
        q = make_querier(rows=[])
        with pytest.raises(NoRowsFault):
            await SQLiteDialect().read(q, user_mi, User(id=1), UTC)

    @pytest.mark.asyncio
    async def test_missing_pk(self, registered_models):
        register_model(Code)
        mi = model_cache.get("code")
        with pytest.raises(MissPKFault):
            await SQLiteDialect().read(make_querier(), mi, Code(), UTC)

    @pytest.mark.asyncio
    async def test_for_update(self, user_mi):
        row = (1, "a", "", 1, 0, 0, None, None, None)
        q = make_querier(rows=[row])
        await MySQLDialect().read(q, user_mi, User(id=1), UTC, (), True)
        assert sql_of(q.query_row.await_args).endswith("FOR UPDATE")

        q = make_querier(rows=[row])
        await SQLiteDialect().read(q, user_mi, User(id=1), UTC, (), True)
        assert "FOR UPDATE" not in sql_of(q.query_row.await_args)


class TestInsert:
    """insert / insert_multi / insert_or_update."""

    @pytest.mark.asyncio
    async def test_insert_skips_zero_auto_and_sets_auto_now(self, user_mi):
        q = make_querier(lastrowid=11)
        user = User(user_name="slene", email="s@x.io")
        assert await SQLiteDialect().insert(q, user_mi, user, UTC) == 11

        sql, params = q.execute.await_args.args
        assert sql == (
            "INSERT INTO `user` (`user_name`, `email`, `status`, `is_staff`, `nums`, "
            "`created`, `updated`, `profile_id`) VALUES (?, ?, ?, ?, ?, ?, ?, ?)"
        )
        assert params[:5] == ["slene", "s@x.io", 0, False, 0]
        assert params[7] is None
        assert isinstance(user.created, datetime.date)
        assert isinstance(user.updated, datetime.datetime)

    @pytest.mark.asyncio
    async def test_explicit_auto_value_is_kept(self, registered_models):
        q = make_querier(lastrowid=42)
        await SQLiteDialect().insert(q, model_cache.get("tag"), Tag(id=42, name="go"), UTC)
        sql, params = q.execute.await_args.args
        assert sql == "INSERT INTO `tag` (`id`, `name`) VALUES (?, ?)"
        assert params == [42, "go"]

    @pytest.mark.asyncio
    async def test_insert_returning_on_postgres(self, registered_models):
        q = make_querier(rows=[(12,)])
        assert await PostgresDialect().insert(q, model_cache.get("tag"), Tag(name="go"), UTC) == 12
        sql = sql_of(q.query_row.await_args)
        assert sql == 'INSERT INTO "tag" ("name") VALUES ($1) RETURNING "id"'
        q.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_last_insert_id_unavailable(self, registered_models):
        q = make_querier(lastrowid=None)
        with pytest.raises(LastInsertIdUnavailableFault):
            await SQLiteDialect().insert(q, model_cache.get("tag"), Tag(name="go"), UTC)

    @pytest.mark.asyncio
    async def test_required_relation(self, registered_models):
        with pytest.raises(QueryFault, match="cannot be NULL"):
            await SQLiteDialect().insert(make_querier(), model_cache.get("post"), Post(title="t"), UTC)

    @pytest.mark.asyncio
    async def test_insert_multi_in_bulks(self, registered_models):
        q = make_querier()
        q.execute.side_effect = [ExecResult(rowcount=2), ExecResult(rowcount=1)]
        tags = [Tag(name="a"), Tag(name="b"), Tag(name="c")]
        assert await SQLiteDialect().insert_multi(q, model_cache.get("tag"), tags, 2, UTC) == 3

        first, second = q.execute.await_args_list
        assert first.args == ("INSERT INTO `tag` (`name`) VALUES (?), (?)", ["a", "b"])
        assert second.args == ("INSERT INTO `tag` (`name`) VALUES (?)", ["c"])

    @pytest.mark.asyncio
    async def test_insert_multi_numbers_postgres_marks(self, registered_models):
        q = make_querier(rowcount=3)
        tags = [Tag(name="a"), Tag(name="b"), Tag(name="c")]
        assert await PostgresDialect().insert_multi(q, model_cache.get("tag"), tags, 3, UTC) == 3

        q.execute.assert_awaited_once_with(
            'INSERT INTO "tag" ("name") VALUES ($1), ($2), ($3)', ["a", "b", "c"]
        )
        q.query_row.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_insert_multi_mixed_columns(self, registered_models):
        tags = [Tag(name="a"), Tag(id=9, name="b")]
        with pytest.raises(ArgsFault):
            await SQLiteDialect().insert_multi(make_querier(), model_cache.get("tag"), tags, 5, UTC)

    @pytest.mark.asyncio
    async def test_upsert_unsupported_on_sqlite(self, user_mi):
        al = MagicMock(driver_name="sqlite3", tz=UTC)
        with pytest.raises(InsertOrUpdateFault, match="nonsupport InsertOrUpdate"):
            await SQLiteDialect().insert_or_update(make_querier(), user_mi, User(), al)

    @pytest.mark.asyncio
    async def test_upsert_mysql(self, registered_models):
        al = MagicMock(driver_name="mysql", tz=UTC)
        q = make_querier(lastrowid=5)
        tag = Tag(name="go")
        assert await MySQLDialect().insert_or_update(q, model_cache.get("tag"), tag, al, "name=UPPER(name)") == 5
        sql, params = q.execute.await_args.args
        assert sql == "INSERT INTO `tag` (`name`) VALUES (?) ON DUPLICATE KEY UPDATE `name`=UPPER(name)"
        assert params == ["go"]

    @pytest.mark.asyncio
    async def test_upsert_postgres_needs_conflict_column(self, registered_models):
        al = MagicMock(driver_name="postgres", tz=UTC)
        with pytest.raises(InsertOrUpdateFault, match="must have a conflict column"):
            await PostgresDialect().insert_or_update(make_querier(), model_cache.get("tag"), Tag(), al)

    @pytest.mark.asyncio
    async def test_upsert_postgres(self, user_mi):
        al = MagicMock(driver_name="postgres", tz=UTC)
        q = make_querier(rows=[(7,)])
        user = User(user_name="slene")
        assert await PostgresDialect().insert_or_update(q, user_mi, user, al, "user_name", "nums=nums+1") == 7
        sql, params = q.query_row.await_args.args
        assert 'ON CONFLICT (user_name) DO UPDATE SET "user_name"=$9' in sql
        assert '"nums"=(select nums+1 from user where user_name = $' in sql
        assert sql.endswith('RETURNING "id"')
        assert params[0] == "slene"


class TestUpdateDelete:
    """update / delete by primary key."""

    @pytest.mark.asyncio
    async def test_update_columns_refreshes_auto_now(self, user_mi):
        q = make_querier()
        assert await SQLiteDialect().update(q, user_mi, User(id=3, user_name="x"), UTC, ["user_name"]) == 1
        sql, params = q.execute.await_args.args
        assert sql == "UPDATE `user` SET `user_name` = ?, `updated` = ? WHERE `id` = ?"
        assert params[0] == "x"
        assert params[2] == 3

    @pytest.mark.asyncio
    async def test_update_all_skips_auto_now_add(self, user_mi):
        q = make_querier()
        await SQLiteDialect().update(q, user_mi, User(id=3), UTC)
        sql = sql_of(q.execute.await_args)
        assert "`created`" not in sql
        assert "`id` = ?," not in sql

    @pytest.mark.asyncio
    async def test_update_missing_pk(self, registered_models):
        register_model(Code)
        with pytest.raises(MissPKFault):
            await SQLiteDialect().update(make_querier(), model_cache.get("code"), Code(), UTC)

    @pytest.mark.asyncio
    async def test_delete_cascades_through_rows(self, registered_models):
        q = make_querier()
        tag = Tag(id=4)
        assert await SQLiteDialect().delete(q, model_cache.get("tag"), tag, UTC) == 1
        assert q.execute.await_args_list[0].args == ("DELETE FROM `tag` WHERE `id` = ?", [4])
        assert tag.id == 0
        cascade = sql_of(q.query.await_args_list[0])
        assert cascade == "SELECT T0.`id` FROM `post_tags` T0 WHERE T0.`tag_id` IN (?) "

    @pytest.mark.asyncio
    async def test_delete_nothing_keeps_pk(self, registered_models):
        q = make_querier(rowcount=0)
        tag = Tag(id=4)
        assert await SQLiteDialect().delete(q, model_cache.get("tag"), tag, UTC) == 0
        assert tag.id == 4
        q.query.assert_not_awaited()


class TestBatch:
    """update_batch / delete_batch / count / read_values."""

    @pytest.mark.asyncio
    async def test_update_batch_sqlite_uses_subquery(self, user_mi):
        q = make_querier(rowcount=2)
        cond = Condition().and_("id", 3)
        n = await SQLiteDialect().update_batch(q, None, user_mi, cond, {"nums": col_value(COL_ADD, 100)}, UTC)
        assert n == 2
        sql, params = q.execute.await_args.args
        assert sql == (
            "UPDATE `user` SET `nums` = `nums` + ? WHERE `id` IN "
            "( SELECT T0.`id` FROM `user` T0 WHERE T0.`id` = ?  )"
        )
        assert params == [100, 3]

    @pytest.mark.asyncio
    async def test_update_batch_mysql_joins(self, user_mi):
        q = make_querier()
        cond = Condition().and_("profile__age__gt", 18)
        await MySQLDialect().update_batch(q, None, user_mi, cond, {"status": 2}, UTC)
        sql = sql_of(q.execute.await_args)
        assert sql == (
            "UPDATE `user` T0 LEFT OUTER JOIN `profile` T1 ON T1.`id` = T0.`profile_id` "
            "SET T0.`status` = ? WHERE T1.`age` > ? "
        )

    @pytest.mark.asyncio
    async def test_update_batch_validation(self, user_mi):
        with pytest.raises(QueryFault, match="cannot empty"):
            await SQLiteDialect().update_batch(make_querier(), None, user_mi, None, {}, UTC)
        with pytest.raises(QueryFault, match="wrong field/column name `nope`"):
            await SQLiteDialect().update_batch(make_querier(), None, user_mi, None, {"nope": 1}, UTC)

    @pytest.mark.asyncio
    async def test_delete_batch_requires_condition(self, user_mi):
        with pytest.raises(QueryFault, match="cannot execute without condition"):
            await SQLiteDialect().delete_batch(make_querier(), None, user_mi, Condition(), UTC)

    @pytest.mark.asyncio
    async def test_delete_batch_selects_then_deletes(self, registered_models):
        q = make_querier(rows=[(1,), (2,)], rowcount=2)
        mi = model_cache.get("tag")
        n = await SQLiteDialect().delete_batch(q, None, mi, Condition().and_("name", "go"), UTC)
        assert n == 2
        assert q.execute.await_args_list[0].args == ("DELETE FROM `tag` WHERE `id` IN (?, ?)", [1, 2])

    @pytest.mark.asyncio
    async def test_count_with_group_by(self, registered_models):
        mi = model_cache.get("post")
        q = make_querier(rows=[(4,)])
        qs = QuerySet(None, mi).group_by("title")
        assert await SQLiteDialect().count(q, qs, mi, None, UTC) == 4
        assert sql_of(q.query_row.await_args) == (
            "SELECT COUNT(*) FROM (SELECT COUNT(*) FROM `post` T0 GROUP BY T0.`title` ) AS T"
        )

    @pytest.mark.asyncio
    async def test_read_values_kinds(self, registered_models):
        mi = model_cache.get("tag")
        qs = QuerySet(None, mi)
        rows = [(1, "a"), (2, "b")]
        q = make_querier(rows=rows, columns=["id", "name"])
        dialect = SQLiteDialect()

        maps = await dialect.read_values(q, qs, mi, None, ["id", "name"], READ_MAPS, UTC)
        assert maps == [{"id": 1, "name": "a"}, {"id": 2, "name": "b"}]
        assert sql_of(q.query.await_args) == "SELECT T0.`id` `id`, T0.`name` `name` FROM `tag` T0 "

        lists = await dialect.read_values(q, qs, mi, None, ["id", "name"], READ_LISTS, UTC)
        assert lists == [[1, "a"], [2, "b"]]

        flat = await dialect.read_values(q, qs, mi, None, ["id", "name"], READ_FLAT, UTC)
        assert flat == [1, "a", 2, "b"]

        with pytest.raises(QueryFault, match="unsupport read values type"):
            await dialect.read_values(q, qs, mi, None, [], "tuples", UTC)


class TestConversion:
    """convert_value_from_db."""

    @pytest.fixture
    def fields(self, user_mi):
        return user_mi.fields

    def test_booleans(self, fields):
        fi = fields.get_by_name("is_staff")
        dialect = SQLiteDialect()
        assert dialect.convert_value_from_db(fi, 1, UTC) is True
        assert dialect.convert_value_from_db(fi, 0, UTC) is False
        assert dialect.convert_value_from_db(fi, "true", UTC) is True

    def test_integers(self, fields):
        fi = fields.get_by_name("nums")
        dialect = SQLiteDialect()
        assert dialect.convert_value_from_db(fi, "12", UTC) == 12
        assert dialect.convert_value_from_db(fi, 3.0, UTC) == 3
        with pytest.raises(FieldValueFault, match="convert to `big_integer` failed"):
            dialect.convert_value_from_db(fi, 3.5, UTC)

    def test_strings_and_bytes(self, fields):
        fi = fields.get_by_name("user_name")
        assert SQLiteDialect().convert_value_from_db(fi, b"slene", UTC) == "slene"

    def test_relations_use_pk_type(self, fields):
        fi = fields.get_by_name("profile")
        assert SQLiteDialect().convert_value_from_db(fi, "5", UTC) == 5

    def test_times(self, fields):
        dialect = SQLiteDialect()
        updated = fields.get_by_name("updated")
        value = dialect.convert_value_from_db(updated, "2024-05-06 07:08:09.123", UTC)
        assert value == datetime.datetime(2024, 5, 6, 7, 8, 9, tzinfo=UTC)
        created = fields.get_by_name("created")
        assert dialect.convert_value_from_db(created, "2024-05-06", UTC) == datetime.date(2024, 5, 6)
        assert dialect.convert_value_from_db(created, "0000-00-00", UTC) is None
        assert dialect.convert_value_from_db(updated, None, UTC) is None

    def test_naive_datetime_from_driver(self, fields):
        updated = fields.get_by_name("updated")
        tz = datetime.timezone(datetime.timedelta(hours=8))
        value = SQLiteDialect().convert_value_from_db(updated, datetime.datetime(2024, 1, 1, 8, 0), tz)
        assert value == datetime.datetime(2024, 1, 1, 0, 0, tzinfo=UTC)

    def test_floats_and_decimals(self, registered_models):
        fi = model_cache.get("profile").fields.get_by_name("money")
        assert SQLiteDialect().convert_value_from_db(fi, decimal.Decimal("1.5"), UTC) == 1.5


class TestColumnTypes:
    """get_column_type and placeholders."""

    def test_sqlite_types(self, user_mi):
        dialect = SQLiteDialect()
        fields = user_mi.fields
        assert dialect.get_column_type(fields.get_by_name("user_name")) == "varchar(30)"
        assert dialect.get_column_type(fields.get_by_name("nums")) == "integer"
        assert dialect.get_column_type(fields.get_by_name("is_staff")) == "bool"
        assert dialect.get_column_type(fields.get_by_name("profile")) == "integer"
        assert dialect.get_column_type(fields.get_by_name("created")) == "date"

    def test_postgres_types(self, user_mi):
        dialect = PostgresDialect()
        fields = user_mi.fields
        assert dialect.get_column_type(fields.get_by_name("nums")) == "bigint"
        assert dialect.get_column_type(fields.get_by_name("updated")) == "timestamp with time zone"

    def test_postgres_unsigned_checks(self, registered_models):
        register_model(Counter)
        fields = model_cache.get("counter").fields
        dialect = PostgresDialect()
        assert dialect.get_column_type(fields.get_by_name("hits")) == 'bigint CHECK("hits" >= 0)'
        assert dialect.get_column_type(fields.get_by_name("misses")) == 'integer CHECK("misses" >= 0)'
        assert SQLiteDialect().get_column_type(fields.get_by_name("hits")) == "integer unsigned"

    def test_replace_qmarks(self):
        assert replace_qmarks("a = ? AND b IN (?, ?)", "$") == "a = $1 AND b IN ($2, $3)"
        assert replace_qmarks("SELECT 1", "$") == "SELECT 1"
        assert PostgresDialect().replace_marks("x = ?") == "x = $1"
        assert SQLiteDialect().replace_marks("x = ?") == "x = ?"


class TestOtherDialects:
    """Oracle, DM and TiDB variants."""

    def test_oracle_marks_and_hints(self):
        d = OracleDialect()
        assert d.replace_marks("a = ? AND b = ?") == "a = :1 AND b = :2"
        assert d.generate_specify_index("T0", 2, ["idx_a"]) == ' /*+ INDEX(T0 "idx_a")*/ '
        assert d.generate_specify_index("T0", 3, ["idx_a"]) == ' /*+ NO_INDEX(T0 "idx_a")*/ '
        assert d.generate_specify_index("T0", 9, ["idx_a"]) == ""

    @pytest.mark.asyncio
    async def test_dm_merge_upsert(self, registered_models):
        mi = model_cache.get("tag")
        q = make_querier()
        await DMDialect().insert_or_update(q, mi, Tag(id=4, name="go"), MagicMock(tz=UTC))
        query = sql_of(q.execute.await_args)
        assert query.startswith('MERGE INTO "tag" T1 USING (SELECT ? id, ? name FROM dual) T2')
        assert 'WHEN NOT MATCHED THEN INSERT ("name") VALUES (T2.name)' in query
        assert query.endswith("WHEN MATCHED THEN UPDATE SET T1.name = T2.name")
        assert q.execute.await_args.args[1] == [4, "go"]

    def test_tidb_is_mysql(self):
        d = TiDBDialect()
        assert d.name == "tidb"
        assert d.table_quote() == "`"
        assert d.operators is MySQLDialect.operators
