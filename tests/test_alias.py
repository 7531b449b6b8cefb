"""
Alias Tests — database registration, queriers, comments and the query log.

Tests:
- register_driver / register_database failures
- Alias options and time zone detection
- TxDB refuses work after commit or rollback
- Query comments prefix every statement
- QueryLogger output and LOG_FUNC
"""

import datetime
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from tessera import settings
from tessera.db import (
    DB,
    DriverType,
    TxDB,
    add_alias_with_db,
    add_query_comment,
    close_databases,
    get_db,
    get_db_alias,
    get_query_comments,
    register_database,
    register_driver,
    set_data_base_tz,
)
from tessera.db.alias import detect_tz
from tessera.db.backends import ExecResult, QueryResult, SQLiteAdapter
from tessera.db.comments import with_comments
from tessera.db.query_log import QueryLogger
from tessera.faults import DatabaseConnectionFault, DriverFault, TxDoneFault


class TestDrivers:
    """register_driver."""

    def test_same_type_is_noop(self):
        register_driver("sqlite3", DriverType.SQLITE)

    def test_conflicting_type(self):
        with pytest.raises(DriverFault, match="already registered and is other type"):
            register_driver("sqlite3", DriverType.MYSQL)

    def test_custom_name(self):
        register_driver("litefs", DriverType.SQLITE)
        register_driver("litefs", DriverType.SQLITE)

    @pytest.mark.asyncio
    async def test_unknown_driver(self):
        with pytest.raises(DriverFault, match="have not registered"):
            await register_database("default", "nosql", "x")


class TestRegisterDatabase:
    """register_database with SQLite."""

    @pytest.mark.asyncio
    async def test_register_and_lookup(self):
        al = await register_database("default", "sqlite3", ":memory:", max_idle_conns=5)
        try:
            assert get_db_alias("default") is al
            assert al.driver == DriverType.SQLITE
            assert al.data_source == ":memory:"
            assert al.max_idle_conns == 5
            assert al.tz == datetime.timezone.utc
            assert isinstance(get_db("default"), SQLiteAdapter)
        finally:
            await close_databases()
        with pytest.raises(DatabaseConnectionFault):
            get_db_alias("default")

    @pytest.mark.asyncio
    async def test_duplicate_alias(self):
        await register_database("default", "sqlite3", ":memory:")
        try:
            with pytest.raises(DatabaseConnectionFault, match="already registered, cannot reuse"):
                await register_database("default", "sqlite3", ":memory:")
        finally:
            await close_databases()

    @pytest.mark.asyncio
    async def test_stmt_cache_option(self):
        al = await register_database("default", "sqlite3", ":memory:", max_stmt_cache_size=8)
        try:
            assert al.stmt_cache_size == 8
            assert al.db.stmt_cache is not None
            row = await al.db.query_row("SELECT 1")
            assert row == (1,)
            assert len(al.db.stmt_cache) == 1
        finally:
            await close_databases()

    @pytest.mark.asyncio
    async def test_ping_failure(self):
        adapter = MagicMock(max_idle_conns=2, max_open_conns=0, conn_max_lifetime=0)
        adapter.ping = AsyncMock(side_effect=OSError("refused"))
        with pytest.raises(DatabaseConnectionFault, match="Register db Ping `other`"):
            await add_alias_with_db("other", "sqlite3", adapter)

    def test_set_tz_unknown_alias(self):
        with pytest.raises(DatabaseConnectionFault, match="not registered"):
            set_data_base_tz("nope", datetime.timezone.utc)


class TestDetectTz:
    """detect_tz per driver."""

    def make_alias(self, driver, driver_name, rows):
        al = MagicMock(driver=driver, driver_name=driver_name, tz=None, engine="")
        al.db.query_row = AsyncMock(side_effect=rows)
        return al

    @pytest.mark.asyncio
    async def test_mysql_offset_and_engine(self):
        al = self.make_alias(DriverType.MYSQL, "mysql", [("08:00:00",), ("InnoDB", "YES")])
        await detect_tz(al)
        assert al.tz == datetime.timezone(datetime.timedelta(hours=8))
        assert al.engine == "InnoDB"

    @pytest.mark.asyncio
    async def test_postgres_zone(self):
        al = self.make_alias(DriverType.POSTGRES, "postgres", [("UTC",)])
        await detect_tz(al)
        assert al.tz == datetime.timezone.utc


class TestTxDB:
    """TxDB lifecycle."""

    def make_tx(self):
        conn = MagicMock()
        conn.execute = AsyncMock(return_value=ExecResult(rowcount=1))
        conn.commit = AsyncMock()
        conn.rollback = AsyncMock()
        return TxDB(conn), conn

    @pytest.mark.asyncio
    async def test_commit_then_reuse(self):
        tx, conn = self.make_tx()
        await tx.execute("UPDATE t SET a = 1")
        await tx.commit()
        assert tx.done
        with pytest.raises(TxDoneFault):
            await tx.execute("UPDATE t SET a = 2")
        with pytest.raises(TxDoneFault):
            await tx.rollback()
        conn.rollback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rollback_unless_commit(self):
        tx, conn = self.make_tx()
        await tx.commit()
        await tx.rollback_unless_commit()
        conn.rollback.assert_not_awaited()

        tx, conn = self.make_tx()
        await tx.rollback_unless_commit()
        conn.rollback.assert_awaited_once()


class TestQueryComments:
    """Query comments."""

    def test_prefix(self):
        assert with_comments("SELECT 1") == "SELECT 1"
        add_query_comment("svc=api")
        add_query_comment("req=42")
        assert with_comments("SELECT 1") == "/* svc=api; req=42 */ SELECT 1"
        assert len(get_query_comments()) == 2

    @pytest.mark.asyncio
    async def test_db_sends_comments(self):
        adapter = MagicMock()
        adapter.execute = AsyncMock(return_value=ExecResult())
        add_query_comment("job")
        await DB(adapter).execute("DELETE FROM t", None)
        adapter.execute.assert_awaited_once_with("/* job */ DELETE FROM t", None)


class TestQueryLogger:
    """QueryLogger."""

    @pytest.mark.asyncio
    async def test_logs_success(self, caplog):
        caplog.set_level(logging.INFO, logger="tessera.orm")
        querier = MagicMock()
        querier.query = AsyncMock(return_value=QueryResult(columns=["a"], rows=[(1,)]))
        logged = QueryLogger(querier, "default")

        await logged.query("SELECT a FROM t WHERE b = ?", ["x"])

        line = caplog.records[-1].getMessage()
        assert line.startswith(" -[Queries/default] - [  OK /    db.Query /")
        assert line.endswith("- [SELECT a FROM t WHERE b = ?] - `x`")

    @pytest.mark.asyncio
    async def test_logs_failure_and_log_func(self, caplog):
        caplog.set_level(logging.INFO, logger="tessera.orm")
        seen = []
        settings.LOG_FUNC = seen.append
        querier = MagicMock()
        querier.execute = AsyncMock(side_effect=RuntimeError("boom"))
        logged = QueryLogger(querier, "default", in_tx=True)

        with pytest.raises(RuntimeError):
            await logged.execute("DELETE FROM t", [1])

        assert "[FAIL /     tx.Exec /" in caplog.records[-1].getMessage()
        assert caplog.records[-1].getMessage().endswith(" - boom")
        assert seen[0]["flag"] == "FAIL"
        assert seen[0]["operation"] == "tx.Exec"
        assert seen[0]["cons"] == ["1"]

    @pytest.mark.asyncio
    async def test_begin_wraps_transaction(self):
        tx = MagicMock()
        tx.commit = AsyncMock()
        querier = MagicMock()
        querier.begin = AsyncMock(return_value=tx)
        logged = await QueryLogger(querier, "default").begin()
        assert isinstance(logged, QueryLogger)
        assert logged.prefix == "tx"
        await logged.commit()
        tx.commit.assert_awaited_once()
