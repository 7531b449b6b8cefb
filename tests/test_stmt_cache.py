"""
Statement Cache Tests.

Tests:
- LRU eviction and promotion
- Reference counting keeps borrowed statements open
- DB queriers route through the cache when it is enabled
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from tessera.db import DB
from tessera.db.backends import ExecResult, QueryResult, Statement
from tessera.db.stmt import StmtCache, StmtDecorator
from tessera.faults import StmtClosedFault


def make_executor():
    executor = MagicMock()
    executor.execute = AsyncMock(return_value=ExecResult(rowcount=1, lastrowid=1))
    executor.query = AsyncMock(return_value=QueryResult(columns=["x"], rows=[(1,)]))
    return executor


def make_prepare(executor):
    async def prepare(sql):
        return Statement(executor, sql)

    return AsyncMock(side_effect=prepare)


class TestStmtCache:
    """StmtCache."""

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            StmtCache(0)

    @pytest.mark.asyncio
    async def test_hit_reuses_statement(self):
        cache = StmtCache(2)
        prepare = make_prepare(make_executor())
        first = await cache.get_stmt_decorator("SELECT 1", prepare)
        first.release()
        second = await cache.get_stmt_decorator("SELECT 1", prepare)
        second.release()
        assert first is second
        assert prepare.await_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_misses_prepare_once(self):
        cache = StmtCache(2)
        executor = make_executor()

        async def slow_prepare(sql):
            await asyncio.sleep(0.01)
            return Statement(executor, sql)

        prepare = AsyncMock(side_effect=slow_prepare)
        borrowed = await asyncio.gather(
            *(cache.get_stmt_decorator("SELECT 1", prepare) for _ in range(5))
        )
        assert prepare.await_count == 1
        assert all(sd is borrowed[0] for sd in borrowed)
        assert borrowed[0].refs == 5
        for sd in borrowed:
            sd.release()
        assert borrowed[0].refs == 0
        assert len(cache) == 1

    @pytest.mark.asyncio
    async def test_lru_eviction(self):
        cache = StmtCache(2)
        prepare = make_prepare(make_executor())
        for sql in ("A", "B"):
            (await cache.get_stmt_decorator(sql, prepare)).release()
        # Promote A so B is the least recently used
        (await cache.get_stmt_decorator("A", prepare)).release()
        evicted = cache.peek("B")
        (await cache.get_stmt_decorator("C", prepare)).release()

        assert cache.keys() == ["A", "C"]
        assert evicted.destroyed
        await evicted.wait_closed()
        assert evicted.get_stmt().closed

    @pytest.mark.asyncio
    async def test_borrowed_statement_closes_after_release(self):
        cache = StmtCache(1)
        prepare = make_prepare(make_executor())
        held = await cache.get_stmt_decorator("A", prepare)
        (await cache.get_stmt_decorator("B", prepare)).release()

        assert held.destroyed
        assert not held.get_stmt().closed
        held.release()
        await held.wait_closed()
        assert held.get_stmt().closed

    @pytest.mark.asyncio
    async def test_purge(self):
        cache = StmtCache(3)
        prepare = make_prepare(make_executor())
        for sql in ("A", "B"):
            (await cache.get_stmt_decorator(sql, prepare)).release()
        decorators = [cache.peek("A"), cache.peek("B")]
        cache.purge()
        assert len(cache) == 0
        for sd in decorators:
            await sd.wait_closed()
            assert sd.get_stmt().closed

    @pytest.mark.asyncio
    async def test_closed_statement_rejects_calls(self):
        stmt = Statement(make_executor(), "SELECT 1")
        await stmt.close()
        with pytest.raises(StmtClosedFault):
            await stmt.execute()

    def test_destroy_without_loop(self):
        sd = StmtDecorator(Statement(make_executor(), "SELECT 1"))
        sd.destroy()
        assert sd.destroyed
        assert sd.get_stmt().closed


class TestCachedDB:
    """DB with max_stmt_cache_size."""

    @pytest.mark.asyncio
    async def test_queries_go_through_prepared_statements(self):
        adapter = make_executor()
        adapter.prepare = make_prepare(adapter)
        db = DB(adapter, stmt_cache_size=4)

        await db.execute("UPDATE t SET a = ?", [1])
        await db.execute("UPDATE t SET a = ?", [2])
        row = await db.query_row("SELECT x FROM t")

        assert row == (1,)
        assert adapter.prepare.await_count == 2
        assert len(db.stmt_cache) == 2
        assert db.stmt_cache.peek("UPDATE t SET a = ?").refs == 0

    @pytest.mark.asyncio
    async def test_without_cache(self):
        adapter = make_executor()
        db = DB(adapter)
        assert db.stmt_cache is None
        await db.execute("DELETE FROM t", None)
        adapter.execute.assert_awaited_once_with("DELETE FROM t", None)
