"""
Debug query log.

When ``settings.DEBUG`` is on, every Ormer wraps its querier in a
``QueryLogger`` that times each statement and writes one line per call to
``settings.DEBUG_LOG``::

     -[Queries/default] - [  OK /     db.Exec /     0.3ms] - [INSERT INTO ...] - `1`, `a`

``settings.LOG_FUNC``, when set, also receives the same data as a dict.
"""

from __future__ import annotations

import time
from typing import Any, Dict, Optional, Sequence, Tuple

from .. import settings
from ..faults import TxDoneFault

__all__ = ["QueryLogger", "LoggedStatement", "debug_log_queries"]


def debug_log_queries(
    alias_name: str,
    operation: str,
    query: str,
    started: float,
    err: Optional[BaseException],
    args: Sequence[Any] = (),
) -> None:
    """Emit one query log line (and call ``settings.LOG_FUNC``)."""
    elapsed = int((time.perf_counter() - started) * 10000) / 10.0
    flag = "FAIL" if err is not None else "  OK"
    con = f" -[Queries/{alias_name}] - [{flag} / {operation:>11} / {elapsed:7.1f}ms] - [{query}]"
    cons = [str(arg) for arg in args]
    if cons:
        con += " - `" + "`, `".join(cons) + "`"
    if err is not None:
        con += f" - {err}"
    if settings.LOG_FUNC is not None:
        data: Dict[str, Any] = {
            "cost_time": elapsed,
            "flag": flag,
            "alias_name": alias_name,
            "operation": operation,
            "query": query,
            "cons": cons,
            "err": err,
            "sql": f"{query}-`" + "`, `".join(cons) + "`",
        }
        settings.LOG_FUNC(data)
    settings.DEBUG_LOG.info(con)


class LoggedStatement:
    """Prepared statement whose calls are logged as ``st.*`` operations."""

    def __init__(self, stmt: Any, alias_name: str):
        self.stmt = stmt
        self.alias_name = alias_name

    @property
    def sql(self) -> str:
        return self.stmt.sql

    @property
    def closed(self) -> bool:
        return self.stmt.closed

    async def _call(self, operation: str, method: str, params: Optional[Sequence[Any]]) -> Any:
        started = time.perf_counter()
        try:
            result = await getattr(self.stmt, method)(params)
        except Exception as exc:
            debug_log_queries(self.alias_name, operation, self.stmt.sql, started, exc, params or ())
            raise
        debug_log_queries(self.alias_name, operation, self.stmt.sql, started, None, params or ())
        return result

    async def execute(self, params: Optional[Sequence[Any]] = None) -> Any:
        return await self._call("st.Exec", "execute", params)

    async def query(self, params: Optional[Sequence[Any]] = None) -> Any:
        return await self._call("st.Query", "query", params)

    async def query_row(self, params: Optional[Sequence[Any]] = None) -> Any:
        return await self._call("st.QueryRow", "query_row", params)

    async def close(self) -> None:
        started = time.perf_counter()
        await self.stmt.close()
        debug_log_queries(self.alias_name, "st.Close", self.stmt.sql, started, None)


class QueryLogger:
    """
    Logging decorator around a ``DB`` or ``TxDB`` querier.

    Operations are reported as ``db.*`` for plain queriers and ``tx.*``
    inside a transaction.
    """

    def __init__(self, querier: Any, alias_name: str, in_tx: bool = False):
        self.querier = querier
        self.alias_name = alias_name
        self.prefix = "tx" if in_tx else "db"

    def __getattr__(self, name: str) -> Any:
        return getattr(self.querier, name)

    def _log(self, operation: str, query: str, started: float, err: Optional[BaseException], args=()) -> None:
        debug_log_queries(self.alias_name, f"{self.prefix}.{operation}", query, started, err, args)

    async def prepare(self, sql: str) -> LoggedStatement:
        started = time.perf_counter()
        try:
            stmt = await self.querier.prepare(sql)
        except Exception as exc:
            self._log("Prepare", sql, started, exc)
            raise
        self._log("Prepare", sql, started, None)
        return LoggedStatement(stmt, self.alias_name)

    async def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> Any:
        started = time.perf_counter()
        try:
            result = await self.querier.execute(sql, params)
        except Exception as exc:
            self._log("Exec", sql, started, exc, params or ())
            raise
        self._log("Exec", sql, started, None, params or ())
        return result

    async def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> Any:
        started = time.perf_counter()
        try:
            result = await self.querier.query(sql, params)
        except Exception as exc:
            self._log("Query", sql, started, exc, params or ())
            raise
        self._log("Query", sql, started, None, params or ())
        return result

    async def query_row(self, sql: str, params: Optional[Sequence[Any]] = None) -> Optional[Tuple[Any, ...]]:
        started = time.perf_counter()
        try:
            row = await self.querier.query_row(sql, params)
        except Exception as exc:
            self._log("QueryRow", sql, started, exc, params or ())
            raise
        self._log("QueryRow", sql, started, None, params or ())
        return row

    async def begin(self, **options) -> "QueryLogger":
        started = time.perf_counter()
        try:
            tx = await self.querier.begin(**options)
        except Exception as exc:
            self._log("Begin", "START TRANSACTION", started, exc)
            raise
        self._log("Begin", "START TRANSACTION", started, None)
        return QueryLogger(tx, self.alias_name, in_tx=True)

    async def commit(self) -> None:
        started = time.perf_counter()
        try:
            await self.querier.commit()
        except Exception as exc:
            self._log("Commit", "COMMIT", started, exc)
            raise
        self._log("Commit", "COMMIT", started, None)

    async def rollback(self) -> None:
        started = time.perf_counter()
        try:
            await self.querier.rollback()
        except Exception as exc:
            self._log("Rollback", "ROLLBACK", started, exc)
            raise
        self._log("Rollback", "ROLLBACK", started, None)

    async def rollback_unless_commit(self) -> None:
        try:
            await self.rollback()
        except TxDoneFault:
            pass
