"""
Database aliases.

An alias names one registered database: its driver type, dialect, adapter
(wrapped in a ``DB`` querier with an optional prepared-statement cache),
detected time zone and, for MySQL, default storage engine.

    await register_database("default", "sqlite3", ":memory:")
    await register_database("pg", "postgres", "postgres://u:p@localhost/app",
                            max_open_conns=20, max_stmt_cache_size=64)
"""

from __future__ import annotations

import datetime
import enum
import logging
import threading
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

from zoneinfo import ZoneInfo

from ..faults import DatabaseConnectionFault, DriverFault, TxDoneFault
from .. import settings
from .backends import (
    DatabaseAdapter,
    ExecResult,
    MySQLAdapter,
    PostgresAdapter,
    QueryResult,
    SQLiteAdapter,
    Statement,
    TransactionConnection,
)
from .dialects import (
    BaseDialect,
    DMDialect,
    MySQLDialect,
    OracleDialect,
    PostgresDialect,
    SQLiteDialect,
    TiDBDialect,
)
from .comments import with_comments
from .stmt import StmtCache

logger = logging.getLogger("tessera.db.alias")

__all__ = [
    "DriverType",
    "Alias",
    "DB",
    "TxDB",
    "register_driver",
    "register_adapter",
    "register_database",
    "add_alias_with_db",
    "add_alias_with_adapter",
    "new_alias_with_db",
    "set_data_base_tz",
    "set_max_idle_conns",
    "set_max_open_conns",
    "get_db",
    "get_db_alias",
    "detect_tz",
    "reset_alias_cache",
    "close_databases",
    "data_base_cache",
]


class DriverType(enum.IntEnum):
    MYSQL = 1
    SQLITE = 2
    ORACLE = 3
    POSTGRES = 4
    TIDB = 5
    DM = 6


_BUILTIN_DRIVERS: Dict[str, DriverType] = {
    "mysql": DriverType.MYSQL,
    "postgres": DriverType.POSTGRES,
    "sqlite3": DriverType.SQLITE,
    "tidb": DriverType.TIDB,
    "oracle": DriverType.ORACLE,
    "oci8": DriverType.ORACLE,
    "ora": DriverType.ORACLE,
    "dm": DriverType.DM,
}

drivers: Dict[str, DriverType] = dict(_BUILTIN_DRIVERS)

dialects: Dict[DriverType, BaseDialect] = {
    DriverType.MYSQL: MySQLDialect(),
    DriverType.SQLITE: SQLiteDialect(),
    DriverType.ORACLE: OracleDialect(),
    DriverType.POSTGRES: PostgresDialect(),
    DriverType.TIDB: TiDBDialect(),
    DriverType.DM: DMDialect(),
}

_BUILTIN_ADAPTERS: Dict[DriverType, Callable[[], DatabaseAdapter]] = {
    DriverType.MYSQL: MySQLAdapter,
    DriverType.TIDB: MySQLAdapter,
    DriverType.SQLITE: SQLiteAdapter,
    DriverType.POSTGRES: PostgresAdapter,
}

adapters: Dict[DriverType, Callable[[], DatabaseAdapter]] = dict(_BUILTIN_ADAPTERS)


def register_driver(driver_name: str, typ: DriverType) -> None:
    """
    Map a driver name to a database type.

    Re-registering the same name with the same type is a no-op.

    Raises:
        DriverFault: the name is already bound to another type
    """
    current = drivers.get(driver_name)
    if current is None:
        drivers[driver_name] = typ
    elif current != typ:
        raise DriverFault(
            driver_name,
            f"driverName `{driver_name}` db driver already registered and is other type",
        )


def register_adapter(typ: DriverType, factory: Callable[[], DatabaseAdapter]) -> None:
    """Use ``factory`` to build adapters for every driver of type ``typ``."""
    adapters[typ] = factory


# ── Queriers ─────────────────────────────────────────────────────────


class DB:
    """
    Non-transactional querier of an alias.

    When a statement cache is configured every ``execute``/``query`` goes
    through a cached prepared statement.
    """

    def __init__(self, adapter: DatabaseAdapter, stmt_cache_size: int = 0):
        self.adapter = adapter
        self.stmt_cache: Optional[StmtCache] = StmtCache(stmt_cache_size) if stmt_cache_size > 0 else None
        self.stmt_cache_limit = stmt_cache_size if stmt_cache_size > 0 else 0

    async def prepare(self, sql: str) -> Statement:
        return await self.adapter.prepare(with_comments(sql))

    async def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> ExecResult:
        sql = with_comments(sql)
        if self.stmt_cache is None:
            return await self.adapter.execute(sql, params)
        sd = await self.stmt_cache.get_stmt_decorator(sql, self.adapter.prepare)
        async with sd as stmt:
            return await stmt.execute(params)

    async def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> QueryResult:
        sql = with_comments(sql)
        if self.stmt_cache is None:
            return await self.adapter.query(sql, params)
        sd = await self.stmt_cache.get_stmt_decorator(sql, self.adapter.prepare)
        async with sd as stmt:
            return await stmt.query(params)

    async def query_row(self, sql: str, params: Optional[Sequence[Any]] = None) -> Optional[Tuple[Any, ...]]:
        result = await self.query(sql, params)
        return result.first()

    async def begin(self, **options) -> "TxDB":
        return TxDB(await self.adapter.begin(**options))

    def stats(self) -> Dict[str, Any]:
        return self.adapter.stats()

    async def close(self) -> None:
        if self.stmt_cache is not None:
            self.stmt_cache.purge()
        await self.adapter.disconnect()


class TxDB:
    """Querier bound to one open transaction."""

    def __init__(self, conn: TransactionConnection):
        self.conn = conn
        self._done = False

    @property
    def done(self) -> bool:
        return self._done

    def _check(self) -> None:
        if self._done:
            raise TxDoneFault()

    async def prepare(self, sql: str) -> Statement:
        self._check()
        return await self.conn.prepare(with_comments(sql))

    async def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> ExecResult:
        self._check()
        return await self.conn.execute(with_comments(sql), params)

    async def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> QueryResult:
        self._check()
        return await self.conn.query(with_comments(sql), params)

    async def query_row(self, sql: str, params: Optional[Sequence[Any]] = None) -> Optional[Tuple[Any, ...]]:
        self._check()
        return await self.conn.query_row(with_comments(sql), params)

    async def commit(self) -> None:
        self._check()
        self._done = True
        await self.conn.commit()

    async def rollback(self) -> None:
        self._check()
        self._done = True
        await self.conn.rollback()

    async def rollback_unless_commit(self) -> None:
        """Roll back unless the transaction already finished."""
        try:
            await self.rollback()
        except TxDoneFault:
            pass


# ── Aliases ──────────────────────────────────────────────────────────


class Alias:
    """A registered database."""

    def __init__(self, name: str, driver_name: str, driver: DriverType, db: DB, dbbaser: BaseDialect):
        self.name = name
        self.driver_name = driver_name
        self.driver = driver
        self.data_source = ""
        self.max_idle_conns = db.adapter.max_idle_conns
        self.max_open_conns = db.adapter.max_open_conns
        self.conn_max_lifetime = db.adapter.conn_max_lifetime
        self.stmt_cache_size = db.stmt_cache_limit
        self.db = db
        self.dbbaser = dbbaser
        self.tz: datetime.tzinfo = settings.DEFAULT_TIME_LOC
        self.engine = ""

    def set_max_idle_conns(self, n: int) -> None:
        self.max_idle_conns = n
        self.db.adapter.set_max_idle_conns(n)

    def set_max_open_conns(self, n: int) -> None:
        self.max_open_conns = n
        self.db.adapter.set_max_open_conns(n)

    def set_conn_max_lifetime(self, seconds: float) -> None:
        self.conn_max_lifetime = seconds
        self.db.adapter.set_conn_max_lifetime(seconds)

    def __repr__(self) -> str:
        return f"<Alias {self.name!r} driver={self.driver_name!r}>"


class _DbCache:
    """Alias registry guarded by a lock."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self.cache: Dict[str, Alias] = {}

    def add(self, name: str, al: Alias) -> bool:
        with self._lock:
            if name in self.cache:
                return False
            self.cache[name] = al
            return True

    def get(self, name: str) -> Optional[Alias]:
        with self._lock:
            return self.cache.get(name)

    def get_default(self) -> Optional[Alias]:
        return self.get("default")

    def all(self) -> Dict[str, Alias]:
        with self._lock:
            return dict(self.cache)

    def clean(self) -> None:
        with self._lock:
            self.cache.clear()


data_base_cache = _DbCache()


def _tz_from_offset(value: Any) -> Optional[datetime.tzinfo]:
    if isinstance(value, datetime.timedelta):
        return datetime.timezone(value)
    if not isinstance(value, str) or len(value) < 8:
        return None
    sign = -1 if value.startswith("-") else 1
    hours, minutes, _ = value.lstrip("+-").split(":", 2)
    return datetime.timezone(sign * datetime.timedelta(hours=int(hours), minutes=int(minutes)))


async def detect_tz(al: Alias) -> None:
    """Set ``al.tz`` (and ``al.engine`` for MySQL) from the database."""
    al.tz = settings.DEFAULT_TIME_LOC
    if al.driver_name == "sphinx":
        return

    if al.driver == DriverType.MYSQL:
        row = await al.db.query_row("SELECT TIMEDIFF(NOW(), UTC_TIMESTAMP)")
        if row:
            try:
                tz = _tz_from_offset(row[0])
            except ValueError as exc:
                logger.debug(f"Detect DB timezone: {row[0]} {exc}")
                tz = None
            if tz is not None:
                al.tz = tz
        row = await al.db.query_row(
            "SELECT ENGINE, TRANSACTIONS FROM information_schema.engines WHERE SUPPORT = 'DEFAULT'"
        )
        al.engine = row[0] if row and row[0] else "INNODB"
    elif al.driver in (DriverType.SQLITE, DriverType.ORACLE):
        al.tz = datetime.timezone.utc
    elif al.driver == DriverType.POSTGRES:
        row = await al.db.query_row("SELECT current_setting('TIMEZONE')")
        name = row[0] if row else ""
        try:
            al.tz = datetime.timezone.utc if name.upper() == "UTC" else ZoneInfo(name)
        except (KeyError, ValueError, TypeError) as exc:
            logger.debug(f"Detect DB timezone: {name} {exc}")


def _apply_options(adapter: DatabaseAdapter, options: Dict[str, Any]) -> int:
    if "max_idle_conns" in options:
        adapter.set_max_idle_conns(int(options["max_idle_conns"]))
    if "max_open_conns" in options:
        adapter.set_max_open_conns(int(options["max_open_conns"]))
    if "conn_max_lifetime" in options:
        adapter.set_conn_max_lifetime(float(options["conn_max_lifetime"]))
    return int(options.get("max_stmt_cache_size", 0) or 0)


async def new_alias_with_db(
    alias_name: str, driver_name: str, adapter: DatabaseAdapter, options: Dict[str, Any]
) -> Alias:
    """Build an alias around a connected adapter without registering it."""
    stmt_cache_size = _apply_options(adapter, options)
    typ = drivers.get(driver_name)
    if typ is None:
        raise DriverFault(driver_name, f"driver name `{driver_name}` have not registered")
    al = Alias(alias_name, driver_name, typ, DB(adapter, stmt_cache_size), dialects[typ])

    try:
        await adapter.ping()
    except Exception as exc:
        raise DatabaseConnectionFault(alias_name, f"Register db Ping `{alias_name}`, {exc}") from exc

    await detect_tz(al)
    return al


async def add_alias_with_db(
    alias_name: str, driver_name: str, adapter: DatabaseAdapter, **options
) -> Alias:
    """
    Register an already connected adapter under ``alias_name``.

    Raises:
        DatabaseConnectionFault: the alias is taken or the ping fails
        DriverFault: the driver name is unknown
    """
    exist = DatabaseConnectionFault(
        alias_name, f"DataBase alias name `{alias_name}` already registered, cannot reuse"
    )
    if data_base_cache.get(alias_name) is not None:
        raise exist
    al = await new_alias_with_db(alias_name, driver_name, adapter, options)
    if not data_base_cache.add(alias_name, al):
        raise exist
    return al


add_alias_with_adapter = add_alias_with_db


async def register_database(alias_name: str, driver_name: str, data_source: str, **options) -> Alias:
    """
    Open ``data_source`` with the adapter of ``driver_name`` and register it.

    Options: ``max_idle_conns``, ``max_open_conns``, ``conn_max_lifetime``
    (seconds), ``max_stmt_cache_size`` (0 disables the statement cache).
    """
    adapter: Optional[DatabaseAdapter] = None
    try:
        typ = drivers.get(driver_name)
        if typ is None:
            raise DriverFault(driver_name, f"driver name `{driver_name}` have not registered")
        factory = adapters.get(typ)
        if factory is None:
            raise DriverFault(
                driver_name,
                f"Register db `{alias_name}`, no adapter for driver type {typ.name}, "
                f"use register_adapter() to plug one in",
            )
        adapter = factory()
        _apply_options(adapter, options)
        await adapter.connect(data_source)
        al = await add_alias_with_db(alias_name, driver_name, adapter, **options)
        al.data_source = data_source
        logger.info(f"Registered database alias `{alias_name}` ({driver_name})")
        return al
    except Exception as exc:
        if adapter is not None:
            await adapter.disconnect()
        logger.debug(str(exc))
        raise


def get_db_alias(alias_name: str) -> Alias:
    al = data_base_cache.get(alias_name)
    if al is None:
        raise DatabaseConnectionFault(alias_name, f"unknown DataBase alias name {alias_name}")
    return al


def set_data_base_tz(alias_name: str, tz: datetime.tzinfo) -> None:
    al = data_base_cache.get(alias_name)
    if al is None:
        raise DatabaseConnectionFault(alias_name, f"DataBase alias name `{alias_name}` not registered")
    al.tz = tz


def set_max_idle_conns(alias_name: str, n: int) -> None:
    get_db_alias(alias_name).set_max_idle_conns(n)


def set_max_open_conns(alias_name: str, n: int) -> None:
    get_db_alias(alias_name).set_max_open_conns(n)


def get_db(alias_name: str = "default") -> DatabaseAdapter:
    """The adapter behind ``alias_name``."""
    al = data_base_cache.get(alias_name)
    if al is None:
        raise DatabaseConnectionFault(alias_name, f"DataBase of alias name `{alias_name}` not found")
    return al.db.adapter


async def close_databases() -> None:
    """Disconnect and forget every alias."""
    for al in data_base_cache.all().values():
        await al.db.close()
    data_base_cache.clean()


def reset_alias_cache() -> None:
    """Forget every alias and custom driver/adapter (testing)."""
    data_base_cache.clean()
    drivers.clear()
    drivers.update(_BUILTIN_DRIVERS)
    adapters.clear()
    adapters.update(_BUILTIN_ADAPTERS)
