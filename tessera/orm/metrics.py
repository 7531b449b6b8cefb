"""
Prometheus filter chain.

Observes the duration of every Ormer call in a ``prometheus_client``
Summary labelled by method, table, transaction flag and transaction name.
``begin`` is not observed; ``commit`` and ``rollback`` observe the whole
transaction, measured from its start.

    builder = PrometheusFilterChainBuilder(app_name="shop", run_mode="prod")
    add_global_filter_chain(builder.filter_chain)

Query builders are only observed for their creation: ``query_table`` is
recorded, the QuerySet calls that follow are not.
"""

from __future__ import annotations

import inspect
import logging
import threading
import time
import weakref
from typing import Any, Awaitable, Optional

from .filters import Filter, Invocation

try:
    from prometheus_client import REGISTRY, Summary
    _HAS_PROMETHEUS = True
except ImportError:
    REGISTRY = None  # type: ignore
    Summary = None  # type: ignore
    _HAS_PROMETHEUS = False

logger = logging.getLogger("tessera.orm.metrics")

__all__ = ["PrometheusFilterChainBuilder", "METRIC_NAME"]

METRIC_NAME = "tessera_orm_operation_seconds"

LABELS = ("method", "name", "in_tx", "tx_name", "server", "env", "appname")

# One Summary per registry
_summaries: "weakref.WeakKeyDictionary[Any, Any]" = weakref.WeakKeyDictionary()
_summaries_lock = threading.Lock()


def _summary_for(registry: Any) -> Any:
    with _summaries_lock:
        summary = _summaries.get(registry)
        if summary is None:
            summary = Summary(
                METRIC_NAME,
                "Duration of ORM operations in seconds",
                LABELS,
                registry=registry,
            )
            _summaries[registry] = summary
            logger.debug(f"registered summary `{METRIC_NAME}`")
        return summary


class PrometheusFilterChainBuilder:
    """
    Builds a filter reporting call durations to Prometheus.

    ``server_name``, ``run_mode`` and ``app_name`` are attached to every
    sample. ``registry`` defaults to the process-wide ``REGISTRY``.
    """

    def __init__(
        self,
        app_name: str = "",
        server_name: str = "",
        run_mode: str = "",
        registry: Optional[Any] = None,
    ):
        if not _HAS_PROMETHEUS:
            raise ImportError(
                "prometheus_client is required for the Prometheus filter.\n"
                "Install: pip install tessera-orm[prometheus]"
            )
        self.app_name = app_name
        self.server_name = server_name
        self.run_mode = run_mode
        self.summary = _summary_for(registry if registry is not None else REGISTRY)

    def filter_chain(self, next_filter: Filter) -> Filter:
        def prometheus_filter(inv: Invocation) -> Any:
            start = time.perf_counter()
            res = next_filter(inv)
            if inspect.isawaitable(res):
                return self._observe_when_done(inv, start, res)
            self.report(inv, time.perf_counter() - start)
            return res

        return prometheus_filter

    __call__ = filter_chain

    async def _observe_when_done(self, inv: Invocation, start: float, res: Awaitable[Any]) -> Any:
        try:
            return await res
        finally:
            self.report(inv, time.perf_counter() - start)

    def report(self, inv: Invocation, duration: float) -> None:
        if inv.method.startswith("begin"):
            return
        if inv.method in ("commit", "rollback", "rollback_unless_commit"):
            self.report_tx(inv)
            return
        self._observe(inv.method, inv.get_table_name(), inv, duration)

    def report_tx(self, inv: Invocation) -> None:
        if inv.tx_start_time is None:
            return
        self._observe(inv.method, inv.tx_name, inv, time.time() - inv.tx_start_time)

    def _observe(self, method: str, name: str, inv: Invocation, duration: float) -> None:
        self.summary.labels(
            method,
            name,
            "true" if inv.in_tx else "false",
            inv.tx_name,
            self.server_name,
            self.run_mode,
            self.app_name,
        ).observe(duration)
