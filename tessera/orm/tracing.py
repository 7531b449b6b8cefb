"""
OpenTelemetry filter chain.

Wraps every Ormer call except ``begin``, ``commit`` and ``rollback`` in a
client span named ``<method>#<table>``, or ``<method>#tx(<name>)`` inside
a named transaction. The span stays current while the call runs, so
spans started by the driver nest under it.

    add_global_filter_chain(OpenTelemetryFilterChainBuilder().filter_chain)
"""

from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable, Optional

from .filters import Filter, Invocation

try:
    from opentelemetry import trace
    _HAS_OPENTELEMETRY = True
except ImportError:
    trace = None  # type: ignore
    _HAS_OPENTELEMETRY = False

__all__ = ["OpenTelemetryFilterChainBuilder", "operation_name"]

TRACER_NAME = "tessera.orm"

CustomSpanFunc = Callable[[Any, Invocation], None]

_TX_METHODS = frozenset({"commit", "rollback", "rollback_unless_commit"})


def operation_name(inv: Invocation) -> str:
    if inv.tx_name:
        return f"{inv.method}#tx({inv.tx_name})"
    return f"{inv.method}#{inv.get_table_name()}"


class OpenTelemetryFilterChainBuilder:
    """
    Builds a tracing filter.

    Args:
        custom_span_func: called with ``(span, invocation)`` after the
            default attributes are set
        tracer_provider: provider to take the tracer from; the global one
            when omitted
    """

    def __init__(
        self,
        custom_span_func: Optional[CustomSpanFunc] = None,
        tracer_provider: Optional[Any] = None,
    ):
        if not _HAS_OPENTELEMETRY:
            raise ImportError(
                "opentelemetry-api is required for the OpenTelemetry filter.\n"
                "Install: pip install tessera-orm[opentelemetry]"
            )
        self.custom_span_func = custom_span_func
        self.tracer = trace.get_tracer(TRACER_NAME, tracer_provider=tracer_provider)

    def filter_chain(self, next_filter: Filter) -> Filter:
        def tracing_filter(inv: Invocation) -> Any:
            if inv.method.startswith("begin") or inv.method in _TX_METHODS:
                return next_filter(inv)
            span = self.tracer.start_span(operation_name(inv), kind=trace.SpanKind.CLIENT)
            try:
                with trace.use_span(span, end_on_exit=False):
                    res = next_filter(inv)
            except BaseException:
                self._finish(span, inv)
                raise
            if inspect.isawaitable(res):
                return self._trace_until_done(span, inv, res)
            self._finish(span, inv)
            return res

        return tracing_filter

    __call__ = filter_chain

    async def _trace_until_done(self, span: Any, inv: Invocation, res: Awaitable[Any]) -> Any:
        try:
            with trace.use_span(span, end_on_exit=False):
                return await res
        finally:
            self._finish(span, inv)

    def _finish(self, span: Any, inv: Invocation) -> None:
        self.build_span(span, inv)
        span.end()

    def build_span(self, span: Any, inv: Invocation) -> None:
        span.set_attribute("orm.method", inv.method)
        span.set_attribute("orm.table", inv.get_table_name())
        span.set_attribute("orm.in_tx", inv.in_tx)
        span.set_attribute("orm.tx_name", inv.tx_name)
        span.set_attribute("component", "tessera")
        if self.custom_span_func is not None:
            self.custom_span_func(span, inv)
