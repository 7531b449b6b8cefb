"""
Filter Chain Tests.

Tests:
- Chain order and the Invocation handed to each filter
- Filters see transactions (in_tx, tx_name, commit)
- DefaultValueFilterChainBuilder fills ``default(...)`` values
- Prometheus summaries and OpenTelemetry spans per call
"""

import pytest

from tessera.faults import NoRowsFault
from tessera.orm import (
    DefaultValueFilterChainBuilder,
    FilterOrmDecorator,
    FilterTxOrmDecorator,
    OpenTelemetryFilterChainBuilder,
    PrometheusFilterChainBuilder,
    add_global_filter_chain,
    new_orm,
)
from tessera.orm.metrics import METRIC_NAME

from orm_models import Setting, Tag, User


def recorder(seen, label=""):
    """A chain builder appending ``(label, invocation)`` for every call."""

    def chain(next_filter):
        def record(inv):
            seen.append((label, inv))
            return next_filter(inv)

        return record

    return chain


class TestFilterOrmDecorator:
    """Routing Ormer calls through filters."""

    @pytest.mark.asyncio
    async def test_first_chain_is_outermost(self, orm):
        seen = []
        o = FilterOrmDecorator(orm, recorder(seen, "outer"), recorder(seen, "inner"))
        await o.insert(Tag(name="go"))
        assert [label for label, _ in seen] == ["outer", "inner"]

    @pytest.mark.asyncio
    async def test_invocation_fields(self, orm):
        seen = []
        o = FilterOrmDecorator(orm, recorder(seen))
        tag = Tag(name="go")
        assert await o.insert(tag) == 1

        inv = seen[0][1]
        assert inv.method == "insert"
        assert inv.md is tag
        assert inv.get_table_name() == "tag"
        assert inv.get_pk_field_name() == "id"
        assert inv.in_tx is False
        assert inv.tx_start_time is None

    @pytest.mark.asyncio
    async def test_filter_can_short_circuit(self, orm):
        def deny_deletes(next_filter):
            def deny(inv):
                if inv.method == "delete":
                    raise PermissionError(inv.get_table_name())
                return next_filter(inv)

            return deny

        o = FilterOrmDecorator(orm, deny_deletes)
        tag = Tag(name="go")
        await o.insert(tag)
        with pytest.raises(PermissionError, match="tag"):
            await o.delete(tag)
        assert await o.query_table("tag").count() == 1

    @pytest.mark.asyncio
    async def test_sync_methods(self, orm):
        seen = []
        o = FilterOrmDecorator(orm, recorder(seen))
        qs = o.query_table("user")
        assert qs.mi.table == "user"
        assert o.driver().name == "sqlite3"
        assert o.raw("SELECT 1") is not None
        methods = [inv.method for _, inv in seen]
        assert methods == ["query_table", "driver", "raw"]
        assert seen[0][1].get_table_name() == "user"

    @pytest.mark.asyncio
    async def test_global_chains(self, sqlite_alias):
        seen = []
        add_global_filter_chain(recorder(seen))
        o = new_orm()
        assert isinstance(o, FilterOrmDecorator)
        await o.read_or_create(User(user_name="slene"), "user_name")
        assert seen[0][1].method == "read_or_create"


class TestFilterTransactions:
    """Filters around transactions."""

    @pytest.mark.asyncio
    async def test_begin_and_commit(self, orm):
        seen = []
        o = FilterOrmDecorator(orm, recorder(seen))
        tx = await o.begin("import")
        assert isinstance(tx, FilterTxOrmDecorator)
        await tx.insert(Tag(name="go"))
        await tx.commit()

        methods = [inv.method for _, inv in seen]
        assert methods == ["begin", "insert", "commit"]
        insert = seen[1][1]
        assert insert.in_tx is True
        assert insert.tx_name == "import"
        assert insert.tx_start_time is not None
        assert await orm.query_table("tag").count() == 1

    @pytest.mark.asyncio
    async def test_do_tx(self, orm):
        seen = []
        o = FilterOrmDecorator(orm, recorder(seen))

        async def task(tx):
            await tx.insert(Tag(name="go"))
            raise ValueError("nope")

        with pytest.raises(ValueError):
            await o.do_tx(task, "batch")
        methods = [inv.method for _, inv in seen]
        assert methods == ["do_tx", "begin", "insert", "rollback"]
        assert seen[0][1].tx_name == "batch"
        assert await orm.query_table("tag").count() == 0


class TestDefaultValueFilter:
    """DefaultValueFilterChainBuilder."""

    @pytest.mark.asyncio
    async def test_insert_fills_defaults(self, orm):
        o = FilterOrmDecorator(orm, DefaultValueFilterChainBuilder().filter_chain)
        setting = Setting(name="theme")
        await o.insert(setting)
        assert setting.value == "none"
        assert setting.enabled is True
        assert setting.retries == 3

        fresh = Setting(id=setting.id)
        await orm.read(fresh)
        assert (fresh.value, fresh.enabled, fresh.retries) == ("none", True, 3)

    @pytest.mark.asyncio
    async def test_set_values_are_kept(self, orm):
        o = FilterOrmDecorator(orm, DefaultValueFilterChainBuilder().filter_chain)
        setting = Setting(name="theme", value="dark", retries=5)
        await o.insert(setting)
        assert (setting.value, setting.retries) == ("dark", 5)

    @pytest.mark.asyncio
    async def test_insert_multi(self, orm):
        o = FilterOrmDecorator(orm, DefaultValueFilterChainBuilder().filter_chain)
        users = [User(user_name="a"), User(user_name="b", status=2)]
        await o.insert_multi(2, users)
        assert [u.status for u in users] == [1, 2]

    @pytest.mark.asyncio
    async def test_without_filter_zero_values_are_written(self, orm):
        setting = Setting(name="theme")
        await orm.insert(setting)
        assert setting.retries == 0

    def test_insert_or_update_is_opt_in(self):
        builder = DefaultValueFilterChainBuilder()
        calls = []
        chain = builder.filter_chain(lambda inv: calls.append(inv.args[0]))

        class FakeInv:
            method = "insert_or_update"
            args = (Setting(name="x"),)
            mi = None

        chain(FakeInv())
        assert calls[0].retries == 0


class TestPrometheusFilter:
    """PrometheusFilterChainBuilder."""

    @pytest.fixture
    def registry(self):
        prometheus_client = pytest.importorskip("prometheus_client")
        return prometheus_client.CollectorRegistry()

    @staticmethod
    def labels(**overrides):
        labels = {
            "method": "insert",
            "name": "tag",
            "in_tx": "false",
            "tx_name": "",
            "server": "api",
            "env": "test",
            "appname": "shop",
        }
        labels.update(overrides)
        return labels

    def builder(self, registry):
        return PrometheusFilterChainBuilder(
            app_name="shop", server_name="api", run_mode="test", registry=registry
        )

    @pytest.mark.asyncio
    async def test_observes_each_call(self, orm, registry):
        o = FilterOrmDecorator(orm, self.builder(registry).filter_chain)
        await o.insert(Tag(name="go"))
        await o.insert(Tag(name="sql"))
        o.query_table("tag")

        count = METRIC_NAME + "_count"
        assert registry.get_sample_value(count, self.labels()) == 2
        assert registry.get_sample_value(count, self.labels(method="query_table")) == 1
        assert registry.get_sample_value(METRIC_NAME + "_sum", self.labels()) >= 0

    @pytest.mark.asyncio
    async def test_failed_calls_are_observed(self, orm, registry):
        o = FilterOrmDecorator(orm, self.builder(registry).filter_chain)
        with pytest.raises(NoRowsFault):
            await o.read(Tag(id=99))
        assert registry.get_sample_value(METRIC_NAME + "_count", self.labels(method="read")) == 1

    @pytest.mark.asyncio
    async def test_transactions(self, orm, registry):
        o = FilterOrmDecorator(orm, self.builder(registry).filter_chain)
        tx = await o.begin("import")
        await tx.insert(Tag(name="go"))
        await tx.commit()

        count = METRIC_NAME + "_count"
        assert registry.get_sample_value(count, self.labels(in_tx="true", tx_name="import")) == 1
        commit = self.labels(method="commit", name="import", in_tx="true", tx_name="import")
        assert registry.get_sample_value(count, commit) == 1
        begin = self.labels(method="begin", name="", tx_name="import")
        assert registry.get_sample_value(count, begin) is None

    def test_one_summary_per_registry(self, registry):
        assert self.builder(registry).summary is self.builder(registry).summary


class TestOpenTelemetryFilter:
    """OpenTelemetryFilterChainBuilder."""

    @pytest.fixture
    def tracing(self):
        sdk_trace = pytest.importorskip("opentelemetry.sdk.trace")
        from opentelemetry.sdk.trace.export import SimpleSpanProcessor
        from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

        exporter = InMemorySpanExporter()
        provider = sdk_trace.TracerProvider()
        provider.add_span_processor(SimpleSpanProcessor(exporter))
        return provider, exporter

    @pytest.mark.asyncio
    async def test_span_per_call(self, orm, tracing):
        from opentelemetry.trace import SpanKind

        provider, exporter = tracing
        builder = OpenTelemetryFilterChainBuilder(tracer_provider=provider)
        o = FilterOrmDecorator(orm, builder.filter_chain)
        await o.insert(Tag(name="go"))

        (span,) = exporter.get_finished_spans()
        assert span.name == "insert#tag"
        assert span.kind == SpanKind.CLIENT
        assert span.attributes["orm.method"] == "insert"
        assert span.attributes["orm.table"] == "tag"
        assert span.attributes["orm.in_tx"] is False
        assert span.attributes["component"] == "tessera"

    @pytest.mark.asyncio
    async def test_transaction_boundaries_are_not_traced(self, orm, tracing):
        provider, exporter = tracing
        o = FilterOrmDecorator(orm, OpenTelemetryFilterChainBuilder(tracer_provider=provider).filter_chain)
        tx = await o.begin("import")
        await tx.insert(Tag(name="go"))
        await tx.commit()

        names = [span.name for span in exporter.get_finished_spans()]
        assert names == ["insert#tx(import)"]

    @pytest.mark.asyncio
    async def test_calls_nest_under_do_tx(self, orm, tracing):
        provider, exporter = tracing
        o = FilterOrmDecorator(orm, OpenTelemetryFilterChainBuilder(tracer_provider=provider).filter_chain)

        async def task(tx):
            await tx.insert(Tag(name="go"))

        await o.do_tx(task, "batch")
        spans = {span.name: span for span in exporter.get_finished_spans()}
        outer = spans["do_tx#tx(batch)"]
        inner = spans["insert#tx(batch)"]
        assert inner.parent.span_id == outer.context.span_id

    @pytest.mark.asyncio
    async def test_errors_mark_the_span(self, orm, tracing):
        from opentelemetry.trace import StatusCode

        provider, exporter = tracing
        o = FilterOrmDecorator(orm, OpenTelemetryFilterChainBuilder(tracer_provider=provider).filter_chain)
        with pytest.raises(NoRowsFault):
            await o.read(Tag(id=99))
        (span,) = exporter.get_finished_spans()
        assert span.name == "read#tag"
        assert span.status.status_code == StatusCode.ERROR

    @pytest.mark.asyncio
    async def test_custom_span_func(self, orm, tracing):
        provider, exporter = tracing

        def tag_app(span, inv):
            span.set_attribute("app", "shop")
            span.set_attribute("orm.pk", inv.get_pk_field_name())

        builder = OpenTelemetryFilterChainBuilder(tag_app, tracer_provider=provider)
        o = FilterOrmDecorator(orm, builder.filter_chain)
        o.query_table("user")

        (span,) = exporter.get_finished_spans()
        assert span.name == "query_table#user"
        assert span.attributes["app"] == "shop"
        assert span.attributes["orm.pk"] == "id"
