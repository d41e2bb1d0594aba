"""
Tests for the interception pipeline — wrapping, scoping, lifecycle hooks.
"""

from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import select

from warden.core.errors import PluginValidationError, PluginValidationKind
from warden.executor import (
    INTERCEPTED_METHODS,
    ExecutionContext,
    Executor,
    Operation,
    Plugin,
    apply_plugins,
    create_executor,
    create_executor_async,
    destroy_executor,
    destroy_executor_async,
    get_plugins,
    get_raw_engine,
    is_executor,
    wrap_transaction,
)


class Recorder:
    """Interceptor that records every call it sees."""

    def __init__(self):
        self.calls: list[tuple[str, str, str | None]] = []

    def plugin(self, name: str = "recorder", **kwargs) -> Plugin:
        def intercept(query, ctx: ExecutionContext):
            self.calls.append((ctx.operation.value, ctx.resource, ctx.schema))
            return query

        return Plugin(name, intercept_query=intercept, **kwargs)


class TestFastPath:
    def test_no_plugins_returns_raw_engine(self, engine):
        executor = create_executor(engine, [])
        assert executor is engine
        assert is_executor(executor)
        assert get_plugins(executor) == ()
        assert get_raw_engine(executor) is engine

    def test_plugins_without_interceptors_skip_wrapping(self, engine):
        executor = create_executor(engine, [Plugin("noop")])
        assert executor is engine
        assert [p.name for p in get_plugins(executor)] == ["noop"]

    def test_disabled_returns_raw_engine_without_validation(self, engine):
        """Disabled executors never look at the plugin set."""
        recorder = Recorder()
        plugins = [recorder.plugin(), recorder.plugin()]  # duplicate names
        executor = create_executor(engine, plugins, enabled=False)
        assert executor is engine

    def test_disabled_through_settings(self, engine, monkeypatch):
        monkeypatch.setenv("WARDEN_EXECUTOR_ENABLED", "false")
        recorder = Recorder()
        executor = create_executor(engine, [recorder.plugin()])
        assert not isinstance(executor, Executor)

    def test_unwrapped_handle_is_not_executor(self, engine):
        assert not is_executor(object())
        sentinel = object()
        assert get_raw_engine(sentinel) is sentinel


class TestInterception:
    def test_every_entry_point_is_intercepted(self, engine):
        recorder = Recorder()
        executor = create_executor(engine, [recorder.plugin()])
        for method in INTERCEPTED_METHODS:
            getattr(executor, method)("orders")
        assert [c[0] for c in recorder.calls] == [
            "read",
            "create",
            "update",
            "delete",
            "replace",
            "merge",
        ]

    def test_interceptors_run_in_resolved_order(self, engine):
        order: list[str] = []

        def tagging(name):
            def intercept(query, ctx):
                order.append(name)
                return query

            return intercept

        plugins = [
            Plugin("p2", priority=100, dependencies=("p1",), intercept_query=tagging("p2")),
            Plugin("p1", priority=10, intercept_query=tagging("p1")),
        ]
        executor = create_executor(engine, plugins)
        executor.select_from("orders")
        assert order == ["p1", "p2"]

    def test_interceptor_can_rewrite_query(self, engine, metadata):
        orders = metadata.tables["orders"]

        def only_tenant_8(query, ctx):
            return query.where(orders.c.tenant_id == 8)

        executor = create_executor(engine, [Plugin("t8", intercept_query=only_tenant_8)])
        rows = executor.execute(executor.select_from("orders"))
        assert [r["id"] for r in rows] == [3]

    def test_metadata_passes_between_interceptors(self, engine):
        seen: list[bool] = []

        def first(query, ctx):
            ctx.metadata["flag"] = True
            return query

        def second(query, ctx):
            seen.append(ctx.metadata.get("flag", False))
            return query

        executor = create_executor(
            engine,
            [
                Plugin("first", priority=10, intercept_query=first),
                Plugin("second", intercept_query=second),
            ],
        )
        executor.select_from("orders")
        executor.select_from("orders")
        assert seen == [True, True]

    def test_fresh_context_per_call(self, engine):
        contexts: list[ExecutionContext] = []

        def capture(query, ctx):
            contexts.append(ctx)
            return query

        executor = create_executor(engine, [Plugin("cap", intercept_query=capture)])
        executor.select_from("orders")
        executor.select_from("orders")
        assert contexts[0] is not contexts[1]

    def test_non_intercepted_attributes_delegate(self, engine):
        recorder = Recorder()
        executor = create_executor(engine, [recorder.plugin()])
        assert executor.dialect_name == "sqlite"
        assert executor.table("orders") is engine.table("orders")
        assert recorder.calls == []

    def test_raw_engine_bypasses_plugins(self, engine):
        recorder = Recorder()
        executor = create_executor(engine, [recorder.plugin()])
        raw = get_raw_engine(executor)
        raw.select_from("orders")
        assert raw is engine
        assert recorder.calls == []

    def test_markers(self, engine):
        recorder = Recorder()
        plugin = recorder.plugin()
        executor = create_executor(engine, [plugin])
        assert isinstance(executor, Executor)
        assert is_executor(executor)
        assert get_plugins(executor) == (plugin,)


class TestScopedHandles:
    def test_transaction_handle_is_intercepted(self, engine):
        recorder = Recorder()
        executor = create_executor(engine, [recorder.plugin()])

        def work(trx):
            assert is_executor(trx)
            return trx.execute(trx.select_from("orders"))

        rows = executor.transaction(work)
        assert len(rows) == 4
        assert recorder.calls == [("read", "orders", None)]

    def test_transaction_rolls_back_on_error(self, engine, metadata):
        executor = create_executor(engine, [Recorder().plugin()])
        orders = metadata.tables["orders"]

        def work(trx):
            trx.execute(trx.insert_into("orders").values(id=50, tenant_id=7, status="placed"))
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            executor.transaction(work)
        assert engine.execute(select(orders).where(orders.c.id == 50)) == []

    def test_with_schema_passes_schema_and_is_cached(self, engine):
        recorder = Recorder()
        executor = create_executor(engine, [recorder.plugin()])
        scoped = executor.with_schema("main")
        assert executor.with_schema("main") is scoped
        assert is_executor(scoped)
        scoped.select_from("orders")
        assert recorder.calls == [("read", "orders", "main")]

    def test_schema_cache_is_bounded(self, engine):
        executor = create_executor(engine, [Recorder().plugin()], cache_size=1)
        first = executor.with_schema("a")
        executor.with_schema("b")
        assert executor.with_schema("a") is not first

    def test_cte_body_is_intercepted(self, engine):
        recorder = Recorder()
        executor = create_executor(engine, [recorder.plugin()])

        def body(handle):
            assert is_executor(handle)
            return handle.select_from("orders")

        scoped = executor.with_cte("recent", body)
        assert is_executor(scoped)
        rows = scoped.execute(select(scoped.table("recent")))
        assert len(rows) == 4
        assert recorder.calls == [("read", "orders", None)]

    def test_recursive_cte_terms_are_intercepted(self, engine, metadata):
        recorder = Recorder()
        executor = create_executor(engine, [recorder.plugin()])
        orders = metadata.tables["orders"]

        def anchor(handle):
            return handle.select_from("orders").where(orders.c.id == 1)

        def step(handle, cte):
            table = handle.table("orders")
            return handle.select_from("orders").where(table.c.id == cte.c.id + 1)

        scoped = executor.with_recursive("chain", anchor, step)
        rows = scoped.execute(select(scoped.table("chain")).order_by("id"))
        assert [r["id"] for r in rows] == [1, 2, 3, 4]
        assert len(recorder.calls) == 2

    def test_wrap_transaction_without_interceptors_returns_input(self, engine):
        assert wrap_transaction(engine, [Plugin("noop")]) is engine

    def test_wrap_transaction_with_interceptor(self, engine):
        recorder = Recorder()
        wrapped = wrap_transaction(engine, [recorder.plugin()])
        wrapped.select_from("orders")
        assert recorder.calls == [("read", "orders", None)]


class TestApplyPlugins:
    def test_runs_chain_on_hand_built_query(self, engine, metadata):
        recorder = Recorder()
        plugin = recorder.plugin()
        query = select(metadata.tables["orders"])
        result = apply_plugins(query, [plugin], "read", "orders", metadata={"origin": "manual"})
        assert result is query
        assert recorder.calls == [("read", "orders", None)]

    def test_accepts_operation_enum(self, metadata):
        recorder = Recorder()
        apply_plugins(select(metadata.tables["orders"]), [recorder.plugin()], Operation.DELETE, "orders")
        assert recorder.calls[0][0] == "delete"


class TestLifecycle:
    def test_init_runs_in_order(self, engine):
        order: list[str] = []
        plugins = [
            Plugin("b", init=lambda e: order.append("b"), intercept_query=lambda q, c: q),
            Plugin("a", init=lambda e: order.append("a")),
        ]
        create_executor(engine, plugins)
        assert order == ["a", "b"]

    def test_init_receives_raw_engine(self, engine):
        received = []
        create_executor(engine, [Plugin("p", init=received.append)])
        assert received == [engine]

    def test_init_failure_is_wrapped(self, engine):
        def broken(_engine):
            raise RuntimeError("no database")

        with pytest.raises(PluginValidationError) as exc_info:
            create_executor(engine, [Plugin("broken", init=broken)])
        err = exc_info.value
        assert err.kind is PluginValidationKind.INITIALIZATION_FAILED
        assert err.details.plugin_name == "broken"
        assert isinstance(err.__cause__, RuntimeError)

    def test_init_skipped_when_not_initializing(self, engine):
        calls = []
        create_executor(engine, [Plugin("p", init=calls.append)], initialize=False)
        assert calls == []

    def test_async_init_rejected_by_sync_factory(self, engine):
        async def init(_engine):
            return None

        with pytest.raises(PluginValidationError) as exc_info:
            create_executor(engine, [Plugin("async", init=init)])
        assert exc_info.value.kind is PluginValidationKind.INITIALIZATION_FAILED

    def test_validation_happens_before_init(self, engine):
        calls = []
        plugins = [Plugin("a", init=calls.append), Plugin("b", dependencies=("ghost",))]
        with pytest.raises(PluginValidationError):
            create_executor(engine, plugins)
        assert calls == []

    def test_destroy_runs_in_reverse(self, engine):
        order: list[str] = []
        plugins = [
            Plugin("a", destroy=lambda: order.append("a"), intercept_query=lambda q, c: q),
            Plugin("b", dependencies=("a",), destroy=lambda: order.append("b")),
        ]
        executor = create_executor(engine, plugins)
        destroy_executor(executor)
        assert order == ["b", "a"]

    def test_async_destroy_rejected_by_sync_destroy(self, engine):
        async def destroy():
            return None

        executor = create_executor(engine, [Plugin("p", destroy=destroy)])
        with pytest.raises(TypeError):
            destroy_executor(executor)

    async def test_async_init_and_destroy(self, engine):
        events: list[str] = []

        async def init(_engine):
            await asyncio.sleep(0)
            events.append("init")

        async def destroy():
            await asyncio.sleep(0)
            events.append("destroy")

        executor = await create_executor_async(
            engine,
            [Plugin("p", init=init, destroy=destroy, intercept_query=lambda q, c: q)],
        )
        assert isinstance(executor, Executor)
        await destroy_executor_async(executor)
        assert events == ["init", "destroy"]

    async def test_async_init_failure_is_wrapped(self, engine):
        async def init(_engine):
            raise ValueError("bad")

        with pytest.raises(PluginValidationError) as exc_info:
            await create_executor_async(engine, [Plugin("p", init=init)])
        assert exc_info.value.kind is PluginValidationKind.INITIALIZATION_FAILED
