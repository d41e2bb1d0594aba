"""
Interception pipeline: wraps a query engine so plugins see every query.

Manifesto:
    Plugins must not be bypassable by nesting. A query built inside a
    transaction, on a schema-scoped handle, or inside a CTE callback goes
    through exactly the same interceptor chain as a top-level one. Every
    handle the wrapper hands out is itself wrapped.

Architecture:
    ::

        create_executor(engine, plugins)
            │
            ├── validate_plugins()      (duplicates, missing deps, conflicts, cycles)
            ├── resolve_plugin_order()  (deps → priority desc → name asc)
            ├── plugin.init(engine)     (resolved order; failure aborts)
            │
            ├── no interceptors? ──► raw engine + introspection markers (fast path)
            │
            └── Executor(engine, sorted_plugins)
                    │
                    ├── select_from / insert_into / update_table /
                    │   delete_from / replace_into / merge_into
                    │       query = engine.<method>(table)
                    │       for plugin in interceptors:
                    │           query = plugin.intercept_query(query, ExecutionContext(...))
                    │
                    ├── transaction(fn)         → fn(Executor(trx))
                    ├── with_schema(s)          → Executor(engine.with_schema(s))  [LRU cached]
                    ├── with_cte(n, fn)         → fn gets Executor, returns Executor
                    └── anything else           → delegated to the engine

Examples:
    >>> executor = create_executor(engine, [rls_plugin(schema)])
    >>> with rls_context.scope(create_rls_context(subject_id=1, tenant_id=7)):
    ...     executor.execute(executor.select_from("orders"))

    Escape hatch for trusted maintenance code:

    >>> raw = get_raw_engine(executor)
    >>> raw.execute(raw.select_from("orders"))   # no plugins

Guardrails:
    ❌ DON'T: Keep references to the raw engine around application code
    ✅ DO: Pass the executor; use ``get_raw_engine`` only where bypass is intended

    ❌ DON'T: Build queries on ``engine.table(...)`` for governed resources
    ✅ DO: Start from an intercepted entry point (``select_from`` etc.)

Tags:
    executor, interception, plugins, decorator, spine-warden

Doc-Types:
    api-reference, architecture
"""

from __future__ import annotations

import inspect
from collections.abc import Callable, Mapping, Sequence
from typing import Any, TypeVar

from warden.core.cache import LRUCache
from warden.core.errors import (
    PluginValidationDetails,
    PluginValidationError,
    PluginValidationKind,
)
from warden.core.logging import get_logger
from warden.core.settings import get_settings
from warden.executor.plugin import ExecutionContext, Operation, Plugin
from warden.executor.resolver import resolve_plugin_order, validate_plugins

logger = get_logger(__name__)

T = TypeVar("T")

#: Entry points that are intercepted, and the operation each one performs.
INTERCEPTED_METHODS: dict[str, Operation] = {
    "select_from": Operation.READ,
    "insert_into": Operation.CREATE,
    "update_table": Operation.UPDATE,
    "delete_from": Operation.DELETE,
    "replace_into": Operation.REPLACE,
    "merge_into": Operation.MERGE,
}

_MARKER = "__warden_executor__"
_PLUGINS = "__warden_plugins__"
_RAW = "__warden_raw__"


class Executor:
    """Explicit wrapper over a query engine handle.

    Intercepted entry points run the interceptor chain; scoping methods
    return wrapped handles; every other attribute is read from the wrapped
    engine. Construct through :func:`create_executor`.
    """

    __warden_executor__ = True

    def __init__(
        self,
        engine: Any,
        plugins: Sequence[Plugin],
        *,
        schema: str | None = None,
        cache_size: int = 100,
    ):
        self._engine = engine
        self._plugins: tuple[Plugin, ...] = tuple(plugins)
        self._interceptors: tuple[Plugin, ...] = tuple(
            p for p in self._plugins if p.intercept_query is not None
        )
        self._schema = schema
        self._cache_size = cache_size
        self._method_cache: dict[str, Callable[[str], Any]] = {}
        self._transaction_wrapper: Callable[[Callable[[Any], Any]], Any] | None = None
        self._schema_cache: LRUCache[str, Executor] = LRUCache(cache_size)

    # ── Markers ──────────────────────────────────────────────────

    @property
    def __warden_plugins__(self) -> tuple[Plugin, ...]:
        return self._plugins

    @property
    def __warden_raw__(self) -> Any:
        return self._engine

    # ── Interception ─────────────────────────────────────────────

    def _wrap(self, engine: Any, schema: str | None = None) -> Executor:
        return Executor(
            engine,
            self._plugins,
            schema=schema if schema is not None else self._schema,
            cache_size=self._cache_size,
        )

    def _intercepted(self, method: str) -> Callable[[str], Any]:
        fn = self._method_cache.get(method)
        if fn is not None:
            return fn

        operation = INTERCEPTED_METHODS[method]
        target = getattr(self._engine, method)
        interceptors = self._interceptors
        schema = self._schema

        def intercepted(table: str) -> Any:
            context = ExecutionContext(operation=operation, resource=table, schema=schema)
            query = target(table)
            for plugin in interceptors:
                query = plugin.intercept_query(query, context)  # type: ignore[misc]
            return query

        self._method_cache[method] = intercepted
        return intercepted

    def select_from(self, table: str) -> Any:
        return self._intercepted("select_from")(table)

    def insert_into(self, table: str) -> Any:
        return self._intercepted("insert_into")(table)

    def update_table(self, table: str) -> Any:
        return self._intercepted("update_table")(table)

    def delete_from(self, table: str) -> Any:
        return self._intercepted("delete_from")(table)

    def replace_into(self, table: str) -> Any:
        return self._intercepted("replace_into")(table)

    def merge_into(self, table: str) -> Any:
        return self._intercepted("merge_into")(table)

    # ── Scoped handles ───────────────────────────────────────────

    def transaction(self, fn: Callable[[Executor], T]) -> T:
        """Run ``fn`` inside an engine transaction with a wrapped handle."""
        if self._transaction_wrapper is None:
            engine_transaction = self._engine.transaction

            def run(callback: Callable[[Executor], Any]) -> Any:
                return engine_transaction(lambda trx: callback(self._wrap(trx)))

            self._transaction_wrapper = run
        return self._transaction_wrapper(fn)

    def with_schema(self, schema: str) -> Executor:
        cached = self._schema_cache.get(schema)
        if cached is not None:
            return cached
        wrapped = self._wrap(self._engine.with_schema(schema), schema=schema)
        self._schema_cache.set(schema, wrapped)
        return wrapped

    def with_cte(self, name: str, fn: Callable[[Executor], Any]) -> Executor:
        """CTE whose body is built on a wrapped handle; returns a wrapped handle."""
        raw = self._engine.with_cte(name, lambda handle: fn(self._wrap(handle)))
        return self._wrap(raw)

    def with_recursive(
        self,
        name: str,
        fn: Callable[[Executor], Any],
        step: Callable[[Executor, Any], Any] | None = None,
    ) -> Executor:
        wrapped_step = None
        if step is not None:
            wrapped_step = lambda handle, cte: step(self._wrap(handle), cte)  # noqa: E731
        raw = self._engine.with_recursive(
            name, lambda handle: fn(self._wrap(handle)), wrapped_step
        )
        return self._wrap(raw)

    # ── Delegation ───────────────────────────────────────────────

    def __getattr__(self, name: str) -> Any:
        engine = self.__dict__.get("_engine")
        if engine is None:
            raise AttributeError(name)
        return getattr(engine, name)

    def __repr__(self) -> str:
        names = [p.name for p in self._plugins]
        return f"Executor(engine={self._engine!r}, plugins={names}, schema={self._schema!r})"


# =============================================================================
# CONSTRUCTION
# =============================================================================


def _mark(engine: Any, plugins: Sequence[Plugin]) -> Any:
    """Fast path: decorate the raw engine with introspection markers only."""
    setattr(engine, _MARKER, True)
    setattr(engine, _PLUGINS, tuple(plugins))
    setattr(engine, _RAW, engine)
    return engine


def _initialization_failed(plugin: Plugin, error: BaseException) -> PluginValidationError:
    return PluginValidationError(
        f'Plugin "{plugin.name}" failed to initialize: {error}',
        PluginValidationKind.INITIALIZATION_FAILED,
        PluginValidationDetails(plugin_name=plugin.name),
        cause=error,
    )


def _prepare(
    plugins: Sequence[Plugin], enabled: bool | None
) -> tuple[list[Plugin], bool]:
    if enabled is None:
        enabled = get_settings().executor_enabled
    if not plugins or not enabled:
        return list(plugins), False
    validate_plugins(plugins)
    return resolve_plugin_order(plugins), True


def _finish(engine: Any, ordered: list[Plugin], cache_size: int | None) -> Any:
    if not any(p.intercept_query is not None for p in ordered):
        return _mark(engine, ordered)
    if cache_size is None:
        cache_size = get_settings().schema_cache_size
    return Executor(engine, ordered, cache_size=cache_size)


def create_executor(
    engine: Any,
    plugins: Sequence[Plugin] = (),
    *,
    enabled: bool | None = None,
    initialize: bool = True,
    cache_size: int | None = None,
) -> Any:
    """Validate, order and initialize plugins, then wrap ``engine``.

    Args:
        engine: Query engine handle (``SQLAlchemyEngine`` or compatible)
        plugins: Plugin declarations in any order
        enabled: ``False`` returns the raw engine; defaults to settings
        initialize: Call each plugin's ``init`` hook (synchronously)
        cache_size: Schema-handle cache bound; defaults to settings

    Raises:
        PluginValidationError: invalid plugin set, or an ``init`` hook failed
    """
    ordered, active = _prepare(plugins, enabled)
    if not active:
        return _mark(engine, ordered)

    if initialize:
        for plugin in ordered:
            if plugin.init is None:
                continue
            try:
                result = plugin.init(engine)
            except Exception as e:
                raise _initialization_failed(plugin, e) from e
            if inspect.isawaitable(result):
                if inspect.iscoroutine(result):
                    result.close()
                raise _initialization_failed(
                    plugin, TypeError("init hook is asynchronous; use create_executor_async()")
                )
            logger.debug("plugin_initialized", plugin=plugin.name, version=plugin.version)

    return _finish(engine, ordered, cache_size)


async def create_executor_async(
    engine: Any,
    plugins: Sequence[Plugin] = (),
    *,
    enabled: bool | None = None,
    cache_size: int | None = None,
) -> Any:
    """Like :func:`create_executor`, awaiting asynchronous ``init`` hooks in order."""
    ordered, active = _prepare(plugins, enabled)
    if not active:
        return _mark(engine, ordered)

    for plugin in ordered:
        if plugin.init is None:
            continue
        try:
            result = plugin.init(engine)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            raise _initialization_failed(plugin, e) from e
        logger.debug("plugin_initialized", plugin=plugin.name, version=plugin.version)

    return _finish(engine, ordered, cache_size)


def destroy_executor(executor: Any) -> None:
    """Call ``destroy`` hooks in reverse resolved order."""
    for plugin in reversed(get_plugins(executor)):
        if plugin.destroy is None:
            continue
        result = plugin.destroy()
        if inspect.isawaitable(result):
            if inspect.iscoroutine(result):
                result.close()
            raise TypeError(
                f'Plugin "{plugin.name}" has an asynchronous destroy hook; '
                "use destroy_executor_async()"
            )
        logger.debug("plugin_destroyed", plugin=plugin.name)


async def destroy_executor_async(executor: Any) -> None:
    for plugin in reversed(get_plugins(executor)):
        if plugin.destroy is None:
            continue
        result = plugin.destroy()
        if inspect.isawaitable(result):
            await result
        logger.debug("plugin_destroyed", plugin=plugin.name)


# =============================================================================
# INTROSPECTION HELPERS
# =============================================================================


def is_executor(handle: Any) -> bool:
    return getattr(handle, _MARKER, False) is True


def get_plugins(handle: Any) -> tuple[Plugin, ...]:
    return tuple(getattr(handle, _PLUGINS, ()))


def get_raw_engine(handle: Any) -> Any:
    """Unwrapped engine behind ``handle`` (``handle`` itself if not wrapped)."""
    return getattr(handle, _RAW, handle)


def wrap_transaction(trx: Any, plugins: Sequence[Plugin]) -> Any:
    """Wrap a transaction handle obtained outside :meth:`Executor.transaction`."""
    if not any(p.intercept_query is not None for p in plugins):
        return trx
    return Executor(trx, plugins)


def apply_plugins(
    query: Any,
    plugins: Sequence[Plugin],
    operation: Operation | str,
    resource: str,
    *,
    schema: str | None = None,
    metadata: Mapping[str, Any] | None = None,
) -> Any:
    """Run the interceptor chain over a query built by hand.

    ``plugins`` is expected in resolved order (as returned by
    :func:`get_plugins`).
    """
    context = ExecutionContext(
        operation=Operation(operation),
        resource=resource,
        schema=schema,
        metadata=dict(metadata or {}),
    )
    for plugin in plugins:
        if plugin.intercept_query is not None:
            query = plugin.intercept_query(query, context)
    return query


__all__ = [
    "Executor",
    "INTERCEPTED_METHODS",
    "create_executor",
    "create_executor_async",
    "destroy_executor",
    "destroy_executor_async",
    "is_executor",
    "get_plugins",
    "get_raw_engine",
    "wrap_transaction",
    "apply_plugins",
]
