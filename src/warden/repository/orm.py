"""
Plugin-aware ORM entry point.

``create_orm`` builds an executor for the plugin set and hands out
repositories with every plugin's ``extend_repository`` hook applied in
resolved order.

Examples:
    >>> orm = create_orm(engine, [rls_plugin(schema)])
    >>> orders = orm.repository("orders")
    >>> with rls_context.scope(ctx):
    ...     orders.find_all()
    >>> orm.destroy()

Tags:
    orm, repository, plugins, spine-warden
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from typing import Any, TypeVar

from warden.core.logging import get_logger
from warden.executor.executor import (
    apply_plugins,
    create_executor,
    create_executor_async,
    destroy_executor,
    destroy_executor_async,
    get_plugins,
)
from warden.executor.plugin import Operation, Plugin
from warden.repository.repository import Repository

logger = get_logger(__name__)

R = TypeVar("R")
T = TypeVar("T")


class PluginOrm:
    """Executor plus plugin-extended repository factory."""

    def __init__(self, executor: Any):
        self._executor = executor

    @property
    def executor(self) -> Any:
        return self._executor

    @property
    def plugins(self) -> tuple[Plugin, ...]:
        return get_plugins(self._executor)

    def extend(self, repo: R) -> R:
        """Apply every ``extend_repository`` hook to ``repo``."""
        for plugin in self.plugins:
            if plugin.extend_repository is not None:
                repo = plugin.extend_repository(repo)
        return repo

    def create_repository(self, factory: Callable[[Any], R]) -> R:
        """Build a repository on this executor and extend it."""
        return self.extend(factory(self._executor))

    def repository(self, table_name: str, **kwargs: Any) -> Any:
        """Shortcut for a plain :class:`Repository` on ``table_name``."""
        return self.create_repository(lambda executor: Repository(executor, table_name, **kwargs))

    def apply_plugins(
        self,
        query: Any,
        operation: Operation | str,
        resource: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> Any:
        return apply_plugins(query, self.plugins, operation, resource, metadata=metadata)

    def transaction(self, fn: Callable[[Any], T]) -> T:
        return self._executor.transaction(fn)

    def destroy(self) -> None:
        destroy_executor(self._executor)

    async def destroy_async(self) -> None:
        await destroy_executor_async(self._executor)


def create_orm(engine: Any, plugins: Sequence[Plugin] = (), **executor_options: Any) -> PluginOrm:
    """Validate, initialize and wrap; see :func:`warden.executor.create_executor`."""
    executor = create_executor(engine, plugins, **executor_options)
    logger.debug("orm_created", plugins=[p.name for p in get_plugins(executor)])
    return PluginOrm(executor)


async def create_orm_async(
    engine: Any, plugins: Sequence[Plugin] = (), **executor_options: Any
) -> PluginOrm:
    executor = await create_executor_async(engine, plugins, **executor_options)
    return PluginOrm(executor)


__all__ = ["PluginOrm", "create_orm", "create_orm_async"]
