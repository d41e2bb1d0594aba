"""
Plugin contract and per-call execution context.

A plugin is a named, versioned bundle of optional hooks. The executor never
subclasses or inspects plugins beyond these fields:

    ┌────────────────────────────────────────────────────────────┐
    │ Plugin                                                     │
    │   name, version, dependencies, conflicts_with, priority    │
    │                                                            │
    │   init(engine)                  once, resolved order       │
    │   intercept_query(query, ctx)   every intercepted call     │
    │   extend_repository(repo)       every repository created   │
    │   destroy()                     once, reverse order        │
    └────────────────────────────────────────────────────────────┘

Examples:
    >>> def stamp(query, ctx):
    ...     ctx.metadata["stamped"] = True
    ...     return query
    >>> Plugin(name="stamp", intercept_query=stamp, priority=PLUGIN_PRIORITIES["AUDIT"])

Tags:
    plugin, executor, interception, spine-warden
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Operation(str, Enum):
    """Operation class of an intercepted entry point."""

    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    DELETE = "delete"
    MERGE = "merge"


#: Conventional priority bands. Higher runs earlier among ready plugins.
PLUGIN_PRIORITIES: dict[str, int] = {
    "SECURITY": 1000,
    "FILTER": 500,
    "TRANSFORM": 100,
    "AUDIT": 50,
    "DEFAULT": 0,
    "DEBUG": -100,
}


@dataclass
class ExecutionContext:
    """Fresh per intercepted call; interceptors may write to ``metadata``.

    Known metadata keys:
        skip_rls: set by an earlier interceptor to bypass row-level security
        rls_required: set by the RLS interceptor on write operations
        rls_resource: resource name recorded alongside ``rls_required``
    """

    operation: Operation
    resource: str
    schema: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


InterceptFn = Callable[[Any, ExecutionContext], Any]


@dataclass(frozen=True)
class Plugin:
    """Declared plugin. Every hook is optional."""

    name: str
    version: str = "1.0.0"
    dependencies: tuple[str, ...] = ()
    conflicts_with: tuple[str, ...] = ()
    priority: int = 0
    init: Callable[[Any], Any] | None = None
    destroy: Callable[[], Any] | None = None
    intercept_query: InterceptFn | None = None
    extend_repository: Callable[[Any], Any] | None = None

    def __post_init__(self) -> None:
        # Accept lists for convenience; store tuples so the record stays hashable
        object.__setattr__(self, "dependencies", tuple(self.dependencies))
        object.__setattr__(self, "conflicts_with", tuple(self.conflicts_with))


__all__ = [
    "Operation",
    "ExecutionContext",
    "Plugin",
    "InterceptFn",
    "PLUGIN_PRIORITIES",
]
