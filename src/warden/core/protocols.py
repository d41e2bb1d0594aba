"""
Canonical protocol definitions for spine-warden.

This module is the single source of truth for the structural contracts the
core consumes from its collaborators:

    protocols.py
    ├── QueryEngine       — the query-building/execution engine being wrapped
    ├── RepositoryLike    — what a repository must expose to be extended
    └── ValidationSchema  — {parse, safe_parse} input validators

Manifesto:
    The interception pipeline and the RLS plugin never import a concrete
    engine or repository. They depend on shape, so any object matching the
    protocol works, including test doubles.

Guardrails:
    ❌ DON'T: Test for ad hoc attributes (``hasattr(repo, "table_name")``)
    ✅ DO: ``isinstance(repo, RepositoryLike)``

Tags:
    protocol, engine, repository, validation, spine-warden, contracts
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any, Protocol, TypeVar, runtime_checkable

if TYPE_CHECKING:
    from warden.repository.validation import ValidationResult

T = TypeVar("T")


@runtime_checkable
class QueryEngine(Protocol):
    """
    Contract for the wrapped query engine.

    Entry points take a resource (table) name and return a query
    representation that the caller keeps refining and finally hands to
    :meth:`execute`. Scoping methods return new handles of the same kind.

    Implementations:
        ``warden.engine.SQLAlchemyEngine`` (SQLAlchemy Core statements)
    """

    # -- Entry points (intercepted) -----------------------------------------

    def select_from(self, table: str) -> Any: ...

    def insert_into(self, table: str) -> Any: ...

    def update_table(self, table: str) -> Any: ...

    def delete_from(self, table: str) -> Any: ...

    def replace_into(self, table: str) -> Any: ...

    def merge_into(self, table: str) -> Any: ...

    # -- Scoping -------------------------------------------------------------

    def transaction(self, fn: Callable[[Any], T]) -> T: ...

    def with_schema(self, schema: str) -> Any: ...

    def with_cte(self, name: str, fn: Callable[[Any], Any]) -> Any: ...

    def with_recursive(self, name: str, fn: Callable[[Any], Any]) -> Any: ...

    # -- Execution -----------------------------------------------------------

    def table(self, name: str) -> Any: ...

    def execute(self, query: Any) -> Any: ...

    def execute_one(self, query: Any) -> Mapping[str, Any] | None: ...


@runtime_checkable
class RepositoryLike(Protocol):
    """
    Minimum a repository must expose for plugin ``extend_repository`` hooks.

    ``find_by_id``, ``find_all``, ``create``, ``update`` and ``delete`` are
    optional; extensions check for them before wrapping.
    """

    table_name: str
    executor: Any


@runtime_checkable
class ValidationSchema(Protocol):
    """Structural input validator (pydantic adapter, native pass-through, ...)."""

    def parse(self, data: Any) -> Any:
        """Return validated data or raise ``warden.core.errors.ValidationError``."""
        ...

    def safe_parse(self, data: Any) -> ValidationResult:
        """Return a result object instead of raising."""
        ...


__all__ = [
    "QueryEngine",
    "RepositoryLike",
    "ValidationSchema",
]
