"""Table repository over an executor.

Provides :class:`Repository`, a CRUD helper bound to one table. Every
statement it builds starts from an intercepted entry point of the executor
it was given, so plugins (row-level security included) apply to repository
reads and writes exactly as they do to hand-written queries.

Architecture::

    ┌────────────────────────────────────────────────────────────────────┐
    │                          Repository                                │
    │                                                                    │
    │   executor: Executor       ← create_executor(engine, plugins)      │
    │   table_name, primary_key                                          │
    │                                                                    │
    │   find_by_id(key)          → dict | None                           │
    │   find_all(limit, offset)  → list[dict]                            │
    │   find_where(**eq)         → list[dict]                            │
    │   count(**eq)              → int                                   │
    │   create(data)             → dict                                  │
    │   update(key, data)        → dict   (NotFoundError if invisible)   │
    │   delete(key)              → int    (NotFoundError if invisible)   │
    │   with_transaction(trx)    → Repository bound to trx               │
    └────────────────────────────────────────────────────────────────────┘

Usage:
    >>> orders = Repository(executor, "orders", create_schema=pydantic_adapter(OrderIn))
    >>> orders.create({"tenant_id": 7, "status": "placed"})
    {'id': 1, 'tenant_id': 7, 'status': 'placed'}

Tags:
    repository, crud, executor, spine-warden
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from sqlalchemy import func, select

from warden.core.errors import NotFoundError
from warden.core.protocols import ValidationSchema
from warden.repository.validation import native_adapter


class Repository:
    """CRUD access to one table through an executor.

    Parameters:
        executor: Wrapped engine handle (or raw engine for unguarded use).
        table_name: Table the repository is bound to.
        primary_key: Key column used by ``find_by_id``/``update``/``delete``.
        create_schema, update_schema: ``{parse, safe_parse}`` validators.
            Default to the native pass-through adapter.
    """

    def __init__(
        self,
        executor: Any,
        table_name: str,
        *,
        primary_key: str = "id",
        create_schema: ValidationSchema | None = None,
        update_schema: ValidationSchema | None = None,
    ) -> None:
        self.executor = executor
        self.table_name = table_name
        self.primary_key = primary_key
        self.create_schema: ValidationSchema = create_schema or native_adapter()
        self.update_schema: ValidationSchema = update_schema or native_adapter()

    @property
    def table(self) -> Any:
        return self.executor.table(self.table_name)

    def _key_column(self) -> Any:
        return self.table.c[self.primary_key]

    def _where_equal(self, query: Any, conditions: Mapping[str, Any]) -> Any:
        table = self.table
        for column, value in conditions.items():
            query = query.where(table.c[column].is_(None) if value is None else table.c[column] == value)
        return query

    # -- Reads -------------------------------------------------------------

    def find_by_id(self, key: Any) -> dict[str, Any] | None:
        query = self.executor.select_from(self.table_name).where(self._key_column() == key)
        return self.executor.execute_one(query)

    def find_all(
        self,
        *,
        limit: int | None = None,
        offset: int | None = None,
        order_by: str | None = None,
    ) -> list[dict[str, Any]]:
        query = self.executor.select_from(self.table_name)
        query = query.order_by(self.table.c[order_by or self.primary_key])
        if limit is not None:
            query = query.limit(limit)
        if offset is not None:
            query = query.offset(offset)
        return self.executor.execute(query)

    def find_where(self, **conditions: Any) -> list[dict[str, Any]]:
        """Rows matching every ``column=value`` (``None`` matches NULL)."""
        query = self._where_equal(self.executor.select_from(self.table_name), conditions)
        return self.executor.execute(query.order_by(self._key_column()))

    def count(self, **conditions: Any) -> int:
        visible = self._where_equal(self.executor.select_from(self.table_name), conditions)
        row = self.executor.execute_one(
            select(func.count().label("count")).select_from(visible.subquery())
        )
        return int(row["count"]) if row else 0

    # -- Writes ------------------------------------------------------------

    def create(self, data: Any) -> dict[str, Any]:
        payload = self.create_schema.parse(data)
        query = self.executor.insert_into(self.table_name).values(**payload)
        if getattr(self.executor, "supports_returning", False):
            rows = self.executor.execute(query.returning(*self.table.c))
            return rows[0]
        self.executor.execute(query)
        if self.primary_key in payload:
            return self.find_by_id(payload[self.primary_key]) or payload
        return payload

    def update(self, key: Any, data: Any) -> dict[str, Any]:
        existing = self.find_by_id(key)
        if existing is None:
            raise NotFoundError(self.table_name, key)
        payload = self.update_schema.parse(data)
        if payload:
            query = (
                self.executor.update_table(self.table_name)
                .where(self._key_column() == key)
                .values(**payload)
            )
            self.executor.execute(query)
        return self.find_by_id(key) or {**existing, **payload}

    def delete(self, key: Any) -> int:
        if self.find_by_id(key) is None:
            raise NotFoundError(self.table_name, key)
        query = self.executor.delete_from(self.table_name).where(self._key_column() == key)
        return self.executor.execute(query)

    # -- Scoping -----------------------------------------------------------

    def with_transaction(self, trx: Any) -> Repository:
        """Same repository bound to a transaction handle."""
        return type(self)(
            trx,
            self.table_name,
            primary_key=self.primary_key,
            create_schema=self.create_schema,
            update_schema=self.update_schema,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(table={self.table_name!r})"


__all__ = ["Repository"]
