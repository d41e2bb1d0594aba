"""
SQLAlchemy Core adapter implementing the ``QueryEngine`` contract.

Entry points return generative SQLAlchemy statements (``Select``, ``Insert``,
``Update``, ``Delete``) that callers refine with ``.where()``, ``.values()``
and friends before handing them back to :meth:`SQLAlchemyEngine.execute`.
Scoped handles (transaction, schema, CTE) are new ``SQLAlchemyEngine``
instances that share metadata and, inside a transaction, the connection.

Architecture:
    ::

        SQLAlchemyEngine(bind, metadata)
          │
          ├── select_from("orders")   → select(orders)
          ├── insert_into("orders")   → insert(orders)
          ├── update_table("orders")  → update(orders)
          ├── delete_from("orders")   → delete(orders)
          ├── replace_into("orders")  → INSERT OR REPLACE (SQLite)
          ├── merge_into("orders")    → dialect insert (on_conflict_do_update)
          │
          ├── transaction(fn)         → fn(handle bound to one Connection)
          ├── with_schema("t42")      → handle resolving tables in schema t42
          └── with_cte("recent", fn)  → handle where "recent" resolves to the CTE

Examples:
    >>> engine = create_warden_engine("sqlite://", metadata=metadata)
    >>> stmt = engine.select_from("orders").where(engine.table("orders").c.id == 1)
    >>> engine.execute_one(stmt)
    {'id': 1, 'tenant_id': 7, 'status': 'placed'}

Tags:
    sqlalchemy, engine, adapter, spine-warden
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any, TypeVar

from sqlalchemy import (
    Connection,
    Engine,
    MetaData,
    Table,
    delete,
    insert,
    inspect,
    select,
    update,
)
from sqlalchemy import create_engine as _sa_create_engine
from sqlalchemy import event
from sqlalchemy.pool import StaticPool

from warden.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class SQLAlchemyEngine:
    """Query engine backed by a SQLAlchemy ``Engine``.

    Tables are looked up in ``metadata`` first and reflected on demand.
    Outside :meth:`transaction`, every :meth:`execute` runs in its own
    ``engine.begin()`` block.
    """

    def __init__(
        self,
        bind: Engine,
        metadata: MetaData | None = None,
        *,
        schema: str | None = None,
        ctes: Mapping[str, Any] | None = None,
        connection: Connection | None = None,
    ):
        self._bind = bind
        self._metadata = metadata if metadata is not None else MetaData()
        self._schema = schema
        self._ctes: dict[str, Any] = dict(ctes or {})
        self._connection = connection

    # ── Introspection ────────────────────────────────────────────

    @property
    def bind(self) -> Engine:
        return self._bind

    @property
    def metadata(self) -> MetaData:
        return self._metadata

    @property
    def schema(self) -> str | None:
        return self._schema

    @property
    def dialect_name(self) -> str:
        return self._bind.dialect.name

    @property
    def in_transaction(self) -> bool:
        return self._connection is not None

    @property
    def supports_returning(self) -> bool:
        dialect = self._bind.dialect
        return bool(getattr(dialect, "insert_returning", False))

    def table(self, name: str) -> Any:
        """Resolve a table (or CTE) by name."""
        if name in self._ctes:
            return self._ctes[name]
        key = f"{self._schema}.{name}" if self._schema else name
        table = self._metadata.tables.get(key)
        if table is None:
            table = Table(
                name,
                self._metadata,
                schema=self._schema,
                autoload_with=self._connection if self._connection is not None else self._bind,
            )
        return table

    def table_names(self) -> list[str]:
        """Known table names: declared metadata plus what the database reports."""
        names = {t.name for t in self._metadata.tables.values() if t.schema == self._schema}
        inspector = inspect(self._connection if self._connection is not None else self._bind)
        names.update(inspector.get_table_names(schema=self._schema))
        return sorted(names)

    # ── Entry points ─────────────────────────────────────────────

    def select_from(self, table: str) -> Any:
        return select(self.table(table))

    def insert_into(self, table: str) -> Any:
        return insert(self.table(table))

    def update_table(self, table: str) -> Any:
        return update(self.table(table))

    def delete_from(self, table: str) -> Any:
        return delete(self.table(table))

    def replace_into(self, table: str) -> Any:
        return insert(self.table(table)).prefix_with("OR REPLACE", dialect="sqlite")

    def merge_into(self, table: str) -> Any:
        """Dialect insert exposing ``on_conflict_do_update`` / ``on_conflict_do_nothing``."""
        name = self.dialect_name
        if name == "postgresql":
            from sqlalchemy.dialects.postgresql import insert as dialect_insert
        elif name == "sqlite":
            from sqlalchemy.dialects.sqlite import insert as dialect_insert
        else:
            return insert(self.table(table))
        return dialect_insert(self.table(table))

    # ── Scoping ──────────────────────────────────────────────────

    def _derive(self, **overrides: Any) -> SQLAlchemyEngine:
        params: dict[str, Any] = {
            "schema": self._schema,
            "ctes": self._ctes,
            "connection": self._connection,
        }
        params.update(overrides)
        return SQLAlchemyEngine(self._bind, self._metadata, **params)

    def transaction(self, fn: Callable[[SQLAlchemyEngine], T]) -> T:
        """Run ``fn`` with a handle bound to a single transaction.

        Commits when ``fn`` returns, rolls back when it raises. Nested calls
        open a SAVEPOINT on the same connection.
        """
        if self._connection is not None:
            with self._connection.begin_nested():
                return fn(self._derive())
        with self._bind.begin() as conn:
            return fn(self._derive(connection=conn))

    def with_schema(self, schema: str) -> SQLAlchemyEngine:
        return self._derive(schema=schema)

    def with_cte(self, name: str, fn: Callable[[SQLAlchemyEngine], Any]) -> SQLAlchemyEngine:
        """Return a handle on which ``name`` resolves to ``fn(self)`` as a CTE."""
        cte = fn(self).cte(name)
        return self._derive(ctes={**self._ctes, name: cte})

    def with_recursive(
        self,
        name: str,
        fn: Callable[[SQLAlchemyEngine], Any],
        step: Callable[[SQLAlchemyEngine, Any], Any] | None = None,
    ) -> SQLAlchemyEngine:
        """Recursive CTE: ``fn`` builds the anchor, ``step`` the recursive term.

        ``step`` receives a handle on which ``name`` already resolves to the
        CTE, plus the CTE itself, and its result is ``UNION ALL``-ed on.
        """
        cte = fn(self).cte(name, recursive=True)
        if step is not None:
            cte = cte.union_all(step(self._derive(ctes={**self._ctes, name: cte}), cte))
        return self._derive(ctes={**self._ctes, name: cte})

    # ── Execution ────────────────────────────────────────────────

    @staticmethod
    def _run(conn: Connection, query: Any) -> list[dict[str, Any]] | int:
        result = conn.execute(query)
        if result.returns_rows:
            return [dict(row) for row in result.mappings()]
        return result.rowcount

    def execute(self, query: Any) -> list[dict[str, Any]] | int:
        """Execute a statement.

        Returns:
            Rows as dicts for statements that return rows, otherwise the
            affected-row count.
        """
        if self._connection is not None:
            return self._run(self._connection, query)
        with self._bind.begin() as conn:
            return self._run(conn, query)

    def execute_one(self, query: Any) -> dict[str, Any] | None:
        rows = self.execute(query)
        if isinstance(rows, list):
            return rows[0] if rows else None
        return None

    def __repr__(self) -> str:
        return (
            f"SQLAlchemyEngine(dialect={self.dialect_name!r}, schema={self._schema!r}, "
            f"in_transaction={self.in_transaction})"
        )


def create_warden_engine(
    url: str = "sqlite://",
    *,
    metadata: MetaData | None = None,
    echo: bool = False,
    pool_size: int | None = None,
    max_overflow: int | None = None,
    **kwargs: Any,
) -> SQLAlchemyEngine:
    """Create a :class:`SQLAlchemyEngine` with sane defaults.

    Parameters
    ----------
    url:
        Database URL (``sqlite://``, ``postgresql://…``, etc.)
    metadata:
        Declared tables; anything missing is reflected on first use.
    echo:
        If ``True``, log all SQL to stdout.
    pool_size, max_overflow:
        Connection pool parameters (ignored for SQLite).
    **kwargs:
        Extra arguments forwarded to ``sqlalchemy.create_engine``.
    """
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        # In-memory databases live on one connection
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs.setdefault("poolclass", StaticPool)

        bind = _sa_create_engine(url, echo=echo, **kwargs)

        @event.listens_for(bind, "connect")
        def _set_sqlite_pragma(dbapi_connection: Any, _rec: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    else:
        pool_kwargs: dict[str, Any] = {}
        if pool_size is not None:
            pool_kwargs["pool_size"] = pool_size
        if max_overflow is not None:
            pool_kwargs["max_overflow"] = max_overflow
        bind = _sa_create_engine(url, echo=echo, **pool_kwargs, **kwargs)

    logger.debug("engine_created", dialect=bind.dialect.name)
    return SQLAlchemyEngine(bind, metadata)


__all__ = ["SQLAlchemyEngine", "create_warden_engine"]
