"""
Shared pytest fixtures and configuration for spine-warden tests.

This module provides:
- Settings cache isolation between tests
- An in-memory SQLite engine with a multi-tenant ``orders`` table
- Sample RLS schemas and auth contexts

Usage:
    Fixtures are auto-discovered by pytest. Use them as function arguments:

    def test_reads_are_filtered(orm, tenant_7):
        ...
"""

from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy import Column, Integer, MetaData, String, Table

from warden.core.settings import clear_settings_cache
from warden.engine import SQLAlchemyEngine, create_warden_engine
from warden.rls import (
    AuthContext,
    allow,
    create_rls_context,
    define_rls_schema,
    deny,
    filter_,
)


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)
        if "integration" in str(test_path):
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Settings Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Drop cached settings and any WARDEN_* overrides around each test."""
    import os

    for key in list(os.environ):
        if key.startswith("WARDEN_"):
            monkeypatch.delenv(key, raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
def metadata() -> MetaData:
    md = MetaData()
    Table(
        "orders",
        md,
        Column("id", Integer, primary_key=True),
        Column("tenant_id", Integer, nullable=False),
        Column("owner_id", Integer),
        Column("status", String(20), nullable=False, default="placed"),
        Column("deleted_at", String(40)),
    )
    Table(
        "audit_log",
        md,
        Column("id", Integer, primary_key=True),
        Column("message", String(200)),
    )
    return md


@pytest.fixture
def engine(metadata: MetaData) -> Generator[SQLAlchemyEngine, None, None]:
    """In-memory SQLite engine with the tables created and seeded."""
    eng = create_warden_engine("sqlite://", metadata=metadata)
    metadata.create_all(eng.bind)
    orders = metadata.tables["orders"]
    eng.execute(
        orders.insert().values(
            [
                {"id": 1, "tenant_id": 7, "owner_id": 1, "status": "placed", "deleted_at": None},
                {"id": 2, "tenant_id": 7, "owner_id": 2, "status": "shipped", "deleted_at": None},
                {"id": 3, "tenant_id": 8, "owner_id": 3, "status": "placed", "deleted_at": None},
                {"id": 4, "tenant_id": 7, "owner_id": 1, "status": "placed", "deleted_at": "2026-01-01"},
            ]
        )
    )
    yield eng
    eng.bind.dispose()


# =============================================================================
# RLS Fixtures
# =============================================================================


@pytest.fixture
def orders_schema() -> dict[str, Any]:
    """Tenant filter, open writes, shipped orders cannot be deleted."""
    return define_rls_schema(
        {
            "orders": [
                filter_("read", lambda ctx: {"tenant_id": ctx.tenant_id}, name="tenant-filter"),
                allow(["create", "update"], lambda ctx: True, name="writes-open"),
                deny(
                    "delete",
                    lambda ctx: ctx.row is not None and ctx.row["status"] == "shipped",
                    name="no-shipped-delete",
                ),
                allow("delete", lambda ctx: True, name="delete-open"),
            ],
        }
    )


@pytest.fixture
def tenant_7() -> AuthContext:
    return create_rls_context(1, tenant_id=7, roles=["user"])


@pytest.fixture
def tenant_8() -> AuthContext:
    return create_rls_context(3, tenant_id=8, roles=["user"])


@pytest.fixture
def admin() -> AuthContext:
    return create_rls_context(99, tenant_id=7, roles=["admin"])
