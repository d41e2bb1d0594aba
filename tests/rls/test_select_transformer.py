"""
Tests for read filtering: predicates added to SELECT statements.
"""

from __future__ import annotations

import pytest
from sqlalchemy import select

from warden.core.errors import RLSContextError, RLSPolicyEvaluationError
from warden.rls import (
    PolicyRegistry,
    SelectTransformer,
    TableRLSConfig,
    create_rls_context,
    filter_,
    rls_context,
    when_feature,
)


def _ids(engine, query):
    return sorted(r["id"] for r in engine.execute(query))


@pytest.fixture
def orders(metadata):
    return metadata.tables["orders"]


@pytest.fixture
def transformer():
    registry = PolicyRegistry(
        {
            "orders": TableRLSConfig(
                policies=[filter_("read", lambda ctx: {"tenant_id": ctx.tenant_id}, name="tenant")],
                skip_for=["auditor"],
            )
        }
    )
    return SelectTransformer(registry, bypass_roles=["admin"])


class TestTransform:
    def test_adds_tenant_predicate(self, engine, orders, transformer, tenant_7):
        with rls_context.scope(tenant_7):
            query = transformer.transform(select(orders), "orders")
        assert "tenant_id" in str(query)
        assert _ids(engine, query) == [1, 2, 4]

    def test_ungoverned_table_unchanged(self, metadata, transformer, tenant_7):
        query = select(metadata.tables["audit_log"])
        with rls_context.scope(tenant_7):
            assert transformer.transform(query, "audit_log") is query

    def test_missing_context_raises_when_required(self, orders, transformer):
        with pytest.raises(RLSContextError) as exc_info:
            transformer.transform(select(orders), "orders")
        assert exc_info.value.context.resource == "orders"

    def test_missing_context_matches_nothing_when_not_required(self, engine, orders):
        registry = PolicyRegistry({"orders": [filter_("read", lambda ctx: {"tenant_id": 7})]})
        transformer = SelectTransformer(registry, require_context=False)
        assert _ids(engine, transformer.transform(select(orders), "orders")) == []

    def test_missing_context_unfiltered_when_allowed(self, engine, orders):
        registry = PolicyRegistry({"orders": [filter_("read", lambda ctx: {"tenant_id": 7})]})
        transformer = SelectTransformer(
            registry, require_context=False, allow_unfiltered_queries=True
        )
        query = select(orders)
        assert transformer.transform(query, "orders") is query

    def test_system_bypasses(self, orders, transformer, tenant_7):
        query = select(orders)
        with rls_context.scope(tenant_7.as_system()):
            assert transformer.transform(query, "orders") is query

    def test_bypass_role(self, orders, transformer, admin):
        query = select(orders)
        with rls_context.scope(admin):
            assert transformer.transform(query, "orders") is query

    def test_table_skip_for_role(self, orders, transformer):
        query = select(orders)
        with rls_context.scope(create_rls_context(5, tenant_id=7, roles=["auditor"])):
            assert transformer.transform(query, "orders") is query

    def test_multiple_filters_combine_with_and(self, engine, orders):
        registry = PolicyRegistry(
            {
                "orders": [
                    filter_("read", lambda ctx: {"tenant_id": ctx.tenant_id}),
                    filter_("read", lambda ctx: {"deleted_at": None}),
                ]
            }
        )
        transformer = SelectTransformer(registry)
        with rls_context.scope(create_rls_context(1, tenant_id=7)):
            query = transformer.transform(select(orders), "orders")
        assert _ids(engine, query) == [1, 2]

    def test_sequence_value_becomes_in(self, engine, orders):
        registry = PolicyRegistry({"orders": [filter_("read", lambda ctx: {"id": [1, 3]})]})
        with rls_context.scope(create_rls_context(1)):
            query = SelectTransformer(registry).transform(select(orders), "orders")
        assert _ids(engine, query) == [1, 3]

    def test_empty_sequence_matches_nothing(self, engine, orders):
        registry = PolicyRegistry({"orders": [filter_("read", lambda ctx: {"id": []})]})
        with rls_context.scope(create_rls_context(1)):
            query = SelectTransformer(registry).transform(select(orders), "orders")
        assert _ids(engine, query) == []

    def test_inactive_filter_is_skipped(self, engine, orders):
        registry = PolicyRegistry(
            {"orders": [when_feature("strict", filter_("read", lambda ctx: {"tenant_id": 8}))]}
        )
        transformer = SelectTransformer(registry)
        with rls_context.scope(create_rls_context(1)):
            assert _ids(engine, transformer.transform(select(orders), "orders")) == [1, 2, 3, 4]
        with rls_context.scope(create_rls_context(1, features=["strict"])):
            assert _ids(engine, transformer.transform(select(orders), "orders")) == [3]

    def test_filter_applies_to_joined_table(self, engine, metadata, transformer, tenant_7):
        orders = metadata.tables["orders"]
        audit = metadata.tables["audit_log"]
        query = select(orders.c.id).select_from(audit.join(orders, audit.c.id == orders.c.id))
        with rls_context.scope(tenant_7):
            transformed = transformer.transform(query, "orders")
        assert "orders.tenant_id" in str(transformed)


class TestErrors:
    def test_unknown_column(self, orders):
        registry = PolicyRegistry({"orders": [filter_("read", lambda ctx: {"nope": 1}, name="bad")]})
        with rls_context.scope(create_rls_context(1)):
            with pytest.raises(RLSPolicyEvaluationError) as exc_info:
                SelectTransformer(registry).transform(select(orders), "orders")
        assert exc_info.value.policy_name == "bad"

    def test_filter_must_return_mapping(self, orders):
        registry = PolicyRegistry({"orders": [filter_("read", lambda ctx: True)]})
        with rls_context.scope(create_rls_context(1)):
            with pytest.raises(RLSPolicyEvaluationError):
                SelectTransformer(registry).transform(select(orders), "orders")

    def test_condition_exception_is_wrapped(self, orders):
        registry = PolicyRegistry({"orders": [filter_("read", lambda ctx: 1 / 0, name="div")]})
        with rls_context.scope(create_rls_context(1)):
            with pytest.raises(RLSPolicyEvaluationError) as exc_info:
                SelectTransformer(registry).transform(select(orders), "orders")
        assert isinstance(exc_info.value.__cause__, ZeroDivisionError)

    def test_async_condition_rejected(self, orders):
        async def condition(ctx):
            return {"tenant_id": 1}

        registry = PolicyRegistry({"orders": [filter_("read", condition)]})
        with rls_context.scope(create_rls_context(1)):
            with pytest.raises(RLSPolicyEvaluationError, match="awaitable"):
                SelectTransformer(registry).transform(select(orders), "orders")

    def test_non_select_rejected(self, orders):
        registry = PolicyRegistry({"orders": [filter_("read", lambda ctx: {"tenant_id": 1})]})
        with rls_context.scope(create_rls_context(1)):
            with pytest.raises(RLSPolicyEvaluationError, match="expected a SELECT"):
                SelectTransformer(registry).transform(orders.delete(), "orders")
