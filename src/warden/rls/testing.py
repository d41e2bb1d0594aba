"""
Policy testing without a database.

``PolicyTester`` evaluates an :data:`RLSSchema` directly against an
:class:`AuthContext` and in-memory rows, so policy suites run in
milliseconds and report *which* policy decided.

Examples:
    >>> tester = PolicyTester(schema)
    >>> result = tester.evaluate("orders", "delete", auth, row={"status": "shipped"})
    >>> result.allowed, result.policy_name
    (False, 'no-shipped-delete')
    >>> tester.get_filters("orders", auth).conditions
    {'tenant_id': 7}

Tags:
    rls, testing, policy, spine-warden
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from warden.core.errors import RLSPolicyEvaluationError
from warden.rls.context import AuthContext, create_rls_context
from warden.rls.policy.registry import PolicyRegistry
from warden.rls.policy.types import POLICY_OPERATIONS, PolicyEvaluationContext, PolicyType, TableConfigInput
from warden.rls.transformer.evaluation import evaluate_condition
from warden.rls.transformer.mutation import MutationGuard, PolicyDecision
from warden.rls.transformer.select import SelectTransformer

#: Result of :meth:`PolicyTester.evaluate`.
PolicyEvaluationResult = PolicyDecision


@dataclass(frozen=True)
class FilterEvaluationResult:
    """Filter predicates a read would receive.

    ``conditions`` is the merged view, first value per column. Every pair in
    ``filters`` is AND-ed into the query, so a column listed in ``conflicts``
    is constrained to two different values and the read matches no rows.
    """

    conditions: dict[str, Any] = field(default_factory=dict)
    applied_filters: tuple[str, ...] = ()
    filters: tuple[tuple[str, dict[str, Any]], ...] = ()
    conflicts: tuple[str, ...] = ()

    @property
    def matches_nothing(self) -> bool:
        return bool(self.conflicts)


@dataclass(frozen=True)
class PolicyTestResult:
    found: bool
    result: bool | None = None


class PolicyTester:
    """Evaluate policies for arbitrary contexts and rows."""

    def __init__(self, schema: Mapping[str, TableConfigInput]):
        self._registry = PolicyRegistry(schema)
        self._guard = MutationGuard(self._registry)
        self._select = SelectTransformer(self._registry)

    @property
    def registry(self) -> PolicyRegistry:
        return self._registry

    def evaluate(
        self,
        resource: str,
        operation: str,
        auth: AuthContext,
        *,
        row: Mapping[str, Any] | None = None,
        data: Mapping[str, Any] | None = None,
        meta: Mapping[str, Any] | None = None,
    ) -> PolicyEvaluationResult:
        """Decision for ``operation`` on ``resource``, with the evaluation trace.

        For ``"read"`` this evaluates deny/allow policies against ``row``;
        use :meth:`get_filters` for the predicates a read would get.
        """
        return self._guard.decide(resource, operation, auth, row=row, data=data, meta=meta)

    def get_filters(
        self,
        resource: str,
        auth: AuthContext,
        meta: Mapping[str, Any] | None = None,
    ) -> FilterEvaluationResult:
        """Filter conditions a read by ``auth`` would receive, per filter and merged."""
        if not self._registry.has_table(resource) or self._select.should_bypass(auth, resource):
            return FilterEvaluationResult()
        built = [
            (name, dict(mapping))
            for name, mapping in self._select.build_conditions(auth, resource, meta)
        ]
        conditions: dict[str, Any] = {}
        conflicts: list[str] = []
        for _, mapping in built:
            for column, value in mapping.items():
                if column not in conditions:
                    conditions[column] = value
                elif conditions[column] != value and column not in conflicts:
                    conflicts.append(column)
        return FilterEvaluationResult(
            conditions=conditions,
            applied_filters=tuple(name for name, _ in built),
            filters=tuple(built),
            conflicts=tuple(conflicts),
        )

    def test_policy(
        self,
        resource: str,
        policy_name: str,
        auth: AuthContext,
        *,
        row: Mapping[str, Any] | None = None,
        data: Mapping[str, Any] | None = None,
    ) -> PolicyTestResult:
        """Evaluate one allow/deny/validate policy by name. Errors count as ``False``."""
        candidates = [
            p
            for p in self._registry.get_policies(resource)
            if p.name == policy_name and p.type is not PolicyType.FILTER
        ]
        for operation in POLICY_OPERATIONS:
            for policy in candidates:
                if policy.operation != operation:
                    continue
                ctx = PolicyEvaluationContext(
                    auth=auth, resource=resource, operation=operation, row=row, data=data
                )
                try:
                    return PolicyTestResult(True, bool(evaluate_condition(policy, ctx)))
                except RLSPolicyEvaluationError:
                    return PolicyTestResult(True, False)
        return PolicyTestResult(False)

    def list_policies(self, resource: str) -> dict[str, list[str]]:
        """Policy names for ``resource`` grouped by type (declaration order)."""
        grouped: dict[str, list[str]] = {t.value: [] for t in PolicyType}
        for policy in sorted(self._registry.get_policies(resource), key=lambda p: p.order):
            names = grouped[policy.type.value]
            if policy.name not in names:
                names.append(policy.name)
        return grouped

    @property
    def tables(self) -> tuple[str, ...]:
        return self._registry.tables


def create_test_auth_context(subject_id: Any = "test-user", **overrides: Any) -> AuthContext:
    """AuthContext with test-friendly defaults (no roles, not system)."""
    return create_rls_context(subject_id, **overrides)


def assert_allowed(result: PolicyEvaluationResult, message: str | None = None) -> None:
    if not result.allowed:
        raise AssertionError(message or f"Expected policy to allow, but was denied: {result.reason}")


def assert_denied(result: PolicyEvaluationResult, message: str | None = None) -> None:
    if result.allowed:
        raise AssertionError(message or f"Expected policy to deny, but was allowed: {result.reason}")


def assert_policy_used(
    result: PolicyEvaluationResult, policy_name: str, message: str | None = None
) -> None:
    if result.policy_name != policy_name:
        raise AssertionError(
            message or f"Expected policy {policy_name!r} but was {result.policy_name!r}"
        )


__all__ = [
    "FilterEvaluationResult",
    "PolicyEvaluationResult",
    "PolicyTestResult",
    "PolicyTester",
    "assert_allowed",
    "assert_denied",
    "assert_policy_used",
    "create_test_auth_context",
]
