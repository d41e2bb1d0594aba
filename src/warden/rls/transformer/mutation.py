"""
Write authorization: decide create/update/delete against policy buckets.

Decision order for one ``(resource, operation)``:
    ::

        not governed / system / bypass role ─────────────► allow
        active deny whose condition holds ───────────────► reject (names policy)
        create/update: any active validate fails ────────► reject (names policy)
        active allow whose condition holds ──────────────► allow
        default_deny (table default) ────────────────────► reject
        otherwise ───────────────────────────────────────► allow

``decide`` is pure (identity passed in) and returns a traced
:class:`PolicyDecision`; the ``check_*`` methods read the current
identity and raise :class:`RLSPolicyViolation` on rejection.

Tags:
    rls, mutation, guard, authorization, spine-warden
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from warden.core.errors import ErrorContext, RLSContextError, RLSPolicyViolation
from warden.rls.context import AuthContext, rls_context
from warden.rls.policy.registry import PolicyRegistry
from warden.rls.policy.types import WRITE_OPERATIONS, PolicyEvaluationContext
from warden.rls.transformer.evaluation import evaluate_condition, is_policy_active

DecisionType = Literal["allow", "deny", "default"]


@dataclass(frozen=True)
class EvaluatedPolicy:
    name: str
    type: str
    result: bool


@dataclass(frozen=True)
class PolicyDecision:
    """Outcome of one evaluation, with every policy consulted on the way."""

    allowed: bool
    decision_type: DecisionType
    reason: str
    policy_name: str | None = None
    evaluated_policies: tuple[EvaluatedPolicy, ...] = field(default_factory=tuple)


class MutationGuard:
    """Enforces allow/deny/validate policies on writes (and row-level reads)."""

    def __init__(
        self,
        registry: PolicyRegistry,
        *,
        require_context: bool = True,
        bypass_roles: Iterable[str] = (),
    ):
        self._registry = registry
        self._require_context = require_context
        self._bypass_roles = frozenset(bypass_roles)

    # ── Pure evaluation ──────────────────────────────────────────

    def decide(
        self,
        resource: str,
        operation: str,
        auth: AuthContext,
        *,
        row: Mapping[str, Any] | None = None,
        data: Mapping[str, Any] | None = None,
        meta: Mapping[str, Any] | None = None,
    ) -> PolicyDecision:
        registry = self._registry
        if not registry.has_table(resource):
            return PolicyDecision(True, "default", "Table has no RLS policies")
        if auth.is_system:
            return PolicyDecision(True, "allow", "System user bypasses RLS")
        bypass = (registry.get_skip_for(resource) | self._bypass_roles) & auth.roles
        if bypass:
            return PolicyDecision(True, "allow", f"Role bypass: {sorted(bypass)[0]}")

        ctx = PolicyEvaluationContext(
            auth=auth,
            resource=resource,
            operation=operation,
            row=row,
            data=data,
            meta=dict(meta or {}),
        )
        evaluated: list[EvaluatedPolicy] = []

        for policy in registry.get_denies(resource, operation):
            if not is_policy_active(policy, ctx):
                continue
            result = bool(evaluate_condition(policy, ctx))
            evaluated.append(EvaluatedPolicy(policy.name, "deny", result))
            if result:
                return PolicyDecision(
                    False,
                    "deny",
                    f"Denied by policy: {policy.name}",
                    policy.name,
                    tuple(evaluated),
                )

        if operation in WRITE_OPERATIONS:
            for policy in registry.get_validates(resource, operation):
                if not is_policy_active(policy, ctx):
                    continue
                result = bool(evaluate_condition(policy, ctx))
                evaluated.append(EvaluatedPolicy(policy.name, "validate", result))
                if not result:
                    return PolicyDecision(
                        False,
                        "deny",
                        f"Validation failed: {policy.name}",
                        policy.name,
                        tuple(evaluated),
                    )

        for policy in registry.get_allows(resource, operation):
            if not is_policy_active(policy, ctx):
                continue
            result = bool(evaluate_condition(policy, ctx))
            evaluated.append(EvaluatedPolicy(policy.name, "allow", result))
            if result:
                return PolicyDecision(
                    True,
                    "allow",
                    f"Allowed by policy: {policy.name}",
                    policy.name,
                    tuple(evaluated),
                )

        if registry.has_default_deny(resource):
            return PolicyDecision(
                False, "default", "No allow policies matched (default deny)", None, tuple(evaluated)
            )
        return PolicyDecision(
            True, "default", "No policies matched (default allow)", None, tuple(evaluated)
        )

    # ── Context-bound checks ─────────────────────────────────────

    def _enforce(
        self,
        resource: str,
        operation: str,
        *,
        row: Mapping[str, Any] | None = None,
        data: Mapping[str, Any] | None = None,
    ) -> PolicyDecision:
        if not self._registry.has_table(resource):
            return PolicyDecision(True, "default", "Table has no RLS policies")
        auth = rls_context.get_current_or_null()
        if auth is None:
            if self._require_context:
                raise RLSContextError(context=ErrorContext(resource=resource, operation=operation))
            raise RLSPolicyViolation(operation, resource, "No RLS context")
        decision = self.decide(resource, operation, auth, row=row, data=data)
        if not decision.allowed:
            raise RLSPolicyViolation(
                operation,
                resource,
                decision.reason,
                policy_name=decision.policy_name,
                subject_id=auth.subject_id,
            )
        return decision

    def check_create(self, resource: str, data: Mapping[str, Any]) -> PolicyDecision:
        return self._enforce(resource, "create", data=data)

    def check_update(
        self, resource: str, old_row: Mapping[str, Any], data: Mapping[str, Any]
    ) -> PolicyDecision:
        return self._enforce(resource, "update", row=old_row, data=data)

    def check_delete(self, resource: str, old_row: Mapping[str, Any]) -> PolicyDecision:
        return self._enforce(resource, "delete", row=old_row)

    def check_read(self, resource: str, row: Mapping[str, Any]) -> bool:
        """Would ``row`` be visible to the current caller?

        Visible when no deny matches, the row satisfies every active filter,
        and either no read allows exist or one of them matches.
        """
        registry = self._registry
        if not registry.has_table(resource):
            return True
        auth = rls_context.get_current_or_null()
        if auth is None:
            return False
        if auth.is_system or (registry.get_skip_for(resource) | self._bypass_roles) & auth.roles:
            return True

        ctx = PolicyEvaluationContext(auth=auth, resource=resource, operation="read", row=row)
        for policy in registry.get_denies(resource, "read"):
            if is_policy_active(policy, ctx) and evaluate_condition(policy, ctx):
                return False

        for policy in registry.get_filters(resource):
            if not is_policy_active(policy, ctx):
                continue
            conditions = evaluate_condition(policy, ctx)
            if not isinstance(conditions, Mapping):
                return False
            for column, expected in conditions.items():
                actual = row.get(column)
                if isinstance(expected, (list, tuple, set, frozenset)):
                    if actual not in expected:
                        return False
                elif actual != expected:
                    return False

        allows = [p for p in registry.get_allows(resource, "read") if is_policy_active(p, ctx)]
        if not allows:
            return True
        return any(evaluate_condition(p, ctx) for p in allows)


__all__ = ["EvaluatedPolicy", "MutationGuard", "PolicyDecision"]
