"""
Read filtering: inject filter-policy predicates into SELECT statements.

Every active filter policy for ``(resource, "read")`` contributes a
``{column: value}`` mapping. All mappings are applied with AND, so each
additional filter can only narrow the result:

    {"tenant_id": 7}             → tenant_id = 7
    {"deleted_at": None}         → deleted_at IS NULL
    {"status": ["a", "b"]}       → status IN ('a', 'b')
    {"status": []}               → false

Missing context never widens a read: either :class:`RLSContextError` is
raised (``require_context``) or the statement gets ``WHERE false``, unless
unfiltered queries were explicitly allowed.

Tags:
    rls, select, filter, sqlalchemy, spine-warden
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from sqlalchemy import false
from sqlalchemy.sql.selectable import Join

from warden.core.errors import ErrorContext, RLSContextError, RLSPolicyEvaluationError
from warden.core.logging import get_logger
from warden.rls.context import AuthContext, rls_context
from warden.rls.policy.registry import PolicyRegistry
from warden.rls.policy.types import PolicyEvaluationContext
from warden.rls.transformer.evaluation import evaluate_condition, is_policy_active

logger = get_logger(__name__)

FilterConditions = list[tuple[str, Mapping[str, Any]]]


def _find_selectable(froms: Iterable[Any], resource: str) -> Any:
    for from_ in froms:
        if isinstance(from_, Join):
            found = _find_selectable((from_.left, from_.right), resource)
            if found is not None:
                return found
        elif getattr(from_, "name", None) == resource:
            return from_
    return None


def _predicate(column: Any, value: Any) -> Any:
    if value is None:
        return column.is_(None)
    if isinstance(value, (list, tuple, set, frozenset)):
        if not value:
            return false()
        return column.in_(list(value))
    return column == value


class SelectTransformer:
    """Applies filter policies to read statements for the current context."""

    def __init__(
        self,
        registry: PolicyRegistry,
        *,
        require_context: bool = True,
        allow_unfiltered_queries: bool = False,
        bypass_roles: Iterable[str] = (),
    ):
        self._registry = registry
        self._require_context = require_context
        self._allow_unfiltered = allow_unfiltered_queries
        self._bypass_roles = frozenset(bypass_roles)

    def should_bypass(self, auth: AuthContext, resource: str) -> bool:
        if auth.is_system:
            return True
        skip = self._registry.get_skip_for(resource) | self._bypass_roles
        return bool(skip & auth.roles)

    def build_conditions(
        self,
        auth: AuthContext,
        resource: str,
        meta: Mapping[str, Any] | None = None,
    ) -> FilterConditions:
        """Evaluate active filter policies to ``(policy_name, mapping)`` pairs."""
        ctx = PolicyEvaluationContext(
            auth=auth, resource=resource, operation="read", meta=dict(meta or {})
        )
        conditions: FilterConditions = []
        for policy in self._registry.get_filters(resource):
            if not is_policy_active(policy, ctx):
                continue
            result = evaluate_condition(policy, ctx)
            if not isinstance(result, Mapping):
                raise RLSPolicyEvaluationError(
                    "read",
                    resource,
                    f"filter {policy.name!r} must return a mapping of column to value",
                    policy_name=policy.name,
                )
            conditions.append((policy.name, result))
        return conditions

    def apply_conditions(self, query: Any, resource: str, conditions: FilterConditions) -> Any:
        get_froms = getattr(query, "get_final_froms", None)
        if get_froms is None:
            raise RLSPolicyEvaluationError(
                "read", resource, f"cannot filter {type(query).__name__}; expected a SELECT"
            )
        froms = get_froms()
        selectable = _find_selectable(froms, resource)
        if selectable is None:
            if not froms:
                raise RLSPolicyEvaluationError("read", resource, "SELECT has no FROM clause")
            selectable = froms[0]

        for name, mapping in conditions:
            for column_name, value in mapping.items():
                try:
                    column = selectable.c[column_name]
                except KeyError as e:
                    raise RLSPolicyEvaluationError(
                        "read",
                        resource,
                        f"filter {name!r} references unknown column {column_name!r}",
                        policy_name=name,
                        cause=e,
                    ) from e
                query = query.where(_predicate(column, value))
        return query

    def transform(self, query: Any, resource: str, meta: Mapping[str, Any] | None = None) -> Any:
        """Return ``query`` narrowed by every applicable filter policy."""
        if not self._registry.has_table(resource):
            return query

        auth = rls_context.get_current_or_null()
        if auth is None:
            if self._require_context:
                raise RLSContextError(context=ErrorContext(resource=resource, operation="read"))
            if self._allow_unfiltered:
                logger.warning("rls_unfiltered_read", resource=resource)
                return query
            logger.warning("rls_missing_context_deny_all", resource=resource)
            return query.where(false())

        if self.should_bypass(auth, resource):
            logger.debug(
                "rls_bypass", resource=resource, operation="read", subject_id=auth.subject_id
            )
            return query

        conditions = self.build_conditions(auth, resource, meta)
        if not conditions:
            return query
        logger.debug(
            "rls_filter_applied",
            resource=resource,
            subject_id=auth.subject_id,
            filters=[name for name, _ in conditions],
        )
        return self.apply_conditions(query, resource, conditions)


__all__ = ["SelectTransformer"]
