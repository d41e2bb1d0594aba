"""
Declarative policy builders.

Examples:
    >>> allow("read", lambda ctx: ctx.row["owner_id"] == ctx.subject_id)
    >>> deny("delete", lambda ctx: ctx.row["status"] == "shipped", name="no-shipped")
    >>> filter_("read", lambda ctx: {"tenant_id": ctx.tenant_id})
    >>> validate("all", lambda ctx: ctx.data.get("tenant_id") == ctx.tenant_id)

    Activation wrappers compose; every layer must pass:

    >>> when_environment(["production"], when_feature("strict_audit", deny("delete")))

Tags:
    rls, policy, builder, dsl, spine-warden
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import datetime
from typing import TYPE_CHECKING

from warden.core.errors import RLSSchemaError
from warden.rls.policy.types import (
    WRITE_OPERATIONS,
    ActivationCondition,
    Policy,
    PolicyCondition,
    PolicyType,
    normalize_operations,
)

if TYPE_CHECKING:
    from warden.rls.context import AuthContext

DENY_DEFAULT_PRIORITY = 100


def allow(
    operations: str | Iterable[str],
    condition: PolicyCondition,
    *,
    name: str | None = None,
    priority: int = 0,
    when: ActivationCondition | None = None,
) -> Policy:
    """Grant ``operations`` when ``condition(ctx)`` is truthy."""
    return Policy(
        type=PolicyType.ALLOW,
        operations=normalize_operations(operations),
        condition=condition,
        priority=priority,
        name=name,
        activation_condition=when,
    )


def deny(
    operations: str | Iterable[str],
    condition: PolicyCondition | None = None,
    *,
    name: str | None = None,
    priority: int = DENY_DEFAULT_PRIORITY,
    when: ActivationCondition | None = None,
) -> Policy:
    """Reject ``operations`` when ``condition(ctx)`` is truthy (always, if omitted)."""
    return Policy(
        type=PolicyType.DENY,
        operations=normalize_operations(operations),
        condition=condition,
        priority=priority,
        name=name,
        activation_condition=when,
    )


def filter_(
    operation: str,
    condition: PolicyCondition,
    *,
    name: str | None = None,
    priority: int = 0,
    when: ActivationCondition | None = None,
) -> Policy:
    """Read filter. ``condition(ctx)`` returns a ``{column: value}`` mapping.

    ``"all"`` is accepted and means ``"read"``.
    """
    if operation not in ("read", "all"):
        raise RLSSchemaError(f"filter policies apply to 'read' only, got {operation!r}")
    return Policy(
        type=PolicyType.FILTER,
        operations=frozenset({"read"}),
        condition=condition,
        priority=priority,
        name=name,
        activation_condition=when,
    )


def validate(
    operation: str,
    condition: PolicyCondition,
    *,
    name: str | None = None,
    priority: int = 0,
    when: ActivationCondition | None = None,
) -> Policy:
    """Incoming data check for ``"create"``, ``"update"`` or ``"all"`` (both)."""
    if operation == "all":
        ops = frozenset(WRITE_OPERATIONS)
    elif operation in WRITE_OPERATIONS:
        ops = frozenset({operation})
    else:
        raise RLSSchemaError(f"validate policies apply to create/update only, got {operation!r}")
    return Policy(
        type=PolicyType.VALIDATE,
        operations=ops,
        condition=condition,
        priority=priority,
        name=name,
        activation_condition=when,
    )


# ── Activation wrappers ─────────────────────────────────────────


def _chain(policy: Policy, check: Callable[[AuthContext], bool]) -> Policy:
    existing = policy.activation_condition

    def activation(auth: AuthContext) -> bool:
        if not check(auth):
            return False
        return existing(auth) if existing is not None else True

    return replace(policy, activation_condition=activation)


def when_environment(environments: Iterable[str], policy: Policy) -> Policy:
    """Activate ``policy`` only when ``auth.environment`` is one of ``environments``."""
    allowed = frozenset(environments)
    return _chain(policy, lambda auth: (auth.environment or "") in allowed)


def when_feature(feature: str, policy: Policy) -> Policy:
    """Activate ``policy`` only when ``feature`` is enabled on the context."""
    return _chain(policy, lambda auth: auth.has_feature(feature))


def when_time_range(start_hour: int, end_hour: int, policy: Policy) -> Policy:
    """Activate ``policy`` for ``start_hour <= hour < end_hour`` of ``auth.timestamp``.

    ``start_hour > end_hour`` wraps past midnight (22 → 6 covers 22:00-05:59).
    """

    def in_range(auth: AuthContext) -> bool:
        hour = (auth.timestamp or datetime.now()).hour
        if start_hour > end_hour:
            return hour >= start_hour or hour < end_hour
        return start_hour <= hour < end_hour

    return _chain(policy, in_range)


def when_condition(condition: ActivationCondition, policy: Policy) -> Policy:
    """Activate ``policy`` only when ``condition(auth)`` holds."""
    return _chain(policy, lambda auth: bool(condition(auth)))


__all__ = [
    "DENY_DEFAULT_PRIORITY",
    "allow",
    "deny",
    "filter_",
    "validate",
    "when_condition",
    "when_environment",
    "when_feature",
    "when_time_range",
]
