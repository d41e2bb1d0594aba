"""
Reusable policy bundles and common patterns.

A :class:`ReusablePolicy` is a named, ordered list of policies that can be
shared across resources, composed with other bundles, extended, or have
individual rules replaced by name.

Examples:
    >>> orders_policies = compose_policies(
    ...     "orders",
    ...     [
    ...         create_tenant_isolation_policy(),
    ...         create_soft_delete_policy(),
    ...         create_admin_policy(["admin"]),
    ...     ],
    ... )
    >>> schema = define_rls_schema({"orders": orders_policies.to_table_config()})

Patterns:
    ==============================  ==========================================
    create_tenant_isolation_policy  filter by tenant (priority 1000) + validate
                                    tenant on create/update
    create_ownership_policy         allow owner; optional no-delete deny
    create_soft_delete_policy       hide deleted rows (900); forbid hard delete
    create_status_access_policy     public statuses; editable/deletable states
    create_admin_policy             allow everything for admin roles (500)
    ==============================  ==========================================

Tags:
    rls, policy, composition, patterns, spine-warden
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from warden.rls.policy.builder import allow, deny, filter_, validate
from warden.rls.policy.types import Policy, PolicyEvaluationContext, TableRLSConfig

Condition = Callable[[PolicyEvaluationContext], Any]


@dataclass(frozen=True)
class ReusablePolicy:
    """Named bundle of policies."""

    name: str
    policies: tuple[Policy, ...]
    description: str | None = None
    tags: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "policies", tuple(self.policies))
        object.__setattr__(self, "tags", tuple(self.tags))

    def to_table_config(
        self,
        *,
        default_deny: bool = True,
        skip_for: Iterable[str] = (),
        extends: Iterable[str] = (),
    ) -> TableRLSConfig:
        return TableRLSConfig(
            policies=self.policies,
            extends=tuple(extends),
            default_deny=default_deny,
            skip_for=frozenset(skip_for),
        )


# =============================================================================
# DEFINITION HELPERS
# =============================================================================


def define_policy(
    name: str,
    policies: Sequence[Policy],
    *,
    description: str | None = None,
    tags: Iterable[str] = (),
) -> ReusablePolicy:
    return ReusablePolicy(name=name, policies=tuple(policies), description=description, tags=tuple(tags))


def define_filter_policy(name: str, fn: Condition, *, priority: int = 0) -> ReusablePolicy:
    return ReusablePolicy(name, (filter_("read", fn, name=f"{name}-filter", priority=priority),))


def define_allow_policy(
    name: str, operations: str | Iterable[str], condition: Condition, *, priority: int = 0
) -> ReusablePolicy:
    return ReusablePolicy(name, (allow(operations, condition, name=f"{name}-allow", priority=priority),))


def define_deny_policy(
    name: str,
    operations: str | Iterable[str],
    condition: Condition | None = None,
    *,
    priority: int = 100,
) -> ReusablePolicy:
    return ReusablePolicy(name, (deny(operations, condition, name=f"{name}-deny", priority=priority),))


def define_validate_policy(
    name: str, operation: str, condition: Condition, *, priority: int = 0
) -> ReusablePolicy:
    return ReusablePolicy(
        name, (validate(operation, condition, name=f"{name}-validate", priority=priority),)
    )


def define_combined_policy(
    name: str,
    *,
    read_filter: Condition | None = None,
    allows: Mapping[str, Condition] | None = None,
    denies: Mapping[str, Condition] | None = None,
    validates: Mapping[str, Condition] | None = None,
) -> ReusablePolicy:
    """One bundle from per-operation conditions.

    Policy names: ``{name}-filter``, ``{name}-allow-{op}``,
    ``{name}-deny-{op}``, ``{name}-validate-{op}``.
    """
    policies: list[Policy] = []
    if read_filter is not None:
        policies.append(filter_("read", read_filter, name=f"{name}-filter"))
    for op, condition in (allows or {}).items():
        policies.append(allow(op, condition, name=f"{name}-allow-{op}"))
    for op, condition in (denies or {}).items():
        policies.append(deny(op, condition, name=f"{name}-deny-{op}", priority=100))
    for op in ("create", "update"):
        condition = (validates or {}).get(op)
        if condition is not None:
            policies.append(validate(op, condition, name=f"{name}-validate-{op}"))
    return ReusablePolicy(name, tuple(policies))


# =============================================================================
# COMPOSITION
# =============================================================================


def compose_policies(name: str, bundles: Sequence[ReusablePolicy]) -> ReusablePolicy:
    """Union of bundles, preserving each bundle's order and the bundle order."""
    policies: list[Policy] = []
    tags: list[str] = []
    for bundle in bundles:
        policies.extend(bundle.policies)
        tags.extend(t for t in bundle.tags if t not in tags)
    return ReusablePolicy(
        name=name,
        policies=tuple(policies),
        description=f"Composed from: {', '.join(b.name for b in bundles)}",
        tags=tuple(tags),
    )


def extend_policy(base: ReusablePolicy, additional: Sequence[Policy]) -> ReusablePolicy:
    return ReusablePolicy(
        name=f"{base.name}_extended",
        policies=base.policies + tuple(additional),
        description=base.description,
        tags=base.tags,
    )


def override_policy(base: ReusablePolicy, overrides: Mapping[str, Policy]) -> ReusablePolicy:
    """Replace policies whose ``name`` is a key of ``overrides``; order is kept."""
    return ReusablePolicy(
        name=f"{base.name}_overridden",
        policies=tuple(
            overrides.get(p.name, p) if p.name is not None else p for p in base.policies
        ),
        description=base.description,
        tags=base.tags,
    )


# =============================================================================
# PATTERNS
# =============================================================================


def create_tenant_isolation_policy(
    tenant_column: str = "tenant_id", *, validate_on_mutation: bool = True
) -> ReusablePolicy:
    policies = [
        filter_(
            "read",
            lambda ctx: {tenant_column: ctx.tenant_id},
            name="tenant-isolation-filter",
            priority=1000,
        )
    ]
    if validate_on_mutation:

        def same_tenant_on_create(ctx: PolicyEvaluationContext) -> bool:
            return (ctx.data or {}).get(tenant_column) == ctx.tenant_id

        def same_tenant_on_update(ctx: PolicyEvaluationContext) -> bool:
            data = ctx.data or {}
            if tenant_column in data:
                return data[tenant_column] == ctx.tenant_id
            return True

        policies.append(
            validate("create", same_tenant_on_create, name="tenant-isolation-validate-create")
        )
        policies.append(
            validate("update", same_tenant_on_update, name="tenant-isolation-validate-update")
        )
    return ReusablePolicy(
        name="tenantIsolation",
        policies=tuple(policies),
        description=f"Filter by {tenant_column} for multi-tenancy",
        tags=("multi-tenant", "isolation"),
    )


def create_ownership_policy(
    owner_column: str = "owner_id",
    *,
    owner_operations: Iterable[str] = ("read", "update", "delete"),
    can_delete: bool = True,
) -> ReusablePolicy:
    owner_ops = list(owner_operations)
    ops = [op for op in owner_ops if op != "delete" or can_delete]
    policies: list[Policy] = []
    if ops:
        policies.append(
            allow(
                ops,
                lambda ctx: ctx.row is not None and ctx.row.get(owner_column) == ctx.subject_id,
                name="ownership-allow",
            )
        )
    if not can_delete and "delete" in owner_ops:
        policies.append(deny("delete", name="ownership-no-delete", priority=150))
    return ReusablePolicy(
        name="ownership",
        policies=tuple(policies),
        description=f"Owner access via {owner_column}",
        tags=("ownership",),
    )


def create_soft_delete_policy(
    deleted_column: str = "deleted_at",
    *,
    filter_on_read: bool = True,
    prevent_hard_delete: bool = True,
) -> ReusablePolicy:
    policies: list[Policy] = []
    if filter_on_read:
        policies.append(
            filter_(
                "read",
                lambda ctx: {deleted_column: None},
                name="soft-delete-filter",
                priority=900,
            )
        )
    if prevent_hard_delete:
        policies.append(deny("delete", name="soft-delete-no-hard-delete", priority=150))
    return ReusablePolicy(
        name="softDelete",
        policies=tuple(policies),
        description=f"Soft delete via {deleted_column}",
        tags=("soft-delete",),
    )


def create_status_access_policy(
    status_column: str = "status",
    *,
    public_statuses: Iterable[str] = (),
    editable_statuses: Iterable[str] = (),
    deletable_statuses: Iterable[str] = (),
) -> ReusablePolicy:
    public = frozenset(public_statuses)
    editable = frozenset(editable_statuses)
    deletable = frozenset(deletable_statuses)

    def status(ctx: PolicyEvaluationContext) -> Any:
        return (ctx.row or {}).get(status_column)

    policies: list[Policy] = []
    if public:
        policies.append(allow("read", lambda ctx: status(ctx) in public, name="status-public-read"))
    if editable:
        policies.append(
            deny("update", lambda ctx: status(ctx) not in editable, name="status-restrict-update")
        )
    if deletable:
        policies.append(
            deny("delete", lambda ctx: status(ctx) not in deletable, name="status-restrict-delete")
        )
    return ReusablePolicy(
        name="statusAccess",
        policies=tuple(policies),
        description=f"Status-based access via {status_column}",
        tags=("status",),
    )


def create_admin_policy(roles: Iterable[str]) -> ReusablePolicy:
    admin_roles = tuple(roles)
    return ReusablePolicy(
        name="adminBypass",
        policies=(
            allow(
                "all",
                lambda ctx: any(r in ctx.roles for r in admin_roles),
                name="admin-bypass",
                priority=500,
            ),
        ),
        description=f"Admin access for roles: {', '.join(admin_roles)}",
        tags=("admin",),
    )


__all__ = [
    "ReusablePolicy",
    "compose_policies",
    "create_admin_policy",
    "create_ownership_policy",
    "create_soft_delete_policy",
    "create_status_access_policy",
    "create_tenant_isolation_policy",
    "define_allow_policy",
    "define_combined_policy",
    "define_deny_policy",
    "define_filter_policy",
    "define_policy",
    "define_validate_policy",
    "extend_policy",
    "override_policy",
]
