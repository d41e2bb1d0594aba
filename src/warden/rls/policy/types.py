"""
Policy and schema types for row-level security.

Policy semantics:
    allow     Grants an operation when the condition holds
    deny      Rejects an operation when the condition holds; overrides allow
    filter    Read only. Returns column → value predicates injected into SELECTs
    validate  Create/update only. Incoming data must satisfy the condition

Schema shape:
    ::

        define_rls_schema({
            "orders": TableRLSConfig(
                policies=[filter_("read", ...), allow("all", ...)],
                default_deny=True,           # no matching allow → reject
                skip_for=["admin"],          # roles that bypass all checks
            ),
            "audit_log": [deny("all")],      # plain list = default config
        })

Tags:
    rls, policy, schema, types, spine-warden
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Union

from warden.core.errors import RLSSchemaError

if TYPE_CHECKING:
    from warden.rls.context import AuthContext


class PolicyType(str, Enum):
    ALLOW = "allow"
    DENY = "deny"
    FILTER = "filter"
    VALIDATE = "validate"


#: Operations policies can target. ``"all"`` expands to these four.
POLICY_OPERATIONS: tuple[str, ...] = ("read", "create", "update", "delete")
WRITE_OPERATIONS: tuple[str, ...] = ("create", "update")


@dataclass(frozen=True)
class PolicyEvaluationContext:
    """What a policy condition sees.

    ``row`` is the existing row (update/delete/read checks), ``data`` the
    incoming payload (create/update). Filter conditions see neither.
    """

    auth: AuthContext
    resource: str
    operation: str
    row: Mapping[str, Any] | None = None
    data: Mapping[str, Any] | None = None
    meta: Mapping[str, Any] = field(default_factory=dict)

    @property
    def subject_id(self) -> Any:
        return self.auth.subject_id

    @property
    def tenant_id(self) -> Any:
        return self.auth.tenant_id

    @property
    def roles(self) -> frozenset[str]:
        return self.auth.roles


PolicyCondition = Callable[[PolicyEvaluationContext], Any]
ActivationCondition = Callable[["AuthContext"], bool]


def normalize_operations(operations: str | Iterable[str]) -> frozenset[str]:
    """Expand ``"all"`` and validate operation names."""
    ops = [operations] if isinstance(operations, str) else list(operations)
    expanded: set[str] = set()
    for op in ops:
        op = getattr(op, "value", op)
        if op == "all":
            expanded.update(POLICY_OPERATIONS)
        elif op in POLICY_OPERATIONS:
            expanded.add(op)
        else:
            raise RLSSchemaError(f"Unknown policy operation: {op!r}", {"operation": op})
    if not expanded:
        raise RLSSchemaError("A policy must target at least one operation")
    return frozenset(expanded)


@dataclass(frozen=True)
class Policy:
    """One declarative rule. Build with ``allow``/``deny``/``filter_``/``validate``."""

    type: PolicyType
    operations: frozenset[str]
    condition: PolicyCondition | None = None
    priority: int = 0
    name: str | None = None
    activation_condition: ActivationCondition | None = None

    def is_active(self, auth: AuthContext) -> bool:
        if self.activation_condition is None:
            return True
        return bool(self.activation_condition(auth))

    def applies_to(self, operation: str) -> bool:
        return operation in self.operations


@dataclass(frozen=True)
class TableRLSConfig:
    """Policies for one resource plus its default behaviour.

    Attributes:
        policies: Rules for the resource, in declaration order
        extends: Names of other resources whose policies are inherited
        default_deny: Reject when no allow policy matches
        skip_for: Roles that bypass every check on this resource
    """

    policies: tuple[Policy, ...] = ()
    extends: tuple[str, ...] = ()
    default_deny: bool = True
    skip_for: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        object.__setattr__(self, "policies", tuple(self.policies))
        object.__setattr__(self, "extends", tuple(self.extends))
        object.__setattr__(self, "skip_for", frozenset(self.skip_for))


TableConfigInput = Union[TableRLSConfig, Sequence[Policy]]
RLSSchema = dict[str, TableRLSConfig]


def _as_config(resource: str, value: TableConfigInput) -> TableRLSConfig:
    if isinstance(value, TableRLSConfig):
        return value
    if isinstance(value, (list, tuple)):
        return TableRLSConfig(policies=tuple(value))
    raise RLSSchemaError(
        f"Invalid RLS config for {resource!r}: expected TableRLSConfig or list of policies",
        {"resource": resource},
    )


def define_rls_schema(schema: Mapping[str, TableConfigInput]) -> RLSSchema:
    """Normalize a schema mapping; plain policy lists become default configs."""
    return {resource: _as_config(resource, value) for resource, value in schema.items()}


def merge_rls_schemas(*schemas: Mapping[str, TableConfigInput]) -> RLSSchema:
    """Merge schemas left to right.

    Policies for the same resource are concatenated; ``skip_for`` and
    ``extends`` are unioned; the right-most ``default_deny`` wins.
    """
    merged: RLSSchema = {}
    for schema in schemas:
        for resource, value in define_rls_schema(schema).items():
            existing = merged.get(resource)
            if existing is None:
                merged[resource] = value
                continue
            merged[resource] = TableRLSConfig(
                policies=existing.policies + value.policies,
                extends=existing.extends + tuple(e for e in value.extends if e not in existing.extends),
                default_deny=value.default_deny,
                skip_for=existing.skip_for | value.skip_for,
            )
    return merged


__all__ = [
    "POLICY_OPERATIONS",
    "WRITE_OPERATIONS",
    "ActivationCondition",
    "Policy",
    "PolicyCondition",
    "PolicyEvaluationContext",
    "PolicyType",
    "RLSSchema",
    "TableRLSConfig",
    "define_rls_schema",
    "merge_rls_schemas",
    "normalize_operations",
]
