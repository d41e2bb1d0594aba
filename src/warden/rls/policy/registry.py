"""
Compiled, read-only policy lookup.

``PolicyRegistry`` turns an :data:`RLSSchema` into per-resource,
per-operation buckets once, at construction. Lookups never allocate or
sort; the compiled structure is shared between threads without locks.

Compilation:
    1. Resolve ``extends`` (inherited policies come first)
    2. Name unnamed policies ``{resource}_{type}_{index}``
    3. Expand each policy into one entry per operation
    4. Sort each bucket by priority descending, then declaration order

Tags:
    rls, policy, registry, compilation, spine-warden
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from warden.core.errors import RLSSchemaError
from warden.core.logging import get_logger
from warden.rls.policy.types import (
    POLICY_OPERATIONS,
    WRITE_OPERATIONS,
    ActivationCondition,
    Policy,
    PolicyCondition,
    PolicyType,
    TableConfigInput,
    TableRLSConfig,
    define_rls_schema,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class CompiledPolicy:
    """A policy bound to one resource and one operation."""

    name: str
    type: PolicyType
    operation: str
    condition: PolicyCondition | None
    priority: int
    activation_condition: ActivationCondition | None
    order: int

    def is_active(self, auth: Any) -> bool:
        if self.activation_condition is None:
            return True
        return bool(self.activation_condition(auth))


@dataclass
class _CompiledTable:
    default_deny: bool
    skip_for: frozenset[str]
    policies: tuple[tuple[Policy, str], ...]
    buckets: dict[tuple[PolicyType, str], tuple[CompiledPolicy, ...]]


class PolicyRegistry:
    """Per-resource policy buckets compiled from a schema.

    Example:
        registry = PolicyRegistry({"orders": [filter_("read", by_tenant)]})
        registry.get_filters("orders")   # (CompiledPolicy(...),)
    """

    def __init__(self, schema: Mapping[str, TableConfigInput] | None = None):
        self._schema = define_rls_schema(schema or {})
        self._tables: dict[str, _CompiledTable] = {}
        self.compile(self._schema)

    # ── Compilation ──────────────────────────────────────────────

    def _resolve_policies(
        self, resource: str, schema: Mapping[str, TableRLSConfig], seen: tuple[str, ...]
    ) -> list[Policy]:
        if resource in seen:
            chain = " -> ".join((*seen, resource))
            raise RLSSchemaError(f"Circular extends: {chain}", {"resource": resource})
        config = schema.get(resource)
        if config is None:
            raise RLSSchemaError(
                f"{seen[-1]!r} extends unknown resource {resource!r}",
                {"resource": seen[-1], "extends": resource},
            )
        inherited: list[Policy] = []
        for parent in config.extends:
            inherited.extend(self._resolve_policies(parent, schema, (*seen, resource)))
        return inherited + list(config.policies)

    def compile(self, schema: Mapping[str, TableConfigInput]) -> None:
        """Replace the compiled state with ``schema``."""
        normalized = define_rls_schema(schema)
        tables: dict[str, _CompiledTable] = {}

        for resource, config in normalized.items():
            policies = self._resolve_policies(resource, normalized, ())
            named: list[tuple[Policy, str]] = [
                (p, p.name or f"{resource}_{p.type.value}_{index}")
                for index, p in enumerate(policies)
            ]
            entries: dict[tuple[PolicyType, str], list[CompiledPolicy]] = {}
            for order, (policy, name) in enumerate(named):
                for operation in sorted(policy.operations):
                    entries.setdefault((policy.type, operation), []).append(
                        CompiledPolicy(
                            name=name,
                            type=policy.type,
                            operation=operation,
                            condition=policy.condition,
                            priority=policy.priority,
                            activation_condition=policy.activation_condition,
                            order=order,
                        )
                    )
            buckets = {
                key: tuple(sorted(items, key=lambda c: (-c.priority, c.order)))
                for key, items in entries.items()
            }
            tables[resource] = _CompiledTable(
                default_deny=config.default_deny,
                skip_for=config.skip_for,
                policies=tuple(named),
                buckets=buckets,
            )

        self._schema = normalized
        self._tables = tables
        logger.debug(
            "rls_registry_compiled",
            tables=len(tables),
            policies=sum(len(t.policies) for t in tables.values()),
        )

    def validate(self, tables: Iterable[str] | None = None) -> None:
        """Fail fast on malformed policies or unknown resources.

        Args:
            tables: Known table names; when given, every governed resource
                must be one of them.

        Raises:
            RLSSchemaError: first problem found
        """
        known = set(tables) if tables is not None else None
        for resource, compiled in self._tables.items():
            if known is not None and resource not in known:
                raise RLSSchemaError(
                    f"RLS schema references unknown table: {resource}",
                    {"resource": resource},
                )
            for policy, name in compiled.policies:
                details = {"resource": resource, "policy": name}
                if policy.condition is None and policy.type is not PolicyType.DENY:
                    raise RLSSchemaError(f"Policy {name!r} has no condition", details)
                if policy.condition is not None and not callable(policy.condition):
                    raise RLSSchemaError(f"Policy {name!r} condition is not callable", details)
                unknown_ops = policy.operations - set(POLICY_OPERATIONS)
                if unknown_ops:
                    raise RLSSchemaError(
                        f"Policy {name!r} targets unknown operations: {sorted(unknown_ops)}",
                        details,
                    )
                if policy.type is PolicyType.FILTER and policy.operations != {"read"}:
                    raise RLSSchemaError(f"Filter policy {name!r} must target 'read' only", details)
                if policy.type is PolicyType.VALIDATE and not policy.operations <= set(
                    WRITE_OPERATIONS
                ):
                    raise RLSSchemaError(
                        f"Validate policy {name!r} must target create/update only", details
                    )

    # ── Lookups ──────────────────────────────────────────────────

    def _bucket(self, resource: str, type_: PolicyType, operation: str) -> tuple[CompiledPolicy, ...]:
        compiled = self._tables.get(resource)
        if compiled is None:
            return ()
        return compiled.buckets.get((type_, operation), ())

    def has_table(self, resource: str) -> bool:
        return resource in self._tables

    def get_filters(self, resource: str) -> tuple[CompiledPolicy, ...]:
        return self._bucket(resource, PolicyType.FILTER, "read")

    def get_allows(self, resource: str, operation: str) -> tuple[CompiledPolicy, ...]:
        return self._bucket(resource, PolicyType.ALLOW, operation)

    def get_denies(self, resource: str, operation: str) -> tuple[CompiledPolicy, ...]:
        return self._bucket(resource, PolicyType.DENY, operation)

    def get_validates(self, resource: str, operation: str) -> tuple[CompiledPolicy, ...]:
        return self._bucket(resource, PolicyType.VALIDATE, operation)

    def get_skip_for(self, resource: str) -> frozenset[str]:
        compiled = self._tables.get(resource)
        return compiled.skip_for if compiled is not None else frozenset()

    def has_default_deny(self, resource: str) -> bool:
        compiled = self._tables.get(resource)
        return compiled.default_deny if compiled is not None else False

    def get_policies(self, resource: str) -> tuple[CompiledPolicy, ...]:
        """Every compiled entry for ``resource`` (all types and operations)."""
        compiled = self._tables.get(resource)
        if compiled is None:
            return ()
        return tuple(entry for bucket in compiled.buckets.values() for entry in bucket)

    @property
    def tables(self) -> tuple[str, ...]:
        return tuple(self._tables)

    def clear(self) -> None:
        self._tables = {}
        self._schema = {}


__all__ = ["CompiledPolicy", "PolicyRegistry"]
