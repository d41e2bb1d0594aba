"""
Column-level access control: hide, mask or protect individual fields.

Manifesto:
    Row policies decide *which* rows a caller touches; field rules decide
    *what* of each row they see and may change. A hidden column is masked
    or omitted on the way out, and a protected column rejects writes on the
    way in. A rule that raises counts as a denial.

Architecture:
    ::

        define_field_access({
            "users": TableFieldAccess(
                fields={
                    "email": owner_or_roles(["support"], owner_field="id"),
                    "password_hash": never_accessible(),
                    "phone": masked_field(lambda v: "***" + v[-4:], read=is_owner),
                },
                default="allow",             # unlisted columns
                skip_for=["admin"],
            ),
        })
            │
            ▼
        FieldAccessRegistry ──► FieldAccessProcessor
                                  mask_row / mask_rows        reads
                                  validate_write              create / update
                                  filter_writable_fields
                                  readable_fields / writable_fields

Examples:
    >>> processor = FieldAccessProcessor(FieldAccessRegistry(schema))
    >>> with rls_context.scope(create_rls_context(subject_id=2)):
    ...     processor.mask_row("users", {"id": 1, "email": "a@b.c"}).data
    {'id': 1, 'email': None}

Guardrails:
    ❌ DON'T: Filter sensitive columns in each endpoint by hand
    ✅ DO: Declare the column once and let ``rls_plugin(field_access=...)`` mask it

Tags:
    rls, field-access, masking, columns, spine-warden

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal, Union

from warden.core.errors import RLSPolicyViolation, RLSSchemaError
from warden.core.logging import get_logger
from warden.rls.context import AuthContext, rls_context
from warden.rls.policy.types import PolicyEvaluationContext

logger = get_logger(__name__)

FieldCondition = Callable[[PolicyEvaluationContext], bool]
FieldDefault = Literal["allow", "deny"]


# =============================================================================
# CONFIGURATION
# =============================================================================


@dataclass(frozen=True)
class FieldAccess:
    """Rules for one column. ``None`` conditions grant access."""

    read: FieldCondition | None = None
    write: FieldCondition | None = None
    masked_value: Any = None
    omit_when_hidden: bool = False
    mask: Callable[[Any], Any] | None = None


@dataclass(frozen=True)
class TableFieldAccess:
    """Field rules for one table."""

    fields: Mapping[str, FieldAccess] = field(default_factory=dict)
    default: FieldDefault = "allow"
    skip_for: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        if self.default not in ("allow", "deny"):
            raise RLSSchemaError(f"field access default must be 'allow' or 'deny', got {self.default!r}")
        object.__setattr__(self, "fields", dict(self.fields))
        object.__setattr__(self, "skip_for", frozenset(self.skip_for))


TableFieldAccessInput = Union[TableFieldAccess, Mapping[str, FieldAccess]]
FieldAccessSchema = dict[str, TableFieldAccess]


def define_field_access(schema: Mapping[str, TableFieldAccessInput]) -> FieldAccessSchema:
    """Normalize a field access schema; plain mappings become default-allow tables."""
    return {table: _as_table_config(config) for table, config in schema.items()}


def _as_table_config(config: TableFieldAccessInput) -> TableFieldAccess:
    if isinstance(config, TableFieldAccess):
        return config
    if isinstance(config, Mapping):
        return TableFieldAccess(fields=config)
    raise RLSSchemaError(f"expected TableFieldAccess or a mapping of fields, got {type(config).__name__}")


# ── Patterns ─────────────────────────────────────────────────────────────


def _owns(ctx: PolicyEvaluationContext, owner_field: str) -> bool:
    row = ctx.row or {}
    return str(ctx.subject_id) == str(row.get(owner_field))


def never_accessible() -> FieldAccess:
    """Never readable or writable; omitted from results."""
    return FieldAccess(read=lambda ctx: False, write=lambda ctx: False, omit_when_hidden=True)


def owner_only(owner_field: str = "id") -> FieldAccess:
    """Readable and writable by the subject whose id is in ``owner_field``."""
    return FieldAccess(
        read=lambda ctx: _owns(ctx, owner_field),
        write=lambda ctx: _owns(ctx, owner_field),
    )


def owner_or_roles(roles: Iterable[str], owner_field: str = "id") -> FieldAccess:
    granted = frozenset(roles)

    def check(ctx: PolicyEvaluationContext) -> bool:
        return _owns(ctx, owner_field) or bool(granted & ctx.roles)

    return FieldAccess(read=check, write=check)


def roles_only(roles: Iterable[str]) -> FieldAccess:
    granted = frozenset(roles)

    def check(ctx: PolicyEvaluationContext) -> bool:
        return bool(granted & ctx.roles)

    return FieldAccess(read=check, write=check)


def read_only(read: FieldCondition | None = None) -> FieldAccess:
    """Never writable; readable when ``read`` holds (always, if omitted)."""
    return FieldAccess(read=read, write=lambda ctx: False)


def public_read_restricted_write(write: FieldCondition) -> FieldAccess:
    return FieldAccess(read=None, write=write)


def masked_field(mask: Callable[[Any], Any], read: FieldCondition) -> FieldAccess:
    """Callers failing ``read`` get ``mask(value)`` instead of the value."""
    return FieldAccess(read=read, write=read, mask=mask)


# =============================================================================
# REGISTRY
# =============================================================================


class FieldAccessRegistry:
    """Field access rules per table, with fail-closed evaluation."""

    def __init__(self, schema: Mapping[str, TableFieldAccessInput] | None = None):
        self._tables: dict[str, TableFieldAccess] = {}
        if schema:
            self.load_schema(schema)

    def load_schema(self, schema: Mapping[str, TableFieldAccessInput]) -> None:
        for table, config in schema.items():
            self.register_table(table, config)

    def register_table(self, table: str, config: TableFieldAccessInput) -> None:
        compiled = _as_table_config(config)
        self._tables[table] = compiled
        logger.debug(
            "field_access_table_registered",
            table=table,
            fields=len(compiled.fields),
            default=compiled.default,
        )

    def has_table(self, table: str) -> bool:
        return table in self._tables

    @property
    def tables(self) -> list[str]:
        return list(self._tables)

    def get_table_config(self, table: str) -> TableFieldAccess | None:
        return self._tables.get(table)

    def get_field_config(self, table: str, column: str) -> FieldAccess | None:
        config = self._tables.get(table)
        return config.fields.get(column) if config is not None else None

    def configured_fields(self, table: str) -> list[str]:
        config = self._tables.get(table)
        return list(config.fields) if config is not None else []

    def clear(self) -> None:
        self._tables.clear()

    def bypasses(self, table: str, auth: AuthContext) -> bool:
        """System callers, ``skip_for`` roles and unconfigured tables see everything."""
        config = self._tables.get(table)
        return config is None or auth.is_system or bool(config.skip_for & auth.roles)

    def can_read_field(self, table: str, column: str, ctx: PolicyEvaluationContext) -> bool:
        return self._check(table, column, ctx, "read")

    def can_write_field(self, table: str, column: str, ctx: PolicyEvaluationContext) -> bool:
        return self._check(table, column, ctx, "write")

    def _check(self, table: str, column: str, ctx: PolicyEvaluationContext, access: str) -> bool:
        if self.bypasses(table, ctx.auth):
            return True
        config = self._tables[table]
        rule = config.fields.get(column)
        if rule is None:
            return config.default == "allow"
        condition = rule.read if access == "read" else rule.write
        if condition is None:
            return True
        try:
            return bool(condition(ctx))
        except Exception as e:
            logger.warning(
                "field_access_condition_failed",
                table=table,
                column=column,
                access=access,
                error=str(e),
            )
            return False


# =============================================================================
# PROCESSOR
# =============================================================================


@dataclass(frozen=True)
class MaskedRow:
    data: dict[str, Any]
    masked_fields: tuple[str, ...] = ()
    omitted_fields: tuple[str, ...] = ()


class FieldAccessProcessor:
    """Apply field rules to rows read and payloads written under the current context."""

    def __init__(self, registry: FieldAccessRegistry, default_mask_value: Any = None):
        self._registry = registry
        self._default_mask_value = default_mask_value

    @property
    def registry(self) -> FieldAccessRegistry:
        return self._registry

    def _auth_for(self, table: str) -> AuthContext | None:
        """Active context when field rules apply to ``table``, else ``None``."""
        auth = rls_context.get_current_or_null()
        if auth is None or self._registry.bypasses(table, auth):
            return None
        return auth

    @staticmethod
    def _context(
        auth: AuthContext,
        table: str,
        operation: str,
        row: Mapping[str, Any] | None,
        data: Mapping[str, Any] | None = None,
    ) -> PolicyEvaluationContext:
        return PolicyEvaluationContext(
            auth=auth, resource=table, operation=operation, row=row, data=data, meta=auth.meta
        )

    def mask_row(
        self,
        table: str,
        row: Mapping[str, Any],
        *,
        include_fields: Sequence[str] | None = None,
        exclude_fields: Sequence[str] = (),
        raise_on_denied: bool = False,
    ) -> MaskedRow:
        """Row as the current caller may see it.

        Hidden columns carry their mask (``mask(value)``, ``masked_value`` or
        the processor default) unless the rule omits them. Unlisted columns
        of a default-deny table are omitted.

        Raises:
            RLSPolicyViolation: ``raise_on_denied`` and a column is hidden
        """
        auth = self._auth_for(table)
        if auth is None:
            visible = {
                k: v
                for k, v in row.items()
                if k not in exclude_fields and (include_fields is None or k in include_fields)
            }
            return MaskedRow(visible)

        ctx = self._context(auth, table, "read", row)
        data: dict[str, Any] = {}
        masked: list[str] = []
        omitted: list[str] = []
        for column, value in row.items():
            if column in exclude_fields or (include_fields is not None and column not in include_fields):
                continue
            if self._registry.can_read_field(table, column, ctx):
                data[column] = value
                continue
            if raise_on_denied:
                raise RLSPolicyViolation(
                    "read", table, f"Cannot read field: {column}", subject_id=auth.subject_id
                )
            rule = self._registry.get_field_config(table, column)
            if rule is None or rule.omit_when_hidden:
                omitted.append(column)
                continue
            masked.append(column)
            if rule.mask is not None:
                data[column] = rule.mask(value)
            elif rule.masked_value is not None:
                data[column] = rule.masked_value
            else:
                data[column] = self._default_mask_value

        if masked or omitted:
            logger.debug("field_access_applied", table=table, masked=masked, omitted=omitted)
        return MaskedRow(data, tuple(masked), tuple(omitted))

    def mask_rows(self, table: str, rows: Iterable[Mapping[str, Any]], **options: Any) -> list[MaskedRow]:
        return [self.mask_row(table, row, **options) for row in rows]

    def validate_write(
        self,
        table: str,
        data: Mapping[str, Any],
        existing_row: Mapping[str, Any] | None = None,
    ) -> None:
        """Reject payloads that touch columns the caller may not write.

        Raises:
            RLSPolicyViolation: naming every protected column in ``data``
        """
        auth = self._auth_for(table)
        if auth is None:
            return
        operation = "update" if existing_row is not None else "create"
        ctx = self._context(auth, table, operation, existing_row or {}, data)
        protected = [c for c in data if not self._registry.can_write_field(table, c, ctx)]
        if protected:
            raise RLSPolicyViolation(
                operation,
                table,
                f"Cannot write to protected fields: {', '.join(protected)}",
                subject_id=auth.subject_id,
            )

    def filter_writable_fields(
        self,
        table: str,
        data: Mapping[str, Any],
        existing_row: Mapping[str, Any] | None = None,
    ) -> tuple[dict[str, Any], tuple[str, ...]]:
        """Split ``data`` into the writable payload and the removed column names."""
        auth = self._auth_for(table)
        if auth is None:
            return dict(data), ()
        operation = "update" if existing_row is not None else "create"
        ctx = self._context(auth, table, operation, existing_row or {}, data)
        kept: dict[str, Any] = {}
        removed: list[str] = []
        for column, value in data.items():
            if self._registry.can_write_field(table, column, ctx):
                kept[column] = value
            else:
                removed.append(column)
        return kept, tuple(removed)

    def readable_fields(self, table: str, row: Mapping[str, Any]) -> list[str]:
        auth = self._auth_for(table)
        if auth is None:
            return list(row)
        ctx = self._context(auth, table, "read", row)
        return [c for c in row if self._registry.can_read_field(table, c, ctx)]

    def writable_fields(self, table: str, row: Mapping[str, Any]) -> list[str]:
        auth = self._auth_for(table)
        if auth is None:
            return list(row)
        ctx = self._context(auth, table, "update", row)
        return [c for c in row if self._registry.can_write_field(table, c, ctx)]


__all__ = [
    "FieldAccess",
    "FieldAccessProcessor",
    "FieldAccessRegistry",
    "FieldAccessSchema",
    "FieldCondition",
    "MaskedRow",
    "TableFieldAccess",
    "TableFieldAccessInput",
    "define_field_access",
    "masked_field",
    "never_accessible",
    "owner_only",
    "owner_or_roles",
    "public_read_restricted_write",
    "read_only",
    "roles_only",
]
