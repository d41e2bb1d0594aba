"""
Row-level-security plugin for the interception pipeline.

Manifesto:
    Tenant and ownership rules are declared once, next to the schema, and
    enforced on every query path: top-level reads, reads inside
    transactions, schema-scoped handles and CTE bodies. Missing identity
    never widens access.

Architecture:
    ::

        rls_plugin(schema, field_access=None, **options) ─► Plugin("warden-rls", priority=50)
            │
            ├── init(engine)           compile + validate the PolicyRegistry
            │
            ├── intercept_query(q, ctx)
            │     skip_rls / excluded / ungoverned ──► q unchanged
            │     read  ──► SelectTransformer.transform(q)   (WHERE predicates)
            │     write ──► require context; mark ctx.metadata["rls_required"]
            │
            ├── extend_repository(repo) ─► RLSRepository
            │     find_*             rows masked by field access, if configured
            │     create(data)       check_create → writable fields → repo.create
            │     update(id, data)   fetch visible old row → check_update → writable fields → repo.update
            │     delete(id)         fetch visible old row → check_delete → repo.delete
            │     without_rls(fn)    run fn as system
            │     can_access(op, row)
            │
            └── destroy()              clear the registry

Examples:
    >>> schema = define_rls_schema({
    ...     "orders": [
    ...         filter_("read", lambda ctx: {"tenant_id": ctx.tenant_id}),
    ...         allow(["create", "update"], lambda ctx: True),
    ...         deny("delete", lambda ctx: ctx.row["status"] == "shipped"),
    ...         allow("delete", lambda ctx: True),
    ...     ],
    ... })
    >>> orm = create_orm(engine, [rls_plugin(schema, bypass_roles=["admin"])])

Guardrails:
    ❌ DON'T: Run writes on governed tables through the raw engine
    ✅ DO: Write through repositories so the mutation guard runs

    ❌ DON'T: Turn on ``allow_unfiltered_queries`` outside trusted jobs
    ✅ DO: Use ``repo.without_rls(fn)`` for explicit system access

Tags:
    rls, plugin, security, multi-tenant, spine-warden

Doc-Types:
    api-reference, architecture
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from warden.core.errors import (
    ErrorContext,
    NotFoundError,
    RLSContextError,
    RLSPolicyViolation,
)
from warden.core.logging import get_logger
from warden.core.protocols import RepositoryLike
from warden.core.settings import get_settings
from warden.executor.plugin import PLUGIN_PRIORITIES, ExecutionContext, Operation, Plugin
from warden.rls.context import rls_context
from warden.rls.field_access import FieldAccessProcessor, FieldAccessRegistry, TableFieldAccessInput
from warden.rls.policy.registry import PolicyRegistry
from warden.rls.policy.types import TableConfigInput
from warden.rls.transformer.mutation import MutationGuard, PolicyDecision
from warden.rls.transformer.select import SelectTransformer

logger = get_logger(__name__)

T = TypeVar("T")

RLS_PLUGIN_NAME = "warden-rls"
RLS_PLUGIN_VERSION = "1.0.0"
RLS_PLUGIN_PRIORITY = PLUGIN_PRIORITIES["AUDIT"]

ViolationHandler = Callable[[RLSPolicyViolation], Any]


class RLSPluginOptions(BaseModel):
    """Validated options for :func:`rls_plugin`.

    ``None`` means "use the ``WARDEN_RLS_*`` setting".
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, extra="forbid", frozen=True)

    exclude_tables: frozenset[str] = Field(default_factory=frozenset)
    bypass_roles: frozenset[str] = Field(default_factory=frozenset)
    require_context: bool | None = None
    allow_unfiltered_queries: bool | None = None
    audit_decisions: bool | None = None
    primary_key_column: str | None = None
    on_violation: ViolationHandler | None = None

    def resolved(self) -> RLSPluginOptions:
        """Copy with every unset option filled in from settings."""
        settings = get_settings()
        return self.model_copy(
            update={
                "require_context": (
                    settings.rls_require_context
                    if self.require_context is None
                    else self.require_context
                ),
                "allow_unfiltered_queries": (
                    settings.rls_allow_unfiltered_queries
                    if self.allow_unfiltered_queries is None
                    else self.allow_unfiltered_queries
                ),
                "audit_decisions": (
                    settings.rls_audit_decisions
                    if self.audit_decisions is None
                    else self.audit_decisions
                ),
                "primary_key_column": self.primary_key_column or settings.rls_primary_key_column,
            }
        )


class RLSRepository:
    """Repository extension enforcing write policies.

    Wraps any :class:`RepositoryLike`. Methods it does not define are read
    from the wrapped repository. With field access configured, rows coming
    back from reads and writes are masked for the current caller.
    """

    def __init__(
        self,
        repo: Any,
        guard: MutationGuard,
        options: RLSPluginOptions,
        fields: FieldAccessProcessor | None = None,
    ):
        self._repo = repo
        self._guard = guard
        self._options = options
        self._fields = fields

    @property
    def table_name(self) -> str:
        return self._repo.table_name

    @property
    def executor(self) -> Any:
        return self._repo.executor

    @property
    def _primary_key(self) -> str:
        return getattr(self._repo, "primary_key", None) or self._options.primary_key_column or "id"

    @property
    def _governed(self) -> bool:
        return self.table_name not in self._options.exclude_tables

    def _fetch_old_row(self, key: Any) -> dict[str, Any] | None:
        # Filtered read: rows hidden from the caller count as missing
        executor = self.executor
        table = executor.table(self.table_name)
        query = executor.select_from(self.table_name).where(table.c[self._primary_key] == key)
        return executor.execute_one(query)

    def _masked(self, result: Any) -> Any:
        if self._fields is None or not self._governed or result is None:
            return result
        if isinstance(result, Mapping):
            return self._fields.mask_row(self.table_name, result).data
        if isinstance(result, list):
            return [self._masked(row) for row in result]
        return result

    def _check_fields(self, data: Mapping[str, Any], old_row: Mapping[str, Any] | None = None) -> None:
        if self._fields is None:
            return
        try:
            self._fields.validate_write(self.table_name, data, old_row)
        except RLSPolicyViolation as violation:
            if self._options.on_violation is not None:
                self._options.on_violation(violation)
            raise

    # ── Reads ────────────────────────────────────────────────────

    def find_by_id(self, key: Any) -> Any:
        return self._masked(self._repo.find_by_id(key))

    def find_all(self, *args: Any, **kwargs: Any) -> Any:
        return self._masked(self._repo.find_all(*args, **kwargs))

    def find_where(self, *args: Any, **kwargs: Any) -> Any:
        return self._masked(self._repo.find_where(*args, **kwargs))

    # ── Writes ───────────────────────────────────────────────────

    def _guarded(self, check: Callable[[], PolicyDecision], operation: str) -> None:
        try:
            decision = check()
        except RLSPolicyViolation as violation:
            if self._options.audit_decisions:
                logger.info(
                    "rls_decision",
                    resource=self.table_name,
                    operation=operation,
                    allowed=False,
                    policy=violation.policy_name,
                    reason=violation.reason,
                    subject_id=violation.subject_id,
                )
            if self._options.on_violation is not None:
                self._options.on_violation(violation)
            raise
        if self._options.audit_decisions:
            logger.info(
                "rls_decision",
                resource=self.table_name,
                operation=operation,
                allowed=True,
                policy=decision.policy_name,
                reason=decision.reason,
            )

    def create(self, data: Mapping[str, Any]) -> Any:
        if self._governed:
            payload = dict(data)
            self._guarded(lambda: self._guard.check_create(self.table_name, payload), "create")
            self._check_fields(payload)
        return self._masked(self._repo.create(data))

    def update(self, key: Any, data: Mapping[str, Any]) -> Any:
        if self._governed:
            old_row = self._fetch_old_row(key)
            if old_row is None:
                raise NotFoundError(self.table_name, key)
            payload = dict(data)
            self._guarded(
                lambda: self._guard.check_update(self.table_name, old_row, payload), "update"
            )
            self._check_fields(payload, old_row)
        return self._masked(self._repo.update(key, data))

    def delete(self, key: Any) -> Any:
        if self._governed:
            old_row = self._fetch_old_row(key)
            if old_row is None:
                raise NotFoundError(self.table_name, key)
            self._guarded(lambda: self._guard.check_delete(self.table_name, old_row), "delete")
        return self._repo.delete(key)

    def with_transaction(self, trx: Any) -> RLSRepository:
        return RLSRepository(self._repo.with_transaction(trx), self._guard, self._options, self._fields)

    def without_rls(self, fn: Callable[[], T]) -> T:
        """Run ``fn`` with the current identity elevated to system."""
        return rls_context.run_as_system(fn)

    def can_access(self, operation: str, row: Mapping[str, Any]) -> bool:
        """Would the current caller be allowed ``operation`` on ``row``?"""
        if not self._governed:
            return True
        if operation == "read":
            return self._guard.check_read(self.table_name, row)
        auth = rls_context.get_current_or_null()
        if auth is None:
            return False
        data = row if operation in ("create", "update") else None
        decision = self._guard.decide(
            self.table_name,
            operation,
            auth,
            row=None if operation == "create" else row,
            data=data,
        )
        return decision.allowed

    def __getattr__(self, name: str) -> Any:
        repo = self.__dict__.get("_repo")
        if repo is None:
            raise AttributeError(name)
        return getattr(repo, name)

    def __repr__(self) -> str:
        return f"RLSRepository({self._repo!r})"


def rls_plugin(
    schema: Mapping[str, TableConfigInput],
    *,
    field_access: Mapping[str, TableFieldAccessInput] | None = None,
    **options: Any,
) -> Plugin:
    """Build the row-level-security plugin for ``schema``.

    Args:
        schema: Resource name → ``TableRLSConfig`` or list of policies
        field_access: Resource name → ``TableFieldAccess``; masks columns on
            repository reads and rejects writes to protected columns
        **options: See :class:`RLSPluginOptions`

    Raises:
        pydantic.ValidationError: unknown or mistyped options
    """
    opts = RLSPluginOptions(**options).resolved()
    registry = PolicyRegistry(schema)
    select_transformer = SelectTransformer(
        registry,
        require_context=bool(opts.require_context),
        allow_unfiltered_queries=bool(opts.allow_unfiltered_queries),
        bypass_roles=opts.bypass_roles,
    )
    guard = MutationGuard(
        registry,
        require_context=bool(opts.require_context),
        bypass_roles=opts.bypass_roles,
    )
    fields = FieldAccessProcessor(FieldAccessRegistry(field_access)) if field_access else None

    def init(engine: Any) -> None:
        registry.compile(schema)
        registry.validate()
        logger.info(
            "rls_plugin_initialized",
            tables=list(registry.tables),
            excluded=sorted(opts.exclude_tables),
            require_context=opts.require_context,
            field_access=fields.registry.tables if fields is not None else [],
        )

    def destroy() -> None:
        registry.clear()

    def intercept_query(query: Any, context: ExecutionContext) -> Any:
        resource = context.resource
        if context.metadata.get("skip_rls"):
            logger.debug("rls_skipped", resource=resource, operation=context.operation.value)
            return query
        if resource in opts.exclude_tables or not registry.has_table(resource):
            return query

        if context.operation is Operation.READ:
            return select_transformer.transform(query, resource, context.metadata)

        if rls_context.get_current_or_null() is None and opts.require_context:
            raise RLSContextError(
                context=ErrorContext(resource=resource, operation=context.operation.value)
            )
        context.metadata["rls_required"] = True
        context.metadata["rls_resource"] = resource
        return query

    def extend_repository(repo: Any) -> Any:
        if not isinstance(repo, RepositoryLike):
            return repo
        return RLSRepository(repo, guard, opts, fields)

    return Plugin(
        name=RLS_PLUGIN_NAME,
        version=RLS_PLUGIN_VERSION,
        priority=RLS_PLUGIN_PRIORITY,
        init=init,
        destroy=destroy,
        intercept_query=intercept_query,
        extend_repository=extend_repository,
    )


__all__ = [
    "RLS_PLUGIN_NAME",
    "RLSPluginOptions",
    "RLSRepository",
    "rls_plugin",
]
