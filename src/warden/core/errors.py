"""
Structured error types for spine-warden.

Provides a typed hierarchy with rich metadata for plugin setup failures,
row-level-security decisions, and repository lookups. Every error carries a
category, an optional chained cause, and an :class:`ErrorContext` so it can be
logged or rendered as an HTTP problem without string parsing.

Manifesto:
    - **Typed Error Hierarchy:** Setup errors, context errors and policy
      violations are different types, handled at different layers
    - **Fatal vs. Recoverable:** Plugin validation aborts initialization;
      policy violations are expected control flow for the caller
    - **Rich Context:** Errors carry resource, operation and policy name
    - **No Row Leakage:** Violations never embed row data in their message

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                         WardenError                              │
        │  (category, context, cause)                                      │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  PluginValidationError   RLSError              NotFoundError     │
        │  (PLUGIN)                (AUTH)                (NOT_FOUND)       │
        │  kind: DUPLICATE_NAME      │                                     │
        │        MISSING_DEPENDENCY  ├── RLSContextError                   │
        │        CONFLICT            ├── RLSContextValidationError         │
        │        CIRCULAR_DEPENDENCY ├── RLSPolicyViolation                │
        │        INITIALIZATION_..   ├── RLSPolicyEvaluationError          │
        │                            └── RLSSchemaError                    │
        │                                                                  │
        │  ValidationError (VALIDATION)   ConfigError (CONFIG)             │
        │                                   └── SchemaNotAllowedError      │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> err = RLSPolicyViolation("delete", "orders", "Denied by policy: no-shipped")
    >>> err.resource
    'orders'
    >>> err.to_dict()["code"]
    'RLS_POLICY_VIOLATION'

Guardrails:
    ❌ DON'T: Raise plain Exception from policy or plugin code
    ✅ DO: Use the matching WardenError subclass

    ❌ DON'T: Put row values in a violation reason
    ✅ DO: Name the policy that decided

Tags:
    error-handling, exception-hierarchy, rls, plugins, spine-warden

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    PLUGIN = "PLUGIN"             # Plugin set validation / initialization
    AUTH = "AUTH"                 # Missing context, policy violations
    VALIDATION = "VALIDATION"     # Input payload validation
    NOT_FOUND = "NOT_FOUND"       # Targeted row does not exist
    CONFIG = "CONFIG"             # Invalid options or schema
    DATABASE = "DATABASE"         # Engine errors surfaced by the core
    INTERNAL = "INTERNAL"         # Bugs, unexpected state


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Attributes:
        resource: Table / resource the operation targeted
        operation: Operation name (read, create, update, delete, ...)
        plugin: Plugin involved, if any
        subject_id: Caller identity from the active AuthContext
        schema: Database schema, if a schema-scoped handle was used
        metadata: Additional key-value pairs
    """

    resource: str | None = None
    operation: str | None = None
    plugin: str | None = None
    subject_id: Any = None
    schema: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result: dict[str, Any] = {}
        for key in ["resource", "operation", "plugin", "subject_id", "schema"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class WardenError(Exception):
    """
    Base exception for all spine-warden errors.

    Subclasses set ``default_category`` and ``code`` class attributes so every
    error serializes to the same shape through :meth:`to_dict`.

    Examples:
        >>> error = WardenError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>

        >>> error = WardenError("Lookup failed").with_context(resource="orders")
        >>> error.context.resource
        'orders'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    code: str = "WARDEN_ERROR"

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> WardenError:
        """Add context to this error (fluent API)."""
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "category": self.category.value,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# PLUGIN ERRORS
# =============================================================================


class PluginValidationKind(str, Enum):
    """Reasons a plugin set can be rejected at setup time."""

    DUPLICATE_NAME = "DUPLICATE_NAME"
    MISSING_DEPENDENCY = "MISSING_DEPENDENCY"
    CONFLICT = "CONFLICT"
    CIRCULAR_DEPENDENCY = "CIRCULAR_DEPENDENCY"
    INITIALIZATION_FAILED = "INITIALIZATION_FAILED"


@dataclass(frozen=True)
class PluginValidationDetails:
    """Diagnostic payload attached to :class:`PluginValidationError`."""

    plugin_name: str
    missing_dependency: str | None = None
    conflicting_plugin: str | None = None
    cycle: tuple[str, ...] | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"plugin_name": self.plugin_name}
        if self.missing_dependency is not None:
            result["missing_dependency"] = self.missing_dependency
        if self.conflicting_plugin is not None:
            result["conflicting_plugin"] = self.conflicting_plugin
        if self.cycle is not None:
            result["cycle"] = list(self.cycle)
        return result


class PluginValidationError(WardenError):
    """
    Plugin set rejected during setup.

    Always fatal: the executor is never returned in a partially validated or
    partially initialized state.
    """

    default_category = ErrorCategory.PLUGIN
    code = "PLUGIN_VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        kind: PluginValidationKind,
        details: PluginValidationDetails,
        *,
        cause: BaseException | None = None,
    ):
        super().__init__(
            message,
            context=ErrorContext(plugin=details.plugin_name),
            cause=cause,
        )
        self.kind = kind
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["kind"] = self.kind.value
        result["details"] = self.details.to_dict()
        return result


# =============================================================================
# RLS ERRORS
# =============================================================================


class RLSError(WardenError):
    """Base class for row-level-security errors."""

    default_category = ErrorCategory.AUTH
    code = "RLS_ERROR"


class RLSContextError(RLSError):
    """No AuthContext installed where one is required."""

    code = "RLS_CONTEXT_MISSING"

    def __init__(
        self,
        message: str = "No RLS context found. Run the operation inside rls_context.run()",
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)


class RLSContextValidationError(RLSError):
    """An AuthContext was built from invalid input."""

    code = "RLS_CONTEXT_INVALID"

    def __init__(self, message: str, field: str):
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["field"] = self.field
        return result


class RLSPolicyViolation(RLSError):
    """
    An operation was rejected by a deny, validate, or default-closed decision.

    Recoverable: callers are expected to catch it. The message names the
    operation, resource and reason but never the row contents.
    """

    code = "RLS_POLICY_VIOLATION"

    def __init__(
        self,
        operation: str,
        resource: str,
        reason: str,
        policy_name: str | None = None,
        subject_id: Any = None,
    ):
        super().__init__(
            f"RLS policy violation: {operation} on {resource} - {reason}",
            context=ErrorContext(resource=resource, operation=operation, subject_id=subject_id),
        )
        self.operation = operation
        self.resource = resource
        self.reason = reason
        self.policy_name = policy_name
        self.subject_id = subject_id

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["reason"] = self.reason
        if self.policy_name is not None:
            result["policy_name"] = self.policy_name
        return result


class RLSPolicyEvaluationError(RLSError):
    """A policy condition raised, or returned something it must not."""

    code = "RLS_POLICY_EVALUATION_ERROR"

    def __init__(
        self,
        operation: str,
        resource: str,
        message: str,
        policy_name: str | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(
            f"RLS policy evaluation error during {operation} on {resource}: {message}",
            context=ErrorContext(resource=resource, operation=operation),
            cause=cause,
        )
        self.operation = operation
        self.resource = resource
        self.policy_name = policy_name

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.policy_name is not None:
            result["policy_name"] = self.policy_name
        return result


class RLSSchemaError(RLSError):
    """The policy schema is malformed or references unknown tables."""

    default_category = ErrorCategory.CONFIG
    code = "RLS_SCHEMA_INVALID"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["details"] = self.details
        return result


# =============================================================================
# REPOSITORY ERRORS
# =============================================================================


class NotFoundError(WardenError):
    """The row targeted by update/delete does not exist."""

    default_category = ErrorCategory.NOT_FOUND
    code = "NOT_FOUND"

    def __init__(self, resource: str, key: Any):
        super().__init__(
            f"{resource} row not found: {key!r}",
            context=ErrorContext(resource=resource),
        )
        self.resource = resource
        self.key = key


class ValidationError(WardenError):
    """
    Input payload rejected by a validation schema.

    Never retried: the data must be fixed.
    """

    default_category = ErrorCategory.VALIDATION
    code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        *,
        issues: list[dict[str, Any]] | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.issues = issues or []

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.issues:
            result["issues"] = self.issues
        return result


class ConfigError(WardenError):
    """Invalid configuration (plugin options, settings)."""

    default_category = ErrorCategory.CONFIG
    code = "CONFIG_ERROR"


class SchemaNotAllowedError(ConfigError):
    """A query resolved to a database schema outside the allowed set."""

    code = "SCHEMA_NOT_ALLOWED"

    def __init__(self, schema: str, allowed: tuple[str, ...] = (), resource: str | None = None):
        allowed_list = ", ".join(allowed)
        super().__init__(
            f"Schema {schema!r} is not in allowed list: [{allowed_list}]",
            context=ErrorContext(resource=resource, schema=schema),
        )
        self.schema = schema
        self.allowed = allowed


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "WardenError",
    # Plugins
    "PluginValidationKind",
    "PluginValidationDetails",
    "PluginValidationError",
    # RLS
    "RLSError",
    "RLSContextError",
    "RLSContextValidationError",
    "RLSPolicyViolation",
    "RLSPolicyEvaluationError",
    "RLSSchemaError",
    # Repository
    "NotFoundError",
    "ValidationError",
    "ConfigError",
    "SchemaNotAllowedError",
]
