"""spine-warden core -- errors, logging, settings, shared protocols.

Manifesto:
    Every layer above (executor, rls, repository, api, cli) raises the same
    error hierarchy, logs through the same structlog pipeline and reads the
    same ``WARDEN_*`` settings. Core depends on nothing else in the package.

Architecture::

    errors.py      WardenError hierarchy (plugin validation, RLS, not-found)
    logging.py     structlog configuration + contextvar binding
    settings.py    WardenSettings (pydantic-settings, WARDEN_ prefix)
    protocols.py   QueryEngine / RepositoryLike / ValidationSchema
    cache.py       Bounded LRU cache for schema-scoped executors

Tags:
    core, errors, logging, settings, spine-warden

Doc-Types:
    api-reference
"""

from warden.core.cache import LRUCache
from warden.core.errors import (
    ConfigError,
    ErrorCategory,
    ErrorContext,
    NotFoundError,
    PluginValidationDetails,
    PluginValidationError,
    PluginValidationKind,
    RLSContextError,
    RLSContextValidationError,
    RLSError,
    RLSPolicyEvaluationError,
    RLSPolicyViolation,
    RLSSchemaError,
    SchemaNotAllowedError,
    ValidationError,
    WardenError,
)
from warden.core.logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    log_context,
    unbind_context,
)
from warden.core.protocols import QueryEngine, RepositoryLike, ValidationSchema
from warden.core.settings import WardenSettings, clear_settings_cache, get_settings

__all__ = [
    # Errors
    "ConfigError",
    "ErrorCategory",
    "ErrorContext",
    "NotFoundError",
    "PluginValidationDetails",
    "PluginValidationError",
    "PluginValidationKind",
    "RLSContextError",
    "RLSContextValidationError",
    "RLSError",
    "RLSPolicyEvaluationError",
    "RLSPolicyViolation",
    "RLSSchemaError",
    "SchemaNotAllowedError",
    "ValidationError",
    "WardenError",
    # Logging
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    "log_context",
    "unbind_context",
    # Settings / protocols / cache
    "LRUCache",
    "QueryEngine",
    "RepositoryLike",
    "ValidationSchema",
    "WardenSettings",
    "clear_settings_cache",
    "get_settings",
]
