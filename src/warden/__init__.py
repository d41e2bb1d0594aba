"""
spine-warden -- plugin query pipeline with row-level security.

Quick start:
    >>> from warden import create_orm, create_warden_engine, rls_plugin
    >>> from warden.rls import allow, define_rls_schema, filter_, rls_context
    >>> engine = create_warden_engine("sqlite://", metadata=metadata)
    >>> schema = define_rls_schema({
    ...     "orders": [
    ...         filter_("read", lambda ctx: {"tenant_id": ctx.tenant_id}),
    ...         allow("all", lambda ctx: True),
    ...     ],
    ... })
    >>> orm = create_orm(engine, [rls_plugin(schema)])
    >>> with rls_context.scope(create_rls_context(1, tenant_id=7)):
    ...     orm.repository("orders").find_all()
"""

__version__ = "0.1.0"

from warden.core.errors import (  # noqa: E402
    PluginValidationError,
    RLSContextError,
    RLSPolicyViolation,
    WardenError,
)
from warden.engine import SQLAlchemyEngine, create_warden_engine  # noqa: E402
from warden.executor import (  # noqa: E402
    Operation,
    Plugin,
    create_executor,
    destroy_executor,
    get_raw_engine,
    is_executor,
)
from warden.repository import Repository, create_orm  # noqa: E402
from warden.rls import (  # noqa: E402
    AuthContext,
    PolicyTester,
    create_rls_context,
    define_rls_schema,
    rls_context,
    rls_plugin,
)

__all__ = [
    "__version__",
    "AuthContext",
    "Operation",
    "Plugin",
    "PluginValidationError",
    "PolicyTester",
    "RLSContextError",
    "RLSPolicyViolation",
    "Repository",
    "SQLAlchemyEngine",
    "WardenError",
    "create_executor",
    "create_orm",
    "create_rls_context",
    "create_warden_engine",
    "define_rls_schema",
    "destroy_executor",
    "get_raw_engine",
    "is_executor",
    "rls_context",
    "rls_plugin",
]
