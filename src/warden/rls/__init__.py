"""
Row-level security: call-scoped identity, declarative policies, enforcement.

Quick start:
    >>> from warden.rls import allow, define_rls_schema, filter_, rls_plugin
    >>> schema = define_rls_schema({
    ...     "orders": [
    ...         filter_("read", lambda ctx: {"tenant_id": ctx.tenant_id}),
    ...         allow("all", lambda ctx: True),
    ...     ],
    ... })
    >>> plugin = rls_plugin(schema)

Tags:
    rls, security, spine-warden
"""

from warden.rls.audit import AuditEvent, RLSAuditLogger
from warden.rls.composition import (
    ReusablePolicy,
    compose_policies,
    create_admin_policy,
    create_ownership_policy,
    create_soft_delete_policy,
    create_status_access_policy,
    create_tenant_isolation_policy,
    define_allow_policy,
    define_combined_policy,
    define_deny_policy,
    define_filter_policy,
    define_policy,
    define_validate_policy,
    extend_policy,
    override_policy,
)
from warden.rls.context import AuthContext, RLSContextManager, create_rls_context, rls_context
from warden.rls.field_access import (
    FieldAccess,
    FieldAccessProcessor,
    FieldAccessRegistry,
    MaskedRow,
    TableFieldAccess,
    define_field_access,
    masked_field,
    never_accessible,
    owner_only,
    owner_or_roles,
    public_read_restricted_write,
    read_only,
    roles_only,
)
from warden.rls.plugin import RLS_PLUGIN_NAME, RLSPluginOptions, RLSRepository, rls_plugin
from warden.rls.policy import (
    CompiledPolicy,
    Policy,
    PolicyEvaluationContext,
    PolicyRegistry,
    PolicyType,
    RLSSchema,
    TableRLSConfig,
    allow,
    define_rls_schema,
    deny,
    filter_,
    merge_rls_schemas,
    validate,
    when_condition,
    when_environment,
    when_feature,
    when_time_range,
)
from warden.rls.testing import PolicyTester
from warden.rls.transformer import MutationGuard, PolicyDecision, SelectTransformer

__all__ = [
    # Context
    "AuthContext",
    "RLSContextManager",
    "create_rls_context",
    "rls_context",
    # Policies
    "CompiledPolicy",
    "Policy",
    "PolicyEvaluationContext",
    "PolicyRegistry",
    "PolicyType",
    "RLSSchema",
    "TableRLSConfig",
    "allow",
    "define_rls_schema",
    "deny",
    "filter_",
    "merge_rls_schemas",
    "validate",
    "when_condition",
    "when_environment",
    "when_feature",
    "when_time_range",
    # Composition
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
    # Field access
    "FieldAccess",
    "FieldAccessProcessor",
    "FieldAccessRegistry",
    "MaskedRow",
    "TableFieldAccess",
    "define_field_access",
    "masked_field",
    "never_accessible",
    "owner_only",
    "owner_or_roles",
    "public_read_restricted_write",
    "read_only",
    "roles_only",
    # Enforcement
    "MutationGuard",
    "PolicyDecision",
    "SelectTransformer",
    # Plugin
    "RLS_PLUGIN_NAME",
    "RLSPluginOptions",
    "RLSRepository",
    "rls_plugin",
    # Tooling
    "AuditEvent",
    "PolicyTester",
    "RLSAuditLogger",
]
