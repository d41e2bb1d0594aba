"""Policy declarations, schema types, and the compiled registry."""

from warden.rls.policy.builder import (
    allow,
    deny,
    filter_,
    validate,
    when_condition,
    when_environment,
    when_feature,
    when_time_range,
)
from warden.rls.policy.registry import CompiledPolicy, PolicyRegistry
from warden.rls.policy.types import (
    Policy,
    PolicyEvaluationContext,
    PolicyType,
    RLSSchema,
    TableRLSConfig,
    define_rls_schema,
    merge_rls_schemas,
)

__all__ = [
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
]
