"""Policy enforcement: read filtering and write guarding."""

from warden.rls.transformer.mutation import EvaluatedPolicy, MutationGuard, PolicyDecision
from warden.rls.transformer.select import SelectTransformer

__all__ = ["EvaluatedPolicy", "MutationGuard", "PolicyDecision", "SelectTransformer"]
