"""Shared policy condition evaluation for the RLS transformers."""

from __future__ import annotations

import inspect
from typing import Any

from warden.core.errors import RLSPolicyEvaluationError
from warden.rls.policy.registry import CompiledPolicy
from warden.rls.policy.types import PolicyEvaluationContext


def is_policy_active(policy: CompiledPolicy, ctx: PolicyEvaluationContext) -> bool:
    try:
        return policy.is_active(ctx.auth)
    except Exception as e:
        raise RLSPolicyEvaluationError(
            ctx.operation,
            ctx.resource,
            f"activation condition of {policy.name!r} raised: {e}",
            policy_name=policy.name,
            cause=e,
        ) from e


def evaluate_condition(policy: CompiledPolicy, ctx: PolicyEvaluationContext) -> Any:
    """Call the policy condition; ``None`` condition means "always".

    Raises:
        RLSPolicyEvaluationError: the condition raised or returned an awaitable
    """
    if policy.condition is None:
        return True
    try:
        result = policy.condition(ctx)
    except Exception as e:
        raise RLSPolicyEvaluationError(
            ctx.operation,
            ctx.resource,
            f"condition of {policy.name!r} raised: {e}",
            policy_name=policy.name,
            cause=e,
        ) from e
    if inspect.isawaitable(result):
        if inspect.iscoroutine(result):
            result.close()
        raise RLSPolicyEvaluationError(
            ctx.operation,
            ctx.resource,
            f"condition of {policy.name!r} returned an awaitable; conditions must be synchronous",
            policy_name=policy.name,
        )
    return result


__all__ = ["evaluate_condition", "is_policy_active"]
