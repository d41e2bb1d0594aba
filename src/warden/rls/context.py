"""
Call-scoped caller identity for row-level security.

The current :class:`AuthContext` lives in a :class:`contextvars.ContextVar`,
so each thread and each asyncio task sees only the context installed on its
own call path. Installation always goes through a scope that restores the
previous value with the reset token, including when the body raises.

Architecture:
    ::

        rls_context.run(ctx, fn)           ─┐
        rls_context.run_async(ctx, coro)    ├─ set(ctx) → body → reset(token)
        with rls_context.scope(ctx): ...   ─┘
        rls_context.run_as_system(fn)      copy of current with is_system=True

        get_current_or_null()  → AuthContext | None
        get_current()          → AuthContext, or RLSContextError

Examples:
    >>> ctx = create_rls_context(subject_id=1, tenant_id=7, roles=["user"])
    >>> with rls_context.scope(ctx):
    ...     rls_context.get_current().tenant_id
    7
    >>> rls_context.has_context()
    False

Guardrails:
    ❌ DON'T: Stash the current user in a module global
    ✅ DO: Install it with ``rls_context.scope()`` for exactly the call it covers

Tags:
    rls, context, contextvars, identity, spine-warden
"""

from __future__ import annotations

import contextvars
from collections.abc import Awaitable, Callable, Iterable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any, TypeVar

from warden.core.errors import RLSContextError, RLSContextValidationError

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class AuthContext:
    """Identity and environment of the caller for one scope."""

    subject_id: Any
    tenant_id: Any = None
    roles: frozenset[str] = frozenset()
    is_system: bool = False
    timestamp: datetime = field(default_factory=_utcnow)
    environment: str | None = None
    features: frozenset[str] | Mapping[str, bool] | None = None
    attributes: Mapping[str, Any] = field(default_factory=dict)
    meta: Mapping[str, Any] = field(default_factory=dict)

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def has_any_role(self, roles: Iterable[str]) -> bool:
        return any(r in self.roles for r in roles)

    def has_feature(self, feature: str) -> bool:
        if self.features is None:
            return False
        if isinstance(self.features, Mapping):
            return bool(self.features.get(feature, False))
        return feature in self.features

    def as_system(self) -> AuthContext:
        return replace(self, is_system=True)


def create_rls_context(
    subject_id: Any,
    tenant_id: Any = None,
    roles: Iterable[str] = (),
    *,
    is_system: bool = False,
    environment: str | None = None,
    features: Iterable[str] | Mapping[str, bool] | None = None,
    attributes: Mapping[str, Any] | None = None,
    meta: Mapping[str, Any] | None = None,
    timestamp: datetime | None = None,
) -> AuthContext:
    """Build a validated :class:`AuthContext`.

    Raises:
        RLSContextValidationError: missing subject, or malformed roles/features
    """
    if subject_id is None or subject_id == "":
        raise RLSContextValidationError("subject_id is required", field="subject_id")
    if isinstance(roles, str):
        raise RLSContextValidationError("roles must be a collection of strings", field="roles")
    role_set = frozenset(roles)
    if not all(isinstance(r, str) for r in role_set):
        raise RLSContextValidationError("roles must be a collection of strings", field="roles")

    feature_value: frozenset[str] | Mapping[str, bool] | None
    if features is None or isinstance(features, Mapping):
        feature_value = features
    elif isinstance(features, str):
        raise RLSContextValidationError(
            "features must be a collection or a mapping", field="features"
        )
    else:
        feature_value = frozenset(features)

    return AuthContext(
        subject_id=subject_id,
        tenant_id=tenant_id,
        roles=role_set,
        is_system=is_system,
        timestamp=timestamp or _utcnow(),
        environment=environment,
        features=feature_value,
        attributes=dict(attributes or {}),
        meta=dict(meta or {}),
    )


def _system_context() -> AuthContext:
    return AuthContext(subject_id="system", is_system=True)


_current: contextvars.ContextVar[AuthContext | None] = contextvars.ContextVar(
    "warden_rls_context", default=None
)


class RLSContextManager:
    """Installs and reads the call-scoped :class:`AuthContext`."""

    @contextmanager
    def scope(self, context: AuthContext) -> Iterator[AuthContext]:
        token = _current.set(context)
        try:
            yield context
        finally:
            _current.reset(token)

    def run(self, context: AuthContext, fn: Callable[[], T]) -> T:
        with self.scope(context):
            return fn()

    async def run_async(self, context: AuthContext, fn: Callable[[], Awaitable[T]]) -> T:
        token = _current.set(context)
        try:
            return await fn()
        finally:
            _current.reset(token)

    def get_current_or_null(self) -> AuthContext | None:
        return _current.get()

    def get_current(self) -> AuthContext:
        context = _current.get()
        if context is None:
            raise RLSContextError()
        return context

    def has_context(self) -> bool:
        return _current.get() is not None

    def _system_copy(self) -> AuthContext:
        current = _current.get()
        return current.as_system() if current is not None else _system_context()

    def run_as_system(self, fn: Callable[[], T]) -> T:
        """Run ``fn`` with the current identity elevated to system."""
        return self.run(self._system_copy(), fn)

    async def run_as_system_async(self, fn: Callable[[], Awaitable[T]]) -> T:
        return await self.run_async(self._system_copy(), fn)


#: Process-wide manager; state is per call path, not per instance.
rls_context = RLSContextManager()


__all__ = [
    "AuthContext",
    "RLSContextManager",
    "create_rls_context",
    "rls_context",
]
