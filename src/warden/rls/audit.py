"""
Audit trail for RLS violations.

``RLSAuditLogger`` is a violation handler: pass it as ``on_violation`` to
:func:`warden.rls.plugin.rls_plugin`. Each violation is logged through
structlog (``rls_violation``) and kept in a bounded in-memory trail for
inspection by operators and tests.

Examples:
    >>> audit = RLSAuditLogger(max_events=500)
    >>> plugin = rls_plugin(schema, on_violation=audit)
    >>> ...
    >>> audit.events[-1].policy_name
    'no-shipped-delete'

Tags:
    rls, audit, logging, spine-warden
"""

from __future__ import annotations

from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from warden.core.errors import RLSPolicyViolation
from warden.core.logging import get_logger
from warden.rls.context import rls_context

logger = get_logger(__name__)


@dataclass(frozen=True)
class AuditEvent:
    """One recorded RLS decision. Never contains row data."""

    resource: str
    operation: str
    decision: str
    reason: str
    policy_name: str | None = None
    subject_id: Any = None
    tenant_id: Any = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "resource": self.resource,
            "operation": self.operation,
            "decision": self.decision,
            "reason": self.reason,
            "policy_name": self.policy_name,
            "subject_id": self.subject_id,
            "tenant_id": self.tenant_id,
            "timestamp": self.timestamp.isoformat(),
        }


class RLSAuditLogger:
    """Callable violation handler with a bounded event trail."""

    def __init__(self, max_events: int = 1000, *, log_level: str = "warning"):
        self._events: deque[AuditEvent] = deque(maxlen=max_events)
        self._log_level = log_level

    def __call__(self, violation: RLSPolicyViolation) -> None:
        self.record_violation(violation)

    def record_violation(self, violation: RLSPolicyViolation) -> AuditEvent:
        auth = rls_context.get_current_or_null()
        event = AuditEvent(
            resource=violation.resource,
            operation=violation.operation,
            decision="deny",
            reason=violation.reason,
            policy_name=violation.policy_name,
            subject_id=violation.subject_id,
            tenant_id=auth.tenant_id if auth is not None else None,
        )
        self._events.append(event)
        getattr(logger, self._log_level)(
            "rls_violation",
            resource=event.resource,
            operation=event.operation,
            policy=event.policy_name,
            reason=event.reason,
            subject_id=event.subject_id,
            tenant_id=event.tenant_id,
        )
        return event

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)

    def query(
        self,
        *,
        resource: str | None = None,
        operation: str | None = None,
        subject_id: Any = None,
    ) -> list[AuditEvent]:
        return [
            e
            for e in self._events
            if (resource is None or e.resource == resource)
            and (operation is None or e.operation == operation)
            and (subject_id is None or e.subject_id == subject_id)
        ]

    def stats(self) -> dict[str, Any]:
        return {
            "total_events": len(self._events),
            "by_resource": dict(Counter(e.resource for e in self._events)),
            "by_operation": dict(Counter(e.operation for e in self._events)),
        }

    def clear(self) -> None:
        self._events.clear()


__all__ = ["AuditEvent", "RLSAuditLogger"]
