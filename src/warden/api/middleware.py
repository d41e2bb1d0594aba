"""
HTTP integration: per-request RLS context and RFC 7807 error mapping.

``RLSContextMiddleware`` asks a caller-supplied resolver for the request's
:class:`AuthContext` and installs it for exactly the duration of the
request. Requests the resolver returns ``None`` for run without context;
governed reads then fail closed.

Architecture:
    ::

        request ─► RLSContextMiddleware.dispatch
                     resolver(request) → AuthContext | None
                     token = set(ctx) ─► call_next(request) ─► reset(token)

        RLSContextError     → 401 Unauthorized
        RLSPolicyViolation  → 403 Forbidden
        NotFoundError       → 404 Not Found
        ValidationError     → 400 Bad Request

Examples:
    >>> def resolve(request):
    ...     tenant = request.headers.get("X-Tenant-ID")
    ...     user = request.headers.get("X-User-ID")
    ...     if not user:
    ...         return None
    ...     return create_rls_context(subject_id=user, tenant_id=int(tenant))
    >>> app = FastAPI()
    >>> app.add_middleware(RLSContextMiddleware, resolver=resolve)
    >>> register_rls_error_handlers(app)

Tags:
    spine-warden, api, middleware, rls, starlette

Doc-Types:
    api-reference
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel, Field
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from warden.core.errors import (
    NotFoundError,
    RLSContextError,
    RLSPolicyViolation,
    ValidationError,
    WardenError,
)
from warden.core.logging import get_logger, log_context
from warden.rls.context import AuthContext, rls_context

logger = get_logger(__name__)

ContextResolver = Callable[[Request], "AuthContext | None | Awaitable[AuthContext | None]"]


class ProblemDetail(BaseModel):
    """RFC 7807 «Problem Details for HTTP APIs»."""

    type: str = Field(default="about:blank")
    title: str
    status: int
    detail: str = ""
    instance: str = ""
    code: str = ""
    errors: list[dict[str, Any]] = Field(default_factory=list)


class RLSContextMiddleware(BaseHTTPMiddleware):
    """Install the resolved :class:`AuthContext` for each request.

    Parameters
    ----------
    app:
        The ASGI application to wrap.
    resolver:
        ``resolver(request)`` returning an AuthContext, ``None``, or an
        awaitable of either.
    """

    def __init__(self, app: object, resolver: ContextResolver) -> None:
        super().__init__(app)  # type: ignore[arg-type]
        self._resolver = resolver

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        context = self._resolver(request)
        if inspect.isawaitable(context):
            context = await context

        if context is None:
            return await call_next(request)

        with log_context(subject_id=context.subject_id, tenant_id=context.tenant_id):
            return await rls_context.run_async(context, lambda: call_next(request))


def problem_response(
    *,
    status: int,
    title: str,
    detail: str = "",
    instance: str = "",
    code: str = "",
    errors: list[dict[str, Any]] | None = None,
) -> JSONResponse:
    """Build a RFC 7807 JSON error response."""
    body = ProblemDetail(
        title=title,
        status=status,
        detail=detail,
        instance=instance,
        code=code,
        errors=errors or [],
    )
    return JSONResponse(status_code=status, content=body.model_dump())


_STATUS_FOR_ERROR: list[tuple[type[WardenError], int, str]] = [
    (RLSContextError, 401, "Unauthorized"),
    (RLSPolicyViolation, 403, "Forbidden"),
    (NotFoundError, 404, "Not Found"),
    (ValidationError, 400, "Bad Request"),
]


async def warden_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Map spine-warden errors to problem responses."""
    for error_type, status, title in _STATUS_FOR_ERROR:
        if isinstance(exc, error_type):
            break
    else:
        status, title = 500, "Internal Server Error"

    if isinstance(exc, RLSPolicyViolation):
        logger.warning(
            "rls_request_denied",
            path=request.url.path,
            resource=exc.resource,
            operation=exc.operation,
            policy=exc.policy_name,
        )
    issues = exc.issues if isinstance(exc, ValidationError) else None
    return problem_response(
        status=status,
        title=title,
        detail=getattr(exc, "message", str(exc)),
        instance=str(request.url),
        code=getattr(exc, "code", ""),
        errors=issues,
    )


def register_rls_error_handlers(app: Any) -> None:
    """Register problem-response handlers for spine-warden errors on ``app``."""
    for error_type, _, _ in _STATUS_FOR_ERROR:
        app.add_exception_handler(error_type, warden_exception_handler)


__all__ = [
    "ProblemDetail",
    "RLSContextMiddleware",
    "problem_response",
    "register_rls_error_handlers",
    "warden_exception_handler",
]
