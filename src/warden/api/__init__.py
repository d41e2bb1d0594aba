"""HTTP integration for Starlette/FastAPI applications."""

from warden.api.middleware import (
    ProblemDetail,
    RLSContextMiddleware,
    problem_response,
    register_rls_error_handlers,
)

__all__ = [
    "ProblemDetail",
    "RLSContextMiddleware",
    "problem_response",
    "register_rls_error_handlers",
]
