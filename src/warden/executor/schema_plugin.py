"""
Schema plugin: one place to decide which database schema a query targets.

Multi-tenant and modular deployments split tables across schemas. This
plugin resolves the schema for every intercepted call, checks it against an
allow-list, and records the result in ``ctx.metadata["resolved_schema"]``
for plugins that run after it.

Architecture:
    ::

        schema_plugin(default_schema="public", ...) ─► Plugin("warden-schema", priority=1000)
            │
            ├── init(engine)
            │     validate_schema(default_schema) is falsy ──► SchemaNotAllowedError
            │     default_schema not in allowed_schemas ───► SchemaNotAllowedError
            │
            └── intercept_query(q, ctx)
                  schema = resolve_schema(ctx) or ctx.schema or default_schema
                  not allowed + strict      ──► SchemaNotAllowedError
                  not allowed + not strict  ──► default_schema
                  ctx.metadata["resolved_schema"] = schema

Examples:
    >>> executor = create_executor(engine, [
    ...     schema_plugin(
    ...         default_schema="public",
    ...         resolve_schema=lambda ctx: "audit" if ctx.resource.startswith("audit_") else None,
    ...         allowed_schemas=["public", "audit"],
    ...     ),
    ... ])

Tags:
    executor, plugin, schema, multi-tenant, spine-warden
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from warden.core.errors import SchemaNotAllowedError
from warden.core.logging import get_logger
from warden.executor.plugin import PLUGIN_PRIORITIES, ExecutionContext, Plugin

logger = get_logger(__name__)

SCHEMA_PLUGIN_NAME = "warden-schema"
SCHEMA_PLUGIN_VERSION = "1.0.0"
RESOLVED_SCHEMA_KEY = "resolved_schema"

SchemaResolver = Callable[[ExecutionContext], str | None]
SchemaValidator = Callable[[str], bool | Awaitable[bool]]


class SchemaPluginOptions(BaseModel):
    """Validated options for :func:`schema_plugin`."""

    model_config = ConfigDict(arbitrary_types_allowed=True, extra="forbid", frozen=True)

    default_schema: str = "public"
    resolve_schema: SchemaResolver | None = None
    validate_schema: SchemaValidator | None = None
    allowed_schemas: tuple[str, ...] | None = Field(default=None)
    strict_validation: bool = True

    def is_allowed(self, schema: str) -> bool:
        return self.allowed_schemas is None or schema in self.allowed_schemas


def get_resolved_schema(context: ExecutionContext) -> str | None:
    """Schema recorded by the schema plugin for this call, if it ran."""
    return context.metadata.get(RESOLVED_SCHEMA_KEY)


def schema_plugin(**options: Any) -> Plugin:
    """Build the schema plugin.

    Args:
        **options: See :class:`SchemaPluginOptions`

    Raises:
        pydantic.ValidationError: unknown or mistyped options
    """
    opts = SchemaPluginOptions(**options)
    allowed = opts.allowed_schemas or ()

    def check_default() -> None:
        if not opts.is_allowed(opts.default_schema):
            raise SchemaNotAllowedError(opts.default_schema, allowed)
        logger.info(
            "schema_plugin_initialized",
            default_schema=opts.default_schema,
            allowed_schemas=list(allowed),
        )

    def init(engine: Any) -> Any:
        validator = opts.validate_schema
        if validator is not None and inspect.iscoroutinefunction(validator):

            async def finish() -> None:
                if not await validator(opts.default_schema):
                    raise SchemaNotAllowedError(opts.default_schema, allowed)
                check_default()

            return finish()
        if validator is not None and not validator(opts.default_schema):
            raise SchemaNotAllowedError(opts.default_schema, allowed)
        check_default()
        return None

    def intercept_query(query: Any, context: ExecutionContext) -> Any:
        resolved = opts.resolve_schema(context) if opts.resolve_schema is not None else None
        schema = resolved or context.schema or opts.default_schema

        if not opts.is_allowed(schema):
            if opts.strict_validation:
                raise SchemaNotAllowedError(schema, allowed, resource=context.resource)
            logger.warning(
                "schema_not_allowed_fallback",
                resource=context.resource,
                schema=schema,
                fallback=opts.default_schema,
            )
            schema = opts.default_schema

        context.metadata[RESOLVED_SCHEMA_KEY] = schema
        return query

    return Plugin(
        name=SCHEMA_PLUGIN_NAME,
        version=SCHEMA_PLUGIN_VERSION,
        priority=PLUGIN_PRIORITIES["SECURITY"],
        init=init,
        intercept_query=intercept_query,
    )


__all__ = [
    "RESOLVED_SCHEMA_KEY",
    "SCHEMA_PLUGIN_NAME",
    "SchemaPluginOptions",
    "get_resolved_schema",
    "schema_plugin",
]
