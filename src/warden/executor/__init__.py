"""
Plugin pipeline: plugin declarations, resolution, and query interception.

Tags:
    executor, plugins, spine-warden
"""

from warden.executor.executor import (
    INTERCEPTED_METHODS,
    Executor,
    apply_plugins,
    create_executor,
    create_executor_async,
    destroy_executor,
    destroy_executor_async,
    get_plugins,
    get_raw_engine,
    is_executor,
    wrap_transaction,
)
from warden.executor.plugin import PLUGIN_PRIORITIES, ExecutionContext, Operation, Plugin
from warden.executor.resolver import resolve_plugin_order, validate_plugins
from warden.executor.schema_plugin import (
    RESOLVED_SCHEMA_KEY,
    SCHEMA_PLUGIN_NAME,
    SchemaPluginOptions,
    get_resolved_schema,
    schema_plugin,
)

__all__ = [
    "Executor",
    "ExecutionContext",
    "INTERCEPTED_METHODS",
    "Operation",
    "Plugin",
    "PLUGIN_PRIORITIES",
    "RESOLVED_SCHEMA_KEY",
    "SCHEMA_PLUGIN_NAME",
    "SchemaPluginOptions",
    "apply_plugins",
    "create_executor",
    "create_executor_async",
    "destroy_executor",
    "destroy_executor_async",
    "get_plugins",
    "get_raw_engine",
    "get_resolved_schema",
    "is_executor",
    "resolve_plugin_order",
    "schema_plugin",
    "validate_plugins",
    "wrap_transaction",
]
