"""
Root Typer application for the spine-warden CLI.

Commands inspect plugin sets and RLS schemas that live in importable
modules, addressed as ``module:attribute``. The attribute may be the
value itself or a zero-argument factory returning it.

Examples:
    ::

        warden plugins myapp.db:PLUGINS
        warden policies myapp.security:schema --resource orders
        warden check myapp.security:schema orders delete \\
            --subject 1 --tenant 7 --row '{"status": "shipped"}'

Tags:
    cli, typer, rich, spine-warden
"""

from __future__ import annotations

import sys
from collections.abc import Mapping, Sequence
from typing import Any

import typer
from typer import Typer

from warden.cli.utils import (
    console,
    fail,
    load_target,
    parse_object,
    parse_scalar,
    print_dict,
    print_json,
    print_table,
)
from warden.core.errors import ConfigError, WardenError
from warden.core.logging import configure_logging
from warden.executor.plugin import Plugin
from warden.executor.resolver import resolve_plugin_order, validate_plugins
from warden.rls.context import create_rls_context
from warden.rls.policy.types import POLICY_OPERATIONS
from warden.rls.testing import PolicyTester

app = Typer(
    name="warden",
    help="spine-warden — plugin query pipeline and row-level security.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("spine-warden")
        except PackageNotFoundError:
            from warden import __version__ as v
        typer.echo(f"spine-warden {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str | None = typer.Option(  # noqa: UP007
        None,
        "--log-level",
        help="Emit structured logs at this level (DEBUG, INFO, WARNING, ERROR) on stderr.",
    ),
) -> None:
    """spine-warden CLI — inspect plugin sets and RLS policies."""
    if log_level:
        try:
            configure_logging(level=log_level, json_format=False, stream=sys.stderr, cache_loggers=False)
        except ConfigError as e:
            fail(e.message, code=e.code)


# ── Helpers ──────────────────────────────────────────────────────────────


def _load_plugins(target: str) -> list[Plugin]:
    value = load_target(target)
    if isinstance(value, Plugin):
        return [value]
    if not isinstance(value, Sequence) or not all(isinstance(p, Plugin) for p in value):
        fail(f"{target} is not a Plugin or a list of Plugins", code="BAD_TARGET")
    return list(value)


def _load_tester(target: str) -> PolicyTester:
    value = load_target(target)
    if not isinstance(value, Mapping):
        fail(f"{target} is not an RLS schema mapping", code="BAD_TARGET")
    try:
        return PolicyTester(value)
    except WardenError as e:
        fail(e.message, code=e.code)


# ── Commands ─────────────────────────────────────────────────────────────


@app.command("plugins")
def plugins_cmd(
    target: str = typer.Argument(..., help="module:attribute holding the plugin list."),
    json_output: bool = typer.Option(False, "--json", help="Emit JSON instead of a table."),
) -> None:
    """Validate a plugin set and print its resolved execution order."""
    plugins = _load_plugins(target)
    try:
        validate_plugins(plugins)
        ordered = resolve_plugin_order(plugins)
    except WardenError as e:
        fail(e.message, code=e.code)

    rows = [
        {
            "order": i + 1,
            "name": p.name,
            "version": p.version,
            "priority": p.priority,
            "dependencies": ", ".join(p.dependencies) or "-",
            "intercepts": "yes" if p.intercept_query is not None else "no",
        }
        for i, p in enumerate(ordered)
    ]
    if json_output:
        print_json(rows)
    else:
        print_table(rows, title="Plugin order")


@app.command("policies")
def policies_cmd(
    target: str = typer.Argument(..., help="module:attribute holding the RLS schema."),
    resource: str | None = typer.Option(None, "--resource", "-r", help="Only this table."),  # noqa: UP007
    json_output: bool = typer.Option(False, "--json", help="Emit JSON instead of a table."),
) -> None:
    """Print the compiled policy registry."""
    tester = _load_tester(target)
    tables = [resource] if resource else list(tester.tables)
    if resource and resource not in tester.tables:
        fail(f"no policies for table {resource!r}", code="NOT_FOUND")

    rows = [
        {
            "table": table,
            "name": p.name,
            "type": p.type.value,
            "operation": p.operation,
            "priority": p.priority,
            "conditional": "yes" if p.activation_condition is not None else "no",
        }
        for table in tables
        for p in sorted(tester.registry.get_policies(table), key=lambda p: (p.operation, p.order))
    ]
    if json_output:
        print_json(rows)
    else:
        print_table(rows, title="RLS policies")


@app.command("check")
def check_cmd(
    target: str = typer.Argument(..., help="module:attribute holding the RLS schema."),
    resource: str = typer.Argument(..., help="Table name."),
    operation: str = typer.Argument(..., help="read, create, update or delete."),
    subject: str = typer.Option("cli-user", "--subject", "-s", help="Subject id."),
    tenant: str | None = typer.Option(None, "--tenant", "-t", help="Tenant id."),  # noqa: UP007
    role: list[str] = typer.Option([], "--role", help="Role (repeatable)."),  # noqa: B008
    system: bool = typer.Option(False, "--system", help="Evaluate as a system context."),
    row: str | None = typer.Option(None, "--row", help="Existing row as JSON."),  # noqa: UP007
    data: str | None = typer.Option(None, "--data", help="Write payload as JSON."),  # noqa: UP007
    json_output: bool = typer.Option(False, "--json", help="Emit JSON."),
) -> None:
    """Evaluate one decision. Exits with code 1 when the operation is denied."""
    if operation not in POLICY_OPERATIONS:
        fail(f"operation must be one of {', '.join(POLICY_OPERATIONS)}", code="BAD_OPERATION")

    tester = _load_tester(target)
    try:
        auth = create_rls_context(
            parse_scalar(subject),
            tenant_id=parse_scalar(tenant),
            roles=role,
            is_system=system,
        )
        decision = tester.evaluate(
            resource,
            operation,
            auth,
            row=parse_object(row, "--row"),
            data=parse_object(data, "--data"),
        )
        filters = tester.get_filters(resource, auth) if operation == "read" else None
    except WardenError as e:
        fail(e.message, code=e.code)

    payload: dict[str, Any] = {
        "allowed": decision.allowed,
        "decision": decision.decision_type,
        "reason": decision.reason,
        "policy": decision.policy_name,
    }
    if filters is not None:
        payload["filters"] = filters.conditions
        payload["applied_filters"] = list(filters.applied_filters)
        if filters.conflicts:
            payload["conflicting_columns"] = list(filters.conflicts)

    if json_output:
        print_json(payload)
    else:
        style = "green" if decision.allowed else "red"
        console.print(f"[bold {style}]{'ALLOWED' if decision.allowed else 'DENIED'}[/bold {style}]")
        print_dict(payload)
        if decision.evaluated_policies:
            print_table(list(decision.evaluated_policies), title="Evaluated policies")

    if not decision.allowed:
        raise typer.Exit(code=1)


__all__ = ["app", "main"]
