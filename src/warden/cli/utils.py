"""
CLI utility helpers — target loading and output formatting.
"""

from __future__ import annotations

import importlib
import json
from dataclasses import asdict
from typing import Any, NoReturn

import typer
from rich.console import Console
from rich.table import Table

console = Console()
err_console = Console(stderr=True)


# ── Target loading ───────────────────────────────────────────────────────


def load_target(target: str) -> Any:
    """Import ``module:attribute``; call it if it is a zero-argument factory."""
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        err_console.print(f"[bold red]Error[/bold red]: target must be 'module:attribute', got {target!r}")
        raise typer.Exit(code=2)
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        err_console.print(f"[bold red]Error[/bold red]: cannot import {module_name!r}: {e}")
        raise typer.Exit(code=2) from e
    try:
        value = getattr(module, attr)
    except AttributeError as e:
        err_console.print(f"[bold red]Error[/bold red]: {module_name!r} has no attribute {attr!r}")
        raise typer.Exit(code=2) from e
    if callable(value) and not isinstance(value, type):
        value = value()
    return value


def parse_scalar(value: str | None) -> Any:
    """JSON-decode CLI values so ``--tenant 7`` compares equal to ``7``."""
    if value is None:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


def parse_object(value: str | None, option: str) -> dict[str, Any] | None:
    if value is None:
        return None
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as e:
        err_console.print(f"[bold red]Error[/bold red]: {option} is not valid JSON: {e}")
        raise typer.Exit(code=2) from e
    if not isinstance(parsed, dict):
        err_console.print(f"[bold red]Error[/bold red]: {option} must be a JSON object")
        raise typer.Exit(code=2)
    return parsed


# ── Output helpers ───────────────────────────────────────────────────────


def _to_dict(obj: Any) -> dict[str, Any]:
    """Convert dataclass / pydantic model / dict to plain dict."""
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    if hasattr(obj, "__dataclass_fields__"):
        return asdict(obj)
    if isinstance(obj, dict):
        return obj
    return {"value": str(obj)}


def print_json(payload: Any) -> None:
    console.print_json(json.dumps(payload, default=str))


def print_table(items: list[Any], *, title: str = "") -> None:
    """Render a list of dataclasses/dicts as a Rich table."""
    if not items:
        console.print("[dim]No items.[/dim]")
        return
    first = _to_dict(items[0])
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in first:
        table.add_column(col, overflow="fold")
    for item in items:
        d = _to_dict(item)
        table.add_row(*(str(v) for v in d.values()))
    console.print(table)


def print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")


def fail(message: str, code: str = "ERROR") -> NoReturn:
    err_console.print(f"[bold red]Error[/bold red] ({code}): {message}")
    raise typer.Exit(code=1)
