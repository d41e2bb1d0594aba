"""
Plugin set validation and deterministic ordering.

``validate_plugins`` rejects a plugin set before anything is initialized;
``resolve_plugin_order`` turns a valid set into the single order used for
``init``, interceptors and repository extensions (``destroy`` runs in
reverse).

Ordering rules:
    1. Every dependency precedes its dependents (Kahn's algorithm)
    2. Among plugins ready at the same time: higher ``priority`` first
    3. Ties broken by ascending ``name``

The result is a pure function of (dependency graph, priority, name), so
repeated calls on the same input always return the same order.

Guardrails:
    ❌ DON'T: Rely on list order to run a plugin before another
    ✅ DO: Declare ``dependencies=("other",)``

Tags:
    plugin, dependency-graph, topological-sort, validation, spine-warden
"""

from __future__ import annotations

from collections.abc import Sequence

from warden.core.errors import (
    PluginValidationDetails,
    PluginValidationError,
    PluginValidationKind,
)
from warden.executor.plugin import Plugin


def _sort_key(plugin: Plugin) -> tuple[int, str]:
    return (-plugin.priority, plugin.name)


def _find_cycle(plugins: Sequence[Plugin]) -> list[str] | None:
    """Iterative DFS over dependency edges; return the first cycle found.

    The cycle is reported as the path from the re-entered plugin back to
    itself, e.g. ``["a", "b", "a"]``.
    """
    graph = {p.name: p.dependencies for p in plugins}
    visited: set[str] = set()

    for root in graph:
        if root in visited:
            continue
        path: list[str] = [root]
        on_stack: set[str] = {root}
        stack: list[tuple[str, int]] = [(root, 0)]

        while stack:
            node, index = stack[-1]
            deps = graph.get(node, ())
            if index >= len(deps):
                stack.pop()
                path.pop()
                on_stack.discard(node)
                visited.add(node)
                continue

            stack[-1] = (node, index + 1)
            dep = deps[index]
            if dep in on_stack:
                start = path.index(dep)
                return [*path[start:], dep]
            if dep in visited or dep not in graph:
                continue
            path.append(dep)
            on_stack.add(dep)
            stack.append((dep, 0))

    return None


def validate_plugins(plugins: Sequence[Plugin]) -> None:
    """Raise :class:`PluginValidationError` if the plugin set is unusable.

    Checks run in order: duplicate names, missing dependencies and
    conflicts (per plugin), then dependency cycles.
    """
    names: set[str] = set()
    for plugin in plugins:
        if plugin.name in names:
            raise PluginValidationError(
                f"Duplicate plugin name: {plugin.name}",
                PluginValidationKind.DUPLICATE_NAME,
                PluginValidationDetails(plugin_name=plugin.name),
            )
        names.add(plugin.name)

    for plugin in plugins:
        for dep in plugin.dependencies:
            if dep not in names:
                raise PluginValidationError(
                    f'Plugin "{plugin.name}" depends on missing plugin: {dep}',
                    PluginValidationKind.MISSING_DEPENDENCY,
                    PluginValidationDetails(plugin_name=plugin.name, missing_dependency=dep),
                )
        for conflict in plugin.conflicts_with:
            if conflict in names:
                raise PluginValidationError(
                    f'Plugin "{plugin.name}" conflicts with plugin: {conflict}',
                    PluginValidationKind.CONFLICT,
                    PluginValidationDetails(plugin_name=plugin.name, conflicting_plugin=conflict),
                )

    cycle = _find_cycle(plugins)
    if cycle is not None:
        raise PluginValidationError(
            f"Circular dependency: {' -> '.join(cycle)}",
            PluginValidationKind.CIRCULAR_DEPENDENCY,
            PluginValidationDetails(plugin_name=cycle[0], cycle=tuple(cycle)),
        )


def resolve_plugin_order(plugins: Sequence[Plugin]) -> list[Plugin]:
    """Topologically sort plugins; dependencies first, then priority, then name.

    Unknown dependency names are ignored here (``validate_plugins`` reports
    them). Raises ``CIRCULAR_DEPENDENCY`` if a cycle prevents a full order.
    """
    if not plugins:
        return []

    by_name = {p.name: p for p in plugins}
    in_degree = {p.name: 0 for p in plugins}
    dependents: dict[str, list[str]] = {p.name: [] for p in plugins}

    for plugin in plugins:
        for dep in plugin.dependencies:
            if dep in by_name:
                in_degree[plugin.name] += 1
                dependents[dep].append(plugin.name)

    ready = sorted((by_name[n] for n, d in in_degree.items() if d == 0), key=_sort_key)
    ordered: list[Plugin] = []

    while ready:
        current = ready.pop(0)
        ordered.append(current)
        for name in dependents[current.name]:
            in_degree[name] -= 1
            if in_degree[name] == 0:
                ready.append(by_name[name])
        ready.sort(key=_sort_key)

    if len(ordered) != len(plugins):
        cycle = _find_cycle(plugins) or sorted(n for n, d in in_degree.items() if d > 0)
        raise PluginValidationError(
            f"Circular dependency: {' -> '.join(cycle)}",
            PluginValidationKind.CIRCULAR_DEPENDENCY,
            PluginValidationDetails(plugin_name=cycle[0], cycle=tuple(cycle)),
        )

    return ordered


__all__ = ["validate_plugins", "resolve_plugin_order"]
