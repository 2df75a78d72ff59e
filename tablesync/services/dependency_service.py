"""Foreign-key dependency analysis: cycle detection and safe table ordering."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

WHITE, GRAY, BLACK = 0, 1, 2

FOREIGN_KEY = "foreignKey"
CYCLE_SEPARATOR = " → "


@dataclass(frozen=True)
class DependencyGraph:
    """Table dependency graph stored as index-based adjacency lists.

    ``dependencies[i]`` lists the indexes of tables that ``tables[i]``
    references; ``dependents`` is the reverse adjacency. Both preserve the
    order in which tables and references were first seen.
    """

    tables: tuple[str, ...]
    index: dict[str, int]
    dependencies: tuple[tuple[int, ...], ...]
    dependents: tuple[tuple[int, ...], ...]

    def depends_on(self, table_id: str) -> list[str]:
        return [self.tables[i] for i in self.dependencies[self.index[table_id]]]


@dataclass
class DependencyAnalysisResult:
    """Ordering produced for a set of table schemas."""

    sorted_tables: list[str] = field(default_factory=list)
    circular_dependencies: list[list[str]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def find_foreign_keys(schema: Any) -> list[str]:
    """Collect every ``foreignKey`` reference in a schema, at any depth.

    Walks ``properties`` values and ``items`` (a schema or a list of schemas).
    Anything that is not a mapping has no references. Duplicates are removed,
    keeping first-seen order.
    """
    found: dict[str, None] = {}
    pending: list[Any] = [schema]
    while pending:
        node = pending.pop()
        if not isinstance(node, dict):
            continue
        reference = node.get(FOREIGN_KEY)
        if isinstance(reference, str):
            found.setdefault(reference, None)
        items = node.get("items")
        if isinstance(items, list):
            pending.extend(reversed(items))
        elif items is not None:
            pending.append(items)
        properties = node.get("properties")
        if isinstance(properties, dict):
            pending.extend(reversed(list(properties.values())))
    return list(found)


def build_dependency_graph(table_schemas: Mapping[str, Any]) -> DependencyGraph:
    """Build the graph, dropping self-references and references to unknown tables."""
    tables = tuple(table_schemas)
    index = {table_id: i for i, table_id in enumerate(tables)}
    dependencies: list[tuple[int, ...]] = []
    dependents: list[list[int]] = [[] for _ in tables]
    for i, table_id in enumerate(tables):
        targets = tuple(
            index[ref]
            for ref in find_foreign_keys(table_schemas[table_id])
            if ref != table_id and ref in index
        )
        dependencies.append(targets)
        for target in targets:
            dependents[target].append(i)
    return DependencyGraph(
        tables=tables,
        index=index,
        dependencies=tuple(dependencies),
        dependents=tuple(tuple(d) for d in dependents),
    )


def detect_cycles(graph: DependencyGraph) -> list[list[str]]:
    """Find circular dependencies with an iterative DFS.

    Whenever an edge reaches a node that is still on the DFS stack (GRAY), the
    stack slice from that node is recorded as a cycle, closed by repeating the
    first table: ``["a", "b", "a"]``.
    """
    color = [WHITE] * len(graph.tables)
    cycles: list[list[str]] = []

    for start in range(len(graph.tables)):
        if color[start] != WHITE:
            continue
        # Stack entries: (node, next dependency position).
        stack: list[tuple[int, int]] = [(start, 0)]
        path: list[int] = [start]
        color[start] = GRAY
        while stack:
            node, idx = stack[-1]
            deps = graph.dependencies[node]
            if idx < len(deps):
                stack[-1] = (node, idx + 1)
                dep = deps[idx]
                if color[dep] == GRAY:
                    cycle = path[path.index(dep) :]
                    cycles.append([graph.tables[i] for i in [*cycle, dep]])
                elif color[dep] == WHITE:
                    color[dep] = GRAY
                    stack.append((dep, 0))
                    path.append(dep)
            else:
                color[node] = BLACK
                stack.pop()
                path.pop()

    return cycles


def _circular_tables(graph: DependencyGraph, cycles: Iterable[list[str]]) -> dict[int, None]:
    members: dict[int, None] = {}
    for cycle in cycles:
        for table_id in cycle:
            members.setdefault(graph.index[table_id], None)
    return members


def topological_sort(graph: DependencyGraph, cycles: list[list[str]]) -> list[str]:
    """Order tables so every table comes after the tables it references.

    Kahn's algorithm. Edges between two tables that both sit on a detected
    cycle are left out of the in-degree counts so the queue still drains.
    Tables the queue never reaches are appended at the end: cyclic tables in
    discovery order first, then any remainder in input order.
    """
    circular = _circular_tables(graph, cycles)

    def is_circular_edge(a: int, b: int) -> bool:
        return a in circular and b in circular

    in_degree = [
        sum(1 for dep in deps if not is_circular_edge(node, dep))
        for node, deps in enumerate(graph.dependencies)
    ]
    queue = deque(node for node, degree in enumerate(in_degree) if degree == 0)
    emitted = [False] * len(graph.tables)
    order: list[int] = []

    while queue:
        node = queue.popleft()
        order.append(node)
        emitted[node] = True
        for dependent in graph.dependents[node]:
            if is_circular_edge(node, dependent):
                continue
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                queue.append(dependent)

    for node in [*circular, *range(len(graph.tables))]:
        if not emitted[node]:
            order.append(node)
            emitted[node] = True

    return [graph.tables[node] for node in order]


def cycle_warnings(cycles: list[list[str]]) -> list[str]:
    """One warning per cycle, plus a remediation hint when any cycle exists."""
    warnings = [
        f"Circular dependency detected: {CYCLE_SEPARATOR.join(cycle)}. "
        "Upload order may cause foreign key constraint errors."
        for cycle in cycles
    ]
    if cycles:
        warnings.append(
            "Consider breaking circular dependencies or uploading data in multiple passes."
        )
    return warnings


def analyze_dependencies(table_schemas: Mapping[str, Any]) -> DependencyAnalysisResult:
    """Compute a foreign-key-safe processing order for the given tables.

    Every key of ``table_schemas`` appears exactly once in ``sorted_tables``.
    Malformed or missing schemas contribute no dependencies.
    """
    graph = build_dependency_graph(table_schemas)
    cycles = detect_cycles(graph)
    return DependencyAnalysisResult(
        sorted_tables=topological_sort(graph, cycles),
        circular_dependencies=cycles,
        warnings=cycle_warnings(cycles),
    )


def format_dependency_info(result: DependencyAnalysisResult, original_order: list[str]) -> str:
    """Describe the computed upload order for logging."""
    lines = ["Table dependency analysis:"]
    if result.sorted_tables:
        lines.append(f"Upload order: {CYCLE_SEPARATOR.join(result.sorted_tables)}")
        if original_order != result.sorted_tables:
            lines.append(f"Original order: {CYCLE_SEPARATOR.join(original_order)}")
            lines.append("Tables reordered based on foreign key dependencies")
        else:
            lines.append("No reordering needed - tables already in correct order")
    if result.circular_dependencies:
        lines.append(f"Found {len(result.circular_dependencies)} circular dependencies")
    return "\n".join(lines)
