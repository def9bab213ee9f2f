"""Dependency graph of a Lua project.

Nodes are source files, edges are ``require`` calls that resolve to
another file of the same project. The graph yields the order in which
files are scheduled and reported (required files first) and finds
circular requires, which are legal in Lua but leave no such order.

Example:
    >>> graph = DependencyGraph()
    >>> graph.add_node(Path("a.lua"), "a", imports=["b"])
    >>> graph.add_node(Path("b.lua"), "b")
    >>> graph.add_edge(Path("a.lua"), Path("b.lua"), "b", 1)
    >>> graph.get_processing_order()
    [PosixPath('b.lua'), PosixPath('a.lua')]
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from lua_annotator.utils.logger import get_logger

logger = get_logger("lua_annotator.core.dependency_graph")


# ============================================================================
# Custom Exceptions
# ============================================================================


class CircularDependencyError(Exception):
    """Raised when the require graph contains a cycle.

    Attributes:
        cycle: Paths forming the cycle, first path repeated at the end
        line_info: ``(from, to)`` edge to the line of its require call
        message: Human readable cycle description

    Example:
        >>> raise CircularDependencyError([Path("a.lua"), Path("b.lua"), Path("a.lua")])
    """

    def __init__(self, cycle: list[Path], line_info: dict[tuple[Path, Path], int] | None = None):
        self.cycle = cycle
        self.line_info = line_info or {}

        parts = []
        for i in range(len(cycle) - 1):
            line_num = self.line_info.get((cycle[i], cycle[i + 1]), 0)
            parts.append(f"{cycle[i].name}:{line_num}" if line_num else cycle[i].name)
        parts.append(cycle[-1].name)

        self.message = f"Circular require detected: {' -> '.join(parts)}"
        super().__init__(self.message)


# ============================================================================
# Data Structures
# ============================================================================


@dataclass
class DependencyNode:
    """One source file.

    Attributes:
        file_path: Path of the file as supplied by the caller
        require_name: Dotted name other files require it by
        imports: Module names the file requires
    """
    file_path: Path
    require_name: str
    imports: list[str] = field(default_factory=list)

    def __hash__(self) -> int:
        return hash(self.file_path)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DependencyNode):
            return NotImplemented
        return self.file_path == other.file_path


@dataclass
class DependencyEdge:
    """``from_node`` requires ``to_node`` at ``line_number``."""
    from_node: Path
    to_node: Path
    require_name: str = ""
    line_number: int = 0

    def __post_init__(self) -> None:
        if self.from_node == self.to_node:
            raise ValueError(f"Self-loop detected: {self.from_node} cannot require itself")


@dataclass
class DependencyGraph:
    """Nodes, edges and forward/reverse adjacency of the require graph.

    Attributes:
        nodes: File path to node, in insertion order
        edges: All edges
        adjacency_list: File to the files it requires
        reverse_adjacency: File to the files requiring it
    """
    nodes: dict[Path, DependencyNode] = field(default_factory=dict)
    edges: list[DependencyEdge] = field(default_factory=list)
    adjacency_list: dict[Path, set[Path]] = field(default_factory=dict)
    reverse_adjacency: dict[Path, set[Path]] = field(default_factory=dict)

    def add_node(
        self,
        file_path: Path,
        require_name: str,
        imports: list[str] | None = None
    ) -> DependencyNode:
        """Add or replace the node of a file."""
        node = DependencyNode(file_path, require_name, list(imports or []))
        self.nodes[file_path] = node
        self.adjacency_list.setdefault(file_path, set())
        self.reverse_adjacency.setdefault(file_path, set())
        return node

    def add_edge(self, from_path: Path, to_path: Path, require_name: str = "", line_num: int = 0) -> None:
        """Record that ``from_path`` requires ``to_path``.

        Raises:
            ValueError: If both paths are the same file
        """
        self.edges.append(DependencyEdge(from_path, to_path, require_name, line_num))
        self.adjacency_list.setdefault(from_path, set()).add(to_path)
        self.reverse_adjacency.setdefault(to_path, set()).add(from_path)

    def to_dict(self) -> dict[str, Any]:
        """Serialize the graph for run metadata."""
        return {
            "nodes": {
                str(path): {"require_name": node.require_name, "imports": node.imports}
                for path, node in self.nodes.items()
            },
            "edges": [
                {
                    "from": str(edge.from_node),
                    "to": str(edge.to_node),
                    "require_name": edge.require_name,
                    "line_number": edge.line_number,
                }
                for edge in self.edges
            ],
            "node_count": len(self.nodes),
            "edge_count": len(self.edges),
        }

    def get_processing_order(self) -> list[Path]:
        """Files in topological order, required files first.

        Kahn's algorithm; ties keep node insertion order so the result is
        deterministic for a given input order.

        Raises:
            CircularDependencyError: If the graph contains a cycle
        """
        in_degree: dict[Path, int] = {path: 0 for path in self.nodes}
        for path in self.nodes:
            for dep in self.adjacency_list.get(path, set()):
                if dep in in_degree:
                    in_degree[path] += 1

        position = {path: i for i, path in enumerate(self.nodes)}
        queue = [path for path, degree in in_degree.items() if degree == 0]
        result: list[Path] = []

        while queue:
            current = queue.pop(0)
            result.append(current)
            ready = []
            for dependent in self.reverse_adjacency.get(current, set()):
                if dependent in in_degree:
                    in_degree[dependent] -= 1
                    if in_degree[dependent] == 0:
                        ready.append(dependent)
            queue.extend(sorted(ready, key=position.__getitem__))
            queue.sort(key=position.__getitem__)

        if len(result) != len(self.nodes):
            edge_line_info = {(e.from_node, e.to_node): e.line_number for e in self.edges}
            cycles = self.detect_cycles()
            if cycles:
                raise CircularDependencyError(cycles[0], edge_line_info)

        return result

    def detect_cycles(self) -> list[list[Path]]:
        """Find cycles with a colouring DFS.

        Returns:
            Each cycle as a path list whose first and last entries match
        """
        WHITE, GRAY, BLACK = 0, 1, 2
        color: dict[Path, int] = {path: WHITE for path in self.nodes}
        parent: dict[Path, Path | None] = {path: None for path in self.nodes}
        cycles: list[list[Path]] = []

        def dfs(node: Path) -> None:
            color[node] = GRAY
            for neighbor in sorted(self.adjacency_list.get(node, set())):
                if neighbor not in color:
                    continue
                if color[neighbor] == GRAY:
                    cycle = [neighbor]
                    current = node
                    while current != neighbor and current is not None:
                        cycle.append(current)
                        current = parent.get(current)
                    cycle.append(neighbor)
                    cycles.append(cycle[::-1])
                elif color[neighbor] == WHITE:
                    parent[neighbor] = node
                    dfs(neighbor)
            color[node] = BLACK

        for node in self.nodes:
            if color[node] == WHITE:
                dfs(node)
        return cycles
