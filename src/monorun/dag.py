# dag.py
from __future__ import annotations

from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Set, Tuple

from .errors import ScopeNotFound
from .model import Package


class DependencyGraph:
    """
    Package graph as an index-addressed arena.

    Nodes are package names stored by index; edges run dependency -> dependent.
    Removed nodes leave a hole (None) so indices stay stable while the
    scheduler retires nodes between waves.
    """

    def __init__(self) -> None:
        self._names: List[Optional[str]] = []
        self._out: List[Set[int]] = []
        self._indeg: List[int] = []
        self._live = 0

    def add_node(self, name: str) -> int:
        self._names.append(name)
        self._out.append(set())
        self._indeg.append(0)
        self._live += 1
        return len(self._names) - 1

    def add_edge(self, src: int, dst: int) -> None:
        if dst not in self._out[src]:
            self._out[src].add(dst)
            self._indeg[dst] += 1

    def name(self, idx: int) -> str:
        name = self._names[idx]
        if name is None:
            raise KeyError(f"node {idx} was removed")
        return name

    def nodes(self) -> Iterator[int]:
        return (i for i, n in enumerate(self._names) if n is not None)

    def node_count(self) -> int:
        return self._live

    def successors(self, idx: int) -> Set[int]:
        return set(self._out[idx])

    def edges(self) -> Iterator[Tuple[int, int]]:
        for src in self.nodes():
            for dst in sorted(self._out[src]):
                yield src, dst

    def roots(self) -> List[int]:
        """Live nodes with no incoming edges, in index order."""
        return [i for i in self.nodes() if self._indeg[i] == 0]

    def remove_node(self, idx: int) -> None:
        if self._names[idx] is None:
            return
        for dst in self._out[idx]:
            self._indeg[dst] -= 1
        for src in self.nodes():
            if idx in self._out[src]:
                self._out[src].discard(idx)
        self._out[idx] = set()
        self._indeg[idx] = 0
        self._names[idx] = None
        self._live -= 1

    def subgraph(self, keep: Iterable[int]) -> "DependencyGraph":
        """Induced subgraph over `keep`, with fresh indices and copied names."""
        keep = [i for i in sorted(set(keep)) if self._names[i] is not None]
        sub = DependencyGraph()
        remap = {old: sub.add_node(self.name(old)) for old in keep}
        for old in keep:
            for dst in self._out[old]:
                if dst in remap:
                    sub.add_edge(remap[old], remap[dst])
        return sub

    def copy(self) -> "DependencyGraph":
        return self.subgraph(self.nodes())

    def __len__(self) -> int:
        return self._live


def build_dependency_graph(packages: Sequence[Package]) -> Tuple[DependencyGraph, Dict[str, int]]:
    """
    Build the package graph.

    An edge dependency -> dependent exists whenever a package declares another
    workspace package in its manifest. Non-workspace dependencies are ignored.
    Cycles are not rejected here; the scheduler finds them.
    """
    graph = DependencyGraph()
    index: Dict[str, int] = {}
    for pkg in packages:
        index[pkg.name] = graph.add_node(pkg.name)

    for pkg in packages:
        for dep in sorted(pkg.dependencies):
            if dep in index:
                graph.add_edge(index[dep], index[pkg.name])

    return graph, index


def reduce_to_scope(
    graph: DependencyGraph,
    index: Dict[str, int],
    scope: Optional[str],
) -> DependencyGraph:
    """
    Restrict the graph to what is reachable from `scope`.

    The traversal follows outgoing edges (dependency -> dependent), so the
    result is the scope package plus its transitive dependents. Without a
    scope the full graph is returned unchanged.
    """
    if scope is None:
        return graph

    start = index.get(scope)
    if start is None:
        raise ScopeNotFound(scope)

    visited: Set[int] = set()
    stack = [start]
    while stack:
        node = stack.pop()
        if node in visited:
            continue
        visited.add(node)
        stack.extend(graph.successors(node) - visited)

    return graph.subgraph(visited)


def graph_edges(packages: Iterable[Package]) -> List[str]:
    """`dependency -> dependent` lines as declared in the manifests."""
    lines: List[str] = []
    for pkg in packages:
        for dep in sorted(pkg.dependencies):
            lines.append(f"{dep} -> {pkg.name}")
    return lines
