# dag.py
from __future__ import annotations

import heapq
import logging
from dataclasses import dataclass, field
from typing import Collection, Dict, Iterable, List, Optional, Set, Tuple

from .analyzer import Analysis, analyze
from .errors import AnalysisError, CycleError, WorkflowError
from .model import Target

logger = logging.getLogger(__name__)


@dataclass
class Graph:
    """
    Read-only DAG of targets.

    parents[name]  -> targets that must run BEFORE name (inferred + needs)
    children[name] -> targets that read name's result / run after it
    order          -> topological order, ties broken by declaration order
    """
    targets: Dict[str, Target]
    analyses: Dict[str, Analysis]
    parents: Dict[str, List[str]]
    children: Dict[str, List[str]]
    order: List[str]
    index: Dict[str, int] = field(default_factory=dict)

    @property
    def nodes(self) -> List[str]:
        return list(self.order)

    @property
    def edges(self) -> List[Tuple[str, str]]:
        """(upstream, downstream) pairs in topological order of the downstream."""
        return [(p, n) for n in self.order for p in self.parents[n]]

    def ancestors(self, name: str) -> Set[str]:
        return self._reach(name, self.parents)

    def descendants(self, name: str) -> Set[str]:
        return self._reach(name, self.children)

    def _reach(self, name: str, links: Dict[str, List[str]]) -> Set[str]:
        seen: Set[str] = set()
        stack = list(links[name])
        while stack:
            n = stack.pop()
            if n in seen:
                continue
            seen.add(n)
            stack.extend(links[n])
        return seen

    def subgraph(self, names: Iterable[str]) -> "Graph":
        """Restrict to `names` plus all of their ancestors."""
        keep: Set[str] = set()
        for n in names:
            if n not in self.targets:
                raise WorkflowError(f"Unknown target '{n}'. Known targets: {sorted(self.targets)}")
            keep.add(n)
            keep |= self.ancestors(n)
        order = [n for n in self.order if n in keep]
        return Graph(
            targets={n: self.targets[n] for n in order},
            analyses={n: self.analyses[n] for n in order},
            parents={n: list(self.parents[n]) for n in order},
            children={n: [c for c in self.children[n] if c in keep] for n in order},
            order=order,
            index={n: self.index[n] for n in order},
        )


def _check_names(targets: List[Target]) -> None:
    names = [t.name for t in targets]
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise WorkflowError(f"Duplicate target names found: {dupes}")
    for t in targets:
        if not t.name.isidentifier():
            raise WorkflowError(
                f"Target name {t.name!r} is not a valid Python identifier "
                "(upstream results are passed as keyword arguments)"
            )


def find_cycle(parents: Dict[str, List[str]], declared: List[str]) -> Optional[List[str]]:
    """
    Depth-first search with a recursion-stack membership test.
    Returns the closed cycle path [a, b, ..., a] or None.
    """
    WHITE, GREY, BLACK = 0, 1, 2
    color = {n: WHITE for n in declared}
    stack: List[str] = []

    def visit(node: str) -> Optional[List[str]]:
        color[node] = GREY
        stack.append(node)
        for up in parents[node]:
            if color[up] == GREY:
                # walking parents, so reverse to read in execution direction
                cycle = stack[stack.index(up):] + [up]
                return list(reversed(cycle))
            if color[up] == WHITE:
                found = visit(up)
                if found:
                    return found
        stack.pop()
        color[node] = BLACK
        return None

    for n in declared:
        if color[n] == WHITE:
            found = visit(n)
            if found:
                return found
    return None


def topo_order(parents: Dict[str, List[str]], declared: List[str]) -> List[str]:
    """
    Kahn's algorithm; among ready nodes the earliest declared goes first.
    """
    index = {n: i for i, n in enumerate(declared)}
    indeg = {n: len(parents[n]) for n in declared}
    children: Dict[str, List[str]] = {n: [] for n in declared}
    for n in declared:
        for p in parents[n]:
            children[p].append(n)

    heap = [index[n] for n, d in indeg.items() if d == 0]
    heapq.heapify(heap)
    order: List[str] = []
    while heap:
        node = declared[heapq.heappop(heap)]
        order.append(node)
        for child in children[node]:
            indeg[child] -= 1
            if indeg[child] == 0:
                heapq.heappush(heap, index[child])

    if len(order) != len(declared):
        remaining = sorted(n for n, d in indeg.items() if d > 0)
        raise CycleError(find_cycle(parents, declared) or remaining)
    return order


def build_graph(targets: Iterable[Target], externals: Collection[str] = ()) -> Graph:
    """
    Build the DAG from target declarations.

    Structural errors (duplicate names, AnalysisError, CycleError) are raised
    here, before anything is executed.
    """
    targets = list(targets)
    _check_names(targets)
    declared = [t.name for t in targets]
    name_set = set(declared)

    analyses: Dict[str, Analysis] = {}
    parents: Dict[str, List[str]] = {}
    for t in targets:
        analysis = analyze(t, name_set, externals)
        analyses[t.name] = analysis
        ups: List[str] = list(analysis.dependencies)
        for need in t.needs:
            if need not in name_set:
                raise AnalysisError(
                    t.name,
                    need,
                    f"needs missing target '{need}'. Known targets: {sorted(name_set)}",
                )
            if need not in ups:
                ups.append(need)
        parents[t.name] = ups
        logger.debug("target %s depends on %s", t.name, ups)

    cycle = find_cycle(parents, declared)
    if cycle:
        raise CycleError(cycle)

    order = topo_order(parents, declared)
    children: Dict[str, List[str]] = {n: [] for n in declared}
    for n in order:
        for p in parents[n]:
            children[p].append(n)

    return Graph(
        targets={t.name: t for t in targets},
        analyses=analyses,
        parents=parents,
        children=children,
        order=order,
        index={n: i for i, n in enumerate(declared)},
    )
