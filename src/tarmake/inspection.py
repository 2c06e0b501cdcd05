# inspection.py
"""Read-only views of a workflow: manifest, status graph, stored results."""
from __future__ import annotations

import inspect
import textwrap
from pathlib import Path
from typing import Any, Collection, Dict, List, Tuple

from .dag import Graph, build_graph
from .hashing import definition_hash
from .model import BLOCKED, CURRENT, ERROR, STALE, Target
from .staleness import classify
from .store import DEFAULT_STORE_DIR, ResultStore

STATUS_COLORS = {
    CURRENT: "#7bc67e",   # green
    STALE: "#f2c14e",     # amber
    ERROR: "#e4572e",     # red
    BLOCKED: "#b0b0b0",   # grey
}


def _command_text(target: Target) -> str:
    try:
        src = inspect.getsource(target.command)
    except (OSError, TypeError):
        return f"{target.command.__module__}.{target.command.__qualname__}"
    return textwrap.dedent(src).strip()


def manifest(
    targets: List[Target],
    *,
    root: str | Path = ".",
    externals: Collection[str] = (),
) -> List[Dict[str, Any]]:
    """
    Declared targets in topological order with their dependencies.
    Builds the graph (static analysis only); runs nothing.
    """
    graph = build_graph(targets, externals=externals)
    root_p = Path(root).resolve()
    rows: List[Dict[str, Any]] = []
    for name in graph.order:
        t = graph.targets[name]
        rows.append(
            {
                "name": name,
                "dependencies": list(graph.parents[name]),
                "parameters": list(graph.analyses[name].parameters),
                "needs": list(t.needs),
                "inputs": list(t.inputs),
                "format": t.format,
                "description": t.description,
                "definition_hash": definition_hash(t, root=root_p),
                "command": _command_text(t),
            }
        )
    return rows


def manifest_edges(rows: List[Dict[str, Any]]) -> List[Tuple[str, str]]:
    """Flatten manifest rows into (upstream, downstream) edges."""
    return [(dep, row["name"]) for row in rows for dep in row["dependencies"]]


def statuses(
    graph: Graph,
    store: ResultStore,
    *,
    root: str | Path = ".",
) -> Dict[str, str]:
    """
    Per-target status: error / blocked from the last run, otherwise
    stale / current from the staleness tracker.
    """
    snapshot = classify(graph, store, root=root)
    out: Dict[str, str] = {}
    for name in graph.order:
        record = snapshot.records.get(name)
        if record is not None and record.status in (ERROR, BLOCKED):
            out[name] = record.status
        else:
            out[name] = snapshot.classes[name].status
    return out


def _dot_id(name: str) -> str:
    return '"' + name.replace('"', '\\"') + '"'


def visualize(
    targets: List[Target],
    *,
    store: str | Path | ResultStore = DEFAULT_STORE_DIR,
    root: str | Path = ".",
    externals: Collection[str] = (),
) -> str:
    """Graphviz DOT text of the graph, nodes colored by status."""
    graph = build_graph(targets, externals=externals)
    store_obj = store if isinstance(store, ResultStore) else ResultStore(store)
    node_status = statuses(graph, store_obj, root=root)

    lines = [
        "digraph tarmake {",
        "  rankdir=LR;",
        '  node [shape=box, style="rounded,filled", fontname="Helvetica"];',
    ]
    for name in graph.order:
        status = node_status[name]
        label = f"{name}\\n{status}"
        lines.append(
            f"  {_dot_id(name)} [label=\"{label}\", fillcolor=\"{STATUS_COLORS[status]}\", "
            f"tooltip=\"{status}\"];"
        )
    for up, down in graph.edges:
        lines.append(f"  {_dot_id(up)} -> {_dot_id(down)};")
    lines.append("}")
    return "\n".join(lines) + "\n"


def outdated(
    targets: List[Target],
    *,
    store: str | Path | ResultStore = DEFAULT_STORE_DIR,
    root: str | Path = ".",
    externals: Collection[str] = (),
) -> List[str]:
    """Names of targets the next make() would run, in build order."""
    graph = build_graph(targets, externals=externals)
    store_obj = store if isinstance(store, ResultStore) else ResultStore(store)
    return classify(graph, store_obj, root=root).stale()


def read(name: str, store: str | Path | ResultStore = DEFAULT_STORE_DIR) -> Any:
    """Cached result of `name`; NotFoundError if it never ran successfully."""
    store_obj = store if isinstance(store, ResultStore) else ResultStore(store)
    return store_obj.read(name)
