# staleness.py
"""
Decide, per target, whether its stored result can be reused.

Targets are classified in topological order so that staleness flows
forward: a target is `current` only if every ancestor is `current`.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from .dag import Graph
from .errors import NotFoundError, StoreIOError
from .hashing import MISSING, definition_hash, hash_input, hash_inputs
from .model import RunRecord
from .store import ResultStore

logger = logging.getLogger(__name__)

# reason codes
CURRENT = "current"
NEVER_BUILT = "never_built"
RECORD_UNREADABLE = "record_unreadable"
LAST_RUN_FAILED = "last_run_failed"
DEFINITION_CHANGED = "definition_changed"
INPUT_CHANGED = "input_changed"
UPSTREAM_STALE = "upstream_stale"
UPSTREAM_CHANGED = "upstream_changed"
RESULT_MISSING = "result_missing"


@dataclass(frozen=True)
class Staleness:
    name: str
    stale: bool
    reason: str
    detail: str = ""
    definition_hash: str = ""

    @property
    def status(self) -> str:
        return "stale" if self.stale else "current"


@dataclass
class Snapshot:
    """Everything the tracker read, reused by the executor for the same pass."""
    graph: Graph
    classes: Dict[str, Staleness]
    records: Dict[str, Optional[RunRecord]]
    inputs: Dict[str, Dict[str, str]]   # target -> {pattern: digest}

    def stale(self) -> List[str]:
        return [n for n in self.graph.order if self.classes[n].stale]


def current_inputs(graph: Graph, root: str | Path) -> Dict[str, Dict[str, str]]:
    """Hash every declared external input once per pass."""
    out: Dict[str, Dict[str, str]] = {}
    for name in graph.order:
        target = graph.targets[name]
        patterns = list(target.inputs)
        out[name] = hash_inputs(root, patterns)
    return out


def _classify_one(
    name: str,
    graph: Graph,
    record: Optional[RunRecord],
    def_hash: str,
    inputs: Dict[str, str],
    classes: Dict[str, Staleness],
    records: Dict[str, Optional[RunRecord]],
    store: ResultStore,
    root: Path,
) -> Staleness:
    def stale(reason: str, detail: str = "") -> Staleness:
        return Staleness(name, True, reason, detail, def_hash)

    if record is None:
        return stale(NEVER_BUILT)
    if not record.succeeded:
        return stale(LAST_RUN_FAILED, record.status)
    if record.definition_hash != def_hash:
        return stale(DEFINITION_CHANGED)

    for pattern, digest in inputs.items():
        if digest == MISSING or record.inputs.get(pattern) != digest:
            return stale(INPUT_CHANGED, pattern)
    if set(record.inputs) != set(inputs):
        return stale(INPUT_CHANGED, "declared inputs changed")

    for up in graph.parents[name]:
        if classes[up].stale:
            return stale(UPSTREAM_STALE, up)
        up_record = records.get(up)
        up_hash = up_record.result_hash if up_record is not None else None
        if record.upstream.get(up) != up_hash:
            return stale(UPSTREAM_CHANGED, up)

    if not store.has_value(name):
        return stale(RESULT_MISSING)

    if graph.targets[name].format == "file":
        # the tracked file may have been edited or removed outside the build
        try:
            path = store.load_value(name)
        except (StoreIOError, NotFoundError) as e:
            return stale(RESULT_MISSING, str(e))
        if hash_input(root, str(path)) != record.result_hash:
            return stale(INPUT_CHANGED, str(path))

    return Staleness(name, False, CURRENT, "", def_hash)


def classify(graph: Graph, store: ResultStore, *, root: str | Path = ".") -> Snapshot:
    """
    Classify every target in `graph` as stale or current.

    A target is stale when:
      - it has no readable Run Record, or its last run did not succeed
      - its definition hash changed
      - a declared external input's content hash changed (or it is missing)
      - an upstream is stale, or an upstream result differs from the one
        this target was built from
      - its stored result is gone
    """
    root_p = Path(root).resolve()
    inputs = current_inputs(graph, root_p)
    records: Dict[str, Optional[RunRecord]] = {}
    classes: Dict[str, Staleness] = {}

    for name in graph.order:
        def_hash = definition_hash(graph.targets[name], root=root_p)
        try:
            record = store.load_record(name)
        except StoreIOError as e:
            logger.warning("%s", e)
            records[name] = None
            classes[name] = Staleness(name, True, RECORD_UNREADABLE, str(e), def_hash)
            continue
        records[name] = record
        classes[name] = _classify_one(
            name, graph, record, def_hash, inputs[name], classes, records, store, root_p
        )
        logger.debug("classified %s: %s", name, classes[name].reason)

    return Snapshot(graph=graph, classes=classes, records=records, inputs=inputs)
