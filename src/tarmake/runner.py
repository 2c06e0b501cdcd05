# runner.py
from __future__ import annotations

import heapq
import logging
import os
import runpy
import time
import traceback
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Collection, Dict, List, Optional

from .dag import Graph, build_graph
from .errors import ExecutionError, NotFoundError, StoreIOError, WorkflowError
from .hashing import MISSING, hash_input
from .model import BLOCKED, ERROR, SUCCESS, BuildReport, RunRecord, Target, TargetOutcome
from .staleness import Snapshot, classify
from .store import DEFAULT_STORE_DIR, ResultStore
from .ui.console import get_console

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------
# Workflow loading (local file)
# ----------------------------------------------------------------------

def load_workflow(path: str | Path) -> List[Target]:
    """
    Load a workflow from a python file path.

    The file must define either:
      - workflow() -> List[Target]
      - TARGETS = [Target, ...]

    The file is executed once; helper functions it imports or defines are
    what the targets call.
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise WorkflowError(f"Workflow file not found: {wf_path}")
    if wf_path.suffix != ".py":
        raise WorkflowError(f"Workflow must be a .py file, got: {wf_path.name}")

    module_name = f"tarmake_workflow_{wf_path.stem}"
    try:
        globals_dict = runpy.run_path(str(wf_path), run_name=module_name)
    except Exception as e:
        raise WorkflowError(f"Failed to load workflow {wf_path.name}: {type(e).__name__}: {e}") from e

    targets = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        targets = globals_dict["workflow"]()
    elif "TARGETS" in globals_dict:
        targets = globals_dict["TARGETS"]

    if not isinstance(targets, list) or not all(isinstance(t, Target) for t in targets):
        raise WorkflowError(
            "Workflow must return/define a List[Target]. "
            "Define workflow() -> List[Target] or TARGETS = [Target, ...]."
        )

    logger.info("loaded %d target(s) from %s", len(targets), wf_path)
    return targets


# ----------------------------------------------------------------------
# Execution primitives
# ----------------------------------------------------------------------

@dataclass
class _Done:
    name: str
    value: Any
    record: Optional[RunRecord]
    error: Optional[Exception]
    duration: float


def _as_execution_error(name: str, exc: BaseException) -> ExecutionError:
    return ExecutionError(
        target=name,
        error_type=type(exc).__name__,
        message=str(exc),
        traceback="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
    )


def _run_target(
    target: Target,
    kwargs: Dict[str, Any],
    *,
    definition_hash: str,
    upstream: Dict[str, str],
    inputs: Dict[str, str],
    previous: Optional[RunRecord],
    store: ResultStore,
    root: Path,
) -> _Done:
    """
    Run one stale target and persist its outcome. Never raises: faults are
    returned so the scheduler can isolate them.
    """
    start = time.perf_counter()
    value: Any = None
    error: Optional[Exception] = None
    result_hash: Optional[str] = None

    try:
        value = target.command(**kwargs)
    except Exception as e:
        error = _as_execution_error(target.name, e)

    if error is None:
        try:
            if target.format == "file":
                if not isinstance(value, (str, os.PathLike)):
                    raise ExecutionError(
                        target=target.name,
                        error_type="TypeError",
                        message=f"file target must return a path, got {type(value).__name__}",
                    )
                path = Path(os.fspath(value))
                if not path.is_absolute():
                    # downstream commands get the file the hash was taken from
                    path = root / path
                    value = str(path) if isinstance(value, str) else path
                result_hash = hash_input(root, str(path))
                if result_hash == MISSING:
                    raise ExecutionError(
                        target=target.name,
                        error_type="FileNotFoundError",
                        message=f"file target returned a path that does not exist: {value}",
                    )
            digest = store.save_value(target.name, value)
            if result_hash is None:
                result_hash = digest
        except (ExecutionError, StoreIOError) as e:
            error = e

    duration = time.perf_counter() - start
    if error is None:
        record = RunRecord(
            name=target.name,
            status=SUCCESS,
            definition_hash=definition_hash,
            result_hash=result_hash,
            upstream=upstream,
            inputs=inputs,
            completed_at=time.time(),
            duration=duration,
        )
    else:
        record = RunRecord(
            name=target.name,
            status=ERROR,
            definition_hash=definition_hash,
            result_hash=previous.result_hash if previous is not None else None,
            upstream=upstream,
            inputs=inputs,
            completed_at=time.time(),
            duration=duration,
            error=getattr(error, "summary", str(error)),
        )

    try:
        store.save_record(record)
    except StoreIOError as e:
        logger.error("%s", e)
        if error is None:
            error = e
        record = None

    return _Done(target.name, value if error is None else None, record, error, duration)


def _submit(pool: Optional[ThreadPoolExecutor], fn, *args, **kwargs) -> Future:
    if pool is not None:
        return pool.submit(fn, *args, **kwargs)
    # serial mode: run inline on the calling thread
    fut: Future = Future()
    fut.set_result(fn(*args, **kwargs))
    return fut


class _Build:
    """State of one make() pass over a classified graph."""

    def __init__(
        self,
        snapshot: Snapshot,
        store: ResultStore,
        root: Path,
        fail_fast: bool,
    ):
        self.snapshot = snapshot
        self.graph: Graph = snapshot.graph
        self.store = store
        self.root = root
        self.fail_fast = fail_fast
        self.records: Dict[str, Optional[RunRecord]] = dict(snapshot.records)
        self.values: Dict[str, Any] = {}
        self.report = BuildReport()
        self.failed = False
        self.console = get_console()

    # ---- helpers ----

    def _value_of(self, name: str) -> Any:
        if name not in self.values:
            self.values[name] = self.store.load_value(name)
        return self.values[name]

    def _upstream_hashes(self, name: str) -> Dict[str, str]:
        out: Dict[str, str] = {}
        for up in self.graph.parents[name]:
            rec = self.records.get(up)
            if rec is not None and rec.result_hash is not None:
                out[up] = rec.result_hash
        return out

    def _block_descendants(self, failed: str) -> None:
        downstream = self.graph.descendants(failed)
        for name in self.graph.order:
            if name not in downstream or name in self.report.outcomes:
                continue
            self.report.add(TargetOutcome(name, "blocked", reason=f"upstream '{failed}' failed"))
            self.console.print_target_blocked(name, failed)
            logger.warning("target %s blocked by failed upstream %s", name, failed)
            previous = self.records.get(name)
            record = RunRecord(
                name=name,
                status=BLOCKED,
                definition_hash=self.snapshot.classes[name].definition_hash,
                result_hash=previous.result_hash if previous is not None else None,
                upstream=previous.upstream if previous is not None else {},
                inputs=previous.inputs if previous is not None else {},
                completed_at=time.time(),
                error=f"blocked by '{failed}'",
            )
            try:
                self.store.save_record(record)
            except StoreIOError as e:
                logger.error("%s", e)

    def _record_failure(self, name: str, error: Exception, duration: float = 0.0) -> None:
        self.failed = True
        self.report.add(TargetOutcome(name, "errored", reason=str(error).split("\n")[0],
                                      duration=duration, error=error))
        self.console.print_target_failed(name, str(error))
        logger.error("target %s failed: %s", name, str(error).split("\n")[0])
        self._block_descendants(name)

    def _fail_before_run(self, name: str, error: Exception) -> None:
        """The command never ran: record the fault like any other failure."""
        previous = self.records.get(name)
        record = RunRecord(
            name=name,
            status=ERROR,
            definition_hash=self.snapshot.classes[name].definition_hash,
            result_hash=previous.result_hash if previous is not None else None,
            upstream=self._upstream_hashes(name),
            inputs=self.snapshot.inputs[name],
            completed_at=time.time(),
            error=getattr(error, "summary", str(error)),
        )
        try:
            self.store.save_record(record)
            self.records[name] = record
        except StoreIOError as e:
            logger.error("%s", e)
        self._record_failure(name, error)

    # ---- scheduling ----

    def run(self, max_workers: int) -> BuildReport:
        graph = self.graph
        indeg = {n: len(graph.parents[n]) for n in graph.order}
        ready: List[int] = [graph.index[n] for n in graph.order if indeg[n] == 0]
        heapq.heapify(ready)
        by_index = {graph.index[n]: n for n in graph.order}
        in_flight: Dict[Future, str] = {}

        def release(name: str) -> None:
            for child in graph.children[name]:
                indeg[child] -= 1
                if indeg[child] == 0 and child not in self.report.outcomes:
                    heapq.heappush(ready, graph.index[child])

        pool = ThreadPoolExecutor(max_workers=max_workers) if max_workers > 1 else None
        try:
            while ready or in_flight:
                # schedule all currently ready
                while ready and not (self.fail_fast and self.failed):
                    name = by_index[heapq.heappop(ready)]
                    if name in self.report.outcomes:
                        continue
                    cls = self.snapshot.classes[name]
                    if not cls.stale:
                        self.report.add(TargetOutcome(name, "skipped", reason=cls.reason))
                        self.console.print_target_skipped(name)
                        release(name)
                        continue

                    target = graph.targets[name]
                    missing = [p for p, d in self.snapshot.inputs[name].items() if d == MISSING]
                    if missing:
                        self._fail_before_run(name, ExecutionError(
                            target=name,
                            error_type="FileNotFoundError",
                            message=f"declared input matches nothing: {', '.join(missing)}",
                        ))
                        continue
                    try:
                        kwargs = {dep: self._value_of(dep) for dep in graph.analyses[name].dependencies}
                    except (NotFoundError, StoreIOError) as e:
                        self._fail_before_run(name, e)
                        continue

                    self.console.print_target_start(name, cls.reason)
                    logger.info("building %s (%s)", name, cls.reason)
                    fut = _submit(
                        pool,
                        _run_target,
                        target,
                        kwargs,
                        definition_hash=cls.definition_hash,
                        upstream=self._upstream_hashes(name),
                        inputs=self.snapshot.inputs[name],
                        previous=self.records.get(name),
                        store=self.store,
                        root=self.root,
                    )
                    in_flight[fut] = name
                    if pool is None:
                        # serial: settle this target before scheduling the next
                        break

                if not in_flight:
                    break

                # wait for completions, then loop to schedule newly-ready targets
                done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
                for fut in sorted(done, key=lambda f: graph.index[in_flight[f]]):
                    name = in_flight.pop(fut)
                    result: _Done = fut.result()
                    if result.record is not None:
                        self.records[name] = result.record
                    if result.error is not None:
                        self._record_failure(name, result.error, result.duration)
                        continue
                    self.values[name] = result.value
                    self.report.add(TargetOutcome(name, "built", reason=self.snapshot.classes[name].reason,
                                                  duration=result.duration))
                    self.console.print_target_built(name, result.duration)
                    release(name)
        finally:
            if pool is not None:
                # running targets always finish
                pool.shutdown(wait=True)

        for name in graph.order:
            if name not in self.report.outcomes:
                self.report.add(TargetOutcome(name, "cancelled", reason="fail-fast"))

        # report in topological order
        self.report.outcomes = {n: self.report.outcomes[n] for n in graph.order}
        return self.report


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def _as_store(store: str | Path | ResultStore) -> ResultStore:
    return store if isinstance(store, ResultStore) else ResultStore(store)


def make(
    targets: List[Target],
    *,
    names: Optional[List[str]] = None,
    store: str | Path | ResultStore = DEFAULT_STORE_DIR,
    root: str | Path = ".",
    max_workers: int = 1,
    fail_fast: bool = False,
    externals: Collection[str] = (),
) -> BuildReport:
    """
    Build stale targets in dependency order and return the build report.

    Structural errors (WorkflowError, AnalysisError, CycleError) are raised
    before anything runs. Target failures are isolated: the failing target's
    descendants are blocked, unrelated branches keep going, and all faults
    are collected in the report.
    """
    if max_workers < 1:
        raise ValueError(f"max_workers must be >= 1, got {max_workers}")

    graph = build_graph(targets, externals=externals)
    if names:
        graph = graph.subgraph(names)

    store_obj = _as_store(store)
    root_p = Path(root).resolve()
    snapshot = classify(graph, store_obj, root=root_p)
    stale = snapshot.stale()
    logger.info("%d of %d target(s) stale", len(stale), len(graph.order))

    report = _Build(snapshot, store_obj, root_p, fail_fast).run(max_workers)
    logger.info(
        "build finished: built=%d skipped=%d errored=%d blocked=%d",
        len(report.built), len(report.skipped), len(report.errored), len(report.blocked),
    )
    return report


def invalidate(name: str, store: str | Path | ResultStore = DEFAULT_STORE_DIR) -> bool:
    """Forget a target's Run Record so the next build treats it as never built."""
    removed = _as_store(store).delete_record(name)
    logger.info("invalidate %s: %s", name, "removed" if removed else "no record")
    return removed


def destroy(store: str | Path | ResultStore = DEFAULT_STORE_DIR) -> None:
    """Remove every stored result and Run Record."""
    _as_store(store).destroy()


build = make
