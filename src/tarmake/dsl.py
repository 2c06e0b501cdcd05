# src/tarmake/dsl.py
from __future__ import annotations

import inspect
import os
from typing import Any, Callable, Iterable, List, Optional

from .errors import WorkflowError
from .model import Target


def _check_command(name: str, command: Any) -> None:
    if not inspect.isfunction(command):
        raise WorkflowError(
            f"target({name!r}) command must be a function or lambda, got {type(command).__name__}"
        )


# ---------------------------------------------------------------------
# Functional helpers
# ---------------------------------------------------------------------

def target(
    name: str,
    command: Callable[..., Any],
    *,
    needs: Optional[List[str]] = None,
    inputs: Optional[List[str]] = None,
    description: str = "",
    format: str = "value",
) -> Target:
    """
    Declare a target.

    Upstream results are passed to `command` by parameter name:

        target("double", lambda load: [x * 2 for x in load])
    """
    _check_command(name, command)
    if format not in ("value", "file"):
        raise WorkflowError(f"target({name!r}) format must be 'value' or 'file', got {format!r}")
    return Target(
        name=name,
        command=command,
        needs=list(needs or []),
        inputs=[os.fspath(p) for p in (inputs or [])],
        description=description,
        format=format,
    )


def file_target(name: str, path: str | os.PathLike, *, description: str = "") -> Target:
    """
    Track an external file. The target's value is the path; it goes stale
    whenever the file's content hash changes.
    """
    p = os.fspath(path)
    return target(
        name,
        lambda __tracked_path=p: __tracked_path,
        inputs=[p],
        description=description or f"file {p}",
        format="file",
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class TargetBuilder:
    def __init__(self, name: str):
        self.name = name
        self._command: Optional[Callable[..., Any]] = None
        self._needs: list[str] = []
        self._inputs: list[str] = []
        self._description: str = ""
        self._format: str = "value"

    def command(self, fn: Callable[..., Any]):
        self._command = fn
        return self

    def depends_on(self, *target_names: str):
        self._needs.extend(target_names)
        return self

    def with_inputs(self, *paths: str):
        self._inputs.extend(paths)
        return self

    def describe(self, text: str):
        self._description = text
        return self

    def as_file(self):
        self._format = "file"
        return self

    def build(self) -> Target:
        if self._command is None:
            raise WorkflowError(f"Target '{self.name}' has no command")
        return target(
            self.name,
            self._command,
            needs=self._needs,
            inputs=self._inputs,
            description=self._description,
            format=self._format,
        )


def define(name: str) -> TargetBuilder:
    """Convenience: define("fit").command(fit_model).build()"""
    return TargetBuilder(name)


# ---------------------------------------------------------------------
# Matrix (static branching)
# ---------------------------------------------------------------------

class Matrix:
    """
    Minimal static branching.

    Example:
        matrix("power", [2, 3]).targets(
            lambda v: target(f"pow_{v}", lambda load, v=v: [x ** v for x in load])
        )
    """
    def __init__(self, key: str, values: Iterable[Any]):
        self.key = key
        self.values = list(values)

    def targets(self, builder: Callable[[Any], Target]) -> List[Target]:
        return [builder(v) for v in self.values]


def matrix(key: str, values: Iterable[Any]) -> Matrix:
    return Matrix(key, values)


# ---------------------------------------------------------------------
# Workflow helper (single-file story)
# ---------------------------------------------------------------------

def wf(*items: Target | List[Target]) -> List[Target]:
    """
    Workflow definition helper; flattens matrix expansions.

        from tarmake import wf, target

        def workflow():
            return wf(
                target(...),
                target(...),
            )

    Or use TARGETS directly:
        TARGETS = wf(target(...), target(...))
    """
    out: List[Target] = []
    for item in items:
        if isinstance(item, Target):
            out.append(item)
        elif isinstance(item, list):
            out.extend(item)
        else:
            raise WorkflowError(f"wf() expects targets or lists of targets, got {type(item).__name__}")
    return out
