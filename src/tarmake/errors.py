# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List


class TarmakeError(Exception):
    """Base class for every error raised by tarmake."""


class WorkflowError(TarmakeError):
    """Invalid target declaration or a workflow file that cannot be loaded."""


class AnalysisError(TarmakeError):
    """A target references a name that is neither a target nor a known external symbol."""

    def __init__(self, target: str, name: str, message: str):
        self.target = target
        self.name = name
        super().__init__(f"[{target}] {message}")


class CycleError(TarmakeError):
    """The dependency graph contains a cycle. `cycle` is the closed path, e.g. [a, b, a]."""

    def __init__(self, cycle: List[str]):
        self.cycle = list(cycle)
        super().__init__(f"Dependency cycle detected: {' -> '.join(self.cycle)}")


class NotFoundError(TarmakeError):
    """read() on a target that has never run successfully."""

    def __init__(self, name: str, reason: str = "no successful run recorded"):
        self.name = name
        self.reason = reason
        super().__init__(f"Target '{name}' not found in store: {reason}")


class StoreIOError(TarmakeError):
    """A store entry could not be read or written (unreachable, corrupt, unwritable)."""

    def __init__(self, name: str, message: str):
        self.name = name
        super().__init__(f"Store error for '{name}': {message}")


@dataclass(eq=False)
class ExecutionError(TarmakeError):
    """
    A target's command raised at run time.

    Carries enough context for:
      - the aggregated build report
      - the persisted Run Record (error text)
      - debugging without re-running
    """
    target: str
    error_type: str
    message: str
    traceback: str = ""
    details: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(str(self))

    def __str__(self) -> str:
        lines = [f"{self.error_type}: {self.message}", f"target={self.target}"]
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)

    @property
    def summary(self) -> str:
        return f"{self.error_type}: {self.message}"
