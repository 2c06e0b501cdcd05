# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


# Run Record statuses as persisted in the store.
SUCCESS = "success"
ERROR = "error"
BLOCKED = "blocked"

# Node statuses shown by the inspection API.
CURRENT = "current"
STALE = "stale"


@dataclass
class Target:
    """
    A named, cacheable unit of computation.

    Upstream results reach `command` as keyword arguments named after the
    upstream targets, so `name` must be a valid Python identifier.

    Canonical dependency sources:
      - parameters of `command` that name other targets (inferred)
      - `needs`: ordering-only dependencies (declared, value not passed)
    """
    name: str
    command: Callable[..., Any]

    needs: list[str] = field(default_factory=list)
    inputs: list[str] = field(default_factory=list)   # external files / dirs / globs
    description: str = ""

    # "value" targets return an object; "file" targets return a path whose
    # content hash is tracked like an external input
    format: str = "value"


class RunRecord(BaseModel):
    """Persisted outcome of a target's most recent execution."""

    model_config = ConfigDict(extra="forbid")

    version: int = 1
    name: str
    status: Literal["success", "error", "blocked"]
    definition_hash: str
    # hash of the last successful result; kept across error/blocked runs
    result_hash: Optional[str] = None
    upstream: Dict[str, str] = Field(default_factory=dict)
    inputs: Dict[str, str] = Field(default_factory=dict)
    completed_at: float
    duration: float = 0.0
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == SUCCESS


@dataclass
class TargetOutcome:
    """What a single build pass did with one target."""
    name: str
    status: str  # built | skipped | errored | blocked | cancelled
    reason: str = ""
    duration: float = 0.0
    error: Optional[Exception] = None


@dataclass
class BuildReport:
    """Aggregated result of one make() pass, in execution order."""
    outcomes: Dict[str, TargetOutcome] = field(default_factory=dict)

    def add(self, outcome: TargetOutcome) -> None:
        self.outcomes[outcome.name] = outcome

    def _with_status(self, status: str) -> List[str]:
        return [n for n, o in self.outcomes.items() if o.status == status]

    @property
    def built(self) -> List[str]:
        return self._with_status("built")

    @property
    def skipped(self) -> List[str]:
        return self._with_status("skipped")

    @property
    def errored(self) -> List[str]:
        return self._with_status("errored")

    @property
    def blocked(self) -> List[str]:
        return self._with_status("blocked")

    @property
    def cancelled(self) -> List[str]:
        return self._with_status("cancelled")

    @property
    def errors(self) -> List[Exception]:
        return [o.error for o in self.outcomes.values() if o.error is not None]

    @property
    def ok(self) -> bool:
        return not self.errored and not self.blocked and not self.cancelled

    def as_dict(self) -> Dict[str, str]:
        return {n: o.status for n, o in self.outcomes.items()}
