from .dsl import target, file_target, define, matrix, wf, TargetBuilder
from .runner import make, build, invalidate, destroy, load_workflow
from .inspection import manifest, manifest_edges, visualize, outdated, read
from .model import Target, RunRecord, BuildReport
from .errors import (
    TarmakeError,
    WorkflowError,
    AnalysisError,
    CycleError,
    ExecutionError,
    NotFoundError,
    StoreIOError,
)

__all__ = [
    "target", "file_target", "define", "matrix", "wf", "TargetBuilder",
    "make", "build", "invalidate", "destroy", "load_workflow",
    "manifest", "manifest_edges", "visualize", "outdated", "read",
    "Target", "RunRecord", "BuildReport",
    "TarmakeError", "WorkflowError", "AnalysisError", "CycleError",
    "ExecutionError", "NotFoundError", "StoreIOError",
]
