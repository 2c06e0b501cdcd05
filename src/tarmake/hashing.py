# hashing.py
from __future__ import annotations

import hashlib
import inspect
import json
import os
from pathlib import Path
from types import CodeType
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from .analyzer import attribute_references, global_references

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# definition_hash = hash(
#     target name, format, needs, declared inputs,
#     compiled code of the command (recursively through nested code),
#     parameter defaults, closure values,
#     code of project-local helper functions it calls,
#     module-level constants it reads (scalars and containers),
#     project-local module attributes it reads (`helpers.scale`),
# )
#
# Code is fingerprinted from the compiled code object, not the source
# text, so comments, whitespace and line numbers do not invalidate a
# target. Bump HASH_FORMAT_VERSION if the payload layout changes.
# ---------------------------------------------------------------------

HASH_FORMAT_VERSION = 2
MISSING = "missing"
CHUNK = 1024 * 1024

_PRIMITIVES = (bool, int, float, complex, str, bytes, type(None))


def sha256_bytes(data: bytes) -> str:
    h = hashlib.sha256()
    h.update(data)
    return h.hexdigest()


def sha256_str(s: str) -> str:
    return sha256_bytes(s.encode("utf-8"))


def json_dumps_stable(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def hash_file_contents(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        while True:
            chunk = f.read(CHUNK)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


# ---------------------------------------------------------------------
# External inputs
# ---------------------------------------------------------------------

def _relpath(p: Path, root: Path) -> str:
    try:
        return p.resolve().relative_to(root.resolve()).as_posix()
    except ValueError:
        # outside the project root: keep the absolute path
        return p.resolve().as_posix()


def _iter_files_under(root: Path) -> Iterable[Path]:
    # deterministic traversal
    for p in sorted(root.rglob("*")):
        if p.is_file():
            yield p


def _resolve_pattern(root: Path, pattern: str) -> List[Path]:
    """
    Expand one declared input into concrete paths.
    Supports:
      - file path: "data/raw.csv"
      - dir path:  "data/"
      - glob:      "data/**/*.csv"
    """
    p = Path(pattern).expanduser()
    if not p.is_absolute():
        p = root / p
    if p.exists():
        return [p]
    try:
        return sorted(m for m in root.glob(pattern) if m.exists())
    except (ValueError, NotImplementedError):
        # absolute or otherwise unsupported glob pattern
        return []


def hash_input(root: Path, pattern: str) -> str:
    """Full-content SHA-256 of a declared input; MISSING if nothing matches."""
    matches = _resolve_pattern(root, pattern)
    if not matches:
        return MISSING

    if len(matches) == 1 and matches[0].is_file():
        return hash_file_contents(matches[0])

    file_fps: List[List[str]] = []
    for m in matches:
        files = [m] if m.is_file() else list(_iter_files_under(m))
        for f in files:
            file_fps.append([_relpath(f, root), hash_file_contents(f)])
    file_fps.sort(key=lambda t: t[0])  # stable ordering by relpath
    return sha256_str(json_dumps_stable(file_fps))


def hash_inputs(root: str | Path, patterns: Iterable[str]) -> Dict[str, str]:
    """Map each declared input pattern to its content digest."""
    root_p = Path(root).resolve()
    return {pat: hash_input(root_p, pat) for pat in patterns}


# ---------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------

def _const_fingerprint(c: Any) -> Any:
    if isinstance(c, CodeType):
        return code_fingerprint(c)
    if isinstance(c, (tuple, list)):
        return [_const_fingerprint(x) for x in c]
    if isinstance(c, (frozenset, set)):
        # set iteration order depends on hash randomization
        return sorted(json_dumps_stable(_const_fingerprint(x)) for x in c)
    return repr(c)


def code_fingerprint(code: CodeType) -> Dict[str, Any]:
    """Version-local fingerprint of a code object, ignoring line numbers."""
    return {
        "code": code.co_code.hex(),
        "names": list(code.co_names),
        "varnames": list(code.co_varnames),
        "freevars": list(code.co_freevars),
        "consts": [_const_fingerprint(c) for c in code.co_consts],
    }


def _under_root(filename: Optional[str], root: Path) -> bool:
    if not filename or filename.startswith("<"):
        return False
    path = Path(filename).resolve()
    if "site-packages" in path.parts or "dist-packages" in path.parts:
        return False
    try:
        path.relative_to(root)
    except ValueError:
        return False
    return True


def is_project_function(obj: Any, root: Path) -> bool:
    """True for plain Python functions whose source file lives under `root`."""
    return inspect.isfunction(obj) and _under_root(obj.__code__.co_filename, root)


def is_project_module(obj: Any, root: Path) -> bool:
    """True for modules loaded from a source file under `root`."""
    return inspect.ismodule(obj) and _under_root(getattr(obj, "__file__", None), root)


def _opaque(value: Any) -> str:
    return f"<{type(value).__module__}.{type(value).__qualname__}>"


def _value_fingerprint(value: Any, root: Path, seen: Set[int]) -> Any:
    if isinstance(value, _PRIMITIVES):
        return repr(value)
    if isinstance(value, os.PathLike):
        return str(os.fspath(value))
    if isinstance(value, (tuple, list)):
        return [_value_fingerprint(v, root, seen) for v in value]
    if isinstance(value, dict):
        return {str(k): _value_fingerprint(v, root, seen) for k, v in value.items()}
    if isinstance(value, (frozenset, set)):
        return sorted(json_dumps_stable(_value_fingerprint(v, root, seen)) for v in value)
    if is_project_function(value, root):
        return function_fingerprint(value, root=root, _seen=seen)
    # opaque object: its reprs often embed memory addresses
    return _opaque(value)


def _tracked_fingerprint(value: Any, root: Path, seen: Set[int]) -> Any:
    """
    Fingerprint of a global a command reads, or None when it is not tracked
    (modules, classes, library functions, other opaque objects).
    """
    fp = _value_fingerprint(value, root, seen)
    if isinstance(fp, str) and fp == _opaque(value) and not isinstance(value, _PRIMITIVES):
        return None
    return fp


def function_fingerprint(
    fn: Callable[..., Any],
    *,
    root: str | Path | None = None,
    _seen: Optional[Set[int]] = None,
) -> Dict[str, Any]:
    """
    Fingerprint a function together with the project-local helpers and
    simple constants it reads through its globals.
    """
    root_p = Path(root).resolve() if root is not None else Path.cwd().resolve()
    seen = _seen if _seen is not None else set()
    if id(fn) in seen:
        # recursion (direct or mutual): reference by name only
        return {"ref": f"{fn.__module__}.{fn.__qualname__}"}
    seen.add(id(fn))

    code = fn.__code__
    payload: Dict[str, Any] = {
        "code": code_fingerprint(code),
        "defaults": [_value_fingerprint(v, root_p, seen) for v in (fn.__defaults__ or ())],
        "kwdefaults": {
            k: _value_fingerprint(v, root_p, seen)
            for k, v in sorted((fn.__kwdefaults__ or {}).items())
        },
    }

    closure: Dict[str, Any] = {}
    for name, cell in zip(code.co_freevars, fn.__closure__ or ()):
        try:
            closure[name] = _value_fingerprint(cell.cell_contents, root_p, seen)
        except ValueError:
            # empty cell (variable not yet bound)
            closure[name] = "<empty>"
    payload["closure"] = closure

    helpers: Dict[str, Any] = {}
    fn_globals = getattr(fn, "__globals__", {}) or {}
    for name in sorted(global_references(code)):
        if name not in fn_globals:
            continue
        fp = _tracked_fingerprint(fn_globals[name], root_p, seen)
        if fp is not None:
            helpers[name] = fp
    for owner, attr in sorted(attribute_references(code)):
        module = fn_globals.get(owner)
        if not is_project_module(module, root_p) or not hasattr(module, attr):
            continue
        fp = _tracked_fingerprint(getattr(module, attr), root_p, seen)
        if fp is not None:
            helpers[f"{owner}.{attr}"] = fp
    payload["globals"] = helpers

    return payload


def definition_hash(target, *, root: str | Path | None = None) -> str:
    """Content hash of a target's definition (see module header)."""
    payload = {
        "v": HASH_FORMAT_VERSION,
        "name": target.name,
        "format": target.format,
        "needs": list(target.needs),
        "inputs": list(target.inputs),
        "command": function_fingerprint(target.command, root=root),
    }
    return sha256_str(json_dumps_stable(payload))
