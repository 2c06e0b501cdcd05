# analyzer.py
"""
Static dependency analysis for target commands.

Nothing here calls a target's command. Dependencies come from two static
sources:

  - the parameter list (inspect.signature reads it without running the body)
  - identifier references compiled into the command's code object, walked
    recursively through nested code (comprehensions, inner functions)

A parameter named after a target is an upstream dependency; its result is
passed in as a keyword argument at build time. Every other name the command
needs must resolve to a known external symbol: the command's module
globals, builtins, its closure, or a name declared as external on the
registry.
"""
from __future__ import annotations

import builtins
import dis
import inspect
from dataclasses import dataclass
from types import CodeType
from typing import Collection, Iterator, Set, Tuple

from .errors import AnalysisError

_GLOBAL_LOADS = {"LOAD_GLOBAL", "LOAD_NAME", "LOAD_FROM_DICT_OR_GLOBALS"}
_ATTR_LOADS = {"LOAD_ATTR", "LOAD_METHOD"}
_BUILTIN_NAMES = frozenset(dir(builtins))


@dataclass(frozen=True)
class Analysis:
    """Static view of one target's command."""
    target: str
    dependencies: Tuple[str, ...]   # parameters naming targets, in signature order
    parameters: Tuple[str, ...]     # fixed parameters (have defaults, not targets)
    externals: Tuple[str, ...]      # resolved global references, sorted


def iter_code_objects(code: CodeType) -> Iterator[CodeType]:
    yield code
    for const in code.co_consts:
        if isinstance(const, CodeType):
            yield from iter_code_objects(const)


def global_references(code: CodeType) -> Set[str]:
    """Names a code object (and its nested code) loads from global scope."""
    names: Set[str] = set()
    for co in iter_code_objects(code):
        for instr in dis.get_instructions(co):
            if instr.opname in _GLOBAL_LOADS and isinstance(instr.argval, str):
                names.add(instr.argval)
    return names


def attribute_references(code: CodeType) -> Set[Tuple[str, str]]:
    """(global, attribute) pairs such as `helpers.scale` in `helpers.scale(x)`."""
    pairs: Set[Tuple[str, str]] = set()
    for co in iter_code_objects(code):
        owner = None
        for instr in dis.get_instructions(co):
            if owner is not None and instr.opname in _ATTR_LOADS and isinstance(instr.argval, str):
                pairs.add((owner, instr.argval))
            if instr.opname in _GLOBAL_LOADS and isinstance(instr.argval, str):
                owner = instr.argval
            else:
                owner = None
    return pairs


def _resolvable(name: str, fn, externals: Collection[str]) -> bool:
    if name in externals or name in _BUILTIN_NAMES:
        return True
    fn_globals = getattr(fn, "__globals__", None) or {}
    if name in fn_globals:
        return True
    # a module may install its own builtins mapping
    mod_builtins = fn_globals.get("__builtins__")
    if isinstance(mod_builtins, dict):
        return name in mod_builtins
    return hasattr(mod_builtins, name) if mod_builtins is not None else False


def analyze(target, known_targets: Collection[str], externals: Collection[str] = ()) -> Analysis:
    """
    Infer the upstream dependencies of `target`.

    Raises AnalysisError for a parameter that is neither a target nor
    defaulted, and for a global reference that resolves to nothing.
    """
    fn = target.command
    if not inspect.isfunction(fn):
        raise AnalysisError(
            target.name,
            getattr(fn, "__name__", repr(fn)),
            f"command must be a Python function or lambda, got {type(fn).__name__}",
        )

    sig = inspect.signature(fn)
    deps: list[str] = []
    fixed: list[str] = []
    for param in sig.parameters.values():
        if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            continue
        if param.name in known_targets:
            if param.kind is param.POSITIONAL_ONLY:
                raise AnalysisError(
                    target.name,
                    param.name,
                    f"upstream '{param.name}' is a positional-only parameter; "
                    "upstream results are passed by keyword",
                )
            deps.append(param.name)
        elif param.default is not param.empty:
            fixed.append(param.name)
        else:
            raise AnalysisError(
                target.name,
                param.name,
                f"parameter '{param.name}' is not a declared target and has no default. "
                f"Known targets: {sorted(known_targets)}",
            )

    resolved: list[str] = []
    for name in sorted(global_references(fn.__code__)):
        if _resolvable(name, fn, externals):
            resolved.append(name)
            continue
        if name in known_targets:
            raise AnalysisError(
                target.name,
                name,
                f"reads target '{name}' from the enclosing scope; "
                f"take it as a parameter instead: def ...({name}): ...",
            )
        raise AnalysisError(
            target.name,
            name,
            f"references undeclared name '{name}' "
            "(not a target, not defined in its module, not a builtin)",
        )

    return Analysis(
        target=target.name,
        dependencies=tuple(deps),
        parameters=tuple(fixed),
        externals=tuple(resolved),
    )
