# cli.py
from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import click

from tarmake.config import Settings
from tarmake.errors import CycleError, NotFoundError, TarmakeError
from tarmake.inspection import manifest as build_manifest
from tarmake.inspection import outdated as list_outdated
from tarmake.inspection import read as read_target
from tarmake.inspection import visualize as render_graph
from tarmake.logging_config import configure_logging
from tarmake.runner import destroy as destroy_store
from tarmake.runner import invalidate as invalidate_target
from tarmake.runner import load_workflow, make
from tarmake.ui.console import Console, get_console, set_console

DEFAULT_WORKFLOW = "tarmake_workflow.py"


def workflow_candidates(directory: Path = Path(".")) -> list[Path]:
    """`tarmake_workflow.py` if present, otherwise every `*_workflow.py`."""
    default = directory / DEFAULT_WORKFLOW
    if default.exists():
        return [default]
    return sorted(directory.glob("*_workflow.py"))


def _no_workflow(title: str, message: str, details: list[str] | None = None) -> None:
    get_console().print_error(
        title,
        message,
        details=details,
        suggestion=f"Create {DEFAULT_WORKFLOW} or pass one explicitly:\n  tarmake --workflow my_workflow.py make",
    )
    sys.exit(1)


def discover_workflow(workflow_arg: str | None) -> Path:
    """Resolve the workflow file; exits 1 when it is missing or ambiguous."""
    if workflow_arg:
        path = Path(workflow_arg)
        if not path.exists() and path.suffix != ".py":
            path = path.with_name(path.name + ".py")
        if not path.exists():
            _no_workflow("Workflow file not found", f"No such workflow file: {workflow_arg}")
        return path

    candidates = workflow_candidates()
    if not candidates:
        _no_workflow(
            "No workflow file found",
            f"Looked for {DEFAULT_WORKFLOW} and *_workflow.py in {Path.cwd()}",
        )
    if len(candidates) > 1:
        _no_workflow(
            "Multiple workflow files found",
            "Pick one with --workflow:",
            details=[str(c) for c in candidates],
        )
    return candidates[0]


def _settings(ctx: click.Context) -> Settings:
    return ctx.obj["settings"]


def _fail(ctx: click.Context, exc: Exception) -> None:
    console = get_console()
    if isinstance(exc, CycleError):
        console.print_error(
            "Dependency cycle",
            str(exc),
            suggestion="Remove one of the references so the targets form a DAG.",
        )
    elif isinstance(exc, TarmakeError):
        console.print_error(type(exc).__name__, str(exc))
        if ctx.obj.get("debug", False):
            console.print_exception(exc)
    else:
        console.print_exception(exc)
    sys.exit(1)


def _load(ctx: click.Context):
    workflow_path = discover_workflow(_settings(ctx).workflow)
    return workflow_path, load_workflow(workflow_path)


@click.group()
@click.option("--debug", is_flag=True, default=False, help="Enable debug mode (stack traces and DEBUG logs on stderr)")
@click.option("--store", "store_dir", default=None, help="Store directory (default: .tarmake, env TARMAKE_STORE_DIR)")
@click.option("--workflow", default=None, help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)")
@click.pass_context
def cli(ctx, debug, store_dir, workflow):
    """tarmake: incremental, cache-aware builds of Python target graphs."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    try:
        settings = Settings.load({"store_dir": store_dir, "workflow": workflow})
    except TarmakeError as e:
        console.print_error("Invalid configuration", str(e))
        sys.exit(1)
    ctx.obj["settings"] = settings
    configure_logging(settings.log_level, settings.log_file, debug=debug)


@cli.command(name="make")
@click.argument("names", nargs=-1)
@click.option("--workers", default=None, type=int, help="Number of parallel workers (default 1: serial)")
@click.option("--fail-fast/--no-fail-fast", default=None, help="Stop scheduling new targets after the first error")
@click.option("--quiet", is_flag=True, default=False, help="Only print the results summary")
@click.pass_context
def make_cmd(ctx, names, workers, fail_fast, quiet):
    """Build stale targets (all, or NAMES and their upstream targets)."""
    console = get_console()
    console.quiet = quiet
    base = _settings(ctx)
    settings = Settings.load(
        {
            "store_dir": base.store_dir,
            "workflow": base.workflow,
            "workers": workers,
            "fail_fast": fail_fast,
        }
    )

    try:
        workflow_path, targets = _load(ctx)
        console.print_build_started(
            workflow=workflow_path.name,
            target_count=len(targets),
            store=settings.store_dir,
        )
        report = make(
            targets,
            names=list(names) or None,
            store=settings.store_dir,
            root=workflow_path.resolve().parent,
            max_workers=settings.workers,
            fail_fast=settings.fail_fast,
        )
        console.print_results(report)
        if not report.ok:
            sys.exit(1)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except TarmakeError as e:
        _fail(ctx, e)


def _echo_value(value: Any, as_json: bool) -> None:
    if as_json:
        click.echo(json.dumps(value, indent=2, default=str))
    else:
        click.echo(repr(value))


@cli.command(name="read")
@click.argument("name")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the value as JSON")
@click.pass_context
def read_cmd(ctx, name, as_json):
    """Print the stored result of target NAME."""
    try:
        value = read_target(name, store=_settings(ctx).store_dir)
    except NotFoundError as e:
        get_console().print_error(
            "Target not built",
            str(e),
            suggestion=f"Build it first:\n  tarmake make {name}",
        )
        sys.exit(1)
    except TarmakeError as e:
        _fail(ctx, e)
    else:
        _echo_value(value, as_json)


@cli.command(name="manifest")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the manifest as JSON")
@click.pass_context
def manifest_cmd(ctx, as_json):
    """List declared targets and their dependencies (runs nothing)."""
    try:
        workflow_path, targets = _load(ctx)
        rows = build_manifest(targets, root=workflow_path.resolve().parent)
    except TarmakeError as e:
        _fail(ctx, e)
        return

    if as_json:
        click.echo(json.dumps(rows, indent=2))
        return
    console = get_console()
    console.print_header(f"MANIFEST ({workflow_path.name})")
    for row in rows:
        deps = ", ".join(row["dependencies"]) or "-"
        inputs = ", ".join(row["inputs"]) or "-"
        console.print_info(f"  {row['name']}  <- {deps}  inputs: {inputs}")


@cli.command(name="visualize")
@click.option("--out", "out_path", default=None, help="Write DOT to this file instead of stdout")
@click.pass_context
def visualize_cmd(ctx, out_path):
    """Render the target graph as Graphviz DOT, colored by status."""
    try:
        workflow_path, targets = _load(ctx)
        dot = render_graph(
            targets,
            store=_settings(ctx).store_dir,
            root=workflow_path.resolve().parent,
        )
    except TarmakeError as e:
        _fail(ctx, e)
        return

    if out_path:
        Path(out_path).write_text(dot, encoding="utf-8")
        get_console().print_info(f"Wrote {out_path}")
    else:
        click.echo(dot, nl=False)


@cli.command(name="outdated")
@click.pass_context
def outdated_cmd(ctx):
    """List targets the next build would run."""
    try:
        workflow_path, targets = _load(ctx)
        names = list_outdated(
            targets,
            store=_settings(ctx).store_dir,
            root=workflow_path.resolve().parent,
        )
    except TarmakeError as e:
        _fail(ctx, e)
        return
    for name in names:
        click.echo(name)


@cli.command(name="invalidate")
@click.argument("names", nargs=-1, required=True)
@click.pass_context
def invalidate_cmd(ctx, names):
    """Forget the Run Records of NAMES so they rebuild next time."""
    console = get_console()
    try:
        for name in names:
            removed = invalidate_target(name, store=_settings(ctx).store_dir)
            console.print_info(f"{name}: {'invalidated' if removed else 'no record'}")
    except TarmakeError as e:
        _fail(ctx, e)


@cli.command(name="destroy")
@click.confirmation_option(prompt="Delete every stored result and run record?")
@click.pass_context
def destroy_cmd(ctx):
    """Remove the whole store."""
    store_dir = _settings(ctx).store_dir
    destroy_store(store_dir)
    get_console().print_info(f"Removed {store_dir}")


if __name__ == "__main__":
    cli()
