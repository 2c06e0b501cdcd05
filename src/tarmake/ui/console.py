"""Human-facing build output. Logging goes through `logging`, not here."""

from __future__ import annotations

import sys
import traceback
from typing import TYPE_CHECKING, Optional, Sequence

if TYPE_CHECKING:
    from ..model import BuildReport

# one glyph per TargetOutcome.status
MARKS = {
    "built": "✓",
    "skipped": "·",
    "errored": "✗",
    "blocked": "⊘",
    "cancelled": "-",
}


class Console:
    """
    Writes progress and summaries to stdout, problems to stderr.

    Args:
        debug: show full error text and tracebacks
        quiet: drop per-target progress lines (summaries still print)
    """

    def __init__(self, debug: bool = False, quiet: bool = False):
        self.debug = debug
        self.quiet = quiet

    def _progress(self, line: str) -> None:
        if not self.quiet:
            print(line)

    def print_header(self, title: str) -> None:
        print(f"\n{title}\n{'-' * len(title)}")

    def print_build_started(self, workflow: str, target_count: int, store: str) -> None:
        self._progress(f"\nmake {workflow}: {target_count} target(s), store {store}\n")

    def print_target_start(self, name: str, reason: str) -> None:
        self._progress(f"▶ {name} ({reason})")

    def print_target_built(self, name: str, duration: float) -> None:
        self._progress(f"{MARKS['built']} {name} [{duration:.2f}s]")

    def print_target_skipped(self, name: str) -> None:
        self._progress(f"{MARKS['skipped']} {name} (current)")

    def print_target_blocked(self, name: str, upstream: str) -> None:
        self._progress(f"{MARKS['blocked']} {name} (blocked by {upstream})")

    def print_target_failed(self, name: str, reason: str) -> None:
        # failures print even when quiet
        text = reason if self.debug else (reason.split("\n")[0] if reason else "unknown error")
        print(f"{MARKS['errored']} {name}: {text}")

    def print_results(self, report: "BuildReport") -> None:
        """Per-target status table, counts, then the first line of each error."""
        print("\nRESULTS")
        width = max((len(n) for n in report.outcomes), default=0)
        for name, outcome in report.outcomes.items():
            mark = MARKS.get(outcome.status, "?")
            print(f"  {mark} {name.ljust(width)}  {outcome.status.upper()}")
        print(
            f"\nbuilt={len(report.built)} skipped={len(report.skipped)} "
            f"errored={len(report.errored)} blocked={len(report.blocked)} "
            f"cancelled={len(report.cancelled)}"
        )
        failed = [(n, o.error) for n, o in report.outcomes.items() if o.error is not None]
        if failed:
            print("\nERRORS")
            for name, err in failed:
                print(f"  {name}: {str(err).splitlines()[0] if str(err) else type(err).__name__}")

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[Sequence[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        lines = [f"\nERROR: {title}", message]
        lines.extend(f"  {d}" for d in details or ())
        if suggestion:
            lines.append(f"\n{suggestion}")
        print("\n".join(lines), file=sys.stderr)

    def print_exception(self, exc: BaseException) -> None:
        if self.debug:
            traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            print(f"Error: {exc}", file=sys.stderr)

    def print_info(self, message: str) -> None:
        print(message)


_console: Optional[Console] = None


def get_console() -> Console:
    """Process-wide console; the CLI replaces it per invocation."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    global _console
    _console = console
