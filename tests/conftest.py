from __future__ import annotations

import pytest

from tarmake.logging_config import reset_logging
from tarmake.store import ResultStore
from tarmake.ui.console import Console, set_console


@pytest.fixture(autouse=True)
def _quiet_console():
    set_console(Console(quiet=True))
    yield
    set_console(Console())


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch):
    for key in ("STORE_DIR", "WORKFLOW", "WORKERS", "FAIL_FAST", "LOG_LEVEL", "LOG_FILE"):
        monkeypatch.delenv(f"TARMAKE_{key}", raising=False)
    yield
    reset_logging()


@pytest.fixture
def store(tmp_path) -> ResultStore:
    """An isolated, not-yet-created store directory."""
    return ResultStore(tmp_path / "store")


@pytest.fixture
def values_csv(tmp_path):
    path = tmp_path / "values.csv"
    path.write_text("id,value\na,1\nb,2\nc,3\n", encoding="utf-8")
    return path
