import csv
import threading
from types import SimpleNamespace

import pytest

from tarmake import file_target, invalidate, make, read, target
from tarmake.errors import CycleError, ExecutionError, NotFoundError, StoreIOError
from tarmake.store import ResultStore


def read_values(path):
    with open(path, newline="", encoding="utf-8") as f:
        return [int(row["value"]) for row in csv.DictReader(f)]


def _write_values(path, values):
    lines = ["id,value"] + [f"r{i},{v}" for i, v in enumerate(values)]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def _pipeline(path):
    return [
        target("load", lambda: read_values(path), inputs=[str(path)]),
        target("double", lambda load: [v * 2 for v in load]),
        target("summarize", lambda double: sum(double)),
    ]


def _diamond(b_command):
    return [
        target("a", lambda: 1),
        target("b", b_command),
        target("c", lambda a: a + 1),
        target("d", lambda b: b * 10),
        target("e", lambda c: c * 2),
    ]


def test_incremental_rebuild_scenario(store, tmp_path, values_csv):
    report = make(_pipeline(values_csv), store=store, root=tmp_path)
    assert report.built == ["load", "double", "summarize"]
    assert read("double", store=store) == [2, 4, 6]
    assert read("summarize", store=store) == 12

    _write_values(values_csv, [10, 20, 30])
    report = make(_pipeline(values_csv), store=store, root=tmp_path)
    assert report.built == ["load", "double", "summarize"]
    assert read("summarize", store=store) == 120

    report = make(_pipeline(values_csv), store=store, root=tmp_path)
    assert report.built == []
    assert report.skipped == ["load", "double", "summarize"]
    assert report.ok


def test_second_build_runs_nothing(store, tmp_path):
    calls = SimpleNamespace(n=0)

    def load():
        calls.n += 1
        return [1, 2]

    targets = [target("load", load), target("total", lambda load: sum(load))]
    make(targets, store=store, root=tmp_path)
    make(targets, store=store, root=tmp_path)
    assert calls.n == 1


def test_unchanged_rewrite_of_input_is_still_current(store, tmp_path, values_csv):
    make(_pipeline(values_csv), store=store, root=tmp_path)
    values_csv.write_text(values_csv.read_text(encoding="utf-8"), encoding="utf-8")
    assert make(_pipeline(values_csv), store=store, root=tmp_path).built == []


def test_definition_change_rebuilds_descendants_only(store, tmp_path):
    targets = [
        target("a", lambda: 1),
        target("b", lambda a: a + 1),
        target("c", lambda b: b * 10),
        target("other", lambda: "x"),
    ]
    make(targets, store=store, root=tmp_path)

    targets[0] = target("a", lambda: 2)
    report = make(targets, store=store, root=tmp_path)
    assert report.built == ["a", "b", "c"]
    assert report.skipped == ["other"]
    assert read("c", store=store) == 30


def test_failure_blocks_descendants_and_spares_siblings(store, tmp_path):
    report = make(_diamond(lambda a: a / 0), store=store, root=tmp_path)

    assert report.errored == ["b"]
    assert report.blocked == ["d"]
    assert set(report.built) == {"a", "c", "e"}
    assert not report.ok
    assert read("e", store=store) == 4

    [err] = report.errors
    assert isinstance(err, ExecutionError)
    assert err.target == "b"
    assert err.error_type == "ZeroDivisionError"
    assert "ZeroDivisionError" in err.traceback

    assert store.load_record("b").status == "error"
    assert store.load_record("d").status == "blocked"
    with pytest.raises(NotFoundError):
        read("d", store=store)


def test_fixing_failure_rebuilds_only_failed_and_blocked(store, tmp_path):
    make(_diamond(lambda a: a / 0), store=store, root=tmp_path)
    report = make(_diamond(lambda a: a + 10), store=store, root=tmp_path)
    assert report.built == ["b", "d"]
    assert set(report.skipped) == {"a", "c", "e"}
    assert read("d", store=store) == 110


def test_error_keeps_last_successful_value(store, tmp_path):
    make([target("a", lambda: 1)], store=store, root=tmp_path)
    report = make([target("a", lambda: 1 / 0)], store=store, root=tmp_path)
    assert report.errored == ["a"]
    assert read("a", store=store) == 1
    assert store.load_record("a").status == "error"


def test_parallel_build_matches_serial(store, tmp_path):
    report = make(_diamond(lambda a: a / 0), store=store, root=tmp_path, max_workers=4)
    assert report.errored == ["b"]
    assert report.blocked == ["d"]
    assert set(report.built) == {"a", "c", "e"}
    assert list(report.outcomes) == ["a", "b", "c", "d", "e"]


def test_parallel_mode_runs_independent_targets_concurrently(store, tmp_path):
    barrier = threading.Barrier(2, timeout=5)

    targets = [
        target("left", lambda: barrier.wait() >= 0),
        target("right", lambda: barrier.wait() >= 0),
        target("both", lambda left, right: left and right),
    ]
    report = make(targets, store=store, root=tmp_path, max_workers=2)
    assert report.ok
    assert read("both", store=store) is True


def test_completion_timestamps_respect_edges(store, tmp_path, values_csv):
    make(_pipeline(values_csv), store=store, root=tmp_path)
    stamps = {n: store.load_record(n).completed_at for n in ("load", "double", "summarize")}
    assert stamps["load"] <= stamps["double"] <= stamps["summarize"]


def test_fail_fast_cancels_unscheduled(store, tmp_path):
    targets = [target("bad", lambda: 1 / 0), target("later", lambda: 2)]
    report = make(targets, store=store, root=tmp_path, fail_fast=True)
    assert report.errored == ["bad"]
    assert report.cancelled == ["later"]
    assert store.load_record("later") is None


def test_names_select_subgraph(store, tmp_path):
    report = make(_diamond(lambda a: a + 1), names=["d"], store=store, root=tmp_path)
    assert list(report.outcomes) == ["a", "b", "d"]
    assert store.load_record("e") is None


def test_structural_errors_raise_before_any_side_effect(tmp_path):
    store = ResultStore(tmp_path / "store")
    targets = [target("ok", lambda: 1), target("a", lambda b: b), target("b", lambda a: a)]
    with pytest.raises(CycleError):
        make(targets, store=store, root=tmp_path)
    assert not store.root.exists()


def test_unserializable_result_is_a_target_failure(store, tmp_path):
    targets = [target("lock", lambda: threading.Lock()), target("use", lambda lock: lock)]
    report = make(targets, store=store, root=tmp_path)
    assert report.errored == ["lock"]
    assert report.blocked == ["use"]
    assert isinstance(report.outcomes["lock"].error, StoreIOError)


def test_invalidate_forces_rebuild(store, tmp_path):
    targets = [target("a", lambda: 1), target("b", lambda a: a + 1)]
    make(targets, store=store, root=tmp_path)
    assert invalidate("a", store=store) is True
    assert make(targets, store=store, root=tmp_path).built == ["a", "b"]


def test_needs_only_dependency_runs_first(store, tmp_path):
    order = []
    targets = [
        target("report", lambda: order.append("report"), needs=["setup"]),
        target("setup", lambda: order.append("setup")),
    ]
    make(targets, store=store, root=tmp_path)
    assert order == ["setup", "report"]


def test_file_target_tracks_returned_file(store, tmp_path, values_csv):
    targets = [
        file_target("raw", str(values_csv)),
        target("load", lambda raw: read_values(raw)),
    ]
    make(targets, store=store, root=tmp_path)
    assert read("raw", store=store) == str(values_csv)
    assert read("load", store=store) == [1, 2, 3]

    _write_values(values_csv, [5])
    report = make(targets, store=store, root=tmp_path)
    assert report.built == ["raw", "load"]
    assert read("load", store=store) == [5]


def test_invalid_worker_count(store):
    with pytest.raises(ValueError):
        make([target("a", lambda: 1)], store=store, max_workers=0)


def test_missing_declared_input_fails_without_running(store, tmp_path):
    calls = SimpleNamespace(n=0)

    def load():
        calls.n += 1
        return sorted(p.name for p in (tmp_path / "raw").glob("*.csv"))

    targets = [target("a", load, inputs=["raw/*.csv"]), target("b", lambda a: len(a))]
    for _ in range(2):
        report = make(targets, store=store, root=tmp_path)
        assert report.errored == ["a"]
        assert report.blocked == ["b"]
        assert not report.ok
    assert calls.n == 0
    assert report.errors[0].error_type == "FileNotFoundError"
    assert store.load_record("a").status == "error"

    (tmp_path / "raw").mkdir()
    (tmp_path / "raw" / "one.csv").write_text("x", encoding="utf-8")
    assert make(targets, store=store, root=tmp_path).built == ["a", "b"]
    assert make(targets, store=store, root=tmp_path).built == []


def test_unreadable_upstream_result_records_error(store, tmp_path):
    make([target("a", lambda: 1), target("b", lambda a: a + 1)], store=store, root=tmp_path)
    store.object_path("a").write_bytes(b"not a pickle")

    report = make([target("a", lambda: 1), target("b", lambda a: a + 2)], store=store, root=tmp_path)
    assert report.skipped == ["a"]
    assert report.errored == ["b"]
    assert isinstance(report.outcomes["b"].error, StoreIOError)
    record = store.load_record("b")
    assert record.status == "error"
    assert read("b", store=store) == 2


def test_relative_file_target_resolves_against_root(store, tmp_path, monkeypatch):
    project = tmp_path / "project"
    project.mkdir()
    _write_values(project / "values.csv", [4, 5])
    monkeypatch.chdir(tmp_path)

    targets = [
        file_target("raw", "values.csv"),
        target("load", lambda raw: read_values(raw)),
    ]
    report = make(targets, store=store, root=project)
    assert report.ok
    assert read("raw", store=store) == str(project.resolve() / "values.csv")
    assert read("load", store=store) == [4, 5]
    assert make(targets, store=store, root=project).built == []
