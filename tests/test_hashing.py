import types

from tarmake import make, outdated, target
from tarmake.hashing import MISSING, definition_hash, hash_input, hash_inputs

HELPERS_V1 = """
def helper(v):
    return v * 2

command = lambda load: [helper(v) for v in load]
"""

HELPERS_V2 = HELPERS_V1.replace("v * 2", "v * 3")


def _exec_module(source, filename):
    namespace = {"__name__": "workflow_module"}
    exec(compile(source, str(filename), "exec"), namespace)
    return namespace


def _module_at(path, source):
    module = types.ModuleType(path.stem)
    module.__file__ = str(path)
    exec(compile(source, str(path), "exec"), module.__dict__)
    return module


def _workflow_using(module, root):
    namespace = _exec_module("command = lambda: helpers_mod.f(3)", root / "wf.py")
    namespace["helpers_mod"] = module
    return [target("x", namespace["command"])]


def _make_scaler(factor):
    return lambda load: [v * factor for v in load]


def test_same_code_hashes_equal():
    a = target("double", lambda load: [x * 2 for x in load])
    b = target("double", lambda load: [x * 2 for x in load])
    assert definition_hash(a) == definition_hash(b)


def test_body_change_changes_hash():
    a = target("double", lambda load: [x * 2 for x in load])
    b = target("double", lambda load: [x * 3 for x in load])
    assert definition_hash(a) != definition_hash(b)


def test_name_and_declarations_are_part_of_the_hash():
    base = target("a", lambda: 1)
    assert definition_hash(base) != definition_hash(target("b", lambda: 1))
    assert definition_hash(base) != definition_hash(target("a", lambda: 1, inputs=["x.csv"]))


def test_default_values_change_hash():
    a = target("pick", lambda load, column="value": load[column])
    b = target("pick", lambda load, column="score": load[column])
    assert definition_hash(a) != definition_hash(b)


def test_closure_values_change_hash():
    assert definition_hash(target("s", _make_scaler(2))) != definition_hash(target("s", _make_scaler(3)))
    assert definition_hash(target("s", _make_scaler(2))) == definition_hash(target("s", _make_scaler(2)))


def test_project_helper_change_changes_hash(tmp_path):
    v1 = _exec_module(HELPERS_V1, tmp_path / "wf.py")
    v2 = _exec_module(HELPERS_V2, tmp_path / "wf.py")
    h1 = definition_hash(target("double", v1["command"]), root=tmp_path)
    h2 = definition_hash(target("double", v2["command"]), root=tmp_path)
    assert h1 != h2


def test_helpers_outside_root_are_not_tracked(tmp_path):
    project = tmp_path / "project"
    project.mkdir()
    elsewhere = tmp_path / "elsewhere"
    v1 = _exec_module(HELPERS_V1, elsewhere / "wf.py")
    v2 = _exec_module(HELPERS_V2, elsewhere / "wf.py")
    h1 = definition_hash(target("double", v1["command"]), root=project)
    h2 = definition_hash(target("double", v2["command"]), root=project)
    assert h1 == h2


def test_file_content_hash_tracks_edits(tmp_path):
    f = tmp_path / "data.csv"
    f.write_text("a,1\n", encoding="utf-8")
    before = hash_input(tmp_path, "data.csv")
    f.write_text("a,2\n", encoding="utf-8")
    assert hash_input(tmp_path, "data.csv") != before


def test_missing_input(tmp_path):
    assert hash_input(tmp_path, "nope.csv") == MISSING
    assert hash_inputs(tmp_path, ["nope/*.csv"]) == {"nope/*.csv": MISSING}


def test_directory_and_glob_inputs(tmp_path):
    d = tmp_path / "raw"
    d.mkdir()
    (d / "one.csv").write_text("1", encoding="utf-8")
    dir_before = hash_input(tmp_path, "raw")
    glob_before = hash_input(tmp_path, "raw/*.csv")

    (d / "two.csv").write_text("2", encoding="utf-8")
    assert hash_input(tmp_path, "raw") != dir_before
    assert hash_input(tmp_path, "raw/*.csv") != glob_before


def test_absolute_input_path(tmp_path, values_csv):
    assert hash_input(tmp_path / "elsewhere", str(values_csv)) == hash_input(tmp_path, "values.csv")


def test_helper_reached_through_project_module_is_tracked(tmp_path, store):
    helpers = tmp_path / "helpers_mod.py"
    v1 = _module_at(helpers, "def f(v):\n    return v * 2\n")
    make(_workflow_using(v1, tmp_path), store=store, root=tmp_path)
    assert outdated(_workflow_using(v1, tmp_path), store=store, root=tmp_path) == []

    v2 = _module_at(helpers, "def f(v):\n    return v * 3\n")
    assert outdated(_workflow_using(v2, tmp_path), store=store, root=tmp_path) == ["x"]


def test_module_outside_root_is_not_tracked(tmp_path):
    project = tmp_path / "project"
    project.mkdir()
    lib = tmp_path / "lib" / "helpers_mod.py"
    v1 = _module_at(lib, "def f(v):\n    return v * 2\n")
    v2 = _module_at(lib, "def f(v):\n    return v * 3\n")
    [t1] = _workflow_using(v1, project)
    [t2] = _workflow_using(v2, project)
    assert definition_hash(t1, root=project) == definition_hash(t2, root=project)


def test_container_constants_are_tracked(tmp_path):
    v1 = _exec_module("COLS = ('a', 'b')\ncommand = lambda: list(COLS)\n", tmp_path / "wf.py")
    v2 = _exec_module("COLS = ('a', 'c')\ncommand = lambda: list(COLS)\n", tmp_path / "wf.py")
    v1_again = _exec_module("COLS = ('a', 'b')\ncommand = lambda: list(COLS)\n", tmp_path / "wf.py")
    h1 = definition_hash(target("x", v1["command"]), root=tmp_path)
    assert h1 != definition_hash(target("x", v2["command"]), root=tmp_path)
    assert h1 == definition_hash(target("x", v1_again["command"]), root=tmp_path)


def test_imported_modules_do_not_destabilize_hash(tmp_path):
    src = "import csv\ncommand = lambda path: list(csv.reader(open(path)))\n"
    a = _exec_module(src, tmp_path / "wf.py")
    b = _exec_module(src, tmp_path / "wf.py")
    assert definition_hash(target("x", a["command"]), root=tmp_path) == definition_hash(
        target("x", b["command"]), root=tmp_path
    )
