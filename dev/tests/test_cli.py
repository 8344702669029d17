"""
FactoryPatcher - Command Line Tests

Drives patcher.py main() against a bundle and patches file written to a
temporary directory.

Can be run standalone: python test_cli.py
Or via main runner: python tests.py
"""

import io
import json
import sys
import tempfile
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
from unittest import mock

from support import BUNDLE

import patcher
from factorypatcher.runtime.host import ModuleRuntime

PATCHES_FILE = '''
NAME = "cli-demo"
DATA = {"start": 5}
PATCHES = [
    Patch(find="foo(1)", replacements=[Replacement("foo(1)", "baz(1)")]),
    {"find": "hits = 0", "replacements": [
        {"match": "hits = 0", "replace": f"hits = {PLACEHOLDERS.data}['start']"},
    ]},
]
'''


class Workspace:
    """Temporary bundle + patches files."""

    def __init__(self, patches=PATCHES_FILE):
        self._dir = tempfile.TemporaryDirectory()
        root = Path(self._dir.name)
        self.bundle = root / "bundle.json"
        self.bundle.write_text(json.dumps({str(k): v for k, v in BUNDLE.items()}), encoding="utf-8")
        self.patches = root / "patches.py"
        self.patches.write_text(patches, encoding="utf-8")

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self._dir.cleanup()


def _run(*argv):
    """Run the CLI, returning (exit_code, stdout, stderr)."""
    out, err = io.StringIO(), io.StringIO()
    code = 0
    with mock.patch.object(sys, "argv", ["patcher", *argv]), redirect_stdout(out), redirect_stderr(err):
        try:
            patcher.main()
        except SystemExit as e:
            code = e.code or 0
    return code, out.getvalue(), err.getvalue()


def test_match_json():
    with Workspace() as ws:
        code, out, _ = _run("--format", "json", "match", str(ws.bundle), str(ws.patches))
    assert code == 0
    rows = json.loads(out)
    assert [row["modules"] for row in rows] == [[1], [3]]
    assert rows[0]["patch"] == "cli-demo['foo(1)']"
    assert "m" not in ModuleRuntime.__dict__


def test_match_table():
    with Workspace() as ws:
        code, out, _ = _run("match", str(ws.bundle), str(ws.patches))
    assert code == 0
    assert "Patches: 2" in out
    assert "-> 1" in out


def test_apply_run_json():
    with Workspace() as ws:
        code, out, _ = _run("--format", "json", "apply", str(ws.bundle), str(ws.patches), "--run")
    assert code == 0
    report = json.loads(out)
    assert report["failures"] == []
    assert report["summary"]["modules_patched"] == 2
    assert report["modules"]["1"]["patched"]
    assert report["modules"]["3"]["applied"] == ["cli-demo['hits = 0']"]
    assert not report["modules"]["2"]["patched"]
    assert [entry["result"] for entry in report["audit"]] == ["applied", "applied"]


def test_apply_selected_module_with_source():
    with Workspace() as ws:
        code, out, _ = _run("--isolated", "apply", str(ws.bundle), str(ws.patches),
                            "--module", "1", "--show-source")
    assert code == 0
    assert "patched: 1" in out
    assert "MODULE 1" in out
    assert 'exports["result"] = baz(1) + bar(2)' in out
    assert "m" not in ModuleRuntime.__dict__


def test_apply_unknown_module():
    with Workspace() as ws:
        code, _, err = _run("apply", str(ws.bundle), str(ws.patches), "--module", "99")
    assert code == 1
    assert "No module 99" in err


def test_patches_file_without_patches():
    with Workspace(patches="NAME = 'empty'\n") as ws:
        code, _, err = _run("match", str(ws.bundle), str(ws.patches))
    assert code == 1
    assert "does not define PATCHES" in err


def test_invalid_patch_definition():
    with Workspace(patches="PATCHES = [{'find': 'x', 'replacements': []}]\n") as ws:
        code, _, err = _run("match", str(ws.bundle), str(ws.patches))
    assert code == 1
    assert "Invalid patch definition" in err


if __name__ == "__main__":
    from tests import run_module
    raise SystemExit(run_module(__name__))
