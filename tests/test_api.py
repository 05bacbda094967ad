"""Tests for the high-level API."""

import json

import pytest

from exflow.api import (
    ScanResult,
    detect_language,
    extract_flow_graph,
    extract_statements,
    list_functions,
    scan_directory,
)
from exflow.config import CONFIG_FILENAME, ExflowConfig
from exflow.flow_graph import FlowGraph


PYTHON_SOURCE = '''
def ok(x):
    if x:
        return 1
    return 2

def broken():
    break
'''


def test_detect_language():
    assert detect_language("src/Main.java") == "java"
    assert detect_language("tool.py") == "python"
    with pytest.raises(ValueError, match="No language configured"):
        detect_language("main.rs")


def test_detect_language_from_config():
    config = ExflowConfig(extensions={".pyw": "python"})
    assert detect_language("gui.pyw", config) == "python"


def test_unsupported_language():
    with pytest.raises(ValueError, match="Unsupported language"):
        extract_statements("", "f", "rust")
    with pytest.raises(ValueError, match="Unsupported language"):
        list_functions("", "rust")


def test_extract_flow_graph():
    graph = extract_flow_graph(PYTHON_SOURCE, "ok", "python")
    assert isinstance(graph, FlowGraph)
    assert graph.name == "ok"
    assert graph.finalized
    assert graph.cyclomatic_complexity == 2


class TestScanDirectory:
    def test_reports_each_function(self, tmp_path):
        (tmp_path / "mod.py").write_text(PYTHON_SOURCE)
        results = scan_directory(tmp_path)

        assert [r.function for r in results] == ["ok", "broken"]
        ok, broken = results
        assert ok.ok
        assert ok.to_dict()["cyclomatic_complexity"] == 2
        assert not broken.ok
        assert "break outside of loop" in broken.to_dict()["error"]

    def test_unparseable_file_is_skipped(self, tmp_path):
        (tmp_path / "bad.py").write_text("def (:\n")
        (tmp_path / "good.py").write_text("def f():\n    pass\n")
        results = scan_directory(tmp_path)
        assert [(r.path.name, r.function) for r in results] == [("good.py", "f")]

    def test_project_config_is_used(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text(json.dumps({"extensions": {".pyx": "python"}}))
        (tmp_path / "a.py").write_text("def a():\n    pass\n")
        (tmp_path / "b.pyx").write_text("def b():\n    pass\n")
        assert [r.function for r in scan_directory(tmp_path)] == ["b"]

    def test_scan_result_to_dict(self, tmp_path):
        result = ScanResult(tmp_path / "x.py", "f", error="boom")
        assert result.to_dict() == {"path": str(tmp_path / "x.py"), "function": "f", "error": "boom"}
