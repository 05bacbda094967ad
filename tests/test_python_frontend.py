"""Tests for the Python front-end and Python flow graphs."""

import pytest

from exflow.api import extract_flow_graph
from exflow.config import ExflowConfig
from exflow.flow_graph import EdgeKind
from exflow.python_frontend import extract_python_statements, list_python_functions


def block_with(graph, text):
    for block in graph.blocks:
        if text in block.statements:
            return block.id
    raise AssertionError(f"no block contains {text!r}")


def edge(graph, source, target):
    edges = [e for e in graph.out_edges(source) if e.target == target]
    assert len(edges) == 1, edges
    return edges[0]


LOAD = '''
def load(path):
    try:
        data = read(path)
    except OSError as e:
        log(e)
        raise
    finally:
        close()
    return data
'''


class TestTryExceptFinally:
    def test_statement_tree(self):
        config = ExflowConfig(call_raises={"read": ["OSError"]})
        program = extract_python_statements(LOAD, "load", config)

        assert program.language == "python"
        region, ret = program.root.body
        assert region.kind == "try"
        assert region.body.body[0].source == "data = read(path)"
        assert region.body.body[0].raises == ("OSError",)
        handler = region.handlers[0]
        assert (handler.error_types, handler.name) == (("OSError",), "e")
        assert handler.body.body[1].error_type == "OSError"
        assert region.cleanup.body[0].source == "close()"
        assert ret.value == "data"

    def test_graph(self):
        config = ExflowConfig(call_raises={"read": ["OSError"]})
        graph = extract_flow_graph(LOAD, "load", "python", config)

        body = block_with(graph, "data = read(path)")
        handler = block_with(graph, "catch (OSError e)")
        cleanup = block_with(graph, "close()")
        ret = block_with(graph, "return data")

        assert edge(graph, body, handler).kind is EdgeKind.RAISE
        assert edge(graph, handler, cleanup).kind is EdgeKind.RAISE
        assert edge(graph, body, cleanup).kind is EdgeKind.FALLTHROUGH
        out = edge(graph, cleanup, graph.raise_exit)
        assert (out.kind, out.resume, out.label) == (
            EdgeKind.CLEANUP_RESUME,
            EdgeKind.RAISE,
            "OSError",
        )
        assert edge(graph, cleanup, ret).resume is EdgeKind.FALLTHROUGH
        assert edge(graph, ret, graph.return_exit).kind is EdgeKind.RETURN

    def test_bare_except_catches_base_exception(self):
        source = "def f():\n    try:\n        g()\n    except:\n        pass\n"
        program = extract_python_statements(source, "f")
        assert program.root.body[0].handlers[0].error_types == ("BaseException",)


class TestWith:
    SOURCE = '''
def write(path, data):
    with open(path, "w") as fh:
        fh.write(data)
'''

    def test_context_exit_is_cleanup(self):
        program = extract_python_statements(self.SOURCE, "write")
        enter, region = program.root.body[0].body
        assert enter.source == "with open(path, 'w') as fh"
        assert region.kind == "try"
        assert region.cleanup.body[0].source == "exit open(path, 'w') as fh"

    def test_failed_enter_skips_exit(self):
        config = ExflowConfig(call_raises={r"^open$": ["OSError"]})
        graph = extract_flow_graph(self.SOURCE, "write", "python", config)

        enter = block_with(graph, "with open(path, 'w') as fh")
        cleanup = block_with(graph, "exit open(path, 'w') as fh")
        assert edge(graph, enter, graph.raise_exit).label == "OSError"
        assert graph.blocks[cleanup].kind == "cleanup"
        assert edge(graph, cleanup, graph.exit).kind is EdgeKind.CLEANUP_RESUME


def test_match_becomes_switch_without_fallthrough():
    source = '''
def classify(cmd):
    match cmd:
        case "start":
            begin()
        case "stop" | "halt":
            end()
        case _:
            unknown()
'''
    program = extract_python_statements(source, "classify")
    switch = program.root.body[0]
    assert switch.kind == "switch"
    assert not switch.fallthrough
    assert [c.values for c in switch.cases] == [["'start'"], ["'stop' | 'halt'"], []]
    assert switch.cases[2].is_default

    graph = extract_flow_graph(source, "classify", "python")
    dispatch = block_with(graph, "switch (cmd)")
    kinds = sorted(e.kind.value for e in graph.out_edges(dispatch))
    assert kinds == ["case", "case", "default"]


def test_infinite_while_with_break():
    source = '''
def poll(queue):
    while True:
        item = queue.get()
        if item is None:
            break
    return item
'''
    program = extract_python_statements(source, "poll")
    assert program.root.body[0].condition is None

    graph = extract_flow_graph(source, "poll", "python")
    assert graph.edges_of_kind(EdgeKind.LOOP_EXIT) == []
    brk = block_with(graph, "break")
    assert graph.out_edges(brk)[0].target == block_with(graph, "return item")
    assert any(b.kind == "loop_latch" for b in graph.blocks)


def test_for_else():
    source = '''
def find(items):
    for x in items:
        if x:
            break
    else:
        missing()
'''
    program = extract_python_statements(source, "find")
    loop = program.root.body[0]
    assert loop.kind == "for_each"
    assert loop.target == "x"
    assert loop.orelse.body[0].source == "missing()"

    graph = extract_flow_graph(source, "find", "python")
    header = block_with(graph, "for (x : items)")
    assert edge(graph, header, block_with(graph, "missing()")).kind is EdgeKind.LOOP_EXIT


def test_module_exception_classes_and_local_raises():
    source = '''
class AppError(Exception):
    pass

class RetryError(AppError):
    pass

def run():
    try:
        step()
    except AppError:
        recover()

def step():
    raise RetryError("again")
'''
    program = extract_python_statements(source, "run")
    assert program.hierarchy.is_subtype("RetryError", "AppError")
    assert program.root.body[0].body.body[0].raises == ("RetryError",)

    graph = extract_flow_graph(source, "run", "python")
    body = block_with(graph, "step()")
    handler = block_with(graph, "catch (AppError)")
    assert edge(graph, body, handler).label == "RetryError"


def test_raise_forms():
    source = '''
def f(items):
    try:
        g()
    except KeyError as err:
        raise err
    except (ValueError, TypeError):
        raise
    assert items, "empty"
    def inner():
        raise ValueError
    raise make_error()
'''
    program = extract_python_statements(source, "f")
    region, check, nested, final = program.root.body
    assert region.handlers[0].body.body[0].error_type == "KeyError"
    assert region.handlers[1].error_types == ("ValueError", "TypeError")
    assert region.handlers[1].body.body[0].error_type == "ValueError"
    assert check.raises == ("AssertionError",)
    assert (nested.source, nested.raises) == ("def inner", ())
    assert final.error_type == "Exception"


def test_bare_raise_keeps_every_handler_type():
    source = '''
def f():
    try:
        try:
            g()
        except (KeyError, ValueError):
            raise
    except ValueError:
        recover()
'''
    config = ExflowConfig(call_raises={"g": ["KeyError"]})
    program = extract_python_statements(source, "f", config)
    rethrow = program.root.body[0].body.body[0].handlers[0].body.body[0]
    assert rethrow.error_types == ("KeyError", "ValueError")

    graph = extract_flow_graph(source, "f", "python", config)
    outer = block_with(graph, "catch (ValueError)")
    assert [e.label for e in graph.in_edges(outer)] == ["ValueError"]
    assert [e.label for e in graph.in_edges(graph.raise_exit)] == ["KeyError"]


def test_subclass_sharing_its_base_name():
    source = '''
import requests

class ConnectionError(requests.ConnectionError):
    pass

class Timeout(ConnectionError):
    pass

def fetch(url):
    try:
        get(url)
    except ConnectionError:
        retry()
'''
    program = extract_python_statements(source, "fetch")
    assert program.hierarchy.is_subtype("Timeout", "ConnectionError")
    assert program.root.body[0].handlers[0].error_types == ("ConnectionError",)


def test_unknown_throw_type_from_config():
    source = "def f():\n    raise build()\n"
    program = extract_python_statements(source, "f", ExflowConfig(unknown_throw_type="RuntimeError"))
    assert program.root.body[0].error_type == "RuntimeError"


def test_line_numbers():
    source = "def f():\n    a()\n    if x:\n        b()\n"
    program = extract_python_statements(source, "f")
    assert [s.line for s in program.root.body] == [2, 3]


def test_list_functions():
    source = '''
def a():
    pass

class C:
    def b(self):
        pass

    async def c(self):
        pass
'''
    assert list_python_functions(source) == ["a", "b", "c"]


def test_function_not_found():
    with pytest.raises(ValueError, match="not found"):
        extract_python_statements("def a():\n    pass\n", "missing")
