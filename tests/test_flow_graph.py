"""Tests for the FlowGraph arena: edge constraints, validation, serialization."""

import json

import pytest

from exflow.builder import build_flow_graph
from exflow.errors import GraphInvariantViolation
from exflow.flow_graph import EdgeKind, FlowGraph
from exflow.statements import Expr, Handler, If, Return, Try, While, seq


def linear_graph():
    graph = FlowGraph("linear")
    body = graph.add_block("body", ["x = 1"], line=3)
    graph.connect(graph.entry, body.id, EdgeKind.FALLTHROUGH)
    graph.connect(body.id, graph.exit, EdgeKind.FALLTHROUGH)
    return graph, body.id


def test_special_blocks_are_created_first():
    graph = FlowGraph()
    assert [b.kind for b in graph.blocks] == ["entry", "exit", "return_exit", "raise_exit"]
    assert graph.exit_ids == [1, 2, 3]


class TestConnect:
    def test_second_unconditional_edge_is_rejected(self):
        graph, body = linear_graph()
        with pytest.raises(GraphInvariantViolation, match="cannot add return") as excinfo:
            graph.connect(body, graph.return_exit, EdgeKind.RETURN)
        assert excinfo.value.block_id == body

    def test_raise_edges_are_unlimited(self):
        graph, body = linear_graph()
        graph.connect(body, graph.raise_exit, EdgeKind.RAISE, "IOException")
        graph.connect(body, graph.raise_exit, EdgeKind.RAISE, "SQLException")
        assert len(graph.out_edges(body)) == 3
        assert len(graph.out_edges(body, include_raise=False)) == 1

    def test_branch_pair(self):
        graph = FlowGraph()
        cond = graph.add_block("branch").id
        graph.connect(cond, graph.exit, EdgeKind.BRANCH_TRUE, "c")
        graph.connect(cond, graph.return_exit, EdgeKind.BRANCH_FALSE, "not (c)")
        with pytest.raises(GraphInvariantViolation):
            graph.connect(cond, graph.exit, EdgeKind.BRANCH_TRUE, "again")

    def test_dispatch_allows_one_default(self):
        graph = FlowGraph()
        dispatch = graph.add_block("dispatch").id
        graph.connect(dispatch, graph.exit, EdgeKind.CASE, "1")
        graph.connect(dispatch, graph.exit, EdgeKind.CASE, "2")
        graph.connect(dispatch, graph.exit, EdgeKind.DEFAULT)
        with pytest.raises(GraphInvariantViolation):
            graph.connect(dispatch, graph.exit, EdgeKind.DEFAULT)

    def test_duplicate_resume_is_rejected(self):
        graph = FlowGraph()
        cleanup = graph.add_block("cleanup").id
        graph.connect(cleanup, graph.exit, EdgeKind.CLEANUP_RESUME, resume=EdgeKind.FALLTHROUGH)
        graph.connect(cleanup, graph.return_exit, EdgeKind.CLEANUP_RESUME, resume=EdgeKind.RETURN)
        with pytest.raises(GraphInvariantViolation):
            graph.connect(cleanup, graph.exit, EdgeKind.CLEANUP_RESUME, resume=EdgeKind.FALLTHROUGH)

    def test_exit_blocks_have_no_successors(self):
        graph = FlowGraph()
        with pytest.raises(GraphInvariantViolation, match="exit blocks"):
            graph.connect(graph.exit, graph.entry, EdgeKind.FALLTHROUGH)

    def test_unknown_endpoint(self):
        graph = FlowGraph()
        with pytest.raises(GraphInvariantViolation, match="does not exist"):
            graph.connect(graph.entry, 42, EdgeKind.FALLTHROUGH)


class TestFinalize:
    def test_finalize_freezes(self):
        graph, body = linear_graph()
        assert graph.finalize() is graph
        assert graph.finalized
        with pytest.raises(GraphInvariantViolation, match="finalized"):
            graph.add_block()
        with pytest.raises(GraphInvariantViolation, match="finalized"):
            graph.connect(body, graph.raise_exit, EdgeKind.RAISE, "X")

    def test_block_without_successor(self):
        graph = FlowGraph()
        body = graph.add_block().id
        graph.connect(graph.entry, body, EdgeKind.FALLTHROUGH)
        with pytest.raises(GraphInvariantViolation, match="no outgoing edge"):
            graph.finalize()

    def test_unreachable_block_must_be_marked_dead(self):
        graph, _ = linear_graph()
        stray = graph.add_block().id
        graph.connect(stray, graph.exit, EdgeKind.FALLTHROUGH)
        with pytest.raises(GraphInvariantViolation, match="neither reachable nor marked dead"):
            graph.finalize()

    def test_dead_block_is_accepted(self):
        graph, _ = linear_graph()
        stray = graph.add_block(dead=True).id
        graph.connect(stray, graph.exit, EdgeKind.FALLTHROUGH)
        graph.finalize()
        assert graph.unreachable_blocks() == [stray]

    def test_reachable_block_marked_dead(self):
        graph = FlowGraph()
        body = graph.add_block(dead=True).id
        graph.connect(graph.entry, body, EdgeKind.FALLTHROUGH)
        graph.connect(body, graph.exit, EdgeKind.FALLTHROUGH)
        with pytest.raises(GraphInvariantViolation, match="marked dead is reachable"):
            graph.finalize()

    def test_cycle_without_loop_back(self):
        graph = FlowGraph()
        head = graph.add_block().id
        tail = graph.add_block().id
        graph.connect(graph.entry, head, EdgeKind.FALLTHROUGH)
        graph.connect(head, tail, EdgeKind.BRANCH_TRUE, "c")
        graph.connect(head, graph.exit, EdgeKind.BRANCH_FALSE, "not (c)")
        graph.connect(tail, head, EdgeKind.FALLTHROUGH)
        with pytest.raises(GraphInvariantViolation, match="cycle"):
            graph.finalize()

    def test_cycle_through_loop_back_is_fine(self):
        graph = FlowGraph()
        head = graph.add_block("loop_header").id
        tail = graph.add_block().id
        graph.connect(graph.entry, head, EdgeKind.FALLTHROUGH)
        graph.connect(head, tail, EdgeKind.BRANCH_TRUE, "c")
        graph.connect(head, graph.exit, EdgeKind.LOOP_EXIT, "not (c)")
        graph.connect(tail, head, EdgeKind.LOOP_BACK)
        graph.finalize()
        loops = graph.collect_loops()
        assert len(loops) == 1
        assert tail in loops[0]
        assert graph.cyclomatic_complexity == 2


class TestQueries:
    def test_nested_loops(self):
        graph = build_flow_graph(
            seq(While(Expr("a"), seq(While(Expr("b"), seq(Expr("inner()"))), Expr("outer()"))))
        )

        outer, inner = graph.collect_loops()
        assert not graph.is_nested_loop(outer.header)
        assert graph.is_nested_loop(inner.header)
        inner_body = next(b.id for b in graph.blocks if "inner()" in b.statements)
        assert graph.loops_containing(inner_body) == [outer, inner]
        assert graph.in_loop(inner_body)
        assert not graph.in_loop(graph.exit)

    def test_paths_from_entry_cover_both_branches(self):
        graph = build_flow_graph(seq(If(Expr("c"), seq(Expr("a()")), seq(Expr("b()"))), Expr("end()")))

        end = next(b.id for b in graph.blocks if "end()" in b.statements)
        paths = graph.paths_from_entry(end)
        assert sorted([e.kind.value for e in path] for path in paths) == [
            ["fallthrough", "branch_false", "fallthrough"],
            ["fallthrough", "branch_true", "fallthrough"],
        ]
        assert all(p[0].source == graph.entry and p[-1].target == end for p in paths)
        assert len(graph.paths_from_entry(end, limit=1)) == 1

    def test_paths_never_follow_loop_back(self):
        graph = build_flow_graph(seq(While(Expr("more()"), seq(Expr("work()"))), Expr("after()")))

        after = next(b.id for b in graph.blocks if "after()" in b.statements)
        (path,) = graph.paths_from_entry(after)
        assert [e.kind for e in path] == [EdgeKind.FALLTHROUGH, EdgeKind.LOOP_EXIT]

    def test_paths_through_raise_edges(self):
        graph = build_flow_graph(
            seq(
                Try(seq(Expr("a()", raises=("IOException",))), [Handler(("IOException",), seq(Expr("h()")))]),
                Return(),
                Expr("dead()"),
            )
        )

        handler = next(b.id for b in graph.blocks if "h()" in b.statements)
        assert len(graph.paths_from_entry(handler)) == 1
        assert graph.paths_from_entry(handler, include_raise=False) == []
        dead = next(b.id for b in graph.blocks if "dead()" in b.statements)
        assert graph.paths_from_entry(dead) == []


class TestSerialization:
    def test_to_dict(self):
        graph, body = linear_graph()
        graph.finalize()
        data = graph.to_dict()
        assert data["name"] == "linear"
        assert data["entry"] == 0
        assert data["exits"] == {"normal": 1, "return": 2, "raise": 3}
        assert data["blocks"][body] == {
            "id": body,
            "kind": "body",
            "statements": ["x = 1"],
            "line": 3,
        }
        assert data["edges"][0] == {"from": 0, "to": body, "kind": "fallthrough"}
        assert data["cyclomatic_complexity"] == 1

    def test_to_json_round_trips_through_json(self):
        graph, _ = linear_graph()
        graph.finalize()
        assert json.loads(graph.to_json()) == graph.to_dict()

    def test_resume_and_label_serialized(self):
        graph = FlowGraph()
        cleanup = graph.add_block("cleanup").id
        edge = graph.connect(
            cleanup, graph.raise_exit, EdgeKind.CLEANUP_RESUME, "IOException", EdgeKind.RAISE
        )
        assert edge.to_dict() == {
            "from": cleanup,
            "to": graph.raise_exit,
            "kind": "cleanup_resume",
            "label": "IOException",
            "resume": "raise",
        }

    def test_to_dot(self):
        graph, body = linear_graph()
        graph.connect(body, graph.raise_exit, EdgeKind.RAISE, 'Bad"Quote')
        dot = graph.to_dot()
        assert dot.startswith('digraph "linear" {')
        assert f"{body} -> {graph.raise_exit}" in dot
        assert 'raise Bad\\"Quote' in dot
        assert "style=dashed" in dot
