"""
Graph builder: lowers a statement tree into a FlowGraph.

The builder is a single depth-first traversal. Lowering a statement takes the
list of open edges that reach it (Pending edges whose target is not created
yet) and returns a Lowered pair:
- entry: the block where the statement starts (None if it produced no block)
- exits: the open edges leaving it normally, to be spliced onto whatever
  comes next

Straight-line statements are appended to the current block while exactly one
open fallthrough reaches it; a new block starts wherever control merges or a
region boundary lies.

Abrupt completions (break, continue, return, raise) are resolved through the
RegionStack. A protected region's cleanup is lowered once, into a single
cleanup block: every completion path enters it, and one cleanup_resume edge
per distinct completion leaves its resume block, re-dispatched outward as if
the original completion happened there.
"""

import logging
from dataclasses import dataclass, replace

from .errors import GraphInvariantViolation, MalformedInputError
from .flow_graph import EdgeKind, FlowGraph
from .regions import Completion, Pending, RegionStack, Route
from .statements import (
    Break,
    Continue,
    DoWhile,
    Expr,
    For,
    ForEach,
    If,
    Labeled,
    Return,
    Sequence,
    Statement,
    Switch,
    Throw,
    Try,
    While,
)
from .type_hierarchy import TypeHierarchy

logger = logging.getLogger(__name__)


@dataclass
class Lowered:
    entry: int | None
    exits: list[Pending]


def _fresh(pending: list[Pending]) -> list[Pending]:
    """Same edges, but the next statement must start a new block."""
    return [replace(p, appendable=False) for p in pending]


class GraphBuilder:
    """
    Build a FlowGraph from a statement tree.

    One builder can be reused; every build() starts from an empty graph and
    an empty region stack.
    """

    def __init__(self, hierarchy: TypeHierarchy | None = None):
        self.hierarchy = hierarchy or TypeHierarchy.java()
        self.graph: FlowGraph | None = None
        self.regions: RegionStack | None = None
        self._lowerers = {
            "expr": self._lower_expr,
            "sequence": self._lower_sequence,
            "if": self._lower_if,
            "while": self._lower_while,
            "do_while": self._lower_do_while,
            "for": self._lower_for,
            "for_each": self._lower_for_each,
            "switch": self._lower_switch,
            "try": self._lower_try,
            "break": self._lower_break,
            "continue": self._lower_continue,
            "return": self._lower_return,
            "throw": self._lower_throw,
            "labeled": self._lower_labeled,
        }

    def build(self, root: Statement, name: str = "<root>") -> FlowGraph:
        """Lower root and return the finalized graph.

        Raises:
            MalformedInputError: if the statement tree cannot be lowered.
            GraphInvariantViolation: if the produced graph is inconsistent.
        """
        self.graph = FlowGraph(name)
        # Unknown raised types get declared while building; keep them local
        self.regions = RegionStack(self.hierarchy.copy())

        lowered = self._lower(root, [Pending(self.graph.entry, EdgeKind.FALLTHROUGH)])
        self._splice(lowered.exits, self.graph.exit)
        if len(self.regions):
            raise GraphInvariantViolation(f"{len(self.regions)} region frames left open")

        graph = self.graph.finalize()
        logger.debug(
            f"Built flow graph {name}: {graph.block_count} blocks, {len(graph.edges)} edges"
        )
        return graph

    # ------------------------------------------------------------------
    # Block and edge helpers
    # ------------------------------------------------------------------

    def _lower(self, stmt: Statement, incoming: list[Pending]) -> Lowered:
        lowerer = self._lowerers.get(getattr(stmt, "kind", None))
        if lowerer is None:
            raise MalformedInputError("unsupported statement kind", stmt)
        return lowerer(stmt, incoming)

    def _lower_list(self, body: list[Statement], incoming: list[Pending]) -> Lowered:
        entry = None
        adopting = True
        current = incoming
        for child in body:
            lowered = self._lower(child, current)
            if adopting:
                entry = lowered.entry
                # An entry-less child that rerouted the edges ends the search
                adopting = entry is None and lowered.exits == current
            current = lowered.exits
        return Lowered(entry, current)

    def _splice(
        self,
        pending: list[Pending],
        target: int,
        promote: EdgeKind | None = None,
    ) -> None:
        """Connect open edges to target; plain fallthroughs become promote."""
        for p in pending:
            kind = promote if promote is not None and p.kind is EdgeKind.FALLTHROUGH else p.kind
            self.graph.connect(p.source, target, kind, p.label, p.resume)

    def _new_block(
        self,
        kind: str,
        incoming: list[Pending],
        statements: list[str] | None = None,
        line: int | None = None,
    ) -> int:
        block = self.graph.add_block(kind, statements or [], line, dead=not incoming)
        self._splice(incoming, block.id)
        return block.id

    def _straight_block(self, incoming: list[Pending], text: str, line: int | None) -> int:
        """Append text to the open block, or start a new one."""
        if len(incoming) == 1 and incoming[0].appendable:
            block_id = incoming[0].source
            self.graph.append_statement(block_id, text)
            return block_id
        return self._new_block("body", incoming, [text], line)

    def _mark(self, block_id: int, kind: str) -> None:
        """Retag a plain body block; handler/cleanup/... blocks keep their kind."""
        block = self.graph.blocks[block_id]
        if block.kind == "body":
            block.kind = kind

    def _emit_raises(self, block_id: int, expr: Expr | None) -> None:
        if expr is None:
            return
        for error_type in expr.raises:
            self._route_raise(block_id, error_type, resuming=False)

    def _route_raise(self, source: int, error_type: str, resuming: bool) -> None:
        route = self.regions.resolve_raise(error_type)
        if resuming:
            pending = Pending(source, EdgeKind.CLEANUP_RESUME, error_type, EdgeKind.RAISE)
        else:
            pending = Pending(source, EdgeKind.RAISE, error_type)
        self._deliver(route, pending, Completion(EdgeKind.RAISE, error_type))

    def _deliver(self, route: Route, pending: Pending, completion: Completion) -> None:
        """Hand an abrupt edge to whatever the route names."""
        if route.target == "break":
            route.frame.breaks.append(pending)
        elif route.target == "continue":
            route.frame.continues.append(pending)
        elif route.target == "handler":
            route.frame.handler_inbound[route.handler_index].append(pending)
        elif route.target == "cleanup":
            if pending.kind not in (EdgeKind.RAISE, EdgeKind.CLEANUP_RESUME):
                pending = replace(pending, kind=EdgeKind.CLEANUP_ENTER, resume=completion.kind)
            route.frame.cleanup_inbound.append(pending)
            route.frame.record(completion)
        elif route.target == "return_exit":
            self._splice([pending], self.graph.return_exit)
        elif route.target == "raise_exit":
            self._splice([pending], self.graph.raise_exit)
        else:
            raise GraphInvariantViolation(f"unknown route target '{route.target}'")

    def _close_loop(
        self,
        exits: list[Pending],
        continues: list[Pending],
        header: int,
        line: int | None,
    ) -> None:
        """Send body exits and continues back to the loop header.

        Plain fallthroughs become loop_back edges directly; anything else
        (branch edges, cleanup resumes, continues) meets in a latch block so
        that loop_back stays the only edge kind closing a cycle.
        """
        if not continues and all(p.kind is EdgeKind.FALLTHROUGH for p in exits):
            self._splice(exits, header, promote=EdgeKind.LOOP_BACK)
            return
        latch = self._new_block("loop_latch", exits + continues, line=line)
        self.graph.connect(latch, header, EdgeKind.LOOP_BACK)

    # ------------------------------------------------------------------
    # Straight-line and jump statements
    # ------------------------------------------------------------------

    def _lower_expr(self, stmt: Expr, incoming: list[Pending]) -> Lowered:
        block = self._straight_block(incoming, stmt.text(), stmt.line)
        self._emit_raises(block, stmt)
        return Lowered(block, [Pending(block, EdgeKind.FALLTHROUGH, appendable=True)])

    def _lower_sequence(self, stmt: Sequence, incoming: list[Pending]) -> Lowered:
        return self._lower_list(stmt.body, incoming)

    def _lower_break(self, stmt: Break, incoming: list[Pending]) -> Lowered:
        route = self.regions.resolve_break(stmt.label, stmt)
        block = self._straight_block(incoming, stmt.text(), stmt.line)
        self._deliver(
            route,
            Pending(block, EdgeKind.BREAK, stmt.label),
            Completion(EdgeKind.BREAK, stmt.label),
        )
        return Lowered(block, [])

    def _lower_continue(self, stmt: Continue, incoming: list[Pending]) -> Lowered:
        route = self.regions.resolve_continue(stmt.label, stmt)
        block = self._straight_block(incoming, stmt.text(), stmt.line)
        self._deliver(
            route,
            Pending(block, EdgeKind.CONTINUE, stmt.label),
            Completion(EdgeKind.CONTINUE, stmt.label),
        )
        return Lowered(block, [])

    def _lower_return(self, stmt: Return, incoming: list[Pending]) -> Lowered:
        route = self.regions.resolve_return()
        block = self._straight_block(incoming, stmt.text(), stmt.line)
        self._deliver(route, Pending(block, EdgeKind.RETURN), Completion(EdgeKind.RETURN))
        return Lowered(block, [])

    def _lower_throw(self, stmt: Throw, incoming: list[Pending]) -> Lowered:
        block = self._straight_block(incoming, stmt.text(), stmt.line)
        for error_type in stmt.error_types:
            self._route_raise(block, error_type, resuming=False)
        return Lowered(block, [])

    def _lower_labeled(self, stmt: Labeled, incoming: list[Pending]) -> Lowered:
        frame = self.regions.enter_label(stmt.label)
        body = self._lower(stmt.body, incoming)
        self.regions.exit_loop()
        return Lowered(body.entry, body.exits + frame.breaks)

    # ------------------------------------------------------------------
    # Branches
    # ------------------------------------------------------------------

    def _lower_if(self, stmt: If, incoming: list[Pending]) -> Lowered:
        # The condition is evaluated at the end of the current block
        branch = self._straight_block(incoming, stmt.text(), stmt.line)
        self._mark(branch, "branch")
        self._emit_raises(branch, stmt.condition)

        condition = stmt.condition.source
        then = self._lower(stmt.then, [Pending(branch, EdgeKind.BRANCH_TRUE, condition)])
        false_edge = Pending(branch, EdgeKind.BRANCH_FALSE, f"not ({condition})")
        if stmt.orelse is None:
            return Lowered(branch, then.exits + [false_edge])
        orelse = self._lower(stmt.orelse, [false_edge])
        return Lowered(branch, then.exits + orelse.exits)

    def _lower_switch(self, stmt: Switch, incoming: list[Pending]) -> Lowered:
        dispatch = self._straight_block(incoming, stmt.text(), stmt.line)
        self._mark(dispatch, "dispatch")
        self._emit_raises(dispatch, stmt.selector)

        frame = self.regions.enter_loop(is_switch=True) if stmt.fallthrough else None
        exits: list[Pending] = []
        previous: list[Pending] = []
        has_default = False
        for case in stmt.cases:
            if case.is_default:
                has_default = True
                case_in = [Pending(dispatch, EdgeKind.DEFAULT)]
            else:
                case_in = [Pending(dispatch, EdgeKind.CASE, value) for value in case.values]
            lowered = self._lower_list(case.body, case_in + previous)
            if stmt.fallthrough:
                # Open exits run into the next case
                previous = lowered.exits
            else:
                exits.extend(lowered.exits)

        if frame is not None:
            self.regions.exit_loop()
            exits = previous + frame.breaks
        if not has_default:
            exits.append(Pending(dispatch, EdgeKind.DEFAULT))
        return Lowered(dispatch, exits)

    # ------------------------------------------------------------------
    # Loops
    # ------------------------------------------------------------------

    def _loop_edges(self, header: int, condition: Expr | None, iterate: str | None = None):
        """Body-entry and loop-exit edges leaving a loop header."""
        if condition is None:
            return [Pending(header, EdgeKind.FALLTHROUGH)], []
        if iterate is not None:
            return (
                [Pending(header, EdgeKind.BRANCH_TRUE, iterate)],
                [Pending(header, EdgeKind.LOOP_EXIT, "exhausted")],
            )
        return (
            [Pending(header, EdgeKind.BRANCH_TRUE, condition.source)],
            [Pending(header, EdgeKind.LOOP_EXIT, f"not ({condition.source})")],
        )

    def _lower_while(self, stmt: While, incoming: list[Pending]) -> Lowered:
        header = self._new_block("loop_header", incoming, [stmt.text()], stmt.line)
        self._emit_raises(header, stmt.condition)
        body_in, loop_exits = self._loop_edges(header, stmt.condition)

        frame = self.regions.enter_loop(stmt.label)
        body = self._lower(stmt.body, body_in)
        self.regions.exit_loop()

        self._close_loop(body.exits, frame.continues, header, stmt.line)
        if stmt.orelse is not None:
            loop_exits = self._lower(stmt.orelse, loop_exits).exits
        return Lowered(header, loop_exits + frame.breaks)

    def _lower_do_while(self, stmt: DoWhile, incoming: list[Pending]) -> Lowered:
        frame = self.regions.enter_loop(stmt.label)
        # The body must start its own block: the back edge re-enters it
        body = self._lower(stmt.body, _fresh(incoming))
        self.regions.exit_loop()

        condition = self._new_block(
            "loop_condition",
            body.exits + frame.continues,
            [stmt.text()],
            stmt.line,
        )
        self._emit_raises(condition, stmt.condition)
        loop_target = body.entry if body.entry is not None else condition
        if stmt.condition is None:
            self.graph.connect(condition, loop_target, EdgeKind.LOOP_BACK)
            loop_exits = []
        else:
            self.graph.connect(condition, loop_target, EdgeKind.LOOP_BACK, stmt.condition.source)
            loop_exits = [
                Pending(condition, EdgeKind.LOOP_EXIT, f"not ({stmt.condition.source})")
            ]
        entry = body.entry if body.entry is not None else condition
        return Lowered(entry, loop_exits + frame.breaks)

    def _lower_for(self, stmt: For, incoming: list[Pending]) -> Lowered:
        init = self._lower_list(stmt.init, incoming)
        header = self._new_block("loop_header", init.exits, [stmt.text()], stmt.line)
        self._emit_raises(header, stmt.condition)
        body_in, loop_exits = self._loop_edges(header, stmt.condition)

        frame = self.regions.enter_loop(stmt.label)
        body = self._lower(stmt.body, body_in)
        self.regions.exit_loop()

        if stmt.update:
            # Update runs on the way back to the header only, never on break
            update = self._new_block("loop_update", body.exits + frame.continues, line=stmt.line)
            lowered = self._lower_list(
                stmt.update, [Pending(update, EdgeKind.FALLTHROUGH, appendable=True)]
            )
            self._close_loop(lowered.exits, [], header, stmt.line)
        else:
            self._close_loop(body.exits, frame.continues, header, stmt.line)

        entry = init.entry if init.entry is not None else header
        return Lowered(entry, loop_exits + frame.breaks)

    def _lower_for_each(self, stmt: ForEach, incoming: list[Pending]) -> Lowered:
        header = self._new_block("loop_header", incoming, [stmt.text()], stmt.line)
        self._emit_raises(header, stmt.iterable)
        body_in, loop_exits = self._loop_edges(
            header, stmt.iterable, iterate=f"{stmt.target} in {stmt.iterable.source}"
        )

        frame = self.regions.enter_loop(stmt.label)
        body = self._lower(stmt.body, body_in)
        self.regions.exit_loop()

        self._close_loop(body.exits, frame.continues, header, stmt.line)
        if stmt.orelse is not None:
            loop_exits = self._lower(stmt.orelse, loop_exits).exits
        return Lowered(header, loop_exits + frame.breaks)

    # ------------------------------------------------------------------
    # Protected regions
    # ------------------------------------------------------------------

    def _lower_try(self, stmt: Try, incoming: list[Pending]) -> Lowered:
        has_cleanup = stmt.cleanup is not None
        frame = self.regions.enter_protected_region(stmt.handlers, has_cleanup, stmt)

        body = self._lower(stmt.body, _fresh(incoming))
        entry = body.entry
        if entry is None:
            # Empty body: loops and labels still need a block to re-enter
            entry = self._new_block("body", body.exits, line=stmt.line)
            body = Lowered(entry, [Pending(entry, EdgeKind.FALLTHROUGH, appendable=True)])
        frame.handlers_active = False
        normal = body.exits
        if stmt.orelse is not None:
            normal = self._lower(stmt.orelse, _fresh(normal)).exits

        for index, handler in enumerate(stmt.handlers):
            handler_block = self._new_block(
                "handler", frame.handler_inbound[index], [handler.text()], handler.line
            )
            lowered = self._lower(
                handler.body, [Pending(handler_block, EdgeKind.FALLTHROUGH, appendable=True)]
            )
            normal = normal + lowered.exits

        self.regions.exit_protected_region()
        if not has_cleanup:
            return Lowered(entry, normal)

        completions = [Completion(EdgeKind.FALLTHROUGH)] if normal else []
        completions += frame.completions
        if not completions:
            # Nothing enters the cleanup; keep it as dead code with one way out
            completions = [Completion(EdgeKind.FALLTHROUGH)]

        cleanup = self._new_block(
            "cleanup", normal + frame.cleanup_inbound, ["finally"], stmt.cleanup.line
        )
        lowered = self._lower(
            stmt.cleanup, [Pending(cleanup, EdgeKind.FALLTHROUGH, appendable=True)]
        )
        if not lowered.exits:
            # The cleanup itself always completes abruptly; nothing resumes
            return Lowered(entry, [])
        resume = self._resume_block(lowered.exits, stmt.cleanup.line)
        logger.debug(
            f"cleanup block {cleanup} resumes {[c.kind.value for c in completions]} from {resume}"
        )
        return Lowered(entry, self._resume(resume, completions))

    def _resume_block(self, exits: list[Pending], line: int | None) -> int:
        """Block the resume edges leave from: the cleanup's open tail if it has one."""
        if len(exits) == 1 and exits[0].appendable:
            return exits[0].source
        return self._new_block("cleanup_resume", exits, line=line)

    def _resume(self, resume: int, completions: list[Completion]) -> list[Pending]:
        """Re-dispatch every completion that entered the cleanup."""
        exits: list[Pending] = []
        for completion in completions:
            kind, label = completion
            pending = Pending(resume, EdgeKind.CLEANUP_RESUME, label, kind)
            if kind is EdgeKind.FALLTHROUGH:
                exits.append(pending)
            elif kind is EdgeKind.BREAK:
                self._deliver(self.regions.resolve_break(label), pending, completion)
            elif kind is EdgeKind.CONTINUE:
                self._deliver(self.regions.resolve_continue(label), pending, completion)
            elif kind is EdgeKind.RETURN:
                self._deliver(self.regions.resolve_return(), pending, completion)
            elif kind is EdgeKind.RAISE:
                self._route_raise(resume, label, resuming=True)
            else:
                raise GraphInvariantViolation(f"cannot resume {kind.value}", resume)
        return exits


def build_flow_graph(
    root: Statement,
    hierarchy: TypeHierarchy | None = None,
    name: str = "<root>",
) -> FlowGraph:
    """Build and finalize the flow graph of a statement tree."""
    return GraphBuilder(hierarchy).build(root, name)
