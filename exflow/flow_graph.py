"""
Flow graph: the arena of basic blocks and typed edges produced by the builder.

Blocks are identified by their index in construction order. Every graph owns
four special blocks, created first:
- entry (0)
- exit (1): normal completion
- return_exit (2): abrupt return
- raise_exit (3): error escaping the analysed code

Edges carry an EdgeKind. Raise edges are exceptional; all other kinds are
control edges. A block has one of the following control successor shapes:
- jump: a single unconditional edge (fallthrough, loop_back, break, ...)
- branch: a true/false pair (branch_true + branch_false/loop_exit,
  or loop_back + loop_exit for a do-while condition)
- dispatch: case edges plus at most one default edge
- resume: cleanup_resume edges, one per distinct completion
- none: only raise edges (the block ends in a throw)
"""

import json
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable

from .errors import GraphInvariantViolation


class EdgeKind(str, Enum):
    FALLTHROUGH = "fallthrough"
    BRANCH_TRUE = "branch_true"
    BRANCH_FALSE = "branch_false"
    LOOP_BACK = "loop_back"
    LOOP_EXIT = "loop_exit"
    BREAK = "break"
    CONTINUE = "continue"
    RETURN = "return"
    RAISE = "raise"
    CASE = "case"
    DEFAULT = "default"
    CLEANUP_ENTER = "cleanup_enter"
    CLEANUP_RESUME = "cleanup_resume"

    def __str__(self) -> str:
        return self.value


UNCONDITIONAL_KINDS = frozenset(
    {
        EdgeKind.FALLTHROUGH,
        EdgeKind.LOOP_BACK,
        EdgeKind.BREAK,
        EdgeKind.CONTINUE,
        EdgeKind.RETURN,
        EdgeKind.CLEANUP_ENTER,
    }
)
BRANCH_PAIRS = frozenset(
    {
        frozenset({EdgeKind.BRANCH_TRUE, EdgeKind.BRANCH_FALSE}),
        frozenset({EdgeKind.BRANCH_TRUE, EdgeKind.LOOP_EXIT}),
        frozenset({EdgeKind.LOOP_BACK, EdgeKind.LOOP_EXIT}),
    }
)
BRANCH_KINDS = frozenset(kind for pair in BRANCH_PAIRS for kind in pair)
DISPATCH_KINDS = frozenset({EdgeKind.CASE, EdgeKind.DEFAULT})

EXIT_KINDS = ("exit", "return_exit", "raise_exit")


@dataclass
class BasicBlock:
    """
    Basic block - straight-line statement fragments with no internal branches.

    Control enters only at the first fragment. A block may leave through
    raise edges from any fragment and through its control edges at the end.
    """

    id: int
    kind: str  # "entry", "exit", "body", "branch", "loop_header", "handler", "cleanup", ...
    statements: list[str] = field(default_factory=list)
    line: int | None = None
    dead: bool = False  # no inbound edge by construction (code after a jump)

    @property
    def is_exit(self) -> bool:
        return self.kind in EXIT_KINDS

    def to_dict(self) -> dict:
        d = {"id": self.id, "kind": self.kind}
        if self.statements:
            d["statements"] = list(self.statements)
        if self.line is not None:
            d["line"] = self.line
        if self.dead:
            d["dead"] = True
        return d


@dataclass(frozen=True)
class Edge:
    """
    Directed edge between blocks.

    label: condition text, case value, or raised error type
    resume: for cleanup_enter/cleanup_resume, the completion kind that the
        cleanup interrupted (fallthrough, break, continue, return, raise)
    """

    source: int
    target: int
    kind: EdgeKind
    label: str | None = None
    resume: EdgeKind | None = None

    @property
    def is_exceptional(self) -> bool:
        return self.kind is EdgeKind.RAISE

    def to_dict(self) -> dict:
        d = {"from": self.source, "to": self.target, "kind": self.kind.value}
        if self.label is not None:
            d["label"] = self.label
        if self.resume is not None:
            d["resume"] = self.resume.value
        return d


@dataclass(frozen=True)
class LoopInfo:
    """Natural loop: header block plus the blocks that reach its back edge."""

    header: int
    body: frozenset[int]

    def __contains__(self, block_id: int) -> bool:
        return block_id == self.header or block_id in self.body


def _control_shape(edges: list[Edge]) -> str | None:
    """Classify a complete set of control edges, or None if malformed."""
    kinds = [e.kind for e in edges]
    if not kinds:
        return "none"
    if len(kinds) == 1 and kinds[0] in UNCONDITIONAL_KINDS:
        return "jump"
    if len(kinds) == 2 and frozenset(kinds) in BRANCH_PAIRS:
        return "branch"
    if all(k in DISPATCH_KINDS for k in kinds) and kinds.count(EdgeKind.DEFAULT) <= 1:
        return "dispatch"
    if all(k is EdgeKind.CLEANUP_RESUME for k in kinds):
        keys = [(e.resume, e.label, e.target) for e in edges]
        if len(set(keys)) == len(keys):
            return "resume"
    return None


def _can_extend(existing: list[Edge], new: Edge) -> bool:
    """True if new can join existing control edges without breaking a shape."""
    if not existing:
        return True
    kinds = [e.kind for e in existing] + [new.kind]
    if all(k in DISPATCH_KINDS for k in kinds):
        return kinds.count(EdgeKind.DEFAULT) <= 1
    if all(k is EdgeKind.CLEANUP_RESUME for k in kinds):
        return _control_shape(existing + [new]) == "resume"
    if len(kinds) == 2 and frozenset(kinds) in BRANCH_PAIRS:
        return True
    return False


class FlowGraph:
    """
    Flow graph for one statement tree.

    Built incrementally with add_block()/connect(); finalize() validates the
    structural invariants and freezes the graph.
    """

    def __init__(self, name: str = "<root>"):
        self.name = name
        self.blocks: list[BasicBlock] = []
        self.edges: list[Edge] = []
        self._out: dict[int, list[Edge]] = {}
        self._in: dict[int, list[Edge]] = {}
        self._finalized = False

        self.entry = self.add_block("entry").id
        self.exit = self.add_block("exit").id
        self.return_exit = self.add_block("return_exit").id
        self.raise_exit = self.add_block("raise_exit").id

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def _check_mutable(self) -> None:
        if self._finalized:
            raise GraphInvariantViolation(f"graph '{self.name}' is finalized")

    def add_block(
        self,
        kind: str = "body",
        statements: Iterable[str] = (),
        line: int | None = None,
        dead: bool = False,
    ) -> BasicBlock:
        """Create a new block and return it."""
        self._check_mutable()
        block = BasicBlock(
            id=len(self.blocks),
            kind=kind,
            statements=list(statements),
            line=line,
            dead=dead,
        )
        self.blocks.append(block)
        self._out[block.id] = []
        self._in[block.id] = []
        return block

    def append_statement(self, block_id: int, text: str) -> None:
        self._check_mutable()
        self.blocks[block_id].statements.append(text)

    def connect(
        self,
        source: int,
        target: int,
        kind: EdgeKind,
        label: str | None = None,
        resume: EdgeKind | None = None,
    ) -> Edge:
        """Add an edge.

        Raises:
            GraphInvariantViolation: if the source already has a control
                successor that the new edge would conflict with (a second
                fallthrough, a third branch, ...), or an endpoint is unknown.
        """
        self._check_mutable()
        for block_id in (source, target):
            if not 0 <= block_id < len(self.blocks):
                raise GraphInvariantViolation("edge endpoint does not exist", block_id)
        if self.blocks[source].is_exit:
            raise GraphInvariantViolation("exit blocks have no successors", source)
        edge = Edge(source=source, target=target, kind=kind, label=label, resume=resume)
        if not edge.is_exceptional:
            control = [e for e in self._out[source] if not e.is_exceptional]
            if not _can_extend(control, edge):
                existing = ", ".join(e.kind.value for e in control)
                raise GraphInvariantViolation(
                    f"cannot add {kind.value} edge next to [{existing}]", source
                )
        self.edges.append(edge)
        self._out[source].append(edge)
        self._in[target].append(edge)
        return edge

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def exit_ids(self) -> list[int]:
        return [self.exit, self.return_exit, self.raise_exit]

    @property
    def block_count(self) -> int:
        return len(self.blocks)

    @property
    def finalized(self) -> bool:
        return self._finalized

    def out_edges(self, block_id: int, include_raise: bool = True) -> list[Edge]:
        edges = self._out[block_id]
        return list(edges) if include_raise else [e for e in edges if not e.is_exceptional]

    def in_edges(self, block_id: int, include_raise: bool = True) -> list[Edge]:
        edges = self._in[block_id]
        return list(edges) if include_raise else [e for e in edges if not e.is_exceptional]

    def successors(self, block_id: int, include_raise: bool = True) -> list[int]:
        seen: dict[int, None] = {}
        for e in self.out_edges(block_id, include_raise):
            seen.setdefault(e.target)
        return list(seen)

    def predecessors(self, block_id: int, include_raise: bool = True) -> list[int]:
        seen: dict[int, None] = {}
        for e in self.in_edges(block_id, include_raise):
            seen.setdefault(e.source)
        return list(seen)

    def edges_of_kind(self, kind: EdgeKind) -> list[Edge]:
        return [e for e in self.edges if e.kind is kind]

    def edge_list(self) -> list[tuple[int, int, str]]:
        """(from, to, kind) triples in insertion order."""
        return [(e.source, e.target, e.kind.value) for e in self.edges]

    def reachable_from(self, roots: Iterable[int], skip: Iterable[int] = ()) -> set[int]:
        """Blocks reachable from roots over all edges, never entering skip."""
        blocked = set(skip)
        seen: set[int] = set()
        queue = deque(r for r in roots if r not in blocked)
        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            seen.add(current)
            for e in self._out[current]:
                if e.target not in seen and e.target not in blocked:
                    queue.append(e.target)
        return seen

    def unreachable_blocks(self) -> list[int]:
        """Non-exit blocks not reachable from the entry block."""
        reached = self.reachable_from([self.entry])
        return [b.id for b in self.blocks if b.id not in reached and not b.is_exit]

    @property
    def cyclomatic_complexity(self) -> int:
        """Decision points + 1.

        A decision point is every extra way out of a branch or dispatch
        block; cleanup resume fan-out is not a source-level decision.
        """
        decisions = 0
        for block in self.blocks:
            control = self.out_edges(block.id, include_raise=False)
            if _control_shape(control) in ("branch", "dispatch"):
                decisions += len({(e.target, e.kind, e.label) for e in control}) - 1
        return decisions + 1

    def collect_loops(self) -> list[LoopInfo]:
        """Natural loops, one per header, ordered by header index."""
        bodies: dict[int, set[int]] = {}
        for e in self.edges_of_kind(EdgeKind.LOOP_BACK):
            header = e.target
            body = bodies.setdefault(header, set())
            stack = [e.source]
            while stack:
                current = stack.pop()
                if current == header or current in body:
                    continue
                body.add(current)
                stack.extend(self.predecessors(current))
        return [LoopInfo(header, frozenset(bodies[h])) for h in sorted(bodies)]

    def loops_containing(self, block_id: int) -> list[LoopInfo]:
        """Loops whose header or body holds block_id, outermost first."""
        found = [loop for loop in self.collect_loops() if block_id in loop]
        return sorted(found, key=lambda loop: len(loop.body), reverse=True)

    def in_loop(self, block_id: int) -> bool:
        return bool(self.loops_containing(block_id))

    def is_nested_loop(self, header: int) -> bool:
        """True if the loop headed by header sits inside another loop."""
        return any(loop.header != header for loop in self.loops_containing(header))

    def paths_from_entry(
        self,
        target: int,
        include_raise: bool = True,
        limit: int | None = None,
    ) -> list[list[Edge]]:
        """Acyclic paths from the entry block to target, as edge lists.

        loop_back edges are never followed, so a loop body shows up at most
        once per path. Parallel edges give distinct paths. At most limit
        paths are returned when limit is set.
        """
        # Blocks that reach target without a loop_back edge
        useful = {target}
        stack = [target]
        while stack:
            current = stack.pop()
            for e in self.in_edges(current, include_raise):
                if e.kind is not EdgeKind.LOOP_BACK and e.source not in useful:
                    useful.add(e.source)
                    stack.append(e.source)

        paths: list[list[Edge]] = []
        if self.entry not in useful:
            return paths

        def walk(block_id: int, path: list[Edge]) -> None:
            if limit is not None and len(paths) >= limit:
                return
            if block_id == target:
                paths.append(list(path))
                return
            for e in self.out_edges(block_id, include_raise):
                if e.kind is EdgeKind.LOOP_BACK or e.target not in useful:
                    continue
                path.append(e)
                walk(e.target, path)
                path.pop()

        walk(self.entry, [])
        return paths

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self) -> None:
        """Check the structural invariants.

        Raises:
            GraphInvariantViolation: on the first violated invariant.
        """
        for block in self.blocks:
            out = self._out[block.id]
            if block.is_exit:
                if out:
                    raise GraphInvariantViolation("exit block has successors", block.id)
                continue
            if not out:
                raise GraphInvariantViolation("block has no outgoing edge", block.id)
            control = [e for e in out if not e.is_exceptional]
            shape = _control_shape(control)
            if shape is None:
                kinds = ", ".join(e.kind.value for e in control)
                raise GraphInvariantViolation(f"malformed successor set [{kinds}]", block.id)

        live = self.reachable_from([self.entry])
        for block in self.blocks:
            if block.dead and block.id in live:
                raise GraphInvariantViolation("block marked dead is reachable", block.id)
        covered = live | self.reachable_from(b.id for b in self.blocks if b.dead)
        for block in self.blocks:
            if not block.is_exit and block.id not in covered:
                raise GraphInvariantViolation(
                    "block is neither reachable nor marked dead", block.id
                )

        self._check_acyclic()

    def _check_acyclic(self) -> None:
        """The graph without loop_back edges must be a DAG."""
        WHITE, GREY, BLACK = 0, 1, 2
        color = [WHITE] * len(self.blocks)
        for start in range(len(self.blocks)):
            if color[start] != WHITE:
                continue
            color[start] = GREY
            stack = [(start, iter(self._out[start]))]
            while stack:
                node, edges = stack[-1]
                advanced = False
                for e in edges:
                    if e.kind is EdgeKind.LOOP_BACK:
                        continue
                    if color[e.target] == GREY:
                        raise GraphInvariantViolation(
                            f"cycle through {e.kind.value} edge to block {e.target}",
                            node,
                        )
                    if color[e.target] == WHITE:
                        color[e.target] = GREY
                        stack.append((e.target, iter(self._out[e.target])))
                        advanced = True
                        break
                if not advanced:
                    color[node] = BLACK
                    stack.pop()

    def finalize(self) -> "FlowGraph":
        """Validate and freeze the graph. Returns self."""
        self._check_mutable()
        self.validate()
        for block in self.blocks:
            block.statements = tuple(block.statements)
        self._finalized = True
        return self

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "blocks": [b.to_dict() for b in self.blocks],
            "edges": [e.to_dict() for e in self.edges],
            "entry": self.entry,
            "exits": {
                "normal": self.exit,
                "return": self.return_exit,
                "raise": self.raise_exit,
            },
            "cyclomatic_complexity": self.cyclomatic_complexity,
        }

    def to_json(self, indent: int | None = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    def to_dot(self) -> str:
        """Graphviz representation; exits are drawn as double octagons."""

        def quote(text: str) -> str:
            return text.replace("\\", "\\\\").replace('"', '\\"')

        lines = [f'digraph "{quote(self.name)}" {{', "  node [shape=box];"]
        for block in self.blocks:
            title = f"({block.id}) {block.kind}"
            body = "\\l".join(quote(s) for s in block.statements)
            label = f"{title}\\n{body}\\l" if body else title
            attrs = [f'label="{label}"']
            if block.is_exit or block.id == self.entry:
                attrs.append("shape=doubleoctagon")
            if block.dead:
                attrs.append("style=dashed")
            lines.append(f"  {block.id} [{', '.join(attrs)}];")
        for e in self.edges:
            text = e.kind.value
            if e.resume is not None:
                text += f"({e.resume.value})"
            if e.label is not None:
                text += f" {e.label}"
            style = ", style=dashed" if e.is_exceptional else ""
            lines.append(f'  {e.source} -> {e.target} [label="{quote(text)}"{style}];')
        lines.append("}")
        return "\n".join(lines) + "\n"

    def __repr__(self) -> str:
        return (
            f"FlowGraph({self.name!r}, blocks={len(self.blocks)}, "
            f"edges={len(self.edges)}, finalized={self._finalized})"
        )
