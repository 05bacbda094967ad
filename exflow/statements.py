"""
Statement model consumed by the graph builder.

A statement tree is built by a front-end (see python_frontend / java_frontend)
or by hand in tests. Every node exposes:
- kind: a short tag ("if", "while", "try", ...)
- children(): nested statements, in source order
- describe(): identity used in error messages (kind, text, line)

Compound statements carry their condition as an Expr so that a condition
which calls a fallible function can raise like any other statement.
"""

from dataclasses import dataclass, field
from typing import ClassVar, Iterator

from .type_hierarchy import TypeHierarchy


class Statement:
    """Base class for all statement kinds."""

    kind: ClassVar[str] = "statement"
    line: int | None

    def children(self) -> list["Statement"]:
        return []

    def text(self) -> str:
        """Fragment text placed in a basic block for this statement."""
        return self.kind

    def describe(self) -> str:
        where = f" (line {self.line})" if self.line is not None else ""
        return f"{self.kind} '{self.text()}'{where}"

    def walk(self) -> Iterator["Statement"]:
        """Pre-order traversal of this statement and everything nested in it."""
        yield self
        for child in self.children():
            yield from child.walk()


@dataclass
class Expr(Statement):
    """Plain call/expression statement.

    raises lists the error types this statement may raise; an empty tuple
    means the statement cannot fail.
    """

    source: str
    raises: tuple[str, ...] = ()
    line: int | None = None

    kind: ClassVar[str] = "expr"

    def text(self) -> str:
        return self.source

    @property
    def fallible(self) -> bool:
        return bool(self.raises)


@dataclass
class Sequence(Statement):
    body: list[Statement] = field(default_factory=list)
    line: int | None = None

    kind: ClassVar[str] = "sequence"

    def children(self) -> list[Statement]:
        return list(self.body)

    def text(self) -> str:
        return f"{{{len(self.body)} statements}}"


@dataclass
class If(Statement):
    condition: Expr
    then: Statement
    orelse: Statement | None = None
    line: int | None = None

    kind: ClassVar[str] = "if"

    def children(self) -> list[Statement]:
        return [self.then] if self.orelse is None else [self.then, self.orelse]

    def text(self) -> str:
        return f"if ({self.condition.source})"


@dataclass
class While(Statement):
    """While loop. condition=None is an infinite loop."""

    condition: Expr | None
    body: Statement
    orelse: Statement | None = None
    label: str | None = None
    line: int | None = None

    kind: ClassVar[str] = "while"

    def children(self) -> list[Statement]:
        return [self.body] if self.orelse is None else [self.body, self.orelse]

    def text(self) -> str:
        cond = self.condition.source if self.condition else "true"
        return f"while ({cond})"


@dataclass
class DoWhile(Statement):
    body: Statement
    condition: Expr | None
    label: str | None = None
    line: int | None = None

    kind: ClassVar[str] = "do_while"

    def children(self) -> list[Statement]:
        return [self.body]

    def text(self) -> str:
        cond = self.condition.source if self.condition else "true"
        return f"do ... while ({cond})"


@dataclass
class For(Statement):
    """Counting loop: init; condition; update."""

    init: list[Statement]
    condition: Expr | None
    update: list[Statement]
    body: Statement
    label: str | None = None
    line: int | None = None

    kind: ClassVar[str] = "for"

    def children(self) -> list[Statement]:
        return [*self.init, *self.update, self.body]

    def text(self) -> str:
        cond = self.condition.source if self.condition else ""
        return f"for (...; {cond}; ...)"


@dataclass
class ForEach(Statement):
    target: str
    iterable: Expr
    body: Statement
    orelse: Statement | None = None
    label: str | None = None
    line: int | None = None

    kind: ClassVar[str] = "for_each"

    def children(self) -> list[Statement]:
        return [self.body] if self.orelse is None else [self.body, self.orelse]

    def text(self) -> str:
        return f"for ({self.target} : {self.iterable.source})"


@dataclass
class SwitchCase:
    """One case group. Empty values means the default case."""

    values: list[str]
    body: list[Statement] = field(default_factory=list)

    @property
    def is_default(self) -> bool:
        return not self.values


@dataclass
class Switch(Statement):
    """Switch statement.

    fallthrough=True gives C/Java semantics: a case without a terminal jump
    continues into the next case, and `break` leaves the switch.
    fallthrough=False models Python `match`: every case ends at the
    post-switch position and `break` belongs to the enclosing loop.
    """

    selector: Expr
    cases: list[SwitchCase] = field(default_factory=list)
    fallthrough: bool = True
    line: int | None = None

    kind: ClassVar[str] = "switch"

    def children(self) -> list[Statement]:
        return [stmt for case in self.cases for stmt in case.body]

    def text(self) -> str:
        return f"switch ({self.selector.source})"


@dataclass
class Handler:
    """Handler clause. error_types has several entries for multi-catch."""

    error_types: tuple[str, ...]
    body: Statement
    name: str | None = None
    line: int | None = None

    def text(self) -> str:
        name = f" {self.name}" if self.name else ""
        return f"catch ({' | '.join(self.error_types)}{name})"


@dataclass
class Try(Statement):
    """Protected region: body, ordered handlers, optional cleanup.

    orelse runs after the body completes normally; the region's handlers do
    not cover it, its cleanup does.
    """

    body: Statement
    handlers: list[Handler] = field(default_factory=list)
    cleanup: Statement | None = None
    orelse: Statement | None = None
    line: int | None = None

    kind: ClassVar[str] = "try"

    def children(self) -> list[Statement]:
        nested = [self.body]
        if self.orelse is not None:
            nested.append(self.orelse)
        nested.extend(h.body for h in self.handlers)
        if self.cleanup is not None:
            nested.append(self.cleanup)
        return nested

    def text(self) -> str:
        return "try"


@dataclass
class Break(Statement):
    label: str | None = None
    line: int | None = None

    kind: ClassVar[str] = "break"

    def text(self) -> str:
        return f"break {self.label}" if self.label else "break"


@dataclass
class Continue(Statement):
    label: str | None = None
    line: int | None = None

    kind: ClassVar[str] = "continue"

    def text(self) -> str:
        return f"continue {self.label}" if self.label else "continue"


@dataclass
class Return(Statement):
    value: str | None = None
    line: int | None = None

    kind: ClassVar[str] = "return"

    def text(self) -> str:
        return f"return {self.value}" if self.value else "return"


@dataclass
class Throw(Statement):
    """Raise of error_type.

    other_types lists further types the same statement may raise, as when a
    handler for several types re-raises what it caught.
    """

    error_type: str
    source: str | None = None
    line: int | None = None
    other_types: tuple[str, ...] = ()

    kind: ClassVar[str] = "throw"

    @property
    def error_types(self) -> tuple[str, ...]:
        return tuple(dict.fromkeys((self.error_type, *self.other_types)))

    def text(self) -> str:
        return self.source or f"throw {self.error_type}"


@dataclass
class Labeled(Statement):
    """A labelled statement that is not a loop: `done: { ... }`.

    `break done` inside body leaves it; it is no continue target.
    """

    label: str
    body: Statement
    line: int | None = None

    kind: ClassVar[str] = "labeled"

    def children(self) -> list[Statement]:
        return [self.body]

    def text(self) -> str:
        return f"{self.label}:"


def seq(*body: Statement) -> Sequence:
    """Shorthand for Sequence(list(body))."""
    return Sequence(list(body))


@dataclass
class Program:
    """A front-end's output: one function body plus the error types it knows."""

    name: str
    root: Statement
    hierarchy: TypeHierarchy
    language: str
