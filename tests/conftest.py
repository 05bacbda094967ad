"""Pytest configuration and fixtures."""

import pytest

from exflow.statements import (
    Break,
    Continue,
    DoWhile,
    Expr,
    For,
    ForEach,
    Handler,
    If,
    Return,
    Switch,
    SwitchCase,
    Throw,
    Try,
    While,
    seq,
)
from exflow.type_hierarchy import TypeHierarchy


@pytest.fixture
def java_hierarchy():
    return TypeHierarchy.java()


def _sample_trees():
    """Statement trees covering every statement kind, used by property tests."""
    io = ("IOException",)
    return {
        "straight": seq(Expr("a()"), Expr("b()")),
        "if_else_return": seq(If(Expr("x > 0"), Return("x"), Return("-x"))),
        "while_break_continue": seq(
            While(
                Expr("more()"),
                seq(
                    If(Expr("skip()"), seq(Continue())),
                    If(Expr("done()"), seq(Break())),
                    Expr("work()"),
                ),
            ),
            Expr("after()"),
        ),
        "do_while": seq(DoWhile(seq(Expr("step()")), Expr("more()"))),
        "for_update": seq(
            For([Expr("i = 0")], Expr("i < n"), [Expr("i++")], seq(Expr("use(i)"))),
        ),
        "for_each_else": seq(
            ForEach("x", Expr("items"), seq(If(Expr("x"), seq(Break()))), orelse=seq(Expr("none()"))),
        ),
        "switch": seq(
            Switch(
                Expr("k"),
                [
                    SwitchCase(["1"], [Expr("one()")]),
                    SwitchCase(["2"], [Expr("two()"), Break()]),
                    SwitchCase([], [Expr("other()")]),
                ],
            ),
        ),
        "try_all_completions": seq(
            While(
                Expr("running()"),
                seq(
                    Try(
                        seq(
                            If(Expr("a"), seq(Break())),
                            If(Expr("b"), seq(Continue())),
                            If(Expr("c"), seq(Return("x"))),
                            Expr("risky()", raises=io),
                        ),
                        [Handler(("SQLException",), seq(Expr("rollback()")))],
                        cleanup=seq(Expr("release()", raises=io)),
                    )
                ),
            ),
        ),
        "nested_try": seq(
            Try(
                seq(
                    Try(
                        seq(Throw("IOException")),
                        [Handler(("SQLException",), seq(Expr("inner()")))],
                        cleanup=seq(Expr("inner_cleanup()")),
                    )
                ),
                [Handler(io, seq(Expr("outer()")))],
                cleanup=seq(Expr("outer_cleanup()")),
            ),
            Expr("after()"),
        ),
        "dead_code": seq(Return(), Expr("never()")),
    }


@pytest.fixture
def sample_trees():
    return _sample_trees()
