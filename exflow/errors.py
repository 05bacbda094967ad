"""
Error taxonomy for flow graph construction.

Two things can go wrong while building a graph:
- MalformedInputError: the statement tree itself is invalid (break outside a
  loop, a handler naming an unknown error type, ...)
- GraphInvariantViolation: the builder produced a graph that breaks one of
  the structural invariants checked by FlowGraph.connect()/finalize()

An error escaping the analysed code is NOT an error here; it is modelled as an
edge to the unhandled-raise exit block.
"""

from typing import Any


class FlowGraphError(Exception):
    """Base class for all construction errors."""


class MalformedInputError(FlowGraphError):
    """The statement tree cannot be lowered.

    Attributes:
        statement: The offending statement (if known).
    """

    def __init__(self, message: str, statement: Any = None):
        self.statement = statement
        if statement is not None and hasattr(statement, "describe"):
            message = f"{message}: {statement.describe()}"
        super().__init__(message)


class GraphInvariantViolation(FlowGraphError):
    """A structural invariant of the flow graph does not hold.

    Attributes:
        block_id: Index of the block where the violation was detected.
    """

    def __init__(self, message: str, block_id: int | None = None):
        self.block_id = block_id
        if block_id is not None:
            message = f"block {block_id}: {message}"
        super().__init__(message)


class ConfigError(ValueError):
    """Invalid .exflow.json configuration."""
