"""
Region stack: the enclosing loops and protected regions during lowering.

The builder pushes a frame for every loop, fall-through switch and protected
region it descends into. Abrupt completions are resolved by walking the
stack outward from the innermost frame:

- break/continue: the nearest applicable loop, unless a protected region
  with a cleanup block lies in between; then that cleanup intercepts, and
  its resume edge re-resolves the jump once the region has been popped
- return: the innermost cleanup, or the return exit
- raise: the first matching handler of a region whose handlers are still
  active, else that region's cleanup, else further out; the unhandled-raise
  exit when the stack is exhausted

Edges whose target does not exist yet (post-loop position, handler entry,
cleanup entry) are parked on the frame as Pending edges until the builder
creates the target.
"""

import logging
from dataclasses import dataclass, field
from typing import NamedTuple

from .errors import GraphInvariantViolation, MalformedInputError
from .flow_graph import EdgeKind
from .statements import Handler, Statement
from .type_hierarchy import TypeHierarchy

logger = logging.getLogger(__name__)


@dataclass
class Pending:
    """An edge whose source is known but whose target is not created yet."""

    source: int
    kind: EdgeKind
    label: str | None = None
    resume: EdgeKind | None = None
    appendable: bool = False  # source is a straight-line block still open for statements


class Completion(NamedTuple):
    """How control left a protected region: kind plus label/error type."""

    kind: EdgeKind
    label: str | None = None


@dataclass
class LoopFrame:
    """Loop (or fall-through switch) frame collecting break/continue edges.

    label_only frames belong to labelled blocks: only `break label` leaves them.
    """

    label: str | None = None
    is_switch: bool = False
    label_only: bool = False
    breaks: list[Pending] = field(default_factory=list)
    continues: list[Pending] = field(default_factory=list)


@dataclass
class ProtectedFrame:
    """Protected region frame.

    handlers_active is cleared once the body is lowered: raises from a
    handler (or from the region's else-part) are not caught by the region's
    own handlers, but still pass through its cleanup.
    """

    handlers: list[Handler]
    has_cleanup: bool
    handlers_active: bool = True
    handler_inbound: list[list[Pending]] = field(default_factory=list)
    cleanup_inbound: list[Pending] = field(default_factory=list)
    completions: list[Completion] = field(default_factory=list)

    def __post_init__(self):
        if not self.handler_inbound:
            self.handler_inbound = [[] for _ in self.handlers]

    def record(self, completion: Completion) -> None:
        if completion not in self.completions:
            self.completions.append(completion)


Frame = LoopFrame | ProtectedFrame


@dataclass
class Route:
    """Where an abrupt completion goes.

    target is one of: "break", "continue" (frame is the LoopFrame),
    "handler" (frame + handler_index), "cleanup" (frame is the intercepting
    ProtectedFrame), "return_exit", "raise_exit".
    """

    target: str
    frame: Frame | None = None
    handler_index: int | None = None


class RegionStack:
    """Stack of frames owned by a single builder traversal."""

    def __init__(self, hierarchy: TypeHierarchy):
        self.hierarchy = hierarchy
        self.frames: list[Frame] = []

    def __len__(self) -> int:
        return len(self.frames)

    # ------------------------------------------------------------------
    # Push / pop
    # ------------------------------------------------------------------

    def enter_loop(self, label: str | None = None, is_switch: bool = False) -> LoopFrame:
        frame = LoopFrame(label=label, is_switch=is_switch)
        self.frames.append(frame)
        logger.debug(f"enter {'switch' if is_switch else 'loop'} depth={len(self.frames)}")
        return frame

    def enter_label(self, label: str) -> LoopFrame:
        """Push the break target of a labelled non-loop statement."""
        frame = LoopFrame(label=label, is_switch=True, label_only=True)
        self.frames.append(frame)
        logger.debug(f"enter label {label} depth={len(self.frames)}")
        return frame

    def exit_loop(self) -> LoopFrame:
        frame = self._pop(LoopFrame)
        logger.debug(
            f"exit loop depth={len(self.frames) + 1} breaks={len(frame.breaks)} "
            f"continues={len(frame.continues)}"
        )
        return frame

    def enter_protected_region(
        self,
        handlers: list[Handler],
        has_cleanup: bool,
        statement: Statement | None = None,
    ) -> ProtectedFrame:
        """Push a protected region.

        Raises:
            MalformedInputError: if a handler names a type the hierarchy
                does not know.
        """
        for handler in handlers:
            if not handler.error_types:
                raise MalformedInputError("handler without error type", statement)
            for error_type in handler.error_types:
                if not self.hierarchy.knows(error_type):
                    raise MalformedInputError(
                        f"handler type '{error_type}' cannot be resolved", statement
                    )
        frame = ProtectedFrame(handlers=list(handlers), has_cleanup=has_cleanup)
        self.frames.append(frame)
        logger.debug(
            f"enter protected region depth={len(self.frames)} "
            f"handlers={len(handlers)} cleanup={has_cleanup}"
        )
        return frame

    def exit_protected_region(self) -> ProtectedFrame:
        frame = self._pop(ProtectedFrame)
        logger.debug(
            f"exit protected region depth={len(self.frames) + 1} "
            f"completions={[c.kind.value for c in frame.completions]}"
        )
        return frame

    def _pop(self, expected: type):
        if not self.frames or not isinstance(self.frames[-1], expected):
            raise GraphInvariantViolation(f"region stack out of balance, expected {expected.__name__}")
        return self.frames.pop()

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def _intercepting_cleanup(self, above: int) -> ProtectedFrame | None:
        """Innermost protected frame with a cleanup strictly above index `above`."""
        for frame in reversed(self.frames[above + 1 :]):
            if isinstance(frame, ProtectedFrame) and frame.has_cleanup:
                return frame
        return None

    def _find_loop(self, label: str | None, for_continue: bool) -> int | None:
        for index in range(len(self.frames) - 1, -1, -1):
            frame = self.frames[index]
            if not isinstance(frame, LoopFrame):
                continue
            if for_continue and frame.is_switch:
                continue
            if frame.label_only and label is None:
                continue
            if label is None or frame.label == label:
                return index
        return None

    def resolve_break(self, label: str | None = None, statement: Statement | None = None) -> Route:
        """Route a break to its loop/switch, through any cleanup in between.

        Raises:
            MalformedInputError: if no enclosing loop or switch matches.
        """
        index = self._find_loop(label, for_continue=False)
        if index is None:
            what = f"label '{label}'" if label else "loop or switch"
            raise MalformedInputError(f"break outside of {what}", statement)
        cleanup = self._intercepting_cleanup(index)
        if cleanup is not None:
            return Route("cleanup", cleanup)
        return Route("break", self.frames[index])

    def resolve_continue(self, label: str | None = None, statement: Statement | None = None) -> Route:
        """Route a continue to its loop; switches are skipped.

        Raises:
            MalformedInputError: if no enclosing loop matches.
        """
        index = self._find_loop(label, for_continue=True)
        if index is None:
            what = f"label '{label}'" if label else "loop"
            raise MalformedInputError(f"continue outside of {what}", statement)
        cleanup = self._intercepting_cleanup(index)
        if cleanup is not None:
            return Route("cleanup", cleanup)
        return Route("continue", self.frames[index])

    def resolve_return(self) -> Route:
        cleanup = self._intercepting_cleanup(-1)
        if cleanup is not None:
            return Route("cleanup", cleanup)
        return Route("return_exit")

    def resolve_raise(self, error_type: str) -> Route:
        """Route a raise of error_type to a handler, a cleanup, or the raise exit."""
        self.hierarchy.ensure(error_type)
        for frame in reversed(self.frames):
            if not isinstance(frame, ProtectedFrame):
                continue
            if frame.handlers_active:
                for index, handler in enumerate(frame.handlers):
                    if any(self.hierarchy.is_subtype(error_type, t) for t in handler.error_types):
                        return Route("handler", frame, index)
            if frame.has_cleanup:
                return Route("cleanup", frame)
        return Route("raise_exit")
