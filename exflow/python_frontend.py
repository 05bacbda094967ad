"""
Python front-end: turns a function's `ast` into a statement tree.

Mapping:
- if/elif/else -> If (elif is the nested If in orelse)
- while/else -> While (`while True` is an infinite loop)
- for/else, async for -> ForEach
- try/except/else/finally, try/except* -> Try
- with/async with -> enter expression + Try whose cleanup is the context exit
- match -> Switch without fall-through (`case _` is the default)
- raise/return/break/continue -> Throw/Return/Break/Continue
- everything else -> Expr

Calls are fallible according to the configuration, except calls to functions
of the same module, which raise what those functions raise directly.
Exception classes defined in the module are added to the type hierarchy.
"""

import ast
import logging

from .config import ExflowConfig
from .statements import (
    Break,
    Continue,
    Expr,
    ForEach,
    Handler,
    If,
    Program,
    Return,
    Sequence,
    Statement,
    Switch,
    SwitchCase,
    Throw,
    Try,
    While,
)
from .type_hierarchy import TypeHierarchy

logger = logging.getLogger(__name__)

FUNCTION_NODES = (ast.FunctionDef, ast.AsyncFunctionDef)
SCOPE_NODES = (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef, ast.Lambda)


def _type_name(node: ast.AST | None) -> str | None:
    """Class name referenced by an expression: ValueError, errors.Timeout, Foo(...)."""
    if isinstance(node, ast.Call):
        node = node.func
    if isinstance(node, ast.Attribute):
        return node.attr
    if isinstance(node, ast.Name):
        return node.id
    return None


def _looks_like_class(name: str, hierarchy: TypeHierarchy) -> bool:
    return hierarchy.knows(name) or name[:1].isupper()


class PythonStatementBuilder(ast.NodeVisitor):
    """
    Build a statement tree from a Python function.

    Every visit_* method returns a Statement; unknown statement nodes become
    opaque Expr statements via generic_visit.
    """

    def __init__(
        self,
        config: ExflowConfig,
        hierarchy: TypeHierarchy,
        local_raises: dict[str, tuple[str, ...]],
    ):
        self.config = config
        self.hierarchy = hierarchy
        self.local_raises = local_raises
        # (bound name, handler types) of the except clauses we are inside
        self.handler_stack: list[tuple[str | None, tuple[str, ...]]] = []

    def build(self, func_node: ast.FunctionDef | ast.AsyncFunctionDef) -> Statement:
        return self._block(func_node.body, func_node.lineno)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _text(self, node: ast.AST) -> str:
        """Convert AST node to readable string."""
        try:
            return ast.unparse(node)
        except Exception:
            return "<expr>"

    def _block(self, body: list[ast.stmt], line: int | None = None) -> Sequence:
        if line is None and body:
            line = body[0].lineno
        return Sequence([self.visit(stmt) for stmt in body], line=line)

    def _call_raises(self, call: ast.Call) -> list[str]:
        func = call.func
        local_name = None
        if isinstance(func, ast.Name):
            local_name = func.id
        elif isinstance(func, ast.Attribute) and isinstance(func.value, ast.Name):
            if func.value.id in ("self", "cls"):
                local_name = func.attr
        if local_name is not None and local_name in self.local_raises:
            return list(self.local_raises[local_name])
        return list(self.config.raises_for_call(self._text(func)))

    def _raises(self, node: ast.AST | None) -> tuple[str, ...]:
        """Error types the calls inside node may raise."""
        if node is None:
            return ()
        found: list[str] = []
        for child in ast.walk(node):
            if isinstance(child, ast.Call):
                found.extend(self._call_raises(child))
        return tuple(dict.fromkeys(found))

    def _expr(self, node: ast.AST, text: str | None = None) -> Expr:
        return Expr(
            text if text is not None else self._text(node),
            raises=self._raises(node),
            line=getattr(node, "lineno", None),
        )

    def _handler_types(self, node: ast.expr | None) -> tuple[str, ...]:
        if node is None:
            return ("BaseException",)
        elements = node.elts if isinstance(node, ast.Tuple) else [node]
        types = []
        for element in elements:
            name = _type_name(element) or self._text(element)
            # Library exception classes are not visible here; accept them
            types.append(self.hierarchy.ensure(name))
        return tuple(types)

    def _unknown_throw_type(self) -> str:
        return self.config.unknown_throw_type or "Exception"

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def visit_If(self, node: ast.If) -> If:
        return If(
            self._expr(node.test),
            self._block(node.body),
            self._block(node.orelse) if node.orelse else None,
            line=node.lineno,
        )

    def visit_While(self, node: ast.While) -> While:
        infinite = isinstance(node.test, ast.Constant) and node.test.value in (True, 1)
        return While(
            None if infinite else self._expr(node.test),
            self._block(node.body),
            orelse=self._block(node.orelse) if node.orelse else None,
            line=node.lineno,
        )

    def visit_For(self, node: ast.For | ast.AsyncFor) -> ForEach:
        return ForEach(
            self._text(node.target),
            self._expr(node.iter),
            self._block(node.body),
            orelse=self._block(node.orelse) if node.orelse else None,
            line=node.lineno,
        )

    visit_AsyncFor = visit_For

    def visit_Try(self, node: ast.Try) -> Try:
        handlers = []
        for handler in node.handlers:
            types = self._handler_types(handler.type)
            self.handler_stack.append((handler.name, types))
            body = self._block(handler.body)
            self.handler_stack.pop()
            handlers.append(Handler(types, body, name=handler.name, line=handler.lineno))
        return Try(
            self._block(node.body),
            handlers,
            cleanup=self._block(node.finalbody) if node.finalbody else None,
            orelse=self._block(node.orelse) if node.orelse else None,
            line=node.lineno,
        )

    visit_TryStar = visit_Try

    def visit_With(self, node: ast.With | ast.AsyncWith) -> Sequence:
        parts = []
        raises: list[str] = []
        for item in node.items:
            text = self._text(item.context_expr)
            if item.optional_vars is not None:
                text += f" as {self._text(item.optional_vars)}"
            parts.append(text)
            raises.extend(self._raises(item.context_expr))
        items = ", ".join(parts)
        enter = Expr(f"with {items}", raises=tuple(dict.fromkeys(raises)), line=node.lineno)
        exit_line = getattr(node, "end_lineno", None) or node.lineno
        region = Try(
            self._block(node.body),
            cleanup=Sequence([Expr(f"exit {items}", line=exit_line)], line=exit_line),
            line=node.lineno,
        )
        return Sequence([enter, region], line=node.lineno)

    visit_AsyncWith = visit_With

    def visit_Match(self, node: ast.Match) -> Switch:
        cases = []
        for case in node.cases:
            pattern = case.pattern
            wildcard = (
                isinstance(pattern, ast.MatchAs)
                and pattern.pattern is None
                and pattern.name is None
                and case.guard is None
            )
            body = [self.visit(stmt) for stmt in case.body]
            if wildcard:
                cases.append(SwitchCase([], body))
                continue
            value = self._text(pattern)
            if case.guard is not None:
                value += f" if {self._text(case.guard)}"
            cases.append(SwitchCase([value], body))
        return Switch(self._expr(node.subject), cases, fallthrough=False, line=node.lineno)

    def visit_Raise(self, node: ast.Raise) -> Throw:
        error_type = None
        other_types: tuple[str, ...] = ()
        if node.exc is None:
            # Bare re-raise inside an except clause
            if self.handler_stack:
                error_type, *rest = self.handler_stack[-1][1]
                other_types = tuple(rest)
        elif isinstance(node.exc, ast.Name):
            for bound, types in reversed(self.handler_stack):
                if bound == node.exc.id:
                    error_type, *rest = types
                    other_types = tuple(rest)
                    break
        if error_type is None and node.exc is not None:
            name = _type_name(node.exc)
            if name and _looks_like_class(name, self.hierarchy):
                error_type = name
        return Throw(
            error_type or self._unknown_throw_type(),
            source=self._text(node),
            line=node.lineno,
            other_types=other_types,
        )

    def visit_Return(self, node: ast.Return) -> Statement:
        stmt = Return(self._text(node.value) if node.value is not None else None, line=node.lineno)
        raises = self._raises(node.value)
        if not raises:
            return stmt
        # The returned expression is evaluated (and may fail) before returning
        return Sequence([Expr(self._text(node.value), raises, node.lineno), stmt], line=node.lineno)

    def visit_Break(self, node: ast.Break) -> Break:
        return Break(line=node.lineno)

    def visit_Continue(self, node: ast.Continue) -> Continue:
        return Continue(line=node.lineno)

    def visit_Assert(self, node: ast.Assert) -> Expr:
        raises = list(self._raises(node))
        if self.config.is_interesting("AssertionError"):
            raises.append("AssertionError")
        return Expr(self._text(node), tuple(dict.fromkeys(raises)), line=node.lineno)

    def visit_FunctionDef(self, node: ast.FunctionDef | ast.AsyncFunctionDef) -> Expr:
        # Defining a nested function does not run it
        return Expr(f"def {node.name}", line=node.lineno)

    visit_AsyncFunctionDef = visit_FunctionDef

    def visit_ClassDef(self, node: ast.ClassDef) -> Expr:
        return Expr(f"class {node.name}", line=node.lineno)

    def generic_visit(self, node: ast.AST) -> Expr:
        return self._expr(node)


# =============================================================================
# Module-level scans
# =============================================================================


def declare_module_errors(tree: ast.AST, hierarchy: TypeHierarchy) -> list[str]:
    """Declare exception classes defined in tree. Returns the declared names."""
    pending = []
    for node in ast.walk(tree):
        if not isinstance(node, ast.ClassDef):
            continue
        bases = [_type_name(base) for base in node.bases]
        if node.name in bases:
            # class ConnectionError(requests.ConnectionError): same simple name
            hierarchy.ensure(node.name)
            continue
        pending.append((node.name, bases))
    declared = []
    progress = True
    while progress:
        progress = False
        for name, bases in list(pending):
            parent = next((b for b in bases if b and hierarchy.knows(b)), None)
            if parent is None:
                continue
            hierarchy.declare(name, parent)
            declared.append(name)
            pending.remove((name, bases))
            progress = True
    return declared


def _direct_raises(func: ast.AST, config: ExflowConfig, hierarchy: TypeHierarchy) -> tuple[str, ...]:
    """Types raised by raise statements of func itself (nested scopes excluded)."""
    found: list[str] = []
    stack = list(ast.iter_child_nodes(func))
    while stack:
        node = stack.pop()
        if isinstance(node, SCOPE_NODES):
            continue
        if isinstance(node, ast.Raise) and node.exc is not None:
            name = _type_name(node.exc)
            if name and _looks_like_class(name, hierarchy) and config.is_interesting(name):
                found.append(name)
        stack.extend(ast.iter_child_nodes(node))
    return tuple(dict.fromkeys(found))


def list_python_functions(source: str) -> list[str]:
    """Names of all functions and methods in source, in definition order."""
    tree = ast.parse(source)
    nodes = [n for n in ast.walk(tree) if isinstance(n, FUNCTION_NODES)]
    nodes.sort(key=lambda n: (n.lineno, n.col_offset))
    return list(dict.fromkeys(n.name for n in nodes))


def extract_python_statements(
    source: str,
    function_name: str,
    config: ExflowConfig | None = None,
) -> Program:
    """
    Build the statement tree of a Python function.

    Args:
        source: Python source code as string
        function_name: Name of the function (or method) to convert
        config: Fallibility rules; defaults to ExflowConfig()

    Returns:
        Program with the function body and the module's type hierarchy

    Raises:
        ValueError: If function not found in source
        SyntaxError: If source does not parse
    """
    config = config or ExflowConfig()
    tree = ast.parse(source)
    hierarchy = config.apply_to(TypeHierarchy.python())
    declared = declare_module_errors(tree, hierarchy)
    if declared:
        logger.debug(f"Declared module exception classes: {declared}")

    local_raises = {
        node.name: _direct_raises(node, config, hierarchy)
        for node in ast.walk(tree)
        if isinstance(node, FUNCTION_NODES)
    }

    for node in ast.walk(tree):
        if isinstance(node, FUNCTION_NODES) and node.name == function_name:
            builder = PythonStatementBuilder(config, hierarchy, local_raises)
            return Program(function_name, builder.build(node), hierarchy, "python")

    raise ValueError(f"Function '{function_name}' not found in source")
