"""
Java front-end: turns a tree-sitter-java method into a statement tree.

Requires the optional tree-sitter and tree-sitter-java packages
(`pip install exflow[java]`).

Which calls may throw comes from two places: the `throws` clause of methods
declared in the same file, and the call_raises rules of the configuration
for everything else. Exception classes declared in the file (class X extends
SomeException) are added to the type hierarchy.
"""

import logging

from .config import ExflowConfig
from .statements import (
    Break,
    Continue,
    DoWhile,
    Expr,
    For,
    ForEach,
    Handler,
    If,
    Labeled,
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

# Tree-sitter imports (optional)
TREE_SITTER_JAVA_AVAILABLE = False
try:
    from tree_sitter import Language, Parser
    import tree_sitter_java

    TREE_SITTER_JAVA_AVAILABLE = True
except ImportError:
    pass


METHOD_NODES = ("method_declaration", "constructor_declaration")
COMMENT_NODES = ("line_comment", "block_comment", "comment")
CALL_NODES = ("method_invocation", "object_creation_expression", "explicit_constructor_invocation")
# Code under these nodes does not run where it is written
DEFERRED_NODES = ("lambda_expression", "class_body", "method_reference")


def _get_ts_parser():
    """Get or create a tree-sitter parser for Java."""
    if not TREE_SITTER_JAVA_AVAILABLE:
        raise ImportError("tree-sitter-java not available")
    parser = Parser()
    parser.language = Language(tree_sitter_java.language())
    return parser


def _simple_type(text: str) -> str:
    """java.io.IOException -> IOException, List<String> -> List."""
    return text.split("<", 1)[0].strip().rsplit(".", 1)[-1]


def _walk(node, skip=()):
    """Pre-order traversal that does not descend into node types in skip."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(
            child for child in reversed(current.children) if child.type not in skip
        )


class JavaStatementBuilder:
    """Build a statement tree from a tree-sitter-java method node."""

    def __init__(
        self,
        source: bytes,
        config: ExflowConfig,
        hierarchy: TypeHierarchy,
        local_throws: dict[str, tuple[str, ...]],
    ):
        self.source = source
        self.config = config
        self.hierarchy = hierarchy
        self.local_throws = local_throws
        self.handler_stack: list[tuple[str | None, tuple[str, ...]]] = []
        self._handlers = {
            "block": self._block,
            "constructor_body": self._block,
            "if_statement": self._if,
            "while_statement": self._while,
            "do_statement": self._do,
            "for_statement": self._for,
            "enhanced_for_statement": self._for_each,
            "switch_expression": self._switch,
            "switch_statement": self._switch,
            "break_statement": self._break,
            "continue_statement": self._continue,
            "return_statement": self._return,
            "throw_statement": self._throw,
            "try_statement": self._try,
            "try_with_resources_statement": self._try_with_resources,
            "labeled_statement": self._labeled,
            "synchronized_statement": self._synchronized,
            "assert_statement": self._assert,
            "expression_statement": self._expression_statement,
        }

    def build(self, method_node) -> Statement:
        body = method_node.child_by_field_name("body")
        if body is None:
            # abstract / interface method
            return Sequence([], line=self._line(method_node))
        return self._block(body)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def get_node_text(self, node) -> str:
        """Get source text for a node, whitespace collapsed."""
        text = self.source[node.start_byte : node.end_byte].decode("utf-8")
        return " ".join(text.split())

    def _line(self, node) -> int:
        return node.start_point[0] + 1

    def _statements(self, node) -> list:
        return [c for c in node.named_children if c.type not in COMMENT_NODES]

    def _condition_text(self, node) -> str:
        """Condition text without the surrounding parentheses."""
        if node.type == "parenthesized_expression":
            inner = self._statements(node)
            if len(inner) == 1:
                return self.get_node_text(inner[0])
        return self.get_node_text(node)

    def _call_text(self, node) -> str | None:
        if node.type == "method_invocation":
            name = node.child_by_field_name("name")
            obj = node.child_by_field_name("object")
            if name is None:
                return None
            if obj is None:
                return self.get_node_text(name)
            return f"{self.get_node_text(obj)}.{self.get_node_text(name)}"
        if node.type == "object_creation_expression":
            type_node = node.child_by_field_name("type")
            return f"new {self.get_node_text(type_node)}" if type_node else None
        return self.get_node_text(node).split("(", 1)[0]

    def _call_raises(self, node) -> list[str]:
        if node.type == "method_invocation":
            obj = node.child_by_field_name("object")
            name = node.child_by_field_name("name")
            local = obj is None or self.get_node_text(obj) == "this"
            if local and name is not None:
                method = self.get_node_text(name)
                if method in self.local_throws:
                    return list(self.local_throws[method])
        text = self._call_text(node)
        if text is None:
            return []
        return list(self.config.raises_for_call(text))

    def _raises(self, node) -> tuple[str, ...]:
        """Error types the calls evaluated by node may raise."""
        if node is None:
            return ()
        found: list[str] = []
        for child in _walk(node, skip=DEFERRED_NODES):
            if child.type in CALL_NODES:
                found.extend(self._call_raises(child))
        return tuple(dict.fromkeys(found))

    def _expr(self, node, text: str | None = None) -> Expr:
        return Expr(
            text if text is not None else self.get_node_text(node),
            raises=self._raises(node),
            line=self._line(node),
        )

    def _unknown_throw_type(self) -> str:
        return self.config.unknown_throw_type or "Throwable"

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def _statement(self, node) -> Statement:
        handler = self._handlers.get(node.type)
        if handler is not None:
            return handler(node)
        if node.type in ("class_declaration", "local_class_declaration", "record_declaration"):
            name = node.child_by_field_name("name")
            return Expr(f"class {self.get_node_text(name) if name else ''}", line=self._line(node))
        # local_variable_declaration, yield_statement, empty statements, ...
        return self._expr(node)

    def _block(self, node) -> Sequence:
        return Sequence([self._statement(c) for c in self._statements(node)], line=self._line(node))

    def _expression_statement(self, node) -> Statement:
        inner = self._statements(node)
        if len(inner) == 1 and inner[0].type == "switch_expression":
            return self._switch(inner[0])
        return self._expr(node)

    def _if(self, node) -> If:
        condition = node.child_by_field_name("condition")
        alternative = node.child_by_field_name("alternative")
        return If(
            self._expr(condition, self._condition_text(condition)),
            self._statement(node.child_by_field_name("consequence")),
            self._statement(alternative) if alternative is not None else None,
            line=self._line(node),
        )

    def _while(self, node) -> While:
        condition = node.child_by_field_name("condition")
        text = self._condition_text(condition)
        return While(
            None if text == "true" else self._expr(condition, text),
            self._statement(node.child_by_field_name("body")),
            line=self._line(node),
        )

    def _do(self, node) -> DoWhile:
        condition = node.child_by_field_name("condition")
        text = self._condition_text(condition)
        return DoWhile(
            self._statement(node.child_by_field_name("body")),
            None if text == "true" else self._expr(condition, text),
            line=self._line(node),
        )

    def _for(self, node) -> For:
        condition = node.child_by_field_name("condition")
        return For(
            [self._expr(n) for n in node.children_by_field_name("init")],
            self._expr(condition) if condition is not None else None,
            [self._expr(n) for n in node.children_by_field_name("update")],
            self._statement(node.child_by_field_name("body")),
            line=self._line(node),
        )

    def _for_each(self, node) -> ForEach:
        name = node.child_by_field_name("name")
        value = node.child_by_field_name("value")
        return ForEach(
            self.get_node_text(name) if name is not None else "item",
            self._expr(value),
            self._statement(node.child_by_field_name("body")),
            line=self._line(node),
        )

    def _switch(self, node) -> Switch:
        condition = node.child_by_field_name("condition")
        body = node.child_by_field_name("body")
        cases: list[SwitchCase] = []
        # Some grammar versions give `case 1: case 2:` one group per label
        waiting: list = []
        for group in self._statements(body) if body is not None else []:
            if group.type == "switch_block_statement_group":
                labels = waiting + [c for c in group.named_children if c.type == "switch_label"]
                stmts = [
                    self._statement(c)
                    for c in self._statements(group)
                    if c.type != "switch_label"
                ]
                if not stmts:
                    waiting = labels
                    continue
                waiting = []
                cases.append(SwitchCase(self._case_values(labels), stmts))
            elif group.type == "switch_rule":
                labels = [c for c in group.named_children if c.type == "switch_label"]
                stmts = [
                    self._statement(c)
                    for c in self._statements(group)
                    if c.type != "switch_label"
                ]
                # Arrow rules never fall through
                if not stmts or stmts[-1].kind not in ("break", "continue", "return", "throw"):
                    stmts.append(Break(line=self._line(group)))
                cases.append(SwitchCase(self._case_values(labels), stmts))
            elif group.type == "switch_label":
                waiting.append(group)
        if waiting:
            cases.append(SwitchCase(self._case_values(waiting), []))
        return Switch(
            self._expr(condition, self._condition_text(condition)),
            cases,
            fallthrough=True,
            line=self._line(node),
        )

    def _case_values(self, labels) -> list[str]:
        values: list[str] = []
        for label in labels:
            text = self.get_node_text(label)
            if text == "default" or text.endswith(", default"):
                return []
            values.extend(self.get_node_text(v) for v in self._statements(label))
        return values

    def _label(self, node) -> str | None:
        identifiers = [c for c in node.named_children if c.type == "identifier"]
        return self.get_node_text(identifiers[0]) if identifiers else None

    def _break(self, node) -> Break:
        return Break(self._label(node), line=self._line(node))

    def _continue(self, node) -> Continue:
        return Continue(self._label(node), line=self._line(node))

    def _return(self, node) -> Statement:
        values = self._statements(node)
        value = self.get_node_text(values[0]) if values else None
        stmt = Return(value, line=self._line(node))
        raises = self._raises(values[0]) if values else ()
        if not raises:
            return stmt
        return Sequence([Expr(value, raises, self._line(node)), stmt], line=self._line(node))

    def _throw(self, node) -> Throw:
        values = self._statements(node)
        error_type = None
        other_types: tuple[str, ...] = ()
        if values:
            thrown = values[0]
            if thrown.type == "object_creation_expression":
                error_type = _simple_type(self.get_node_text(thrown.child_by_field_name("type")))
            elif thrown.type == "identifier":
                name = self.get_node_text(thrown)
                for bound, types in reversed(self.handler_stack):
                    if bound == name:
                        error_type, *rest = types
                        other_types = tuple(rest)
                        break
        return Throw(
            error_type or self._unknown_throw_type(),
            source=self.get_node_text(node),
            line=self._line(node),
            other_types=other_types,
        )

    def _catch_clause(self, node) -> Handler:
        param = next(c for c in node.named_children if c.type == "catch_formal_parameter")
        catch_type = next(c for c in param.named_children if c.type == "catch_type")
        types = tuple(
            # Library exception classes are not visible here; accept them
            self.hierarchy.ensure(_simple_type(self.get_node_text(t)))
            for t in catch_type.named_children
        )
        name_node = param.child_by_field_name("name")
        if name_node is None:
            name_node = next((c for c in param.named_children if c.type == "identifier"), None)
        name = self.get_node_text(name_node) if name_node is not None else None
        self.handler_stack.append((name, types))
        body = self._block(node.child_by_field_name("body"))
        self.handler_stack.pop()
        return Handler(types, body, name=name, line=self._line(node))

    def _handlers_and_cleanup(self, node) -> tuple[list[Handler], Statement | None]:
        handlers = []
        cleanup = None
        for child in node.named_children:
            if child.type == "catch_clause":
                handlers.append(self._catch_clause(child))
            elif child.type == "finally_clause":
                block = next(c for c in child.named_children if c.type == "block")
                cleanup = self._block(block)
        return handlers, cleanup

    def _try(self, node) -> Try:
        handlers, cleanup = self._handlers_and_cleanup(node)
        return Try(
            self._block(node.child_by_field_name("body")),
            handlers,
            cleanup=cleanup,
            line=self._line(node),
        )

    def _try_with_resources(self, node) -> Statement:
        """
        try (R r = open()) { body } catch ... finally ...

        becomes an outer try (catches + finally) around the resource
        initializers and an inner try whose cleanup closes the resources.
        """
        line = self._line(node)
        resources = node.child_by_field_name("resources")
        opens = [self._expr(r) for r in self._statements(resources)] if resources else []
        close = Expr("close resources", self.config.raises_for_call("close"), line)
        inner = Try(
            self._block(node.child_by_field_name("body")),
            cleanup=Sequence([close], line=line),
            line=line,
        )
        handlers, cleanup = self._handlers_and_cleanup(node)
        protected = Sequence([*opens, inner], line=line)
        if not handlers and cleanup is None:
            return protected
        return Try(protected, handlers, cleanup=cleanup, line=line)

    def _labeled(self, node) -> Statement:
        label = self._label(node)
        inner = next(c for c in self._statements(node) if c.type != "identifier")
        stmt = self._statement(inner)
        if stmt.kind in ("while", "do_while", "for", "for_each"):
            stmt.label = label
            return stmt
        return Labeled(label, stmt, line=self._line(node))

    def _synchronized(self, node) -> Statement:
        lock = next(c for c in self._statements(node) if c.type == "parenthesized_expression")
        return Sequence(
            [
                self._expr(lock, f"synchronized {self.get_node_text(lock)}"),
                self._block(node.child_by_field_name("body")),
            ],
            line=self._line(node),
        )

    def _assert(self, node) -> Expr:
        raises = list(self._raises(node))
        if self.config.is_interesting("AssertionError"):
            raises.append("AssertionError")
        return Expr(self.get_node_text(node), tuple(dict.fromkeys(raises)), self._line(node))


# =============================================================================
# File-level scans
# =============================================================================


def _text(source: bytes, node) -> str:
    return source[node.start_byte : node.end_byte].decode("utf-8")


def declare_file_errors(tree, source: bytes, hierarchy: TypeHierarchy) -> list[str]:
    """Declare exception classes declared in the file. Returns the declared names."""
    pending = []
    for node in _walk(tree.root_node):
        if node.type != "class_declaration":
            continue
        name = node.child_by_field_name("name")
        superclass = node.child_by_field_name("superclass")
        if name is None or superclass is None:
            continue
        parent_types = [c for c in superclass.named_children]
        if not parent_types:
            continue
        child, parent = _text(source, name), _simple_type(_text(source, parent_types[0]))
        if child == parent:
            # class IOException extends java.io.IOException
            hierarchy.ensure(child)
            continue
        pending.append((child, parent))

    declared = []
    progress = True
    while progress:
        progress = False
        for name, parent in list(pending):
            if not hierarchy.knows(parent):
                continue
            hierarchy.declare(name, parent)
            declared.append(name)
            pending.remove((name, parent))
            progress = True
    return declared


def _method_name(source: bytes, node) -> str | None:
    name = node.child_by_field_name("name")
    return _text(source, name) if name is not None else None


def _throws_clause(source: bytes, node, config: ExflowConfig) -> tuple[str, ...]:
    types = []
    for child in node.children:
        if child.type != "throws":
            continue
        for t in child.named_children:
            name = _simple_type(_text(source, t))
            if config.is_interesting(name):
                types.append(name)
    return tuple(dict.fromkeys(types))


def _method_nodes(tree):
    return [n for n in _walk(tree.root_node) if n.type in METHOD_NODES]


def list_java_methods(source: str) -> list[str]:
    """Names of all methods and constructors in source, in declaration order."""
    source_bytes = source.encode("utf-8")
    tree = _get_ts_parser().parse(source_bytes)
    names = [_method_name(source_bytes, n) for n in _method_nodes(tree)]
    return list(dict.fromkeys(n for n in names if n))


def extract_java_statements(
    source: str,
    method_name: str,
    config: ExflowConfig | None = None,
) -> Program:
    """
    Build the statement tree of a Java method.

    Args:
        source: Java source code as string
        method_name: Name of the method (or constructor) to convert
        config: Fallibility rules; defaults to ExflowConfig()

    Returns:
        Program with the method body and the file's type hierarchy

    Raises:
        ImportError: If tree-sitter-java is not installed
        ValueError: If method not found in source
    """
    if not TREE_SITTER_JAVA_AVAILABLE:
        raise ImportError("tree-sitter-java not available")

    config = config or ExflowConfig()
    source_bytes = source.encode("utf-8")
    tree = _get_ts_parser().parse(source_bytes)

    hierarchy = config.apply_to(TypeHierarchy.java())
    declared = declare_file_errors(tree, source_bytes, hierarchy)
    if declared:
        logger.debug(f"Declared file exception classes: {declared}")

    methods = _method_nodes(tree)
    local_throws: dict[str, tuple[str, ...]] = {}
    for node in methods:
        name = _method_name(source_bytes, node)
        if name:
            local_throws[name] = tuple(
                dict.fromkeys(local_throws.get(name, ()) + _throws_clause(source_bytes, node, config))
            )

    for node in methods:
        if _method_name(source_bytes, node) == method_name:
            builder = JavaStatementBuilder(source_bytes, config, hierarchy, local_throws)
            return Program(method_name, builder.build(node), hierarchy, "java")

    raise ValueError(f"Method '{method_name}' not found in source")
