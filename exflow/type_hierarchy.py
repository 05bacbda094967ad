"""
Error type specificity.

Handlers are matched by subtyping: a raise of type T is caught by the first
handler declaring T or one of T's ancestors. The hierarchy is a plain
child -> parent map with a single root.
"""

import builtins
import logging

logger = logging.getLogger(__name__)


JAVA_ERROR_TYPES: dict[str, str | None] = {
    "Throwable": None,
    "Exception": "Throwable",
    "Error": "Throwable",
    "RuntimeException": "Exception",
    "IOException": "Exception",
    "FileNotFoundException": "IOException",
    "EOFException": "IOException",
    "UncheckedIOException": "RuntimeException",
    "SQLException": "Exception",
    "SQLTimeoutException": "SQLException",
    "ClassNotFoundException": "ReflectiveOperationException",
    "ReflectiveOperationException": "Exception",
    "InterruptedException": "Exception",
    "CloneNotSupportedException": "Exception",
    "IllegalArgumentException": "RuntimeException",
    "NumberFormatException": "IllegalArgumentException",
    "IllegalStateException": "RuntimeException",
    "NullPointerException": "RuntimeException",
    "ArithmeticException": "RuntimeException",
    "ClassCastException": "RuntimeException",
    "IndexOutOfBoundsException": "RuntimeException",
    "ArrayIndexOutOfBoundsException": "IndexOutOfBoundsException",
    "StringIndexOutOfBoundsException": "IndexOutOfBoundsException",
    "UnsupportedOperationException": "RuntimeException",
    "ConcurrentModificationException": "RuntimeException",
    "NoSuchElementException": "RuntimeException",
    "AssertionError": "Error",
    "OutOfMemoryError": "Error",
    "StackOverflowError": "Error",
}


def _python_error_types() -> dict[str, str | None]:
    """Builtin exception classes, keyed by name, with their direct base."""
    types: dict[str, str | None] = {"BaseException": None}
    for name in dir(builtins):
        obj = getattr(builtins, name)
        if not (isinstance(obj, type) and issubclass(obj, BaseException)):
            continue
        if name != obj.__name__:
            # Aliases (IOError, EnvironmentError) sit under the class they alias
            types[name] = obj.__name__
        elif obj is not BaseException:
            types[name] = obj.__base__.__name__
    return types


PYTHON_ERROR_TYPES = _python_error_types()


class TypeHierarchy:
    """Child -> parent map over error type names."""

    def __init__(self, parents: dict[str, str | None], default_base: str):
        self._parents: dict[str, str | None] = dict(parents)
        if default_base not in self._parents:
            raise ValueError(f"default base '{default_base}' is not a known type")
        self.default_base = default_base

    @classmethod
    def java(cls) -> "TypeHierarchy":
        return cls(JAVA_ERROR_TYPES, default_base="Exception")

    @classmethod
    def python(cls) -> "TypeHierarchy":
        return cls(PYTHON_ERROR_TYPES, default_base="Exception")

    @property
    def root(self) -> str:
        return next(name for name, parent in self._parents.items() if parent is None)

    def knows(self, name: str) -> bool:
        return name in self._parents

    def declare(self, name: str, parent: str | None = None) -> None:
        """Add a type. parent defaults to the default base.

        Re-declaring a type with a different parent moves it, unless that
        would create a cycle.
        """
        parent = parent or self.default_base
        if parent not in self._parents:
            # Unknown parent: hang it under the default base first
            self.declare(parent)
        if name == parent or self.is_subtype(parent, name):
            raise ValueError(f"declaring {name} under {parent} would create a cycle")
        self._parents[name] = parent

    def ensure(self, name: str) -> str:
        """Return name, declaring it under the default base if unknown.

        Raised types may come from code the front-end cannot see; they are
        still errors, so they sit below the default base.
        """
        if name not in self._parents:
            logger.debug(f"Implicitly declaring error type {name} under {self.default_base}")
            self._parents[name] = self.default_base
        return name

    def ancestors(self, name: str) -> list[str]:
        """name followed by its ancestors, root last."""
        chain = []
        current: str | None = name
        while current is not None:
            chain.append(current)
            current = self._parents.get(current)
        return chain

    def is_subtype(self, name: str, ancestor: str) -> bool:
        """True if name equals ancestor or ancestor is above it."""
        if name not in self._parents:
            return False
        return ancestor in self.ancestors(name)

    def copy(self) -> "TypeHierarchy":
        return TypeHierarchy(self._parents, self.default_base)

    def __contains__(self, name: str) -> bool:
        return self.knows(name)

    def __len__(self) -> int:
        return len(self._parents)
