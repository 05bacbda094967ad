"""
High-level entry points.

    from exflow.api import extract_flow_graph

    graph = extract_flow_graph(source, "load", "java")
    print(graph.to_json())
"""

import logging
from dataclasses import dataclass
from pathlib import Path

from .builder import build_flow_graph
from .config import ExflowConfig, find_config
from .errors import FlowGraphError
from .flow_graph import FlowGraph
from .ignore import iter_source_files
from .java_frontend import extract_java_statements, list_java_methods
from .python_frontend import extract_python_statements, list_python_functions
from .statements import Program

logger = logging.getLogger(__name__)

LANGUAGES = ("python", "java")

__all__ = [
    "LANGUAGES",
    "ScanResult",
    "build_flow_graph",
    "detect_language",
    "extract_flow_graph",
    "extract_statements",
    "list_functions",
    "scan_directory",
]


def _check_language(language: str) -> None:
    if language not in LANGUAGES:
        raise ValueError(f"Unsupported language: {language}")


def detect_language(path: str | Path, config: ExflowConfig | None = None) -> str:
    """Language of a file from its extension."""
    config = config or ExflowConfig()
    suffix = Path(path).suffix
    if suffix not in config.extensions:
        raise ValueError(f"No language configured for '{suffix}' files: {path}")
    return config.extensions[suffix]


def extract_statements(
    source: str,
    name: str,
    language: str,
    config: ExflowConfig | None = None,
) -> Program:
    """Run the front-end for language over source and return its Program."""
    _check_language(language)
    if language == "java":
        return extract_java_statements(source, name, config)
    return extract_python_statements(source, name, config)


def extract_flow_graph(
    source: str,
    name: str,
    language: str,
    config: ExflowConfig | None = None,
) -> FlowGraph:
    """
    Build the flow graph of one function or method.

    Args:
        source: Source code as string
        name: Function (Python) or method (Java) name
        language: "python" or "java"
        config: Fallibility rules; defaults to ExflowConfig()

    Raises:
        ValueError: If the language is unsupported or the function is not found
        FlowGraphError: If the graph cannot be built
    """
    program = extract_statements(source, name, language, config)
    return build_flow_graph(program.root, program.hierarchy, name=program.name)


def list_functions(source: str, language: str) -> list[str]:
    _check_language(language)
    if language == "java":
        return list_java_methods(source)
    return list_python_functions(source)


@dataclass
class ScanResult:
    """Outcome for one function of a directory scan."""

    path: Path
    function: str
    graph: FlowGraph | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.graph is not None

    def to_dict(self) -> dict:
        result = {"path": str(self.path), "function": self.function}
        if self.graph is not None:
            result["blocks"] = self.graph.block_count
            result["edges"] = len(self.graph.edges)
            result["cyclomatic_complexity"] = self.graph.cyclomatic_complexity
        else:
            result["error"] = self.error
        return result


def scan_directory(
    path: str | Path,
    config: ExflowConfig | None = None,
    respect_ignore: bool = True,
) -> list[ScanResult]:
    """
    Build the flow graph of every function in every supported file under path.

    Files are selected by config.extensions and filtered through
    .exflowignore and .gitignore files. Files that
    cannot be read or parsed are skipped with a warning; functions whose
    graph cannot be built are reported with an error instead of a graph.
    """
    root = Path(path)
    if config is None:
        config = find_config(root)

    results: list[ScanResult] = []
    for file_path in iter_source_files(root, config.extensions, respect_ignore):
        language = config.extensions[file_path.suffix]
        if language not in LANGUAGES:
            logger.warning(f"Skipping {file_path}: unsupported language {language}")
            continue
        try:
            source = file_path.read_text(encoding="utf-8")
            names = list_functions(source, language)
        except (OSError, UnicodeDecodeError, SyntaxError, ImportError) as e:
            logger.warning(f"Skipping {file_path}: {e}")
            continue

        for name in names:
            try:
                graph = extract_flow_graph(source, name, language, config)
            except (FlowGraphError, ValueError) as e:
                logger.warning(f"{file_path}:{name}: {e}")
                results.append(ScanResult(file_path, name, error=str(e)))
                continue
            results.append(ScanResult(file_path, name, graph))

    logger.debug(f"Scanned {root}: {len(results)} functions")
    return results
