"""exflow: exception-aware control flow graphs."""

from .api import ScanResult, extract_flow_graph, extract_statements, list_functions, scan_directory
from .builder import GraphBuilder, build_flow_graph
from .config import ExflowConfig, load_config
from .errors import ConfigError, FlowGraphError, GraphInvariantViolation, MalformedInputError
from .flow_graph import BasicBlock, Edge, EdgeKind, FlowGraph
from .statements import Program
from .type_hierarchy import TypeHierarchy

__version__ = "0.1.0"

__all__ = [
    "BasicBlock",
    "ConfigError",
    "Edge",
    "EdgeKind",
    "ExflowConfig",
    "FlowGraph",
    "FlowGraphError",
    "GraphBuilder",
    "GraphInvariantViolation",
    "MalformedInputError",
    "Program",
    "ScanResult",
    "TypeHierarchy",
    "build_flow_graph",
    "extract_flow_graph",
    "extract_statements",
    "list_functions",
    "load_config",
    "scan_directory",
]
