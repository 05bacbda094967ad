"""
exflow command line.

    exflow graph Loader.java load --format dot
    exflow functions service.py
    exflow scan src/
    exflow init
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from .api import detect_language, extract_flow_graph, list_functions, scan_directory
from .config import ExflowConfig, find_config, load_config
from .errors import FlowGraphError
from .ignore import ensure_exflowignore

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="exflow",
        description="Exception-aware control flow graphs for Python and Java",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    parser.add_argument(
        "--config",
        type=Path,
        help="configuration file (default: .exflow.json in the project directory)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    graph = sub.add_parser("graph", help="print the flow graph of one function")
    graph.add_argument("file", type=Path)
    graph.add_argument("name", help="function or method name")
    graph.add_argument("--format", choices=("json", "dot"), default="json")
    graph.add_argument("--language", help="override the language detected from the extension")

    functions = sub.add_parser("functions", help="list the functions of a file")
    functions.add_argument("file", type=Path)
    functions.add_argument("--language", help="override the language detected from the extension")

    scan = sub.add_parser("scan", help="summarize every function under a directory")
    scan.add_argument("directory", type=Path)
    scan.add_argument("--no-ignore", action="store_true", help="do not apply .exflowignore")

    init = sub.add_parser("init", help="write a default .exflowignore")
    init.add_argument("directory", type=Path, nargs="?", default=Path("."))

    return parser


def _config(args, project_dir: Path) -> ExflowConfig:
    if args.config is not None:
        return load_config(args.config)
    return find_config(project_dir)


def _cmd_graph(args) -> int:
    config = _config(args, args.file.parent)
    language = args.language or detect_language(args.file, config)
    source = args.file.read_text(encoding="utf-8")
    graph = extract_flow_graph(source, args.name, language, config)
    if args.format == "dot":
        sys.stdout.write(graph.to_dot())
    else:
        print(graph.to_json())
    return 0


def _cmd_functions(args) -> int:
    config = _config(args, args.file.parent)
    language = args.language or detect_language(args.file, config)
    for name in list_functions(args.file.read_text(encoding="utf-8"), language):
        print(name)
    return 0


def _cmd_scan(args) -> int:
    if not args.directory.is_dir():
        raise ValueError(f"not a directory: {args.directory}")
    config = _config(args, args.directory)
    results = scan_directory(args.directory, config, respect_ignore=not args.no_ignore)
    print(json.dumps([r.to_dict() for r in results], indent=2))
    return 0 if all(r.ok for r in results) else 1


def _cmd_init(args) -> int:
    created, message = ensure_exflowignore(args.directory)
    print(message)
    return 0 if created else 1


COMMANDS = {
    "graph": _cmd_graph,
    "functions": _cmd_functions,
    "scan": _cmd_scan,
    "init": _cmd_init,
}


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return COMMANDS[args.command](args)
    except (FlowGraphError, ValueError, ImportError, OSError) as e:
        logger.debug("command failed", exc_info=True)
        print(f"exflow: error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
