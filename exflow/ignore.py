"""Which files a directory scan visits.

Patterns come from two places, both in gitignore syntax (matched with
pathspec's GitIgnoreSpec):

- .exflowignore at the scan root, or DEFAULT_TEMPLATE when there is none.
  It has the final word: a `!` pattern re-includes a path .gitignore drops.
- .gitignore files at the root and in any visited directory, each relative
  to its own directory. Deeper files override shallower ones, as in git.
"""

import logging
import os
from pathlib import Path

import pathspec

logger = logging.getLogger(__name__)

IGNORE_FILENAME = ".exflowignore"
GITIGNORE_FILENAME = ".gitignore"

DEFAULT_TEMPLATE = """\
# exflow ignore patterns (gitignore syntax)
# A `!pattern` line re-includes files that .gitignore excludes.

# Environments and caches
.venv/
venv/
__pycache__/
.tox/
.pytest_cache/
node_modules/

# Build outputs
dist/
build/
out/
target/
*.egg-info/

# Version control
.git/
.hg/
.svn/

# Generated sources
*_pb2.py
generated/
"""


def _read_spec(path: Path) -> pathspec.GitIgnoreSpec | None:
    if not path.is_file():
        return None
    return pathspec.GitIgnoreSpec.from_lines(path.read_text().splitlines())


class IgnoreRules:
    """Ignore decisions for paths under one scan root.

    Paths handed to ignores() are posix-style and relative to the root;
    directories carry a trailing slash.
    """

    def __init__(self, root: str | Path, use_gitignore: bool = True):
        self.root = Path(root)
        self.use_gitignore = use_gitignore
        own = _read_spec(self.root / IGNORE_FILENAME)
        if own is None:
            own = pathspec.GitIgnoreSpec.from_lines(DEFAULT_TEMPLATE.splitlines())
        self.own = own
        # (directory prefix, patterns) in the order visited: ancestors first
        self._git: list[tuple[str, pathspec.GitIgnoreSpec]] = []
        self.add_gitignore("")

    def add_gitignore(self, rel_dir: str) -> None:
        """Pick up the .gitignore of rel_dir ("" is the root), if there is one."""
        if not self.use_gitignore:
            return
        spec = _read_spec(self.root / rel_dir / GITIGNORE_FILENAME)
        if spec is None:
            return
        logger.debug(f"Loaded {GITIGNORE_FILENAME} of '{rel_dir or '.'}'")
        self._git.append((f"{rel_dir}/" if rel_dir else "", spec))

    def ignores(self, rel_path: str) -> bool:
        decision = self.own.check_file(rel_path).include
        if decision is not None:
            return decision
        for prefix, spec in reversed(self._git):
            if not rel_path.startswith(prefix):
                continue
            decision = spec.check_file(rel_path[len(prefix):]).include
            if decision is not None:
                return decision
        return False


def ensure_exflowignore(project_dir: str | Path) -> tuple[bool, str]:
    """Write DEFAULT_TEMPLATE to .exflowignore unless the file exists.

    Returns:
        Tuple of (created, message)
    """
    project_path = Path(project_dir)
    if not project_path.is_dir():
        return False, f"Project directory does not exist: {project_path}"
    ignore_path = project_path / IGNORE_FILENAME
    if ignore_path.exists():
        return False, f"{IGNORE_FILENAME} already exists at {ignore_path}"
    ignore_path.write_text(DEFAULT_TEMPLATE)
    return True, f"Created {ignore_path}"


def iter_source_files(
    project_dir: str | Path,
    extensions: dict[str, str],
    respect_ignore: bool = True,
    use_gitignore: bool = True,
) -> list[Path]:
    """Source files under project_dir whose suffix is in extensions, sorted.

    Ignored directories are pruned without being descended into.
    """
    root = Path(project_dir)
    rules = IgnoreRules(root, use_gitignore) if respect_ignore else None
    files: list[Path] = []

    for dirpath, dirnames, filenames in os.walk(root):
        rel_dir = Path(dirpath).relative_to(root).as_posix()
        if rel_dir == ".":
            rel_dir = ""
        prefix = f"{rel_dir}/" if rel_dir else ""
        if rules is not None:
            if rel_dir:
                rules.add_gitignore(rel_dir)
            dirnames[:] = [d for d in dirnames if not rules.ignores(f"{prefix}{d}/")]
        for filename in filenames:
            if os.path.splitext(filename)[1] not in extensions:
                continue
            rel_path = prefix + filename
            if rules is not None and rules.ignores(rel_path):
                continue
            files.append(root / rel_path)

    return sorted(files)
