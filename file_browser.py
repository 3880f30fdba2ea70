# Interactive Feedback MCP File Browser
# Developed by Fábio Ferreira (https://x.com/fabiomlferreira)
# Inspired by/related to dotcursorrules.com (https://dotcursorrules.com/)
import logging
from pathlib import Path
from typing import Optional, TypedDict

import pathspec

logger = logging.getLogger(__name__)

# Always hidden, even without a .gitignore
DEFAULT_IGNORES = {".git", ".hg", ".svn", "__pycache__", "node_modules"}


class PathOutsideProjectError(ValueError):
    pass


class FileEntry(TypedDict):
    name: str
    path: str
    type: str


def _load_gitignore_patterns(root: Path) -> list[str]:
    gitignore_path = root / ".gitignore"
    if not gitignore_path.exists():
        return []
    try:
        with gitignore_path.open(encoding="utf-8") as f:
            return [line.strip() for line in f if line.strip() and not line.strip().startswith("#")]
    except OSError as e:
        logger.warning("Could not read %s: %s", gitignore_path, e)
        return []


class GitignoreFilter:
    def __init__(self, root: Path, patterns: Optional[list[str]] = None):
        self.root = root
        if patterns is None:
            patterns = _load_gitignore_patterns(root)
        self.spec = pathspec.PathSpec.from_lines("gitwildmatch", patterns) if patterns else None

    def is_ignored(self, relative_path: str, is_dir: bool = False) -> bool:
        parts = Path(relative_path).parts
        if any(part in DEFAULT_IGNORES for part in parts):
            return True
        if self.spec is None:
            return False
        return self.spec.match_file(relative_path + ("/" if is_dir else ""))


def resolve_within(root: Path, relative: str) -> Path:
    """Resolve ``relative`` against ``root``, refusing anything that escapes it."""
    base = root.resolve()
    target = (base / relative).resolve()
    if target != base and not target.is_relative_to(base):
        raise PathOutsideProjectError(f"Path is outside the project directory: {relative}")
    return target


def browse(root: str, relative: str = "") -> list[FileEntry]:
    """List one directory level below ``root``, directories first.

    Raises PathOutsideProjectError for traversal attempts and
    NotADirectoryError/FileNotFoundError for bad targets.
    """
    base = Path(root).resolve()
    target = resolve_within(base, relative or "")
    if not target.exists():
        raise FileNotFoundError(f"Directory not found: {relative}")
    if not target.is_dir():
        raise NotADirectoryError(f"Not a directory: {relative}")

    ignore = GitignoreFilter(base)
    entries: list[FileEntry] = []
    for item in target.iterdir():
        rel = item.relative_to(base).as_posix()
        is_dir = item.is_dir()
        if ignore.is_ignored(rel, is_dir):
            continue
        entries.append({"name": item.name, "path": rel, "type": "directory" if is_dir else "file"})
    entries.sort(key=lambda e: (e["type"] != "directory", e["name"].lower()))
    return entries
