"""Find git repositories under the configured watch roots."""

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

# Dependency caches, build output, and git metadata are never descended into.
EXCLUDED_DIRS = {"node_modules", "target", ".git", "__pycache__", ".venv", "venv", ".tox"}


def expand_home(path: str) -> Path:
    """Expand a leading ~ to the user's home directory."""
    return Path(os.path.expanduser(path))


def is_repo_root(path: Path) -> bool:
    return (path / ".git").is_dir()


def discover_repos(watch_paths: list[str], scan_depth: int) -> list[Path]:
    """Return git repository roots found under watch_paths.

    Walks depth-first up to scan_depth levels below each root. Nested
    repositories are reported as well as their parents. Directories that
    are missing or unreadable are skipped.
    """
    repos: list[Path] = []
    for watch_path in watch_paths:
        root = expand_home(watch_path)
        if not root.is_dir():
            logger.debug("Watch path is not a directory: %s", root)
            continue
        _walk(root, scan_depth, repos)

    seen = set()
    unique = []
    for repo in repos:
        if repo not in seen:
            seen.add(repo)
            unique.append(repo)
    return unique


def _walk(directory: Path, depth: int, repos: list[Path]):
    if depth <= 0:
        return
    try:
        entries = sorted(os.scandir(directory), key=lambda e: e.name)
    except OSError:
        return

    for entry in entries:
        try:
            if not entry.is_dir():
                continue
        except OSError:
            continue
        if entry.name in EXCLUDED_DIRS:
            continue
        path = Path(entry.path).absolute()
        if is_repo_root(path):
            repos.append(path)
        _walk(path, depth - 1, repos)
