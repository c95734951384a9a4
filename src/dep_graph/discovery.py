"""Discovery of manifest and lock files in a directory tree."""

from __future__ import annotations

import os
from dataclasses import dataclass
from fnmatch import fnmatch
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

COMMON_EXCLUDES = (
    # any hidden folder
    ".*",
    # build output
    "dist",
    "build",
    # JavaScript
    "node_modules",
    # Python
    "__pycache__",
    "*.egg-info",
    "*.dist-info",
    "venv",
    "env",
    # Go
    "vendor",
    # Swift/iOS
    "Pods",
    "Carthage",
)


@dataclass(frozen=True)
class FindResult:
    path: Path
    rel_path: str  # relative to the searched root, "/" separated


def is_excluded(name: str, rel_path: str, exclude_patterns: Iterable[str]) -> bool:
    """Check whether a file or directory matches any exclude pattern, by name or by relative path."""
    return any(fnmatch(name, pattern) or fnmatch(rel_path, pattern) for pattern in exclude_patterns)


def find_files(
    root: str | Path,
    includes: Iterable[str] = (),
    excludes: Iterable[str] = (),
    target_file: str = "",
) -> list[FindResult]:
    """Find files below root.

    With a target file only that file is returned (if it exists and is not
    excluded). Otherwise the tree is walked, skipping excluded directories,
    and every file whose name matches one of `includes` is returned, sorted
    by relative path.
    """
    root = Path(root)
    if not root.is_dir():
        msg = f"{root} is not a directory"
        raise ValueError(msg)
    excludes = tuple(excludes)

    if target_file:
        path = Path(target_file) if Path(target_file).is_absolute() else root / target_file
        rel_path = os.path.relpath(path, root).replace(os.sep, "/")
        if not path.is_file() or is_excluded(path.name, rel_path, excludes):
            return []
        return [FindResult(path=path, rel_path=rel_path)]

    includes = tuple(includes)
    results: list[FindResult] = []
    for dirpath, dirnames, filenames in os.walk(root):
        rel_dir = os.path.relpath(dirpath, root)
        rel_dir = "" if rel_dir == "." else rel_dir.replace(os.sep, "/") + "/"
        dirnames[:] = sorted(d for d in dirnames if not is_excluded(d, rel_dir + d, excludes))
        for filename in filenames:
            rel_path = rel_dir + filename
            if is_excluded(filename, rel_path, excludes):
                continue
            if any(fnmatch(filename, pattern) for pattern in includes):
                results.append(FindResult(path=Path(dirpath) / filename, rel_path=rel_path))
    return sorted(results, key=lambda result: result.rel_path)
