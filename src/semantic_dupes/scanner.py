# Semantic Dupes - Find semantically duplicated components, hooks and functions
# Copyright (C) 2025  Jonathan Louis
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""
Source file discovery.
"""

from pathlib import Path
from typing import Iterable, List, Optional
import fnmatch
import logging

from .languages import SUPPORTED_EXTENSIONS


logger = logging.getLogger(__name__)

INDEX_DIR_NAME = ".sdupes_index"

# Default patterns to always exclude
DEFAULT_EXCLUDES = [
    "*/.git/*",
    "*/node_modules/*",
    "*/dist/*",
    "*/build/*",
    "*/.next/*",
    "*/coverage/*",
    "*/__pycache__/*",
    "*/.venv/*",
    "*/venv/*",
    f"*/{INDEX_DIR_NAME}/*",
    "*.test.*",
    "*.spec.*",
    "*/__tests__/*",
    "*.d.ts",
    "*.min.js",
]


def find_source_files(
    root_path: Path,
    exclude_patterns: Optional[Iterable[str]] = None,
) -> List[str]:
    """
    Find all indexable source files under root_path.

    Args:
        root_path: Root directory to scan
        exclude_patterns: Glob patterns to exclude (added to defaults)

    Returns:
        Sorted POSIX paths relative to root_path
    """
    root_path = Path(root_path).resolve()
    user_excludes = list(exclude_patterns or [])
    all_excludes = DEFAULT_EXCLUDES + user_excludes

    source_files = []

    for file_path in root_path.rglob("*"):
        if not file_path.is_file():
            continue

        # Check extension
        if file_path.suffix.lower() not in SUPPORTED_EXTENSIONS:
            continue

        # Make relative for pattern matching
        rel_path = file_path.relative_to(root_path).as_posix()

        if is_excluded(rel_path, all_excludes):
            continue

        # User patterns may be written against absolute paths
        if user_excludes and any(fnmatch.fnmatch(file_path.as_posix(), pat) for pat in user_excludes):
            continue

        source_files.append(rel_path)

    logger.debug("Found %d source files under %s", len(source_files), root_path)
    return sorted(source_files)


def is_excluded(rel_path: str, patterns: Iterable[str]) -> bool:
    """
    Check a relative path against exclude globs.

    The path is also tried with a leading "/" so that "*/dist/*" matches a
    top-level dist directory.
    """
    candidates = (rel_path, "/" + rel_path)
    return any(
        fnmatch.fnmatch(candidate, pat)
        for pat in patterns
        for candidate in candidates
    )
