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
File change detection by content hash.

Only file content takes part in the hash, never mtime or permissions, so
a fresh clone of an indexed repository is recognised as unchanged.
"""

from pathlib import Path
from typing import Dict, List, Optional
import hashlib

from .errors import CorruptIndexError, IndexNotFoundError
from .models import FileChanges
from .storage import read_json_document, write_json_atomic


HASHES_FILE = "hashes.json"
HASHES_VERSION = 1


def hash_content(content: str) -> str:
    """SHA-256 of file content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def diff_hashes(current: Dict[str, str], previous: Dict[str, str]) -> FileChanges:
    """
    Partition files into added, modified, deleted and unchanged.

    Args:
        current: {path: hash} of the files on disk now
        previous: {path: hash} recorded by the last run

    Returns:
        FileChanges with each list sorted by path
    """
    changes = FileChanges()

    for path in sorted(current):
        if path not in previous:
            changes.added.append(path)
        elif previous[path] != current[path]:
            changes.modified.append(path)
        else:
            changes.unchanged.append(path)

    changes.deleted = sorted(path for path in previous if path not in current)
    return changes


class FileTracker:
    """Last-seen content hash of every indexed file."""

    def __init__(self, hashes: Optional[Dict[str, str]] = None):
        self._hashes: Dict[str, str] = dict(hashes or {})

    def detect_changes(self, current: Dict[str, str]) -> FileChanges:
        return diff_hashes(current, self._hashes)

    def get(self, path: str) -> Optional[str]:
        return self._hashes.get(path)

    def set(self, path: str, content_hash: str):
        self._hashes[path] = content_hash

    def remove(self, path: str) -> bool:
        return self._hashes.pop(path, None) is not None

    def tracked_files(self) -> List[str]:
        return sorted(self._hashes)

    def snapshot(self) -> Dict[str, str]:
        return dict(self._hashes)

    def clear(self):
        self._hashes.clear()

    def __len__(self) -> int:
        return len(self._hashes)

    def __contains__(self, path: str) -> bool:
        return path in self._hashes

    def save(self, index_dir: Path):
        data = {
            "version": HASHES_VERSION,
            "files": {path: self._hashes[path] for path in sorted(self._hashes)},
        }
        write_json_atomic(Path(index_dir) / HASHES_FILE, data)

    @classmethod
    def load(cls, index_dir: Path) -> "FileTracker":
        """
        Load recorded hashes.

        A missing hashes file means nothing was tracked yet and yields an
        empty tracker; a malformed one raises CorruptIndexError.
        """
        path = Path(index_dir) / HASHES_FILE
        try:
            data = read_json_document(path)
        except IndexNotFoundError:
            return cls()

        files = data.get("files") if isinstance(data, dict) else None
        if not isinstance(files, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in files.items()
        ):
            raise CorruptIndexError(f"Malformed file hashes in {path}", path)

        return cls(files)
