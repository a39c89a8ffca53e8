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
Metadata store - chunk id to location and identity.

Iteration order is insertion order everywhere.
"""

from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from .errors import CorruptIndexError
from .models import StoredChunkMetadata
from .storage import read_json_document, write_json_atomic


METADATA_FILE = "metadata.json"


class MetadataStore:
    """Insertion-ordered mapping of chunk id to StoredChunkMetadata."""

    def __init__(self):
        self._entries: Dict[str, StoredChunkMetadata] = {}

    def set(self, id: str, metadata: StoredChunkMetadata):
        self._entries[id] = metadata

    def get(self, id: str) -> Optional[StoredChunkMetadata]:
        return self._entries.get(id)

    def has(self, id: str) -> bool:
        return id in self._entries

    def remove(self, id: str) -> bool:
        return self._entries.pop(id, None) is not None

    def remove_by_file_path(self, file_path: str) -> List[str]:
        """Remove every chunk of a file. Returns the removed ids."""
        removed = [id for id, meta in self._entries.items() if meta.file_path == file_path]
        for id in removed:
            del self._entries[id]
        return removed

    def get_by_file_path(self, file_path: str) -> List[Tuple[str, StoredChunkMetadata]]:
        return [(id, meta) for id, meta in self._entries.items() if meta.file_path == file_path]

    def get_by_content_hash(self, content_hash: str) -> Optional[Tuple[str, StoredChunkMetadata]]:
        """First stored chunk with the given content hash."""
        for id, meta in self._entries.items():
            if meta.content_hash == content_hash:
                return id, meta
        return None

    def get_at_location(self, file_path: str, line: int) -> Optional[Tuple[str, StoredChunkMetadata]]:
        """
        Chunk whose span contains the line.

        If several spans contain the line, the shortest one wins; ties go
        to the first stored.
        """
        best: Optional[Tuple[str, StoredChunkMetadata]] = None
        for id, meta in self._entries.items():
            if meta.file_path != file_path or not meta.contains_line(line):
                continue
            if best is None or meta.line_count < best[1].line_count:
                best = (id, meta)
        return best

    def file_paths(self) -> List[str]:
        return list(dict.fromkeys(meta.file_path for meta in self._entries.values()))

    def filter_by_kind(self, kind: str) -> List[Tuple[str, StoredChunkMetadata]]:
        return [(id, meta) for id, meta in self._entries.items() if meta.kind == kind]

    def search_by_name(self, pattern: str) -> List[Tuple[str, StoredChunkMetadata]]:
        """Case-insensitive substring match on chunk names."""
        needle = pattern.lower()
        return [
            (id, meta) for id, meta in self._entries.items()
            if meta.name and needle in meta.name.lower()
        ]

    def ids(self) -> List[str]:
        return list(self._entries)

    def items(self) -> Iterator[Tuple[str, StoredChunkMetadata]]:
        return iter(list(self._entries.items()))

    def size(self) -> int:
        return len(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, id: str) -> bool:
        return id in self._entries

    def clear(self):
        self._entries.clear()

    def to_dict(self) -> Dict[str, Dict]:
        return {id: meta.to_dict() for id, meta in self._entries.items()}

    def save(self, index_dir: Path):
        write_json_atomic(Path(index_dir) / METADATA_FILE, self.to_dict())

    @classmethod
    def load(cls, index_dir: Path) -> "MetadataStore":
        """
        Load persisted metadata.

        Raises:
            IndexNotFoundError: If the metadata file does not exist
            CorruptIndexError: If the document is invalid
        """
        path = Path(index_dir) / METADATA_FILE
        data = read_json_document(path)

        if not isinstance(data, dict):
            raise CorruptIndexError(f"Malformed metadata document {path}", path)

        store = cls()
        try:
            for id, entry in data.items():
                store.set(id, StoredChunkMetadata.from_dict(entry))
        except (KeyError, TypeError, ValueError) as e:
            raise CorruptIndexError(f"Malformed metadata entry in {path}: {e}", path) from e

        return store
