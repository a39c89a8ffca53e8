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
Data models for semantic-dupes.
"""

from dataclasses import dataclass, field, asdict
from typing import Optional, List, Dict, Any, Tuple


# Chunk kinds - semantic role, not syntax
KIND_COMPONENT = "component"
KIND_HOOK = "hook"
KIND_FUNCTION = "function"
KIND_OTHER = "other"

CHUNK_KINDS = (KIND_COMPONENT, KIND_HOOK, KIND_FUNCTION, KIND_OTHER)


@dataclass
class StoredChunkMetadata:
    """Persisted projection of a CodeChunk (no source text, no vector)."""

    file_path: str           # POSIX path relative to the indexed root
    start_line: int          # 1-indexed
    end_line: int            # Inclusive
    kind: str
    name: Optional[str]
    content_hash: str
    start_column: int = 1
    end_column: int = 1
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def line_count(self) -> int:
        return self.end_line - self.start_line + 1

    @property
    def location(self) -> str:
        return f"{self.file_path}:{self.start_line}-{self.end_line}"

    def contains_line(self, line: int) -> bool:
        return self.start_line <= line <= self.end_line

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoredChunkMetadata":
        return cls(
            file_path=data["file_path"],
            start_line=int(data["start_line"]),
            end_line=int(data["end_line"]),
            kind=data["kind"],
            name=data.get("name"),
            content_hash=data["content_hash"],
            start_column=int(data.get("start_column", 1)),
            end_column=int(data.get("end_column", 1)),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class CodeChunk:
    """A named semantic unit extracted from a source file."""

    id: str                  # Stable, position-independent identifier
    file_path: str           # POSIX path relative to the indexed root
    start_line: int          # Starting line number (1-indexed)
    end_line: int            # Ending line number (inclusive)
    content: str             # The raw source slice
    kind: str                # "component", "hook", "function", "other"
    name: Optional[str] = None   # None for anonymous units
    start_column: int = 1
    end_column: int = 1
    text: str = ""           # Embedding input derived from content
    content_hash: str = ""   # Hash of text - the unit of change detection
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def line_count(self) -> int:
        """Number of lines in this chunk."""
        return self.end_line - self.start_line + 1

    @property
    def location(self) -> str:
        """Human-readable location string."""
        return f"{self.file_path}:{self.start_line}-{self.end_line}"

    def preview(self, max_chars: int = 60) -> str:
        """Short preview of the content."""
        first_line = self.content.split('\n')[0].strip()
        if len(first_line) > max_chars:
            return first_line[:max_chars-3] + "..."
        return first_line

    def to_stored(self) -> StoredChunkMetadata:
        return StoredChunkMetadata(
            file_path=self.file_path,
            start_line=self.start_line,
            end_line=self.end_line,
            kind=self.kind,
            name=self.name,
            content_hash=self.content_hash,
            start_column=self.start_column,
            end_column=self.end_column,
            metadata=dict(self.metadata),
        )


@dataclass
class IndexManifest:
    """
    Persisted index configuration and summary counts.

    file_count is the number of tracked files. A file with a chunk that
    failed to embed is not tracked until a later run succeeds, even though
    its other chunks are stored and counted in chunk_count.
    """

    version: int
    embedding_model: str
    dimension: int
    created_at: str
    updated_at: str
    chunk_count: int = 0
    file_count: int = 0
    chunking: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IndexManifest":
        return cls(
            version=int(data["version"]),
            embedding_model=str(data["embedding_model"]),
            dimension=int(data["dimension"]),
            created_at=str(data["created_at"]),
            updated_at=str(data["updated_at"]),
            chunk_count=int(data.get("chunk_count", 0)),
            file_count=int(data.get("file_count", 0)),
            chunking=dict(data.get("chunking") or {}),
        )


@dataclass
class FileChanges:
    """Partition of the scanned files against the last run."""

    added: List[str] = field(default_factory=list)
    modified: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.modified or self.deleted)

    @property
    def to_process(self) -> List[str]:
        """Files that need re-chunking, in path order."""
        return sorted(self.added + self.modified)


@dataclass
class SimilarityResult:
    """A vector store hit."""

    id: str
    score: float

    @property
    def distance(self) -> float:
        return 1.0 - self.score


@dataclass
class SearchResult:
    """Nearest-neighbour hit resolved to a source location."""

    id: str
    file_path: str
    start_line: int
    end_line: int
    name: Optional[str]
    kind: str
    score: float


@dataclass
class DuplicateMember:
    """A chunk inside a duplicate group."""

    id: str
    metadata: StoredChunkMetadata
    score: float             # Similarity to the group representative

    @property
    def file_path(self) -> str:
        return self.metadata.file_path

    @property
    def name(self) -> Optional[str]:
        return self.metadata.name


@dataclass
class DuplicateGroup:
    """A connected component of near-duplicate chunks."""

    id: int                          # First-seen order, used for tie-breaks
    members: List[DuplicateMember]
    kind: str                        # Dominant kind in the group
    avg_similarity: float            # Mean pairwise similarity
    size_ratio: float = 1.0          # Smallest / largest member line count
    duplicate_score: float = 0.0     # Sort key only

    @property
    def size(self) -> int:
        return len(self.members)

    @property
    def files(self) -> List[str]:
        """Unique files in this group, in member order."""
        return list(dict.fromkeys(m.metadata.file_path for m in self.members))


@dataclass
class ChunkFailure:
    """A chunk that could not be embedded during a run."""

    id: str
    file_path: str
    name: Optional[str]
    reason: str


@dataclass
class IndexUpdateResult:
    """Outcome of one indexing run."""

    added: int = 0
    modified: int = 0
    deleted: int = 0
    unchanged: int = 0
    total_chunks: int = 0
    total_files: int = 0
    embedded: int = 0
    reused: int = 0
    duration: float = 0.0                 # Seconds
    forced_rebuild: bool = False
    rebuild_reason: Optional[str] = None
    skipped_files: List[Tuple[str, str]] = field(default_factory=list)
    failed_chunks: List[ChunkFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """True when every chunk of every file made it into the index."""
        return not self.skipped_files and not self.failed_chunks
