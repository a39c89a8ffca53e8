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
Base chunker interface and the helpers shared by tree-sitter chunkers.
"""

from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple
import hashlib

from ..errors import ChunkingError
from ..models import CodeChunk


ANONYMOUS = "<anonymous>"


@dataclass(frozen=True)
class ChunkingOptions:
    """Options that decide which units become chunks."""

    min_lines: int = 3              # Trivial one-liners are noise
    max_lines: int = 150            # Larger units are split into parts
    include_anonymous: bool = True
    kinds: Optional[Tuple[str, ...]] = None   # None = every kind


def make_chunk_id(file_path: str, *discriminators: Any) -> str:
    """
    Stable chunk id: the file path plus a hash of position-independent parts.

    Line numbers never take part, so code moving up or down inside a file
    keeps its id. The "<path>#" prefix allows bulk removal per file.
    """
    key = "\x00".join([file_path] + [str(d) for d in discriminators])
    digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:16]
    return f"{file_path}#{digest}"


def node_text(node) -> str:
    """Decoded source text of a tree-sitter node."""
    if node is None or node.text is None:
        return ""
    return node.text.decode("utf-8", errors="replace")


def walk(node) -> Iterator:
    """Pre-order walk over a tree-sitter subtree."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.children))


def unique(items: Sequence[str]) -> List[str]:
    """Deduplicate while keeping first-seen order."""
    return list(dict.fromkeys(items))


class BaseChunker(ABC):
    """Abstract base class for language-specific chunkers."""

    language = "generic"

    def __init__(self):
        self._parser = None
        self._ordinals: Counter = Counter()

    @abstractmethod
    def _load_language(self, file_path: str):
        """Return the tree-sitter Language to parse file_path with."""

    @abstractmethod
    def _extract(
        self,
        root,
        file_path: str,
        lines: List[str],
        options: ChunkingOptions,
    ) -> List[CodeChunk]:
        """Walk a parsed tree and return chunks in source order."""

    def chunk(
        self,
        content: str,
        file_path: str,
        options: Optional[ChunkingOptions] = None,
    ) -> List[CodeChunk]:
        """
        Extract semantic units from file content.

        Args:
            content: Full file content
            file_path: POSIX path relative to the indexed root
            options: Size and naming filters

        Returns:
            List of CodeChunk objects (text and content_hash not yet set)

        Raises:
            ChunkingError: If the file does not parse cleanly
        """
        options = options or ChunkingOptions()
        self._ordinals = Counter()

        parser = self._get_parser(file_path)
        tree = parser.parse(content.encode("utf-8"))

        if tree.root_node.has_error:
            line = self._first_error_line(tree.root_node)
            raise ChunkingError(f"Syntax error in {file_path} near line {line}")

        lines = content.split("\n")
        return self._extract(tree.root_node, file_path, lines, options)

    def _get_parser(self, file_path: str):
        """Lazy-load a tree-sitter parser for the file's grammar."""
        from tree_sitter import Parser

        return Parser(self._load_language(file_path))

    def _first_error_line(self, root) -> int:
        for node in walk(root):
            if node.type == "ERROR" or node.is_missing:
                return node.start_point[0] + 1
        return root.start_point[0] + 1

    def _new_chunk(
        self,
        node,
        location_node,
        file_path: str,
        lines: List[str],
        kind: str,
        name: Optional[str],
        scope: Tuple[str, ...],
        metadata: Dict[str, Any],
    ) -> CodeChunk:
        """Create a chunk with an id derived from scope, name and ordinal."""
        label = name or ANONYMOUS
        key = (scope, label)
        ordinal = self._ordinals[key]
        self._ordinals[key] += 1

        loc = location_node if location_node is not None else node
        start_line = loc.start_point[0] + 1
        end_line = loc.end_point[0] + 1
        content = "\n".join(lines[start_line - 1:end_line])

        return CodeChunk(
            id=make_chunk_id(file_path, "/".join(scope), label, ordinal),
            file_path=file_path,
            start_line=start_line,
            end_line=end_line,
            start_column=loc.start_point[1] + 1,
            end_column=max(loc.end_point[1], 1),
            content=content,
            kind=kind,
            name=name,
            metadata=metadata,
        )

    def _accept(self, chunk: CodeChunk, options: ChunkingOptions) -> bool:
        if chunk.line_count < options.min_lines:
            return False
        if chunk.name is None and not options.include_anonymous:
            return False
        if options.kinds is not None and chunk.kind not in options.kinds:
            return False
        return True

    def _split_large_chunk(
        self,
        chunk: CodeChunk,
        max_lines: int,
    ) -> List[CodeChunk]:
        """Split a chunk that exceeds max_lines into same-kind parts."""
        if chunk.line_count <= max_lines:
            return [chunk]

        lines = chunk.content.split("\n")
        chunks = []

        # Split into roughly equal parts
        n_parts = (len(lines) + max_lines - 1) // max_lines

        for i in range(n_parts):
            start_idx = i * max_lines
            end_idx = min((i + 1) * max_lines, len(lines))

            part_content = "\n".join(lines[start_idx:end_idx])
            part_start = chunk.start_line + start_idx
            part_end = chunk.start_line + end_idx - 1

            metadata = dict(chunk.metadata) if i == 0 else {
                key: chunk.metadata[key]
                for key in ("language", "is_exported", "is_default_export")
                if key in chunk.metadata
            }
            metadata["part"] = i + 1
            metadata["part_count"] = n_parts

            chunks.append(CodeChunk(
                id=make_chunk_id(chunk.file_path, chunk.id, f"part{i + 1}"),
                file_path=chunk.file_path,
                start_line=part_start,
                end_line=part_end,
                start_column=chunk.start_column if i == 0 else 1,
                end_column=chunk.end_column if i == n_parts - 1 else max(len(lines[end_idx - 1]), 1),
                content=part_content,
                kind=chunk.kind,
                name=chunk.name,
                metadata=metadata,
            ))

        return chunks
