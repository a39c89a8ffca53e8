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
Chunker - turns one source file into embeddable semantic units.

The language chunkers find the units; this module prepares the text each
unit is embedded from and the hash that decides whether it changed.
"""

from typing import List, Optional
import hashlib

from .errors import ChunkingError
from .languages import ChunkingOptions, detect_language, get_chunker
from .models import CodeChunk, KIND_COMPONENT, KIND_HOOK, KIND_FUNCTION


DEFAULT_MAX_CHARS = 6000

KIND_LABELS = {
    KIND_COMPONENT: "React component",
    KIND_HOOK: "React hook",
    KIND_FUNCTION: "Function",
}


def chunk_file(
    file_path: str,
    content: str,
    options: Optional[ChunkingOptions] = None,
    max_chars: int = DEFAULT_MAX_CHARS,
) -> List[CodeChunk]:
    """
    Split a source file into chunks, in source order.

    Args:
        file_path: POSIX path relative to the indexed root
        content: Full file content
        options: Chunking options (defaults if None)
        max_chars: Maximum length of the embedding text

    Returns:
        Chunks with text and content_hash filled in

    Raises:
        ChunkingError: If the language is unsupported or the file does not parse
    """
    language = detect_language(file_path)
    if language is None:
        raise ChunkingError(f"Unsupported file type: {file_path}")

    chunker = get_chunker(language)
    chunks = chunker.chunk(content, file_path, options or ChunkingOptions())

    for chunk in chunks:
        chunk.metadata["language"] = language
        chunk.text = prepare_embedding_input(chunk, max_chars=max_chars)
        chunk.content_hash = hash_text(chunk.text)

    return chunks


def prepare_embedding_input(chunk: CodeChunk, max_chars: int = DEFAULT_MAX_CHARS) -> str:
    """
    Prepare a code chunk for embedding.

    Include a kind/name header and the extracted structure (props, JSX
    elements, hooks) so the model sees the unit's role, not just its tokens.
    """
    parts = []
    meta = chunk.metadata

    # Context hint
    label = KIND_LABELS.get(chunk.kind, "Code")
    if chunk.name:
        parts.append(f"{label}: {chunk.name}")
    else:
        parts.append(f"{label} (anonymous)")

    if meta.get("part_count"):
        parts.append(f"(part {meta['part']} of {meta['part_count']})")

    if meta.get("props"):
        parts.append(f"Props: {', '.join(meta['props'])}")
    if meta.get("parameters"):
        parts.append(f"Parameters: {', '.join(meta['parameters'])}")
    if meta.get("decorators"):
        parts.append(f"Decorators: {', '.join(meta['decorators'])}")

    parts.append("")
    parts.append(normalize_code(chunk.content))

    if meta.get("jsx_elements"):
        parts.append("")
        parts.append(f"JSX elements: {', '.join(meta['jsx_elements'])}")
    if meta.get("hooks"):
        parts.append(f"Hooks used: {', '.join(meta['hooks'])}")

    text = "\n".join(parts)

    if len(text) > max_chars:
        text = text[:max_chars]

    return text


def normalize_code(code: str) -> str:
    """Normalize code for better embedding quality."""
    lines = code.split("\n")

    # Strip trailing whitespace
    lines = [line.rstrip() for line in lines]

    # Collapse runs of blank lines
    normalized = []
    prev_blank = False
    for line in lines:
        is_blank = len(line.strip()) == 0
        if is_blank and prev_blank:
            continue
        normalized.append(line)
        prev_blank = is_blank

    return "\n".join(normalized).strip("\n")


def hash_text(text: str) -> str:
    """Content hash of an embedding text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()
