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
Language-specific code chunking.

Every supported language has a tree-sitter chunker; files in any other
language are not indexed.
"""

from pathlib import PurePath
from typing import Optional, Union

from .base import BaseChunker, ChunkingOptions, make_chunk_id
from ..errors import ChunkingError


# Extension to language mapping
EXTENSION_MAP = {
    ".ts": "typescript",
    ".mts": "typescript",
    ".cts": "typescript",
    ".tsx": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".py": "python",
}

SUPPORTED_EXTENSIONS = frozenset(EXTENSION_MAP)
SUPPORTED_LANGUAGES = frozenset(EXTENSION_MAP.values())


def get_chunker(language: str) -> BaseChunker:
    """
    Get a chunker instance for the given language.

    Raises:
        ChunkingError: If no chunker exists for the language
    """
    language = language.lower()

    if language == "python":
        from .python import PythonChunker
        return PythonChunker()
    elif language in ("javascript", "typescript"):
        from .javascript import JavaScriptChunker
        return JavaScriptChunker()

    raise ChunkingError(f"No chunker for language: {language}")


def detect_language(file_path: Union[str, PurePath]) -> Optional[str]:
    """Detect language from file extension."""
    ext = PurePath(file_path).suffix.lower()
    return EXTENSION_MAP.get(ext)


__all__ = [
    "BaseChunker",
    "ChunkingOptions",
    "EXTENSION_MAP",
    "SUPPORTED_EXTENSIONS",
    "SUPPORTED_LANGUAGES",
    "detect_language",
    "get_chunker",
    "make_chunk_id",
]
