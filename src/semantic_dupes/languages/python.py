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
Python-specific chunker using tree-sitter.

Extracts functions and methods. Classes are walked for their methods
but never emitted themselves.
"""

from functools import lru_cache
from typing import List, Tuple

from .base import BaseChunker, ChunkingOptions, node_text
from ..models import CodeChunk, KIND_FUNCTION


@lru_cache(maxsize=None)
def _load_grammar():
    try:
        import tree_sitter_python as tspython
        from tree_sitter import Language
    except ImportError as e:
        raise ImportError(
            "tree-sitter-python not installed. "
            "Install with: pip install tree-sitter-python"
        ) from e

    return Language(tspython.language())


class PythonChunker(BaseChunker):
    """AST-aware Python chunker using tree-sitter."""

    language = "python"

    def _load_language(self, file_path: str):
        return _load_grammar()

    def _extract(
        self,
        root,
        file_path: str,
        lines: List[str],
        options: ChunkingOptions,
    ) -> List[CodeChunk]:
        chunks: List[CodeChunk] = []
        self._extract_chunks(root, file_path, lines, options, chunks, ())
        return chunks

    def _extract_chunks(
        self,
        node,
        file_path: str,
        lines: List[str],
        options: ChunkingOptions,
        chunks: List[CodeChunk],
        scope: Tuple[str, ...],
    ):
        """Recursively extract chunks from AST."""
        if node.type == "decorated_definition":
            definition = node.child_by_field_name("definition")
            if definition is not None and definition.type == "function_definition":
                self._add_function(definition, node, file_path, lines, options, chunks, scope)
                return
            if definition is not None and definition.type == "class_definition":
                self._extract_class(definition, file_path, lines, options, chunks, scope)
                return

        elif node.type == "function_definition":
            self._add_function(node, node, file_path, lines, options, chunks, scope)
            return  # Don't recurse into functions

        elif node.type == "class_definition":
            self._extract_class(node, file_path, lines, options, chunks, scope)
            return

        for child in node.named_children:
            self._extract_chunks(child, file_path, lines, options, chunks, scope)

    def _extract_class(self, node, file_path, lines, options, chunks, scope):
        class_name = node_text(node.child_by_field_name("name")) or "<class>"
        body = node.child_by_field_name("body")
        if body is None:
            return
        for child in body.named_children:
            self._extract_chunks(child, file_path, lines, options, chunks, scope + (class_name,))

    def _add_function(self, node, location, file_path, lines, options, chunks, scope):
        name = node_text(node.child_by_field_name("name")) or None
        metadata = {
            "language": self.language,
            "is_exported": bool(name) and not name.startswith("_"),
            "is_default_export": False,
        }

        parameters = self._get_parameters(node)
        if parameters:
            metadata["parameters"] = parameters

        if location is not node:
            decorators = [
                node_text(child).lstrip("@").strip()
                for child in location.named_children
                if child.type == "decorator"
            ]
            if decorators:
                metadata["decorators"] = decorators

        if scope:
            metadata["scope"] = ".".join(scope)

        chunk = self._new_chunk(
            node=node,
            location_node=location,
            file_path=file_path,
            lines=lines,
            kind=KIND_FUNCTION,
            name=name,
            scope=scope,
            metadata=metadata,
        )
        if not self._accept(chunk, options):
            return
        for part in self._split_large_chunk(chunk, options.max_lines):
            if part.line_count >= options.min_lines:
                chunks.append(part)

    def _get_parameters(self, node) -> List[str]:
        """Parameter names, excluding self and cls."""
        params = node.child_by_field_name("parameters")
        if params is None:
            return []

        names = []
        for param in params.named_children:
            if param.type == "identifier":
                names.append(node_text(param))
            elif param.type in ("default_parameter", "typed_default_parameter"):
                names.append(node_text(param.child_by_field_name("name")))
            elif param.type == "typed_parameter":
                ident = next((c for c in param.named_children if c.type == "identifier"), None)
                if ident is not None:
                    names.append(node_text(ident))
                else:
                    names.append(node_text(param.named_children[0]) if param.named_children else "")
            elif param.type in ("list_splat_pattern", "dictionary_splat_pattern"):
                names.append(node_text(param))
        return [n for n in names if n and n not in ("self", "cls")]
