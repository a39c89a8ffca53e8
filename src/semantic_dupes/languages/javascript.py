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
JavaScript/TypeScript chunker using tree-sitter.

Extracts React components, hooks and plain functions: function
declarations, functions bound to variables (including memo/forwardRef
wrappers), class and object methods, and anonymous default exports.
"""

from functools import lru_cache
from pathlib import PurePosixPath
from typing import Dict, List, Optional, Set, Tuple
import re

from .base import BaseChunker, ChunkingOptions, node_text, walk, unique
from ..models import CodeChunk, KIND_COMPONENT, KIND_HOOK, KIND_FUNCTION, KIND_OTHER


FUNCTION_DECLARATIONS = {
    "function_declaration",
    "generator_function_declaration",
}

FUNCTION_EXPRESSIONS = {
    "arrow_function",
    "function_expression",
    "function",             # Older grammars
    "generator_function",
}

CLASS_TYPES = {
    "class_declaration",
    "abstract_class_declaration",
    "class",
}

JSX_TYPES = {
    "jsx_element",
    "jsx_self_closing_element",
    "jsx_fragment",
}

# Expressions that wrap a function without changing what it is
TRANSPARENT_WRAPPERS = {
    "parenthesized_expression",
    "as_expression",
    "satisfies_expression",
    "non_null_expression",
}

# Calls whose function argument is the real unit: memo(Foo), withAuth(...)
WRAPPER_CALLS = {"memo", "forwardRef", "observer", "useCallback", "useMemo"}

HOOK_NAME = re.compile(r"^use[A-Z0-9]")

# .ts files are parsed without JSX so `<T>value` casts keep working
TYPESCRIPT_EXTENSIONS = {".ts", ".mts", ".cts"}


@lru_cache(maxsize=None)
def _load_grammar(dialect: str):
    try:
        import tree_sitter_typescript as tstypescript
        from tree_sitter import Language
    except ImportError as e:
        raise ImportError(
            "tree-sitter-typescript not installed. "
            "Install with: pip install tree-sitter-typescript"
        ) from e

    if dialect == "typescript":
        return Language(tstypescript.language_typescript())
    return Language(tstypescript.language_tsx())


def is_hook_name(name: Optional[str]) -> bool:
    return bool(name) and HOOK_NAME.match(name) is not None


def is_component_name(name: Optional[str]) -> bool:
    return bool(name) and name[0].isupper()


class JavaScriptChunker(BaseChunker):
    """AST-aware JavaScript/TypeScript chunker."""

    language = "typescript"

    def _load_language(self, file_path: str):
        suffix = PurePosixPath(file_path).suffix.lower()
        return _load_grammar("typescript" if suffix in TYPESCRIPT_EXTENSIONS else "tsx")

    def _extract(
        self,
        root,
        file_path: str,
        lines: List[str],
        options: ChunkingOptions,
    ) -> List[CodeChunk]:
        exported, default_name = self._collect_exports(root)
        self._ctx = {
            "file_path": file_path,
            "lines": lines,
            "options": options,
            "exported": exported,
            "default_name": default_name,
        }
        chunks: List[CodeChunk] = []
        self._visit(root, (), chunks)
        return chunks

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------

    def _visit(self, node, scope: Tuple[str, ...], chunks: List[CodeChunk]):
        """Recursively extract chunks; emitted units are not descended into."""
        t = node.type

        if t in FUNCTION_DECLARATIONS:
            name = node_text(node.child_by_field_name("name")) or None
            self._emit(node, node, name, scope, chunks)
            return

        if t in ("lexical_declaration", "variable_declaration"):
            declarators = [c for c in node.named_children if c.type == "variable_declarator"]
            for decl in declarators:
                name_node = decl.child_by_field_name("name")
                value = decl.child_by_field_name("value")
                if value is None:
                    continue
                fn = self._unwrap_function(value)
                if fn is not None and name_node is not None and name_node.type == "identifier":
                    location = node if len(declarators) == 1 else decl
                    self._emit(fn, location, node_text(name_node), scope, chunks)
                else:
                    self._visit(value, scope, chunks)
            return

        if t in CLASS_TYPES:
            class_name = node_text(node.child_by_field_name("name")) or "<class>"
            body = node.child_by_field_name("body")
            if body is not None:
                for child in body.named_children:
                    self._visit(child, scope + (class_name,), chunks)
            return

        if t == "method_definition":
            name = node_text(node.child_by_field_name("name")) or None
            self._emit(node, node, name, scope, chunks)
            return

        if t in ("public_field_definition", "field_definition", "pair"):
            key = node.child_by_field_name("name") or node.child_by_field_name("key") \
                or node.child_by_field_name("property")
            value = node.child_by_field_name("value")
            fn = self._unwrap_function(value) if value is not None else None
            if fn is not None:
                name = node_text(key).strip("'\"`") or None
                self._emit(fn, node, name, scope, chunks)
            elif value is not None:
                self._visit(value, scope, chunks)
            return

        if t == "export_statement" and self._is_default_export(node):
            value = node.child_by_field_name("value")
            fn = self._unwrap_function(value) if value is not None else None
            if fn is not None:
                name = node_text(fn.child_by_field_name("name")) or None
                self._emit(fn, node, name, scope, chunks, default_export=True)
                return

        if t in FUNCTION_EXPRESSIONS:
            # Not bound to anything we can name (callbacks at module level)
            name = node_text(node.child_by_field_name("name")) or None
            self._emit(node, node, name, scope, chunks)
            return

        for child in node.named_children:
            self._visit(child, scope, chunks)

    def _unwrap_function(self, node):
        """Return the function node behind an initializer, if any."""
        while node is not None and node.type in TRANSPARENT_WRAPPERS:
            inner = [c for c in node.named_children if c.type not in ("type_annotation",)]
            node = inner[0] if inner else None

        if node is None:
            return None

        if node.type in FUNCTION_EXPRESSIONS:
            return node

        if node.type == "call_expression":
            callee = node_text(node.child_by_field_name("function")).split(".")[-1]
            if callee in WRAPPER_CALLS or (callee.startswith("with") and callee[4:5].isupper()):
                args = node.child_by_field_name("arguments")
                if args is not None:
                    for arg in args.named_children:
                        fn = self._unwrap_function(arg)
                        if fn is not None:
                            return fn
        return None

    def _emit(
        self,
        fn,
        location,
        name: Optional[str],
        scope: Tuple[str, ...],
        chunks: List[CodeChunk],
        default_export: bool = False,
    ):
        ctx = self._ctx
        has_jsx = self._contains_jsx(fn)
        kind = self._classify(name, has_jsx, default_export)
        metadata = self._extract_metadata(fn, name, default_export)

        chunk = self._new_chunk(
            node=fn,
            location_node=location,
            file_path=ctx["file_path"],
            lines=ctx["lines"],
            kind=kind,
            name=name,
            scope=scope,
            metadata=metadata,
        )
        options = ctx["options"]
        if not self._accept(chunk, options):
            return
        for part in self._split_large_chunk(chunk, options.max_lines):
            if part.line_count >= options.min_lines:
                chunks.append(part)

    # ------------------------------------------------------------------
    # Classification and metadata
    # ------------------------------------------------------------------

    def _classify(self, name: Optional[str], has_jsx: bool, default_export: bool) -> str:
        if is_hook_name(name):
            return KIND_HOOK
        if has_jsx and (is_component_name(name) or (name is None and default_export)):
            return KIND_COMPONENT
        if has_jsx:
            return KIND_OTHER
        return KIND_FUNCTION

    def _contains_jsx(self, node) -> bool:
        return any(n.type in JSX_TYPES for n in walk(node))

    def _extract_metadata(self, fn, name: Optional[str], default_export: bool) -> Dict:
        ctx = self._ctx
        metadata: Dict = {
            "language": self.language,
            "is_exported": default_export or (name is not None and name in ctx["exported"]),
            "is_default_export": default_export or (name is not None and name == ctx["default_name"]),
        }

        props = self._extract_props(fn)
        if props:
            metadata["props"] = props

        hooks: List[str] = []
        jsx_elements: List[str] = []
        for n in walk(fn):
            if n.type == "call_expression":
                callee = n.child_by_field_name("function")
                if callee is not None:
                    callee_name = node_text(callee).split(".")[-1]
                    if is_hook_name(callee_name):
                        hooks.append(callee_name)
            elif n.type in ("jsx_opening_element", "jsx_self_closing_element"):
                tag = n.child_by_field_name("name")
                if tag is not None:
                    jsx_elements.append(node_text(tag))

        if hooks:
            metadata["hooks"] = unique(hooks)
        if jsx_elements:
            metadata["jsx_elements"] = unique(jsx_elements)

        return metadata

    def _extract_props(self, fn) -> List[str]:
        """Prop names from the first parameter."""
        single = fn.child_by_field_name("parameter")
        if single is not None:
            return [node_text(single)] if single.type == "identifier" else []

        params = fn.child_by_field_name("parameters")
        if params is None or not params.named_children:
            return []

        first = params.named_children[0]
        if first.type in ("required_parameter", "optional_parameter"):
            first = first.child_by_field_name("pattern") or first
        if first.type == "assignment_pattern":
            first = first.child_by_field_name("left") or first

        if first.type == "identifier":
            return [node_text(first)]
        if first.type != "object_pattern":
            return []

        props = []
        for prop in first.named_children:
            if prop.type == "shorthand_property_identifier_pattern":
                props.append(node_text(prop))
            elif prop.type == "pair_pattern":
                props.append(node_text(prop.child_by_field_name("key")))
            elif prop.type == "object_assignment_pattern":
                props.append(node_text(prop.child_by_field_name("left")))
            elif prop.type == "rest_pattern":
                props.append("..." + node_text(prop).lstrip("."))
        return [p for p in props if p]

    # ------------------------------------------------------------------
    # Exports
    # ------------------------------------------------------------------

    def _is_default_export(self, node) -> bool:
        return any(child.type == "default" for child in node.children)

    def _collect_exports(self, root) -> Tuple[Set[str], Optional[str]]:
        """Names exported from the module, and the default export name."""
        exported: Set[str] = set()
        default_name: Optional[str] = None

        for node in root.named_children:
            if node.type != "export_statement":
                continue
            is_default = self._is_default_export(node)

            declaration = node.child_by_field_name("declaration")
            if declaration is not None:
                names = self._declaration_names(declaration)
                exported.update(names)
                if is_default and names:
                    default_name = names[0]

            value = node.child_by_field_name("value")
            if is_default and value is not None:
                if value.type == "identifier":
                    default_name = node_text(value)
                elif value.type in FUNCTION_DECLARATIONS | FUNCTION_EXPRESSIONS:
                    default_name = node_text(value.child_by_field_name("name")) or default_name

            for child in node.named_children:
                if child.type in FUNCTION_DECLARATIONS | CLASS_TYPES:
                    names = self._declaration_names(child)
                    exported.update(names)
                    if is_default and names:
                        default_name = names[0]
                elif child.type == "export_clause":
                    for specifier in child.named_children:
                        alias = specifier.child_by_field_name("alias")
                        local = specifier.child_by_field_name("name")
                        if local is not None:
                            exported.add(node_text(local))
                        if alias is not None and node_text(alias) == "default" and local is not None:
                            default_name = node_text(local)

        if default_name:
            exported.add(default_name)
        return exported, default_name

    def _declaration_names(self, node) -> List[str]:
        if node.type in ("lexical_declaration", "variable_declaration"):
            names = []
            for decl in node.named_children:
                if decl.type == "variable_declarator":
                    name_node = decl.child_by_field_name("name")
                    if name_node is not None and name_node.type == "identifier":
                        names.append(node_text(name_node))
            return names
        name = node_text(node.child_by_field_name("name"))
        return [name] if name else []
