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
Semantic Dupes - find components, hooks and functions that do the same thing.

Embeds every semantic unit of a codebase with a local embedding model and
groups units whose vectors are close, catching duplicates that look
different on the surface. The index is incremental: unchanged files and
unchanged units are never re-embedded.
"""

__version__ = "0.1.0"

from .api import (
    IndexerRegistry,
    clear_indexer_cache,
    find_duplicates,
    find_similar_at_location,
    get_index_stats,
    has_index,
    index_directory,
    search_similar,
)
from .chunker import chunk_file, prepare_embedding_input
from .clusterer import find_duplicate_groups
from .config import IndexerConfig, find_config_file, load_config
from .incremental import IncrementalIndexer, IndexerState

__all__ = [
    "__version__",
    "IndexerRegistry",
    "IndexerConfig",
    "IncrementalIndexer",
    "IndexerState",
    "chunk_file",
    "clear_indexer_cache",
    "find_config_file",
    "find_duplicate_groups",
    "find_duplicates",
    "find_similar_at_location",
    "get_index_stats",
    "has_index",
    "index_directory",
    "load_config",
    "prepare_embedding_input",
    "search_similar",
]
