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
Query API - what the CLI and editor integrations call.

Loaded indexers are cached per resolved directory in an IndexerRegistry.
Pass your own registry to isolate callers (tests do); otherwise a module
level default is used.
"""

from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union
import logging
import threading

from .clusterer import find_duplicate_groups, find_similar_to_location, find_similar_to_query
from .config import resolve_config
from .embedder import OllamaEmbeddingClient
from .errors import IncompatibleIndexError
from .incremental import ClientFactory, IncrementalIndexer, ProgressCallback
from .models import DuplicateGroup, IndexUpdateResult, SearchResult


logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

DEFAULT_THRESHOLD = 0.85
DEFAULT_SEARCH_THRESHOLD = 0.5
DEFAULT_TOP = 10


class IndexerRegistry:
    """Cache of IncrementalIndexer instances keyed by resolved directory."""

    def __init__(self, client_factory: Optional[ClientFactory] = None):
        self.client_factory = client_factory or OllamaEmbeddingClient.from_config
        self._indexers: Dict[Path, IncrementalIndexer] = {}
        self._lock = threading.Lock()

    def get(self, path: PathLike, **overrides: Any) -> IncrementalIndexer:
        """
        Get the indexer for a directory, creating it on first use.

        A cached indexer whose configuration differs from the requested one
        (e.g. another embedding model) is replaced.
        """
        root = Path(path).resolve()
        config = resolve_config(root, **overrides)

        with self._lock:
            indexer = self._indexers.get(root)
            if indexer is None or indexer.config != config:
                if indexer is not None:
                    indexer.close()
                # Clients are created on first use
                indexer = IncrementalIndexer(root, config=config, client_factory=self.client_factory)
                self._indexers[root] = indexer
            return indexer

    def invalidate(self, path: PathLike) -> bool:
        with self._lock:
            indexer = self._indexers.pop(Path(path).resolve(), None)
        if indexer is None:
            return False
        indexer.close()
        return True

    def clear(self):
        with self._lock:
            indexers = list(self._indexers.values())
            self._indexers.clear()
        for indexer in indexers:
            indexer.close()

    def __contains__(self, path: PathLike) -> bool:
        return Path(path).resolve() in self._indexers

    def __len__(self) -> int:
        return len(self._indexers)


_default_registry = IndexerRegistry()


def get_default_registry() -> IndexerRegistry:
    return _default_registry


def _registry(registry: Optional[IndexerRegistry]) -> IndexerRegistry:
    return registry if registry is not None else _default_registry


def _loaded_indexer(path: PathLike, registry: IndexerRegistry, model: Optional[str]) -> IncrementalIndexer:
    """Indexer with its stores loaded, checked against the requested model."""
    indexer = registry.get(path, model=model)
    manifest = indexer.ensure_loaded()

    if manifest.embedding_model != indexer.model:
        registry.invalidate(path)
        raise IncompatibleIndexError(
            f"index was built with {manifest.embedding_model}, "
            f"queries use {indexer.model}. Reindex with --force."
        )
    return indexer


def index_directory(
    path: PathLike,
    force: bool = False,
    model: Optional[str] = None,
    exclude: Optional[Iterable[str]] = None,
    on_progress: Optional[ProgressCallback] = None,
    cancel_event: Optional[threading.Event] = None,
    timeout: Optional[float] = None,
    pull_model: bool = False,
    registry: Optional[IndexerRegistry] = None,
    **overrides: Any,
) -> IndexUpdateResult:
    """
    Build or update the index of a directory.

    Args:
        path: Directory to index
        force: Rebuild from scratch
        model: Embedding model (overrides config)
        exclude: Extra exclude globs (added to config excludes)
        on_progress: Progress callback (message, current, total)
        cancel_event: Set to abort the run before anything is written
        timeout: Seconds the run may take
        pull_model: Pull the embedding model if the service lacks it
        registry: Indexer cache (default registry if None)
        **overrides: Any other IndexerConfig field

    Returns:
        IndexUpdateResult
    """
    registry = _registry(registry)
    if exclude is not None:
        base = resolve_config(Path(path).resolve())
        overrides["exclude"] = list(base.exclude) + list(exclude)

    indexer = registry.get(path, model=model, **overrides)
    return indexer.run(
        force=force,
        on_progress=on_progress,
        cancel_event=cancel_event,
        timeout=timeout,
        pull_model=pull_model,
    )


def find_duplicates(
    path: PathLike,
    threshold: float = DEFAULT_THRESHOLD,
    min_group_size: int = 2,
    kind: Optional[str] = None,
    exclude_paths: Iterable[str] = (),
    model: Optional[str] = None,
    registry: Optional[IndexerRegistry] = None,
) -> List[DuplicateGroup]:
    """
    Find groups of semantically duplicated code in an indexed directory.

    Raises:
        IndexNotFoundError: If the directory was never indexed
        IncompatibleIndexError: If the index was built with another model
    """
    indexer = _loaded_indexer(path, _registry(registry), model)
    return find_duplicate_groups(
        indexer.vector_store,
        indexer.metadata_store,
        min_similarity=threshold,
        min_group_size=min_group_size,
        kind=kind,
        exclude_paths=exclude_paths,
    )


def search_similar(
    query: str,
    path: PathLike = ".",
    top: int = DEFAULT_TOP,
    threshold: float = DEFAULT_SEARCH_THRESHOLD,
    model: Optional[str] = None,
    registry: Optional[IndexerRegistry] = None,
) -> List[SearchResult]:
    """Semantic search: chunks most similar to a natural-language or code query."""
    indexer = _loaded_indexer(path, _registry(registry), model)
    vector = indexer.client.embed(query)
    return find_similar_to_query(
        indexer.vector_store,
        indexer.metadata_store,
        vector,
        top=top,
        threshold=threshold,
    )


def find_similar_at_location(
    path: PathLike,
    file_path: str,
    line: int,
    top: int = DEFAULT_TOP,
    threshold: float = DEFAULT_SEARCH_THRESHOLD,
    model: Optional[str] = None,
    registry: Optional[IndexerRegistry] = None,
) -> List[SearchResult]:
    """
    Chunks similar to the one at file_path:line.

    file_path may be absolute or relative to path.
    """
    indexer = _loaded_indexer(path, _registry(registry), model)
    return find_similar_to_location(
        indexer.vector_store,
        indexer.metadata_store,
        _relative_path(indexer.root_path, file_path),
        line,
        top=top,
        threshold=threshold,
    )


def has_index(path: PathLike, registry: Optional[IndexerRegistry] = None) -> bool:
    return _registry(registry).get(path).has_index()


def get_index_stats(path: PathLike, registry: Optional[IndexerRegistry] = None) -> Dict[str, Any]:
    """
    Manifest summary of an index.

    Raises:
        IndexNotFoundError: If the directory was never indexed
    """
    return _registry(registry).get(path).stats()


def clear_indexer_cache(path: Optional[PathLike] = None, registry: Optional[IndexerRegistry] = None):
    """Forget loaded indexers (all of them, or the one for path)."""
    registry = _registry(registry)
    if path is None:
        registry.clear()
    else:
        registry.invalidate(path)


def _relative_path(root: Path, file_path: str) -> str:
    candidate = Path(file_path)
    if candidate.is_absolute():
        try:
            return candidate.resolve().relative_to(root).as_posix()
        except ValueError:
            # Outside the indexed directory: matches no chunk
            return candidate.as_posix()
    return candidate.as_posix()
