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
Incremental indexer - keeps the on-disk index in step with a directory.

One run goes Idle -> Scanning -> Diffing -> Chunking -> Embedding ->
Persisting -> Idle, or ends in Failed. Only files whose content hash
changed are re-chunked, and only chunks whose text hash is new are sent
to the embedding service.

Nothing is written until the whole run has succeeded: stores first,
manifest last. A cancelled or failed run leaves the previous index on
disk untouched.
"""

from collections import Counter
from concurrent.futures import ThreadPoolExecutor, as_completed
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Union
import logging
import os
import threading
import time

import numpy as np

from .chunker import chunk_file
from .config import IndexerConfig, resolve_config
from .embedder import EmbeddingClient, OllamaEmbeddingClient, embed_many
from .errors import (
    ChunkingError,
    CorruptIndexError,
    IndexingCancelled,
    IndexingTimeout,
    IndexNotFoundError,
    IndexStateError,
)
from .file_tracker import FileTracker, hash_content
from .languages import ChunkingOptions
from .manifest import (
    check_compatibility,
    get_manifest_path,
    load_manifest,
    new_manifest,
    save_manifest,
)
from .metadata_store import MetadataStore
from .models import ChunkFailure, CodeChunk, IndexManifest, IndexUpdateResult
from .scanner import INDEX_DIR_NAME, find_source_files
from .vector_store import VectorStore


logger = logging.getLogger(__name__)

ProgressCallback = Callable[..., None]
ClientFactory = Callable[[IndexerConfig], EmbeddingClient]


class IndexerState(Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    DIFFING = "diffing"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    PERSISTING = "persisting"
    FAILED = "failed"


def _no_progress(message: str, current: Optional[int] = None, total: Optional[int] = None):
    pass


class IncrementalIndexer:
    """Index of one directory: its stores, file hashes and manifest."""

    def __init__(
        self,
        root_path: Union[str, Path],
        config: Optional[IndexerConfig] = None,
        client: Optional[EmbeddingClient] = None,
        index_dir: Optional[Path] = None,
        client_factory: Optional[ClientFactory] = None,
    ):
        self.root_path = Path(root_path).resolve()
        self.config = config or resolve_config(self.root_path)
        self.index_dir = Path(index_dir) if index_dir else self.root_path / INDEX_DIR_NAME
        self.state = IndexerState.IDLE

        self._client = client
        self._client_factory = client_factory or OllamaEmbeddingClient.from_config
        self.manifest: Optional[IndexManifest] = None
        self.vector_store = VectorStore()
        self.metadata_store = MetadataStore()
        self.file_tracker = FileTracker()

        self._loaded_stamp: Optional[str] = None
        self._stale = False          # In-memory state diverged from disk
        self._mutated = False
        self._lock = threading.RLock()

    @property
    def client(self) -> EmbeddingClient:
        if self._client is None:
            self._client = self._client_factory(self.config)
        return self._client

    def close(self):
        """Close the embedding client if one was created."""
        if self._client is not None:
            self._client.close()
            self._client = None

    @property
    def model(self) -> str:
        return self._client.model if self._client is not None else self.config.model

    def _set_state(self, state: IndexerState):
        logger.debug("Indexer %s: %s -> %s", self.root_path, self.state.value, state.value)
        self.state = state

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def has_index(self) -> bool:
        return get_manifest_path(self.index_dir).exists()

    def load(self) -> IndexManifest:
        """
        Load manifest and stores from disk, replacing in-memory state.

        Raises:
            IndexNotFoundError: If no index was built yet
            CorruptIndexError: If any document is invalid or they disagree
        """
        manifest = load_manifest(self.index_dir)
        if manifest is None:
            raise IndexNotFoundError(
                f"No index found for {self.root_path}. Run indexing first.", self.index_dir
            )

        try:
            vector_store = VectorStore.load(self.index_dir)
            metadata_store = MetadataStore.load(self.index_dir)
        except IndexNotFoundError as e:
            # The manifest promises stores that are not there
            raise CorruptIndexError(f"Incomplete index: {e}", self.index_dir) from e
        file_tracker = FileTracker.load(self.index_dir)

        problem = self._consistency_problem(manifest, vector_store, metadata_store)
        if problem:
            raise CorruptIndexError(f"Inconsistent index in {self.index_dir}: {problem}", self.index_dir)

        self.manifest = manifest
        self.vector_store = vector_store
        self.metadata_store = metadata_store
        self.file_tracker = file_tracker
        self._loaded_stamp = manifest.updated_at
        self._stale = False

        logger.debug("Loaded index for %s: %d chunks", self.root_path, metadata_store.size())
        return manifest

    def ensure_loaded(self) -> IndexManifest:
        """Load the index unless the in-memory copy matches the disk."""
        with self._lock:
            manifest = load_manifest(self.index_dir)
            if manifest is None:
                raise IndexNotFoundError(
                    f"No index found for {self.root_path}. Run indexing first.", self.index_dir
                )
            if self._stale or self.manifest is None or manifest.updated_at != self._loaded_stamp:
                return self.load()
            return self.manifest

    def stats(self) -> Dict[str, Any]:
        """Manifest summary plus chunk counts by kind."""
        manifest = self.ensure_loaded()
        kinds = Counter(meta.kind for _, meta in self.metadata_store.items())
        return {
            "path": str(self.root_path),
            "index_dir": str(self.index_dir),
            "version": manifest.version,
            "embedding_model": manifest.embedding_model,
            "dimension": manifest.dimension,
            "created_at": manifest.created_at,
            "updated_at": manifest.updated_at,
            "chunk_count": manifest.chunk_count,
            "file_count": manifest.file_count,
            "kinds": dict(sorted(kinds.items())),
        }

    def _consistency_problem(
        self,
        manifest: IndexManifest,
        vector_store: VectorStore,
        metadata_store: MetadataStore,
    ) -> Optional[str]:
        if set(vector_store.ids()) != set(metadata_store.ids()):
            return "vector and metadata ids differ"
        if manifest.chunk_count != metadata_store.size():
            return f"manifest lists {manifest.chunk_count} chunks, stores hold {metadata_store.size()}"
        if vector_store.dimension is not None and vector_store.dimension != manifest.dimension:
            return f"vectors have dimension {vector_store.dimension}, manifest says {manifest.dimension}"
        return None

    # ------------------------------------------------------------------
    # Indexing run
    # ------------------------------------------------------------------

    def run(
        self,
        force: bool = False,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
        pull_model: bool = False,
    ) -> IndexUpdateResult:
        """
        Bring the index up to date with the directory.

        Args:
            force: Discard any existing index and rebuild from scratch
            on_progress: Called as on_progress(message, current, total)
            cancel_event: Set from another thread to abort the run
            timeout: Seconds the whole run may take (None = no limit)
            pull_model: Pull the embedding model before embedding if the
                service does not have it

        Returns:
            IndexUpdateResult with counts and soft failures

        Raises:
            CorruptIndexError: Persisted state unreadable (use force)
            EmbeddingServiceError: Embedding service unreachable
            ConfigurationError: Vector dimension does not match the index
            IndexingCancelled / IndexingTimeout: Aborted before any write
        """
        with self._lock:
            try:
                return self._run(force, on_progress or _no_progress, cancel_event, timeout, pull_model)
            except IndexingCancelled:
                self._stale = True
                self._set_state(IndexerState.IDLE)
                raise
            except BaseException:
                self._stale = True
                self._set_state(IndexerState.FAILED)
                raise

    def _run(
        self,
        force: bool,
        progress: ProgressCallback,
        cancel_event: Optional[threading.Event],
        timeout: Optional[float],
        pull_model: bool,
    ) -> IndexUpdateResult:
        started = time.monotonic()
        deadline = started + timeout if timeout is not None else None

        def check_cancelled():
            if cancel_event is not None and cancel_event.is_set():
                raise IndexingCancelled("Indexing cancelled")
            if deadline is not None and time.monotonic() >= deadline:
                raise IndexingTimeout(f"Indexing exceeded {timeout:.1f}s")

        result = IndexUpdateResult()
        self._mutated = False

        # 1. Existing state
        self._set_state(IndexerState.SCANNING)
        rebuild_reason = self._prepare(force)
        if rebuild_reason:
            result.forced_rebuild = True
            result.rebuild_reason = rebuild_reason

        # 2. Scan
        progress("Scanning files")
        files = find_source_files(self.root_path, self.config.exclude)
        contents: Dict[str, str] = {}
        current_hashes: Dict[str, str] = {}
        for rel_path in files:
            try:
                content = (self.root_path / rel_path).read_text(encoding="utf-8", errors="replace")
            except OSError as e:
                logger.warning("Cannot read %s: %s", rel_path, e)
                result.skipped_files.append((rel_path, str(e)))
                # Keep whatever was indexed for it last time
                previous = self.file_tracker.get(rel_path)
                if previous is not None:
                    current_hashes[rel_path] = previous
                continue
            contents[rel_path] = content
            current_hashes[rel_path] = hash_content(content)
        check_cancelled()

        # 3. Diff
        self._set_state(IndexerState.DIFFING)
        changes = self.file_tracker.detect_changes(current_hashes)
        result.added = len(changes.added)
        result.modified = len(changes.modified)
        result.deleted = len(changes.deleted)
        result.unchanged = len(changes.unchanged)
        logger.info(
            "%d added, %d modified, %d deleted, %d unchanged",
            result.added, result.modified, result.deleted, result.unchanged,
        )

        # Vectors by text hash, taken before anything is removed so that moved
        # or renamed code keeps its embedding
        donors: Dict[str, np.ndarray] = {}
        for id, meta in self.metadata_store.items():
            vec = self.vector_store.get(id)
            if vec is not None:
                donors.setdefault(meta.content_hash, vec)

        # 4. Deleted files
        for path in changes.deleted:
            self._remove_file(path)
            self.file_tracker.remove(path)
            self._mutated = True

        # 5. Chunk changed files
        self._set_state(IndexerState.CHUNKING)
        to_process = changes.to_process
        chunked = self._chunk_files(to_process, contents, progress, check_cancelled)
        queue: Dict[str, List[CodeChunk]] = {}

        for path in to_process:
            outcome = chunked[path]
            if isinstance(outcome, Exception):
                logger.warning("Skipping %s: %s", path, outcome)
                result.skipped_files.append((path, str(outcome)))
                self._remove_file(path)
                if self.file_tracker.remove(path):
                    self._mutated = True
                continue

            new_ids: Set[str] = set()
            for chunk in outcome:
                new_ids.add(chunk.id)
                existing = self.metadata_store.get(chunk.id)

                if existing is not None and existing.content_hash == chunk.content_hash \
                        and self.vector_store.has(chunk.id):
                    stored = chunk.to_stored()
                    if stored != existing:
                        # Same text, new location
                        self.metadata_store.set(chunk.id, stored)
                        self._mutated = True
                    result.reused += 1
                    continue

                if existing is not None:
                    # Changed text: never keep a vector for the old one
                    self._remove_ids([chunk.id])

                donor = donors.get(chunk.content_hash)
                if donor is not None:
                    self._upsert(chunk, donor)
                    result.reused += 1
                    continue

                queue.setdefault(chunk.content_hash, []).append(chunk)

            stale = [id for id, _ in self.metadata_store.get_by_file_path(path) if id not in new_ids]
            self._remove_ids(stale)

        check_cancelled()

        # 6. Embed
        self._set_state(IndexerState.EMBEDDING)
        failed_files: Set[str] = set()
        if queue:
            hashes = list(queue)
            texts = [queue[h][0].text for h in hashes]
            logger.info("Embedding %d chunks", len(texts))

            self.client.wait_until_ready()
            if pull_model:
                self.client.ensure_model()
            batch = embed_many(
                self.client,
                texts,
                batch_size=self.config.batch_size,
                max_workers=self.config.concurrency,
                on_batch=lambda done, total: progress("Embedding chunks", done, total),
                check_cancelled=check_cancelled,
            )

            for i, content_hash in enumerate(hashes):
                vec = batch.vectors.get(i)
                for chunk in queue[content_hash]:
                    if vec is not None:
                        self._upsert(chunk, vec)
                        result.embedded += 1
                    else:
                        reason = batch.failures.get(i, "no vector returned")
                        logger.warning("Failed to embed %s: %s", chunk.location, reason)
                        result.failed_chunks.append(ChunkFailure(
                            id=chunk.id,
                            file_path=chunk.file_path,
                            name=chunk.name,
                            reason=reason,
                        ))
                        failed_files.add(chunk.file_path)

        # Files with a failed chunk keep their old hash, so the next run retries them
        for path in to_process:
            if isinstance(chunked[path], Exception) or path in failed_files:
                continue
            if self.file_tracker.get(path) != current_hashes[path]:
                self.file_tracker.set(path, current_hashes[path])
                self._mutated = True

        # 7. Persist
        self._set_state(IndexerState.PERSISTING)
        check_cancelled()

        if set(self.vector_store.ids()) != set(self.metadata_store.ids()):
            raise IndexStateError("Vector and metadata stores diverged during indexing", self.index_dir)

        if self.manifest is None or result.forced_rebuild or self._mutated:
            progress("Saving index")
            self._persist()
        else:
            logger.debug("Index for %s already up to date", self.root_path)

        # 8. Result
        result.total_chunks = self.metadata_store.size()
        result.total_files = len(self.file_tracker)
        result.duration = time.monotonic() - started
        self._set_state(IndexerState.IDLE)

        logger.info(
            "Indexed %s: %d chunks in %d files (%d embedded, %d reused) in %.2fs",
            self.root_path, result.total_chunks, result.total_files,
            result.embedded, result.reused, result.duration,
        )
        return result

    def _prepare(self, force: bool) -> Optional[str]:
        """
        Get the persisted index ready for an incremental run.

        Returns:
            Why the index is rebuilt from scratch, or None
        """
        if force:
            self._reset()
            return "Forced rebuild"

        manifest = load_manifest(self.index_dir)
        if manifest is None:
            self._reset()
            return None

        if self._stale or self.manifest is None or manifest.updated_at != self._loaded_stamp:
            self.load()

        ok, reason = check_compatibility(
            self.manifest,
            embedding_model=self.model,
            dimension=self.client.dimension,
            chunking=self.config.chunking_fingerprint(),
        )
        if not ok:
            logger.info("Rebuilding index for %s: %s", self.root_path, reason)
            self._reset()
            return reason

        return None

    def _reset(self):
        self.manifest = None
        self.vector_store = VectorStore(dimension=self.client.dimension)
        self.metadata_store = MetadataStore()
        self.file_tracker = FileTracker()
        self._loaded_stamp = None

    def _chunking_options(self) -> ChunkingOptions:
        return ChunkingOptions(
            min_lines=self.config.min_lines,
            max_lines=self.config.max_lines,
            include_anonymous=self.config.include_anonymous,
            kinds=tuple(self.config.kinds) if self.config.kinds is not None else None,
        )

    def _chunk_files(
        self,
        paths: List[str],
        contents: Dict[str, str],
        progress: ProgressCallback,
        check_cancelled: Callable[[], None],
    ) -> Dict[str, Union[List[CodeChunk], Exception]]:
        """Chunk files in parallel. Per-file parse failures are returned, not raised."""
        results: Dict[str, Union[List[CodeChunk], Exception]] = {}
        if not paths:
            return results

        options = self._chunking_options()
        max_chars = self.config.max_embedding_chars

        with ThreadPoolExecutor(max_workers=min(len(paths), os.cpu_count() or 1)) as executor:
            futures = {
                executor.submit(chunk_file, path, contents[path], options, max_chars): path
                for path in paths
            }

            for processed, future in enumerate(as_completed(futures), 1):
                path = futures[future]
                try:
                    results[path] = future.result()
                except (ChunkingError, RecursionError) as e:
                    results[path] = e
                progress(f"Chunked {path}", processed, len(paths))
                check_cancelled()

        return results

    def _upsert(self, chunk: CodeChunk, vector: np.ndarray):
        """Write one chunk to both stores."""
        self.vector_store.upsert(chunk.id, vector)
        self.metadata_store.set(chunk.id, chunk.to_stored())
        self._mutated = True

    def _remove_ids(self, ids: List[str]):
        if not ids:
            return
        self.vector_store.remove_many(ids)
        for id in ids:
            self.metadata_store.remove(id)
        self._mutated = True

    def _remove_file(self, path: str):
        """Remove every chunk of a file from both stores."""
        removed = self.metadata_store.remove_by_file_path(path)
        self.vector_store.remove_many(removed)
        if removed:
            self._mutated = True

    def _persist(self):
        dimension = self.vector_store.dimension or self.client.dimension or 0
        created_at = self.manifest.created_at if self.manifest is not None else None

        manifest = new_manifest(
            embedding_model=self.model,
            dimension=dimension,
            chunking=self.config.chunking_fingerprint(),
            created_at=created_at,
        )
        manifest.chunk_count = self.metadata_store.size()
        manifest.file_count = len(self.file_tracker)

        # Manifest last: it vouches for the stores
        self.index_dir.mkdir(parents=True, exist_ok=True)
        self.vector_store.save(self.index_dir)
        self.metadata_store.save(self.index_dir)
        self.file_tracker.save(self.index_dir)
        save_manifest(self.index_dir, manifest)

        self.manifest = manifest
        self._loaded_stamp = manifest.updated_at
        self._stale = False
