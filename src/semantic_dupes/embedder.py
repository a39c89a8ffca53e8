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
Code embedder - converts chunk text into semantic vectors.

Talks to a local Ollama server over HTTP. The service may still be starting,
may fail transiently, or may answer with garbage; each case maps to its own
exception so the indexer can decide between retrying, skipping a chunk and
aborting the run.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Protocol, Sequence, runtime_checkable
import logging
import threading
import time

import httpx
import numpy as np

from .config import DEFAULT_BASE_URL, DEFAULT_MODEL, IndexerConfig
from .errors import DimensionMismatchError, EmbeddingServiceError, MalformedEmbeddingError


logger = logging.getLogger(__name__)

# Output sizes of common Ollama embedding models
KNOWN_DIMENSIONS = {
    "nomic-embed-text": 768,
    "mxbai-embed-large": 1024,
    "all-minilm": 384,
    "snowflake-arctic-embed": 1024,
    "bge-m3": 1024,
}

RETRYABLE_STATUS = {408, 429}
MAX_BACKOFF = 30.0
READY_POLL_INTERVAL = 0.25


def known_dimension(model: str) -> Optional[int]:
    """Declared dimension of a model, ignoring the ":latest" style tag."""
    return KNOWN_DIMENSIONS.get(model.split(":", 1)[0])


def normalize_vector(values) -> np.ndarray:
    """
    Validate a raw embedding and L2-normalize it.

    Raises:
        MalformedEmbeddingError: If the values are not a finite, non-zero vector
    """
    if not isinstance(values, (list, tuple)) or not values:
        raise MalformedEmbeddingError("Embedding is not a non-empty list")

    try:
        vec = np.asarray(values, dtype=np.float32)
    except (TypeError, ValueError) as e:
        raise MalformedEmbeddingError(f"Embedding is not numeric: {e}") from e

    if vec.ndim != 1 or not np.all(np.isfinite(vec)):
        raise MalformedEmbeddingError("Embedding is not a finite 1-D vector")

    norm = float(np.linalg.norm(vec))
    if norm == 0.0:
        raise MalformedEmbeddingError("Embedding is a zero vector")

    return vec / norm


@runtime_checkable
class EmbeddingClient(Protocol):
    """What the indexer needs from an embedding backend."""

    model: str

    @property
    def dimension(self) -> Optional[int]:
        ...

    def wait_until_ready(self, timeout: Optional[float] = None) -> None:
        ...

    def ensure_model(self) -> None:
        ...

    def embed(self, text: str) -> np.ndarray:
        ...

    def embed_batch(self, texts: Sequence[str]) -> List[np.ndarray]:
        """Vectors in input order."""
        ...

    def close(self) -> None:
        ...


class OllamaEmbeddingClient:
    """Embedding client for the Ollama HTTP API."""

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        dimension: Optional[int] = None,
        timeout: float = 60.0,
        max_retries: int = 3,
        backoff: float = 0.5,
        ready_timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize the embedding client.

        Args:
            model: Ollama model name
            base_url: Server URL (http://localhost:11434)
            dimension: Expected vector size; None = known-model table or
                the first response
            timeout: Per-request timeout in seconds
            max_retries: Retries of a transient failure before giving up
            backoff: Initial retry delay in seconds, doubled per attempt
            ready_timeout: Default bound for wait_until_ready
            transport: Custom httpx transport (tests use httpx.MockTransport)
        """
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.backoff = backoff
        self.ready_timeout = ready_timeout

        self._dimension = dimension or known_dimension(model)
        self._lock = threading.Lock()
        self._client = httpx.Client(base_url=self.base_url, timeout=timeout, transport=transport)

        logger.debug("Initialized OllamaEmbeddingClient with model: %s", model)

    @classmethod
    def from_config(cls, config: IndexerConfig, **kwargs) -> "OllamaEmbeddingClient":
        return cls(
            model=config.model,
            base_url=config.base_url,
            dimension=config.dimension,
            timeout=config.request_timeout,
            max_retries=config.max_retries,
            backoff=config.backoff,
            ready_timeout=config.ready_timeout,
            **kwargs,
        )

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    def close(self):
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # ------------------------------------------------------------------
    # Service state
    # ------------------------------------------------------------------

    def is_available(self) -> bool:
        """True if the server answers at all."""
        try:
            response = self._client.get("/api/tags")
        except httpx.HTTPError:
            return False
        return response.status_code == 200

    def list_models(self) -> List[str]:
        response = self._request("GET", "/api/tags")
        return [m.get("name", "") for m in response.get("models", []) if isinstance(m, dict)]

    def has_model(self) -> bool:
        wanted = self.model if ":" in self.model else f"{self.model}:latest"
        return any(name in (self.model, wanted) for name in self.list_models())

    def wait_until_ready(self, timeout: Optional[float] = None) -> None:
        """
        Block until the server answers.

        Raises:
            EmbeddingServiceError: If it does not answer within timeout seconds
        """
        timeout = self.ready_timeout if timeout is None else timeout
        deadline = time.monotonic() + timeout

        while True:
            if self.is_available():
                return
            if time.monotonic() >= deadline:
                raise EmbeddingServiceError(
                    f"Embedding service at {self.base_url} not ready after {timeout:.1f}s. "
                    "Start it with: ollama serve"
                )
            time.sleep(READY_POLL_INTERVAL)

    def ensure_model(self) -> None:
        """Pull the model if the server does not have it yet."""
        if self.has_model():
            return
        logger.info("Pulling embedding model %s", self.model)
        self._request("POST", "/api/pull", json={"name": self.model, "stream": False})

    # ------------------------------------------------------------------
    # Embedding
    # ------------------------------------------------------------------

    def embed(self, text: str) -> np.ndarray:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: Sequence[str]) -> List[np.ndarray]:
        """
        Embed several texts in one request.

        Returns:
            L2-normalized float32 vectors in input order

        Raises:
            EmbeddingServiceError: Transient failures exhausted their retries
            MalformedEmbeddingError: The response holds no usable vectors
            DimensionMismatchError: A vector has the wrong size for this model
        """
        if not texts:
            return []

        data = self._request("POST", "/api/embed", json={"model": self.model, "input": list(texts)})

        embeddings = data.get("embeddings") if isinstance(data, dict) else None
        if not isinstance(embeddings, list):
            raise MalformedEmbeddingError("Response has no 'embeddings' list")
        if len(embeddings) != len(texts):
            raise MalformedEmbeddingError(
                f"Expected {len(texts)} embeddings, got {len(embeddings)}"
            )

        vectors = [normalize_vector(values) for values in embeddings]
        for vec in vectors:
            self._check_dimension(len(vec))
        return vectors

    def _check_dimension(self, actual: int):
        with self._lock:
            if self._dimension is None:
                self._dimension = actual
                logger.debug("Embedding dimension for %s: %d", self.model, actual)
            elif actual != self._dimension:
                raise DimensionMismatchError(self._dimension, actual, context=f"{self.model} embedding")

    def _request(self, method: str, path: str, **kwargs) -> dict:
        """
        Internal method to call the API with exponential backoff.

        Connection errors, timeouts, 5xx, 408 and 429 are retried.
        """
        delay = self.backoff
        last_error = None

        for attempt in range(self.max_retries + 1):
            try:
                response = self._client.request(method, path, **kwargs)
            except httpx.TimeoutException as e:
                last_error = f"Request timeout: {e}"
            except httpx.TransportError as e:
                last_error = f"Network error: {e}"
            else:
                status = response.status_code
                if status >= 500 or status in RETRYABLE_STATUS:
                    last_error = f"HTTP {status}"
                elif status == 404:
                    raise EmbeddingServiceError(
                        f"{path} returned 404 for model {self.model}. "
                        f"Pull it with: ollama pull {self.model}"
                    )
                elif status >= 400:
                    raise MalformedEmbeddingError(f"HTTP {status}: {response.text[:200]}")
                else:
                    try:
                        return response.json()
                    except ValueError as e:
                        raise MalformedEmbeddingError(f"Invalid JSON response: {e}") from e

            if attempt < self.max_retries:
                logger.warning(
                    "%s on attempt %d/%d. Retrying in %.2fs...",
                    last_error, attempt + 1, self.max_retries + 1, delay,
                )
                time.sleep(delay)
                delay = min(delay * 2, MAX_BACKOFF)

        raise EmbeddingServiceError(
            f"Embedding request failed after {self.max_retries + 1} attempts: {last_error}"
        )


@dataclass
class EmbeddingBatch:
    """Outcome of embed_many, keyed by input index."""

    vectors: Dict[int, np.ndarray] = field(default_factory=dict)
    failures: Dict[int, str] = field(default_factory=dict)


def embed_many(
    client: EmbeddingClient,
    texts: Sequence[str],
    batch_size: int = 10,
    max_workers: int = 4,
    on_batch: Optional[Callable[[int, int], None]] = None,
    check_cancelled: Optional[Callable[[], None]] = None,
) -> EmbeddingBatch:
    """
    Embed many texts with a bounded number of requests in flight.

    Batches complete in any order; results are keyed by input index so the
    outcome does not depend on arrival order. A batch that fails with a
    malformed response is retried one text at a time, so only the offending
    texts end up in failures.

    Args:
        client: Embedding client
        texts: Texts to embed
        batch_size: Texts per request
        max_workers: Requests in flight
        on_batch: Called with (texts_done, total) after each batch
        check_cancelled: Called between batches; raises to abort the run

    Raises:
        EmbeddingServiceError, DimensionMismatchError: Abort the whole run
    """
    result = EmbeddingBatch()
    if not texts:
        return result

    batch_size = max(1, batch_size)
    batches = [
        list(range(start, min(start + batch_size, len(texts))))
        for start in range(0, len(texts), batch_size)
    ]
    done = 0

    executor = ThreadPoolExecutor(max_workers=max(1, max_workers))
    try:
        futures = {
            executor.submit(_embed_one_batch, client, [texts[i] for i in indices]): indices
            for indices in batches
        }

        for future in as_completed(futures):
            indices = futures[future]
            vectors, failures = future.result()

            for local, vec in enumerate(vectors):
                if vec is not None:
                    result.vectors[indices[local]] = vec
            for local, reason in failures.items():
                result.failures[indices[local]] = reason

            done += len(indices)
            if on_batch:
                on_batch(done, len(texts))
            if check_cancelled:
                check_cancelled()
    except BaseException:
        executor.shutdown(wait=True, cancel_futures=True)
        raise
    else:
        executor.shutdown(wait=True)

    return result


def _embed_one_batch(client: EmbeddingClient, texts: List[str]):
    """Embed a batch, falling back to one request per text on a bad response."""
    try:
        return client.embed_batch(texts), {}
    except MalformedEmbeddingError as e:
        if len(texts) == 1:
            return [None], {0: str(e)}
        logger.debug("Batch of %d failed (%s), retrying one by one", len(texts), e)

    vectors: List[Optional[np.ndarray]] = []
    failures: Dict[int, str] = {}
    for i, text in enumerate(texts):
        try:
            vectors.append(client.embed(text))
        except MalformedEmbeddingError as e:
            vectors.append(None)
            failures[i] = str(e)
    return vectors, failures
