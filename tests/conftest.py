"""
Shared fixtures for semantic-dupes tests.

No test talks to a real embedding server: FakeEmbeddingClient produces
deterministic vectors from a handful of topic words, so texts about the
same topic land close together and unrelated texts land far apart.
"""

from pathlib import Path
from typing import List, Optional, Sequence
import re
import shutil
import threading
import zlib

import numpy as np
import pytest

from semantic_dupes.api import IndexerRegistry
from semantic_dupes.config import IndexerConfig
from semantic_dupes.errors import MalformedEmbeddingError


FIXTURES_DIR = Path(__file__).parent / "fixtures"

FAKE_DIMENSION = 64

# One axis per topic; a text is "about" a topic if it mentions any keyword
TOPICS = [
    ("card",),
    ("email",),
    ("weather", "temperature"),
    ("fetch",),
    ("phone",),
]

# Norm of the per-token noise added on top of the topic axes
RESIDUAL_WEIGHT = 0.3

TOKEN = re.compile(r"[a-z_]+")


def fake_vector(text: str, dimension: int = FAKE_DIMENSION) -> np.ndarray:
    """
    Deterministic unit vector for a text.

    Two texts with the same topic set have cosine similarity >= 0.9;
    texts with disjoint topic sets stay below 0.1.
    """
    lowered = text.lower()
    vec = np.zeros(dimension, dtype=np.float32)

    for axis, keywords in enumerate(TOPICS):
        if any(keyword in lowered for keyword in keywords):
            vec[axis] = 1.0

    residual = np.zeros(dimension, dtype=np.float32)
    slots = dimension - len(TOPICS)
    for token in TOKEN.findall(lowered):
        residual[len(TOPICS) + zlib.crc32(token.encode("utf-8")) % slots] += 1.0
    norm = np.linalg.norm(residual)
    if norm > 0:
        vec += residual / norm * RESIDUAL_WEIGHT

    if not vec.any():
        vec[-1] = 1.0
    return vec / np.linalg.norm(vec)


class FakeEmbeddingClient:
    """In-process stand-in for OllamaEmbeddingClient."""

    def __init__(
        self,
        model: str = "fake-embed",
        dimension: int = FAKE_DIMENSION,
        poison: Optional[str] = None,
    ):
        self.model = model
        self._dimension = dimension
        self.poison = poison            # Texts containing this are rejected
        self.embedded: List[str] = []
        self.ready_calls = 0
        self.pull_calls = 0
        self.closed = False
        self._lock = threading.Lock()

    @property
    def dimension(self) -> int:
        return self._dimension

    def wait_until_ready(self, timeout: Optional[float] = None) -> None:
        self.ready_calls += 1

    def ensure_model(self) -> None:
        self.pull_calls += 1

    def close(self) -> None:
        self.closed = True

    def embed(self, text: str) -> np.ndarray:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: Sequence[str]) -> List[np.ndarray]:
        if self.poison is not None and any(self.poison in text for text in texts):
            raise MalformedEmbeddingError("Embedding is a zero vector")
        with self._lock:
            self.embedded.extend(texts)
        return [fake_vector(text, self._dimension) for text in texts]


@pytest.fixture
def fake_client():
    return FakeEmbeddingClient()


@pytest.fixture
def registry():
    """Indexer cache whose indexers embed with FakeEmbeddingClient."""
    return IndexerRegistry(client_factory=lambda config: FakeEmbeddingClient(model=config.model))


@pytest.fixture
def config():
    return IndexerConfig(model="fake-embed", batch_size=2, concurrency=2)


@pytest.fixture
def copy_fixture(tmp_path):
    """Copy a fixture directory into a fresh project directory."""

    def _copy(name: str) -> Path:
        target = tmp_path / name
        shutil.copytree(FIXTURES_DIR / name, target)
        return target

    return _copy


@pytest.fixture
def cards_project(copy_fixture):
    return copy_fixture("cards")


@pytest.fixture
def email_project(copy_fixture):
    return copy_fixture("email")


@pytest.fixture
def read_fixture():
    def _read(relative: str) -> str:
        return (FIXTURES_DIR / relative).read_text(encoding="utf-8")

    return _read
