"""
Tests for the Ollama embedding client and batched embedding.
"""

import json
from unittest.mock import Mock

import httpx
import numpy as np
import pytest

from semantic_dupes.config import IndexerConfig
from semantic_dupes.embedder import (
    EmbeddingClient,
    OllamaEmbeddingClient,
    embed_many,
    known_dimension,
    normalize_vector,
)
from semantic_dupes.errors import (
    DimensionMismatchError,
    EmbeddingServiceError,
    IndexingCancelled,
    MalformedEmbeddingError,
)

from conftest import FakeEmbeddingClient


def make_client(handler, **kwargs):
    kwargs.setdefault("model", "test-embed")
    kwargs.setdefault("backoff", 0.0)
    return OllamaEmbeddingClient(
        base_url="http://ollama.test",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def embeddings_response(*vectors):
    return httpx.Response(200, json={"embeddings": [list(v) for v in vectors]})


class TestOllamaEmbeddingClient:
    """HTTP behaviour of the client."""

    def test_satisfies_protocol(self):
        client = make_client(lambda request: embeddings_response())
        assert isinstance(client, EmbeddingClient)

    def test_embed_batch_normalizes(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return embeddings_response([3.0, 4.0], [0.0, 2.0])

        client = make_client(handler)
        vectors = client.embed_batch(["first", "second"])

        assert seen == [{"model": "test-embed", "input": ["first", "second"]}]
        np.testing.assert_allclose(vectors[0], [0.6, 0.8], rtol=1e-6)
        np.testing.assert_allclose(vectors[1], [0.0, 1.0], rtol=1e-6)
        assert vectors[0].dtype == np.float32

    def test_embed_single(self):
        client = make_client(lambda request: embeddings_response([1.0, 0.0]))
        np.testing.assert_allclose(client.embed("x"), [1.0, 0.0])

    def test_empty_batch_makes_no_request(self):
        handler = Mock(side_effect=AssertionError("no request expected"))
        assert make_client(handler).embed_batch([]) == []

    def test_dimension_learned_from_first_response(self):
        responses = iter([
            embeddings_response([1.0, 0.0]),
            embeddings_response([1.0, 0.0, 0.0]),
        ])
        client = make_client(lambda request: next(responses))

        assert client.dimension is None
        client.embed("a")
        assert client.dimension == 2

        with pytest.raises(DimensionMismatchError, match="expected 2"):
            client.embed("b")

    def test_configured_dimension_enforced(self):
        client = make_client(lambda request: embeddings_response([1.0, 0.0]), dimension=3)

        with pytest.raises(DimensionMismatchError):
            client.embed("a")

    def test_known_model_dimension(self):
        client = make_client(lambda request: embeddings_response(), model="nomic-embed-text")
        assert client.dimension == 768
        assert known_dimension("mxbai-embed-large:latest") == 1024
        assert known_dimension("something-else") is None

    def test_retries_transient_errors(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(503)
            return embeddings_response([1.0, 0.0])

        client = make_client(handler, max_retries=3)
        client.embed("a")

        assert len(calls) == 3

    @pytest.mark.parametrize("status", [408, 429, 500, 502])
    def test_retryable_statuses(self, status):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(status)

        client = make_client(handler, max_retries=2)
        with pytest.raises(EmbeddingServiceError, match="after 3 attempts"):
            client.embed("a")

        assert len(calls) == 3

    def test_connection_errors_are_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("connection refused")

        client = make_client(handler, max_retries=1)
        with pytest.raises(EmbeddingServiceError, match="Network error"):
            client.embed("a")

        assert len(calls) == 2

    def test_timeouts_are_retried(self):
        def handler(request):
            raise httpx.ReadTimeout("too slow")

        client = make_client(handler, max_retries=0)
        with pytest.raises(EmbeddingServiceError, match="timeout"):
            client.embed("a")

    def test_missing_model(self):
        client = make_client(lambda request: httpx.Response(404, json={"error": "model not found"}))

        with pytest.raises(EmbeddingServiceError, match="ollama pull test-embed"):
            client.embed("a")

    def test_client_error_is_malformed(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(400, text="input too long")

        client = make_client(handler)
        with pytest.raises(MalformedEmbeddingError, match="HTTP 400"):
            client.embed("a")

        assert len(calls) == 1

    @pytest.mark.parametrize("response", [
        httpx.Response(200, content=b"not json"),
        httpx.Response(200, json={"something": "else"}),
        httpx.Response(200, json={"embeddings": [[1.0, 0.0], [0.0, 1.0]]}),
        httpx.Response(200, json={"embeddings": [[0.0, 0.0]]}),
        httpx.Response(200, json={"embeddings": [["a", "b"]]}),
        httpx.Response(200, json={"embeddings": [[]]}),
    ])
    def test_malformed_responses(self, response):
        client = make_client(lambda request: response)

        with pytest.raises(MalformedEmbeddingError):
            client.embed("a")


class TestServiceState:
    """Readiness and model management."""

    def test_wait_until_ready(self):
        client = make_client(lambda request: httpx.Response(200, json={"models": []}))
        client.wait_until_ready(timeout=1.0)

    def test_wait_until_ready_gives_up(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        client = make_client(handler)
        with pytest.raises(EmbeddingServiceError, match="not ready"):
            client.wait_until_ready(timeout=0.0)

    def test_has_model(self):
        client = make_client(
            lambda request: httpx.Response(200, json={"models": [{"name": "test-embed:latest"}]})
        )
        assert client.has_model()

    def test_ensure_model_pulls_missing_model(self):
        requests = []

        def handler(request):
            requests.append((request.method, request.url.path))
            if request.url.path == "/api/tags":
                return httpx.Response(200, json={"models": [{"name": "other:latest"}]})
            return httpx.Response(200, json={"status": "success"})

        make_client(handler).ensure_model()

        assert requests == [("GET", "/api/tags"), ("POST", "/api/pull")]

    def test_from_config(self):
        config = IndexerConfig(model="all-minilm", base_url="http://gpu-box:11434", max_retries=5)
        client = OllamaEmbeddingClient.from_config(config)

        assert client.model == "all-minilm"
        assert client.base_url == "http://gpu-box:11434"
        assert client.max_retries == 5
        assert client.dimension == 384
        client.close()


class TestNormalizeVector:
    """Validation of raw embeddings."""

    def test_unit_length(self):
        assert np.linalg.norm(normalize_vector([2.0, 0.0, 0.0])) == pytest.approx(1.0)

    @pytest.mark.parametrize("values", [[], None, [0.0, 0.0], [float("nan"), 1.0], [[1.0], [2.0]]])
    def test_rejects_garbage(self, values):
        with pytest.raises(MalformedEmbeddingError):
            normalize_vector(values)


class TestEmbedMany:
    """Concurrent batched embedding."""

    def test_results_keyed_by_input_index(self):
        client = FakeEmbeddingClient()
        texts = [f"text number {i}" for i in range(7)]
        progress = []

        batch = embed_many(client, texts, batch_size=2, max_workers=3,
                           on_batch=lambda done, total: progress.append((done, total)))

        assert sorted(batch.vectors) == list(range(7))
        assert batch.failures == {}
        for i, text in enumerate(texts):
            np.testing.assert_allclose(batch.vectors[i], client.embed(text))
        assert progress[-1] == (7, 7)

    def test_bad_text_fails_alone(self):
        client = FakeEmbeddingClient(poison="BROKEN")
        texts = ["fine one", "BROKEN two", "fine three"]

        batch = embed_many(client, texts, batch_size=3)

        assert sorted(batch.vectors) == [0, 2]
        assert list(batch.failures) == [1]
        assert "zero vector" in batch.failures[1]

    def test_service_error_aborts(self):
        client = Mock()
        client.embed_batch.side_effect = EmbeddingServiceError("down")

        with pytest.raises(EmbeddingServiceError):
            embed_many(client, ["a", "b", "c"], batch_size=1)

    def test_cancellation_propagates(self):
        def cancel():
            raise IndexingCancelled("stop")

        with pytest.raises(IndexingCancelled):
            embed_many(FakeEmbeddingClient(), ["a", "b"], batch_size=1, check_cancelled=cancel)

    def test_no_texts(self):
        batch = embed_many(FakeEmbeddingClient(), [])
        assert batch.vectors == {} and batch.failures == {}
