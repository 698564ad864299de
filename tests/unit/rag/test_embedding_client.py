"""Tests for the LiteLLM embedding client."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from noterag.config import EmbeddingCfg
from noterag.errors import (
    EmbeddingDimensionMismatch,
    EmbeddingRequestFailed,
    EmbeddingUnavailable,
)
from noterag.rag.embedding_client import (
    EmbeddingClient,
    provider_of,
    required_env_var,
    validate_api_key,
)

_PATCH = "noterag.rag.embedding_client.litellm.embedding"


def _response(*vectors: list[float], with_index: bool = False) -> MagicMock:
    mock = MagicMock()
    if with_index:
        mock.data = [{"embedding": v, "index": i} for i, v in enumerate(vectors)]
    else:
        mock.data = [{"embedding": v} for v in vectors]
    return mock


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-key")
    return EmbeddingClient(EmbeddingCfg(dimensions=3, batch_size=2, num_retries=1))


# ------------------------------------------------------------------
# Provider / API key validation
# ------------------------------------------------------------------


@pytest.mark.parametrize("model,provider", [
    ("openai/text-embedding-3-small", "openai"),
    ("text-embedding-3-small", "openai"),
    ("cohere/embed-english-v3.0", "cohere"),
    ("Ollama/nomic-embed-text", "ollama"),
])
def test_provider_of(model, provider):
    assert provider_of(model) == provider


def test_required_env_var():
    assert required_env_var("openai/text-embedding-3-small") == "OPENAI_API_KEY"
    assert required_env_var("ollama/nomic-embed-text") is None
    assert required_env_var("acme/embedder") == "ACME_API_KEY"


def test_validate_api_key_raises_if_missing(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(EmbeddingUnavailable, match="OPENAI_API_KEY") as exc_info:
        validate_api_key("openai/text-embedding-3-small")
    assert exc_info.value.provider == "openai"
    assert exc_info.value.env_var == "OPENAI_API_KEY"


def test_validate_api_key_passes_if_set(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-key")
    validate_api_key("openai/text-embedding-3-small")  # should not raise


def test_validate_api_key_ollama_no_key_required():
    validate_api_key("ollama/nomic-embed-text")


# ------------------------------------------------------------------
# embed()
# ------------------------------------------------------------------


def test_embed_empty_input_makes_no_call(client):
    with patch(_PATCH) as mock_embed:
        assert client.embed([]) == []
    mock_embed.assert_not_called()


def test_embed_returns_vectors_in_order(client):
    with patch(_PATCH, return_value=_response([1, 0, 0], [0, 1, 0])) as mock_embed:
        vectors = client.embed(["a", "b"])
    assert vectors == [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]]
    mock_embed.assert_called_once_with(
        model="openai/text-embedding-3-small", input=["a", "b"], num_retries=1
    )


def test_embed_batches_requests(client):
    responses = [_response([1, 0, 0], [0, 1, 0]), _response([0, 0, 1])]
    with patch(_PATCH, side_effect=responses) as mock_embed:
        vectors = client.embed(["a", "b", "c"])
    assert len(vectors) == 3
    assert mock_embed.call_count == 2
    assert mock_embed.call_args_list[1].kwargs["input"] == ["c"]


def test_embed_reorders_by_index(client):
    response = _response([1, 0, 0], [0, 1, 0], with_index=True)
    response.data.reverse()
    with patch(_PATCH, return_value=response):
        vectors = client.embed(["a", "b"])
    assert vectors[0] == [1.0, 0.0, 0.0]


def test_embed_one(client):
    with patch(_PATCH, return_value=_response([0.5, 0.5, 0.0])):
        assert client.embed_one("query") == [0.5, 0.5, 0.0]


def test_embed_missing_key_raises_before_request(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    client = EmbeddingClient(EmbeddingCfg(dimensions=3))
    with patch(_PATCH) as mock_embed:
        with pytest.raises(EmbeddingUnavailable):
            client.embed(["text"])
    mock_embed.assert_not_called()


def test_embed_transport_error_is_wrapped(client):
    with patch(_PATCH, side_effect=ConnectionError("network down")):
        with pytest.raises(EmbeddingRequestFailed, match="network down"):
            client.embed(["a"])


def test_embed_wrong_count_is_malformed(client):
    with patch(_PATCH, return_value=_response([1, 0, 0])):
        with pytest.raises(EmbeddingRequestFailed, match="expected 2"):
            client.embed(["a", "b"])


def test_embed_non_numeric_vector_is_malformed(client):
    with patch(_PATCH, return_value=_response(["x", "y", "z"])):
        with pytest.raises(EmbeddingRequestFailed):
            client.embed(["a"])


def test_embed_dimension_mismatch(client):
    with patch(_PATCH, return_value=_response([1, 0, 0, 0])):
        with pytest.raises(EmbeddingDimensionMismatch) as exc_info:
            client.embed(["a"])
    assert (exc_info.value.expected, exc_info.value.actual) == (3, 4)


def test_properties(client):
    assert client.model == "openai/text-embedding-3-small"
    assert client.dimensions == 3
