"""LiteLLM embedding client with batching, retry, and API key validation.

Every embedding call in the pipeline (chunk vectorization and query
embedding) routes through :class:`EmbeddingClient`. LiteLLM's built-in retry
is used (``num_retries``, exponential backoff). Failures are normalized to the
noterag embedding error types so callers can leave chunks unvectorized.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Sequence

import litellm

from noterag.config import EmbeddingCfg
from noterag.errors import (
    EmbeddingDimensionMismatch,
    EmbeddingRequestFailed,
    EmbeddingUnavailable,
)

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "vertex_ai": None,  # Uses application default credentials
    "mistral": "MISTRAL_API_KEY",
    "voyage": "VOYAGE_API_KEY",
    "bedrock": None,  # Uses the AWS credential chain
    "ollama": None,  # Local, no key required
    "huggingface": "HUGGINGFACE_API_KEY",
}


def provider_of(model: str) -> str:
    """Return the LiteLLM provider prefix of *model* (bare names are OpenAI)."""
    return model.split("/")[0].lower() if "/" in model else "openai"


def required_env_var(model: str) -> str | None:
    """Return the env var holding the API key for *model*, or None if not needed."""
    provider = provider_of(model)
    return _PROVIDER_ENV.get(provider, f"{provider.upper()}_API_KEY")


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Raises:
        EmbeddingUnavailable: If the required key is missing from environment.
    """
    env_var = required_env_var(model)
    if env_var is None:
        return
    if not os.getenv(env_var):
        raise EmbeddingUnavailable(provider_of(model), env_var)


class EmbeddingClient:
    """Convert passage and query text into fixed-dimension vectors.

    Args:
        config: Embedding configuration (model, dimensions, batch size, retries).
    """

    def __init__(self, config: EmbeddingCfg | None = None) -> None:
        self._config = config or EmbeddingCfg()

    @property
    def model(self) -> str:
        return self._config.model

    @property
    def dimensions(self) -> int:
        return self._config.dimensions

    def check_credentials(self) -> None:
        """Raise :class:`EmbeddingUnavailable` if no API key is configured."""
        validate_api_key(self._config.model)

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed *texts*, returning vectors in the same order and count.

        Inputs are sent in batches of ``config.batch_size``.

        Raises:
            EmbeddingUnavailable: No API key for the provider.
            EmbeddingRequestFailed: Transport/remote error or malformed response.
            EmbeddingDimensionMismatch: A vector has the wrong length.
        """
        if not texts:
            return []
        self.check_credentials()

        vectors: list[list[float]] = []
        size = self._config.batch_size
        for offset in range(0, len(texts), size):
            batch = list(texts[offset: offset + size])
            vectors.extend(self._embed_batch(batch))
        return vectors

    def embed_one(self, text: str) -> list[float]:
        """Embed a single query string."""
        return self.embed([text])[0]

    def _embed_batch(self, batch: list[str]) -> list[list[float]]:
        try:
            response = litellm.embedding(
                model=self._config.model,
                input=batch,
                num_retries=self._config.num_retries,
            )
        except Exception as exc:
            raise EmbeddingRequestFailed(
                f"Embedding request to '{self._config.model}' failed: {exc}"
            ) from exc

        data = getattr(response, "data", None)
        if data is None or len(data) != len(batch):
            got = "no data" if data is None else f"{len(data)} vectors"
            raise EmbeddingRequestFailed(
                f"Malformed embedding response: expected {len(batch)} vectors, got {got}"
            )

        items = list(data)
        if all(_field(item, "index") is not None for item in items):
            items.sort(key=lambda item: _field(item, "index"))

        vectors: list[list[float]] = []
        for item in items:
            raw = _field(item, "embedding")
            try:
                vector = [float(v) for v in raw]
            except (TypeError, ValueError) as exc:
                raise EmbeddingRequestFailed("Malformed embedding vector in response") from exc
            if len(vector) != self._config.dimensions:
                raise EmbeddingDimensionMismatch(self._config.dimensions, len(vector))
            vectors.append(vector)

        logger.debug("Embedded %d texts with %s", len(batch), self._config.model)
        return vectors


def _field(item: object, name: str) -> object:
    """Read *name* from a dict-like or attribute-style response item."""
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)
