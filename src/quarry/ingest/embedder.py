"""Embedding provider wrapper around litellm.

The knowledge store only needs one call: ``embed_many(texts)`` returning one
float32 vector per input text, in input order. Any provider failure, missing
API key or short response surfaces as EmbeddingError so callers can degrade
to lexical-only storage and search.
"""

from __future__ import annotations

import os
from collections.abc import Sequence
from typing import Protocol

import litellm
import numpy as np

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True

# Provider → env var mapping for API key validation
_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "voyage": "VOYAGE_API_KEY",
    "together_ai": "TOGETHERAI_API_KEY",
    "ollama": None,  # Local, no key required
}


class EmbeddingError(RuntimeError):
    """Raised when embeddings could not be produced for a batch."""


class Embedder(Protocol):
    """Anything that turns texts into vectors, preserving order and length."""

    model: str

    def embed_many(self, texts: Sequence[str]) -> list[np.ndarray]: ...


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Args:
        model: LiteLLM model string in 'provider/model' format.

    Raises:
        EmbeddingError: If the required key is missing from the environment.
    """
    provider = model.split("/")[0].lower() if "/" in model else "openai"
    env_var = _PROVIDER_ENV.get(provider)
    if env_var is None:
        return
    if not os.getenv(env_var):
        raise EmbeddingError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


class LiteLLMEmbedder:
    """Embed texts with ``litellm.embedding()``.

    Args:
        model: LiteLLM embedding model string (provider/model format).
        num_retries: Retries on transient errors (litellm's exponential backoff).
        batch_size: Maximum texts sent per provider call.
    """

    def __init__(self, model: str, num_retries: int = 3, batch_size: int = 96) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.model = model
        self.num_retries = num_retries
        self.batch_size = batch_size

    def embed_many(self, texts: Sequence[str]) -> list[np.ndarray]:
        """Return one float32 vector per text, in input order.

        Raises:
            EmbeddingError: On provider failure or a response whose length
                does not match the request.
        """
        if not texts:
            return []
        validate_api_key(self.model)

        vectors: list[np.ndarray] = []
        for start in range(0, len(texts), self.batch_size):
            batch = list(texts[start:start + self.batch_size])
            try:
                response = litellm.embedding(
                    model=self.model,
                    input=batch,
                    num_retries=self.num_retries,
                )
            except Exception as exc:
                raise EmbeddingError(f"Embedding call to '{self.model}' failed: {exc}") from exc

            data = list(response.data)
            if len(data) != len(batch):
                raise EmbeddingError(
                    f"Embedding provider returned {len(data)} vectors for {len(batch)} texts"
                )
            vectors.extend(np.asarray(item["embedding"], dtype=np.float32) for item in data)
        return vectors


def embed_one(embedder: Embedder, text: str) -> np.ndarray:
    """Embed a single text (e.g. a search query)."""
    vectors = embedder.embed_many([text])
    if len(vectors) != 1:
        raise EmbeddingError(f"Expected 1 vector, got {len(vectors)}")
    return vectors[0]
