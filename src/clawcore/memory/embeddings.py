"""
Text embeddings and similarity.

Embedding generation goes through LiteLLM so the provider is a config string.
"""

import math
from collections.abc import Sequence
from typing import Protocol, runtime_checkable

import litellm
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..utils.logging import get_logger

logger = get_logger(__name__)

# litellm maps provider errors onto its own openai-derived exception classes
TRANSIENT_ERRORS = (
    litellm.Timeout,
    litellm.APIConnectionError,
    litellm.RateLimitError,
    litellm.ServiceUnavailableError,
)


@runtime_checkable
class Embedder(Protocol):
    """Anything that turns text into a fixed-length vector."""

    async def embed(self, text: str) -> list[float]: ...


class LiteLLMEmbedder:
    """
    Embedder backed by ``litellm.aembedding``.

    Example:
        embedder = LiteLLMEmbedder(model="gemini/text-embedding-004", api_key=key)
        vector = await embedder.embed("the user prefers tea")
    """

    def __init__(self, model: str = "gemini/text-embedding-004", api_key: str | None = None, timeout: int = 60):
        self.model = model
        self.api_key = api_key
        self.timeout = timeout

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        reraise=True,
    )
    async def embed(self, text: str) -> list[float]:
        kwargs = {"model": self.model, "input": [text], "timeout": self.timeout}
        if self.api_key:
            kwargs["api_key"] = self.api_key

        response = await litellm.aembedding(**kwargs)
        data = response.data[0]
        vector = data["embedding"] if isinstance(data, dict) else data.embedding
        logger.debug("embedding_generated", model=self.model, dimensions=len(vector))
        return list(vector)


def cosine_similarity(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors.

    Returns 0.0 for mismatched lengths or when either vector has zero norm.
    """
    if len(vec_a) != len(vec_b) or not vec_a:
        return 0.0

    dot = sum(a * b for a, b in zip(vec_a, vec_b))
    norm_a = math.sqrt(sum(a * a for a in vec_a))
    norm_b = math.sqrt(sum(b * b for b in vec_b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (norm_a * norm_b)
