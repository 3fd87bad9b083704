"""
Embedder
========

Maps text to fixed-dimension vectors through an injected embedding capability.

The capability object is built once at process start and passed to the
Indexer and the search engine. Failures surface as ModelUnavailable after
retries; zero vectors are never substituted.
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import List, Optional

from openai import (
    AuthenticationError,
    BadRequestError,
    NotFoundError,
    OpenAI,
    OpenAIError,
    PermissionDeniedError,
)

from .config import EmbeddingConfig
from .errors import ModelUnavailable

logger = logging.getLogger(__name__)

# Errors another attempt with the same key and input cannot fix
PERMANENT_ERRORS = (AuthenticationError, PermissionDeniedError, BadRequestError, NotFoundError)


class EmbeddingModel(ABC):
    """Embedding capability: a pure function of text with a stable dimensionality."""

    @property
    @abstractmethod
    def dimensions(self) -> int:
        """Length of every vector this model returns."""

    @abstractmethod
    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Embed texts in order. Raises ModelUnavailable on failure."""


class OpenAIEmbeddingModel(EmbeddingModel):
    """
    OpenAI text-embedding-3-small, truncated server-side to the configured size.

    Cost: ~$0.00002 per 1K tokens
    Max tokens: 8191 per input
    """

    MODEL = "text-embedding-3-small"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = MODEL,
        dimensions: int = 384,
    ):
        self.api_key = api_key
        self.model = model
        self._dimensions = dimensions
        self._client = None
        self._total_tokens = 0

        if not self.api_key:
            logger.warning("OPENAI_API_KEY not set - semantic search will fall back to lexical matching")

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(api_key=self.api_key)
        return self._client

    @property
    def total_tokens(self) -> int:
        return self._total_tokens

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        if not self.api_key:
            raise ModelUnavailable("OpenAI API key required for embeddings", retryable=False)

        try:
            response = self.client.embeddings.create(
                model=self.model,
                input=texts,
                dimensions=self._dimensions,
            )
        except PERMANENT_ERRORS as e:
            raise ModelUnavailable(f"OpenAI embedding call rejected: {e}", retryable=False) from e
        except OpenAIError as e:
            raise ModelUnavailable(f"OpenAI embedding call failed: {e}") from e

        self._total_tokens += response.usage.total_tokens
        ordered = sorted(response.data, key=lambda d: d.index)
        return [list(d.embedding) for d in ordered]


class Embedder:
    """
    Batching, validating and retrying wrapper around an EmbeddingModel.

    embed_batch(texts) returns exactly what len(texts) calls to embed() would.
    """

    def __init__(
        self,
        model: EmbeddingModel,
        batch_size: int = 100,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        retry_max_delay: float = 30.0,
    ):
        self.model = model
        self.batch_size = batch_size
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay

        self._total_requests = 0
        self._total_texts = 0
        self._total_failures = 0

    @classmethod
    def from_config(cls, config: EmbeddingConfig) -> "Embedder":
        """Build the OpenAI-backed embedder described by config."""
        model = OpenAIEmbeddingModel(
            api_key=config.api_key,
            model=config.model,
            dimensions=config.dimensions,
        )
        return cls(
            model,
            batch_size=config.batch_size,
            max_retries=config.max_retries,
            retry_base_delay=config.retry_base_delay,
            retry_max_delay=config.retry_max_delay,
        )

    @property
    def dimensions(self) -> int:
        return self.model.dimensions

    def embed(self, text: str, max_retries: Optional[int] = None) -> List[float]:
        """
        Generate embedding for a single text.

        Args:
            text: Non-empty text
            max_retries: Override of the configured retry count for this call

        Raises:
            ValueError: If text is empty
            ModelUnavailable: If the capability fails after retries
        """
        return self.embed_batch([text], max_retries=max_retries)[0]

    def embed_batch(self, texts: List[str], max_retries: Optional[int] = None) -> List[List[float]]:
        """
        Generate embeddings for multiple texts, in order.

        Args:
            texts: Non-empty texts to embed
            max_retries: Override of the configured retry count for this call

        Returns:
            One vector per input text
        """
        for text in texts:
            if not text or not text.strip():
                raise ValueError("Cannot embed empty text")

        retries = self.max_retries if max_retries is None else max_retries
        vectors: List[List[float]] = []
        for i in range(0, len(texts), self.batch_size):
            batch = texts[i:i + self.batch_size]
            vectors.extend(self._embed_with_backoff(batch, retries))

        return vectors

    def _embed_with_backoff(self, batch: List[str], max_retries: int) -> List[List[float]]:
        last_error: Optional[ModelUnavailable] = None

        for attempt in range(max_retries + 1):
            try:
                vectors = self.model.embed_batch(batch)
                self._validate(vectors, len(batch))
                self._total_requests += 1
                self._total_texts += len(batch)
                logger.debug(f"Embedded batch of {len(batch)} texts")
                return vectors

            except ModelUnavailable as e:
                last_error = e
                self._total_failures += 1
                if not e.retryable:
                    raise
                if attempt < max_retries:
                    wait_time = min(self.retry_base_delay * (2 ** attempt), self.retry_max_delay)
                    logger.warning(
                        f"Embedding failed (attempt {attempt + 1}/{max_retries + 1}): {e}, "
                        f"retrying in {wait_time:.1f}s"
                    )
                    time.sleep(wait_time)

        raise ModelUnavailable(f"Embedding unavailable after {max_retries + 1} attempts: {last_error}")

    def _validate(self, vectors: List[List[float]], expected: int) -> None:
        if len(vectors) != expected:
            raise ModelUnavailable(f"Embedding model returned {len(vectors)} vectors for {expected} texts")
        for vector in vectors:
            if len(vector) != self.dimensions:
                raise ModelUnavailable(
                    f"Embedding model returned {len(vector)} dimensions, expected {self.dimensions}",
                    retryable=False,
                )

    @property
    def stats(self) -> dict:
        return {
            "requests": self._total_requests,
            "texts": self._total_texts,
            "failures": self._total_failures,
            "dimensions": self.dimensions,
        }
