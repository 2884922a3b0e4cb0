# embeddings.py
"""Embedding providers and cosine similarity.

A provider turns a non-empty text into a fixed-length vector through
``await provider.embed(text)``.  Two implementations are shipped:

* :class:`OpenAIEmbeddingClient` calls an OpenAI-compatible
  ``/embeddings`` endpoint over aiohttp, retrying transient failures
  with tenacity.
* :class:`HashingEmbedder` runs offline using scikit-learn's
  ``HashingVectorizer``; useful for tests and air-gapped installs.

Both refuse blank input with :class:`~errors.EmbeddingUnavailable` and
reject vectors whose length differs from earlier ones with
:class:`~errors.DimensionMismatch`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

import aiohttp
import numpy as np
from sklearn.feature_extraction.text import HashingVectorizer
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from .config import Settings
from .errors import DimensionMismatch, EmbeddingProviderError, EmbeddingUnavailable

logger = logging.getLogger(__name__)

OPENAI_API_BASE = "https://api.openai.com/v1"
DEFAULT_MODEL = "text-embedding-3-small"
TRANSIENT_STATUSES = {408, 429, 500, 502, 503, 504}


def cosine_similarity(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
    """Cosine of the angle between two vectors.

    Returns 0.0 when either vector has zero norm.

    Raises
    ------
    DimensionMismatch
        If the vectors differ in length.
    """
    a = np.asarray(vec_a, dtype=float)
    b = np.asarray(vec_b, dtype=float)
    if a.shape != b.shape:
        raise DimensionMismatch(a.size, b.size)

    norm_a = float(np.linalg.norm(a))
    norm_b = float(np.linalg.norm(b))
    if norm_a == 0 or norm_b == 0:
        return 0.0

    score = float(np.dot(a, b)) / (norm_a * norm_b)
    return max(-1.0, min(1.0, score))


class EmbeddingProvider:
    """Base class for embedding providers."""

    def __init__(self):
        self.dimension: Optional[int] = None

    async def embed(self, text: str) -> List[float]:
        raise NotImplementedError

    async def close(self) -> None:
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    @staticmethod
    def _clean(text: Optional[str]) -> str:
        clean = (text or "").strip()
        if not clean:
            raise EmbeddingUnavailable("Cannot embed an empty text")
        return clean

    def _check_dimension(self, vector: List[float]) -> List[float]:
        if self.dimension is None:
            self.dimension = len(vector)
        elif len(vector) != self.dimension:
            raise DimensionMismatch(self.dimension, len(vector))
        return vector


class TransientEmbeddingError(Exception):
    """Retryable upstream status (rate limit, 5xx)."""

    def __init__(self, status: int, body: str = ""):
        super().__init__(f"HTTP {status}: {body[:200]}")
        self.status = status


class OpenAIEmbeddingClient(EmbeddingProvider):
    """Embedding client for OpenAI-compatible ``/embeddings`` endpoints."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        model: str = DEFAULT_MODEL,
        api_base: str = OPENAI_API_BASE,
        timeout: float = 30.0,
        max_attempts: int = 3,
        backoff_initial: float = 1.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        super().__init__()
        self.api_key = api_key
        self.model = model
        self.url = api_base.rstrip("/") + "/embeddings"
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.backoff_initial = backoff_initial
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def _request(self, text: str) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        session = self._get_session()
        async with session.post(
            self.url,
            json={"model": self.model, "input": text},
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=self.timeout),
        ) as resp:
            if resp.status in TRANSIENT_STATUSES:
                raise TransientEmbeddingError(resp.status, await resp.text())
            if resp.status >= 400:
                body = await resp.text()
                logger.error(f"Embedding request rejected: HTTP {resp.status} {body[:200]}")
                raise EmbeddingProviderError(f"Embedding request rejected: HTTP {resp.status}")
            try:
                return await resp.json(content_type=None)
            except ValueError as e:
                raise EmbeddingProviderError("Invalid embedding response", e) from e

    @staticmethod
    def _parse(data: Any) -> List[float]:
        try:
            embedding = data["data"][0]["embedding"]
        except (KeyError, IndexError, TypeError) as e:
            raise EmbeddingProviderError("Invalid embedding response", e) from e
        if not isinstance(embedding, list) or not embedding:
            raise EmbeddingProviderError("Invalid embedding response")
        try:
            return [float(x) for x in embedding]
        except (TypeError, ValueError) as e:
            raise EmbeddingProviderError("Invalid embedding response", e) from e

    async def embed(self, text: str) -> List[float]:
        clean = self._clean(text)
        retrying = AsyncRetrying(
            wait=wait_exponential_jitter(
                initial=self.backoff_initial, max=30, jitter=self.backoff_initial
            ),
            stop=stop_after_attempt(self.max_attempts),
            retry=retry_if_exception_type(
                (aiohttp.ClientError, asyncio.TimeoutError, TransientEmbeddingError)
            ),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    data = await self._request(clean)
        except (aiohttp.ClientError, asyncio.TimeoutError, TransientEmbeddingError) as e:
            logger.error(f"Embedding request failed after {self.max_attempts} attempts: {e}")
            raise EmbeddingProviderError(f"Embedding provider failed: {e}", e) from e
        return self._check_dimension(self._parse(data))


class HashingEmbedder(EmbeddingProvider):
    """Offline embedder based on feature hashing of word uni- and bigrams."""

    def __init__(self, n_features: int = 1024):
        super().__init__()
        self.vectorizer = HashingVectorizer(
            n_features=n_features,
            stop_words="english",
            ngram_range=(1, 2),
            alternate_sign=False,
            norm="l2",
        )

    async def embed(self, text: str) -> List[float]:
        clean = self._clean(text)
        vector = self.vectorizer.transform([clean]).toarray()[0]
        return self._check_dimension(vector.tolist())


def get_embedder(settings: Settings) -> EmbeddingProvider:
    """Build the embedding provider selected in the configuration."""
    provider = (settings.embedding_provider or "").lower()
    if provider == "hashing":
        return HashingEmbedder(n_features=settings.hashing_dimensions)
    if provider == "openai":
        if not settings.embedding_api_key:
            logger.warning("No embedding API key configured; requests may be rejected")
        return OpenAIEmbeddingClient(
            settings.embedding_api_key,
            model=settings.embedding_model,
            api_base=settings.embedding_api_base,
            timeout=settings.embedding_timeout,
            max_attempts=settings.embedding_max_attempts,
            backoff_initial=settings.embedding_backoff_initial,
        )
    raise ValueError(f"Unknown embedding provider: {settings.embedding_provider}")
