"""Embedding service — turns chunk texts into vectors via the EmbeddingProvider.

Coordinates:
1. Truncating texts to a safe per-text token limit
2. Packing texts into batches bounded by count and estimated tokens
3. Running batches concurrently (bounded) under the shared RetryPolicy
4. Falling back to text-by-text calls for a batch that keeps failing

Results are always reassembled in input order; a text whose embedding
ultimately fails yields ``None`` instead of aborting the whole run.
"""

import asyncio
import logging
import math
import time

from studyrag.application.interfaces.embedding_provider import EmbeddingProvider
from studyrag.application.retry_policy import RetryPolicy
from studyrag.application.services.content_analysis import (
    estimate_token_count,
    truncate_to_token_limit,
)
from studyrag.domain.exceptions import EmbeddingProviderError, ProviderError

logger = logging.getLogger(__name__)

# ── Batching constants ──────────────────────────────────────────────
_DEFAULT_BATCH_SIZE = 100  # Max texts per embedding API call
_DEFAULT_MAX_TOKENS_PER_BATCH = 250_000  # Provider limit is 300k per request
_SAFE_TOKENS_PER_TEXT = 6000  # vs 8191 max, margin for tokenizer variance


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity of two vectors; 0.0 for empty, zero or mismatched vectors."""
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


class EmbeddingService:
    """Application service for generating document and query embeddings."""

    def __init__(
        self,
        embedding_provider: EmbeddingProvider,
        retry_policy: RetryPolicy | None = None,
        *,
        batch_size: int = _DEFAULT_BATCH_SIZE,
        max_tokens_per_batch: int = _DEFAULT_MAX_TOKENS_PER_BATCH,
        concurrency: int = 3,
    ):
        self._provider = embedding_provider
        self._retry = retry_policy or RetryPolicy()
        self._batch_size = max(1, batch_size)
        self._max_tokens_per_batch = max(1, max_tokens_per_batch)
        self._concurrency = max(1, concurrency)

    @property
    def dimensions(self) -> int:
        return self._provider.dimensions

    async def embed_texts(self, texts: list[str]) -> list[list[float] | None]:
        """Embed document texts, preserving order.

        Returns:
            One entry per input text: its vector, or ``None`` when every
            attempt for that text failed.
        """
        if not texts:
            return []

        start = time.monotonic()
        prepared = [truncate_to_token_limit(t, _SAFE_TOKENS_PER_TEXT) for t in texts]
        batches = self._build_batches(prepared)
        results: list[list[float] | None] = [None] * len(texts)
        semaphore = asyncio.Semaphore(self._concurrency)

        async def _run(batch_no: int, indices: list[int]) -> None:
            async with semaphore:
                vectors = await self._embed_batch(batch_no, len(batches), [prepared[i] for i in indices])
            for index, vector in zip(indices, vectors, strict=True):
                results[index] = vector

        await asyncio.gather(*(_run(n, indices) for n, indices in enumerate(batches, start=1)))

        failed = sum(1 for r in results if r is None)
        logger.info(
            "Embedded %d/%d texts in %d batches (%dms)",
            len(texts) - failed,
            len(texts),
            len(batches),
            int((time.monotonic() - start) * 1000),
        )
        return results

    async def embed_query(self, text: str) -> list[float]:
        """Embed a search query. Raises once the retry policy is exhausted."""
        prepared = truncate_to_token_limit(text, _SAFE_TOKENS_PER_TEXT)
        vector = await self._retry.run(
            lambda: self._provider.generate_query_embedding(prepared),
            description="query embedding",
        )
        if not self._valid(vector):
            raise EmbeddingProviderError(
                provider="embedding",
                status_code=502,
                message=f"Query embedding has {len(vector or [])} dimensions, expected {self.dimensions}",
            )
        return vector

    # ── Internals ──

    def _build_batches(self, texts: list[str]) -> list[list[int]]:
        """Group text indices into batches bounded by size and estimated tokens."""
        batches: list[list[int]] = []
        current: list[int] = []
        current_tokens = 0
        for index, text in enumerate(texts):
            tokens = estimate_token_count(text)
            if current and (
                len(current) >= self._batch_size
                or current_tokens + tokens > self._max_tokens_per_batch
            ):
                batches.append(current)
                current, current_tokens = [], 0
            current.append(index)
            current_tokens += tokens
        if current:
            batches.append(current)
        return batches

    async def _embed_batch(
        self, batch_no: int, total: int, texts: list[str]
    ) -> list[list[float] | None]:
        try:
            vectors = await self._retry.run(
                lambda: self._provider.generate_embeddings(texts),
                description=f"embedding batch {batch_no}/{total}",
            )
        except (ProviderError, asyncio.TimeoutError) as exc:
            if len(texts) == 1:
                logger.warning("Embedding failed for a single text: %s", exc)
                return [None]
            logger.warning(
                "Embedding batch %d/%d failed (%s); retrying %d texts individually",
                batch_no,
                total,
                exc,
                len(texts),
            )
            return [await self._embed_single(text) for text in texts]

        if len(vectors) != len(texts):
            logger.warning(
                "Embedding batch %d/%d returned %d vectors for %d texts",
                batch_no,
                total,
                len(vectors),
                len(texts),
            )
            return [await self._embed_single(text) for text in texts]
        return [v if self._valid(v) else None for v in vectors]

    async def _embed_single(self, text: str) -> list[float] | None:
        try:
            vectors = await self._retry.run(
                lambda: self._provider.generate_embeddings([text]),
                description="embedding single text",
            )
        except (ProviderError, asyncio.TimeoutError) as exc:
            logger.warning("Embedding failed for a single text: %s", exc)
            return None
        if len(vectors) != 1 or not self._valid(vectors[0]):
            return None
        return vectors[0]

    def _valid(self, vector: list[float] | None) -> bool:
        return bool(vector) and len(vector) == self.dimensions
