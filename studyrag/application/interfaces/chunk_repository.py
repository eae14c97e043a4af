"""Abstract repository interface (port) for material chunks and vector search."""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from studyrag.domain.entities import ChapterFilter, ContentType, MaterialChunk


@dataclass
class VectorSearchResult:
    """A single result from a vector similarity search."""

    chunk: MaterialChunk
    similarity: float  # cosine similarity, 1 - cosine distance
    material_title: str
    keyword_score: float | None = None


class ChunkRepository(ABC):
    """Port for chunk persistence and approximate nearest-neighbour search.

    Chunks are append-only: content and vectors are written once per chunk,
    the only later updates are embedding backfill and metadata enrichment.
    """

    @abstractmethod
    async def store_chunks(self, chunks: list[MaterialChunk]) -> list[MaterialChunk]:
        """Bulk-insert chunks (content and embedding together). Returns them with ids set."""
        ...

    @abstractmethod
    async def get_by_id(self, chunk_id: str) -> MaterialChunk | None:
        ...

    @abstractmethod
    async def get_by_material(self, material_id: str) -> list[MaterialChunk]:
        """All chunks of a material ordered by chunk_index."""
        ...

    @abstractmethod
    async def get_by_materials(
        self,
        material_ids: list[str],
        *,
        require_embedding: bool = False,
        min_length: int = 0,
    ) -> list[MaterialChunk]:
        """Chunks of several materials, ordered by material creation then chunk_index.

        ``min_length`` keeps only chunks whose content is longer than that
        many characters.
        """
        ...

    @abstractmethod
    async def get_neighbors(
        self, material_id: str, chunk_index: int, window: int
    ) -> list[MaterialChunk]:
        """Chunks whose index lies within ``window`` of ``chunk_index`` (the chunk excluded)."""
        ...

    @abstractmethod
    async def search_similar(
        self,
        query_embedding: list[float],
        *,
        material_ids: list[str] | None = None,
        content_types: list[ContentType] | None = None,
        chapter_filter: list[ChapterFilter] | None = None,
        limit: int = 10,
        min_similarity: float | None = None,
        exclude_chunk_ids: list[str] | None = None,
    ) -> list[VectorSearchResult]:
        """Find chunks most similar to the query embedding.

        Args:
            query_embedding: The query vector.
            material_ids: Restrict to these materials (``None`` means all).
            content_types: Restrict to these content types.
            chapter_filter: Per-material allowed chapter numbers, applied before ranking.
            limit: Maximum number of results.
            min_similarity: Drop results below this cosine similarity.
            exclude_chunk_ids: Chunks never to return (e.g. the probe chunk).

        Returns:
            Results ordered by descending similarity, ties broken by material
            creation order then chunk_index. Chunks without an embedding are
            never returned.
        """
        ...

    @abstractmethod
    async def search_hybrid(
        self,
        query_text: str,
        query_embedding: list[float],
        *,
        material_ids: list[str] | None = None,
        chapter_filter: list[ChapterFilter] | None = None,
        limit: int = 10,
        keyword_weight: float = 0.3,
    ) -> list[VectorSearchResult]:
        """Rank by ``keyword_weight * keyword_rank + (1 - keyword_weight) * similarity``."""
        ...

    @abstractmethod
    async def update_embeddings(self, embeddings: dict[str, list[float]]) -> int:
        """Backfill vectors for existing chunks. Returns the number of rows updated."""
        ...

    @abstractmethod
    async def delete_by_material(self, material_id: str) -> int:
        """Delete all chunks for a material. Returns count of deleted rows."""
        ...

    @abstractmethod
    async def count_embedded(self, material_id: str) -> int:
        """Number of chunks of a material that carry an embedding."""
        ...
