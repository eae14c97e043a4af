"""Retrieval service — ranked semantic search over stored material chunks.

Resolves a RetrievalScope to material ids, embeds the query and asks the
ChunkRepository for nearest neighbours. Chapter filters are hard filters
applied inside the store before ranking.
"""

import logging

from studyrag.application.interfaces.chunk_repository import ChunkRepository, VectorSearchResult
from studyrag.application.interfaces.material_repository import MaterialRepository
from studyrag.application.services.embedding_service import EmbeddingService
from studyrag.domain.entities import (
    ChapterFilter,
    ChunkContext,
    ContentType,
    RetrievalResult,
    RetrievalScope,
)
from studyrag.domain.exceptions import EntityNotFoundError, InvalidInputError

logger = logging.getLogger(__name__)


def _to_result(hit: VectorSearchResult) -> RetrievalResult:
    return RetrievalResult(
        chunk=hit.chunk,
        similarity=hit.similarity,
        material_title=hit.material_title,
        keyword_score=hit.keyword_score,
    )


class RetrievalService:
    """Application service answering similarity queries within a scope."""

    def __init__(
        self,
        chunk_repo: ChunkRepository,
        material_repo: MaterialRepository,
        embedding_service: EmbeddingService,
        *,
        default_top_k: int = 10,
        hint_top_k: int = 5,
        hint_similarity_threshold: float = 0.4,
        hybrid_keyword_weight: float = 0.3,
        similar_chunk_threshold: float = 0.85,
        context_window: int = 2,
    ):
        self._chunks = chunk_repo
        self._materials = material_repo
        self._embedder = embedding_service
        self._default_top_k = default_top_k
        self._hint_top_k = hint_top_k
        self._hint_threshold = hint_similarity_threshold
        self._keyword_weight = hybrid_keyword_weight
        self._similar_threshold = similar_chunk_threshold
        self._context_window = context_window

    async def resolve_scope(self, scope: RetrievalScope | None) -> list[str] | None:
        """Material ids a scope covers; ``None`` means every material.

        Explicit material ids come first, followed by section-derived ids,
        without duplicates.
        """
        if scope is None or scope.is_unrestricted:
            return None

        material_ids: list[str] = list(scope.material_ids or [])
        if scope.section_ids:
            material_ids.extend(
                await self._materials.get_material_ids_for_sections(scope.section_ids)
            )
        return list(dict.fromkeys(material_ids))

    async def retrieve(
        self,
        query_text: str,
        scope: RetrievalScope | None = None,
        top_k: int | None = None,
        similarity_threshold: float | None = None,
        chapter_filter: list[ChapterFilter] | None = None,
        content_types: list[ContentType] | None = None,
    ) -> list[RetrievalResult]:
        """Rank chunks in ``scope`` by cosine similarity to ``query_text``.

        Returns an empty list when the scope resolves to no materials or no
        chunk clears ``similarity_threshold``.
        """
        query = self._validate_query(query_text)
        limit = self._validate_top_k(self._default_top_k if top_k is None else top_k)

        material_ids = await self.resolve_scope(scope)
        if material_ids is not None and not material_ids:
            logger.debug("Empty retrieval scope, skipping search")
            return []

        query_embedding = await self._embedder.embed_query(query)
        hits = await self._chunks.search_similar(
            query_embedding,
            material_ids=material_ids,
            content_types=content_types,
            chapter_filter=chapter_filter,
            limit=limit,
            min_similarity=similarity_threshold,
        )
        logger.info(
            "Retrieved %d chunks (top_k=%d, threshold=%s, materials=%s)",
            len(hits),
            limit,
            similarity_threshold,
            "all" if material_ids is None else len(material_ids),
        )
        return [_to_result(hit) for hit in hits]

    async def hint(self, query_text: str, scope: RetrievalScope | None = None) -> list[RetrievalResult]:
        """Small, loosely-thresholded lookup used for interactive hints."""
        return await self.retrieve(
            query_text,
            scope,
            top_k=self._hint_top_k,
            similarity_threshold=self._hint_threshold,
        )

    async def hybrid_search(
        self,
        query_text: str,
        scope: RetrievalScope | None = None,
        top_k: int | None = None,
        chapter_filter: list[ChapterFilter] | None = None,
        keyword_weight: float | None = None,
    ) -> list[RetrievalResult]:
        """Blend full-text keyword rank with semantic similarity."""
        query = self._validate_query(query_text)
        limit = self._validate_top_k(self._default_top_k if top_k is None else top_k)
        weight = self._keyword_weight if keyword_weight is None else keyword_weight
        if not 0 <= weight <= 1:
            raise InvalidInputError("keyword_weight must be between 0 and 1")

        material_ids = await self.resolve_scope(scope)
        if material_ids is not None and not material_ids:
            return []

        query_embedding = await self._embedder.embed_query(query)
        hits = await self._chunks.search_hybrid(
            query,
            query_embedding,
            material_ids=material_ids,
            chapter_filter=chapter_filter,
            limit=limit,
            keyword_weight=weight,
        )
        return [_to_result(hit) for hit in hits]

    async def find_similar_chunks(
        self,
        chunk_id: str,
        top_k: int = 5,
        similarity_threshold: float | None = None,
        scope: RetrievalScope | None = None,
    ) -> list[RetrievalResult]:
        """Chunks close to an existing chunk, excluding the chunk itself."""
        chunk = await self._chunks.get_by_id(chunk_id)
        if chunk is None:
            raise EntityNotFoundError("MaterialChunk", chunk_id)
        if not chunk.is_embedded:
            return []

        material_ids = await self.resolve_scope(scope)
        if material_ids is not None and not material_ids:
            return []

        threshold = self._similar_threshold if similarity_threshold is None else similarity_threshold
        hits = await self._chunks.search_similar(
            chunk.embedding,
            material_ids=material_ids,
            limit=self._validate_top_k(top_k),
            min_similarity=threshold,
            exclude_chunk_ids=[chunk_id],
        )
        return [_to_result(hit) for hit in hits]

    async def get_chunk_context(self, chunk_id: str, window: int | None = None) -> ChunkContext:
        """A chunk with up to ``window`` neighbours on each side."""
        chunk = await self._chunks.get_by_id(chunk_id)
        if chunk is None:
            raise EntityNotFoundError("MaterialChunk", chunk_id)

        size = self._context_window if window is None else max(0, window)
        neighbours = await self._chunks.get_neighbors(chunk.material_id, chunk.chunk_index, size)
        return ChunkContext(
            chunk=chunk,
            before=[c for c in neighbours if c.chunk_index < chunk.chunk_index],
            after=[c for c in neighbours if c.chunk_index > chunk.chunk_index],
        )

    @staticmethod
    def _validate_query(query_text: str) -> str:
        query = (query_text or "").strip()
        if not query:
            raise InvalidInputError("Query text must not be empty")
        return query

    @staticmethod
    def _validate_top_k(top_k: int) -> int:
        if top_k <= 0:
            raise InvalidInputError("top_k must be a positive integer")
        return top_k
