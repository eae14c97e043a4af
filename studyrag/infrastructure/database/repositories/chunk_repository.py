"""SQLAlchemy implementation of ChunkRepository — pgvector-powered vector search."""

import logging

from sqlalchemy import Integer, and_, delete, func, literal_column, or_, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession

from studyrag.application.interfaces.chunk_repository import ChunkRepository, VectorSearchResult
from studyrag.domain.entities import (
    ChapterFilter,
    ContentType,
    MaterialChunk,
    metadata_from_dict,
)
from studyrag.infrastructure.database.models.chunk_models import MaterialChunkModel
from studyrag.infrastructure.database.models.material_models import MaterialModel

logger = logging.getLogger(__name__)

_TS_CONFIG = "english"
# ts_rank normalization 32 maps the rank into [0, 1): rank / (rank + 1)
_TS_RANK_NORMALIZATION = 32


def _vector_literal(vector: list[float]) -> str:
    return f"[{','.join(str(float(v)) for v in vector)}]"


def _similarity(vector: list[float]):
    # 1 - (embedding <=> query_vector) gives cosine similarity
    return literal_column(
        f"1 - (material_chunks.embedding <=> '{_vector_literal(vector)}'::vector)"
    )


def _chapter_condition(chapter_filter: list[ChapterFilter] | None):
    """Restrict each listed material to its chapters; unlisted materials pass."""
    conditions = []
    chapter = MaterialChunkModel.metadata_["chapter"].astext.cast(Integer)
    for entry in chapter_filter or []:
        if not entry.chapters:
            continue
        conditions.append(
            or_(
                MaterialChunkModel.material_id != entry.material_id,
                and_(
                    MaterialChunkModel.metadata_.has_key("chapter"),
                    chapter.in_(entry.chapters),
                ),
            )
        )
    return and_(*conditions) if conditions else None


class PgChunkRepository(ChunkRepository):
    """Concrete chunk repository backed by PostgreSQL + pgvector."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def store_chunks(self, chunks: list[MaterialChunk]) -> list[MaterialChunk]:
        """Persist a batch of chunks, each row carrying content and embedding together."""
        if not chunks:
            return []

        models = [self._to_model(chunk) for chunk in chunks]
        self._session.add_all(models)
        await self._session.flush()

        for chunk, model in zip(chunks, models, strict=True):
            chunk.id = model.id
        logger.info("Stored %d chunks for material %s", len(models), chunks[0].material_id)
        return chunks

    async def get_by_id(self, chunk_id: str) -> MaterialChunk | None:
        result = await self._session.execute(
            select(MaterialChunkModel).where(MaterialChunkModel.id == chunk_id)
        )
        model = result.scalar_one_or_none()
        return self._to_domain(model) if model else None

    async def get_by_material(self, material_id: str) -> list[MaterialChunk]:
        result = await self._session.execute(
            select(MaterialChunkModel)
            .where(MaterialChunkModel.material_id == material_id)
            .order_by(MaterialChunkModel.chunk_index)
        )
        return [self._to_domain(m) for m in result.scalars().all()]

    async def get_by_materials(
        self,
        material_ids: list[str],
        *,
        require_embedding: bool = False,
        min_length: int = 0,
    ) -> list[MaterialChunk]:
        if not material_ids:
            return []

        query = (
            select(MaterialChunkModel)
            .join(MaterialModel, MaterialModel.id == MaterialChunkModel.material_id)
            .where(MaterialChunkModel.material_id.in_(material_ids))
        )
        if require_embedding:
            query = query.where(MaterialChunkModel.embedding.is_not(None))
        if min_length > 0:
            query = query.where(func.length(MaterialChunkModel.content) > min_length)

        query = query.order_by(MaterialModel.created_at, MaterialModel.id, MaterialChunkModel.chunk_index)
        result = await self._session.execute(query)
        return [self._to_domain(m) for m in result.scalars().all()]

    async def get_neighbors(
        self, material_id: str, chunk_index: int, window: int
    ) -> list[MaterialChunk]:
        result = await self._session.execute(
            select(MaterialChunkModel)
            .where(MaterialChunkModel.material_id == material_id)
            .where(MaterialChunkModel.chunk_index.between(chunk_index - window, chunk_index + window))
            .where(MaterialChunkModel.chunk_index != chunk_index)
            .order_by(MaterialChunkModel.chunk_index)
        )
        return [self._to_domain(m) for m in result.scalars().all()]

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
        """Find chunks most similar to the query embedding using cosine similarity.

        Joins with the materials table to return the material title and to
        break similarity ties by material creation order, then chunk_index.
        """
        if material_ids is not None and not material_ids:
            return []

        similarity = _similarity(query_embedding)
        query = self._filtered(
            select(MaterialChunkModel, MaterialModel.title, similarity.label("similarity")),
            material_ids=material_ids,
            content_types=content_types,
            chapter_filter=chapter_filter,
            exclude_chunk_ids=exclude_chunk_ids,
        )
        if min_similarity is not None:
            query = query.where(similarity >= min_similarity)

        query = query.order_by(
            text("similarity DESC"), MaterialModel.created_at, MaterialChunkModel.chunk_index
        ).limit(limit)

        result = await self._session.execute(query)
        return [
            VectorSearchResult(
                chunk=self._to_domain(row[0], with_embedding=False),
                similarity=float(row.similarity),
                material_title=row.title,
            )
            for row in result.all()
        ]

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
        """Blend full-text rank (ts_rank) with vector similarity."""
        if material_ids is not None and not material_ids:
            return []

        similarity = _similarity(query_embedding)
        keyword = func.ts_rank(
            func.to_tsvector(_TS_CONFIG, MaterialChunkModel.content),
            func.plainto_tsquery(_TS_CONFIG, query_text),
            _TS_RANK_NORMALIZATION,
        )
        score = (keyword * keyword_weight + similarity * (1 - keyword_weight)).label("score")

        query = self._filtered(
            select(
                MaterialChunkModel,
                MaterialModel.title,
                similarity.label("similarity"),
                keyword.label("keyword_score"),
                score,
            ),
            material_ids=material_ids,
            chapter_filter=chapter_filter,
        ).order_by(text("score DESC"), MaterialModel.created_at, MaterialChunkModel.chunk_index).limit(limit)

        result = await self._session.execute(query)
        return [
            VectorSearchResult(
                chunk=self._to_domain(row[0], with_embedding=False),
                similarity=float(row.similarity),
                material_title=row.title,
                keyword_score=float(row.keyword_score),
            )
            for row in result.all()
        ]

    async def update_embeddings(self, embeddings: dict[str, list[float]]) -> int:
        updated = 0
        for chunk_id, vector in embeddings.items():
            result = await self._session.execute(
                update(MaterialChunkModel)
                .where(MaterialChunkModel.id == chunk_id)
                .values(embedding=vector)
            )
            updated += result.rowcount
        await self._session.flush()
        logger.info("Backfilled embeddings for %d chunks", updated)
        return updated

    async def delete_by_material(self, material_id: str) -> int:
        """Delete all chunks belonging to a material."""
        result = await self._session.execute(
            delete(MaterialChunkModel).where(MaterialChunkModel.material_id == material_id)
        )
        count = result.rowcount
        if count > 0:
            logger.info("Deleted %d chunks for material %s", count, material_id)
        return count

    async def count_embedded(self, material_id: str) -> int:
        result = await self._session.execute(
            select(func.count())
            .select_from(MaterialChunkModel)
            .where(MaterialChunkModel.material_id == material_id)
            .where(MaterialChunkModel.embedding.is_not(None))
        )
        return int(result.scalar_one())

    # ── Helpers ──────────────────────────────────────────────────────

    @staticmethod
    def _filtered(
        query,
        *,
        material_ids: list[str] | None = None,
        content_types: list[ContentType] | None = None,
        chapter_filter: list[ChapterFilter] | None = None,
        exclude_chunk_ids: list[str] | None = None,
    ):
        query = (
            query.select_from(MaterialChunkModel)
            .join(MaterialModel, MaterialModel.id == MaterialChunkModel.material_id)
            .where(MaterialChunkModel.embedding.is_not(None))
        )
        if material_ids is not None:
            query = query.where(MaterialChunkModel.material_id.in_(material_ids))
        if content_types:
            query = query.where(
                MaterialChunkModel.content_type.in_([ContentType(t).value for t in content_types])
            )
        chapters = _chapter_condition(chapter_filter)
        if chapters is not None:
            query = query.where(chapters)
        if exclude_chunk_ids:
            query = query.where(MaterialChunkModel.id.not_in(exclude_chunk_ids))
        return query

    @staticmethod
    def _to_model(chunk: MaterialChunk) -> MaterialChunkModel:
        model = MaterialChunkModel(
            material_id=chunk.material_id,
            chunk_index=chunk.chunk_index,
            content=chunk.content,
            content_type=chunk.content_type.value,
            has_math=chunk.has_math,
            latex_content=chunk.latex_content,
            embedding=chunk.embedding if chunk.embedding else None,
            token_count=chunk.token_count,
            metadata_=chunk.metadata.to_dict(),
        )
        if chunk.id:
            model.id = chunk.id
        return model

    @staticmethod
    def _to_domain(model: MaterialChunkModel, with_embedding: bool = True) -> MaterialChunk:
        embedding = None
        if with_embedding and model.embedding is not None:
            embedding = [float(v) for v in model.embedding]
        return MaterialChunk(
            id=model.id,
            material_id=model.material_id,
            chunk_index=model.chunk_index,
            content=model.content,
            content_type=ContentType(model.content_type),
            has_math=model.has_math,
            latex_content=model.latex_content,
            embedding=embedding,
            token_count=model.token_count,
            metadata=metadata_from_dict(model.metadata_),
            created_at=model.created_at,
        )
