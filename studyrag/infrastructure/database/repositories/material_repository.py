"""SQLAlchemy implementation of MaterialRepository."""

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from studyrag.application.interfaces import MaterialRepository
from studyrag.domain.entities import Material, MaterialChunk, MaterialType
from studyrag.infrastructure.database.models.chunk_models import MaterialChunkModel
from studyrag.infrastructure.database.models.material_models import MaterialModel, SectionFileModel
from studyrag.infrastructure.database.repositories.chunk_repository import PgChunkRepository

logger = logging.getLogger(__name__)


class SQLAlchemyMaterialRepository(MaterialRepository):
    """Concrete material repository backed by PostgreSQL via SQLAlchemy."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def create_with_chunks(
        self,
        material: Material,
        chunks: list[MaterialChunk],
        section_id: str | None = None,
    ) -> Material:
        """Insert the material, its chunks and the section link inside a savepoint.

        A failure rolls back to the savepoint only, so materials ingested
        earlier in the same request are kept.
        """
        if not material.id:
            material.id = str(uuid.uuid4())

        async with self._session.begin_nested():
            self._session.add(self._to_model(material))
            await self._session.flush()

            for chunk in chunks:
                chunk.material_id = material.id
            chunk_models = [PgChunkRepository._to_model(chunk) for chunk in chunks]
            self._session.add_all(chunk_models)
            await self._session.flush()

            if section_id:
                await self._session.merge(
                    SectionFileModel(section_id=section_id, material_id=material.id)
                )
                await self._session.flush()

        for chunk, model in zip(chunks, chunk_models, strict=True):
            chunk.id = model.id
        logger.info("Created material %s with %d chunks", material.id, len(chunks))
        return material

    async def get_by_id(self, material_id: str) -> Material | None:
        result = await self._session.execute(
            select(MaterialModel).where(MaterialModel.id == material_id)
        )
        model = result.scalar_one_or_none()
        return self._to_domain(model) if model else None

    async def get_many(self, material_ids: list[str]) -> list[Material]:
        if not material_ids:
            return []
        result = await self._session.execute(
            select(MaterialModel)
            .where(MaterialModel.id.in_(material_ids))
            .order_by(MaterialModel.created_at, MaterialModel.id)
        )
        return [self._to_domain(m) for m in result.scalars().all()]

    async def list_materials(self, skip: int = 0, limit: int = 100) -> list[Material]:
        result = await self._session.execute(
            select(MaterialModel)
            .order_by(MaterialModel.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return [self._to_domain(m) for m in result.scalars().all()]

    async def update(self, material: Material) -> Material:
        result = await self._session.execute(
            select(MaterialModel).where(MaterialModel.id == material.id)
        )
        model = result.scalar_one_or_none()
        if model is None:
            raise ValueError(f"Material with id {material.id} not found")

        model.title = material.title
        model.type = material.type.value
        model.total_chunks = material.total_chunks
        model.has_math = material.has_math
        model.metadata_ = dict(material.metadata)
        material.updated_at = datetime.now(timezone.utc)
        model.updated_at = material.updated_at

        await self._session.flush()
        return material

    async def delete(self, material_id: str) -> bool:
        """Delete the material, its chunks and section links in one savepoint."""
        async with self._session.begin_nested():
            await self._session.execute(
                delete(MaterialChunkModel).where(MaterialChunkModel.material_id == material_id)
            )
            await self._session.execute(
                delete(SectionFileModel).where(SectionFileModel.material_id == material_id)
            )
            result = await self._session.execute(
                delete(MaterialModel).where(MaterialModel.id == material_id)
            )
        return result.rowcount > 0

    async def link_to_section(self, material_id: str, section_id: str) -> None:
        await self._session.merge(SectionFileModel(section_id=section_id, material_id=material_id))
        await self._session.flush()

    async def get_material_ids_for_sections(self, section_ids: list[str]) -> list[str]:
        if not section_ids:
            return []
        linked = select(SectionFileModel.material_id).where(
            SectionFileModel.section_id.in_(section_ids)
        )
        result = await self._session.execute(
            select(MaterialModel.id)
            .where(MaterialModel.id.in_(linked))
            .order_by(MaterialModel.created_at, MaterialModel.id)
        )
        return list(result.scalars().all())

    # ── Mapping ──────────────────────────────────────────────────────

    @staticmethod
    def _to_model(material: Material) -> MaterialModel:
        return MaterialModel(
            id=material.id,
            title=material.title,
            file_name=material.file_name,
            type=material.type.value,
            total_chunks=material.total_chunks,
            has_math=material.has_math,
            metadata_=dict(material.metadata),
            created_at=material.created_at,
            updated_at=material.updated_at,
        )

    @staticmethod
    def _to_domain(model: MaterialModel) -> Material:
        return Material(
            id=model.id,
            title=model.title,
            file_name=model.file_name,
            type=MaterialType(model.type),
            total_chunks=model.total_chunks,
            has_math=model.has_math,
            metadata=dict(model.metadata_ or {}),
            created_at=model.created_at,
            updated_at=model.updated_at,
        )
