"""Materials API controller — upload, inspect, search and analyse study materials."""

import logging

from fastapi import APIRouter, Depends, Form, HTTPException, Query, UploadFile, status

from studyrag.application.schemas.materials import (
    ChunkSchema,
    IngestionResultSchema,
    IngestionWarningSchema,
    MaterialSchema,
    ReembedResultSchema,
    UploadResultSchema,
)
from studyrag.application.schemas.retrieval import (
    ChapterSummarySchema,
    ChunkContextSchema,
    HintRequest,
    MaterialStructureSchema,
    SearchRequest,
    SearchResponseSchema,
    SearchResultSchema,
    SectionStructureSchema,
    TopicSummarySchema,
)
from studyrag.application.services import IngestionService, RetrievalService, StructureAnalyzer
from studyrag.config import get_settings
from studyrag.domain.entities import (
    IngestionResult,
    IngestionStatus,
    Material,
    MaterialChunk,
    MaterialType,
    RetrievalResult,
    SectionStructure,
    UploadedDocument,
)
from studyrag.infrastructure.dependencies import (
    get_ingestion_service,
    get_retrieval_service,
    get_structure_analyzer,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/materials", tags=["materials"])


# ── Helpers ──────────────────────────────────────────────────────────

def _to_material(material: Material) -> MaterialSchema:
    return MaterialSchema(
        id=material.id,
        title=material.title,
        file_name=material.file_name,
        type=material.type.value,
        total_chunks=material.total_chunks,
        stored_chunks=material.stored_chunks,
        has_math=material.has_math,
        metadata=material.metadata,
        created_at=material.created_at.isoformat(),
        updated_at=material.updated_at.isoformat(),
    )


def _to_chunk(chunk: MaterialChunk) -> ChunkSchema:
    return ChunkSchema(
        id=chunk.id,
        material_id=chunk.material_id,
        chunk_index=chunk.chunk_index,
        content=chunk.content,
        content_type=chunk.content_type.value,
        has_math=chunk.has_math,
        latex_content=chunk.latex_content,
        token_count=chunk.token_count,
        has_embedding=chunk.is_embedded,
        metadata=chunk.metadata.to_dict(),
    )


def _to_ingestion(result: IngestionResult) -> IngestionResultSchema:
    return IngestionResultSchema(
        file_name=result.file_name,
        status=result.status.value,
        material_id=result.material_id,
        chunks_created=result.chunks_created,
        embedded_chunks=result.embedded_chunks,
        is_stem=result.is_stem,
        stem_confidence=result.stem_confidence,
        total_characters=result.total_characters,
        estimated_tokens=result.estimated_tokens,
        warnings=[
            IngestionWarningSchema(type=w.type, message=w.message, suggestion=w.suggestion)
            for w in result.warnings
        ],
        error=result.error,
    )


def _to_search_result(result: RetrievalResult) -> SearchResultSchema:
    return SearchResultSchema(
        chunk_id=result.chunk.id,
        material_id=result.chunk.material_id,
        material_title=result.material_title,
        chunk_index=result.chunk.chunk_index,
        content=result.content,
        content_type=result.chunk.content_type.value,
        similarity=round(result.similarity, 4),
        keyword_score=result.keyword_score,
        metadata=result.chunk.metadata.to_dict(),
    )


def _to_search_response(results: list[RetrievalResult]) -> SearchResponseSchema:
    return SearchResponseSchema(
        results=[_to_search_result(r) for r in results],
        total_results=len(results),
    )


def _to_structure(structure: SectionStructure) -> SectionStructureSchema:
    return SectionStructureSchema(
        materials=[
            MaterialStructureSchema(
                material_id=m.material_id,
                title=m.title,
                file_name=m.file_name,
                total_chunks=m.total_chunks,
                has_chapters=m.has_chapters,
                chapters=[
                    ChapterSummarySchema(
                        number=c.number,
                        title=c.title,
                        chunk_count=c.chunk_count,
                        percentage=c.percentage,
                        topics=c.topics,
                    )
                    for c in m.chapters
                ],
                topic_summary=TopicSummarySchema(
                    total_chunks=m.topic_summary.total_chunks,
                    embedded_chunks=m.topic_summary.embedded_chunks,
                    estimated_clusters=m.topic_summary.estimated_clusters,
                    topics=m.topic_summary.topics,
                    message=m.topic_summary.message,
                )
                if m.topic_summary
                else None,
            )
            for m in structure.materials
        ],
        total_chunks=structure.total_chunks,
        materials_with_chapters=structure.materials_with_chapters,
        total_materials=structure.total_materials,
    )


# ── Upload ───────────────────────────────────────────────────────────

@router.post("", response_model=UploadResultSchema)
async def upload_materials(
    files: list[UploadFile],
    type: MaterialType = Form(MaterialType.CUSTOM),
    title: str | None = Form(None),
    section_id: str | None = Form(None),
    service: IngestionService = Depends(get_ingestion_service),
):
    """Upload one or more documents; each is extracted, chunked, embedded and stored."""
    if not files:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No files provided")

    max_bytes = get_settings().max_upload_size_mb * 1024 * 1024
    documents: list[UploadedDocument] = []
    for upload_file in files:
        content = await upload_file.read()
        if len(content) > max_bytes:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=f"'{upload_file.filename}' exceeds {get_settings().max_upload_size_mb} MB",
            )
        documents.append(
            UploadedDocument(
                file_name=upload_file.filename or "untitled",
                content=content,
                mime_type=upload_file.content_type,
            )
        )

    results = await service.ingest_files(documents, type, title, section_id)
    succeeded = sum(1 for r in results if r.status != IngestionStatus.ERROR)
    return UploadResultSchema(
        results=[_to_ingestion(r) for r in results],
        total_count=len(results),
        succeeded=succeeded,
        message=f"Processed {succeeded} of {len(results)} file(s)",
    )


# ── Search ───────────────────────────────────────────────────────────

@router.post("/search", response_model=SearchResponseSchema)
async def search_materials(
    body: SearchRequest,
    service: RetrievalService = Depends(get_retrieval_service),
):
    """Semantic (or hybrid keyword + semantic) search over material chunks."""
    chapter_filter = [f.to_entity() for f in body.chapter_filter] if body.chapter_filter else None
    if body.hybrid:
        results = await service.hybrid_search(
            body.query,
            body.scope.to_entity(),
            top_k=body.top_k,
            chapter_filter=chapter_filter,
            keyword_weight=body.keyword_weight,
        )
    else:
        results = await service.retrieve(
            body.query,
            body.scope.to_entity(),
            top_k=body.top_k,
            similarity_threshold=body.similarity_threshold,
            chapter_filter=chapter_filter,
            content_types=body.content_types,
        )
    return _to_search_response(results)


@router.post("/hint", response_model=SearchResponseSchema)
async def hint(
    body: HintRequest,
    service: RetrievalService = Depends(get_retrieval_service),
):
    """A few closely matching chunks for an interactive hint."""
    return _to_search_response(await service.hint(body.query, body.scope.to_entity()))


@router.get("/structure", response_model=SectionStructureSchema)
async def get_structure(
    section_id: str | None = Query(None),
    material_ids: list[str] | None = Query(None),
    analyzer: StructureAnalyzer = Depends(get_structure_analyzer),
):
    """Chapter/topic structure per material of a section or an explicit material list."""
    if section_id:
        structure = await analyzer.analyze_section(section_id)
    elif material_ids:
        structure = await analyzer.analyze_materials(material_ids)
    else:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Provide section_id or material_ids",
        )
    return _to_structure(structure)


@router.get("/chunks/{chunk_id}/context", response_model=ChunkContextSchema)
async def get_chunk_context(
    chunk_id: str,
    window: int | None = Query(None, ge=0, le=10),
    service: RetrievalService = Depends(get_retrieval_service),
):
    context = await service.get_chunk_context(chunk_id, window)
    return ChunkContextSchema(
        chunk_id=chunk_id,
        before=[c.content for c in context.before],
        content=context.chunk.content,
        after=[c.content for c in context.after],
        combined_content=context.combined_content,
    )


@router.get("/chunks/{chunk_id}/similar", response_model=SearchResponseSchema)
async def get_similar_chunks(
    chunk_id: str,
    top_k: int = Query(5, ge=1, le=50),
    service: RetrievalService = Depends(get_retrieval_service),
):
    return _to_search_response(await service.find_similar_chunks(chunk_id, top_k=top_k))


# ── Materials ────────────────────────────────────────────────────────

@router.get("", response_model=list[MaterialSchema])
async def list_materials(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    service: IngestionService = Depends(get_ingestion_service),
):
    materials = await service.list_materials(skip=skip, limit=limit)
    return [_to_material(m) for m in materials]


@router.get("/{material_id}", response_model=MaterialSchema)
async def get_material(
    material_id: str,
    service: IngestionService = Depends(get_ingestion_service),
):
    return _to_material(await service.get_material(material_id))


@router.get("/{material_id}/chunks", response_model=list[ChunkSchema])
async def get_material_chunks(
    material_id: str,
    service: IngestionService = Depends(get_ingestion_service),
):
    return [_to_chunk(c) for c in await service.get_chunks(material_id)]


@router.post("/{material_id}/reembed", response_model=ReembedResultSchema)
async def reembed_material(
    material_id: str,
    service: IngestionService = Depends(get_ingestion_service),
):
    """Backfill vectors for chunks that were stored without one."""
    result = await service.reembed_material(material_id)
    return ReembedResultSchema(
        material_id=result.material_id,
        updated=result.updated,
        still_missing=result.still_missing,
    )


@router.delete("/{material_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_material(
    material_id: str,
    service: IngestionService = Depends(get_ingestion_service),
):
    """Delete a material and all of its chunks."""
    await service.delete_material(material_id)
