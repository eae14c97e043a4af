"""Pydantic schemas for retrieval and structure API requests and responses."""

from typing import Any

from pydantic import BaseModel, Field

from studyrag.domain.entities import ChapterFilter, ContentType, RetrievalScope


# ── Request Schemas ──────────────────────────────────────────────────


class ChapterFilterSchema(BaseModel):
    """Allowed chapter numbers for one material."""

    material_id: str
    chapters: list[int] = []

    def to_entity(self) -> ChapterFilter:
        return ChapterFilter(material_id=self.material_id, chapters=list(self.chapters))


class ScopeSchema(BaseModel):
    """Materials a query may draw from. Omit both fields to search everything."""

    material_ids: list[str] | None = None
    section_ids: list[str] | None = None

    def to_entity(self) -> RetrievalScope:
        return RetrievalScope(material_ids=self.material_ids, section_ids=self.section_ids)


class SearchRequest(BaseModel):
    """Request body for semantic or hybrid search."""

    query: str = Field(..., min_length=1, description="Search text")
    scope: ScopeSchema = ScopeSchema()
    top_k: int | None = Field(default=None, ge=1, le=100)
    similarity_threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    chapter_filter: list[ChapterFilterSchema] | None = None
    content_types: list[ContentType] | None = None
    hybrid: bool = False
    keyword_weight: float | None = Field(default=None, ge=0.0, le=1.0)


class HintRequest(BaseModel):
    """Request body for a short interactive hint lookup."""

    query: str = Field(..., min_length=1)
    scope: ScopeSchema = ScopeSchema()


class StructureRequest(BaseModel):
    section_id: str | None = None
    material_ids: list[str] | None = None


# ── Response Schemas ─────────────────────────────────────────────────


class SearchResultSchema(BaseModel):
    """A single ranked chunk."""

    chunk_id: str
    material_id: str
    material_title: str
    chunk_index: int
    content: str
    content_type: str
    similarity: float
    keyword_score: float | None = None
    metadata: dict[str, Any] = {}


class SearchResponseSchema(BaseModel):
    results: list[SearchResultSchema] = []
    total_results: int = 0


class ChunkContextSchema(BaseModel):
    chunk_id: str
    before: list[str] = []
    content: str
    after: list[str] = []
    combined_content: str


class ChapterSummarySchema(BaseModel):
    number: int
    title: str
    chunk_count: int
    percentage: float
    topics: list[str] = []


class TopicSummarySchema(BaseModel):
    total_chunks: int
    embedded_chunks: int
    estimated_clusters: int
    topics: list[str] = []
    message: str


class MaterialStructureSchema(BaseModel):
    material_id: str
    title: str
    file_name: str
    total_chunks: int
    has_chapters: bool
    chapters: list[ChapterSummarySchema] = []
    topic_summary: TopicSummarySchema | None = None


class SectionStructureSchema(BaseModel):
    materials: list[MaterialStructureSchema] = []
    total_chunks: int = 0
    materials_with_chapters: int = 0
    total_materials: int = 0
