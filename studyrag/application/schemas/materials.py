"""Pydantic schemas for material ingestion API responses."""

from typing import Any

from pydantic import BaseModel


class IngestionWarningSchema(BaseModel):
    type: str
    message: str
    suggestion: str | None = None


class IngestionResultSchema(BaseModel):
    """Outcome of ingesting one uploaded file."""
    file_name: str
    status: str
    material_id: str | None = None
    chunks_created: int = 0
    embedded_chunks: int = 0
    is_stem: bool = False
    stem_confidence: int = 0
    total_characters: int = 0
    estimated_tokens: int = 0
    warnings: list[IngestionWarningSchema] = []
    error: str | None = None


class UploadResultSchema(BaseModel):
    """Response after uploading file(s)."""
    results: list[IngestionResultSchema]
    total_count: int
    succeeded: int
    message: str


class MaterialSchema(BaseModel):
    id: str
    title: str
    file_name: str
    type: str
    total_chunks: int
    stored_chunks: int
    has_math: bool
    metadata: dict[str, Any] = {}
    created_at: str
    updated_at: str


class ChunkSchema(BaseModel):
    id: str
    material_id: str
    chunk_index: int
    content: str
    content_type: str
    has_math: bool
    latex_content: str | None = None
    token_count: int
    has_embedding: bool
    metadata: dict[str, Any] = {}


class ReembedResultSchema(BaseModel):
    material_id: str
    updated: int
    still_missing: int
