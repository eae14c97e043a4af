"""SQLAlchemy ORM model for material chunks with pgvector embeddings."""

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB

from pgvector.sqlalchemy import Vector

from studyrag.config import get_settings
from studyrag.infrastructure.database.base import Base


def _generate_uuid() -> str:
    return str(uuid.uuid4())


class MaterialChunkModel(Base):
    """A content-typed text chunk of a material, with a vector embedding.

    Content and embedding are inserted in the same row; a NULL embedding
    marks a chunk that is excluded from similarity search until backfilled.
    """

    __tablename__ = "material_chunks"

    id = Column(String(36), primary_key=True, default=_generate_uuid)
    material_id = Column(
        String(36),
        ForeignKey("materials.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    chunk_index = Column(Integer, nullable=False)
    content = Column(Text, nullable=False)
    content_type = Column(String(30), nullable=False, default="text", index=True)
    has_math = Column(Boolean, nullable=False, default=False)
    latex_content = Column(Text, nullable=True)
    embedding = Column(Vector(get_settings().embedding_dimensions), nullable=True)
    token_count = Column(Integer, nullable=False, default=0)
    metadata_ = Column("metadata", JSONB, nullable=False, server_default="{}")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("material_id", "chunk_index", name="uq_material_chunk_index"),
        Index("idx_material_chunks_embedding_hnsw", embedding, postgresql_using="hnsw",
              postgresql_ops={"embedding": "vector_cosine_ops"}),
    )
