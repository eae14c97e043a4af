"""SQLAlchemy ORM models for materials and their section links."""

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB

from studyrag.domain.entities import MAX_SECTION_ID_LENGTH
from studyrag.infrastructure.database.base import Base


def _generate_uuid() -> str:
    return str(uuid.uuid4())


class MaterialModel(Base):
    """One ingested study document.

    ``total_chunks`` counts embedded chunks only; the stored chunk count
    is kept in ``metadata["storedChunks"]``.
    """

    __tablename__ = "materials"

    id = Column(String(36), primary_key=True, default=_generate_uuid)
    title = Column(String(500), nullable=False)
    file_name = Column(String(255), nullable=False)
    type = Column(String(30), nullable=False, default="custom", index=True)
    total_chunks = Column(Integer, nullable=False, default=0)
    has_math = Column(Boolean, nullable=False, default=False)
    metadata_ = Column("metadata", JSONB, nullable=False, server_default="{}")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )


class SectionFileModel(Base):
    """Link between a course section and a material.

    Sections themselves are managed elsewhere; only the link is stored here.
    """

    __tablename__ = "section_files"

    section_id = Column(String(MAX_SECTION_ID_LENGTH), primary_key=True)
    material_id = Column(
        String(36),
        ForeignKey("materials.id", ondelete="CASCADE"),
        primary_key=True,
        index=True,
    )
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
