"""Domain entities for material chunks — content-typed text slices with vector embeddings."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union

# Chapter title assigned when no chapter heading is found. StructureAnalyzer
# treats chunks carrying it as unstructured.
DEFAULT_CHAPTER_TITLE = "Main Content"


class ContentType(str, Enum):
    """What kind of content a chunk holds."""

    TEXT = "text"
    EQUATION = "equation"
    THEOREM = "theorem"
    DEFINITION = "definition"
    EXAMPLE = "example"
    PROOF = "proof"
    EXERCISE = "exercise"


@dataclass
class StructuredMetadata:
    """Metadata of a chunk that sits under a detected chapter heading."""

    chapter: int
    chapter_title: str
    topics: list[str] = field(default_factory=list)
    page: int | None = None
    section: str | None = None
    key_concepts: list[str] = field(default_factory=list)

    @property
    def topic(self) -> str | None:
        return self.topics[0] if self.topics else None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "chapter": self.chapter,
            "chapterTitle": self.chapter_title,
            "topics": list(self.topics),
            "keyConcepts": list(self.key_concepts),
        }
        if self.topic:
            data["topic"] = self.topic
        if self.page is not None:
            data["page"] = self.page
        if self.section:
            data["section"] = self.section
        return data


@dataclass
class UnstructuredMetadata:
    """Metadata of a chunk with no chapter heading above it."""

    topics: list[str] = field(default_factory=list)
    page: int | None = None
    section: str | None = None
    key_concepts: list[str] = field(default_factory=list)

    @property
    def topic(self) -> str | None:
        return self.topics[0] if self.topics else None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "chapterTitle": DEFAULT_CHAPTER_TITLE,
            "topics": list(self.topics),
            "keyConcepts": list(self.key_concepts),
        }
        if self.topic:
            data["topic"] = self.topic
        if self.page is not None:
            data["page"] = self.page
        if self.section:
            data["section"] = self.section
        return data


ChunkMetadata = Union[StructuredMetadata, UnstructuredMetadata]


def metadata_from_dict(data: dict[str, Any] | None) -> ChunkMetadata:
    """Rebuild the tagged metadata variant from its persisted JSON form."""
    data = data or {}
    topics = [str(t) for t in data.get("topics") or [] if t]
    if not topics and data.get("topic"):
        topics = [str(data["topic"])]
    page = _as_int(data.get("page"))
    section = data.get("section")
    key_concepts = [str(k) for k in data.get("keyConcepts") or []]

    chapter = _as_int(data.get("chapter"))
    chapter_title = data.get("chapterTitle")
    if chapter is not None and chapter_title and chapter_title != DEFAULT_CHAPTER_TITLE:
        return StructuredMetadata(
            chapter=chapter,
            chapter_title=str(chapter_title),
            topics=topics,
            page=page,
            section=str(section) if section else None,
            key_concepts=key_concepts,
        )
    return UnstructuredMetadata(
        topics=topics,
        page=page,
        section=str(section) if section else None,
        key_concepts=key_concepts,
    )


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


@dataclass
class ChunkDraft:
    """A chunk produced by the chunker, before it belongs to a stored material."""

    chunk_index: int
    content: str
    content_type: ContentType = ContentType.TEXT
    has_math: bool = False
    latex_content: str | None = None
    token_count: int = 0
    metadata: ChunkMetadata = field(default_factory=UnstructuredMetadata)


@dataclass
class MaterialChunk:
    """A content-typed slice of a Material, suitable for vector search.

    ``content`` is the plain rendering used for embedding and display; when
    ``has_math`` is set, ``latex_content`` holds the original markup verbatim.
    A chunk without an embedding is excluded from similarity search until
    it is backfilled.
    """

    material_id: str
    chunk_index: int
    content: str
    content_type: ContentType = ContentType.TEXT
    has_math: bool = False
    latex_content: str | None = None
    embedding: list[float] | None = None
    token_count: int = 0
    metadata: ChunkMetadata = field(default_factory=UnstructuredMetadata)
    id: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def chapter(self) -> int | None:
        if isinstance(self.metadata, StructuredMetadata):
            return self.metadata.chapter
        return None

    @property
    def is_embedded(self) -> bool:
        return bool(self.embedding)

    @classmethod
    def from_draft(
        cls,
        draft: ChunkDraft,
        material_id: str,
        embedding: list[float] | None = None,
    ) -> "MaterialChunk":
        return cls(
            material_id=material_id,
            chunk_index=draft.chunk_index,
            content=draft.content,
            content_type=draft.content_type,
            has_math=draft.has_math,
            latex_content=draft.latex_content,
            embedding=embedding,
            token_count=draft.token_count,
            metadata=draft.metadata,
        )
