"""Domain entities for retrieval — scopes, chapter filters and ranked results."""

from dataclasses import dataclass, field

from .material_chunk import MaterialChunk


@dataclass
class ChapterFilter:
    """Restricts one material to a set of chapter numbers."""

    material_id: str
    chapters: list[int] = field(default_factory=list)


@dataclass
class RetrievalScope:
    """Which materials a query may draw from.

    ``material_ids`` and ``section_ids`` are unioned. Leaving both as ``None``
    means "all materials"; passing empty lists means "nothing".
    """

    material_ids: list[str] | None = None
    section_ids: list[str] | None = None

    @property
    def is_unrestricted(self) -> bool:
        return self.material_ids is None and self.section_ids is None


@dataclass
class RetrievalResult:
    """A single ranked chunk returned for a query. Not persisted."""

    chunk: MaterialChunk
    similarity: float  # cosine similarity, higher is closer
    material_title: str
    keyword_score: float | None = None  # set by hybrid search only

    @property
    def content(self) -> str:
        return self.chunk.content


@dataclass
class ChunkContext:
    """A chunk together with its neighbours in the same material."""

    chunk: MaterialChunk
    before: list[MaterialChunk] = field(default_factory=list)
    after: list[MaterialChunk] = field(default_factory=list)

    @property
    def combined_content(self) -> str:
        parts = [c.content for c in self.before] + [self.chunk.content] + [c.content for c in self.after]
        return "\n\n".join(parts)
