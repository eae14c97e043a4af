"""Domain entities describing the chapter/topic structure of materials."""

from dataclasses import dataclass, field


@dataclass
class ChapterSummary:
    """One detected chapter of a material."""

    number: int
    title: str
    chunk_count: int
    percentage: float  # share of the material's chunks, one decimal
    topics: list[str] = field(default_factory=list)


@dataclass
class TopicSummary:
    """Advisory clustering guidance for a material without chapter structure."""

    total_chunks: int
    embedded_chunks: int
    estimated_clusters: int
    topics: list[str] = field(default_factory=list)
    message: str = ""


@dataclass
class MaterialStructure:
    """Structure analysis result for a single material."""

    material_id: str
    title: str
    file_name: str
    total_chunks: int
    has_chapters: bool
    chapters: list[ChapterSummary] = field(default_factory=list)
    topic_summary: TopicSummary | None = None


@dataclass
class SectionStructure:
    """Per-material structure for a set of materials (never pooled)."""

    materials: list[MaterialStructure] = field(default_factory=list)

    @property
    def total_chunks(self) -> int:
        return sum(m.total_chunks for m in self.materials)

    @property
    def materials_with_chapters(self) -> int:
        return sum(1 for m in self.materials if m.has_chapters)

    @property
    def total_materials(self) -> int:
        return len(self.materials)
