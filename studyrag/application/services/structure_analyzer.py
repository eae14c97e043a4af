"""Structure analyzer — decides per material whether chapter metadata is reliable.

A material "has chapters" when strictly more than ``threshold`` of its
chunks carry a chapter number and a real chapter title (not the
"Main Content" placeholder) and at least one distinct chapter exists.
Otherwise a topic summary with an advisory cluster estimate is reported:
``max(2, ceil(embedded / chunks_per_cluster))``.

Materials are always analysed independently, never pooled.
"""

import logging
import math
import re

from studyrag.application.interfaces.chunk_repository import ChunkRepository
from studyrag.application.interfaces.material_repository import MaterialRepository
from studyrag.domain.entities import (
    DEFAULT_CHAPTER_TITLE,
    ChapterSummary,
    Material,
    MaterialChunk,
    MaterialStructure,
    SectionStructure,
    StructuredMetadata,
    TopicSummary,
)

logger = logging.getLogger(__name__)

# Header lines recognised when scanning the head of a chunk for topics
_TOPIC_PATTERNS = (
    re.compile(r"^(?:Section\s+)?(\d+\.\d+(?:\.\d+)?)\s*[:.]\s*(.+?)$", re.IGNORECASE),
    re.compile(r"^(#{3,4})\s+(.+?)$"),
    re.compile(r"^\*\*([^*]+)\*\*$"),
    re.compile(r"^([A-Z][a-zA-Z0-9\s-]{3,50}):$"),
)
_TOPIC_SCAN_LINES = 3


def estimate_cluster_count(embedded_chunks: int, chunks_per_cluster: int = 25) -> int:
    """Advisory number of topic clusters for an unstructured material."""
    return max(2, math.ceil(embedded_chunks / max(1, chunks_per_cluster)))


def _is_structured(chunk: MaterialChunk) -> bool:
    metadata = chunk.metadata
    return (
        isinstance(metadata, StructuredMetadata)
        and metadata.chapter is not None
        and bool(metadata.chapter_title)
        and metadata.chapter_title != DEFAULT_CHAPTER_TITLE
    )


def _header_topics(content: str) -> list[str]:
    """Topic-like headers found in the first few non-blank lines of a chunk."""
    found: list[str] = []
    for line in content.split("\n")[:_TOPIC_SCAN_LINES]:
        line = line.strip()
        if not line:
            continue
        for pattern in _TOPIC_PATTERNS:
            match = pattern.match(line)
            if not match:
                continue
            groups = [g for g in match.groups() if g]
            title = groups[-1].strip()
            title = re.sub(r"[:.]$", "", title)
            if 2 < len(title) < 100:
                found.append(title)
    return found


class StructureAnalyzer:
    """Application service reporting chapter structure or clustering guidance."""

    def __init__(
        self,
        material_repo: MaterialRepository,
        chunk_repo: ChunkRepository,
        *,
        threshold: float = 0.3,
        chunks_per_cluster: int = 25,
    ):
        if not 0 <= threshold < 1:
            raise ValueError("threshold must be in [0, 1)")
        self._materials = material_repo
        self._chunks = chunk_repo
        self._threshold = threshold
        self._chunks_per_cluster = max(1, chunks_per_cluster)

    def analyze_material(self, material: Material, chunks: list[MaterialChunk]) -> MaterialStructure:
        """Analyse one material from its chunks. Pure: same input, same output."""
        ordered = sorted(chunks, key=lambda c: c.chunk_index)
        total = len(ordered)

        chapters: dict[int, ChapterSummary] = {}
        structured = 0
        for chunk in ordered:
            if not _is_structured(chunk):
                continue
            structured += 1
            meta = chunk.metadata
            summary = chapters.get(meta.chapter)
            if summary is None:
                summary = ChapterSummary(
                    number=meta.chapter,
                    title=meta.chapter_title,
                    chunk_count=0,
                    percentage=0.0,
                )
                chapters[meta.chapter] = summary
            summary.chunk_count += 1
            for topic in meta.topics:
                if topic not in summary.topics:
                    summary.topics.append(topic)

        has_chapters = structured > total * self._threshold and len(chapters) > 0

        result = MaterialStructure(
            material_id=material.id or "",
            title=material.title,
            file_name=material.file_name,
            total_chunks=total or material.stored_chunks,
            has_chapters=has_chapters,
        )
        if has_chapters:
            for number in sorted(chapters):
                summary = chapters[number]
                summary.percentage = round(summary.chunk_count / total * 100, 1)
                result.chapters.append(summary)
        elif total:
            result.topic_summary = self._topic_summary(ordered)

        logger.debug(
            "Structure of %s: %d/%d structured chunks, has_chapters=%s",
            material.id,
            structured,
            total,
            has_chapters,
        )
        return result

    async def analyze_materials(self, material_ids: list[str]) -> SectionStructure:
        """Analyse each material in ``material_ids`` independently."""
        materials = await self._materials.get_many(material_ids)
        if not materials:
            return SectionStructure()

        chunks = await self._chunks.get_by_materials([m.id for m in materials])
        by_material: dict[str, list[MaterialChunk]] = {m.id: [] for m in materials}
        for chunk in chunks:
            by_material.setdefault(chunk.material_id, []).append(chunk)

        return SectionStructure(
            materials=[self.analyze_material(m, by_material[m.id]) for m in materials]
        )

    async def analyze_section(self, section_id: str) -> SectionStructure:
        """Analyse every material linked to a section."""
        material_ids = await self._materials.get_material_ids_for_sections([section_id])
        return await self.analyze_materials(material_ids)

    def _topic_summary(self, chunks: list[MaterialChunk]) -> TopicSummary:
        embedded = sum(1 for c in chunks if c.is_embedded)
        clusters = estimate_cluster_count(embedded, self._chunks_per_cluster)

        topics: set[str] = set()
        for chunk in chunks:
            topics.update(chunk.metadata.topics)
            topics.update(_header_topics(chunk.content))

        if embedded:
            message = f"Will be grouped into ~{clusters} natural topic clusters."
        else:
            message = "No embeddings available."

        return TopicSummary(
            total_chunks=len(chunks),
            embedded_chunks=embedded,
            estimated_clusters=clusters,
            topics=sorted(topics),
            message=message,
        )
