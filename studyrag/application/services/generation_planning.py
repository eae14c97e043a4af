"""Generation planning — decides which chunks feed which LLM call.

Steps, all pure and deterministic for a given RNG:
1. Drop non-content chunks (TOC, index pages, page lists, fragments)
2. Group chunks by (material, chapter) when the chapter structure is
   trustworthy, otherwise cluster them by topic
3. Spread the requested item count over the groups proportionally
4. Split each group's target into bounded LLM calls
5. Pick representative chunks per call and pack them into a context
   that fits the character budget
"""

import logging
import math
import random
import re
from dataclasses import dataclass, field

from studyrag.application.services.embedding_service import cosine_similarity
from studyrag.application.services.structure_analyzer import estimate_cluster_count
from studyrag.application.services.topic_clustering import cluster_chunks, mean_vector
from studyrag.domain.entities import DEFAULT_CHAPTER_TITLE, MaterialChunk, StructuredMetadata

logger = logging.getLogger(__name__)

# ── Planning heuristics ─────────────────────────────────────────────
_MIN_CONTENT_CHARS = 50
_UNSTRUCTURED_FALLBACK_SHARE = 0.5   # this share of unstructured chunks ⇒ cluster instead
_DOMINANT_CHAPTER_SHARE = 0.6        # one chapter above this share ⇒ cluster instead
_ITEM_BUFFER = 1.15                  # over-request to survive validation and dedup
_TOP_POOL_SIZE = 8
_TOP_PICKS = 3
_VARIETY_PICKS = 2
CONTEXT_SEPARATOR = "\n\n---\n\n"

_NUMBER = re.compile(r"\d+")
_WORD_NUMBER = re.compile(r"\b\d+\b")


@dataclass
class GenerationGroup:
    """A slice of the scope that one or more LLM calls draw from."""

    label: str
    chunks: list[MaterialChunk]
    centroid: list[float] | None = None
    chapter: int | None = None
    chapter_title: str | None = None
    material_id: str | None = None
    target: int = 0


@dataclass
class GenerationTask:
    """One LLM call: ``count`` items from ``group``."""

    group_index: int
    group: GenerationGroup
    count: int


@dataclass
class GenerationPlan:
    groups: list[GenerationGroup] = field(default_factory=list)
    tasks: list[GenerationTask] = field(default_factory=list)
    chapter_mode: bool = False


def _is_content_chunk(chunk: MaterialChunk) -> bool:
    content = chunk.content.lower()
    is_index = "index" in content and len(_NUMBER.findall(content)) > 10
    is_toc = "table of contents" in content or "contents\n" in content
    is_page_list = len(_WORD_NUMBER.findall(content)) > 20
    return not (is_index or is_toc or is_page_list or len(content) < _MIN_CONTENT_CHARS)


def filter_content_chunks(chunks: list[MaterialChunk]) -> list[MaterialChunk]:
    """Chunks worth generating from; falls back to every non-empty chunk."""
    kept = [c for c in chunks if _is_content_chunk(c)]
    if kept:
        return kept
    return [c for c in chunks if c.content.strip()]


def group_by_chapter(chunks: list[MaterialChunk]) -> list[GenerationGroup] | None:
    """Group chunks per (material, chapter), or ``None`` when clustering fits better.

    Returns ``None`` when half or more of the chunks carry no chapter, or
    when a single group holds more than 60% of the chunks.
    """
    if not chunks:
        return None

    groups: dict[tuple[str, int], GenerationGroup] = {}
    unstructured: list[MaterialChunk] = []
    for chunk in chunks:
        meta = chunk.metadata
        if isinstance(meta, StructuredMetadata) and meta.chapter is not None and meta.chapter_title != DEFAULT_CHAPTER_TITLE:
            key = (chunk.material_id, meta.chapter)
            group = groups.get(key)
            if group is None:
                group = GenerationGroup(
                    label=f"Chapter {meta.chapter}: {meta.chapter_title}",
                    chunks=[],
                    chapter=meta.chapter,
                    chapter_title=meta.chapter_title,
                    material_id=chunk.material_id,
                )
                groups[key] = group
            group.chunks.append(chunk)
        else:
            unstructured.append(chunk)

    if len(unstructured) >= len(chunks) * _UNSTRUCTURED_FALLBACK_SHARE:
        logger.info(
            "%d/%d chunks are unstructured, falling back to topic clustering",
            len(unstructured),
            len(chunks),
        )
        return None

    result = sorted(groups.values(), key=lambda g: g.chapter)
    if unstructured:
        result.append(GenerationGroup(label="General Content", chunks=unstructured, chapter=0,
                                      chapter_title="General Content"))

    if any(len(g.chunks) > len(chunks) * _DOMINANT_CHAPTER_SHARE for g in result):
        logger.info("Dominant chapter detected, falling back to topic clustering")
        return None

    for group in result:
        group.centroid = mean_vector([c.embedding for c in group.chunks if c.is_embedded])
    return result


def distribute_targets(groups: list[GenerationGroup], total: int, min_per_group: int = 1) -> None:
    """Set ``group.target`` proportional to group size, summing to ``total``.

    Every group gets at least ``min_per_group`` items; when the minimums
    alone exceed ``total`` the sum may stay above it.
    """
    if not groups:
        return
    size = sum(len(g.chunks) for g in groups) or 1
    for group in groups:
        group.target = max(min_per_group, round(total * len(group.chunks) / size))

    current = sum(g.target for g in groups)
    while current < total:
        max(groups, key=lambda g: len(g.chunks)).target += 1
        current += 1
    while current > total:
        shrinkable = [g for g in groups if g.target > max(1, min_per_group)]
        if not shrinkable:
            break
        min(shrinkable, key=lambda g: len(g.chunks)).target -= 1
        current -= 1


def plan_generation(
    chunks: list[MaterialChunk],
    total_items: int,
    *,
    max_items_per_call: int = 20,
    chunks_per_cluster: int = 25,
    rng: random.Random | None = None,
) -> GenerationPlan:
    """Build the group layout and LLM call list for ``total_items`` items."""
    rng = rng or random.Random(0)
    plan = GenerationPlan()
    if not chunks or total_items <= 0:
        return plan

    chapter_groups = group_by_chapter(chunks)
    if chapter_groups and len(chapter_groups) > 1:
        plan.chapter_mode = True
        distribute_targets(chapter_groups, total_items)
        plan.groups = chapter_groups
    else:
        embedded = sum(1 for c in chunks if c.is_embedded)
        k = estimate_cluster_count(embedded, chunks_per_cluster)
        clusters = cluster_chunks(chunks, k, rng=rng)
        groups = [
            GenerationGroup(label=f"Topic {i}", chunks=cluster.chunks, centroid=cluster.centroid)
            for i, cluster in enumerate(clusters, start=1)
        ]
        distribute_targets(groups, total_items, min_per_group=1 if total_items >= len(groups) else 0)
        plan.groups = [g for g in groups if g.target > 0]

    for index, group in enumerate(plan.groups):
        remaining = max(1, math.ceil(group.target * _ITEM_BUFFER))
        while remaining > 0:
            count = min(max_items_per_call, remaining)
            plan.tasks.append(GenerationTask(group_index=index, group=group, count=count))
            remaining -= count

    logger.info(
        "Planned %d items over %d %s groups in %d calls",
        total_items,
        len(plan.groups),
        "chapter" if plan.chapter_mode else "topic",
        len(plan.tasks),
    )
    return plan


def select_context_chunks(group: GenerationGroup, rng: random.Random) -> list[MaterialChunk]:
    """Pick representative chunks: 3 from the 8 closest to the centroid plus 2 others."""
    candidates = filter_content_chunks(group.chunks)
    if group.centroid is not None:
        candidates = sorted(
            candidates,
            key=lambda c: cosine_similarity(c.embedding or [], group.centroid),
            reverse=True,
        )

    top_pool = candidates[:_TOP_POOL_SIZE]
    picked = rng.sample(top_pool, min(_TOP_PICKS, len(top_pool)))
    picked_ids = {id(c) for c in picked}
    rest = [c for c in candidates if id(c) not in picked_ids]
    picked += rng.sample(rest, min(_VARIETY_PICKS, len(rest)))
    return picked


def format_context_block(chunk: MaterialChunk) -> str:
    return f"[chunk:{chunk.id}]\n{chunk.content.strip()}"


def build_context(chunks: list[MaterialChunk], char_budget: int) -> tuple[str, list[MaterialChunk]]:
    """Join labelled chunk blocks, down-sampling until the text fits ``char_budget``.

    Chunks are dropped from the end first; a single remaining chunk that
    still does not fit is truncated. Returns the context and the chunks
    that made it in.
    """
    kept = list(chunks)
    while kept:
        context = CONTEXT_SEPARATOR.join(format_context_block(c) for c in kept)
        if len(context) <= char_budget:
            return context, kept
        if len(kept) == 1:
            return context[:char_budget], kept
        kept.pop()
    return "", []
