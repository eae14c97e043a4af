"""Unit tests for topic clustering and generation planning."""

import random

from studyrag.application.services.generation_planning import (
    CONTEXT_SEPARATOR,
    GenerationGroup,
    build_context,
    distribute_targets,
    filter_content_chunks,
    group_by_chapter,
    plan_generation,
    select_context_chunks,
)
from studyrag.application.services.topic_clustering import cluster_chunks, mean_vector
from studyrag.domain.entities import MaterialChunk, StructuredMetadata

BODY = "This paragraph explains the idea in enough words to count as content."


def _chunk(index: int, embedding=None, chapter: int | None = None, material_id: str = "m1", content: str = BODY):
    chunk = MaterialChunk(
        material_id=material_id,
        chunk_index=index,
        content=content,
        embedding=embedding,
        id=f"{material_id}-{index}",
    )
    if chapter is not None:
        chunk.metadata = StructuredMetadata(chapter=chapter, chapter_title=f"Title {chapter}")
    return chunk


# ── Clustering ──────────────────────────────────────────────────────


class TestClustering:
    def test_mean_vector(self):
        assert mean_vector([[1.0, 3.0], [3.0, 5.0]]) == [2.0, 4.0]
        assert mean_vector([]) is None

    def test_separates_two_obvious_topics(self):
        chunks = [_chunk(i, [1.0, 0.05 * i]) for i in range(5)] + [
            _chunk(5 + i, [0.05 * i, 1.0]) for i in range(5)
        ]

        clusters = cluster_chunks(chunks, 2, rng=random.Random(7))

        assert len(clusters) == 2
        groups = [sorted(c.chunk_index for c in cluster.chunks) for cluster in clusters]
        assert sorted(groups) == [[0, 1, 2, 3, 4], [5, 6, 7, 8, 9]]

    def test_same_seed_same_clusters(self):
        chunks = [_chunk(i, [float(i % 3), float(i % 5), 1.0]) for i in range(20)]

        first = cluster_chunks(chunks, 3, rng=random.Random(1))
        second = cluster_chunks(chunks, 3, rng=random.Random(1))

        assert [[c.id for c in cl.chunks] for cl in first] == [[c.id for c in cl.chunks] for cl in second]

    def test_nothing_embedded_is_one_cluster(self):
        chunks = [_chunk(i) for i in range(4)]

        clusters = cluster_chunks(chunks, 3)

        assert len(clusters) == 1
        assert clusters[0].centroid is None
        assert clusters[0].size == 4

    def test_empty_input(self):
        assert cluster_chunks([], 2) == []


# ── Grouping and targets ────────────────────────────────────────────


class TestGrouping:
    def test_groups_by_material_and_chapter(self):
        chunks = [_chunk(0, chapter=1), _chunk(1, chapter=2), _chunk(2, chapter=3), _chunk(3, chapter=1)]

        groups = group_by_chapter(chunks)

        assert [g.chapter for g in groups] == [1, 2, 3]
        assert [len(g.chunks) for g in groups] == [2, 1, 1]
        assert groups[0].label == "Chapter 1: Title 1"

    def test_chapter_zero_is_a_chapter(self):
        chunks = [_chunk(0, chapter=0), _chunk(1, chapter=1), _chunk(2, chapter=2), _chunk(3, chapter=0)]

        groups = group_by_chapter(chunks)

        assert [g.chapter for g in groups] == [0, 1, 2]
        assert groups[0].label == "Chapter 0: Title 0"

    def test_mostly_unstructured_falls_back(self):
        chunks = [_chunk(0, chapter=1), _chunk(1), _chunk(2)]

        assert group_by_chapter(chunks) is None

    def test_dominant_chapter_falls_back(self):
        chunks = [_chunk(i, chapter=1) for i in range(7)] + [_chunk(7, chapter=2), _chunk(8, chapter=3)]

        assert group_by_chapter(chunks) is None

    def test_targets_sum_to_total(self):
        groups = [
            GenerationGroup(label="a", chunks=[_chunk(i) for i in range(6)]),
            GenerationGroup(label="b", chunks=[_chunk(i) for i in range(3)]),
            GenerationGroup(label="c", chunks=[_chunk(0)]),
        ]

        distribute_targets(groups, 10)

        assert sum(g.target for g in groups) == 10
        assert all(g.target >= 1 for g in groups)
        assert groups[0].target >= groups[1].target >= groups[2].target

    def test_filter_drops_table_of_contents(self):
        toc = _chunk(0, content="Table of Contents\n1 Intro 3\n2 Limits 9 and a few more words here")
        kept = filter_content_chunks([toc, _chunk(1)])

        assert [c.chunk_index for c in kept] == [1]


class TestPlan:
    def test_chapter_mode_plan(self):
        chunks = [_chunk(i, chapter=1 + i % 3) for i in range(9)]

        plan = plan_generation(chunks, 6, rng=random.Random(0))

        assert plan.chapter_mode is True
        assert [g.target for g in plan.groups] == [2, 2, 2]
        assert len(plan.tasks) == 3

    def test_large_target_is_split_into_bounded_calls(self):
        chunks = [_chunk(i, [1.0, 0.0]) for i in range(10)]

        plan = plan_generation(chunks, 30, max_items_per_call=10, rng=random.Random(0))

        assert all(task.count <= 10 for task in plan.tasks)
        assert sum(task.count for task in plan.tasks) >= 30

    def test_empty_chunks_plan_nothing(self):
        plan = plan_generation([], 5)

        assert plan.groups == []
        assert plan.tasks == []


# ── Context ─────────────────────────────────────────────────────────


class TestContext:
    def test_selection_takes_at_most_five(self):
        group = GenerationGroup(label="g", chunks=[_chunk(i, [1.0, float(i)]) for i in range(12)], centroid=[1.0, 0.0])

        picked = select_context_chunks(group, random.Random(3))

        assert len(picked) == 5
        assert len({c.id for c in picked}) == 5

    def test_context_labels_chunks_with_ids(self):
        context, used = build_context([_chunk(0), _chunk(1)], 10_000)

        assert context.startswith("[chunk:m1-0]\n")
        assert CONTEXT_SEPARATOR in context
        assert len(used) == 2

    def test_context_drops_chunks_to_fit_budget(self):
        chunks = [_chunk(i) for i in range(4)]

        context, used = build_context(chunks, 200)

        assert len(context) <= 200
        assert [c.chunk_index for c in used] == [0, 1]

    def test_single_oversize_chunk_is_truncated(self):
        context, used = build_context([_chunk(0, content="x" * 500)], 100)

        assert len(context) == 100
        assert len(used) == 1
