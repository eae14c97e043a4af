"""Unit tests for RetrievalService over the in-memory chunk store."""

import pytest

from studyrag.application.retry_policy import RetryPolicy
from studyrag.application.services.embedding_service import EmbeddingService
from studyrag.application.services.retrieval_service import RetrievalService
from studyrag.domain.entities import (
    ChapterFilter,
    ContentType,
    Material,
    MaterialChunk,
    RetrievalScope,
    StructuredMetadata,
)
from studyrag.domain.exceptions import EntityNotFoundError, InvalidInputError
from tests.fakes import FakeEmbeddingProvider, InMemoryChunkRepository, InMemoryMaterialRepository


async def _no_sleep(_: float) -> None:
    return None


@pytest.fixture
def provider():
    return FakeEmbeddingProvider()


@pytest.fixture
def materials():
    return InMemoryMaterialRepository(InMemoryChunkRepository())


@pytest.fixture
def service(materials, provider):
    embedder = EmbeddingService(provider, RetryPolicy(max_attempts=1, sleep=_no_sleep))
    return RetrievalService(materials.chunks, materials, embedder)


async def _add_material(materials, provider, title, contents, chapters=None, section_id=None, embed=True):
    chunks = []
    for index, content in enumerate(contents):
        chunk = MaterialChunk(
            material_id="",
            chunk_index=index,
            content=content,
            embedding=provider.vector_for(content) if embed else None,
        )
        if chapters:
            chunk.metadata = StructuredMetadata(chapter=chapters[index], chapter_title=f"Chapter {chapters[index]}")
        chunks.append(chunk)
    material = await materials.create_with_chunks(Material(title=title, file_name=f"{title}.txt"), chunks)
    if section_id:
        await materials.link_to_section(material.id, section_id)
    return material, chunks


# ── Scope resolution ────────────────────────────────────────────────


class TestScope:
    @pytest.mark.asyncio
    async def test_unrestricted_scope_resolves_to_none(self, service):
        assert await service.resolve_scope(None) is None
        assert await service.resolve_scope(RetrievalScope()) is None

    @pytest.mark.asyncio
    async def test_explicit_ids_come_before_section_ids_without_duplicates(self, service, materials, provider):
        first, _ = await _add_material(materials, provider, "first", ["limit text"], section_id="s1")
        second, _ = await _add_material(materials, provider, "second", ["matrix text"], section_id="s1")

        resolved = await service.resolve_scope(
            RetrievalScope(material_ids=[second.id], section_ids=["s1"])
        )

        assert resolved == [second.id, first.id]

    @pytest.mark.asyncio
    async def test_empty_scope_returns_nothing_without_embedding_the_query(self, service, materials, provider):
        await _add_material(materials, provider, "calc", ["limit of a function"])

        results = await service.retrieve("limit", RetrievalScope(material_ids=[]))

        assert results == []
        assert provider.queries == []

    @pytest.mark.asyncio
    async def test_unknown_section_is_an_empty_scope(self, service, materials, provider):
        await _add_material(materials, provider, "calc", ["limit of a function"], section_id="s1")

        assert await service.retrieve("limit", RetrievalScope(section_ids=["nope"])) == []


# ── Retrieve ────────────────────────────────────────────────────────


class TestRetrieve:
    @pytest.mark.asyncio
    async def test_results_are_ranked_by_similarity(self, service, materials, provider):
        await _add_material(
            materials,
            provider,
            "calc",
            ["matrix algebra basics", "limit limit limit of sequences", "a limit and a derivative"],
        )

        results = await service.retrieve("limit", top_k=3)

        assert [r.content for r in results][0] == "limit limit limit of sequences"
        assert results[0].similarity >= results[1].similarity >= results[2].similarity
        assert all(r.material_title == "calc" for r in results)

    @pytest.mark.asyncio
    async def test_top_k_caps_results(self, service, materials, provider):
        await _add_material(materials, provider, "calc", [f"limit number {i}" for i in range(8)])

        assert len(await service.retrieve("limit", top_k=3)) == 3

    @pytest.mark.asyncio
    async def test_threshold_drops_weak_matches(self, service, materials, provider):
        await _add_material(materials, provider, "mixed", ["limit of f", "photosynthesis in leaves"])

        results = await service.retrieve("limit", similarity_threshold=0.5)

        assert [r.content for r in results] == ["limit of f"]

    @pytest.mark.asyncio
    async def test_chunks_without_embedding_are_never_returned(self, service, materials, provider):
        await _add_material(materials, provider, "pending", ["limit without vector"], embed=False)

        assert await service.retrieve("limit") == []

    @pytest.mark.asyncio
    async def test_ties_break_by_material_creation_then_index(self, service, materials, provider):
        older, _ = await _add_material(materials, provider, "older", ["limit", "limit"])
        newer, _ = await _add_material(materials, provider, "newer", ["limit"])

        results = await service.retrieve("limit", top_k=3)

        assert [(r.chunk.material_id, r.chunk.chunk_index) for r in results] == [
            (older.id, 0),
            (older.id, 1),
            (newer.id, 0),
        ]

    @pytest.mark.asyncio
    async def test_content_type_filter(self, service, materials, provider):
        _, chunks = await _add_material(materials, provider, "calc", ["limit theorem", "limit prose"])
        chunks[0].content_type = ContentType.THEOREM

        results = await service.retrieve("limit", content_types=[ContentType.THEOREM])

        assert [r.content for r in results] == ["limit theorem"]

    @pytest.mark.asyncio
    async def test_blank_query_is_rejected(self, service):
        with pytest.raises(InvalidInputError):
            await service.retrieve("   ")

    @pytest.mark.asyncio
    async def test_non_positive_top_k_is_rejected(self, service):
        with pytest.raises(InvalidInputError):
            await service.retrieve("limit", top_k=0)


class TestChapterFilter:
    @pytest.mark.asyncio
    async def test_filter_restricts_listed_material_only(self, service, materials, provider):
        book, _ = await _add_material(
            materials,
            provider,
            "book",
            ["limit in chapter one", "limit in chapter two", "limit in chapter three"],
            chapters=[1, 2, 3],
        )
        notes, _ = await _add_material(materials, provider, "notes", ["limit notes"])

        results = await service.retrieve(
            "limit", top_k=10, chapter_filter=[ChapterFilter(material_id=book.id, chapters=[2])]
        )

        contents = {r.content for r in results}
        assert contents == {"limit in chapter two", "limit notes"}

    @pytest.mark.asyncio
    async def test_entry_without_chapters_is_ignored(self, service, materials, provider):
        book, _ = await _add_material(materials, provider, "book", ["limit a", "limit b"], chapters=[1, 2])

        results = await service.retrieve("limit", chapter_filter=[ChapterFilter(material_id=book.id, chapters=[])])

        assert len(results) == 2

    @pytest.mark.asyncio
    async def test_filter_matching_nothing_returns_empty(self, service, materials, provider):
        book, _ = await _add_material(materials, provider, "book", ["limit a"], chapters=[1])

        results = await service.retrieve(
            "limit",
            RetrievalScope(material_ids=[book.id]),
            chapter_filter=[ChapterFilter(material_id=book.id, chapters=[3])],
        )

        assert results == []


# ── Hint / hybrid / similar / context ───────────────────────────────


class TestHelpers:
    @pytest.mark.asyncio
    async def test_hint_uses_small_top_k_and_threshold(self, service, materials, provider):
        await _add_material(
            materials,
            provider,
            "calc",
            [f"limit example {i}" for i in range(7)] + ["photosynthesis only"],
        )

        results = await service.hint("limit")

        assert len(results) == 5
        assert all("limit" in r.content for r in results)

    @pytest.mark.asyncio
    async def test_hybrid_search_reports_keyword_score(self, service, materials, provider):
        await _add_material(materials, provider, "calc", ["the derivative rule", "a limit statement"])

        results = await service.hybrid_search("derivative rule", keyword_weight=0.5)

        assert results[0].content == "the derivative rule"
        assert results[0].keyword_score == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_hybrid_weight_out_of_range_is_rejected(self, service):
        with pytest.raises(InvalidInputError):
            await service.hybrid_search("limit", keyword_weight=1.5)

    @pytest.mark.asyncio
    async def test_similar_chunks_exclude_the_probe(self, service, materials, provider):
        _, chunks = await _add_material(
            materials, provider, "calc", ["limit limit", "limit again", "matrix only"]
        )

        results = await service.find_similar_chunks(chunks[0].id, similarity_threshold=0.5)

        assert [r.chunk.id for r in results] == [chunks[1].id]

    @pytest.mark.asyncio
    async def test_similar_chunks_of_unknown_chunk(self, service):
        with pytest.raises(EntityNotFoundError):
            await service.find_similar_chunks("missing")

    @pytest.mark.asyncio
    async def test_chunk_context_window(self, service, materials, provider):
        _, chunks = await _add_material(materials, provider, "calc", [f"part {i}" for i in range(6)])

        context = await service.get_chunk_context(chunks[2].id, window=1)

        assert [c.content for c in context.before] == ["part 1"]
        assert [c.content for c in context.after] == ["part 3"]
        assert context.combined_content == "part 1\n\npart 2\n\npart 3"
