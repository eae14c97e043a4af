"""Unit tests for the IngestionService pipeline."""

import pytest

from studyrag.application.interfaces import TextExtractionResult, TextExtractor
from studyrag.application.retry_policy import RetryPolicy
from studyrag.application.services.embedding_service import EmbeddingService
from studyrag.application.services.ingestion_service import IngestionService
from studyrag.application.services.structure_analyzer import StructureAnalyzer
from studyrag.config import Settings
from studyrag.domain.entities import IngestionStatus, MaterialType, UploadedDocument
from studyrag.domain.exceptions import EntityNotFoundError, InvalidInputError, TextExtractionError
from tests.fakes import FakeEmbeddingProvider, InMemoryChunkRepository, InMemoryMaterialRepository


# ── Fakes ────────────────────────────────────────────────────────────


class FakeTextExtractor(TextExtractor):
    """Returns canned text per file name; ``corrupt.*`` files fail to extract."""

    def __init__(self, texts: dict[str, TextExtractionResult]):
        self.texts = texts

    def supports(self, file_name: str, mime_type: str | None = None) -> bool:
        return file_name.endswith((".txt", ".pdf"))

    async def extract(self, content: bytes, file_name: str, mime_type: str | None = None) -> TextExtractionResult:
        if file_name.startswith("corrupt"):
            raise TextExtractionError(file_name, "broken xref table")
        return self.texts.get(file_name, TextExtractionResult(text=content.decode("utf-8")))


async def _no_sleep(_: float) -> None:
    return None


def _paragraph(i: int, marker: str = "") -> str:
    sentence = f"Paragraph {i} covers the history and the context of this part, with notes that are useful for review. "
    return (sentence * 3 + marker).strip()


def _document(paragraphs: int, broken: tuple[int, ...] = ()) -> str:
    return "\n\n".join(_paragraph(i, "BROKEN" if i in broken else "") for i in range(paragraphs))


def _doc(name: str, text: str = "") -> UploadedDocument:
    return UploadedDocument(file_name=name, content=(text or "placeholder").encode("utf-8"))


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture
def settings():
    return Settings(chunk_size=400, chunk_overlap=0, min_chunk_size=0, _env_file=None)


@pytest.fixture
def embeddings():
    return FakeEmbeddingProvider(failing=("BROKEN",))


@pytest.fixture
def materials():
    return InMemoryMaterialRepository(InMemoryChunkRepository())


@pytest.fixture
def make_service(materials, embeddings, settings):
    def _make(texts: dict[str, TextExtractionResult] | None = None) -> IngestionService:
        retry = RetryPolicy(max_attempts=1, sleep=_no_sleep)
        return IngestionService(
            materials,
            materials.chunks,
            FakeTextExtractor(texts or {}),
            EmbeddingService(embeddings, retry),
            settings,
        )

    return _make


# ── Ingestion ────────────────────────────────────────────────────────


class TestIngestFile:
    @pytest.mark.asyncio
    async def test_clean_document_is_fully_embedded(self, materials, make_service):
        service = make_service()

        [result] = await service.ingest_files([_doc("notes.txt", _document(5))], section_id="s1")

        assert result.status == IngestionStatus.SUCCESS
        assert result.chunks_created == 5
        assert result.embedded_chunks == 5
        material = materials.materials[result.material_id]
        assert material.title == "notes"
        assert material.total_chunks == 5
        assert material.metadata["storedChunks"] == 5
        assert await materials.get_material_ids_for_sections(["s1"]) == [material.id]

    @pytest.mark.asyncio
    async def test_partial_embedding_failure(self, materials, make_service):
        service = make_service()

        [result] = await service.ingest_files([_doc("book.txt", _document(50, broken=(7, 31)))])

        assert result.status == IngestionStatus.WARNING
        assert result.chunks_created == 50
        assert result.embedded_chunks == 48
        material = materials.materials[result.material_id]
        assert material.total_chunks == 48
        assert material.stored_chunks == 50
        [warning] = result.warnings
        assert warning.type == "partial_embedding"
        assert warning.message.startswith("2 of 50 chunks could not be embedded")
        stored = await materials.chunks.get_by_material(material.id)
        assert [c.chunk_index for c in stored] == list(range(50))
        assert sum(1 for c in stored if not c.is_embedded) == 2

    @pytest.mark.asyncio
    async def test_reembed_backfills_missing_vectors(self, materials, embeddings, make_service):
        service = make_service()
        [result] = await service.ingest_files([_doc("book.txt", _document(10, broken=(3,)))])
        embeddings.failing = ()

        reembedded = await service.reembed_material(result.material_id)

        assert reembedded.updated == 1
        assert reembedded.still_missing == 0
        assert materials.materials[result.material_id].total_chunks == 10

    @pytest.mark.asyncio
    async def test_scanned_pdf_yields_empty_material_with_warning(self, materials, make_service):
        service = make_service({"scan.pdf": TextExtractionResult(text="", page_count=3, needs_ocr=True)})

        [result] = await service.ingest_files([_doc("scan.pdf")])

        assert result.status == IngestionStatus.WARNING
        assert result.chunks_created == 0
        assert result.warnings[0].type == "empty_text"
        assert result.warnings[0].suggestion is not None
        material = materials.materials[result.material_id]
        assert material.total_chunks == 0
        assert material.metadata["pageCount"] == 3

    @pytest.mark.asyncio
    async def test_heading_less_notes_suggest_two_topic_clusters(self, materials, make_service):
        service = make_service()
        [result] = await service.ingest_files([_doc("notes.txt", _document(40))])

        structure = await StructureAnalyzer(materials, materials.chunks).analyze_materials([result.material_id])

        [material] = structure.materials
        assert material.has_chapters is False
        assert material.topic_summary.estimated_clusters == 2

    @pytest.mark.asyncio
    async def test_chapters_are_recorded_on_the_material(self, materials, make_service):
        text = "Chapter 1: Limits\n\n" + _paragraph(1) + "\n\nChapter 2: Derivatives\n\n" + _paragraph(2)
        service = make_service()

        [result] = await service.ingest_files([_doc("calc.txt", text)])

        chapters = materials.materials[result.material_id].metadata["chapters"]
        assert chapters == [{"number": 1, "title": "Limits"}, {"number": 2, "title": "Derivatives"}]

    @pytest.mark.asyncio
    async def test_unsupported_file_is_rejected(self, materials, make_service):
        [result] = await make_service().ingest_files([_doc("slides.pptx")])

        assert result.status == IngestionStatus.ERROR
        assert "Unsupported" in result.error
        assert materials.materials == {}

    @pytest.mark.asyncio
    async def test_extraction_failure_is_reported(self, materials, make_service):
        [result] = await make_service().ingest_files([_doc("corrupt.pdf")])

        assert result.status == IngestionStatus.ERROR
        assert "broken xref table" in result.error
        assert materials.materials == {}

    @pytest.mark.asyncio
    async def test_empty_upload_is_rejected(self, make_service):
        [result] = await make_service().ingest_files([UploadedDocument(file_name="blank.txt", content=b"")])

        assert result.status == IngestionStatus.ERROR

    @pytest.mark.asyncio
    async def test_no_documents(self, make_service):
        with pytest.raises(InvalidInputError):
            await make_service().ingest_files([])


class TestBatch:
    @pytest.mark.asyncio
    async def test_one_failure_does_not_block_the_others(self, materials, make_service):
        results = await make_service().ingest_files(
            [_doc("corrupt.pdf"), _doc("a.txt", _document(2)), _doc("b.txt", _document(3))]
        )

        assert [r.status for r in results] == [
            IngestionStatus.ERROR,
            IngestionStatus.SUCCESS,
            IngestionStatus.SUCCESS,
        ]
        assert len(materials.materials) == 2

    @pytest.mark.asyncio
    async def test_storage_failure_is_per_file(self, materials, make_service):
        materials.fail_on_create = RuntimeError("database unavailable")

        [result] = await make_service().ingest_files([_doc("a.txt", _document(2))])

        assert result.status == IngestionStatus.ERROR
        assert result.error == "database unavailable"
        assert materials.chunks.chunks == {}

    @pytest.mark.asyncio
    async def test_link_failure_is_per_file(self, materials, make_service):
        materials.fail_on_link = RuntimeError("value too long for section_id")

        first, second = await make_service().ingest_files(
            [_doc("a.txt", _document(2)), _doc("b.txt", _document(2))], section_id="s1"
        )

        assert first.status == IngestionStatus.ERROR
        assert second.status == IngestionStatus.SUCCESS
        assert list(materials.materials) == [second.material_id]
        assert await materials.get_material_ids_for_sections(["s1"]) == [second.material_id]

    @pytest.mark.asyncio
    async def test_overlong_section_id_is_rejected(self, materials, make_service):
        with pytest.raises(InvalidInputError):
            await make_service().ingest_files([_doc("a.txt", _document(1))], section_id="s" * 37)

        assert materials.materials == {}

    @pytest.mark.asyncio
    async def test_title_applies_to_a_single_upload_only(self, materials, make_service):
        service = make_service()

        [single] = await service.ingest_files([_doc("a.txt", _document(1))], MaterialType.TEXTBOOK, "Calculus I")
        pair = await service.ingest_files([_doc("b.txt", _document(1)), _doc("c.txt", _document(1))], title="Ignored")

        assert materials.materials[single.material_id].title == "Calculus I"
        assert materials.materials[single.material_id].type == MaterialType.TEXTBOOK
        assert [materials.materials[r.material_id].title for r in pair] == ["b", "c"]


class TestMaintenance:
    @pytest.mark.asyncio
    async def test_delete_removes_chunks(self, materials, make_service):
        service = make_service()
        [result] = await service.ingest_files([_doc("a.txt", _document(3))])

        await service.delete_material(result.material_id)

        assert materials.chunks.chunks == {}
        with pytest.raises(EntityNotFoundError):
            await service.get_material(result.material_id)

    @pytest.mark.asyncio
    async def test_delete_unknown_material(self, make_service):
        with pytest.raises(EntityNotFoundError):
            await make_service().delete_material("missing")

    @pytest.mark.asyncio
    async def test_reembed_unknown_material(self, make_service):
        with pytest.raises(EntityNotFoundError):
            await make_service().reembed_material("missing")

    @pytest.mark.asyncio
    async def test_list_newest_first(self, make_service):
        service = make_service()
        await service.ingest_files([_doc("old.txt", _document(1))])
        await service.ingest_files([_doc("new.txt", _document(1))])

        assert [m.title for m in await service.list_materials()] == ["new", "old"]
