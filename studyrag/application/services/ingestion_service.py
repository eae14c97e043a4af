"""Ingestion service — turns uploaded study documents into embedded, stored chunks."""

import logging
import time
from pathlib import Path

from studyrag.application.interfaces import (
    ChunkRepository,
    MaterialRepository,
    TextExtractor,
)
from studyrag.application.services.chunking_service import Chunker, get_chunker
from studyrag.application.services.content_analysis import (
    detect_stem_content,
    estimate_token_count,
    is_text_garbled,
    sanitize_text,
)
from studyrag.application.services.embedding_service import EmbeddingService
from studyrag.config import Settings
from studyrag.domain.entities import (
    MAX_SECTION_ID_LENGTH,
    IngestionResult,
    IngestionStatus,
    IngestionWarning,
    Material,
    MaterialChunk,
    MaterialType,
    ReembedResult,
    StructuredMetadata,
    UploadedDocument,
)
from studyrag.domain.exceptions import EntityNotFoundError, InvalidInputError, TextExtractionError
from studyrag.infrastructure.logging.colored_logger import PipelineLogger, PipelineStage

logger = logging.getLogger(__name__)
plog = PipelineLogger("IngestionService")


class IngestionService:
    """Application service that orchestrates the document ingestion pipeline.

    Pipeline: Extract Text → Sanitize → Classify (STEM) → Chunk → Embed → Store → Link

    Every file is processed independently: one file failing never rolls
    back or blocks the others, and each returns its own status.
    """

    def __init__(
        self,
        material_repository: MaterialRepository,
        chunk_repository: ChunkRepository,
        text_extractor: TextExtractor,
        embedding_service: EmbeddingService,
        settings: Settings | None = None,
    ):
        self._material_repo = material_repository
        self._chunk_repo = chunk_repository
        self._extractor = text_extractor
        self._embeddings = embedding_service
        self._settings = settings

    def _chunker(self, math_aware: bool) -> Chunker:
        return get_chunker(math_aware, self._settings)

    # ── Ingestion ────────────────────────────────────────────────────

    async def ingest_files(
        self,
        documents: list[UploadedDocument],
        material_type: MaterialType = MaterialType.CUSTOM,
        title: str | None = None,
        section_id: str | None = None,
    ) -> list[IngestionResult]:
        """Ingest a batch of documents, returning one result per file.

        ``title`` names the material when a single document is uploaded;
        otherwise each material is named after its file.
        """
        if not documents:
            raise InvalidInputError("No files provided")
        if section_id and len(section_id) > MAX_SECTION_ID_LENGTH:
            raise InvalidInputError(
                f"section_id must be at most {MAX_SECTION_ID_LENGTH} characters"
            )

        results: list[IngestionResult] = []
        for i, document in enumerate(documents, 1):
            plog.separator(f"File {i}/{len(documents)}: {document.file_name}")
            doc_title = title if title and len(documents) == 1 else None
            results.append(
                await self.ingest_file(document, material_type, doc_title, section_id)
            )

        plog.stats(
            files=len(results),
            succeeded=sum(1 for r in results if r.status == IngestionStatus.SUCCESS),
            warnings=sum(1 for r in results if r.status == IngestionStatus.WARNING),
            failed=sum(1 for r in results if r.status == IngestionStatus.ERROR),
        )
        return results

    async def ingest_file(
        self,
        document: UploadedDocument,
        material_type: MaterialType = MaterialType.CUSTOM,
        title: str | None = None,
        section_id: str | None = None,
    ) -> IngestionResult:
        """Ingest a single document. Failures are reported in the result, not raised."""
        try:
            return await self._ingest(document, material_type, title, section_id)
        except (InvalidInputError, TextExtractionError) as e:
            plog.step_error(PipelineStage.ERROR, f"Rejected '{document.file_name}'", error=e)
            return IngestionResult(
                file_name=document.file_name, status=IngestionStatus.ERROR, error=str(e)
            )
        except Exception as e:
            logger.exception("Ingestion failed for %s", document.file_name)
            plog.step_error(PipelineStage.ERROR, f"Pipeline failed for '{document.file_name}'", error=e)
            return IngestionResult(
                file_name=document.file_name, status=IngestionStatus.ERROR, error=str(e)
            )

    async def _ingest(
        self,
        document: UploadedDocument,
        material_type: MaterialType,
        title: str | None,
        section_id: str | None,
    ) -> IngestionResult:
        start = time.monotonic()
        plog.step_start(
            PipelineStage.UPLOAD,
            f"Received '{document.file_name}'",
            size_bytes=len(document.content),
        )
        if not document.content:
            raise InvalidInputError(f"File '{document.file_name}' is empty")
        if not self._extractor.supports(document.file_name, document.mime_type):
            raise InvalidInputError(f"Unsupported file type: {document.file_name}")

        # Step 1: Extract text
        with plog.timed_step(PipelineStage.TEXT_EXTRACTION, f"Extracting text from '{document.file_name}'"):
            extracted = await self._extractor.extract(
                document.content, document.file_name, document.mime_type
            )
        text = sanitize_text(extracted.text)

        warnings: list[IngestionWarning] = []
        if is_text_garbled(text):
            plog.step_warning(PipelineStage.TEXT_EXTRACTION, "Extracted text looks garbled")
            warnings.append(
                IngestionWarning(
                    type="garbled_text",
                    message="The extracted text may be garbled. Questions generated from it could be poor.",
                    suggestion="Try re-saving the PDF or converting it to Word first.",
                )
            )

        # Step 2: Classify
        stem = detect_stem_content(text)
        plog.detail(
            "Content classified",
            is_stem=stem.is_stem,
            confidence=stem.confidence,
            chars=len(text),
        )

        material = Material(
            title=title or Path(document.file_name).stem or document.file_name,
            file_name=document.file_name,
            type=material_type,
            has_math=stem.is_stem,
            metadata={
                "stemConfidence": stem.confidence,
                "stemIndicators": stem.indicators,
                "totalCharacters": len(text),
                "estimatedTokens": estimate_token_count(text),
            },
        )
        if extracted.page_count is not None:
            material.metadata["pageCount"] = extracted.page_count

        # Step 3: Chunk
        drafts = []
        if text.strip():
            with plog.timed_step(PipelineStage.CHUNKING, "Chunking text", math_aware=stem.is_stem):
                drafts = self._chunker(stem.is_stem).chunk(text)
        else:
            detail = "scanned PDF without a text layer" if extracted.needs_ocr else "no extractable text"
            plog.step_warning(PipelineStage.TEXT_EXTRACTION, f"Empty document ({detail})")
            warnings.append(
                IngestionWarning(
                    type="empty_text",
                    message=f"No text could be extracted from '{document.file_name}' ({detail}).",
                    suggestion="Upload a text-based version of the document." if extracted.needs_ocr else None,
                )
            )

        # Step 4: Embed
        vectors: list[list[float] | None] = []
        if drafts:
            plog.step_start(PipelineStage.EMBEDDING, f"Embedding {len(drafts)} chunks")
            vectors = await self._embeddings.embed_texts([d.content for d in drafts])

        chunks = [
            MaterialChunk.from_draft(draft, material_id="", embedding=vector)
            for draft, vector in zip(drafts, vectors, strict=True)
        ]
        embedded = sum(1 for c in chunks if c.is_embedded)
        missing = len(chunks) - embedded
        if missing:
            plog.step_warning(PipelineStage.EMBEDDING, f"{missing} chunks stored without vectors")
            warnings.append(
                IngestionWarning(
                    type="partial_embedding",
                    message=(
                        f"{missing} of {len(chunks)} chunks could not be embedded and are "
                        "excluded from search until re-embedded."
                    ),
                    suggestion="Re-run embedding for this material later.",
                )
            )

        material.total_chunks = embedded
        material.has_math = material.has_math or any(c.has_math for c in chunks)
        material.metadata["storedChunks"] = len(chunks)
        chapters = _chapter_titles(chunks)
        if chapters:
            material.metadata["chapters"] = chapters

        # Step 5: Store material, chunks and section link atomically
        with plog.timed_step(PipelineStage.STORAGE, "Storing material and chunks", chunks=len(chunks)):
            material = await self._material_repo.create_with_chunks(material, chunks, section_id)

        status = IngestionStatus.WARNING if warnings else IngestionStatus.SUCCESS
        plog.step_complete(
            PipelineStage.COMPLETE,
            f"Ingested '{document.file_name}'",
            material_id=material.id,
            chunks=len(chunks),
            embedded=embedded,
            elapsed_ms=int((time.monotonic() - start) * 1000),
        )
        return IngestionResult(
            file_name=document.file_name,
            status=status,
            material_id=material.id,
            chunks_created=len(chunks),
            embedded_chunks=embedded,
            is_stem=stem.is_stem,
            stem_confidence=stem.confidence,
            total_characters=len(text),
            estimated_tokens=estimate_token_count(text),
            warnings=warnings,
        )

    # ── Maintenance ──────────────────────────────────────────────────

    async def reembed_material(self, material_id: str) -> ReembedResult:
        """Backfill vectors for chunks stored without one and refresh total_chunks."""
        material = await self._material_repo.get_by_id(material_id)
        if material is None:
            raise EntityNotFoundError("Material", material_id)

        chunks = await self._chunk_repo.get_by_material(material_id)
        pending = [c for c in chunks if not c.is_embedded]
        plog.step_start(
            PipelineStage.EMBEDDING,
            f"Re-embedding '{material.title}'",
            missing=len(pending),
        )

        updated = 0
        if pending:
            vectors = await self._embeddings.embed_texts([c.content for c in pending])
            backfill = {
                c.id: v for c, v in zip(pending, vectors, strict=True) if v is not None and c.id
            }
            if backfill:
                updated = await self._chunk_repo.update_embeddings(backfill)

        material.total_chunks = await self._chunk_repo.count_embedded(material_id)
        material.metadata["storedChunks"] = len(chunks)
        await self._material_repo.update(material)

        result = ReembedResult(
            material_id=material_id,
            updated=updated,
            still_missing=len(chunks) - material.total_chunks,
        )
        plog.step_complete(
            PipelineStage.COMPLETE,
            "Re-embedding finished",
            updated=result.updated,
            still_missing=result.still_missing,
        )
        return result

    async def delete_material(self, material_id: str) -> None:
        """Delete a material together with all of its chunks."""
        deleted = await self._material_repo.delete(material_id)
        if not deleted:
            raise EntityNotFoundError("Material", material_id)
        plog.step_complete(PipelineStage.STORAGE, "Deleted material", material_id=material_id)

    async def get_material(self, material_id: str) -> Material:
        material = await self._material_repo.get_by_id(material_id)
        if material is None:
            raise EntityNotFoundError("Material", material_id)
        return material

    async def list_materials(self, skip: int = 0, limit: int = 100) -> list[Material]:
        return await self._material_repo.list_materials(skip=skip, limit=limit)

    async def get_chunks(self, material_id: str) -> list[MaterialChunk]:
        await self.get_material(material_id)
        return await self._chunk_repo.get_by_material(material_id)


def _chapter_titles(chunks: list[MaterialChunk]) -> list[dict]:
    """Distinct chapters in first-seen order, for the material summary."""
    seen: dict[int, str] = {}
    for chunk in chunks:
        if isinstance(chunk.metadata, StructuredMetadata) and chunk.metadata.chapter not in seen:
            seen[chunk.metadata.chapter] = chunk.metadata.chapter_title
    return [{"number": number, "title": title} for number, title in seen.items()]
