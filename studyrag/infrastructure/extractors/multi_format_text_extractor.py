"""Multi-format text extractor — extracts text from PDF, DOCX, plain text, LaTeX, RTF and audio."""

import io
import logging
import re
import zipfile
from pathlib import Path

from studyrag.application.interfaces.text_extractor import (
    TextExtractionResult,
    TextExtractor,
    Transcriber,
)
from studyrag.domain.exceptions import TextExtractionError, UnsupportedFileTypeError

logger = logging.getLogger(__name__)

PAGE_SEPARATOR = "\f"

_RTF_CONTROL_WORD = re.compile(r"\\[a-zA-Z]+-?\d* ?")
_RTF_HEX_ESCAPE = re.compile(r"\\'([0-9a-fA-F]{2})")
_RTF_IGNORED_GROUP = re.compile(r"\{\\\*[^{}]*\}|\{\\(?:fonttbl|colortbl|stylesheet|info)[^{}]*(?:\{[^{}]*\}[^{}]*)*\}")


class MultiFormatTextExtractor(TextExtractor):
    """Infrastructure adapter that extracts text from study documents.

    Implements the TextExtractor interface using format-specific libraries:
    - PDF: PyMuPDF (fitz), pages separated by form feeds
    - DOCX/DOC: python-docx
    - TXT/MD/TEX: built-in, UTF-8 with latin-1 fallback
    - RTF: control words stripped
    - MP3/WAV/M4A: delegated to the injected Transcriber
    """

    # Extension → handler method mapping
    _HANDLERS: dict[str, str] = {
        ".pdf": "_extract_pdf",
        ".docx": "_extract_docx",
        ".doc": "_extract_docx",
        ".txt": "_extract_text",
        ".md": "_extract_text",
        ".markdown": "_extract_text",
        ".tex": "_extract_text",
        ".rtf": "_extract_rtf",
        ".mp3": "_extract_audio",
        ".wav": "_extract_audio",
        ".m4a": "_extract_audio",
    }

    _MIME_EXTENSIONS: dict[str, str] = {
        "application/pdf": ".pdf",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ".docx",
        "application/msword": ".doc",
        "text/plain": ".txt",
        "text/markdown": ".md",
        "application/x-tex": ".tex",
        "text/x-tex": ".tex",
        "application/rtf": ".rtf",
        "text/rtf": ".rtf",
        "audio/mpeg": ".mp3",
        "audio/wav": ".wav",
        "audio/x-wav": ".wav",
        "audio/mp4": ".m4a",
        "audio/x-m4a": ".m4a",
    }

    def __init__(self, transcriber: Transcriber | None = None):
        self._transcriber = transcriber

    def supported_extensions(self) -> list[str]:
        """Return all supported file extensions."""
        return list(self._HANDLERS.keys())

    def _resolve_extension(self, file_name: str, mime_type: str | None) -> str | None:
        extension = Path(file_name).suffix.lower()
        if extension in self._HANDLERS:
            return extension
        if mime_type:
            return self._MIME_EXTENSIONS.get(mime_type.split(";")[0].strip().lower())
        return None

    def supports(self, file_name: str, mime_type: str | None = None) -> bool:
        extension = self._resolve_extension(file_name, mime_type)
        if extension is None:
            return False
        return self._HANDLERS[extension] != "_extract_audio" or self._transcriber is not None

    async def extract(
        self, content: bytes, file_name: str, mime_type: str | None = None
    ) -> TextExtractionResult:
        """Extract text from a document's bytes.

        The format is taken from the file extension, falling back to the
        declared MIME type.

        Raises:
            UnsupportedFileTypeError: If the format is not supported.
            TextExtractionError: If the document cannot be read.
        """
        extension = self._resolve_extension(file_name, mime_type)
        if extension is None:
            raise UnsupportedFileTypeError(
                file_name, f"allowed: {', '.join(self.supported_extensions())}"
            )

        handler = getattr(self, self._HANDLERS[extension])
        result = await handler(content, file_name)

        logger.info(
            "Extracted %d characters from %s (%s)",
            len(result.text),
            file_name,
            extension,
        )
        return result

    # ── Format-specific handlers ─────────────────────────────────────

    async def _extract_pdf(self, content: bytes, file_name: str) -> TextExtractionResult:
        """Extract text from PDF using PyMuPDF, one form-feed separated block per page."""
        import fitz  # PyMuPDF

        try:
            doc = fitz.open(stream=content, filetype="pdf")
        except (RuntimeError, ValueError) as exc:
            raise TextExtractionError(file_name, str(exc)) from exc

        pages: list[str] = []
        scanned = 0
        try:
            for page_num, page in enumerate(doc):
                text = page.get_text("text")
                if not text.strip():
                    # Page might be scanned/image; keep the slot so page numbers stay aligned
                    logger.debug("Page %d appears to be scanned (no text layer)", page_num + 1)
                    scanned += 1
                pages.append(text.strip())
        finally:
            doc.close()

        if pages and scanned == len(pages):
            logger.warning("PDF has no extractable text, may require OCR: %s", file_name)
            return TextExtractionResult(text="", page_count=len(pages), needs_ocr=True)

        return TextExtractionResult(text=PAGE_SEPARATOR.join(pages), page_count=len(pages))

    async def _extract_docx(self, content: bytes, file_name: str) -> TextExtractionResult:
        """Extract text from DOCX using python-docx."""
        from docx import Document
        from docx.opc.exceptions import PackageNotFoundError

        try:
            doc = Document(io.BytesIO(content))
        except (PackageNotFoundError, zipfile.BadZipFile, ValueError, KeyError) as exc:
            detail = "legacy .doc files must be saved as .docx" if file_name.lower().endswith(".doc") else str(exc)
            raise TextExtractionError(file_name, detail) from exc

        parts: list[str] = []

        # Paragraphs
        for para in doc.paragraphs:
            if para.text.strip():
                parts.append(para.text)

        # Tables
        for table in doc.tables:
            for row in table.rows:
                cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
                if cells:
                    parts.append(" | ".join(cells))

        return TextExtractionResult(text="\n".join(parts))

    async def _extract_text(self, content: bytes, file_name: str) -> TextExtractionResult:
        """Decode plain text files (TXT, MD, TEX)."""
        return TextExtractionResult(text=_decode(content))

    async def _extract_rtf(self, content: bytes, file_name: str) -> TextExtractionResult:
        """Strip RTF groups and control words down to plain text."""
        raw = _decode(content)
        text = _RTF_IGNORED_GROUP.sub("", raw)
        text = _RTF_HEX_ESCAPE.sub(lambda m: bytes.fromhex(m.group(1)).decode("latin-1"), text)
        text = re.sub(r"\\par[d]?\b ?", "\n", text)
        text = text.replace("\\tab", "\t")
        text = _RTF_CONTROL_WORD.sub("", text)
        text = re.sub(r"\\([{}\\])", r"\1", text)
        text = text.replace("{", "").replace("}", "")
        text = re.sub(r"\n{3,}", "\n\n", text)
        return TextExtractionResult(text=text.strip())

    async def _extract_audio(self, content: bytes, file_name: str) -> TextExtractionResult:
        """Delegate audio files to the external transcription provider."""
        if self._transcriber is None:
            raise UnsupportedFileTypeError(file_name, "no transcription provider configured")
        transcript = await self._transcriber.transcribe(content, file_name)
        return TextExtractionResult(text=transcript or "")


def _decode(content: bytes) -> str:
    # Try UTF-8 first, then fall back to latin-1
    try:
        return content.decode("utf-8")
    except UnicodeDecodeError:
        return content.decode("latin-1")
