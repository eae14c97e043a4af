"""Abstract interfaces (ports) for text extraction and audio transcription."""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class TextExtractionResult:
    """Result of extracting text from a document.

    Paged formats separate pages with a form feed (``\\f``) so that chunks
    can record the page they came from.
    """

    text: str
    page_count: int | None = None
    needs_ocr: bool = False  # True if only scanned pages were found


class TextExtractor(ABC):
    """Port for text extraction — implemented in the infrastructure layer."""

    @abstractmethod
    async def extract(
        self, content: bytes, file_name: str, mime_type: str | None = None
    ) -> TextExtractionResult:
        """Extract text content from a document's raw bytes.

        Raises:
            UnsupportedFileTypeError: If the format is not supported.
            TextExtractionError: If the document cannot be read.
        """
        ...

    @abstractmethod
    def supports(self, file_name: str, mime_type: str | None = None) -> bool:
        ...


class Transcriber(ABC):
    """Port for audio transcription, delegated to an external provider."""

    @abstractmethod
    async def transcribe(self, content: bytes, file_name: str) -> str:
        """Return the plain-text transcript of an audio file."""
        ...
