"""Domain entities for document ingestion — uploaded documents and per-file outcomes."""

from dataclasses import dataclass, field
from enum import Enum


class IngestionStatus(str, Enum):
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class UploadedDocument:
    """Raw bytes of one document plus what the caller declared about it."""

    file_name: str
    content: bytes
    mime_type: str | None = None


@dataclass
class IngestionWarning:
    """A non-fatal problem found while ingesting a document."""

    type: str  # "garbled_text" | "empty_text" | "partial_embedding"
    message: str
    suggestion: str | None = None


@dataclass
class IngestionResult:
    """Outcome of ingesting a single file."""

    file_name: str
    status: IngestionStatus
    material_id: str | None = None
    chunks_created: int = 0
    embedded_chunks: int = 0
    is_stem: bool = False
    stem_confidence: int = 0
    total_characters: int = 0
    estimated_tokens: int = 0
    warnings: list[IngestionWarning] = field(default_factory=list)
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.status != IngestionStatus.ERROR


@dataclass
class ReembedResult:
    """Outcome of backfilling missing vectors for a material."""

    material_id: str
    updated: int
    still_missing: int
