"""Domain entity for materials — one ingested source document."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

# Width of the section id column in the section link table
MAX_SECTION_ID_LENGTH = 36


class MaterialType(str, Enum):
    """Caller-provided hint describing what kind of document a material is."""

    TEXTBOOK = "textbook"
    SYLLABUS = "syllabus"
    LECTURE_NOTES = "lecture_notes"
    PRACTICE_QUESTIONS = "practice_questions"
    CUSTOM = "custom"


@dataclass
class Material:
    """Core domain entity: a processed source document.

    A Material exclusively owns its chunks — deleting it removes them.
    ``total_chunks`` counts the chunks that are retrievable (stored with an
    embedding); the number of stored chunks lives in ``metadata["storedChunks"]``.

    Metadata is a flat JSON dict, e.g.:
        {"stemConfidence": 72, "stemIndicators": ["LaTeX display math"], "storedChunks": 50}
    """

    title: str
    file_name: str
    type: MaterialType = MaterialType.CUSTOM
    id: str | None = None
    total_chunks: int = 0
    has_math: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def stored_chunks(self) -> int:
        return int(self.metadata.get("storedChunks", self.total_chunks))
