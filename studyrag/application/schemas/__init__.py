from .materials import (
    ChunkSchema,
    IngestionResultSchema,
    IngestionWarningSchema,
    MaterialSchema,
    ReembedResultSchema,
    UploadResultSchema,
)
from .retrieval import (
    ChapterFilterSchema,
    HintRequest,
    ScopeSchema,
    SearchRequest,
    SearchResponseSchema,
    SearchResultSchema,
    SectionStructureSchema,
    StructureRequest,
)
from .practice import (
    DeriveFlashcardsRequest,
    FlashcardSetSchema,
    FlashcardSetSummarySchema,
    GenerateFlashcardsRequest,
    GenerateQuizRequest,
    QuizSchema,
    QuizSummarySchema,
)

__all__ = [
    "ChunkSchema",
    "IngestionResultSchema",
    "IngestionWarningSchema",
    "MaterialSchema",
    "ReembedResultSchema",
    "UploadResultSchema",
    "ChapterFilterSchema",
    "HintRequest",
    "ScopeSchema",
    "SearchRequest",
    "SearchResponseSchema",
    "SearchResultSchema",
    "SectionStructureSchema",
    "StructureRequest",
    "DeriveFlashcardsRequest",
    "FlashcardSetSchema",
    "FlashcardSetSummarySchema",
    "GenerateFlashcardsRequest",
    "GenerateQuizRequest",
    "QuizSchema",
    "QuizSummarySchema",
]
