from .chat_message import ChatMessage, TokenUsage, ChatCompletionResult
from .material import MAX_SECTION_ID_LENGTH, Material, MaterialType
from .material_chunk import (
    DEFAULT_CHAPTER_TITLE,
    ChunkDraft,
    ChunkMetadata,
    ContentType,
    MaterialChunk,
    StructuredMetadata,
    UnstructuredMetadata,
    metadata_from_dict,
)
from .retrieval import ChapterFilter, ChunkContext, RetrievalResult, RetrievalScope
from .structure import ChapterSummary, MaterialStructure, SectionStructure, TopicSummary
from .practice import Difficulty, Flashcard, FlashcardSet, Question, QuestionType, Quiz
from .ingestion import (
    IngestionResult,
    IngestionStatus,
    IngestionWarning,
    ReembedResult,
    UploadedDocument,
)

__all__ = [
    "MAX_SECTION_ID_LENGTH",
    "ChatMessage",
    "TokenUsage",
    "ChatCompletionResult",
    "Material",
    "MaterialType",
    "DEFAULT_CHAPTER_TITLE",
    "ChunkDraft",
    "ChunkMetadata",
    "ContentType",
    "MaterialChunk",
    "StructuredMetadata",
    "UnstructuredMetadata",
    "metadata_from_dict",
    "ChapterFilter",
    "ChunkContext",
    "RetrievalResult",
    "RetrievalScope",
    "ChapterSummary",
    "MaterialStructure",
    "SectionStructure",
    "TopicSummary",
    "Difficulty",
    "Flashcard",
    "FlashcardSet",
    "Question",
    "QuestionType",
    "Quiz",
    "IngestionResult",
    "IngestionStatus",
    "IngestionWarning",
    "ReembedResult",
    "UploadedDocument",
]
