"""Pydantic schemas for quiz and flashcard API requests and responses."""

from typing import Any

from pydantic import BaseModel, Field

from studyrag.application.schemas.retrieval import ChapterFilterSchema
from studyrag.domain.entities import Difficulty, QuestionType


# ── Request Schemas ──────────────────────────────────────────────────


class GenerateQuizRequest(BaseModel):
    """Request body for quiz generation."""

    section_ids: list[str] = Field(..., min_length=1)
    question_count: int = Field(default=20, ge=1)
    question_type: QuestionType = QuestionType.MULTIPLE_CHOICE
    difficulty: Difficulty = Difficulty.MIXED
    name: str | None = None
    description: str | None = None
    folder_id: str | None = None
    chapter_filter: list[ChapterFilterSchema] | None = None


class GenerateFlashcardsRequest(BaseModel):
    """Request body for flashcard generation."""

    section_ids: list[str] = Field(..., min_length=1)
    count: int = Field(default=20, ge=1)
    topic: str | None = None
    name: str | None = None
    description: str | None = None
    folder_id: str | None = None
    chapter_filter: list[ChapterFilterSchema] | None = None


class DeriveFlashcardsRequest(BaseModel):
    """Optional overrides when turning a quiz into flashcards."""

    name: str | None = None
    description: str | None = None
    folder_id: str | None = None


# ── Response Schemas ─────────────────────────────────────────────────


class QuestionSchema(BaseModel):
    id: str | None = None
    question_index: int
    question: str
    question_type: str
    options: dict[str, str] | None = None
    correct_answer: str
    explanation: str | None = None
    difficulty: str
    topic: str | None = None
    chapter: int | None = None
    source_chunk_ids: list[str] = []


class QuizSchema(BaseModel):
    id: str | None = None
    name: str
    description: str | None = None
    folder_id: str | None = None
    section_ids: list[str] = []
    question_type: str
    difficulty: str
    total_questions: int
    questions: list[QuestionSchema] = []
    created_at: str
    warnings: list[str] = []
    stats: dict[str, Any] = {}


class QuizSummarySchema(BaseModel):
    """Lightweight quiz representation for list views."""
    id: str
    name: str
    question_type: str
    difficulty: str
    total_questions: int
    folder_id: str | None = None
    created_at: str


class FlashcardSchema(BaseModel):
    id: str | None = None
    card_index: int
    front: str
    back: str
    topic: str | None = None
    chapter: int | None = None
    difficulty: str | None = None
    source_chunk_ids: list[str] = []


class FlashcardSetSchema(BaseModel):
    id: str | None = None
    name: str
    description: str | None = None
    folder_id: str | None = None
    source_quiz_id: str | None = None
    section_ids: list[str] = []
    total_cards: int
    cards: list[FlashcardSchema] = []
    created_at: str
    warnings: list[str] = []
    stats: dict[str, Any] = {}


class FlashcardSetSummarySchema(BaseModel):
    id: str
    name: str
    total_cards: int
    folder_id: str | None = None
    source_quiz_id: str | None = None
    created_at: str
