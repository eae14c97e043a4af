"""Domain entities for generated practice material — quizzes and flashcard sets."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class QuestionType(str, Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    SHORT_ANSWER = "short_answer"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    MIXED = "mixed"


@dataclass
class Question:
    """A generated quiz question.

    ``source_chunk_ids`` is a weak back-reference: the chunks may have been
    deleted since, in which case the ids are simply skipped on reuse.
    """

    question: str
    question_type: QuestionType
    correct_answer: str
    options: dict[str, str] | None = None  # {"A": ..., "B": ..., "C": ..., "D": ...}
    explanation: str | None = None
    difficulty: str = Difficulty.MEDIUM.value
    topic: str | None = None
    chapter: int | None = None
    source_chunk_ids: list[str] = field(default_factory=list)
    question_index: int = 0
    id: str | None = None

    @property
    def correct_option_text(self) -> str | None:
        if not self.options:
            return None
        return self.options.get(self.correct_answer.upper())


@dataclass
class Quiz:
    """A persisted quiz and its ordered questions."""

    name: str
    section_ids: list[str]
    difficulty: str
    question_type: QuestionType
    questions: list[Question] = field(default_factory=list)
    description: str | None = None
    folder_id: str | None = None
    id: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    # Not persisted — reported alongside a freshly generated quiz
    warnings: list[str] = field(default_factory=list)
    stats: dict[str, Any] = field(default_factory=dict)

    @property
    def total_questions(self) -> int:
        return len(self.questions)


@dataclass
class Flashcard:
    """A single front/back study card."""

    front: str
    back: str
    topic: str | None = None
    chapter: int | None = None
    difficulty: str | None = None
    source_chunk_ids: list[str] = field(default_factory=list)
    card_index: int = 0
    id: str | None = None


@dataclass
class FlashcardSet:
    """A persisted set of flashcards."""

    name: str
    section_ids: list[str] = field(default_factory=list)
    cards: list[Flashcard] = field(default_factory=list)
    description: str | None = None
    folder_id: str | None = None
    source_quiz_id: str | None = None
    id: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    warnings: list[str] = field(default_factory=list)
    stats: dict[str, Any] = field(default_factory=dict)

    @property
    def total_cards(self) -> int:
        return len(self.cards)
