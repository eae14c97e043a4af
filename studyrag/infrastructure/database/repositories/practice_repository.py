"""SQLAlchemy implementation of PracticeRepository for quizzes and flashcard sets."""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from studyrag.application.interfaces import PracticeRepository
from studyrag.domain.entities import Flashcard, FlashcardSet, Question, QuestionType, Quiz
from studyrag.infrastructure.database.models.practice_models import (
    FlashcardModel,
    FlashcardSetModel,
    QuestionModel,
    QuizSetModel,
)

logger = logging.getLogger(__name__)


class SQLAlchemyPracticeRepository(PracticeRepository):
    """Concrete practice repository backed by PostgreSQL via SQLAlchemy.

    A set and its children are written inside one savepoint so a partially
    written quiz or flashcard set is never visible.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    # ── Quizzes ──────────────────────────────────────────────────────

    async def save_quiz(self, quiz: Quiz) -> Quiz:
        model = QuizSetModel(
            name=quiz.name,
            description=quiz.description,
            folder_id=quiz.folder_id,
            section_ids=list(quiz.section_ids),
            question_type=quiz.question_type.value,
            difficulty=quiz.difficulty,
            total_questions=len(quiz.questions),
            created_at=quiz.created_at,
            questions=[
                QuestionModel(
                    question_index=q.question_index,
                    question=q.question,
                    question_type=q.question_type.value,
                    options=q.options,
                    correct_answer=q.correct_answer,
                    explanation=q.explanation,
                    difficulty=q.difficulty,
                    topic=q.topic,
                    chapter=q.chapter,
                    source_chunk_ids=list(q.source_chunk_ids),
                )
                for q in quiz.questions
            ],
        )
        async with self._session.begin_nested():
            self._session.add(model)
            await self._session.flush()

        quiz.id = model.id
        for question, question_model in zip(quiz.questions, model.questions, strict=True):
            question.id = question_model.id
        logger.info("Saved quiz %s with %d questions", quiz.id, len(quiz.questions))
        return quiz

    async def get_quiz(self, quiz_id: str) -> Quiz | None:
        result = await self._session.execute(
            select(QuizSetModel).where(QuizSetModel.id == quiz_id)
        )
        model = result.scalar_one_or_none()
        return self._quiz_to_domain(model) if model else None

    async def list_quizzes(
        self, *, folder_id: str | None = None, skip: int = 0, limit: int = 100
    ) -> list[Quiz]:
        query = select(QuizSetModel)
        if folder_id:
            query = query.where(QuizSetModel.folder_id == folder_id)
        result = await self._session.execute(
            query.order_by(QuizSetModel.created_at.desc()).offset(skip).limit(limit)
        )
        return [self._quiz_to_domain(m) for m in result.scalars().all()]

    async def delete_quiz(self, quiz_id: str) -> bool:
        model = await self._session.get(QuizSetModel, quiz_id)
        if model is None:
            return False
        await self._session.delete(model)
        await self._session.flush()
        return True

    # ── Flashcard sets ───────────────────────────────────────────────

    async def save_flashcard_set(self, flashcard_set: FlashcardSet) -> FlashcardSet:
        model = FlashcardSetModel(
            name=flashcard_set.name,
            description=flashcard_set.description,
            folder_id=flashcard_set.folder_id,
            section_ids=list(flashcard_set.section_ids),
            source_quiz_id=flashcard_set.source_quiz_id,
            total_cards=len(flashcard_set.cards),
            created_at=flashcard_set.created_at,
            cards=[
                FlashcardModel(
                    card_index=card.card_index,
                    front=card.front,
                    back=card.back,
                    topic=card.topic,
                    chapter=card.chapter,
                    difficulty=card.difficulty,
                    source_chunk_ids=list(card.source_chunk_ids),
                )
                for card in flashcard_set.cards
            ],
        )
        async with self._session.begin_nested():
            self._session.add(model)
            await self._session.flush()

        flashcard_set.id = model.id
        for card, card_model in zip(flashcard_set.cards, model.cards, strict=True):
            card.id = card_model.id
        logger.info("Saved flashcard set %s with %d cards", flashcard_set.id, len(flashcard_set.cards))
        return flashcard_set

    async def get_flashcard_set(self, set_id: str) -> FlashcardSet | None:
        result = await self._session.execute(
            select(FlashcardSetModel).where(FlashcardSetModel.id == set_id)
        )
        model = result.scalar_one_or_none()
        return self._set_to_domain(model) if model else None

    async def list_flashcard_sets(
        self, *, folder_id: str | None = None, skip: int = 0, limit: int = 100
    ) -> list[FlashcardSet]:
        query = select(FlashcardSetModel)
        if folder_id:
            query = query.where(FlashcardSetModel.folder_id == folder_id)
        result = await self._session.execute(
            query.order_by(FlashcardSetModel.created_at.desc()).offset(skip).limit(limit)
        )
        return [self._set_to_domain(m) for m in result.scalars().all()]

    async def delete_flashcard_set(self, set_id: str) -> bool:
        model = await self._session.get(FlashcardSetModel, set_id)
        if model is None:
            return False
        await self._session.delete(model)
        await self._session.flush()
        return True

    # ── Mapping ──────────────────────────────────────────────────────

    @staticmethod
    def _quiz_to_domain(model: QuizSetModel) -> Quiz:
        return Quiz(
            id=model.id,
            name=model.name,
            description=model.description,
            folder_id=model.folder_id,
            section_ids=list(model.section_ids or []),
            question_type=QuestionType(model.question_type),
            difficulty=model.difficulty,
            created_at=model.created_at,
            questions=[
                Question(
                    id=q.id,
                    question_index=q.question_index,
                    question=q.question,
                    question_type=QuestionType(q.question_type),
                    options=q.options,
                    correct_answer=q.correct_answer,
                    explanation=q.explanation,
                    difficulty=q.difficulty,
                    topic=q.topic,
                    chapter=q.chapter,
                    source_chunk_ids=list(q.source_chunk_ids or []),
                )
                for q in model.questions
            ],
        )

    @staticmethod
    def _set_to_domain(model: FlashcardSetModel) -> FlashcardSet:
        return FlashcardSet(
            id=model.id,
            name=model.name,
            description=model.description,
            folder_id=model.folder_id,
            section_ids=list(model.section_ids or []),
            source_quiz_id=model.source_quiz_id,
            created_at=model.created_at,
            cards=[
                Flashcard(
                    id=c.id,
                    card_index=c.card_index,
                    front=c.front,
                    back=c.back,
                    topic=c.topic,
                    chapter=c.chapter,
                    difficulty=c.difficulty,
                    source_chunk_ids=list(c.source_chunk_ids or []),
                )
                for c in model.cards
            ],
        )
