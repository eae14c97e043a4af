"""Practice service — read and delete persisted quizzes and flashcard sets."""

import logging

from studyrag.application.interfaces.practice_repository import PracticeRepository
from studyrag.domain.entities import FlashcardSet, Quiz
from studyrag.domain.exceptions import EntityNotFoundError

logger = logging.getLogger(__name__)


class PracticeService:
    """Application service for generated practice material."""

    def __init__(self, repository: PracticeRepository):
        self._repo = repository

    async def get_quiz(self, quiz_id: str) -> Quiz:
        quiz = await self._repo.get_quiz(quiz_id)
        if quiz is None:
            raise EntityNotFoundError("Quiz", quiz_id)
        return quiz

    async def list_quizzes(
        self, folder_id: str | None = None, skip: int = 0, limit: int = 100
    ) -> list[Quiz]:
        return await self._repo.list_quizzes(folder_id=folder_id, skip=skip, limit=limit)

    async def delete_quiz(self, quiz_id: str) -> None:
        deleted = await self._repo.delete_quiz(quiz_id)
        if not deleted:
            raise EntityNotFoundError("Quiz", quiz_id)
        logger.info("Deleted quiz %s", quiz_id)

    async def get_flashcard_set(self, set_id: str) -> FlashcardSet:
        flashcard_set = await self._repo.get_flashcard_set(set_id)
        if flashcard_set is None:
            raise EntityNotFoundError("FlashcardSet", set_id)
        return flashcard_set

    async def list_flashcard_sets(
        self, folder_id: str | None = None, skip: int = 0, limit: int = 100
    ) -> list[FlashcardSet]:
        return await self._repo.list_flashcard_sets(folder_id=folder_id, skip=skip, limit=limit)

    async def delete_flashcard_set(self, set_id: str) -> None:
        deleted = await self._repo.delete_flashcard_set(set_id)
        if not deleted:
            raise EntityNotFoundError("FlashcardSet", set_id)
        logger.info("Deleted flashcard set %s", set_id)
