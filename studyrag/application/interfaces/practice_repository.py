"""Abstract repository interface (port) for quizzes and flashcard sets."""

from abc import ABC, abstractmethod

from studyrag.domain.entities import FlashcardSet, Quiz


class PracticeRepository(ABC):
    """Port for generated practice material persistence."""

    @abstractmethod
    async def save_quiz(self, quiz: Quiz) -> Quiz:
        """Persist a quiz with all its questions, all-or-nothing."""
        ...

    @abstractmethod
    async def get_quiz(self, quiz_id: str) -> Quiz | None:
        ...

    @abstractmethod
    async def list_quizzes(
        self, *, folder_id: str | None = None, skip: int = 0, limit: int = 100
    ) -> list[Quiz]:
        ...

    @abstractmethod
    async def delete_quiz(self, quiz_id: str) -> bool:
        ...

    @abstractmethod
    async def save_flashcard_set(self, flashcard_set: FlashcardSet) -> FlashcardSet:
        """Persist a flashcard set with all its cards, all-or-nothing."""
        ...

    @abstractmethod
    async def get_flashcard_set(self, set_id: str) -> FlashcardSet | None:
        ...

    @abstractmethod
    async def list_flashcard_sets(
        self, *, folder_id: str | None = None, skip: int = 0, limit: int = 100
    ) -> list[FlashcardSet]:
        ...

    @abstractmethod
    async def delete_flashcard_set(self, set_id: str) -> bool:
        ...
