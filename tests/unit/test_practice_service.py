"""Unit tests for PracticeService."""

import pytest

from studyrag.application.services.practice_service import PracticeService
from studyrag.domain.entities import Flashcard, FlashcardSet, Question, QuestionType, Quiz
from studyrag.domain.exceptions import EntityNotFoundError
from tests.fakes import InMemoryPracticeRepository


def _quiz(name: str, folder_id: str | None = None) -> Quiz:
    return Quiz(
        name=name,
        section_ids=["s1"],
        difficulty="easy",
        question_type=QuestionType.TRUE_FALSE,
        folder_id=folder_id,
        questions=[Question(question="Is it?", question_type=QuestionType.TRUE_FALSE, correct_answer="true")],
    )


@pytest.fixture
def repo():
    return InMemoryPracticeRepository()


@pytest.fixture
def service(repo):
    return PracticeService(repo)


class TestQuizzes:
    @pytest.mark.asyncio
    async def test_get_saved_quiz(self, repo, service):
        saved = await repo.save_quiz(_quiz("Week 1"))

        quiz = await service.get_quiz(saved.id)

        assert quiz.name == "Week 1"
        assert quiz.questions[0].id is not None

    @pytest.mark.asyncio
    async def test_get_missing_quiz(self, service):
        with pytest.raises(EntityNotFoundError):
            await service.get_quiz("missing")

    @pytest.mark.asyncio
    async def test_list_filters_by_folder(self, repo, service):
        await repo.save_quiz(_quiz("a", folder_id="f1"))
        await repo.save_quiz(_quiz("b", folder_id="f2"))

        quizzes = await service.list_quizzes(folder_id="f1")

        assert [q.name for q in quizzes] == ["a"]

    @pytest.mark.asyncio
    async def test_delete_twice(self, repo, service):
        saved = await repo.save_quiz(_quiz("a"))

        await service.delete_quiz(saved.id)

        with pytest.raises(EntityNotFoundError):
            await service.delete_quiz(saved.id)


class TestFlashcardSets:
    @pytest.mark.asyncio
    async def test_roundtrip_and_delete(self, repo, service):
        saved = await repo.save_flashcard_set(
            FlashcardSet(name="Cards", cards=[Flashcard(front="f", back="b")])
        )

        assert (await service.get_flashcard_set(saved.id)).total_cards == 1
        assert len(await service.list_flashcard_sets()) == 1

        await service.delete_flashcard_set(saved.id)

        with pytest.raises(EntityNotFoundError):
            await service.get_flashcard_set(saved.id)
