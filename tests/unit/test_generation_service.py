"""Unit tests for GroundedGenerator: grounding, fallbacks, validation and deduplication."""

import random

import pytest

from studyrag.application.retry_policy import RetryPolicy
from studyrag.application.services.embedding_service import EmbeddingService
from studyrag.application.services.generation_service import (
    FlashcardRequest,
    GroundedGenerator,
    QuizRequest,
    apply_chapter_filter,
    question_to_flashcard,
    word_jaccard,
)
from studyrag.domain.entities import (
    ChapterFilter,
    Material,
    MaterialChunk,
    Question,
    QuestionType,
    Quiz,
    StructuredMetadata,
)
from studyrag.domain.exceptions import (
    ChatProviderError,
    EntityNotFoundError,
    GenerationError,
    InsufficientMaterialError,
    InvalidInputError,
)
from tests.fakes import (
    FakeChatProvider,
    FakeEmbeddingProvider,
    InMemoryChunkRepository,
    InMemoryMaterialRepository,
    InMemoryPracticeRepository,
    ItemWriter,
    items_json,
    mc_item,
)

LIMITS = "The limit of a function describes the value it approaches near a point."
DERIVATIVES = "The derivative measures the instantaneous rate of change of a function."
MATRICES = "A matrix is a rectangular array of numbers used to represent linear maps."


async def _no_sleep(_: float) -> None:
    return None


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture
def embeddings():
    return FakeEmbeddingProvider()


@pytest.fixture
def materials():
    return InMemoryMaterialRepository(InMemoryChunkRepository())


@pytest.fixture
def practice():
    return InMemoryPracticeRepository()


@pytest.fixture
def make_generator(materials, practice, embeddings):
    def _make(chat: FakeChatProvider, **options) -> GroundedGenerator:
        retry = RetryPolicy(max_attempts=2, base_delay=0, sleep=_no_sleep)
        return GroundedGenerator(
            materials,
            materials.chunks,
            practice,
            chat,
            EmbeddingService(embeddings, retry),
            retry,
            model="primary",
            fallback_model="backup",
            rng=random.Random(0),
            **options,
        )

    return _make


async def _seed(materials, embeddings, contents, chapters=None, section_id="s1", embed=True):
    chunks = []
    for index, content in enumerate(contents):
        chunk = MaterialChunk(
            material_id="",
            chunk_index=index,
            content=content,
            embedding=embeddings.vector_for(content) if embed else None,
        )
        if chapters:
            chunk.metadata = StructuredMetadata(chapter=chapters[index], chapter_title=f"Part {chapters[index]}")
        chunks.append(chunk)
    material = await materials.create_with_chunks(Material(title="Calculus", file_name="calc.pdf"), chunks)
    await materials.link_to_section(material.id, section_id)
    return material, chunks


# ── Quizzes ──────────────────────────────────────────────────────────


class TestGenerateQuiz:
    @pytest.mark.asyncio
    async def test_three_chunk_section_yields_grounded_quiz(self, materials, embeddings, practice, make_generator):
        _, chunks = await _seed(materials, embeddings, [LIMITS, DERIVATIVES, MATRICES])
        chat = FakeChatProvider(responder=ItemWriter(per_call=6))
        generator = make_generator(chat)

        quiz = await generator.generate_quiz(QuizRequest(section_ids=["s1"], question_count=5))

        chunk_ids = {c.id for c in chunks}
        assert quiz.id in practice.quizzes
        assert quiz.total_questions == 5
        assert [q.question_index for q in quiz.questions] == [0, 1, 2, 3, 4]
        for question in quiz.questions:
            assert question.source_chunk_ids
            assert set(question.source_chunk_ids) <= chunk_ids
            assert question.options and question.correct_answer == "B"
        assert quiz.warnings == []
        assert quiz.stats["llmCalls"] == len(chat.calls)
        assert set(chat.models_called) == {"primary"}

    @pytest.mark.asyncio
    async def test_progress_messages_are_reported(self, materials, embeddings, make_generator):
        await _seed(materials, embeddings, [LIMITS])
        generator = make_generator(FakeChatProvider(responder=ItemWriter(per_call=3)))
        messages: list[str] = []

        async def progress(message: str) -> None:
            messages.append(message)

        await generator.generate_quiz(QuizRequest(section_ids=["s1"], question_count=2), progress)

        assert messages[0] == "Fetching study materials..."
        assert "Saving quiz..." in messages
        assert any(m.startswith("Generated batch") for m in messages)

    @pytest.mark.asyncio
    async def test_chapter_mode_covers_every_chapter(self, materials, embeddings, make_generator):
        contents = [LIMITS, LIMITS + " Again.", DERIVATIVES, DERIVATIVES + " Again.", MATRICES, MATRICES + " Again."]
        await _seed(materials, embeddings, contents, chapters=[1, 1, 2, 2, 3, 3])
        generator = make_generator(FakeChatProvider(responder=ItemWriter(per_call=3)))

        quiz = await generator.generate_quiz(QuizRequest(section_ids=["s1"], question_count=6))

        assert quiz.stats["chapterMode"] is True
        assert sorted(q.chapter for q in quiz.questions) == [1, 1, 2, 2, 3, 3]
        assert {q.topic for q in quiz.questions} == {"Part 1", "Part 2", "Part 3"}

    @pytest.mark.asyncio
    async def test_filtered_out_chapters_fail_without_llm_call(self, materials, embeddings, make_generator):
        material, _ = await _seed(materials, embeddings, [LIMITS, DERIVATIVES], chapters=[1, 2])
        chat = FakeChatProvider(responder=ItemWriter())
        generator = make_generator(chat)

        with pytest.raises(InsufficientMaterialError):
            await generator.generate_quiz(
                QuizRequest(
                    section_ids=["s1"],
                    question_count=3,
                    chapter_filter=[ChapterFilter(material_id=material.id, chapters=[3])],
                )
            )
        assert chat.calls == []

    @pytest.mark.asyncio
    async def test_empty_section_fails_without_llm_call(self, make_generator):
        chat = FakeChatProvider(responder=ItemWriter())

        with pytest.raises(InsufficientMaterialError):
            await make_generator(chat).generate_quiz(QuizRequest(section_ids=["nothing"], question_count=3))
        assert chat.calls == []

    @pytest.mark.asyncio
    async def test_unembedded_chunks_are_not_grounding(self, materials, embeddings, make_generator):
        await _seed(materials, embeddings, [LIMITS], embed=False)

        with pytest.raises(InsufficientMaterialError):
            await make_generator(FakeChatProvider()).generate_quiz(QuizRequest(section_ids=["s1"], question_count=1))

    @pytest.mark.parametrize("count", [0, 101])
    @pytest.mark.asyncio
    async def test_count_out_of_range(self, make_generator, count):
        with pytest.raises(InvalidInputError):
            await make_generator(FakeChatProvider()).generate_quiz(QuizRequest(section_ids=["s1"], question_count=count))

    @pytest.mark.asyncio
    async def test_falls_back_to_second_model(self, materials, embeddings, make_generator):
        await _seed(materials, embeddings, [LIMITS])
        chat = FakeChatProvider(
            script=[ChatProviderError("fake", 503, "down"), ChatProviderError("fake", 503, "down")],
            responder=ItemWriter(per_call=3),
        )

        quiz = await make_generator(chat).generate_quiz(QuizRequest(section_ids=["s1"], question_count=2))

        assert chat.models_called == ["primary", "primary", "backup"]
        assert quiz.total_questions == 2

    @pytest.mark.asyncio
    async def test_auth_failure_skips_fallback(self, materials, embeddings, make_generator):
        await _seed(materials, embeddings, [LIMITS])
        chat = FakeChatProvider(default=None, script=[ChatProviderError("fake", 401, "bad key")])

        with pytest.raises(GenerationError):
            await make_generator(chat).generate_quiz(QuizRequest(section_ids=["s1"], question_count=2))
        assert chat.models_called == ["primary"]

    @pytest.mark.asyncio
    async def test_persistently_malformed_output_fails(self, materials, embeddings, make_generator):
        await _seed(materials, embeddings, [LIMITS])
        chat = FakeChatProvider(default="I cannot produce JSON today.")

        with pytest.raises(GenerationError) as exc_info:
            await make_generator(chat).generate_quiz(QuizRequest(section_ids=["s1"], question_count=2))
        assert "Failed to parse" in str(exc_info.value)
        assert chat.models_called == ["primary", "primary", "backup", "backup"]

    @pytest.mark.asyncio
    async def test_invalid_items_are_dropped_with_warning(self, materials, embeddings, make_generator):
        _, chunks = await _seed(materials, embeddings, [LIMITS])
        reply = items_json(
            [
                mc_item("What does a limit describe?", [chunks[0].id]),
                mc_item("Which value does f approach?", [chunks[0].id]),
                mc_item("Broken item", [chunks[0].id], correct_answer="Z"),
            ]
        )

        quiz = await make_generator(FakeChatProvider(script=[reply])).generate_quiz(
            QuizRequest(section_ids=["s1"], question_count=2)
        )

        assert quiz.total_questions == 2
        assert "1 generated questions failed validation and were dropped." in quiz.warnings

    @pytest.mark.asyncio
    async def test_duplicates_are_removed_and_shortfall_reported(self, materials, embeddings, make_generator):
        await _seed(materials, embeddings, [LIMITS])
        reply = items_json([mc_item("What does a limit describe?"), mc_item("What does a limit describe?")])

        quiz = await make_generator(FakeChatProvider(script=[reply])).generate_quiz(
            QuizRequest(section_ids=["s1"], question_count=2)
        )

        assert quiz.total_questions == 1
        assert "Only 1 of 2 questions could be generated from the source material." in quiz.warnings

    @pytest.mark.asyncio
    async def test_uncited_items_fall_back_to_context_chunks(self, materials, embeddings, make_generator):
        _, chunks = await _seed(materials, embeddings, [LIMITS])
        reply = items_json([mc_item("What does a limit describe?", ["not-a-real-chunk"])])

        quiz = await make_generator(FakeChatProvider(script=[reply])).generate_quiz(
            QuizRequest(section_ids=["s1"], question_count=1)
        )

        assert quiz.questions[0].source_chunk_ids == [chunks[0].id]

    @pytest.mark.asyncio
    async def test_true_false_quiz(self, materials, embeddings, make_generator):
        await _seed(materials, embeddings, [LIMITS])
        generator = make_generator(FakeChatProvider(responder=ItemWriter(kind="true_false", per_call=3)))

        quiz = await generator.generate_quiz(
            QuizRequest(section_ids=["s1"], question_count=2, question_type=QuestionType.TRUE_FALSE)
        )

        assert all(q.correct_answer == "true" and q.options is None for q in quiz.questions)
        assert all(q.difficulty == "medium" for q in quiz.questions)


# ── Flashcards ───────────────────────────────────────────────────────


class TestGenerateFlashcards:
    @pytest.mark.asyncio
    async def test_generates_indexed_cards(self, materials, embeddings, practice, make_generator):
        await _seed(materials, embeddings, [LIMITS, DERIVATIVES])
        generator = make_generator(FakeChatProvider(responder=ItemWriter(kind="flashcard", per_call=4)))

        flashcard_set = await generator.generate_flashcards(
            FlashcardRequest(section_ids=["s1"], count=3, name="Calc cards", folder_id="f1")
        )

        assert flashcard_set.id in practice.flashcard_sets
        assert flashcard_set.name == "Calc cards"
        assert flashcard_set.section_ids == ["s1"]
        assert [c.card_index for c in flashcard_set.cards] == [0, 1, 2]
        assert all(c.source_chunk_ids for c in flashcard_set.cards)

    @pytest.mark.asyncio
    async def test_topic_is_passed_to_the_prompt(self, materials, embeddings, make_generator):
        await _seed(materials, embeddings, [LIMITS])
        chat = FakeChatProvider(responder=ItemWriter(kind="flashcard", per_call=2))

        await make_generator(chat).generate_flashcards(
            FlashcardRequest(section_ids=["s1"], count=1, topic="one-sided limits")
        )

        prompt = " ".join(m.content for m in chat.calls[0][0])
        assert "one-sided limits" in prompt


# ── Deriving flashcards from quizzes ────────────────────────────────


class TestDerive:
    def test_multiple_choice_back_is_the_option_text(self):
        question = Question(
            question="Capital of France?",
            question_type=QuestionType.MULTIPLE_CHOICE,
            correct_answer="C",
            options={"A": "Rome", "B": "Berlin", "C": "Paris", "D": "Madrid"},
        )

        assert question_to_flashcard(question).back == "Paris"

    def test_true_false_back_includes_explanation(self):
        question = Question(
            question="Limits always exist.",
            question_type=QuestionType.TRUE_FALSE,
            correct_answer="false",
            explanation="One-sided limits can disagree.",
        )

        assert question_to_flashcard(question).back == "False. One-sided limits can disagree."

    def test_question_without_answer_or_explanation_is_skipped(self):
        question = Question(question="?", question_type=QuestionType.SHORT_ANSWER, correct_answer="")

        assert question_to_flashcard(question) is None

    @pytest.mark.asyncio
    async def test_derive_from_stored_quiz(self, practice, make_generator):
        quiz = await practice.save_quiz(
            Quiz(
                name="Q",
                section_ids=["s1"],
                difficulty="easy",
                question_type=QuestionType.SHORT_ANSWER,
                folder_id="f1",
                questions=[
                    Question(question="Define a limit.", question_type=QuestionType.SHORT_ANSWER, correct_answer="A value approached."),
                    Question(question="Skip me", question_type=QuestionType.SHORT_ANSWER, correct_answer=""),
                ],
            )
        )
        chat = FakeChatProvider()

        flashcard_set = await make_generator(chat).derive_flashcards_from_quiz(quiz.id)

        assert flashcard_set.source_quiz_id == quiz.id
        assert flashcard_set.folder_id == "f1"
        assert [c.front for c in flashcard_set.cards] == ["Define a limit."]
        assert chat.calls == []

    @pytest.mark.asyncio
    async def test_derive_from_unknown_quiz(self, make_generator):
        with pytest.raises(EntityNotFoundError):
            await make_generator(FakeChatProvider()).derive_flashcards_from_quiz("missing")

    @pytest.mark.asyncio
    async def test_derive_with_nothing_usable(self, make_generator):
        questions = [Question(question="?", question_type=QuestionType.SHORT_ANSWER, correct_answer="")]

        with pytest.raises(InvalidInputError):
            await make_generator(FakeChatProvider()).derive_flashcards_from_quiz(questions)


# ── Helpers ──────────────────────────────────────────────────────────


class TestHelpers:
    def test_word_jaccard(self):
        assert word_jaccard("the limit of f", "the limit of f") == 1.0
        assert word_jaccard("", "") == 0.0
        assert word_jaccard("alpha beta", "gamma delta") == 0.0

    def test_chapter_filter_leaves_unlisted_materials(self):
        chunks = [
            MaterialChunk(material_id="a", chunk_index=0, content="x",
                          metadata=StructuredMetadata(chapter=1, chapter_title="One")),
            MaterialChunk(material_id="a", chunk_index=1, content="y",
                          metadata=StructuredMetadata(chapter=2, chapter_title="Two")),
            MaterialChunk(material_id="b", chunk_index=0, content="z"),
        ]

        kept = apply_chapter_filter(chunks, [ChapterFilter(material_id="a", chapters=[2])])

        assert [(c.material_id, c.chunk_index) for c in kept] == [("a", 1), ("b", 0)]
