"""Practice API controller — generate and manage quizzes and flashcard sets."""

import asyncio
import json
import logging
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Any

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import StreamingResponse

from studyrag.application.schemas.practice import (
    DeriveFlashcardsRequest,
    FlashcardSchema,
    FlashcardSetSchema,
    FlashcardSetSummarySchema,
    GenerateFlashcardsRequest,
    GenerateQuizRequest,
    QuestionSchema,
    QuizSchema,
    QuizSummarySchema,
)
from studyrag.application.services import (
    FlashcardRequest,
    GroundedGenerator,
    PracticeService,
    QuizRequest,
)
from studyrag.domain.entities import FlashcardSet, Quiz
from studyrag.domain.exceptions import (
    EntityNotFoundError,
    GenerationError,
    InsufficientMaterialError,
    InvalidInputError,
    ProviderError,
)
from studyrag.infrastructure.dependencies import (
    GeneratorFactory,
    get_generator_factory,
    get_grounded_generator,
    get_practice_service,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/practice", tags=["practice"])

# Errors reported to the client as an error line; anything else is logged too.
_USER_FACING_ERRORS = (
    InvalidInputError,
    EntityNotFoundError,
    InsufficientMaterialError,
    GenerationError,
    ProviderError,
)


# ── Helpers ──────────────────────────────────────────────────────────

def _to_quiz(quiz: Quiz) -> QuizSchema:
    return QuizSchema(
        id=quiz.id,
        name=quiz.name,
        description=quiz.description,
        folder_id=quiz.folder_id,
        section_ids=quiz.section_ids,
        question_type=quiz.question_type.value,
        difficulty=quiz.difficulty,
        total_questions=quiz.total_questions,
        questions=[
            QuestionSchema(
                id=q.id,
                question_index=q.question_index,
                question=q.question,
                question_type=q.question_type.value,
                options=q.options,
                correct_answer=q.correct_answer,
                explanation=q.explanation,
                difficulty=q.difficulty,
                topic=q.topic,
                chapter=q.chapter,
                source_chunk_ids=q.source_chunk_ids,
            )
            for q in quiz.questions
        ],
        created_at=quiz.created_at.isoformat(),
        warnings=quiz.warnings,
        stats=quiz.stats,
    )


def _to_quiz_summary(quiz: Quiz) -> QuizSummarySchema:
    return QuizSummarySchema(
        id=quiz.id,
        name=quiz.name,
        question_type=quiz.question_type.value,
        difficulty=quiz.difficulty,
        total_questions=quiz.total_questions,
        folder_id=quiz.folder_id,
        created_at=quiz.created_at.isoformat(),
    )


def _to_flashcard_set(flashcard_set: FlashcardSet) -> FlashcardSetSchema:
    return FlashcardSetSchema(
        id=flashcard_set.id,
        name=flashcard_set.name,
        description=flashcard_set.description,
        folder_id=flashcard_set.folder_id,
        source_quiz_id=flashcard_set.source_quiz_id,
        section_ids=flashcard_set.section_ids,
        total_cards=flashcard_set.total_cards,
        cards=[
            FlashcardSchema(
                id=c.id,
                card_index=c.card_index,
                front=c.front,
                back=c.back,
                topic=c.topic,
                chapter=c.chapter,
                difficulty=c.difficulty,
                source_chunk_ids=c.source_chunk_ids,
            )
            for c in flashcard_set.cards
        ],
        created_at=flashcard_set.created_at.isoformat(),
        warnings=flashcard_set.warnings,
        stats=flashcard_set.stats,
    )


def _to_set_summary(flashcard_set: FlashcardSet) -> FlashcardSetSummarySchema:
    return FlashcardSetSummarySchema(
        id=flashcard_set.id,
        name=flashcard_set.name,
        total_cards=flashcard_set.total_cards,
        folder_id=flashcard_set.folder_id,
        source_quiz_id=flashcard_set.source_quiz_id,
        created_at=flashcard_set.created_at.isoformat(),
    )


def _quiz_request(body: GenerateQuizRequest) -> QuizRequest:
    return QuizRequest(
        section_ids=body.section_ids,
        question_count=body.question_count,
        question_type=body.question_type,
        difficulty=body.difficulty,
        name=body.name,
        description=body.description,
        folder_id=body.folder_id,
        chapter_filter=[f.to_entity() for f in body.chapter_filter] if body.chapter_filter else None,
    )


def _flashcard_request(body: GenerateFlashcardsRequest) -> FlashcardRequest:
    return FlashcardRequest(
        section_ids=body.section_ids,
        count=body.count,
        topic=body.topic,
        name=body.name,
        description=body.description,
        folder_id=body.folder_id,
        chapter_filter=[f.to_entity() for f in body.chapter_filter] if body.chapter_filter else None,
    )


def _line(payload: dict[str, Any]) -> str:
    return json.dumps(payload) + "\n"


async def stream_generation(
    run: Callable[[Callable[[str], Awaitable[None]]], Awaitable[dict[str, Any]]],
) -> AsyncGenerator[str, None]:
    """Run a generation in a task and stream its progress as NDJSON lines.

    Yields ``{"type": "progress"}`` lines while the task runs, then one
    ``result`` or ``error`` line. If the client goes away the generator is
    closed and the task is cancelled.
    """
    queue: asyncio.Queue[str | None] = asyncio.Queue()

    async def progress(message: str) -> None:
        queue.put_nowait(_line({"type": "progress", "message": message}))

    async def worker() -> None:
        try:
            result = await run(progress)
            queue.put_nowait(_line({"type": "result", **result}))
        except _USER_FACING_ERRORS as e:
            queue.put_nowait(_line({"type": "error", "error": str(e)}))
        except Exception as e:
            logger.exception("Streamed generation failed")
            queue.put_nowait(_line({"type": "error", "error": str(e)}))
        finally:
            queue.put_nowait(None)

    task = asyncio.create_task(worker())
    try:
        while True:
            line = await queue.get()
            if line is None:
                break
            yield line
    finally:
        if not task.done():
            logger.info("Client disconnected — cancelling generation")
            task.cancel()


def _ndjson(lines: AsyncGenerator[str, None]) -> StreamingResponse:
    return StreamingResponse(
        lines,
        media_type="application/x-ndjson",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )


# ── Quizzes ──────────────────────────────────────────────────────────

@router.post("/quizzes", response_model=QuizSchema, status_code=status.HTTP_201_CREATED)
async def generate_quiz(
    body: GenerateQuizRequest,
    generator: GroundedGenerator = Depends(get_grounded_generator),
):
    """Generate a quiz grounded in the chunks of the given sections."""
    quiz = await generator.generate_quiz(_quiz_request(body))
    return _to_quiz(quiz)


@router.post("/quizzes/stream")
async def generate_quiz_stream(
    body: GenerateQuizRequest,
    factory: GeneratorFactory = Depends(get_generator_factory),
) -> StreamingResponse:
    """Generate a quiz, streaming progress lines before the final result line."""
    request = _quiz_request(body)

    async def run(progress) -> dict[str, Any]:
        async with factory() as generator:
            quiz = await generator.generate_quiz(request, progress)
        return {"quiz": _to_quiz(quiz).model_dump()}

    return _ndjson(stream_generation(run))


@router.get("/quizzes", response_model=list[QuizSummarySchema])
async def list_quizzes(
    folder_id: str | None = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    service: PracticeService = Depends(get_practice_service),
):
    quizzes = await service.list_quizzes(folder_id=folder_id, skip=skip, limit=limit)
    return [_to_quiz_summary(q) for q in quizzes]


@router.get("/quizzes/{quiz_id}", response_model=QuizSchema)
async def get_quiz(
    quiz_id: str,
    service: PracticeService = Depends(get_practice_service),
):
    return _to_quiz(await service.get_quiz(quiz_id))


@router.delete("/quizzes/{quiz_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_quiz(
    quiz_id: str,
    service: PracticeService = Depends(get_practice_service),
):
    await service.delete_quiz(quiz_id)


@router.post(
    "/quizzes/{quiz_id}/flashcards",
    response_model=FlashcardSetSchema,
    status_code=status.HTTP_201_CREATED,
)
async def derive_flashcards(
    quiz_id: str,
    body: DeriveFlashcardsRequest | None = None,
    generator: GroundedGenerator = Depends(get_grounded_generator),
):
    """Turn an existing quiz into a flashcard set, one card per question."""
    body = body or DeriveFlashcardsRequest()
    flashcard_set = await generator.derive_flashcards_from_quiz(
        quiz_id,
        name=body.name,
        description=body.description,
        folder_id=body.folder_id,
    )
    return _to_flashcard_set(flashcard_set)


# ── Flashcard sets ───────────────────────────────────────────────────

@router.post("/flashcard-sets", response_model=FlashcardSetSchema, status_code=status.HTTP_201_CREATED)
async def generate_flashcards(
    body: GenerateFlashcardsRequest,
    generator: GroundedGenerator = Depends(get_grounded_generator),
):
    """Generate flashcards grounded in the chunks of the given sections."""
    flashcard_set = await generator.generate_flashcards(_flashcard_request(body))
    return _to_flashcard_set(flashcard_set)


@router.post("/flashcard-sets/stream")
async def generate_flashcards_stream(
    body: GenerateFlashcardsRequest,
    factory: GeneratorFactory = Depends(get_generator_factory),
) -> StreamingResponse:
    request = _flashcard_request(body)

    async def run(progress) -> dict[str, Any]:
        async with factory() as generator:
            flashcard_set = await generator.generate_flashcards(request, progress)
        return {"flashcardSet": _to_flashcard_set(flashcard_set).model_dump()}

    return _ndjson(stream_generation(run))


@router.get("/flashcard-sets", response_model=list[FlashcardSetSummarySchema])
async def list_flashcard_sets(
    folder_id: str | None = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    service: PracticeService = Depends(get_practice_service),
):
    sets = await service.list_flashcard_sets(folder_id=folder_id, skip=skip, limit=limit)
    return [_to_set_summary(s) for s in sets]


@router.get("/flashcard-sets/{set_id}", response_model=FlashcardSetSchema)
async def get_flashcard_set(
    set_id: str,
    service: PracticeService = Depends(get_practice_service),
):
    return _to_flashcard_set(await service.get_flashcard_set(set_id))


@router.delete("/flashcard-sets/{set_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_flashcard_set(
    set_id: str,
    service: PracticeService = Depends(get_practice_service),
):
    await service.delete_flashcard_set(set_id)
