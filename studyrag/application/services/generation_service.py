"""Grounded generation — quizzes and flashcard sets built from stored chunks.

Pipeline per request:
1. Resolve section ids to material ids and load their embedded chunks
2. Apply the optional per-material chapter filter (hard filter)
3. Plan groups and LLM calls (chapter groups or topic clusters)
4. Run the calls concurrently; each call sends a bounded context and
   validates the JSON reply, retrying and falling back to a second model
5. Deduplicate across groups, cap at the requested count
6. Persist the whole quiz / set in one transaction

Zero chunks in scope is an InsufficientMaterialError and no LLM call is
made. Fewer valid items than requested is a warning, not an error.
"""

import asyncio
import inspect
import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel

from studyrag.application.interfaces.chat_provider import ChatProvider
from studyrag.application.interfaces.chunk_repository import ChunkRepository
from studyrag.application.interfaces.material_repository import MaterialRepository
from studyrag.application.interfaces.practice_repository import PracticeRepository
from studyrag.application.retry_policy import RetryPolicy
from studyrag.application.schemas.generation_output import (
    FlashcardItem,
    MultipleChoiceItem,
    ShortAnswerItem,
    TrueFalseItem,
    parse_items,
)
from studyrag.application.services.embedding_service import EmbeddingService, cosine_similarity
from studyrag.application.services.generation_planning import (
    GenerationPlan,
    GenerationTask,
    build_context,
    plan_generation,
    select_context_chunks,
)
from studyrag.application.services.generation_prompts import (
    build_flashcard_messages,
    build_quiz_messages,
)
from studyrag.domain.entities import (
    ChapterFilter,
    ChatMessage,
    Difficulty,
    Flashcard,
    FlashcardSet,
    MaterialChunk,
    Question,
    QuestionType,
    Quiz,
)
from studyrag.domain.exceptions import (
    EntityNotFoundError,
    GenerationError,
    InsufficientMaterialError,
    InvalidInputError,
    MalformedOutputError,
    ProviderError,
)
from studyrag.infrastructure.logging.colored_logger import PipelineLogger, PipelineStage

logger = logging.getLogger(__name__)
plog = PipelineLogger("GroundedGenerator")

ProgressCallback = Callable[[str], Any]

_MIN_CHUNK_CHARS = 20            # shorter chunks are never used as grounding
_EXTRA_ITEMS_PER_GROUP = 2       # a group may overshoot its target before dedup
_FALLBACK_SOURCE_IDS = 3         # chunks cited when the model cites none
_EMBEDDING_DEDUP_MIN_ITEMS = 5   # below this, word overlap alone decides

_ITEM_MODELS: dict[QuestionType, type[BaseModel]] = {
    QuestionType.MULTIPLE_CHOICE: MultipleChoiceItem,
    QuestionType.TRUE_FALSE: TrueFalseItem,
    QuestionType.SHORT_ANSWER: ShortAnswerItem,
}


@dataclass
class QuizRequest:
    section_ids: list[str]
    question_count: int = 20
    question_type: QuestionType = QuestionType.MULTIPLE_CHOICE
    difficulty: Difficulty = Difficulty.MIXED
    name: str | None = None
    description: str | None = None
    folder_id: str | None = None
    chapter_filter: list[ChapterFilter] | None = None


@dataclass
class FlashcardRequest:
    section_ids: list[str]
    count: int = 20
    topic: str | None = None
    name: str | None = None
    description: str | None = None
    folder_id: str | None = None
    chapter_filter: list[ChapterFilter] | None = None


@dataclass
class _TaskOutcome:
    task: GenerationTask
    items: list[Any] = field(default_factory=list)
    dropped: int = 0
    error: BaseException | None = None


def word_jaccard(a: str, b: str) -> float:
    """Jaccard similarity of the words longer than two characters."""
    words_a = {w for w in a.lower().split() if len(w) > 2}
    words_b = {w for w in b.lower().split() if len(w) > 2}
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


def apply_chapter_filter(
    chunks: list[MaterialChunk], chapter_filter: list[ChapterFilter] | None
) -> list[MaterialChunk]:
    """Restrict listed materials to their chapters; other materials pass unchanged.

    Entries without chapter numbers are ignored.
    """
    allowed = {f.material_id: set(f.chapters) for f in chapter_filter or [] if f.chapters}
    if not allowed:
        return chunks
    return [
        c for c in chunks
        if c.material_id not in allowed or (c.chapter is not None and c.chapter in allowed[c.material_id])
    ]


async def _notify(progress: ProgressCallback | None, message: str) -> None:
    if progress is None:
        return
    result = progress(message)
    if inspect.isawaitable(result):
        await result


class GroundedGenerator:
    """Application service generating practice material grounded in stored chunks."""

    def __init__(
        self,
        material_repo: MaterialRepository,
        chunk_repo: ChunkRepository,
        practice_repo: PracticeRepository,
        chat_provider: ChatProvider,
        embedding_service: EmbeddingService,
        retry_policy: RetryPolicy | None = None,
        *,
        model: str = "google/gemini-2.5-flash",
        fallback_model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 4000,
        concurrency: int = 4,
        max_items_per_call: int = 20,
        context_char_budget: int = 12_000,
        max_items_per_request: int = 100,
        chunks_per_cluster: int = 25,
        dedup_text_similarity: float = 0.8,
        dedup_embedding_similarity: float = 0.85,
        rng: random.Random | None = None,
    ):
        self._materials = material_repo
        self._chunks = chunk_repo
        self._practice = practice_repo
        self._chat = chat_provider
        self._embedder = embedding_service
        self._retry = retry_policy or RetryPolicy()
        self._model = model
        self._fallback_model = fallback_model if fallback_model != model else None
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._concurrency = max(1, concurrency)
        self._max_items_per_call = max(1, max_items_per_call)
        self._context_char_budget = context_char_budget
        self._max_items_per_request = max_items_per_request
        self._chunks_per_cluster = chunks_per_cluster
        self._dedup_text = dedup_text_similarity
        self._dedup_embedding = dedup_embedding_similarity
        self._rng = rng or random.Random()

    # ── Public operations ──

    async def generate_quiz(self, request: QuizRequest, progress: ProgressCallback | None = None) -> Quiz:
        """Generate, validate and persist a quiz for the requested sections."""
        self._validate_count(request.question_count, "question_count")
        question_type = QuestionType(request.question_type)
        difficulty = Difficulty(request.difficulty).value
        plog.separator(f"Quiz: {request.question_count} {question_type.value}")
        started = time.monotonic()

        chunks = await self._load_chunks(request.section_ids, request.chapter_filter, progress)

        await _notify(progress, "Analyzing topics and chapters...")
        plan = plan_generation(
            chunks,
            request.question_count,
            max_items_per_call=self._max_items_per_call,
            chunks_per_cluster=self._chunks_per_cluster,
            rng=self._rng,
        )

        item_model = _ITEM_MODELS[question_type]

        def messages_for(task: GenerationTask, context: str, has_math: bool) -> list[ChatMessage]:
            return build_quiz_messages(
                count=task.count,
                question_type=question_type,
                difficulty=difficulty,
                context=context,
                has_math=has_math,
                group_label=task.group.label,
                group_number=task.group_index + 1,
                total_groups=len(plan.groups),
                chapter_mode=plan.chapter_mode,
            )

        await _notify(progress, "Generating questions with AI...")
        outcomes = await self._run_tasks(plan, item_model, messages_for, progress)
        questions, group_of, dropped, errors = self._collect(plan, outcomes, lambda item, task, ids: self._to_question(
            item, task, ids, question_type, difficulty
        ))
        if not questions:
            raise GenerationError(self._failure_message("questions", errors), errors[-1] if errors else None)

        await _notify(progress, "Deduplicating questions...")
        unique, dedup_warnings = await self._deduplicate(questions, lambda q: q.question)
        final = self._select(plan, unique, group_of, request.question_count)
        for index, question in enumerate(final):
            question.question_index = index

        quiz = Quiz(
            name=request.name or f"Quiz - {datetime.now(timezone.utc).date().isoformat()}",
            section_ids=list(request.section_ids),
            difficulty=difficulty,
            question_type=question_type,
            questions=final,
            description=request.description,
            folder_id=request.folder_id,
        )
        quiz.warnings = self._warnings("questions", request.question_count, len(final), dropped, errors)
        quiz.warnings.extend(dedup_warnings)

        await _notify(progress, "Saving quiz...")
        with plog.timed_step(PipelineStage.STORAGE, f"Saving quiz with {len(final)} questions"):
            saved = await self._practice.save_quiz(quiz)

        saved.warnings = quiz.warnings
        saved.stats = self._stats(plan, len(questions), len(unique), started)
        plog.step_complete(PipelineStage.COMPLETE, f"Quiz {saved.id} ready", questions=len(final))
        return saved

    async def generate_flashcards(
        self, request: FlashcardRequest, progress: ProgressCallback | None = None
    ) -> FlashcardSet:
        """Generate, validate and persist a flashcard set for the requested sections."""
        self._validate_count(request.count, "count")
        plog.separator(f"Flashcards: {request.count}")
        started = time.monotonic()

        chunks = await self._load_chunks(request.section_ids, request.chapter_filter, progress)

        await _notify(progress, "Analyzing topics and chapters...")
        plan = plan_generation(
            chunks,
            request.count,
            max_items_per_call=self._max_items_per_call,
            chunks_per_cluster=self._chunks_per_cluster,
            rng=self._rng,
        )

        def messages_for(task: GenerationTask, context: str, has_math: bool) -> list[ChatMessage]:
            return build_flashcard_messages(
                count=task.count,
                context=context,
                topic=request.topic,
                has_math=has_math,
                group_label=task.group.label,
                group_number=task.group_index + 1,
                total_groups=len(plan.groups),
                chapter_mode=plan.chapter_mode,
            )

        await _notify(progress, "Generating flashcards with AI...")
        outcomes = await self._run_tasks(plan, FlashcardItem, messages_for, progress)
        cards, group_of, dropped, errors = self._collect(plan, outcomes, self._to_flashcard)
        if not cards:
            raise GenerationError(self._failure_message("flashcards", errors), errors[-1] if errors else None)

        await _notify(progress, "Deduplicating flashcards...")
        unique, dedup_warnings = await self._deduplicate(cards, lambda c: c.front)
        final = self._select(plan, unique, group_of, request.count)
        for index, card in enumerate(final):
            card.card_index = index

        flashcard_set = FlashcardSet(
            name=request.name or f"Flashcards - {datetime.now(timezone.utc).date().isoformat()}",
            section_ids=list(request.section_ids),
            cards=final,
            description=request.description,
            folder_id=request.folder_id,
        )
        flashcard_set.warnings = self._warnings("flashcards", request.count, len(final), dropped, errors)
        flashcard_set.warnings.extend(dedup_warnings)

        await _notify(progress, "Saving flashcards...")
        with plog.timed_step(PipelineStage.STORAGE, f"Saving {len(final)} flashcards"):
            saved = await self._practice.save_flashcard_set(flashcard_set)

        saved.warnings = flashcard_set.warnings
        saved.stats = self._stats(plan, len(cards), len(unique), started)
        plog.step_complete(PipelineStage.COMPLETE, f"Flashcard set {saved.id} ready", cards=len(final))
        return saved

    async def derive_flashcards_from_quiz(
        self,
        source: Quiz | str | list[Question],
        *,
        name: str | None = None,
        description: str | None = None,
        folder_id: str | None = None,
    ) -> FlashcardSet:
        """Turn quiz questions into flashcards without calling the LLM.

        ``source`` is a quiz, a quiz id or a list of questions.
        """
        quiz: Quiz | None = None
        if isinstance(source, str):
            quiz = await self._practice.get_quiz(source)
            if quiz is None:
                raise EntityNotFoundError("Quiz", source)
            questions = quiz.questions
        elif isinstance(source, Quiz):
            quiz = source
            questions = source.questions
        else:
            questions = list(source)

        cards = [card for card in (question_to_flashcard(q) for q in questions) if card is not None]
        if not cards:
            raise InvalidInputError("No questions with usable answers to derive flashcards from")
        for index, card in enumerate(cards):
            card.card_index = index

        flashcard_set = FlashcardSet(
            name=name or f"Flashcards - {datetime.now(timezone.utc).date().isoformat()}",
            section_ids=list(quiz.section_ids) if quiz else [],
            cards=cards,
            description=description,
            folder_id=folder_id if folder_id is not None else (quiz.folder_id if quiz else None),
            source_quiz_id=quiz.id if quiz else None,
        )
        saved = await self._practice.save_flashcard_set(flashcard_set)
        logger.info("Derived %d flashcards from %d questions", len(cards), len(questions))
        return saved

    # ── Grounding ──

    async def _load_chunks(
        self,
        section_ids: list[str],
        chapter_filter: list[ChapterFilter] | None,
        progress: ProgressCallback | None,
    ) -> list[MaterialChunk]:
        if not section_ids:
            raise InvalidInputError("At least one section id is required")

        await _notify(progress, "Fetching study materials...")
        with plog.timed_step(PipelineStage.RETRIEVAL, "Loading source chunks", sections=len(section_ids)):
            material_ids = await self._materials.get_material_ids_for_sections(section_ids)
            if not material_ids:
                raise InsufficientMaterialError(
                    "No processed materials found in the selected sections. Upload material first."
                )
            chunks = await self._chunks.get_by_materials(
                material_ids, require_embedding=True, min_length=_MIN_CHUNK_CHARS
            )

        if not chunks:
            raise InsufficientMaterialError("No content chunks found in the selected materials.")

        if chapter_filter:
            before = len(chunks)
            chunks = apply_chapter_filter(chunks, chapter_filter)
            plog.detail(f"Chapter filter: {before} → {len(chunks)} chunks")
            if not chunks:
                raise InsufficientMaterialError(
                    "No source material in the selected chapters. Select different chapters or materials."
                )

        plog.detail(f"{len(chunks)} chunks from {len(material_ids)} materials")
        return chunks

    # ── LLM calls ──

    async def _run_tasks(
        self,
        plan: GenerationPlan,
        item_model: type[BaseModel],
        messages_for: Callable[[GenerationTask, str, bool], list[ChatMessage]],
        progress: ProgressCallback | None,
    ) -> list[_TaskOutcome]:
        semaphore = asyncio.Semaphore(self._concurrency)
        finished = 0

        async def run(task: GenerationTask) -> _TaskOutcome:
            nonlocal finished
            chunks = select_context_chunks(task.group, self._rng)
            context, used = build_context(chunks, self._context_char_budget)
            outcome = _TaskOutcome(task=task)
            if not used:
                outcome.error = InsufficientMaterialError(f"No usable chunks for {task.group.label}")
                return outcome

            messages = messages_for(task, context, any(c.has_math for c in used))
            async with semaphore:
                try:
                    items, dropped = await self._complete_items(messages, item_model, task.group.label)
                except (ProviderError, MalformedOutputError, GenerationError) as exc:
                    plog.step_warning(PipelineStage.GENERATION, f"{task.group.label} failed: {exc}")
                    outcome.error = exc
                else:
                    outcome.items = [(item, used) for item in items]
                    outcome.dropped = dropped

            finished += 1
            await _notify(progress, f"Generated batch {finished} of {len(plan.tasks)}")
            return outcome

        with plog.timed_step(
            PipelineStage.GENERATION, f"Running {len(plan.tasks)} generation calls", groups=len(plan.groups)
        ):
            return list(await asyncio.gather(*(run(task) for task in plan.tasks)))

    async def _complete_items(
        self, messages: list[ChatMessage], item_model: type[BaseModel], label: str
    ) -> tuple[list[BaseModel], int]:
        """Call the LLM under the retry policy, then fall back to the second model."""
        models = [self._model] + ([self._fallback_model] if self._fallback_model else [])
        last_error: BaseException | None = None

        for model in models:
            async def attempt(model: str = model) -> tuple[list[BaseModel], int]:
                result = await self._chat.complete(
                    messages,
                    model,
                    temperature=self._temperature,
                    max_tokens=self._max_tokens,
                    json_mode=True,
                )
                return parse_items(result.content, item_model)

            try:
                items, dropped = await self._retry.run(attempt, description=f"{label} via {model}")
            except (ProviderError, MalformedOutputError) as exc:
                last_error = exc
                if isinstance(exc, ProviderError) and not exc.is_transient and exc.status_code in (401, 403):
                    break
                logger.warning("Model %s exhausted for %s: %s", model, label, exc)
                continue
            if dropped:
                plog.step_warning(PipelineStage.VALIDATION, f"Dropped {dropped} invalid items", group=label)
            return items, dropped

        raise GenerationError(f"Generation failed for {label}: {last_error}", last_error)

    # ── Result assembly ──

    def _collect(
        self, plan: GenerationPlan, outcomes: list[_TaskOutcome], convert
    ) -> tuple[list, dict[int, int], int, list]:
        """Converted items in group order, plus the group index of each item keyed by ``id()``."""
        by_group: dict[int, list] = {}
        dropped = 0
        errors: list[BaseException] = []
        for outcome in outcomes:
            dropped += outcome.dropped
            if outcome.error is not None:
                errors.append(outcome.error)
            for item, used in outcome.items:
                by_group.setdefault(outcome.task.group_index, []).append(
                    convert(item, outcome.task, used)
                )

        collected = []
        group_of: dict[int, int] = {}
        for index, group in enumerate(plan.groups):
            for item in by_group.get(index, [])[: group.target + _EXTRA_ITEMS_PER_GROUP]:
                collected.append(item)
                group_of[id(item)] = index
        return collected, group_of, dropped, errors

    @staticmethod
    def _select(plan: GenerationPlan, items: list, group_of: dict[int, int], count: int) -> list:
        """Fill every group's target first, then top up from the overshoot in order."""
        taken = [0] * len(plan.groups)
        within, extra = [], []
        for item in items:
            index = group_of[id(item)]
            if taken[index] < plan.groups[index].target:
                taken[index] += 1
                within.append(item)
            else:
                extra.append(item)
        return (within + extra)[:count]

    @staticmethod
    def _source_ids(item: Any, used: list[MaterialChunk]) -> list[str]:
        available = [c.id for c in used if c.id]
        cited = [i for i in item.source_chunk_ids if i in available]
        return list(dict.fromkeys(cited)) or available[:_FALLBACK_SOURCE_IDS]

    def _to_question(
        self,
        item: Any,
        task: GenerationTask,
        used: list[MaterialChunk],
        question_type: QuestionType,
        difficulty: str,
    ) -> Question:
        group = task.group
        default_difficulty = Difficulty.MEDIUM.value if difficulty == Difficulty.MIXED.value else difficulty
        if question_type == QuestionType.SHORT_ANSWER:
            correct = item.model_answer
            explanation = item.explanation or (
                "Key points: " + ", ".join(item.key_points) if item.key_points else None
            )
            options = None
        else:
            correct = item.correct_answer
            explanation = item.explanation
            options = getattr(item, "options", None)

        return Question(
            question=item.question,
            question_type=question_type,
            correct_answer=correct,
            options=options,
            explanation=explanation,
            difficulty=(item.difficulty or default_difficulty).lower(),
            topic=item.topic or (group.chapter_title if group.chapter is not None else None),
            chapter=group.chapter if group.chapter is not None else item.chapter,
            source_chunk_ids=self._source_ids(item, used),
        )

    def _to_flashcard(self, item: FlashcardItem, task: GenerationTask, used: list[MaterialChunk]) -> Flashcard:
        group = task.group
        return Flashcard(
            front=item.front,
            back=item.back,
            topic=item.topic or (group.chapter_title if group.chapter is not None else None),
            chapter=group.chapter if group.chapter is not None else item.chapter,
            difficulty=item.difficulty,
            source_chunk_ids=self._source_ids(item, used),
        )

    async def _deduplicate(self, items: list, text_of: Callable[[Any], str]) -> tuple[list, list[str]]:
        """Word-overlap pre-filter, then embedding similarity for larger sets."""
        if len(items) <= 1:
            return items, []

        candidates: list = []
        for item in items:
            text = text_of(item)
            if any(word_jaccard(text, text_of(kept)) > self._dedup_text for kept in candidates):
                continue
            candidates.append(item)

        if len(candidates) <= _EMBEDDING_DEDUP_MIN_ITEMS:
            return candidates, []

        try:
            vectors = await self._embedder.embed_texts([text_of(c) for c in candidates])
        except ProviderError as exc:
            logger.warning("Embedding deduplication skipped: %s", exc)
            return candidates, ["Semantic deduplication was skipped because embeddings failed."]

        unique: list = []
        unique_vectors: list[list[float]] = []
        for item, vector in zip(candidates, vectors):
            if vector is not None and any(
                cosine_similarity(vector, other) > self._dedup_embedding for other in unique_vectors
            ):
                continue
            unique.append(item)
            if vector is not None:
                unique_vectors.append(vector)

        logger.info("Deduplicated %d → %d → %d items", len(items), len(candidates), len(unique))
        return unique, []

    # ── Helpers ──

    def _validate_count(self, count: int, name: str) -> None:
        if count < 1 or count > self._max_items_per_request:
            raise InvalidInputError(f"{name} must be between 1 and {self._max_items_per_request}")

    @staticmethod
    def _warnings(kind: str, requested: int, produced: int, dropped: int, errors: list) -> list[str]:
        warnings = []
        if produced < requested:
            warnings.append(f"Only {produced} of {requested} {kind} could be generated from the source material.")
        if dropped:
            warnings.append(f"{dropped} generated {kind} failed validation and were dropped.")
        if errors:
            warnings.append(f"{len(errors)} generation call(s) failed; results come from the remaining calls.")
        return warnings

    @staticmethod
    def _failure_message(kind: str, errors: list[BaseException]) -> str:
        if not errors:
            return f"No valid {kind} were produced. Try again with different content."
        last = errors[-1]
        if isinstance(last, GenerationError) and last.last_error is not None:
            last = last.last_error
        if isinstance(last, ProviderError) and last.status_code == 429:
            return "LLM rate limit exceeded. Please try again in a few minutes."
        if isinstance(last, MalformedOutputError):
            return f"Failed to parse LLM responses for {kind}. Please try again."
        return f"Generation failed: {last}"

    @staticmethod
    def _stats(plan: GenerationPlan, generated: int, after_dedup: int, started: float) -> dict[str, Any]:
        return {
            "groupsUsed": len(plan.groups),
            "chapterMode": plan.chapter_mode,
            "llmCalls": len(plan.tasks),
            "totalGenerated": generated,
            "afterDedup": after_dedup,
            "generationTimeMs": int((time.monotonic() - started) * 1000),
        }


def question_to_flashcard(question: Question) -> Flashcard | None:
    """Front is the question; back is the answer text, else the explanation."""
    if not question.question:
        return None
    answer_key = (question.correct_answer or "").strip()
    back = ""
    if question.question_type == QuestionType.MULTIPLE_CHOICE:
        back = question.correct_option_text or ""
    elif question.question_type == QuestionType.TRUE_FALSE and answer_key:
        back = answer_key.capitalize()
        if question.explanation:
            back = f"{back}. {question.explanation}"
    elif question.question_type == QuestionType.SHORT_ANSWER:
        back = answer_key

    if not back:
        back = question.explanation or (f"Answer: {answer_key}" if answer_key else "")
    if not back:
        return None
    return Flashcard(
        front=question.question,
        back=back,
        topic=question.topic,
        chapter=question.chapter,
        difficulty=question.difficulty,
        source_chunk_ids=list(question.source_chunk_ids),
    )
