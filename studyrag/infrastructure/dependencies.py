"""FastAPI dependency injection — wires infrastructure to application layer."""

from collections.abc import AsyncGenerator, AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from studyrag.application.retry_policy import RetryPolicy
from studyrag.application.services import (
    EmbeddingService,
    GroundedGenerator,
    IngestionService,
    PracticeService,
    RetrievalService,
    StructureAnalyzer,
)
from studyrag.config import Settings, get_settings
from studyrag.infrastructure.database.repositories import (
    PgChunkRepository,
    SQLAlchemyMaterialRepository,
    SQLAlchemyPracticeRepository,
)
from studyrag.infrastructure.database.session import async_session_factory, get_db_session
from studyrag.infrastructure.extractors.multi_format_text_extractor import MultiFormatTextExtractor
from studyrag.infrastructure.openrouter import OpenRouterClient, OpenRouterEmbeddingProvider

GeneratorFactory = Callable[[], AbstractAsyncContextManager[GroundedGenerator]]


# ── Builders ─────────────────────────────────────────────────────────


def build_retry_policy(settings: Settings) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.retry_max_attempts,
        base_delay=settings.retry_base_delay_seconds,
        max_delay=settings.retry_max_delay_seconds,
        jitter=True,
    )


def build_embedding_service(settings: Settings) -> EmbeddingService:
    provider = OpenRouterEmbeddingProvider(
        api_key=settings.openrouter_api_key,
        base_url=settings.openrouter_base_url,
        app_name=settings.openrouter_app_name,
        model=settings.embedding_model,
        model_dimensions=settings.embedding_dimensions,
        timeout_seconds=settings.embedding_timeout_seconds,
    )
    return EmbeddingService(
        embedding_provider=provider,
        retry_policy=build_retry_policy(settings),
        batch_size=settings.embedding_batch_size,
        max_tokens_per_batch=settings.embedding_max_tokens_per_batch,
        concurrency=settings.embedding_concurrency,
    )


def build_generator(session: AsyncSession, settings: Settings | None = None) -> GroundedGenerator:
    """GroundedGenerator bound to one session, configured from settings."""
    settings = settings or get_settings()
    provider = OpenRouterClient(
        api_key=settings.openrouter_api_key,
        base_url=settings.openrouter_base_url,
        app_name=settings.openrouter_app_name,
        timeout_seconds=settings.llm_timeout_seconds,
    )
    return GroundedGenerator(
        material_repo=SQLAlchemyMaterialRepository(session),
        chunk_repo=PgChunkRepository(session),
        practice_repo=SQLAlchemyPracticeRepository(session),
        chat_provider=provider,
        embedding_service=build_embedding_service(settings),
        retry_policy=build_retry_policy(settings).with_attempts(settings.generation_max_attempts),
        model=settings.generation_model,
        fallback_model=settings.generation_fallback_model,
        temperature=settings.generation_temperature,
        max_tokens=settings.generation_max_tokens,
        concurrency=settings.generation_concurrency,
        max_items_per_call=settings.generation_max_items_per_call,
        context_char_budget=settings.generation_context_char_budget,
        max_items_per_request=settings.max_items_per_request,
        chunks_per_cluster=settings.structure_chunks_per_cluster,
        dedup_text_similarity=settings.dedup_text_similarity,
        dedup_embedding_similarity=settings.dedup_embedding_similarity,
    )


# ── Request-scoped services ──────────────────────────────────────────


async def get_ingestion_service(
    session: AsyncSession = Depends(get_db_session),
) -> AsyncGenerator[IngestionService, None]:
    """Provides an IngestionService with extraction, embedding and repositories wired up."""
    settings = get_settings()
    yield IngestionService(
        material_repository=SQLAlchemyMaterialRepository(session),
        chunk_repository=PgChunkRepository(session),
        text_extractor=MultiFormatTextExtractor(),
        embedding_service=build_embedding_service(settings),
        settings=settings,
    )


async def get_retrieval_service(
    session: AsyncSession = Depends(get_db_session),
) -> AsyncGenerator[RetrievalService, None]:
    """Provides a RetrievalService over the pgvector chunk store."""
    settings = get_settings()
    yield RetrievalService(
        chunk_repo=PgChunkRepository(session),
        material_repo=SQLAlchemyMaterialRepository(session),
        embedding_service=build_embedding_service(settings),
        default_top_k=settings.retrieval_top_k,
        hint_top_k=settings.hint_top_k,
        hint_similarity_threshold=settings.hint_similarity_threshold,
        hybrid_keyword_weight=settings.hybrid_keyword_weight,
        similar_chunk_threshold=settings.similar_chunk_threshold,
        context_window=settings.chunk_context_window,
    )


async def get_structure_analyzer(
    session: AsyncSession = Depends(get_db_session),
) -> AsyncGenerator[StructureAnalyzer, None]:
    settings = get_settings()
    yield StructureAnalyzer(
        SQLAlchemyMaterialRepository(session),
        PgChunkRepository(session),
        threshold=settings.structure_threshold,
        chunks_per_cluster=settings.structure_chunks_per_cluster,
    )


async def get_practice_service(
    session: AsyncSession = Depends(get_db_session),
) -> AsyncGenerator[PracticeService, None]:
    """Provides a PracticeService with its repository wired up."""
    yield PracticeService(SQLAlchemyPracticeRepository(session))


async def get_grounded_generator(
    session: AsyncSession = Depends(get_db_session),
) -> AsyncGenerator[GroundedGenerator, None]:
    yield build_generator(session)


# ── Streaming ────────────────────────────────────────────────────────


@asynccontextmanager
async def _generator_scope() -> AsyncIterator[GroundedGenerator]:
    """A generator with its own session, committed when the block succeeds.

    Streaming responses outlive the request-scoped session, so they open
    their own unit of work.
    """
    async with async_session_factory() as session:
        try:
            yield build_generator(session)
            await session.commit()
        except BaseException:
            await session.rollback()
            raise


def get_generator_factory() -> GeneratorFactory:
    return _generator_scope
