"""Liveness endpoint; answers without touching the database or the providers."""

from fastapi import APIRouter

from studyrag.config import get_settings

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check() -> dict:
    settings = get_settings()
    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.app_env,
        "embeddingModel": settings.embedding_model,
        "embeddingDimensions": settings.embedding_dimensions,
        "generationModel": settings.generation_model,
    }
