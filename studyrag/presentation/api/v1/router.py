"""V1 API router — aggregates all v1 endpoint routers."""

from fastapi import APIRouter

from studyrag.presentation.api.v1.endpoints.health import router as health_router
from studyrag.presentation.api.v1.materials_controller import router as materials_router
from studyrag.presentation.api.v1.practice_controller import router as practice_router

router = APIRouter(prefix="/v1")
router.include_router(health_router)
router.include_router(materials_router)
router.include_router(practice_router)
