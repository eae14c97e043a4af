from .chunk_repository import PgChunkRepository
from .material_repository import SQLAlchemyMaterialRepository
from .practice_repository import SQLAlchemyPracticeRepository

__all__ = [
    "PgChunkRepository",
    "SQLAlchemyMaterialRepository",
    "SQLAlchemyPracticeRepository",
]
