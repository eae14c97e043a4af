from .embedding_service import EmbeddingService
from .generation_service import FlashcardRequest, GroundedGenerator, QuizRequest
from .ingestion_service import IngestionService
from .practice_service import PracticeService
from .retrieval_service import RetrievalService
from .structure_analyzer import StructureAnalyzer

__all__ = [
    "EmbeddingService",
    "FlashcardRequest",
    "GroundedGenerator",
    "QuizRequest",
    "IngestionService",
    "PracticeService",
    "RetrievalService",
    "StructureAnalyzer",
]
