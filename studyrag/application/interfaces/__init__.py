from .chat_provider import ChatProvider
from .embedding_provider import EmbeddingProvider
from .chunk_repository import ChunkRepository, VectorSearchResult
from .material_repository import MaterialRepository
from .practice_repository import PracticeRepository
from .text_extractor import TextExtractionResult, TextExtractor, Transcriber

__all__ = [
    "ChatProvider",
    "EmbeddingProvider",
    "ChunkRepository",
    "VectorSearchResult",
    "MaterialRepository",
    "PracticeRepository",
    "TextExtractionResult",
    "TextExtractor",
    "Transcriber",
]
