from .material_models import MaterialModel, SectionFileModel
from .chunk_models import MaterialChunkModel
from .practice_models import FlashcardModel, FlashcardSetModel, QuestionModel, QuizSetModel

__all__ = [
    "MaterialModel",
    "SectionFileModel",
    "MaterialChunkModel",
    "FlashcardModel",
    "FlashcardSetModel",
    "QuestionModel",
    "QuizSetModel",
]
