"""SQLAlchemy ORM models for generated quizzes and flashcard sets."""

import uuid

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from studyrag.infrastructure.database.base import Base


def _generate_uuid() -> str:
    return str(uuid.uuid4())


class QuizSetModel(Base):
    __tablename__ = "quiz_sets"

    id = Column(String(36), primary_key=True, default=_generate_uuid)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    folder_id = Column(String(36), nullable=True, index=True)
    section_ids = Column(JSONB, nullable=False, server_default="[]")
    question_type = Column(String(30), nullable=False)
    difficulty = Column(String(20), nullable=False)
    total_questions = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    questions = relationship(
        "QuestionModel",
        back_populates="quiz",
        cascade="all, delete-orphan",
        order_by="QuestionModel.question_index",
        lazy="selectin",
    )


class QuestionModel(Base):
    """A generated question.

    ``source_chunk_ids`` is a plain JSON list, not a foreign key: deleting
    a chunk never touches the questions that cite it.
    """

    __tablename__ = "questions"

    id = Column(String(36), primary_key=True, default=_generate_uuid)
    quiz_id = Column(
        String(36),
        ForeignKey("quiz_sets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    question_index = Column(Integer, nullable=False)
    question = Column(Text, nullable=False)
    question_type = Column(String(30), nullable=False)
    options = Column(JSONB, nullable=True)
    correct_answer = Column(Text, nullable=False)
    explanation = Column(Text, nullable=True)
    difficulty = Column(String(20), nullable=False, default="medium")
    topic = Column(String(255), nullable=True)
    chapter = Column(Integer, nullable=True)
    source_chunk_ids = Column(JSONB, nullable=False, server_default="[]")

    quiz = relationship("QuizSetModel", back_populates="questions")


class FlashcardSetModel(Base):
    __tablename__ = "flashcard_sets"

    id = Column(String(36), primary_key=True, default=_generate_uuid)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    folder_id = Column(String(36), nullable=True, index=True)
    section_ids = Column(JSONB, nullable=False, server_default="[]")
    source_quiz_id = Column(String(36), nullable=True, index=True)
    total_cards = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    cards = relationship(
        "FlashcardModel",
        back_populates="flashcard_set",
        cascade="all, delete-orphan",
        order_by="FlashcardModel.card_index",
        lazy="selectin",
    )


class FlashcardModel(Base):
    __tablename__ = "flashcards"

    id = Column(String(36), primary_key=True, default=_generate_uuid)
    set_id = Column(
        String(36),
        ForeignKey("flashcard_sets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    card_index = Column(Integer, nullable=False)
    front = Column(Text, nullable=False)
    back = Column(Text, nullable=False)
    topic = Column(String(255), nullable=True)
    chapter = Column(Integer, nullable=True)
    difficulty = Column(String(20), nullable=True)
    source_chunk_ids = Column(JSONB, nullable=False, server_default="[]")

    flashcard_set = relationship("FlashcardSetModel", back_populates="cards")
