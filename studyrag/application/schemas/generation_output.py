"""Pydantic models for validating LLM-generated quiz and flashcard items.

The LLM is asked for a JSON object ``{"items": [...]}``. The envelope must
parse strictly; individual items that fail validation are dropped and
counted so the caller can report a warning.
"""

import logging
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from studyrag.domain.exceptions import MalformedOutputError

logger = logging.getLogger(__name__)

_OPTION_KEYS = ("A", "B", "C", "D")
_TRUE_WORDS = {"true", "t", "yes", "1"}
_FALSE_WORDS = {"false", "f", "no", "0"}


class _ItemBase(BaseModel):
    model_config = {"extra": "ignore", "str_strip_whitespace": True}

    topic: str | None = None
    chapter: int | None = None
    source_chunk_ids: list[str] = Field(default_factory=list)

    @field_validator("chapter", mode="before")
    @classmethod
    def _lenient_chapter(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            return int(value) if value.isdigit() else None
        return value

    @field_validator("source_chunk_ids", mode="before")
    @classmethod
    def _stringify_ids(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, list):
            return [str(v) for v in value if v is not None]
        return value


class MultipleChoiceItem(_ItemBase):
    question: str = Field(min_length=1)
    options: dict[str, str]
    correct_answer: str
    explanation: str | None = None
    difficulty: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _accept_camel_case(cls, data: Any) -> Any:
        if isinstance(data, dict) and "correct_answer" not in data and "correctAnswer" in data:
            data = {**data, "correct_answer": data["correctAnswer"]}
        return data

    @field_validator("options", mode="before")
    @classmethod
    def _normalize_options(cls, value: Any) -> Any:
        if isinstance(value, list):
            if len(value) < 4:
                raise ValueError("multiple choice needs four options")
            return {key: str(value[i]) for i, key in enumerate(_OPTION_KEYS)}
        if isinstance(value, dict):
            lowered = {str(k).strip().upper(): v for k, v in value.items()}
            numbered = {"1": "A", "2": "B", "3": "C", "4": "D"}
            for number, key in numbered.items():
                if key not in lowered and number in lowered:
                    lowered[key] = lowered[number]
            return {key: str(lowered.get(key) or "").strip() for key in _OPTION_KEYS}
        return value

    @field_validator("options")
    @classmethod
    def _require_all_options(cls, value: dict[str, str]) -> dict[str, str]:
        if any(not value.get(key) for key in _OPTION_KEYS):
            raise ValueError("options A-D must all be non-empty")
        return value

    @field_validator("correct_answer", mode="before")
    @classmethod
    def _normalize_answer(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip().upper().rstrip(").")
        if value not in _OPTION_KEYS:
            raise ValueError("correct_answer must be one of A, B, C, D")
        return value


class TrueFalseItem(_ItemBase):
    question: str = Field(min_length=1)
    correct_answer: str
    explanation: str | None = None
    difficulty: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _accept_camel_case(cls, data: Any) -> Any:
        if isinstance(data, dict) and "correct_answer" not in data and "correctAnswer" in data:
            data = {**data, "correct_answer": data["correctAnswer"]}
        return data

    @field_validator("correct_answer", mode="before")
    @classmethod
    def _normalize_answer(cls, value: Any) -> Any:
        word = str(value).strip().lower()
        if word in _TRUE_WORDS:
            return "true"
        if word in _FALSE_WORDS:
            return "false"
        raise ValueError("correct_answer must be true or false")


class ShortAnswerItem(_ItemBase):
    model_config = {**_ItemBase.model_config, "protected_namespaces": ()}

    question: str = Field(min_length=1)
    model_answer: str = Field(min_length=1)
    key_points: list[str] = Field(default_factory=list)
    explanation: str | None = None
    difficulty: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _answer_aliases(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("model_answer"):
            answer = data.get("correct_answer") or data.get("answer")
            if answer:
                data = {**data, "model_answer": answer}
        return data


class FlashcardItem(_ItemBase):
    front: str = Field(min_length=1)
    back: str = Field(min_length=1)
    difficulty: str | None = None


class ItemsEnvelope(BaseModel):
    items: list[Any]


def parse_items(raw: str, item_model: type[BaseModel]) -> tuple[list[BaseModel], int]:
    """Validate an LLM response against ``item_model``.

    Returns the valid items and the number of dropped ones.

    Raises:
        MalformedOutputError: if the response is not a JSON ``{"items": [...]}``
            object, or if no item is valid.
    """
    try:
        envelope = ItemsEnvelope.model_validate_json(raw or "")
    except ValidationError as exc:
        raise MalformedOutputError(
            f"Response is not a JSON object with an 'items' list ({exc.error_count()} errors)",
            raw_output=(raw or "")[:500],
        ) from exc

    valid: list[BaseModel] = []
    dropped = 0
    for position, item in enumerate(envelope.items):
        try:
            valid.append(item_model.model_validate(item))
        except ValidationError as exc:
            dropped += 1
            logger.debug("Dropping invalid item %d: %s", position, exc.errors()[0].get("msg"))

    if not valid:
        raise MalformedOutputError(
            f"No valid items among {len(envelope.items)} returned",
            raw_output=raw[:500],
        )
    return valid, dropped
