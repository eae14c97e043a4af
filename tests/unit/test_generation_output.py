"""Unit tests for validating LLM-generated items."""

import json

import pytest

from studyrag.application.schemas.generation_output import (
    FlashcardItem,
    MultipleChoiceItem,
    ShortAnswerItem,
    TrueFalseItem,
    parse_items,
)
from studyrag.domain.exceptions import MalformedOutputError


def _envelope(*items) -> str:
    return json.dumps({"items": list(items)})


class TestEnvelope:
    def test_non_json_is_malformed(self):
        with pytest.raises(MalformedOutputError):
            parse_items("Sure! Here are your questions:", FlashcardItem)

    def test_missing_items_key_is_malformed(self):
        with pytest.raises(MalformedOutputError):
            parse_items(json.dumps({"questions": []}), FlashcardItem)

    def test_all_items_invalid_is_malformed(self):
        with pytest.raises(MalformedOutputError) as exc_info:
            parse_items(_envelope({"front": ""}, {"back": "only"}), FlashcardItem)
        assert "No valid items" in exc_info.value.message

    def test_invalid_items_are_dropped_and_counted(self):
        items, dropped = parse_items(
            _envelope({"front": "Q", "back": "A"}, {"front": "missing back"}),
            FlashcardItem,
        )

        assert len(items) == 1
        assert dropped == 1


class TestMultipleChoice:
    def test_list_options_become_lettered(self):
        item = MultipleChoiceItem.model_validate(
            {"question": "Q?", "options": ["w", "x", "y", "z"], "correctAnswer": "c)"}
        )

        assert item.options == {"A": "w", "B": "x", "C": "y", "D": "z"}
        assert item.correct_answer == "C"

    def test_lowercase_keys_are_accepted(self):
        item = MultipleChoiceItem.model_validate(
            {"question": "Q?", "options": {"a": "1", "b": "2", "c": "3", "d": "4"}, "correct_answer": "a"}
        )

        assert item.options["A"] == "1"
        assert item.correct_answer == "A"

    def test_three_options_are_rejected(self):
        with pytest.raises(ValueError):
            MultipleChoiceItem.model_validate({"question": "Q?", "options": ["x", "y", "z"], "correct_answer": "A"})

    def test_answer_outside_options_is_rejected(self):
        with pytest.raises(ValueError):
            MultipleChoiceItem.model_validate(
                {"question": "Q?", "options": ["w", "x", "y", "z"], "correct_answer": "E"}
            )

    def test_chapter_and_source_ids_are_lenient(self):
        item = MultipleChoiceItem.model_validate(
            {
                "question": "Q?",
                "options": ["w", "x", "y", "z"],
                "correct_answer": "B",
                "chapter": "3",
                "source_chunk_ids": [12, None, "abc"],
            }
        )

        assert item.chapter == 3
        assert item.source_chunk_ids == ["12", "abc"]


class TestOtherTypes:
    @pytest.mark.parametrize("raw, expected", [("True", "true"), ("no", "false"), (False, "false")])
    def test_true_false_answers_normalise(self, raw, expected):
        item = TrueFalseItem.model_validate({"question": "Q?", "correct_answer": raw})
        assert item.correct_answer == expected

    def test_true_false_rejects_other_answers(self):
        with pytest.raises(ValueError):
            TrueFalseItem.model_validate({"question": "Q?", "correct_answer": "maybe"})

    def test_short_answer_accepts_answer_alias(self):
        item = ShortAnswerItem.model_validate({"question": "Q?", "answer": "Because.", "key_points": ["a"]})

        assert item.model_answer == "Because."
        assert item.key_points == ["a"]
