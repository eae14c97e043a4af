"""Unit tests for the math-aware and simple chunkers."""

import pytest

from studyrag.application.services.chunking_service import (
    MathAwareChunker,
    SimpleChunker,
    expand_latex,
    get_chunker,
)
from studyrag.config import Settings
from studyrag.domain.entities import (
    DEFAULT_CHAPTER_TITLE,
    ContentType,
    StructuredMetadata,
    UnstructuredMetadata,
)


LONG_EQUATION = "$$" + "x + " * 100 + "y$$"


def _math_document() -> str:
    return (
        "Intro sentence. " * 20
        + "\n\n"
        + LONG_EQUATION
        + "\n\n"
        + "Outro sentence. " * 20
    )


# ── Ordinals and sizing ─────────────────────────────────────────────


class TestOrdinals:
    def test_empty_text_yields_no_chunks(self):
        assert MathAwareChunker().chunk("") == []
        assert SimpleChunker().chunk("   \n\n ") == []

    def test_ordinals_are_contiguous(self):
        text = "\n\n".join(
            [
                "Chapter 1: Limits",
                "A limit describes the value a function approaches. " * 10,
                "## One-sided limits",
                "Approaching from the left may differ from the right. " * 12,
                "Theorem 1.1 If both one-sided limits agree the limit exists.",
                "$$\\lim_{x \\to a} f(x) = L$$",
                "Chapter 2: Derivatives",
                "The derivative is the limit of difference quotients. " * 15,
            ]
        )
        drafts = MathAwareChunker(chunk_size=300).chunk(text)

        assert len(drafts) > 3
        assert [d.chunk_index for d in drafts] == list(range(len(drafts)))

    def test_small_document_is_kept(self):
        drafts = SimpleChunker().chunk("Tiny note.")
        assert len(drafts) == 1
        assert drafts[0].content == "Tiny note."

    def test_chunks_respect_token_ceiling(self):
        text = " ".join(f"Sentence number {i} talks about limits." for i in range(60))
        chunker = SimpleChunker(
            chunk_size=1000, chunk_overlap=60, min_chunk_size=20, max_chunk_tokens=50
        )
        drafts = chunker.chunk(text)

        assert len(drafts) > 1
        assert all(d.token_count <= 50 for d in drafts)

    def test_oversized_equation_is_emitted_alone(self):
        chunker = MathAwareChunker(
            chunk_size=1000, chunk_overlap=60, min_chunk_size=20, max_chunk_tokens=50
        )
        drafts = chunker.chunk(_math_document())

        oversized = [d for d in drafts if d.token_count > 50]
        assert len(oversized) == 1
        assert oversized[0].latex_content == LONG_EQUATION


# ── Math handling ───────────────────────────────────────────────────


class TestMathHandling:
    def test_equation_is_never_split(self):
        drafts = MathAwareChunker(chunk_size=200).chunk(_math_document())

        holders = [d for d in drafts if d.latex_content and LONG_EQUATION in d.latex_content]
        assert len(holders) == 1
        assert holders[0].has_math is True
        assert holders[0].content_type == ContentType.EQUATION
        assert "[math: x + x + x" in holders[0].content
        for draft in drafts:
            if draft.latex_content:
                assert draft.latex_content.count("$$") % 2 == 0

    def test_inline_math_round_trip(self):
        text = "The area is $A = \\pi r^2$ for a circle of radius r."
        drafts = MathAwareChunker().chunk(text)

        assert len(drafts) == 1
        draft = drafts[0]
        assert draft.latex_content == text
        assert draft.content == "The area is [math: A = pi r^2] for a circle of radius r."
        assert draft.content_type == ContentType.EQUATION

    def test_simple_chunker_ignores_dollar_amounts(self):
        text = "Tickets cost $5 and parking costs $10 for the day."
        draft = SimpleChunker().chunk(text)[0]

        assert draft.has_math is False
        assert draft.latex_content is None
        assert draft.content == text
        assert draft.content_type == ContentType.TEXT

    def test_theorem_environment_is_classified(self):
        text = (
            "\\begin{definition}A group is a set with an operation $\\cdot$ "
            "satisfying closure.\\end{definition}"
        )
        draft = MathAwareChunker().chunk(text)[0]

        assert draft.content_type == ContentType.DEFINITION
        assert draft.has_math is True
        assert draft.latex_content == text
        assert draft.content.startswith("Definition: A group is a set with an operation [math: *]")

    def test_environment_inside_display_math_round_trips(self):
        equation = "$$f(x) = \\begin{cases} 1 & x > 0 \\\\ 0 & x \\le 0 \\end{cases}$$"
        text = "The sign function is piecewise.\n\n" + equation + "\n\nIt jumps at zero."
        drafts = MathAwareChunker().chunk(text)

        holders = [d for d in drafts if d.latex_content and equation in d.latex_content]
        assert len(holders) == 1
        assert "[math: f(x) =" in holders[0].content
        for draft in drafts:
            assert "\ue000" not in draft.content
            assert "\ue000" not in (draft.latex_content or "")

    def test_matrix_inside_bracket_math_round_trips(self):
        text = "Let \\[ A = \\begin{pmatrix} 1 & 2 \\\\ 3 & 4 \\end{pmatrix} \\] be invertible."
        draft = MathAwareChunker().chunk(text)[0]

        assert draft.latex_content == text
        assert "\ue000" not in draft.content
        assert "[math: A =" in draft.content
        assert draft.has_math is True

    def test_code_inside_example_round_trips(self):
        text = "\\begin{example}\n```python\nprint(sum(range(10)))\n```\n\\end{example}"
        draft = MathAwareChunker().chunk(text)[0]

        assert "\ue000" not in draft.content
        assert "print(sum(range(10)))" in draft.content
        assert draft.latex_content in (None, text)

    def test_structural_keyword_wins_over_equation(self):
        text = "Theorem 2.1. Every bounded monotone sequence $a_n$ converges to a limit."
        draft = MathAwareChunker().chunk(text)[0]
        assert draft.content_type == ContentType.THEOREM


class TestExpandLatex:
    def test_fraction(self):
        assert expand_latex("\\frac{a}{b}") == "(a)/(b)"

    def test_nested_fraction_and_root(self):
        assert expand_latex("\\frac{\\sqrt{x}}{2}") == "(sqrt(x))/(2)"

    def test_greek_and_relations(self):
        assert expand_latex("\\alpha \\leq \\beta") == "alpha <= beta"


# ── Structure metadata ──────────────────────────────────────────────


class TestStructureMetadata:
    def test_chapter_headings_assign_metadata(self):
        text = (
            "Chapter 1: Limits\n\n"
            + "A limit describes the value that a function approaches as the input moves. " * 2
            + "\n\nChapter 2: Derivatives\n\n"
            + "The derivative measures the instantaneous rate of change of a function. " * 2
        )
        drafts = SimpleChunker().chunk(text)

        assert len(drafts) == 2
        first, second = drafts
        assert isinstance(first.metadata, StructuredMetadata)
        assert (first.metadata.chapter, first.metadata.chapter_title) == (1, "Limits")
        assert (second.metadata.chapter, second.metadata.chapter_title) == (2, "Derivatives")
        assert first.content.startswith("Chapter 1: Limits")

    def test_heading_free_text_is_unstructured(self):
        text = "Plain notes without any headings at all. " * 5
        draft = SimpleChunker().chunk(text)[0]

        assert isinstance(draft.metadata, UnstructuredMetadata)
        assert draft.metadata.to_dict()["chapterTitle"] == DEFAULT_CHAPTER_TITLE

    def test_topic_heading_joins_chapter_heading(self):
        text = (
            "Chapter 3: Functions\n"
            "## Continuity\n"
            "A function is continuous when small changes in input give small changes in output."
        )
        drafts = SimpleChunker().chunk(text)

        assert len(drafts) == 1
        metadata = drafts[0].metadata
        assert isinstance(metadata, StructuredMetadata)
        assert metadata.chapter == 3
        assert metadata.chapter_title == "Functions"
        assert metadata.topics == ["Continuity"]
        assert drafts[0].content.startswith("Chapter 3: Functions")

    def test_latex_chapters_are_numbered(self):
        text = (
            "\\chapter{Vectors}\n\n" + "Vectors have magnitude and direction. " * 3
            + "\n\n\\chapter{Matrices}\n\n" + "Matrices represent linear maps. " * 3
        )
        drafts = MathAwareChunker().chunk(text)
        chapters = [(d.metadata.chapter, d.metadata.chapter_title) for d in drafts]
        assert chapters == [(1, "Vectors"), (2, "Matrices")]

    def test_pages_follow_form_feeds(self):
        first_page = " ".join(["Alpha"] * 25)
        second_page = " ".join(["Omega"] * 25)
        chunker = SimpleChunker(chunk_size=200, min_chunk_size=50)
        drafts = chunker.chunk(f"{first_page}\f{second_page}")

        assert [d.metadata.page for d in drafts] == [1, 2]

    def test_key_concepts_from_bold_terms(self):
        text = "A **vector space** is a set closed under addition, also known as linear space."
        draft = SimpleChunker().chunk(text)[0]
        assert draft.metadata.key_concepts == ["vector space", "linear"]


class TestGetChunker:
    def test_selects_implementation(self):
        assert isinstance(get_chunker(True), MathAwareChunker)
        assert isinstance(get_chunker(False), SimpleChunker)

    def test_sizes_from_settings(self):
        settings = Settings(chunk_size=321, chunk_overlap=12, min_chunk_size=7, max_chunk_tokens=99)
        chunker = get_chunker(True, settings)
        assert (chunker.chunk_size, chunker.chunk_overlap) == (321, 12)
        assert (chunker.min_chunk_size, chunker.max_chunk_tokens) == (7, 99)

    def test_rejects_non_positive_sizes(self):
        with pytest.raises(ValueError):
            SimpleChunker(chunk_size=0)
