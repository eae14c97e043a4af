"""Prompt templates for grounded quiz and flashcard generation.

Every prompt asks for a single JSON object ``{"items": [...]}`` and
instructs the model to cite the ``[chunk:<id>]`` labels it drew from.
"""

from studyrag.domain.entities import ChatMessage, QuestionType

_SYSTEM_PROMPT = """\
You are an expert educator writing study material from course content.
Use ONLY the facts in the SOURCE CONTENT you are given. If you add general
background knowledge, say so explicitly in the explanation.
Respond with a single JSON object of the form {"items": [...]}.
No markdown fences, no text outside the JSON."""

_RULES = """\
CRITICAL RULES:
1. Items must be standalone: they must make sense to someone who knows the
   subject but has never seen the source text.
2. Never reference the text, passage or author ("According to the text...").
3. Test concepts and understanding, not reading comprehension.
4. For every item, list in "source_chunk_ids" the ids of the [chunk:<id>]
   blocks it is based on."""

_MATH_GUIDE = """\
This content contains mathematical notation:
- Write math in LaTeX, inline as $...$ and display as $$...$$
- Include calculations and formulas where appropriate
- Test understanding of the mathematics, not memorization"""

_FORMATS = {
    QuestionType.MULTIPLE_CHOICE: """\
Generate exactly {count} multiple-choice questions. Each has a clear question,
EXACTLY four distinct, plausible options keyed "A", "B", "C", "D", one correct
answer and a brief explanation.

{{"items": [
  {{
    "question": "What is the primary function of mitochondria in eukaryotic cells?",
    "options": {{"A": "ATP synthesis", "B": "Protein folding", "C": "Waste removal", "D": "Cell division"}},
    "correct_answer": "A",
    "explanation": "Mitochondria produce most of the cell's ATP through oxidative phosphorylation.",
    "difficulty": "medium",
    "topic": "Cell Biology",
    "source_chunk_ids": ["<chunk id>"]
  }}
]}}""",
    QuestionType.TRUE_FALSE: """\
Generate exactly {count} true/false items. The "question" field is a
DECLARATIVE STATEMENT (not a question, no "True or False:" prefix) that is
clearly true or clearly false given the source. Mix true and false roughly
evenly. "correct_answer" is "true" or "false".

{{"items": [
  {{
    "question": "Mitochondria are responsible for protein synthesis in cells.",
    "correct_answer": "false",
    "explanation": "Ribosomes synthesise proteins; mitochondria produce ATP.",
    "difficulty": "medium",
    "topic": "Cell Biology",
    "source_chunk_ids": ["<chunk id>"]
  }}
]}}""",
    QuestionType.SHORT_ANSWER: """\
Generate exactly {count} short-answer questions, each with a model answer
and the key points a good answer mentions.

{{"items": [
  {{
    "question": "How do mitochondria generate energy?",
    "model_answer": "Through oxidative phosphorylation across the inner membrane.",
    "key_points": ["oxidative phosphorylation", "ATP", "inner membrane"],
    "difficulty": "medium",
    "topic": "Cell Biology",
    "source_chunk_ids": ["<chunk id>"]
  }}
]}}""",
}

_FLASHCARD_FORMAT = """\
Generate exactly {count} flashcards. The front holds a concept, term or
question; the back holds its definition, answer or explanation.

{{"items": [
  {{
    "front": "Mitochondria",
    "back": "Organelle that generates most of the cell's chemical energy as ATP.",
    "topic": "Cell Biology",
    "source_chunk_ids": ["<chunk id>"]
  }}
]}}"""


def difficulty_guide(difficulty: str) -> str:
    if difficulty == "mixed":
        return "Mix difficulties: easy (30%), medium (50%) and hard (20%)."
    return f"All items should be {difficulty} difficulty."


def _context_guide(group_label: str | None, group_number: int, total_groups: int, chapter_mode: bool) -> str:
    if chapter_mode and group_label:
        return f'You are writing items for {group_label}.'
    if total_groups > 1:
        return f"You are writing items for topic area {group_number} of {total_groups}."
    return "Use the provided content as the source of facts."


def _user_prompt(body: str, context: str, context_guide: str, extra: list[str]) -> str:
    sections = [
        f"SOURCE MATERIAL CONTEXT:\n{context_guide}",
        f'SOURCE CONTENT:\n"""\n{context}\n"""',
        _RULES,
        *[e for e in extra if e],
        body,
    ]
    return "\n\n".join(sections)


def build_quiz_messages(
    *,
    count: int,
    question_type: QuestionType,
    difficulty: str,
    context: str,
    has_math: bool = False,
    group_label: str | None = None,
    group_number: int = 1,
    total_groups: int = 1,
    chapter_mode: bool = False,
) -> list[ChatMessage]:
    """Messages asking for ``count`` quiz items of ``question_type``."""
    body = _FORMATS[question_type].format(count=count)
    user = _user_prompt(
        body,
        context,
        _context_guide(group_label, group_number, total_groups, chapter_mode),
        [difficulty_guide(difficulty), _MATH_GUIDE if has_math else ""],
    )
    return [
        ChatMessage(role="system", content=_SYSTEM_PROMPT),
        ChatMessage(role="user", content=user),
    ]


def build_flashcard_messages(
    *,
    count: int,
    context: str,
    topic: str | None = None,
    has_math: bool = False,
    group_label: str | None = None,
    group_number: int = 1,
    total_groups: int = 1,
    chapter_mode: bool = False,
) -> list[ChatMessage]:
    """Messages asking for ``count`` flashcards, optionally focused on ``topic``."""
    focus = f"Focus the flashcards on: {topic}." if topic else ""
    user = _user_prompt(
        _FLASHCARD_FORMAT.format(count=count),
        context,
        _context_guide(group_label, group_number, total_groups, chapter_mode),
        [focus, _MATH_GUIDE if has_math else ""],
    )
    return [
        ChatMessage(role="system", content=_SYSTEM_PROMPT),
        ChatMessage(role="user", content=user),
    ]
