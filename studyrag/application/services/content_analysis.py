"""Text heuristics used by the ingestion pipeline.

Pure functions, no I/O:
- sanitize_text: strip characters PostgreSQL rejects, NFC-normalize
- is_text_garbled: detect PDFs extracted through a custom font encoding
- detect_stem_content: density-based math/science classification
- estimate_token_count / truncate_to_token_limit: conservative token math
"""

import math
import re
import unicodedata
from dataclasses import dataclass, field

# ── Token estimation ────────────────────────────────────────────────
_CHARS_PER_TOKEN = 3  # conservative for technical text
_TRUNCATE_CHARS_PER_TOKEN = 1.5  # PDFs and symbols tokenize densely

# ── Sanitization ────────────────────────────────────────────────────
# Control characters except \t, \n and \f (page separator).
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0E-\x1F\x7F]")

# ── Garbled text detection ──────────────────────────────────────────
_COMMON_WORDS = (
    "the", "and", "for", "are", "but", "not", "you", "all",
    "can", "with", "this", "that", "from", "have", "been",
)
_UNUSUAL_SEQUENCE = re.compile(r"[=\]\[]{2,}|[^a-zA-Z0-9\s.,!?;:'\"()-]{3,}")
_LETTER = re.compile(r"[a-zA-Z]")
_SPECIAL_CHAR = re.compile(r"[=\]\[@#$%^&*]")
_GARBLED_SAMPLE = 1000

# ── STEM detection ──────────────────────────────────────────────────
STEM_THRESHOLD = 40
_STEM_SAMPLE = 50_000

_STRONG_LATEX_PATTERNS: dict[str, re.Pattern[str]] = {
    "LaTeX display math": re.compile(r"\$\$[\s\S]{5,}?\$\$"),
    "LaTeX equation env": re.compile(r"\\begin\{(?:equation|align|gather|eqnarray)\*?\}", re.I),
    "LaTeX math operators": re.compile(r"\\(?:frac|sqrt|sum|int|prod|lim|partial)\{"),
    "LaTeX matrix": re.compile(r"\\begin\{(?:matrix|bmatrix|pmatrix|vmatrix)\}", re.I),
}
_MATH_SYMBOLS = re.compile(r"[∑∫∏∂∇∆√∛∜∞∝≈≠≡≤≥±×÷·∀∃∈∉⊂⊃⊆⊇∪∩∅→←↔⇒⇐⇔↦∧∨¬⊕⊗ℕℤℚℝℂℙ]")
_GREEK_LETTERS = re.compile(r"[γδεζηθικλμνξπρστυφχψωΓΔΘΛΞΠΣΦΨΩ]")
_FUNCTION_NOTATION = re.compile(r"\b[fghFGH]\s*\(\s*[a-zA-Z]\s*\)")
_SUBSCRIPT_NOTATION = re.compile(r"\b[a-zA-Z]_\{?[0-9ijn]\}?")
_EXPONENT_NOTATION = re.compile(r"\b[a-zA-Z]\^\{?[\-0-9a-z]+\}?")
_HARD_STEM_TERMS = re.compile(
    r"\b(?:eigenvalue|eigenvector|determinant|Jacobian|Hessian|Laplacian|Hamiltonian|"
    r"polynomial|differential|logarithm|exponential|asymptotic|convergence|divergence|"
    r"homeomorphism|isomorphism|bijection|surjection|injection|cardinality|countable|"
    r"uncountable|topology|manifold|Hilbert|Banach|Lebesgue|Fourier|Laplace|Riemannian|"
    r"Euclidean|Cartesian|orthogonal|orthonormal|diagonalizable)\b",
    re.I,
)
_SCIENCE_TERMS = re.compile(
    r"\b(?:quantum|photon|electron|proton|neutron|molecule|polymer|catalyst|thermodynamic|"
    r"entropy|enthalpy|kinetics|electromagnetic|semiconductor|transistor|algorithm|"
    r"complexity|optimization|iteration|recursion|convergence|numerical|computational|"
    r"simulation|stochastic|probabilistic|Gaussian|Poisson|Bayesian|regression|correlation|"
    r"variance|covariance|eigenmode|wavefunction|Schrödinger|Maxwell|Boltzmann)\b",
    re.I,
)
_THEOREM_STRUCTURE = re.compile(r"\b(?:Theorem|Lemma|Corollary|Proposition)\s+\d+(?:\.\d+)*", re.I)
_DEFINITION_STRUCTURE = re.compile(r"\bDefinition\s+\d+(?:\.\d+)*\s*[.:]", re.I)
_ARCHITECTURE_TERMS = re.compile(
    r"\b(?:architect|architecture|building|facade|floor\s*plan|elevation|blueprint|"
    r"construction|aesthetic|design\s*principle|urban|landscape|interior|renovation|"
    r"preservation|modernist|postmodern|gothic|baroque|renaissance|neoclassical|brutalist|"
    r"contemporary|residential|commercial|zoning|setback|footprint|cantilever|fenestration)\b",
    re.I,
)
_HUMANITIES_TERMS = re.compile(
    r"\b(?:narrative|protagonist|metaphor|allegory|symbolism|rhetoric|discourse|"
    r"epistemology|ontology|phenomenology|hermeneutic|poststructural|deconstruction|"
    r"semiotics|dialectic|aesthetic|sublime|tragic|comic|irony|satire)\b",
    re.I,
)


@dataclass
class StemClassification:
    """Outcome of detect_stem_content."""

    is_stem: bool
    confidence: int  # 0-100
    indicators: list[str] = field(default_factory=list)


def estimate_token_count(text: str) -> int:
    """Approximate token count: one token per three characters, rounded up."""
    if not text:
        return 0
    return tokens_for_length(len(text))


def tokens_for_length(length: int) -> int:
    return math.ceil(length / _CHARS_PER_TOKEN)


def truncate_to_token_limit(text: str, max_tokens: int = 6000) -> str:
    """Cut text so that even a dense tokenizer stays under ``max_tokens``."""
    if not text:
        return text
    max_chars = int(max_tokens * _TRUNCATE_CHARS_PER_TOKEN)
    if len(text) <= max_chars:
        return text
    return text[: max_chars - 3] + "..."


def sanitize_text(text: str) -> str:
    """Remove NUL and control characters (keeping \\t, \\n, \\f) and NFC-normalize."""
    if not text:
        return text
    return unicodedata.normalize("NFC", _CONTROL_CHARS.sub("", text))


def is_text_garbled(text: str) -> bool:
    """Heuristic check for text extracted through a broken font encoding.

    Scores the first 1000 characters: too few common English words,
    many unusual symbol runs, and a high symbol-to-letter ratio each add
    to the score; four or more points means garbled.
    """
    if not text or len(text) < 100:
        return False

    sample = text[:_GARBLED_SAMPLE]
    lower = sample.lower()
    score = 0

    if sum(1 for word in _COMMON_WORDS if word in lower) < 3:
        score += 3

    if len(_UNUSUAL_SEQUENCE.findall(sample)) > 10:
        score += 2

    letters = len(_LETTER.findall(sample))
    specials = len(_SPECIAL_CHAR.findall(sample))
    if specials > letters * 0.1:
        score += 2

    return score >= 4


def detect_stem_content(text: str) -> StemClassification:
    """Classify a document as STEM from the density of math and technical signals.

    Looks at the first 50k characters. Strong LaTeX markers, math symbol and
    Greek letter density, notation patterns and terminology add points;
    architecture and humanities vocabulary subtract. The score is clamped to
    0-100 and a document is STEM at 40 or more.
    """
    if not text or len(text) < 100:
        return StemClassification(is_stem=False, confidence=0)

    sample = text[:_STEM_SAMPLE]
    sample_size = len(sample)
    indicators: list[str] = []
    score = 0

    for name, pattern in _STRONG_LATEX_PATTERNS.items():
        count = len(pattern.findall(sample))
        if count >= 2:
            score += 30
            indicators.append(name)
        elif count == 1:
            score += 15

    symbol_density = len(_MATH_SYMBOLS.findall(sample)) / sample_size * 10_000
    if symbol_density > 10:
        score += 25
        indicators.append("math symbols (high density)")
    elif symbol_density > 3:
        score += 15
        indicators.append("math symbols")

    greek_density = len(_GREEK_LETTERS.findall(sample)) / sample_size * 10_000
    if greek_density > 5:
        score += 20
        indicators.append("Greek letters (high density)")
    elif greek_density > 2:
        score += 10
        indicators.append("Greek letters")

    if len(_FUNCTION_NOTATION.findall(sample)) >= 5:
        score += 15
        indicators.append("function notation")
    if len(_SUBSCRIPT_NOTATION.findall(sample)) >= 10:
        score += 15
        indicators.append("subscript notation")
    if len(_EXPONENT_NOTATION.findall(sample)) >= 10:
        score += 15
        indicators.append("exponent notation")

    hard_terms = len(_HARD_STEM_TERMS.findall(sample))
    if hard_terms >= 5:
        score += 25
        indicators.append("advanced math terminology")
    elif hard_terms >= 2:
        score += 12
        indicators.append("math terminology")

    science_terms = len(_SCIENCE_TERMS.findall(sample))
    if science_terms >= 5:
        score += 20
        indicators.append("science/engineering terminology")
    elif science_terms >= 2:
        score += 10

    if len(_THEOREM_STRUCTURE.findall(sample)) >= 3:
        score += 15
        indicators.append("theorem structure")
    if len(_DEFINITION_STRUCTURE.findall(sample)) >= 3:
        score += 12
        indicators.append("formal definitions")

    # Negative signals
    architecture_terms = len(_ARCHITECTURE_TERMS.findall(sample))
    if architecture_terms >= 5:
        score -= 15
        if architecture_terms >= 15 and score < 50:
            score = min(score, 20)

    if len(_HUMANITIES_TERMS.findall(sample)) >= 5:
        score -= 10

    confidence = min(100, max(0, score))
    return StemClassification(
        is_stem=confidence >= STEM_THRESHOLD,
        confidence=confidence,
        indicators=indicators,
    )
