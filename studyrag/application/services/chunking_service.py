"""Chunking service — splits extracted document text into content-typed chunks.

The math-aware chunker works in four passes:
1. Protect spans that must never be split (display/inline math, LaTeX math
   and theorem-like environments, fenced code) behind opaque placeholders.
2. Walk the text line by line, opening a new section at every heading and
   tracking the current chapter, topic and page (pages are separated by
   form feeds).
3. Pack paragraphs, then sentences, then words into chunks bounded by
   ``chunk_size`` characters and the ``max_chunk_tokens`` ceiling.
4. Restore the spans: ``latex_content`` receives the raw markup and
   ``content`` an annotated plain rendering used for embedding.

The simple chunker shares passes 2 and 3 but treats every character as
plain text, so dollar amounts in prose are never mistaken for math.
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from studyrag.application.services.content_analysis import (
    estimate_token_count,
    tokens_for_length,
)
from studyrag.config import Settings
from studyrag.domain.entities import (
    ChunkDraft,
    ChunkMetadata,
    ContentType,
    StructuredMetadata,
    UnstructuredMetadata,
)

logger = logging.getLogger(__name__)

# ── Protected spans ─────────────────────────────────────────────────
_PH_OPEN = "\ue000"
_PH_CLOSE = "\ue001"
_PLACEHOLDER = re.compile("\ue000(\\d+)\ue001")

_MATH_ENVS = (
    "equation|align|alignat|gather|multline|flalign|eqnarray|split|"
    "matrix|bmatrix|pmatrix|vmatrix|Vmatrix|smallmatrix|cases|array"
)
_THEOREM_ENVS = "theorem|definition|lemma|proposition|corollary|proof|example|remark|note"

_CODE_BLOCK = re.compile(r"```[\s\S]*?```")
_THEOREM_ENV = re.compile(
    rf"\\begin\{{({_THEOREM_ENVS})(\*?)\}}([\s\S]*?)\\end\{{\1\2\}}"
)
# Math patterns; a later pattern may enclose a span matched by an earlier one.
# Group "body" is the expression itself.
_MATH_PATTERNS = (
    re.compile(rf"\\begin\{{(?P<env>{_MATH_ENVS})(?P<star>\*?)\}}(?P<body>[\s\S]*?)\\end\{{(?P=env)(?P=star)\}}"),
    re.compile(r"\$\$(?P<body>[\s\S]+?)\$\$"),
    re.compile(r"\\\[(?P<body>[\s\S]+?)\\\]"),
    re.compile(r"\\\((?P<body>[\s\S]+?)\\\)"),
    re.compile(r"(?<![\$\\])\$(?!\$)(?P<body>[^$\n]+?)(?<!\\)\$(?!\$)"),
)
# Math written without delimiters still marks a chunk as mathematical.
_MATH_COMMANDS = re.compile(
    r"\\(?:frac|sqrt|sum|int|prod|lim|partial|alpha|beta|gamma|mathbb|mathcal)\b"
)

# ── LaTeX expansion for the plain rendering ─────────────────────────
_GREEK_LETTERS = frozenset(
    "alpha beta gamma delta epsilon varepsilon zeta eta theta vartheta iota kappa "
    "lambda mu nu xi pi varpi rho varrho sigma varsigma tau upsilon phi varphi chi "
    "psi omega Gamma Delta Theta Lambda Xi Pi Sigma Upsilon Phi Psi Omega".split()
)
_LATEX_SYMBOLS = {
    "leq": "<=", "le": "<=", "geq": ">=", "ge": ">=", "neq": "!=", "ne": "!=",
    "approx": "~=", "equiv": "==", "sim": "~", "times": "*", "cdot": "*",
    "div": "/", "pm": "+/-", "mp": "-/+", "infty": "infinity", "to": "->",
    "rightarrow": "->", "leftarrow": "<-", "Rightarrow": "=>", "Leftarrow": "<=",
    "implies": "=>", "iff": "<=>", "Leftrightarrow": "<=>", "mapsto": "->",
    "in": "in", "notin": "not in", "subset": "subset of", "subseteq": "subset of",
    "cup": "union", "cap": "intersection", "emptyset": "empty set",
    "forall": "for all", "exists": "exists", "neg": "not", "land": "and", "lor": "or",
    "sum": "sum", "prod": "product", "int": "integral", "iint": "double integral",
    "oint": "contour integral", "lim": "lim", "ldots": "...", "cdots": "...", "dots": "...",
}
_FRACTION = re.compile(r"\\[dt]?frac\{([^{}]*)\}\{([^{}]*)\}")
_ROOT = re.compile(r"\\sqrt(?:\[([^\]]*)\])?\{([^{}]*)\}")
_TEXT_COMMAND = re.compile(
    r"\\(?:text|textbf|textit|mathrm|mathbf|mathit|mathbb|mathcal|mathsf|operatorname)\{([^{}]*)\}"
)
_SIZING = re.compile(r"\\(?:left|right|bigg|Bigg|big|Big)\b")
_COMMAND = re.compile(r"\\([A-Za-z]+)")
_SPACING = re.compile(r"\\[,;:! ]")

# ── Headings ────────────────────────────────────────────────────────
_MAX_HEADING_WORDS = 12
_CHAPTER_HEADING = re.compile(
    r"^(?:#{1,6}\s*)?(?:(?:chapter|unit|module|lesson)\s+|ch(?:\.\s*|\s+))(\d+)\s*(?:[:.\-–—]\s*)?(.*)$",
    re.IGNORECASE,
)
_LATEX_CHAPTER = re.compile(r"^\\chapter\*?\{([^}]*)\}")
_LATEX_SECTION = re.compile(r"^\\(?:sub){0,2}section\*?\{([^}]*)\}")
_MARKDOWN_HEADING = re.compile(r"^(#{1,6})\s+(.+?)\s*#*$")
_SECTION_HEADING = re.compile(
    r"^Section\s+(\d+(?:\.\d+)*)\s*(?:[:.\-–—]\s*)?(.*)$", re.IGNORECASE
)
_NUMBERED_HEADING = re.compile(r"^(\d+(?:\.\d+)+)\.?\s+([A-Z].*)$")
_BOLD_HEADING = re.compile(r"^\*\*([^*]{2,80})\*\*:?$")

# ── Classification ──────────────────────────────────────────────────
_CONTENT_TYPE_PATTERNS = (
    (
        ContentType.THEOREM,
        re.compile(
            r"\\begin\{(?:theorem|lemma|proposition|corollary)\*?\}"
            r"|^(?:Theorem|Lemma|Proposition|Corollary)\s+\d",
            re.IGNORECASE | re.MULTILINE,
        ),
    ),
    (
        ContentType.DEFINITION,
        re.compile(r"\\begin\{definition\*?\}|^Definition\s+\d", re.IGNORECASE | re.MULTILINE),
    ),
    (
        ContentType.PROOF,
        re.compile(r"\\begin\{proof\*?\}|^Proof[.:]", re.IGNORECASE | re.MULTILINE),
    ),
    (
        ContentType.EXAMPLE,
        re.compile(r"\\begin\{example\*?\}|^Example\s+\d", re.IGNORECASE | re.MULTILINE),
    ),
    (
        ContentType.EXERCISE,
        re.compile(r"^(?:Exercise|Problem)\s+\d", re.IGNORECASE | re.MULTILINE),
    ),
)
_BOLD_TERM = re.compile(r"\*\*([^*]+)\*\*")
_DEFINED_TERM = re.compile(r"(?:defined as|is called|known as)\s+[\"']?(\w+)", re.IGNORECASE)
_MAX_KEY_CONCEPTS = 10

_SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+")


# ── Internal structures ─────────────────────────────────────────────


@dataclass
class _Span:
    """A protected region of the source text."""

    raw: str
    rendered: str
    is_math: bool

    @property
    def size(self) -> int:
        return max(len(self.raw), len(self.rendered))


@dataclass
class _ProtectedText:
    """Source text with protected spans swapped for placeholders."""

    text: str
    spans: list[_Span] = field(default_factory=list)

    def size(self, fragment: str) -> int:
        """Length of a fragment once its spans are restored (raw or rendered, whichever is longer)."""
        if _PH_OPEN not in fragment:
            return len(fragment)
        total = len(fragment)
        for match in _PLACEHOLDER.finditer(fragment):
            total += self.spans[int(match.group(1))].size - len(match.group(0))
        return total

    def restore(self, fragment: str) -> str:
        return _PLACEHOLDER.sub(lambda m: self.spans[int(m.group(1))].raw, fragment)

    def render(self, fragment: str) -> str:
        return _PLACEHOLDER.sub(lambda m: self.spans[int(m.group(1))].rendered, fragment)

    def has_math_span(self, fragment: str) -> bool:
        return any(
            self.spans[int(m.group(1))].is_math for m in _PLACEHOLDER.finditer(fragment)
        )


@dataclass
class _Paragraph:
    text: str
    page: int | None


@dataclass
class _Section:
    chapter: int | None = None
    chapter_title: str | None = None
    topic: str | None = None
    section: str | None = None
    heading_only: bool = False
    paragraphs: list[_Paragraph] = field(default_factory=list)
    _lines: list[str] = field(default_factory=list)
    _page: int | None = None

    def add_line(self, line: str, page: int | None) -> None:
        if not self._lines:
            self._page = page
        self._lines.append(line)

    def end_paragraph(self) -> None:
        if self._lines:
            self.paragraphs.append(_Paragraph("\n".join(self._lines).strip(), self._page))
            self._lines = []


@dataclass
class _Atom:
    """Smallest unit the packer moves around: a paragraph or a run of sentences/words."""

    text: str
    page: int | None
    joiner: str = "\n\n"
    is_overlap: bool = False


@dataclass
class _Heading:
    kind: str  # "chapter" | "title" | "topic"
    title: str | None = None
    number: int | None = None
    section: str | None = None


def _join(atoms: list[_Atom]) -> str:
    parts = [atoms[0].text]
    for atom in atoms[1:]:
        parts.append(atom.joiner)
        parts.append(atom.text)
    return "".join(parts)


# ── Public helpers ──────────────────────────────────────────────────


def expand_latex(expression: str) -> str:
    """Rewrite a LaTeX math expression into readable plain text.

    ``\\frac{a}{b}`` becomes ``(a)/(b)``, Greek letters become their names
    and relations become ASCII operators (``\\leq`` → ``<=``).
    """
    result = expression
    for _ in range(10):
        previous = result
        result = _FRACTION.sub(r"(\1)/(\2)", result)
        result = _ROOT.sub(
            lambda m: f"root({m.group(1)}, {m.group(2)})" if m.group(1) else f"sqrt({m.group(2)})",
            result,
        )
        result = _TEXT_COMMAND.sub(r"\1", result)
        if result == previous:
            break

    result = _SIZING.sub("", result)
    result = _SPACING.sub(" ", result)
    result = result.replace("\\\\", "; ").replace("&", "")

    def _command(match: re.Match[str]) -> str:
        name = match.group(1)
        if name in _GREEK_LETTERS:
            return f" {name} "
        return f" {_LATEX_SYMBOLS.get(name, name)} "

    result = _COMMAND.sub(_command, result)
    result = result.replace("{", "").replace("}", "")
    result = re.sub(r"\s+", " ", result).strip()
    result = re.sub(r"\s+([\^_,.;)\]])", r"\1", result)
    return re.sub(r"([(\[])\s+", r"\1", result)


def annotate_math(text: str) -> str:
    """Replace every delimited math span in ``text`` with ``[math: …]``."""
    for pattern in _MATH_PATTERNS:
        text = pattern.sub(lambda m: f"[math: {expand_latex(m.group('body'))}]", text)
    return text


# ── Chunkers ────────────────────────────────────────────────────────


class Chunker(ABC):
    """Port-like base: turns extracted text into ordered chunk drafts."""

    math_aware: bool = False

    def __init__(
        self,
        *,
        chunk_size: int = 1000,
        chunk_overlap: int = 200,
        min_chunk_size: int = 100,
        max_chunk_tokens: int = 800,
    ):
        if chunk_size <= 0 or max_chunk_tokens <= 0:
            raise ValueError("chunk_size and max_chunk_tokens must be positive")
        self.chunk_size = chunk_size
        self.chunk_overlap = max(0, chunk_overlap)
        self.min_chunk_size = max(0, min_chunk_size)
        self.max_chunk_tokens = max_chunk_tokens

    @abstractmethod
    def _protect(self, text: str) -> _ProtectedText:
        ...

    def chunk(self, text: str) -> list[ChunkDraft]:
        """Split text into chunk drafts with contiguous ordinals ``0..N-1``."""
        if not text or not text.strip():
            return []

        doc = self._protect(text)
        sections = self._merge_heading_only(self._split_sections(doc))

        pieces: list[tuple[_Section, str, int | None]] = []
        for section in sections:
            for body, page in self._pack_section(section, doc):
                pieces.append((section, body, page))

        drafts = [
            self._build_draft(index, section, body, page, doc)
            for index, (section, body, page) in enumerate(pieces)
        ]
        logger.debug(
            "%s produced %d chunks from %d sections (%d chars)",
            type(self).__name__,
            len(drafts),
            len(sections),
            len(text),
        )
        return drafts

    # ── Section detection ──

    def _split_sections(self, doc: _ProtectedText) -> list[_Section]:
        pages = doc.text.split("\f")
        paged = len(pages) > 1

        sections = [_Section()]
        chapter: int | None = None
        chapter_title: str | None = None
        topic: str | None = None
        section_no: str | None = None

        for page_no, page_text in enumerate(pages, start=1):
            page = page_no if paged else None
            sections[-1].end_paragraph()
            for line in page_text.split("\n"):
                stripped = line.strip()
                if not stripped:
                    sections[-1].end_paragraph()
                    continue

                heading = self._match_heading(stripped, doc, chapter)
                if heading is None:
                    sections[-1].add_line(line.rstrip(), page)
                    continue

                if heading.kind == "chapter":
                    chapter, chapter_title = heading.number, heading.title
                    topic, section_no = None, None
                elif heading.kind == "title":
                    topic, section_no = None, None
                else:
                    topic, section_no = heading.title, heading.section

                sections[-1].end_paragraph()
                sections.append(
                    _Section(
                        chapter=chapter,
                        chapter_title=chapter_title,
                        topic=topic,
                        section=section_no,
                        heading_only=True,
                    )
                )
                sections[-1].add_line(stripped, page)
                sections[-1].end_paragraph()

        sections[-1].end_paragraph()
        for section in sections:
            if len(section.paragraphs) > 1:
                section.heading_only = False
        return [s for s in sections if s.paragraphs]

    def _match_heading(
        self, line: str, doc: _ProtectedText, current_chapter: int | None
    ) -> _Heading | None:
        if len(line) > 120:
            return None
        plain = doc.restore(line)

        match = _CHAPTER_HEADING.match(plain)
        if match:
            title = match.group(2).strip().strip("#").strip()
            if len(title.split()) <= _MAX_HEADING_WORDS and not title.endswith("."):
                number = int(match.group(1))
                return _Heading("chapter", title or f"Chapter {number}", number)

        match = _LATEX_CHAPTER.match(plain)
        if match:
            number = (current_chapter or 0) + 1
            return _Heading("chapter", match.group(1).strip() or f"Chapter {number}", number)

        match = _LATEX_SECTION.match(plain)
        if match:
            return _Heading("topic", match.group(1).strip() or None)

        match = _MARKDOWN_HEADING.match(plain)
        if match:
            if len(match.group(1)) == 1:
                return _Heading("title")
            return _Heading("topic", match.group(2).strip())

        match = _SECTION_HEADING.match(plain)
        if match and len(match.group(2).split()) <= _MAX_HEADING_WORDS:
            title = match.group(2).strip() or f"Section {match.group(1)}"
            return _Heading("topic", title, section=match.group(1))

        match = _NUMBERED_HEADING.match(plain)
        if match:
            title = match.group(2).strip()
            if len(title.split()) <= _MAX_HEADING_WORDS and not title.endswith("."):
                return _Heading("topic", title, section=match.group(1))

        match = _BOLD_HEADING.match(plain)
        if match:
            return _Heading("topic", match.group(1).strip())
        return None

    @staticmethod
    def _merge_heading_only(sections: list[_Section]) -> list[_Section]:
        """Fold a bare heading into the following section of the same chapter."""
        merged: list[_Section] = []
        carried: list[_Paragraph] = []
        for index, section in enumerate(sections):
            following = sections[index + 1] if index + 1 < len(sections) else None
            if (
                section.heading_only
                and following is not None
                and following.chapter == section.chapter
            ):
                carried.extend(section.paragraphs)
                continue
            if carried:
                section.paragraphs = carried + section.paragraphs
                carried = []
            merged.append(section)
        return merged

    # ── Packing ──

    def _fits(self, text: str, doc: _ProtectedText) -> bool:
        size = doc.size(text)
        return size <= self.chunk_size and self._within_ceiling(text, doc)

    def _within_ceiling(self, text: str, doc: _ProtectedText) -> bool:
        return tokens_for_length(doc.size(text)) <= self.max_chunk_tokens

    def _split_to_fit(self, text: str, doc: _ProtectedText) -> list[str]:
        """Break an oversize paragraph at sentences, then oversize sentences at words."""
        if self._fits(text, doc):
            return [text]

        pieces: list[str] = []
        for sentence in _SENTENCE_BREAK.split(text):
            if not sentence:
                continue
            units = [sentence] if self._fits(sentence, doc) else sentence.split()
            for unit in units:
                if pieces and self._fits(f"{pieces[-1]} {unit}", doc):
                    pieces[-1] = f"{pieces[-1]} {unit}"
                else:
                    pieces.append(unit)
        return pieces

    def _overlap(self, atoms: list[_Atom], doc: _ProtectedText) -> _Atom | None:
        """Trailing sentences of a chunk, at most ``chunk_overlap`` characters."""
        if not self.chunk_overlap:
            return None
        sentences = _SENTENCE_BREAK.split(_join(atoms))
        taken: list[str] = []
        # Never carry the whole chunk forward.
        for sentence in reversed(sentences[1:]):
            candidate = " ".join([sentence] + taken)
            if doc.size(candidate) > self.chunk_overlap:
                break
            taken.insert(0, sentence)
        if not taken:
            return None
        return _Atom(" ".join(taken), atoms[-1].page, is_overlap=True)

    def _pack_section(
        self, section: _Section, doc: _ProtectedText
    ) -> list[tuple[str, int | None]]:
        atoms: list[_Atom] = []
        for paragraph in section.paragraphs:
            for i, piece in enumerate(self._split_to_fit(paragraph.text, doc)):
                atoms.append(_Atom(piece, paragraph.page, "\n\n" if i == 0 else " "))

        chunks: list[list[_Atom]] = []
        current: list[_Atom] = []
        for atom in atoms:
            if current and not self._fits(_join(current + [atom]), doc):
                chunks.append(current)
                overlap = self._overlap(current, doc)
                current = []
                if overlap and self._within_ceiling(_join([overlap, atom]), doc):
                    current.append(overlap)
            current.append(atom)
        if current:
            chunks.append(current)

        chunks = self._merge_small(chunks, doc)
        return [(_join(chunk).strip(), chunk[0].page) for chunk in chunks]

    def _merge_small(
        self, chunks: list[list[_Atom]], doc: _ProtectedText
    ) -> list[list[_Atom]]:
        """Fold fragments under ``min_chunk_size`` into their predecessor."""
        merged: list[list[_Atom]] = []
        for chunk in chunks:
            if merged and doc.size(_join(chunk).strip()) < self.min_chunk_size:
                fresh = [a for a in chunk if not a.is_overlap]
                if fresh:
                    candidate = merged[-1] + fresh
                    if self._within_ceiling(_join(candidate), doc):
                        merged[-1] = candidate
                        continue
            merged.append(chunk)
        return merged

    # ── Draft assembly ──

    def _build_draft(
        self,
        index: int,
        section: _Section,
        body: str,
        page: int | None,
        doc: _ProtectedText,
    ) -> ChunkDraft:
        raw = doc.restore(body)
        has_math_span = doc.has_math_span(body)
        has_math = self.math_aware and (has_math_span or bool(_MATH_COMMANDS.search(raw)))
        content = doc.render(body) if has_math else raw

        return ChunkDraft(
            chunk_index=index,
            content=content,
            content_type=self._classify(raw, has_math_span),
            has_math=has_math,
            latex_content=raw if has_math else None,
            token_count=estimate_token_count(content),
            metadata=self._metadata(section, raw, page),
        )

    def _classify(self, raw: str, has_math_span: bool) -> ContentType:
        for content_type, pattern in _CONTENT_TYPE_PATTERNS:
            if pattern.search(raw):
                return content_type
        if self.math_aware and has_math_span:
            return ContentType.EQUATION
        return ContentType.TEXT

    @staticmethod
    def _metadata(section: _Section, raw: str, page: int | None) -> ChunkMetadata:
        concepts: list[str] = []
        for term in _BOLD_TERM.findall(raw) + _DEFINED_TERM.findall(raw):
            term = term.strip()
            if term and term not in concepts:
                concepts.append(term)
        concepts = concepts[:_MAX_KEY_CONCEPTS]
        topics = [section.topic] if section.topic else []

        if section.chapter is not None:
            return StructuredMetadata(
                chapter=section.chapter,
                chapter_title=section.chapter_title or f"Chapter {section.chapter}",
                topics=topics,
                page=page,
                section=section.section,
                key_concepts=concepts,
            )
        return UnstructuredMetadata(
            topics=topics, page=page, section=section.section, key_concepts=concepts
        )


class MathAwareChunker(Chunker):
    """Chunker for STEM text: never splits inside math, theorem environments or code."""

    math_aware = True

    def _protect(self, text: str) -> _ProtectedText:
        spans: list[_Span] = []

        def _placeholder(span: _Span) -> str:
            spans.append(span)
            return f"{_PH_OPEN}{len(spans) - 1}{_PH_CLOSE}"

        def _unwrap(fragment: str) -> str:
            # Spans store fully expanded markup, so one level is enough
            return _PLACEHOLDER.sub(lambda m: spans[int(m.group(1))].raw, fragment)

        def _theorem(match: re.Match[str]) -> str:
            body = _unwrap(match.group(3))
            env = match.group(1).capitalize()
            return _placeholder(
                _Span(
                    raw=_unwrap(match.group(0)),
                    rendered=f"{env}: {annotate_math(body.strip())}",
                    is_math=any(p.search(body) for p in _MATH_PATTERNS),
                )
            )

        def _math(match: re.Match[str]) -> str:
            return _placeholder(
                _Span(
                    raw=_unwrap(match.group(0)),
                    rendered=f"[math: {expand_latex(_unwrap(match.group('body')))}]",
                    is_math=True,
                )
            )

        protected = _CODE_BLOCK.sub(
            lambda m: _placeholder(_Span(m.group(0), m.group(0), is_math=False)), text
        )
        protected = _THEOREM_ENV.sub(_theorem, protected)
        for pattern in _MATH_PATTERNS:
            protected = pattern.sub(_math, protected)
        return _ProtectedText(protected, spans)


class SimpleChunker(Chunker):
    """Chunker for general prose: structure-aware, no math handling."""

    def _protect(self, text: str) -> _ProtectedText:
        return _ProtectedText(text)


def get_chunker(math_aware: bool, settings: Settings | None = None) -> Chunker:
    """Pick the chunker for a document, sized from settings when given."""
    options = {}
    if settings is not None:
        options = {
            "chunk_size": settings.chunk_size,
            "chunk_overlap": settings.chunk_overlap,
            "min_chunk_size": settings.min_chunk_size,
            "max_chunk_tokens": settings.max_chunk_tokens,
        }
    if math_aware:
        return MathAwareChunker(**options)
    return SimpleChunker(**options)
