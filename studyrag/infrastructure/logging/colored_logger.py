"""Colored pipeline logger — ANSI-colored console logging for ingestion and generation.

Provides a PipelineLogger with color-coded output per pipeline stage,
so a document's path from upload to stored vectors (or a quiz's path
from retrieval to persistence) can be followed in the terminal.

Color scheme:
    Green   — Upload / Storage / Complete
    Yellow  — Text extraction / Chunking
    Magenta — Embedding
    Blue    — Retrieval
    Cyan    — Generation / Validation
    Red     — Errors and warnings
"""

import logging
import time
from contextlib import contextmanager
from typing import Any


class _Colors:
    """ANSI escape codes for terminal colors."""

    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    BLUE = "\033[94m"
    MAGENTA = "\033[95m"
    CYAN = "\033[96m"
    WHITE = "\033[97m"
    GRAY = "\033[90m"


Stage = tuple[str, str, str]


class PipelineStage:
    """Predefined pipeline stages with colors and icons."""

    UPLOAD = ("UPLOAD", _Colors.GREEN, "📁")
    TEXT_EXTRACTION = ("TEXT_EXTRACT", _Colors.YELLOW, "📄")
    CHUNKING = ("CHUNK", _Colors.YELLOW, "✂️")
    EMBEDDING = ("EMBED", _Colors.MAGENTA, "🧮")
    STORAGE = ("STORAGE", _Colors.GREEN, "💾")
    RETRIEVAL = ("RETRIEVE", _Colors.BLUE, "🔎")
    GENERATION = ("GENERATE", _Colors.CYAN, "🤖")
    VALIDATION = ("VALIDATE", _Colors.CYAN, "🧪")
    PIPELINE = ("PIPELINE", _Colors.WHITE, "⚙️")
    ERROR = ("ERROR", _Colors.RED, "❌")
    COMPLETE = ("COMPLETE", _Colors.GREEN, "✅")


def _format_details(kwargs: dict[str, Any], color: str) -> str:
    if not kwargs:
        return ""
    details = " | ".join(f"{k}={v}" for k, v in kwargs.items())
    return f" {color}({details}){_Colors.RESET}"


class PipelineLogger:
    """Color-coded logger for the study-material pipelines.

    Usage:
        log = PipelineLogger("IngestionService")
        log.step_start(PipelineStage.UPLOAD, "Processing calculus.pdf")
        log.detail("Size: 2.4 MB")
        log.step_complete(PipelineStage.STORAGE, "Stored 48 chunks")
    """

    def __init__(self, component_name: str):
        self._logger = logging.getLogger(component_name)
        self._component = component_name

    def step_start(self, stage: Stage, message: str, **kwargs: Any) -> None:
        label, color, icon = stage
        formatted = (
            f"{color}{_Colors.BOLD}{icon} [{label}]{_Colors.RESET} "
            f"{color}{message}{_Colors.RESET}"
        )
        self._logger.info(formatted + _format_details(kwargs, _Colors.GRAY))

    def step_complete(self, stage: Stage, message: str, **kwargs: Any) -> None:
        label, color, icon = stage
        formatted = (
            f"{color}{icon} [{label}]{_Colors.RESET} "
            f"{_Colors.GREEN}✓ {message}{_Colors.RESET}"
        )
        self._logger.info(formatted + _format_details(kwargs, _Colors.GRAY))

    def step_warning(self, stage: Stage, message: str, **kwargs: Any) -> None:
        """Log a degraded-but-continuing step in yellow."""
        label, _, icon = stage
        formatted = (
            f"{_Colors.YELLOW}{icon} [{label}]{_Colors.RESET} "
            f"{_Colors.YELLOW}⚠ {message}{_Colors.RESET}"
        )
        self._logger.warning(formatted + _format_details(kwargs, _Colors.DIM))

    def step_error(self, stage: Stage, message: str, error: BaseException | None = None) -> None:
        label, _, _ = stage
        formatted = (
            f"{_Colors.RED}{_Colors.BOLD}❌ [{label}]{_Colors.RESET} "
            f"{_Colors.RED}{message}{_Colors.RESET}"
        )
        if error:
            formatted += f" {_Colors.DIM}→ {type(error).__name__}: {error}{_Colors.RESET}"
        self._logger.error(formatted)

    def detail(self, message: str, **kwargs: Any) -> None:
        formatted = f"   {_Colors.GRAY}├─ {message}{_Colors.RESET}"
        self._logger.info(formatted + _format_details(kwargs, _Colors.DIM))

    def separator(self, title: str = "") -> None:
        if title:
            self._logger.info(
                f"{_Colors.GRAY}{'─' * 10} {title} {'─' * max(0, 50 - len(title))}{_Colors.RESET}"
            )
        else:
            self._logger.info(f"{_Colors.GRAY}{'─' * 60}{_Colors.RESET}")

    def stats(self, **kwargs: Any) -> None:
        parts = [f"{k}: {v}" for k, v in kwargs.items()]
        self._logger.info(f"   {_Colors.GRAY}📈 {' | '.join(parts)}{_Colors.RESET}")

    @contextmanager
    def timed_step(self, stage: Stage, message: str, **kwargs: Any):
        """Context manager that logs start/end with elapsed time.

        Usage:
            with log.timed_step(PipelineStage.EMBEDDING, "Embedding 50 chunks"):
                vectors = await embedder.embed_texts(texts)
        """
        self.step_start(stage, message, **kwargs)
        start = time.perf_counter()
        try:
            yield
        except Exception as e:
            elapsed = time.perf_counter() - start
            self.step_error(stage, f"{message} failed after {elapsed:.2f}s", error=e)
            raise
        else:
            elapsed = time.perf_counter() - start
            self.step_complete(stage, f"{message} ({elapsed:.2f}s)")
