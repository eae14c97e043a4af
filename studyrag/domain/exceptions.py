"""Domain-specific exceptions — framework-independent."""

# Status codes a provider may recover from on a later attempt.
_TRANSIENT_STATUS_CODES = frozenset({408, 409, 425, 429})


class InvalidInputError(Exception):
    """Raised when a caller supplies an empty, malformed or incomplete request."""


class UnsupportedFileTypeError(InvalidInputError):
    """Raised when an uploaded document has a format we cannot read."""

    def __init__(self, file_name: str, detail: str | None = None):
        self.file_name = file_name
        message = f"Unsupported file type: {file_name}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class EntityNotFoundError(Exception):
    """Raised when a requested entity does not exist."""

    def __init__(self, entity_type: str, entity_id: int | str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} with id '{entity_id}' not found")


class TextExtractionError(Exception):
    """Raised when a document's bytes cannot be turned into text."""

    def __init__(self, file_name: str, message: str):
        self.file_name = file_name
        self.message = message
        super().__init__(f"Failed to extract text from {file_name}: {message}")


class ProviderError(Exception):
    """Raised when an external AI provider (chat or embedding) fails.

    Provider-agnostic — works for OpenRouter, OpenAI, etc. A status code of 0
    means the request never produced an HTTP response (timeout, connection reset).
    """

    def __init__(self, provider: str, status_code: int, message: str):
        self.provider = provider
        self.status_code = status_code
        self.message = message
        super().__init__(f"[{provider}] {status_code}: {message}")

    @property
    def is_transient(self) -> bool:
        """Whether retrying the same request later may succeed."""
        return (
            self.status_code == 0
            or self.status_code in _TRANSIENT_STATUS_CODES
            or self.status_code >= 500
        )


class ChatProviderError(ProviderError):
    """Raised when a chat completion provider returns an error."""


class EmbeddingProviderError(ProviderError):
    """Raised when an embedding provider returns an error."""


class MalformedOutputError(Exception):
    """Raised when LLM output is not valid JSON or has no schema-valid items."""

    def __init__(self, message: str, raw_output: str = ""):
        self.message = message
        self.raw_output = raw_output
        super().__init__(message)


class InsufficientMaterialError(Exception):
    """Raised when the requested scope holds no usable source chunks."""


class GenerationError(Exception):
    """Raised when quiz/flashcard generation fails after all attempts."""

    def __init__(self, message: str, last_error: BaseException | None = None):
        self.last_error = last_error
        super().__init__(message)
