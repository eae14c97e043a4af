"""Abstract interface (port) for embedding generation."""

from abc import ABC, abstractmethod


class EmbeddingProvider(ABC):
    """Port for generating text embeddings — implemented in the infrastructure layer."""

    @abstractmethod
    async def generate_embeddings(self, texts: list[str]) -> list[list[float]]:
        """Generate document embedding vectors for a batch of texts.

        Returns:
            One vector per input text, in input order.

        Raises:
            EmbeddingProviderError: If the provider fails or times out.
        """
        ...

    @abstractmethod
    async def generate_query_embedding(self, query: str) -> list[float]:
        """Generate a single embedding for a search query."""
        ...

    @property
    @abstractmethod
    def dimensions(self) -> int:
        """Dimensionality of the vectors produced by this provider."""
        ...
