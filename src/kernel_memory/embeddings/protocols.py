"""Embedding generator protocol."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class EmbeddingGeneratorProtocol(Protocol):
    """Protocol for embedding generators.

    Implementations raise ``TokenLimitExceededError`` for texts longer than
    ``max_tokens`` and ``EmbeddingGenerationError`` when the model fails.
    """

    @property
    def name(self) -> str:
        """Provider and model name, stored with every record."""
        ...

    @property
    def max_tokens(self) -> int:
        """Maximum number of tokens of a single text."""
        ...

    @property
    def max_batch_size(self) -> int:
        """Maximum number of texts per request."""
        ...

    @property
    def embedding_dimension(self) -> int:
        """Length of the generated vectors."""
        ...

    def count_tokens(self, text: str) -> int:
        """Count tokens with the model tokenizer."""
        ...

    async def generate_embedding(self, text: str) -> list[float]:
        """Embed a single text."""
        ...

    async def generate_embeddings(self, texts: list[str]) -> list[list[float]]:
        """Embed a batch of texts, preserving order."""
        ...
