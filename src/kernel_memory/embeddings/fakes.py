"""Deterministic embedding generator for tests and offline runs."""

from __future__ import annotations

import hashlib
from collections.abc import Callable

from kernel_memory.utils.exceptions import EmbeddingGenerationError, TokenLimitExceededError


class FakeEmbeddingGenerator:
    """Embedding generator producing vectors from a hash of the text.

    Tokens are whitespace separated words. Failures can be scripted:
    ``fail_when`` marks texts that always fail, ``transient_failures`` makes
    the next N calls fail whatever the input.
    """

    def __init__(
        self,
        dimension: int = 32,
        *,
        max_tokens: int = 8191,
        max_batch_size: int = 16,
        fail_when: Callable[[str], bool] | None = None,
        transient_failures: int = 0,
    ) -> None:
        self.dimension = dimension
        self._max_tokens = max_tokens
        self._max_batch_size = max_batch_size
        self.fail_when = fail_when
        self.transient_failures = transient_failures
        self.calls: list[list[str]] = []

    @property
    def name(self) -> str:
        return f"fake/dim-{self.dimension}"

    @property
    def max_tokens(self) -> int:
        return self._max_tokens

    @property
    def max_batch_size(self) -> int:
        return self._max_batch_size

    @property
    def embedding_dimension(self) -> int:
        return self.dimension

    def count_tokens(self, text: str) -> int:
        return len(text.split())

    def embed(self, text: str) -> list[float]:
        """Deterministic vector for *text*, values between -1 and 1."""
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [(digest[i % len(digest)] / 255.0) * 2.0 - 1.0 for i in range(self.dimension)]

    def _check(self, text: str) -> None:
        tokens = self.count_tokens(text)
        if tokens > self._max_tokens:
            raise TokenLimitExceededError(tokens, self._max_tokens, model_name=self.name)
        if self.fail_when is not None and self.fail_when(text):
            raise EmbeddingGenerationError(text, "scripted failure")

    def _consume_transient_failure(self) -> None:
        if self.transient_failures > 0:
            self.transient_failures -= 1
            raise EmbeddingGenerationError(message="scripted transient failure")

    async def generate_embedding(self, text: str) -> list[float]:
        self.calls.append([text])
        self._consume_transient_failure()
        self._check(text)
        return self.embed(text)

    async def generate_embeddings(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        self._consume_transient_failure()
        for text in texts:
            self._check(text)
        return [self.embed(text) for text in texts]
