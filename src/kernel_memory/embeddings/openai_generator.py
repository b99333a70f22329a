"""OpenAI embedding generator.

Wraps ``langchain_openai.OpenAIEmbeddings`` with token counting (tiktoken),
client side rate limiting (limits) and retries on rate limit and
connection errors (tenacity).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import TypeAlias

import tiktoken
from langchain_core.embeddings import Embeddings
from langchain_openai import OpenAIEmbeddings
from limits import RateLimitItemPerMinute
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter
from openai import APIConnectionError, APIError, RateLimitError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from kernel_memory.utils.exceptions import EmbeddingGenerationError, TokenLimitExceededError
from kernel_memory.utils.logging_utils import log_message

logger = logging.getLogger(__name__)

LogCallback: TypeAlias = Callable[[str, str, str], None]

# Context size and vector length of the OpenAI embedding models
MODEL_MAX_TOKENS: dict[str, int] = {
    "text-embedding-3-small": 8191,
    "text-embedding-3-large": 8191,
    "text-embedding-ada-002": 8191,
}
MODEL_DIMENSIONS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}
DEFAULT_MAX_TOKENS = 8191
DEFAULT_DIMENSION = 1536
# Inputs per request accepted by the embeddings endpoint
OPENAI_MAX_BATCH_SIZE = 2048

RETRYABLE_ERRORS = (RateLimitError, APIError, APIConnectionError)


class RequestRateLimiter:
    """Moving window limit on requests per minute, shared by all callers."""

    def __init__(self, requests_per_minute: int = 3000) -> None:
        self._limiter = MovingWindowRateLimiter(MemoryStorage())
        self._rate_limit = RateLimitItemPerMinute(requests_per_minute)

    def hit(self, key: str = "embedding") -> bool:
        return self._limiter.hit(self._rate_limit, key)

    async def acquire(self, key: str = "embedding") -> None:
        while not self.hit(key):
            await asyncio.sleep(0.5)


def get_encoding(model: str) -> tiktoken.Encoding:
    """Tokenizer of *model*, ``cl100k_base`` for unknown models."""
    try:
        return tiktoken.encoding_for_model(model)
    except KeyError:
        return tiktoken.get_encoding("cl100k_base")


class OpenAIEmbeddingGenerator:
    """Embedding generator backed by the OpenAI embeddings API."""

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        openai_api_key: str | None = None,
        *,
        max_retries: int = 3,
        requests_per_minute: int = 3000,
        embeddings: Embeddings | None = None,
        log_callback: LogCallback | None = None,
    ) -> None:
        """Initialize the generator.

        Args:
            model: Embedding model name
            openai_api_key: API key; read from ``OPENAI_API_KEY`` when omitted
            max_retries: Attempts per request on retryable API errors
            requests_per_minute: Client side request budget
            embeddings: Any langchain embeddings client to use instead of
                ``OpenAIEmbeddings``
            log_callback: Optional callback for logging
        """
        self.model = model
        self.max_retries = max(1, max_retries)
        self.log_callback = log_callback
        self._encoding = get_encoding(model)
        self._rate_limiter = RequestRateLimiter(requests_per_minute)
        self._embeddings: Embeddings = embeddings or OpenAIEmbeddings(
            model=model,
            api_key=openai_api_key or None,
            max_retries=0,
        )

    def _log(self, level: str, message: str) -> None:
        log_message(level, message, "Embeddings", self.log_callback)

    @property
    def name(self) -> str:
        return f"openai/{self.model}"

    @property
    def max_tokens(self) -> int:
        return MODEL_MAX_TOKENS.get(self.model, DEFAULT_MAX_TOKENS)

    @property
    def max_batch_size(self) -> int:
        return OPENAI_MAX_BATCH_SIZE

    @property
    def embedding_dimension(self) -> int:
        return MODEL_DIMENSIONS.get(self.model, DEFAULT_DIMENSION)

    def count_tokens(self, text: str) -> int:
        return len(self._encoding.encode(text, disallowed_special=()))

    def _check_token_limit(self, text: str) -> None:
        tokens = self.count_tokens(text)
        if tokens > self.max_tokens:
            raise TokenLimitExceededError(tokens, self.max_tokens, model_name=self.model)

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            wait=wait_exponential(multiplier=1, min=1, max=60),
            stop=stop_after_attempt(self.max_retries),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    async def generate_embedding(self, text: str) -> list[float]:
        self._check_token_limit(text)
        try:
            async for attempt in self._retrying():
                with attempt:
                    await self._rate_limiter.acquire()
                    return await self._embeddings.aembed_query(text)
        except RETRYABLE_ERRORS as e:
            self._log("ERROR", f"Embedding request failed after {self.max_retries} attempts: {e}")
            raise EmbeddingGenerationError(text, original_error=e) from e
        raise EmbeddingGenerationError(text, "no attempt was made")

    async def generate_embeddings(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        for text in texts:
            self._check_token_limit(text)

        self._log("DEBUG", f"Generating embeddings for {len(texts)} texts")
        try:
            async for attempt in self._retrying():
                with attempt:
                    await self._rate_limiter.acquire()
                    vectors = await self._embeddings.aembed_documents(texts)
                    break
        except RETRYABLE_ERRORS as e:
            self._log("ERROR", f"Embedding batch of {len(texts)} failed: {e}")
            raise EmbeddingGenerationError(message=f"batch of {len(texts)} texts", original_error=e) from e

        if len(vectors) != len(texts):
            raise EmbeddingGenerationError(
                message=f"expected {len(texts)} vectors, got {len(vectors)}"
            )
        return vectors
