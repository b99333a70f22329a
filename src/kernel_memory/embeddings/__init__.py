"""Embedding generators."""

from kernel_memory.embeddings.fakes import FakeEmbeddingGenerator
from kernel_memory.embeddings.protocols import EmbeddingGeneratorProtocol

__all__ = ["EmbeddingGeneratorProtocol", "FakeEmbeddingGenerator"]
