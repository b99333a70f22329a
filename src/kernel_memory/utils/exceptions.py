"""Exceptions raised by Kernel Memory.

Errors are grouped in families (configuration, pipeline, decoder, embedding,
storage, queue) under :class:`KernelMemoryError`. Every error carries a
machine readable ``error_code`` and a ``context`` dictionary; the CLI and the
orchestrator record ``type(error).__name__`` and ``str(error)`` in pipeline
failures.
"""

from typing import Any, ClassVar


def _describe(summary: str, details: str = "", original_error: Exception | None = None) -> str:
    """``summary: details (caused by: Type: error)`` with the empty parts left out."""
    text = f"{summary}: {details}" if details else summary
    if original_error is not None:
        text += f" (caused by: {type(original_error).__name__}: {original_error})"
    return text


class KernelMemoryError(Exception):
    """Base class of every Kernel Memory error.

    Subclasses set ``code``, used as ``error_code`` unless one is passed.
    """

    code: ClassVar[str | None] = None

    def __init__(self, message: str, *, error_code: str | None = None, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.error_code = error_code or self.code
        self.context = context or {}


class ConfigurationError(KernelMemoryError):
    """Configuration could not be loaded or validated."""


class InvalidConfigurationError(ConfigurationError):
    code = "INVALID_CONFIG"

    def __init__(self, config_key: str, value: Any, expected: str):
        self.config_key = config_key
        self.value = value
        self.expected = expected
        super().__init__(
            f"Invalid configuration for '{config_key}': got {value}, expected {expected}",
            context={"config_key": config_key, "value": value, "expected": expected},
        )


class MissingConfigurationError(ConfigurationError):
    """A required setting, environment variable or config file is absent."""

    code = "MISSING_CONFIG"

    def __init__(self, config_key: str):
        self.config_key = config_key
        super().__init__(f"Missing required configuration: '{config_key}'", context={"config_key": config_key})


class PipelineError(KernelMemoryError):
    """Errors about pipelines and their status documents."""


class InvalidPipelineError(PipelineError):
    """A pipeline was rejected before anything was stored or enqueued.

    Raised for empty step lists, unknown steps, reserved tags and duplicate
    file names.
    """

    code = "INVALID_PIPELINE"

    def __init__(self, message: str, *, index: str | None = None, document_id: str | None = None):
        self.index = index
        self.document_id = document_id
        super().__init__(f"Invalid pipeline: {message}", context={"index": index, "document_id": document_id})


class PipelineNotFoundError(PipelineError):
    code = "PIPELINE_NOT_FOUND"

    def __init__(self, index: str, document_id: str):
        self.index = index
        self.document_id = document_id
        super().__init__(
            f"Pipeline not found: {index}/{document_id}", context={"index": index, "document_id": document_id}
        )


class PipelineInProgressError(PipelineError):
    """The document already has a running execution."""

    code = "PIPELINE_IN_PROGRESS"

    def __init__(self, index: str, document_id: str, execution_id: str):
        self.index = index
        self.document_id = document_id
        self.execution_id = execution_id
        super().__init__(
            f"Pipeline {index}/{document_id} is still running (execution {execution_id})",
            context={"index": index, "document_id": document_id, "execution_id": execution_id},
        )


class PipelineContractError(PipelineError):
    """A handler or the orchestrator broke the step contract.

    This is a programming error: the step is failed at once and never
    retried.
    """

    code = "PIPELINE_CONTRACT_VIOLATION"

    def __init__(self, message: str, *, step: str | None = None):
        self.step = step
        super().__init__(message, context={"step": step})


class StateTransitionError(PipelineError):
    code = "INVALID_TRANSITION"

    def __init__(self, current_state: str, new_state: str):
        self.current_state = current_state
        self.new_state = new_state
        super().__init__(
            f"Invalid transition from {current_state} to {new_state}",
            context={"current_state": current_state, "new_state": new_state},
        )


class DecoderError(KernelMemoryError):
    """Content extraction errors."""


class UnsupportedFormatError(DecoderError):
    code = "UNSUPPORTED_FORMAT"

    def __init__(self, mime_type: str | None, file_name: str | None = None):
        self.mime_type = mime_type
        self.file_name = file_name
        message = f"Unsupported content type: {mime_type}"
        if file_name:
            message += f" (file: {file_name})"
        super().__init__(message, context={"mime_type": mime_type, "file_name": file_name})


class DecodingError(DecoderError):
    """A decoder accepted the content type but could not read the bytes."""

    code = "DECODING_ERROR"

    def __init__(self, file_name: str, message: str = "", *, original_error: Exception | None = None):
        self.file_name = file_name
        self.original_error = original_error
        super().__init__(
            _describe(f"Failed to decode {file_name}", message, original_error),
            context={"file_name": file_name, "original_error": repr(original_error) if original_error else None},
        )


class EmbeddingError(KernelMemoryError):
    """Embedding generator errors."""


class TokenLimitExceededError(EmbeddingError):
    code = "TOKEN_LIMIT_EXCEEDED"

    def __init__(self, token_count: int, max_tokens: int, *, model_name: str | None = None):
        self.token_count = token_count
        self.max_tokens = max_tokens
        self.model_name = model_name
        super().__init__(
            f"Text has {token_count} tokens, the limit is {max_tokens}",
            context={"token_count": token_count, "max_tokens": max_tokens, "model_name": model_name},
        )


class EmbeddingGenerationError(EmbeddingError):
    """The generator failed to embed a text or a batch.

    Only the first 100 characters of the text are kept.
    """

    code = "EMBEDDING_GENERATION_ERROR"
    PREVIEW_LENGTH: ClassVar[int] = 100

    def __init__(self, text: str | None = None, message: str = "", *, original_error: Exception | None = None):
        if text and len(text) > self.PREVIEW_LENGTH:
            text = text[: self.PREVIEW_LENGTH] + "..."
        self.text = text
        self.original_error = original_error
        summary = f"Failed to generate embeddings for text: '{text}'" if text else "Failed to generate embeddings"
        super().__init__(
            _describe(summary, message, original_error),
            context={"text_preview": text, "original_error": repr(original_error) if original_error else None},
        )


class StorageError(KernelMemoryError):
    """Artifact store and vector store errors."""


class IndexNotFoundError(StorageError):
    code = "INDEX_NOT_FOUND"

    def __init__(self, index: str, *, backend: str | None = None):
        self.index = index
        self.backend = backend
        message = f"Index not found: {index}" + (f" (backend: {backend})" if backend else "")
        super().__init__(message, context={"index": index, "backend": backend})


class ArtifactNotFoundError(StorageError):
    code = "ARTIFACT_NOT_FOUND"

    def __init__(self, index: str, document_id: str, file_name: str):
        self.index = index
        self.document_id = document_id
        self.file_name = file_name
        super().__init__(
            f"Artifact not found: {index}/{document_id}/{file_name}",
            context={"index": index, "document_id": document_id, "file_name": file_name},
        )


class StoreUnavailableError(StorageError):
    """A store could not be reached; the step is retried."""

    code = "STORE_UNAVAILABLE"

    def __init__(self, backend: str, message: str = "", *, original_error: Exception | None = None):
        self.backend = backend
        self.original_error = original_error
        super().__init__(
            _describe(f"Store unavailable: {backend}", message, original_error),
            context={"backend": backend, "original_error": repr(original_error) if original_error else None},
        )


class QueueError(KernelMemoryError):
    """A queue backend failed to enqueue, dequeue or settle a message."""

    code = "QUEUE_ERROR"

    def __init__(self, message: str, *, queue_name: str | None = None, message_id: str | None = None):
        self.queue_name = queue_name
        self.message_id = message_id
        super().__init__(message, context={"queue_name": queue_name, "message_id": message_id})
