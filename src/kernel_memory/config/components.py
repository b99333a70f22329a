"""Component-specific configuration dataclasses.

Each component (queue, pipeline, partitioning, embeddings, storage, worker)
gets a small frozen dataclass so it can be configured and tested in
isolation. ``KernelMemoryConfig`` in :mod:`kernel_memory.config.main`
aggregates them.
"""

from dataclasses import dataclass, field

from kernel_memory.pipeline.constants import DEFAULT_DELETE_STEPS, DEFAULT_INGESTION_STEPS
from kernel_memory.utils.async_utils import default_concurrency
from kernel_memory.utils.exceptions import InvalidConfigurationError

QUEUE_BACKENDS = ("memory", "sqlalchemy")
EMBEDDING_PROVIDERS = ("openai", "fake")
VECTOR_STORE_BACKENDS = ("simple_vector_db", "memory")

# Broker reserved prefix, and the broker limit on queue name length
RESERVED_QUEUE_PREFIX = "amq."
MAX_POISON_SUFFIX_BYTES = 60


@dataclass(frozen=True)
class QueueConfig:
    """Configuration for the work queue.

    Attributes:
        backend: Queue implementation, ``memory`` or ``sqlalchemy``
        database_url: SQLAlchemy URL for the durable backend; defaults to a
            SQLite file inside the data directory
        visibility_timeout_secs: How long a dequeued message stays hidden
            before another worker may receive it
        nack_delay_secs: Delay before a nacked message becomes visible again
        message_ttl_secs: Age after which a message is no longer retried
        max_retries_before_poison_queue: Delivery count at which a nacked
            message is moved to the poison queue
        poison_queue_suffix: Suffix appended to a queue name to form its
            poison queue name
    """

    backend: str = "sqlalchemy"
    database_url: str | None = None
    visibility_timeout_secs: float = 300.0
    nack_delay_secs: float = 1.0
    message_ttl_secs: float = 3600.0
    max_retries_before_poison_queue: int = 20
    poison_queue_suffix: str = "-poison"

    def validate(self) -> None:
        """Check the configuration, raising ``InvalidConfigurationError``."""
        if self.backend not in QUEUE_BACKENDS:
            raise InvalidConfigurationError("queue.backend", self.backend, f"one of {QUEUE_BACKENDS}")
        if self.max_retries_before_poison_queue < 0:
            raise InvalidConfigurationError(
                "queue.max_retries_before_poison_queue",
                self.max_retries_before_poison_queue,
                "a value >= 0",
            )
        if self.visibility_timeout_secs <= 0:
            raise InvalidConfigurationError(
                "queue.visibility_timeout_secs", self.visibility_timeout_secs, "a positive number"
            )
        if self.nack_delay_secs < 0:
            raise InvalidConfigurationError("queue.nack_delay_secs", self.nack_delay_secs, "a value >= 0")
        if self.message_ttl_secs <= 0:
            raise InvalidConfigurationError("queue.message_ttl_secs", self.message_ttl_secs, "a positive number")

        suffix = self.poison_queue_suffix.strip() if self.poison_queue_suffix else ""
        if not suffix:
            raise InvalidConfigurationError("queue.poison_queue_suffix", self.poison_queue_suffix, "a non-empty string")
        if suffix.startswith(RESERVED_QUEUE_PREFIX):
            raise InvalidConfigurationError(
                "queue.poison_queue_suffix",
                self.poison_queue_suffix,
                f"a suffix not starting with '{RESERVED_QUEUE_PREFIX}'",
            )
        if len(suffix.encode("utf-8")) > MAX_POISON_SUFFIX_BYTES:
            raise InvalidConfigurationError(
                "queue.poison_queue_suffix",
                self.poison_queue_suffix,
                f"at most {MAX_POISON_SUFFIX_BYTES} bytes",
            )


@dataclass(frozen=True)
class PipelineConfig:
    """Configuration for the pipeline orchestrator.

    Attributes:
        default_index: Index used when a request does not name one
        default_steps: Steps of an ingestion pipeline
        delete_steps: Steps of a document deletion pipeline
        max_step_retries: How many times a step is retried after a transient
            failure before the pipeline fails
    """

    default_index: str = "default"
    default_steps: tuple[str, ...] = DEFAULT_INGESTION_STEPS
    delete_steps: tuple[str, ...] = DEFAULT_DELETE_STEPS
    max_step_retries: int = 3

    def validate(self) -> None:
        if self.max_step_retries < 0:
            raise InvalidConfigurationError("pipeline.max_step_retries", self.max_step_retries, "a value >= 0")
        if not self.default_steps:
            raise InvalidConfigurationError("pipeline.default_steps", self.default_steps, "at least one step")


@dataclass(frozen=True)
class PartitioningConfig:
    """Configuration for text partitioning.

    Attributes:
        max_tokens_per_partition: Upper bound of tokens per partition; the
            embedding model limit is applied on top of it
        overlapping_tokens: Tokens shared by consecutive partitions
    """

    max_tokens_per_partition: int = 1000
    overlapping_tokens: int = 100

    def validate(self) -> None:
        if self.max_tokens_per_partition <= 0:
            raise InvalidConfigurationError(
                "partitioning.max_tokens_per_partition", self.max_tokens_per_partition, "a positive number"
            )
        if not 0 <= self.overlapping_tokens < self.max_tokens_per_partition:
            raise InvalidConfigurationError(
                "partitioning.overlapping_tokens",
                self.overlapping_tokens,
                "a value >= 0 and lower than max_tokens_per_partition",
            )


@dataclass(frozen=True)
class EmbeddingConfig:
    """Configuration for embedding generation.

    Attributes:
        provider: ``openai`` or ``fake``
        model: Embedding model name
        batch_size: Partitions sent per request
        max_retries: Retries of a single request on rate limits and
            connection errors
        max_failure_fraction: Fraction of partitions allowed to fail before
            the step fails
        embedding_dimension: Vector size of the fake provider
        openai_api_key: API key for the OpenAI provider
    """

    provider: str = "openai"
    model: str = "text-embedding-3-small"
    batch_size: int = 64
    max_retries: int = 3
    max_failure_fraction: float = 0.1
    embedding_dimension: int = 32
    openai_api_key: str = field(default="", repr=False)

    def validate(self) -> None:
        if self.provider not in EMBEDDING_PROVIDERS:
            raise InvalidConfigurationError("embedding.provider", self.provider, f"one of {EMBEDDING_PROVIDERS}")
        if self.batch_size <= 0:
            raise InvalidConfigurationError("embedding.batch_size", self.batch_size, "a positive number")
        if not 0.0 <= self.max_failure_fraction <= 1.0:
            raise InvalidConfigurationError(
                "embedding.max_failure_fraction", self.max_failure_fraction, "a value between 0 and 1"
            )


@dataclass(frozen=True)
class StorageConfig:
    """Configuration for artifact and vector storage.

    Attributes:
        data_dir: Root directory for artifacts and SQLite databases
        vector_stores: Backends every record is written to
        vector_db_url: SQLAlchemy URL of ``simple_vector_db``; defaults to a
            SQLite file inside ``data_dir``
    """

    data_dir: str = ".km"
    vector_stores: tuple[str, ...] = ("simple_vector_db",)
    vector_db_url: str | None = None

    def validate(self) -> None:
        if not self.vector_stores:
            raise InvalidConfigurationError("storage.vector_stores", self.vector_stores, "at least one store")
        for backend in self.vector_stores:
            if backend not in VECTOR_STORE_BACKENDS:
                raise InvalidConfigurationError(
                    "storage.vector_stores", backend, f"one of {VECTOR_STORE_BACKENDS}"
                )


@dataclass(frozen=True)
class WorkerConfig:
    """Configuration for pipeline workers.

    Attributes:
        concurrency: Number of messages processed at the same time
        poll_interval_secs: Sleep between polls of an empty queue
    """

    concurrency: int = field(default_factory=default_concurrency)
    poll_interval_secs: float = 0.5

    def validate(self) -> None:
        if self.concurrency <= 0:
            raise InvalidConfigurationError("worker.concurrency", self.concurrency, "a positive number")
