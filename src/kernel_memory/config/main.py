"""Main configuration for Kernel Memory.

``KernelMemoryConfig`` aggregates the component configurations and knows how
to read itself from ``KM_*`` environment variables.
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, cast

import yaml

from kernel_memory.config.components import (
    EmbeddingConfig,
    PartitioningConfig,
    PipelineConfig,
    QueueConfig,
    StorageConfig,
    WorkerConfig,
)
from kernel_memory.utils.exceptions import InvalidConfigurationError, MissingConfigurationError


def _read_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise InvalidConfigurationError(key, raw, "an integer") from e


def _read_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise InvalidConfigurationError(key, raw, "a number") from e


def _read_list(env: Mapping[str, str], key: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = env.get(key)
    if not raw:
        return default
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class KernelMemoryConfig:
    """Configuration for the whole service.

    Attributes:
        queue: Work queue settings
        pipeline: Orchestrator settings
        partitioning: Text partitioning settings
        embedding: Embedding generator settings
        storage: Artifact and vector storage settings
        worker: Worker pool settings
    """

    queue: QueueConfig = field(default_factory=QueueConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    partitioning: PartitioningConfig = field(default_factory=PartitioningConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    worker: WorkerConfig = field(default_factory=WorkerConfig)

    def __post_init__(self) -> None:
        """Fill the API key from the environment and validate every section."""
        if self.embedding.provider == "openai" and not self.embedding.openai_api_key:
            api_key = os.getenv("OPENAI_API_KEY", "")
            if api_key:
                object.__setattr__(
                    self,
                    "embedding",
                    replace(self.embedding, openai_api_key=api_key),
                )
        self.validate()

    def validate(self) -> None:
        self.queue.validate()
        self.pipeline.validate()
        self.partitioning.validate()
        self.embedding.validate()
        self.storage.validate()
        self.worker.validate()

    @property
    def data_path(self) -> Path:
        return Path(self.storage.data_dir)

    @property
    def artifacts_dir(self) -> Path:
        return self.data_path / "artifacts"

    @property
    def queue_database_url(self) -> str:
        return self.queue.database_url or f"sqlite:///{self.data_path / 'queue.db'}"

    @property
    def vector_db_url(self) -> str:
        return self.storage.vector_db_url or f"sqlite:///{self.data_path / 'vectors.db'}"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "KernelMemoryConfig":
        """Build a configuration from ``KM_*`` environment variables.

        Args:
            env: Mapping to read from, ``os.environ`` by default

        Returns:
            The validated configuration

        Raises:
            InvalidConfigurationError: If a variable holds an invalid value
        """
        env = os.environ if env is None else env

        queue = QueueConfig(
            backend=env.get("KM_QUEUE_BACKEND", QueueConfig.backend),
            database_url=env.get("KM_QUEUE_DATABASE_URL") or None,
            visibility_timeout_secs=_read_float(
                env, "KM_QUEUE_VISIBILITY_TIMEOUT_SECS", QueueConfig.visibility_timeout_secs
            ),
            nack_delay_secs=_read_float(env, "KM_QUEUE_NACK_DELAY_SECS", QueueConfig.nack_delay_secs),
            message_ttl_secs=_read_float(env, "KM_QUEUE_MESSAGE_TTL_SECS", QueueConfig.message_ttl_secs),
            max_retries_before_poison_queue=_read_int(
                env, "KM_QUEUE_MAX_RETRIES", QueueConfig.max_retries_before_poison_queue
            ),
            poison_queue_suffix=env.get("KM_QUEUE_POISON_SUFFIX", QueueConfig.poison_queue_suffix),
        )
        pipeline = PipelineConfig(
            default_index=env.get("KM_DEFAULT_INDEX", PipelineConfig.default_index),
            default_steps=_read_list(env, "KM_DEFAULT_STEPS", PipelineConfig.default_steps),
            max_step_retries=_read_int(env, "KM_MAX_STEP_RETRIES", PipelineConfig.max_step_retries),
        )
        partitioning = PartitioningConfig(
            max_tokens_per_partition=_read_int(
                env, "KM_MAX_TOKENS_PER_PARTITION", PartitioningConfig.max_tokens_per_partition
            ),
            overlapping_tokens=_read_int(env, "KM_OVERLAPPING_TOKENS", PartitioningConfig.overlapping_tokens),
        )
        embedding = EmbeddingConfig(
            provider=env.get("KM_EMBEDDING_PROVIDER", EmbeddingConfig.provider),
            model=env.get("KM_EMBEDDING_MODEL", EmbeddingConfig.model),
            batch_size=_read_int(env, "KM_EMBEDDING_BATCH_SIZE", EmbeddingConfig.batch_size),
            max_retries=_read_int(env, "KM_EMBEDDING_MAX_RETRIES", EmbeddingConfig.max_retries),
            max_failure_fraction=_read_float(
                env, "KM_MAX_FAILURE_FRACTION", EmbeddingConfig.max_failure_fraction
            ),
            embedding_dimension=_read_int(
                env, "KM_EMBEDDING_DIMENSION", EmbeddingConfig.embedding_dimension
            ),
            openai_api_key=env.get("OPENAI_API_KEY", ""),
        )
        storage = StorageConfig(
            data_dir=env.get("KM_DATA_DIR", StorageConfig.data_dir),
            vector_stores=_read_list(env, "KM_VECTOR_STORES", StorageConfig.vector_stores),
            vector_db_url=env.get("KM_VECTOR_DB_URL") or None,
        )
        worker_kwargs = {}
        if env.get("KM_WORKER_CONCURRENCY"):
            worker_kwargs["concurrency"] = _read_int(env, "KM_WORKER_CONCURRENCY", 1)
        worker = WorkerConfig(
            poll_interval_secs=_read_float(env, "KM_WORKER_POLL_INTERVAL_SECS", WorkerConfig.poll_interval_secs),
            **worker_kwargs,
        )

        return cls(
            queue=queue,
            pipeline=pipeline,
            partitioning=partitioning,
            embedding=embedding,
            storage=storage,
            worker=worker,
        )

    @classmethod
    def from_file(cls, path: str | Path) -> "KernelMemoryConfig":
        """Load a YAML configuration file.

        The file holds one mapping per section (``queue``, ``pipeline``,
        ``partitioning``, ``embedding``, ``storage``, ``worker``) with the
        field names of the section dataclasses. Omitted fields keep their
        defaults.

        Raises:
            MissingConfigurationError: If the file does not exist
            InvalidConfigurationError: If a section or field is unknown
        """
        path = Path(path)
        try:
            with path.open("r", encoding="utf-8") as f:
                raw_data = yaml.safe_load(f)
        except FileNotFoundError as e:
            raise MissingConfigurationError(str(path)) from e

        if raw_data is None:
            return cls()
        if not isinstance(raw_data, dict):
            raise InvalidConfigurationError(
                config_key=str(path),
                value=type(raw_data).__name__,
                expected="dictionary/mapping",
            )

        sections = {f.name: f for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for name, values in cast(dict[str, Any], raw_data).items():
            if name not in sections:
                raise InvalidConfigurationError(name, values, f"one of {sorted(sections)}")
            section_cls = sections[name].default_factory  # type: ignore[misc]
            if not isinstance(values, dict):
                raise InvalidConfigurationError(name, values, "dictionary/mapping")
            known = {f.name for f in fields(section_cls)}
            section_kwargs = {}
            for key, value in values.items():
                if key not in known:
                    raise InvalidConfigurationError(f"{name}.{key}", value, f"one of {sorted(known)}")
                # YAML sequences become the tuples the dataclasses use
                section_kwargs[key] = tuple(value) if isinstance(value, list) else value
            kwargs[name] = section_cls(**section_kwargs)
        return cls(**kwargs)
