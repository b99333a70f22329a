"""Tests for KernelMemoryConfig."""

from pathlib import Path

import pytest

from kernel_memory.config import KernelMemoryConfig, QueueConfig
from kernel_memory.utils.exceptions import InvalidConfigurationError, MissingConfigurationError


class TestKernelMemoryConfig:
    """Test the aggregated configuration."""

    def test_defaults_validate(self):
        config = KernelMemoryConfig()
        assert config.pipeline.default_index == "default"
        assert config.storage.vector_stores == ("simple_vector_db",)

    def test_reads_api_key_from_environment(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-from-env")
        assert KernelMemoryConfig().embedding.openai_api_key == "sk-from-env"

    def test_invalid_section_fails_on_construction(self):
        with pytest.raises(InvalidConfigurationError):
            KernelMemoryConfig(queue=QueueConfig(poison_queue_suffix="amq.x"))

    def test_derived_paths(self, tmp_path: Path):
        config = KernelMemoryConfig.from_env({"KM_DATA_DIR": str(tmp_path)})
        assert config.artifacts_dir == tmp_path / "artifacts"
        assert config.queue_database_url == f"sqlite:///{tmp_path / 'queue.db'}"
        assert config.vector_db_url == f"sqlite:///{tmp_path / 'vectors.db'}"


class TestFromEnv:
    """Test reading KM_* variables."""

    def test_reads_values(self):
        config = KernelMemoryConfig.from_env(
            {
                "KM_QUEUE_BACKEND": "memory",
                "KM_QUEUE_MAX_RETRIES": "5",
                "KM_MAX_STEP_RETRIES": "2",
                "KM_DEFAULT_INDEX": "docs",
                "KM_EMBEDDING_PROVIDER": "fake",
                "KM_MAX_FAILURE_FRACTION": "0.2",
                "KM_VECTOR_STORES": "memory, simple_vector_db",
                "KM_WORKER_CONCURRENCY": "3",
            }
        )
        assert config.queue.backend == "memory"
        assert config.queue.max_retries_before_poison_queue == 5
        assert config.pipeline.max_step_retries == 2
        assert config.pipeline.default_index == "docs"
        assert config.embedding.provider == "fake"
        assert config.embedding.max_failure_fraction == 0.2
        assert config.storage.vector_stores == ("memory", "simple_vector_db")
        assert config.worker.concurrency == 3

    def test_rejects_non_numeric(self):
        with pytest.raises(InvalidConfigurationError):
            KernelMemoryConfig.from_env({"KM_MAX_STEP_RETRIES": "many"})

    def test_rejects_reserved_poison_suffix(self):
        with pytest.raises(InvalidConfigurationError):
            KernelMemoryConfig.from_env({"KM_QUEUE_POISON_SUFFIX": "amq.dead"})


class TestFromFile:
    """Test loading YAML configuration files."""

    def test_loads_sections(self, tmp_path: Path):
        path = tmp_path / "km.yaml"
        path.write_text(
            "queue:\n"
            "  backend: memory\n"
            "  nack_delay_secs: 0\n"
            "pipeline:\n"
            "  default_steps: [extract, partition]\n"
            "embedding:\n"
            "  provider: fake\n"
            "storage:\n"
            "  vector_stores: [memory]\n"
        )
        config = KernelMemoryConfig.from_file(path)
        assert config.queue.backend == "memory"
        assert config.queue.nack_delay_secs == 0
        assert config.pipeline.default_steps == ("extract", "partition")
        assert config.storage.vector_stores == ("memory",)

    def test_empty_file_gives_defaults(self, tmp_path: Path):
        path = tmp_path / "km.yaml"
        path.write_text("")
        assert KernelMemoryConfig.from_file(path) == KernelMemoryConfig()

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(MissingConfigurationError):
            KernelMemoryConfig.from_file(tmp_path / "absent.yaml")

    def test_unknown_section(self, tmp_path: Path):
        path = tmp_path / "km.yaml"
        path.write_text("vectors:\n  size: 3\n")
        with pytest.raises(InvalidConfigurationError):
            KernelMemoryConfig.from_file(path)

    def test_unknown_key(self, tmp_path: Path):
        path = tmp_path / "km.yaml"
        path.write_text("queue:\n  colour: blue\n")
        with pytest.raises(InvalidConfigurationError):
            KernelMemoryConfig.from_file(path)

    def test_not_a_mapping(self, tmp_path: Path):
        path = tmp_path / "km.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(InvalidConfigurationError):
            KernelMemoryConfig.from_file(path)
