"""Pytest configuration for the Kernel Memory tests.

This module provides common fixtures and configuration: a fake clock,
in-memory stores, the fake embedding generator and a fully wired service.
"""

import os
from collections.abc import Callable, Generator

import pytest
from pytest_socket import disable_socket, enable_socket

from kernel_memory.config import (
    EmbeddingConfig,
    KernelMemoryConfig,
    PipelineConfig,
    QueueConfig,
    StorageConfig,
    WorkerConfig,
)
from kernel_memory.embeddings.fakes import FakeEmbeddingGenerator
from kernel_memory.factory import ComponentOverrides, KernelMemoryFactory
from kernel_memory.memory import MemoryService
from kernel_memory.pipeline.worker import PipelineWorker
from kernel_memory.queue.in_memory import InMemoryQueue
from kernel_memory.storage.fakes import InMemoryArtifactStore, InMemoryVectorStore
from kernel_memory.utils.clock import FakeClock


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line("markers", "integration: mark test as integration test")


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark tests by directory and run unit tests before integration tests."""
    unit_tests = []
    integration_tests = []
    other_tests = []

    for item in items:
        test_path = str(item.path)
        if "/unit/" in test_path:
            unit_tests.append(item)
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in test_path:
            integration_tests.append(item)
            item.add_marker(pytest.mark.integration)
        else:
            other_tests.append(item)

    items[:] = unit_tests + integration_tests + other_tests


def pytest_runtest_setup(item: pytest.Item) -> None:
    """Set marker-based timeouts for tests.

    Individual @pytest.mark.timeout() decorators override these defaults.
    """
    if item.get_closest_marker("timeout"):
        return

    ci_multiplier = float(os.environ.get("CI_TIMEOUT_MULTIPLIER", "5.0")) if os.environ.get("CI") else 1.0
    test_path = str(item.path)
    if "/unit/" in test_path:
        item.add_marker(pytest.mark.timeout(5 * ci_multiplier))
    elif "/integration/" in test_path:
        item.add_marker(pytest.mark.timeout(30 * ci_multiplier))


@pytest.fixture(autouse=True)
def setup_test_environment() -> Generator[None, None, None]:
    """Use a dummy API key and keep KM_* settings of the host out of tests."""
    saved = {k: v for k, v in os.environ.items() if k.startswith("KM_") or k == "OPENAI_API_KEY"}
    for key in saved:
        del os.environ[key]
    os.environ["OPENAI_API_KEY"] = "sk-dummy-key-for-testing"
    os.environ["LANGSMITH_TRACING"] = "false"

    yield

    for key in [k for k in os.environ if k.startswith("KM_") or k == "OPENAI_API_KEY"]:
        del os.environ[key]
    os.environ.update(saved)


@pytest.fixture(autouse=True)
def disable_network() -> Generator[None, None, None]:
    """Disable network access; asyncio still needs unix socket pairs."""
    disable_socket(allow_unix_socket=True)
    yield
    enable_socket()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def artifacts() -> InMemoryArtifactStore:
    return InMemoryArtifactStore()


@pytest.fixture
def vector_store() -> InMemoryVectorStore:
    return InMemoryVectorStore()


@pytest.fixture
def embedding_generator() -> FakeEmbeddingGenerator:
    return FakeEmbeddingGenerator(dimension=16)


@pytest.fixture
def queue_config() -> QueueConfig:
    """Queue settings with immediate redelivery after a nack."""
    return QueueConfig(backend="memory", nack_delay_secs=0.0, max_retries_before_poison_queue=20)


@pytest.fixture
def queue(queue_config: QueueConfig, clock: FakeClock) -> InMemoryQueue:
    return InMemoryQueue(queue_config, clock)


@pytest.fixture
def km_config(tmp_path, queue_config: QueueConfig) -> KernelMemoryConfig:
    """Configuration using only in-process backends."""
    return KernelMemoryConfig(
        queue=queue_config,
        pipeline=PipelineConfig(max_step_retries=3),
        embedding=EmbeddingConfig(provider="fake", embedding_dimension=16, batch_size=4),
        storage=StorageConfig(data_dir=str(tmp_path / "km"), vector_stores=("memory",)),
        worker=WorkerConfig(concurrency=2, poll_interval_secs=0.01),
    )


@pytest.fixture
def factory(
    km_config: KernelMemoryConfig,
    artifacts: InMemoryArtifactStore,
    queue: InMemoryQueue,
    vector_store: InMemoryVectorStore,
    embedding_generator: FakeEmbeddingGenerator,
    clock: FakeClock,
) -> KernelMemoryFactory:
    """Factory wired to the shared fakes."""
    overrides = ComponentOverrides(
        artifacts=artifacts,
        queue=queue,
        vector_stores=[vector_store],
        embedding_generator=embedding_generator,
        clock=clock,
    )
    return KernelMemoryFactory(km_config, overrides)


@pytest.fixture
def service(factory: KernelMemoryFactory) -> MemoryService:
    return factory.create_memory_service()


@pytest.fixture
def worker(factory: KernelMemoryFactory) -> PipelineWorker:
    return factory.create_worker()


def build_pdf(pages: list[list[str]]) -> bytes:
    """A minimal PDF with one Helvetica line per string of each page."""
    bodies: dict[int, bytes] = {
        1: b"<< /Type /Catalog /Pages 2 0 R >>",
        3: b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    }
    page_ids = []
    next_id = 4
    for lines in pages:
        operators = []
        for i, line in enumerate(lines):
            escaped = line.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")
            operators.append(f"BT /F1 12 Tf 72 {720 - 16 * i} Td ({escaped}) Tj ET")
        stream = "\n".join(operators).encode("latin-1")
        page_id, content_id = next_id, next_id + 1
        next_id += 2
        page_ids.append(page_id)
        bodies[page_id] = (
            f"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] /Contents {content_id} 0 R "
            "/Resources << /Font << /F1 3 0 R >> >> >>"
        ).encode("ascii")
        bodies[content_id] = b"<< /Length %d >>\nstream\n%s\nendstream" % (len(stream), stream)
    kids = " ".join(f"{page_id} 0 R" for page_id in page_ids)
    bodies[2] = f"<< /Type /Pages /Kids [{kids}] /Count {len(page_ids)} >>".encode("ascii")

    out = bytearray(b"%PDF-1.4\n")
    offsets = {}
    for object_id in sorted(bodies):
        offsets[object_id] = len(out)
        out += b"%d 0 obj\n%s\nendobj\n" % (object_id, bodies[object_id])
    xref_offset = len(out)
    size = max(bodies) + 1
    out += b"xref\n0 %d\n0000000000 65535 f \n" % size
    for object_id in range(1, size):
        out += b"%010d 00000 n \n" % offsets[object_id]
    out += b"trailer\n<< /Size %d /Root 1 0 R >>\nstartxref\n%d\n%%%%EOF\n" % (size, xref_offset)
    return bytes(out)


@pytest.fixture
def make_pdf() -> Callable[[list[list[str]]], bytes]:
    """Build PDF bytes from the text lines of each page."""
    return build_pdf
