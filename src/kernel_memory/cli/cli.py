#!/usr/bin/env python3
"""Kernel Memory command line interface."""

import asyncio
import logging
import signal
import sys
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Any, TypeVar

import typer
from dotenv import load_dotenv

from kernel_memory.cli.output import Error, TableData, set_json_mode, write
from kernel_memory.config import KernelMemoryConfig
from kernel_memory.factory import KernelMemoryFactory
from kernel_memory.pipeline.models import DataPipeline
from kernel_memory.storage.models import MemoryFilter, TagCollection, add_tag
from kernel_memory.utils import exceptions
from kernel_memory.utils.async_utils import run_coro_sync
from kernel_memory.utils.logging_utils import get_logger, setup_logging

logger = get_logger()

T = TypeVar("T")


class LogLevel(str, Enum):
    """Log levels for the CLI."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


app = typer.Typer(
    name="km",
    help="Kernel Memory document ingestion CLI",
    add_completion=False,
    context_settings={"help_option_names": ["--help", "-h"]},
)


@dataclass
class CLIState:
    """Options of the ``km`` callback that commands read."""

    config_file: str | None = None
    data_dir: str | None = None
    json_mode: bool = False


state = CLIState()


LOG_LEVEL_OPTION = typer.Option(
    LogLevel.INFO,
    "--log-level",
    "-l",
    help="Set the logging level",
)

JSON_OUTPUT_OPTION = typer.Option(
    None,
    "--json/--no-json",
    help="Output in JSON format",
)

LOG_FILE_OPTION = typer.Option(
    None,
    "--log-file",
    help="Write logs to the specified file instead of stderr",
)

CONFIG_OPTION = typer.Option(
    None,
    "--config",
    help="YAML configuration file; KM_* environment variables are used otherwise",
)

DATA_DIR_OPTION = typer.Option(
    None,
    "--data-dir",
    "-c",
    help="Directory for artifacts, queue and vector databases",
)

INDEX_OPTION = typer.Option(
    None,
    "--index",
    "-i",
    help="Index name (default from configuration)",
)

PROCESS_OPTION = typer.Option(
    False,
    "--process",
    "-p",
    help="Run the pipeline steps in this process before returning",
)


@app.callback(rich_help_panel="Global Options")
def main(
    log_level: LogLevel = LOG_LEVEL_OPTION,
    log_file: str | None = LOG_FILE_OPTION,
    config_file: str | None = CONFIG_OPTION,
    data_dir: str | None = DATA_DIR_OPTION,
    json_output: bool = JSON_OUTPUT_OPTION,
) -> None:
    """Kernel Memory CLI.

    Upload documents into a durable ingestion pipeline, run pipeline workers,
    and search the stored memory records.
    """
    load_dotenv()

    json_mode = json_output if json_output is not None else not sys.stdout.isatty()
    set_json_mode(json_mode)
    state.json_mode = json_mode
    state.config_file = config_file
    state.data_dir = data_dir
    setup_logging(log_file=log_file, log_level=getattr(logging, log_level.value), json_logs=False)


def load_config() -> KernelMemoryConfig:
    """Configuration from ``--config`` or the environment, with CLI overrides."""
    if state.config_file:
        config = KernelMemoryConfig.from_file(state.config_file)
    else:
        config = KernelMemoryConfig.from_env()
    if state.data_dir:
        config = replace(config, storage=replace(config.storage, data_dir=state.data_dir))
    return config


def run_with_factory(action: Callable[[KernelMemoryFactory], Awaitable[T]]) -> T:
    """Build the components, run *action* and release them.

    Known errors are reported and exit with status 1.
    """
    factory: KernelMemoryFactory | None = None
    try:
        factory = KernelMemoryFactory(load_config())
        return run_coro_sync(action(factory))
    except (exceptions.KernelMemoryError, OSError) as e:
        write(Error(str(e)))
        sys.exit(1)
    finally:
        if factory is not None:
            factory.close()


def parse_tags(values: list[str] | None) -> TagCollection:
    """Parse ``key=value`` options into a tag collection."""
    tags: TagCollection = {}
    for item in values or []:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"Tag '{item}' is not in key=value form")
        add_tag(tags, key.strip(), value.strip())
    return tags


def pipeline_summary(pipeline: DataPipeline) -> dict[str, Any]:
    summary: dict[str, Any] = {
        "index": pipeline.index,
        "document_id": pipeline.document_id,
        "execution_id": pipeline.execution_id,
        "status": pipeline.status.value,
        "completed_steps": pipeline.completed_steps,
        "remaining_steps": pipeline.remaining_steps,
        "files": [f.name for f in pipeline.files],
        "last_update": pipeline.last_update.isoformat(),
    }
    if pipeline.failure is not None:
        summary["failure"] = pipeline.failure.model_dump(mode="json")
    skipped = {f.name: f.skipped_reason for f in pipeline.files if f.is_skipped}
    if skipped:
        summary["skipped_files"] = skipped
    return summary


@app.command()
def upload(
    paths: list[Path] = typer.Argument(
        ...,
        help="Files forming one document",
        exists=True,
        dir_okay=False,
        file_okay=True,
        resolve_path=True,
    ),
    index: str | None = INDEX_OPTION,
    document_id: str | None = typer.Option(
        None,
        "--document-id",
        "-d",
        help="Document id; a new one is generated when omitted",
    ),
    tag: list[str] | None = typer.Option(
        None,
        "--tag",
        "-t",
        help="Tag in key=value form, can be repeated",
    ),
    process: bool = PROCESS_OPTION,
) -> None:
    """Upload files as a document and start its ingestion pipeline."""
    tags = parse_tags(tag)

    async def action(factory: KernelMemoryFactory) -> dict[str, Any]:
        service = factory.create_memory_service()
        doc_id = await service.import_files(paths, document_id=document_id, index=index, tags=tags)
        if process:
            await factory.create_worker().run_until_idle(wait_for_delayed=True)
        pipeline = await service.get_pipeline_status(doc_id, index)
        return pipeline_summary(pipeline) if pipeline else {"document_id": doc_id}

    write(run_with_factory(action))


@app.command()
def status(
    document_id: str = typer.Argument(..., help="Document id"),
    index: str | None = INDEX_OPTION,
) -> None:
    """Show the pipeline status of a document."""

    async def action(factory: KernelMemoryFactory) -> DataPipeline | None:
        return await factory.create_memory_service().get_pipeline_status(document_id, index)

    pipeline = run_with_factory(action)
    if pipeline is None:
        write(Error(f"Document not found: {document_id}"))
        sys.exit(1)
    write(pipeline_summary(pipeline))


@app.command()
def delete(
    document_id: str = typer.Argument(..., help="Document id"),
    index: str | None = INDEX_OPTION,
    process: bool = PROCESS_OPTION,
) -> None:
    """Delete a document's records and files."""

    async def action(factory: KernelMemoryFactory) -> DataPipeline:
        service = factory.create_memory_service()
        pipeline = await service.delete_document(document_id, index)
        if process:
            await factory.create_worker().run_until_idle(wait_for_delayed=True)
            pipeline = await service.get_pipeline_status(document_id, index) or pipeline
        return pipeline

    write(pipeline_summary(run_with_factory(action)))


@app.command()
def resume(
    document_id: str = typer.Argument(..., help="Document id"),
    index: str | None = INDEX_OPTION,
    process: bool = PROCESS_OPTION,
) -> None:
    """Publish the current step of a stalled pipeline again."""

    async def action(factory: KernelMemoryFactory) -> DataPipeline:
        service = factory.create_memory_service()
        pipeline = await service.resume_document(document_id, index)
        if process:
            await factory.create_worker().run_until_idle(wait_for_delayed=True)
            pipeline = await service.get_pipeline_status(document_id, index) or pipeline
        return pipeline

    write(pipeline_summary(run_with_factory(action)))


@app.command()
def process(
    wait: bool = typer.Option(
        True,
        "--wait/--no-wait",
        help="Also wait for delayed retries",
    ),
) -> None:
    """Process queued pipeline steps until the queue is empty."""

    async def action(factory: KernelMemoryFactory) -> int:
        return await factory.create_worker().run_until_idle(wait_for_delayed=wait)

    processed = run_with_factory(action)
    write({"processed_messages": processed})


@app.command()
def worker() -> None:
    """Run a pipeline worker until interrupted."""

    async def action(factory: KernelMemoryFactory) -> None:
        pipeline_worker = factory.create_worker()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, pipeline_worker.stop)
            except NotImplementedError:
                # Not available on Windows event loops
                pass
        await pipeline_worker.run_forever()

    run_with_factory(action)


@app.command()
def search(
    query: str = typer.Argument(..., help="Text to search for"),
    index: str | None = INDEX_OPTION,
    tag: list[str] | None = typer.Option(
        None,
        "--tag",
        "-t",
        help="Only records with this key=value tag, can be repeated",
    ),
    limit: int = typer.Option(5, "--limit", "-k", help="Maximum number of partitions", min=1, max=100),
    min_relevance: float = typer.Option(0.0, "--min-relevance", help="Minimum cosine similarity"),
) -> None:
    """Search stored records by similarity."""
    tags = parse_tags(tag)
    filters = [MemoryFilter(tags=tags)] if tags else None

    async def action(factory: KernelMemoryFactory) -> Any:
        return await factory.create_memory_service().search(
            query, index=index, filters=filters, min_relevance=min_relevance, limit=limit
        )

    result = run_with_factory(action)
    if state.json_mode:
        write(result.model_dump(mode="json"))
        return

    table = TableData(
        title=f"Results for '{query}'",
        columns=["Document", "File", "Part", "Relevance", "Text"],
        rows=[],
    )
    for citation in result.results:
        for partition in citation.partitions:
            text = partition.text if len(partition.text) <= 80 else partition.text[:77] + "..."
            table["rows"].append(
                [
                    citation.document_id,
                    citation.source_name,
                    str(partition.partition_number),
                    f"{partition.relevance:.3f}",
                    text.replace("\n", " "),
                ]
            )
    write(table)


@app.command()
def indexes() -> None:
    """List the indexes of the vector stores."""

    async def action(factory: KernelMemoryFactory) -> list[str]:
        return await factory.create_memory_service().list_indexes()

    names = run_with_factory(action)
    write(TableData(title="Indexes", columns=["Index"], rows=[[name] for name in names]))


@app.command()
def poison() -> None:
    """List messages moved to the poison queues."""

    async def action(factory: KernelMemoryFactory) -> Any:
        return await factory.create_memory_service().poison_messages()

    messages = run_with_factory(action)
    write(
        TableData(
            title="Poisoned messages",
            columns=["Message", "Step", "Document", "Deliveries", "Reason"],
            rows=[
                [
                    m.id,
                    m.queue_name,
                    f"{m.ref.index}/{m.ref.document_id}",
                    str(m.delivery_count),
                    m.poison_reason or "",
                ]
                for m in messages
            ],
        )
    )


def run() -> None:
    app()


if __name__ == "__main__":
    run()
