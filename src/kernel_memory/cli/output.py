"""Rendering of command results.

Every command writes one payload: a message, an ``Error``, a table, a
pipeline summary or another JSON serializable mapping. In JSON mode the
payload becomes a single JSON document on stdout; otherwise it is rendered
with Rich.
"""

import json
from dataclasses import dataclass
from typing import Any, TypedDict

import structlog
from rich.console import Console
from rich.table import Table

from kernel_memory.utils.logging_utils import get_logger

stdout_console = Console()
stderr_console = Console(stderr=True)

logger = get_logger()

STATUS_STYLES = {
    "created": "dim",
    "running": "yellow",
    "completed": "green",
    "failed": "bold red",
}


@dataclass
class OutputSettings:
    json_mode: bool = False


settings = OutputSettings()


def set_json_mode(value: bool) -> None:
    settings.json_mode = value


Message = str


@dataclass
class Error:
    """Error message for output."""

    message: str


class TableData(TypedDict):
    """Table data for output."""

    title: str
    columns: list[str]
    rows: list[list[str]]


Payload = Message | Error | TableData | dict[str, Any]


def is_table_data(data: dict[str, Any]) -> bool:
    return {"title", "columns", "rows"} <= data.keys()


def is_pipeline_summary(data: dict[str, Any]) -> bool:
    return {"document_id", "status", "completed_steps", "remaining_steps"} <= data.keys()


def to_json(payload: Payload) -> str:
    """JSON document for *payload*; tables are wrapped in ``{"table": ...}``."""
    if isinstance(payload, str):
        return json.dumps({"message": payload})
    if isinstance(payload, Error):
        return json.dumps({"error": payload.message})
    if is_table_data(payload):
        return json.dumps({"table": payload})
    return json.dumps(payload, default=str)


def write(payload: Payload) -> None:
    """Write *payload* in the current output mode."""
    if settings.json_mode:
        print(to_json(payload))
        if isinstance(payload, Error) and structlog.is_configured():
            logger.error(payload.message, subsystem="CLI")
        return

    if isinstance(payload, str):
        stdout_console.print(payload)
    elif isinstance(payload, Error):
        stderr_console.print(f"[bold red]Error:[/bold red] {payload.message}")
    elif is_table_data(payload):
        _print_table(payload)  # type: ignore[arg-type]
    elif is_pipeline_summary(payload):
        _print_pipeline(payload)
    else:
        for key, value in payload.items():
            shown = json.dumps(value, default=str) if isinstance(value, dict | list) else value
            stdout_console.print(f"[bold]{key}:[/bold] {shown}")


def _print_table(table_data: TableData) -> None:
    table = Table(title=table_data["title"])
    for column in table_data["columns"]:
        table.add_column(column)
    for row in table_data["rows"]:
        table.add_row(*row)
    stdout_console.print(table)


def _print_pipeline(summary: dict[str, Any]) -> None:
    status = summary["status"]
    style = STATUS_STYLES.get(status, "")
    table = Table(
        title=f"{summary.get('index', '')}/{summary['document_id']}",
        caption=f"execution {summary.get('execution_id', '?')}",
    )
    table.add_column("Step")
    table.add_column("State")
    for step in summary["completed_steps"]:
        table.add_row(step, "[green]done[/green]")
    for position, step in enumerate(summary["remaining_steps"]):
        if position == 0 and status == "failed":
            state = "[bold red]failed[/bold red]"
        elif position == 0:
            state = "[yellow]next[/yellow]"
        else:
            state = "[dim]pending[/dim]"
        table.add_row(step, state)
    stdout_console.print(table)
    stdout_console.print(f"Status: [{style}]{status}[/{style}]" if style else f"Status: {status}")

    failure = summary.get("failure")
    if failure:
        stdout_console.print(
            f"[red]{failure.get('error_type')} in {failure.get('step')}:[/red] {failure.get('message')}"
        )
    for name, reason in (summary.get("skipped_files") or {}).items():
        stdout_console.print(f"[dim]Skipped {name}: {reason}[/dim]")
