"""Filesystem artifact store.

Layout: ``<root>/<index>/<document_id>/<file_name>``. Index and document ids
are validated by the orchestrator before anything is written, file names
are checked here so a name can never escape its document directory.
"""

import asyncio
import shutil
from collections.abc import Callable
from pathlib import Path
from typing import TypeAlias

from kernel_memory.pipeline.constants import PIPELINE_STATUS_FILE
from kernel_memory.utils.exceptions import ArtifactNotFoundError, StorageError
from kernel_memory.utils.logging_utils import log_message

LogCallback: TypeAlias = Callable[[str, str, str], None]


class FileSystemArtifactStore:
    """Artifact store backed by a local directory tree."""

    def __init__(self, root: Path | str, log_callback: LogCallback | None = None) -> None:
        """Initialize the store.

        Args:
            root: Directory holding every index
            log_callback: Optional callback for logging
        """
        self.root = Path(root)
        self.log_callback = log_callback

    def _log(self, level: str, message: str) -> None:
        log_message(level, message, "Artifacts", self.log_callback)

    def _index_dir(self, index: str) -> Path:
        return self.root / _safe_name(index)

    def _document_dir(self, index: str, document_id: str) -> Path:
        return self._index_dir(index) / _safe_name(document_id)

    def _file_path(self, index: str, document_id: str, file_name: str) -> Path:
        return self._document_dir(index, document_id) / _safe_name(file_name)

    async def create_index_directory(self, index: str) -> None:
        await asyncio.to_thread(self._index_dir(index).mkdir, parents=True, exist_ok=True)

    async def delete_index_directory(self, index: str) -> None:
        path = self._index_dir(index)
        if path.exists():
            self._log("INFO", f"Deleting index directory {path}")
            await asyncio.to_thread(shutil.rmtree, path)

    async def create_document_directory(self, index: str, document_id: str) -> None:
        await asyncio.to_thread(self._document_dir(index, document_id).mkdir, parents=True, exist_ok=True)

    async def empty_document_directory(self, index: str, document_id: str) -> None:
        path = self._document_dir(index, document_id)
        if not path.exists():
            return

        def _empty() -> int:
            removed = 0
            for child in path.iterdir():
                if child.name == PIPELINE_STATUS_FILE:
                    continue
                if child.is_dir():
                    shutil.rmtree(child)
                else:
                    child.unlink()
                removed += 1
            return removed

        removed = await asyncio.to_thread(_empty)
        self._log("DEBUG", f"Removed {removed} files from {path}")

    async def delete_document_directory(self, index: str, document_id: str) -> None:
        path = self._document_dir(index, document_id)
        if path.exists():
            await asyncio.to_thread(shutil.rmtree, path)

    async def write_file(self, index: str, document_id: str, file_name: str, content: bytes) -> None:
        path = self._file_path(index, document_id, file_name)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            # Write then rename so readers never see a partial file
            tmp = path.with_name(f".{path.name}.tmp")
            tmp.write_bytes(content)
            tmp.replace(path)

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            raise StorageError(
                f"Failed to write {path}: {e}",
                error_code="ARTIFACT_WRITE_ERROR",
                context={"path": str(path)},
            ) from e

    async def read_file(self, index: str, document_id: str, file_name: str) -> bytes:
        path = self._file_path(index, document_id, file_name)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as e:
            raise ArtifactNotFoundError(index, document_id, file_name) from e

    async def file_exists(self, index: str, document_id: str, file_name: str) -> bool:
        return self._file_path(index, document_id, file_name).is_file()

    async def list_files(self, index: str, document_id: str) -> list[str]:
        path = self._document_dir(index, document_id)
        if not path.is_dir():
            return []
        return sorted(p.name for p in path.iterdir() if p.is_file() and not p.name.startswith("."))

    async def delete_file(self, index: str, document_id: str, file_name: str) -> None:
        path = self._file_path(index, document_id, file_name)
        await asyncio.to_thread(path.unlink, missing_ok=True)


def _safe_name(name: str) -> str:
    """Reject names that are empty or would leave their parent directory."""
    if not name or name in (".", "..") or "/" in name or "\\" in name:
        raise StorageError(
            f"Invalid artifact path component: {name!r}",
            error_code="INVALID_ARTIFACT_NAME",
            context={"name": name},
        )
    return name
