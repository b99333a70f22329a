"""Text extraction step."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from kernel_memory.decoders.registry import DecoderRegistry
from kernel_memory.pipeline.constants import EXTRACT_JSON_SUFFIX, EXTRACT_STEP, EXTRACT_TEXT_SUFFIX
from kernel_memory.pipeline.handlers.base import BaseStepHandler, StepResult
from kernel_memory.pipeline.models import ArtifactType, DataPipeline, FileDetails, GeneratedFileDetails
from kernel_memory.storage.protocols import ArtifactStoreProtocol
from kernel_memory.utils.exceptions import DecodingError


class ExtractTextHandler(BaseStepHandler):
    """Decode every uploaded file into text sections.

    For each file two artifacts are written: ``<name>.extract.json`` with the
    sections and ``<name>.extract.txt`` with the plain text. Files without a
    decoder, or that fail to decode, are skipped; when every file is
    skipped the step fails for good.
    """

    step_name = EXTRACT_STEP

    def __init__(
        self,
        artifacts: ArtifactStoreProtocol,
        decoders: DecoderRegistry,
        log_callback: Callable[[str, str, str], None] | None = None,
    ) -> None:
        super().__init__(artifacts, log_callback)
        self.decoders = decoders

    async def invoke(self, pipeline: DataPipeline) -> StepResult:
        for file in pipeline.files:
            if file.already_processed_by(self.step_name):
                self._log("DEBUG", f"{file.name} already extracted, skipping")
                continue
            await self._extract(pipeline, file)
            file.mark_processed_by(self.step_name)

        if pipeline.files and all(f.is_skipped for f in pipeline.files):
            reasons = "; ".join(f"{f.name}: {f.skipped_reason}" for f in pipeline.files)
            return StepResult.create_fatal_failure(
                pipeline, f"No file could be decoded ({reasons})", "UnsupportedFormatError"
            )
        return StepResult.create_success(pipeline)

    async def _extract(self, pipeline: DataPipeline, file: FileDetails) -> None:
        if not self.decoders.supports(file.mime_type):
            file.skipped_reason = f"Unsupported content type '{file.mime_type}'"
            self._log("WARNING", f"Skipping {file.name}: {file.skipped_reason}", pipeline)
            return

        data = await self.artifacts.read_file(pipeline.index, pipeline.document_id, file.name)
        try:
            content = await asyncio.to_thread(self.decoders.extract_content, file.name, data, file.mime_type)
        except DecodingError as e:
            file.skipped_reason = str(e)
            self._log("WARNING", f"Skipping {file.name}: {e}", pipeline)
            return

        json_name = f"{file.name}{EXTRACT_JSON_SUFFIX}"
        json_size = await self._write_json(pipeline, json_name, content.model_dump(mode="json"))
        text_name = f"{file.name}{EXTRACT_TEXT_SUFFIX}"
        text_size = await self._write_text(pipeline, text_name, content.to_text())

        for name, mime_type, size in (
            (json_name, "application/json", json_size),
            (text_name, "text/plain", text_size),
        ):
            file.generated_files[name] = GeneratedFileDetails(
                id=name,
                name=name,
                mime_type=mime_type,
                size=size,
                parent_id=file.id,
                artifact_type=ArtifactType.EXTRACTED_CONTENT,
            )
        self._log("INFO", f"Extracted {len(content.sections)} sections from {file.name}", pipeline)
