"""Plain text and markdown decoders."""

from kernel_memory.decoders import mime_types
from kernel_memory.decoders.protocols import FileContent, FileSection
from kernel_memory.utils.exceptions import DecodingError
from kernel_memory.utils.logging_utils import get_logger

logger = get_logger()


def decode_utf8(name: str, data: bytes) -> str:
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise DecodingError(name, "content is not valid UTF-8", original_error=e) from e


class TextDecoder:
    """Decoder for plain text, JSON and CSV files: one trimmed section."""

    supported_mime_types: tuple[str, ...] = (mime_types.PLAIN_TEXT, mime_types.JSON, mime_types.CSV)

    def extract_content(self, name: str, data: bytes, mime_type: str) -> FileContent:
        logger.debug(f"Extracting text from {name}", subsystem="Decoders")
        text = decode_utf8(name, data)
        return FileContent(
            mime_type=mime_types.PLAIN_TEXT,
            sections=[FileSection(number=1, content=text.strip(), sentences_are_complete=True)],
        )


class MarkDownDecoder:
    """Decoder for markdown files; the markup is kept as is."""

    supported_mime_types: tuple[str, ...] = (mime_types.MARKDOWN,)

    def extract_content(self, name: str, data: bytes, mime_type: str) -> FileContent:
        logger.debug(f"Extracting text from markdown file {name}", subsystem="Decoders")
        text = decode_utf8(name, data)
        return FileContent(
            mime_type=mime_types.MARKDOWN,
            sections=[FileSection(number=1, content=text.strip(), sentences_are_complete=True)],
        )
