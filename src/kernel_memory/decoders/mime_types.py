"""File extension to mime type mapping for the supported formats."""

from pathlib import PurePath

PLAIN_TEXT = "text/plain"
MARKDOWN = "text/markdown"
HTML = "text/html"
PDF = "application/pdf"
JSON = "application/json"
CSV = "text/csv"

# Map of supported MIME types to their file extensions
SUPPORTED_MIME_TYPES: dict[str, list[str]] = {
    PLAIN_TEXT: [".txt", ".text", ".log"],
    MARKDOWN: [".md", ".markdown"],
    HTML: [".html", ".htm"],
    PDF: [".pdf"],
    JSON: [".json"],
    CSV: [".csv"],
}

EXTENSION_TO_MIME_TYPE: dict[str, str] = {
    ext: mime_type for mime_type, exts in SUPPORTED_MIME_TYPES.items() for ext in exts
}

DEFAULT_MIME_TYPE = "application/octet-stream"


def get_mime_type(file_name: str) -> str:
    """Guess the mime type of *file_name* from its extension.

    Unknown extensions map to ``application/octet-stream``, which no decoder
    accepts, so the file is skipped by text extraction.
    """
    return EXTENSION_TO_MIME_TYPE.get(PurePath(file_name).suffix.lower(), DEFAULT_MIME_TYPE)


def normalize_mime_type(mime_type: str | None) -> str:
    """Drop parameters such as ``; charset=utf-8`` and lowercase."""
    if not mime_type:
        return ""
    return mime_type.split(";", 1)[0].strip().lower()
