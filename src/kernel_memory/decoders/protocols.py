"""Decoder data model and protocol."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from pydantic import BaseModel, Field


class FileSection(BaseModel):
    """A chunk of extracted text, usually a page.

    Attributes:
        number: 1-based section (page) number
        content: Extracted text
        sentences_are_complete: False when a sentence may continue in the
            next section, as with PDF pages
    """

    number: int
    content: str
    sentences_are_complete: bool = True


class FileContent(BaseModel):
    """Text extracted from one file."""

    mime_type: str
    sections: list[FileSection] = Field(default_factory=list)

    def to_text(self) -> str:
        return "\n\n".join(section.content for section in self.sections if section.content)


@runtime_checkable
class ContentDecoderProtocol(Protocol):
    """Protocol for content decoders."""

    @property
    def supported_mime_types(self) -> tuple[str, ...]:
        """Mime types this decoder can read."""
        ...

    def extract_content(self, name: str, data: bytes, mime_type: str) -> FileContent:
        """Extract the text of a file.

        Args:
            name: File name, used for error messages
            data: Raw file content
            mime_type: Content type of *data*

        Returns:
            The extracted sections

        Raises:
            DecodingError: If the content cannot be read
        """
        ...
