"""Decoder lookup by mime type."""

from __future__ import annotations

from collections.abc import Iterable

from kernel_memory.decoders import mime_types
from kernel_memory.decoders.html import HtmlDecoder
from kernel_memory.decoders.pdf import PdfDecoder
from kernel_memory.decoders.protocols import ContentDecoderProtocol, FileContent
from kernel_memory.decoders.text import MarkDownDecoder, TextDecoder
from kernel_memory.utils.exceptions import UnsupportedFormatError


class DecoderRegistry:
    """Maps mime types to decoders; later registrations win."""

    def __init__(self, decoders: Iterable[ContentDecoderProtocol] | None = None) -> None:
        self._decoders: dict[str, ContentDecoderProtocol] = {}
        for decoder in decoders or ():
            self.register(decoder)

    @classmethod
    def default(cls) -> DecoderRegistry:
        return cls([TextDecoder(), MarkDownDecoder(), HtmlDecoder(), PdfDecoder()])

    def register(self, decoder: ContentDecoderProtocol) -> None:
        for mime_type in decoder.supported_mime_types:
            self._decoders[mime_types.normalize_mime_type(mime_type)] = decoder

    def supports(self, mime_type: str | None) -> bool:
        return mime_types.normalize_mime_type(mime_type) in self._decoders

    @property
    def supported_mime_types(self) -> list[str]:
        return sorted(self._decoders)

    def get(self, mime_type: str | None) -> ContentDecoderProtocol:
        try:
            return self._decoders[mime_types.normalize_mime_type(mime_type)]
        except KeyError as e:
            raise UnsupportedFormatError(mime_type) from e

    def extract_content(self, name: str, data: bytes, mime_type: str) -> FileContent:
        """Decode *data* with the decoder registered for *mime_type*.

        Raises:
            UnsupportedFormatError: If no decoder handles *mime_type*
            DecodingError: If the decoder fails
        """
        if not self.supports(mime_type):
            raise UnsupportedFormatError(mime_type, name)
        return self.get(mime_type).extract_content(name, data, mime_types.normalize_mime_type(mime_type))
