"""Content decoders turning uploaded files into text sections."""

from kernel_memory.decoders.html import HtmlDecoder
from kernel_memory.decoders.mime_types import get_mime_type
from kernel_memory.decoders.pdf import PdfDecoder
from kernel_memory.decoders.protocols import ContentDecoderProtocol, FileContent, FileSection
from kernel_memory.decoders.registry import DecoderRegistry
from kernel_memory.decoders.text import MarkDownDecoder, TextDecoder

__all__ = [
    "ContentDecoderProtocol",
    "DecoderRegistry",
    "FileContent",
    "FileSection",
    "HtmlDecoder",
    "MarkDownDecoder",
    "PdfDecoder",
    "TextDecoder",
    "get_mime_type",
]
