"""HTML decoder."""

from bs4 import BeautifulSoup

from kernel_memory.decoders import mime_types
from kernel_memory.decoders.protocols import FileContent, FileSection
from kernel_memory.decoders.text import decode_utf8
from kernel_memory.utils.logging_utils import get_logger

logger = get_logger()


class HtmlDecoder:
    """Decoder for HTML pages: visible text with blank lines collapsed."""

    supported_mime_types: tuple[str, ...] = (mime_types.HTML,)

    def extract_content(self, name: str, data: bytes, mime_type: str) -> FileContent:
        logger.debug(f"Extracting text from HTML file {name}", subsystem="Decoders")
        soup = BeautifulSoup(decode_utf8(name, data), "html.parser")
        for element in soup(["script", "style", "noscript"]):
            element.decompose()
        lines = (line.strip() for line in soup.get_text().splitlines())
        text = "\n".join(line for line in lines if line)
        return FileContent(
            mime_type=mime_types.HTML,
            sections=[FileSection(number=1, content=text, sentences_are_complete=True)],
        )
