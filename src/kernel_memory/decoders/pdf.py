"""PDF decoder based on pdfminer."""

import io

from pdfminer.high_level import extract_pages
from pdfminer.layout import LTTextContainer
from pdfminer.pdfdocument import PDFException
from pdfminer.psexceptions import PSException

from kernel_memory.decoders import mime_types
from kernel_memory.decoders.protocols import FileContent, FileSection
from kernel_memory.utils.exceptions import DecodingError
from kernel_memory.utils.logging_utils import get_logger

logger = get_logger()


class PdfDecoder:
    """Decoder for PDF files: one section per page.

    Pages are not trimmed and are flagged as possibly ending mid-sentence;
    the partition step joins them with the next page.
    """

    supported_mime_types: tuple[str, ...] = (mime_types.PDF,)

    def extract_content(self, name: str, data: bytes, mime_type: str) -> FileContent:
        logger.debug(f"Extracting text from PDF file {name}", subsystem="Decoders")
        result = FileContent(mime_type=mime_types.PDF)
        try:
            for page_number, page_layout in enumerate(extract_pages(io.BytesIO(data)), start=1):
                text = "".join(
                    element.get_text() for element in page_layout if isinstance(element, LTTextContainer)
                )
                result.sections.append(
                    FileSection(number=page_number, content=text, sentences_are_complete=False)
                )
        except (PSException, PDFException) as e:
            # Truncated, encrypted or otherwise unreadable files
            raise DecodingError(name, "invalid PDF", original_error=e) from e
        return result
