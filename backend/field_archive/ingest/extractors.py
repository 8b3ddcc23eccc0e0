"""Format-specific text extractors and the dispatcher that routes between them."""

from __future__ import annotations

import csv
import io
from typing import Iterable

from docx import Document
from openpyxl import load_workbook

from field_archive.core.logging import ctx, get_logger
from field_archive.ingest.fallback import ScannedPdfChain
from field_archive.ingest.ocr import ocr_image_bytes
from field_archive.ingest.protocols import OcrEngine
from field_archive.ingest.types import DocumentFormat
from field_archive.utils.text import clean_extracted

logger = get_logger(__name__)


class BaseExtractor:
    """Common extractor interface."""

    formats: tuple[DocumentFormat, ...] = ()

    def extract(self, data: bytes, label: str | None = None) -> str:  # pragma: no cover - interface
        raise NotImplementedError


class PdfExtractor(BaseExtractor):
    formats = (DocumentFormat.PDF,)

    def __init__(self, chain: ScannedPdfChain) -> None:
        self.chain = chain

    def extract(self, data: bytes, label: str | None = None) -> str:
        return self.chain.extract(data, label=label)


class DocxExtractor(BaseExtractor):
    formats = (DocumentFormat.DOCX,)

    def extract(self, data: bytes, label: str | None = None) -> str:
        document = Document(io.BytesIO(data))
        parts = [para.text for para in document.paragraphs if para.text.strip()]
        for table in document.tables:
            for row in table.rows:
                cells = [cell.text.strip() for cell in row.cells]
                if any(cells):
                    parts.append("\t".join(cells))
        return clean_extracted("\n".join(parts))


class XlsxExtractor(BaseExtractor):
    """One CSV block per sheet, headed by the sheet name, in workbook order."""

    formats = (DocumentFormat.XLSX,)

    def extract(self, data: bytes, label: str | None = None) -> str:
        workbook = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
        try:
            blocks = [
                f"--- {sheet.title} ---\n{_rows_to_csv(sheet.iter_rows(values_only=True))}"
                for sheet in workbook.worksheets
            ]
        finally:
            workbook.close()
        return "\n\n".join(blocks).strip()


class ImageExtractor(BaseExtractor):
    formats = (DocumentFormat.JPEG, DocumentFormat.PNG)

    def __init__(self, ocr: OcrEngine) -> None:
        self.ocr = ocr

    def extract(self, data: bytes, label: str | None = None) -> str:
        return clean_extracted(ocr_image_bytes(self.ocr, data))


class ExtractionDispatcher:
    """Route bytes to the extractor registered for their format.

    Never raises: an unknown format or a failing extractor yields ``""`` so a
    single bad file cannot abort a batch.
    """

    def __init__(self, extractors: Iterable[BaseExtractor]) -> None:
        self._by_format: dict[DocumentFormat, BaseExtractor] = {}
        for extractor in extractors:
            self.register(extractor)

    @classmethod
    def default(cls, chain: ScannedPdfChain, ocr: OcrEngine) -> "ExtractionDispatcher":
        return cls([PdfExtractor(chain), DocxExtractor(), XlsxExtractor(), ImageExtractor(ocr)])

    def register(self, extractor: BaseExtractor) -> None:
        for fmt in extractor.formats:
            self._by_format[fmt] = extractor

    def for_format(self, fmt: DocumentFormat | str) -> BaseExtractor | None:
        try:
            return self._by_format.get(DocumentFormat(fmt))
        except ValueError:
            return None

    def extract(self, data: bytes, fmt: DocumentFormat | str, label: str | None = None) -> str:
        extractor = self.for_format(fmt)
        if extractor is None:
            logger.warning("No extractor registered for format %r", fmt)
            return ""
        try:
            return extractor.extract(data, label=label)
        except Exception as exc:
            logger.error(
                "%s extraction failed for %s: %s",
                getattr(fmt, "value", fmt),
                label or "<bytes>",
                exc,
                exc_info=True,
                extra=ctx(extractor=type(extractor).__name__),
            )
            return ""


def _rows_to_csv(rows: Iterable[tuple[object, ...]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    for row in rows:
        writer.writerow(["" if value is None else value for value in row])
    return buffer.getvalue().rstrip("\n")


__all__ = [
    "BaseExtractor",
    "DocxExtractor",
    "ExtractionDispatcher",
    "ImageExtractor",
    "PdfExtractor",
    "XlsxExtractor",
]
