"""Layered text recovery for PDFs, from the text layer down to OCR of embedded scans.

Strategies run in order and the first one whose result it accepts wins:

1. ``text_layer``      text drawn by the PDF itself (digitally authored files)
2. ``raster_ocr``      render page one and OCR it
3. ``embedded_jpeg``   carve the largest JPEG out of the raw bytes and OCR it

When nothing is accepted the text-layer result is returned, even if empty.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import fitz

from field_archive.core.config import Settings
from field_archive.core.logging import ctx, get_logger
from field_archive.core.metrics import EXTRACTION_STRATEGY
from field_archive.ingest.ocr import ocr_image_bytes
from field_archive.ingest.protocols import OcrEngine, Rasterizer
from field_archive.utils.text import clean_extracted

logger = get_logger(__name__)

JPEG_SOI = b"\xff\xd8\xff"
JPEG_EOI = b"\xff\xd9"


def _skip_entropy_data(data: bytes, pos: int) -> int:
    """Offset of the first real marker after scan data starting at ``pos``, or -1."""
    while True:
        pos = data.find(b"\xff", pos)
        if pos == -1 or pos + 1 >= len(data):
            return -1
        following = data[pos + 1]
        if following == 0xFF:
            pos += 1
        elif following == 0x00 or 0xD0 <= following <= 0xD7:
            # stuffed byte or restart marker
            pos += 2
        else:
            return pos


def _jpeg_end(data: bytes, start: int) -> int:
    """Offset just past the EOI that closes the JPEG starting at ``start``.

    Walks the length-prefixed segments, so an EXIF thumbnail carried inside
    APP1 is stepped over rather than mistaken for the end of the image.
    Returns -1 when the bytes do not follow the segment layout.
    """
    pos = start + 2
    size = len(data)
    while pos + 1 < size:
        if data[pos] != 0xFF:
            return -1
        marker = data[pos + 1]
        if marker == 0xFF:
            pos += 1
            continue
        if marker == 0xD9:
            return pos + 2
        if marker == 0x01 or 0xD0 <= marker <= 0xD7:
            pos += 2
            continue
        if marker in (0x00, 0xD8) or pos + 4 > size:
            return -1
        length = int.from_bytes(data[pos + 2 : pos + 4], "big")
        if length < 2:
            return -1
        pos += 2 + length
        if marker == 0xDA:
            pos = _skip_entropy_data(data, pos)
            if pos == -1:
                return -1
    return -1


def find_largest_jpeg(data: bytes, min_size: int) -> bytes | None:
    """Return the largest JPEG in ``data`` that is at least ``min_size`` bytes.

    Scanners store each page as one JPEG stream, so the biggest image is the
    page; smaller ones (thumbnails, logos) are ignored. Ties keep the first
    image found. Streams whose segments cannot be walked end at the first EOI.
    """
    best_start = best_end = -1
    start = data.find(JPEG_SOI)
    while start != -1:
        end = _jpeg_end(data, start)
        if end == -1:
            end = data.find(JPEG_EOI, start + len(JPEG_SOI))
            if end == -1:
                break
            end += len(JPEG_EOI)
        size = end - start
        if size >= min_size and size > best_end - best_start:
            best_start, best_end = start, end
        start = data.find(JPEG_SOI, end)
    if best_start < 0:
        return None
    return data[best_start:best_end]


class PdfStrategy:
    """One way of getting text out of a PDF."""

    name: str = "base"

    def extract(self, data: bytes) -> str:  # pragma: no cover - interface
        raise NotImplementedError

    def accepts(self, text: str) -> bool:
        return bool(text)


class TextLayerStrategy(PdfStrategy):
    name = "text_layer"

    def __init__(self, min_chars: int) -> None:
        self.min_chars = min_chars

    def extract(self, data: bytes) -> str:
        with fitz.open(stream=data, filetype="pdf") as doc:
            pages = [page.get_text("text", sort=True) for page in doc]
        return clean_extracted("\n\n".join(pages))

    def accepts(self, text: str) -> bool:
        # short receipts still carry a couple of dozen characters of real text
        return len(text) > self.min_chars


class RasterOcrStrategy(PdfStrategy):
    name = "raster_ocr"

    def __init__(self, rasterizer: Rasterizer, ocr: OcrEngine, dpi: int) -> None:
        self.rasterizer = rasterizer
        self.ocr = ocr
        self.dpi = dpi

    def extract(self, data: bytes) -> str:
        image = self.rasterizer.render_first_page(data, self.dpi)
        return clean_extracted(ocr_image_bytes(self.ocr, image))


class EmbeddedJpegStrategy(PdfStrategy):
    name = "embedded_jpeg"

    def __init__(self, ocr: OcrEngine, min_image_bytes: int) -> None:
        self.ocr = ocr
        self.min_image_bytes = min_image_bytes

    def extract(self, data: bytes) -> str:
        image = find_largest_jpeg(data, self.min_image_bytes)
        if image is None:
            logger.debug("No embedded JPEG of at least %s bytes", self.min_image_bytes)
            return ""
        return clean_extracted(ocr_image_bytes(self.ocr, image))


@dataclass(slots=True, frozen=True)
class ChainOutcome:
    text: str
    strategy: str | None


class ScannedPdfChain:
    """Evaluate PDF strategies in order, stopping at the first accepted result."""

    def __init__(self, strategies: Sequence[PdfStrategy]) -> None:
        if not strategies:
            raise ValueError("at least one strategy is required")
        self.strategies = list(strategies)

    def run(self, data: bytes, label: str | None = None) -> ChainOutcome:
        baseline = ""
        for index, strategy in enumerate(self.strategies):
            try:
                text = strategy.extract(data)
            except Exception as exc:
                logger.info(
                    "PDF strategy %s failed for %s: %s",
                    strategy.name,
                    label or "<bytes>",
                    exc,
                    extra=ctx(strategy=strategy.name),
                )
                text = ""
            if index == 0:
                baseline = text
            if strategy.accepts(text):
                EXTRACTION_STRATEGY.labels(strategy=strategy.name).inc()
                if index > 0:
                    logger.info(
                        "Recovered %s chars from %s via %s",
                        len(text),
                        label or "<bytes>",
                        strategy.name,
                        extra=ctx(strategy=strategy.name),
                    )
                return ChainOutcome(text=text, strategy=strategy.name)
        EXTRACTION_STRATEGY.labels(strategy="none").inc()
        logger.info("No usable text in %s (%s chars from text layer)", label or "<bytes>", len(baseline))
        return ChainOutcome(text=baseline, strategy=None)

    def extract(self, data: bytes, label: str | None = None) -> str:
        return self.run(data, label=label).text


def build_pdf_chain(settings: Settings, ocr: OcrEngine, rasterizer: Rasterizer) -> ScannedPdfChain:
    return ScannedPdfChain(
        [
            TextLayerStrategy(min_chars=settings.min_text_chars),
            RasterOcrStrategy(rasterizer, ocr, dpi=settings.raster_dpi),
            EmbeddedJpegStrategy(ocr, min_image_bytes=settings.min_embedded_image_bytes),
        ]
    )


__all__ = [
    "ChainOutcome",
    "EmbeddedJpegStrategy",
    "PdfStrategy",
    "RasterOcrStrategy",
    "ScannedPdfChain",
    "TextLayerStrategy",
    "build_pdf_chain",
    "find_largest_jpeg",
]
