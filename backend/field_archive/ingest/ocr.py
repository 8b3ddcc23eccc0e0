"""OCR and raster-conversion capabilities backed by Tesseract and PyMuPDF."""

from __future__ import annotations

import io
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import fitz
import pytesseract
from PIL import Image

from field_archive.core.errors import ExtractionFailed
from field_archive.core.logging import get_logger
from field_archive.ingest.protocols import OcrEngine

logger = get_logger(__name__)


class TesseractOcrEngine:
    """OCR engine wrapping the ``tesseract`` binary through pytesseract."""

    def __init__(self, language: str = "eng", timeout: float = 0) -> None:
        self.language = language
        # pytesseract treats 0 as "no timeout"
        self.timeout = timeout

    def recognize(self, image_path: Path) -> str:
        try:
            return pytesseract.image_to_string(
                str(image_path), lang=self.language, timeout=self.timeout
            )
        except pytesseract.TesseractError as exc:
            raise ExtractionFailed(str(exc), provider="tesseract") from exc
        except RuntimeError as exc:
            # a timeout surfaces as a bare RuntimeError("Tesseract process timeout")
            raise ExtractionFailed(f"OCR timed out after {self.timeout}s", provider="tesseract") from exc


class PyMuPDFRasterizer:
    """Render the first page of a PDF to PNG bytes."""

    def render_first_page(self, pdf_bytes: bytes, dpi: int) -> bytes:
        with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
            if doc.page_count == 0:
                raise ExtractionFailed("PDF has no pages", provider="pymupdf")
            pixmap = doc[0].get_pixmap(dpi=dpi)
            return pixmap.tobytes("png")


def _flatten_to_rgb(image: Image.Image) -> Image.Image:
    """Composite any transparency onto white before dropping to RGB."""
    if image.mode == "P" and "transparency" in image.info:
        image = image.convert("RGBA")
    if image.mode in ("RGBA", "LA", "PA"):
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, "white")
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    return image.convert("RGB")


@contextmanager
def scoped_image_file(image_bytes: bytes) -> Iterator[Path]:
    """Normalise image bytes to an RGB PNG on disk; the file is removed on exit.

    Raises ``PIL.UnidentifiedImageError`` (an ``OSError``) when the bytes are
    not a decodable image; nothing is written in that case.
    """
    with Image.open(io.BytesIO(image_bytes)) as image:
        normalized = _flatten_to_rgb(image)
    fd, name = tempfile.mkstemp(prefix="fieldarc-ocr-", suffix=".png")
    path = Path(name)
    try:
        with os.fdopen(fd, "wb") as handle:
            normalized.save(handle, format="PNG")
        yield path
    finally:
        path.unlink(missing_ok=True)


def ocr_image_bytes(engine: OcrEngine, image_bytes: bytes) -> str:
    """Run OCR over raw image bytes through a scoped temporary file."""
    with scoped_image_file(image_bytes) as path:
        text = engine.recognize(path)
    return (text or "").strip()


__all__ = ["TesseractOcrEngine", "PyMuPDFRasterizer", "scoped_image_file", "ocr_image_bytes"]
