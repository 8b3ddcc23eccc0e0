"""Structural interfaces for the collaborators the ingestion core drives."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Protocol

from field_archive.ingest.types import ChangePage, ReceiptFields, RemoteItem


class RemoteDrive(Protocol):
    """A remote file store exposing a cursor-based change listing."""

    def resolve_drive(self) -> tuple[str, str]:
        """Return ``(site_id, drive_id)``; raise RemoteUnavailable on failure."""
        ...

    def list_changes(self, cursor: str | None) -> ChangePage:
        """List changes since ``cursor``, or everything when it is None."""
        ...

    def download(self, item: RemoteItem) -> bytes:
        ...

    def test_connection(self) -> dict[str, Any]:
        """Report connectivity as ``{"connected": bool, ...}`` without raising."""
        ...


class OcrEngine(Protocol):
    def recognize(self, image_path: Path) -> str:
        """Return the text recognised in a raster image file. May raise."""
        ...


class Rasterizer(Protocol):
    def render_first_page(self, pdf_bytes: bytes, dpi: int) -> bytes:
        """Render page one as image bytes. Expected to raise when unsupported."""
        ...


class Enricher(Protocol):
    def categorize(self, text: str) -> list[str]:
        ...

    def extract_receipt(self, text: str) -> ReceiptFields | None:
        ...


__all__ = ["RemoteDrive", "OcrEngine", "Rasterizer", "Enricher"]
