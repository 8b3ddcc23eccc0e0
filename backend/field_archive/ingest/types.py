"""Common ingestion data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Sequence

from field_archive.core.errors import UnsupportedFormat


class DocumentFormat(str, Enum):
    PDF = "PDF"
    DOCX = "DOCX"
    XLSX = "XLSX"
    JPEG = "JPEG"
    PNG = "PNG"


EXTENSION_FORMATS: dict[str, DocumentFormat] = {
    ".pdf": DocumentFormat.PDF,
    ".docx": DocumentFormat.DOCX,
    ".xlsx": DocumentFormat.XLSX,
    ".jpg": DocumentFormat.JPEG,
    ".jpeg": DocumentFormat.JPEG,
    ".png": DocumentFormat.PNG,
}

ACCEPTED_EXTENSIONS = frozenset(EXTENSION_FORMATS)


def normalize_extension(name_or_extension: str) -> str:
    """Return the lower-cased ``.ext`` of a file name or bare extension."""
    value = name_or_extension.strip().lower()
    if not value:
        return ""
    suffix = PurePosixPath(value).suffix
    if suffix:
        return suffix
    return value if value.startswith(".") else f".{value}"


def is_accepted(name_or_extension: str) -> bool:
    return normalize_extension(name_or_extension) in ACCEPTED_EXTENSIONS


def format_for_extension(name_or_extension: str) -> DocumentFormat:
    """Map a file name or extension onto the closed format set.

    Raises :class:`UnsupportedFormat` for anything outside the accepted set.
    """
    extension = normalize_extension(name_or_extension)
    try:
        return EXTENSION_FORMATS[extension]
    except KeyError:
        raise UnsupportedFormat(f"File type {extension or name_or_extension!r} not allowed") from None


@dataclass(slots=True, frozen=True)
class RemoteItem:
    """An entry returned by the remote drive's change listing."""

    id: str
    name: str
    size: int = 0
    modified_at: datetime | None = None
    parent_path: str | None = None
    is_file: bool = True
    download_url: str | None = None
    deleted: bool = False

    @property
    def extension(self) -> str:
        return normalize_extension(self.name)


@dataclass(slots=True)
class ChangePage:
    """Result of one ``list_changes`` call: entries plus the cursor to resume from."""

    entries: Sequence[RemoteItem]
    next_cursor: str | None


@dataclass(slots=True)
class IngestedDocument:
    """A document committed to the archive, text included (possibly empty)."""

    id: str
    original_name: str
    format: DocumentFormat
    size_bytes: int
    extracted_text: str
    processed_at: int
    sha256: str
    remote_item_id: str | None = None
    remote_drive_id: str | None = None
    remote_folder: str | None = None
    tags: list[str] = field(default_factory=list)
    raw_bytes: bytes | None = field(default=None, repr=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "original_name": self.original_name,
            "format": self.format.value,
            "size_bytes": self.size_bytes,
            "extracted_text": self.extracted_text,
            "processed_at": self.processed_at,
            "sha256": self.sha256,
            "remote_item_id": self.remote_item_id,
            "remote_drive_id": self.remote_drive_id,
            "remote_folder": self.remote_folder,
            "tags": list(self.tags),
        }


@dataclass(slots=True)
class ReceiptFields:
    vendor: str | None = None
    date: str | None = None
    amount: float | None = None
    category: str | None = None
    description: str | None = None


class WatcherState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"


@dataclass(slots=True, frozen=True)
class WatcherStatus:
    """Point-in-time copy of the watcher's state."""

    state: WatcherState
    last_sync: datetime | None
    files_processed: int
    cursor_set: bool
    poll_interval_seconds: float
    site_id: str | None = None
    drive_id: str | None = None

    @property
    def running(self) -> bool:
        return self.state is WatcherState.RUNNING

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "running": self.running,
            "last_sync": self.last_sync.isoformat() if self.last_sync else None,
            "files_processed": self.files_processed,
            "cursor_set": self.cursor_set,
            "poll_interval_seconds": self.poll_interval_seconds,
            "site_id": self.site_id,
            "drive_id": self.drive_id,
        }


@dataclass(slots=True)
class PollResult:
    """Aggregated outcome of a single delta-sync poll."""

    ok: bool = True
    seen: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "seen": self.seen,
            "processed": self.processed,
            "skipped": self.skipped,
            "failed": self.failed,
            "error": self.error,
        }


__all__ = [
    "ACCEPTED_EXTENSIONS",
    "ChangePage",
    "DocumentFormat",
    "IngestedDocument",
    "PollResult",
    "ReceiptFields",
    "RemoteItem",
    "WatcherState",
    "WatcherStatus",
    "format_for_extension",
    "is_accepted",
    "normalize_extension",
]
