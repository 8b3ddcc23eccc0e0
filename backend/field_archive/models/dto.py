"""Pydantic DTOs exposed via API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from field_archive.ingest.types import IngestedDocument, PollResult, WatcherStatus


class DocumentResponse(BaseModel):
    id: str
    original_name: str
    format: Literal["PDF", "DOCX", "XLSX", "JPEG", "PNG"]
    size_bytes: int
    extracted_text: str
    processed_at: int = Field(description="Unix milliseconds of the last extraction")
    sha256: str
    remote_item_id: str | None = None
    remote_drive_id: str | None = None
    remote_folder: str | None = None
    tags: list[str] = Field(default_factory=list)

    @classmethod
    def from_document(cls, document: IngestedDocument) -> "DocumentResponse":
        return cls(**document.to_dict())


class ExpenseResponse(BaseModel):
    id: str
    date: str
    vendor: str
    amount: float
    category: str
    description: str
    status: str


class ArchiveStatsResponse(BaseModel):
    documents: int


class WatcherStatusResponse(BaseModel):
    state: Literal["stopped", "running"]
    running: bool
    last_sync: datetime | None
    files_processed: int
    cursor_set: bool
    poll_interval_seconds: float
    site_id: str | None = None
    drive_id: str | None = None

    @classmethod
    def from_status(cls, status: WatcherStatus) -> "WatcherStatusResponse":
        return cls(**status.to_dict())


class SyncResponse(BaseModel):
    message: str
    poll: dict[str, Any]
    status: WatcherStatusResponse

    @classmethod
    def build(cls, message: str, result: PollResult, status: WatcherStatus) -> "SyncResponse":
        return cls(message=message, poll=result.to_dict(), status=WatcherStatusResponse.from_status(status))


class WatcherActionResponse(BaseModel):
    message: str
    status: WatcherStatusResponse


class ConnectionTestResponse(BaseModel):
    connected: bool
    site_id: str | None = None
    drive_id: str | None = None
    message: str | None = None
    error: str | None = None


__all__ = [
    "ArchiveStatsResponse",
    "ConnectionTestResponse",
    "DocumentResponse",
    "ExpenseResponse",
    "SyncResponse",
    "WatcherActionResponse",
    "WatcherStatusResponse",
]
