"""Ingestion ledger: which remote items are already in the archive."""

from __future__ import annotations

import sqlite3
from datetime import date

from field_archive.core.errors import DocumentNotFound
from field_archive.core.logging import get_logger
from field_archive.db.sqlite import SQLiteDatabase
from field_archive.ingest.types import DocumentFormat, IngestedDocument, ReceiptFields
from field_archive.utils.ids import new_id
from field_archive.utils.time import now_ms

logger = get_logger(__name__)

TAG_SEPARATOR = ", "

_DOCUMENT_COLUMNS = (
    "id, original_name, format, size_bytes, sha256, raw_bytes, extracted_text, tags, "
    "remote_item_id, remote_drive_id, remote_folder, processed_at"
)


class IngestionLedger:
    """Document bookkeeping keyed by remote item id.

    ``remote_item_id`` is UNIQUE in the schema, so a manual upload racing a
    watcher poll for the same item can only ever commit one row; the loser's
    insert is reported as a duplicate instead of an error.
    """

    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    def has_been_ingested(self, remote_item_id: str) -> bool:
        row = self.db.query_one("SELECT 1 FROM documents WHERE remote_item_id = ?", [remote_item_id])
        return row is not None

    def record_ingestion(self, document: IngestedDocument) -> bool:
        """Commit the full document row. Returns False if the remote item already exists."""
        try:
            with self.db.transaction() as cursor:
                cursor.execute(
                    f"""
                    INSERT INTO documents ({_DOCUMENT_COLUMNS}, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        document.id,
                        document.original_name,
                        document.format.value,
                        document.size_bytes,
                        document.sha256,
                        document.raw_bytes,
                        document.extracted_text,
                        TAG_SEPARATOR.join(document.tags),
                        document.remote_item_id,
                        document.remote_drive_id,
                        document.remote_folder,
                        document.processed_at,
                        now_ms(),
                    ],
                )
        except sqlite3.IntegrityError as exc:
            if document.remote_item_id is not None and "remote_item_id" in str(exc):
                logger.info("Remote item %s already ingested, skipping", document.remote_item_id)
                return False
            raise
        return True

    def get(self, document_id: str) -> IngestedDocument | None:
        row = self.db.query_one(f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE id = ?", [document_id])
        return _row_to_document(row) if row else None

    def find_by_remote_item(self, remote_item_id: str) -> IngestedDocument | None:
        row = self.db.query_one(
            f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE remote_item_id = ?", [remote_item_id]
        )
        return _row_to_document(row) if row else None

    def count(self) -> int:
        row = self.db.query_one("SELECT COUNT(*) AS count FROM documents")
        return int(row["count"]) if row else 0

    def update_text(self, document_id: str, text: str) -> IngestedDocument:
        with self.db.transaction() as cursor:
            cursor.execute(
                "UPDATE documents SET extracted_text = ?, processed_at = ? WHERE id = ?",
                [text, now_ms(), document_id],
            )
            if cursor.rowcount == 0:
                raise DocumentNotFound(f"Document {document_id} not found")
        updated = self.get(document_id)
        if updated is None:
            raise DocumentNotFound(f"Document {document_id} not found")
        return updated

    def set_tags(self, document_id: str, tags: list[str]) -> None:
        with self.db.transaction() as cursor:
            cursor.execute(
                "UPDATE documents SET tags = ? WHERE id = ?",
                [TAG_SEPARATOR.join(tags), document_id],
            )

    def record_expense(self, document_id: str, receipt: ReceiptFields) -> str | None:
        """Create a pending expense from receipt fields; skipped when there is no amount."""
        if not receipt.amount:
            return None
        expense_id = new_id("exp")
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO expenses (id, document_id, date, vendor, amount, category, description, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, 'pending', ?)
                """,
                [
                    expense_id,
                    document_id,
                    receipt.date or date.today().isoformat(),
                    receipt.vendor or "",
                    float(receipt.amount),
                    receipt.category or "other",
                    receipt.description or "",
                    now_ms(),
                ],
            )
        return expense_id

    def expenses_for(self, document_id: str) -> list[sqlite3.Row]:
        return self.db.query(
            "SELECT id, date, vendor, amount, category, description, status FROM expenses WHERE document_id = ?",
            [document_id],
        )


def _row_to_document(row: sqlite3.Row) -> IngestedDocument:
    tags = [tag for tag in (row["tags"] or "").split(TAG_SEPARATOR) if tag]
    return IngestedDocument(
        id=row["id"],
        original_name=row["original_name"],
        format=DocumentFormat(row["format"]),
        size_bytes=row["size_bytes"],
        extracted_text=row["extracted_text"],
        processed_at=row["processed_at"],
        sha256=row["sha256"],
        remote_item_id=row["remote_item_id"],
        remote_drive_id=row["remote_drive_id"],
        remote_folder=row["remote_folder"],
        tags=tags,
        raw_bytes=row["raw_bytes"],
    )


__all__ = ["IngestionLedger", "TAG_SEPARATOR"]
