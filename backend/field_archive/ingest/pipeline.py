"""Ingest pipeline orchestration."""

from __future__ import annotations

from field_archive.core.errors import DocumentNotFound, ExtractionFailed
from field_archive.core.logging import ctx, get_logger
from field_archive.core.metrics import DOCUMENTS_INGESTED, DUPLICATES_SKIPPED
from field_archive.ingest.extractors import ExtractionDispatcher
from field_archive.ingest.ledger import IngestionLedger
from field_archive.ingest.protocols import Enricher
from field_archive.ingest.types import (
    DocumentFormat,
    IngestedDocument,
    RemoteItem,
    format_for_extension,
    normalize_extension,
)
from field_archive.utils.ids import content_digest, new_id
from field_archive.utils.time import now_ms

logger = get_logger(__name__)


class IngestPipeline:
    """Extract, record and enrich one file at a time.

    Shared by manual uploads and the delta-sync watcher. Extraction never
    raises (a failing extractor yields empty text) and enrichment failures are
    logged, so once the format is accepted a document row is always written.
    """

    def __init__(
        self,
        ledger: IngestionLedger,
        dispatcher: ExtractionDispatcher,
        enricher: Enricher | None = None,
    ) -> None:
        self.ledger = ledger
        self.dispatcher = dispatcher
        self.enricher = enricher

    def ingest_uploaded_file(
        self,
        data: bytes,
        extension: str,
        original_name: str | None = None,
    ) -> IngestedDocument:
        """Ingest a manually uploaded file. Raises UnsupportedFormat for rejected extensions."""
        fmt = format_for_extension(extension)
        name = original_name or f"upload{normalize_extension(extension)}"
        document = self._build_document(data, fmt, name)
        self.ledger.record_ingestion(document)
        DOCUMENTS_INGESTED.labels(format=fmt.value, origin="upload").inc()
        logger.info(
            "Ingested upload %s (%s chars)",
            name,
            len(document.extracted_text),
            extra=ctx(document_id=document.id, format=fmt.value),
        )
        self._enrich(document)
        return document

    def ingest_remote_item(
        self,
        item: RemoteItem,
        data: bytes,
        drive_id: str | None = None,
        folder: str | None = None,
    ) -> IngestedDocument | None:
        """Ingest a downloaded remote item; returns None if it was already in the ledger."""
        fmt = format_for_extension(item.name)
        document = self._build_document(
            data,
            fmt,
            item.name,
            remote_item_id=item.id,
            remote_drive_id=drive_id,
            remote_folder=folder,
        )
        if not self.ledger.record_ingestion(document):
            DUPLICATES_SKIPPED.inc()
            return None
        DOCUMENTS_INGESTED.labels(format=fmt.value, origin="remote").inc()
        logger.info(
            "Ingested remote file %s (%s chars)",
            item.name,
            len(document.extracted_text),
            extra=ctx(document_id=document.id, remote_item_id=item.id, format=fmt.value),
        )
        self._enrich(document)
        return document

    def reprocess(self, document_id: str) -> IngestedDocument:
        """Re-run extraction over the stored bytes and update text and timestamp."""
        document = self.ledger.get(document_id)
        if document is None:
            raise DocumentNotFound(f"Document {document_id} not found")
        if document.raw_bytes is None:
            raise ExtractionFailed(f"Document {document_id} has no stored content to re-extract")
        text = self.dispatcher.extract(document.raw_bytes, document.format, label=document.original_name)
        updated = self.ledger.update_text(document_id, text)
        logger.info(
            "Re-processed %s: extracted %s chars",
            document.original_name,
            len(text),
            extra=ctx(document_id=document_id),
        )
        return updated

    # Internal helpers -------------------------------------------------

    def _build_document(
        self,
        data: bytes,
        fmt: DocumentFormat,
        name: str,
        remote_item_id: str | None = None,
        remote_drive_id: str | None = None,
        remote_folder: str | None = None,
    ) -> IngestedDocument:
        text = self.dispatcher.extract(data, fmt, label=name)
        return IngestedDocument(
            id=new_id("doc"),
            original_name=name,
            format=fmt,
            size_bytes=len(data),
            extracted_text=text,
            processed_at=now_ms(),
            sha256=content_digest(data),
            remote_item_id=remote_item_id,
            remote_drive_id=remote_drive_id,
            remote_folder=remote_folder,
            raw_bytes=data,
        )

    def _enrich(self, document: IngestedDocument) -> None:
        if self.enricher is None or not document.extracted_text:
            return
        try:
            tags = self.enricher.categorize(document.extracted_text)
            if tags:
                self.ledger.set_tags(document.id, tags)
                document.tags = list(tags)
        except Exception as exc:
            logger.warning(
                "Categorization failed for %s (non-critical): %s",
                document.original_name,
                exc,
                extra=ctx(document_id=document.id),
            )
        try:
            receipt = self.enricher.extract_receipt(document.extracted_text)
            if receipt is not None:
                expense_id = self.ledger.record_expense(document.id, receipt)
                if expense_id:
                    logger.info(
                        "Auto-created expense from receipt: %s at %s",
                        receipt.amount,
                        receipt.vendor or "unknown vendor",
                        extra=ctx(document_id=document.id, expense_id=expense_id),
                    )
        except Exception as exc:
            logger.warning(
                "Receipt extraction failed for %s (non-critical): %s",
                document.original_name,
                exc,
                extra=ctx(document_id=document.id),
            )


__all__ = ["IngestPipeline"]
