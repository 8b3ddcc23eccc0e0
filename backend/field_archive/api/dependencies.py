"""Shared FastAPI dependencies."""

from __future__ import annotations

import threading
from functools import lru_cache

from field_archive.core.config import Settings, get_settings
from field_archive.core.logging import get_logger
from field_archive.db.sqlite import SQLiteDatabase
from field_archive.ingest.extractors import ExtractionDispatcher
from field_archive.ingest.fallback import build_pdf_chain
from field_archive.ingest.ledger import IngestionLedger
from field_archive.ingest.ocr import PyMuPDFRasterizer, TesseractOcrEngine
from field_archive.ingest.pipeline import IngestPipeline
from field_archive.ingest.protocols import Enricher, OcrEngine, RemoteDrive
from field_archive.ingest.watcher import DeltaSyncWatcher
from field_archive.integrations.enrichment import ClaudeEnricher
from field_archive.integrations.graph import GraphDriveClient

logger = get_logger(__name__)

_DB: SQLiteDatabase | None = None
_OCR: OcrEngine | None = None
_PIPELINE: IngestPipeline | None = None
_DRIVE: RemoteDrive | None = None
_WATCHER: DeltaSyncWatcher | None = None
_WATCHER_LOCK = threading.Lock()


@lru_cache(maxsize=1)
def get_app_settings() -> Settings:
    return get_settings()


def get_database() -> SQLiteDatabase:
    global _DB
    if _DB is None:
        settings = get_app_settings()
        db = SQLiteDatabase(settings.db_path)
        db.ensure_schema()
        _DB = db
    return _DB


def get_ledger() -> IngestionLedger:
    return IngestionLedger(get_database())


def get_ocr_engine() -> OcrEngine:
    global _OCR
    if _OCR is None:
        settings = get_app_settings()
        _OCR = TesseractOcrEngine(language=settings.ocr_language, timeout=settings.ocr_timeout_seconds)
    return _OCR


def get_enricher() -> Enricher | None:
    settings = get_app_settings()
    if not settings.enrichment_configured:
        return None
    return ClaudeEnricher.from_settings(settings)


def get_ingest_pipeline() -> IngestPipeline:
    global _PIPELINE
    if _PIPELINE is None:
        settings = get_app_settings()
        ocr = get_ocr_engine()
        chain = build_pdf_chain(settings, ocr=ocr, rasterizer=PyMuPDFRasterizer())
        enricher = get_enricher()
        if enricher is None:
            logger.info("Enrichment disabled: no Anthropic API key configured")
        _PIPELINE = IngestPipeline(
            ledger=get_ledger(),
            dispatcher=ExtractionDispatcher.default(chain, ocr),
            enricher=enricher,
        )
    return _PIPELINE


def get_remote_drive() -> RemoteDrive:
    """Raises ConfigurationError when Graph credentials are missing."""
    global _DRIVE
    if _DRIVE is None:
        _DRIVE = GraphDriveClient.from_settings(get_app_settings())
    return _DRIVE


def get_watcher() -> DeltaSyncWatcher:
    """The process-wide watcher; the autostart thread and request threads share one instance."""
    global _WATCHER
    if _WATCHER is not None:
        return _WATCHER
    with _WATCHER_LOCK:
        if _WATCHER is None:
            settings = get_app_settings()
            _WATCHER = DeltaSyncWatcher(
                drive=get_remote_drive(),
                pipeline=get_ingest_pipeline(),
                watch_folder=settings.sharepoint_watch_folder,
                poll_interval=settings.poll_interval_seconds,
                inter_file_delay=settings.inter_file_delay_seconds,
            )
        return _WATCHER


def peek_watcher() -> DeltaSyncWatcher | None:
    """The watcher if one was built, without building it."""
    return _WATCHER


__all__ = [
    "get_app_settings",
    "get_database",
    "get_enricher",
    "get_ingest_pipeline",
    "get_ledger",
    "get_ocr_engine",
    "get_remote_drive",
    "get_watcher",
    "peek_watcher",
]
