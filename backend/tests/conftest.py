"""Test fixtures for the field archive."""

from __future__ import annotations

import io
import threading
from pathlib import Path
from typing import Callable, Iterable

import fitz
import pytest
from docx import Document
from openpyxl import Workbook
from PIL import Image

from field_archive.core.config import Settings
from field_archive.core.errors import RemoteUnavailable
from field_archive.db.sqlite import SQLiteDatabase
from field_archive.ingest.extractors import ExtractionDispatcher
from field_archive.ingest.fallback import build_pdf_chain
from field_archive.ingest.ledger import IngestionLedger
from field_archive.ingest.pipeline import IngestPipeline
from field_archive.ingest.types import ChangePage, ReceiptFields, RemoteItem


@pytest.fixture(autouse=True)
def reset_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset global singletons and environment between tests."""
    monkeypatch.setenv("FIELDARC_DB_PATH", str(tmp_path / "archive.db"))
    monkeypatch.setenv("FIELDARC_CONFIG", str(tmp_path / "missing.yaml"))
    for name in ("GRAPH_TENANT_ID", "GRAPH_CLIENT_ID", "GRAPH_CLIENT_SECRET", "SHAREPOINT_SITE_URL",
                 "ANTHROPIC_API_KEY", "WATCHER_AUTOSTART"):
        monkeypatch.delenv(f"FIELDARC_{name}", raising=False)

    from field_archive.api import dependencies as deps
    from field_archive.core.config import get_settings

    def _clear() -> None:
        get_settings.cache_clear()
        deps.get_app_settings.cache_clear()
        if deps._WATCHER is not None:
            deps._WATCHER.stop()
        if deps._DB is not None:
            deps._DB.close()
        deps._DB = None
        deps._OCR = None
        deps._PIPELINE = None
        deps._DRIVE = None
        deps._WATCHER = None

    _clear()
    yield
    _clear()


# Fake collaborators -------------------------------------------------------


class FakeOcr:
    """Records every image path it is handed; the file must exist at call time."""

    def __init__(self, results: Iterable[str | Exception] | str = "") -> None:
        self._results = [results] if isinstance(results, str) else list(results)
        self.paths: list[Path] = []
        self.sizes: list[tuple[int, int]] = []

    @property
    def calls(self) -> int:
        return len(self.paths)

    def recognize(self, image_path: Path) -> str:
        assert image_path.exists(), "OCR must receive a file that exists"
        with Image.open(image_path) as image:
            assert image.mode == "RGB"
            self.sizes.append(image.size)
        self.paths.append(image_path)
        result = self._results[min(len(self.paths), len(self._results)) - 1] if self._results else ""
        if isinstance(result, Exception):
            raise result
        return result


class FakeRasterizer:
    def __init__(self, image: bytes | None = None) -> None:
        self.image = image
        self.calls = 0

    def render_first_page(self, pdf_bytes: bytes, dpi: int) -> bytes:
        self.calls += 1
        if self.image is None:
            raise RuntimeError("rendering not supported in this environment")
        return self.image


class FakeEnricher:
    def __init__(
        self,
        tags: list[str] | Exception | None = None,
        receipt: ReceiptFields | Exception | None = None,
    ) -> None:
        self.tags = tags if tags is not None else []
        self.receipt = receipt
        self.categorized: list[str] = []
        self.receipts_requested: list[str] = []

    def categorize(self, text: str) -> list[str]:
        self.categorized.append(text)
        if isinstance(self.tags, Exception):
            raise self.tags
        return list(self.tags)

    def extract_receipt(self, text: str) -> ReceiptFields | None:
        self.receipts_requested.append(text)
        if isinstance(self.receipt, Exception):
            raise self.receipt
        return self.receipt


class FakeDrive:
    """In-memory remote drive with scripted change pages."""

    def __init__(self, site_id: str = "site-1", drive_id: str = "drive-1") -> None:
        self.site_id = site_id
        self.drive_id = drive_id
        self.pages: list[ChangePage | Exception] = []
        self.default_page: ChangePage = ChangePage(entries=[], next_cursor="delta-default")
        self.files: dict[str, bytes | Exception] = {}
        self.resolve_error: Exception | None = None
        self.cursors_seen: list[str | None] = []
        self.downloads: list[str] = []
        self.block_first_listing: threading.Event | None = None
        self.listing_entered = threading.Event()
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    @property
    def list_calls(self) -> int:
        return len(self.cursors_seen)

    def resolve_drive(self) -> tuple[str, str]:
        if self.resolve_error is not None:
            raise self.resolve_error
        return self.site_id, self.drive_id

    def list_changes(self, cursor: str | None) -> ChangePage:
        with self._lock:
            self.cursors_seen.append(cursor)
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            first = len(self.cursors_seen) == 1
        try:
            self.listing_entered.set()
            if first and self.block_first_listing is not None:
                self.block_first_listing.wait(timeout=5)
            outcome = self.pages.pop(0) if self.pages else self.default_page
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        finally:
            with self._lock:
                self.in_flight -= 1

    def download(self, item: RemoteItem) -> bytes:
        self.downloads.append(item.id)
        payload = self.files.get(item.id)
        if payload is None:
            raise RemoteUnavailable(f"no such item {item.id}", provider="fake")
        if isinstance(payload, Exception):
            raise payload
        return payload

    def test_connection(self) -> dict[str, object]:
        return {"connected": True, "site_id": self.site_id, "drive_id": self.drive_id}


# Fixtures -----------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(db_path=tmp_path / "archive.db", min_embedded_image_bytes=1024)


@pytest.fixture
def db(settings: Settings) -> SQLiteDatabase:
    database = SQLiteDatabase(settings.db_path)
    database.ensure_schema()
    yield database
    database.close()


@pytest.fixture
def ledger(db: SQLiteDatabase) -> IngestionLedger:
    return IngestionLedger(db)


@pytest.fixture
def ocr() -> FakeOcr:
    return FakeOcr("RECEIPT Cafe Total 12.50")


@pytest.fixture
def rasterizer() -> FakeRasterizer:
    return FakeRasterizer()


@pytest.fixture
def make_pipeline(
    settings: Settings,
    ledger: IngestionLedger,
    rasterizer: FakeRasterizer,
) -> Callable[..., IngestPipeline]:
    def _make(ocr: FakeOcr, enricher: FakeEnricher | None = None) -> IngestPipeline:
        chain = build_pdf_chain(settings, ocr=ocr, rasterizer=rasterizer)
        return IngestPipeline(ledger, ExtractionDispatcher.default(chain, ocr), enricher=enricher)

    return _make


@pytest.fixture
def pipeline(make_pipeline: Callable[..., IngestPipeline], ocr: FakeOcr) -> IngestPipeline:
    return make_pipeline(ocr)


@pytest.fixture
def fake_drive() -> FakeDrive:
    return FakeDrive()


# Document builders --------------------------------------------------------


@pytest.fixture
def make_jpeg() -> Callable[..., bytes]:
    def _make(size: tuple[int, int] = (48, 48), noise: bool = False) -> bytes:
        if noise:
            image = Image.effect_noise(size, 80).convert("RGB")
        else:
            image = Image.new("RGB", size, color=(240, 240, 230))
        buffer = io.BytesIO()
        image.save(buffer, format="JPEG", quality=95)
        return buffer.getvalue()

    return _make


@pytest.fixture
def make_png() -> Callable[[], bytes]:
    def _make() -> bytes:
        buffer = io.BytesIO()
        Image.new("L", (32, 32), color=255).save(buffer, format="PNG")
        return buffer.getvalue()

    return _make


@pytest.fixture
def make_text_pdf() -> Callable[[list[str]], bytes]:
    def _make(lines: list[str]) -> bytes:
        doc = fitz.open()
        page = doc.new_page()
        for index, line in enumerate(lines):
            page.insert_text((50, 60 + index * 16), line, fontsize=10)
        data = doc.tobytes()
        doc.close()
        return data

    return _make


@pytest.fixture
def make_docx() -> Callable[[list[str]], bytes]:
    def _make(paragraphs: list[str]) -> bytes:
        document = Document()
        for paragraph in paragraphs:
            document.add_paragraph(paragraph)
        buffer = io.BytesIO()
        document.save(buffer)
        return buffer.getvalue()

    return _make


@pytest.fixture
def make_xlsx() -> Callable[[dict[str, list[list[object]]]], bytes]:
    def _make(sheets: dict[str, list[list[object]]]) -> bytes:
        workbook = Workbook()
        workbook.remove(workbook.active)
        for title, rows in sheets.items():
            sheet = workbook.create_sheet(title)
            for row in rows:
                sheet.append(row)
        buffer = io.BytesIO()
        workbook.save(buffer)
        return buffer.getvalue()

    return _make


def remote_file(item_id: str, name: str, **kwargs: object) -> RemoteItem:
    return RemoteItem(id=item_id, name=name, size=kwargs.pop("size", 10), **kwargs)  # type: ignore[arg-type]


@pytest.fixture
def remote() -> Callable[..., RemoteItem]:
    return remote_file


@pytest.fixture
def fakes() -> dict[str, type]:
    return {
        "FakeOcr": FakeOcr,
        "FakeRasterizer": FakeRasterizer,
        "FakeEnricher": FakeEnricher,
        "FakeDrive": FakeDrive,
    }
