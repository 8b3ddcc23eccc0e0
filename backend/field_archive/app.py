"""FastAPI application setup for the field archive ingestion service."""

from __future__ import annotations

import threading

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from field_archive.api.dependencies import (
    get_app_settings,
    get_database,
    get_ingest_pipeline,
    get_watcher,
    peek_watcher,
)
from field_archive.api.routes_admin import router as admin_router
from field_archive.api.routes_documents import router as documents_router
from field_archive.api.routes_watcher import router as watcher_router
from field_archive.core.errors import FieldArchiveError
from field_archive.core.logging import configure_logging, get_logger

configure_logging()
logger = get_logger(__name__)

app = FastAPI(
    title="Field Archive",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://127.0.0.1:5173",
        "http://localhost:5173",
    ],
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

app.include_router(documents_router, prefix="/documents", tags=["documents"])
app.include_router(watcher_router, prefix="/watcher", tags=["watcher"])
app.include_router(admin_router, prefix="", tags=["admin"])


def _autostart_watcher() -> None:
    try:
        get_watcher().start()
    except FieldArchiveError as exc:
        logger.error("Watcher autostart failed: %s", exc)


@app.on_event("startup")
async def startup() -> None:
    """Warm up core singletons and optionally start the watcher."""
    settings = get_app_settings()
    get_database()
    get_ingest_pipeline()
    if settings.watcher_autostart:
        if settings.graph_configured:
            # start() polls once before returning; keep that off the event loop
            threading.Thread(target=_autostart_watcher, name="watcher-autostart", daemon=True).start()
        else:
            logger.warning("Watcher autostart requested but Microsoft Graph is not configured")


@app.on_event("shutdown")
async def shutdown() -> None:
    watcher = peek_watcher()
    if watcher is not None:
        watcher.stop()


@app.get("/health", tags=["admin"])
def health() -> dict[str, bool]:
    """Simple liveness check."""
    return {"ok": True}
