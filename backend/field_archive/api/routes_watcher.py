"""Delta-sync watcher control routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from field_archive.api.dependencies import get_remote_drive, get_watcher
from field_archive.core.errors import ConfigurationError, FieldArchiveError
from field_archive.ingest.protocols import RemoteDrive
from field_archive.ingest.watcher import DeltaSyncWatcher
from field_archive.models.dto import (
    ConnectionTestResponse,
    SyncResponse,
    WatcherActionResponse,
    WatcherStatusResponse,
)

router = APIRouter()


def _watcher() -> DeltaSyncWatcher:
    try:
        return get_watcher()
    except ConfigurationError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc


def _drive() -> RemoteDrive:
    try:
        return get_remote_drive()
    except ConfigurationError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc


@router.get("/status", response_model=WatcherStatusResponse, summary="Watcher status")
def watcher_status(watcher: DeltaSyncWatcher = Depends(_watcher)) -> WatcherStatusResponse:
    return WatcherStatusResponse.from_status(watcher.status())


@router.post("/start", response_model=WatcherActionResponse, summary="Start the watcher")
def start_watcher(watcher: DeltaSyncWatcher = Depends(_watcher)) -> WatcherActionResponse:
    try:
        watcher.start()
    except FieldArchiveError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return WatcherActionResponse(
        message="Watcher started",
        status=WatcherStatusResponse.from_status(watcher.status()),
    )


@router.post("/stop", response_model=WatcherActionResponse, summary="Stop the watcher")
def stop_watcher(watcher: DeltaSyncWatcher = Depends(_watcher)) -> WatcherActionResponse:
    watcher.stop()
    return WatcherActionResponse(
        message="Watcher stopped",
        status=WatcherStatusResponse.from_status(watcher.status()),
    )


@router.post("/sync", response_model=SyncResponse, summary="Run a full resync now")
def manual_sync(watcher: DeltaSyncWatcher = Depends(_watcher)) -> SyncResponse:
    result = watcher.trigger_manual_sync()
    message = "Sync completed" if result.ok else "Sync failed"
    return SyncResponse.build(message, result, watcher.status())


@router.post("/test", response_model=ConnectionTestResponse, summary="Test the drive connection")
def test_connection(drive: RemoteDrive = Depends(_drive)) -> ConnectionTestResponse:
    return ConnectionTestResponse(**drive.test_connection())
