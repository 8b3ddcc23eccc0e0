"""Administrative routes for the field archive."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response

from field_archive.api.dependencies import get_ledger
from field_archive.core.metrics import metrics_response
from field_archive.ingest.ledger import IngestionLedger
from field_archive.models.dto import ArchiveStatsResponse

router = APIRouter()


@router.get("/stats", response_model=ArchiveStatsResponse, summary="Archive totals")
def archive_stats(ledger: IngestionLedger = Depends(get_ledger)) -> ArchiveStatsResponse:
    return ArchiveStatsResponse(documents=ledger.count())


@router.get("/metrics", summary="Prometheus metrics")
def metrics() -> Response:
    return metrics_response()


__all__ = ["router"]
