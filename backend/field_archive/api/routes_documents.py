"""Document upload and re-extraction routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from starlette.concurrency import run_in_threadpool

from field_archive.api.dependencies import get_ingest_pipeline, get_ledger
from field_archive.core.errors import DocumentNotFound, ExtractionFailed, UnsupportedFormat
from field_archive.ingest.ledger import IngestionLedger
from field_archive.ingest.pipeline import IngestPipeline
from field_archive.ingest.types import normalize_extension
from field_archive.models.dto import DocumentResponse, ExpenseResponse

router = APIRouter()


@router.post("/upload", response_model=DocumentResponse, summary="Upload and ingest a file")
async def upload_document(
    file: UploadFile = File(...),
    pipeline: IngestPipeline = Depends(get_ingest_pipeline),
) -> DocumentResponse:
    if not file.filename:
        raise HTTPException(status_code=400, detail="No file uploaded")
    data = await file.read()
    try:
        document = await run_in_threadpool(
            pipeline.ingest_uploaded_file,
            data,
            normalize_extension(file.filename),
            file.filename,
        )
    except UnsupportedFormat as exc:
        raise HTTPException(status_code=415, detail=str(exc)) from exc
    return DocumentResponse.from_document(document)


@router.get(
    "/remote/{remote_item_id}",
    response_model=DocumentResponse,
    summary="Fetch the document ingested from a remote item",
)
def get_remote_document(remote_item_id: str, ledger: IngestionLedger = Depends(get_ledger)) -> DocumentResponse:
    document = ledger.find_by_remote_item(remote_item_id)
    if document is None:
        raise HTTPException(status_code=404, detail="Remote item not ingested")
    return DocumentResponse.from_document(document)


@router.get("/{document_id}/expenses", response_model=list[ExpenseResponse], summary="Expenses from a receipt")
def list_document_expenses(document_id: str, ledger: IngestionLedger = Depends(get_ledger)) -> list[ExpenseResponse]:
    if ledger.get(document_id) is None:
        raise HTTPException(status_code=404, detail="Document not found")
    return [ExpenseResponse(**dict(row)) for row in ledger.expenses_for(document_id)]


@router.get("/{document_id}", response_model=DocumentResponse, summary="Fetch one document")
def get_document(document_id: str, ledger: IngestionLedger = Depends(get_ledger)) -> DocumentResponse:
    document = ledger.get(document_id)
    if document is None:
        raise HTTPException(status_code=404, detail="Document not found")
    return DocumentResponse.from_document(document)


@router.post("/{document_id}/reprocess", response_model=DocumentResponse, summary="Re-extract text")
def reprocess_document(
    document_id: str,
    pipeline: IngestPipeline = Depends(get_ingest_pipeline),
) -> DocumentResponse:
    try:
        document = pipeline.reprocess(document_id)
    except DocumentNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ExtractionFailed as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return DocumentResponse.from_document(document)
