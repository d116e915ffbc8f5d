"""
FastAPI application for the Invoice Ledger Service.

Provides REST API endpoints for:
- Health check
- Field extraction from an uploaded invoice
- Ledger export of a batch of invoices
- The ingestion queue (upload, review, edit, export)
"""

from contextlib import asynccontextmanager
from typing import List, Optional

import httpx
from fastapi import BackgroundTasks, Depends, FastAPI, File, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from . import __version__
from .config import logger, API_HOST, API_PORT, MAX_UPLOAD_SIZE_MB, ErrorCategory
from .errors import (
    ConfigurationError,
    ExportValidationError,
    ExtractionError,
    InvalidTransitionError,
    RecordBusyError,
    RecordNotFoundError,
    UnknownFieldError,
    UnknownProfileError,
)
from .exporter import PROFILES, DEFAULT_PROFILE, ExportPayload, export_documents, get_profile
from .extraction import ExtractionClient
from .extractor import extract_invoice_fields
from .ingestion import IngestionQueue
from .rules import EXPORT_RULES, get_rules_by_category
from .schemas import (
    ExportDocument,
    ExportRequest,
    ExportSettings,
    FieldUpdateRequest,
    HealthResponse,
    RawDocument,
    RecordView,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Invoice Ledger Service API starting on {API_HOST}:{API_PORT}")
    yield
    logger.info("Invoice Ledger Service API shutting down")


# ============================================================================
# FastAPI App Configuration
# ============================================================================

app = FastAPI(
    title="Invoice Ledger Service API",
    description="""
    Supplier invoice digitization and ledger export.

    ## Features

    - **Extract**: Upload an invoice PDF or image and get its structured fields
    - **Export**: Turn a validated batch into the accounting import file
    - **Documents**: Queue uploads, review and correct fields, export the batch
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Configure CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Dependencies
# ============================================================================

_queue = IngestionQueue(ExtractionClient())


def get_queue() -> IngestionQueue:
    """The process-wide ingestion queue."""
    return _queue


def get_upstream_transport() -> Optional[httpx.AsyncBaseTransport]:
    """Transport for OCR/structuring calls; None uses the network."""
    return None


def error_response(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


def payload_response(payload: ExportPayload) -> Response:
    return Response(
        content=payload.content,
        media_type=payload.media_type,
        headers={"Content-Disposition": f'attachment; filename="{payload.filename}"'},
    )


async def read_upload(file: UploadFile) -> RawDocument:
    """Read an upload into a RawDocument, enforcing the size limit."""
    content = await file.read()
    if len(content) > MAX_UPLOAD_SIZE_MB * 1024 * 1024:
        raise ValueError(f"{file.filename}: File too large (max {MAX_UPLOAD_SIZE_MB}MB)")
    if not content:
        raise ValueError(f"{file.filename}: File is empty")
    return RawDocument(
        filename=file.filename or "document",
        content=content,
        content_type=file.content_type or "application/octet-stream",
    )


# ============================================================================
# System Endpoints
# ============================================================================

@app.get("/health", response_model=HealthResponse, tags=["System"])
async def health_check() -> HealthResponse:
    """Health check endpoint for load balancers and monitoring."""
    return HealthResponse(status="ok", version=__version__)


@app.get("/profiles", tags=["System"])
async def list_profiles():
    """List the available export profiles."""
    return {
        "default": DEFAULT_PROFILE,
        "profiles": [
            {
                "name": profile.name,
                "layout": profile.layout.value,
                "format": profile.format.value,
                "assign_sequence": profile.assign_sequence,
                "description": profile.description,
            }
            for profile in PROFILES.values()
        ],
    }


@app.get("/rules", tags=["System"])
async def list_rules():
    """List the validation rules a batch must pass before export."""
    rules_by_category = {}
    for category in ErrorCategory:
        category_rules = get_rules_by_category(category)
        if category_rules:
            rules_by_category[category.value] = [
                {"code": rule.code, "description": rule.description}
                for rule in category_rules
            ]

    return {
        "total_rules": len(EXPORT_RULES),
        "rules_by_category": rules_by_category,
    }


# ============================================================================
# Extraction and Export Endpoints
# ============================================================================

@app.post("/extract", tags=["Extraction"], summary="Extract invoice fields")
async def extract(
    file: Optional[UploadFile] = File(None, description="Invoice PDF or image"),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_upstream_transport),
):
    """
    Extract structured fields from one uploaded invoice.

    If the structuring model's answer cannot be parsed, the fields are
    returned as nulls with an ``error`` message.
    """
    if file is None:
        return error_response(400, "No file provided")

    try:
        document = await read_upload(file)
    except ValueError as e:
        return error_response(400, str(e))

    fields = await extract_invoice_fields(document, transport)

    body = fields.model_dump(mode="json")
    if body.get("error") is None:
        body.pop("error", None)
    return body


@app.post("/export", tags=["Export"], summary="Export invoices to the ledger format")
async def export(request: ExportRequest):
    """
    Export a batch of invoices as a ledger import file.

    The whole batch is rejected when any invoice lacks a date or a
    non-zero total; the response lists the offending documents.
    """
    if not request.invoices:
        return error_response(400, "No invoices provided")

    profile = get_profile(request.profile)
    documents = [
        ExportDocument(
            filename=invoice.filename or invoice.numero_factura or f"invoice #{index}",
            fields=invoice.to_fields(),
        )
        for index, invoice in enumerate(request.invoices, start=1)
    ]

    try:
        payload = export_documents(documents, request.settings, profile)
    except ExportValidationError:
        raise
    except Exception as e:
        logger.exception("Export failed")
        return error_response(500, str(e) or "Unknown error")

    return payload_response(payload)


# ============================================================================
# Ingestion Queue Endpoints
# ============================================================================

@app.get("/settings", tags=["Documents"])
async def read_settings(queue: IngestionQueue = Depends(get_queue)):
    return queue.settings.model_dump(mode="json", by_alias=True)


@app.put("/settings", tags=["Documents"])
async def replace_settings(settings: ExportSettings, queue: IngestionQueue = Depends(get_queue)):
    """Replace the settings used for extraction hints and queue exports."""
    queue.settings = settings
    return queue.settings.model_dump(mode="json", by_alias=True)


@app.post("/documents", status_code=202, response_model=List[RecordView], tags=["Documents"])
async def upload_documents(
    background_tasks: BackgroundTasks,
    files: List[UploadFile] = File(..., description="Invoice PDFs or images"),
    queue: IngestionQueue = Depends(get_queue),
):
    """Queue uploaded documents; extraction runs in the background."""
    documents = []
    for file in files:
        try:
            documents.append(await read_upload(file))
        except ValueError as e:
            return error_response(400, str(e))

    records = [queue.get(queue.enqueue(document)) for document in documents]

    background_tasks.add_task(queue.process_pending)
    return [RecordView.from_record(record) for record in records]


@app.get("/documents", response_model=List[RecordView], tags=["Documents"])
async def list_documents(queue: IngestionQueue = Depends(get_queue)):
    return [RecordView.from_record(record) for record in queue.records]


@app.post("/documents/process", tags=["Documents"])
async def process_documents(queue: IngestionQueue = Depends(get_queue)):
    """Dispatch every pending document now and wait for the results."""
    dispatched = await queue.process_pending()
    return {"dispatched": dispatched}


@app.post("/documents/export", tags=["Documents"])
async def export_documents_in_queue(
    profile: str = DEFAULT_PROFILE,
    queue: IngestionQueue = Depends(get_queue),
):
    """Export every succeeded document in the queue."""
    if not queue.succeeded_records():
        return error_response(400, "No validated invoices to export")
    return payload_response(queue.export(get_profile(profile)))


@app.get("/documents/{record_id}", response_model=RecordView, tags=["Documents"])
async def get_document(record_id: str, queue: IngestionQueue = Depends(get_queue)):
    return RecordView.from_record(queue.get(record_id))


@app.patch("/documents/{record_id}", response_model=RecordView, tags=["Documents"])
async def update_document_field(
    record_id: str,
    update: FieldUpdateRequest,
    queue: IngestionQueue = Depends(get_queue),
):
    """Correct one extracted field. Values are checked at export time."""
    return RecordView.from_record(queue.update_field(record_id, update.field, update.value))


@app.post("/documents/{record_id}/retry", status_code=202, response_model=RecordView, tags=["Documents"])
async def retry_document(
    record_id: str,
    background_tasks: BackgroundTasks,
    queue: IngestionQueue = Depends(get_queue),
):
    """Re-submit a failed document for extraction."""
    new_id = queue.retry(record_id)
    background_tasks.add_task(queue.process_pending)
    return RecordView.from_record(queue.get(new_id))


@app.delete("/documents/{record_id}", status_code=204, tags=["Documents"])
async def remove_document(record_id: str, queue: IngestionQueue = Depends(get_queue)):
    queue.remove(record_id)
    return Response(status_code=204)


@app.delete("/documents", status_code=204, tags=["Documents"])
async def clear_documents(queue: IngestionQueue = Depends(get_queue)):
    queue.clear()
    return Response(status_code=204)


# ============================================================================
# Error Handlers
# ============================================================================

@app.exception_handler(ExportValidationError)
async def export_validation_handler(request: Request, exc: ExportValidationError):
    return error_response(
        422,
        str(exc),
        invalid_documents=exc.invalid_documents,
        results=[r.model_dump() for r in exc.results],
    )


@app.exception_handler(RecordNotFoundError)
async def not_found_handler(request: Request, exc: RecordNotFoundError):
    return error_response(404, str(exc))


@app.exception_handler(InvalidTransitionError)
@app.exception_handler(RecordBusyError)
async def conflict_handler(request: Request, exc: Exception):
    return error_response(409, str(exc))


@app.exception_handler(UnknownFieldError)
@app.exception_handler(UnknownProfileError)
async def bad_request_handler(request: Request, exc: Exception):
    return error_response(400, str(exc))


@app.exception_handler(ConfigurationError)
@app.exception_handler(ExtractionError)
async def upstream_error_handler(request: Request, exc: Exception):
    logger.error(f"{type(exc).__name__}: {exc}")
    return error_response(500, str(exc))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.exception(f"Unexpected error: {exc}")
    return error_response(500, "Internal server error")


# ============================================================================
# Main Entry Point
# ============================================================================

def run_server():
    """Run the API server using uvicorn."""
    import uvicorn
    uvicorn.run(app, host=API_HOST, port=API_PORT)


if __name__ == "__main__":
    run_server()
