"""
Pydantic models for invoice documents, extracted fields and ledger exports.

This module defines the core data structures used throughout the Invoice Ledger Service:
- RawDocument and IngestionRecord for documents moving through extraction
- ExtractedInvoiceFields for the structured data returned by the extraction service
- ExportSettings and OutputProfile for configuring a ledger export
- LedgerRow and SimplifiedRow for the rows written to the export payload
"""

from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .errors import InvalidTransitionError


# ============================================================================
# Settings Enums
# ============================================================================

class _LabelledEnum(str, Enum):
    """
    String enum that also accepts the labels shown in the back-office UI.

    Lookup is case-insensitive on both the value and the member name.
    """

    @classmethod
    def _labels(cls) -> dict[str, str]:
        return {}

    @classmethod
    def _missing_(cls, value: object):
        if not isinstance(value, str):
            return None
        key = value.strip().lower()
        for member in cls:
            if key in (member.value, member.name.lower()):
                return member
        target = cls._labels().get(key)
        if target is not None:
            return cls(target)
        return None


class DocumentType(_LabelledEnum):
    """Kind of invoice document, passed to the extraction service as a hint."""
    ORDINARY = "ordinary"
    SIMPLIFIED = "simplified"
    RECTIFYING = "rectifying"

    @classmethod
    def _labels(cls) -> dict[str, str]:
        return {
            "factura ordinaria": "ordinary",
            "ticket / simplificada": "simplified",
            "ticket": "simplified",
            "simplificada": "simplified",
            "factura rectificativa": "rectifying",
            "rectificativa": "rectifying",
        }


class Deducibility(_LabelledEnum):
    """Whether VAT on the purchase can be reclaimed."""
    FULL = "full"
    NONE = "none"
    PRORATED = "prorated"

    @classmethod
    def _labels(cls) -> dict[str, str]:
        return {
            "100% deducible": "full",
            "deducible": "full",
            "no deducible": "none",
            "prorrata": "prorated",
            "50%": "prorated",
        }


class LedgerSide(_LabelledEnum):
    """Side of the ledger the supplier account is booked on."""
    DEBIT = "debit"
    CREDIT = "credit"

    @classmethod
    def _labels(cls) -> dict[str, str]:
        return {"debe": "debit", "d": "debit", "haber": "credit", "h": "credit"}


class ExportSettings(BaseModel):
    """
    Global, user-supplied configuration for extraction hints and exports.

    Immutable so that one export call always sees a consistent view.
    """
    provider_account_code_default: Optional[str] = Field(
        None,
        alias="providerAccountCodeDefault",
        description="Account code used when an invoice carries none",
    )
    document_type: DocumentType = Field(
        DocumentType.ORDINARY,
        alias="documentType",
        description="Kind of invoice documents in the batch",
    )
    deducibility_mode: Deducibility = Field(
        Deducibility.FULL,
        alias="deducibilityMode",
        description="VAT deducibility applied to every exported row",
    )
    ledger_side: LedgerSide = Field(
        LedgerSide.DEBIT,
        alias="ledgerSide",
        description="Debit/credit flag for the simplified export",
    )

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {
                    "providerAccountCodeDefault": "4000000123",
                    "documentType": "ordinary",
                    "deducibilityMode": "full",
                    "ledgerSide": "debit",
                }
            ]
        },
    )


# ============================================================================
# Documents and Extracted Fields
# ============================================================================

class RawDocument(BaseModel):
    """An uploaded invoice file (PDF or image). Never mutated."""
    filename: str = Field(..., min_length=1, description="Original upload filename")
    content: bytes = Field(..., repr=False, description="Raw file bytes")
    content_type: str = Field("application/pdf", description="MIME type of the upload")

    model_config = ConfigDict(frozen=True)

    @property
    def is_pdf(self) -> bool:
        return self.content_type == "application/pdf" or self.filename.lower().endswith(".pdf")

    @property
    def size(self) -> int:
        return len(self.content)


class ExtractedInvoiceFields(BaseModel):
    """
    Structured invoice data returned by the extraction service.

    Every field is nullable. Values are not validated after user edits;
    the export engine coerces them when it builds ledger rows.
    """
    fecha: Optional[str] = Field(None, description="Invoice date, DD/MM/YYYY")
    numero_factura: Optional[str] = Field(None, description="Invoice number")
    base_imponible: Optional[Union[float, str]] = Field(None, description="Taxable base")
    cuota_iva: Optional[Union[float, str]] = Field(None, description="VAT amount")
    total: Optional[Union[float, str]] = Field(None, description="Invoice total")
    proveedor: Optional[str] = Field(None, description="Supplier name")
    cif_proveedor: Optional[str] = Field(None, description="Supplier tax id")
    codigo_proveedor: Optional[str] = Field(None, description="Raw supplier account code")
    error: Optional[str] = Field(None, description="Set when structuring the document failed")

    model_config = ConfigDict(
        extra="ignore",
        coerce_numbers_to_str=True,
        json_schema_extra={
            "examples": [
                {
                    "fecha": "15/01/2024",
                    "numero_factura": "F-2024-0012",
                    "base_imponible": 100.0,
                    "cuota_iva": 21.0,
                    "total": 121.0,
                    "proveedor": "Suministros Levante SL",
                    "cif_proveedor": "B12345678",
                    "codigo_proveedor": "400.12",
                }
            ]
        },
    )

    @classmethod
    def empty(cls, error: Optional[str] = None) -> "ExtractedInvoiceFields":
        """All-null fields, optionally carrying an error marker."""
        return cls(error=error)


# Fields a user may overwrite after extraction
EDITABLE_FIELDS: frozenset[str] = frozenset({
    "fecha",
    "numero_factura",
    "base_imponible",
    "cuota_iva",
    "total",
    "proveedor",
    "cif_proveedor",
    "codigo_proveedor",
})


# ============================================================================
# Ingestion Records
# ============================================================================

class RecordStatus(str, Enum):
    """Lifecycle states of a document in the ingestion queue."""
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


# Forward-only state machine
ALLOWED_TRANSITIONS: dict[RecordStatus, frozenset[RecordStatus]] = {
    RecordStatus.PENDING: frozenset({RecordStatus.PROCESSING}),
    RecordStatus.PROCESSING: frozenset({RecordStatus.SUCCEEDED, RecordStatus.FAILED}),
    RecordStatus.SUCCEEDED: frozenset(),
    RecordStatus.FAILED: frozenset(),
}


class IngestionRecord(BaseModel):
    """A document tracked by the ingestion queue."""
    id: str = Field(..., description="Opaque record identifier")
    document: RawDocument
    status: RecordStatus = RecordStatus.PENDING
    fields: Optional[ExtractedInvoiceFields] = None
    error: Optional[str] = Field(None, description="Human-readable failure reason")
    sequence: int = Field(..., ge=1, description="Submission position in the queue")

    @property
    def filename(self) -> str:
        return self.document.filename

    def transition(self, target: RecordStatus) -> None:
        """Move to ``target``, refusing anything but a forward step."""
        if target not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"{self.id}: cannot move from {self.status.value} to {target.value}"
            )
        self.status = target


class RecordView(BaseModel):
    """Serializable view of an ingestion record (without the file bytes)."""
    id: str
    filename: str
    size: int
    status: RecordStatus
    fields: Optional[ExtractedInvoiceFields] = None
    error: Optional[str] = None

    @classmethod
    def from_record(cls, record: IngestionRecord) -> "RecordView":
        return cls(
            id=record.id,
            filename=record.filename,
            size=record.document.size,
            status=record.status,
            fields=record.fields,
            error=record.error,
        )


# ============================================================================
# Export Rows
# ============================================================================

class LedgerRow(BaseModel):
    """
    One row of the 26-column VAT-received ledger import.

    Field order is the column order of the import schema.
    """
    sequence_id: Optional[int] = None
    book_id: int = 1
    fecha: Optional[str] = None
    account_code: str
    invoice_number: str = ""
    supplier_name: str = ""
    tax_id: str = ""
    operation_type: int = 0
    deducibility: int = 0
    base_1: float = 0.0
    base_2: float = 0.0
    base_3: float = 0.0
    vat_pct_1: float = 0.0
    vat_pct_2: float = 0.0
    vat_pct_3: float = 0.0
    surcharge_pct_1: float = 0.0
    surcharge_pct_2: float = 0.0
    surcharge_pct_3: float = 0.0
    vat_amount_1: float = 0.0
    vat_amount_2: float = 0.0
    vat_amount_3: float = 0.0
    surcharge_amount_1: float = 0.0
    surcharge_amount_2: float = 0.0
    surcharge_amount_3: float = 0.0
    total: float = 0.0
    goods_flag: int = 0

    def as_list(self) -> list[Any]:
        return [getattr(self, name) for name in type(self).model_fields]


class SimplifiedRow(BaseModel):
    """Reduced, human-readable row for the automation export."""
    fecha: Optional[str] = None
    supplier_name: str = ""
    tax_id: str = ""
    invoice_number: str = ""
    base: float = 0.0
    vat_pct: float = 0.0
    vat_amount: float = 0.0
    total: float = 0.0
    account_code: str
    side: str

    def as_list(self) -> list[Any]:
        return [getattr(self, name) for name in type(self).model_fields]


class ExportDocument(BaseModel):
    """A named set of invoice fields handed to the export engine."""
    filename: str
    fields: ExtractedInvoiceFields


class ExportLayout(str, Enum):
    LEDGER = "ledger"
    SIMPLIFIED = "simplified"


class ExportFormat(str, Enum):
    DELIMITED = "delimited"
    SPREADSHEET = "spreadsheet"


class OutputProfile(BaseModel):
    """How a validated batch is laid out and serialized."""
    name: str
    layout: ExportLayout = ExportLayout.LEDGER
    format: ExportFormat = ExportFormat.DELIMITED
    assign_sequence: bool = Field(
        True,
        description="Number rows from 1; when False the importer assigns ids",
    )
    include_headers: bool = True
    line_terminator: str = "\r\n"
    decimal_comma: bool = True
    currency_suffix: Optional[str] = None
    filename: str = "IVS.xls"
    media_type: str = "application/vnd.ms-excel; charset=utf-8"
    description: str = ""

    model_config = ConfigDict(frozen=True)


# ============================================================================
# Validation Results
# ============================================================================

class DocumentValidationResult(BaseModel):
    """Export validation result for a single document."""
    filename: str = Field(..., description="Filename of the validated document")
    is_valid: bool
    errors: list[str] = Field(
        default_factory=list,
        description="List of validation error codes (e.g., 'missing_field:fecha')",
    )


class ExportValidationSummary(BaseModel):
    """Aggregated export validation statistics for a batch."""
    total_documents: int = Field(..., ge=0)
    valid_documents: int = Field(..., ge=0)
    invalid_documents: int = Field(..., ge=0)
    error_counts: dict[str, int] = Field(default_factory=dict)


# ============================================================================
# API Request/Response Models
# ============================================================================

class ExportInvoice(BaseModel):
    """One invoice in an /export request body."""
    filename: Optional[str] = None
    fecha: Optional[str] = None
    numero_factura: Optional[str] = None
    base_imponible: Optional[Union[float, str]] = None
    cuota_iva: Optional[Union[float, str]] = None
    total: Optional[Union[float, str]] = None
    proveedor: Optional[str] = None
    cif_proveedor: Optional[str] = None
    codigo_proveedor: Optional[str] = None

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    def to_fields(self) -> ExtractedInvoiceFields:
        return ExtractedInvoiceFields(**self.model_dump(exclude={"filename"}))


class ExportRequest(BaseModel):
    """Request body for the /export endpoint."""
    invoices: Optional[list[ExportInvoice]] = None
    settings: ExportSettings = Field(default_factory=ExportSettings)
    profile: str = "contasol-csv"

    model_config = {
        "json_schema_extra": {
            "examples": [{
                "invoices": [{
                    "filename": "factura_001.pdf",
                    "fecha": "15/01/2024",
                    "numero_factura": "F-001",
                    "base_imponible": 100.0,
                    "cuota_iva": 21.0,
                    "total": 121.0,
                    "proveedor": "Suministros Levante SL",
                    "cif_proveedor": "B12345678",
                }],
                "settings": {"deducibilityMode": "full"},
                "profile": "contasol-csv",
            }]
        }
    }


class FieldUpdateRequest(BaseModel):
    """Request body for editing one extracted field."""
    field: str
    value: Any = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
