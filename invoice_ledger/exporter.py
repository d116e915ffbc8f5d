"""
Export engine: turns validated invoice documents into a ledger payload.

The export runs in three steps:
1. Validate the whole batch (all-or-nothing, see validator.py)
2. Normalize every document into a ledger row
3. Serialize the rows with the selected output profile

The transform is synchronous and deterministic; all failure modes are
raised from step 1.
"""

from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional

from .config import logger
from .errors import UnknownProfileError
from .normalizers import (
    deducibility_code,
    format_ledger_date,
    ledger_side_flag,
    normalize_account_code,
    operation_type_code,
    parse_number,
    round2,
    vat_percentage,
)
from .schemas import (
    ExportDocument,
    ExportFormat,
    ExportLayout,
    ExportSettings,
    IngestionRecord,
    LedgerRow,
    OutputProfile,
    RecordStatus,
    SimplifiedRow,
)
from .serializers import LEDGER_COLUMNS, SIMPLIFIED_COLUMNS, to_delimited, to_spreadsheet
from .validator import ensure_exportable

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


# ============================================================================
# Output Profiles
# ============================================================================

PROFILES: dict[str, OutputProfile] = {
    profile.name: profile
    for profile in [
        OutputProfile(
            name="contasol-csv",
            layout=ExportLayout.LEDGER,
            format=ExportFormat.DELIMITED,
            assign_sequence=True,
            line_terminator="\r\n",
            decimal_comma=True,
            filename="IVS.xls",
            media_type="application/vnd.ms-excel; charset=utf-8",
            description="26-column VAT-received ledger as semicolon-separated text",
        ),
        OutputProfile(
            name="contasol-xlsx",
            layout=ExportLayout.LEDGER,
            format=ExportFormat.SPREADSHEET,
            assign_sequence=False,
            filename="IVS.xlsx",
            media_type=XLSX_MEDIA_TYPE,
            description="26-column VAT-received ledger workbook; the importer numbers the rows",
        ),
        OutputProfile(
            name="automation-xlsx",
            layout=ExportLayout.SIMPLIFIED,
            format=ExportFormat.SPREADSHEET,
            currency_suffix="€",
            filename="REMESA_CONTASOL_{date}.xlsx",
            media_type=XLSX_MEDIA_TYPE,
            description="10-column summary workbook for the automation workflow",
        ),
        OutputProfile(
            name="automation-csv",
            layout=ExportLayout.SIMPLIFIED,
            format=ExportFormat.DELIMITED,
            line_terminator="\n",
            decimal_comma=True,
            filename="REMESA_CONTASOL_{date}.csv",
            media_type="text/csv; charset=utf-8",
            description="10-column summary as semicolon-separated text",
        ),
    ]
}

DEFAULT_PROFILE = "contasol-csv"


def get_profile(name: str) -> OutputProfile:
    """Look up a registered output profile by name."""
    try:
        return PROFILES[name]
    except KeyError:
        raise UnknownProfileError(
            f"Unknown export profile '{name}'. Available: {', '.join(sorted(PROFILES))}"
        ) from None


@dataclass(frozen=True)
class ExportPayload:
    """Serialized export ready to be written or returned over HTTP."""
    content: bytes
    filename: str
    media_type: str
    row_count: int


# ============================================================================
# Documents
# ============================================================================

def documents_from_records(records: Iterable[IngestionRecord]) -> list[ExportDocument]:
    """Export candidates: succeeded records with fields, in queue order."""
    return [
        ExportDocument(filename=record.filename, fields=record.fields)
        for record in records
        if record.status is RecordStatus.SUCCEEDED and record.fields is not None
    ]


def _amounts(document: ExportDocument) -> tuple[float, float, float]:
    fields = document.fields
    base = round2(parse_number(fields.base_imponible) or 0.0)
    vat_amount = round2(parse_number(fields.cuota_iva) or 0.0)
    total = round2(parse_number(fields.total) or 0.0)
    return base, vat_amount, total


def _text(value) -> str:
    return "" if value is None else str(value).strip()


# ============================================================================
# Row Mapping
# ============================================================================

def build_ledger_row(
    document: ExportDocument,
    settings: ExportSettings,
    sequence_id: Optional[int] = None,
) -> LedgerRow:
    """Normalize one document into a 26-column ledger row."""
    fields = document.fields
    base, vat_amount, total = _amounts(document)

    return LedgerRow(
        sequence_id=sequence_id,
        fecha=format_ledger_date(fields.fecha),
        account_code=normalize_account_code(
            fields.codigo_proveedor, settings.provider_account_code_default
        ),
        invoice_number=_text(fields.numero_factura),
        supplier_name=_text(fields.proveedor),
        tax_id=_text(fields.cif_proveedor),
        operation_type=operation_type_code(),
        deducibility=deducibility_code(settings.deducibility_mode),
        base_1=base,
        vat_pct_1=vat_percentage(base, vat_amount),
        vat_amount_1=vat_amount,
        total=total,
    )


def build_ledger_rows(
    documents: list[ExportDocument],
    settings: ExportSettings,
    assign_sequence: bool = True,
) -> list[LedgerRow]:
    return [
        build_ledger_row(document, settings, index if assign_sequence else None)
        for index, document in enumerate(documents, start=1)
    ]


def build_simplified_row(document: ExportDocument, settings: ExportSettings) -> SimplifiedRow:
    """Normalize one document into the 10-column automation row."""
    fields = document.fields
    base, vat_amount, total = _amounts(document)

    return SimplifiedRow(
        fecha=format_ledger_date(fields.fecha),
        supplier_name=_text(fields.proveedor),
        tax_id=_text(fields.cif_proveedor),
        invoice_number=_text(fields.numero_factura),
        base=base,
        vat_pct=vat_percentage(base, vat_amount),
        vat_amount=vat_amount,
        total=total,
        account_code=normalize_account_code(
            fields.codigo_proveedor, settings.provider_account_code_default
        ),
        side=ledger_side_flag(settings.ledger_side),
    )


def build_simplified_rows(documents: list[ExportDocument], settings: ExportSettings) -> list[SimplifiedRow]:
    return [build_simplified_row(document, settings) for document in documents]


# ============================================================================
# Export
# ============================================================================

def export_documents(
    documents: list[ExportDocument],
    settings: ExportSettings,
    profile: OutputProfile,
    export_date: Optional[date] = None,
) -> ExportPayload:
    """
    Validate, normalize and serialize a batch of documents.

    Args:
        documents: Documents to export, in output order
        settings: Export settings for the whole batch
        profile: Output profile selecting layout and format
        export_date: Date used in dated filenames (defaults to today)

    Returns:
        ExportPayload with the serialized content

    Raises:
        ExportValidationError: if any document lacks a date or a non-zero total
    """
    ensure_exportable(documents)

    if profile.layout is ExportLayout.LEDGER:
        rows = [row.as_list() for row in build_ledger_rows(documents, settings, profile.assign_sequence)]
        columns = LEDGER_COLUMNS
    else:
        rows = [row.as_list() for row in build_simplified_rows(documents, settings)]
        columns = SIMPLIFIED_COLUMNS

    if profile.format is ExportFormat.DELIMITED:
        content = to_delimited(rows, columns, profile)
    else:
        content = to_spreadsheet(rows, columns, profile)

    filename = profile.filename.format(date=(export_date or date.today()).isoformat())
    logger.info(f"Exported {len(rows)} document(s) with profile '{profile.name}' ({len(content)} bytes)")

    return ExportPayload(
        content=content,
        filename=filename,
        media_type=profile.media_type,
        row_count=len(rows),
    )
