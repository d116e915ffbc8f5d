"""
Command-line interface for the Invoice Ledger Service.

Provides the main commands:
- extract: Send invoice documents to the extraction service, save the fields as JSON
- export: Turn reviewed invoice JSON into a ledger import file
- full-run: Extract and export in one step
"""

import asyncio
import json
import mimetypes
from pathlib import Path
from typing import Optional

import typer

from .config import EXTRACTION_SERVICE_URL, logger
from .errors import ExportValidationError, UnknownProfileError
from .exporter import DEFAULT_PROFILE, PROFILES, documents_from_records, export_documents, get_profile
from .extraction import ExtractionClient
from .ingestion import IngestionQueue
from .schemas import (
    Deducibility,
    DocumentType,
    ExportDocument,
    ExportInvoice,
    ExportSettings,
    ExtractedInvoiceFields,
    IngestionRecord,
    LedgerSide,
    RawDocument,
    RecordStatus,
)
from .validator import format_summary_text, validate_export_batch


# Create Typer app
app = typer.Typer(
    name="invoice-ledger",
    help="Invoice Ledger Service CLI",
    add_completion=False,
)

DOCUMENT_SUFFIXES = {".pdf", ".png", ".jpg", ".jpeg", ".webp"}


# ============================================================================
# Helpers
# ============================================================================

def build_settings(
    provider_account: Optional[str],
    document_type: str,
    deducibility: str,
    ledger_side: str,
) -> ExportSettings:
    try:
        return ExportSettings(
            provider_account_code_default=provider_account,
            document_type=DocumentType(document_type),
            deducibility_mode=Deducibility(deducibility),
            ledger_side=LedgerSide(ledger_side),
        )
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=2)


def load_documents(doc_dir: Path) -> list[RawDocument]:
    """Read every invoice document in a directory, sorted by filename."""
    paths = sorted(p for p in doc_dir.iterdir() if p.is_file() and p.suffix.lower() in DOCUMENT_SUFFIXES)
    documents = []
    for path in paths:
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        documents.append(RawDocument(filename=path.name, content=path.read_bytes(), content_type=content_type))
    return documents


def run_extraction(documents: list[RawDocument], settings: ExportSettings, service_url: str) -> list[IngestionRecord]:
    queue = IngestionQueue(ExtractionClient(service_url=service_url), settings)

    def report(event: str, record: Optional[IngestionRecord]) -> None:
        if event == "succeeded":
            typer.echo(f"  [OK]   {record.filename}")
        elif event == "failed":
            typer.echo(f"  [FAIL] {record.filename}: {record.error}")

    queue.subscribe(report)
    for document in documents:
        queue.enqueue(document)

    asyncio.run(queue.process_pending())
    return queue.records


def write_records(records: list[IngestionRecord], output: Path) -> None:
    data = [
        {
            "filename": record.filename,
            "status": record.status.value,
            "fields": record.fields.model_dump(mode="json") if record.fields else None,
            "error": record.error,
        }
        for record in records
    ]
    with open(output, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
    logger.info(f"Wrote {len(records)} records to: {output}")


def parse_documents(data) -> list[ExportDocument]:
    """
    Build export documents from JSON written by ``extract`` or from plain
    invoice objects. Records that did not succeed are skipped.
    """
    if not isinstance(data, list):
        data = [data]

    documents = []
    for index, item in enumerate(data, start=1):
        if "fields" in item:
            if item.get("status", RecordStatus.SUCCEEDED.value) != RecordStatus.SUCCEEDED.value:
                continue
            fields = ExtractedInvoiceFields.model_validate(item.get("fields") or {})
            filename = item.get("filename") or f"invoice #{index}"
        else:
            invoice = ExportInvoice.model_validate(item)
            fields = invoice.to_fields()
            filename = invoice.filename or invoice.numero_factura or f"invoice #{index}"
        documents.append(ExportDocument(filename=filename, fields=fields))
    return documents


def write_export(documents: list[ExportDocument], settings: ExportSettings, profile_name: str, output: Optional[Path]) -> Path:
    """Validate and export; prints the incomplete documents and exits 1 on failure."""
    try:
        profile = get_profile(profile_name)
    except UnknownProfileError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=2)

    try:
        payload = export_documents(documents, settings, profile)
    except ExportValidationError:
        results, summary = validate_export_batch(documents)
        typer.echo("\n" + format_summary_text(summary, results), err=True)
        typer.echo("Complete the missing fields before exporting.", err=True)
        raise typer.Exit(code=1)

    target = output or Path(payload.filename)
    target.write_bytes(payload.content)
    typer.echo(f"\n[OK] Exported {payload.row_count} invoice(s) to: {target}")
    return target


# ============================================================================
# Commands
# ============================================================================

@app.command()
def extract(
    doc_dir: Path = typer.Option(
        ...,
        "--doc-dir",
        "-d",
        help="Directory containing invoice PDFs or images",
        exists=True,
        file_okay=False,
        dir_okay=True,
        resolve_path=True,
    ),
    output: Path = typer.Option(
        "extracted_invoices.json",
        "--output",
        "-o",
        help="Output JSON file path",
    ),
    service_url: str = typer.Option(
        EXTRACTION_SERVICE_URL,
        "--service-url",
        help="Extraction service endpoint",
    ),
    provider_account: Optional[str] = typer.Option(None, "--provider-account", help="Default supplier account code"),
    document_type: str = typer.Option("ordinary", "--document-type", help="ordinary, simplified or rectifying"),
    deducibility: str = typer.Option("full", "--deducibility", help="full, none or prorated"),
) -> None:
    """
    Send every document in a directory to the extraction service.

    Documents are processed one at a time in filename order. Failed
    documents are kept in the output with their error.
    """
    documents = load_documents(doc_dir)
    if not documents:
        typer.echo("No invoice documents found.", err=True)
        raise typer.Exit(code=1)

    settings = build_settings(provider_account, document_type, deducibility, "debit")
    typer.echo(f"Extracting {len(documents)} document(s) from: {doc_dir}")

    records = run_extraction(documents, settings, service_url)
    write_records(records, output)

    succeeded = sum(1 for r in records if r.status is RecordStatus.SUCCEEDED)
    typer.echo(f"\n[OK] {succeeded}/{len(records)} document(s) extracted to: {output}")


@app.command()
def export(
    input_file: Path = typer.Option(
        ...,
        "--input",
        "-i",
        help="JSON file with extracted or reviewed invoices",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output file (defaults to the profile's filename)",
    ),
    profile: str = typer.Option(DEFAULT_PROFILE, "--profile", "-p", help="Export profile name"),
    provider_account: Optional[str] = typer.Option(None, "--provider-account", help="Default supplier account code"),
    document_type: str = typer.Option("ordinary", "--document-type", help="ordinary, simplified or rectifying"),
    deducibility: str = typer.Option("full", "--deducibility", help="full, none or prorated"),
    ledger_side: str = typer.Option("debit", "--ledger-side", help="debit or credit"),
) -> None:
    """
    Export reviewed invoices to the ledger import format.

    Nothing is written if any invoice lacks a date or a non-zero total.
    """
    try:
        with open(input_file, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        typer.echo(f"Error: Invalid JSON in input file: {e}", err=True)
        raise typer.Exit(code=1)

    documents = parse_documents(data)
    if not documents:
        typer.echo("No validated invoices to export.", err=True)
        raise typer.Exit(code=1)

    settings = build_settings(provider_account, document_type, deducibility, ledger_side)
    write_export(documents, settings, profile, output)


@app.command("full-run")
def full_run(
    doc_dir: Path = typer.Option(
        ...,
        "--doc-dir",
        "-d",
        help="Directory containing invoice PDFs or images",
        exists=True,
        file_okay=False,
        dir_okay=True,
        resolve_path=True,
    ),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Export file path"),
    save_extracted: Optional[Path] = typer.Option(
        None,
        "--save-extracted",
        "-s",
        help="Also save extracted invoices to this JSON file",
    ),
    profile: str = typer.Option(DEFAULT_PROFILE, "--profile", "-p", help="Export profile name"),
    service_url: str = typer.Option(EXTRACTION_SERVICE_URL, "--service-url", help="Extraction service endpoint"),
    provider_account: Optional[str] = typer.Option(None, "--provider-account", help="Default supplier account code"),
    document_type: str = typer.Option("ordinary", "--document-type", help="ordinary, simplified or rectifying"),
    deducibility: str = typer.Option("full", "--deducibility", help="full, none or prorated"),
    ledger_side: str = typer.Option("debit", "--ledger-side", help="debit or credit"),
) -> None:
    """
    Extract documents and export the successful ones in one step.
    """
    settings = build_settings(provider_account, document_type, deducibility, ledger_side)

    typer.echo("\n[1/2] Extracting invoices...")
    documents = load_documents(doc_dir)
    if not documents:
        typer.echo("No invoice documents found.", err=True)
        raise typer.Exit(code=1)

    records = run_extraction(documents, settings, service_url)
    if save_extracted:
        write_records(records, save_extracted)
        typer.echo(f"      Saved extracted invoices to: {save_extracted}")

    export_docs = documents_from_records(records)
    if not export_docs:
        typer.echo("No invoices were extracted.", err=True)
        raise typer.Exit(code=1)

    typer.echo("\n[2/2] Exporting...")
    write_export(export_docs, settings, profile, output)


@app.command()
def profiles() -> None:
    """List the available export profiles."""
    for profile in PROFILES.values():
        marker = "*" if profile.name == DEFAULT_PROFILE else " "
        typer.echo(f"{marker} {profile.name:<16} {profile.description}")


@app.command()
def version() -> None:
    """Show version information."""
    from . import __version__
    typer.echo(f"Invoice Ledger Service v{__version__}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
