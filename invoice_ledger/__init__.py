"""
Invoice Ledger Service

A Python service for digitizing supplier invoices: documents are queued for
field extraction, corrected by a human, and exported as a fixed-schema
VAT-received ledger file for the accounting software.
"""

__version__ = "0.1.0"
__author__ = "Invoice Ledger Team"

from .schemas import ExportSettings, ExtractedInvoiceFields, IngestionRecord, LedgerRow, RawDocument
from .normalizers import normalize_account_code, round2, vat_percentage
from .exporter import export_documents, get_profile
from .ingestion import IngestionQueue

__all__ = [
    "ExportSettings",
    "ExtractedInvoiceFields",
    "IngestionRecord",
    "LedgerRow",
    "RawDocument",
    "normalize_account_code",
    "round2",
    "vat_percentage",
    "export_documents",
    "get_profile",
    "IngestionQueue",
]
