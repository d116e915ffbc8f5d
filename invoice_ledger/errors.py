"""
Exception types raised by the Invoice Ledger Service.

Per-document extraction problems are recorded on the document and never
raised out of the ingestion queue; export validation problems abort the
whole export.
"""

from typing import Optional


class InvoiceLedgerError(Exception):
    """Base class for all service errors."""


class ConfigurationError(InvoiceLedgerError):
    """A required upstream credential or URL is missing or malformed."""


class ExtractionError(InvoiceLedgerError):
    """An upstream extraction request failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ExportValidationError(InvoiceLedgerError):
    """
    One or more documents are not complete enough to be exported.

    Attributes:
        invalid_documents: Filenames of the offending documents, in batch order
        results: Per-document validation results for the whole batch
    """

    def __init__(self, invalid_documents: list[str], results: Optional[list] = None):
        self.invalid_documents = invalid_documents
        self.results = results or []
        super().__init__(
            "Documents with missing date or total: " + ", ".join(invalid_documents)
        )


class RecordNotFoundError(InvoiceLedgerError, KeyError):
    """No ingestion record exists with the given id."""

    def __str__(self) -> str:
        return f"Unknown document: {self.args[0]}"


class RecordBusyError(InvoiceLedgerError):
    """The record is being processed and cannot be modified."""


class UnknownFieldError(InvoiceLedgerError, ValueError):
    """The field name is not an editable invoice field."""


class UnknownProfileError(InvoiceLedgerError, ValueError):
    """No output profile is registered under the given name."""


class InvalidTransitionError(InvoiceLedgerError):
    """A record status change that would move backwards or skip a state."""
