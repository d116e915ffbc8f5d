"""
Tests for the export validation rules and batch validation.

These tests verify the all-or-nothing export checks.
"""

import pytest

from invoice_ledger.errors import ExportValidationError
from invoice_ledger.rules import EXPORT_RULES, check_invoice_date, check_non_zero_total
from invoice_ledger.schemas import ExportDocument, ExtractedInvoiceFields
from invoice_ledger.validator import (
    ensure_exportable,
    format_summary_text,
    validate_document,
    validate_export_batch,
)


# ============================================================================
# Fixtures
# ============================================================================

def make_document(filename: str = "factura_001.pdf", **overrides) -> ExportDocument:
    values = {
        "fecha": "15/01/2024",
        "numero_factura": "F-001",
        "base_imponible": 100.0,
        "cuota_iva": 21.0,
        "total": 121.0,
        "proveedor": "Suministros Levante SL",
        "cif_proveedor": "B12345678",
    }
    values.update(overrides)
    return ExportDocument(filename=filename, fields=ExtractedInvoiceFields(**values))


@pytest.fixture
def valid_document() -> ExportDocument:
    return make_document()


# ============================================================================
# Individual Rule Tests
# ============================================================================

class TestRules:
    """Tests for individual export rules."""

    def test_date_present(self, valid_document):
        assert check_invoice_date(valid_document) is None

    def test_date_missing(self):
        assert check_invoice_date(make_document(fecha=None)) == "missing_field:fecha"

    def test_date_blank(self):
        assert check_invoice_date(make_document(fecha="  ")) == "missing_field:fecha"

    def test_total_present(self, valid_document):
        assert check_non_zero_total(valid_document) is None

    def test_total_zero(self):
        assert check_non_zero_total(make_document(total=0)) == "business_rule:zero_total"

    def test_total_missing(self):
        assert check_non_zero_total(make_document(total=None)) == "business_rule:zero_total"

    def test_total_edited_as_text(self):
        assert check_non_zero_total(make_document(total="121,00")) is None
        assert check_non_zero_total(make_document(total="0,00")) == "business_rule:zero_total"

    def test_negative_total_is_allowed(self):
        assert check_non_zero_total(make_document(total=-121.0)) is None

    def test_rule_registry(self):
        codes = {rule.code for rule in EXPORT_RULES}
        assert codes == {"missing_field:fecha", "business_rule:zero_total"}


# ============================================================================
# Batch Validation Tests
# ============================================================================

class TestBatchValidation:
    """Tests for batch-level validation."""

    def test_validate_document_collects_all_errors(self):
        result = validate_document(make_document(fecha=None, total=0))
        assert not result.is_valid
        assert result.errors == ["missing_field:fecha", "business_rule:zero_total"]

    def test_summary_counts(self):
        documents = [make_document("a.pdf"), make_document("b.pdf", fecha=None)]
        results, summary = validate_export_batch(documents)

        assert summary.total_documents == 2
        assert summary.valid_documents == 1
        assert summary.invalid_documents == 1
        assert summary.error_counts == {"missing_field:fecha": 1}
        assert [r.filename for r in results] == ["a.pdf", "b.pdf"]

    def test_ensure_exportable_passes(self, valid_document):
        results = ensure_exportable([valid_document])
        assert all(r.is_valid for r in results)

    def test_missing_date_blocks_batch(self):
        documents = [make_document("ok.pdf"), make_document("sin_fecha.pdf", fecha=None)]
        with pytest.raises(ExportValidationError) as exc_info:
            ensure_exportable(documents)

        assert exc_info.value.invalid_documents == ["sin_fecha.pdf"]
        assert "sin_fecha.pdf" in str(exc_info.value)

    def test_zero_total_blocks_batch(self):
        documents = [make_document("cero.pdf", total=0), make_document("ok.pdf")]
        with pytest.raises(ExportValidationError) as exc_info:
            ensure_exportable(documents)

        assert exc_info.value.invalid_documents == ["cero.pdf"]

    def test_every_offending_document_reported(self):
        documents = [
            make_document("a.pdf", fecha=None),
            make_document("b.pdf"),
            make_document("c.pdf", total=None),
        ]
        with pytest.raises(ExportValidationError) as exc_info:
            ensure_exportable(documents)

        assert exc_info.value.invalid_documents == ["a.pdf", "c.pdf"]
        assert len(exc_info.value.results) == 3

    def test_format_summary_text(self):
        documents = [make_document("a.pdf", fecha=None), make_document("b.pdf")]
        results, summary = validate_export_batch(documents)
        text = format_summary_text(summary, results)

        assert "EXPORT VALIDATION" in text
        assert "Incomplete:         1" in text
        assert "a.pdf: missing_field:fecha" in text
