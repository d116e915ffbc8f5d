"""
Tests for the command-line interface export path.
"""

import json

import pytest
from typer.testing import CliRunner

from invoice_ledger.cli import app, parse_documents

runner = CliRunner()

INVOICE = {
    "filename": "factura_001.pdf",
    "fecha": "15/01/2024",
    "numero_factura": "F-001",
    "base_imponible": 100.0,
    "cuota_iva": 21.0,
    "total": 121.0,
    "proveedor": "Suministros Levante SL",
    "cif_proveedor": "B12345678",
}


@pytest.fixture
def input_file(tmp_path):
    path = tmp_path / "invoices.json"
    path.write_text(json.dumps([INVOICE]), encoding="utf-8")
    return path


class TestParseDocuments:
    """Tests for reading invoice JSON."""

    def test_flat_invoices(self):
        documents = parse_documents([INVOICE])
        assert documents[0].filename == "factura_001.pdf"
        assert documents[0].fields.total == 121.0

    def test_extracted_records_skip_failures(self):
        data = [
            {"filename": "a.pdf", "status": "succeeded", "fields": {"fecha": "15/01/2024", "total": 10}},
            {"filename": "b.pdf", "status": "failed", "fields": None, "error": "boom"},
        ]
        assert [d.filename for d in parse_documents(data)] == ["a.pdf"]


class TestExportCommand:
    """Tests for the export command."""

    def test_export_writes_file(self, input_file, tmp_path):
        output = tmp_path / "IVS.xls"
        result = runner.invoke(app, ["export", "--input", str(input_file), "--output", str(output)])

        assert result.exit_code == 0
        content = output.read_bytes()
        assert content.startswith(b"\xef\xbb\xbf")
        assert b"Suministros Levante SL" in content

    def test_incomplete_invoice_exits_1(self, tmp_path):
        path = tmp_path / "invoices.json"
        path.write_text(json.dumps([{**INVOICE, "fecha": None}]), encoding="utf-8")
        output = tmp_path / "IVS.xls"

        result = runner.invoke(app, ["export", "--input", str(path), "--output", str(output)])

        assert result.exit_code == 1
        assert not output.exists()

    def test_unknown_profile_exits_2(self, input_file, tmp_path):
        result = runner.invoke(app, [
            "export", "--input", str(input_file), "--output", str(tmp_path / "x"), "--profile", "nope",
        ])
        assert result.exit_code == 2

    def test_profiles_listed(self):
        result = runner.invoke(app, ["profiles"])
        assert result.exit_code == 0
        assert "contasol-csv" in result.output
        assert "automation-xlsx" in result.output
