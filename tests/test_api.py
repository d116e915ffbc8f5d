"""
Tests for the REST API.

The ingestion queue and the upstream transport are replaced through
FastAPI dependency overrides.
"""

import json

import httpx
import pytest
from fastapi.testclient import TestClient

from invoice_ledger import __version__
from invoice_ledger.api import app, get_queue, get_upstream_transport
from invoice_ledger.config import OCR_API_URL, STRUCTURING_API_URL
from invoice_ledger.extraction import ExtractionSuccess, HttpFailure
from invoice_ledger.ingestion import IngestionQueue
from invoice_ledger.schemas import ExtractedInvoiceFields, RawDocument

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


class StubClient:
    """Extraction client answering by filename; success by default."""

    def __init__(self):
        self.failures = {}

    async def dispatch(self, document, settings):
        if document.filename in self.failures:
            return HttpFailure(reason=self.failures[document.filename])
        fields = {key: value for key, value in INVOICE.items() if key != "filename"}
        return ExtractionSuccess(fields=ExtractedInvoiceFields(**fields))


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def stub() -> StubClient:
    return StubClient()


@pytest.fixture
def queue(stub) -> IngestionQueue:
    return IngestionQueue(stub)


@pytest.fixture
def client(queue):
    app.dependency_overrides[get_queue] = lambda: queue
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def upload(*names):
    return [("files", (name, b"%PDF-1.4 fake", "application/pdf")) for name in names]


# ============================================================================
# System Endpoints
# ============================================================================

class TestSystemEndpoints:
    """Tests for health, profiles and rules."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "version": __version__}

    def test_profiles(self, client):
        data = client.get("/profiles").json()
        names = [p["name"] for p in data["profiles"]]
        assert data["default"] == "contasol-csv"
        assert "contasol-xlsx" in names and "automation-xlsx" in names

    def test_rules(self, client):
        data = client.get("/rules").json()
        assert data["total_rules"] == 2
        assert set(data["rules_by_category"]) == {"missing_field", "business_rule"}


# ============================================================================
# Stateless Export
# ============================================================================

class TestExportEndpoint:
    """Tests for POST /export."""

    def test_export_csv(self, client):
        response = client.post("/export", json={"invoices": [INVOICE]})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/vnd.ms-excel")
        assert response.headers["content-disposition"] == 'attachment; filename="IVS.xls"'
        assert response.content.startswith(b"\xef\xbb\xbf")
        assert b"Suministros Levante SL" in response.content

    def test_export_uses_settings(self, client):
        body = {
            "invoices": [INVOICE],
            "settings": {"providerAccountCodeDefault": "4000000555", "deducibilityMode": "No Deducible"},
        }
        text = client.post("/export", json=body).content.decode("utf-8")
        row = text[1:].split("\r\n")[1].split(";")

        assert row[3] == "4000000555"
        assert row[8] == "1"

    def test_export_spreadsheet_profile(self, client):
        response = client.post("/export", json={"invoices": [INVOICE], "profile": "contasol-xlsx"})

        assert response.status_code == 200
        assert 'filename="IVS.xlsx"' in response.headers["content-disposition"]
        assert response.content[:2] == b"PK"

    def test_no_invoices(self, client):
        assert client.post("/export", json={}).status_code == 400
        response = client.post("/export", json={"invoices": []})
        assert response.status_code == 400
        assert response.json() == {"error": "No invoices provided"}

    def test_incomplete_invoice_rejects_batch(self, client):
        incomplete = {**INVOICE, "filename": "sin_fecha.pdf", "fecha": None}
        response = client.post("/export", json={"invoices": [INVOICE, incomplete]})

        assert response.status_code == 422
        data = response.json()
        assert data["invalid_documents"] == ["sin_fecha.pdf"]
        assert "sin_fecha.pdf" in data["error"]
        assert len(data["results"]) == 2

    def test_fallback_document_name(self, client):
        invoice = {key: value for key, value in INVOICE.items() if key not in ("filename", "numero_factura")}
        invoice["total"] = 0
        response = client.post("/export", json={"invoices": [invoice]})

        assert response.json()["invalid_documents"] == ["invoice #1"]

    def test_unknown_profile(self, client):
        response = client.post("/export", json={"invoices": [INVOICE], "profile": "nope"})
        assert response.status_code == 400


# ============================================================================
# Extraction Endpoint
# ============================================================================

class TestExtractEndpoint:
    """Tests for POST /extract."""

    @pytest.fixture
    def upstream(self):
        def handler(request):
            if str(request.url) == OCR_API_URL:
                return httpx.Response(200, json={"choices": [{"message": {"content": "FACTURA F-001"}}]})
            if str(request.url) == STRUCTURING_API_URL:
                fields = {key: value for key, value in INVOICE.items() if key != "filename"}
                return httpx.Response(200, json={"content": [{"type": "text", "text": json.dumps(fields)}]})
            return httpx.Response(404)

        app.dependency_overrides[get_upstream_transport] = lambda: httpx.MockTransport(handler)
        yield
        app.dependency_overrides.pop(get_upstream_transport, None)

    def test_no_file(self, client):
        response = client.post("/extract")
        assert response.status_code == 400
        assert response.json() == {"error": "No file provided"}

    def test_extract(self, client, upstream, monkeypatch):
        monkeypatch.setenv("MISTRAL_API_KEY", "k1")
        monkeypatch.setenv("ANTHROPIC_API_KEY", "k2")

        response = client.post("/extract", files={"file": ("ticket.png", b"\x89PNG fake", "image/png")})

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 121.0
        assert data["numero_factura"] == "F-001"
        assert "error" not in data

    def test_missing_credentials(self, client, upstream, monkeypatch):
        monkeypatch.delenv("MISTRAL_API_KEY", raising=False)

        response = client.post("/extract", files={"file": ("ticket.png", b"\x89PNG fake", "image/png")})

        assert response.status_code == 500
        assert "MISTRAL_API_KEY" in response.json()["error"]

    def test_empty_file(self, client):
        response = client.post("/extract", files={"file": ("empty.pdf", b"", "application/pdf")})
        assert response.status_code == 400


# ============================================================================
# Ingestion Queue Endpoints
# ============================================================================

class TestDocumentEndpoints:
    """Tests for the /documents workflow."""

    def test_upload_then_list(self, client):
        response = client.post("/documents", files=upload("a.pdf", "b.pdf"))

        assert response.status_code == 202
        queued = response.json()
        assert [r["filename"] for r in queued] == ["a.pdf", "b.pdf"]
        assert all(r["status"] == "pending" for r in queued)

        listed = client.get("/documents").json()
        assert [r["status"] for r in listed] == ["succeeded", "succeeded"]
        assert listed[0]["fields"]["total"] == 121.0

    def test_failed_document_is_reported(self, client, stub):
        stub.failures["b.pdf"] = "Extraction service error (HTTP 502)"
        client.post("/documents", files=upload("a.pdf", "b.pdf"))

        listed = client.get("/documents").json()
        assert listed[1]["status"] == "failed"
        assert listed[1]["error"] == "Extraction service error (HTTP 502)"

    def test_process_endpoint(self, client, queue):
        queue.enqueue(RawDocument(filename="a.pdf", content=b"%PDF-1.4 fake"))
        assert client.post("/documents/process").json() == {"dispatched": 1}
        assert client.post("/documents/process").json() == {"dispatched": 0}

    def test_get_and_edit(self, client):
        record_id = client.post("/documents", files=upload("a.pdf")).json()[0]["id"]

        response = client.patch(f"/documents/{record_id}", json={"field": "total", "value": "150,00"})
        assert response.status_code == 200
        assert response.json()["fields"]["total"] == "150,00"
        assert client.get(f"/documents/{record_id}").json()["fields"]["total"] == "150,00"

    def test_edit_unknown_field(self, client):
        record_id = client.post("/documents", files=upload("a.pdf")).json()[0]["id"]
        response = client.patch(f"/documents/{record_id}", json={"field": "importe", "value": 1})
        assert response.status_code == 400

    def test_unknown_document(self, client):
        response = client.get("/documents/missing")
        assert response.status_code == 404
        assert response.json() == {"error": "Unknown document: missing"}

    def test_retry(self, client, stub):
        stub.failures["a.pdf"] = "boom"
        old_id = client.post("/documents", files=upload("a.pdf")).json()[0]["id"]

        stub.failures.clear()
        response = client.post(f"/documents/{old_id}/retry")

        assert response.status_code == 202
        new_id = response.json()["id"]
        assert new_id != old_id
        assert client.get(f"/documents/{new_id}").json()["status"] == "succeeded"
        assert client.get(f"/documents/{old_id}").status_code == 404

    def test_retry_succeeded_document(self, client):
        record_id = client.post("/documents", files=upload("a.pdf")).json()[0]["id"]
        response = client.post(f"/documents/{record_id}/retry")
        assert response.status_code == 409
        assert "only failed documents can be retried" in response.json()["error"]

    def test_export_queue(self, client, stub):
        stub.failures["b.pdf"] = "boom"
        client.post("/documents", files=upload("a.pdf", "b.pdf", "c.pdf"))

        response = client.post("/documents/export")

        assert response.status_code == 200
        lines = response.content.decode("utf-8")[1:].split("\r\n")
        assert len(lines) == 3

    def test_export_queue_simplified_profile(self, client):
        client.post("/documents", files=upload("a.pdf"))
        response = client.post("/documents/export", params={"profile": "automation-csv"})

        assert response.status_code == 200
        assert 'filename="REMESA_CONTASOL_' in response.headers["content-disposition"]

    def test_export_empty_queue(self, client):
        response = client.post("/documents/export")
        assert response.status_code == 400

    def test_export_blocked_by_edit(self, client):
        record_id = client.post("/documents", files=upload("a.pdf")).json()[0]["id"]
        client.patch(f"/documents/{record_id}", json={"field": "fecha", "value": None})

        response = client.post("/documents/export")
        assert response.status_code == 422
        assert response.json()["invalid_documents"] == ["a.pdf"]

    def test_remove_and_clear(self, client):
        ids = [r["id"] for r in client.post("/documents", files=upload("a.pdf", "b.pdf")).json()]

        assert client.delete(f"/documents/{ids[0]}").status_code == 204
        assert len(client.get("/documents").json()) == 1

        assert client.delete("/documents").status_code == 204
        assert client.get("/documents").json() == []

    def test_settings_round_trip(self, client):
        response = client.put("/settings", json={"deducibilityMode": "No Deducible", "ledgerSide": "haber"})

        assert response.status_code == 200
        assert response.json()["deducibilityMode"] == "none"
        assert client.get("/settings").json()["ledgerSide"] == "credit"
