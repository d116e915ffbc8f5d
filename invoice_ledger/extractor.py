"""
Invoice extraction service: turns an uploaded document into invoice fields.

This module provides functionality to:
- Read the embedded text layer of PDFs using pdfplumber
- Transcribe scanned PDFs and images through an OCR model
- Structure the transcription into invoice fields with an LLM
- Recover from unparseable model output with all-null fields
"""

import base64
import io
import json
import os
import re
from typing import Optional

import httpx
import pdfplumber

from .config import (
    EXTRACTION_TIMEOUT_SECONDS,
    MIN_TEXT_LAYER_CHARS,
    OCR_API_KEY_ENV,
    OCR_API_URL,
    OCR_MAX_TOKENS,
    OCR_MODEL,
    STRUCTURING_API_KEY_ENV,
    STRUCTURING_API_URL,
    STRUCTURING_API_VERSION,
    STRUCTURING_MAX_TOKENS,
    STRUCTURING_MODEL,
    logger,
)
from .errors import ConfigurationError, ExtractionError
from .schemas import ExtractedInvoiceFields, RawDocument


# ============================================================================
# Prompts
# ============================================================================

OCR_PROMPT = (
    "Transcribe todo el texto visible del documento tal y como aparece, sin interpretarlo. "
    "Incluye números, fechas y nombres. Conserva la estructura de las tablas."
)

STRUCTURING_PROMPT = """Eres un contable español. Analiza el texto de una factura recibida y responde \
únicamente con un objeto JSON válido, sin explicaciones.

Reglas:
1. Fechas en formato DD/MM/YYYY
2. Importes con punto decimal (125.50), nunca con coma
3. Si falta base_imponible, calcúlala como total - cuota_iva
4. Si falta cuota_iva, calcúlala como total - base_imponible
5. Si un dato no aparece, usa null
6. El proveedor es quien emite la factura, no quien la recibe

Formato:
{
  "fecha": "DD/MM/YYYY",
  "numero_factura": "string",
  "base_imponible": number,
  "cuota_iva": number,
  "total": number,
  "proveedor": "string",
  "cif_proveedor": "string"
}"""


def _require_key(env_name: str) -> str:
    key = os.getenv(env_name)
    if not key:
        raise ConfigurationError(f"{env_name} not configured")
    return key


def _json_body(response: httpx.Response, service: str) -> dict:
    try:
        payload = response.json()
    except ValueError as e:
        raise ExtractionError(f"{service} returned invalid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise ExtractionError(f"{service} returned an unexpected payload")
    return payload


# ============================================================================
# Transcription
# ============================================================================

def extract_text_layer(pdf_bytes: bytes) -> str:
    """
    Extract the embedded text of a PDF.

    Args:
        pdf_bytes: Raw PDF file content

    Returns:
        Concatenated text from all pages, or "" for scans and unreadable files
    """
    text_parts = []

    try:
        with pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
            for page in pdf.pages:
                page_text = page.extract_text()
                if page_text:
                    text_parts.append(page_text)
    except Exception as e:
        logger.warning(f"Could not read PDF text layer: {e}")
        return ""

    return "\n".join(text_parts)


async def perform_ocr(document: RawDocument, transport: Optional[httpx.AsyncBaseTransport] = None) -> str:
    """
    Transcribe a document through the OCR chat model.

    Raises:
        ConfigurationError: if the OCR API key is missing
        ExtractionError: if the OCR request fails
    """
    api_key = _require_key(OCR_API_KEY_ENV)

    encoded = base64.b64encode(document.content).decode("ascii")
    content_type = "application/pdf" if document.is_pdf else document.content_type
    data_url = f"data:{content_type};base64,{encoded}"
    part_type = "document_url" if document.is_pdf else "image_url"

    body = {
        "model": OCR_MODEL,
        "messages": [{
            "role": "user",
            "content": [
                {"type": "text", "text": OCR_PROMPT},
                {"type": part_type, part_type: data_url},
            ],
        }],
        "max_tokens": OCR_MAX_TOKENS,
        "temperature": 0,
    }

    try:
        async with httpx.AsyncClient(timeout=EXTRACTION_TIMEOUT_SECONDS, transport=transport) as client:
            response = await client.post(
                OCR_API_URL,
                json=body,
                headers={"Authorization": f"Bearer {api_key}"},
            )
    except httpx.HTTPError as e:
        raise ExtractionError(f"OCR request failed: {e}") from e

    if not response.is_success:
        raise ExtractionError(f"OCR failed: {response.text}", status_code=response.status_code)

    choices = _json_body(response, "OCR").get("choices") or [{}]
    return (choices[0].get("message") or {}).get("content") or ""


async def transcribe(document: RawDocument, transport: Optional[httpx.AsyncBaseTransport] = None) -> str:
    """
    Get the text of a document, skipping OCR when a PDF carries enough text.
    """
    if document.is_pdf:
        text = extract_text_layer(document.content)
        if len(text.strip()) >= MIN_TEXT_LAYER_CHARS:
            logger.info(f"Using embedded text layer of {document.filename} ({len(text)} chars)")
            return text

    logger.info(f"Starting OCR for: {document.filename}")
    text = await perform_ocr(document, transport)
    logger.info(f"OCR complete, text length: {len(text)}")
    return text


# ============================================================================
# Structuring
# ============================================================================

def clean_model_json(content: str) -> str:
    """Strip markdown fences and keep the outermost JSON object."""
    cleaned = re.sub(r"```(?:json)?", "", content).strip()
    first = cleaned.find("{")
    last = cleaned.rfind("}")
    if first != -1 and last != -1:
        cleaned = cleaned[first:last + 1]
    return cleaned


def parse_structured_fields(content: str) -> ExtractedInvoiceFields:
    """
    Parse the model's answer into invoice fields.

    Unparseable answers yield all-null fields with the error marker set.
    """
    try:
        payload = json.loads(clean_model_json(content))
        if not isinstance(payload, dict):
            raise ValueError("not a JSON object")
        return ExtractedInvoiceFields.model_validate(payload)
    except ValueError as e:
        # pydantic's ValidationError is a ValueError too
        logger.warning(f"Could not parse structured fields: {e}")
        return ExtractedInvoiceFields.empty(error="Error parsing JSON from structuring model")


async def structure_fields(text: str, transport: Optional[httpx.AsyncBaseTransport] = None) -> ExtractedInvoiceFields:
    """
    Turn transcribed invoice text into structured fields.

    Raises:
        ConfigurationError: if the structuring API key is missing
        ExtractionError: if the structuring request fails
    """
    api_key = _require_key(STRUCTURING_API_KEY_ENV)

    body = {
        "model": STRUCTURING_MODEL,
        "max_tokens": STRUCTURING_MAX_TOKENS,
        "system": STRUCTURING_PROMPT,
        "messages": [{
            "role": "user",
            "content": f"Texto de la factura obtenido por OCR:\n\n{text}",
        }],
    }
    headers = {
        "x-api-key": api_key,
        "anthropic-version": STRUCTURING_API_VERSION,
    }

    try:
        async with httpx.AsyncClient(timeout=EXTRACTION_TIMEOUT_SECONDS, transport=transport) as client:
            response = await client.post(STRUCTURING_API_URL, json=body, headers=headers)
    except httpx.HTTPError as e:
        raise ExtractionError(f"Structuring request failed: {e}") from e

    if not response.is_success:
        raise ExtractionError(f"Structuring failed: {response.text}", status_code=response.status_code)

    blocks = _json_body(response, "Structuring").get("content") or [{}]
    return parse_structured_fields(blocks[0].get("text") or "{}")


# ============================================================================
# Main Extraction Function
# ============================================================================

async def extract_invoice_fields(
    document: RawDocument,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ExtractedInvoiceFields:
    """
    Extract invoice fields from an uploaded document.

    Args:
        document: Uploaded PDF or image
        transport: Optional httpx transport for the upstream calls (used by tests)

    Returns:
        Extracted fields; ``error`` is set when structuring output was unreadable

    Raises:
        ConfigurationError: missing upstream credentials
        ExtractionError: upstream request failure
    """
    logger.info(f"Extracting invoice fields from: {document.filename}")

    text = await transcribe(document, transport)
    fields = await structure_fields(text, transport)

    logger.info(f"Structured data for {document.filename}: {fields.model_dump(exclude_none=True)}")
    return fields
