"""
Client for the extraction service boundary.

One dispatch sends one document and yields exactly one outcome:
- ExtractionSuccess: the service returned invoice fields
- HttpFailure: the request failed (network error, timeout, non-2xx)
- ParseFailure: the service answered with something that is not field JSON
"""

import json
from dataclasses import dataclass
from typing import Optional, Union
from urllib.parse import urlparse

import httpx
from pydantic import ValidationError

from .config import EXTRACTION_SERVICE_URL, EXTRACTION_TIMEOUT_SECONDS, logger
from .errors import ConfigurationError
from .schemas import ExportSettings, ExtractedInvoiceFields, RawDocument


@dataclass(frozen=True)
class ExtractionSuccess:
    fields: ExtractedInvoiceFields


@dataclass(frozen=True)
class HttpFailure:
    reason: str
    status_code: Optional[int] = None


@dataclass(frozen=True)
class ParseFailure:
    raw_text: str
    reason: str = "Malformed response from extraction service"


ExtractionOutcome = Union[ExtractionSuccess, HttpFailure, ParseFailure]


def validate_service_url(url: Optional[str]) -> str:
    """
    Check that the extraction service URL is usable.

    Raises:
        ConfigurationError: if the URL is missing or not an http(s) URL
    """
    if not url or not url.strip():
        raise ConfigurationError("Extraction service URL is not configured")

    url = url.strip()
    try:
        parsed = urlparse(url)
        # Raises ValueError when the port is out of range
        parsed.port
        httpx.URL(url)
    except (ValueError, httpx.InvalidURL) as e:
        raise ConfigurationError(f"Extraction service URL is malformed: {url} ({e})") from e

    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigurationError(f"Extraction service URL is malformed: {url}")

    return url


def parse_extraction_response(text: str) -> ExtractionOutcome:
    """
    Interpret a 2xx response body from the extraction service.

    Responses wrapped as ``{"data": {...}}`` are unwrapped.
    """
    try:
        payload = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return ParseFailure(raw_text=text, reason="Extraction service returned invalid JSON")

    if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
        payload = payload["data"]

    if not isinstance(payload, dict):
        return ParseFailure(raw_text=text, reason="Extraction service returned a non-object JSON body")

    try:
        return ExtractionSuccess(fields=ExtractedInvoiceFields.model_validate(payload))
    except ValidationError as e:
        return ParseFailure(raw_text=text, reason=f"Unexpected field types in extraction response: {e.error_count()} error(s)")


class ExtractionClient:
    """
    Sends documents to the extraction service.

    Args:
        service_url: Endpoint accepting the multipart upload
        timeout: Deadline for one dispatch, in seconds
        transport: Optional httpx transport (used by tests)
    """

    def __init__(
        self,
        service_url: Optional[str] = EXTRACTION_SERVICE_URL,
        timeout: float = EXTRACTION_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.service_url = service_url
        self.timeout = timeout
        self.transport = transport

    async def dispatch(self, document: RawDocument, settings: ExportSettings) -> ExtractionOutcome:
        """
        Send one document for extraction.

        Raises:
            ConfigurationError: if the service URL is missing or malformed
        """
        url = validate_service_url(self.service_url)

        files = {"file": (document.filename, document.content, document.content_type)}
        data = {
            "provider_code": settings.provider_account_code_default or "",
            "document_type": settings.document_type.value,
            "deductibility_hint": settings.deducibility_mode.value,
            "filename": document.filename,
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(url, files=files, data=data)
        except httpx.TimeoutException:
            logger.error(f"Extraction timed out after {self.timeout}s for: {document.filename}")
            return HttpFailure(reason=f"Extraction timed out after {self.timeout:g}s")
        except httpx.HTTPError as e:
            logger.error(f"Extraction request failed for {document.filename}: {e}")
            return HttpFailure(reason=f"Could not reach extraction service: {e}")

        if not response.is_success:
            logger.error(f"Extraction service answered {response.status_code} for: {document.filename}")
            return HttpFailure(
                reason=f"Extraction service error (HTTP {response.status_code})",
                status_code=response.status_code,
            )

        return parse_extraction_response(response.text)
