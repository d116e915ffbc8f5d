"""
Configuration constants and enums for the Invoice Ledger Service.
"""

import logging
import os
import sys
from enum import Enum
from typing import Final

# ============================================================================
# Ledger Account Codes
# ============================================================================

# Width of a ledger account number in the accounting import
ACCOUNT_CODE_WIDTH: Final[int] = 10

# Generic supplier group used when only a short suffix is supplied
SUPPLIER_GROUP_PREFIX: Final[str] = "400"

# Account used when neither the invoice nor the settings carry one
DEFAULT_PROVIDER_ACCOUNT: Final[str] = "4000000000"

# Stripped codes at least this long are taken as complete account numbers
FULL_ACCOUNT_MIN_DIGITS: Final[int] = 8

# ============================================================================
# Numeric Normalization
# ============================================================================

# Standard VAT rate used when the taxable base is missing
DEFAULT_VAT_RATE: Final[float] = 21.0

# Correction for binary floating-point drift before rounding
ROUNDING_EPSILON: Final[float] = sys.float_info.epsilon

# ============================================================================
# Date Formats
# ============================================================================

# Formats tried when reading invoice dates; the ledger uses the first one
DATE_FORMATS: Final[list[str]] = [
    "%d/%m/%Y",      # Spanish: 15/01/2024
    "%Y-%m-%d",      # ISO format: 2024-01-15
    "%d-%m-%Y",      # With dashes: 15-01-2024
    "%d.%m.%Y",      # With dots: 15.01.2024
    "%d/%m/%y",      # Short year: 15/01/24
]

LEDGER_DATE_FORMAT: Final[str] = DATE_FORMATS[0]

# ============================================================================
# Extraction Service
# ============================================================================

# Endpoint the ingestion queue dispatches documents to
EXTRACTION_SERVICE_URL: Final[str] = os.getenv(
    "EXTRACTION_SERVICE_URL", "http://localhost:8000/extract"
)

# Deadline for a single dispatch, in seconds
EXTRACTION_TIMEOUT_SECONDS: Final[float] = float(os.getenv("EXTRACTION_TIMEOUT_SECONDS", "120"))

# OCR (transcription) upstream
OCR_API_URL: Final[str] = os.getenv("OCR_API_URL", "https://api.mistral.ai/v1/chat/completions")
OCR_MODEL: Final[str] = os.getenv("OCR_MODEL", "mistral-large-latest")
OCR_MAX_TOKENS: Final[int] = 4096

# Structuring (LLM) upstream
STRUCTURING_API_URL: Final[str] = os.getenv(
    "STRUCTURING_API_URL", "https://api.anthropic.com/v1/messages"
)
STRUCTURING_MODEL: Final[str] = os.getenv("STRUCTURING_MODEL", "claude-sonnet-4-20250514")
STRUCTURING_API_VERSION: Final[str] = "2023-06-01"
STRUCTURING_MAX_TOKENS: Final[int] = 1024

# Environment variables holding upstream credentials (read per request)
OCR_API_KEY_ENV: Final[str] = "MISTRAL_API_KEY"
STRUCTURING_API_KEY_ENV: Final[str] = "ANTHROPIC_API_KEY"

# PDFs with at least this much embedded text skip the OCR call
MIN_TEXT_LAYER_CHARS: Final[int] = int(os.getenv("MIN_TEXT_LAYER_CHARS", "80"))

# ============================================================================
# Error Code Prefixes
# ============================================================================

class ErrorCategory(str, Enum):
    """Categories for export validation error codes."""
    MISSING_FIELD = "missing_field"
    BUSINESS_RULE = "business_rule"


# ============================================================================
# API Configuration
# ============================================================================

API_HOST: Final[str] = os.getenv("API_HOST", "0.0.0.0")
API_PORT: Final[int] = int(os.getenv("API_PORT", "8000"))
MAX_UPLOAD_SIZE_MB: Final[int] = int(os.getenv("MAX_UPLOAD_SIZE_MB", "10"))

# ============================================================================
# Logging Configuration
# ============================================================================

LOG_LEVEL: Final[str] = os.getenv("LOG_LEVEL", "INFO")

def setup_logging() -> logging.Logger:
    """Configure and return the application logger."""
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    return logging.getLogger("invoice_ledger")


logger = setup_logging()
