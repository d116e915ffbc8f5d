"""
Normalization helpers shared by export validation and the export engine.

This module provides:
- Account code canonicalization into fixed-width ledger account numbers
- Monetary rounding and VAT percentage derivation
- Mapping of export settings onto the ledger's numeric codes
- Tolerant parsing of numbers and dates typed or extracted as text
"""

import math
import re
from datetime import date, datetime
from typing import Optional

from .config import (
    ACCOUNT_CODE_WIDTH,
    DATE_FORMATS,
    DEFAULT_PROVIDER_ACCOUNT,
    DEFAULT_VAT_RATE,
    FULL_ACCOUNT_MIN_DIGITS,
    LEDGER_DATE_FORMAT,
    ROUNDING_EPSILON,
    SUPPLIER_GROUP_PREFIX,
)
from .schemas import Deducibility, LedgerSide


# ============================================================================
# Account Codes
# ============================================================================

def normalize_account_code(raw_code: Optional[str], settings_default: Optional[str] = None) -> str:
    """
    Canonicalize a raw supplier account code into a ledger account number.

    Accepted forms:
    - Dot form ``"520.1"``: the dot is expanded with zeros to the full
      width (``"5200000001"``). When prefix and suffix together already
      exceed the width the result is longer than the width; it is not
      clamped.
    - Full form: eight or more digits once non-digits are stripped are
      used unchanged.
    - Short suffix ``"1"``: placed under the generic supplier group
      (``"4000000001"``).
    - Empty or missing: ``settings_default`` if given, else ``"4000000000"``.

    Args:
        raw_code: Code as typed by the user or returned by extraction
        settings_default: Account code from the export settings

    Returns:
        The ledger account number
    """
    code = str(raw_code).strip() if raw_code is not None else ""

    if not code:
        return settings_default or DEFAULT_PROVIDER_ACCOUNT

    if "." in code:
        prefix, suffix = code.split(".", 1)
        zeros = max(0, ACCOUNT_CODE_WIDTH - len(prefix) - len(suffix))
        return prefix + "0" * zeros + suffix

    digits = re.sub(r"\D", "", code)
    if len(digits) >= FULL_ACCOUNT_MIN_DIGITS:
        return digits

    zeros = max(0, ACCOUNT_CODE_WIDTH - len(SUPPLIER_GROUP_PREFIX) - len(digits))
    return SUPPLIER_GROUP_PREFIX + "0" * zeros + digits


# ============================================================================
# Numbers
# ============================================================================

def round2(value: Optional[float]) -> float:
    """
    Round a monetary amount to 2 decimals, halves rounding up.

    A machine-epsilon nudge keeps values such as 1.005 (stored as
    1.00499999...) from rounding down.
    """
    if value is None:
        return 0.0
    return math.floor((value + ROUNDING_EPSILON) * 100 + 0.5) / 100


def vat_percentage(base: Optional[float], vat_amount: Optional[float]) -> float:
    """
    Derive the VAT rate from the taxable base and VAT amount.

    Falls back to the standard rate when there is no positive base.
    """
    base = base or 0.0
    if base > 0:
        return round2(((vat_amount or 0.0) / base) * 100)
    return DEFAULT_VAT_RATE


def parse_number(value) -> Optional[float]:
    """
    Parse a numeric value from various formats.

    Handles both:
    - US/UK format: 1,234.56 (comma = thousand separator, period = decimal)
    - European format: 1.234,56 (period = thousand separator, comma = decimal)
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        return float(value)

    value_str = str(value).strip()
    if not value_str:
        return None

    # Remove currency symbols and whitespace
    value_str = re.sub(r'[\$€£\s]', '', value_str)

    if ',' in value_str:
        comma_pos = value_str.rfind(',')
        period_pos = value_str.rfind('.')

        if period_pos < comma_pos:
            # "1.234,56" -> "1234.56", "257,04" -> "257.04"
            value_str = value_str.replace('.', '')
            value_str = value_str.replace(',', '.')
        else:
            # "1,234.56" -> "1234.56"
            value_str = value_str.replace(',', '')

    try:
        number = float(value_str)
    except ValueError:
        return None

    if math.isnan(number) or math.isinf(number):
        return None
    return number


def format_amount(value: float, decimal_comma: bool = False) -> str:
    """Format a number with exactly 2 decimals."""
    text = f"{value:.2f}"
    if decimal_comma:
        text = text.replace(".", ",")
    return text


# ============================================================================
# Dates
# ============================================================================

def parse_date(date_str: Optional[str]) -> Optional[date]:
    """
    Parse a date string trying the configured formats in order.

    Returns:
        Parsed date or None if no format matches
    """
    if not date_str:
        return None

    date_str = str(date_str).strip()

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(date_str, fmt).date()
        except ValueError:
            continue

    return None


def format_ledger_date(value: Optional[str]) -> str:
    """
    Render a date in the ledger's DD/MM/YYYY form.

    Text that cannot be parsed is passed through unchanged.
    """
    parsed = parse_date(value)
    if parsed is None:
        return (value or "").strip()
    return parsed.strftime(LEDGER_DATE_FORMAT)


# ============================================================================
# Ledger Codes
# ============================================================================

DEDUCIBILITY_CODES: dict[Deducibility, int] = {
    Deducibility.FULL: 0,
    Deducibility.NONE: 1,
    Deducibility.PRORATED: 2,
}

# Operation types reserved by the import schema; only domestic is assigned
OPERATION_DOMESTIC = 0
OPERATION_IMPORT = 1
OPERATION_INTRACOMMUNITY = 2
OPERATION_AGRICULTURAL = 3


def deducibility_code(mode: Deducibility) -> int:
    return DEDUCIBILITY_CODES[Deducibility(mode)]


def operation_type_code() -> int:
    return OPERATION_DOMESTIC


def ledger_side_flag(side: LedgerSide) -> str:
    """Debit/credit flag as the Spanish ledger writes it (D = Debe, H = Haber)."""
    return "D" if LedgerSide(side) is LedgerSide.DEBIT else "H"
