"""
Export validation rules.

A document can only be written to the ledger when it has an invoice date
and a non-zero total. Each rule is implemented as a function that returns
an error code if validation fails, or None if validation passes.
"""

from dataclasses import dataclass
from typing import Callable, Optional

from .config import ErrorCategory
from .normalizers import parse_number
from .schemas import ExportDocument


# Type alias for rule check functions
RuleCheckFn = Callable[[ExportDocument], Optional[str]]


@dataclass
class ValidationRule:
    """
    Represents a single export validation rule.

    Attributes:
        code: Machine-readable error code (e.g., "missing_field:fecha")
        description: Human-readable description of the rule
        category: Category of the rule
        check: Function that performs the validation check
    """
    code: str
    description: str
    category: ErrorCategory
    check: RuleCheckFn


# ============================================================================
# Completeness Rules
# ============================================================================

def check_invoice_date(document: ExportDocument) -> Optional[str]:
    """Invoice date must be present."""
    fecha = document.fields.fecha
    if fecha is None or not str(fecha).strip():
        return f"{ErrorCategory.MISSING_FIELD.value}:fecha"
    return None


# ============================================================================
# Business Rules
# ============================================================================

def check_non_zero_total(document: ExportDocument) -> Optional[str]:
    """
    The invoice total must be present and different from zero.

    Totals that cannot be read as a number count as missing.
    """
    total = parse_number(document.fields.total)
    if not total:
        return f"{ErrorCategory.BUSINESS_RULE.value}:zero_total"
    return None


# ============================================================================
# Rule Registry
# ============================================================================

EXPORT_RULES: list[ValidationRule] = [
    ValidationRule(
        code="missing_field:fecha",
        description="Invoice date must be present",
        category=ErrorCategory.MISSING_FIELD,
        check=check_invoice_date,
    ),
    ValidationRule(
        code="business_rule:zero_total",
        description="Invoice total must be present and non-zero",
        category=ErrorCategory.BUSINESS_RULE,
        check=check_non_zero_total,
    ),
]


def get_rules_by_category(category: ErrorCategory) -> list[ValidationRule]:
    """Get all rules belonging to a specific category."""
    return [rule for rule in EXPORT_RULES if rule.category == category]
