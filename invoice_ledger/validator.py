"""
Export validation for batches of invoice documents.

Validation is all-or-nothing: a batch is exportable only when every
document passes every rule.
"""

from collections import Counter
from typing import Optional

from .config import logger
from .errors import ExportValidationError
from .rules import EXPORT_RULES, ValidationRule
from .schemas import DocumentValidationResult, ExportDocument, ExportValidationSummary


def validate_document(
    document: ExportDocument,
    rules: Optional[list[ValidationRule]] = None
) -> DocumentValidationResult:
    """
    Validate a single document against the export rules.

    Args:
        document: The document to validate
        rules: Optional list of rules to apply (defaults to EXPORT_RULES)

    Returns:
        DocumentValidationResult with every error found
    """
    if rules is None:
        rules = EXPORT_RULES

    errors = [code for code in (rule.check(document) for rule in rules) if code]

    return DocumentValidationResult(
        filename=document.filename,
        is_valid=not errors,
        errors=errors,
    )


def validate_export_batch(
    documents: list[ExportDocument],
    rules: Optional[list[ValidationRule]] = None
) -> tuple[list[DocumentValidationResult], ExportValidationSummary]:
    """
    Validate a batch of documents and produce an aggregated summary.

    Returns:
        Tuple of (list of per-document results, batch summary)
    """
    results = [validate_document(document, rules) for document in documents]

    error_counts = dict(Counter(code for result in results for code in result.errors))
    valid_count = sum(1 for r in results if r.is_valid)

    summary = ExportValidationSummary(
        total_documents=len(results),
        valid_documents=valid_count,
        invalid_documents=len(results) - valid_count,
        error_counts=error_counts,
    )
    return results, summary


def ensure_exportable(
    documents: list[ExportDocument],
    rules: Optional[list[ValidationRule]] = None
) -> list[DocumentValidationResult]:
    """
    Check that a whole batch can be exported.

    Raises:
        ExportValidationError: listing the filenames of every failing document
    """
    results, summary = validate_export_batch(documents, rules)

    if summary.invalid_documents:
        invalid = [r.filename for r in results if not r.is_valid]
        logger.warning(f"Export blocked, {len(invalid)} incomplete document(s): {', '.join(invalid)}")
        raise ExportValidationError(invalid, results)

    return results


def format_summary_text(summary: ExportValidationSummary, results: list[DocumentValidationResult]) -> str:
    """
    Format a validation summary as human-readable text for CLI output.
    """
    lines = [
        "=" * 50,
        "EXPORT VALIDATION",
        "=" * 50,
        f"Documents checked:  {summary.total_documents}",
        f"Ready to export:    {summary.valid_documents}",
        f"Incomplete:         {summary.invalid_documents}",
        "",
    ]

    invalid = [r for r in results if not r.is_valid]
    if invalid:
        lines.append("Incomplete documents:")
        lines.append("-" * 40)
        for result in invalid:
            lines.append(f"  {result.filename}: {', '.join(result.errors)}")
        lines.append("")

    lines.append("=" * 50)

    return "\n".join(lines)
