"""
Serialization of ledger rows into the payload formats the accounting
software imports.

Two shapes are produced:
- Delimited text: ``;``-separated, UTF-8 with a byte-order mark
- Spreadsheet: an .xlsx workbook with per-column number formats
"""

import io
import zipfile
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Sequence

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.xml.functions import tostring

from .normalizers import format_amount, format_ledger_date, parse_date
from .schemas import OutputProfile

SEPARATOR = ";"
BOM = "\ufeff"


class ColumnKind(str, Enum):
    """Presentation class of an export column."""
    INTEGER = "integer"
    TEXT = "text"
    DATE = "date"
    MONEY = "money"
    PERCENT = "percent"


# ============================================================================
# Column Schemas
# ============================================================================

# VAT-received ledger import, columns A-Z. Header text must match exactly.
LEDGER_COLUMNS: list[tuple[str, ColumnKind]] = [
    ("Codigo", ColumnKind.INTEGER),             # A - N(5) unique index
    ("Libro_IVA", ColumnKind.INTEGER),          # B - N(1)
    ("Fecha", ColumnKind.DATE),                 # C - DD/MM/AAAA
    ("Cuenta", ColumnKind.TEXT),                # D - N(10) supplier account
    ("Factura", ColumnKind.TEXT),               # E - A(30)
    ("Nombre", ColumnKind.TEXT),                # F - A(100)
    ("CIF", ColumnKind.TEXT),                   # G - A(18)
    ("Tipo_Operacion", ColumnKind.INTEGER),     # H - 0 domestic, 1 import, 2 intra-EU, 3 agricultural
    ("Deducible", ColumnKind.INTEGER),          # I - 0 full, 1 none, 2 prorated
    ("Base_1", ColumnKind.MONEY),               # J - ND(15)
    ("Base_2", ColumnKind.MONEY),               # K
    ("Base_3", ColumnKind.MONEY),               # L
    ("Pct_IVA_1", ColumnKind.PERCENT),          # M - ND(5)
    ("Pct_IVA_2", ColumnKind.PERCENT),          # N
    ("Pct_IVA_3", ColumnKind.PERCENT),          # O
    ("Pct_Recargo_1", ColumnKind.PERCENT),      # P
    ("Pct_Recargo_2", ColumnKind.PERCENT),      # Q
    ("Pct_Recargo_3", ColumnKind.PERCENT),      # R
    ("Importe_IVA_1", ColumnKind.MONEY),        # S - ND(15)
    ("Importe_IVA_2", ColumnKind.MONEY),        # T
    ("Importe_IVA_3", ColumnKind.MONEY),        # U
    ("Importe_Recargo_1", ColumnKind.MONEY),    # V
    ("Importe_Recargo_2", ColumnKind.MONEY),    # W
    ("Importe_Recargo_3", ColumnKind.MONEY),    # X
    ("Total", ColumnKind.MONEY),                # Y - ND(15)
    ("Bienes_Soportados", ColumnKind.INTEGER),  # Z - 0 no, 1 yes
]

SIMPLIFIED_COLUMNS: list[tuple[str, ColumnKind]] = [
    ("Fecha", ColumnKind.DATE),
    ("Proveedor", ColumnKind.TEXT),
    ("CIF", ColumnKind.TEXT),
    ("Factura", ColumnKind.TEXT),
    ("Base_Imponible", ColumnKind.MONEY),
    ("Pct_IVA", ColumnKind.PERCENT),
    ("Cuota_IVA", ColumnKind.MONEY),
    ("Total", ColumnKind.MONEY),
    ("Cuenta", ColumnKind.TEXT),
    ("Debe_Haber", ColumnKind.TEXT),
]


# ============================================================================
# Delimited Text
# ============================================================================

def quote_field(text: str) -> str:
    """Quote a field when it contains the separator, a quote or a newline."""
    if SEPARATOR in text or '"' in text or "\n" in text or "\r" in text:
        return '"' + text.replace('"', '""') + '"'
    return text


def _text_value(value: Any, kind: ColumnKind, decimal_comma: bool) -> str:
    if value is None:
        return ""
    if kind is ColumnKind.DATE:
        return format_ledger_date(value)
    if kind in (ColumnKind.MONEY, ColumnKind.PERCENT):
        return format_amount(float(value), decimal_comma)
    return str(value)


def to_delimited(
    rows: Sequence[Sequence[Any]],
    columns: list[tuple[str, ColumnKind]],
    profile: OutputProfile,
) -> bytes:
    """
    Serialize rows as BOM-prefixed, semicolon-separated UTF-8 text.

    Args:
        rows: Row values in column order
        columns: Header text and kind of every column
        profile: Output profile (headers, line terminator, decimal separator)

    Returns:
        Encoded payload
    """
    lines: list[str] = []

    if profile.include_headers:
        lines.append(SEPARATOR.join(quote_field(header) for header, _ in columns))

    for row in rows:
        lines.append(SEPARATOR.join(
            quote_field(_text_value(value, kind, profile.decimal_comma))
            for value, (_, kind) in zip(row, columns)
        ))

    return (BOM + profile.line_terminator.join(lines)).encode("utf-8")


# ============================================================================
# Spreadsheet
# ============================================================================

def money_format(currency_suffix: Optional[str] = None) -> str:
    if currency_suffix:
        return f'#,##0.00 "{currency_suffix}"'
    return "0.00"


PERCENT_FORMAT = "0.00"
DATE_FORMAT = "dd/mm/yyyy"
TEXT_FORMAT = "@"

# Fixed document and zip member time for spreadsheet payloads
WORKBOOK_TIMESTAMP = datetime(2000, 1, 1)
CORE_PROPERTIES_PATH = "docProps/core.xml"


def _write_cell(sheet, row_idx: int, col_idx: int, value: Any, kind: ColumnKind, profile: OutputProfile) -> None:
    if value is None:
        sheet.cell(row=row_idx, column=col_idx, value=None)
        return

    if kind is ColumnKind.DATE:
        parsed = parse_date(value)
        cell = sheet.cell(row=row_idx, column=col_idx, value=parsed or str(value))
        if parsed is not None:
            cell.number_format = DATE_FORMAT
    elif kind is ColumnKind.MONEY:
        cell = sheet.cell(row=row_idx, column=col_idx, value=float(value))
        cell.number_format = money_format(profile.currency_suffix)
    elif kind is ColumnKind.PERCENT:
        cell = sheet.cell(row=row_idx, column=col_idx, value=float(value))
        cell.number_format = PERCENT_FORMAT
    elif kind is ColumnKind.TEXT:
        cell = sheet.cell(row=row_idx, column=col_idx, value=str(value))
        cell.number_format = TEXT_FORMAT
    else:
        sheet.cell(row=row_idx, column=col_idx, value=int(value))


def to_spreadsheet(
    rows: Sequence[Sequence[Any]],
    columns: list[tuple[str, ColumnKind]],
    profile: OutputProfile,
    sheet_title: str = "IVS",
) -> bytes:
    """
    Serialize rows into an .xlsx workbook with one row per document.

    Dates become real date cells shown as dd/mm/yyyy; amounts and rates
    keep full precision in the cell and display 2 decimals.
    """
    workbook = Workbook()
    workbook.properties.created = WORKBOOK_TIMESTAMP
    sheet = workbook.active
    sheet.title = sheet_title

    row_idx = 1
    if profile.include_headers:
        for col_idx, (header, _) in enumerate(columns, start=1):
            sheet.cell(row=1, column=col_idx, value=header).font = Font(bold=True)
        row_idx = 2

    for row in rows:
        for col_idx, (value, (_, kind)) in enumerate(zip(row, columns), start=1):
            _write_cell(sheet, row_idx, col_idx, value, kind, profile)
        row_idx += 1

    buffer = io.BytesIO()
    workbook.save(buffer)
    return _stabilize_archive(buffer.getvalue(), workbook)


def _stabilize_archive(content: bytes, workbook: Workbook) -> bytes:
    """
    Rewrite a saved workbook so identical rows give identical bytes.

    openpyxl stamps the save time into docProps/core.xml and every zip
    member; both are replaced with WORKBOOK_TIMESTAMP.
    """
    workbook.properties.modified = WORKBOOK_TIMESTAMP
    core_xml = tostring(workbook.properties.to_tree())

    output = io.BytesIO()
    with zipfile.ZipFile(io.BytesIO(content)) as source, \
            zipfile.ZipFile(output, "w", zipfile.ZIP_DEFLATED) as target:
        for info in source.infolist():
            data = core_xml if info.filename == CORE_PROPERTIES_PATH else source.read(info.filename)
            member = zipfile.ZipInfo(info.filename, date_time=WORKBOOK_TIMESTAMP.timetuple()[:6])
            member.compress_type = zipfile.ZIP_DEFLATED
            member.external_attr = info.external_attr
            target.writestr(member, data)

    return output.getvalue()
