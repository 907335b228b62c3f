"""
exporter.py — Serialize a processed table to xlsx, csv or json bytes.

Column selection and renaming happen here and nowhere earlier: the pipeline
always works on the full original key set, and the export is the only place
where display names replace keys.
"""

from __future__ import annotations

import csv
import datetime as dt
import io
import json
import logging
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence

import openpyxl
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from sheet_shaper.cells import cell_text
from sheet_shaper.errors import ExportError
from sheet_shaper.table import Table

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("xlsx", "csv", "json")
SHEET_TITLE = "Processed Data"
HEADER_COLOR = "4472C4"


def project(
    table: Table,
    selected_columns: Optional[Sequence[str]] = None,
    display_names: Optional[Mapping[str, str]] = None,
) -> tuple[list[str], list[list[Any]]]:
    """Headers (display names) and cell rows for the selected columns, in selection order."""
    keys = list(table.columns) if selected_columns is None else list(selected_columns)
    unknown = [key for key in keys if key not in table.columns]
    if unknown:
        raise ExportError(f"Cannot export unknown column(s): {unknown}")
    names = display_names or {}
    headers = [names.get(key) or key for key in keys]
    rows = [[row.get(key, "") for key in keys] for row in table.rows]
    return headers, rows


def to_grid(
    table: Table,
    selected_columns: Optional[Sequence[str]] = None,
    display_names: Optional[Mapping[str, str]] = None,
) -> list[list[Any]]:
    headers, rows = project(table, selected_columns, display_names)
    return [headers] + rows


# ══════════════════════════════════════════════════════════════════════════════
# WRITERS
# ══════════════════════════════════════════════════════════════════════════════

def _style_sheet(ws, col_widths: list[int], header_color: str) -> None:
    """Bold coloured header, frozen first row, column widths."""
    fill = PatternFill("solid", fgColor=header_color)
    font = Font(bold=True, color="FFFFFF")
    for cell in ws[1]:
        cell.font = font
        cell.fill = fill
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=False)
    ws.freeze_panes = "A2"
    for index, width in enumerate(col_widths, start=1):
        ws.column_dimensions[get_column_letter(index)].width = width


def _infer_col_widths(rows: list[list], min_width: int = 10, max_width: int = 60, sample: int = 300) -> list[int]:
    if not rows:
        return []
    widths = [max(min_width, min(max_width, len(cell_text(v)) + 2)) for v in rows[0]]
    for row in rows[1 : sample + 1]:
        for index, value in enumerate(row[: len(widths)]):
            widths[index] = max(widths[index], min(max_width, len(cell_text(value)) + 2))
    return widths


def _xlsx_value(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, (str, int, float, bool, dt.date, dt.datetime)):
        return value
    return cell_text(value)


def _write_xlsx(headers: list[str], rows: list[list[Any]], sheet_title: str) -> bytes:
    workbook = openpyxl.Workbook()
    ws = workbook.active
    ws.title = sheet_title
    ws.append(headers)
    for row in rows:
        ws.append([_xlsx_value(value) for value in row])
        for cell in ws[ws.max_row]:
            # text that merely looks like a formula stays text
            if isinstance(cell.value, str) and cell.value.startswith("="):
                cell.data_type = "s"
    _style_sheet(ws, _infer_col_widths([headers] + rows), HEADER_COLOR)

    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def _write_csv(headers: list[str], rows: list[list[Any]]) -> bytes:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow(headers)
    for row in rows:
        writer.writerow([cell_text(value) for value in row])
    return buffer.getvalue().encode("utf-8")


def _json_value(value: Any) -> Any:
    if isinstance(value, (dt.date, dt.datetime)):
        return cell_text(value)
    return value


def _write_json(headers: list[str], rows: list[list[Any]]) -> bytes:
    duplicates = sorted({name for name in headers if headers.count(name) > 1})
    if duplicates:
        raise ExportError(f"JSON export needs unique column names; duplicated: {duplicates}")
    records = [{name: _json_value(value) for name, value in zip(headers, row)} for row in rows]
    return json.dumps(records, indent=2, ensure_ascii=False).encode("utf-8")


# ══════════════════════════════════════════════════════════════════════════════
# PUBLIC API
# ══════════════════════════════════════════════════════════════════════════════

def export_table(
    table: Table,
    selected_columns: Optional[Sequence[str]] = None,
    display_names: Optional[Mapping[str, str]] = None,
    fmt: str = "xlsx",
    sheet_title: str = SHEET_TITLE,
) -> bytes:
    """Serialize `table` to bytes in `fmt`.

    Raises ExportError for an unknown format or column, or when the codec
    fails; the table itself is never modified.
    """
    if fmt not in EXPORT_FORMATS:
        raise ExportError(f"Unsupported export format {fmt!r}; expected one of {EXPORT_FORMATS}")
    headers, rows = project(table, selected_columns, display_names)
    try:
        if fmt == "xlsx":
            blob = _write_xlsx(headers, rows, sheet_title)
        elif fmt == "csv":
            blob = _write_csv(headers, rows)
        else:
            blob = _write_json(headers, rows)
    except ExportError:
        raise
    except Exception as exc:
        raise ExportError(f"Could not write {fmt} export: {exc}") from exc
    logger.debug("Exported %d rows x %d columns as %s", len(rows), len(headers), fmt)
    return blob


def export_filename(source_name: str, fmt: str) -> str:
    return f"{Path(source_name).stem or 'export'}_processed.{fmt}"
