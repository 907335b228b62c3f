"""
loader.py — Grid loader for sheet-shaper

Supports: .csv .tsv .txt .xlsx .xlsm .xls .ods .pdf

Public API:
    loaded = load_grid("path/to/file.xlsx")
    grid   = loaded.rows

    preview = load_preview(("upload.csv", raw_bytes), rows=15)

The grid carries no header assumption: row 0 is whatever the first non-blank
source row is. Missing cells become "" and rows that are blank after trimming
are dropped before indexing, for previews and full loads alike.
"""

from __future__ import annotations

import csv
import datetime as dt
import io
import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Optional, Union

import chardet
import openpyxl
import pandas as pd

from sheet_shaper.cells import is_blank
from sheet_shaper.errors import EmptySourceError, LoadError
from sheet_shaper.pdf_tables import find_text_tables, read_pdf_text

logger = logging.getLogger(__name__)

# ── Format groups ──────────────────────────────────────────────────────────────
TEXT_FORMATS = {".csv", ".tsv", ".txt"}
MODERN_WORKBOOK_FORMATS = {".xlsx", ".xlsm"}
LEGACY_WORKBOOK_FORMATS = {".xls", ".ods"}
PDF_FORMATS = {".pdf"}
ALL_FORMATS = TEXT_FORMATS | MODERN_WORKBOOK_FORMATS | LEGACY_WORKBOOK_FORMATS | PDF_FORMATS

PREVIEW_ROWS = 15

Cell = Union[str, int, float, bool, dt.date, dt.datetime]
Grid = list[list[Cell]]
Source = Union[str, Path, tuple[str, bytes]]


@dataclass
class LoadedGrid:
    rows: Grid
    source_name: str
    detected_format: str
    sheet_name: Optional[str] = None
    sheet_names: list[str] = field(default_factory=list)
    encoding_info: Optional[dict] = None
    delimiter: Optional[str] = None
    warnings: list[str] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def width(self) -> int:
        return max((len(row) for row in self.rows), default=0)


# ══════════════════════════════════════════════════════════════════════════════
# CELL CLEANING (shared by preview and full load)
# ══════════════════════════════════════════════════════════════════════════════

def normalize_cell(value: Any) -> Cell:
    """Coerce a codec value into one of the grid's primitive cell types."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return value
    if isinstance(value, pd.Timestamp):
        if pd.isna(value):
            return ""
        return value.to_pydatetime()
    if isinstance(value, float):
        return "" if math.isnan(value) else value
    if isinstance(value, (str, int, dt.datetime, dt.date)):
        return value
    if isinstance(value, dt.time):
        return value.isoformat()
    if hasattr(value, "item"):
        # numpy scalars from pandas readers
        return normalize_cell(value.item())
    return str(value)


def clean_rows(rows: Iterable[Iterable[Any]], limit: Optional[int] = None) -> Grid:
    """Normalize cells and drop blank rows, stopping after `limit` kept rows."""
    grid: Grid = []
    for raw_row in rows:
        row = [normalize_cell(value) for value in (raw_row or ())]
        if all(is_blank(cell) for cell in row):
            continue
        grid.append(row)
        if limit is not None and len(grid) >= limit:
            break
    return grid


# ══════════════════════════════════════════════════════════════════════════════
# ENCODING DETECTION
# ══════════════════════════════════════════════════════════════════════════════

def _detect_encoding_info(raw: bytes) -> dict:
    """
    Detect encoding from raw bytes.

    Returns dict with: detected, confidence, is_utf8, suspicious_chars.
    """
    result = chardet.detect(raw)
    detected = result.get("encoding") or "unknown"
    confidence = round(result.get("confidence") or 0.0, 2)
    is_utf8 = detected.upper().replace("-", "") in ("UTF8", "ASCII")

    suspicious: list[str] = []
    if not is_utf8:
        for row_idx, line in enumerate(raw.split(b"\n")[:100], start=1):
            try:
                line.decode("utf-8")
            except UnicodeDecodeError as e:
                bad_byte = line[e.start : e.end]
                suspicious.append(f"row {row_idx}: byte {bad_byte!r} at position {e.start}")

    return {
        "detected": detected,
        "confidence": confidence,
        "is_utf8": is_utf8,
        "suspicious_chars": suspicious[:10],
    }


def _read_text_safely(raw: bytes, preferred_encoding: str) -> str:
    """
    Decode raw bytes line-by-line.

    Strategy per line: UTF-8, then the detected encoding, then latin-1, then
    CP1252 with replacement. Embedded null bytes are stripped.
    """
    decoded_lines: list[str] = []
    for raw_line in raw.split(b"\n"):
        decoded: str | None = None
        for enc in ("utf-8", preferred_encoding, "latin-1"):
            if not enc or enc == "unknown":
                continue
            try:
                decoded = raw_line.decode(enc)
                break
            except (LookupError, UnicodeDecodeError):
                continue
        if decoded is None:
            decoded = raw_line.decode("cp1252", errors="replace")
        decoded_lines.append(decoded.replace("\x00", "").rstrip("\r"))
    text = "\n".join(decoded_lines)
    return text.lstrip("\ufeff")


# ══════════════════════════════════════════════════════════════════════════════
# DELIMITER DETECTION
# ══════════════════════════════════════════════════════════════════════════════

def _detect_delimiter(text: str, suffix: str = ".csv") -> str:
    """
    Infer the delimiter from sample lines.

    Uses csv.Sniffer first; falls back to scoring each candidate delimiter by
    column-count consistency and column width.
    """
    sample_lines = [line for line in text.splitlines() if line.strip()][:50]
    sample = "\n".join(sample_lines[:25])

    if sample:
        try:
            sniffed = csv.Sniffer().sniff(sample, delimiters=",;\t|")
            return sniffed.delimiter
        except csv.Error:
            pass

    best_delim = "\t" if suffix == ".tsv" else ","
    best_score = float("-inf")
    best_width = 0
    sample_text = "\n".join(sample_lines)

    for delim in (",", ";", "\t", "|"):
        rows = [
            row
            for row in csv.reader(io.StringIO(sample_text), delimiter=delim)
            if any(cell.strip() for cell in row)
        ]
        if len(rows) < 2:
            continue
        widths = [len(row) for row in rows]
        mode_width, mode_count = Counter(widths).most_common(1)[0]
        if mode_width == 1:
            continue
        score = (mode_width * 2.0) + (mode_count / len(widths)) * mode_width
        if score > best_score or (score == best_score and mode_width > best_width):
            best_score = score
            best_width = mode_width
            best_delim = delim

    return best_delim


# ══════════════════════════════════════════════════════════════════════════════
# FORMAT READERS
# ══════════════════════════════════════════════════════════════════════════════

def _read_source(source: Source) -> tuple[str, bytes]:
    if isinstance(source, tuple):
        name, raw = source
        return name, raw
    path = Path(source)
    try:
        return path.name, path.read_bytes()
    except OSError as exc:
        raise LoadError(f"Could not read {path}: {exc}", exc) from exc


def _pick_sheet(sheet_names: list[str], sheet_name: Optional[str], warnings: list[str]) -> str:
    if not sheet_names:
        raise EmptySourceError("No sheets found in the workbook")
    if sheet_name is None:
        chosen = sheet_names[0]
        if len(sheet_names) > 1:
            warnings.append(
                f"Multiple sheets found ({len(sheet_names)} total); used '{chosen}'. "
                f"Ignored: {sheet_names[1:]}"
            )
        return chosen
    if sheet_name not in sheet_names:
        raise LoadError(f"Sheet '{sheet_name}' not found. Available: {sheet_names}")
    return sheet_name


def _load_text(name: str, raw: bytes, suffix: str, limit: Optional[int]) -> LoadedGrid:
    encoding_info = _detect_encoding_info(raw)
    text = _read_text_safely(raw, encoding_info["detected"])
    delimiter = _detect_delimiter(text, suffix)
    logger.debug("%s: encoding=%s delimiter=%r", name, encoding_info["detected"], delimiter)

    warnings: list[str] = []
    if not encoding_info["is_utf8"] and encoding_info["detected"] != "unknown":
        warnings.append(f"Decoded as {encoding_info['detected']} (confidence {encoding_info['confidence']})")

    try:
        reader = csv.reader(io.StringIO(text), delimiter=delimiter)
        rows = clean_rows(reader, limit)
    except csv.Error as exc:
        raise LoadError(f"Could not parse {name}: {exc}", exc) from exc

    return LoadedGrid(
        rows=rows,
        source_name=name,
        detected_format=suffix.lstrip("."),
        encoding_info=encoding_info,
        delimiter=delimiter,
        warnings=warnings,
    )


def _load_modern_workbook(
    name: str,
    raw: bytes,
    suffix: str,
    sheet_name: Optional[str],
    limit: Optional[int],
) -> LoadedGrid:
    try:
        workbook = openpyxl.load_workbook(io.BytesIO(raw), read_only=True, data_only=True)
    except Exception as exc:
        raise LoadError(f"Could not open workbook: {exc}", exc) from exc

    warnings: list[str] = []
    try:
        sheet_names = list(workbook.sheetnames)
        chosen = _pick_sheet(sheet_names, sheet_name, warnings)
        rows = clean_rows(workbook[chosen].iter_rows(values_only=True), limit)
    finally:
        workbook.close()

    return LoadedGrid(
        rows=rows,
        source_name=name,
        detected_format=suffix.lstrip("."),
        sheet_name=chosen,
        sheet_names=sheet_names,
        warnings=warnings,
    )


def _load_legacy_workbook(
    name: str,
    raw: bytes,
    suffix: str,
    sheet_name: Optional[str],
    limit: Optional[int],
) -> LoadedGrid:
    engine = "odf" if suffix == ".ods" else "xlrd"
    try:
        with pd.ExcelFile(io.BytesIO(raw), engine=engine) as xf:
            sheet_names = [str(sheet) for sheet in xf.sheet_names]
            warnings: list[str] = []
            chosen = _pick_sheet(sheet_names, sheet_name, warnings)
            df = pd.read_excel(xf, sheet_name=chosen, header=None, dtype=object)
    except ImportError as exc:
        package = "odfpy" if engine == "odf" else "xlrd"
        raise LoadError(f"{suffix} files require {package}: pip install {package}", exc) from exc
    except LoadError:
        raise
    except Exception as exc:
        raise LoadError(f"Could not open workbook: {exc}", exc) from exc

    rows = clean_rows(df.itertuples(index=False, name=None), limit)
    return LoadedGrid(
        rows=rows,
        source_name=name,
        detected_format=suffix.lstrip("."),
        sheet_name=chosen,
        sheet_names=sheet_names,
        warnings=warnings,
    )


def _load_pdf(name: str, raw: bytes, sheet_name: Optional[str], limit: Optional[int]) -> LoadedGrid:
    try:
        text = read_pdf_text(raw)
    except Exception as exc:
        raise LoadError(f"Could not read PDF: {exc}", exc) from exc

    tables = find_text_tables(text)
    warnings: list[str] = []
    if not tables:
        warnings.append("No text tables detected; each non-blank line became a one-cell row.")
        raw_rows: list[list[Any]] = [[line] for line in text.splitlines()]
        return LoadedGrid(
            rows=clean_rows(raw_rows, limit),
            source_name=name,
            detected_format="pdf",
            warnings=warnings,
        )

    table_names = [f"Table {index}" for index in range(1, len(tables) + 1)]
    chosen = _pick_sheet(table_names, sheet_name, warnings)
    table = tables[table_names.index(chosen)]
    return LoadedGrid(
        rows=clean_rows(table.to_grid(), limit),
        source_name=name,
        detected_format="pdf",
        sheet_name=chosen,
        sheet_names=table_names,
        warnings=warnings,
    )


# ══════════════════════════════════════════════════════════════════════════════
# PUBLIC API
# ══════════════════════════════════════════════════════════════════════════════

def load_grid(
    source: Source,
    sheet_name: Optional[str] = None,
    max_rows: Optional[int] = None,
) -> LoadedGrid:
    """
    Load a source into a grid of primitive cells.

    `source` is a filesystem path or a `(filename, bytes)` pair; the filename's
    extension selects the reader.

    Raises:
        LoadError: unsupported, unreadable or corrupt source.
        EmptySourceError: zero sheets, or no non-blank rows.
    """
    name, raw = _read_source(source)
    suffix = Path(name).suffix.lower()
    if suffix not in ALL_FORMATS:
        raise LoadError(
            f"Unsupported file format '{suffix or name}'. Supported: {', '.join(sorted(ALL_FORMATS))}"
        )

    if suffix in TEXT_FORMATS:
        loaded = _load_text(name, raw, suffix, max_rows)
    elif suffix in MODERN_WORKBOOK_FORMATS:
        loaded = _load_modern_workbook(name, raw, suffix, sheet_name, max_rows)
    elif suffix in LEGACY_WORKBOOK_FORMATS:
        loaded = _load_legacy_workbook(name, raw, suffix, sheet_name, max_rows)
    else:
        loaded = _load_pdf(name, raw, sheet_name, max_rows)

    if not loaded.rows:
        where = f" sheet '{loaded.sheet_name}'" if loaded.sheet_name else ""
        raise EmptySourceError(f"{name}{where} has no non-blank rows")

    logger.debug("Loaded %s: %d rows, format=%s", name, loaded.row_count, loaded.detected_format)
    return loaded


def load_preview(source: Source, sheet_name: Optional[str] = None, rows: int = PREVIEW_ROWS) -> LoadedGrid:
    """First `rows` non-blank rows, indexed exactly as a full load indexes them."""
    return load_grid(source, sheet_name=sheet_name, max_rows=rows)
