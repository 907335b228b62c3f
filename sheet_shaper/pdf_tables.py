"""
pdf_tables.py — Heuristic table extraction from PDF page text.

PDF text carries no cell structure, so a run of lines that each contain at
least two column separators (runs of 2+ spaces, tabs, commas or pipes) is
treated as a table. The first line of each run supplies the headers.
"""

from __future__ import annotations

import io
import re
from dataclasses import dataclass, field
from typing import Optional

from pypdf import PdfReader

DELIMITER_RE = re.compile(r"\s{2,}|\t|,|\|")
MIN_TABLE_DELIMITERS = 2
MIN_TABLE_LINES = 2

# Tried in order; the first split closest to the expected width wins ties.
_SPLITTERS = (
    lambda line: re.split(r"\s{2,}", line),
    lambda line: line.split("\t"),
    lambda line: line.split(","),
    lambda line: line.split("|"),
)


@dataclass
class PdfTable:
    headers: list[str]
    rows: list[list[str]] = field(default_factory=list)

    def to_grid(self) -> list[list[str]]:
        return [list(self.headers)] + [list(row) for row in self.rows]

    def to_records(self) -> list[dict[str, str]]:
        return [
            {header: (row[index] if index < len(row) else "") for index, header in enumerate(self.headers)}
            for row in self.rows
        ]


def read_pdf_text(raw: bytes) -> str:
    reader = PdfReader(io.BytesIO(raw))
    return "\n".join((page.extract_text() or "") for page in reader.pages)


def count_delimiters(line: str) -> int:
    return len(DELIMITER_RE.findall(line))


def split_columns(line: str, expected: int) -> list[str]:
    """Split a line with whichever separator lands closest to `expected` columns."""
    best: list[str] = [line]
    best_diff: Optional[int] = None
    for splitter in _SPLITTERS:
        parts = splitter(line)
        diff = abs(len(parts) - expected)
        if best_diff is None or diff < best_diff:
            best, best_diff = parts, diff
    return [part.strip() for part in best]


def _header_key(raw: str, index: int) -> str:
    cleaned = re.sub(r"\s+", "_", raw.strip())
    return cleaned or f"Column{index + 1}"


def parse_table_lines(lines: list[str], expected: int) -> Optional[PdfTable]:
    if len(lines) < MIN_TABLE_LINES:
        return None
    raw_headers = split_columns(lines[0], expected)
    headers = [_header_key(raw, index) for index, raw in enumerate(raw_headers)]
    rows = []
    for line in lines[1:]:
        values = split_columns(line, expected)
        rows.append([values[index] if index < len(values) else "" for index in range(len(headers))])
    return PdfTable(headers=headers, rows=rows)


def find_text_tables(text: str) -> list[PdfTable]:
    """Return every table-shaped run of lines in `text`, in document order."""
    lines = [line for line in text.split("\n") if line.strip()]
    tables: list[PdfTable] = []
    current: list[str] = []
    expected = 0

    def close() -> None:
        table = parse_table_lines(current, expected)
        if table is not None:
            tables.append(table)

    for line in lines:
        delimiters = count_delimiters(line)
        if delimiters >= MIN_TABLE_DELIMITERS:
            if not current:
                expected = delimiters + 1
            current.append(line)
        elif current:
            close()
            current = []

    if current:
        close()
    return tables


def extract_with_pattern(text: str, pattern: str, multiline: bool = False, first_only: bool = False) -> list[dict[str, str]]:
    """Collect the named groups of every match of `pattern` in `text`."""
    flags = re.MULTILINE if multiline else 0
    regex = re.compile(pattern, flags)
    results = []
    for match in regex.finditer(text):
        groups = {key: value for key, value in match.groupdict().items() if value is not None}
        if groups:
            results.append(groups)
        if first_only:
            break
    return results
