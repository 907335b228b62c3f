"""
structure.py — Header-row detection for messy, human-authored grids.

Title banners, notes and blank padding often sit above the real header, so
the header row is chosen by a cascade of heuristics, strongest signal first:

  1. label-like row      short string cells covering most of the row
  2. column structure    three consecutive rows with the same filled width
  3. type transition     a string row followed by more numeric rows
  4. first dense row     the first row with at least three filled cells

Every stage breaks ties by earliest row index, so detection is deterministic.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from sheet_shaper.cells import is_blank

logger = logging.getLogger(__name__)

LABEL_SCAN_ROWS = 15
TRANSITION_SCAN_ROWS = 10
FALLBACK_SCAN_ROWS = 10
STRUCTURE_SCAN_ROWS = 100
MIN_FILLED_CELLS = 3

LABEL_MIN_STRING_PERCENT = 65.0
LABEL_MIN_COVERAGE = 0.5
LABEL_MAX_AVG_LENGTH = 30.0
STRING_MAJORITY = 0.6
TRANSITION_MIN_STRING_PERCENT = 70.0


@dataclass(frozen=True)
class RowStats:
    index: int
    cells: int
    non_empty: int
    strings: int
    numbers: int
    string_percent: float
    avg_string_length: float

    @property
    def number_percent(self) -> float:
        return (self.numbers / self.non_empty * 100.0) if self.non_empty else 0.0

    @property
    def string_ratio(self) -> float:
        return (self.strings / self.non_empty) if self.non_empty else 0.0

    @property
    def coverage(self) -> float:
        return self.non_empty / max(1, self.cells)

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "cells": self.cells,
            "non_empty": self.non_empty,
            "strings": self.strings,
            "numbers": self.numbers,
            "string_percent": round(self.string_percent, 1),
        }


def is_string_cell(value: Any) -> bool:
    return isinstance(value, str) and not is_blank(value)


def is_number_cell(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def row_stats(row: Sequence[Any], index: int) -> RowStats:
    non_empty = [cell for cell in row if not is_blank(cell)]
    strings = [cell for cell in non_empty if is_string_cell(cell)]
    numbers = sum(1 for cell in non_empty if is_number_cell(cell))
    string_percent = (len(strings) / len(non_empty) * 100.0) if non_empty else 0.0
    avg_length = (sum(len(cell) for cell in strings) / len(strings)) if strings else 0.0
    return RowStats(
        index=index,
        cells=len(row),
        non_empty=len(non_empty),
        strings=len(strings),
        numbers=numbers,
        string_percent=string_percent,
        avg_string_length=avg_length,
    )


def analyze_rows(grid: Sequence[Sequence[Any]], limit: int = LABEL_SCAN_ROWS) -> list[RowStats]:
    """Per-row structural statistics for the first `limit` rows."""
    return [row_stats(row, index) for index, row in enumerate(grid[:limit])]


# ══════════════════════════════════════════════════════════════════════════════
# CASCADE STAGES
# ══════════════════════════════════════════════════════════════════════════════

def _label_row(grid: Sequence[Sequence[Any]]) -> Optional[int]:
    stats = analyze_rows(grid, LABEL_SCAN_ROWS)
    for row in stats:
        if row.non_empty < MIN_FILLED_CELLS:
            continue
        if (
            row.strings >= MIN_FILLED_CELLS
            and row.string_percent > LABEL_MIN_STRING_PERCENT
            and row.coverage > LABEL_MIN_COVERAGE
            and 0 < row.avg_string_length < LABEL_MAX_AVG_LENGTH
        ):
            if row.index + 1 < len(grid):
                following = row_stats(grid[row.index + 1], row.index + 1)
                if following.non_empty >= row.non_empty and following.numbers > 0:
                    logger.debug("Row %d: label row confirmed by numeric row below", row.index)
            return row.index
    return None


def _consistent_structure_row(grid: Sequence[Sequence[Any]]) -> Optional[int]:
    if len(grid) < 3:
        return None
    counts = [row_stats(row, index) for index, row in enumerate(grid[:STRUCTURE_SCAN_ROWS])]
    for index in range(len(counts) - 2):
        width = counts[index].non_empty
        if width < MIN_FILLED_CELLS:
            continue
        if counts[index + 1].non_empty != width or counts[index + 2].non_empty != width:
            continue
        if counts[index].string_ratio > STRING_MAJORITY:
            return index
        if index > 0:
            previous = counts[index - 1]
            if previous.string_ratio > STRING_MAJORITY and previous.non_empty >= MIN_FILLED_CELLS:
                return index - 1
        return index
    return None


def _type_transition_row(grid: Sequence[Sequence[Any]]) -> Optional[int]:
    if len(grid) < 3:
        return None
    for index in range(min(TRANSITION_SCAN_ROWS, len(grid) - 2)):
        current = row_stats(grid[index], index)
        if current.non_empty < MIN_FILLED_CELLS:
            continue
        if current.string_percent < TRANSITION_MIN_STRING_PERCENT:
            continue
        following = [row_stats(grid[index + offset], index + offset) for offset in (1, 2)]
        if any(row.number_percent > current.number_percent for row in following):
            return index
    return None


def _first_dense_row(grid: Sequence[Sequence[Any]]) -> int:
    stats = analyze_rows(grid, FALLBACK_SCAN_ROWS)
    dense = [row for row in stats if row.non_empty >= MIN_FILLED_CELLS]
    for row in dense:
        if row.string_ratio > STRING_MAJORITY:
            return row.index
    if dense:
        return dense[0].index
    return 0


def detect_header_row(grid: Sequence[Sequence[Any]]) -> int:
    """Index of the grid row most likely to hold column labels (0 when unsure)."""
    if not grid:
        return 0

    stages = (
        ("label row", _label_row),
        ("consistent column structure", _consistent_structure_row),
        ("type transition", _type_transition_row),
    )
    for name, stage in stages:
        found = stage(grid)
        if found is not None:
            logger.debug("Header row %d chosen by %s", found, name)
            return found

    found = _first_dense_row(grid)
    logger.debug("Header row %d chosen by first dense row fallback", found)
    return found
