"""Row-object tables and the materializer that builds them from a grid."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

from sheet_shaper.cells import cell_text
from sheet_shaper.errors import HeaderOutOfRangeError

Row = dict[str, Any]


@dataclass(frozen=True)
class Table:
    """Ordered rows sharing one ordered key set.

    Tables are never mutated in place; every stage returns a new one.
    """

    columns: tuple[str, ...]
    rows: tuple[Row, ...] = field(default_factory=tuple)
    header_row: int = 0

    def __len__(self) -> int:
        return len(self.rows)

    def column_values(self, key: str) -> list[Any]:
        if key not in self.columns:
            raise KeyError(key)
        return [row[key] for row in self.rows]

    def with_rows(self, rows: Iterable[Row]) -> "Table":
        return Table(columns=self.columns, rows=tuple(rows), header_row=self.header_row)

    def head(self, count: int) -> "Table":
        return self.with_rows(self.rows[:count])


def synthetic_key(index: int) -> str:
    return f"Column{index + 1}"


def header_keys(header: Sequence[Any]) -> list[str]:
    """Unique column keys for a header row; empty or repeated labels become ColumnN."""
    keys: list[str] = []
    seen: set[str] = set()
    for index, raw in enumerate(header):
        label = cell_text(raw).strip()
        key = label if label and label not in seen else synthetic_key(index)
        if key in seen:
            suffix = 2
            while f"{key}_{suffix}" in seen:
                suffix += 1
            key = f"{key}_{suffix}"
        seen.add(key)
        keys.append(key)
    return keys


def materialize(grid: Sequence[Sequence[Any]], header_row: int) -> Table:
    """Build the row-object table whose keys come from grid row `header_row`.

    Rows shorter than the header are padded with "" and cells past the header
    width are dropped, so every row carries exactly the table's key set.
    """
    if header_row < 0 or header_row >= len(grid):
        raise HeaderOutOfRangeError(header_row, len(grid))

    columns = header_keys(grid[header_row])
    rows = []
    for source in grid[header_row + 1 :]:
        rows.append({key: (source[index] if index < len(source) else "") for index, key in enumerate(columns)})
    return Table(columns=tuple(columns), rows=tuple(rows), header_row=header_row)


def search_rows(rows: Iterable[Row], query: str) -> list[Row]:
    """Rows where any cell's text contains `query`, ignoring case."""
    needle = query.strip().lower()
    if not needle:
        return list(rows)
    return [row for row in rows if any(needle in cell_text(value).lower() for value in row.values())]
