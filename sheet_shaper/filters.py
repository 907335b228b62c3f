"""
filters.py — Row-admitting predicates.

A row passes when every active predicate holds (AND, so predicate order never
changes the admitted set). Predicates only read cells; surviving rows are
passed through untouched.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Optional, Sequence

from sheet_shaper.cells import cell_text, to_number
from sheet_shaper.inference import BOOLEAN_FALSE, BOOLEAN_TRUE
from sheet_shaper.sanitizers import parse_date
from sheet_shaper.table import Row

OPERATORS = (
    "equals",
    "notEquals",
    "contains",
    "notContains",
    "startsWith",
    "endsWith",
    "greaterThan",
    "lessThan",
    "between",
    "in",
    "notIn",
    "isTrue",
    "isFalse",
    "dateRange",
    "before",
    "after",
)


@dataclass(frozen=True)
class FilterPredicate:
    column: str
    operator: str
    value: Any = None

    def __post_init__(self) -> None:
        if self.operator not in OPERATORS:
            raise ValueError(f"Unknown filter operator {self.operator!r}; expected one of {OPERATORS}")

    def to_dict(self) -> dict[str, Any]:
        return {"column": self.column, "operator": self.operator, "value": self.value}

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "FilterPredicate":
        return cls(column=payload["column"], operator=payload["operator"], value=payload.get("value"))


def _text(value: Any) -> str:
    return cell_text(value).strip().lower()


def _absent(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set, frozenset)):
        return list(value)
    return [value]


def _bounds(value: Any) -> tuple[Any, Any]:
    if isinstance(value, dict):
        return value.get("from"), value.get("to")
    if isinstance(value, (list, tuple)) and len(value) == 2:
        return value[0], value[1]
    return None, None


def truthiness(value: Any) -> bool:
    if isinstance(value, str):
        text = value.strip().lower()
        if text in BOOLEAN_TRUE:
            return True
        if text in BOOLEAN_FALSE or not text:
            return False
        return True
    return bool(value)


def _loose_equals(cell: Any, operand: Any) -> bool:
    cell_number, operand_number = to_number(cell), to_number(operand)
    if cell_number is not None and operand_number is not None:
        return cell_number == operand_number
    return _text(cell) == _text(operand)


def _compare_numbers(cell: Any, operand: Any, op: str) -> bool:
    cell_number, operand_number = to_number(cell), to_number(operand)
    if cell_number is None or operand_number is None:
        return False
    return cell_number > operand_number if op == "greaterThan" else cell_number < operand_number


def _between(cell: Any, operand: Any) -> bool:
    low, high = _bounds(operand)
    if _absent(low) or _absent(high):
        return True
    number, low_number, high_number = to_number(cell), to_number(low), to_number(high)
    if number is None or low_number is None or high_number is None:
        return False
    return low_number <= number <= high_number


def _date_range(cell: Any, operand: Any) -> bool:
    start, end = _bounds(operand)
    if _absent(start) or _absent(end):
        return True
    moment, start_moment, end_moment = parse_date(cell), parse_date(start), parse_date(end)
    if moment is None or start_moment is None or end_moment is None:
        return False
    return start_moment <= moment <= end_moment


def _date_compare(cell: Any, operand: Any, op: str) -> bool:
    if _absent(operand):
        return True
    moment, bound = parse_date(cell), parse_date(operand)
    if moment is None or bound is None:
        return False
    return moment < bound if op == "before" else moment > bound


def evaluate(predicate: FilterPredicate, row: Row) -> bool:
    """Whether `row` satisfies `predicate`; a missing (None) cell never does."""
    cell = row.get(predicate.column)
    if cell is None:
        return False
    op, operand = predicate.operator, predicate.value

    if op == "equals":
        return _loose_equals(cell, operand)
    if op == "notEquals":
        return not _loose_equals(cell, operand)
    if op == "contains":
        return _text(operand) in _text(cell)
    if op == "notContains":
        return _text(operand) not in _text(cell)
    if op == "startsWith":
        return _text(cell).startswith(_text(operand))
    if op == "endsWith":
        return _text(cell).endswith(_text(operand))
    if op in ("greaterThan", "lessThan"):
        return _compare_numbers(cell, operand, op)
    if op == "between":
        return _between(cell, operand)
    if op in ("in", "notIn"):
        found = _text(cell) in {_text(item) for item in _as_list(operand)}
        return found if op == "in" else not found
    if op == "isTrue":
        return truthiness(cell)
    if op == "isFalse":
        return not truthiness(cell)
    if op == "dateRange":
        return _date_range(cell, operand)
    return _date_compare(cell, operand, op)


def admits(predicates: Sequence[FilterPredicate], row: Row) -> bool:
    return all(evaluate(predicate, row) for predicate in predicates)


def apply_filters(rows: Iterable[Row], predicates: Sequence[FilterPredicate]) -> list[Row]:
    if not predicates:
        return list(rows)
    return [row for row in rows if admits(predicates, row)]


def prune_filters(predicates: Iterable[FilterPredicate], columns: Iterable[str]) -> tuple[FilterPredicate, ...]:
    """Keep only predicates whose column is still among `columns`."""
    keep = set(columns)
    return tuple(predicate for predicate in predicates if predicate.column in keep)


def parse_filter_expression(expression: str) -> FilterPredicate:
    """Parse the CLI shorthand `COLUMN:OPERATOR[:VALUE]`.

    List operands (in/notIn) are comma-separated; between/dateRange take
    `LOW..HIGH`.
    """
    column, sep, rest = expression.partition(":")
    if not sep or not column:
        raise ValueError(f"Filter must look like COLUMN:OPERATOR[:VALUE], got {expression!r}")
    operator, _, raw_value = rest.partition(":")
    value: Optional[Any] = raw_value if raw_value != "" else None
    if value is not None and operator in ("in", "notIn"):
        value = [item.strip() for item in raw_value.split(",")]
    elif value is not None and operator in ("between", "dateRange"):
        low, _, high = raw_value.partition("..")
        value = {"from": low or None, "to": high or None} if operator == "dateRange" else [low or None, high or None]
    return FilterPredicate(column=column, operator=operator, value=value)
