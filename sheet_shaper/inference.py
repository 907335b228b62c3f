"""
inference.py — Semantic column types from sampled values.

A column's type is the first entry of TYPE_PRIORITY whose pattern matches at
least 60% of up to 100 non-empty sampled values. Distinctive shapes (email,
zip, phone, ssn) are tried before the loose numeric ones so a 5-digit zip is
not read as a bare number.
"""

from __future__ import annotations

import datetime as dt
import re
from typing import Any, Iterable, Optional

from sheet_shaper.cells import cell_text, is_blank
from sheet_shaper.table import Table

SEMANTIC_TYPES = (
    "auto",
    "text",
    "number",
    "date",
    "zipcode",
    "phone",
    "email",
    "currency",
    "ssn",
    "boolean",
    "unknown",
)

SAMPLE_CAP = 100
MATCH_THRESHOLD = 0.6

EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
ZIP_RE = re.compile(r"^\d{5}(-\d{4})?$")
PHONE_RE = re.compile(r"^(\+\d{1,3}[\s.-]?)?\(?\d{3}\)?[\s.-]?\d{3}[\s.-]?\d{4}$")
SSN_RE = re.compile(r"^\d{3}-\d{2}-\d{4}$")
CURRENCY_RE = re.compile(
    r"^\s*(?:[£$€¥]\s*(?=[\d,.]*\d)[\d,.]+|\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+\.\d{2})\s*$"
)
CURRENCY_SYMBOL_RE = re.compile(r"^\s*[£$€¥]\s*[\d,.]+\s*$")
DATE_RE = re.compile(r"^\d{1,4}[-/.]\d{1,2}[-/.]\d{1,4}$")
NUMBER_RE = re.compile(r"^-?\d+(\.\d+)?$")

TYPE_PRIORITY = (
    ("email", EMAIL_RE),
    ("zipcode", ZIP_RE),
    ("phone", PHONE_RE),
    ("ssn", SSN_RE),
    ("currency", CURRENCY_RE),
    ("date", DATE_RE),
    ("number", NUMBER_RE),
)

DEFAULT_PRESERVE_CHARS = {
    "zipcode": "-",
    "phone": "()-. ",
    "email": "@._-",
    "currency": "$,.€£¥",
    "ssn": "-",
}

BOOLEAN_TRUE = {"true", "yes", "y", "1"}
BOOLEAN_FALSE = {"false", "no", "n", "0"}


def sample_values(values: Iterable[str], sample_cap: int = SAMPLE_CAP) -> list[str]:
    sample = []
    for value in values:
        if not isinstance(value, str):
            continue
        text = value.strip()
        if not text:
            continue
        sample.append(text)
        if len(sample) >= sample_cap:
            break
    return sample


def infer_type(values: Iterable[str], sample_cap: int = SAMPLE_CAP) -> str:
    """Semantic type for a column's cell-as-string values.

    Returns "auto" for an empty sample and "text" when no pattern reaches
    the match threshold.
    """
    sample = sample_values(values, sample_cap)
    if not sample:
        return "auto"
    for semantic_type, pattern in TYPE_PRIORITY:
        matches = sum(1 for value in sample if pattern.match(value))
        if matches / len(sample) >= MATCH_THRESHOLD:
            return semantic_type
    return "text"


def infer_column_type(table: Table, key: str, sample_cap: int = SAMPLE_CAP) -> str:
    return infer_type((cell_text(value) for value in table.column_values(key)), sample_cap)


def default_preserve_chars(semantic_type: str, current: str = "") -> str:
    return DEFAULT_PRESERVE_CHARS.get(semantic_type, current)


def detect_value_type(value: str) -> Optional[str]:
    """Per-value shape used by the auto sanitizer: email, currency, phone or zip."""
    if EMAIL_RE.match(value):
        return "email"
    if CURRENCY_SYMBOL_RE.match(value):
        return "currency"
    if PHONE_RE.match(value):
        return "phone"
    if ZIP_RE.match(value):
        return "zipcode"
    return None


# ══════════════════════════════════════════════════════════════════════════════
# FILTER COLUMN KINDS
# ══════════════════════════════════════════════════════════════════════════════

FILTER_OPERATIONS = {
    "string": ("equals", "notEquals", "contains", "notContains", "startsWith", "endsWith", "in", "notIn"),
    "number": ("equals", "notEquals", "greaterThan", "lessThan", "between", "in", "notIn"),
    "date": ("dateRange", "before", "after", "equals"),
    "boolean": ("isTrue", "isFalse"),
    "unknown": ("equals",),
}

_DEFAULT_OPERATION = {
    "string": "contains",
    "number": "equals",
    "date": "dateRange",
    "boolean": "isTrue",
}


def is_boolean_like(value: Any) -> bool:
    if isinstance(value, bool):
        return True
    if isinstance(value, (int, float)):
        return value in (0, 1)
    if isinstance(value, str):
        return value.strip().lower() in BOOLEAN_TRUE | BOOLEAN_FALSE
    return False


def _is_numeric_like(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    if isinstance(value, str):
        digits = re.sub(r"[^0-9.-]", "", value)
        if not digits:
            return False
        try:
            float(digits)
        except ValueError:
            return False
        return True
    return False


def _is_date_like(value: Any) -> bool:
    if isinstance(value, (dt.date, dt.datetime)):
        return True
    return isinstance(value, str) and bool(DATE_RE.match(value.strip()))


def infer_filter_kind(values: Iterable[Any]) -> str:
    """Filter-side column kind: string, number, date, boolean or unknown."""
    present = [value for value in values if not is_blank(value)]
    if not present:
        return "unknown"
    if all(is_boolean_like(value) for value in present):
        return "boolean"
    total = len(present)
    symbol_currency = sum(1 for value in present if isinstance(value, str) and CURRENCY_SYMBOL_RE.match(value))
    if symbol_currency > total * 0.5:
        return "number"
    if sum(1 for value in present if _is_date_like(value)) > total * 0.5:
        return "date"
    if sum(1 for value in present if _is_numeric_like(value)) > total * 0.7:
        return "number"
    return "string"


def default_operation(kind: str) -> str:
    return _DEFAULT_OPERATION.get(kind, "equals")
