"""
sanitizers.py — Destructive value cleanup.

Every function here takes one string value plus its options and returns the
cleaned string. They are pure and idempotent: feeding a sanitized value back
through the same sanitizer with the same options returns it unchanged.
"""

from __future__ import annotations

import datetime as dt
import logging
import re
from typing import Any

import pandas as pd

logger = logging.getLogger(__name__)

CURRENCY_SYMBOLS = "$€£¥₹"
SSN_FORMATS = ("XXX-XX-XXXX", "XXXXXXXXX", "XXX-XX-****")
ZIP_COUNTRIES = ("US", "CA", "UK", "OTHER")

NON_DIGIT_RE = re.compile(r"\D")
NON_ALNUM_RE = re.compile(r"[^A-Za-z0-9]")
WHITESPACE_RUN_RE = re.compile(r"\s+")
ZIP_PLUS_FOUR_RE = re.compile(r"^(\d{5})-\d{4}$")

LINE_BREAK_TAG_RE = re.compile(r"<br\s*/?>|</p>|</div>", re.IGNORECASE)
TAG_RE = re.compile(r"<[^>]*>")
LINE_BREAK_PLACEHOLDER = "{LINEBREAK}"
HTML_ENTITIES = (
    ("&nbsp;", " "),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#39;", "'"),
    ("&amp;", "&"),
)
EXCESS_LINE_BREAKS_RE = re.compile(r"\n{3,}")
HORIZONTAL_SPACE_RE = re.compile(r"[ \t]+")

DATE_TOKEN_RE = re.compile(r"YYYY|YY|MM|M|DD|D|HH|H|mm|m|ss|s")


def digits_only(value: str) -> str:
    return NON_DIGIT_RE.sub("", value)


# ── Special characters ─────────────────────────────────────────────────────────

def strip_special_characters(value: str, preserve: str = "", replace_with_space: bool = True) -> str:
    """Drop characters that are not alphanumeric, whitespace or in `preserve`."""
    replacement = " " if replace_with_space else ""
    cleaned = "".join(
        char if (char.isalnum() or char.isspace() or char in preserve) else replacement
        for char in value
    )
    if replace_with_space:
        cleaned = WHITESPACE_RUN_RE.sub(" ", cleaned).strip()
    return cleaned


# ── Postal codes ───────────────────────────────────────────────────────────────

def format_zip_code(value: str, country: str = "US", keep_extended: bool = False) -> str:
    """Normalize a postal code to the country's convention.

    US: short codes are left-padded to 5 digits; long ones become ZIP+4 when
    `keep_extended` is set and are cut to 5 digits otherwise.
    """
    country = (country or "US").upper()
    if country == "US":
        digits = digits_only(value)
        if not digits:
            return value
        if len(digits) <= 5:
            return digits.rjust(5, "0")
        if keep_extended:
            return f"{digits[:5]}-{digits[5:9].ljust(4, '0')}"
        return digits[:5]

    cleaned = NON_ALNUM_RE.sub("", value).upper()
    if not cleaned:
        return value
    if country == "CA":
        code = cleaned[:6].ljust(6, "0")
        return f"{code[:3]} {code[3:]}"
    if country == "UK":
        if len(cleaned) <= 4:
            return cleaned
        return f"{cleaned[:-3]} {cleaned[-3:]}"
    return cleaned


def truncate_zip_plus_four(value: str) -> str:
    match = ZIP_PLUS_FOUR_RE.match(value.strip())
    return match.group(1) if match else value


# ── Phone, email, currency ─────────────────────────────────────────────────────

def format_phone_number(value: str) -> str:
    digits = digits_only(value)
    if not digits:
        return value
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    if len(digits) == 10:
        return f"{digits[:3]}-{digits[3:6]}-{digits[6:]}"
    if len(digits) < 7:
        return digits

    local = f"{digits[-7:-4]}-{digits[-4:]}"
    area = digits[-10:-7]
    country = digits[:-10]
    return "-".join(part for part in (country, area, local) if part)


def format_email(value: str) -> str:
    return value.strip().lower()


def format_currency(value: str) -> str:
    if any(symbol in value for symbol in CURRENCY_SYMBOLS):
        return value
    return f"${value.strip()}"


# ── SSN ────────────────────────────────────────────────────────────────────────

def format_ssn(value: str, output_format: str = "XXX-XX-XXXX") -> str:
    if output_format not in SSN_FORMATS:
        raise ValueError(f"Unknown SSN format {output_format!r}; expected one of {SSN_FORMATS}")
    digits = digits_only(value)
    if not digits:
        return value
    digits = digits.ljust(9, "0")[:9]
    if output_format == "XXXXXXXXX":
        return digits
    if output_format == "XXX-XX-****":
        return f"{digits[:3]}-{digits[3:5]}-****"
    return f"{digits[:3]}-{digits[3:5]}-{digits[5:]}"


# ── HTML ───────────────────────────────────────────────────────────────────────

def strip_html(value: str, preserve_line_breaks: bool = True) -> str:
    text = LINE_BREAK_TAG_RE.sub(LINE_BREAK_PLACEHOLDER if preserve_line_breaks else " ", value)
    text = TAG_RE.sub("", text)
    for entity, replacement in HTML_ENTITIES:
        text = text.replace(entity, replacement)
    text = text.replace(LINE_BREAK_PLACEHOLDER, "\n")
    text = EXCESS_LINE_BREAKS_RE.sub("\n\n", text)
    text = HORIZONTAL_SPACE_RE.sub(" ", text)
    return text.strip(" ")


# ── Policy numbers ─────────────────────────────────────────────────────────────

def format_policy_number(
    value: str,
    template: str = "XXX-XX-XXXX",
    separator: str = "-",
    auto_detect: bool = True,
) -> str:
    """Segment a policy number per `template`.

    With `auto_detect`, a bare 10-digit number always becomes NNN-NNN-NNNN,
    whatever the template and separator say.
    """
    cleaned = NON_ALNUM_RE.sub("", value)
    if not cleaned:
        return ""
    if auto_detect and len(cleaned) == 10 and cleaned.isdigit():
        return f"{cleaned[:3]}-{cleaned[3:6]}-{cleaned[6:]}"

    segments = [len(part) for part in template.split(separator)] if separator else [len(template)]
    parts = []
    position = 0
    for length in segments:
        if position >= len(cleaned):
            break
        parts.append(cleaned[position : position + length])
        position += length
    if position < len(cleaned):
        parts.append(cleaned[position:])
    return separator.join(part for part in parts if part)


# ── Dates ──────────────────────────────────────────────────────────────────────

def _date_tokens(moment: dt.datetime) -> dict[str, str]:
    return {
        "YYYY": f"{moment.year:04d}",
        "YY": f"{moment.year % 100:02d}",
        "MM": f"{moment.month:02d}",
        "M": str(moment.month),
        "DD": f"{moment.day:02d}",
        "D": str(moment.day),
        "HH": f"{moment.hour:02d}",
        "H": str(moment.hour),
        "mm": f"{moment.minute:02d}",
        "m": str(moment.minute),
        "ss": f"{moment.second:02d}",
        "s": str(moment.second),
    }


def parse_date(value: Any) -> dt.datetime | None:
    if isinstance(value, dt.datetime):
        return value
    if isinstance(value, dt.date):
        return dt.datetime(value.year, value.month, value.day)
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = pd.to_datetime(value.strip())
    except (ValueError, TypeError, OverflowError):
        return None
    if pd.isna(parsed):
        return None
    return parsed.to_pydatetime()


def normalize_date(value: Any, output_format: str = "MM/DD/YYYY") -> Any:
    """Re-render a date in `output_format`; unparseable values come back as-is."""
    moment = parse_date(value)
    if moment is None:
        logger.debug("Leaving unparseable date %r unchanged", value)
        return value
    tokens = _date_tokens(moment)
    return DATE_TOKEN_RE.sub(lambda match: tokens[match.group(0)], output_format)
