"""Display formatters: case, number, currency, percentage, phone patterns, length."""

from __future__ import annotations

from sheet_shaper.sanitizers import digits_only

TEXT_CASES = ("upper", "lower", "title", "sentence")
PAD_DIRECTIONS = ("start", "end")


def apply_text_case(value: str, case: str = "title") -> str:
    if case == "upper":
        return value.upper()
    if case == "lower":
        return value.lower()
    if case == "title":
        return " ".join(word[:1].upper() + word[1:] for word in value.lower().split(" "))
    if case == "sentence":
        return value[:1].upper() + value[1:].lower()
    raise ValueError(f"Unknown text case {case!r}; expected one of {TEXT_CASES}")


def format_number(
    number: float,
    decimals: int = 2,
    thousands_separator: str = ",",
    decimal_separator: str = ".",
    prefix: str = "",
    suffix: str = "",
) -> str:
    rendered = f"{number:,.{decimals}f}"
    whole, _, fraction = rendered.partition(".")
    whole = whole.replace(",", thousands_separator)
    body = f"{whole}{decimal_separator}{fraction}" if fraction else whole
    return f"{prefix}{body}{suffix}"


def format_currency_amount(
    number: float,
    symbol: str = "$",
    decimals: int = 2,
    thousands_separator: str = ",",
    decimal_separator: str = ".",
) -> str:
    return format_number(number, decimals, thousands_separator, decimal_separator, prefix=symbol)


def format_percentage(
    number: float,
    decimals: int = 2,
    thousands_separator: str = ",",
    decimal_separator: str = ".",
) -> str:
    return format_number(number * 100, decimals, thousands_separator, decimal_separator, suffix="%")


def apply_phone_pattern(value: str, pattern: str = "(XXX) XXX-XXXX", country_code: str = "") -> str:
    """Fill the pattern's X slots with the value's digits.

    Digits left over after every slot is filled are appended; slots left
    unfilled are dropped.
    """
    digits = digits_only(value)
    if not digits:
        return value

    remaining = iter(digits)
    used = 0
    filled = []
    for char in pattern:
        if char == "X" and used < len(digits):
            filled.append(next(remaining))
            used += 1
        else:
            filled.append(char)
    result = "".join(filled).replace("X", "") + digits[used:]

    if country_code and country_code.strip():
        result = f"{country_code} {result}"
    return result


def fit_text_length(
    value: str,
    max_length: int = 50,
    truncation_marker: str = "...",
    pad_char: str = " ",
    pad_direction: str = "end",
) -> str:
    """Truncate `value` to `max_length` with a marker, or pad it to exactly that length."""
    if len(value) > max_length:
        keep = max(0, max_length - len(truncation_marker))
        return (value[:keep] + truncation_marker)[:max_length]
    if len(value) < max_length:
        fill = (pad_char or " ")[0]
        if pad_direction == "start":
            return value.rjust(max_length, fill)
        return value.ljust(max_length, fill)
    return value
