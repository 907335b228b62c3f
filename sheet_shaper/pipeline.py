"""
pipeline.py — Sanitize → Format → Filter over a row-object table.

Stages are tagged variants: a `Stage` names its kind, the columns it covers
(empty means every column) and a small options payload. One dispatch function
per stage family applies them, so a new kind is a new table entry rather than
a new class.

Public API:
    descriptors = describe_columns(table)
    config      = PipelineConfig(descriptors=descriptors, options=SanitizationOptions(sanitize_zip_codes=True))
    result      = run_pipeline(table, config)
    result.table            # filtered rows, ready for export
"""

from __future__ import annotations

import dataclasses
import json
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional, Sequence

from sheet_shaper import formatters as fmt
from sheet_shaper import sanitizers as san
from sheet_shaper.cells import to_number
from sheet_shaper.filters import FilterPredicate, apply_filters
from sheet_shaper.inference import (
    SEMANTIC_TYPES,
    default_preserve_chars,
    detect_value_type,
    infer_column_type,
)
from sheet_shaper.table import Table

logger = logging.getLogger(__name__)

SANITIZER_KINDS = (
    "special_chars",
    "zip_code",
    "zip_plus_four",
    "phone",
    "email",
    "currency",
    "ssn",
    "html",
    "policy_number",
    "date",
    "auto",
)
FORMATTER_KINDS = ("text_case", "number", "currency_amount", "percentage", "phone_pattern", "text_length")

GENERIC_TYPES = ("text", "number", "boolean", "unknown")


# ══════════════════════════════════════════════════════════════════════════════
# CONFIGURATION
# ══════════════════════════════════════════════════════════════════════════════

OPTION_KEYS = {
    "remove_special_chars": "removeSpecialChars",
    "replace_with_space": "replaceWithSpace",
    "sanitize_zip_codes": "sanitizeZipCodes",
    "keep_extended_zip": "keepExtendedZip",
    "country_format": "countryFormat",
    "format_policy_numbers": "formatPolicyNumbers",
    "auto_detect_policy_format": "autoDetectPolicyFormat",
    "policy_format": "policyFormat",
    "policy_separator": "policySeparator",
    "policy_columns": "policyColumns",
    "format_ssns": "formatSSNs",
    "ssn_format": "ssnFormat",
    "remove_html_formatting": "removeHtmlFormatting",
    "preserve_line_breaks": "preserveLineBreaks",
    "format_dates": "formatDates",
    "date_format": "dateFormat",
}
_FIELD_BY_KEY = {camel: name for name, camel in OPTION_KEYS.items()}


@dataclass(frozen=True)
class SanitizationOptions:
    remove_special_chars: bool = False
    replace_with_space: bool = True
    sanitize_zip_codes: bool = False
    keep_extended_zip: bool = False
    country_format: str = "US"
    format_policy_numbers: bool = False
    auto_detect_policy_format: bool = True
    policy_format: str = "XXX-XX-XXXX"
    policy_separator: str = "-"
    policy_columns: tuple[str, ...] = ()
    format_ssns: bool = False
    ssn_format: str = "XXX-XX-XXXX"
    remove_html_formatting: bool = False
    preserve_line_breaks: bool = True
    format_dates: bool = False
    date_format: str = "MM/DD/YYYY"

    def __post_init__(self) -> None:
        for name in ("country_format", "policy_format", "policy_separator", "ssn_format", "date_format"):
            if not isinstance(getattr(self, name), str):
                raise ValueError(f"{OPTION_KEYS[name]} must be a string, got {getattr(self, name)!r}")
        if self.ssn_format not in san.SSN_FORMATS:
            raise ValueError(f"Unknown SSN format {self.ssn_format!r}; expected one of {san.SSN_FORMATS}")
        if self.country_format.upper() not in san.ZIP_COUNTRIES:
            raise ValueError(f"Unknown country format {self.country_format!r}; expected one of {san.ZIP_COUNTRIES}")

    def to_dict(self) -> dict[str, Any]:
        payload = {}
        for name, camel in OPTION_KEYS.items():
            value = getattr(self, name)
            payload[camel] = list(value) if isinstance(value, tuple) else value
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "SanitizationOptions":
        """Build options from a camelCase (or snake_case) map; unknown keys are ignored."""
        values: dict[str, Any] = {}
        for key, value in payload.items():
            name = _FIELD_BY_KEY.get(key, key)
            if name not in OPTION_KEYS:
                continue
            if name == "policy_columns":
                value = tuple(value or ())
            values[name] = value
        return cls(**values)

    def replace(self, **changes: Any) -> "SanitizationOptions":
        return dataclasses.replace(self, **changes)


@dataclass(frozen=True)
class ColumnDescriptor:
    key: str
    semantic_type: str = "auto"
    sanitize: bool = True
    preserve_chars: str = ""
    display_name: Optional[str] = None
    user_edited: bool = False

    def __post_init__(self) -> None:
        if self.semantic_type not in SEMANTIC_TYPES:
            raise ValueError(f"Unknown semantic type {self.semantic_type!r}; expected one of {SEMANTIC_TYPES}")

    @property
    def label(self) -> str:
        return self.display_name or self.key

    def with_type(self, semantic_type: str) -> "ColumnDescriptor":
        return dataclasses.replace(
            self,
            semantic_type=semantic_type,
            preserve_chars=default_preserve_chars(semantic_type, self.preserve_chars),
            user_edited=True,
        )

    def edited(self, **changes: Any) -> "ColumnDescriptor":
        return dataclasses.replace(self, user_edited=True, **changes)

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


def describe_columns(
    table: Table,
    previous: Optional[Mapping[str, ColumnDescriptor]] = None,
) -> dict[str, ColumnDescriptor]:
    """Descriptors for every column: user-edited ones carried over when the key
    reappears, the rest seeded from type inference."""
    previous = previous or {}
    descriptors = {}
    for key in table.columns:
        carried = previous.get(key)
        if carried is not None and carried.user_edited:
            descriptors[key] = carried
            continue
        semantic_type = infer_column_type(table, key)
        descriptors[key] = ColumnDescriptor(
            key=key,
            semantic_type=semantic_type,
            preserve_chars=default_preserve_chars(semantic_type),
        )
    return descriptors


@dataclass(frozen=True)
class Stage:
    kind: str
    columns: tuple[str, ...] = ()
    options: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.kind not in SANITIZER_KINDS and self.kind not in FORMATTER_KINDS:
            raise ValueError(f"Unknown stage kind {self.kind!r}")
        object.__setattr__(self, "columns", tuple(self.columns))

    def covers(self, key: str) -> bool:
        return not self.columns or key in self.columns

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "columns": list(self.columns), "options": dict(self.options)}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Stage":
        return cls(
            kind=payload["kind"],
            columns=tuple(payload.get("columns") or ()),
            options=dict(payload.get("options") or {}),
        )


# ══════════════════════════════════════════════════════════════════════════════
# SANITIZE
# ══════════════════════════════════════════════════════════════════════════════

def _preserve(options: Mapping[str, Any], descriptor: Optional[ColumnDescriptor]) -> str:
    if "preserve" in options:
        return options["preserve"]
    return descriptor.preserve_chars if descriptor else ""


def _sanitize_auto(value: str, options: Mapping[str, Any], descriptor: Optional[ColumnDescriptor]) -> str:
    shape = detect_value_type(value.strip())
    if shape == "email":
        return san.format_email(value)
    if shape == "currency":
        return san.format_currency(value)
    if shape == "phone":
        return san.format_phone_number(value)
    if shape == "zipcode":
        return san.format_zip_code(value, options.get("country", "US"), options.get("keep_extended", False))
    if options.get("remove_special_chars"):
        return san.strip_special_characters(
            value, _preserve(options, descriptor), options.get("replace_with_space", True)
        )
    return value


SanitizerFn = Callable[[str, Mapping[str, Any], Optional[ColumnDescriptor]], Any]

_SANITIZERS: dict[str, SanitizerFn] = {
    "special_chars": lambda value, o, d: san.strip_special_characters(
        value, _preserve(o, d), o.get("replace_with_space", True)
    ),
    "zip_code": lambda value, o, d: san.format_zip_code(value, o.get("country", "US"), o.get("keep_extended", False)),
    "zip_plus_four": lambda value, o, d: san.truncate_zip_plus_four(value),
    "phone": lambda value, o, d: san.format_phone_number(value),
    "email": lambda value, o, d: san.format_email(value),
    "currency": lambda value, o, d: san.format_currency(value),
    "ssn": lambda value, o, d: san.format_ssn(value, o.get("format", "XXX-XX-XXXX")),
    "html": lambda value, o, d: san.strip_html(value, o.get("preserve_line_breaks", True)),
    "policy_number": lambda value, o, d: san.format_policy_number(
        value,
        o.get("template", "XXX-XX-XXXX"),
        o.get("separator", "-"),
        o.get("auto_detect", True),
    ),
    "date": lambda value, o, d: san.normalize_date(value, o.get("format", "MM/DD/YYYY")),
    "auto": _sanitize_auto,
}


def apply_sanitizer(stage: Stage, descriptor: Optional[ColumnDescriptor], value: Any) -> Any:
    """Run one sanitizer stage over one cell.

    Only non-blank strings are touched (the date stage also accepts date
    cells), and never in a column whose descriptor has sanitization off.
    """
    if stage.kind not in _SANITIZERS:
        raise ValueError(f"{stage.kind!r} is not a sanitizer stage")
    if descriptor is not None and not descriptor.sanitize:
        return value
    if isinstance(value, str):
        if not value.strip():
            return value
    elif not (stage.kind == "date" and san.parse_date(value) is not None):
        return value
    return _SANITIZERS[stage.kind](value, stage.options, descriptor)


def plan_sanitizers(options: SanitizationOptions, descriptors: Mapping[str, ColumnDescriptor]) -> list[Stage]:
    """The default sanitize plan implied by the global options and column types.

    Order: HTML, type-directed stages, per-value auto detection, special
    characters, policy numbers, then the global ZIP+4 truncation.
    """
    enabled = [descriptor for descriptor in descriptors.values() if descriptor.sanitize]

    def keys_of(*types: str) -> tuple[str, ...]:
        return tuple(descriptor.key for descriptor in enabled if descriptor.semantic_type in types)

    stages: list[Stage] = []

    def add(kind: str, columns: Sequence[str], **stage_options: Any) -> None:
        # An empty column set would mean "all columns"; a plan never wants that.
        if columns:
            stages.append(Stage(kind, tuple(columns), stage_options))

    if options.remove_html_formatting:
        add("html", keys_of("text", "auto"), preserve_line_breaks=options.preserve_line_breaks)

    add(
        "zip_code",
        keys_of("zipcode"),
        country=options.country_format,
        keep_extended=(not options.sanitize_zip_codes) or options.keep_extended_zip,
    )
    add("phone", keys_of("phone"))
    add("email", keys_of("email"))
    add("currency", keys_of("currency"))
    add("ssn", keys_of("ssn"), format=options.ssn_format if options.format_ssns else "XXX-XX-XXXX")
    if options.format_dates:
        add("date", keys_of("date"), format=options.date_format)

    add(
        "auto",
        keys_of("auto"),
        country=options.country_format,
        keep_extended=(not options.sanitize_zip_codes) or options.keep_extended_zip,
        remove_special_chars=options.remove_special_chars,
        replace_with_space=options.replace_with_space,
    )

    if options.remove_special_chars:
        add("special_chars", keys_of(*GENERIC_TYPES), replace_with_space=options.replace_with_space)

    if options.format_policy_numbers:
        enabled_keys = {descriptor.key for descriptor in enabled}
        if options.policy_columns:
            policy_keys = [key for key in options.policy_columns if key in enabled_keys]
        else:
            policy_keys = [descriptor.key for descriptor in enabled if "policy" in descriptor.key.lower()]
        add(
            "policy_number",
            policy_keys,
            template=options.policy_format,
            separator=options.policy_separator,
            auto_detect=options.auto_detect_policy_format,
        )

    if options.sanitize_zip_codes:
        add("zip_plus_four", [descriptor.key for descriptor in enabled if descriptor.semantic_type != "zipcode"])

    return stages


def sanitize_table(table: Table, stages: Sequence[Stage], descriptors: Mapping[str, ColumnDescriptor]) -> Table:
    rows = []
    for source in table.rows:
        row = dict(source)
        for stage in stages:
            for key in stage.columns or table.columns:
                if key in row:
                    row[key] = apply_sanitizer(stage, descriptors.get(key), row[key])
        rows.append(row)
    return table.with_rows(rows)


def type_divergence(table: Table, descriptors: Mapping[str, ColumnDescriptor]) -> dict[str, int]:
    """Per column, how many values look like a different type than the column's own."""
    divergence = {}
    for key in table.columns:
        descriptor = descriptors.get(key)
        if descriptor is None or descriptor.semantic_type == "auto":
            continue
        count = 0
        for value in table.column_values(key):
            if not isinstance(value, str) or not value.strip():
                continue
            shape = detect_value_type(value.strip())
            if shape is not None and shape != descriptor.semantic_type:
                count += 1
        if count:
            divergence[key] = count
    return divergence


# ══════════════════════════════════════════════════════════════════════════════
# FORMAT
# ══════════════════════════════════════════════════════════════════════════════

def _number_options(options: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "decimals": int(options.get("decimals", 2)),
        "thousands_separator": options.get("thousands_separator", ","),
        "decimal_separator": options.get("decimal_separator", "."),
    }


def _format_numeric(value: Any, render: Callable[[float], str]) -> Any:
    number = to_number(value)
    return value if number is None else render(number)


def _format_text(value: Any, render: Callable[[str], str]) -> Any:
    return render(value) if isinstance(value, str) else value


_FORMATTERS: dict[str, Callable[[Any, Mapping[str, Any]], Any]] = {
    "text_case": lambda value, o: _format_text(value, lambda text: fmt.apply_text_case(text, o.get("case", "title"))),
    "number": lambda value, o: _format_numeric(
        value,
        lambda number: fmt.format_number(
            number, prefix=o.get("prefix", ""), suffix=o.get("suffix", ""), **_number_options(o)
        ),
    ),
    "currency_amount": lambda value, o: _format_numeric(
        value, lambda number: fmt.format_currency_amount(number, o.get("symbol", "$"), **_number_options(o))
    ),
    "percentage": lambda value, o: _format_numeric(
        value, lambda number: fmt.format_percentage(number, **_number_options(o))
    ),
    "phone_pattern": lambda value, o: _format_text(
        value,
        lambda text: fmt.apply_phone_pattern(text, o.get("pattern", "(XXX) XXX-XXXX"), o.get("country_code", "")),
    ),
    "text_length": lambda value, o: _format_text(
        value,
        lambda text: fmt.fit_text_length(
            text,
            int(o.get("max_length", 50)),
            o.get("truncation_marker", "..."),
            o.get("pad_char", " "),
            o.get("pad_direction", "end"),
        ),
    ),
}


def apply_formatter(stage: Stage, value: Any) -> Any:
    if stage.kind not in _FORMATTERS:
        raise ValueError(f"{stage.kind!r} is not a formatter stage")
    return _FORMATTERS[stage.kind](value, stage.options)


def format_table(table: Table, stages: Sequence[Stage]) -> Table:
    if not stages:
        return table
    rows = []
    for source in table.rows:
        row = dict(source)
        for stage in stages:
            for key in stage.columns or table.columns:
                if key in row:
                    row[key] = apply_formatter(stage, row[key])
        rows.append(row)
    return table.with_rows(rows)


# ══════════════════════════════════════════════════════════════════════════════
# RUN
# ══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class PipelineConfig:
    descriptors: Mapping[str, ColumnDescriptor] = field(default_factory=dict)
    options: SanitizationOptions = field(default_factory=SanitizationOptions)
    formatters: tuple[Stage, ...] = ()
    filters: tuple[FilterPredicate, ...] = ()
    extra_sanitizers: tuple[Stage, ...] = ()

    def sanitizer_plan(self) -> list[Stage]:
        return plan_sanitizers(self.options, self.descriptors) + list(self.extra_sanitizers)

    def fingerprint(self) -> str:
        payload = {
            "descriptors": {key: descriptor.to_dict() for key, descriptor in sorted(self.descriptors.items())},
            "options": self.options.to_dict(),
            "formatters": [stage.to_dict() for stage in self.formatters],
            "filters": sorted(json.dumps(f.to_dict(), sort_keys=True, default=str) for f in self.filters),
            "extra_sanitizers": [stage.to_dict() for stage in self.extra_sanitizers],
        }
        return json.dumps(payload, sort_keys=True, default=str)


@dataclass(frozen=True)
class PipelineResult:
    sanitized: Table
    formatted: Table
    filtered: Table

    @property
    def table(self) -> Table:
        return self.filtered

    @property
    def dropped_rows(self) -> int:
        return len(self.formatted) - len(self.filtered)


def run_pipeline(table: Table, config: PipelineConfig) -> PipelineResult:
    sanitized = sanitize_table(table, config.sanitizer_plan(), config.descriptors)
    formatted = format_table(sanitized, config.formatters)
    filtered = formatted.with_rows(apply_filters(formatted.rows, config.filters))
    logger.debug(
        "Pipeline: %d rows in, %d admitted by %d filter(s)", len(table), len(filtered), len(config.filters)
    )
    return PipelineResult(sanitized=sanitized, formatted=formatted, filtered=filtered)


class PipelineCache:
    """Memoizes run_pipeline keyed by (grid version, header row, config fingerprint)."""

    def __init__(self, max_entries: int = 8) -> None:
        self.max_entries = max_entries
        self.hits = 0
        self.misses = 0
        self._entries: OrderedDict[tuple[int, int, str], PipelineResult] = OrderedDict()

    def run(self, table: Table, grid_version: int, config: PipelineConfig) -> PipelineResult:
        key = (grid_version, table.header_row, config.fingerprint())
        cached = self._entries.get(key)
        if cached is not None:
            self.hits += 1
            self._entries.move_to_end(key)
            return cached
        self.misses += 1
        result = run_pipeline(table, config)
        self._entries[key] = result
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
        return result

    def clear(self) -> None:
        self._entries.clear()
