from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from sheet_shaper import __version__ as TOOL_VERSION
from sheet_shaper.contracts import build_run_summary, wrap_payload
from sheet_shaper.errors import ExportError, HeaderOutOfRangeError, LoadError, ShaperError
from sheet_shaper.exporter import EXPORT_FORMATS, export_filename
from sheet_shaper.filters import parse_filter_expression
from sheet_shaper.inference import SEMANTIC_TYPES, infer_filter_kind
from sheet_shaper.loader import load_grid
from sheet_shaper.pipeline import SanitizationOptions, describe_columns, type_divergence
from sheet_shaper.presets import ColumnSelection, PresetConfig, PresetStore
from sheet_shaper.session import (
    Workspace,
    add_filter,
    apply_preset,
    rename_column,
    select_columns,
    set_column_type,
    set_options,
)
from sheet_shaper.structure import LABEL_SCAN_ROWS, analyze_rows, detect_header_row
from sheet_shaper.table import materialize

EXIT_SUCCESS = 0
EXIT_COMMAND_ERROR = 1
EXIT_LOAD_FAILED = 2
EXIT_HEADER_OUT_OF_RANGE = 3
EXIT_EXPORT_FAILED = 4

OUTPUT_STAMP_ENV = "SHEET_SHAPER_OUTPUT_STAMP"


class CliError(Exception):
    def __init__(self, message: str, code: int = EXIT_COMMAND_ERROR) -> None:
        super().__init__(message)
        self.code = code


class SheetShaperArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        raise CliError(message, EXIT_COMMAND_ERROR)


def eprint(message: str) -> None:
    print(message, file=sys.stderr)


def emit_human(message: str, *, quiet: bool = False) -> None:
    if not quiet:
        eprint(message)


def json_dumps(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True, default=str)


def configure_logging(args: argparse.Namespace) -> None:
    if getattr(args, "verbose", False):
        level = logging.DEBUG
    elif getattr(args, "quiet", False):
        level = logging.ERROR
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s", stream=sys.stderr)


def timestamp_token() -> str:
    override = os.environ.get(OUTPUT_STAMP_ENV)
    if override:
        return override
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def default_output_dir(input_path: Path) -> Path:
    return Path.cwd() / "sheet-shaper-output" / f"{input_path.stem}-{timestamp_token()}"


def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def write_bytes(path: Path, payload: bytes) -> None:
    ensure_parent(path)
    path.write_bytes(payload)


def write_text(path: Path, payload: str) -> None:
    ensure_parent(path)
    path.write_text(payload, encoding="utf-8")


def write_json(path: Path, payload: Any) -> None:
    write_text(path, json_dumps(payload))


def classify_exception(exc: Exception) -> int:
    if isinstance(exc, CliError):
        return exc.code
    if isinstance(exc, HeaderOutOfRangeError):
        return EXIT_HEADER_OUT_OF_RANGE
    if isinstance(exc, LoadError):
        return EXIT_LOAD_FAILED
    if isinstance(exc, ExportError):
        return EXIT_EXPORT_FAILED
    return EXIT_COMMAND_ERROR


def parse_pairs(items: list[str] | None, flag: str) -> dict[str, str]:
    pairs: dict[str, str] = {}
    for item in items or []:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise CliError(f"{flag} expects KEY=VALUE, got {item!r}", EXIT_COMMAND_ERROR)
        pairs[key] = value
    return pairs


def read_options_file(path: str | None) -> dict[str, Any]:
    if not path:
        return {}
    try:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise CliError(f"Could not read options file {path}: {exc}", EXIT_COMMAND_ERROR) from exc
    if not isinstance(payload, dict):
        raise CliError(f"Options file {path} must hold a JSON object", EXIT_COMMAND_ERROR)
    return payload


def merge_options(base: SanitizationOptions, overrides: dict[str, Any]) -> SanitizationOptions:
    if not overrides:
        return base
    try:
        return SanitizationOptions.from_dict({**base.to_dict(), **overrides})
    except (TypeError, ValueError) as exc:
        raise CliError(f"Invalid sanitization options: {exc}", EXIT_COMMAND_ERROR) from exc


def open_store(args: argparse.Namespace) -> PresetStore:
    return PresetStore(Path(args.store)) if getattr(args, "store", None) else PresetStore()


def maybe_emit_json_stdout(payload: Any, enabled: bool) -> None:
    if enabled:
        print(json_dumps(payload))


# ══════════════════════════════════════════════════════════════════════════════
# RENDERING
# ══════════════════════════════════════════════════════════════════════════════

def render_inspect_text(payload: dict[str, Any]) -> str:
    lines = [
        "sheet-shaper inspect",
        f"File: {payload['file']}",
        f"Format: {payload['detected_format']}",
        f"Rows: {payload['row_count']}",
        f"Header row: {payload['header_row']}" + (" (detected)" if payload["header_detected"] else ""),
    ]
    if payload.get("sheet_name"):
        lines.append(f"Sheet: {payload['sheet_name']}")
    if payload.get("encoding"):
        lines.append(f"Encoding: {payload['encoding']}")
    lines.append("Columns:")
    for column in payload["columns"]:
        lines.append(f"- {column['key']}: {column['semantic_type']} (filter: {column['filter_kind']})")
    if payload["type_divergence"]:
        lines.append("Values that look like another type:")
        lines.extend(f"- {key}: {count}" for key, count in payload["type_divergence"].items())
    if payload["warnings"]:
        lines.append("Warnings:")
        lines.extend(f"- {warning}" for warning in payload["warnings"])
    return "\n".join(lines) + "\n"


def render_transform_text(payload: dict[str, Any]) -> str:
    summary = payload["run_summary"]
    metrics = summary["metrics"]
    lines = [
        "sheet-shaper transform",
        f"Input: {summary['input_file']}",
        f"Output: {summary['output_file']}",
        f"Format: {payload['format']}",
        f"Header row: {payload['header_row']}",
        f"Rows in: {metrics['rows_in']}",
        f"Rows out: {metrics['rows_out']}",
        f"Columns exported: {metrics['columns_exported']}",
        f"Sanitizer stages: {metrics['sanitizer_stages']}",
    ]
    if summary["warnings"]:
        lines.append("Warnings:")
        lines.extend(f"- {warning}" for warning in summary["warnings"])
    return "\n".join(lines) + "\n"


# ══════════════════════════════════════════════════════════════════════════════
# PARSER
# ══════════════════════════════════════════════════════════════════════════════

def add_common_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    parser.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    parser.add_argument("-v", "--verbose", action="store_true", help="More human logs")


def build_parser() -> argparse.ArgumentParser:
    parser = SheetShaperArgumentParser(
        prog="sheet-shaper",
        description="Detect the header of a messy sheet, then sanitize, filter and re-export its table.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    inspect = subparsers.add_parser("inspect", help="Show row statistics, the detected header and column types.")
    inspect.add_argument("input", help="Input file path")
    inspect.add_argument("--sheet", dest="sheet_name", help="Workbook sheet name (default: first sheet)")
    inspect.add_argument("--rows", type=int, default=LABEL_SCAN_ROWS, help="How many leading rows to profile")
    inspect.add_argument("--header-row", type=int, help="Override the detected header row (0-based)")
    add_common_flags(inspect)

    transform = subparsers.add_parser("transform", help="Run the pipeline and write the export.")
    transform.add_argument("input", help="Input file path")
    transform.add_argument("--sheet", dest="sheet_name", help="Workbook sheet name (default: first sheet)")
    transform.add_argument("--header-row", type=int, help="Override the detected header row (0-based)")
    transform.add_argument("--preset", help="Preset id or name to apply first")
    transform.add_argument("--options", dest="options_file", help="JSON file of camelCase sanitization options")
    transform.add_argument("--type", dest="types", action="append", metavar="KEY=TYPE", help="Override a column type")
    transform.add_argument("--select", action="append", metavar="KEY", help="Export only these columns (repeatable)")
    transform.add_argument("--rename", action="append", metavar="KEY=NAME", help="Export a column under a new name")
    transform.add_argument("--filter", dest="filters", action="append", metavar="KEY:OP[:VALUE]", help="Keep rows matching")
    transform.add_argument("--format", choices=EXPORT_FORMATS, default="xlsx", help="Export format")
    transform.add_argument("-o", "--output", help="Explicit export path")
    transform.add_argument("--store", help="Preset store path")
    add_common_flags(transform)

    presets = subparsers.add_parser("presets", help="Manage saved presets.")
    presets_subparsers = presets.add_subparsers(dest="presets_command", required=True)

    presets_list = presets_subparsers.add_parser("list", help="List saved presets.")
    presets_list.add_argument("--store", help="Preset store path")
    add_common_flags(presets_list)

    presets_show = presets_subparsers.add_parser("show", help="Show one preset.")
    presets_show.add_argument("preset", help="Preset id or name")
    presets_show.add_argument("--store", help="Preset store path")
    add_common_flags(presets_show)

    presets_save = presets_subparsers.add_parser("save", help="Save a preset.")
    presets_save.add_argument("name", help="Preset name")
    presets_save.add_argument("--options", dest="options_file", help="JSON file of camelCase sanitization options")
    presets_save.add_argument("--description", help="Free-text description")
    presets_save.add_argument("--id", dest="preset_id", help="Overwrite the preset with this id")
    presets_save.add_argument("--select", action="append", metavar="KEY", help="Columns the preset selects")
    presets_save.add_argument("--type", dest="types", action="append", metavar="KEY=TYPE", help="Column type to replay")
    presets_save.add_argument("--store", help="Preset store path")
    add_common_flags(presets_save)

    presets_delete = presets_subparsers.add_parser("delete", help="Delete a preset.")
    presets_delete.add_argument("preset_id", help="Preset id")
    presets_delete.add_argument("--store", help="Preset store path")
    add_common_flags(presets_delete)

    subparsers.add_parser("version", help="Print version")
    return parser


# ══════════════════════════════════════════════════════════════════════════════
# COMMANDS
# ══════════════════════════════════════════════════════════════════════════════

def run_inspect(args: argparse.Namespace) -> int:
    input_path = Path(args.input)
    if not input_path.exists():
        eprint(f"File not found: {input_path}")
        return EXIT_COMMAND_ERROR
    try:
        loaded = load_grid(input_path, sheet_name=args.sheet_name)
        header_detected = args.header_row is None
        header_row = detect_header_row(loaded.rows) if header_detected else args.header_row
        table = materialize(loaded.rows, header_row)
        descriptors = describe_columns(table)
        columns = [
            {
                "key": key,
                "semantic_type": descriptors[key].semantic_type,
                "preserve_chars": descriptors[key].preserve_chars,
                "filter_kind": infer_filter_kind(table.column_values(key)),
            }
            for key in table.columns
        ]
        body = {
            "file": str(input_path),
            "detected_format": loaded.detected_format,
            "sheet_name": loaded.sheet_name,
            "sheet_names": loaded.sheet_names,
            "encoding": (loaded.encoding_info or {}).get("detected"),
            "delimiter": loaded.delimiter,
            "row_count": loaded.row_count,
            "header_row": header_row,
            "header_detected": header_detected,
            "row_stats": [stats.to_dict() for stats in analyze_rows(loaded.rows, limit=max(0, args.rows))],
            "columns": columns,
            "type_divergence": type_divergence(table, descriptors),
            "warnings": list(loaded.warnings),
        }
        summary = build_run_summary(
            command="inspect",
            input_path=input_path,
            metrics={"rows": loaded.row_count, "columns": len(table.columns), "data_rows": len(table)},
            warnings=loaded.warnings,
        )
        payload = wrap_payload("sheet_shaper.inspect", body, summary)
        if args.json:
            maybe_emit_json_stdout(payload, True)
        else:
            emit_human(render_inspect_text(payload).rstrip(), quiet=args.quiet)
        return EXIT_SUCCESS
    except ShaperError as exc:
        eprint(str(exc))
        return classify_exception(exc)


def run_transform(args: argparse.Namespace) -> int:
    input_path = Path(args.input)
    if not input_path.exists():
        eprint(f"File not found: {input_path}")
        return EXIT_COMMAND_ERROR
    try:
        output_path = (
            Path(args.output)
            if args.output
            else default_output_dir(input_path) / export_filename(input_path.name, args.format)
        )
        if output_path.exists():
            raise CliError(f"Refusing to overwrite existing output: {output_path}", EXIT_COMMAND_ERROR)
        overrides = read_options_file(args.options_file)
        types = parse_pairs(args.types, "--type")
        renames = parse_pairs(args.rename, "--rename")
        predicates = [parse_filter_expression(expression) for expression in args.filters or []]

        workspace = Workspace()
        workspace.load(input_path, sheet_name=args.sheet_name, header_row=args.header_row)

        if args.preset:
            try:
                preset = open_store(args).find(args.preset)
            except KeyError as exc:
                raise CliError(f"Unknown preset: {args.preset}", EXIT_COMMAND_ERROR) from exc
            workspace.update(apply_preset, preset.config)
        workspace.update(set_options, merge_options(workspace.state.options, overrides))
        for key, semantic_type in types.items():
            workspace.update(set_column_type, key, semantic_type)
        if args.select:
            workspace.update(select_columns, args.select)
        for key, name in renames.items():
            workspace.update(rename_column, key, name)
        for predicate in predicates:
            workspace.update(add_filter, predicate)

        state = workspace.state
        result = workspace.view()
        blob = workspace.export(args.format)
        write_bytes(output_path, blob)

        warnings = list(state.loaded.warnings) if state.loaded else []
        summary = build_run_summary(
            command="transform",
            input_path=input_path,
            output_path=output_path,
            metrics={
                "rows_in": len(state.table),
                "rows_out": len(result.table),
                "dropped_rows": result.dropped_rows,
                "columns_exported": len(state.selected_columns),
                "sanitizer_stages": len(state.pipeline_config().sanitizer_plan()),
                "filters": len(state.filters),
            },
            warnings=warnings,
        )
        body = {
            "format": args.format,
            "header_row": state.header_row,
            "columns": [
                {"key": key, "name": state.display_names.get(key, key), "semantic_type": state.descriptors[key].semantic_type}
                for key in state.selected_columns
            ],
            "sanitization_options": state.options.to_dict(),
            "filters": [predicate.to_dict() for predicate in state.filters],
        }
        payload = wrap_payload("sheet_shaper.transform_summary", body, summary)
        if args.json:
            maybe_emit_json_stdout(payload, True)
        else:
            emit_human(render_transform_text(payload).rstrip(), quiet=args.quiet)
        return EXIT_SUCCESS
    except (KeyError, ValueError) as exc:
        eprint(str(exc.args[0]) if exc.args else str(exc))
        return EXIT_COMMAND_ERROR
    except (CliError, ShaperError) as exc:
        eprint(str(exc))
        return classify_exception(exc)


def presets_payload(command: str, records: list[dict[str, Any]], store: PresetStore) -> dict[str, Any]:
    summary = build_run_summary(command=command, input_path=store.path, metrics={"presets": len(records)})
    return wrap_payload("sheet_shaper.presets", {"presets": records}, summary)


def run_presets(args: argparse.Namespace) -> int:
    store = open_store(args)
    if args.presets_command == "list":
        presets = store.list()
        if args.json:
            maybe_emit_json_stdout(presets_payload("presets list", [p.to_record() for p in presets], store), True)
        elif not presets:
            emit_human(f"No presets in {store.path}", quiet=args.quiet)
        else:
            for preset in presets:
                print(f"{preset.id}\t{preset.name}" + (f"\t{preset.description}" if preset.description else ""))
        return EXIT_SUCCESS

    if args.presets_command == "show":
        try:
            preset = store.find(args.preset)
        except KeyError as exc:
            raise CliError(f"Unknown preset: {args.preset}", EXIT_COMMAND_ERROR) from exc
        record = preset.to_record()
        if args.json:
            maybe_emit_json_stdout(presets_payload("presets show", [record], store), True)
        else:
            print(json_dumps(record))
        return EXIT_SUCCESS

    if args.presets_command == "save":
        options = merge_options(SanitizationOptions(), read_options_file(args.options_file))
        types = parse_pairs(args.types, "--type")
        for semantic_type in types.values():
            if semantic_type not in SEMANTIC_TYPES:
                raise CliError(f"Unknown semantic type {semantic_type!r}", EXIT_COMMAND_ERROR)
        selected = list(args.select or [])
        columns = {
            key: ColumnSelection(selected=not selected or key in selected, semantic_type=types.get(key))
            for key in dict.fromkeys(selected + list(types))
        }
        try:
            preset_id = store.save(
                args.name, PresetConfig(options=options, columns=columns), args.description, args.preset_id
            )
        except ValueError as exc:
            raise CliError(str(exc), EXIT_COMMAND_ERROR) from exc
        if args.json:
            maybe_emit_json_stdout(presets_payload("presets save", [store.get(preset_id).to_record()], store), True)
        else:
            emit_human(f"Preset saved: {preset_id}", quiet=args.quiet)
        return EXIT_SUCCESS

    if args.presets_command == "delete":
        store.delete(args.preset_id)
        if args.json:
            maybe_emit_json_stdout(presets_payload("presets delete", [], store), True)
        else:
            emit_human(f"Preset deleted: {args.preset_id}", quiet=args.quiet)
        return EXIT_SUCCESS

    raise CliError(f"Unknown presets command: {args.presets_command}", EXIT_COMMAND_ERROR)


def run_version() -> int:
    print(TOOL_VERSION)
    return EXIT_SUCCESS


def main(argv: list[str] | None = None) -> int:
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        configure_logging(args)
        if args.command == "inspect":
            return run_inspect(args)
        if args.command == "transform":
            return run_transform(args)
        if args.command == "presets":
            return run_presets(args)
        if args.command == "version":
            return run_version()
        raise CliError(f"Unknown command: {args.command}", EXIT_COMMAND_ERROR)
    except CliError as exc:
        eprint(str(exc))
        return exc.code


if __name__ == "__main__":
    raise SystemExit(main())
