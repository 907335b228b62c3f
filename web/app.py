#!/usr/bin/env python3
from __future__ import annotations

import re
from pathlib import Path
from typing import Optional
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

import pandas as pd
import requests
import streamlit as st

from sheet_shaper.errors import ExportError, HeaderOutOfRangeError, LoadError
from sheet_shaper.exporter import EXPORT_FORMATS, export_filename
from sheet_shaper.filters import FilterPredicate
from sheet_shaper.inference import FILTER_OPERATIONS, SEMANTIC_TYPES, default_operation, infer_filter_kind
from sheet_shaper.loader import ALL_FORMATS
from sheet_shaper.presets import PresetStore
from sheet_shaper.sanitizers import SSN_FORMATS, ZIP_COUNTRIES
from sheet_shaper.session import (
    Workspace,
    add_filter,
    apply_preset,
    capture_preset,
    clear_filters,
    deselect_all,
    redo_selection,
    remove_filter,
    rename_column,
    select_all,
    set_column_type,
    set_options,
    set_sanitize,
    toggle_column,
    undo_selection,
)
from sheet_shaper.table import search_rows

MAX_REMOTE_FILE_MB = 100
MAX_REMOTE_FILE_BYTES = MAX_REMOTE_FILE_MB * 1024 * 1024
PREVIEW_LIMIT = 200
COLUMN_WIDGET_PREFIXES = ("select_", "type_", "rename_", "sanitize_")
EXPORT_MIME = {
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "csv": "text/csv",
    "json": "application/json",
}
CONTENT_TYPE_EXTS = {
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": ".xlsx",
    "application/vnd.ms-excel.sheet.macroenabled.12": ".xlsm",
    "application/vnd.ms-excel": ".xls",
    "application/vnd.oasis.opendocument.spreadsheet": ".ods",
    "application/pdf": ".pdf",
    "text/csv": ".csv",
    "text/tab-separated-values": ".tsv",
    "text/plain": ".txt",
}


def ensure_state() -> None:
    st.session_state.setdefault("workspace", Workspace())
    st.session_state.setdefault("loaded_source", None)
    st.session_state.setdefault("public_url_input", "")


def workspace() -> Workspace:
    return st.session_state["workspace"]


def forget_column_widgets() -> None:
    """Drop per-column widget values so they re-read the session state on the next run."""
    for widget_key in list(st.session_state.keys()):
        if str(widget_key).startswith(COLUMN_WIDGET_PREFIXES):
            del st.session_state[widget_key]


# ══════════════════════════════════════════════════════════════════════════════
# REMOTE SOURCES
# ══════════════════════════════════════════════════════════════════════════════

def normalize_public_url(raw_url: str) -> str:
    """Turn common share links into direct-download links."""
    parsed = urlparse(raw_url.strip())
    if not parsed.scheme:
        raise ValueError("URL must start with http:// or https://")

    host = parsed.netloc.lower()
    path = parsed.path
    query = parse_qs(parsed.query, keep_blank_values=True)

    if host == "github.com" and "/blob/" in path:
        owner_repo, blob_path = path.lstrip("/").split("/blob/", 1)
        return f"https://raw.githubusercontent.com/{owner_repo}/{blob_path}"

    if "dropbox.com" in host:
        query["dl"] = ["1"]
        return urlunparse(parsed._replace(query=urlencode(query, doseq=True)))

    if host in {"drive.google.com", "docs.google.com"}:
        sheet_match = re.search(r"/spreadsheets/d/([^/]+)", path)
        if sheet_match:
            gid = query.get("gid", ["0"])[0]
            return f"https://docs.google.com/spreadsheets/d/{sheet_match.group(1)}/export?format=xlsx&gid={gid}"
        file_match = re.search(r"/file/d/([^/]+)", path)
        if file_match:
            return f"https://drive.google.com/uc?export=download&id={file_match.group(1)}"

    return raw_url.strip()


def remote_filename(raw_url: str, response: requests.Response) -> str:
    content_disposition = response.headers.get("content-disposition", "")
    match = re.search(r'filename="([^"]+)"|filename=([^;]+)', content_disposition, re.I)
    if match:
        name = next(group for group in match.groups() if group)
        return Path(name.strip().strip('"')).name
    redirected = response.url or raw_url
    return Path(urlparse(redirected).path).name or "downloaded_file"


def fetch_remote_source(raw_url: str) -> tuple[str, bytes]:
    url = normalize_public_url(raw_url)
    response = requests.get(url, timeout=60, allow_redirects=True, stream=True)
    try:
        response.raise_for_status()
        declared = response.headers.get("Content-Length")
        if declared and declared.isdigit() and int(declared) > MAX_REMOTE_FILE_BYTES:
            raise ValueError(f"Remote file is larger than {MAX_REMOTE_FILE_MB} MB.")
        chunks: list[bytes] = []
        downloaded = 0
        for chunk in response.iter_content(chunk_size=1024 * 1024):
            if not chunk:
                continue
            downloaded += len(chunk)
            if downloaded > MAX_REMOTE_FILE_BYTES:
                raise ValueError(f"Remote file is larger than {MAX_REMOTE_FILE_MB} MB.")
            chunks.append(chunk)
        content = b"".join(chunks)
    finally:
        response.close()

    filename = remote_filename(raw_url, response)
    if Path(filename).suffix.lower() not in ALL_FORMATS:
        content_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
        ext = CONTENT_TYPE_EXTS.get(content_type)
        if ext is None:
            raise ValueError(f"Unsupported remote file type: {content_type or '[unknown]'}")
        filename = f"{Path(filename).stem or 'downloaded_file'}{ext}"
    return filename, content


def load_source(name: str, content: bytes, sheet_name: Optional[str] = None) -> None:
    try:
        workspace().load((name, content), sheet_name=sheet_name)
    except (LoadError, HeaderOutOfRangeError) as exc:
        st.error(f"Could not load {name}: {exc}")
        return
    st.session_state["loaded_source"] = (name, content)
    forget_column_widgets()


# ══════════════════════════════════════════════════════════════════════════════
# PANELS
# ══════════════════════════════════════════════════════════════════════════════

def render_source_panel() -> None:
    upload = st.file_uploader("Upload a file", type=[ext.lstrip(".") for ext in sorted(ALL_FORMATS)])
    if upload is not None and st.session_state["loaded_source"] != (upload.name, upload.getvalue()):
        load_source(upload.name, upload.getvalue())

    url = st.text_input("...or a public file URL", key="public_url_input")
    st.caption(f"URL mode makes an outbound request and rejects files above {MAX_REMOTE_FILE_MB} MB.")
    if st.button("Fetch", disabled=not url.strip()):
        try:
            name, content = fetch_remote_source(url)
        except (ValueError, requests.RequestException) as exc:
            st.error(f"Could not fetch {url}: {exc}")
        else:
            load_source(name, content)

    state = workspace().state
    loaded = state.loaded
    if loaded is not None and len(loaded.sheet_names) > 1:
        sheet = st.selectbox("Sheet", loaded.sheet_names, index=loaded.sheet_names.index(loaded.sheet_name))
        if sheet != loaded.sheet_name and st.session_state["loaded_source"]:
            name, content = st.session_state["loaded_source"]
            load_source(name, content, sheet_name=sheet)


def render_header_panel() -> None:
    state = workspace().state
    loaded = state.loaded
    left, right = st.columns([3, 1])
    left.caption("Leading rows (the header row is highlighted)")
    preview = pd.DataFrame([[str(cell) for cell in row] for row in loaded.rows[:15]])
    left.dataframe(
        preview.style.apply(
            lambda row: ["background-color: #fff3bf" if row.name == state.header_row else "" for _ in row], axis=1
        ),
        width="stretch",
    )
    header_row = right.number_input(
        "Header row", min_value=0, max_value=max(0, loaded.row_count - 1), value=state.header_row, step=1
    )
    if int(header_row) != state.header_row:
        try:
            workspace().set_header_row(int(header_row))
        except HeaderOutOfRangeError as exc:
            st.error(str(exc))
        else:
            forget_column_widgets()
            st.rerun()
    right.metric("Rows", loaded.row_count)
    right.metric("Format", loaded.detected_format)
    if loaded.warnings:
        st.warning(" | ".join(loaded.warnings))
    if state.status == "reload_failed":
        st.error(state.error)


def render_column_panel() -> None:
    ws = workspace()
    state = ws.state
    buttons = st.columns(4)
    actions = (
        ("Select all", select_all, False),
        ("Deselect all", deselect_all, False),
        ("Undo", undo_selection, not state.history.can_undo),
        ("Redo", redo_selection, not state.history.can_redo),
    )
    for button, (label, transition, disabled) in zip(buttons, actions):
        if button.button(label, disabled=disabled):
            ws.update(transition)
            forget_column_widgets()
            st.rerun()

    selected = set(state.selected_columns)
    for key in state.table.columns:
        descriptor = state.descriptors[key]
        cols = st.columns([1, 2, 2, 1])
        if cols[0].checkbox(key, value=key in selected, key=f"select_{key}") != (key in selected):
            ws.update(toggle_column, key)
            st.rerun()
        semantic_type = cols[1].selectbox(
            "Type", SEMANTIC_TYPES, index=SEMANTIC_TYPES.index(descriptor.semantic_type), key=f"type_{key}"
        )
        if semantic_type != descriptor.semantic_type:
            ws.update(set_column_type, key, semantic_type)
        name = cols[2].text_input("Export name", value=descriptor.display_name or "", key=f"rename_{key}")
        if (name.strip() or None) != descriptor.display_name:
            ws.update(rename_column, key, name)
        sanitize = cols[3].checkbox("Sanitize", value=descriptor.sanitize, key=f"sanitize_{key}")
        if sanitize != descriptor.sanitize:
            ws.update(set_sanitize, key, sanitize)


def render_options_panel() -> None:
    ws = workspace()
    options = ws.state.options
    with st.sidebar:
        st.subheader("Sanitization")
        changes = {
            "remove_special_chars": st.checkbox("Remove special characters", options.remove_special_chars),
            "replace_with_space": st.checkbox("Replace with space", options.replace_with_space),
            "sanitize_zip_codes": st.checkbox("Sanitize ZIP codes", options.sanitize_zip_codes),
            "keep_extended_zip": st.checkbox("Keep ZIP+4", options.keep_extended_zip),
            "country_format": st.selectbox(
                "ZIP country", ZIP_COUNTRIES, index=ZIP_COUNTRIES.index(options.country_format.upper())
            ),
            "format_ssns": st.checkbox("Format SSNs", options.format_ssns),
            "ssn_format": st.selectbox("SSN format", SSN_FORMATS, index=SSN_FORMATS.index(options.ssn_format)),
            "format_policy_numbers": st.checkbox("Format policy numbers", options.format_policy_numbers),
            "auto_detect_policy_format": st.checkbox("Auto-detect policy format", options.auto_detect_policy_format),
            "policy_format": st.text_input("Policy template", options.policy_format),
            "remove_html_formatting": st.checkbox("Strip HTML", options.remove_html_formatting),
            "preserve_line_breaks": st.checkbox("Keep line breaks", options.preserve_line_breaks),
            "format_dates": st.checkbox("Normalize dates", options.format_dates),
            "date_format": st.text_input("Date format", options.date_format),
        }
        updated = options.replace(**changes)
        if updated != options:
            ws.update(set_options, updated)


def render_filter_panel() -> None:
    ws = workspace()
    state = ws.state
    if not state.selected_columns:
        return
    st.subheader("Filters")
    cols = st.columns([2, 2, 3, 1])
    column = cols[0].selectbox("Column", state.selected_columns, key="filter_column")
    kind = infer_filter_kind(state.table.column_values(column))
    operations = FILTER_OPERATIONS.get(kind, FILTER_OPERATIONS["unknown"])
    operator = cols[1].selectbox(
        "Operation", operations, index=operations.index(default_operation(kind)) if default_operation(kind) in operations else 0
    )
    raw_value = cols[2].text_input("Value", key="filter_value")
    if cols[3].button("Add"):
        value: object = raw_value or None
        if operator in ("in", "notIn"):
            value = [item.strip() for item in raw_value.split(",") if item.strip()]
        elif operator in ("between", "dateRange"):
            low, _, high = raw_value.partition("..")
            value = {"from": low or None, "to": high or None} if operator == "dateRange" else [low or None, high or None]
        ws.update(add_filter, FilterPredicate(column, operator, value))
        st.rerun()

    for index, predicate in enumerate(state.filters):
        left, right = st.columns([6, 1])
        left.code(f"{predicate.column} {predicate.operator} {predicate.value!r}")
        if right.button("Remove", key=f"remove_filter_{index}"):
            ws.update(remove_filter, index)
            st.rerun()
    if state.filters and st.button("Clear filters"):
        ws.update(clear_filters)
        st.rerun()


def render_preset_panel() -> None:
    ws = workspace()
    store = PresetStore()
    with st.sidebar:
        st.subheader("Presets")
        presets = store.list()
        labels = {preset.id: preset.name for preset in presets}
        chosen = st.selectbox("Saved presets", list(labels), format_func=labels.get) if presets else None
        apply_col, delete_col = st.columns(2)
        if chosen and apply_col.button("Apply"):
            ws.update(apply_preset, store.apply(chosen))
            forget_column_widgets()
            st.rerun()
        if chosen and delete_col.button("Delete"):
            store.delete(chosen)
            st.rerun()
        name = st.text_input("Save current as")
        if st.button("Save preset", disabled=not name.strip()):
            preset_id = store.save(name, capture_preset(ws.state))
            st.success(f"Saved {preset_id}")


def render_result_panel() -> None:
    ws = workspace()
    state = ws.state
    result = ws.view()
    metrics = st.columns(3)
    metrics[0].metric("Rows", len(state.table))
    metrics[1].metric("After filters", len(result.table))
    metrics[2].metric("Columns selected", len(state.selected_columns))

    query = st.text_input("Search rows")
    rows = search_rows(result.table.rows, query) if query.strip() else list(result.table.rows)
    frame = pd.DataFrame([{key: row.get(key) for key in state.selected_columns} for row in rows[:PREVIEW_LIMIT]])
    frame = frame.rename(columns=state.display_names)
    st.dataframe(frame, width="stretch", hide_index=True)

    fmt = st.radio("Export format", EXPORT_FORMATS, horizontal=True)
    try:
        blob = ws.export(fmt)
    except ExportError as exc:
        st.error(str(exc))
        return
    st.download_button(
        "Download processed file",
        data=blob,
        file_name=export_filename(state.source_name or "export", fmt),
        mime=EXPORT_MIME[fmt],
        width="stretch",
    )


def set_visuals() -> None:
    st.set_page_config(page_title="sheet-shaper", layout="wide")
    st.title("sheet-shaper")
    st.caption("Find the real header, fix the columns, then download a clean table.")


def main() -> None:
    set_visuals()
    ensure_state()
    render_source_panel()

    state = workspace().state
    if state.status == "load_failed" and state.table is None:
        st.error(state.error)
    if state.table is None:
        st.info("Supported here: " + " ".join(sorted(ALL_FORMATS)))
        return

    render_options_panel()
    render_preset_panel()
    render_header_panel()
    with st.expander("Columns", expanded=True):
        render_column_panel()
    render_filter_panel()
    render_result_panel()


if __name__ == "__main__":
    main()
