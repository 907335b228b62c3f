"""Versioned JSON payload contracts for sheet-shaper command output."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from sheet_shaper import __version__ as TOOL_VERSION

CONTRACT_VERSIONS = {
    "sheet_shaper.inspect": "1.0.0",
    "sheet_shaper.transform_summary": "1.0.0",
    "sheet_shaper.presets": "1.0.0",
}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def build_contract(name: str) -> dict[str, str]:
    if name not in CONTRACT_VERSIONS:
        raise KeyError(f"Unknown contract {name!r}")
    return {"name": name, "version": CONTRACT_VERSIONS[name]}


def build_run_summary(
    *,
    command: str,
    input_path: Path | str | None,
    status: str = "ok",
    output_path: Path | str | None = None,
    metrics: dict[str, Any] | None = None,
    warnings: list[str] | None = None,
) -> dict[str, Any]:
    return {
        "tool": "sheet-shaper",
        "command": command,
        "status": status,
        "generated_at": utc_now_iso(),
        "input_file": str(input_path) if input_path else None,
        "output_file": str(output_path) if output_path else None,
        "warnings_count": len(warnings or []),
        "warnings": list(warnings or []),
        "metrics": metrics or {},
    }


def wrap_payload(name: str, body: dict[str, Any], run_summary: dict[str, Any]) -> dict[str, Any]:
    """Stamp a command payload with its contract, schema and tool versions."""
    contract = build_contract(name)
    return {
        "contract": contract,
        "schema_version": contract["version"],
        "tool_version": TOOL_VERSION,
        **body,
        "run_summary": run_summary,
    }
