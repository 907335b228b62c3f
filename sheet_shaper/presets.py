"""
presets.py — Named, saved pipeline configurations.

Presets live in one JSON document on disk:

    {"transformationPresets": [{"id": ..., "name": ..., "sanitizationOptions": {...},
                                "columnSelections": {...}, "dateCreated": ...}, ...]}

A record that cannot be parsed is skipped with a warning; a store that cannot
be parsed at all reads as empty. A missing store is seeded with two presets.
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

from sheet_shaper.contracts import utc_now_iso
from sheet_shaper.errors import PresetCorruptionError
from sheet_shaper.inference import SEMANTIC_TYPES
from sheet_shaper.pipeline import SanitizationOptions

logger = logging.getLogger(__name__)

STORE_KEY = "transformationPresets"
PRESET_STORE_ENV = "SHEET_SHAPER_PRESETS"
DEFAULT_STORE_PATH = Path.home() / ".sheet-shaper" / "presets.json"

SEED_PRESETS = (
    {
        "id": "default-1",
        "name": "Standard Format",
        "description": "Basic data sanitization for insurance forms",
        "sanitizationOptions": {
            "removeSpecialChars": True,
            "replaceWithSpace": True,
            "sanitizeZipCodes": True,
            "countryFormat": "US",
        },
        "columnSelections": {},
    },
    {
        "id": "default-2",
        "name": "Policy Report Format",
        "description": "Format and standardize policy data",
        "sanitizationOptions": {
            "removeSpecialChars": True,
            "formatPolicyNumbers": True,
            "autoDetectPolicyFormat": True,
            "formatSSNs": True,
            "ssnFormat": "XXX-XX-****",
        },
        "columnSelections": {},
    },
)


@dataclass(frozen=True)
class ColumnSelection:
    selected: bool = True
    semantic_type: Optional[str] = None


@dataclass(frozen=True)
class PresetConfig:
    options: SanitizationOptions = field(default_factory=SanitizationOptions)
    columns: Mapping[str, ColumnSelection] = field(default_factory=dict)

    def selected_columns(self) -> list[str]:
        return [key for key, selection in self.columns.items() if selection.selected]


@dataclass(frozen=True)
class Preset:
    id: str
    name: str
    config: PresetConfig
    date_created: str
    description: Optional[str] = None
    date_modified: Optional[str] = None

    def to_record(self) -> dict[str, Any]:
        record: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "sanitizationOptions": self.config.options.to_dict(),
            "columnSelections": {
                key: {"selected": selection.selected, "semanticType": selection.semantic_type}
                for key, selection in self.config.columns.items()
            },
            "dateCreated": self.date_created,
        }
        if self.description is not None:
            record["description"] = self.description
        if self.date_modified is not None:
            record["dateModified"] = self.date_modified
        return record


def _parse_selection(key: str, raw: Any) -> ColumnSelection:
    if isinstance(raw, bool):
        return ColumnSelection(selected=raw)
    if not isinstance(raw, Mapping):
        raise PresetCorruptionError(f"column selection for {key!r} must be a bool or an object")
    semantic_type = raw.get("semanticType")
    if semantic_type is not None and semantic_type not in SEMANTIC_TYPES:
        raise PresetCorruptionError(f"column {key!r} has unknown semantic type {semantic_type!r}")
    return ColumnSelection(selected=bool(raw.get("selected", True)), semantic_type=semantic_type)


def parse_preset(record: Any) -> Preset:
    """Build a Preset from a stored record, raising PresetCorruptionError when malformed."""
    if not isinstance(record, Mapping):
        raise PresetCorruptionError("preset record is not an object")
    try:
        preset_id = record["id"]
        name = record["name"]
    except KeyError as exc:
        raise PresetCorruptionError(f"preset record is missing {exc}") from exc
    if not isinstance(preset_id, str) or not isinstance(name, str) or not name.strip():
        raise PresetCorruptionError(f"preset {preset_id!r} has an invalid id or name")

    raw_options = record.get("sanitizationOptions") or {}
    raw_columns = record.get("columnSelections") or {}
    if not isinstance(raw_options, Mapping) or not isinstance(raw_columns, Mapping):
        raise PresetCorruptionError(f"preset {preset_id!r} has malformed option maps")
    try:
        options = SanitizationOptions.from_dict(raw_options)
    except (TypeError, ValueError) as exc:
        raise PresetCorruptionError(f"preset {preset_id!r}: {exc}") from exc
    columns = {str(key): _parse_selection(str(key), raw) for key, raw in raw_columns.items()}

    return Preset(
        id=preset_id,
        name=name,
        config=PresetConfig(options=options, columns=columns),
        date_created=str(record.get("dateCreated") or ""),
        description=record.get("description"),
        date_modified=record.get("dateModified"),
    )


def default_store_path() -> Path:
    override = os.environ.get(PRESET_STORE_ENV)
    return Path(override) if override else DEFAULT_STORE_PATH


class PresetStore:
    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path) if path is not None else default_store_path()

    # ── storage ────────────────────────────────────────────────────────────────

    def _read_records(self) -> list[Any]:
        if not self.path.exists():
            seeded = [dict(record, dateCreated=utc_now_iso()) for record in SEED_PRESETS]
            self._write_records(seeded)
            return seeded
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            logger.warning("Preset store %s is unreadable (%s); treating it as empty", self.path, exc)
            return []
        records = payload.get(STORE_KEY) if isinstance(payload, dict) else None
        if not isinstance(records, list):
            logger.warning("Preset store %s has no %r list; treating it as empty", self.path, STORE_KEY)
            return []
        return records

    def _write_records(self, records: list[Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps({STORE_KEY: records}, indent=2, ensure_ascii=False)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(payload, encoding="utf-8")
        tmp_path.replace(self.path)

    # ── public API ─────────────────────────────────────────────────────────────

    def list(self) -> list[Preset]:
        presets = []
        for record in self._read_records():
            try:
                presets.append(parse_preset(record))
            except PresetCorruptionError as exc:
                logger.warning("Skipping unreadable preset in %s: %s", self.path, exc)
        return presets

    def get(self, preset_id: str) -> Preset:
        for preset in self.list():
            if preset.id == preset_id:
                return preset
        raise KeyError(f"No preset with id {preset_id!r}")

    def find(self, id_or_name: str) -> Preset:
        """Look a preset up by id, falling back to a case-insensitive name match."""
        presets = self.list()
        for preset in presets:
            if preset.id == id_or_name:
                return preset
        lowered = id_or_name.strip().lower()
        for preset in presets:
            if preset.name.strip().lower() == lowered:
                return preset
        raise KeyError(f"No preset with id or name {id_or_name!r}")

    def save(
        self,
        name: str,
        config: PresetConfig,
        description: Optional[str] = None,
        preset_id: Optional[str] = None,
    ) -> str:
        """Store `config` under `name` and return its id.

        Passing the id of an existing preset overwrites it in place.
        """
        if not name or not name.strip():
            raise ValueError("Preset name must not be empty")

        records = self._read_records()
        now = utc_now_iso()
        for index, record in enumerate(records):
            if isinstance(record, Mapping) and preset_id is not None and record.get("id") == preset_id:
                preset = Preset(
                    id=preset_id,
                    name=name.strip(),
                    config=config,
                    date_created=str(record.get("dateCreated") or now),
                    description=description,
                    date_modified=now,
                )
                records[index] = preset.to_record()
                self._write_records(records)
                return preset_id

        new_id = preset_id or f"preset-{int(time.time() * 1000)}"
        existing = {record.get("id") for record in records if isinstance(record, Mapping)}
        while new_id in existing:
            new_id = f"preset-{int(new_id.rsplit('-', 1)[-1]) + 1}" if new_id.startswith("preset-") else f"{new_id}-1"
        preset = Preset(id=new_id, name=name.strip(), config=config, date_created=now, description=description)
        records.append(preset.to_record())
        self._write_records(records)
        return new_id

    def delete(self, preset_id: str) -> None:
        records = self._read_records()
        kept = [record for record in records if not (isinstance(record, Mapping) and record.get("id") == preset_id)]
        if len(kept) != len(records):
            self._write_records(kept)

    def apply(self, preset_id: str) -> PresetConfig:
        return self.get(preset_id).config
