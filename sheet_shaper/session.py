"""
session.py — Application state for one document and one operator.

`SessionState` is immutable; every transition function below takes a state
and returns a new one. `Workspace` holds the current state, swaps it under a
lock, and uses a generation counter so a slow load that finishes after a
newer load or reload was started is dropped instead of clobbering it.

Readiness:
    unloaded → loading → loaded | load_failed
    loaded   → reloading (header-row change) → loaded | reload_failed

A failed load or reload keeps the previous table current.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from concurrent.futures import Executor, Future
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

from sheet_shaper.errors import LoadError, ShaperError
from sheet_shaper.exporter import export_table
from sheet_shaper.filters import FilterPredicate, prune_filters
from sheet_shaper.loader import LoadedGrid, Source, load_grid
from sheet_shaper.pipeline import (
    ColumnDescriptor,
    PipelineCache,
    PipelineConfig,
    PipelineResult,
    SanitizationOptions,
    Stage,
    describe_columns,
)
from sheet_shaper.presets import ColumnSelection, PresetConfig
from sheet_shaper.structure import detect_header_row
from sheet_shaper.table import Table, materialize

logger = logging.getLogger(__name__)

READINESS_STATES = ("unloaded", "loading", "loaded", "load_failed", "reloading", "reload_failed")
HISTORY_LIMIT = 50


@dataclass(frozen=True)
class SelectionHistory:
    """Bounded undo/redo stack of selected-column snapshots with a cursor."""

    snapshots: tuple[tuple[str, ...], ...] = ()
    cursor: int = -1
    limit: int = HISTORY_LIMIT

    @classmethod
    def start(cls, selection: Iterable[str], limit: int = HISTORY_LIMIT) -> "SelectionHistory":
        return cls(snapshots=(tuple(selection),), cursor=0, limit=limit)

    @property
    def current(self) -> tuple[str, ...]:
        return self.snapshots[self.cursor] if self.snapshots else ()

    @property
    def can_undo(self) -> bool:
        return self.cursor > 0

    @property
    def can_redo(self) -> bool:
        return 0 <= self.cursor < len(self.snapshots) - 1

    def push(self, selection: Iterable[str]) -> "SelectionHistory":
        selection = tuple(selection)
        if self.snapshots and selection == self.current:
            return self
        snapshots = self.snapshots[: self.cursor + 1] + (selection,)
        if len(snapshots) > self.limit:
            snapshots = snapshots[-self.limit :]
        return dataclasses.replace(self, snapshots=snapshots, cursor=len(snapshots) - 1)

    def undo(self) -> "SelectionHistory":
        return dataclasses.replace(self, cursor=self.cursor - 1) if self.can_undo else self

    def redo(self) -> "SelectionHistory":
        return dataclasses.replace(self, cursor=self.cursor + 1) if self.can_redo else self


@dataclass(frozen=True)
class SessionState:
    status: str = "unloaded"
    source_name: Optional[str] = None
    loaded: Optional[LoadedGrid] = None
    grid_version: int = 0
    table: Optional[Table] = None
    descriptors: Mapping[str, ColumnDescriptor] = field(default_factory=dict)
    history: SelectionHistory = field(default_factory=SelectionHistory)
    filters: tuple[FilterPredicate, ...] = ()
    options: SanitizationOptions = field(default_factory=SanitizationOptions)
    formatters: tuple[Stage, ...] = ()
    error: Optional[str] = None

    @property
    def header_row(self) -> Optional[int]:
        return self.table.header_row if self.table is not None else None

    @property
    def selected_columns(self) -> tuple[str, ...]:
        return self.history.current

    @property
    def display_names(self) -> dict[str, str]:
        return {key: d.display_name for key, d in self.descriptors.items() if d.display_name}

    def pipeline_config(self) -> PipelineConfig:
        return PipelineConfig(
            descriptors=dict(self.descriptors),
            options=self.options,
            formatters=self.formatters,
            filters=self.filters,
        )

    def _require_table(self) -> Table:
        if self.table is None:
            raise ShaperError("No table is loaded")
        return self.table

    def _require_column(self, key: str) -> ColumnDescriptor:
        self._require_table()
        if key not in self.descriptors:
            raise KeyError(f"Unknown column {key!r}")
        return self.descriptors[key]


# ══════════════════════════════════════════════════════════════════════════════
# LOAD TRANSITIONS
# ══════════════════════════════════════════════════════════════════════════════

def begin_load(state: SessionState, source_name: Optional[str]) -> SessionState:
    return dataclasses.replace(state, status="loading", source_name=source_name or state.source_name, error=None)


def begin_reload(state: SessionState) -> SessionState:
    state._require_table()
    return dataclasses.replace(state, status="reloading", error=None)


def _install_table(state: SessionState, table: Table, **changes: Any) -> SessionState:
    descriptors = describe_columns(table, previous=state.descriptors)
    return dataclasses.replace(
        state,
        status="loaded",
        table=table,
        descriptors=descriptors,
        history=SelectionHistory.start(table.columns),
        filters=(),
        error=None,
        **changes,
    )


def complete_load(state: SessionState, loaded: LoadedGrid, header_row: Optional[int] = None) -> SessionState:
    """Install a freshly loaded grid; the header row is detected unless given."""
    if header_row is None:
        header_row = detect_header_row(loaded.rows)
    table = materialize(loaded.rows, header_row)
    return _install_table(
        state,
        table,
        loaded=loaded,
        source_name=loaded.source_name,
        grid_version=state.grid_version + 1,
    )


def change_header_row(state: SessionState, header_row: int) -> SessionState:
    if state.loaded is None:
        raise ShaperError("No grid is loaded")
    table = materialize(state.loaded.rows, header_row)
    return _install_table(state, table)


def fail_load(state: SessionState, error: BaseException) -> SessionState:
    status = "reload_failed" if state.status == "reloading" else "load_failed"
    return dataclasses.replace(state, status=status, error=str(error))


# ══════════════════════════════════════════════════════════════════════════════
# COLUMN TRANSITIONS
# ══════════════════════════════════════════════════════════════════════════════

def _with_descriptor(state: SessionState, descriptor: ColumnDescriptor) -> SessionState:
    descriptors = dict(state.descriptors)
    descriptors[descriptor.key] = descriptor
    return dataclasses.replace(state, descriptors=descriptors)


def set_column_type(state: SessionState, key: str, semantic_type: str) -> SessionState:
    return _with_descriptor(state, state._require_column(key).with_type(semantic_type))


def rename_column(state: SessionState, key: str, display_name: Optional[str]) -> SessionState:
    name = display_name.strip() if display_name else None
    return _with_descriptor(state, state._require_column(key).edited(display_name=name or None))


def set_sanitize(state: SessionState, key: str, enabled: bool) -> SessionState:
    return _with_descriptor(state, state._require_column(key).edited(sanitize=enabled))


def set_preserve_chars(state: SessionState, key: str, preserve_chars: str) -> SessionState:
    return _with_descriptor(state, state._require_column(key).edited(preserve_chars=preserve_chars))


def _select(state: SessionState, history: SelectionHistory) -> SessionState:
    return dataclasses.replace(state, history=history, filters=prune_filters(state.filters, history.current))


def select_columns(state: SessionState, keys: Iterable[str]) -> SessionState:
    """Make `keys` the selected columns (kept in table order) and record the change."""
    table = state._require_table()
    wanted = set(keys)
    unknown = wanted - set(table.columns)
    if unknown:
        raise KeyError(f"Unknown column(s): {sorted(unknown)}")
    selection = [key for key in table.columns if key in wanted]
    return _select(state, state.history.push(selection))


def toggle_column(state: SessionState, key: str) -> SessionState:
    state._require_column(key)
    current = set(state.selected_columns)
    current ^= {key}
    return select_columns(state, current)


def select_all(state: SessionState) -> SessionState:
    return select_columns(state, state._require_table().columns)


def deselect_all(state: SessionState) -> SessionState:
    return select_columns(state, ())


def undo_selection(state: SessionState) -> SessionState:
    return _select(state, state.history.undo())


def redo_selection(state: SessionState) -> SessionState:
    return _select(state, state.history.redo())


# ══════════════════════════════════════════════════════════════════════════════
# PIPELINE TRANSITIONS
# ══════════════════════════════════════════════════════════════════════════════

def add_filter(state: SessionState, predicate: FilterPredicate) -> SessionState:
    state._require_column(predicate.column)
    return dataclasses.replace(state, filters=state.filters + (predicate,))


def remove_filter(state: SessionState, index: int) -> SessionState:
    filters = list(state.filters)
    del filters[index]
    return dataclasses.replace(state, filters=tuple(filters))


def clear_filters(state: SessionState) -> SessionState:
    return dataclasses.replace(state, filters=())


def set_options(state: SessionState, options: SanitizationOptions) -> SessionState:
    return dataclasses.replace(state, options=options)


def set_formatters(state: SessionState, formatters: Sequence[Stage]) -> SessionState:
    return dataclasses.replace(state, formatters=tuple(formatters))


def apply_preset(state: SessionState, config: PresetConfig) -> SessionState:
    """Replay a preset: its options, its column types, and its column selection.

    Columns the preset does not mention keep their current type and selection.
    """
    state = set_options(state, config.options)
    if state.table is None:
        return state
    selected = set(state.selected_columns)
    for key in state.table.columns:
        selection = config.columns.get(key)
        if selection is None:
            continue
        if selection.semantic_type:
            state = set_column_type(state, key, selection.semantic_type)
        if selection.selected:
            selected.add(key)
        else:
            selected.discard(key)
    return select_columns(state, selected)


def capture_preset(state: SessionState) -> PresetConfig:
    selected = set(state.selected_columns)
    columns = {
        key: ColumnSelection(selected=key in selected, semantic_type=descriptor.semantic_type)
        for key, descriptor in state.descriptors.items()
    }
    return PresetConfig(options=state.options, columns=columns)


# ══════════════════════════════════════════════════════════════════════════════
# WORKSPACE
# ══════════════════════════════════════════════════════════════════════════════

class Workspace:
    """Owns the current SessionState and serializes swaps of it."""

    def __init__(self, cache: Optional[PipelineCache] = None) -> None:
        self._lock = threading.Lock()
        self._state = SessionState()
        self._generation = 0
        self.cache = cache or PipelineCache()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    def update(self, transition: Callable[..., SessionState], *args: Any, **kwargs: Any) -> SessionState:
        with self._lock:
            self._state = transition(self._state, *args, **kwargs)
            return self._state

    # ── loading ────────────────────────────────────────────────────────────────

    def _begin(self, transition: Callable[..., SessionState], *args: Any) -> int:
        with self._lock:
            self._state = transition(self._state, *args)
            self._generation += 1
            return self._generation

    def _is_current(self, generation: int) -> bool:
        if generation != self._generation:
            logger.debug("Dropping stale result for generation %d (current %d)", generation, self._generation)
            return False
        return True

    def _commit(self, generation: int, transition: Callable[..., SessionState], *args: Any) -> bool:
        with self._lock:
            if not self._is_current(generation):
                return False
            try:
                self._state = transition(self._state, *args)
            except ShaperError as exc:
                self._state = fail_load(self._state, exc)
                raise
            return True

    def _fail(self, generation: int, exc: BaseException) -> bool:
        with self._lock:
            if not self._is_current(generation):
                return False
            self._state = fail_load(self._state, exc)
            return True

    def load(self, source: Source, sheet_name: Optional[str] = None, header_row: Optional[int] = None) -> SessionState:
        """Load synchronously. Raises LoadError / HeaderOutOfRangeError; the previous table stays current."""
        name = source[0] if isinstance(source, tuple) else str(source)
        generation = self._begin(begin_load, name)
        try:
            loaded = load_grid(source, sheet_name=sheet_name)
        except LoadError as exc:
            self._fail(generation, exc)
            raise
        self._commit(generation, complete_load, loaded, header_row)
        return self._state

    def load_in_background(
        self,
        executor: Executor,
        source: Source,
        sheet_name: Optional[str] = None,
        header_row: Optional[int] = None,
    ) -> Future:
        """Decode on `executor`; the result is installed only if no newer load started meanwhile."""
        name = source[0] if isinstance(source, tuple) else str(source)
        generation = self._begin(begin_load, name)
        future = executor.submit(load_grid, source, sheet_name)

        def finish(done: Future) -> None:
            exc = done.exception()
            if exc is not None:
                self._fail(generation, exc)
                return
            try:
                self._commit(generation, complete_load, done.result(), header_row)
            except ShaperError as commit_exc:
                logger.warning("Background load of %s failed: %s", name, commit_exc)

        future.add_done_callback(finish)
        return future

    def set_header_row(self, header_row: int) -> SessionState:
        """Re-materialize with a new header row; out-of-range rows leave the table as it was."""
        generation = self._begin(begin_reload)
        self._commit(generation, change_header_row, header_row)
        return self._state

    # ── outputs ────────────────────────────────────────────────────────────────

    def view(self) -> Optional[PipelineResult]:
        state = self._state
        if state.table is None:
            return None
        return self.cache.run(state.table, state.grid_version, state.pipeline_config())

    def export(self, fmt: str = "xlsx") -> bytes:
        state = self._state
        result = self.view()
        if result is None:
            raise ShaperError("No table is loaded")
        return export_table(result.table, state.selected_columns, state.display_names, fmt)
