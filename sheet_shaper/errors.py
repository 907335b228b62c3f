from __future__ import annotations


class ShaperError(Exception):
    """Base class for every error sheet-shaper raises on purpose."""


class LoadError(ShaperError):
    """A source could not be read into a grid."""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause


class EmptySourceError(LoadError):
    """The source opened fine but holds no sheets or no non-blank rows."""


class HeaderOutOfRangeError(ShaperError, IndexError):
    def __init__(self, header_row: int, row_count: int) -> None:
        super().__init__(f"Header row index {header_row} is out of bounds (grid has {row_count} rows)")
        self.header_row = header_row
        self.row_count = row_count


class ExportError(ShaperError):
    pass


class PresetCorruptionError(ShaperError):
    """A single stored preset record could not be parsed."""
