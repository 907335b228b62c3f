"""sheet-shaper: detect, reshape, sanitize and re-export messy spreadsheet tables."""

__version__ = "0.1.0"
