"""Utility functions for gatewarden."""

from gatewarden.utils.helpers import (
    atomic_write_text,
    ensure_dir,
    format_iso,
    parse_iso,
    utc_now,
)

__all__ = [
    "ensure_dir",
    "atomic_write_text",
    "utc_now",
    "format_iso",
    "parse_iso",
]
