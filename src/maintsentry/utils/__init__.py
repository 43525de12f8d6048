"""Utility helpers for maintsentry."""
from __future__ import annotations

from .commands import get_suggested_timeout, run_checked
from .parsers import (
    parse_key_value_output,
    parse_os_release,
    parse_tabular_output,
    split_csv,
)
from .system_info import collect_host_info, detect_package_manager

__all__ = [
    # Commands
    "get_suggested_timeout",
    "run_checked",
    # Parsers
    "parse_key_value_output",
    "parse_os_release",
    "parse_tabular_output",
    "split_csv",
    # System info
    "collect_host_info",
    "detect_package_manager",
]
