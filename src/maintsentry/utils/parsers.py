"""Parsers and helpers for interpreting command outputs and CLI values."""
from __future__ import annotations

import re
from typing import List, Mapping, Sequence


def parse_key_value_output(output: str, separator: str = ":") -> Mapping[str, str]:
    """Parse simple "Key: Value" (or "key = value") outputs."""

    data: dict[str, str] = {}
    pattern = re.compile(rf"^\s*([^{re.escape(separator)}]+){re.escape(separator)}\s*(.*)$")
    for line in output.splitlines():
        match = pattern.match(line)
        if match:
            key, value = match.groups()
            data[key.strip()] = value.strip()
    return data


def parse_tabular_output(
    output: str,
    columns: Sequence[str],
    delimiter: str | None = "\t",
) -> List[dict[str, str]]:
    """Split delimiter-separated rows into dicts keyed by ``columns``.

    Blank lines are skipped; short rows are padded with empty strings.
    """

    rows: List[dict[str, str]] = []
    for line in output.splitlines():
        if not line.strip():
            continue
        parts = line.split(delimiter, len(columns) - 1) if delimiter else line.split(None, len(columns) - 1)
        parts = [p.strip() for p in parts] + [""] * (len(columns) - len(parts))
        rows.append(dict(zip(columns, parts)))
    return rows


def parse_os_release(content: str) -> Mapping[str, str]:
    """Parse /etc/os-release style KEY="value" lines."""

    data: dict[str, str] = {}
    for key, value in parse_key_value_output(content, separator="=").items():
        data[key] = value.strip().strip('"').strip("'")
    return data


def split_csv(value: str | None) -> List[str]:
    """Split a comma-separated CLI value, dropping blanks and duplicates."""

    if not value:
        return []
    seen: dict[str, None] = {}
    for part in value.split(","):
        part = part.strip()
        if part:
            seen.setdefault(part, None)
    return list(seen)
