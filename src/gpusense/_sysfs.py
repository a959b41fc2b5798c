"""Safe readers for small sysfs pseudo-files.

Most attributes are legitimately absent on hardware that lacks the feature,
so every failure here is a silent ``None`` rather than an exception.
"""

from __future__ import annotations

import os


def read_text(path: str) -> str | None:
    """Return the whole file content stripped, or None if missing/unreadable/empty."""
    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            content = f.read()
    except (OSError, ValueError):
        return None
    content = content.strip()
    return content or None


def read_first_line(path: str) -> str | None:
    """Return the first line stripped, or None if missing/unreadable/empty."""
    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            line = f.readline()
    except (OSError, ValueError):
        return None
    line = line.strip()
    return line or None


def parse_int(text: str) -> int | None:
    """Parse ``0x``-prefixed hex or decimal; leading zeros are decimal."""
    text = text.strip()
    try:
        return int(text, 0)
    except ValueError:
        pass
    try:
        return int(text, 10)
    except ValueError:
        return None


def read_integer(path: str) -> int | None:
    """Parse the first line of ``path`` as an integer."""
    line = read_first_line(path)
    if line is None:
        return None
    return parse_int(line)


def read_uevent(device_path: str) -> dict[str, str]:
    """Parse ``<device_path>/uevent`` KEY=VALUE lines."""
    content = read_text(os.path.join(device_path, "uevent"))
    if content is None:
        return {}
    values: dict[str, str] = {}
    for line in content.splitlines():
        key, sep, value = line.partition("=")
        if sep:
            values[key.strip()] = value.strip()
    return values


def first_existing_dir(*paths: str) -> str | None:
    """Return the first path that is a directory."""
    for path in paths:
        if os.path.isdir(path):
            return path
    return None
