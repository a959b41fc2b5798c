"""Locate a device's hwmon subtree and glob its sensor attributes."""

from __future__ import annotations

import fnmatch
import os
from collections.abc import Iterable

from gpusense._sysfs import read_integer


def find_hwmon_dir(device_path: str) -> str | None:
    """Return the first ``hwmonN`` directory under ``<device_path>/hwmon``.

    Integrated GPUs often have no hwmon tree at all; that is a normal None.
    """
    base = os.path.join(device_path, "hwmon")
    try:
        entries = sorted(os.listdir(base))
    except OSError:
        return None
    for entry in entries:
        candidate = os.path.join(base, entry)
        if entry.startswith("hwmon") and os.path.isdir(candidate):
            return candidate
    return None


def find_files(hwmon_dir: str, pattern: str) -> list[str]:
    """Sorted file names in ``hwmon_dir`` matching a glob like ``temp*_input``."""
    try:
        entries = os.listdir(hwmon_dir)
    except OSError:
        return []
    return sorted(
        name for name in fnmatch.filter(entries, pattern)
        if os.path.isfile(os.path.join(hwmon_dir, name))
    )


def read_first_integer(hwmon_dir: str, patterns: Iterable[str]) -> int | None:
    """First parsable value over ``patterns`` (globs or plain names), tried in order."""
    for pattern in patterns:
        for name in find_files(hwmon_dir, pattern):
            value = read_integer(os.path.join(hwmon_dir, name))
            if value is not None:
                return value
    return None
