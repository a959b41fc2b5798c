"""Human-readable rendering of stats fields. Sentinels render as ``-``."""

from __future__ import annotations

NOT_AVAILABLE = "-"

_BYTE_UNITS = ("B", "KiB", "MiB", "GiB", "TiB")


def format_percent(value: int) -> str:
    return f"{value}%" if value >= 0 else NOT_AVAILABLE


def format_temperature(celsius: int) -> str:
    return f"{celsius}°C" if celsius >= 0 else NOT_AVAILABLE


def format_clock_khz(khz: int) -> str:
    """Kilohertz shown in MHz, or GHz from 1000 MHz up."""
    if khz < 0:
        return NOT_AVAILABLE
    mhz = khz / 1000
    if mhz >= 1000:
        return f"{mhz / 1000:.2f} GHz"
    return f"{mhz:.0f} MHz"


def format_bytes(value: int) -> str:
    """Binary units; zero means unknown for memory fields."""
    if value <= 0:
        return NOT_AVAILABLE
    size = float(value)
    for unit in _BYTE_UNITS:
        if size < 1024 or unit == _BYTE_UNITS[-1]:
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return NOT_AVAILABLE


def format_watts(watts: int) -> str:
    return f"{watts} W" if watts >= 0 else NOT_AVAILABLE


def format_rpm(rpm: int) -> str:
    return f"{rpm} RPM" if rpm >= 0 else NOT_AVAILABLE


def format_text(value: str) -> str:
    return value if value else NOT_AVAILABLE
