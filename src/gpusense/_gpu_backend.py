"""GPU backend protocol and shared helpers for multi-vendor GPU support."""

from __future__ import annotations

from dataclasses import fields, replace
from typing import Protocol, TypeVar, runtime_checkable

from gpusense._types import GpuDevice, GpuStats, GpuVendor

StatsT = TypeVar("StatsT", bound=GpuStats)


@runtime_checkable
class GPUBackend(Protocol):
    """Structural protocol for GPU vendor backends."""

    vendor: GpuVendor

    def supports(self, device: GpuDevice) -> bool: ...

    def read_stats(self, device: GpuDevice) -> tuple[bool, GpuStats]: ...

    def read_extended_stats(self, device: GpuDevice) -> tuple[bool, GpuStats]: ...

    def invalidate(self) -> None: ...

    def shutdown(self) -> None: ...


# Static labels that say nothing about the device's current state.
_IDENTITY_FIELDS = ("driver_version", "vbios_version", "platform_name")


def finish(stats: StatsT) -> tuple[bool, StatsT]:
    """Pair a snapshot with its had-data flag.

    A snapshot that differs from a fresh instance of its own class only in
    identity labels carries no data; in that case the fresh instance is
    returned so callers never see a partially touched record.
    """
    empty = type(stats)()
    labels = {f.name: getattr(empty, f.name) for f in fields(stats) if f.name in _IDENTITY_FIELDS}
    if replace(stats, **labels) == empty:
        return False, empty
    return True, stats


def valid_percent(value: int | None) -> int | None:
    if value is None or not 0 <= value <= 100:
        return None
    return value


def valid_temperature(celsius: int | None) -> int | None:
    if celsius is None or not 0 <= celsius <= 120:
        return None
    return celsius


def set_memory(stats: GpuStats, used: int | None, total: int | None) -> bool:
    """Store a used/total pair only when both are known and consistent."""
    if used is None or total is None or total <= 0 or used < 0 or used > total:
        return False
    stats.memory_used_bytes = used
    stats.memory_total_bytes = total
    return True
