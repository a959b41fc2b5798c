"""Primary-device selection and a poll-driven monitor with failover."""

from __future__ import annotations

import enum
import logging
from collections import deque
from collections.abc import Sequence
from typing import Protocol

from gpusense._types import GpuDevice, GpuStats, GpuVendor

logger = logging.getLogger("gpusense.selection")

_VENDOR_PRIORITY: dict[GpuVendor, int] = {
    GpuVendor.NVIDIA: 1,
    GpuVendor.AMD: 2,
    GpuVendor.INTEL: 3,
}


class StatsSource(Protocol):
    def devices(self) -> list[GpuDevice]: ...

    def read_stats_for(self, device: GpuDevice) -> tuple[bool, GpuStats]: ...


def vendor_priority(vendor: GpuVendor) -> int:
    """Lower is preferred: discrete NVIDIA, then AMD, then integrated Intel."""
    return _VENDOR_PRIORITY.get(vendor, 4)


def select_primary_device(
    service: StatsSource, devices: Sequence[GpuDevice],
) -> tuple[GpuDevice, GpuStats] | None:
    """Pick the device to show by default.

    Devices are tried in vendor-priority order. The first one reporting
    non-zero utilization wins outright; failing that, the first one that
    could be read at all.
    """
    fallback: tuple[GpuDevice, GpuStats] | None = None
    for device in sorted(devices, key=lambda d: vendor_priority(d.vendor)):
        ok, stats = service.read_stats_for(device)
        if not ok:
            continue
        if stats.utilization_percent > 0:
            logger.debug("Selected busy GPU %s (%d%%)", device.name, stats.utilization_percent)
            return device, stats
        if fallback is None:
            fallback = (device, stats)
    if fallback is not None:
        logger.debug("Selected idle GPU %s", fallback[0].name)
    return fallback


class MonitorState(enum.Enum):
    NO_DEVICE = "no_device"
    PROBING = "probing"
    SELECTED = "selected"


class PrimaryDeviceMonitor:
    """Tracks one primary GPU across polls.

    Call ``tick()`` from a periodic timer (about every 2 s). A failed read
    drops the current device and selection starts over, so a GPU that goes
    away is replaced by the next best one. With no usable GPU the monitor
    stays in ``NO_DEVICE`` and retries on the next tick.
    """

    def __init__(self, service: StatsSource, *, history_size: int = 60) -> None:
        self._service = service
        self.state = MonitorState.NO_DEVICE
        self.device: GpuDevice | None = None
        self.stats: GpuStats | None = None
        # utilization per tick as a 0.0-1.0 fraction, 0.0 when unavailable
        self.history: deque[float] = deque([0.0] * history_size, maxlen=history_size)

    def _select(self) -> GpuStats | None:
        self.state = MonitorState.PROBING
        picked = select_primary_device(self._service, self._service.devices())
        if picked is None:
            self.device = None
            self.stats = None
            self.state = MonitorState.NO_DEVICE
            return None
        self.device, stats = picked
        self.state = MonitorState.SELECTED
        return self._record(stats)

    def _record(self, stats: GpuStats) -> GpuStats:
        self.stats = stats
        util = stats.utilization_percent
        self.history.append(min(1.0, util / 100.0) if util >= 0 else 0.0)
        return stats

    def tick(self) -> GpuStats | None:
        """Poll the primary device; returns its stats or None when nothing was read."""
        if self.device is None:
            return self._select()

        ok, stats = self._service.read_stats_for(self.device)
        if not ok:
            logger.debug("Read failed for %s, reselecting", self.device.name)
            return self._select()
        return self._record(stats)
