"""Tests for primary-device selection and the failover monitor."""

from __future__ import annotations

from gpusense._selection import (
    MonitorState,
    PrimaryDeviceMonitor,
    select_primary_device,
    vendor_priority,
)
from gpusense._types import GpuDevice, GpuStats, GpuVendor


def _device(index: int, vendor: GpuVendor) -> GpuDevice:
    return GpuDevice(
        card_path=f"/sys/class/drm/card{index}",
        device_path=f"/sys/class/drm/card{index}/device",
        pci_bus_id="",
        name=f"{vendor.value}{index}",
        vendor=vendor,
    )


class _ScriptedService:
    """Service double: per-card utilization, None meaning the read fails."""

    def __init__(self, devices: list[GpuDevice], utilization: dict[str, int | None]) -> None:
        self._devices = devices
        self.utilization = utilization
        self.reads: list[str] = []

    def devices(self) -> list[GpuDevice]:
        return list(self._devices)

    def read_stats_for(self, device: GpuDevice) -> tuple[bool, GpuStats]:
        self.reads.append(device.name)
        util = self.utilization.get(device.name)
        if util is None:
            return False, GpuStats()
        return True, GpuStats(utilization_percent=util)


NV = _device(0, GpuVendor.NVIDIA)
AMD = _device(1, GpuVendor.AMD)
INTEL = _device(2, GpuVendor.INTEL)


class TestVendorPriority:
    def test_order(self) -> None:
        assert vendor_priority(GpuVendor.NVIDIA) == 1
        assert vendor_priority(GpuVendor.AMD) == 2
        assert vendor_priority(GpuVendor.INTEL) == 3
        assert vendor_priority(GpuVendor.UNKNOWN) == 4


class TestSelectPrimaryDevice:
    def test_busy_device_wins_over_priority(self) -> None:
        svc = _ScriptedService([INTEL, AMD, NV], {NV.name: 0, AMD.name: 0, INTEL.name: 30})
        picked = select_primary_device(svc, svc.devices())
        assert picked is not None
        assert picked[0] == INTEL
        assert picked[1].utilization_percent == 30

    def test_idle_falls_back_to_highest_priority(self) -> None:
        svc = _ScriptedService([INTEL, AMD, NV], {NV.name: 0, AMD.name: 0, INTEL.name: 0})
        picked = select_primary_device(svc, svc.devices())
        assert picked is not None
        assert picked[0] == NV

    def test_reads_in_priority_order_and_stops_on_busy(self) -> None:
        svc = _ScriptedService([INTEL, AMD, NV], {NV.name: 0, AMD.name: 12, INTEL.name: 99})
        picked = select_primary_device(svc, svc.devices())
        assert picked is not None
        assert picked[0] == AMD
        assert svc.reads == [NV.name, AMD.name]

    def test_unreadable_devices_skipped(self) -> None:
        svc = _ScriptedService([NV, AMD], {NV.name: None, AMD.name: 0})
        picked = select_primary_device(svc, svc.devices())
        assert picked is not None
        assert picked[0] == AMD

    def test_nothing_readable(self) -> None:
        svc = _ScriptedService([NV], {})
        assert select_primary_device(svc, svc.devices()) is None
        assert select_primary_device(svc, []) is None


class TestPrimaryDeviceMonitor:
    def test_no_gpu_stays_no_device(self) -> None:
        monitor = PrimaryDeviceMonitor(_ScriptedService([], {}))
        assert monitor.tick() is None
        assert monitor.tick() is None
        assert monitor.state is MonitorState.NO_DEVICE

    def test_selects_then_reads(self) -> None:
        svc = _ScriptedService([AMD], {AMD.name: 40})
        monitor = PrimaryDeviceMonitor(svc, history_size=3)
        stats = monitor.tick()
        assert stats is not None
        assert stats.utilization_percent == 40
        assert monitor.state is MonitorState.SELECTED
        assert monitor.device == AMD
        assert list(monitor.history) == [0.0, 0.0, 0.4]

    def test_failover_on_read_failure(self) -> None:
        svc = _ScriptedService([NV, INTEL], {NV.name: 20, INTEL.name: 5})
        monitor = PrimaryDeviceMonitor(svc)
        monitor.tick()
        assert monitor.device == NV

        svc.utilization[NV.name] = None
        stats = monitor.tick()
        assert stats is not None
        assert stats.utilization_percent == 5
        assert monitor.device == INTEL
        assert monitor.state is MonitorState.SELECTED
        assert monitor.stats is stats

    def test_recovers_after_everything_fails(self) -> None:
        svc = _ScriptedService([AMD], {AMD.name: 10})
        monitor = PrimaryDeviceMonitor(svc)
        monitor.tick()
        svc.utilization[AMD.name] = None
        assert monitor.tick() is None
        assert monitor.state is MonitorState.NO_DEVICE
        assert monitor.device is None
        assert monitor.stats is None

        svc.utilization[AMD.name] = 15
        stats = monitor.tick()
        assert stats is not None
        assert monitor.state is MonitorState.SELECTED

    def test_unavailable_utilization_recorded_as_zero(self) -> None:
        svc = _ScriptedService([AMD], {AMD.name: -1})
        monitor = PrimaryDeviceMonitor(svc, history_size=2)
        monitor.tick()
        assert list(monitor.history) == [0.0, 0.0]

    def test_selection_tick_reads_device_once(self) -> None:
        svc = _ScriptedService([NV], {NV.name: 50})
        monitor = PrimaryDeviceMonitor(svc, history_size=2)
        stats = monitor.tick()
        assert stats is not None
        assert stats.utilization_percent == 50
        assert svc.reads == [NV.name]
        assert list(monitor.history) == [0.0, 0.5]

        monitor.tick()
        assert svc.reads == [NV.name, NV.name]
        assert list(monitor.history) == [0.5, 0.5]
