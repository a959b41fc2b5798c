"""Core types: vendor enum, device identity and stats snapshots."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import ClassVar


class GpuVendor(enum.Enum):
    """GPU vendor, classified from the PCI vendor id."""

    NVIDIA = "nvidia"
    AMD = "amd"
    INTEL = "intel"
    UNKNOWN = "unknown"


class ProcessType(enum.Enum):
    """NVML context type a process holds on the device."""

    GRAPHICS = "graphics"
    COMPUTE = "compute"


@dataclass(frozen=True)
class GpuDevice:
    """Identity of one physical adapter discovered under the DRM class."""

    card_path: str       # /sys/class/drm/card0
    device_path: str     # /sys/class/drm/card0/device
    pci_bus_id: str      # 0000:01:00.0, empty if unknown
    name: str
    vendor: GpuVendor


@dataclass
class GpuStats:
    """Point-in-time snapshot. Every field starts at its "unavailable" sentinel.

    Integer fields use -1 for unavailable, memory uses 0 for unknown and
    strings stay empty. A field only leaves its sentinel when a read from
    the underlying source succeeded and parsed.
    """

    UNAVAILABLE: ClassVar[int] = -1

    utilization_percent: int = -1
    memory_used_bytes: int = 0
    memory_total_bytes: int = 0
    temperature_c: int = -1
    core_clock_khz: int = -1
    memory_clock_khz: int = -1
    power_usage_watts: int = -1
    max_power_watts: int = -1
    fan_speed_percent: int = -1
    fan_speed_rpm: int = -1
    graphics_util_percent: int = -1
    video_encode_util_percent: int = -1
    video_decode_util_percent: int = -1
    compute_util_percent: int = -1
    driver_version: str = ""
    vbios_version: str = ""
    pcie_generation: int = -1
    pcie_lanes: int = -1


@dataclass
class AmdGpuStats(GpuStats):
    """AMD snapshot with GTT memory and DPM/power-profile listings."""

    gtt_used_bytes: int = 0
    gtt_total_bytes: int = 0
    sclk_levels: list[str] = field(default_factory=list)
    mclk_levels: list[str] = field(default_factory=list)
    power_profiles: list[str] = field(default_factory=list)


@dataclass
class EngineStats:
    """One Intel engine (rcs0, bcs0, vcs0, ...) and its latest counters."""

    name: str
    class_name: str
    utilization_percent: int = -1
    busy_ns: int = 0
    instances: int = 1


@dataclass
class IntelGpuStats(GpuStats):
    """Intel snapshot with per-engine statistics and GT frequencies."""

    engines: list[EngineStats] = field(default_factory=list)
    platform_name: str = ""
    current_freq_mhz: int = -1
    min_freq_mhz: int = -1
    max_freq_mhz: int = -1


@dataclass(frozen=True)
class ProcessUsage:
    """A process holding a context on an NVIDIA device."""

    pid: int
    memory_used_bytes: int
    type: ProcessType
    process_name: str


@dataclass
class NvidiaGpuStats(GpuStats):
    """NVIDIA snapshot with performance state and running processes."""

    performance_state: int = -1
    processes: list[ProcessUsage] = field(default_factory=list)
