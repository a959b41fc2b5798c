"""gpusense: multi-vendor GPU telemetry for Linux (NVIDIA, AMD, Intel)."""

from __future__ import annotations

from gpusense._config import GpuSenseConfig
from gpusense._format import (
    format_bytes,
    format_clock_khz,
    format_percent,
    format_rpm,
    format_temperature,
    format_text,
    format_watts,
)
from gpusense._gpu_amd import AmdBackend
from gpusense._gpu_backend import GPUBackend
from gpusense._gpu_intel import IntelBackend
from gpusense._gpu_nvml import NvmlBackend, NvmlLibraryError, NvmlState
from gpusense._selection import (
    MonitorState,
    PrimaryDeviceMonitor,
    select_primary_device,
    vendor_priority,
)
from gpusense._service import (
    GpuService,
    enumerate_devices,
    init,
    read_extended_stats,
    read_stats,
    shutdown,
)
from gpusense._types import (
    AmdGpuStats,
    EngineStats,
    GpuDevice,
    GpuStats,
    GpuVendor,
    IntelGpuStats,
    NvidiaGpuStats,
    ProcessType,
    ProcessUsage,
)

__version__ = "0.1.0"

__all__ = [
    "AmdBackend",
    "AmdGpuStats",
    "EngineStats",
    "GPUBackend",
    "GpuDevice",
    "GpuSenseConfig",
    "GpuService",
    "GpuStats",
    "GpuVendor",
    "IntelBackend",
    "IntelGpuStats",
    "MonitorState",
    "NvidiaGpuStats",
    "NvmlBackend",
    "NvmlLibraryError",
    "NvmlState",
    "PrimaryDeviceMonitor",
    "ProcessType",
    "ProcessUsage",
    "__version__",
    "enumerate_devices",
    "format_bytes",
    "format_clock_khz",
    "format_percent",
    "format_rpm",
    "format_temperature",
    "format_text",
    "format_watts",
    "init",
    "read_extended_stats",
    "read_stats",
    "select_primary_device",
    "shutdown",
    "vendor_priority",
]
