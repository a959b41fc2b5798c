"""NVIDIA backend over libnvidia-ml, bound at runtime via ctypes.

The library is opened once per backend; the set of available entry points
is resolved at load time so reads never probe for symbols. Structure
layouts and constants come from ``pynvml`` (nvidia-ml-py) so they track
the NVML ABI.
"""

from __future__ import annotations

import ctypes
import ctypes.util
import enum
import logging
import os
import warnings
from collections.abc import Callable
from typing import Any

from gpusense._config import GpuSenseConfig
from gpusense._gpu_backend import finish, set_memory, valid_percent, valid_temperature
from gpusense._process import resolve_process_name
from gpusense._types import (
    GpuDevice,
    GpuStats,
    GpuVendor,
    NvidiaGpuStats,
    ProcessType,
    ProcessUsage,
)

warnings.filterwarnings("ignore", category=FutureWarning, message=".*pynvml.*deprecated.*")
import pynvml  # noqa: E402

logger = logging.getLogger("gpusense.gpu.nvml")

_c_uint_p = ctypes.POINTER(ctypes.c_uint)

# logical name -> (exported names tried in order, argtypes)
_REQUIRED_SYMBOLS: dict[str, tuple[tuple[str, ...], list[Any]]] = {
    "nvmlInit": (("nvmlInit_v2", "nvmlInit"), []),
    "nvmlShutdown": (("nvmlShutdown",), []),
    "nvmlDeviceGetHandleByPciBusId": (
        ("nvmlDeviceGetHandleByPciBusId_v2", "nvmlDeviceGetHandleByPciBusId"),
        [ctypes.c_char_p, ctypes.POINTER(ctypes.c_void_p)],
    ),
    "nvmlDeviceGetUtilizationRates": (
        ("nvmlDeviceGetUtilizationRates",),
        [ctypes.c_void_p, ctypes.POINTER(pynvml.c_nvmlUtilization_t)],
    ),
    "nvmlDeviceGetMemoryInfo": (
        ("nvmlDeviceGetMemoryInfo",),
        [ctypes.c_void_p, ctypes.POINTER(pynvml.c_nvmlMemory_t)],
    ),
    "nvmlDeviceGetTemperature": (
        ("nvmlDeviceGetTemperature",),
        [ctypes.c_void_p, ctypes.c_uint, _c_uint_p],
    ),
}

_OPTIONAL_SYMBOLS: dict[str, tuple[tuple[str, ...], list[Any]]] = {
    "nvmlDeviceGetPowerUsage": (("nvmlDeviceGetPowerUsage",), [ctypes.c_void_p, _c_uint_p]),
    "nvmlDeviceGetEnforcedPowerLimit": (
        ("nvmlDeviceGetEnforcedPowerLimit",), [ctypes.c_void_p, _c_uint_p],
    ),
    "nvmlDeviceGetClockInfo": (
        ("nvmlDeviceGetClockInfo",), [ctypes.c_void_p, ctypes.c_uint, _c_uint_p],
    ),
    "nvmlDeviceGetFanSpeed": (("nvmlDeviceGetFanSpeed",), [ctypes.c_void_p, _c_uint_p]),
    "nvmlDeviceGetPerformanceState": (
        ("nvmlDeviceGetPerformanceState",), [ctypes.c_void_p, ctypes.POINTER(ctypes.c_int)],
    ),
    "nvmlSystemGetDriverVersion": (
        ("nvmlSystemGetDriverVersion",), [ctypes.c_char_p, ctypes.c_uint],
    ),
    "nvmlDeviceGetVbiosVersion": (
        ("nvmlDeviceGetVbiosVersion",), [ctypes.c_void_p, ctypes.c_char_p, ctypes.c_uint],
    ),
    "nvmlDeviceGetCurrPcieLinkGeneration": (
        ("nvmlDeviceGetCurrPcieLinkGeneration",), [ctypes.c_void_p, _c_uint_p],
    ),
    "nvmlDeviceGetCurrPcieLinkWidth": (
        ("nvmlDeviceGetCurrPcieLinkWidth",), [ctypes.c_void_p, _c_uint_p],
    ),
    "nvmlDeviceGetEncoderUtilization": (
        ("nvmlDeviceGetEncoderUtilization",), [ctypes.c_void_p, _c_uint_p, _c_uint_p],
    ),
    "nvmlDeviceGetDecoderUtilization": (
        ("nvmlDeviceGetDecoderUtilization",), [ctypes.c_void_p, _c_uint_p, _c_uint_p],
    ),
    "nvmlDeviceGetComputeRunningProcesses": (
        ("nvmlDeviceGetComputeRunningProcesses_v3", "nvmlDeviceGetComputeRunningProcesses_v2"),
        [ctypes.c_void_p, _c_uint_p, ctypes.POINTER(pynvml.c_nvmlProcessInfo_t)],
    ),
    "nvmlDeviceGetGraphicsRunningProcesses": (
        ("nvmlDeviceGetGraphicsRunningProcesses_v3", "nvmlDeviceGetGraphicsRunningProcesses_v2"),
        [ctypes.c_void_p, _c_uint_p, ctypes.POINTER(pynvml.c_nvmlProcessInfo_t)],
    ),
}


class NvmlState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"
    SHUTDOWN = "shutdown"


class NvmlLibraryError(RuntimeError):
    """libnvidia-ml could not be opened, bound or initialised."""


class _NvmlLibrary:
    """A loaded libnvidia-ml with its resolved entry points."""

    def __init__(self, cdll: Any) -> None:
        self._cdll = cdll
        self._functions: dict[str, Any] = {}
        for key, (names, argtypes) in _REQUIRED_SYMBOLS.items():
            func = self._bind(names, argtypes)
            if func is None:
                raise NvmlLibraryError(f"required NVML symbol {names[0]} not found")
            self._functions[key] = func
        for key, (names, argtypes) in _OPTIONAL_SYMBOLS.items():
            func = self._bind(names, argtypes)
            if func is not None:
                self._functions[key] = func

    def _bind(self, names: tuple[str, ...], argtypes: list[Any]) -> Any:
        for name in names:
            try:
                func = getattr(self._cdll, name)
            except AttributeError:
                continue
            func.argtypes = argtypes
            func.restype = ctypes.c_int
            return func
        return None

    @property
    def capabilities(self) -> frozenset[str]:
        return frozenset(self._functions)

    def has(self, key: str) -> bool:
        return key in self._functions

    def call(self, key: str, *args: Any) -> int:
        return int(self._functions[key](*args))


def _load_library(path: str, loader: Callable[[str], Any]) -> _NvmlLibrary:
    try:
        cdll = loader(path)
    except OSError as exc:
        raise NvmlLibraryError(f"cannot load {path}: {exc}") from exc
    library = _NvmlLibrary(cdll)
    ret = library.call("nvmlInit")
    if ret != pynvml.NVML_SUCCESS:
        raise NvmlLibraryError(f"nvmlInit failed with code {ret}")
    return library


def _out(ctype: type) -> Any:
    return ctypes.pointer(ctype())


class NvmlBackend:
    """NVIDIA GPU backend using NVML through ctypes.

    The library is loaded at construction. Any load, bind or init failure
    leaves the backend in ``NvmlState.FAILED`` and every device unsupported;
    there is no retry on later calls.
    """

    vendor = GpuVendor.NVIDIA

    def __init__(
        self,
        config: GpuSenseConfig | None = None,
        *,
        loader: Callable[[str], Any] = ctypes.CDLL,
        process_name_resolver: Callable[[int], str | None] | None = None,
    ) -> None:
        self._config = config or GpuSenseConfig()
        self._loader = loader
        if process_name_resolver is None and self._config.resolve_process_names:
            process_name_resolver = resolve_process_name
        self._resolve_name = process_name_resolver
        self._lib: _NvmlLibrary | None = None
        self.state = NvmlState.UNINITIALIZED
        self._initialize()

    def _library_path(self) -> str:
        for path in self._config.nvml_library_paths:
            if os.path.exists(path):
                return path
        return ctypes.util.find_library("nvidia-ml") or "libnvidia-ml.so.1"

    def _initialize(self) -> None:
        if self._config.disable_nvml:
            logger.info("NVML disabled by configuration")
            self.state = NvmlState.FAILED
            return
        self.state = NvmlState.LOADING
        path = self._library_path()
        try:
            self._lib = _load_library(path, self._loader)
        except NvmlLibraryError as exc:
            logger.warning("NVML unavailable: %s", exc)
            self.state = NvmlState.FAILED
            return
        self.state = NvmlState.READY
        logger.info("NVML initialized from %s", path)

    @property
    def capabilities(self) -> frozenset[str]:
        """Entry points resolved at load; empty unless READY."""
        if self._lib is None:
            return frozenset()
        return self._lib.capabilities

    def supports(self, device: GpuDevice) -> bool:
        return device.vendor is GpuVendor.NVIDIA and self.state is NvmlState.READY

    def read_stats(self, device: GpuDevice) -> tuple[bool, GpuStats]:
        return self._read(device, GpuStats())

    def read_extended_stats(self, device: GpuDevice) -> tuple[bool, GpuStats]:
        return self._read(device, NvidiaGpuStats())

    def invalidate(self) -> None:
        pass

    def shutdown(self) -> None:
        if self.state is not NvmlState.READY or self._lib is None:
            return
        try:
            self._lib.call("nvmlShutdown")
        except Exception:  # noqa: BLE001
            logger.debug("nvmlShutdown raised", exc_info=True)
        self._lib = None
        self.state = NvmlState.SHUTDOWN
        logger.info("NVML shut down")

    # -- reads --

    def _read(self, device: GpuDevice, stats: GpuStats) -> tuple[bool, GpuStats]:
        lib = self._lib
        if lib is None or self.state is not NvmlState.READY:
            return False, type(stats)()
        try:
            handle = self._device_handle(lib, device)
            if handle is None:
                return False, type(stats)()
            self._fill_basic(lib, handle, stats)
            if isinstance(stats, NvidiaGpuStats):
                self._fill_extended(lib, handle, stats)
        except Exception:  # noqa: BLE001
            logger.warning("NVML read failed for %s", device.pci_bus_id, exc_info=True)
            return False, type(stats)()
        return finish(stats)

    def _device_handle(self, lib: _NvmlLibrary, device: GpuDevice) -> Any:
        if not device.pci_bus_id:
            return None
        handle = _out(ctypes.c_void_p)
        ret = lib.call("nvmlDeviceGetHandleByPciBusId", device.pci_bus_id.encode(), handle)
        if ret != pynvml.NVML_SUCCESS or not handle.contents.value:
            logger.warning("No NVML handle for %s (code %d)", device.pci_bus_id, ret)
            return None
        return handle.contents

    def _fill_basic(self, lib: _NvmlLibrary, handle: Any, stats: GpuStats) -> None:
        ok = pynvml.NVML_SUCCESS

        util = _out(pynvml.c_nvmlUtilization_t)
        if lib.call("nvmlDeviceGetUtilizationRates", handle, util) == ok:
            gpu = valid_percent(util.contents.gpu)
            if gpu is not None:
                stats.utilization_percent = gpu

        memory = _out(pynvml.c_nvmlMemory_t)
        if lib.call("nvmlDeviceGetMemoryInfo", handle, memory) == ok:
            set_memory(stats, memory.contents.used, memory.contents.total)

        temp = _out(ctypes.c_uint)
        if lib.call("nvmlDeviceGetTemperature", handle, pynvml.NVML_TEMPERATURE_GPU, temp) == ok:
            celsius = valid_temperature(temp.contents.value)
            if celsius is not None:
                stats.temperature_c = celsius

        if lib.has("nvmlDeviceGetClockInfo"):
            clock = _out(ctypes.c_uint)
            if lib.call("nvmlDeviceGetClockInfo", handle, pynvml.NVML_CLOCK_GRAPHICS, clock) == ok:
                stats.core_clock_khz = clock.contents.value * 1000
            clock = _out(ctypes.c_uint)
            if lib.call("nvmlDeviceGetClockInfo", handle, pynvml.NVML_CLOCK_MEM, clock) == ok:
                stats.memory_clock_khz = clock.contents.value * 1000

        milliwatts = self._uint(lib, "nvmlDeviceGetPowerUsage", handle)
        if milliwatts is not None:
            stats.power_usage_watts = milliwatts // 1000
        limit = self._uint(lib, "nvmlDeviceGetEnforcedPowerLimit", handle)
        if limit is not None:
            stats.max_power_watts = limit // 1000

        fan = valid_percent(self._uint(lib, "nvmlDeviceGetFanSpeed", handle))
        if fan is not None:
            stats.fan_speed_percent = fan

        if lib.has("nvmlSystemGetDriverVersion"):
            buf = ctypes.create_string_buffer(pynvml.NVML_SYSTEM_DRIVER_VERSION_BUFFER_SIZE)
            if lib.call("nvmlSystemGetDriverVersion", buf, len(buf)) == ok:
                stats.driver_version = buf.value.decode(errors="replace")
        if lib.has("nvmlDeviceGetVbiosVersion"):
            buf = ctypes.create_string_buffer(pynvml.NVML_DEVICE_VBIOS_VERSION_BUFFER_SIZE)
            if lib.call("nvmlDeviceGetVbiosVersion", handle, buf, len(buf)) == ok:
                stats.vbios_version = buf.value.decode(errors="replace")

        generation = self._uint(lib, "nvmlDeviceGetCurrPcieLinkGeneration", handle)
        if generation is not None and generation > 0:
            stats.pcie_generation = generation
        width = self._uint(lib, "nvmlDeviceGetCurrPcieLinkWidth", handle)
        if width is not None and width > 0:
            stats.pcie_lanes = width

        encoder = valid_percent(self._sampled(lib, "nvmlDeviceGetEncoderUtilization", handle))
        if encoder is not None:
            stats.video_encode_util_percent = encoder
        decoder = valid_percent(self._sampled(lib, "nvmlDeviceGetDecoderUtilization", handle))
        if decoder is not None:
            stats.video_decode_util_percent = decoder

    def _fill_extended(self, lib: _NvmlLibrary, handle: Any, stats: NvidiaGpuStats) -> None:
        if lib.has("nvmlDeviceGetPerformanceState"):
            pstate = _out(ctypes.c_int)
            if lib.call("nvmlDeviceGetPerformanceState", handle, pstate) == pynvml.NVML_SUCCESS:
                # NVML_PSTATE_UNKNOWN is 32
                if 0 <= pstate.contents.value <= 15:
                    stats.performance_state = pstate.contents.value

        stats.processes = [
            *self._processes(lib, "nvmlDeviceGetComputeRunningProcesses", handle, ProcessType.COMPUTE),
            *self._processes(lib, "nvmlDeviceGetGraphicsRunningProcesses", handle, ProcessType.GRAPHICS),
        ]

    def _processes(
        self, lib: _NvmlLibrary, key: str, handle: Any, kind: ProcessType,
    ) -> list[ProcessUsage]:
        if not lib.has(key):
            return []
        capacity = self._config.max_processes
        count = ctypes.pointer(ctypes.c_uint(capacity))
        infos = (pynvml.c_nvmlProcessInfo_t * capacity)()
        ret = lib.call(key, handle, count, infos)
        if ret != pynvml.NVML_SUCCESS:
            logger.debug("%s returned code %d", key, ret)
            return []
        not_available = pynvml.NVML_VALUE_NOT_AVAILABLE_ulonglong.value
        processes = []
        for info in infos[:min(count.contents.value, capacity)]:
            used = info.usedGpuMemory
            processes.append(ProcessUsage(
                pid=info.pid,
                memory_used_bytes=0 if used == not_available else used,
                type=kind,
                process_name=self._process_name(info.pid),
            ))
        return processes

    def _process_name(self, pid: int) -> str:
        if self._resolve_name is not None:
            name = self._resolve_name(pid)
            if name:
                return name
        return f"PID {pid}"

    @staticmethod
    def _uint(lib: _NvmlLibrary, key: str, handle: Any) -> int | None:
        if not lib.has(key):
            return None
        value = _out(ctypes.c_uint)
        if lib.call(key, handle, value) != pynvml.NVML_SUCCESS:
            return None
        return value.contents.value

    @staticmethod
    def _sampled(lib: _NvmlLibrary, key: str, handle: Any) -> int | None:
        """Encoder/decoder style call returning (utilization, sampling period)."""
        if not lib.has(key):
            return None
        value = _out(ctypes.c_uint)
        period = _out(ctypes.c_uint)
        if lib.call(key, handle, value, period) != pynvml.NVML_SUCCESS:
            return None
        return value.contents.value
