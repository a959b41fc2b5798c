"""Tests for the NVML backend against a fake libnvidia-ml."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any

import pynvml
import pytest

from gpusense._config import GpuSenseConfig
from gpusense._gpu_backend import GPUBackend
from gpusense._gpu_nvml import NvmlBackend, NvmlLibraryError, NvmlState, _load_library
from gpusense._types import GpuDevice, GpuStats, GpuVendor, NvidiaGpuStats, ProcessType

GiB = 1024**3
BUS_ID = "0000:01:00.0"
NVML_ERROR_NOT_FOUND = 6

DEVICE = GpuDevice(
    card_path="/sys/class/drm/card0",
    device_path="/sys/class/drm/card0/device",
    pci_bus_id=BUS_ID,
    name="GA102",
    vendor=GpuVendor.NVIDIA,
)


def _fake_nvml(calls: list[str] | None = None, **overrides: Any) -> SimpleNamespace:
    """A libnvidia-ml stand-in whose entry points write through ctypes pointers."""
    log = calls if calls is not None else []

    def init() -> int:
        log.append("init")
        return 0

    def shutdown() -> int:
        log.append("shutdown")
        return 0

    def handle_by_bus(bus: bytes, out: Any) -> int:
        if bus != BUS_ID.encode():
            return NVML_ERROR_NOT_FOUND
        out.contents.value = 0xBEEF
        return 0

    def utilization(handle: Any, out: Any) -> int:
        out.contents.gpu = 42
        out.contents.memory = 17
        return 0

    def memory(handle: Any, out: Any) -> int:
        out.contents.total = 24 * GiB
        out.contents.used = 6 * GiB
        out.contents.free = 18 * GiB
        return 0

    def temperature(handle: Any, sensor: int, out: Any) -> int:
        assert sensor == pynvml.NVML_TEMPERATURE_GPU
        out.contents.value = 61
        return 0

    def clock(handle: Any, kind: int, out: Any) -> int:
        out.contents.value = {pynvml.NVML_CLOCK_GRAPHICS: 1695, pynvml.NVML_CLOCK_MEM: 9501}[kind]
        return 0

    def uint(value: int) -> Any:
        def _call(handle: Any, out: Any) -> int:
            out.contents.value = value
            return 0
        return _call

    def sampled(value: int) -> Any:
        def _call(handle: Any, out: Any, period: Any) -> int:
            out.contents.value = value
            period.contents.value = 167000
            return 0
        return _call

    def pstate(handle: Any, out: Any) -> int:
        out.contents.value = 2
        return 0

    def driver_version(buf: Any, length: int) -> int:
        buf.value = b"550.54.14"
        return 0

    def vbios_version(handle: Any, buf: Any, length: int) -> int:
        buf.value = b"94.02.42.00.a9"
        return 0

    def compute_procs(handle: Any, count: Any, infos: Any) -> int:
        assert count.contents.value == 32
        infos[0].pid = 4242
        infos[0].usedGpuMemory = 512 * 1024**2
        infos[1].pid = 4343
        infos[1].usedGpuMemory = pynvml.NVML_VALUE_NOT_AVAILABLE_ulonglong.value
        count.contents.value = 2
        return 0

    def graphics_procs(handle: Any, count: Any, infos: Any) -> int:
        infos[0].pid = 1001
        infos[0].usedGpuMemory = 64 * 1024**2
        count.contents.value = 1
        return 0

    functions: dict[str, Any] = {
        "nvmlInit_v2": init,
        "nvmlShutdown": shutdown,
        "nvmlDeviceGetHandleByPciBusId_v2": handle_by_bus,
        "nvmlDeviceGetUtilizationRates": utilization,
        "nvmlDeviceGetMemoryInfo": memory,
        "nvmlDeviceGetTemperature": temperature,
        "nvmlDeviceGetClockInfo": clock,
        "nvmlDeviceGetPowerUsage": uint(185_500),
        "nvmlDeviceGetEnforcedPowerLimit": uint(350_000),
        "nvmlDeviceGetFanSpeed": uint(45),
        "nvmlDeviceGetPerformanceState": pstate,
        "nvmlSystemGetDriverVersion": driver_version,
        "nvmlDeviceGetVbiosVersion": vbios_version,
        "nvmlDeviceGetCurrPcieLinkGeneration": uint(4),
        "nvmlDeviceGetCurrPcieLinkWidth": uint(16),
        "nvmlDeviceGetEncoderUtilization": sampled(7),
        "nvmlDeviceGetDecoderUtilization": sampled(3),
        "nvmlDeviceGetComputeRunningProcesses_v3": compute_procs,
        "nvmlDeviceGetGraphicsRunningProcesses_v3": graphics_procs,
    }
    for name, func in overrides.items():
        if func is None:
            functions.pop(name, None)
        else:
            functions[name] = func
    return SimpleNamespace(**functions)


def _config(**kwargs: Any) -> GpuSenseConfig:
    kwargs.setdefault("nvml_library_paths", ())
    kwargs.setdefault("resolve_process_names", False)
    return GpuSenseConfig(**kwargs)


def _backend(lib: SimpleNamespace, **kwargs: Any) -> NvmlBackend:
    return NvmlBackend(_config(), loader=lambda path: lib, **kwargs)


class TestLifecycle:
    def test_disabled_by_environment_never_loads(self) -> None:
        def loader(path: str) -> Any:
            raise AssertionError("library must not be loaded")

        config = GpuSenseConfig.from_env({"GPUSENSE_DISABLE_NVML": "1"}, nvml_library_paths=())
        backend = NvmlBackend(config, loader=loader)
        assert backend.state is NvmlState.FAILED
        assert not backend.supports(DEVICE)

    def test_load_failure(self) -> None:
        def loader(path: str) -> Any:
            raise OSError("libnvidia-ml.so.1: cannot open shared object file")

        backend = NvmlBackend(_config(), loader=loader)
        assert backend.state is NvmlState.FAILED
        assert not backend.supports(DEVICE)
        assert backend.read_stats(DEVICE) == (False, GpuStats())

    def test_missing_required_symbol(self) -> None:
        backend = _backend(_fake_nvml(nvmlDeviceGetTemperature=None))
        assert backend.state is NvmlState.FAILED
        assert not backend.supports(DEVICE)

    def test_init_error_code(self) -> None:
        calls: list[str] = []
        backend = _backend(_fake_nvml(calls, nvmlInit_v2=lambda: 9))
        assert backend.state is NvmlState.FAILED
        assert backend.capabilities == frozenset()

    def test_load_library_raises_library_error(self) -> None:
        with pytest.raises(NvmlLibraryError):
            _load_library("libnvidia-ml.so.1", lambda path: _fake_nvml(nvmlShutdown=None))

    def test_unversioned_fallbacks(self) -> None:
        lib = _fake_nvml()
        lib.nvmlInit = lib.nvmlInit_v2
        lib.nvmlDeviceGetHandleByPciBusId = lib.nvmlDeviceGetHandleByPciBusId_v2
        del lib.nvmlInit_v2
        del lib.nvmlDeviceGetHandleByPciBusId_v2
        backend = _backend(lib)
        assert backend.state is NvmlState.READY

    def test_first_existing_candidate_path(self, tmp_path: Any) -> None:
        missing = tmp_path / "missing.so"
        present = tmp_path / "libnvidia-ml.so.1"
        present.write_bytes(b"")
        seen: list[str] = []

        def loader(path: str) -> Any:
            seen.append(path)
            return _fake_nvml()

        NvmlBackend(
            _config(nvml_library_paths=(str(missing), str(present))), loader=loader,
        )
        assert seen == [str(present)]

    def test_ready(self) -> None:
        calls: list[str] = []
        backend = _backend(_fake_nvml(calls))
        assert backend.state is NvmlState.READY
        assert calls == ["init"]
        assert isinstance(backend, GPUBackend)
        assert backend.supports(DEVICE)
        assert "nvmlDeviceGetComputeRunningProcesses" in backend.capabilities

    def test_supports_only_nvidia(self) -> None:
        backend = _backend(_fake_nvml())
        amd = GpuDevice(DEVICE.card_path, DEVICE.device_path, BUS_ID, "x", GpuVendor.AMD)
        assert not backend.supports(amd)

    def test_shutdown_once(self) -> None:
        calls: list[str] = []
        backend = _backend(_fake_nvml(calls))
        backend.shutdown()
        backend.shutdown()
        assert calls == ["init", "shutdown"]
        assert backend.state is NvmlState.SHUTDOWN
        assert not backend.supports(DEVICE)
        assert backend.read_stats(DEVICE) == (False, GpuStats())


class TestReads:
    def test_read_stats(self) -> None:
        ok, stats = _backend(_fake_nvml()).read_stats(DEVICE)
        assert ok
        assert type(stats) is GpuStats
        assert stats.utilization_percent == 42
        assert stats.memory_used_bytes == 6 * GiB
        assert stats.memory_total_bytes == 24 * GiB
        assert stats.temperature_c == 61
        assert stats.core_clock_khz == 1_695_000
        assert stats.memory_clock_khz == 9_501_000
        assert stats.power_usage_watts == 185
        assert stats.max_power_watts == 350
        assert stats.fan_speed_percent == 45
        assert stats.driver_version == "550.54.14"
        assert stats.vbios_version == "94.02.42.00.a9"
        assert stats.pcie_generation == 4
        assert stats.pcie_lanes == 16
        assert stats.video_encode_util_percent == 7
        assert stats.video_decode_util_percent == 3

    def test_optional_symbols_missing(self) -> None:
        lib = _fake_nvml(**{
            name: None for name in (
                "nvmlDeviceGetClockInfo",
                "nvmlDeviceGetPowerUsage",
                "nvmlDeviceGetEnforcedPowerLimit",
                "nvmlDeviceGetFanSpeed",
                "nvmlSystemGetDriverVersion",
                "nvmlDeviceGetVbiosVersion",
                "nvmlDeviceGetCurrPcieLinkGeneration",
                "nvmlDeviceGetCurrPcieLinkWidth",
                "nvmlDeviceGetEncoderUtilization",
                "nvmlDeviceGetDecoderUtilization",
            )
        })
        ok, stats = _backend(lib).read_stats(DEVICE)
        assert ok
        assert stats.utilization_percent == 42
        assert stats.core_clock_khz == GpuStats.UNAVAILABLE
        assert stats.power_usage_watts == GpuStats.UNAVAILABLE
        assert stats.fan_speed_percent == GpuStats.UNAVAILABLE
        assert stats.driver_version == ""

    def test_failed_optional_call_leaves_sentinel(self) -> None:
        lib = _fake_nvml(nvmlDeviceGetPowerUsage=lambda handle, out: 3)
        ok, stats = _backend(lib).read_stats(DEVICE)
        assert ok
        assert stats.power_usage_watts == GpuStats.UNAVAILABLE
        assert stats.max_power_watts == 350

    def test_handle_failure_returns_all_sentinel(self) -> None:
        backend = _backend(_fake_nvml())
        other = GpuDevice(DEVICE.card_path, DEVICE.device_path, "0000:02:00.0", "x", GpuVendor.NVIDIA)
        assert backend.read_stats(other) == (False, GpuStats())
        assert backend.read_extended_stats(other) == (False, NvidiaGpuStats())

    def test_empty_bus_id(self) -> None:
        backend = _backend(_fake_nvml())
        other = GpuDevice(DEVICE.card_path, DEVICE.device_path, "", "x", GpuVendor.NVIDIA)
        assert backend.read_stats(other) == (False, GpuStats())

    def test_exception_inside_call_is_contained(self) -> None:
        def boom(handle: Any, out: Any) -> int:
            raise RuntimeError("driver crashed")

        ok, stats = _backend(_fake_nvml(nvmlDeviceGetUtilizationRates=boom)).read_stats(DEVICE)
        assert not ok
        assert stats == GpuStats()

    def test_out_of_range_temperature_rejected(self) -> None:
        def hot(handle: Any, sensor: int, out: Any) -> int:
            out.contents.value = 400
            return 0

        ok, stats = _backend(_fake_nvml(nvmlDeviceGetTemperature=hot)).read_stats(DEVICE)
        assert ok
        assert stats.temperature_c == GpuStats.UNAVAILABLE


class TestExtended:
    def test_processes_and_pstate(self) -> None:
        ok, stats = _backend(_fake_nvml()).read_extended_stats(DEVICE)
        assert ok
        assert isinstance(stats, NvidiaGpuStats)
        assert stats.performance_state == 2
        assert stats.utilization_percent == 42
        assert [(p.pid, p.type) for p in stats.processes] == [
            (4242, ProcessType.COMPUTE),
            (4343, ProcessType.COMPUTE),
            (1001, ProcessType.GRAPHICS),
        ]
        assert stats.processes[0].memory_used_bytes == 512 * 1024**2
        assert stats.processes[1].memory_used_bytes == 0
        assert stats.processes[0].process_name == "PID 4242"

    def test_process_name_resolver(self) -> None:
        names = {4242: "python3"}
        backend = _backend(_fake_nvml(), process_name_resolver=names.get)
        _, stats = backend.read_extended_stats(DEVICE)
        assert isinstance(stats, NvidiaGpuStats)
        assert stats.processes[0].process_name == "python3"
        assert stats.processes[1].process_name == "PID 4343"

    def test_v2_process_symbols(self) -> None:
        lib = _fake_nvml()
        lib.nvmlDeviceGetComputeRunningProcesses_v2 = lib.nvmlDeviceGetComputeRunningProcesses_v3
        del lib.nvmlDeviceGetComputeRunningProcesses_v3
        _, stats = _backend(lib).read_extended_stats(DEVICE)
        assert isinstance(stats, NvidiaGpuStats)
        assert len([p for p in stats.processes if p.type is ProcessType.COMPUTE]) == 2

    def test_process_call_failure(self) -> None:
        lib = _fake_nvml(nvmlDeviceGetGraphicsRunningProcesses_v3=lambda h, c, i: 7)
        _, stats = _backend(lib).read_extended_stats(DEVICE)
        assert isinstance(stats, NvidiaGpuStats)
        assert all(p.type is ProcessType.COMPUTE for p in stats.processes)
