"""Intel i915/xe backend: engine busy counters, hwmon sensors and GT frequencies."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass

from gpusense._gpu_backend import finish, valid_percent, valid_temperature
from gpusense._hwmon import find_hwmon_dir, read_first_integer
from gpusense._sysfs import first_existing_dir, read_first_line, read_integer, read_uevent
from gpusense._types import EngineStats, GpuDevice, GpuStats, GpuVendor, IntelGpuStats

logger = logging.getLogger("gpusense.gpu.intel")

_ENGINE_CLASSES: tuple[tuple[str, str], ...] = (
    ("rcs", "Render"),
    ("bcs", "Copy"),
    ("vecs", "VideoEnhance"),
    ("vcs", "Video"),
    ("ccs", "Compute"),
)

_PLATFORMS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("46", "4c", "9a"), "Gen12 (Tiger Lake)"),
    (("8a", "9b"), "Gen11 (Ice Lake)"),
    (("3e", "87"), "Gen9.5 (Coffee Lake)"),
    (("59", "5a"), "Gen9 (Skylake)"),
    (("56",), "Xe-HPG (Arc)"),
    (("7d",), "Xe-LPG (Meteor Lake)"),
)

_TEMP_FILES = ("temp1_input", "temp2_input", "temp_input")
_POWER_FILES = ("power1_average", "power1_input", "power_average", "power_input")
_MAX_POWER_FILES = ("power1_max", "power1_rated_max", "power1_cap")

_PCI_ID_RE = re.compile(r"([0-9A-Fa-f]{4}):([0-9A-Fa-f]{4})")


def parse_engine_class(engine_name: str) -> str:
    for prefix, class_name in _ENGINE_CLASSES:
        if engine_name.startswith(prefix):
            return class_name
    return "Unknown"


def platform_name_for_device_id(device_id: str) -> str:
    """Coarse generation label from a 4-hex-digit PCI device id."""
    device_id = device_id.lower()
    for prefixes, label in _PLATFORMS:
        if device_id.startswith(prefixes):
            return label
    return "Intel GPU"


def read_device_id(device_path: str) -> str | None:
    """Device id as four lowercase hex digits, from ``device`` or uevent ``PCI_ID``."""
    raw = read_first_line(os.path.join(device_path, "device"))
    if raw:
        raw = raw.lower()
        if raw.startswith("0x"):
            raw = raw[2:]
        if len(raw) == 4 and all(c in "0123456789abcdef" for c in raw):
            return raw
    match = _PCI_ID_RE.search(read_uevent(device_path).get("PCI_ID", ""))
    if match is not None:
        return match.group(2).lower()
    return None


@dataclass(frozen=True)
class _EngineEntry:
    name: str
    path: str
    class_name: str


class IntelBackend:
    """Intel GPU backend.

    The engine set of a device is discovered once and cached by device
    path; engines do not come and go at runtime, so later polls only
    re-read the busy counters. ``invalidate()`` drops the cache.
    """

    vendor = GpuVendor.INTEL

    def __init__(self) -> None:
        self._engine_cache: dict[str, list[_EngineEntry]] = {}

    def supports(self, device: GpuDevice) -> bool:
        return device.vendor is GpuVendor.INTEL

    def read_stats(self, device: GpuDevice) -> tuple[bool, GpuStats]:
        stats = GpuStats()
        self._fill_basic(device, stats, self.read_engines(device), self._read_frequencies(device))
        return finish(stats)

    def read_extended_stats(self, device: GpuDevice) -> tuple[bool, GpuStats]:
        stats = IntelGpuStats()
        engines = self.read_engines(device)
        frequencies = self._read_frequencies(device)
        self._fill_basic(device, stats, engines, frequencies)
        stats.engines = engines

        current, minimum, maximum = frequencies
        stats.current_freq_mhz = current
        stats.min_freq_mhz = minimum
        stats.max_freq_mhz = maximum

        device_id = read_device_id(device.device_path)
        if device_id is not None:
            stats.platform_name = platform_name_for_device_id(device_id)
        return finish(stats)

    def invalidate(self) -> None:
        self._engine_cache.clear()

    def shutdown(self) -> None:
        self._engine_cache.clear()

    # -- engines --

    def read_engines(self, device: GpuDevice) -> list[EngineStats]:
        """Fresh counter readings for the cached engines of ``device`` that read back."""
        entries = self._engine_cache.get(device.device_path)
        if entries is None:
            entries = self._discover_engines(device)
            self._engine_cache[device.device_path] = entries
        engines = []
        for entry in entries:
            engine = EngineStats(name=entry.name, class_name=entry.class_name)
            if self._read_engine_counters(entry.path, engine):
                engines.append(engine)
        return engines

    def _discover_engines(self, device: GpuDevice) -> list[_EngineEntry]:
        engine_dir = first_existing_dir(
            os.path.join(device.device_path, "engine"),
            os.path.join(device.card_path, "engine"),
        )
        if engine_dir is None:
            logger.debug("No engine directory for %s", device.card_path)
            return []
        try:
            names = sorted(os.listdir(engine_dir))
        except OSError:
            logger.debug("Engine directory %s not readable", engine_dir)
            return []
        entries = []
        for name in names:
            path = os.path.join(engine_dir, name)
            if not os.path.isdir(path):
                continue
            class_name = read_first_line(os.path.join(path, "class")) or parse_engine_class(name)
            probe = EngineStats(name=name, class_name=class_name)
            if not self._read_engine_counters(path, probe):
                continue
            entries.append(_EngineEntry(name=name, path=path, class_name=class_name))
            logger.debug("Found engine %s (%s)", name, class_name)
        return entries

    @staticmethod
    def _read_engine_counters(path: str, engine: EngineStats) -> bool:
        has_data = False
        busy = valid_percent(read_integer(os.path.join(path, "busy_percent")))
        if busy is not None:
            engine.utilization_percent = busy
            has_data = True
        busy_ns = read_integer(os.path.join(path, "busy_ns"))
        if busy_ns is not None and busy_ns >= 0:
            engine.busy_ns = busy_ns
            has_data = True
        instances = read_integer(os.path.join(path, "instances"))
        if instances is not None and instances > 0:
            engine.instances = instances
        return has_data

    # -- readers --

    def _fill_basic(
        self,
        device: GpuDevice,
        stats: GpuStats,
        engines: list[EngineStats],
        frequencies: tuple[int, int, int],
    ) -> None:
        overall = _mean_utilization(engines)
        if overall is not None:
            stats.utilization_percent = overall
        render = _mean_utilization([e for e in engines if e.class_name == "Render"])
        if render is not None:
            stats.graphics_util_percent = render
        compute = _mean_utilization([e for e in engines if e.class_name == "Compute"])
        if compute is not None:
            stats.compute_util_percent = compute

        hwmon = find_hwmon_dir(device.device_path)
        if hwmon is not None:
            milli_c = read_first_integer(hwmon, _TEMP_FILES)
            if milli_c is not None:
                celsius = valid_temperature(milli_c // 1000)
                if celsius is not None:
                    stats.temperature_c = celsius
            micro_w = read_first_integer(hwmon, _POWER_FILES)
            if micro_w is not None and micro_w >= 0:
                stats.power_usage_watts = micro_w // 1_000_000
            max_micro_w = read_first_integer(hwmon, _MAX_POWER_FILES)
            if max_micro_w is not None and max_micro_w >= 0:
                stats.max_power_watts = max_micro_w // 1_000_000

        current = frequencies[0]
        if current > 0:
            stats.core_clock_khz = current * 1000

        stats.driver_version = self._driver_version(device.device_path)

    def _read_frequencies(self, device: GpuDevice) -> tuple[int, int, int]:
        """(current, min, max) GT frequency in MHz, -1 where unreadable."""
        values = []
        for name in ("gt_cur_freq_mhz", "gt_min_freq_mhz", "gt_max_freq_mhz"):
            value = read_integer(os.path.join(device.device_path, name))
            if value is None:
                value = read_integer(os.path.join(device.card_path, name))
            values.append(value if value is not None and value >= 0 else -1)
        return values[0], values[1], values[2]

    def _driver_version(self, device_path: str) -> str:
        for name in ("driver/module/version", "driver/version"):
            version = read_first_line(os.path.join(device_path, name))
            if version:
                return version
        driver = read_uevent(device_path).get("DRIVER", "")
        if driver:
            return driver
        if read_device_id(device_path) is not None:
            return "i915"
        return ""


def _mean_utilization(engines: list[EngineStats]) -> int | None:
    readings = [e.utilization_percent for e in engines if e.utilization_percent >= 0]
    if not readings:
        return None
    return sum(readings) // len(readings)
