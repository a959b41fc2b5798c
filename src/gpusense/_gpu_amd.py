"""AMD amdgpu backend reading the kernel sysfs and hwmon interfaces."""

from __future__ import annotations

import logging
import os
import re

from gpusense._gpu_backend import finish, set_memory, valid_percent, valid_temperature
from gpusense._hwmon import find_files, find_hwmon_dir, read_first_integer
from gpusense._sysfs import read_first_line, read_integer, read_text
from gpusense._types import AmdGpuStats, GpuDevice, GpuStats, GpuVendor

logger = logging.getLogger("gpusense.gpu.amd")

_DPM_FREQ_RE = re.compile(r"(\d+)\s*([MG])hz", re.IGNORECASE)
_LINK_SPEED_RE = re.compile(r"([\d.]+)\s*GT/s", re.IGNORECASE)

# GT/s per lane -> PCIe generation
_LINK_SPEED_GENERATIONS: dict[float, int] = {
    2.5: 1,
    5.0: 2,
    8.0: 3,
    16.0: 4,
    32.0: 5,
    64.0: 6,
}

_AMD_MODALIAS_VENDORS = ("v00001002", "v00001022")


def parse_dpm_current_clock(content: str) -> int | None:
    """Return the MHz value of the ``*``-marked DPM level.

    >>> parse_dpm_current_clock("0: 300Mhz\\n1: 600Mhz *\\n2: 900Mhz\\n")
    600

    No marked line means the current level is unknown, which is None and
    never zero.
    """
    for line in content.splitlines():
        if "*" not in line:
            continue
        match = _DPM_FREQ_RE.search(line)
        if match is None:
            continue
        value = int(match.group(1))
        if match.group(2).upper() == "G":
            value *= 1000
        return value
    return None


def parse_dpm_levels(content: str) -> list[str]:
    """Every ``N: <freq>`` line of a DPM table, stripped."""
    return [line.strip() for line in content.splitlines() if ":" in line and line.strip()]


def parse_power_profiles(content: str) -> list[str]:
    """Lines of ``pp_power_profile_mode`` without the ``NUM`` column header."""
    return [
        line.strip() for line in content.splitlines()
        if line.strip() and not line.strip().startswith("NUM")
    ]


def link_speed_to_generation(speed: str) -> int | None:
    """``8.0 GT/s PCIe`` -> 3."""
    match = _LINK_SPEED_RE.search(speed)
    if match is None:
        return None
    try:
        rate = float(match.group(1))
    except ValueError:
        return None
    return _LINK_SPEED_GENERATIONS.get(rate)


class AmdBackend:
    """AMD GPU backend over amdgpu sysfs attributes. Stateless between polls."""

    vendor = GpuVendor.AMD

    def supports(self, device: GpuDevice) -> bool:
        return device.vendor is GpuVendor.AMD

    def read_stats(self, device: GpuDevice) -> tuple[bool, GpuStats]:
        stats = GpuStats()
        self._fill_basic(device.device_path, stats)
        return finish(stats)

    def read_extended_stats(self, device: GpuDevice) -> tuple[bool, GpuStats]:
        path = device.device_path
        stats = AmdGpuStats()
        self._fill_basic(path, stats)

        gtt_used = read_integer(os.path.join(path, "mem_info_gtt_used"))
        gtt_total = read_integer(os.path.join(path, "mem_info_gtt_total"))
        if gtt_used is not None and gtt_used >= 0:
            stats.gtt_used_bytes = gtt_used
        if gtt_total is not None and gtt_total >= 0:
            stats.gtt_total_bytes = gtt_total

        sclk = read_text(os.path.join(path, "pp_dpm_sclk"))
        if sclk is not None:
            stats.sclk_levels = parse_dpm_levels(sclk)
        mclk = read_text(os.path.join(path, "pp_dpm_mclk"))
        if mclk is not None:
            stats.mclk_levels = parse_dpm_levels(mclk)
        profiles = read_text(os.path.join(path, "pp_power_profile_mode"))
        if profiles is not None:
            stats.power_profiles = parse_power_profiles(profiles)

        return finish(stats)

    def invalidate(self) -> None:
        pass

    def shutdown(self) -> None:
        pass

    # -- readers --

    def _fill_basic(self, path: str, stats: GpuStats) -> None:
        busy = valid_percent(read_integer(os.path.join(path, "gpu_busy_percent")))
        if busy is not None:
            stats.utilization_percent = busy

        set_memory(
            stats,
            read_integer(os.path.join(path, "mem_info_vram_used")),
            read_integer(os.path.join(path, "mem_info_vram_total")),
        )

        self._fill_hwmon(path, stats)
        self._fill_clocks(path, stats)
        self._fill_pcie(path, stats)
        stats.driver_version = self._driver_version(path)

    def _fill_hwmon(self, path: str, stats: GpuStats) -> None:
        hwmon = find_hwmon_dir(path)
        if hwmon is None:
            logger.debug("No hwmon tree under %s", path)
            return

        milli_c = read_first_integer(hwmon, ("temp*_input",))
        if milli_c is not None:
            celsius = valid_temperature(milli_c // 1000)
            if celsius is not None:
                stats.temperature_c = celsius

        micro_w = read_first_integer(hwmon, ("power*_average", "power*_input"))
        if micro_w is not None and micro_w >= 0:
            stats.power_usage_watts = micro_w // 1_000_000
        cap_micro_w = read_first_integer(hwmon, ("power*_cap",))
        if cap_micro_w is not None and cap_micro_w >= 0:
            stats.max_power_watts = cap_micro_w // 1_000_000

        rpm = read_first_integer(hwmon, ("fan*_input",))
        if rpm is not None and rpm >= 0:
            stats.fan_speed_rpm = rpm
            max_files = find_files(hwmon, "fan*_max")
            if max_files:
                max_rpm = read_integer(os.path.join(hwmon, max_files[0]))
                if max_rpm is not None and max_rpm > 0:
                    stats.fan_speed_percent = min(rpm * 100 // max_rpm, 100)

    def _fill_clocks(self, path: str, stats: GpuStats) -> None:
        sclk = read_text(os.path.join(path, "pp_dpm_sclk"))
        if sclk is not None:
            mhz = parse_dpm_current_clock(sclk)
            if mhz is not None and mhz > 0:
                stats.core_clock_khz = mhz * 1000
        mclk = read_text(os.path.join(path, "pp_dpm_mclk"))
        if mclk is not None:
            mhz = parse_dpm_current_clock(mclk)
            if mhz is not None and mhz > 0:
                stats.memory_clock_khz = mhz * 1000

    def _fill_pcie(self, path: str, stats: GpuStats) -> None:
        speed = read_first_line(os.path.join(path, "current_link_speed"))
        if speed is not None:
            generation = link_speed_to_generation(speed)
            if generation is not None:
                stats.pcie_generation = generation
        width = read_integer(os.path.join(path, "current_link_width"))
        if width is not None and width > 0:
            stats.pcie_lanes = width

    def _driver_version(self, path: str) -> str:
        for name in ("driver/version", "driver/module/version"):
            version = read_first_line(os.path.join(path, name))
            if version:
                return version
        modalias = read_first_line(os.path.join(path, "modalias"))
        if modalias and any(v in modalias.lower() for v in _AMD_MODALIAS_VENDORS):
            return "amdgpu"
        return ""
