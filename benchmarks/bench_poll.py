#!/usr/bin/env python3
"""Per-poll read overhead benchmark.

Measures on a synthetic sysfs tree (no GPU needed):
  1. enumerate_devices()      (full DRM walk, no lspci)
  2. AmdBackend.read_stats()  (basic snapshot)
  3. IntelBackend.read_stats() with a warm engine cache
  4. PrimaryDeviceMonitor.tick() over a mixed AMD + Intel host

Target: well under 1ms per tick so a 2 s poll timer stays negligible.

Usage:
    python benchmarks/bench_poll.py
"""

from __future__ import annotations

import os
import tempfile
import time
from collections.abc import Callable
from pathlib import Path

from gpusense import (
    AmdBackend,
    GpuSenseConfig,
    GpuService,
    IntelBackend,
    PrimaryDeviceMonitor,
)
from gpusense._enumerate import enumerate_devices

_AMD_FILES = {
    "vendor": "0x1002\n",
    "uevent": "DRIVER=amdgpu\nPCI_SLOT_NAME=0000:03:00.0\n",
    "gpu_busy_percent": "37\n",
    "mem_info_vram_used": "1073741824\n",
    "mem_info_vram_total": "8589934592\n",
    "pp_dpm_sclk": "0: 500Mhz\n1: 1200Mhz *\n2: 2100Mhz\n",
    "pp_dpm_mclk": "0: 96Mhz\n1: 1000Mhz *\n",
    "current_link_speed": "16.0 GT/s PCIe\n",
    "current_link_width": "16\n",
    "hwmon/hwmon0/temp1_input": "55000\n",
    "hwmon/hwmon0/power1_average": "45000000\n",
    "hwmon/hwmon0/fan1_input": "1500\n",
    "hwmon/hwmon0/fan1_max": "3000\n",
}

_INTEL_FILES = {
    "vendor": "0x8086\n",
    "uevent": "DRIVER=i915\nPCI_ID=8086:46A6\nPCI_SLOT_NAME=0000:00:02.0\n",
    "gt_cur_freq_mhz": "1100\n",
    "hwmon/hwmon1/temp1_input": "48000\n",
    **{f"engine/{name}/busy_percent": "20\n" for name in ("rcs0", "bcs0", "vcs0", "vecs0", "ccs0")},
}


def _build_tree(root: Path) -> None:
    for card, files in (("card0", _INTEL_FILES), ("card1", _AMD_FILES)):
        for rel, content in files.items():
            path = root / card / "device" / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)


def _time(fn: Callable[[], object], iterations: int) -> float:
    for _ in range(min(iterations // 10, 500)):
        fn()
    start = time.perf_counter_ns()
    for _ in range(iterations):
        fn()
    return (time.perf_counter_ns() - start) / iterations


def main() -> None:
    print("=" * 60)
    print("gpusense Poll Overhead Benchmark")
    print("=" * 60)

    with tempfile.TemporaryDirectory() as tmp:
        root = Path(tmp) / "drm"
        _build_tree(root)
        drm_root = os.fspath(root)
        devices = enumerate_devices(drm_root)
        intel_dev, amd_dev = devices

        amd = AmdBackend()
        intel = IntelBackend()
        svc = GpuService(
            GpuSenseConfig(drm_root=drm_root, disable_nvml=True),
            name_lookup=lambda bus_id: None,
        )
        monitor = PrimaryDeviceMonitor(svc)

        results: list[tuple[str, float, float]] = [
            ("enumerate_devices (2 cards)", _time(lambda: enumerate_devices(drm_root), 2_000), 1_000_000),
            ("AMD read_stats", _time(lambda: amd.read_stats(amd_dev), 5_000), 500_000),
            ("Intel read_stats (warm cache)", _time(lambda: intel.read_stats(intel_dev), 5_000), 500_000),
            ("Monitor tick", _time(monitor.tick, 5_000), 1_000_000),
        ]
        svc.shutdown()

    print()
    all_pass = True
    for name, ns_val, target in results:
        status = "PASS" if ns_val < target else "WARN" if ns_val < 2 * target else "FAIL"
        all_pass = all_pass and status != "FAIL"
        display = f"{ns_val / 1000:.1f}μs"
        print(f"  {name:40s}  {display:>10s}   {status} (target < {target / 1000:.0f}μs)")

    print()
    if all_pass:
        print("All benchmarks within acceptable range.")
    else:
        print("WARNING: Some benchmarks exceeded target. Review above.")


if __name__ == "__main__":
    main()
