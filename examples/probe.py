"""gpusense probe: list GPUs and print one snapshot per device."""

import argparse
import logging

import gpusense
from gpusense import (
    AmdGpuStats,
    IntelGpuStats,
    NvidiaGpuStats,
    format_bytes,
    format_clock_khz,
    format_percent,
    format_rpm,
    format_temperature,
    format_text,
    format_watts,
)

parser = argparse.ArgumentParser(description=__doc__)
parser.add_argument("--skip-nvml", action="store_true", help="do not load libnvidia-ml")
parser.add_argument("--drm-root", default=None, help="alternate /sys/class/drm (for fixtures)")
parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
args = parser.parse_args()

logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

# 1. Initialize (environment first, then explicit overrides)
overrides: dict[str, object] = {}
if args.skip_nvml:
    overrides["disable_nvml"] = True
if args.drm_root:
    overrides["drm_root"] = args.drm_root
service = gpusense.init(**overrides)

# 2. Enumerate
devices = gpusense.enumerate_devices()
if not devices:
    print("No GPUs found.")

# 3. One extended snapshot per device
for device in devices:
    print(f"{device.card_path}  {device.vendor.value:6s}  {device.pci_bus_id or '-':14s}  {device.name}")
    stats = gpusense.read_extended_stats(device)
    if stats is None:
        print("    (no telemetry available)")
        continue
    print(f"    utilization  {format_percent(stats.utilization_percent)}")
    print(f"    memory       {format_bytes(stats.memory_used_bytes)} / {format_bytes(stats.memory_total_bytes)}")
    print(f"    temperature  {format_temperature(stats.temperature_c)}")
    print(f"    core clock   {format_clock_khz(stats.core_clock_khz)}")
    print(f"    mem clock    {format_clock_khz(stats.memory_clock_khz)}")
    print(f"    power        {format_watts(stats.power_usage_watts)} / {format_watts(stats.max_power_watts)}")
    print(f"    fan          {format_percent(stats.fan_speed_percent)} {format_rpm(stats.fan_speed_rpm)}")
    print(f"    driver       {format_text(stats.driver_version)}")
    if isinstance(stats, AmdGpuStats):
        print(f"    gtt          {format_bytes(stats.gtt_used_bytes)} / {format_bytes(stats.gtt_total_bytes)}")
    elif isinstance(stats, IntelGpuStats):
        print(f"    platform     {format_text(stats.platform_name)}")
        for engine in stats.engines:
            print(f"    engine {engine.name:8s} {engine.class_name:14s} {format_percent(engine.utilization_percent)}")
    elif isinstance(stats, NvidiaGpuStats):
        for proc in stats.processes:
            print(f"    pid {proc.pid:<8d} {proc.type.value:9s} {format_bytes(proc.memory_used_bytes):>10s}  {proc.process_name}")

# 4. Which one would a compact monitor show?
picked = gpusense.select_primary_device(service, devices)
if picked is not None:
    print(f"\nPrimary GPU: {picked[0].name}")

# 5. Shutdown (releases NVML)
gpusense.shutdown()
