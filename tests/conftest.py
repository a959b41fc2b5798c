"""Shared fixtures: fake DRM sysfs trees built under tmp_path."""

from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path

import pytest

from gpusense._types import GpuDevice, GpuVendor

VENDOR_IDS = {
    GpuVendor.NVIDIA: "0x10de",
    GpuVendor.AMD: "0x1002",
    GpuVendor.INTEL: "0x8086",
}


def write_tree(base: Path, files: dict[str, str]) -> None:
    """Write ``{relative path: content}`` below ``base``; a trailing ``/`` makes a directory."""
    for rel, content in files.items():
        path = base / rel
        if rel.endswith("/"):
            path.mkdir(parents=True, exist_ok=True)
            continue
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)


class FakeDrm:
    """A ``/sys/class/drm`` lookalike with ``cardN/device`` attribute trees."""

    def __init__(self, root: Path) -> None:
        self.root = root
        root.mkdir(parents=True, exist_ok=True)

    def add_card(
        self,
        index: int,
        vendor: GpuVendor,
        files: dict[str, str] | None = None,
        *,
        pci_slot: str = "",
        card_files: dict[str, str] | None = None,
    ) -> GpuDevice:
        card = self.root / f"card{index}"
        device = card / "device"
        device.mkdir(parents=True, exist_ok=True)
        (device / "vendor").write_text(VENDOR_IDS.get(vendor, "0x1234") + "\n")
        if pci_slot:
            (device / "uevent").write_text(f"PCI_SLOT_NAME={pci_slot}\n")
        write_tree(device, files or {})
        write_tree(card, card_files or {})
        return GpuDevice(
            card_path=os.fspath(card),
            device_path=os.fspath(device),
            pci_bus_id=pci_slot,
            name=f"card{index}",
            vendor=vendor,
        )


@pytest.fixture
def drm(tmp_path: Path) -> FakeDrm:
    return FakeDrm(tmp_path / "drm")


@pytest.fixture
def no_lookup() -> Callable[[str], str | None]:
    return lambda bus_id: None
