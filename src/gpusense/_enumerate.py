"""Device enumeration over the DRM display class."""

from __future__ import annotations

import logging
import os
import re

from gpusense._pci import PciNameLookup
from gpusense._sysfs import read_first_line, read_uevent
from gpusense._types import GpuDevice, GpuVendor

logger = logging.getLogger("gpusense.enumerate")

_CARD_RE = re.compile(r"^card(\d+)$")

_VENDOR_IDS: dict[str, GpuVendor] = {
    "0x10de": GpuVendor.NVIDIA,
    "0x1002": GpuVendor.AMD,
    "0x1022": GpuVendor.AMD,
    "0x8086": GpuVendor.INTEL,
}

_FALLBACK_NAMES: dict[GpuVendor, str] = {
    GpuVendor.NVIDIA: "NVIDIA GPU",
    GpuVendor.AMD: "AMD GPU",
    GpuVendor.INTEL: "Intel GPU",
}


def detect_vendor(device_path: str) -> GpuVendor:
    """Classify by the PCI vendor id in ``<device_path>/vendor``."""
    vendor_id = read_first_line(os.path.join(device_path, "vendor"))
    if vendor_id is None:
        return GpuVendor.UNKNOWN
    return _VENDOR_IDS.get(vendor_id.lower(), GpuVendor.UNKNOWN)


def detect_pci_bus_id(device_path: str) -> str:
    """``PCI_SLOT_NAME`` from uevent, e.g. ``0000:01:00.0``; empty if absent."""
    return read_uevent(device_path).get("PCI_SLOT_NAME", "")


def detect_name(
    device_path: str,
    vendor: GpuVendor,
    *,
    pci_bus_id: str = "",
    name_lookup: PciNameLookup | None = None,
) -> str:
    """Best-effort display name.

    Tries ``product_name``, then the PCI database lookup, then the uevent
    driver/PCI id pair, then a vendor-keyed fallback.
    """
    product = read_first_line(os.path.join(device_path, "product_name"))
    if product:
        return product

    if name_lookup is not None and pci_bus_id:
        looked_up = name_lookup(pci_bus_id)
        if looked_up:
            return looked_up

    uevent = read_uevent(device_path)
    driver = uevent.get("DRIVER", "")
    if driver:
        pci_id = uevent.get("PCI_ID", "")
        return f"{driver} ({pci_id})" if pci_id else driver

    return _FALLBACK_NAMES.get(vendor, "GPU")


def _card_entries(drm_root: str) -> list[tuple[int, str]]:
    try:
        names = os.listdir(drm_root)
    except OSError:
        logger.debug("DRM root %s not readable", drm_root)
        return []
    cards = []
    for name in names:
        match = _CARD_RE.match(name)
        if match:
            cards.append((int(match.group(1)), name))
    cards.sort()
    return cards


def enumerate_devices(
    drm_root: str = "/sys/class/drm",
    *,
    name_lookup: PciNameLookup | None = None,
) -> list[GpuDevice]:
    """Walk ``drm_root`` and return every card with a known GPU vendor.

    Connector entries (``card0-HDMI-A-1``) and cards of unknown vendors are
    skipped. One malformed card never fails the whole pass.
    """
    devices: list[GpuDevice] = []
    for _, card in _card_entries(drm_root):
        card_path = os.path.join(drm_root, card)
        device_path = os.path.join(card_path, "device")
        if not os.path.isdir(device_path):
            continue
        try:
            vendor = detect_vendor(device_path)
            if vendor is GpuVendor.UNKNOWN:
                logger.debug("Skipping %s: unknown vendor", card)
                continue
            pci_bus_id = detect_pci_bus_id(device_path)
            name = detect_name(
                device_path, vendor, pci_bus_id=pci_bus_id, name_lookup=name_lookup,
            )
        except Exception:  # noqa: BLE001
            logger.warning("Failed to probe %s, skipping", card_path, exc_info=True)
            continue
        devices.append(GpuDevice(
            card_path=card_path,
            device_path=device_path,
            pci_bus_id=pci_bus_id,
            name=name,
            vendor=vendor,
        ))
        logger.debug("Found %s GPU %s at %s", vendor.value, name, pci_bus_id or card_path)
    return devices
