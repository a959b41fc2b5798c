"""PCI database lookup used to enrich device display names."""

from __future__ import annotations

import logging
import subprocess
from typing import Protocol

logger = logging.getLogger("gpusense.pci")

_VENDOR_PREFIXES: tuple[tuple[str, str], ...] = (
    ("Advanced Micro Devices, Inc. [AMD/ATI] ", "AMD "),
    ("NVIDIA Corporation ", ""),
    ("Intel Corporation ", "Intel "),
)


class PciNameLookup(Protocol):
    """Maps a PCI bus id to a product name, or None when unknown."""

    def __call__(self, pci_bus_id: str) -> str | None: ...


def parse_lspci_output(output: str) -> str | None:
    """Extract the product name from one ``lspci -s`` line.

    ``01:00.0 VGA compatible controller: NVIDIA Corporation TU116 [GeForce GTX 1660 SUPER] (rev a1)``
    becomes ``TU116 [GeForce GTX 1660 SUPER]``.
    """
    line = output.strip().splitlines()[0] if output.strip() else ""
    first = line.find(":")
    if first <= 0:
        return None
    second = line.find(":", first + 1)
    if second <= 0:
        return None
    product = line[second + 1:].strip()
    rev = product.find(" (rev ")
    if rev > 0:
        product = product[:rev]
    for prefix, replacement in _VENDOR_PREFIXES:
        if prefix in product:
            product = product.replace(prefix, replacement)
            break
    product = product.strip()
    return product or None


class LspciLookup:
    """Runs ``lspci -s <bus id>`` with a hard timeout.

    A missing binary, a hang, or unparsable output all return None so the
    enumerator falls through to its next naming strategy.
    """

    def __init__(self, command: str = "lspci", timeout_s: float = 3.0) -> None:
        self._command = command
        self._timeout_s = timeout_s

    def __call__(self, pci_bus_id: str) -> str | None:
        if not pci_bus_id:
            return None
        try:
            result = subprocess.run(
                [self._command, "-s", pci_bus_id],  # noqa: S603
                capture_output=True,
                text=True,
                timeout=self._timeout_s,
                check=False,
            )
        except FileNotFoundError:
            logger.debug("%s not installed, skipping PCI name lookup", self._command)
            return None
        except subprocess.TimeoutExpired:
            logger.debug("%s timed out for %s", self._command, pci_bus_id)
            return None
        except OSError:
            logger.debug("%s failed for %s", self._command, pci_bus_id, exc_info=True)
            return None
        if result.returncode != 0:
            return None
        return parse_lspci_output(result.stdout or "")
