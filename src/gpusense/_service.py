"""Telemetry service and module-level singleton: enumeration, dispatch, lifecycle."""

from __future__ import annotations

import atexit
import logging
from collections.abc import Sequence

from gpusense._config import GpuSenseConfig
from gpusense._enumerate import enumerate_devices as _scan_devices
from gpusense._gpu_amd import AmdBackend
from gpusense._gpu_backend import GPUBackend
from gpusense._gpu_intel import IntelBackend
from gpusense._gpu_nvml import NvmlBackend
from gpusense._pci import LspciLookup, PciNameLookup
from gpusense._types import GpuDevice, GpuStats

logger = logging.getLogger("gpusense.service")

_service_instance: GpuService | None = None


def create_backends(config: GpuSenseConfig) -> list[GPUBackend]:
    """Backends in dispatch order: NVIDIA, AMD, Intel."""
    backends: list[GPUBackend] = []
    try:
        backends.append(NvmlBackend(config))
    except Exception:  # noqa: BLE001
        logger.info("NVIDIA backend unavailable", exc_info=True)
    backends.append(AmdBackend())
    backends.append(IntelBackend())
    return backends


class GpuService:
    """Owns the device list and the vendor backends.

    Devices are enumerated once on first use and memoized, an empty result
    included; ``refresh()`` is the only way to re-enumerate.
    """

    def __init__(
        self,
        config: GpuSenseConfig | None = None,
        *,
        backends: Sequence[GPUBackend] | None = None,
        name_lookup: PciNameLookup | None = None,
    ) -> None:
        self.config = config or GpuSenseConfig.from_env()
        self._backends: list[GPUBackend] = (
            list(backends) if backends is not None else create_backends(self.config)
        )
        if name_lookup is None:
            name_lookup = LspciLookup(
                self.config.pci_lookup_command, self.config.pci_lookup_timeout_s,
            )
        self._name_lookup = name_lookup
        self._devices: list[GpuDevice] | None = None

    @property
    def backends(self) -> list[GPUBackend]:
        return list(self._backends)

    def devices(self) -> list[GpuDevice]:
        if self._devices is None:
            self._devices = _scan_devices(self.config.drm_root, name_lookup=self._name_lookup)
            logger.debug("Enumerated %d GPU(s)", len(self._devices))
        return list(self._devices)

    def refresh(self) -> list[GpuDevice]:
        """Re-enumerate devices and drop every backend's per-device cache."""
        for backend in self._backends:
            backend.invalidate()
        self._devices = None
        return self.devices()

    def backend_for(self, device: GpuDevice) -> GPUBackend | None:
        for backend in self._backends:
            if backend.supports(device):
                return backend
        return None

    def read_stats_for(self, device: GpuDevice) -> tuple[bool, GpuStats]:
        backend = self.backend_for(device)
        if backend is None:
            return False, GpuStats()
        return backend.read_stats(device)

    def read_extended_stats_for(self, device: GpuDevice) -> tuple[bool, GpuStats]:
        backend = self.backend_for(device)
        if backend is None:
            return False, GpuStats()
        return backend.read_extended_stats(device)

    def shutdown(self) -> None:
        for backend in self._backends:
            try:
                backend.shutdown()
            except Exception:  # noqa: BLE001
                logger.warning("Backend %s failed to shut down", backend.vendor, exc_info=True)


def _get_service() -> GpuService:
    """Return the active service, creating it from the environment on first use."""
    global _service_instance  # noqa: PLW0603
    if _service_instance is None:
        _service_instance = GpuService(GpuSenseConfig.from_env())
        atexit.register(shutdown)
    return _service_instance


def init(**overrides: object) -> GpuService:
    """(Re)initialize the shared service.

    Keyword arguments override ``GpuSenseConfig`` fields on top of the
    environment, e.g. ``gpusense.init(disable_nvml=True)``.
    """
    global _service_instance  # noqa: PLW0603

    if _service_instance is not None:
        _service_instance.shutdown()

    _service_instance = GpuService(GpuSenseConfig.from_env(**overrides))
    atexit.register(shutdown)
    return _service_instance


def enumerate_devices() -> list[GpuDevice]:
    return _get_service().devices()


def read_stats(device: GpuDevice) -> GpuStats | None:
    """Snapshot of ``device``, or None when nothing could be read."""
    ok, stats = _get_service().read_stats_for(device)
    return stats if ok else None


def read_extended_stats(device: GpuDevice) -> GpuStats | None:
    """Vendor-specific snapshot of ``device``, or None when nothing could be read."""
    ok, stats = _get_service().read_extended_stats_for(device)
    return stats if ok else None


def shutdown() -> None:
    """Release every backend (NVML included)."""
    global _service_instance  # noqa: PLW0603
    if _service_instance is not None:
        _service_instance.shutdown()
        _service_instance = None
