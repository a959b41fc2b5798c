"""Engine configuration."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

DISABLE_NVML_ENV = "GPUSENSE_DISABLE_NVML"
DRM_ROOT_ENV = "GPUSENSE_DRM_ROOT"

DEFAULT_NVML_LIBRARY_PATHS: tuple[str, ...] = (
    "/usr/lib/x86_64-linux-gnu/libnvidia-ml.so.1",
    "/usr/lib64/libnvidia-ml.so.1",
    "/usr/lib/libnvidia-ml.so.1",
    "/usr/local/cuda/lib64/libnvidia-ml.so.1",
)

_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


def _env_flag(environ: Mapping[str, str], name: str) -> bool:
    if name not in environ:
        return False
    return environ[name].strip().lower() not in _FALSE_VALUES


@dataclass(frozen=True)
class GpuSenseConfig:
    """Immutable engine configuration."""

    drm_root: str = "/sys/class/drm"
    disable_nvml: bool = False
    nvml_library_paths: tuple[str, ...] = DEFAULT_NVML_LIBRARY_PATHS
    pci_lookup_command: str = "lspci"
    pci_lookup_timeout_s: float = 3.0
    max_processes: int = 32
    resolve_process_names: bool = True

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides: object) -> GpuSenseConfig:
        """Build a config honouring ``GPUSENSE_DISABLE_NVML`` and ``GPUSENSE_DRM_ROOT``.

        Explicit keyword overrides win over the environment.
        """
        env = os.environ if environ is None else environ
        values: dict[str, object] = {}
        if _env_flag(env, DISABLE_NVML_ENV):
            values["disable_nvml"] = True
        drm_root = env.get(DRM_ROOT_ENV, "").strip()
        if drm_root:
            values["drm_root"] = drm_root
        values.update(overrides)
        return cls(**values)  # type: ignore[arg-type]
