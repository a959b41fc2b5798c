"""Pid -> executable name resolution for NVIDIA process listings."""

from __future__ import annotations

import logging

import psutil

logger = logging.getLogger("gpusense.process")


def resolve_process_name(pid: int) -> str | None:
    """Executable name of ``pid``, or None if it exited or is not visible to us."""
    try:
        return psutil.Process(pid).name() or None
    except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
        logger.debug("Cannot resolve name for pid %d", pid)
        return None
    except ValueError:
        # negative pid
        return None
