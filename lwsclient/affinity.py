"""Pinning the calling thread to a CPU."""

from __future__ import annotations

import logging
import os

_log = logging.getLogger(__name__)


def set_cpu_affinity(cpu_affinity: int) -> int | None:
    """Pin the calling thread to CPU ``cpu_affinity`` modulo the CPU count.

    ``-1`` leaves the thread unpinned. Returns the CPU the thread was pinned
    to, or None if nothing was changed (including on platforms without
    affinity support).
    """
    if cpu_affinity == -1:
        return None
    setter = getattr(os, "sched_setaffinity", None)
    if setter is None:
        return None
    cpu = cpu_affinity % (os.cpu_count() or 1)
    try:
        setter(0, {cpu})
    except OSError as exc:
        _log.warning("Could not pin thread to CPU %d: %s", cpu, exc)
        return None
    return cpu