"""Platform capability checks.

``available_parallelism()`` sizes default pools; ``fork_supported()`` gates the
fork backend.  Both are advisory reads of the host and may be wrong under
containers or CPU quotas, so explicit configuration always wins.
"""

from __future__ import annotations

import multiprocessing as mp
import os


def available_parallelism() -> int:
    """Number of CPUs this process may run on (at least 1)."""
    process_cpu_count = getattr(os, "process_cpu_count", None)
    if process_cpu_count is not None:
        count = process_cpu_count()
        if count:
            return count
    if hasattr(os, "sched_getaffinity"):
        try:
            return max(1, len(os.sched_getaffinity(0)))
        except OSError:
            pass
    return os.cpu_count() or 1


def fork_supported() -> bool:
    """True if worker processes can be created by address-space duplication."""
    return "fork" in mp.get_all_start_methods()


__all__ = ["available_parallelism", "fork_supported"]
