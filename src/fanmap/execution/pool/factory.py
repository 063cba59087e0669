"""Pool acquisition - backend selection, capability checks and sizing.

``acquire()`` is the only place a ``PoolConfig`` turns into workers.  It never
downgrades silently: asking for FORK where the platform cannot fork raises
``UnsupportedBackendError`` before anything starts, and callers that want a
fallback ask for it with ``fallback_config()``.

Example::

    config = PoolConfig(backend=Backend.FORK, worker_count=4)
    try:
        pool = acquire(config)
    except UnsupportedBackendError:
        pool = acquire(fallback_config(config))
"""

from __future__ import annotations

from fanmap.core import capabilities
from fanmap.core.enums import Backend
from fanmap.core.errors import UnsupportedBackendError
from fanmap.core.logging import get_logger
from fanmap.core.settings import get_settings

from ..config import PoolConfig
from .base import WorkerPool
from .fork import ForkPool
from .isolated import IsolatedPool
from .sequential import SequentialPool

logger = get_logger(__name__)


def ensure_backend_supported(config: PoolConfig) -> None:
    """Raise ``UnsupportedBackendError`` if this host cannot honor ``config.backend``."""
    if config.backend is Backend.FORK and not capabilities.fork_supported():
        raise UnsupportedBackendError(
            config.backend.value,
            "The fork backend needs address-space duplication, which this platform "
            "does not provide; use fallback_config() or the isolated backend",
        )


def check_oversubscription(worker_count: int, factor: float | None = None) -> bool:
    """Warn when ``worker_count`` is far above available parallelism.

    Oversubscription is allowed; it only costs throughput.

    Returns:
        True if the warning was emitted
    """
    if factor is None:
        factor = get_settings().oversubscription_warn_factor
    cores = capabilities.available_parallelism()
    if worker_count > factor * cores:
        logger.warning(
            "pool.oversubscribed",
            worker_count=worker_count,
            available_parallelism=cores,
            warn_factor=factor,
        )
        return True
    return False


def fallback_config(config: PoolConfig) -> PoolConfig:
    """The caller-chosen downgrade for hosts that cannot fork.

    Returns a single-worker SEQUENTIAL config when FORK is requested but
    unsupported, otherwise ``config`` unchanged.
    """
    if config.backend is Backend.FORK and not capabilities.fork_supported():
        logger.info("pool.fallback_sequential", requested_workers=config.worker_count)
        return config.replace(backend=Backend.SEQUENTIAL, worker_count=1)
    return config


def acquire(config: PoolConfig) -> WorkerPool:
    """Create (and, for ISOLATED, start) the pool ``config`` describes.

    ISOLATED workers are spawned here and receive ``exported_bindings``
    before this returns.  FORK workers are forked later by ``prepare``.

    Raises:
        UnsupportedBackendError: FORK requested on a platform without fork
        BindingExportError: An exported binding could not be pickled
    """
    ensure_backend_supported(config)
    check_oversubscription(config.worker_count)  # type: ignore[arg-type]

    grace = get_settings().shutdown_grace_seconds
    workers: int = config.worker_count  # type: ignore[assignment]
    pool: WorkerPool

    if config.backend is Backend.FORK:
        pool = ForkPool(workers, shutdown_grace=grace)
        pool.start()
        if config.exported_bindings:
            logger.debug(
                "pool.exports_ignored",
                backend=config.backend.value,
                names=sorted(config.exported_bindings),
            )
    elif config.backend is Backend.ISOLATED:
        pool = IsolatedPool(workers, shutdown_grace=grace)
        pool.start()
        if config.exported_bindings:
            try:
                pool.submit_export(config.exported_bindings)
            except Exception:
                pool.shutdown()
                raise
    else:
        pool = SequentialPool(workers, shutdown_grace=grace)

    logger.debug("pool.acquired", backend=config.backend.value, workers=pool.worker_count)
    return pool


__all__ = [
    "acquire",
    "check_oversubscription",
    "ensure_backend_supported",
    "fallback_config",
]
