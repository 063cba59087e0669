"""Pool configuration.

``PoolConfig`` is the single options object every run takes.  Unset fields
fall back to :class:`~fanmap.core.settings.FanmapSettings` via
``PoolConfig.from_settings()``.

Example::

    config = PoolConfig(backend="fork", worker_count=4, per_item_timeout=2.0)
    config = PoolConfig.from_settings(backend=Backend.ISOLATED,
                                      exported_bindings={"SCALE": 3})
"""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from fanmap.core.enums import Backend, CancelPolicy
from fanmap.core.errors import InvalidConfigError
from fanmap.core.settings import get_settings

from .progress import ProgressCallback, ProgressReporter


@dataclass(frozen=True)
class PoolConfig:
    """Options for one run.

    Attributes:
        backend: Worker acquisition strategy
        worker_count: Pool size (>= 1); None resolves from settings, then
            available parallelism.  Values above the core count are allowed.
        exported_bindings: Names shipped to ISOLATED workers before dispatch;
            ignored by FORK and SEQUENTIAL, which see caller state directly.
        on_progress: ``callback(index, slot)`` or a ProgressReporter
        per_item_timeout: Seconds an item may run before it is failed
        retry_count: Retries per item for retryable failures (0 = off)
        retry_delay: Seconds before a retried item is dispatched again
        retry_backoff: Multiplier applied to the delay after each retry (1.0 = constant)
        retry_jitter: Spread each retry delay randomly by up to 25%
        cancel_policy: COOPERATIVE drains in-flight items, HARD terminates them
    """

    backend: Backend = Backend.ISOLATED
    worker_count: int | None = None
    exported_bindings: Mapping[str, Any] = field(default_factory=dict)
    on_progress: ProgressReporter | ProgressCallback | None = None
    per_item_timeout: float | None = None
    retry_count: int = 0
    retry_delay: float = 0.0
    retry_backoff: float = 1.0
    retry_jitter: bool = False
    cancel_policy: CancelPolicy = CancelPolicy.COOPERATIVE

    def __post_init__(self) -> None:
        try:
            object.__setattr__(self, "backend", Backend(self.backend))
        except ValueError:
            raise InvalidConfigError("backend", self.backend) from None
        try:
            object.__setattr__(self, "cancel_policy", CancelPolicy(self.cancel_policy))
        except ValueError:
            raise InvalidConfigError("cancel_policy", self.cancel_policy) from None

        if self.worker_count is None:
            object.__setattr__(self, "worker_count", get_settings().resolved_worker_count())
        if not isinstance(self.worker_count, int) or self.worker_count < 1:
            raise InvalidConfigError(
                "worker_count", self.worker_count, "worker_count must be an integer >= 1"
            )
        if self.per_item_timeout is not None and self.per_item_timeout <= 0:
            raise InvalidConfigError(
                "per_item_timeout", self.per_item_timeout, "per_item_timeout must be positive"
            )
        if self.retry_count < 0:
            raise InvalidConfigError("retry_count", self.retry_count, "retry_count must be >= 0")
        if self.retry_delay < 0:
            raise InvalidConfigError("retry_delay", self.retry_delay, "retry_delay must be >= 0")
        if self.retry_backoff < 1.0:
            raise InvalidConfigError(
                "retry_backoff", self.retry_backoff, "retry_backoff must be >= 1.0"
            )
        if self.on_progress is not None and not callable(self.on_progress) and not isinstance(
            self.on_progress, ProgressReporter
        ):
            raise InvalidConfigError("on_progress", self.on_progress, "on_progress must be callable")
        for name in self.exported_bindings:
            if not isinstance(name, str) or not name.isidentifier():
                raise InvalidConfigError(
                    "exported_bindings", name, f"binding name {name!r} is not a valid identifier"
                )
        object.__setattr__(
            self, "exported_bindings", MappingProxyType(dict(self.exported_bindings))
        )

    @classmethod
    def from_settings(cls, **overrides: Any) -> PoolConfig:
        """Build a config from ``FanmapSettings`` defaults plus explicit overrides."""
        settings = get_settings()
        values: dict[str, Any] = {
            "backend": settings.default_backend,
            "worker_count": settings.resolved_worker_count(),
            "per_item_timeout": settings.per_item_timeout,
            "retry_count": settings.retry_count,
            "retry_delay": settings.retry_delay,
            "retry_backoff": settings.retry_backoff,
            "retry_jitter": settings.retry_jitter,
            "cancel_policy": settings.cancel_policy,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def replace(self, **changes: Any) -> PoolConfig:
        """Copy with some fields changed."""
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Loggable summary (binding values and callbacks omitted)."""
        return {
            "backend": self.backend.value,
            "worker_count": self.worker_count,
            "exported_bindings": sorted(self.exported_bindings),
            "progress": self.on_progress is not None,
            "per_item_timeout": self.per_item_timeout,
            "retry_count": self.retry_count,
            "retry_delay": self.retry_delay,
            "retry_backoff": self.retry_backoff,
            "retry_jitter": self.retry_jitter,
            "cancel_policy": self.cancel_policy.value,
        }


__all__ = ["PoolConfig"]
