"""
Centralized settings for fanmap.

``FanmapSettings`` holds the defaults a ``PoolConfig`` falls back to when the
caller does not pass a value explicitly.  Every field can be set through a
``FANMAP_*`` environment variable (e.g. ``FANMAP_WORKER_COUNT=8``) or a
``.env`` file.

Examples:
    >>> from fanmap.core.settings import get_settings
    >>> settings = get_settings()
    >>> settings.resolved_worker_count() >= 1
    True

Tags:
    fanmap, configuration, settings, pydantic, caching

Doc-Types:
    api-reference
"""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .capabilities import available_parallelism
from .enums import Backend, CancelPolicy


class FanmapSettings(BaseSettings):
    """fanmap configuration.

    Fields
    ──────
    default_backend              : Backend used when PoolConfig names none
    worker_count                 : Default pool size (None = available parallelism)
    per_item_timeout             : Default per-item deadline in seconds (None = no deadline)
    retry_count                  : Default retries per item
    retry_delay                  : Seconds to wait before a retry is dispatched
    retry_backoff                : Multiplier applied to the retry delay after each retry
    retry_jitter                 : Randomly spread retry delays by up to 25%
    cancel_policy                : Default cancellation policy
    oversubscription_warn_factor : Warn when workers exceed factor × available parallelism
    shutdown_grace_seconds       : How long shutdown waits for workers before terminating
    log_level / log_format       : Structlog configuration used by the CLI
    """

    model_config = SettingsConfigDict(
        env_prefix="FANMAP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Pool defaults ────────────────────────────────────────────
    default_backend: Backend = Field(default=Backend.ISOLATED)
    worker_count: int | None = Field(default=None, ge=1)
    per_item_timeout: float | None = Field(default=None, gt=0)
    retry_count: int = Field(default=0, ge=0)
    retry_delay: float = Field(default=0.0, ge=0)
    retry_backoff: float = Field(default=1.0, ge=1.0)
    retry_jitter: bool = Field(default=False)
    cancel_policy: CancelPolicy = Field(default=CancelPolicy.COOPERATIVE)

    # ── Sizing ───────────────────────────────────────────────────
    oversubscription_warn_factor: float = Field(
        default=4.0,
        gt=0,
        description="Warn (never reject) when worker_count exceeds this multiple of available parallelism",
    )

    # ── Lifecycle ────────────────────────────────────────────────
    shutdown_grace_seconds: float = Field(default=5.0, ge=0)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console")

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        value = value.lower()
        if value not in ("json", "console"):
            raise ValueError("log_format must be 'json' or 'console'")
        return value

    def resolved_worker_count(self) -> int:
        """Configured worker count, or the platform's available parallelism."""
        return self.worker_count or available_parallelism()


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: dict[str, FanmapSettings] = {}


def get_settings(*, _force_reload: bool = False) -> FanmapSettings:
    """Load, validate, and cache a :class:`FanmapSettings` instance.

    Parameters
    ----------
    _force_reload:
        Bypass cache and re-read the environment.
    """
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]

    settings = FanmapSettings()
    _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    """Drop the cached settings (tests and CLI overrides)."""
    _settings_cache.clear()


__all__ = ["FanmapSettings", "get_settings", "clear_settings_cache"]
