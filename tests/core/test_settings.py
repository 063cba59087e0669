"""Tests for fanmap.core.settings module.

Covers:
- FanmapSettings defaults
- FANMAP_* environment overrides
- Field validation
- get_settings() caching
"""

import pytest
from pydantic import ValidationError

from fanmap.core.capabilities import available_parallelism
from fanmap.core.enums import Backend, CancelPolicy
from fanmap.core.settings import FanmapSettings, clear_settings_cache, get_settings


class TestFanmapSettingsDefaults:
    def test_default_backend_is_isolated(self):
        assert FanmapSettings().default_backend is Backend.ISOLATED

    def test_no_default_worker_count(self):
        assert FanmapSettings().worker_count is None

    def test_no_default_timeout_or_retries(self):
        s = FanmapSettings()
        assert s.per_item_timeout is None
        assert s.retry_count == 0
        assert s.retry_delay == 0.0
        assert s.retry_backoff == 1.0
        assert s.retry_jitter is False

    def test_default_cancel_policy(self):
        assert FanmapSettings().cancel_policy is CancelPolicy.COOPERATIVE

    def test_default_oversubscription_factor(self):
        assert FanmapSettings().oversubscription_warn_factor == 4.0

    def test_resolved_worker_count_falls_back_to_parallelism(self):
        assert FanmapSettings().resolved_worker_count() == available_parallelism()


class TestFanmapSettingsEnvOverride:
    def test_backend_from_env(self, monkeypatch):
        monkeypatch.setenv("FANMAP_DEFAULT_BACKEND", "fork")
        assert FanmapSettings().default_backend is Backend.FORK

    def test_worker_count_from_env(self, monkeypatch):
        monkeypatch.setenv("FANMAP_WORKER_COUNT", "3")
        s = FanmapSettings()
        assert s.worker_count == 3
        assert s.resolved_worker_count() == 3

    def test_timeout_from_env(self, monkeypatch):
        monkeypatch.setenv("FANMAP_PER_ITEM_TIMEOUT", "2.5")
        assert FanmapSettings().per_item_timeout == 2.5

    def test_log_format_is_normalised(self, monkeypatch):
        monkeypatch.setenv("FANMAP_LOG_FORMAT", "JSON")
        assert FanmapSettings().log_format == "json"


class TestFanmapSettingsValidation:
    def test_zero_workers_rejected(self):
        with pytest.raises(ValidationError):
            FanmapSettings(worker_count=0)

    def test_non_positive_timeout_rejected(self):
        with pytest.raises(ValidationError):
            FanmapSettings(per_item_timeout=0)

    def test_negative_retries_rejected(self):
        with pytest.raises(ValidationError):
            FanmapSettings(retry_count=-1)

    def test_backoff_below_one_rejected(self):
        with pytest.raises(ValidationError):
            FanmapSettings(retry_backoff=0.9)

    def test_unknown_log_format_rejected(self):
        with pytest.raises(ValidationError):
            FanmapSettings(log_format="xml")

    def test_unknown_backend_rejected(self):
        with pytest.raises(ValidationError):
            FanmapSettings(default_backend="threads")


class TestGetSettings:
    def test_cached(self):
        assert get_settings() is get_settings()

    def test_force_reload_reads_environment_again(self, monkeypatch):
        first = get_settings()
        monkeypatch.setenv("FANMAP_RETRY_COUNT", "2")
        assert get_settings() is first
        reloaded = get_settings(_force_reload=True)
        assert reloaded is not first
        assert reloaded.retry_count == 2

    def test_clear_cache(self):
        first = get_settings()
        clear_settings_cache()
        assert get_settings() is not first
