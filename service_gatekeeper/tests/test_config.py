"""
Unit tests for gatekeeper settings.
"""

import pytest
from pydantic import ValidationError

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.config import GatekeeperSettings, get_settings


class TestGatekeeperSettings:
    """Test cases for GatekeeperSettings."""

    def test_defaults(self, monkeypatch):
        for name in list(os.environ):
            if name.startswith("GATEKEEPER_"):
                monkeypatch.delenv(name)

        settings = GatekeeperSettings(_env_file=None)

        assert settings.rate_limit == 100
        assert settings.rate_window_seconds == 60
        assert settings.idempotency_ttl_seconds == 86400
        assert settings.redis_max_connections == 100
        assert settings.port == 8080
        assert settings.store_backend == "redis"
        assert settings.strict_idempotency is False
        assert settings.processor_url is None

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("GATEKEEPER_RATE_LIMIT", "5")
        monkeypatch.setenv("GATEKEEPER_STORE_BACKEND", "memory")
        monkeypatch.setenv("GATEKEEPER_STRICT_IDEMPOTENCY", "true")
        monkeypatch.setenv("GATEKEEPER_REDIS_URL", "redis://cache:6379/1")

        settings = get_settings(_env_file=None)

        assert settings.rate_limit == 5
        assert settings.store_backend == "memory"
        assert settings.strict_idempotency is True
        assert settings.redis_url == "redis://cache:6379/1"

    def test_explicit_overrides_win(self, monkeypatch):
        monkeypatch.setenv("GATEKEEPER_RATE_LIMIT", "5")
        assert get_settings(rate_limit=7, _env_file=None).rate_limit == 7

    @pytest.mark.parametrize("field,value", [
        ("rate_limit", 0),
        ("rate_window_seconds", -1),
        ("idempotency_ttl_seconds", 0),
        ("store_backend", "memcached"),
    ])
    def test_invalid_values_rejected(self, field, value):
        with pytest.raises(ValidationError):
            GatekeeperSettings(_env_file=None, **{field: value})

    def test_strict_mode_requires_reservation_longer_than_processor_timeout(self):
        with pytest.raises(ValidationError):
            GatekeeperSettings(
                _env_file=None,
                strict_idempotency=True,
                reservation_ttl_seconds=5,
                processor_timeout=60,
            )

    def test_strict_mode_with_long_reservation(self):
        settings = GatekeeperSettings(
            _env_file=None,
            strict_idempotency=True,
            reservation_ttl_seconds=90,
            processor_timeout=60,
        )
        assert settings.reservation_ttl_seconds == 90

    def test_short_reservation_ignored_outside_strict_mode(self):
        settings = GatekeeperSettings(_env_file=None, reservation_ttl_seconds=5, processor_timeout=60)
        assert settings.strict_idempotency is False
