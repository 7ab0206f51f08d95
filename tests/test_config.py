"""
tests/test_config.py -- Unit tests for the signing-secret policy in Settings.

Covers:
  - Production mode refuses to start without signing secrets
  - Dev mode generates distinct secrets
  - Short or identical secrets are rejected in every mode
  - Non-positive TTLs are rejected
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from core.config import Settings

ACCESS = "a" * 40
REFRESH = "b" * 40


def test_production_requires_secrets(monkeypatch):
    monkeypatch.delenv("ACCESS_TOKEN_SECRET", raising=False)
    monkeypatch.delenv("REFRESH_TOKEN_SECRET", raising=False)
    with pytest.raises(ValidationError, match="ACCESS_TOKEN_SECRET is required"):
        Settings(_env_file=None, debug=False)


def test_debug_generates_distinct_secrets(monkeypatch):
    monkeypatch.delenv("ACCESS_TOKEN_SECRET", raising=False)
    monkeypatch.delenv("REFRESH_TOKEN_SECRET", raising=False)
    settings = Settings(_env_file=None, debug=True)
    assert len(settings.access_token_secret) >= 32
    assert settings.access_token_secret != settings.refresh_token_secret


def test_explicit_secrets_accepted():
    settings = Settings(_env_file=None, debug=False, access_token_secret=ACCESS, refresh_token_secret=REFRESH)
    assert settings.access_token_secret == ACCESS
    assert settings.auth_transport == "header"
    assert settings.access_token_ttl_seconds == 900


def test_short_secret_rejected():
    with pytest.raises(ValidationError, match="at least 32"):
        Settings(_env_file=None, access_token_secret="short", refresh_token_secret=REFRESH)


def test_identical_secrets_rejected():
    with pytest.raises(ValidationError, match="must differ"):
        Settings(_env_file=None, access_token_secret=ACCESS, refresh_token_secret=ACCESS)


def test_non_positive_ttl_rejected():
    with pytest.raises(ValidationError, match="positive"):
        Settings(
            _env_file=None,
            access_token_secret=ACCESS,
            refresh_token_secret=REFRESH,
            access_token_ttl_seconds=0,
        )


@pytest.mark.parametrize("field", ["activation_token_ttl_seconds", "reset_token_ttl_seconds"])
@pytest.mark.parametrize("ttl", [0, -1])
def test_non_positive_secret_ttl_rejected(field, ttl):
    with pytest.raises(ValidationError, match="positive"):
        Settings(_env_file=None, access_token_secret=ACCESS, refresh_token_secret=REFRESH, **{field: ttl})


def test_unknown_transport_rejected():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, access_token_secret=ACCESS, refresh_token_secret=REFRESH, auth_transport="query")
