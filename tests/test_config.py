"""Tests for settings parsing."""

import pytest
from pydantic import ValidationError

from faucet.app.core.config import DEFAULT_SUPPORTED_NETWORKS, Settings


def test_defaults(monkeypatch) -> None:
    for name in ("CIRCLE_API_KEYS", "SHARED_IP_LIMIT_CLAIMS", "INFRA_LIMIT_REQUESTS"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings(_env_file=None)

    assert settings.circle_api_keys == []
    assert settings.infra_limit_requests == 100
    assert settings.infra_limit_window_seconds == 3600
    assert settings.wallet_limit_claims == 1
    assert settings.wallet_limit_window_seconds == 86400
    assert settings.shared_ip_limit_claims is None
    assert settings.upstream_timeout_seconds == 10.0
    assert settings.supported_networks == DEFAULT_SUPPORTED_NETWORKS


def test_api_keys_keep_order(monkeypatch) -> None:
    monkeypatch.setenv("CIRCLE_API_KEYS", "TEST_API_KEY:b:2, TEST_API_KEY:a:1,,")

    settings = Settings(_env_file=None)

    assert settings.circle_api_keys == ["TEST_API_KEY:b:2", "TEST_API_KEY:a:1"]


def test_revoked_hashes_are_lowercased(monkeypatch) -> None:
    monkeypatch.setenv("REVOKED_API_KEY_HASHES", '["ABCDEF", "123abc"]')

    settings = Settings(_env_file=None)

    assert settings.revoked_api_key_hashes == ["abcdef", "123abc"]


def test_quota_status_codes(monkeypatch) -> None:
    monkeypatch.setenv("UPSTREAM_QUOTA_STATUS_CODES", "429,403")

    settings = Settings(_env_file=None)

    assert settings.upstream_quota_status_codes == [429, 403]


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ('["http://localhost:5173"]', ["http://localhost:5173"]),
        ("*", ["*"]),
        ("faucet.example.com", ["http://faucet.example.com", "https://faucet.example.com"]),
        ("", []),
    ],
)
def test_cors_origins_parsing_variants(monkeypatch, raw: str, expected: list[str]) -> None:
    monkeypatch.setenv("CORS_ORIGINS", raw)

    settings = Settings(_env_file=None)
    assert settings.cors_origins == expected


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("UPSTREAM_TIMEOUT_SECONDS", "0"),
        ("INFRA_LIMIT_WINDOW_SECONDS", "0"),
        ("WALLET_LIMIT_CLAIMS", "-1"),
        ("SHARED_IP_LIMIT_CLAIMS", "-3"),
        ("AUDIT_STREAM_MAXLEN", "0"),
    ],
)
def test_invalid_values_rejected(monkeypatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValidationError):
        Settings(_env_file=None)
