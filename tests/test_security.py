"""Tests for identifier hashing and secret verification."""

import hashlib

import pytest

from faucet.app.core.security import (
    hash_api_key,
    hash_identifier,
    hash_secret,
    is_revoked,
    is_valid_byo_key,
    normalize_address,
    rate_limit_key,
    verify_secret,
)


class TestHashing:
    def test_hash_identifier_is_short_sha256_prefix(self):
        expected = hashlib.sha256(b"10.0.0.1").hexdigest()[:16]
        assert hash_identifier("10.0.0.1") == expected

    def test_rate_limit_key_is_namespaced_digest(self):
        key = rate_limit_key("wallet", "0xabc", "ETH-SEPOLIA")
        assert key.startswith("ratelimit:wallet:")
        assert len(key.rsplit(":", 1)[1]) == 32
        assert "0xabc" not in key

    def test_rate_limit_key_differs_per_scope(self):
        assert rate_limit_key("ip", "1.1.1.1") != rate_limit_key("infrastructure", "1.1.1.1")


class TestByoKey:
    """Tests for caller-supplied credential checks."""

    @pytest.mark.parametrize(
        "raw",
        ["TEST_API_KEY:abc:def", "TEST_API_KEY:1:2"],
    )
    def test_valid_keys(self, raw):
        assert is_valid_byo_key(raw) is True

    @pytest.mark.parametrize(
        "raw",
        [
            None,
            "",
            "TEST_API_KEY:abc",
            "TEST_API_KEY::def",
            "LIVE_API_KEY:abc:def",
            "TEST_API_KEY:a:b:c",
            "TEST_API_KEY:a:" + "x" * 600,
            12345,
        ],
    )
    def test_invalid_keys(self, raw):
        assert is_valid_byo_key(raw) is False

    def test_revoked_key_matches_digest(self):
        raw = "TEST_API_KEY:leaked:secret"
        revoked = [hashlib.sha256(raw.encode()).hexdigest().upper()]
        assert is_revoked(raw, revoked) is True
        assert is_revoked("TEST_API_KEY:other:secret", revoked) is False
        assert hash_api_key(raw) == revoked[0].lower()


class TestSecrets:
    """Tests for shared-secret verification."""

    def test_pbkdf2_round_trip(self):
        stored = hash_secret("hunter2", salt="fixed", iterations=1000)
        assert stored.startswith("pbkdf2_sha256$1000$fixed$")
        assert verify_secret("hunter2", stored) is True
        assert verify_secret("hunter3", stored) is False

    def test_random_salt_differs(self):
        assert hash_secret("hunter2", iterations=1000) != hash_secret("hunter2", iterations=1000)

    def test_bare_sha256_digest(self):
        digest = hashlib.sha256(b"hunter2").hexdigest()
        assert verify_secret("hunter2", digest) is True
        assert verify_secret("hunter2", digest.upper()) is True
        assert verify_secret("wrong", digest) is False

    def test_empty_expected_never_matches(self):
        assert verify_secret("", "") is False
        assert verify_secret("anything", "") is False

    def test_malformed_pbkdf2_does_not_match(self):
        assert verify_secret("hunter2", "pbkdf2_sha256$notanumber$salt$abc") is False


class TestNormalizeAddress:
    def test_evm_address_is_lowercased(self):
        address = "0xAbCdEf0123456789aBcDeF0123456789AbCdEf01"
        assert normalize_address(f"  {address} ") == address.lower()

    def test_non_evm_address_keeps_case(self):
        address = "7EcDhSYGxXyscszYEp35KHN8vvw3svAuLKTzXwCFLtV"
        assert normalize_address(address) == address
