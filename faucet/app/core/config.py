import json
import re
from typing import Annotated, Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


DEFAULT_SUPPORTED_NETWORKS = [
    "ARC-TESTNET",
    "ETH-SEPOLIA",
    "AVAX-FUJI",
    "MATIC-AMOY",
    "SOL-DEVNET",
    "ARB-SEPOLIA",
    "UNI-SEPOLIA",
    "BASE-SEPOLIA",
    "OP-SEPOLIA",
    "APTOS-TESTNET",
]


def _parse_list(raw: Any) -> list[str]:
    """Parse a list setting from JSON or a comma/whitespace separated string.

    Order is preserved and blank items are dropped. Credential pools rely on
    the order, so duplicates are kept as-is.
    """
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        items = [str(v).strip() for v in raw]
        return [v for v in items if v]

    raw = str(raw).strip()
    if not raw or raw == "[]":
        return []

    if raw.startswith("["):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            items = [str(v).strip() for v in parsed]
            return [v for v in items if v]

    return [p for p in re.split(r"[,\s]+", raw) if p]


def _parse_cors_origins(raw: Any) -> list[str]:
    origins = _parse_list(raw)
    if "*" in origins:
        return ["*"]

    result: list[str] = []
    for part in origins:
        if "://" in part:
            candidates = [part]
        else:
            # Browsers include the scheme in the Origin header.
            candidates = [f"http://{part}", f"https://{part}"]
        for origin in candidates:
            if origin not in result:
                result.append(origin)
    return result


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Debug mode - enables detailed error responses
    debug: bool = False

    # Maintenance switch: claims are refused with 503 after the infra check
    faucet_disabled: bool = False

    # Upstream provider (Circle faucet API)
    circle_api_keys: Annotated[list[str], NoDecode] = []
    circle_base_url: str = "https://api.circle.com"
    circle_drip_path: str = "/v1/faucet/drips"
    upstream_timeout_seconds: float = 10.0
    upstream_quota_status_codes: Annotated[list[int], NoDecode] = [429]
    upstream_quota_error_codes: Annotated[list[str], NoDecode] = []

    # HTTP client connection pool settings
    httpx_max_connections: int = 100
    httpx_max_keepalive_connections: int = 20
    httpx_keepalive_expiry: float = 30.0

    # Claim authentication
    default_password_hash: str = ""
    revoked_api_key_hashes: Annotated[list[str], NoDecode] = []
    byo_key_prefixes: Annotated[list[str], NoDecode] = ["TEST_API_KEY"]
    supported_networks: Annotated[list[str], NoDecode] = list(
        DEFAULT_SUPPORTED_NETWORKS
    )

    # Infrastructure limiter (every request, keyed by client IP)
    infra_limit_requests: int = 100
    infra_limit_window_seconds: int = 3600

    # Shared-mode quota limiter
    wallet_limit_claims: int = 1
    wallet_limit_window_seconds: int = 86400
    shared_ip_limit_claims: int | None = None  # None disables the per-IP quota
    shared_ip_limit_window_seconds: int = 86400
    rate_limit_fail_closed: bool = (
        False  # If True, deny requests when the store is unavailable
    )

    # State store (Redis when enabled, in-process otherwise)
    redis_enabled: bool = False
    redis_url: str = "redis://localhost:6379/0"
    store_key_prefix: str = "faucet"
    audit_stream_maxlen: int = 1000

    # Administrative endpoints (reset, audit); empty token disables them
    admin_token: str = ""

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # CORS settings
    cors_origins: Annotated[list[str], NoDecode] = ["*"]

    @field_validator(
        "circle_api_keys",
        "upstream_quota_error_codes",
        "byo_key_prefixes",
        mode="before",
    )
    @classmethod
    def decode_str_list(cls, v: Any) -> list[str]:
        return _parse_list(v)

    @field_validator("revoked_api_key_hashes", mode="before")
    @classmethod
    def decode_hash_list(cls, v: Any) -> list[str]:
        return [h.lower() for h in _parse_list(v)]

    @field_validator("supported_networks", mode="before")
    @classmethod
    def decode_networks(cls, v: Any) -> list[str]:
        return [n.upper() for n in _parse_list(v)]

    @field_validator("upstream_quota_status_codes", mode="before")
    @classmethod
    def decode_status_codes(cls, v: Any) -> list[int]:
        return [int(code) for code in _parse_list(v)]

    @field_validator("cors_origins", mode="before")
    @classmethod
    def decode_cors_origins(cls, v: Any) -> list[str]:
        return _parse_cors_origins(v)

    @field_validator("default_password_hash")
    @classmethod
    def normalize_password_hash(cls, v: str) -> str:
        return v.strip()

    @field_validator("upstream_timeout_seconds")
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate the upstream timeout is positive."""
        if v <= 0:
            raise ValueError("upstream_timeout_seconds must be positive")
        return v

    @field_validator(
        "infra_limit_window_seconds",
        "wallet_limit_window_seconds",
        "shared_ip_limit_window_seconds",
    )
    @classmethod
    def validate_window_positive(cls, v: int) -> int:
        """Validate rate limit windows are positive."""
        if v < 1:
            raise ValueError("Rate limit windows must be at least 1 second")
        return v

    @field_validator("infra_limit_requests", "wallet_limit_claims")
    @classmethod
    def validate_limit_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Rate limit values must not be negative")
        return v

    @field_validator("shared_ip_limit_claims")
    @classmethod
    def validate_optional_limit(cls, v: int | None) -> int | None:
        if v is not None and v < 0:
            raise ValueError("shared_ip_limit_claims must not be negative")
        return v

    @field_validator("audit_stream_maxlen")
    @classmethod
    def validate_stream_length(cls, v: int) -> int:
        if v < 1:
            raise ValueError("audit_stream_maxlen must be at least 1")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
