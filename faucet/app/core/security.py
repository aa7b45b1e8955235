"""One-way identifiers and secret verification.

Raw wallet addresses, client IPs and credentials never leave the request
handler: logs, audit events and store keys only ever see digests.
"""

import hashlib
import re
import secrets

from faucet.app.core.config import settings

PBKDF2_PREFIX = "pbkdf2_sha256"
PBKDF2_ITERATIONS = 100000
MAX_API_KEY_LENGTH = 512

_EVM_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def _sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def hash_identifier(value: str, length: int = 16) -> str:
    """Short SHA-256 fingerprint of an identifier for logs and audit events."""
    return _sha256_hex(value)[:length]


def rate_limit_key(scope: str, *parts: str) -> str:
    """Build a namespaced limiter key from the digest of the joined parts.

    Uses 32 hex chars (128 bits) for collision resistance.

    Example:
        >>> rate_limit_key("wallet", "0xabc", "ETH-SEPOLIA")
        'ratelimit:wallet:...'
    """
    return f"ratelimit:{scope}:{_sha256_hex(''.join(parts))[:32]}"


def hash_api_key(raw_key: str) -> str:
    """Full SHA-256 hex digest of a credential, as stored in the revoked set."""
    return _sha256_hex(raw_key)


def is_valid_byo_key(raw_key: object) -> bool:
    """Check the ``PREFIX:id:secret`` shape of a caller-supplied credential."""
    if not isinstance(raw_key, str) or not raw_key:
        return False
    if len(raw_key) > MAX_API_KEY_LENGTH:
        return False
    parts = raw_key.split(":")
    if len(parts) != 3 or not all(parts):
        return False
    return parts[0] in settings.byo_key_prefixes


def is_revoked(raw_key: str, revoked_hashes: list[str] | None = None) -> bool:
    """Compare the credential digest against the configured revoked set."""
    revoked = settings.revoked_api_key_hashes if revoked_hashes is None else revoked_hashes
    digest = hash_api_key(raw_key)
    # Compare every entry so timing does not reveal the position of a match
    matched = False
    for candidate in revoked:
        if secrets.compare_digest(digest, candidate.lower()):
            matched = True
    return matched


def hash_secret(
    raw: str, salt: str | None = None, iterations: int = PBKDF2_ITERATIONS
) -> str:
    """Derive a storable digest of a shared secret using PBKDF2-SHA256.

    Returns:
        ``pbkdf2_sha256$<iterations>$<salt>$<hex digest>``
    """
    if salt is None:
        salt = secrets.token_hex(16)
    hashed = hashlib.pbkdf2_hmac(
        "sha256", raw.encode("utf-8"), salt.encode("utf-8"), iterations
    ).hex()
    return f"{PBKDF2_PREFIX}${iterations}${salt}${hashed}"


def verify_secret(raw: str, expected: str) -> bool:
    """Verify a shared secret against its stored digest in constant time.

    Accepts either the PBKDF2 format produced by ``hash_secret`` or a bare
    SHA-256 hex digest. An empty expected digest never matches.
    """
    if not expected:
        return False

    if expected.startswith(PBKDF2_PREFIX + "$"):
        try:
            _, iterations, salt, _ = expected.split("$", 3)
            computed = hash_secret(raw, salt=salt, iterations=int(iterations))
        except ValueError:
            return False
        return secrets.compare_digest(computed, expected)

    return secrets.compare_digest(_sha256_hex(raw), expected.lower())


def normalize_address(address: str) -> str:
    """Canonical form of a wallet address for quota keys.

    EVM addresses are case-insensitive (EIP-55 checksums only change case),
    so they are lower-cased; other address families are case-sensitive.
    """
    address = address.strip()
    if _EVM_ADDRESS_RE.match(address):
        return address.lower()
    return address


def generate_password_hash() -> str:
    """Print-friendly helper for operators.

    Run: python -c "from faucet.app.core.security import generate_password_hash; print(generate_password_hash())"
    """
    import getpass

    return hash_secret(getpass.getpass("Faucet password: "))
