"""Shared security utilities for operator API key generation and hashing."""

import base64
import binascii
import secrets

from argon2 import PasswordHasher
from argon2.exceptions import VerifyMismatchError

# Use Argon2id with secure defaults
_ph = PasswordHasher()

API_KEY_PREFIX = "wca_"
API_KEY_BYTES = 32


def generate_api_key() -> str:
    """
    Generate API key in format: wca_<32 random bytes as base64url>.

    Example: wca_x7Kj9mN2pQrStUvWxYz1A2B3C4D5E6F7...
    """
    random_bytes = secrets.token_bytes(API_KEY_BYTES)
    encoded = base64.urlsafe_b64encode(random_bytes).decode("ascii").rstrip("=")
    return f"{API_KEY_PREFIX}{encoded}"


def is_api_key_format(api_key: str) -> bool:
    """Check the prefix and that the body decodes to exactly 32 bytes."""
    if not api_key.startswith(API_KEY_PREFIX):
        return False
    body = api_key[len(API_KEY_PREFIX) :]
    try:
        decoded = base64.urlsafe_b64decode(body + "=" * (-len(body) % 4))
    except (binascii.Error, ValueError):
        return False
    return len(decoded) == API_KEY_BYTES


def hash_api_key(api_key: str) -> str:
    """Hash API key using Argon2id."""
    return _ph.hash(api_key)


def verify_api_key(api_key: str, api_key_hash: str) -> bool:
    """Verify API key against stored Argon2id hash."""
    try:
        _ph.verify(api_key_hash, api_key)
        return True
    except VerifyMismatchError:
        return False
