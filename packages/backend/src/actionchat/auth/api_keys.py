"""API key minting and hashing.

Keys look like ``ac_`` + 64 hex chars (32 random bytes). Only the SHA-256
hex digest and a short display prefix are stored; the raw key exists only
in the creation response.
"""

import hashlib
import secrets

KEY_PREFIX = "ac_"
DISPLAY_PREFIX_LEN = 10


def generate_api_key() -> str:
    """Return a fresh raw key. Never persist the return value."""
    return f"{KEY_PREFIX}{secrets.token_bytes(32).hex()}"


def hash_api_key(raw_key: str) -> str:
    """Unsalted SHA-256, so a presented key can be looked up by hash."""
    return hashlib.sha256(raw_key.encode()).hexdigest()


def display_prefix(raw_key: str) -> str:
    """The part of a key that is safe to show again, e.g. ``ac_1a2b3c4...``."""
    return raw_key[:DISPLAY_PREFIX_LEN] + "..."


def looks_like_api_key(value: str) -> bool:
    return value.startswith(KEY_PREFIX)
