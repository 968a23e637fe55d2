"""API key hashing."""

import hashlib

API_KEY_PREFIX = "cb_live_"


def hash_api_key(api_key: str) -> str:
    """Hash an API key for storage/lookup."""
    return hashlib.sha256(api_key.encode()).hexdigest()
