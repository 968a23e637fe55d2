"""Authentication and authorization module."""

from .keys import API_KEY_PREFIX, hash_api_key
from .dependencies import (
    get_current_customer,
    verify_admin_token,
    AuthenticatedCustomer,
)

__all__ = [
    "API_KEY_PREFIX",
    "hash_api_key",
    "get_current_customer",
    "verify_admin_token",
    "AuthenticatedCustomer",
]
