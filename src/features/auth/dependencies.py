"""FastAPI authentication dependencies."""

import logging
from datetime import datetime

from fastapi import Depends, Header, HTTPException, status

from src.config import get_settings
from src.core.firestore import FirestoreClient, get_firestore_client
from src.utils.dates import ensure_utc, utcnow

from .keys import API_KEY_PREFIX, hash_api_key

logger = logging.getLogger(__name__)


class AuthenticatedCustomer:
    """Authenticated customer context."""

    def __init__(self, customer: dict, api_key: dict):
        self.customer = customer
        self.api_key = api_key
        self.customer_id = customer["id"]
        self.email = customer.get("email")


async def get_current_customer(
    authorization: str = Header(
        ..., description="API Key: Bearer cb_live_xxx"
    ),
    firestore: FirestoreClient = Depends(get_firestore_client),
) -> AuthenticatedCustomer:
    """
    Validate API key and return customer context.

    Every analytics endpoint is scoped to the customer resolved here.
    """
    if not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header format. Use: Bearer <api_key>",
        )

    api_key = authorization[7:]  # Remove "Bearer "

    if not api_key.startswith(API_KEY_PREFIX):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key format",
        )

    key_record = await firestore.get_api_key_by_hash(hash_api_key(api_key))
    if not key_record:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )

    if not key_record.get("is_active", True):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API key is disabled",
        )

    expires_at = key_record.get("expires_at")
    if isinstance(expires_at, datetime) and ensure_utc(expires_at) < utcnow():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API key has expired",
        )

    customer = await firestore.get_customer(key_record["customer_id"])
    if not customer:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Customer not found",
        )

    if customer.get("status") != "active":
        logger.warning("Rejected API key of %s customer %s", customer.get("status"), customer.get("id"))
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Customer account is {customer.get('status', 'inactive')}",
        )

    return AuthenticatedCustomer(customer=customer, api_key=key_record)


async def verify_admin_token(
    x_admin_token: str = Header(..., description="Admin API token"),
) -> bool:
    """Verify the admin access token from the environment."""
    settings = get_settings()

    if not settings.admin_api_token:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Admin authentication not configured",
        )

    if x_admin_token != settings.admin_api_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin token",
        )

    return True
