"""Rate limiting configuration for API endpoints."""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from src.config import get_settings


def get_rate_limit_key(request: Request) -> str:
    """Get composite key: chatbot_id + IP for chatbot endpoints, IP otherwise."""
    ip = get_remote_address(request)

    # For chatbot endpoints, combine chatbot_id with IP
    path = request.url.path
    if "/chatbots/" in path:
        parts = path.split("/chatbots/")
        if len(parts) > 1:
            chatbot_id = parts[1].split("/")[0]
            return f"chatbot:{chatbot_id}:{ip}"

    return ip


def export_rate_limit() -> str:
    return get_settings().export_rate_limit


def per_minute_limit() -> str:
    return f"{get_settings().rate_limit_per_minute}/minute"


limiter = Limiter(key_func=get_rate_limit_key)
