from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request


def get_client_key(request: Request) -> str:
    """Get client identifier for rate limiting - uses IP address"""
    return get_remote_address(request)


def create_limiter() -> Limiter:
    """One limiter per app; limits and counters are not shared between apps"""
    return Limiter(key_func=get_client_key)
