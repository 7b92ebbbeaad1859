"""Shared dependencies for API route modules."""
import time

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from synchub.observability import get_logger
from synchub.services import Services

# Shared limiter instance
limiter = Limiter(key_func=get_remote_address)

# Track startup time for uptime calculation
START_TIME = time.time()


def get_services(request: Request) -> Services:
    """Engine services attached to the app at startup."""
    return request.app.state.services


__all__ = ["limiter", "get_logger", "get_services", "START_TIME"]
