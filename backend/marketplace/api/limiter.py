"""
Request rate limiting shared by the application and its routers.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from marketplace.core.config import get_settings

limiter = Limiter(key_func=get_remote_address)


def login_rate_limit() -> str:
    return get_settings().login_rate_limit
