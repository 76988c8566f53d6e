"""
API v1 package initialization.
"""

from marketplace.api.v1.auth import router as auth_router
from marketplace.api.v1.orders import router as orders_router
from marketplace.api.v1.payments import router as payments_router
from marketplace.api.v1.sites import router as sites_router

__all__ = ["auth_router", "orders_router", "payments_router", "sites_router"]
