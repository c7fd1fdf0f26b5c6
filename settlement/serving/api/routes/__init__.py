"""
API Routes Module
"""
from .health import router as health_router
from .cart import router as cart_router
from .checkout import router as checkout_router
from .purchases import router as purchases_router
from .fulfillment import router as fulfillment_router

__all__ = [
    "health_router",
    "cart_router",
    "checkout_router",
    "purchases_router",
    "fulfillment_router",
]
