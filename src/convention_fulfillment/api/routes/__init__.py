"""API routes."""

from convention_fulfillment.api.routes.admin import router as admin_router
from convention_fulfillment.api.routes.bookings import router as bookings_router
from convention_fulfillment.api.routes.health import router as health_router
from convention_fulfillment.api.routes.qr import router as qr_router
from convention_fulfillment.api.routes.receipts import router as receipts_router
from convention_fulfillment.api.routes.webhooks import router as webhooks_router

__all__ = [
    "admin_router",
    "bookings_router",
    "health_router",
    "qr_router",
    "receipts_router",
    "webhooks_router",
]
