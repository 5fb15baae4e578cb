"""API Routes Package."""

from api.routes import health, invoice_sync, customer_sync

__all__ = [
    "health",
    "invoice_sync",
    "customer_sync",
]
