"""API routes package.

- webhooks: Paystack webhook deliveries

All routers are registered in main.py.
"""

from fulfillment_api.routes.webhooks import router as webhooks_router

__all__ = ["webhooks_router"]
