"""Billing domain API package."""

from billing.api.routes import billing_router, webhook_router

__all__ = ["billing_router", "webhook_router"]
