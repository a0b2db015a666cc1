"""Billing platform provider (Stripe, no-op)."""

from packages.subscriptions.providers.billing.interface import (
    BillingProviderInterface,
)
from packages.subscriptions.providers.billing.factory import get_billing_provider

__all__ = [
    "BillingProviderInterface",
    "get_billing_provider",
]
