"""
Factory for getting billing provider instance.
"""

from common.core.config import settings
from packages.subscriptions.providers.billing.interface import (
    BillingProviderInterface,
)
from packages.subscriptions.providers.billing.noop_billing import NoOpBillingProvider
from packages.subscriptions.providers.billing.stripe_billing import (
    StripeBillingProvider,
)


def get_billing_provider() -> BillingProviderInterface:
    """
    Get billing provider instance based on configuration.

    Stripe when a secret key is configured, otherwise the no-op provider so
    subscriptions are tracked locally only.

    Returns:
        BillingProviderInterface: Configured billing provider
    """
    if settings.billing_provider_enabled:
        return StripeBillingProvider()
    return NoOpBillingProvider()
