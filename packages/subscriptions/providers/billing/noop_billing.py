"""
No-op billing provider.

Used when no billing platform is configured. Subscriptions are then tracked
locally only and carry no external IDs.
"""

from decimal import Decimal
from typing import Optional

from common.core.exceptions import ExternalIntegrationError
from packages.subscriptions.models.domain.pricing import BillingInterval
from packages.subscriptions.models.domain.webhooks import ExternalSubscriptionData
from packages.subscriptions.providers.billing.interface import (
    BillingProviderInterface,
)


class NoOpBillingProvider(BillingProviderInterface):
    """
    Billing provider that keeps nothing externally.

    Creation calls return None so the subscription workflow proceeds without
    external linkage.
    """

    async def create_customer(
        self,
        tenant_id: int,
        user_id: int,
        email: Optional[str] = None,
        name: Optional[str] = None,
    ) -> Optional[str]:
        """No external customer."""
        return None

    async def create_product(
        self,
        name: str,
        description: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> Optional[str]:
        """No external product."""
        return None

    async def create_price(
        self,
        product_id: str,
        amount: Decimal,
        currency: str,
        interval: BillingInterval,
    ) -> Optional[str]:
        """No external price."""
        return None

    async def create_external_subscription(
        self,
        customer_id: str,
        price_id: str,
        quantity: int = 1,
        trial_days: Optional[int] = None,
        metadata: Optional[dict] = None,
    ) -> ExternalSubscriptionData:
        raise ExternalIntegrationError("No billing platform is configured")

    async def update_external_subscription(
        self,
        external_subscription_id: str,
        price_id: Optional[str] = None,
        quantity: Optional[int] = None,
        metadata: Optional[dict] = None,
    ) -> ExternalSubscriptionData:
        """Nothing to update; echoes the ID back."""
        return ExternalSubscriptionData(
            id=external_subscription_id, status="active", metadata=metadata or {}
        )

    async def cancel_external_subscription(
        self, external_subscription_id: str, at_period_end: bool = False
    ) -> None:
        """No external subscription to cancel."""
        pass

    async def reactivate_external_subscription(
        self, external_subscription_id: str
    ) -> ExternalSubscriptionData:
        """No external subscription to reactivate."""
        return ExternalSubscriptionData(id=external_subscription_id, status="active")

    async def health_check(self) -> bool:
        """Always healthy since there's no external dependency."""
        return True
