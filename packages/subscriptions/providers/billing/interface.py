"""
Interface for billing platform providers.

Abstracts customer, product, price and subscription management on the external
billing platform away from specific vendors (Stripe, Paddle, etc.)
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional

from packages.subscriptions.models.domain.pricing import BillingInterval
from packages.subscriptions.models.domain.webhooks import ExternalSubscriptionData


class BillingProviderInterface(ABC):
    """Abstract interface for billing platform providers."""

    @abstractmethod
    async def create_customer(
        self,
        tenant_id: int,
        user_id: int,
        email: Optional[str] = None,
        name: Optional[str] = None,
    ) -> Optional[str]:
        """
        Create a customer on the billing platform.

        Returns:
            customer_id, or None when the platform keeps no customers
        """
        pass

    @abstractmethod
    async def create_product(
        self,
        name: str,
        description: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> Optional[str]:
        """
        Create a product for a subscription.

        Returns:
            product_id, or None when the platform keeps no products
        """
        pass

    @abstractmethod
    async def create_price(
        self,
        product_id: str,
        amount: Decimal,
        currency: str,
        interval: BillingInterval,
    ) -> Optional[str]:
        """
        Create a recurring price for a product.

        Args:
            product_id: Billing platform product ID
            amount: Amount per interval in major currency units
            currency: ISO currency code
            interval: Recurring interval and count

        Returns:
            price_id, or None when the platform keeps no prices
        """
        pass

    @abstractmethod
    async def create_external_subscription(
        self,
        customer_id: str,
        price_id: str,
        quantity: int = 1,
        trial_days: Optional[int] = None,
        metadata: Optional[dict] = None,
    ) -> ExternalSubscriptionData:
        """
        Create a subscription on the billing platform.

        Returns:
            The created subscription, including its period bounds when known
        """
        pass

    @abstractmethod
    async def update_external_subscription(
        self,
        external_subscription_id: str,
        price_id: Optional[str] = None,
        quantity: Optional[int] = None,
        metadata: Optional[dict] = None,
    ) -> ExternalSubscriptionData:
        """Change price, quantity or metadata of an external subscription."""
        pass

    @abstractmethod
    async def cancel_external_subscription(
        self, external_subscription_id: str, at_period_end: bool = False
    ) -> None:
        """
        Cancel an external subscription.

        Args:
            external_subscription_id: Billing platform subscription ID
            at_period_end: Schedule the cancellation instead of cancelling now
        """
        pass

    @abstractmethod
    async def reactivate_external_subscription(
        self, external_subscription_id: str
    ) -> ExternalSubscriptionData:
        """Undo a scheduled cancellation."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Check if the billing platform is available and healthy.

        Returns:
            True if healthy, False otherwise
        """
        pass
