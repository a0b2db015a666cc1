"""
Stripe implementation of the billing provider.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Optional
import stripe

from common.core.config import settings
from common.core.otel_axiom_exporter import trace_span, get_logger
from packages.subscriptions.models.domain.pricing import BillingInterval
from packages.subscriptions.models.domain.webhooks import (
    ExternalPrice,
    ExternalRecurring,
    ExternalSubscriptionData,
    ExternalSubscriptionItem,
    ExternalSubscriptionItems,
)
from packages.subscriptions.providers.billing.interface import (
    BillingProviderInterface,
)

logger = get_logger(__name__)


def to_minor_units(amount: Decimal) -> int:
    """Major currency units to cents."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _price_data(price) -> Optional[ExternalPrice]:
    if not price:
        return None
    recurring = price.get("recurring")
    return ExternalPrice(
        id=price.get("id"),
        unit_amount=price.get("unit_amount"),
        currency=price.get("currency"),
        recurring=(
            ExternalRecurring(
                interval=recurring.get("interval"),
                interval_count=recurring.get("interval_count") or 1,
            )
            if recurring
            else None
        ),
    )


def _subscription_data(subscription) -> ExternalSubscriptionData:
    """Read the fields we track from a Stripe subscription object."""
    items = (subscription.get("items") or {}).get("data") or []
    return ExternalSubscriptionData(
        id=subscription.get("id"),
        customer=subscription.get("customer"),
        status=subscription.get("status") or "",
        current_period_start=subscription.get("current_period_start"),
        current_period_end=subscription.get("current_period_end"),
        cancel_at_period_end=subscription.get("cancel_at_period_end"),
        canceled_at=subscription.get("canceled_at"),
        trial_start=subscription.get("trial_start"),
        trial_end=subscription.get("trial_end"),
        metadata=dict(subscription.get("metadata") or {}),
        items=ExternalSubscriptionItems(
            data=[
                ExternalSubscriptionItem(
                    id=item.get("id"),
                    quantity=item.get("quantity"),
                    price=_price_data(item.get("price")),
                    current_period_start=item.get("current_period_start"),
                    current_period_end=item.get("current_period_end"),
                )
                for item in items
            ]
        ),
    )


class StripeBillingProvider(BillingProviderInterface):
    """Stripe-based billing implementation."""

    def __init__(self):
        """Initialize Stripe with API credentials."""
        stripe.api_key = settings.stripe_secret_key

    @trace_span
    async def create_customer(
        self,
        tenant_id: int,
        user_id: int,
        email: Optional[str] = None,
        name: Optional[str] = None,
    ) -> Optional[str]:
        """Create a Stripe customer."""
        try:
            customer = stripe.Customer.create(
                email=email,
                name=name,
                metadata={"tenant_id": str(tenant_id), "user_id": str(user_id)},
            )

            logger.info(
                "Created Stripe customer",
                extra={
                    "tenant_id": tenant_id,
                    "user_id": user_id,
                    "customer_id": customer.id,
                },
            )

            return customer.id

        except Exception as e:
            logger.error(
                f"Failed to create Stripe customer: {str(e)}",
                extra={"tenant_id": tenant_id, "user_id": user_id, "error": str(e)},
            )
            raise

    @trace_span
    async def create_product(
        self,
        name: str,
        description: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> Optional[str]:
        """Create a Stripe product."""
        try:
            params = {"name": name, "metadata": metadata or {}}
            if description:
                params["description"] = description
            product = stripe.Product.create(**params)

            logger.info("Created Stripe product", extra={"product_id": product.id})

            return product.id

        except Exception as e:
            logger.error(
                f"Failed to create Stripe product: {str(e)}",
                extra={"product_name": name, "error": str(e)},
            )
            raise

    @trace_span
    async def create_price(
        self,
        product_id: str,
        amount: Decimal,
        currency: str,
        interval: BillingInterval,
    ) -> Optional[str]:
        """Create a recurring Stripe price."""
        try:
            price = stripe.Price.create(
                product=product_id,
                unit_amount=to_minor_units(amount),
                currency=currency.lower(),
                recurring={
                    "interval": interval.interval,
                    "interval_count": interval.interval_count,
                },
            )

            logger.info(
                "Created Stripe price",
                extra={"product_id": product_id, "price_id": price.id},
            )

            return price.id

        except Exception as e:
            logger.error(
                f"Failed to create Stripe price: {str(e)}",
                extra={"product_id": product_id, "error": str(e)},
            )
            raise

    @trace_span
    async def create_external_subscription(
        self,
        customer_id: str,
        price_id: str,
        quantity: int = 1,
        trial_days: Optional[int] = None,
        metadata: Optional[dict] = None,
    ) -> ExternalSubscriptionData:
        """Create a Stripe subscription."""
        try:
            params = {
                "customer": customer_id,
                "items": [{"price": price_id, "quantity": quantity}],
                "metadata": metadata or {},
            }
            if trial_days:
                params["trial_period_days"] = trial_days

            subscription = stripe.Subscription.create(**params)

            logger.info(
                "Created Stripe subscription",
                extra={
                    "customer_id": customer_id,
                    "external_subscription_id": subscription.id,
                },
            )

            return _subscription_data(subscription)

        except Exception as e:
            logger.error(
                f"Failed to create Stripe subscription: {str(e)}",
                extra={"customer_id": customer_id, "error": str(e)},
            )
            raise

    @trace_span
    async def update_external_subscription(
        self,
        external_subscription_id: str,
        price_id: Optional[str] = None,
        quantity: Optional[int] = None,
        metadata: Optional[dict] = None,
    ) -> ExternalSubscriptionData:
        """
        Update an existing Stripe subscription in place.

        Price and quantity changes are prorated by Stripe.
        """
        try:
            params = {}
            if price_id is not None or quantity is not None:
                # Get current subscription to find the item ID
                current = stripe.Subscription.retrieve(external_subscription_id)
                item = {"id": current["items"]["data"][0]["id"]}
                if price_id is not None:
                    item["price"] = price_id
                if quantity is not None:
                    item["quantity"] = quantity
                params["items"] = [item]
                params["proration_behavior"] = "create_prorations"
            if metadata is not None:
                params["metadata"] = metadata

            subscription = stripe.Subscription.modify(external_subscription_id, **params)

            logger.info(
                "Updated Stripe subscription",
                extra={
                    "external_subscription_id": external_subscription_id,
                    "fields": sorted(params),
                },
            )

            return _subscription_data(subscription)

        except Exception as e:
            logger.error(
                f"Failed to update Stripe subscription: {str(e)}",
                extra={
                    "external_subscription_id": external_subscription_id,
                    "error": str(e),
                },
            )
            raise

    @trace_span
    async def cancel_external_subscription(
        self, external_subscription_id: str, at_period_end: bool = False
    ) -> None:
        """Cancel a Stripe subscription now, or schedule it for period end."""
        try:
            if at_period_end:
                stripe.Subscription.modify(
                    external_subscription_id, cancel_at_period_end=True
                )
            else:
                stripe.Subscription.cancel(external_subscription_id)

            logger.info(
                "Cancelled Stripe subscription",
                extra={
                    "external_subscription_id": external_subscription_id,
                    "at_period_end": at_period_end,
                },
            )

        except Exception as e:
            logger.error(
                f"Failed to cancel subscription: {str(e)}",
                extra={
                    "external_subscription_id": external_subscription_id,
                    "error": str(e),
                },
            )
            raise

    @trace_span
    async def reactivate_external_subscription(
        self, external_subscription_id: str
    ) -> ExternalSubscriptionData:
        """Clear a scheduled cancellation on a Stripe subscription."""
        try:
            subscription = stripe.Subscription.modify(
                external_subscription_id, cancel_at_period_end=False
            )

            logger.info(
                "Reactivated Stripe subscription",
                extra={"external_subscription_id": external_subscription_id},
            )

            return _subscription_data(subscription)

        except Exception as e:
            logger.error(
                f"Failed to reactivate subscription: {str(e)}",
                extra={
                    "external_subscription_id": external_subscription_id,
                    "error": str(e),
                },
            )
            raise

    @trace_span
    async def health_check(self) -> bool:
        """Check Stripe health."""
        try:
            # Try to retrieve account to verify API key works
            stripe.Account.retrieve()
            return True
        except Exception as e:
            logger.error(f"Billing health check failed: {e}")
            return False
