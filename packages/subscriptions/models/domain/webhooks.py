"""
Domain models for billing platform webhook payloads.

Strongly-typed Pydantic models for the event envelope and the subscription
and invoice objects the reconciler reads. Signature verification happens
before an event reaches these models.
"""

from datetime import datetime, timezone
from typing import Optional, Any
from enum import Enum
from pydantic import BaseModel, Field


class WebhookEventType(str, Enum):
    """
    Webhook event types we handle.

    The billing platform prefixes subscription events with "customer."; both
    spellings resolve to these values via normalise_event_type().
    """

    SUBSCRIPTION_CREATED = "subscription.created"
    SUBSCRIPTION_UPDATED = "subscription.updated"
    SUBSCRIPTION_DELETED = "subscription.deleted"
    SUBSCRIPTION_TRIAL_WILL_END = "subscription.trial_will_end"

    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"
    INVOICE_UPCOMING = "invoice.upcoming"


def normalise_event_type(event_type: str) -> str:
    """Strip the platform's "customer." prefix from subscription events."""
    if event_type.startswith("customer.subscription."):
        return event_type[len("customer.") :]
    return event_type


class ExternalSubscriptionStatus(str, Enum):
    """Subscription status values reported by the billing platform."""

    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"
    PAUSED = "paused"


class WebhookEventData(BaseModel):
    """Event data wrapper."""

    object: dict[str, Any]  # The subscription, invoice, etc.


class WebhookEvent(BaseModel):
    """Complete webhook envelope."""

    id: str
    type: str
    data: WebhookEventData
    created: Optional[int] = None
    livemode: Optional[bool] = None


def from_unix(ts: Optional[int]) -> Optional[datetime]:
    """Unix seconds to naive UTC."""
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).replace(tzinfo=None)


class ExternalRecurring(BaseModel):
    interval: str  # day, week, month, year
    interval_count: int = 1


class ExternalPrice(BaseModel):
    id: Optional[str] = None
    unit_amount: Optional[int] = None  # Minor currency units
    currency: Optional[str] = None
    recurring: Optional[ExternalRecurring] = None


class ExternalSubscriptionItem(BaseModel):
    id: Optional[str] = None
    quantity: Optional[int] = None
    price: Optional[ExternalPrice] = None
    current_period_start: Optional[int] = None
    current_period_end: Optional[int] = None


class ExternalSubscriptionItems(BaseModel):
    data: list[ExternalSubscriptionItem] = Field(default_factory=list)


class ExternalSubscriptionData(BaseModel):
    """
    Subscription object from the billing platform.

    Newer API versions report period bounds per item rather than on the
    subscription; period_start/period_end read whichever is present.
    """

    id: str
    customer: Optional[str] = None
    status: str
    current_period_start: Optional[int] = None
    current_period_end: Optional[int] = None
    cancel_at_period_end: Optional[bool] = None
    canceled_at: Optional[int] = None
    ended_at: Optional[int] = None
    trial_start: Optional[int] = None
    trial_end: Optional[int] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    items: Optional[ExternalSubscriptionItems] = None

    def first_item(self) -> Optional[ExternalSubscriptionItem]:
        if self.items and self.items.data:
            return self.items.data[0]
        return None

    @property
    def period_start(self) -> Optional[datetime]:
        ts = self.current_period_start
        if ts is None and self.first_item():
            ts = self.first_item().current_period_start
        return from_unix(ts)

    @property
    def period_end(self) -> Optional[datetime]:
        ts = self.current_period_end
        if ts is None and self.first_item():
            ts = self.first_item().current_period_end
        return from_unix(ts)


class ExternalInvoiceData(BaseModel):
    """Invoice object from the billing platform."""

    id: str
    customer: Optional[str] = None
    subscription: Optional[str] = None
    parent: Optional[dict[str, Any]] = None
    status: Optional[str] = None
    amount_due: Optional[int] = None
    amount_paid: Optional[int] = None
    currency: Optional[str] = None

    @property
    def subscription_id(self) -> Optional[str]:
        """Subscription reference, top-level or under parent.subscription_details."""
        if self.subscription:
            return self.subscription
        details = (self.parent or {}).get("subscription_details") or {}
        return details.get("subscription")


class WebhookOutcome(str, Enum):
    """What processing an event did to local state."""

    APPLIED = "applied"  # Local subscription changed
    NOOP = "noop"  # Already in the target state, or nothing to change
    SKIPPED = "skipped"  # No matching local subscription
    IGNORED = "ignored"  # Event type has no handler


class WebhookProcessingResult(BaseModel):
    """Result returned to the webhook caller."""

    event_id: str
    event_type: str
    outcome: WebhookOutcome
    subscription_id: Optional[int] = None
    detail: Optional[str] = None
