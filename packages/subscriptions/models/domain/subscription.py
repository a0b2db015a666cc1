"""
Domain models for subscriptions.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field, field_validator, model_validator

from packages.subscriptions.models.domain.enums import (
    SubscriptionStatus,
    BillingCycle,
)
from packages.subscriptions.models.domain.pricing import PricingRules
from packages.subscriptions.models.domain.timestamps import as_naive_utc, utcnow

_TIMESTAMP_FIELDS = (
    "start_date",
    "end_date",
    "current_period_start",
    "current_period_end",
    "trial_end_date",
    "cancel_at",
    "canceled_at",
    "suspended_at",
    "deleted_at",
    "created_at",
    "updated_at",
)


def _check_period(start: Optional[datetime], end: Optional[datetime]) -> None:
    if start is not None and end is not None and as_naive_utc(start) >= as_naive_utc(
        end
    ):
        raise ValueError("current_period_start must be before current_period_end")


class Subscription(BaseModel):
    """
    Subscription domain model.

    Represents one user's subscription within a tenant including:
    - Commercial terms (cycle, amount, quantity)
    - Lifecycle status and dates
    - External IDs on the billing platform
    - Feature flags and limits snapshotted from the plan
    """

    id: int
    tenant_id: int
    user_id: int
    plan_id: Optional[int] = None

    name: str
    description: Optional[str] = None

    status: SubscriptionStatus
    billing_cycle: BillingCycle

    # Commercial terms
    amount: Decimal
    currency: str = "USD"
    quantity: int = 1
    unit_price: Optional[Decimal] = None

    # Lifecycle dates
    start_date: datetime
    end_date: Optional[datetime] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None

    is_active: bool = True
    is_trial: bool = False
    trial_days: Optional[int] = None
    trial_end_date: Optional[datetime] = None

    auto_renew: bool = True
    cancel_at_period_end: bool = False
    cancel_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    suspended_at: Optional[datetime] = None
    suspension_reason: Optional[str] = None
    grace_period_days: int = 0
    deleted_at: Optional[datetime] = None

    # External platform IDs
    external_subscription_id: Optional[str] = None
    external_customer_id: Optional[str] = None
    external_price_id: Optional[str] = None
    external_product_id: Optional[str] = None

    # Entitlements snapshotted from the plan at creation
    features: dict[str, bool] = Field(default_factory=dict)
    limits: dict[str, float] = Field(default_factory=dict)

    subscription_metadata: dict = Field(default_factory=dict)
    notes: Optional[str] = None

    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @field_validator(*_TIMESTAMP_FIELDS, mode="after")
    @classmethod
    def normalise_timestamps(cls, v):
        return as_naive_utc(v)

    @field_validator("features", "limits", "subscription_metadata", mode="before")
    @classmethod
    def default_empty_maps(cls, v):
        return v or {}

    def days_until_renewal(self, now: Optional[datetime] = None) -> Optional[int]:
        """Days until the current period ends, None when the period is unknown."""
        if self.current_period_end is None:
            return None
        delta = self.current_period_end - (now or utcnow())
        return max(0, delta.days)

    def age_days(self, now: Optional[datetime] = None) -> int:
        """Whole days since the subscription was created."""
        return ((now or utcnow()) - self.created_at).days


class SubscriptionCreateModel(BaseModel):
    """Request to create a new subscription."""

    tenant_id: int
    user_id: int
    plan_id: Optional[int] = None

    name: str
    description: Optional[str] = None

    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    amount: Decimal  # Per-unit amount before pricing rules
    currency: str = "USD"
    quantity: int = 1
    pricing_rules: Optional[PricingRules] = None

    start_date: datetime = Field(default_factory=utcnow)
    end_date: Optional[datetime] = None

    is_trial: bool = False
    trial_days: Optional[int] = None
    trial_end_date: Optional[datetime] = None

    auto_renew: bool = True
    grace_period_days: int = 0

    # Supplied when the subscription already exists on the billing platform
    external_subscription_id: Optional[str] = None
    external_customer_id: Optional[str] = None
    external_price_id: Optional[str] = None
    external_product_id: Optional[str] = None

    # None means "take from the plan"
    features: Optional[dict[str, bool]] = None
    limits: Optional[dict[str, float]] = None

    subscription_metadata: dict = Field(default_factory=dict)
    notes: Optional[str] = None

    # Used to create the external customer
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None


class SubscriptionInsertModel(BaseModel):
    """Complete row written by the repository when a subscription is created."""

    tenant_id: int
    user_id: int
    plan_id: Optional[int] = None
    name: str
    description: Optional[str] = None
    status: SubscriptionStatus
    billing_cycle: BillingCycle
    amount: Decimal
    currency: str
    quantity: int = 1
    unit_price: Optional[Decimal] = None
    start_date: datetime
    end_date: Optional[datetime] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    is_active: bool = True
    is_trial: bool = False
    trial_days: Optional[int] = None
    trial_end_date: Optional[datetime] = None
    auto_renew: bool = True
    cancel_at_period_end: bool = False
    grace_period_days: int = 0
    external_subscription_id: Optional[str] = None
    external_customer_id: Optional[str] = None
    external_price_id: Optional[str] = None
    external_product_id: Optional[str] = None
    features: dict[str, bool] = Field(default_factory=dict)
    limits: dict[str, float] = Field(default_factory=dict)
    subscription_metadata: dict = Field(default_factory=dict)
    notes: Optional[str] = None

    class Config:
        use_enum_values = True

    @model_validator(mode="after")
    def validate_period(self):
        _check_period(self.current_period_start, self.current_period_end)
        return self


class SubscriptionUpdateModel(BaseModel):
    """
    Patch for an API-driven update.

    Only fields that were explicitly set are applied.
    """

    name: Optional[str] = None
    description: Optional[str] = None
    status: Optional[SubscriptionStatus] = None
    billing_cycle: Optional[BillingCycle] = None

    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    quantity: Optional[int] = None
    unit_price: Optional[Decimal] = None

    end_date: Optional[datetime] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None

    is_trial: Optional[bool] = None
    trial_days: Optional[int] = None
    trial_end_date: Optional[datetime] = None

    auto_renew: Optional[bool] = None
    grace_period_days: Optional[int] = None

    external_price_id: Optional[str] = None

    features: Optional[dict[str, bool]] = None
    limits: Optional[dict[str, float]] = None
    subscription_metadata: Optional[dict] = None
    notes: Optional[str] = None

    class Config:
        use_enum_values = True

    @model_validator(mode="after")
    def validate_period(self):
        _check_period(self.current_period_start, self.current_period_end)
        return self


class SubscriptionLifecycleUpdate(BaseModel):
    """Fields written by cancel/reactivate/suspend/delete and the lazy period fill."""

    status: Optional[SubscriptionStatus] = None
    is_active: Optional[bool] = None
    end_date: Optional[datetime] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: Optional[bool] = None
    cancel_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    suspended_at: Optional[datetime] = None
    suspension_reason: Optional[str] = None
    deleted_at: Optional[datetime] = None

    class Config:
        use_enum_values = True


class SubscriptionExternalUpdate(BaseModel):
    """
    Fields the billing platform is authoritative for.

    Applied through SubscriptionService.apply_external_update, which sets the
    supplied fields without validation or transition checks.
    """

    status: Optional[SubscriptionStatus] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    trial_end_date: Optional[datetime] = None
    is_active: Optional[bool] = None
    is_trial: Optional[bool] = None
    auto_renew: Optional[bool] = None
    cancel_at_period_end: Optional[bool] = None
    canceled_at: Optional[datetime] = None
    subscription_metadata: Optional[dict] = None

    class Config:
        use_enum_values = True
