"""
Domain models for subscription plans.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field, field_validator

from packages.subscriptions.models.domain.enums import BillingCycle
from packages.subscriptions.models.domain.timestamps import as_naive_utc


class SubscriptionPlan(BaseModel):
    """
    Subscription plan domain model.

    Features and limits are copied onto a subscription when it is created,
    so later plan edits never change existing entitlements.
    """

    id: int
    name: str
    description: Optional[str] = None
    price: Decimal
    currency: str = "USD"
    billing_cycle: BillingCycle

    limits: dict[str, float] = Field(default_factory=dict)  # metric -> cap
    features: dict[str, bool] = Field(default_factory=dict)

    is_active: bool = True
    is_popular: bool = False
    sort_order: int = 0

    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @field_validator("created_at", "updated_at", mode="after")
    @classmethod
    def normalise_timestamps(cls, v):
        return as_naive_utc(v)

    @field_validator("limits", "features", mode="before")
    @classmethod
    def default_empty_maps(cls, v):
        return v or {}

