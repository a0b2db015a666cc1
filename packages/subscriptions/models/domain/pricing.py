"""
Domain models for pricing and proration results.
"""

from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field


class PricingRules(BaseModel):
    """
    Per-call overrides for the pricing rule stack.

    Any field left as None uses the configured default.
    """

    discount_percent: Optional[Decimal] = None  # Annual-cycle discount
    minimum_commitment: Optional[Decimal] = None
    maximum_discount: Optional[Decimal] = None  # Cap, percent of base x quantity


class PricingResult(BaseModel):
    """Outcome of applying the pricing rule stack."""

    final_amount: Decimal
    discount_applied: Decimal
    rules_applied: list[str] = Field(default_factory=list)


class ProrationResult(BaseModel):
    """Prorated credit/charge for a mid-period amount change."""

    proration_amount: Decimal = Decimal("0.00")
    credit_amount: Decimal = Decimal("0.00")
    charge_amount: Decimal = Decimal("0.00")
    total_days: int = 0
    days_used: int = 0
    days_remaining: int = 0


class BillingInterval(BaseModel):
    """Recurring interval in the billing platform's terms."""

    interval: str  # day, week, month, year
    interval_count: int = 1
