"""
Pricing and proration arithmetic.

Pure computation, no I/O. Money is Decimal throughout and outputs are rounded
half-up to cents.
"""

import math
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from common.core.config import settings
from common.core.exceptions import ValidationError
from common.core.otel_axiom_exporter import trace_span, get_logger
from packages.subscriptions.models.domain.enums import BillingCycle
from packages.subscriptions.models.domain.pricing import (
    PricingRules,
    PricingResult,
    ProrationResult,
    BillingInterval,
)
from packages.subscriptions.models.domain.subscription import Subscription
from packages.subscriptions.models.domain.timestamps import as_naive_utc, utcnow

logger = get_logger(__name__)

CENT = Decimal("0.01")
HUNDRED = Decimal("100")
ZERO = Decimal("0")
SECONDS_PER_DAY = 86400


def to_cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def as_decimal(value) -> Decimal:
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def _pct(value: Decimal) -> str:
    return f"{value.normalize():f}"


def billing_interval(cycle: BillingCycle) -> BillingInterval:
    """Map a billing cycle onto the billing platform's recurring interval."""
    intervals = {
        BillingCycle.DAILY: BillingInterval(interval="day"),
        BillingCycle.WEEKLY: BillingInterval(interval="week"),
        BillingCycle.MONTHLY: BillingInterval(interval="month"),
        BillingCycle.QUARTERLY: BillingInterval(interval="month", interval_count=3),
        BillingCycle.SEMI_ANNUALLY: BillingInterval(
            interval="month", interval_count=6
        ),
        BillingCycle.ANNUALLY: BillingInterval(interval="year"),
        BillingCycle.CUSTOM: BillingInterval(interval="month"),
    }
    return intervals[cycle]


def billing_cycle_for(interval: str, interval_count: int = 1) -> BillingCycle:
    """Billing cycle for a platform interval. Anything unmatched is CUSTOM."""
    wanted = BillingInterval(interval=interval, interval_count=interval_count)
    for cycle in BillingCycle:
        if cycle != BillingCycle.CUSTOM and billing_interval(cycle) == wanted:
            return cycle
    return BillingCycle.CUSTOM


class PricingService:
    """
    Discount stack and proration.

    The discount rules compound: each one is computed on the amount left by
    the rule before it, not on the starting base.
    """

    @trace_span
    def apply_pricing_rules(
        self,
        base_amount: Decimal,
        billing_cycle: BillingCycle,
        quantity: int = 1,
        custom_rules: Optional[PricingRules] = None,
    ) -> PricingResult:
        """
        Apply the ordered discount stack to base_amount x quantity.

        1. Annual cycle discount (default 20%)
        2. Volume discount, 2% per unit capped at 30%, from 10 units
        3. Enterprise discount of 15% once the running amount reaches 1000
        4. Minimum commitment floor (default 5.00)
        5. Maximum total discount cap (default 50% of base x quantity)

        Raises:
            ValidationError: negative amount or quantity below 1
        """
        base_amount = as_decimal(base_amount)
        if base_amount < ZERO:
            raise ValidationError("Amount must not be negative")
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1")

        rules = custom_rules or PricingRules()
        annual_percent = (
            rules.discount_percent
            if rules.discount_percent is not None
            else settings.pricing_annual_discount_percent
        )
        minimum_price = (
            rules.minimum_commitment
            if rules.minimum_commitment is not None
            else settings.pricing_minimum_commitment
        )
        max_discount = (
            rules.maximum_discount
            if rules.maximum_discount is not None
            else settings.pricing_maximum_discount_percent
        )

        gross = base_amount * quantity
        amount = gross
        discount = ZERO
        rules_applied: list[str] = []

        if billing_cycle == BillingCycle.ANNUALLY:
            step = amount * annual_percent / HUNDRED
            amount -= step
            discount += step
            rules_applied.append(f"Annual billing discount: {_pct(annual_percent)}%")

        if quantity >= settings.pricing_volume_threshold:
            volume_percent = min(
                quantity * settings.pricing_volume_discount_per_unit_percent,
                settings.pricing_volume_discount_max_percent,
            )
            step = amount * volume_percent / HUNDRED
            amount -= step
            discount += step
            rules_applied.append(
                f"Volume discount: {_pct(volume_percent)}% for {quantity} units"
            )

        if amount >= settings.pricing_enterprise_threshold:
            enterprise_percent = settings.pricing_enterprise_discount_percent
            step = amount * enterprise_percent / HUNDRED
            amount -= step
            discount += step
            rules_applied.append(f"Enterprise discount: {_pct(enterprise_percent)}%")

        if amount < minimum_price:
            amount = minimum_price
            rules_applied.append(f"Minimum price enforcement: ${minimum_price}")

        if gross > ZERO:
            discount_percent = discount / gross * HUNDRED
            if discount_percent > max_discount:
                excess = (discount_percent - max_discount) / HUNDRED * gross
                amount += excess
                discount -= excess
                rules_applied.append(f"Maximum discount cap: {_pct(max_discount)}%")

        result = PricingResult(
            final_amount=to_cents(amount),
            discount_applied=to_cents(discount),
            rules_applied=rules_applied,
        )

        logger.info(
            f"Pricing rules applied: {to_cents(gross)} -> {result.final_amount} "
            f"({result.discount_applied} discount)",
            extra={"rules_applied": rules_applied, "quantity": quantity},
        )

        return result

    @trace_span
    def calculate_proration(
        self,
        subscription: Subscription,
        new_amount: Decimal,
        effective_date: Optional[datetime] = None,
    ) -> ProrationResult:
        """
        Prorated credit/charge for changing the amount mid-period.

        Day counts are rounded up. Advisory only: returns an all-zero result
        when the period is unknown or empty, never raises.
        """
        period_start = subscription.current_period_start
        period_end = subscription.current_period_end
        if period_start is None or period_end is None:
            logger.warning(
                f"Subscription {subscription.id} has no period dates, skipping proration",
                extra={"subscription_id": subscription.id},
            )
            return ProrationResult()

        effective = as_naive_utc(effective_date) or utcnow()

        total_days = math.ceil(
            (period_end - period_start).total_seconds() / SECONDS_PER_DAY
        )
        if total_days <= 0:
            return ProrationResult()

        days_used = math.ceil(
            (effective - period_start).total_seconds() / SECONDS_PER_DAY
        )
        days_used = min(max(days_used, 0), total_days)
        days_remaining = total_days - days_used

        daily_delta = (
            as_decimal(new_amount) / total_days - subscription.amount / total_days
        )
        proration = daily_delta * days_remaining

        result = ProrationResult(
            proration_amount=to_cents(proration),
            credit_amount=to_cents(max(ZERO, -proration)),
            charge_amount=to_cents(max(ZERO, proration)),
            total_days=total_days,
            days_used=days_used,
            days_remaining=days_remaining,
        )

        logger.info(
            f"Proration for subscription {subscription.id}: {result.proration_amount}",
            extra={
                "subscription_id": subscription.id,
                "days_remaining": days_remaining,
                "total_days": total_days,
            },
        )

        return result
