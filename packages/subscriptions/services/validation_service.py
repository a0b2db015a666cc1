"""
Field and consistency checks run before a subscription is mutated.

Each check returns a ValidationResult instead of raising; the caller decides
whether errors are fatal. Warnings never block.
"""

from datetime import timedelta
from decimal import Decimal
from typing import Optional

from common.core.config import settings
from common.core.otel_axiom_exporter import trace_span, get_logger
from packages.subscriptions.models.domain.enums import SubscriptionStatus
from packages.subscriptions.models.domain.plan import SubscriptionPlan
from packages.subscriptions.models.domain.rules import ValidationResult
from packages.subscriptions.models.domain.subscription import (
    Subscription,
    SubscriptionCreateModel,
    SubscriptionUpdateModel,
)
from packages.subscriptions.models.domain.timestamps import as_naive_utc, utcnow
from packages.subscriptions.services.usage_metering_service import UsageMeteringService

logger = get_logger(__name__)

SUPPORTED_CURRENCIES = frozenset({"USD", "EUR", "GBP", "CAD", "AUD"})
RECOMMENDED_MINIMUM_AMOUNT = Decimal("5.00")
STANDARD_TRIAL_DAYS = 30
MAX_TRIAL_DAYS = 90
MAX_PRICE_CHANGE = Decimal("0.5")
RENEWAL_NOTICE_DAYS = 7
HIGH_VALUE_AMOUNT = Decimal("1000")
EARLY_CANCELLATION_DAYS = 30


class SubscriptionValidationService:
    """Validation rules for create, update, cancel and usage requests."""

    def __init__(self, usage_service: Optional[UsageMeteringService] = None):
        self.usage_service = usage_service or UsageMeteringService()

    @trace_span
    def validate_creation(self, data: SubscriptionCreateModel) -> ValidationResult:
        """Check a create request on its own, before any plan is loaded."""
        result = ValidationResult()
        errors, warnings = result.errors, result.warnings

        if not data.tenant_id:
            errors.append("Tenant ID is required")
        if not data.user_id:
            errors.append("User ID is required")
        if not data.name or not data.name.strip():
            errors.append("Subscription name is required")
        if data.amount is None or data.amount <= 0:
            errors.append("Valid amount is required")
        if data.quantity < 1:
            errors.append("Quantity must be greater than 0")

        # Day granularity: a start_date defaulted to now must pass
        start_date = as_naive_utc(data.start_date)
        if start_date.date() < utcnow().date():
            errors.append("Start date cannot be in the past")

        if data.end_date is not None and as_naive_utc(data.end_date) <= start_date:
            errors.append("End date must be after start date")

        if data.currency.upper() not in SUPPORTED_CURRENCIES:
            warnings.append(f"Currency {data.currency} may not be supported")

        if data.amount is not None and 0 < data.amount < RECOMMENDED_MINIMUM_AMOUNT:
            warnings.append("Subscription amount is below recommended minimum")

        self._check_trial(data, errors, warnings)

        if data.external_customer_id and not data.external_price_id:
            errors.append("External price ID is required when customer ID is provided")
        if data.external_price_id and not data.external_customer_id:
            errors.append("External customer ID is required when price ID is provided")

        return result

    def _check_trial(
        self, data: SubscriptionCreateModel, errors: list[str], warnings: list[str]
    ) -> None:
        if not data.is_trial:
            return

        if not data.trial_days or data.trial_days <= 0:
            errors.append(
                "Trial days must be specified and greater than 0 for trial subscriptions"
            )
            return

        if data.trial_days > MAX_TRIAL_DAYS:
            warnings.append(
                "Trial period longer than 90 days may require special approval"
            )
        elif data.trial_days > STANDARD_TRIAL_DAYS:
            warnings.append("Trial period exceeds standard 30-day limit")

        if data.trial_end_date is not None:
            expected_end = as_naive_utc(data.start_date) + timedelta(
                days=data.trial_days
            )
            if abs(as_naive_utc(data.trial_end_date) - expected_end) > timedelta(
                days=1
            ):
                warnings.append("Trial end date does not match calculated trial period")

    @trace_span
    def validate_plan_compatibility(
        self, data: SubscriptionCreateModel, plan: SubscriptionPlan
    ) -> ValidationResult:
        """Requested features and limits must fit inside the plan."""
        result = ValidationResult()
        errors, warnings = result.errors, result.warnings

        for feature, enabled in (data.features or {}).items():
            if enabled and not plan.features.get(feature):
                errors.append(
                    f"Feature '{feature}' is not available in the selected plan"
                )

        for metric, value in (data.limits or {}).items():
            plan_limit = plan.limits.get(metric)
            if plan_limit and value > plan_limit:
                errors.append(
                    f"Limit '{metric}' exceeds plan maximum of {plan_limit:g}"
                )

        if plan.billing_cycle != data.billing_cycle:
            warnings.append(
                f"Plan billing cycle ({plan.billing_cycle.value}) differs from "
                f"requested ({data.billing_cycle.value})"
            )

        return result

    @trace_span
    def validate_update(
        self, subscription: Subscription, patch: SubscriptionUpdateModel
    ) -> ValidationResult:
        """Field checks for an update. Transitions are checked by the state machine."""
        result = ValidationResult()
        errors, warnings = result.errors, result.warnings
        changes = patch.model_dump(exclude_unset=True)

        if "name" in changes and not (patch.name or "").strip():
            errors.append("Subscription name cannot be empty")

        if "amount" in changes and patch.amount is not None:
            if patch.amount < 0:
                errors.append("New amount cannot be negative")
            elif subscription.amount > 0:
                change = abs(patch.amount - subscription.amount) / subscription.amount
                if change > MAX_PRICE_CHANGE:
                    warnings.append(
                        "Price change exceeds 50% - may require customer approval"
                    )

        if "quantity" in changes and patch.quantity is not None and patch.quantity < 1:
            errors.append("Quantity must be greater than 0")

        period_start = as_naive_utc(
            changes.get("current_period_start", subscription.current_period_start)
        )
        period_end = as_naive_utc(
            changes.get("current_period_end", subscription.current_period_end)
        )
        if period_start and period_end and period_start >= period_end:
            errors.append("Current period start must be before current period end")

        if "currency" in changes and patch.currency:
            if patch.currency.upper() not in SUPPORTED_CURRENCIES:
                warnings.append(f"Currency {patch.currency} may not be supported")

        if "billing_cycle" in changes and patch.billing_cycle is not None:
            # use_enum_values leaves a plain string on the patch
            if patch.billing_cycle == subscription.billing_cycle.value:
                warnings.append("Billing cycle is unchanged")
            else:
                days = subscription.days_until_renewal()
                if days is None:
                    warnings.append(
                        "No current period end date set - cannot validate timing"
                    )
                elif days < RENEWAL_NOTICE_DAYS:
                    warnings.append(
                        "Billing cycle change requested close to renewal date"
                    )

        if patch.is_trial and subscription.status != SubscriptionStatus.TRIAL:
            errors.append("Cannot convert non-trial subscription to trial")

        if (
            subscription.is_trial
            and patch.trial_days is not None
            and subscription.trial_days is not None
            and patch.trial_days < subscription.trial_days
        ):
            errors.append("Cannot reduce trial period for existing trial subscription")

        return result

    @trace_span
    def validate_cancellation(
        self, subscription: Subscription, cancel_at_period_end: bool = False
    ) -> ValidationResult:
        """Eligibility errors plus timing and business-impact warnings."""
        result = ValidationResult()
        errors, warnings = result.errors, result.warnings

        if subscription.status == SubscriptionStatus.CANCELED:
            errors.append("Subscription is already canceled")
        elif not subscription.status.is_cancelable():
            errors.append(
                f"Cannot cancel subscription in status {subscription.status.value}"
            )

        days = subscription.days_until_renewal()
        if days is None:
            warnings.append("No current period end date set - cannot validate timing")
        elif cancel_at_period_end and days < 1:
            warnings.append(
                "Cancellation at period end requested on last day of billing period"
            )
        elif not cancel_at_period_end and days > 30:
            warnings.append(
                "Immediate cancellation requested more than 30 days before renewal"
            )

        if subscription.amount > HIGH_VALUE_AMOUNT:
            warnings.append(
                "High-value subscription cancellation - consider retention offer"
            )
        if subscription.age_days() < EARLY_CANCELLATION_DAYS:
            warnings.append("Early cancellation - subscription less than 30 days old")

        return result

    @trace_span
    async def validate_usage_against_limits(
        self, subscription_id: int, requested_usage: dict[str, float]
    ) -> ValidationResult:
        """
        Check whether adding requested_usage to the current period would
        exceed a limit. Exceeding is an error, reaching the near-limit
        threshold is a warning.
        """
        result = ValidationResult()
        usage_limits = {
            usage_limit.metric_name: usage_limit
            for usage_limit in await self.usage_service.get_usage_limits(
                subscription_id
            )
        }

        threshold = settings.usage_near_limit_percent / 100
        for metric, requested in requested_usage.items():
            usage_limit = usage_limits.get(metric)
            if usage_limit is None or not usage_limit.limit:
                continue

            total = usage_limit.current_usage + requested
            if total > usage_limit.limit:
                result.errors.append(
                    f"Usage limit exceeded for '{metric}': {total:g}/{usage_limit.limit:g}"
                )
            elif total >= usage_limit.limit * threshold:
                result.warnings.append(
                    f"Approaching usage limit for '{metric}': {total:g}/{usage_limit.limit:g}"
                )

        return result
