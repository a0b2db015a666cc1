"""
Eligibility checks for plan changes and cancellation.

Checks are advisory: every outcome, including a missing subscription or
plan, comes back as a BusinessRuleResult. Nothing is mutated here.
"""

from decimal import Decimal
from typing import Optional

from common.core.otel_axiom_exporter import trace_span, get_logger
from packages.subscriptions.models.domain.enums import SubscriptionStatus
from packages.subscriptions.models.domain.plan import SubscriptionPlan
from packages.subscriptions.models.domain.rules import BusinessRuleResult
from packages.subscriptions.models.domain.subscription import Subscription
from packages.subscriptions.repositories.plan_repository import (
    SubscriptionPlanRepository,
)
from packages.subscriptions.repositories.subscription_repository import (
    SubscriptionRepository,
)
from packages.subscriptions.services.usage_metering_service import UsageMeteringService

logger = get_logger(__name__)

UPGRADE_PRORATION_WINDOW_DAYS = 7
EARLY_ADOPTER_DAYS = 30
RETENTION_AMOUNT = Decimal("500")
REFUND_WINDOW_DAYS = 7


class BusinessRulesService:
    """Upgrade, downgrade and cancellation eligibility."""

    def __init__(self, usage_service: Optional[UsageMeteringService] = None):
        self.subscription_repo = SubscriptionRepository()
        self.plan_repo = SubscriptionPlanRepository()
        self.usage_service = usage_service or UsageMeteringService()

    async def _current_price(self, subscription: Subscription) -> Decimal:
        """Price of the subscription's plan, or its own amount without one."""
        if subscription.plan_id is not None:
            plan = await self.plan_repo.get(subscription.plan_id)
            if plan:
                return plan.price
        return subscription.amount

    async def _load(
        self, subscription_id: int, target_plan_id: int
    ) -> tuple[Optional[Subscription], Optional[SubscriptionPlan]]:
        subscription = await self.subscription_repo.get(subscription_id)
        target_plan = await self.plan_repo.get(target_plan_id)
        return subscription, target_plan

    @trace_span
    async def can_upgrade(
        self, subscription_id: int, target_plan_id: int
    ) -> BusinessRuleResult:
        """
        Upgrade needs an ACTIVE or TRIAL subscription and a pricier target plan.

        A target plan with a shorter billing cycle, or a renewal less than a
        week away, still proceeds but with a notice.
        """
        subscription, target_plan = await self._load(subscription_id, target_plan_id)
        if not subscription:
            return BusinessRuleResult.blocked("Subscription not found")
        if not target_plan:
            return BusinessRuleResult.blocked("Target plan not found")

        if subscription.status not in (
            SubscriptionStatus.ACTIVE,
            SubscriptionStatus.TRIAL,
        ):
            return BusinessRuleResult.blocked(
                f"Cannot upgrade subscription in {subscription.status.value} status",
                "Activate subscription first",
            )

        current_price = await self._current_price(subscription)
        if target_plan.price <= current_price:
            return BusinessRuleResult.blocked(
                "Target plan is not an upgrade", "Select a higher-tier plan"
            )

        if (
            target_plan.billing_cycle.cycle_days()
            < subscription.billing_cycle.cycle_days()
        ):
            return BusinessRuleResult(
                can_proceed=True,
                message="Billing cycle change required for upgrade",
                suggested_actions=["Confirm billing cycle change"],
            )

        days_until_renewal = subscription.days_until_renewal()
        if (
            days_until_renewal is not None
            and days_until_renewal <= UPGRADE_PRORATION_WINDOW_DAYS
        ):
            return BusinessRuleResult(
                can_proceed=True,
                message="Upgrade available with proration",
                suggested_actions=["Apply proration for immediate upgrade"],
            )

        return BusinessRuleResult(can_proceed=True, message="Upgrade available")

    @trace_span
    async def can_downgrade(
        self, subscription_id: int, target_plan_id: int
    ) -> BusinessRuleResult:
        """
        Downgrade needs an ACTIVE subscription, a cheaper target plan and
        current usage within every limit of the target plan.
        """
        subscription, target_plan = await self._load(subscription_id, target_plan_id)
        if not subscription:
            return BusinessRuleResult.blocked("Subscription not found")
        if not target_plan:
            return BusinessRuleResult.blocked("Target plan not found")

        if subscription.status != SubscriptionStatus.ACTIVE:
            return BusinessRuleResult.blocked(
                f"Cannot downgrade subscription in {subscription.status.value} status",
                "Activate subscription first",
            )

        current_price = await self._current_price(subscription)
        if target_plan.price >= current_price:
            return BusinessRuleResult.blocked(
                "Target plan is not a downgrade", "Select a lower-tier plan"
            )

        if target_plan.limits:
            usage = await self.usage_service.get_current_usage(subscription.id)
            conflicts = [
                f"{metric}: {usage.get(metric, 0.0):g}/{limit:g}"
                for metric, limit in target_plan.limits.items()
                if usage.get(metric, 0.0) > limit
            ]
            if conflicts:
                logger.info(
                    f"Downgrade of subscription {subscription.id} blocked by usage",
                    extra={
                        "subscription_id": subscription.id,
                        "target_plan_id": target_plan.id,
                        "conflicts": conflicts,
                    },
                )
                return BusinessRuleResult.blocked(
                    f"Current usage exceeds target plan limits: {', '.join(conflicts)}",
                    "Reduce usage or select different plan",
                )

        if subscription.age_days() < EARLY_ADOPTER_DAYS:
            return BusinessRuleResult(
                can_proceed=True,
                message="Downgrade available but may affect early adopter benefits",
                suggested_actions=["Review early adopter benefits"],
            )

        return BusinessRuleResult(
            can_proceed=True, message="Downgrade available at next billing cycle"
        )

    @trace_span
    async def can_cancel(self, subscription_id: int) -> BusinessRuleResult:
        """Only an already canceled subscription is blocked."""
        subscription = await self.subscription_repo.get(subscription_id)
        if not subscription:
            return BusinessRuleResult.blocked("Subscription not found")

        if subscription.status == SubscriptionStatus.CANCELED:
            return BusinessRuleResult.blocked("Subscription is already canceled")

        if subscription.amount > RETENTION_AMOUNT:
            return BusinessRuleResult(
                can_proceed=True,
                message="High-value subscription cancellation",
                suggested_actions=[
                    "Consider retention offer",
                    "Schedule call with account manager",
                ],
            )

        if subscription.age_days() < REFUND_WINDOW_DAYS:
            return BusinessRuleResult(
                can_proceed=True,
                message="Early cancellation - consider refund policy",
                suggested_actions=["Review refund policy", "Consider trial extension"],
            )

        return BusinessRuleResult(can_proceed=True, message="Cancellation available")
