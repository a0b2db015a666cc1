"""
Service for usage metering, limit checks and usage analytics.
"""

from collections import defaultdict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from common.core.config import settings
from common.core.exceptions import NotFoundError
from common.core.otel_axiom_exporter import trace_span, get_logger
from common.db.context import readonly
from common.db.scoped import transaction
from packages.subscriptions.exceptions import InvalidStateError
from packages.subscriptions.models.domain.enums import (
    AlertType,
    AlertSeverity,
    METERABLE_STATUSES,
)
from packages.subscriptions.models.domain.subscription import (
    Subscription,
    SubscriptionLifecycleUpdate,
)
from packages.subscriptions.models.domain.timestamps import (
    add_months,
    as_naive_utc,
    utcnow,
)
from packages.subscriptions.models.domain.usage import (
    UsageRecord,
    UsageRecordCreateModel,
    UsageLimit,
    UsageAlert,
    UsageAnalytics,
    UsageTrendPoint,
    MetricUsage,
    SubscriptionUsageTotal,
    TenantUsageSummary,
)
from packages.subscriptions.repositories.plan_repository import (
    SubscriptionPlanRepository,
)
from packages.subscriptions.repositories.subscription_repository import (
    SubscriptionRepository,
)
from packages.subscriptions.repositories.usage_repository import UsageRecordRepository

logger = get_logger(__name__)

TOP_METRICS = 5
TOP_SUBSCRIPTIONS = 10


def _percent(part: float, whole: float) -> float:
    return part / whole * 100 if whole else 0.0


class UsageMeteringService:
    """Service for metering usage against subscription limits."""

    def __init__(self):
        self.usage_repo = UsageRecordRepository()
        self.subscription_repo = SubscriptionRepository()
        self.plan_repo = SubscriptionPlanRepository()

    async def _get_subscription_or_raise(self, subscription_id: int) -> Subscription:
        subscription = await self.subscription_repo.get(subscription_id)
        if not subscription:
            raise NotFoundError(f"Subscription {subscription_id} not found")
        return subscription

    async def _ensure_current_period(
        self, subscription: Subscription
    ) -> tuple[datetime, datetime]:
        """
        Current period bounds, filling them in when they were never set.

        Missing bounds are derived from start_date and the billing cycle and
        written back, so later reads see the same period.
        """
        if subscription.current_period_start and subscription.current_period_end:
            return subscription.current_period_start, subscription.current_period_end

        period_start = subscription.start_date
        period_end = add_months(period_start, subscription.billing_cycle.period_months())
        await self.subscription_repo.update(
            subscription.id,
            SubscriptionLifecycleUpdate(
                current_period_start=period_start, current_period_end=period_end
            ),
        )

        logger.info(
            f"Filled in missing period for subscription {subscription.id}",
            extra={
                "subscription_id": subscription.id,
                "period_start": period_start.isoformat(),
                "period_end": period_end.isoformat(),
            },
        )

        return period_start, period_end

    @trace_span
    async def record_usage(self, data: UsageRecordCreateModel) -> UsageRecord:
        """
        Record usage for one metering key.

        Re-recording the same (subscription, metric, period) overwrites the
        previous quantity. Limits are checked afterwards; alerts are logged
        and never block the write.

        Raises:
            NotFoundError: subscription does not exist
            InvalidStateError: subscription is not ACTIVE or TRIAL
        """
        subscription = await self._get_subscription_or_raise(data.subscription_id)
        if subscription.status not in METERABLE_STATUSES:
            raise InvalidStateError(
                f"Cannot record usage for subscription {subscription.id} "
                f"in status {subscription.status.value}"
            )

        unit_price = data.unit_price
        total_amount = Decimal(str(data.quantity)) * (unit_price or Decimal("0"))

        async with transaction():
            record = await self.usage_repo.upsert(
                subscription_id=subscription.id,
                tenant_id=subscription.tenant_id,
                metric_type=data.metric_type.value,
                metric_name=data.metric_name,
                quantity=data.quantity,
                unit_price=unit_price,
                total_amount=total_amount,
                period_start=as_naive_utc(data.period_start),
                period_end=as_naive_utc(data.period_end),
                recorded_at=utcnow(),
                usage_metadata=data.usage_metadata,
                tags=data.tags,
                notes=data.notes,
            )

        logger.info(
            f"Recorded {data.quantity} {data.metric_name} for subscription {subscription.id}",
            extra={
                "subscription_id": subscription.id,
                "tenant_id": subscription.tenant_id,
                "metric_name": data.metric_name,
                "quantity": data.quantity,
            },
        )

        alerts = await self.check_usage_limits(subscription.id)
        for alert in alerts:
            logger.warning(
                alert.message,
                extra={
                    "subscription_id": subscription.id,
                    "metric_name": alert.metric_name,
                    "alert_type": alert.alert_type.value,
                    "severity": alert.severity.value,
                },
            )

        return record

    @trace_span
    async def bulk_record_usage(
        self, records: list[UsageRecordCreateModel]
    ) -> list[UsageRecord]:
        """Record several metering calls in order. Stops at the first failure."""
        return [await self.record_usage(record) for record in records]

    @trace_span
    async def get_current_usage(self, subscription_id: int) -> dict[str, float]:
        """Usage per metric within the subscription's current period."""
        subscription = await self._get_subscription_or_raise(subscription_id)
        return await self._current_usage(subscription)

    async def _current_usage(self, subscription: Subscription) -> dict[str, float]:
        period_start, period_end = await self._ensure_current_period(subscription)
        records = await self.usage_repo.get_for_period(
            subscription.id, period_start, period_end
        )

        usage: dict[str, float] = defaultdict(float)
        for record in records:
            usage[record.metric_name] += record.quantity
        return dict(usage)

    async def _limits_for(self, subscription: Subscription) -> dict[str, float]:
        """Snapshotted limits, or the plan's when nothing was snapshotted."""
        if subscription.limits:
            return subscription.limits
        if subscription.plan_id is None:
            return {}
        plan = await self.plan_repo.get(subscription.plan_id)
        return plan.limits if plan else {}

    @trace_span
    async def get_usage_limits(self, subscription_id: int) -> list[UsageLimit]:
        """Current usage against every limit of the subscription."""
        subscription = await self._get_subscription_or_raise(subscription_id)
        limits = await self._limits_for(subscription)
        if not limits:
            return []

        usage = await self._current_usage(subscription)

        usage_limits = []
        for metric_name, limit in limits.items():
            current = usage.get(metric_name, 0.0)
            percentage = _percent(current, limit)
            is_exceeded = current > limit
            usage_limits.append(
                UsageLimit(
                    metric_name=metric_name,
                    limit=limit,
                    current_usage=current,
                    percentage=percentage,
                    is_exceeded=is_exceeded,
                    is_near_limit=(
                        percentage >= settings.usage_near_limit_percent
                        and not is_exceeded
                    ),
                )
            )
        return usage_limits

    @trace_span
    async def check_usage_limits(self, subscription_id: int) -> list[UsageAlert]:
        """
        Alerts for exceeded and nearly exhausted limits.

        Never raises: on any error the failure is logged and no alerts are
        returned.
        """
        try:
            usage_limits = await self.get_usage_limits(subscription_id)
        except Exception as e:
            logger.error(
                f"Failed to check usage limits for subscription {subscription_id}: {str(e)}",
                extra={"subscription_id": subscription_id, "error": str(e)},
            )
            return []

        alerts = []
        for usage_limit in usage_limits:
            if usage_limit.is_exceeded:
                alerts.append(
                    UsageAlert(
                        subscription_id=subscription_id,
                        metric_name=usage_limit.metric_name,
                        alert_type=AlertType.LIMIT_EXCEEDED,
                        severity=AlertSeverity.CRITICAL,
                        current_usage=usage_limit.current_usage,
                        limit=usage_limit.limit,
                        percentage=usage_limit.percentage,
                        message=(
                            f"Usage limit exceeded for {usage_limit.metric_name}: "
                            f"{usage_limit.current_usage:g}/{usage_limit.limit:g}"
                        ),
                    )
                )
            elif usage_limit.is_near_limit:
                alerts.append(
                    UsageAlert(
                        subscription_id=subscription_id,
                        metric_name=usage_limit.metric_name,
                        alert_type=AlertType.NEAR_LIMIT,
                        severity=AlertSeverity.MEDIUM,
                        current_usage=usage_limit.current_usage,
                        limit=usage_limit.limit,
                        percentage=usage_limit.percentage,
                        message=(
                            f"Approaching usage limit for {usage_limit.metric_name}: "
                            f"{usage_limit.percentage:.1f}% used"
                        ),
                    )
                )
        return alerts

    @trace_span
    async def get_usage_analytics(
        self,
        subscription_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> UsageAnalytics:
        """
        Aggregate usage recorded in [start, end].

        Defaults to the current period. Trends are summed per calendar day of
        recording, oldest first; top metrics are the five largest.
        """
        subscription = await self._get_subscription_or_raise(subscription_id)
        start, end = as_naive_utc(start), as_naive_utc(end)
        if start is None or end is None:
            period_start, period_end = await self._ensure_current_period(subscription)
            start = start or period_start
            end = end or period_end

        records = await self.usage_repo.get_in_range(subscription.id, start, end)

        total_usage = 0.0
        by_metric: dict[str, float] = defaultdict(float)
        by_day: dict[str, float] = defaultdict(float)
        for record in records:
            total_usage += record.quantity
            by_metric[record.metric_name] += record.quantity
            by_day[record.recorded_at.date().isoformat()] += record.quantity

        top_metrics = sorted(by_metric.items(), key=lambda item: item[1], reverse=True)

        return UsageAnalytics(
            subscription_id=subscription.id,
            period_start=start,
            period_end=end,
            total_usage=total_usage,
            usage_by_metric=dict(by_metric),
            usage_trends=[
                UsageTrendPoint(date=day, usage=usage)
                for day, usage in sorted(by_day.items())
            ],
            top_metrics=[
                MetricUsage(
                    metric_name=metric_name,
                    usage=usage,
                    percentage=_percent(usage, total_usage),
                )
                for metric_name, usage in top_metrics[:TOP_METRICS]
            ],
        )

    @trace_span
    @readonly
    async def get_usage_history(
        self,
        subscription_id: int,
        metric_name: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 100,
    ) -> list[UsageRecord]:
        """Usage records of a subscription, newest first."""
        await self._get_subscription_or_raise(subscription_id)
        return await self.usage_repo.get_history(
            subscription_id,
            metric_name=metric_name,
            start=as_naive_utc(start),
            end=as_naive_utc(end),
            limit=limit,
        )

    @trace_span
    @readonly
    async def get_tenant_usage_summary(
        self,
        tenant_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> TenantUsageSummary:
        """Usage across every subscription of a tenant, default last 30 days."""
        end = as_naive_utc(end) or utcnow()
        start = as_naive_utc(start) or end - timedelta(
            days=settings.usage_summary_default_days
        )

        total_subscriptions, active_subscriptions = (
            await self.subscription_repo.count_by_tenant(tenant_id)
        )
        records = await self.usage_repo.get_by_tenant_in_range(tenant_id, start, end)

        total_usage = 0.0
        by_metric: dict[str, float] = defaultdict(float)
        by_subscription: dict[int, float] = defaultdict(float)
        for record in records:
            total_usage += record.quantity
            by_metric[record.metric_name] += record.quantity
            by_subscription[record.subscription_id] += record.quantity

        top_subscriptions = sorted(
            by_subscription.items(), key=lambda item: item[1], reverse=True
        )[:TOP_SUBSCRIPTIONS]

        return TenantUsageSummary(
            tenant_id=tenant_id,
            period_start=start,
            period_end=end,
            total_subscriptions=total_subscriptions,
            active_subscriptions=active_subscriptions,
            total_usage=total_usage,
            usage_by_metric=dict(by_metric),
            top_subscriptions=[
                SubscriptionUsageTotal(subscription_id=subscription_id, usage=usage)
                for subscription_id, usage in top_subscriptions
            ],
        )
