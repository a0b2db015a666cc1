"""Database models for subscriptions."""

from packages.subscriptions.models.database.plan import SubscriptionPlanEntity
from packages.subscriptions.models.database.subscription import SubscriptionEntity
from packages.subscriptions.models.database.usage import UsageRecordEntity

__all__ = [
    "SubscriptionPlanEntity",
    "SubscriptionEntity",
    "UsageRecordEntity",
]
