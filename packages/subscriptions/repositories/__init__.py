"""Subscription repositories."""

from packages.subscriptions.repositories.subscription_repository import (
    SubscriptionRepository,
)
from packages.subscriptions.repositories.plan_repository import (
    SubscriptionPlanRepository,
)
from packages.subscriptions.repositories.usage_repository import UsageRecordRepository

__all__ = [
    "SubscriptionRepository",
    "SubscriptionPlanRepository",
    "UsageRecordRepository",
]
