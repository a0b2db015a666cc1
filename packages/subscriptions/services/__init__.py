"""Subscription services."""

from packages.subscriptions.services.pricing_service import PricingService
from packages.subscriptions.services.usage_metering_service import UsageMeteringService
from packages.subscriptions.services.validation_service import (
    SubscriptionValidationService,
)
from packages.subscriptions.services.business_rules_service import (
    BusinessRulesService,
)
from packages.subscriptions.services.subscription_service import SubscriptionService

__all__ = [
    "PricingService",
    "UsageMeteringService",
    "SubscriptionValidationService",
    "BusinessRulesService",
    "SubscriptionService",
]
