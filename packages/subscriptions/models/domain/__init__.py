"""Domain models for subscriptions."""

from packages.subscriptions.models.domain.enums import (
    SubscriptionStatus,
    BillingCycle,
    UsageMetricType,
    AlertType,
    AlertSeverity,
    UPDATABLE_STATUSES,
    CANCELABLE_STATUSES,
    ACTIVE_STATUSES,
)
from packages.subscriptions.models.domain.subscription import (
    Subscription,
    SubscriptionCreateModel,
    SubscriptionInsertModel,
    SubscriptionUpdateModel,
    SubscriptionLifecycleUpdate,
    SubscriptionExternalUpdate,
)
from packages.subscriptions.models.domain.plan import SubscriptionPlan
from packages.subscriptions.models.domain.pricing import (
    PricingRules,
    PricingResult,
    ProrationResult,
    BillingInterval,
)
from packages.subscriptions.models.domain.usage import (
    UsageRecord,
    UsageRecordCreateModel,
    UsageLimit,
    UsageAlert,
    UsageAnalytics,
    TenantUsageSummary,
)
from packages.subscriptions.models.domain.rules import (
    BusinessRuleResult,
    ValidationResult,
)
from packages.subscriptions.models.domain.webhooks import (
    WebhookEvent,
    WebhookEventType,
    WebhookOutcome,
    WebhookProcessingResult,
    ExternalSubscriptionData,
    ExternalSubscriptionStatus,
    ExternalInvoiceData,
)

__all__ = [
    # Enums
    "SubscriptionStatus",
    "BillingCycle",
    "UsageMetricType",
    "AlertType",
    "AlertSeverity",
    "UPDATABLE_STATUSES",
    "CANCELABLE_STATUSES",
    "ACTIVE_STATUSES",
    # Subscription
    "Subscription",
    "SubscriptionCreateModel",
    "SubscriptionInsertModel",
    "SubscriptionUpdateModel",
    "SubscriptionLifecycleUpdate",
    "SubscriptionExternalUpdate",
    # Plans
    "SubscriptionPlan",
    # Pricing
    "PricingRules",
    "PricingResult",
    "ProrationResult",
    "BillingInterval",
    # Usage
    "UsageRecord",
    "UsageRecordCreateModel",
    "UsageLimit",
    "UsageAlert",
    "UsageAnalytics",
    "TenantUsageSummary",
    # Rules
    "BusinessRuleResult",
    "ValidationResult",
    # Webhooks
    "WebhookEvent",
    "WebhookEventType",
    "WebhookOutcome",
    "WebhookProcessingResult",
    "ExternalSubscriptionData",
    "ExternalSubscriptionStatus",
    "ExternalInvoiceData",
]
