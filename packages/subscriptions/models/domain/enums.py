"""
Subscription enums - strongly typed enumerations for subscription lifecycle and metering.
"""

from enum import Enum


class SubscriptionStatus(str, Enum):
    """
    Subscription status lifecycle.

    Flow: pending/trial -> active -> suspended/past_due -> canceled
    Canceled, inactive and expired subscriptions can be reactivated.
    Completed is terminal.
    """

    PENDING = "pending"  # Created, waiting on the billing platform
    TRIAL = "trial"  # In trial period
    ACTIVE = "active"  # Paid and in good standing
    PAST_DUE = "past_due"  # Latest invoice payment failed
    SUSPENDED = "suspended"  # Access blocked by an operator
    UNPAID = "unpaid"  # Payment retries exhausted
    CANCELED = "canceled"  # Canceled by user or billing platform
    INACTIVE = "inactive"  # Unknown state reported by billing platform
    EXPIRED = "expired"  # Ran past end date without renewal
    COMPLETED = "completed"  # Fixed-term subscription finished

    def allowed_transitions(self) -> frozenset["SubscriptionStatus"]:
        """Statuses this status may move to."""
        return _TRANSITIONS[self]

    def can_transition_to(self, target: "SubscriptionStatus") -> bool:
        return target in _TRANSITIONS[self]

    def is_updatable(self) -> bool:
        return self in UPDATABLE_STATUSES

    def is_cancelable(self) -> bool:
        return self in CANCELABLE_STATUSES

    def is_terminal(self) -> bool:
        return not _TRANSITIONS[self]

    def counts_as_active(self) -> bool:
        """Statuses covered by the one-active-subscription-per-user rule."""
        return self in ACTIVE_STATUSES


_TRANSITIONS: dict[SubscriptionStatus, frozenset[SubscriptionStatus]] = {
    SubscriptionStatus.ACTIVE: frozenset(
        {SubscriptionStatus.SUSPENDED, SubscriptionStatus.CANCELED}
    ),
    SubscriptionStatus.TRIAL: frozenset(
        {SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELED}
    ),
    SubscriptionStatus.SUSPENDED: frozenset(
        {SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELED}
    ),
    SubscriptionStatus.CANCELED: frozenset({SubscriptionStatus.ACTIVE}),
    SubscriptionStatus.PAST_DUE: frozenset(
        {SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELED}
    ),
    SubscriptionStatus.UNPAID: frozenset({SubscriptionStatus.CANCELED}),
    SubscriptionStatus.PENDING: frozenset(
        {SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELED}
    ),
    SubscriptionStatus.INACTIVE: frozenset({SubscriptionStatus.ACTIVE}),
    SubscriptionStatus.EXPIRED: frozenset({SubscriptionStatus.ACTIVE}),
    SubscriptionStatus.COMPLETED: frozenset(),
}

UPDATABLE_STATUSES = frozenset(
    {SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIAL, SubscriptionStatus.PENDING}
)
CANCELABLE_STATUSES = frozenset(
    {SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIAL, SubscriptionStatus.PENDING}
)
ACTIVE_STATUSES = frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIAL})
METERABLE_STATUSES = ACTIVE_STATUSES


class BillingCycle(str, Enum):
    """Billing cycle of a subscription or plan."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    SEMI_ANNUALLY = "semi_annually"
    ANNUALLY = "annually"
    CUSTOM = "custom"

    def period_months(self) -> int:
        """
        Months to add to a period start to get its end.

        Used when period dates have to be derived locally. Only monthly,
        quarterly and annual cycles have their own length; every other cycle
        falls back to one month.
        """
        months = {
            BillingCycle.QUARTERLY: 3,
            BillingCycle.ANNUALLY: 12,
        }
        return months.get(self, 1)

    def cycle_days(self) -> int:
        """Approximate cycle length in days, for comparing cycles."""
        days = {
            BillingCycle.DAILY: 1,
            BillingCycle.WEEKLY: 7,
            BillingCycle.MONTHLY: 30,
            BillingCycle.QUARTERLY: 90,
            BillingCycle.SEMI_ANNUALLY: 180,
            BillingCycle.ANNUALLY: 365,
            BillingCycle.CUSTOM: 30,
        }
        return days[self]


class UsageMetricType(str, Enum):
    """Kinds of metered usage."""

    USERS = "users"
    PROJECTS = "projects"
    STORAGE = "storage"
    API_CALLS = "api_calls"
    FEATURES = "features"
    CUSTOM = "custom"


class AlertType(str, Enum):
    """Usage alert types."""

    NEAR_LIMIT = "near_limit"
    LIMIT_EXCEEDED = "limit_exceeded"


class AlertSeverity(str, Enum):
    """Usage alert severity."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"
