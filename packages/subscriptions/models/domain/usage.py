"""
Domain models for usage metering, limits and alerts.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field, field_validator, model_validator

from packages.subscriptions.models.domain.enums import (
    UsageMetricType,
    AlertType,
    AlertSeverity,
)
from packages.subscriptions.models.domain.timestamps import as_naive_utc


class UsageRecord(BaseModel):
    """
    Metered usage for one metric over one period.

    Identified by the metering key (subscription_id, metric_name,
    period_start, period_end). Re-metering the same key overwrites the
    quantity, it never adds to it.
    """

    id: int
    subscription_id: int
    tenant_id: int

    metric_type: UsageMetricType
    metric_name: str

    quantity: float
    unit_price: Optional[Decimal] = None
    total_amount: Decimal = Decimal("0")

    period_start: datetime
    period_end: datetime
    recorded_at: datetime

    usage_metadata: dict = Field(default_factory=dict)
    tags: list[str] = Field(default_factory=list)
    notes: Optional[str] = None

    is_billed: bool = False
    billed_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @field_validator(
        "period_start", "period_end", "recorded_at", "billed_at", mode="after"
    )
    @classmethod
    def normalise_timestamps(cls, v):
        return as_naive_utc(v)

    @field_validator("usage_metadata", mode="before")
    @classmethod
    def default_empty_metadata(cls, v):
        return v or {}

    @field_validator("tags", mode="before")
    @classmethod
    def default_empty_tags(cls, v):
        return v or []


class UsageRecordCreateModel(BaseModel):
    """A metering call for one metric and period."""

    subscription_id: int
    metric_type: UsageMetricType = UsageMetricType.CUSTOM
    metric_name: str
    quantity: float
    unit_price: Optional[Decimal] = None
    period_start: datetime
    period_end: datetime
    usage_metadata: dict = Field(default_factory=dict)
    tags: list[str] = Field(default_factory=list)
    notes: Optional[str] = None

    @model_validator(mode="after")
    def validate_period(self):
        if as_naive_utc(self.period_start) >= as_naive_utc(self.period_end):
            raise ValueError("period_start must be before period_end")
        if self.quantity < 0:
            raise ValueError("quantity must not be negative")
        return self


class UsageLimit(BaseModel):
    """Current usage of one metric against its limit."""

    metric_name: str
    limit: float
    current_usage: float
    percentage: float
    is_exceeded: bool
    is_near_limit: bool


class UsageAlert(BaseModel):
    """Alert derived from a usage limit."""

    subscription_id: int
    metric_name: str
    alert_type: AlertType
    severity: AlertSeverity
    current_usage: float
    limit: float
    percentage: float
    message: str


class UsageTrendPoint(BaseModel):
    """Total usage on one calendar day."""

    date: str  # YYYY-MM-DD
    usage: float


class MetricUsage(BaseModel):
    metric_name: str
    usage: float
    percentage: float


class UsageAnalytics(BaseModel):
    """Aggregated usage for one subscription over a date range."""

    subscription_id: int
    period_start: datetime
    period_end: datetime
    total_usage: float = 0.0
    usage_by_metric: dict[str, float] = Field(default_factory=dict)
    usage_trends: list[UsageTrendPoint] = Field(default_factory=list)
    top_metrics: list[MetricUsage] = Field(default_factory=list)


class SubscriptionUsageTotal(BaseModel):
    subscription_id: int
    usage: float


class TenantUsageSummary(BaseModel):
    """Usage across all subscriptions of a tenant over a date range."""

    tenant_id: int
    period_start: datetime
    period_end: datetime
    total_subscriptions: int = 0
    active_subscriptions: int = 0
    total_usage: float = 0.0
    usage_by_metric: dict[str, float] = Field(default_factory=dict)
    top_subscriptions: list[SubscriptionUsageTotal] = Field(default_factory=list)
