"""
Database entity for subscriptions.
"""

from sqlalchemy import (
    Column,
    String,
    Text,
    DateTime,
    Boolean,
    Integer,
    Numeric,
    ForeignKey,
    Index,
)
from sqlalchemy.sql import func

from common.db.base import Base, BigIntegerType, JSONType


class SubscriptionEntity(Base):
    """
    Subscription database entity.

    One row per user subscription within a tenant. Rows are never physically
    deleted; deleted_at marks a soft delete.
    """

    __tablename__ = "subscriptions"

    id = Column(BigIntegerType, primary_key=True, index=True, autoincrement=True)
    tenant_id = Column(BigIntegerType, nullable=False, index=True)
    user_id = Column(BigIntegerType, nullable=False, index=True)
    plan_id = Column(
        BigIntegerType,
        ForeignKey("subscription_plans.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    status = Column(
        String(50), nullable=False, index=True
    )  # active, trial, past_due, suspended, canceled, ...
    billing_cycle = Column(String(50), nullable=False, server_default="monthly")

    # Commercial terms
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, server_default="USD")
    quantity = Column(Integer, nullable=False, server_default="1")
    unit_price = Column(Numeric(12, 2), nullable=True)

    # Lifecycle
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=True)
    current_period_start = Column(DateTime(timezone=True), nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)
    is_trial = Column(Boolean, nullable=False, default=False)
    trial_days = Column(Integer, nullable=True)
    trial_end_date = Column(DateTime(timezone=True), nullable=True)

    auto_renew = Column(Boolean, nullable=False, default=True)
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)
    cancel_at = Column(DateTime(timezone=True), nullable=True)
    canceled_at = Column(DateTime(timezone=True), nullable=True)
    cancel_reason = Column(String(255), nullable=True)
    suspended_at = Column(DateTime(timezone=True), nullable=True)
    suspension_reason = Column(String(255), nullable=True)
    grace_period_days = Column(Integer, nullable=False, default=0)
    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True)

    # External platform IDs, used as the reconciliation lookup key
    external_subscription_id = Column(
        String(255), nullable=True, unique=True, index=True
    )
    external_customer_id = Column(String(255), nullable=True, index=True)
    external_price_id = Column(String(255), nullable=True)
    external_product_id = Column(String(255), nullable=True)

    # Snapshotted from the plan at creation
    features = Column(JSONType, nullable=False, default=dict)
    limits = Column(JSONType, nullable=False, default=dict)

    subscription_metadata = Column("metadata", JSONType, nullable=False, default=dict)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_subscription_tenant_user_status", "tenant_id", "user_id", "status"),
        Index("idx_subscription_period_end", "current_period_end"),
    )
