"""
Database entity for metered usage.
"""

from sqlalchemy import (
    Column,
    String,
    Text,
    DateTime,
    Boolean,
    Float,
    Numeric,
    ForeignKey,
    Index,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from common.db.base import Base, BigIntegerType, JSONType


class UsageRecordEntity(Base):
    """
    Usage record database entity.

    One row per metering key (subscription_id, metric_name, period_start,
    period_end). Re-metering a key updates the row in place.
    """

    __tablename__ = "subscription_usage"

    id = Column(BigIntegerType, primary_key=True, index=True, autoincrement=True)
    subscription_id = Column(
        BigIntegerType,
        ForeignKey("subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    tenant_id = Column(BigIntegerType, nullable=False, index=True)

    metric_type = Column(
        String(50), nullable=False
    )  # users, projects, storage, api_calls, features, custom
    metric_name = Column(String(255), nullable=False)

    quantity = Column(Float, nullable=False, default=0)
    unit_price = Column(Numeric(12, 4), nullable=True)
    total_amount = Column(Numeric(14, 4), nullable=False, default=0)

    period_start = Column(DateTime(timezone=True), nullable=False)
    period_end = Column(DateTime(timezone=True), nullable=False)
    recorded_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), index=True
    )

    usage_metadata = Column("metadata", JSONType, nullable=False, default=dict)
    tags = Column(JSONType, nullable=False, default=list)
    notes = Column(Text, nullable=True)

    is_billed = Column(Boolean, nullable=False, default=False)
    billed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "subscription_id",
            "metric_name",
            "period_start",
            "period_end",
            name="uq_usage_metering_key",
        ),
        Index("idx_usage_tenant_recorded", "tenant_id", "recorded_at"),
    )
