"""
Database entity for subscription plans.
"""

from sqlalchemy import Column, String, Text, DateTime, Boolean, Integer, Numeric
from sqlalchemy.sql import func

from common.db.base import Base, BigIntegerType, JSONType


class SubscriptionPlanEntity(Base):
    """Subscription plan catalogue entry."""

    __tablename__ = "subscription_plans"

    id = Column(BigIntegerType, primary_key=True, index=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    price = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, server_default="USD")
    billing_cycle = Column(String(50), nullable=False, server_default="monthly")

    # metric name -> numeric cap, e.g. {"api_calls": 10000}
    limits = Column(JSONType, nullable=False, default=dict)
    # feature name -> enabled
    features = Column(JSONType, nullable=False, default=dict)

    is_active = Column(Boolean, nullable=False, default=True, index=True)
    is_popular = Column(Boolean, nullable=False, default=False)
    sort_order = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
