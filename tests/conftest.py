# Shared pytest configuration and fixtures for all test types
import pytest_asyncio
from datetime import timedelta
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from common.db.base import Base
from packages.subscriptions.models.database import (
    SubscriptionEntity,
    SubscriptionPlanEntity,
    UsageRecordEntity,
)
from packages.subscriptions.models.domain.enums import (
    SubscriptionStatus,
    BillingCycle,
    UsageMetricType,
)
from packages.subscriptions.models.domain.plan import SubscriptionPlan
from packages.subscriptions.models.domain.subscription import Subscription
from packages.subscriptions.models.domain.timestamps import utcnow

# Test database URL
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create test database engine and initialize schema."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def test_connection(test_engine):
    """Create test connection with outer transaction for rollback isolation."""
    async with test_engine.connect() as connection:
        trans = await connection.begin()
        yield connection
        await trans.rollback()


@pytest_asyncio.fixture(scope="function")
async def test_session_factory(test_connection):
    """Create session factory bound to test connection.

    Using join_transaction_mode="create_savepoint" so nested transaction()
    calls create savepoints instead of real nested transactions.
    """
    return async_sessionmaker(
        bind=test_connection,
        class_=AsyncSession,
        expire_on_commit=False,
        join_transaction_mode="create_savepoint",
    )


@pytest_asyncio.fixture(scope="function")
async def test_db(test_session_factory):
    """Create a test database session."""
    async with test_session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function", autouse=True)
async def patch_lazy_sessions(test_session_factory, monkeypatch):
    """
    Patch session factories to use test database.

    This allows real transaction() and get_session() to run with proper
    commit/rollback/ContextVar semantics while using the test database.
    """
    monkeypatch.setattr("common.db.scoped.AsyncSessionLocal", test_session_factory)
    monkeypatch.setattr(
        "common.db.scoped.AsyncSessionLocalReadonly", test_session_factory
    )


# Helper for creating subscription rows with every required column filled in
def create_test_subscription_entity(**kwargs):
    """Create a SubscriptionEntity for testing with sensible defaults.

    Usage: create_test_subscription_entity(user_id=7, status='trial')
    """
    now = utcnow()
    defaults = {
        "tenant_id": 1,
        "user_id": 1,
        "name": "Test Subscription",
        "status": SubscriptionStatus.ACTIVE.value,
        "billing_cycle": BillingCycle.MONTHLY.value,
        "amount": Decimal("49.99"),
        "currency": "USD",
        "quantity": 1,
        "start_date": now - timedelta(days=10),
        "current_period_start": now - timedelta(days=10),
        "current_period_end": now + timedelta(days=20),
        "is_active": True,
        "features": {},
        "limits": {},
        "subscription_metadata": {},
    }
    defaults.update(kwargs)
    return SubscriptionEntity(**defaults)


async def _persist_subscription(test_db: AsyncSession, **kwargs) -> Subscription:
    subscription_entity = create_test_subscription_entity(**kwargs)
    test_db.add(subscription_entity)
    await test_db.commit()
    await test_db.refresh(subscription_entity)
    return Subscription.model_validate(subscription_entity)


async def _persist_plan(test_db: AsyncSession, **kwargs) -> SubscriptionPlan:
    plan_entity = SubscriptionPlanEntity(**kwargs)
    test_db.add(plan_entity)
    await test_db.commit()
    await test_db.refresh(plan_entity)
    return SubscriptionPlan.model_validate(plan_entity)


# ============================================================================
# Plan Fixtures
# ============================================================================


@pytest_asyncio.fixture(scope="function")
async def sample_plan(test_db: AsyncSession):
    """Mid-tier monthly plan."""
    return await _persist_plan(
        test_db,
        name="Pro",
        price=Decimal("49.99"),
        billing_cycle=BillingCycle.MONTHLY.value,
        limits={"api_calls": 1000, "projects": 10},
        features={"analytics": True, "sso": False},
        sort_order=2,
    )


@pytest_asyncio.fixture(scope="function")
async def premium_plan(test_db: AsyncSession):
    """Pricier plan with higher limits."""
    return await _persist_plan(
        test_db,
        name="Enterprise",
        price=Decimal("99.99"),
        billing_cycle=BillingCycle.MONTHLY.value,
        limits={"api_calls": 10000, "projects": 50},
        features={"analytics": True, "sso": True},
        sort_order=3,
    )


@pytest_asyncio.fixture(scope="function")
async def basic_plan(test_db: AsyncSession):
    """Cheaper plan with lower limits."""
    return await _persist_plan(
        test_db,
        name="Starter",
        price=Decimal("19.99"),
        billing_cycle=BillingCycle.MONTHLY.value,
        limits={"api_calls": 100, "projects": 3},
        features={"analytics": False, "sso": False},
        sort_order=1,
    )


@pytest_asyncio.fixture(scope="function")
async def inactive_plan(test_db: AsyncSession):
    """Retired plan that can no longer be subscribed to."""
    return await _persist_plan(
        test_db,
        name="Legacy",
        price=Decimal("29.99"),
        billing_cycle=BillingCycle.MONTHLY.value,
        is_active=False,
    )


# ============================================================================
# Subscription Fixtures
# ============================================================================


@pytest_asyncio.fixture(scope="function")
async def sample_subscription(test_db: AsyncSession, sample_plan):
    """Create a sample active subscription linked to the billing platform."""
    return await _persist_subscription(
        test_db,
        plan_id=sample_plan.id,
        limits=sample_plan.limits,
        features=sample_plan.features,
        external_subscription_id="sub_test123",
        external_customer_id="cus_test123",
        external_price_id="price_test123",
    )


@pytest_asyncio.fixture(scope="function")
async def trial_subscription(test_db: AsyncSession):
    """Create a trial subscription for a second user."""
    now = utcnow()
    return await _persist_subscription(
        test_db,
        user_id=2,
        status=SubscriptionStatus.TRIAL.value,
        is_trial=True,
        trial_days=14,
        trial_end_date=now + timedelta(days=4),
        external_subscription_id="sub_trial123",
    )


@pytest_asyncio.fixture(scope="function")
async def canceled_subscription(test_db: AsyncSession):
    """Create a canceled subscription for a third user."""
    now = utcnow()
    return await _persist_subscription(
        test_db,
        user_id=3,
        status=SubscriptionStatus.CANCELED.value,
        is_active=False,
        canceled_at=now - timedelta(days=1),
        cancel_reason="too_expensive",
        end_date=now - timedelta(days=1),
        external_subscription_id="sub_canceled123",
    )


@pytest_asyncio.fixture(scope="function")
async def past_due_subscription(test_db: AsyncSession):
    """Create a past-due subscription for a fourth user."""
    return await _persist_subscription(
        test_db,
        user_id=4,
        status=SubscriptionStatus.PAST_DUE.value,
        is_active=False,
        external_subscription_id="sub_pastdue123",
    )


@pytest_asyncio.fixture(scope="function")
async def completed_subscription(test_db: AsyncSession):
    """Create a finished fixed-term subscription."""
    return await _persist_subscription(
        test_db,
        user_id=5,
        status=SubscriptionStatus.COMPLETED.value,
        is_active=False,
        external_subscription_id="sub_completed123",
    )


@pytest_asyncio.fixture(scope="function")
async def suspended_subscription(test_db: AsyncSession):
    """Create a suspended subscription for testing."""
    return await _persist_subscription(
        test_db,
        user_id=6,
        status=SubscriptionStatus.SUSPENDED.value,
        is_active=False,
        suspended_at=utcnow(),
        suspension_reason="fraud_review",
        external_subscription_id="sub_suspended123",
    )


@pytest_asyncio.fixture(scope="function")
async def sample_usage_record(test_db: AsyncSession, sample_subscription):
    """Create api_calls usage inside the sample subscription's current period."""
    usage_record = UsageRecordEntity(
        subscription_id=sample_subscription.id,
        tenant_id=sample_subscription.tenant_id,
        metric_type=UsageMetricType.API_CALLS.value,
        metric_name="api_calls",
        quantity=500,
        total_amount=Decimal("0"),
        period_start=sample_subscription.current_period_start,
        period_end=sample_subscription.current_period_end,
        recorded_at=utcnow(),
        usage_metadata={"source": "gateway"},
    )
    test_db.add(usage_record)
    await test_db.commit()
    await test_db.refresh(usage_record)
    return usage_record
