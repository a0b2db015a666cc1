"""
Unit tests for SubscriptionService.

Tests lifecycle logic with a mocked billing provider.
Database interactions are NOT mocked.
"""

import pytest
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

from common.core.exceptions import (
    ConflictError,
    ExternalIntegrationError,
    NotFoundError,
    ValidationError,
)
from packages.subscriptions.exceptions import (
    BusinessRuleViolation,
    InvalidTransitionError,
)
from packages.subscriptions.models.domain.enums import (
    BillingCycle,
    SubscriptionStatus,
)
from packages.subscriptions.models.domain.subscription import (
    SubscriptionExternalUpdate,
    SubscriptionUpdateModel,
)
from packages.subscriptions.models.domain.timestamps import add_months
from packages.subscriptions.models.domain.webhooks import (
    ExternalPrice,
    ExternalRecurring,
    ExternalSubscriptionData,
    ExternalSubscriptionItem,
    ExternalSubscriptionItems,
    from_unix,
)
from packages.subscriptions.repositories.subscription_repository import (
    SubscriptionRepository,
)
from packages.subscriptions.services.subscription_service import SubscriptionService
from tests.conftest import create_test_subscription_entity
from tests.factories.subscription_factory import SubscriptionFactory
from tests.factories.webhook_factory import PERIOD_END_TS, PERIOD_START_TS


@pytest.fixture
def subscription_service(mock_billing_provider):
    """Create SubscriptionService with a mocked billing provider."""
    with patch(
        "packages.subscriptions.services.subscription_service.get_billing_provider",
        return_value=mock_billing_provider,
    ):
        return SubscriptionService()


class TestStatusTransitions:
    """The transition table itself."""

    @pytest.mark.parametrize(
        "source,target",
        [
            (SubscriptionStatus.ACTIVE, SubscriptionStatus.SUSPENDED),
            (SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELED),
            (SubscriptionStatus.TRIAL, SubscriptionStatus.ACTIVE),
            (SubscriptionStatus.TRIAL, SubscriptionStatus.CANCELED),
            (SubscriptionStatus.SUSPENDED, SubscriptionStatus.ACTIVE),
            (SubscriptionStatus.CANCELED, SubscriptionStatus.ACTIVE),
            (SubscriptionStatus.PAST_DUE, SubscriptionStatus.ACTIVE),
            (SubscriptionStatus.UNPAID, SubscriptionStatus.CANCELED),
            (SubscriptionStatus.PENDING, SubscriptionStatus.ACTIVE),
            (SubscriptionStatus.INACTIVE, SubscriptionStatus.ACTIVE),
            (SubscriptionStatus.EXPIRED, SubscriptionStatus.ACTIVE),
        ],
    )
    def test_allowed(self, source, target):
        assert source.can_transition_to(target)

    @pytest.mark.parametrize(
        "source,target",
        [
            (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIAL),
            (SubscriptionStatus.CANCELED, SubscriptionStatus.SUSPENDED),
            (SubscriptionStatus.UNPAID, SubscriptionStatus.ACTIVE),
            (SubscriptionStatus.SUSPENDED, SubscriptionStatus.TRIAL),
            (SubscriptionStatus.COMPLETED, SubscriptionStatus.ACTIVE),
        ],
    )
    def test_rejected(self, source, target):
        assert not source.can_transition_to(target)

    def test_completed_is_terminal(self):
        assert SubscriptionStatus.COMPLETED.is_terminal()
        assert not SubscriptionStatus.CANCELED.is_terminal()

    def test_period_months(self):
        assert BillingCycle.MONTHLY.period_months() == 1
        assert BillingCycle.QUARTERLY.period_months() == 3
        assert BillingCycle.ANNUALLY.period_months() == 12
        assert BillingCycle.WEEKLY.period_months() == 1


@patch("common.core.otel_axiom_exporter.axiom_tracer.start_as_current_span")
class TestCreateSubscription:
    """Tests for SubscriptionService.create_subscription."""

    @pytest.mark.asyncio
    async def test_create_subscription(
        self,
        mock_start_span,
        subscription_service,
        mock_billing_provider,
        sample_plan,
    ):
        """Test creating a subscription against a plan."""
        subscription = await subscription_service.create_subscription(
            SubscriptionFactory.create_request(plan_id=sample_plan.id, quantity=2)
        )

        assert subscription.id is not None
        assert subscription.status == SubscriptionStatus.ACTIVE
        assert subscription.is_active is True
        assert subscription.amount == Decimal("50.00")
        assert subscription.unit_price == Decimal("25.00")
        assert subscription.quantity == 2
        assert subscription.features == sample_plan.features
        assert subscription.limits == sample_plan.limits
        assert subscription.subscription_metadata["pricing_rules_applied"] == []

        assert subscription.external_customer_id == "cus_new123"
        assert subscription.external_product_id == "prod_new123"
        assert subscription.external_price_id == "price_new123"
        assert subscription.external_subscription_id == "sub_new123"

        # Period derived locally when the platform reports none
        assert subscription.current_period_start == subscription.start_date
        assert subscription.current_period_end == add_months(
            subscription.start_date, 1
        )

        mock_billing_provider.create_external_subscription.assert_called_once()
        call_args = mock_billing_provider.create_external_subscription.call_args
        assert call_args.args == ("cus_new123", "price_new123")
        assert call_args.kwargs["quantity"] == 1
        assert call_args.kwargs["metadata"] == {"tenant_id": "10", "user_id": "20"}

    @pytest.mark.asyncio
    async def test_create_prices_whole_quantity(
        self, mock_start_span, subscription_service, mock_billing_provider
    ):
        await subscription_service.create_subscription(
            SubscriptionFactory.create_request(amount=Decimal("10.00"), quantity=10)
        )

        price_args = mock_billing_provider.create_price.call_args
        assert price_args.args[1] == Decimal("80.00")

    @pytest.mark.asyncio
    async def test_create_uses_platform_period(
        self, mock_start_span, subscription_service, mock_billing_provider
    ):
        mock_billing_provider.create_external_subscription.return_value = (
            ExternalSubscriptionData(
                id="sub_new123",
                status="active",
                current_period_start=PERIOD_START_TS,
                current_period_end=PERIOD_END_TS,
            )
        )

        subscription = await subscription_service.create_subscription(
            SubscriptionFactory.create_request()
        )

        assert subscription.current_period_start == from_unix(PERIOD_START_TS)
        assert subscription.current_period_end == from_unix(PERIOD_END_TS)

    @pytest.mark.asyncio
    async def test_create_trial_subscription(
        self, mock_start_span, subscription_service, mock_billing_provider
    ):
        subscription = await subscription_service.create_subscription(
            SubscriptionFactory.create_request(is_trial=True, trial_days=14)
        )

        assert subscription.status == SubscriptionStatus.TRIAL
        assert subscription.is_trial is True
        assert subscription.trial_end_date == subscription.start_date + timedelta(
            days=14
        )
        call_args = mock_billing_provider.create_external_subscription.call_args
        assert call_args.kwargs["trial_days"] == 14

    @pytest.mark.asyncio
    async def test_create_duplicate_active_fails(
        self,
        mock_start_span,
        subscription_service,
        mock_billing_provider,
        sample_subscription,
    ):
        """A second ACTIVE subscription for the same tenant and user is rejected."""
        with pytest.raises(ConflictError) as exc_info:
            await subscription_service.create_subscription(
                SubscriptionFactory.create_request(
                    tenant_id=sample_subscription.tenant_id,
                    user_id=sample_subscription.user_id,
                )
            )

        assert "already exists" in str(exc_info.value)
        mock_billing_provider.create_customer.assert_not_called()

    @pytest.mark.asyncio
    async def test_create_allowed_beside_canceled(
        self, mock_start_span, subscription_service, canceled_subscription
    ):
        subscription = await subscription_service.create_subscription(
            SubscriptionFactory.create_request(
                tenant_id=canceled_subscription.tenant_id,
                user_id=canceled_subscription.user_id,
            )
        )

        assert subscription.status == SubscriptionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_create_invalid_request(
        self, mock_start_span, subscription_service, mock_billing_provider
    ):
        with pytest.raises(ValidationError) as exc_info:
            await subscription_service.create_subscription(
                SubscriptionFactory.create_request(amount=Decimal("0"), name=" ")
            )

        assert "Valid amount is required" in exc_info.value.errors
        assert "Subscription name is required" in exc_info.value.errors
        mock_billing_provider.create_customer.assert_not_called()

    @pytest.mark.asyncio
    async def test_create_missing_plan(self, mock_start_span, subscription_service):
        with pytest.raises(NotFoundError):
            await subscription_service.create_subscription(
                SubscriptionFactory.create_request(plan_id=999)
            )

    @pytest.mark.asyncio
    async def test_create_inactive_plan(
        self, mock_start_span, subscription_service, inactive_plan
    ):
        with pytest.raises(ValidationError):
            await subscription_service.create_subscription(
                SubscriptionFactory.create_request(plan_id=inactive_plan.id)
            )

    @pytest.mark.asyncio
    async def test_create_feature_outside_plan(
        self, mock_start_span, subscription_service, sample_plan
    ):
        with pytest.raises(ValidationError) as exc_info:
            await subscription_service.create_subscription(
                SubscriptionFactory.create_request(
                    plan_id=sample_plan.id, features={"sso": True}
                )
            )

        assert exc_info.value.errors == [
            "Feature 'sso' is not available in the selected plan"
        ]

    @pytest.mark.asyncio
    async def test_create_continues_without_customer(
        self, mock_start_span, subscription_service, mock_billing_provider
    ):
        """Customer creation failure leaves the subscription unlinked."""
        mock_billing_provider.create_customer.side_effect = Exception("API down")

        subscription = await subscription_service.create_subscription(
            SubscriptionFactory.create_request()
        )

        assert subscription.external_customer_id is None
        assert subscription.external_subscription_id is None
        assert subscription.external_price_id == "price_new123"
        mock_billing_provider.create_external_subscription.assert_not_called()

    @pytest.mark.asyncio
    async def test_create_external_subscription_failure(
        self, mock_start_span, subscription_service, mock_billing_provider
    ):
        mock_billing_provider.create_external_subscription.side_effect = Exception(
            "card declined"
        )

        with pytest.raises(ExternalIntegrationError):
            await subscription_service.create_subscription(
                SubscriptionFactory.create_request()
            )

        assert await SubscriptionRepository().list_by_user(10, 20) == []

    @pytest.mark.asyncio
    async def test_create_with_existing_external_ids(
        self, mock_start_span, subscription_service, mock_billing_provider
    ):
        subscription = await subscription_service.create_subscription(
            SubscriptionFactory.create_request(
                external_subscription_id="sub_existing",
                external_customer_id="cus_existing",
                external_price_id="price_existing",
            )
        )

        assert subscription.external_subscription_id == "sub_existing"
        mock_billing_provider.create_customer.assert_not_called()
        mock_billing_provider.create_external_subscription.assert_not_called()

    @pytest.mark.asyncio
    async def test_create_keeps_supplied_customer_and_price(
        self, mock_start_span, subscription_service, mock_billing_provider
    ):
        """Test that supplied customer and price IDs are used, not recreated."""
        subscription = await subscription_service.create_subscription(
            SubscriptionFactory.create_request(
                external_customer_id="cus_supplied",
                external_price_id="price_supplied",
            )
        )

        assert subscription.external_customer_id == "cus_supplied"
        assert subscription.external_price_id == "price_supplied"
        assert subscription.external_subscription_id == "sub_new123"
        mock_billing_provider.create_customer.assert_not_called()
        mock_billing_provider.create_product.assert_not_called()
        mock_billing_provider.create_price.assert_not_called()
        mock_billing_provider.create_external_subscription.assert_called_once()
        args = mock_billing_provider.create_external_subscription.call_args.args
        assert args == ("cus_supplied", "price_supplied")

    @pytest.mark.asyncio
    async def test_create_duplicate_external_id(
        self, mock_start_span, subscription_service, sample_subscription
    ):
        with pytest.raises(ConflictError) as exc_info:
            await subscription_service.create_subscription(
                SubscriptionFactory.create_request(
                    external_subscription_id=sample_subscription.external_subscription_id,
                    external_customer_id="cus_other",
                    external_price_id="price_other",
                )
            )

        assert "already linked" in str(exc_info.value)


@patch("common.core.otel_axiom_exporter.axiom_tracer.start_as_current_span")
class TestRegisterExternalSubscription:
    """Tests for SubscriptionService.register_external_subscription."""

    @pytest.fixture
    def external_subscription(self):
        return ExternalSubscriptionData(
            id="sub_ext123",
            customer="cus_ext123",
            status="active",
            current_period_start=PERIOD_START_TS,
            current_period_end=PERIOD_END_TS,
            metadata={"name": "Imported plan", "tenant_id": "10", "user_id": "20"},
            items=ExternalSubscriptionItems(
                data=[
                    ExternalSubscriptionItem(
                        id="si_ext123",
                        quantity=2,
                        price=ExternalPrice(
                            id="price_ext123",
                            unit_amount=1500,
                            currency="eur",
                            recurring=ExternalRecurring(
                                interval="month", interval_count=3
                            ),
                        ),
                    )
                ]
            ),
        )

    @pytest.mark.asyncio
    async def test_register(
        self, mock_start_span, subscription_service, external_subscription
    ):
        subscription = await subscription_service.register_external_subscription(
            10, 20, external_subscription, SubscriptionStatus.ACTIVE
        )

        assert subscription.name == "Imported plan"
        assert subscription.amount == Decimal("30.00")
        assert subscription.currency == "EUR"
        assert subscription.quantity == 2
        assert subscription.billing_cycle == BillingCycle.QUARTERLY
        assert subscription.external_price_id == "price_ext123"
        assert subscription.external_customer_id == "cus_ext123"
        assert subscription.current_period_start == external_subscription.period_start

    @pytest.mark.asyncio
    async def test_register_twice_returns_none(
        self, mock_start_span, subscription_service, external_subscription
    ):
        await subscription_service.register_external_subscription(
            10, 20, external_subscription, SubscriptionStatus.ACTIVE
        )

        again = await subscription_service.register_external_subscription(
            10, 20, external_subscription, SubscriptionStatus.ACTIVE
        )

        assert again is None

    @pytest.mark.asyncio
    async def test_register_respects_one_active(
        self,
        mock_start_span,
        subscription_service,
        external_subscription,
        sample_subscription,
    ):
        with pytest.raises(ConflictError):
            await subscription_service.register_external_subscription(
                sample_subscription.tenant_id,
                sample_subscription.user_id,
                external_subscription,
                SubscriptionStatus.ACTIVE,
            )

    @pytest.mark.asyncio
    async def test_register_inactive_beside_active(
        self,
        mock_start_span,
        subscription_service,
        external_subscription,
        sample_subscription,
    ):
        subscription = await subscription_service.register_external_subscription(
            sample_subscription.tenant_id,
            sample_subscription.user_id,
            external_subscription,
            SubscriptionStatus.PAST_DUE,
        )

        assert subscription.status == SubscriptionStatus.PAST_DUE
        assert subscription.is_active is False


@patch("common.core.otel_axiom_exporter.axiom_tracer.start_as_current_span")
class TestUpdateSubscription:
    """Tests for SubscriptionService.update_subscription."""

    @pytest.mark.asyncio
    async def test_update_name(
        self, mock_start_span, subscription_service, sample_subscription
    ):
        updated = await subscription_service.update_subscription(
            sample_subscription.id, SubscriptionUpdateModel(name="Renamed")
        )

        assert updated.name == "Renamed"
        assert updated.status == SubscriptionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_update_status_transition(
        self, mock_start_span, subscription_service, sample_subscription
    ):
        updated = await subscription_service.update_subscription(
            sample_subscription.id,
            SubscriptionUpdateModel(status=SubscriptionStatus.SUSPENDED),
        )

        assert updated.status == SubscriptionStatus.SUSPENDED
        assert updated.is_active is False

    @pytest.mark.asyncio
    async def test_update_invalid_transition(
        self, mock_start_span, subscription_service, sample_subscription
    ):
        with pytest.raises(InvalidTransitionError) as exc_info:
            await subscription_service.update_subscription(
                sample_subscription.id,
                SubscriptionUpdateModel(status=SubscriptionStatus.TRIAL),
            )

        assert exc_info.value.source == SubscriptionStatus.ACTIVE
        assert exc_info.value.target == SubscriptionStatus.TRIAL

    @pytest.mark.asyncio
    async def test_update_pending_to_active_respects_one_active(
        self,
        mock_start_span,
        subscription_service,
        sample_subscription,
        test_db,
    ):
        pending = create_test_subscription_entity(
            status=SubscriptionStatus.PENDING.value, is_active=False
        )
        test_db.add(pending)
        await test_db.commit()

        with pytest.raises(ConflictError):
            await subscription_service.update_subscription(
                pending.id, SubscriptionUpdateModel(status=SubscriptionStatus.ACTIVE)
            )

    @pytest.mark.asyncio
    async def test_update_not_updatable(
        self, mock_start_span, subscription_service, canceled_subscription
    ):
        with pytest.raises(BusinessRuleViolation):
            await subscription_service.update_subscription(
                canceled_subscription.id, SubscriptionUpdateModel(name="Renamed")
            )

    @pytest.mark.asyncio
    async def test_update_validation_error(
        self, mock_start_span, subscription_service, sample_subscription
    ):
        with pytest.raises(ValidationError) as exc_info:
            await subscription_service.update_subscription(
                sample_subscription.id, SubscriptionUpdateModel(amount=Decimal("-5"))
            )

        assert exc_info.value.errors == ["New amount cannot be negative"]

    @pytest.mark.asyncio
    async def test_update_not_found(self, mock_start_span, subscription_service):
        with pytest.raises(NotFoundError):
            await subscription_service.update_subscription(
                999, SubscriptionUpdateModel(name="Renamed")
            )

    @pytest.mark.asyncio
    async def test_update_syncs_quantity(
        self,
        mock_start_span,
        subscription_service,
        mock_billing_provider,
        sample_subscription,
    ):
        updated = await subscription_service.update_subscription(
            sample_subscription.id, SubscriptionUpdateModel(quantity=3)
        )

        assert updated.quantity == 3
        mock_billing_provider.update_external_subscription.assert_called_once_with(
            "sub_test123", price_id=None, quantity=3, metadata=None
        )

    @pytest.mark.asyncio
    async def test_update_sync_failure_keeps_local_change(
        self,
        mock_start_span,
        subscription_service,
        mock_billing_provider,
        sample_subscription,
    ):
        mock_billing_provider.update_external_subscription.side_effect = Exception(
            "API down"
        )

        updated = await subscription_service.update_subscription(
            sample_subscription.id, SubscriptionUpdateModel(quantity=4)
        )

        assert updated.quantity == 4

    @pytest.mark.asyncio
    async def test_update_without_sync_fields(
        self,
        mock_start_span,
        subscription_service,
        mock_billing_provider,
        sample_subscription,
    ):
        await subscription_service.update_subscription(
            sample_subscription.id, SubscriptionUpdateModel(notes="VIP")
        )

        mock_billing_provider.update_external_subscription.assert_not_called()


TRANSITION_TABLE = {
    SubscriptionStatus.ACTIVE: {
        SubscriptionStatus.SUSPENDED,
        SubscriptionStatus.CANCELED,
    },
    SubscriptionStatus.TRIAL: {
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.CANCELED,
    },
    SubscriptionStatus.SUSPENDED: {
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.CANCELED,
    },
    SubscriptionStatus.CANCELED: {SubscriptionStatus.ACTIVE},
    SubscriptionStatus.PAST_DUE: {
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.CANCELED,
    },
    SubscriptionStatus.UNPAID: {SubscriptionStatus.CANCELED},
    SubscriptionStatus.PENDING: {
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.CANCELED,
    },
    SubscriptionStatus.INACTIVE: {SubscriptionStatus.ACTIVE},
    SubscriptionStatus.EXPIRED: {SubscriptionStatus.ACTIVE},
    SubscriptionStatus.COMPLETED: set(),
}

REJECTED_PAIRS = [
    (source, target)
    for source in SubscriptionStatus
    for target in SubscriptionStatus
    if source != target and target not in TRANSITION_TABLE[source]
]


@patch("common.core.otel_axiom_exporter.axiom_tracer.start_as_current_span")
class TestRejectedTransitionsLeaveStatus:
    """Disallowed moves fail with a conflict and leave the stored status alone."""

    async def _add(self, test_db, status: SubscriptionStatus):
        entity = create_test_subscription_entity(
            status=status.value, is_active=status.counts_as_active()
        )
        test_db.add(entity)
        await test_db.commit()
        return entity.id

    def test_table_matches_enum(self, mock_start_span):
        for source, targets in TRANSITION_TABLE.items():
            assert source.allowed_transitions() == targets

    @pytest.mark.asyncio
    @pytest.mark.parametrize("source,target", REJECTED_PAIRS)
    async def test_update_status_rejected(
        self, mock_start_span, subscription_service, test_db, source, target
    ):
        subscription_id = await self._add(test_db, source)

        with pytest.raises(ConflictError):
            await subscription_service.update_subscription(
                subscription_id, SubscriptionUpdateModel(status=target)
            )

        stored = await subscription_service.get_subscription(subscription_id)
        assert stored.status == source

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "source",
        [
            s
            for s in SubscriptionStatus
            if s
            not in (
                SubscriptionStatus.ACTIVE,
                SubscriptionStatus.TRIAL,
                SubscriptionStatus.PENDING,
            )
        ],
    )
    async def test_cancel_rejected(
        self, mock_start_span, subscription_service, test_db, source
    ):
        subscription_id = await self._add(test_db, source)

        with pytest.raises(ConflictError):
            await subscription_service.cancel_subscription(
                subscription_id, "no longer needed"
            )

        stored = await subscription_service.get_subscription(subscription_id)
        assert stored.status == source

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "source", [s for s in SubscriptionStatus if s != SubscriptionStatus.CANCELED]
    )
    async def test_reactivate_rejected(
        self, mock_start_span, subscription_service, test_db, source
    ):
        subscription_id = await self._add(test_db, source)

        with pytest.raises(ConflictError):
            await subscription_service.reactivate_subscription(subscription_id)

        stored = await subscription_service.get_subscription(subscription_id)
        assert stored.status == source

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "source", [s for s in SubscriptionStatus if s != SubscriptionStatus.ACTIVE]
    )
    async def test_suspend_rejected(
        self, mock_start_span, subscription_service, test_db, source
    ):
        subscription_id = await self._add(test_db, source)

        with pytest.raises(ConflictError):
            await subscription_service.suspend_subscription(
                subscription_id, "fraud review"
            )

        stored = await subscription_service.get_subscription(subscription_id)
        assert stored.status == source


@patch("common.core.otel_axiom_exporter.axiom_tracer.start_as_current_span")
class TestCancelSubscription:
    """Tests for SubscriptionService.cancel_subscription."""

    @pytest.mark.asyncio
    async def test_cancel_immediately(
        self,
        mock_start_span,
        subscription_service,
        mock_billing_provider,
        sample_subscription,
    ):
        canceled = await subscription_service.cancel_subscription(
            sample_subscription.id, reason="too_expensive"
        )

        assert canceled.status == SubscriptionStatus.CANCELED
        assert canceled.is_active is False
        assert canceled.cancel_reason == "too_expensive"
        assert canceled.canceled_at is not None
        assert canceled.end_date is not None
        assert canceled.cancel_at_period_end is False
        mock_billing_provider.cancel_external_subscription.assert_called_once_with(
            "sub_test123", at_period_end=False
        )

    @pytest.mark.asyncio
    async def test_cancel_at_period_end(
        self,
        mock_start_span,
        subscription_service,
        mock_billing_provider,
        sample_subscription,
    ):
        canceled = await subscription_service.cancel_subscription(
            sample_subscription.id, cancel_at_period_end=True
        )

        assert canceled.status == SubscriptionStatus.CANCELED
        assert canceled.cancel_at_period_end is True
        assert canceled.cancel_at == sample_subscription.current_period_end
        assert canceled.end_date is None
        mock_billing_provider.cancel_external_subscription.assert_called_once_with(
            "sub_test123", at_period_end=True
        )

    @pytest.mark.asyncio
    async def test_cancel_trial(
        self, mock_start_span, subscription_service, trial_subscription
    ):
        canceled = await subscription_service.cancel_subscription(
            trial_subscription.id
        )

        assert canceled.status == SubscriptionStatus.CANCELED

    @pytest.mark.asyncio
    async def test_cancel_without_notifying_billing(
        self,
        mock_start_span,
        subscription_service,
        mock_billing_provider,
        sample_subscription,
    ):
        await subscription_service.cancel_subscription(
            sample_subscription.id, notify_billing=False
        )

        mock_billing_provider.cancel_external_subscription.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancel_billing_failure_keeps_local_cancel(
        self,
        mock_start_span,
        subscription_service,
        mock_billing_provider,
        sample_subscription,
    ):
        mock_billing_provider.cancel_external_subscription.side_effect = Exception(
            "API down"
        )

        canceled = await subscription_service.cancel_subscription(
            sample_subscription.id
        )

        assert canceled.status == SubscriptionStatus.CANCELED

    @pytest.mark.asyncio
    async def test_cancel_already_canceled(
        self, mock_start_span, subscription_service, canceled_subscription
    ):
        with pytest.raises(InvalidTransitionError):
            await subscription_service.cancel_subscription(canceled_subscription.id)

    @pytest.mark.asyncio
    async def test_cancel_past_due_rejected(
        self, mock_start_span, subscription_service, past_due_subscription
    ):
        with pytest.raises(InvalidTransitionError):
            await subscription_service.cancel_subscription(past_due_subscription.id)


@patch("common.core.otel_axiom_exporter.axiom_tracer.start_as_current_span")
class TestReactivateSuspendDelete:
    """Tests for reactivate, suspend and delete."""

    @pytest.mark.asyncio
    async def test_reactivate(
        self,
        mock_start_span,
        subscription_service,
        mock_billing_provider,
        canceled_subscription,
    ):
        reactivated = await subscription_service.reactivate_subscription(
            canceled_subscription.id
        )

        assert reactivated.status == SubscriptionStatus.ACTIVE
        assert reactivated.is_active is True
        assert reactivated.canceled_at is None
        assert reactivated.cancel_reason is None
        assert reactivated.end_date is None
        mock_billing_provider.reactivate_external_subscription.assert_called_once_with(
            "sub_canceled123"
        )

    @pytest.mark.asyncio
    async def test_reactivate_external_failure_is_logged(
        self,
        mock_start_span,
        subscription_service,
        mock_billing_provider,
        canceled_subscription,
    ):
        mock_billing_provider.reactivate_external_subscription.side_effect = (
            Exception("API down")
        )

        reactivated = await subscription_service.reactivate_subscription(
            canceled_subscription.id
        )

        assert reactivated.status == SubscriptionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_reactivate_only_canceled(
        self, mock_start_span, subscription_service, sample_subscription
    ):
        with pytest.raises(InvalidTransitionError):
            await subscription_service.reactivate_subscription(sample_subscription.id)

    @pytest.mark.asyncio
    async def test_reactivate_respects_one_active(
        self, mock_start_span, subscription_service, sample_subscription, test_db
    ):
        old = create_test_subscription_entity(
            status=SubscriptionStatus.CANCELED.value, is_active=False
        )
        test_db.add(old)
        await test_db.commit()

        with pytest.raises(ConflictError):
            await subscription_service.reactivate_subscription(old.id)

    @pytest.mark.asyncio
    async def test_suspend(
        self, mock_start_span, subscription_service, sample_subscription
    ):
        suspended = await subscription_service.suspend_subscription(
            sample_subscription.id, reason="fraud_review"
        )

        assert suspended.status == SubscriptionStatus.SUSPENDED
        assert suspended.is_active is False
        assert suspended.suspended_at is not None
        assert suspended.suspension_reason == "fraud_review"

    @pytest.mark.asyncio
    async def test_suspend_only_active(
        self, mock_start_span, subscription_service, trial_subscription
    ):
        with pytest.raises(InvalidTransitionError):
            await subscription_service.suspend_subscription(trial_subscription.id)

    @pytest.mark.asyncio
    async def test_delete(
        self, mock_start_span, subscription_service, sample_subscription
    ):
        await subscription_service.delete_subscription(sample_subscription.id)

        with pytest.raises(NotFoundError):
            await subscription_service.get_subscription(sample_subscription.id)

    @pytest.mark.asyncio
    async def test_delete_frees_active_slot(
        self, mock_start_span, subscription_service, sample_subscription
    ):
        await subscription_service.delete_subscription(sample_subscription.id)

        subscription = await subscription_service.create_subscription(
            SubscriptionFactory.create_request(
                tenant_id=sample_subscription.tenant_id,
                user_id=sample_subscription.user_id,
            )
        )

        assert subscription.status == SubscriptionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_delete_completed_rejected(
        self, mock_start_span, subscription_service, completed_subscription
    ):
        with pytest.raises(BusinessRuleViolation):
            await subscription_service.delete_subscription(completed_subscription.id)

    @pytest.mark.asyncio
    async def test_delete_not_found(self, mock_start_span, subscription_service):
        with pytest.raises(NotFoundError):
            await subscription_service.delete_subscription(999)


@patch("common.core.otel_axiom_exporter.axiom_tracer.start_as_current_span")
class TestExternalUpdatesAndReads:
    """Tests for apply_external_update and the read operations."""

    @pytest.mark.asyncio
    async def test_apply_external_update_bypasses_transitions(
        self, mock_start_span, subscription_service, completed_subscription
    ):
        updated = await subscription_service.apply_external_update(
            "sub_completed123",
            SubscriptionExternalUpdate(status=SubscriptionStatus.ACTIVE, is_active=True),
        )

        assert updated.status == SubscriptionStatus.ACTIVE
        assert updated.is_active is True

    @pytest.mark.asyncio
    async def test_apply_external_update_only_sets_given_fields(
        self, mock_start_span, subscription_service, sample_subscription
    ):
        updated = await subscription_service.apply_external_update(
            "sub_test123", SubscriptionExternalUpdate(cancel_at_period_end=True)
        )

        assert updated.cancel_at_period_end is True
        assert updated.status == SubscriptionStatus.ACTIVE
        assert updated.current_period_end == sample_subscription.current_period_end

    @pytest.mark.asyncio
    async def test_apply_external_update_merges_metadata(
        self, mock_start_span, subscription_service, test_db
    ):
        entity = create_test_subscription_entity(
            user_id=12,
            external_subscription_id="sub_meta123",
            subscription_metadata={"source": "import"},
        )
        test_db.add(entity)
        await test_db.commit()

        await subscription_service.apply_external_update(
            "sub_meta123",
            SubscriptionExternalUpdate(subscription_metadata={"campaign": "spring"}),
        )
        updated = await subscription_service.apply_external_update(
            "sub_meta123",
            SubscriptionExternalUpdate(
                subscription_metadata={"seats": "5", "campaign": "summer"}
            ),
        )

        assert updated.subscription_metadata == {
            "source": "import",
            "campaign": "summer",
            "seats": "5",
        }

    @pytest.mark.asyncio
    async def test_apply_external_update_unknown(
        self, mock_start_span, subscription_service
    ):
        updated = await subscription_service.apply_external_update(
            "sub_unknown", SubscriptionExternalUpdate(status=SubscriptionStatus.ACTIVE)
        )

        assert updated is None

    @pytest.mark.asyncio
    async def test_find_by_external_id(
        self, mock_start_span, subscription_service, sample_subscription
    ):
        found = await subscription_service.find_by_external_id("sub_test123")

        assert found.id == sample_subscription.id

    @pytest.mark.asyncio
    async def test_list_by_tenant_with_status(
        self,
        mock_start_span,
        subscription_service,
        sample_subscription,
        trial_subscription,
        canceled_subscription,
    ):
        all_subscriptions = await subscription_service.list_by_tenant(1)
        trials = await subscription_service.list_by_tenant(
            1, status=SubscriptionStatus.TRIAL
        )

        assert len(all_subscriptions) == 3
        assert [s.id for s in trials] == [trial_subscription.id]

    @pytest.mark.asyncio
    async def test_list_by_user(
        self,
        mock_start_span,
        subscription_service,
        sample_subscription,
        trial_subscription,
    ):
        subscriptions = await subscription_service.list_by_user(1, 1)

        assert [s.id for s in subscriptions] == [sample_subscription.id]

    @pytest.mark.asyncio
    async def test_calculate_proration(
        self, mock_start_span, subscription_service, sample_subscription
    ):
        result = await subscription_service.calculate_proration(
            sample_subscription.id,
            Decimal("99.99"),
            sample_subscription.current_period_start + timedelta(days=10),
        )

        assert result.total_days == 30
        assert result.days_used == 10
        assert result.charge_amount > 0

    @pytest.mark.asyncio
    async def test_calculate_proration_missing(
        self, mock_start_span, subscription_service
    ):
        result = await subscription_service.calculate_proration(999, Decimal("10"))

        assert result.proration_amount == Decimal("0.00")
        assert result.total_days == 0

    @pytest.mark.asyncio
    async def test_no_other_active_after_reactivate_of_other_user(
        self,
        mock_start_span,
        subscription_service,
        sample_subscription,
        canceled_subscription,
    ):
        await subscription_service.reactivate_subscription(canceled_subscription.id)

        active = [
            s
            for s in await subscription_service.list_by_tenant(1)
            if s.status.counts_as_active()
        ]
        assert {s.user_id for s in active} == {1, 3}
