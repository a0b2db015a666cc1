import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from packages.subscriptions.models.domain.webhooks import ExternalSubscriptionData


@pytest.fixture
def mock_billing_provider():
    """Create a mock billing provider that succeeds on every call."""
    provider = AsyncMock()
    provider.create_customer = AsyncMock(return_value="cus_new123")
    provider.create_product = AsyncMock(return_value="prod_new123")
    provider.create_price = AsyncMock(return_value="price_new123")
    provider.create_external_subscription = AsyncMock(
        return_value=ExternalSubscriptionData(
            id="sub_new123", customer="cus_new123", status="active"
        )
    )
    provider.update_external_subscription = AsyncMock(
        return_value=ExternalSubscriptionData(id="sub_test123", status="active")
    )
    provider.cancel_external_subscription = AsyncMock(return_value=None)
    provider.reactivate_external_subscription = AsyncMock(
        return_value=ExternalSubscriptionData(id="sub_canceled123", status="active")
    )
    provider.health_check = AsyncMock(return_value=True)
    return provider


@pytest.fixture
def mock_span():
    """Create a mock span instance for testing telemetry."""
    span = MagicMock()
    span.__enter__ = MagicMock(return_value=span)
    span.__exit__ = MagicMock(return_value=None)
    span.__aenter__ = AsyncMock(return_value=span)
    span.__aexit__ = AsyncMock(return_value=None)
    return span


@pytest.fixture
def mock_start_span(mock_span):
    """Create a mock start_span function that returns mock_span."""
    with patch(
        "common.core.otel_axiom_exporter.axiom_tracer.start_as_current_span",
        return_value=mock_span,
    ) as mock:
        yield mock
