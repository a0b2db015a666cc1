"""
Billing platform webhook reconciliation.

Applies subscription and invoice events to local subscriptions:
- Subscription lifecycle (created, updated, deleted, trial ending)
- Invoice payment success/failure

The billing platform is the source of truth for the fields it reports, so
changes go through SubscriptionService.apply_external_update and skip local
validation. Every mutation is a plain "set", so redelivered events are
harmless.

A missing local subscription is not an error (events can arrive before the
local row exists); the event is skipped. A malformed payload raises
ValidationError so the caller can fail the delivery and let the platform
retry.
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional, Union

import stripe
from pydantic import BaseModel, ValidationError as PydanticValidationError

from common.core.config import settings
from common.core.exceptions import ConflictError, ValidationError
from common.core.otel_axiom_exporter import trace_span, get_logger
from packages.subscriptions.exceptions import UnhandledEventWarning
from packages.subscriptions.models.domain.enums import SubscriptionStatus
from packages.subscriptions.models.domain.subscription import (
    SubscriptionExternalUpdate,
)
from packages.subscriptions.models.domain.timestamps import utcnow
from packages.subscriptions.models.domain.webhooks import (
    ExternalInvoiceData,
    ExternalSubscriptionData,
    ExternalSubscriptionStatus,
    WebhookEvent,
    WebhookEventType,
    WebhookOutcome,
    WebhookProcessingResult,
    from_unix,
    normalise_event_type,
)
from packages.subscriptions.services.subscription_service import SubscriptionService

logger = get_logger(__name__)

EXTERNAL_STATUS_MAP = {
    ExternalSubscriptionStatus.ACTIVE.value: SubscriptionStatus.ACTIVE,
    ExternalSubscriptionStatus.TRIALING.value: SubscriptionStatus.TRIAL,
    ExternalSubscriptionStatus.PAST_DUE.value: SubscriptionStatus.PAST_DUE,
    ExternalSubscriptionStatus.CANCELED.value: SubscriptionStatus.CANCELED,
    ExternalSubscriptionStatus.UNPAID.value: SubscriptionStatus.UNPAID,
    ExternalSubscriptionStatus.INCOMPLETE.value: SubscriptionStatus.PENDING,
    ExternalSubscriptionStatus.INCOMPLETE_EXPIRED.value: SubscriptionStatus.PENDING,
}

EXTERNAL_DELETED_REASON = "external_deleted"

# (outcome, local subscription id, detail)
HandlerResult = tuple[WebhookOutcome, Optional[int], Optional[str]]


def map_external_status(external_status: str) -> SubscriptionStatus:
    """Map a billing platform status to ours. Unknown values map to INACTIVE."""
    return EXTERNAL_STATUS_MAP.get(external_status, SubscriptionStatus.INACTIVE)


def parse_signed_event(payload: bytes, signature: Optional[str]) -> WebhookEvent:
    """
    Verify the platform's signature header and parse the event envelope.

    Raises:
        ValidationError: missing or invalid signature, or malformed payload
    """
    if not signature:
        raise ValidationError("Missing webhook signature header")

    try:
        stripe.WebhookSignature.verify_header(
            payload.decode("utf-8"), signature, settings.stripe_webhook_secret
        )
    except stripe.SignatureVerificationError as e:
        logger.error(f"Webhook signature verification failed: {str(e)}")
        raise ValidationError("Invalid webhook signature") from e

    try:
        return WebhookEvent.model_validate_json(payload)
    except PydanticValidationError as e:
        logger.error(
            "Invalid webhook envelope", extra={"validation_errors": e.errors()}
        )
        raise ValidationError(
            "Invalid webhook payload", errors=[err["msg"] for err in e.errors()]
        ) from e


class TenantResolver(ABC):
    """Maps a billing platform customer to a local (tenant_id, user_id)."""

    @abstractmethod
    async def resolve(
        self, external_customer_id: Optional[str], metadata: dict[str, Any]
    ) -> Optional[tuple[int, int]]:
        """Return (tenant_id, user_id), or None when the customer is unknown."""
        pass


class MetadataTenantResolver(TenantResolver):
    """
    Reads tenant_id and user_id from the subscription metadata.

    Subscriptions created through SubscriptionService carry both keys.
    """

    async def resolve(
        self, external_customer_id: Optional[str], metadata: dict[str, Any]
    ) -> Optional[tuple[int, int]]:
        try:
            return int(metadata["tenant_id"]), int(metadata["user_id"])
        except (KeyError, TypeError, ValueError):
            return None


class WebhookReconciler:
    """Dispatches billing platform events to per-type handlers."""

    def __init__(
        self,
        subscription_service: Optional[SubscriptionService] = None,
        tenant_resolver: Optional[TenantResolver] = None,
    ):
        self.subscription_service = subscription_service or SubscriptionService()
        self.tenant_resolver = tenant_resolver
        self._handlers: dict[str, Callable[[WebhookEvent], Awaitable[HandlerResult]]] = {
            WebhookEventType.SUBSCRIPTION_CREATED.value: self._handle_subscription_created,
            WebhookEventType.SUBSCRIPTION_UPDATED.value: self._handle_subscription_updated,
            WebhookEventType.SUBSCRIPTION_DELETED.value: self._handle_subscription_deleted,
            WebhookEventType.SUBSCRIPTION_TRIAL_WILL_END.value: self._handle_trial_will_end,
            WebhookEventType.INVOICE_PAYMENT_SUCCEEDED.value: self._handle_payment_succeeded,
            WebhookEventType.INVOICE_PAYMENT_FAILED.value: self._handle_payment_failed,
            WebhookEventType.INVOICE_UPCOMING.value: self._handle_invoice_upcoming,
        }

    @trace_span
    async def process_event(
        self, event: Union[WebhookEvent, dict[str, Any]]
    ) -> WebhookProcessingResult:
        """
        Apply one webhook event.

        Raises:
            ValidationError: the envelope or its data object is malformed
        """
        if not isinstance(event, WebhookEvent):
            event = _parse(WebhookEvent, event)

        logger.info(
            f"Received webhook: {event.type}",
            extra={
                "event_id": event.id,
                "event_type": event.type,
                "livemode": event.livemode,
            },
        )

        handler = self._handlers.get(normalise_event_type(event.type))
        if handler is None:
            warning = UnhandledEventWarning(f"Unhandled webhook type: {event.type}")
            logger.warning(
                str(warning),
                extra={"event_id": event.id, "event_type": event.type},
            )
            return WebhookProcessingResult(
                event_id=event.id,
                event_type=event.type,
                outcome=WebhookOutcome.IGNORED,
                detail=str(warning),
            )

        outcome, subscription_id, detail = await handler(event)

        logger.info(
            f"Webhook {event.id} {outcome.value}",
            extra={
                "event_id": event.id,
                "event_type": event.type,
                "outcome": outcome.value,
                "subscription_id": subscription_id,
                "detail": detail,
            },
        )

        return WebhookProcessingResult(
            event_id=event.id,
            event_type=event.type,
            outcome=outcome,
            subscription_id=subscription_id,
            detail=detail,
        )

    # Subscription events

    async def _handle_subscription_created(self, event: WebhookEvent) -> HandlerResult:
        external = _parse(ExternalSubscriptionData, event.data.object)

        existing = await self.subscription_service.find_by_external_id(external.id)
        if existing:
            return WebhookOutcome.NOOP, existing.id, "Subscription already linked"

        if self.tenant_resolver is None:
            return WebhookOutcome.SKIPPED, None, "No tenant resolver configured"

        resolved = await self.tenant_resolver.resolve(
            external.customer, external.metadata
        )
        if resolved is None:
            return (
                WebhookOutcome.SKIPPED,
                None,
                f"No tenant found for customer {external.customer}",
            )

        tenant_id, user_id = resolved
        try:
            subscription = await self.subscription_service.register_external_subscription(
                tenant_id, user_id, external, map_external_status(external.status)
            )
        except ConflictError as e:
            return WebhookOutcome.SKIPPED, None, str(e)

        if subscription is None:
            return WebhookOutcome.NOOP, None, "Subscription already linked"
        return WebhookOutcome.APPLIED, subscription.id, None

    async def _handle_subscription_updated(self, event: WebhookEvent) -> HandlerResult:
        external = _parse(ExternalSubscriptionData, event.data.object)

        existing = await self.subscription_service.find_by_external_id(external.id)
        if not existing:
            return WebhookOutcome.SKIPPED, None, "No local subscription"

        status = map_external_status(external.status)
        changes = {
            "status": status,
            "is_active": status.counts_as_active(),
            "is_trial": status == SubscriptionStatus.TRIAL,
            "auto_renew": not external.cancel_at_period_end,
            "cancel_at_period_end": bool(external.cancel_at_period_end),
            "subscription_metadata": external.metadata,
        }
        # Bounds the platform left out are kept as they are
        optional = {
            "current_period_start": external.period_start,
            "current_period_end": external.period_end,
            "trial_end_date": from_unix(external.trial_end),
            "canceled_at": from_unix(external.canceled_at),
        }
        changes.update({k: v for k, v in optional.items() if v is not None})

        updated = await self.subscription_service.apply_external_update(
            external.id, SubscriptionExternalUpdate(**changes)
        )
        if updated is None:
            return WebhookOutcome.SKIPPED, None, "No local subscription"
        return WebhookOutcome.APPLIED, updated.id, f"status={status.value}"

    async def _handle_subscription_deleted(self, event: WebhookEvent) -> HandlerResult:
        external = _parse(ExternalSubscriptionData, event.data.object)

        existing = await self.subscription_service.find_by_external_id(external.id)
        if not existing:
            return WebhookOutcome.SKIPPED, None, "No local subscription"

        if existing.status == SubscriptionStatus.CANCELED:
            return WebhookOutcome.NOOP, existing.id, "Already canceled"

        if existing.status.is_cancelable():
            updated = await self.subscription_service.cancel_subscription(
                existing.id,
                EXTERNAL_DELETED_REASON,
                cancel_at_period_end=False,
                notify_billing=False,
            )
            return WebhookOutcome.APPLIED, updated.id, None

        # Not cancelable through the state machine; the platform wins anyway
        updated = await self.subscription_service.apply_external_update(
            external.id,
            SubscriptionExternalUpdate(
                status=SubscriptionStatus.CANCELED,
                is_active=False,
                canceled_at=from_unix(external.canceled_at) or utcnow(),
            ),
        )
        if updated is None:
            return WebhookOutcome.SKIPPED, None, "No local subscription"
        return WebhookOutcome.APPLIED, updated.id, f"forced from {existing.status.value}"

    async def _handle_trial_will_end(self, event: WebhookEvent) -> HandlerResult:
        external = _parse(ExternalSubscriptionData, event.data.object)

        trial_end = from_unix(external.trial_end)
        if trial_end is None:
            return WebhookOutcome.NOOP, None, "No trial end date"

        updated = await self.subscription_service.apply_external_update(
            external.id, SubscriptionExternalUpdate(trial_end_date=trial_end)
        )
        if updated is None:
            return WebhookOutcome.SKIPPED, None, "No local subscription"
        return WebhookOutcome.APPLIED, updated.id, None

    # Invoice events

    async def _handle_payment_succeeded(self, event: WebhookEvent) -> HandlerResult:
        invoice = _parse(ExternalInvoiceData, event.data.object)

        external_id = invoice.subscription_id
        if not external_id:
            return WebhookOutcome.NOOP, None, "Invoice has no subscription"

        existing = await self.subscription_service.find_by_external_id(external_id)
        if not existing:
            return WebhookOutcome.SKIPPED, None, "No local subscription"

        if existing.status != SubscriptionStatus.PAST_DUE:
            return WebhookOutcome.NOOP, existing.id, None

        updated = await self.subscription_service.apply_external_update(
            external_id,
            SubscriptionExternalUpdate(status=SubscriptionStatus.ACTIVE, is_active=True),
        )
        if updated is None:
            return WebhookOutcome.SKIPPED, None, "No local subscription"
        return WebhookOutcome.APPLIED, updated.id, "status=active"

    async def _handle_payment_failed(self, event: WebhookEvent) -> HandlerResult:
        invoice = _parse(ExternalInvoiceData, event.data.object)

        external_id = invoice.subscription_id
        if not external_id:
            return WebhookOutcome.NOOP, None, "Invoice has no subscription"

        logger.warning(
            f"Invoice payment failed: {invoice.id}",
            extra={
                "invoice_id": invoice.id,
                "external_subscription_id": external_id,
                "amount_due": invoice.amount_due,
            },
        )

        updated = await self.subscription_service.apply_external_update(
            external_id,
            SubscriptionExternalUpdate(
                status=SubscriptionStatus.PAST_DUE, is_active=False
            ),
        )
        if updated is None:
            return WebhookOutcome.SKIPPED, None, "No local subscription"
        return WebhookOutcome.APPLIED, updated.id, "status=past_due"

    async def _handle_invoice_upcoming(self, event: WebhookEvent) -> HandlerResult:
        invoice = _parse(ExternalInvoiceData, event.data.object)
        return WebhookOutcome.NOOP, None, f"Upcoming invoice {invoice.id}"


def _parse(model: type[BaseModel], data: Any):
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        logger.error(
            f"Invalid {model.__name__} payload",
            extra={"validation_errors": e.errors()},
        )
        raise ValidationError(
            f"Invalid {model.__name__} payload",
            errors=[err["msg"] for err in e.errors()],
        ) from e
