"""
Service for the subscription lifecycle.

Two write paths exist:
- API-driven mutations (create/update/cancel/reactivate/suspend/delete) run
  validation and the transition table before writing.
- apply_external_update() sets fields reported by the billing platform as-is.
  The platform is authoritative for those fields, so no local rule may block
  them.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from common.core.exceptions import (
    ConflictError,
    ExternalIntegrationError,
    NotFoundError,
    ValidationError,
)
from common.core.otel_axiom_exporter import trace_span, get_logger
from common.db.context import readonly, transactional
from common.db.scoped import transaction
from packages.subscriptions.exceptions import (
    BusinessRuleViolation,
    InvalidTransitionError,
)
from packages.subscriptions.models.domain.enums import (
    BillingCycle,
    SubscriptionStatus,
)
from packages.subscriptions.models.domain.plan import SubscriptionPlan
from packages.subscriptions.models.domain.pricing import ProrationResult
from packages.subscriptions.models.domain.rules import (
    BusinessRuleResult,
    ValidationResult,
)
from packages.subscriptions.models.domain.subscription import (
    Subscription,
    SubscriptionCreateModel,
    SubscriptionInsertModel,
    SubscriptionUpdateModel,
    SubscriptionLifecycleUpdate,
    SubscriptionExternalUpdate,
)
from packages.subscriptions.models.domain.timestamps import (
    add_months,
    as_naive_utc,
    utcnow,
)
from packages.subscriptions.models.domain.webhooks import (
    ExternalSubscriptionData,
    from_unix,
)
from packages.subscriptions.providers.billing.factory import get_billing_provider
from packages.subscriptions.repositories.plan_repository import (
    SubscriptionPlanRepository,
)
from packages.subscriptions.repositories.subscription_repository import (
    SubscriptionRepository,
)
from packages.subscriptions.services.business_rules_service import (
    BusinessRulesService,
)
from packages.subscriptions.services.pricing_service import (
    PricingService,
    billing_cycle_for,
    billing_interval,
)
from packages.subscriptions.services.validation_service import (
    SubscriptionValidationService,
)

logger = get_logger(__name__)

# Fields pushed to the billing platform when they change locally
_EXTERNAL_SYNC_FIELDS = ("external_price_id", "quantity", "subscription_metadata")


class SubscriptionService:
    """Service for subscription lifecycle management."""

    def __init__(self):
        self.subscription_repo = SubscriptionRepository()
        self.plan_repo = SubscriptionPlanRepository()
        self.pricing = PricingService()
        self.validator = SubscriptionValidationService()
        self.rules = BusinessRulesService(usage_service=self.validator.usage_service)
        self.billing = get_billing_provider()

    # Helpers

    async def _get_for_update_or_raise(self, subscription_id: int) -> Subscription:
        subscription = await self.subscription_repo.get_for_update(subscription_id)
        if not subscription:
            raise NotFoundError(f"Subscription {subscription_id} not found")
        return subscription

    async def _ensure_no_other_active(
        self, tenant_id: int, user_id: int, exclude_id: Optional[int] = None
    ) -> None:
        """
        Enforce at most one ACTIVE or TRIAL subscription per (tenant, user).

        Must run inside transaction(): the advisory lock is held until the
        write that follows commits.
        """
        await self.subscription_repo.acquire_tenant_user_lock(tenant_id, user_id)
        count = await self.subscription_repo.count_active_by_tenant_user(
            tenant_id, user_id, exclude_id=exclude_id
        )
        if count:
            raise ConflictError(
                "An active subscription already exists for this tenant and user"
            )

    def _raise_if_invalid(self, result: ValidationResult, action: str) -> None:
        for warning in result.warnings:
            logger.warning(
                f"Subscription {action} warning: {warning}",
                extra={"action": action, "warning": warning},
            )
        if not result.is_valid:
            raise ValidationError(
                f"Subscription {action} failed validation: {'; '.join(result.errors)}",
                errors=result.errors,
            )

    async def _cancel_external_quietly(
        self, external_subscription_id: str, at_period_end: bool = False
    ) -> None:
        try:
            await self.billing.cancel_external_subscription(
                external_subscription_id, at_period_end=at_period_end
            )
        except Exception as e:
            logger.error(
                f"Failed to cancel external subscription {external_subscription_id}: {str(e)}",
                extra={
                    "external_subscription_id": external_subscription_id,
                    "error": str(e),
                },
            )

    async def _load_plan(self, plan_id: int) -> SubscriptionPlan:
        plan = await self.plan_repo.get(plan_id)
        if not plan:
            raise NotFoundError(f"Subscription plan {plan_id} not found")
        if not plan.is_active:
            raise ValidationError(f"Subscription plan {plan_id} is not active")
        return plan

    async def _create_external_resources(
        self, data: SubscriptionCreateModel, amount: Decimal
    ) -> dict:
        """
        Create customer, product, price and subscription on the billing platform.

        IDs supplied on the request are kept and only the missing resources
        are created. Customer, product and price failures are logged and
        leave the matching ID unset. Once a customer and price exist, a
        failure to create the subscription itself is fatal.

        Returns:
            external_* fields for the insert, plus "external" with the
            created ExternalSubscriptionData when there is one
        """
        linkage = {
            "external_customer_id": data.external_customer_id,
            "external_product_id": data.external_product_id,
            "external_price_id": data.external_price_id,
        }
        metadata = {"tenant_id": str(data.tenant_id), "user_id": str(data.user_id)}

        if not linkage["external_customer_id"]:
            try:
                linkage["external_customer_id"] = await self.billing.create_customer(
                    data.tenant_id, data.user_id, data.customer_email, data.customer_name
                )
            except Exception as e:
                logger.error(
                    f"Failed to create external customer, continuing without it: {str(e)}",
                    extra={**metadata, "error": str(e)},
                )

        if not linkage["external_price_id"] and not linkage["external_product_id"]:
            try:
                linkage["external_product_id"] = await self.billing.create_product(
                    data.name, data.description, metadata
                )
            except Exception as e:
                logger.error(
                    f"Failed to create external product, continuing without it: {str(e)}",
                    extra={**metadata, "error": str(e)},
                )

        if not linkage["external_price_id"] and linkage["external_product_id"]:
            try:
                linkage["external_price_id"] = await self.billing.create_price(
                    linkage["external_product_id"],
                    amount,
                    data.currency,
                    billing_interval(data.billing_cycle),
                )
            except Exception as e:
                logger.error(
                    f"Failed to create external price, continuing without it: {str(e)}",
                    extra={**metadata, "error": str(e)},
                )

        if linkage.get("external_customer_id") and linkage.get("external_price_id"):
            try:
                external = await self.billing.create_external_subscription(
                    linkage["external_customer_id"],
                    linkage["external_price_id"],
                    quantity=1,  # The price already covers the whole quantity
                    trial_days=data.trial_days if data.is_trial else None,
                    metadata=metadata,
                )
            except ExternalIntegrationError:
                raise
            except Exception as e:
                raise ExternalIntegrationError(
                    f"Failed to create external subscription: {str(e)}"
                ) from e
            linkage["external_subscription_id"] = external.id
            linkage["external"] = external

        return linkage

    # Creation

    @trace_span
    async def create_subscription(self, data: SubscriptionCreateModel) -> Subscription:
        """
        Create a subscription.

        Status starts as TRIAL when is_trial is set, ACTIVE otherwise. The
        requested amount is per unit; the stored amount is the result of the
        pricing rules for the whole quantity.

        Raises:
            ValidationError: invalid request or inactive plan
            NotFoundError: plan_id does not exist
            ConflictError: the user already has an ACTIVE or TRIAL subscription,
                or the external subscription ID is already linked
            ExternalIntegrationError: the billing platform rejected the
                subscription after customer and price were created
        """
        self._raise_if_invalid(self.validator.validate_creation(data), "creation")

        if await self.subscription_repo.count_active_by_tenant_user(
            data.tenant_id, data.user_id
        ):
            raise ConflictError(
                "An active subscription already exists for this tenant and user"
            )

        plan = None
        if data.plan_id is not None:
            plan = await self._load_plan(data.plan_id)
            self._raise_if_invalid(
                self.validator.validate_plan_compatibility(data, plan), "creation"
            )

        features = data.features
        if features is None:
            features = plan.features if plan else {}
        limits = data.limits
        if limits is None:
            limits = plan.limits if plan else {}

        pricing = self.pricing.apply_pricing_rules(
            data.amount, data.billing_cycle, data.quantity, data.pricing_rules
        )

        linkage = {
            "external_subscription_id": data.external_subscription_id,
            "external_customer_id": data.external_customer_id,
            "external_price_id": data.external_price_id,
            "external_product_id": data.external_product_id,
        }
        external: Optional[ExternalSubscriptionData] = None
        if not data.external_subscription_id:
            created = await self._create_external_resources(data, pricing.final_amount)
            external = created.pop("external", None)
            linkage.update(created)

        start_date = as_naive_utc(data.start_date)
        period_start = (external and external.period_start) or start_date
        period_end = (external and external.period_end) or add_months(
            period_start, data.billing_cycle.period_months()
        )

        trial_end_date = as_naive_utc(data.trial_end_date)
        if data.is_trial and trial_end_date is None and data.trial_days:
            trial_end_date = start_date + timedelta(days=data.trial_days)

        insert = SubscriptionInsertModel(
            tenant_id=data.tenant_id,
            user_id=data.user_id,
            plan_id=data.plan_id,
            name=data.name,
            description=data.description,
            status=SubscriptionStatus.TRIAL if data.is_trial else SubscriptionStatus.ACTIVE,
            billing_cycle=data.billing_cycle,
            amount=pricing.final_amount,
            currency=data.currency,
            quantity=data.quantity,
            unit_price=data.amount,
            start_date=start_date,
            end_date=as_naive_utc(data.end_date),
            current_period_start=period_start,
            current_period_end=period_end,
            is_active=True,
            is_trial=data.is_trial,
            trial_days=data.trial_days,
            trial_end_date=trial_end_date,
            auto_renew=data.auto_renew,
            grace_period_days=data.grace_period_days,
            features=features,
            limits=limits,
            subscription_metadata={
                **data.subscription_metadata,
                "pricing_rules_applied": pricing.rules_applied,
            },
            notes=data.notes,
            **linkage,
        )

        try:
            async with transaction():
                await self._ensure_no_other_active(data.tenant_id, data.user_id)
                if insert.external_subscription_id and (
                    await self.subscription_repo.external_id_exists(
                        insert.external_subscription_id
                    )
                ):
                    raise ConflictError(
                        f"External subscription {insert.external_subscription_id} "
                        "is already linked"
                    )
                subscription = await self.subscription_repo.create(insert)
        except ConflictError:
            if external is not None:
                await self._cancel_external_quietly(external.id)
            raise

        logger.info(
            f"Created subscription {subscription.id} for user {data.user_id}",
            extra={
                "subscription_id": subscription.id,
                "tenant_id": data.tenant_id,
                "user_id": data.user_id,
                "status": subscription.status.value,
                "amount": str(subscription.amount),
                "external_subscription_id": subscription.external_subscription_id,
            },
        )

        return subscription

    @trace_span
    async def register_external_subscription(
        self,
        tenant_id: int,
        user_id: int,
        external: ExternalSubscriptionData,
        status: SubscriptionStatus,
    ) -> Optional[Subscription]:
        """
        Insert a subscription that was first created on the billing platform.

        Trusted path: no request validation and no pricing rules; amount and
        cycle are taken from the external subscription's first item.
        Returns None when the external ID is already linked.

        Raises:
            ConflictError: status is ACTIVE/TRIAL and the user already has one
        """
        item = external.first_item()
        price = item.price if item else None
        quantity = (item.quantity if item else None) or 1

        amount = Decimal("0")
        if price and price.unit_amount is not None:
            amount = Decimal(price.unit_amount) / 100 * quantity
        billing_cycle = (
            billing_cycle_for(price.recurring.interval, price.recurring.interval_count)
            if price and price.recurring
            else BillingCycle.MONTHLY
        )
        start_date = external.period_start or utcnow()

        insert = SubscriptionInsertModel(
            tenant_id=tenant_id,
            user_id=user_id,
            name=external.metadata.get("name") or f"Subscription {external.id}",
            status=status,
            billing_cycle=billing_cycle,
            amount=amount,
            currency=(price.currency if price and price.currency else "usd").upper(),
            quantity=quantity,
            start_date=start_date,
            current_period_start=external.period_start,
            current_period_end=external.period_end,
            is_active=status.counts_as_active(),
            is_trial=status == SubscriptionStatus.TRIAL,
            trial_end_date=from_unix(external.trial_end),
            cancel_at_period_end=bool(external.cancel_at_period_end),
            external_subscription_id=external.id,
            external_customer_id=external.customer,
            external_price_id=price.id if price else None,
            subscription_metadata=external.metadata,
        )

        async with transaction():
            if await self.subscription_repo.external_id_exists(external.id):
                logger.info(
                    f"External subscription {external.id} already registered",
                    extra={"external_subscription_id": external.id},
                )
                return None
            if status.counts_as_active():
                await self._ensure_no_other_active(tenant_id, user_id)
            subscription = await self.subscription_repo.create(insert)

        logger.info(
            f"Registered external subscription {external.id} as {subscription.id}",
            extra={
                "subscription_id": subscription.id,
                "external_subscription_id": external.id,
                "tenant_id": tenant_id,
                "user_id": user_id,
            },
        )

        return subscription

    # Mutations

    @trace_span
    async def update_subscription(
        self, subscription_id: int, patch: SubscriptionUpdateModel
    ) -> Subscription:
        """
        Apply an API-driven patch.

        Only ACTIVE, TRIAL and PENDING subscriptions can be updated. A status
        in the patch must be an allowed transition.

        Raises:
            NotFoundError: subscription does not exist
            BusinessRuleViolation: status does not allow updates
            InvalidTransitionError: patch status is not reachable
            ConflictError: patch activates a second subscription for the user
            ValidationError: field validation failed
        """
        changes = patch.model_dump(exclude_unset=True)

        async with transaction():
            subscription = await self._get_for_update_or_raise(subscription_id)
            if not subscription.status.is_updatable():
                raise BusinessRuleViolation(
                    f"Cannot update subscription in status {subscription.status.value}"
                )

            target = changes.get("status")
            if target is not None:
                target = SubscriptionStatus(target)
                if target != subscription.status:
                    if not subscription.status.can_transition_to(target):
                        raise InvalidTransitionError(subscription.status, target)
                    if target.counts_as_active():
                        await self._ensure_no_other_active(
                            subscription.tenant_id,
                            subscription.user_id,
                            exclude_id=subscription.id,
                        )

            self._raise_if_invalid(
                self.validator.validate_update(subscription, patch), "update"
            )

            updated = await self.subscription_repo.update(subscription.id, patch)
            if target is not None and target != subscription.status:
                updated = await self.subscription_repo.update(
                    subscription.id,
                    SubscriptionLifecycleUpdate(is_active=target.counts_as_active()),
                )

        if subscription.external_subscription_id and any(
            field in changes for field in _EXTERNAL_SYNC_FIELDS
        ):
            try:
                await self.billing.update_external_subscription(
                    subscription.external_subscription_id,
                    price_id=changes.get("external_price_id"),
                    quantity=changes.get("quantity"),
                    metadata=changes.get("subscription_metadata"),
                )
            except Exception as e:
                logger.error(
                    f"Failed to sync subscription {subscription.id} to billing platform: {str(e)}",
                    extra={
                        "subscription_id": subscription.id,
                        "external_subscription_id": subscription.external_subscription_id,
                        "error": str(e),
                    },
                )

        logger.info(
            f"Updated subscription {subscription.id}",
            extra={"subscription_id": subscription.id, "fields": sorted(changes)},
        )

        return updated

    @trace_span
    async def cancel_subscription(
        self,
        subscription_id: int,
        reason: Optional[str] = None,
        cancel_at_period_end: bool = False,
        notify_billing: bool = True,
    ) -> Subscription:
        """
        Cancel an ACTIVE, TRIAL or PENDING subscription.

        Status becomes CANCELED right away. With cancel_at_period_end the
        cutover date is recorded in cancel_at; otherwise end_date is now.
        notify_billing=False skips the billing platform, for cancellations
        the platform itself reported.
        """
        now = utcnow()

        async with transaction():
            subscription = await self._get_for_update_or_raise(subscription_id)
            if not subscription.status.is_cancelable():
                raise InvalidTransitionError(
                    subscription.status,
                    SubscriptionStatus.CANCELED,
                    f"Cannot cancel subscription in status {subscription.status.value}",
                )

            validation = self.validator.validate_cancellation(
                subscription, cancel_at_period_end
            )
            self._raise_if_invalid(validation, "cancellation")

            changes = {
                "status": SubscriptionStatus.CANCELED,
                "is_active": False,
                "canceled_at": now,
                "cancel_reason": reason,
                "cancel_at_period_end": cancel_at_period_end,
            }
            if cancel_at_period_end:
                changes["cancel_at"] = subscription.current_period_end
            else:
                changes["end_date"] = now

            updated = await self.subscription_repo.update(
                subscription.id, SubscriptionLifecycleUpdate(**changes)
            )

        if notify_billing and subscription.external_subscription_id:
            await self._cancel_external_quietly(
                subscription.external_subscription_id, at_period_end=cancel_at_period_end
            )

        logger.info(
            f"Canceled subscription {subscription.id}",
            extra={
                "subscription_id": subscription.id,
                "previous_status": subscription.status.value,
                "cancel_reason": reason,
                "cancel_at_period_end": cancel_at_period_end,
            },
        )

        return updated

    @trace_span
    async def reactivate_subscription(self, subscription_id: int) -> Subscription:
        """
        Bring a CANCELED subscription back to ACTIVE.

        Raises:
            InvalidTransitionError: subscription is not CANCELED
            ConflictError: the user already has another ACTIVE or TRIAL one
        """
        async with transaction():
            subscription = await self._get_for_update_or_raise(subscription_id)
            if subscription.status != SubscriptionStatus.CANCELED:
                raise InvalidTransitionError(
                    subscription.status,
                    SubscriptionStatus.ACTIVE,
                    "Only canceled subscriptions can be reactivated",
                )

            await self._ensure_no_other_active(
                subscription.tenant_id, subscription.user_id, exclude_id=subscription.id
            )

            updated = await self.subscription_repo.update(
                subscription.id,
                SubscriptionLifecycleUpdate(
                    status=SubscriptionStatus.ACTIVE,
                    is_active=True,
                    end_date=None,
                    cancel_at_period_end=False,
                    cancel_at=None,
                    canceled_at=None,
                    cancel_reason=None,
                ),
            )

        if subscription.external_subscription_id:
            try:
                await self.billing.reactivate_external_subscription(
                    subscription.external_subscription_id
                )
            except Exception as e:
                logger.error(
                    f"Failed to reactivate external subscription for {subscription.id}: {str(e)}",
                    extra={
                        "subscription_id": subscription.id,
                        "external_subscription_id": subscription.external_subscription_id,
                        "error": str(e),
                    },
                )

        logger.info(
            f"Reactivated subscription {subscription.id}",
            extra={"subscription_id": subscription.id},
        )

        return updated

    @trace_span
    async def suspend_subscription(
        self, subscription_id: int, reason: Optional[str] = None
    ) -> Subscription:
        """Suspend an ACTIVE subscription."""
        async with transaction():
            subscription = await self._get_for_update_or_raise(subscription_id)
            if subscription.status != SubscriptionStatus.ACTIVE:
                raise InvalidTransitionError(
                    subscription.status,
                    SubscriptionStatus.SUSPENDED,
                    "Only active subscriptions can be suspended",
                )

            updated = await self.subscription_repo.update(
                subscription.id,
                SubscriptionLifecycleUpdate(
                    status=SubscriptionStatus.SUSPENDED,
                    is_active=False,
                    suspended_at=utcnow(),
                    suspension_reason=reason,
                ),
            )

        logger.info(
            f"Suspended subscription {subscription.id}",
            extra={"subscription_id": subscription.id, "suspension_reason": reason},
        )

        return updated

    @trace_span
    async def delete_subscription(self, subscription_id: int) -> None:
        """
        Soft delete a subscription. Status is left unchanged.

        Raises:
            BusinessRuleViolation: subscription is COMPLETED
        """
        async with transaction():
            subscription = await self._get_for_update_or_raise(subscription_id)
            if subscription.status.is_terminal():
                raise BusinessRuleViolation(
                    f"Cannot delete subscription in status {subscription.status.value}"
                )

            await self.subscription_repo.update(
                subscription.id, SubscriptionLifecycleUpdate(is_active=False)
            )
            await self.subscription_repo.soft_delete(subscription.id, utcnow())

        logger.info(
            f"Deleted subscription {subscription.id}",
            extra={"subscription_id": subscription.id},
        )

    @trace_span
    @transactional
    async def apply_external_update(
        self, external_subscription_id: str, update: SubscriptionExternalUpdate
    ) -> Optional[Subscription]:
        """
        Set fields reported by the billing platform, bypassing validation and
        the transition table.

        Metadata keys are merged into the stored metadata under the row lock.

        Returns:
            The updated subscription, or None when no local one is linked
        """
        subscription = await self.subscription_repo.find_by_external_id(
            external_subscription_id, for_update=True
        )
        if not subscription:
            return None

        if update.subscription_metadata is not None:
            update = update.model_copy(
                update={
                    "subscription_metadata": {
                        **(subscription.subscription_metadata or {}),
                        **update.subscription_metadata,
                    }
                }
            )

        updated = await self.subscription_repo.update(subscription.id, update)

        logger.info(
            f"Applied external update to subscription {subscription.id}",
            extra={
                "subscription_id": subscription.id,
                "external_subscription_id": external_subscription_id,
                "fields": sorted(update.model_dump(exclude_unset=True)),
            },
        )

        return updated

    # Reads

    @trace_span
    @readonly
    async def get_subscription(self, subscription_id: int) -> Subscription:
        subscription = await self.subscription_repo.get(subscription_id)
        if not subscription:
            raise NotFoundError(f"Subscription {subscription_id} not found")
        return subscription

    @trace_span
    @readonly
    async def find_by_external_id(
        self, external_subscription_id: str
    ) -> Optional[Subscription]:
        return await self.subscription_repo.find_by_external_id(
            external_subscription_id
        )

    @trace_span
    @readonly
    async def list_by_tenant(
        self,
        tenant_id: int,
        status: Optional[SubscriptionStatus] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> list[Subscription]:
        return await self.subscription_repo.list_by_tenant(
            tenant_id, status=status, skip=skip, limit=limit
        )

    @trace_span
    @readonly
    async def list_by_user(self, tenant_id: int, user_id: int) -> list[Subscription]:
        return await self.subscription_repo.list_by_user(tenant_id, user_id)

    # Advisory

    @trace_span
    async def calculate_proration(
        self,
        subscription_id: int,
        new_amount: Decimal,
        effective_date: Optional[datetime] = None,
    ) -> ProrationResult:
        """Proration for changing the amount now. Zero when the subscription is missing."""
        subscription = await self.subscription_repo.get(subscription_id)
        if not subscription:
            logger.warning(
                f"Subscription {subscription_id} not found, skipping proration",
                extra={"subscription_id": subscription_id},
            )
            return ProrationResult()
        return self.pricing.calculate_proration(
            subscription, new_amount, effective_date
        )

    @trace_span
    async def can_upgrade(
        self, subscription_id: int, target_plan_id: int
    ) -> BusinessRuleResult:
        return await self.rules.can_upgrade(subscription_id, target_plan_id)

    @trace_span
    async def can_downgrade(
        self, subscription_id: int, target_plan_id: int
    ) -> BusinessRuleResult:
        return await self.rules.can_downgrade(subscription_id, target_plan_id)

    @trace_span
    async def can_cancel(self, subscription_id: int) -> BusinessRuleResult:
        return await self.rules.can_cancel(subscription_id)
