"""Billing platform webhook reconciliation."""

from packages.subscriptions.webhooks.reconciler import (
    WebhookReconciler,
    TenantResolver,
    MetadataTenantResolver,
    map_external_status,
    parse_signed_event,
)

__all__ = [
    "WebhookReconciler",
    "TenantResolver",
    "MetadataTenantResolver",
    "map_external_status",
    "parse_signed_event",
]
