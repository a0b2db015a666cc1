"""
Subscriptions package - subscription lifecycle, reconciliation, pricing and usage metering.

This package integrates with:
- Stripe: external customers, products, prices and subscriptions

Webhook events from the billing platform are applied through WebhookReconciler,
usage metering and limit alerts live in UsageMeteringService.
"""
