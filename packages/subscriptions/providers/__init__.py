"""Billing platform providers."""
