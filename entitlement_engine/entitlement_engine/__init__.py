"""Entitlement reconciliation core: tiers, trial clock, reconciler, and pause control."""

__version__ = "0.4.0"
