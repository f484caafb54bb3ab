"""Service layer orchestrating the state store, payment provider, and entitlement core."""
