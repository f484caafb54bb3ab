"""API router modules for the entitlements service."""

from __future__ import annotations

from api.routers import entitlements, health, metrics, pause

__all__ = [
    "entitlements",
    "health",
    "metrics",
    "pause",
]
