"""Entitlements HTTP API: FastAPI application, routers, and services."""

__version__ = "0.4.0"
