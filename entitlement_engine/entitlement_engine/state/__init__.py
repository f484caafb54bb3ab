"""State persistence layer using PostgreSQL (SQLite in local mode)."""

from entitlement_engine.state.database import get_engine, get_session
from entitlement_engine.state.repository import (
    PauseStateRepository,
    ProfileRepository,
    SubscriberRepository,
)

__all__ = [
    "PauseStateRepository",
    "ProfileRepository",
    "SubscriberRepository",
    "get_engine",
    "get_session",
]
