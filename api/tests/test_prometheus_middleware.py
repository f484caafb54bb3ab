"""Tests for api/api/middleware/prometheus.py and the /metrics endpoint.

Covers:
- Path normalisation (UUIDs, hex ids, numeric segments)
- Request counter increments
- Skipped paths
- Domain counters exposed by GET /metrics
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from entitlement_engine.errors import ProviderUnavailable, QuotaExhausted
from entitlement_engine.models import EntitlementSnapshot, PauseState, Profile, ProfileRole, SubscriberRecord
from entitlement_engine.state.repository import PauseStateRepository, ProfileRepository, SubscriberRepository
from entitlement_engine.tiers import SubscriptionType, Tier
from prometheus_client import REGISTRY

from api.middleware.prometheus import _SKIP_PATHS, _normalise_path
from api.services.entitlement_service import EntitlementService
from api.services.pause_service import PauseService

# ---------------------------------------------------------------------------
# Path normalisation
# ---------------------------------------------------------------------------


class TestPathNormalisation:
    def test_uuid_collapsed(self) -> None:
        """Profile UUIDs are replaced with {id}."""
        path = "/api/v1/profiles/550e8400-e29b-41d4-a716-446655440000/pause"
        assert _normalise_path(path) == "/api/v1/profiles/{id}/pause"

    def test_long_hex_collapsed(self) -> None:
        assert _normalise_path("/api/v1/profiles/abc123def456/resume") == "/api/v1/profiles/{id}/resume"

    def test_numeric_segment_collapsed(self) -> None:
        assert _normalise_path("/api/v1/profiles/42/pause") == "/api/v1/profiles/{id}/pause"

    def test_version_prefix_unchanged(self) -> None:
        """``/api/v1`` is not mistaken for a numeric id."""
        assert _normalise_path("/api/v1/entitlements/reconcile") == "/api/v1/entitlements/reconcile"

    def test_short_hex_not_collapsed(self) -> None:
        assert _normalise_path("/api/v1/profiles/abc123/pause") == "/api/v1/profiles/abc123/pause"


class TestSkipPaths:
    def test_metrics_and_docs_skipped(self) -> None:
        assert {"/metrics", "/docs", "/redoc", "/openapi.json", "/favicon.ico"} <= _SKIP_PATHS


# ---------------------------------------------------------------------------
# Endpoint and counters
# ---------------------------------------------------------------------------


def _sample(name: str, labels: dict[str, str]) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


class TestMetricsEndpoint:
    @pytest.mark.asyncio
    async def test_public_and_text_format(self, anon_client) -> None:
        """GET /metrics needs no token and returns the exposition format."""
        resp = await anon_client.get("/metrics")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/plain")
        assert "entitlements_reconciliations_total" in resp.text

    @pytest.mark.asyncio
    async def test_requests_are_counted(self, client, mock_entitlement_service) -> None:
        labels = {"method": "POST", "path": "/api/v1/entitlements/reconcile", "status_code": "200"}
        before = _sample("entitlements_http_requests_total", labels)
        mock_entitlement_service.reconcile.return_value = EntitlementSnapshot()

        resp = await client.post("/api/v1/entitlements/reconcile")

        assert resp.status_code == 200
        assert _sample("entitlements_http_requests_total", labels) == before + 1

    @pytest.mark.asyncio
    async def test_metrics_path_not_counted(self, anon_client) -> None:
        labels = {"method": "GET", "path": "/metrics", "status_code": "200"}
        await anon_client.get("/metrics")
        assert _sample("entitlements_http_requests_total", labels) == 0.0


class TestDomainCounters:
    @pytest.mark.asyncio
    async def test_reconciliation_counted(self, sqlite_session, test_settings, fake_provider, identity) -> None:
        labels = {"source": "default", "tier": "none"}
        before = _sample("entitlements_reconciliations_total", labels)

        await EntitlementService(sqlite_session, test_settings, fake_provider).reconcile(identity)

        assert _sample("entitlements_reconciliations_total", labels) == before + 1

    @pytest.mark.asyncio
    async def test_provider_failure_counted(self, sqlite_session, test_settings, fake_provider, identity) -> None:
        before = _sample("entitlements_provider_failures_total", {})
        fake_provider.find_customer_by_email.side_effect = ConnectionError("stripe down")

        with pytest.raises(ProviderUnavailable):
            await EntitlementService(sqlite_session, test_settings, fake_provider).reconcile(identity)

        assert _sample("entitlements_provider_failures_total", {}) == before + 1

    @pytest.mark.asyncio
    async def test_rejected_pause_counted_by_code(self, sqlite_session, test_settings, identity) -> None:
        now = datetime.now(UTC)
        await SubscriberRepository(sqlite_session).upsert(
            SubscriberRecord(
                email=identity.email,
                user_id=identity.user_id,
                tier=Tier.PLATINUM,
                subscription_type=SubscriptionType.RECURRING,
                expires_at=now + timedelta(days=20),
            )
        )
        await ProfileRepository(sqlite_session).create(
            Profile(id=identity.user_id, user_id=identity.user_id, role=ProfileRole.ESCORT)
        )
        await PauseStateRepository(sqlite_session).save(
            PauseState(profile_id=identity.user_id, pauses_used_in_period=3, period_end=now + timedelta(days=20))
        )

        labels = {"action": "pause", "outcome": "quota_exhausted"}
        before = _sample("entitlements_pause_actions_total", labels)

        with pytest.raises(QuotaExhausted):
            await PauseService(sqlite_session, test_settings).pause_profile(identity, identity.user_id, now)

        assert _sample("entitlements_pause_actions_total", labels) == before + 1
