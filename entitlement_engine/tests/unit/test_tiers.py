"""Tests for entitlement_engine.tiers: capability table, ordering, and parsing."""

from __future__ import annotations

import pytest
from entitlement_engine.errors import InvalidRequest
from entitlement_engine.tiers import (
    PAUSE_THRESHOLD,
    TIER_CAPABILITIES,
    Tier,
    get_capabilities,
    meets_threshold,
    parse_tier,
    tier_rank,
    upload_allowance,
)


class TestTierTable:
    """Every tier has exactly one capability row, matching the published limits."""

    def test_every_tier_has_a_row(self):
        assert set(TIER_CAPABILITIES) == set(Tier)

    @pytest.mark.parametrize(
        ("tier", "photos", "gallery", "videos", "featured", "verification"),
        [
            (Tier.NONE, 1, 0, 0, False, False),
            (Tier.TRIAL, 11, 10, 1, False, False),
            (Tier.TIER1, 11, 10, 1, False, True),
            (Tier.TIER2, 16, 15, 2, False, True),
            (Tier.TIER3, 31, 30, 3, True, True),
            (Tier.TIER4, 51, 50, 5, True, True),
            (Tier.PLATINUM, 51, 50, 5, True, True),
        ],
    )
    def test_limits(self, tier, photos, gallery, videos, featured, verification):
        caps = get_capabilities(tier)
        assert caps.tier is tier
        assert caps.max_photos == photos
        assert caps.max_gallery_photos == gallery
        assert caps.max_videos == videos
        assert caps.featured is featured
        assert caps.verification_eligible is verification

    def test_total_photos_is_gallery_plus_profile_picture(self):
        for caps in TIER_CAPABILITIES.values():
            assert caps.max_photos == caps.max_gallery_photos + 1

    def test_none_is_displayed_as_basic(self):
        assert get_capabilities(Tier.NONE).display_name == "Basic"

    def test_pause_flag_follows_threshold(self):
        for tier, caps in TIER_CAPABILITIES.items():
            assert caps.can_pause is meets_threshold(tier, PAUSE_THRESHOLD)


class TestOrdering:
    def test_platinum_ranks_highest(self):
        assert max(Tier, key=tier_rank) is Tier.PLATINUM

    def test_none_ranks_lowest(self):
        assert tier_rank(Tier.NONE) == 0

    def test_threshold_is_inclusive(self):
        assert meets_threshold(Tier.TIER3)
        assert meets_threshold(Tier.TIER4)
        assert not meets_threshold(Tier.TIER2)
        assert not meets_threshold(Tier.TRIAL)


class TestParseTier:
    """Legacy labels from older clients map onto the closed enum."""

    @pytest.mark.parametrize(
        ("label", "expected"),
        [
            (None, Tier.NONE),
            ("Basic", Tier.NONE),
            ("none", Tier.NONE),
            ("Package1", Tier.TIER1),
            ("package4", Tier.TIER4),
            ("tier3", Tier.TIER3),
            (" Platinum ", Tier.PLATINUM),
            ("trial", Tier.TRIAL),
        ],
    )
    def test_known_labels(self, label, expected):
        assert parse_tier(label) is expected

    def test_unknown_label_raises(self):
        with pytest.raises(InvalidRequest, match="Unknown tier"):
            parse_tier("diamond")


class TestUploadAllowance:
    def test_basic_allows_only_profile_picture(self):
        allowance = upload_allowance(Tier.NONE, photo_count=0, gallery_count=0)
        assert allowance.can_upload_photo
        assert not allowance.can_upload_gallery
        assert not allowance.can_upload_video

    def test_remaining_counts(self):
        allowance = upload_allowance(Tier.TIER2, photo_count=6, gallery_count=5, video_count=1)
        assert allowance.total_photos == 10
        assert allowance.gallery_photos == 10
        assert allowance.videos == 1

    def test_over_cap_after_downgrade_is_zero(self):
        allowance = upload_allowance(Tier.NONE, photo_count=31, gallery_count=30, video_count=3)
        assert allowance.total_photos == 0
        assert allowance.gallery_photos == 0
        assert allowance.videos == 0
        assert not allowance.can_upload_photo
