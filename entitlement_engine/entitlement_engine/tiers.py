"""Tier table and capability lookups.

Seven closed tiers control what a listing may do:

* **None** -- No active entitlement.  Shown as "Basic" to users.
* **Trial** -- The one-time seven-day free trial.
* **Tier1..Tier4** -- Fixed-duration packages of increasing size.
* **Platinum** -- Paid entitlement granted by a recurring subscription or
  a qualifying one-time payment.

Capabilities (photo/video caps, featured placement, verification
eligibility, pause access) are always derived from the tier through
:data:`TIER_CAPABILITIES` and are never stored independently.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict

from entitlement_engine.errors import InvalidRequest


class Tier(str, Enum):
    """Entitlement tier held by a subscriber."""

    NONE = "none"
    TRIAL = "trial"
    TIER1 = "tier1"
    TIER2 = "tier2"
    TIER3 = "tier3"
    TIER4 = "tier4"
    PLATINUM = "platinum"


class SubscriptionType(str, Enum):
    """How the current tier was obtained."""

    FREE = "free"
    TRIAL = "trial"
    ONE_TIME = "one_time"
    RECURRING = "recurring"


class TierCapabilities(BaseModel):
    """Capability set granted by a single tier."""

    model_config = ConfigDict(frozen=True)

    tier: Tier
    display_name: str
    max_photos: int
    max_gallery_photos: int
    max_videos: int
    featured: bool
    verification_eligible: bool
    can_pause: bool


# Ordering used for threshold comparisons.  Platinum ranks highest.
_TIER_ORDER: tuple[Tier, ...] = (
    Tier.NONE,
    Tier.TRIAL,
    Tier.TIER1,
    Tier.TIER2,
    Tier.TIER3,
    Tier.TIER4,
    Tier.PLATINUM,
)

# Lowest tier allowed to pause billing.
PAUSE_THRESHOLD: Tier = Tier.TIER3

TIER_CAPABILITIES: dict[Tier, TierCapabilities] = {
    Tier.NONE: TierCapabilities(
        tier=Tier.NONE,
        display_name="Basic",
        max_photos=1,
        max_gallery_photos=0,
        max_videos=0,
        featured=False,
        verification_eligible=False,
        can_pause=False,
    ),
    Tier.TRIAL: TierCapabilities(
        tier=Tier.TRIAL,
        display_name="Free Trial",
        max_photos=11,
        max_gallery_photos=10,
        max_videos=1,
        featured=False,
        verification_eligible=False,
        can_pause=False,
    ),
    Tier.TIER1: TierCapabilities(
        tier=Tier.TIER1,
        display_name="Package 1",
        max_photos=11,
        max_gallery_photos=10,
        max_videos=1,
        featured=False,
        verification_eligible=True,
        can_pause=False,
    ),
    Tier.TIER2: TierCapabilities(
        tier=Tier.TIER2,
        display_name="Package 2",
        max_photos=16,
        max_gallery_photos=15,
        max_videos=2,
        featured=False,
        verification_eligible=True,
        can_pause=False,
    ),
    Tier.TIER3: TierCapabilities(
        tier=Tier.TIER3,
        display_name="Package 3",
        max_photos=31,
        max_gallery_photos=30,
        max_videos=3,
        featured=True,
        verification_eligible=True,
        can_pause=True,
    ),
    Tier.TIER4: TierCapabilities(
        tier=Tier.TIER4,
        display_name="Package 4",
        max_photos=51,
        max_gallery_photos=50,
        max_videos=5,
        featured=True,
        verification_eligible=True,
        can_pause=True,
    ),
    Tier.PLATINUM: TierCapabilities(
        tier=Tier.PLATINUM,
        display_name="Platinum",
        max_photos=51,
        max_gallery_photos=50,
        max_videos=5,
        featured=True,
        verification_eligible=True,
        can_pause=True,
    ),
}

# Legacy tier labels written by older clients and payment metadata.
_LEGACY_ALIASES: dict[str, Tier] = {
    "basic": Tier.NONE,
    "free": Tier.NONE,
    "package1": Tier.TIER1,
    "package2": Tier.TIER2,
    "package3": Tier.TIER3,
    "package4": Tier.TIER4,
}


def get_capabilities(tier: Tier) -> TierCapabilities:
    """Return the capability set for *tier*.

    Parameters
    ----------
    tier:
        The tier to look up.

    Returns
    -------
    TierCapabilities
        The static capability row for the tier.
    """
    return TIER_CAPABILITIES[tier]


def tier_rank(tier: Tier) -> int:
    """Return the position of *tier* in the tier ordering (0 = none)."""
    return _TIER_ORDER.index(tier)


def meets_threshold(tier: Tier, threshold: Tier = PAUSE_THRESHOLD) -> bool:
    """Return ``True`` if *tier* is at or above *threshold*."""
    return tier_rank(tier) >= tier_rank(threshold)


def parse_tier(value: str | None) -> Tier:
    """Parse a tier label, accepting legacy spellings.

    ``None`` and ``"Basic"`` map to :attr:`Tier.NONE`; ``"PackageN"`` maps
    to ``TierN``.

    Raises
    ------
    InvalidRequest
        If *value* is not a recognised tier label.
    """
    if value is None:
        return Tier.NONE
    normalised = value.strip().lower()
    try:
        return Tier(normalised)
    except ValueError:
        pass
    alias = _LEGACY_ALIASES.get(normalised)
    if alias is None:
        raise InvalidRequest(f"Unknown tier: {value!r}")
    return alias


class UploadAllowance(BaseModel):
    """Remaining media uploads for a profile at its current tier."""

    total_photos: int
    gallery_photos: int
    videos: int

    @property
    def can_upload_photo(self) -> bool:
        return self.total_photos > 0

    @property
    def can_upload_gallery(self) -> bool:
        return self.gallery_photos > 0 and self.total_photos > 0

    @property
    def can_upload_video(self) -> bool:
        return self.videos > 0


def upload_allowance(
    tier: Tier,
    *,
    photo_count: int,
    gallery_count: int,
    video_count: int = 0,
) -> UploadAllowance:
    """Compute how many more items of each media kind may be uploaded.

    ``photo_count`` is the total of the profile picture plus gallery photos.
    Counts already above the cap (after a downgrade) yield zero, never a
    negative allowance.
    """
    caps = get_capabilities(tier)
    return UploadAllowance(
        total_photos=max(caps.max_photos - photo_count, 0),
        gallery_photos=max(caps.max_gallery_photos - gallery_count, 0),
        videos=max(caps.max_videos - video_count, 0),
    )
