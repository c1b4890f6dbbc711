"""Plan catalog -- subscription tiers, resolution costs, and web-part presets.

The numbers here are the commercial terms of the product: Basic grants 100
credits per billing cycle, Pro grants 500, and new accounts start on the free
tier with two trial credits.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from decimal import Decimal

from imagestudio.config import settings


class Tier(str, enum.Enum):
    FREE = "free"
    BASIC = "basic"
    PRO = "pro"


class Resolution(str, enum.Enum):
    LOW = "1K"
    MEDIUM = "2K"
    HIGH = "4K"


INITIAL_BALANCE = Decimal("2")

TIER_ALLOCATIONS: dict[Tier, int] = {
    Tier.FREE: 0,
    Tier.BASIC: 100,
    Tier.PRO: 500,
}

PAID_TIERS = frozenset({Tier.BASIC, Tier.PRO})

RESOLUTION_COSTS: dict[Resolution, Decimal] = {
    Resolution.LOW: Decimal("0.5"),
    Resolution.MEDIUM: Decimal("1"),
    Resolution.HIGH: Decimal("2"),
}


def allocation_for(tier: Tier) -> int:
    """Credits granted per billing cycle for *tier*."""
    return TIER_ALLOCATIONS[tier]


def resolution_cost(resolution: Resolution | str) -> Decimal:
    """Credit cost of a single image at *resolution*.

    Raises ValueError for an unknown resolution.
    """
    return RESOLUTION_COSTS[Resolution(resolution)]


def parse_paid_tier(value: object) -> Tier | None:
    """Return the paid Tier named by *value*, or None if it is not one."""
    if not isinstance(value, str):
        return None
    try:
        tier = Tier(value.strip().lower())
    except ValueError:
        return None
    return tier if tier in PAID_TIERS else None


def price_for_tier(tier: Tier) -> str:
    """Stripe price id configured for a paid tier. Empty string if unset."""
    prices = {
        Tier.BASIC: settings.STRIPE_PRICE_BASIC,
        Tier.PRO: settings.STRIPE_PRICE_PRO,
    }
    if tier not in prices:
        raise ValueError(f"Tier {tier.value!r} has no price")
    return prices[tier]


def tier_for_price(price_id: str | None) -> Tier | None:
    """Reverse of price_for_tier; None for unknown or empty price ids."""
    if not price_id:
        return None
    for tier in PAID_TIERS:
        if price_for_tier(tier) == price_id:
            return tier
    return None


# ---------------------------------------------------------------------------
# SharePoint web-part presets
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GenerationType:
    type_id: str
    name: str
    width: int
    height: int
    aspect_ratio: str


GENERATION_TYPES: dict[str, GenerationType] = {
    t.type_id: t
    for t in (
        GenerationType("hero", "Hero Web Part (Layers)", 1920, 1080, "16:9"),
        GenerationType("hero-tiles", "Hero Web Part (Tiles)", 1600, 1200, "4:3"),
        GenerationType("page-header", "Page Header (Wide)", 1920, 460, "4:1"),
        GenerationType("page-header-standard", "Page Header (Standard)", 1920, 1080, "16:9"),
        GenerationType("quick-links-square", "Quick Links (Square)", 300, 300, "1:1"),
        GenerationType("quick-links-wide", "Quick Links (Wide)", 1600, 900, "16:9"),
        GenerationType("news", "News Thumbnail", 1200, 675, "16:9"),
        GenerationType("viva", "Viva Connections Card", 400, 200, "2:1"),
        GenerationType("team-banner", "Team Site Banner", 2560, 164, "21:9"),
        GenerationType("gallery", "Image Gallery", 1920, 1080, "16:9"),
        GenerationType("custom", "Custom", 1920, 1080, "custom"),
    )
}


def resolve_dimensions(
    type_id: str,
    width: int | None = None,
    height: int | None = None,
) -> tuple[int, int]:
    """Return (width, height) for a preset.

    ``custom`` requires both *width* and *height*; other presets ignore them.
    Raises ValueError for unknown presets or missing custom dimensions.
    """
    preset = GENERATION_TYPES.get(type_id)
    if preset is None:
        raise ValueError(f"Unknown generation type: {type_id}")
    if preset.type_id != "custom":
        return preset.width, preset.height
    if not width or not height or width <= 0 or height <= 0:
        raise ValueError("Custom generation type requires positive width and height")
    return width, height
