"""Price-per-m2 tier resolution.

One total area drives the tier for every line of a quote: a multi-box quote is
priced as a single volume bucket. Lower bounds are inclusive.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from corrucalc.exceptions import BelowAbsoluteMinimum
from corrucalc.models import PricingConfig

# +15% per printing colour
PRINTING_INCREMENT_PER_COLOR = Decimal("0.15")
MAX_PRINTING_COLORS = 4


class Tier(str, Enum):
    VOLUME = "volume"
    STANDARD = "standard"
    BELOW_MINIMUM = "below_minimum"


@dataclass(frozen=True)
class PriceTier:
    """Resolved tier and its base price per m2 (before printing)."""

    tier: Tier
    price_per_m2: Decimal
    below_floor: bool = False


def below_minimum_price(config: PricingConfig) -> Decimal:
    """Surcharge price for orders between the floor and the per-model minimum.

    Configs without an explicit surcharge price fall back to standard + 20%.
    """
    if config.price_per_m2_below_minimum is not None:
        return config.price_per_m2_below_minimum
    return config.price_per_m2_standard * Decimal("1.2")


def resolve_price_per_m2(
    total_area: Decimal,
    config: PricingConfig,
    allow_below_minimum: bool = False,
) -> PriceTier:
    """Pick the base price per m2 for a quote's total area.

    Args:
        total_area: Sum of area_per_unit x quantity across all lines
        config: Active pricing snapshot
        allow_below_minimum: Assisted channels price sub-floor orders at the
            surcharge tier and flag them for manual review instead of failing

    Raises:
        BelowAbsoluteMinimum: Total area under the floor and not allowed
    """
    if total_area >= config.volume_threshold_m2:
        return PriceTier(Tier.VOLUME, config.price_per_m2_volume)
    if total_area >= config.min_m2_per_model:
        return PriceTier(Tier.STANDARD, config.price_per_m2_standard)
    if total_area >= config.absolute_minimum_m2:
        return PriceTier(Tier.BELOW_MINIMUM, below_minimum_price(config))
    if allow_below_minimum:
        return PriceTier(Tier.BELOW_MINIMUM, below_minimum_price(config), below_floor=True)
    raise BelowAbsoluteMinimum(total_area, config.absolute_minimum_m2)


def printing_multiplier(printing_colors: int) -> Decimal:
    """Linear per-colour surcharge factor: 1 + 0.15 x colours."""
    return Decimal(1) + PRINTING_INCREMENT_PER_COLOR * printing_colors


def line_price_per_m2(base_price: Decimal, has_printing: bool, printing_colors: int) -> Decimal:
    """Apply the printing surcharge to one line's price."""
    if has_printing and printing_colors > 0:
        return base_price * printing_multiplier(printing_colors)
    return base_price
