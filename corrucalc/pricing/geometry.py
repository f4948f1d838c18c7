"""Unfolded-sheet geometry for RSC (regular slotted container) boxes.

Sheet layout:
- Width: half flap / height / half flap, i.e. height + width
- Length: width / length / width / length / glue flap, i.e. 2L + 2W + 50

Example: a 600x400x400 box needs an 800 x 2050 mm sheet = 1.64 m2.
"""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal

from corrucalc.exceptions import ValidationFailed
from corrucalc.models import UnfoldedSheet

# Glue flap plus trim added to the sheet length
GLUE_FLAP_MM = 50

AREA_PLACES = Decimal("0.0001")
MM2_PER_M2 = Decimal(1_000_000)

# Standard production envelope
MAX_STANDARD = (600, 400, 400)
MIN_STANDARD = (200, 200, 100)


def calculate_unfolded(length: int, width: int, height: int) -> UnfoldedSheet:
    """Compute the unfolded sheet for a box.

    Rounds exactly once, at the area-per-unit stage (4 decimals).

    Raises:
        ValidationFailed: If any dimension is not positive
    """
    errors = [
        f"{name} must be a positive number of millimetres"
        for name, value in (("length", length), ("width", width), ("height", height))
        if value <= 0
    ]
    if errors:
        raise ValidationFailed(errors)

    sheet_width = height + width
    sheet_length = 2 * length + 2 * width + GLUE_FLAP_MM
    area = (Decimal(sheet_width) * Decimal(sheet_length) / MM2_PER_M2).quantize(
        AREA_PLACES, rounding=ROUND_HALF_UP
    )

    return UnfoldedSheet(
        sheet_width_mm=sheet_width,
        sheet_length_mm=sheet_length,
        area_per_unit_m2=area,
    )


def total_area(area_per_unit: Decimal, quantity: int) -> Decimal:
    """Area for `quantity` boxes, 4 decimals."""
    return (area_per_unit * quantity).quantize(AREA_PLACES, rounding=ROUND_HALF_UP)


def is_oversized(length: int, width: int, height: int) -> bool:
    """True when the box exceeds the standard 600x400x400 envelope."""
    max_l, max_w, max_h = MAX_STANDARD
    return length > max_l or width > max_w or height > max_h


def is_undersized(length: int, width: int, height: int) -> bool:
    """True when the box is below the 200x200x100 production minimum."""
    min_l, min_w, min_h = MIN_STANDARD
    return length < min_l or width < min_w or height < min_h


def minimum_quantity(area_per_unit: Decimal, minimum_m2: Decimal) -> int:
    """Smallest quantity whose total area reaches `minimum_m2`."""
    if area_per_unit <= 0:
        raise ValidationFailed(["area per unit must be positive"])
    return math.ceil(minimum_m2 / area_per_unit)
