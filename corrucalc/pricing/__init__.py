"""Box geometry, price tiers and quote assembly.

Pure computation: no I/O except `config_source`, which reads the active
pricing snapshot.
"""

from corrucalc.pricing.assembler import QuoteAssembler, parse_boxes, validate_box
from corrucalc.pricing.geometry import calculate_unfolded
from corrucalc.pricing.resolver import resolve_price_per_m2

__all__ = [
    "QuoteAssembler",
    "calculate_unfolded",
    "parse_boxes",
    "resolve_price_per_m2",
    "validate_box",
]
