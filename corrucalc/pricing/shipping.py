"""Shipping, payment and delivery-date helpers used by the internal quoting form."""

from __future__ import annotations

from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal

from corrucalc.models import PricingConfig

MONEY = Decimal("0.01")


def is_free_shipping(
    total_m2: Decimal, distance_km: Decimal | float | None, config: PricingConfig
) -> bool:
    """Free delivery needs a full truck (>= free_shipping_min_m2) within range."""
    if distance_km is None:
        return False
    return (
        total_m2 >= config.free_shipping_min_m2
        and Decimal(str(distance_km)) <= config.free_shipping_max_km
    )


def shipping_notes(
    total_m2: Decimal, distance_km: Decimal | float | None, config: PricingConfig
) -> str:
    if distance_km is None:
        return "Distancia del cliente no especificada. Consultar costo de envío."

    if is_free_shipping(total_m2, distance_km, config):
        return (
            f"Envío gratis incluido (pedido ≥ {config.free_shipping_min_m2} m² "
            f"y distancia ≤ {config.free_shipping_max_km} km)"
        )

    reasons = []
    if total_m2 < config.free_shipping_min_m2:
        reasons.append(f"pedido menor a {config.free_shipping_min_m2} m²")
    if Decimal(str(distance_km)) > config.free_shipping_max_km:
        reasons.append(f"distancia mayor a {config.free_shipping_max_km} km")
    return f"Envío a cotizar ({', '.join(reasons)})"


def payment_amounts(total: Decimal) -> tuple[Decimal, Decimal]:
    """50% deposit to confirm, balance on delivery."""
    deposit = (total / 2).quantize(MONEY, rounding=ROUND_HALF_UP)
    balance = (total - deposit).quantize(MONEY, rounding=ROUND_HALF_UP)
    return deposit, balance


def delivery_date(production_days: int, start: date | None = None) -> date:
    """Add business days (Saturday and Sunday skipped)."""
    current = start or date.today()
    added = 0
    while added < production_days:
        current += timedelta(days=1)
        if current.weekday() < 5:
            added += 1
    return current
