"""Quote assembly: geometry + tier resolution over a list of box lines.

Every channel (public API, WhatsApp bot, internal form) goes through
`QuoteAssembler.assemble`, so identical inputs yield identical figures.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from corrucalc.exceptions import TooManyLines, ValidationFailed
from corrucalc.models import BoxSpec, PricingConfig, Quote, QuoteLine
from corrucalc.pricing.geometry import (
    calculate_unfolded,
    is_oversized,
    minimum_quantity,
    total_area,
)
from corrucalc.pricing.resolver import (
    MAX_PRINTING_COLORS,
    line_price_per_m2,
    resolve_price_per_m2,
)

logger = logging.getLogger(__name__)

MONEY = Decimal("0.01")

# Accepted input bounds (mm)
LENGTH_RANGE = (100, 2000)
WIDTH_RANGE = (100, 2000)
HEIGHT_RANGE = (50, 1500)
MAX_LINES = 10


def _as_int(value: Any) -> int | None:
    """Return value as int when it is an integral number, else None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def _check_range(
    errors: list[str], prefix: str, field: str, value: Any, bounds: tuple[int, int]
) -> None:
    low, high = bounds
    number = _as_int(value)
    if number is None or number < low or number > high:
        errors.append(f"{prefix}.{field} must be between {low} and {high}")


def validate_box(box: BoxSpec | dict[str, Any], prefix: str) -> list[str]:
    """Per-field validation messages for one box (empty when valid)."""
    data = box.model_dump() if isinstance(box, BoxSpec) else box
    errors: list[str] = []

    _check_range(errors, prefix, "length_mm", data.get("length_mm"), LENGTH_RANGE)
    _check_range(errors, prefix, "width_mm", data.get("width_mm"), WIDTH_RANGE)
    _check_range(errors, prefix, "height_mm", data.get("height_mm"), HEIGHT_RANGE)

    quantity = _as_int(data.get("quantity"))
    if quantity is None or quantity < 1:
        errors.append(f"{prefix}.quantity must be a positive integer")

    colors = data.get("printing_colors")
    if colors is not None:
        colors_int = _as_int(colors)
        if colors_int is None or colors_int < 0 or colors_int > MAX_PRINTING_COLORS:
            errors.append(f"{prefix}.printing_colors must be between 0 and {MAX_PRINTING_COLORS}")

    has_printing = data.get("has_printing")
    if has_printing is not None and not isinstance(has_printing, bool):
        errors.append(f"{prefix}.has_printing must be a boolean")

    return errors


def parse_boxes(raw_boxes: Any, max_lines: int = MAX_LINES) -> list[BoxSpec]:
    """Validate a raw JSON `boxes` array and build BoxSpecs.

    Raises:
        ValidationFailed: Missing/empty array or any out-of-range field
        TooManyLines: More than `max_lines` boxes
    """
    if not isinstance(raw_boxes, list) or not raw_boxes:
        raise ValidationFailed(
            ['"boxes" must be a non-empty array'],
            message='Request must include a non-empty "boxes" array',
        )
    if len(raw_boxes) > max_lines:
        raise TooManyLines(len(raw_boxes), max_lines)

    errors: list[str] = []
    for index, raw in enumerate(raw_boxes):
        prefix = f"boxes[{index}]"
        if not isinstance(raw, dict):
            errors.append(f"{prefix} must be an object")
            continue
        errors.extend(validate_box(raw, prefix))
    if errors:
        raise ValidationFailed(errors)

    boxes = []
    for raw in raw_boxes:
        colors = _as_int(raw.get("printing_colors")) or 0
        boxes.append(
            BoxSpec(
                length_mm=_as_int(raw["length_mm"]),
                width_mm=_as_int(raw["width_mm"]),
                height_mm=_as_int(raw["height_mm"]),
                quantity=_as_int(raw["quantity"]),
                has_printing=bool(raw.get("has_printing")) or colors > 0,
                printing_colors=colors,
            )
        )
    return boxes


class QuoteAssembler:
    """Combines geometry and pricing over 1-10 box lines.

    Args:
        currency: Currency code stamped on every quote
        max_lines: Maximum number of lines per quote
    """

    def __init__(self, currency: str = "ARS", max_lines: int = MAX_LINES):
        self.currency = currency
        self.max_lines = max_lines

    def assemble(
        self,
        boxes: Sequence[BoxSpec],
        config: PricingConfig,
        *,
        strict: bool = True,
        today: date | None = None,
    ) -> Quote:
        """Price a list of boxes against one pricing snapshot.

        Args:
            boxes: Ordered box lines
            config: Active pricing snapshot, used unchanged for the whole call
            strict: Reject sub-floor orders (public API). Assisted channels pass
                False and get a flagged quote at the surcharge tier instead.
            today: Quote date (defaults to date.today())

        Raises:
            ValidationFailed: Empty list or out-of-range box
            TooManyLines: More than max_lines boxes
            BelowAbsoluteMinimum: strict and total area under the floor
        """
        if not boxes:
            raise ValidationFailed(
                ['"boxes" must be a non-empty array'],
                message='Request must include a non-empty "boxes" array',
            )
        if len(boxes) > self.max_lines:
            raise TooManyLines(len(boxes), self.max_lines)

        errors: list[str] = []
        for index, box in enumerate(boxes):
            errors.extend(validate_box(box, f"boxes[{index}]"))
        if errors:
            raise ValidationFailed(errors)

        sheets = [calculate_unfolded(b.length_mm, b.width_mm, b.height_mm) for b in boxes]
        line_areas = [total_area(s.area_per_unit_m2, b.quantity) for s, b in zip(sheets, boxes)]
        quote_area = sum(line_areas, Decimal(0))

        tier = resolve_price_per_m2(quote_area, config, allow_below_minimum=not strict)

        lines: list[QuoteLine] = []
        for box, sheet, area in zip(boxes, sheets, line_areas):
            price = line_price_per_m2(tier.price_per_m2, box.is_printed, box.printing_colors)
            subtotal = (area * price).quantize(MONEY, rounding=ROUND_HALF_UP)
            unit_price = (subtotal / box.quantity).quantize(MONEY, rounding=ROUND_HALF_UP)
            lines.append(
                QuoteLine(
                    length_mm=box.length_mm,
                    width_mm=box.width_mm,
                    height_mm=box.height_mm,
                    quantity=box.quantity,
                    has_printing=box.is_printed,
                    printing_colors=box.printing_colors,
                    sheet_width_mm=sheet.sheet_width_mm,
                    sheet_length_mm=sheet.sheet_length_mm,
                    sqm_per_box=sheet.area_per_unit_m2,
                    total_sqm=area,
                    price_per_m2=price,
                    unit_price=unit_price,
                    subtotal=subtotal,
                )
            )

        total_m2 = quote_area.quantize(MONEY, rounding=ROUND_HALF_UP)
        subtotal = sum((line.subtotal for line in lines), Decimal(0)).quantize(
            MONEY, rounding=ROUND_HALF_UP
        )
        any_printing = any(box.is_printed for box in boxes)
        estimated_days = (
            config.production_days_printing if any_printing else config.production_days_standard
        )
        issued = today or date.today()

        quote = Quote(
            boxes=lines,
            total_m2=total_m2,
            subtotal=subtotal,
            currency=self.currency,
            price_per_m2=tier.price_per_m2,
            estimated_days=estimated_days,
            valid_until=issued + timedelta(days=config.quote_validity_days),
            minimum_m2=config.min_m2_per_model,
            meets_minimum=quote_area >= config.min_m2_per_model,
            below_minimum=tier.below_floor,
            is_fallback_pricing=config.is_fallback,
            warnings=self._warnings(boxes, sheets, line_areas, config, tier.below_floor),
        )
        logger.debug(
            "quote_assembled lines=%s total_m2=%s subtotal=%s tier=%s",
            len(lines), total_m2, subtotal, tier.tier.value,
        )
        return quote

    def _warnings(
        self,
        boxes: Sequence[BoxSpec],
        sheets,
        line_areas: list[Decimal],
        config: PricingConfig,
        below_floor: bool,
    ) -> list[str]:
        warnings: list[str] = []
        for box, sheet, area in zip(boxes, sheets, line_areas):
            if is_oversized(box.length_mm, box.width_mm, box.height_mm):
                warnings.append(
                    f"La caja {box.describe()} mm excede el tamaño estándar. "
                    "Requiere precio especial a cotizar."
                )
            if area < config.min_m2_per_model:
                suggested = minimum_quantity(sheet.area_per_unit_m2, config.min_m2_per_model)
                warnings.append(
                    f"El modelo {box.describe()} no alcanza el mínimo recomendado de "
                    f"{config.min_m2_per_model} m². Cantidad sugerida: {suggested} unidades."
                )
        if below_floor:
            warnings.append(
                f"El pedido no alcanza el mínimo absoluto de {config.absolute_minimum_m2} m². "
                "Requiere revisión manual."
            )
        if config.is_fallback:
            warnings.append("Precios de referencia: la configuración activa no estaba disponible.")
        return warnings
