"""Unit tests for quote assembly and box validation."""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

import pytest

from corrucalc.exceptions import BelowAbsoluteMinimum, TooManyLines, ValidationFailed
from corrucalc.models import BoxSpec
from corrucalc.pricing.assembler import QuoteAssembler, parse_boxes, validate_box
from corrucalc.pricing.config_source import FALLBACK_PRICING

TODAY = date(2025, 3, 3)


def box(quantity: int = 1000, **overrides) -> BoxSpec:
    fields = {"length_mm": 400, "width_mm": 300, "height_mm": 200, "quantity": quantity}
    fields.update(overrides)
    return BoxSpec(**fields)


@pytest.fixture
def assembler() -> QuoteAssembler:
    return QuoteAssembler()


class TestAssemble:
    """QuoteAssembler.assemble() with the test pricing snapshot."""

    def test_single_standard_line(self, assembler, pricing_config, standard_box):
        quote = assembler.assemble([standard_box], pricing_config, today=TODAY)

        line = quote.boxes[0]
        assert line.sheet_width_mm == 500
        assert line.sheet_length_mm == 1450
        assert line.sqm_per_box == Decimal("0.7250")
        assert line.total_sqm == Decimal("725.0000")
        assert line.price_per_m2 == Decimal("700")
        assert line.subtotal == Decimal("507500.00")
        assert line.unit_price == Decimal("507.50")

        assert quote.total_m2 == Decimal("725.00")
        assert quote.subtotal == Decimal("507500.00")
        assert quote.currency == "ARS"
        assert quote.price_per_m2 == Decimal("700")
        assert quote.estimated_days == 7
        assert quote.valid_until == TODAY + timedelta(days=7)
        assert quote.minimum_m2 == Decimal("300")
        assert quote.meets_minimum is True
        assert quote.below_minimum is False
        assert quote.is_fallback_pricing is False
        assert quote.warnings == []

    def test_printed_line_uses_printing_lead_time(self, assembler, pricing_config):
        quote = assembler.assemble(
            [box(500, has_printing=True, printing_colors=1)], pricing_config, today=TODAY
        )

        line = quote.boxes[0]
        assert line.price_per_m2 == Decimal("805")
        assert line.subtotal == Decimal("291812.50")
        assert line.unit_price == Decimal("583.63")
        assert quote.estimated_days == 14

    def test_tier_is_resolved_on_combined_area(self, assembler, pricing_config):
        # 2 x 2900 m2 = 5800 m2: volume price for both lines
        quote = assembler.assemble([box(4000), box(4000)], pricing_config, today=TODAY)

        assert quote.total_m2 == Decimal("5800.00")
        assert quote.price_per_m2 == Decimal("670")
        assert [line.price_per_m2 for line in quote.boxes] == [Decimal("670"), Decimal("670")]
        assert quote.subtotal == Decimal("3886000.00")

    def test_subtotal_is_sum_of_lines(self, assembler, pricing_config):
        quote = assembler.assemble(
            [box(1000), box(250, length_mm=500, printing_colors=2, has_printing=True)],
            pricing_config,
            today=TODAY,
        )

        assert quote.subtotal == sum(line.subtotal for line in quote.boxes)

    def test_line_order_preserved(self, assembler, pricing_config):
        boxes = [box(500, length_mm=300), box(500, length_mm=500), box(500, length_mm=400)]

        quote = assembler.assemble(boxes, pricing_config, today=TODAY)

        assert [line.length_mm for line in quote.boxes] == [300, 500, 400]

    def test_deterministic(self, assembler, pricing_config, standard_box):
        first = assembler.assemble([standard_box], pricing_config, today=TODAY)
        second = assembler.assemble([standard_box], pricing_config, today=TODAY)

        assert first == second

    def test_strict_rejects_below_floor(self, assembler, pricing_config):
        # 100 x 0.725 = 72.5 m2 < 100 m2 floor
        with pytest.raises(BelowAbsoluteMinimum):
            assembler.assemble([box(100)], pricing_config, today=TODAY)

    def test_assisted_flags_below_floor(self, assembler, pricing_config):
        quote = assembler.assemble([box(100)], pricing_config, strict=False, today=TODAY)

        assert quote.below_minimum is True
        assert quote.meets_minimum is False
        assert quote.price_per_m2 == Decimal("850")
        assert quote.subtotal == Decimal("61625.00")
        assert any("mínimo absoluto" in w for w in quote.warnings)

    def test_below_recommended_minimum_warns_with_suggested_quantity(
        self, assembler, pricing_config
    ):
        # 200 x 0.725 = 145 m2: priced at the surcharge tier, still above the floor
        quote = assembler.assemble([box(200)], pricing_config, today=TODAY)

        assert quote.meets_minimum is False
        assert quote.below_minimum is False
        assert quote.price_per_m2 == Decimal("850")
        assert any("Cantidad sugerida: 414 unidades" in w for w in quote.warnings)

    def test_minimum_uses_unrounded_area(self, assembler, pricing_config):
        # 413 x 0.725 + 0.572 = 299.997 m2, shown as 300.00
        quote = assembler.assemble(
            [box(413), box(1, length_mm=440, width_mm=250, height_mm=150)],
            pricing_config,
            today=TODAY,
        )

        assert quote.total_m2 == Decimal("300.00")
        assert quote.meets_minimum is False
        assert quote.price_per_m2 == Decimal("850")

    def test_oversized_box_warns(self, assembler, pricing_config):
        quote = assembler.assemble([box(1000, length_mm=700)], pricing_config, today=TODAY)

        assert any("700x300x200" in w and "excede" in w for w in quote.warnings)

    def test_fallback_pricing_is_flagged(self, assembler):
        quote = assembler.assemble([box(5000)], FALLBACK_PRICING, today=TODAY)

        assert quote.is_fallback_pricing is True
        assert any("referencia" in w for w in quote.warnings)

    def test_empty_list_rejected(self, assembler, pricing_config):
        with pytest.raises(ValidationFailed) as exc_info:
            assembler.assemble([], pricing_config)

        assert exc_info.value.message == 'Request must include a non-empty "boxes" array'

    def test_too_many_lines(self, assembler, pricing_config):
        with pytest.raises(TooManyLines) as exc_info:
            assembler.assemble([box()] * 11, pricing_config)

        assert exc_info.value.message == "Maximum 10 boxes per request"

    def test_currency_and_max_lines_are_configurable(self, pricing_config):
        assembler = QuoteAssembler(currency="USD", max_lines=2)

        quote = assembler.assemble([box()], pricing_config, today=TODAY)
        assert quote.currency == "USD"

        with pytest.raises(TooManyLines):
            assembler.assemble([box()] * 3, pricing_config)

    def test_invalid_box_rejected_before_pricing(self, assembler, pricing_config):
        with pytest.raises(ValidationFailed) as exc_info:
            assembler.assemble([box(length_mm=50)], pricing_config)

        assert exc_info.value.errors == ["boxes[0].length_mm must be between 100 and 2000"]


class TestValidateBox:
    def test_valid_box(self):
        assert validate_box(box(), "boxes[0]") == []

    def test_bounds_are_inclusive(self):
        lower = {"length_mm": 100, "width_mm": 100, "height_mm": 50, "quantity": 1}
        upper = {"length_mm": 2000, "width_mm": 2000, "height_mm": 1500, "quantity": 1}

        assert validate_box(lower, "b") == []
        assert validate_box(upper, "b") == []

    def test_every_field_reported(self):
        errors = validate_box(
            {
                "length_mm": 99,
                "width_mm": 2001,
                "height_mm": 49,
                "quantity": 0,
                "printing_colors": 5,
                "has_printing": "yes",
            },
            "boxes[2]",
        )

        assert errors == [
            "boxes[2].length_mm must be between 100 and 2000",
            "boxes[2].width_mm must be between 100 and 2000",
            "boxes[2].height_mm must be between 50 and 1500",
            "boxes[2].quantity must be a positive integer",
            "boxes[2].printing_colors must be between 0 and 4",
            "boxes[2].has_printing must be a boolean",
        ]

    @pytest.mark.parametrize("value", ["400", 400.5, True, None])
    def test_non_integer_dimension_rejected(self, value):
        errors = validate_box(
            {"length_mm": value, "width_mm": 300, "height_mm": 200, "quantity": 1}, "b"
        )

        assert errors == ["b.length_mm must be between 100 and 2000"]


class TestParseBoxes:
    @pytest.mark.parametrize("raw", [None, [], {}, "boxes"])
    def test_requires_non_empty_array(self, raw):
        with pytest.raises(ValidationFailed) as exc_info:
            parse_boxes(raw)

        assert exc_info.value.message == 'Request must include a non-empty "boxes" array'

    def test_too_many_lines(self):
        raw = [{"length_mm": 400, "width_mm": 300, "height_mm": 200, "quantity": 1}] * 11

        with pytest.raises(TooManyLines):
            parse_boxes(raw)

    def test_non_object_entry(self):
        with pytest.raises(ValidationFailed) as exc_info:
            parse_boxes([42])

        assert exc_info.value.errors == ["boxes[0] must be an object"]

    def test_builds_box_specs(self):
        boxes = parse_boxes(
            [
                {"length_mm": 400, "width_mm": 300, "height_mm": 200, "quantity": 1000},
                {"length_mm": 500.0, "width_mm": 400, "height_mm": 300, "quantity": 50,
                 "printing_colors": 2},
            ]
        )

        assert boxes[0] == BoxSpec(length_mm=400, width_mm=300, height_mm=200, quantity=1000)
        assert boxes[1].length_mm == 500
        assert boxes[1].printing_colors == 2
        assert boxes[1].has_printing is True
