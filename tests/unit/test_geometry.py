"""Unit tests for unfolded-sheet geometry."""

from __future__ import annotations

from decimal import Decimal

import pytest

from corrucalc.exceptions import ValidationFailed
from corrucalc.pricing.geometry import (
    calculate_unfolded,
    is_oversized,
    is_undersized,
    minimum_quantity,
    total_area,
)


class TestCalculateUnfolded:
    """Sheet width = H + W, sheet length = 2L + 2W + 50."""

    def test_standard_box(self):
        sheet = calculate_unfolded(400, 300, 200)

        assert sheet.sheet_width_mm == 500
        assert sheet.sheet_length_mm == 1450
        assert sheet.area_per_unit_m2 == Decimal("0.7250")

    def test_largest_standard_box(self):
        sheet = calculate_unfolded(600, 400, 400)

        assert sheet.sheet_width_mm == 800
        assert sheet.sheet_length_mm == 2050
        assert sheet.area_per_unit_m2 == Decimal("1.6400")

    def test_area_rounded_half_up_to_four_places(self):
        # 155 x 652 = 101060 mm2 = 0.10106 m2
        sheet = calculate_unfolded(201, 100, 55)

        assert sheet.sheet_width_mm == 155
        assert sheet.sheet_length_mm == 652
        assert sheet.area_per_unit_m2 == Decimal("0.1011")

    @pytest.mark.parametrize("dims", [(0, 300, 200), (400, -1, 200), (400, 300, 0)])
    def test_non_positive_dimension_rejected(self, dims):
        with pytest.raises(ValidationFailed) as exc_info:
            calculate_unfolded(*dims)

        assert len(exc_info.value.errors) == 1
        assert "positive" in exc_info.value.errors[0]

    def test_deterministic(self):
        assert calculate_unfolded(333, 222, 111) == calculate_unfolded(333, 222, 111)


class TestAreaHelpers:
    def test_total_area(self):
        assert total_area(Decimal("0.7250"), 1000) == Decimal("725.0000")

    def test_minimum_quantity_rounds_up(self):
        # 300 / 0.725 = 413.79...
        assert minimum_quantity(Decimal("0.7250"), Decimal("300")) == 414

    def test_minimum_quantity_exact(self):
        assert minimum_quantity(Decimal("0.5"), Decimal("300")) == 600

    def test_minimum_quantity_requires_positive_area(self):
        with pytest.raises(ValidationFailed):
            minimum_quantity(Decimal("0"), Decimal("300"))


class TestStandardEnvelope:
    def test_inside_envelope(self):
        assert not is_oversized(600, 400, 400)
        assert not is_undersized(200, 200, 100)

    @pytest.mark.parametrize("dims", [(601, 400, 400), (600, 401, 400), (600, 400, 401)])
    def test_oversized(self, dims):
        assert is_oversized(*dims)

    @pytest.mark.parametrize("dims", [(199, 200, 100), (200, 199, 100), (200, 200, 99)])
    def test_undersized(self, dims):
        assert is_undersized(*dims)
