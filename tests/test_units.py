"""Tests for dimensioned quantities.

Run:
    pytest tests/test_units.py -v
"""

import math

import pytest

from gerberforge.errors import ConfigError, UnitError
from gerberforge.units import AngularVelocity, Length, Power, Velocity, parse_quantity


class TestParsing:

    @pytest.mark.parametrize("text, expected_mm", [
        ("0.1mm", 0.1),
        ("1 in", 25.4),
        ("10mil", 0.254),
        ("2.5cm", 25.0),
        ("-3mm", -3.0),
        (".5mm", 0.5),
        ("150um", 0.15),
    ])
    def test_length(self, text, expected_mm):
        assert Length.parse(text).get("mm") == pytest.approx(expected_mm)

    def test_velocity_units(self):
        assert Velocity.parse("10mm/s").get("mm/min") == pytest.approx(600.0)
        assert Velocity.parse("600 mm/m").get("mm/s") == pytest.approx(10.0)

    def test_angular_velocity(self):
        assert AngularVelocity.parse("12000rpm").get("rps") == pytest.approx(200.0)
        assert AngularVelocity.parse("1rps").get("rad/s") == pytest.approx(2 * math.pi)

    def test_unknown_unit(self):
        with pytest.raises(UnitError, match="Unknown length unit"):
            Length.parse("3 furlongs")

    def test_garbage(self):
        with pytest.raises(UnitError):
            Power.parse("forty watts")


class TestParseQuantity:

    def test_bare_number_rejected(self):
        with pytest.raises(UnitError, match="Missing unit"):
            parse_quantity(0.1, Length)

    def test_wrong_dimension_rejected(self):
        with pytest.raises(UnitError):
            parse_quantity("40W", Length)

    def test_typed_value_passes_through(self):
        value = Length.mm(2)
        assert parse_quantity(value, Length) is value

    def test_typed_value_of_other_dimension(self):
        with pytest.raises(UnitError, match="Expected a length"):
            parse_quantity(Power(1, "W"), Length)

    def test_unit_error_is_config_and_value_error(self):
        with pytest.raises(ConfigError):
            parse_quantity(None, Velocity)
        with pytest.raises(ValueError):
            parse_quantity(True, Velocity)


class TestArithmetic:

    def test_same_dimension(self):
        total = Length.mm(1) + Length.inch(1)
        assert isinstance(total, Length)
        assert total.get("mm") == pytest.approx(26.4)
        assert (Length.mm(3) - Length.mm(1)).millimeters == pytest.approx(2.0)
        assert (-Length.mm(3)).millimeters == -3.0

    def test_scaling(self):
        assert (Length.mm(3) * 2).millimeters == 6.0
        assert (2 * Length.mm(3)).millimeters == 6.0
        assert (Length.mm(3) / 2).millimeters == 1.5

    def test_ratio_is_plain_number(self):
        assert Power(10, "W") / Power(40, "W") == pytest.approx(0.25)

    def test_mixed_dimensions(self):
        with pytest.raises(UnitError):
            Length.mm(1) + Power(1, "W")
        with pytest.raises(UnitError):
            Length.mm(1) < Velocity(1, "mm/min")

    def test_comparison_and_equality(self):
        assert Length.inch(1) == Length.mm(25.4)
        assert Length.mm(1) < Length.inch(1)
        assert Length.mm(1) != Power(1, "W")
        assert len({Length.mm(1), Length.mm(1.0)}) == 1

    def test_immutable(self):
        value = Length.mm(1)
        with pytest.raises(AttributeError):
            value._base = 2.0

    def test_finite(self):
        assert Length.mm(1).is_finite()
        assert not Length.mm(float("nan")).is_finite()
