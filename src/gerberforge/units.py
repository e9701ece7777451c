"""Dimensioned physical quantities used across the pipeline."""

import math
import re
from typing import Dict, Type, TypeVar, Union

from .errors import UnitError


Q = TypeVar("Q", bound="Quantity")

_QUANTITY_RE = re.compile(
    r"^\s*(?P<value>[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)\s*(?P<unit>[A-Za-z/°µ]+)\s*$"
)


class Quantity:
    """A value tagged with a physical dimension.

    The magnitude is stored in the dimension's base unit. Subclasses list
    their units as factors relative to that base unit.
    """

    dimension = "dimensionless"
    base_unit = ""
    units: Dict[str, float] = {}

    __slots__ = ("_base",)

    def __init__(self, value: float, unit: str):
        factor = self._factor(unit)
        object.__setattr__(self, "_base", float(value) * factor)

    def __setattr__(self, name, value):
        raise AttributeError(f"{type(self).__name__} is immutable")

    @classmethod
    def _factor(cls, unit: str) -> float:
        try:
            return cls.units[unit]
        except KeyError:
            known = ", ".join(sorted(cls.units))
            raise UnitError(f"Unknown {cls.dimension} unit '{unit}' (expected one of: {known})") from None

    @classmethod
    def parse(cls: Type[Q], text: str) -> Q:
        """Parse text such as ``"0.1mm"`` or ``"600 mm/min"``."""
        match = _QUANTITY_RE.match(str(text))
        if not match:
            raise UnitError(f"Cannot parse {cls.dimension} from '{text}'; expected '<number><unit>'")
        return cls(float(match.group("value")), match.group("unit"))

    @classmethod
    def zero(cls: Type[Q]) -> Q:
        return cls(0.0, cls.base_unit)

    def get(self, unit: str) -> float:
        """Return the magnitude expressed in ``unit``."""
        return self._base / self._factor(unit)

    def is_finite(self) -> bool:
        return math.isfinite(self._base)

    def _check(self, other):
        if type(other) is not type(self):
            raise UnitError(
                f"Cannot combine {self.dimension} with "
                f"{getattr(other, 'dimension', type(other).__name__)}"
            )

    def _new(self: Q, base: float) -> Q:
        return type(self)(base, self.base_unit)

    def __add__(self: Q, other: Q) -> Q:
        self._check(other)
        return self._new(self._base + other._base)

    def __sub__(self: Q, other: Q) -> Q:
        self._check(other)
        return self._new(self._base - other._base)

    def __neg__(self: Q) -> Q:
        return self._new(-self._base)

    def __abs__(self: Q) -> Q:
        return self._new(abs(self._base))

    def __mul__(self: Q, factor: Union[int, float]) -> Q:
        if isinstance(factor, Quantity):
            raise UnitError("Products of quantities are not supported")
        return self._new(self._base * factor)

    __rmul__ = __mul__

    def __truediv__(self, other):
        if isinstance(other, Quantity):
            self._check(other)
            return self._base / other._base
        return self._new(self._base / other)

    def __eq__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return self._base == other._base

    def __hash__(self):
        return hash((type(self).__name__, self._base))

    def __lt__(self, other):
        self._check(other)
        return self._base < other._base

    def __le__(self, other):
        self._check(other)
        return self._base <= other._base

    def __gt__(self, other):
        self._check(other)
        return self._base > other._base

    def __ge__(self, other):
        self._check(other)
        return self._base >= other._base

    def __repr__(self):
        return f"{type(self).__name__}({self._base:g} {self.base_unit})"

    def __str__(self):
        return f"{self._base:g}{self.base_unit}"


class Length(Quantity):
    dimension = "length"
    base_unit = "mm"
    units = {
        "mm": 1.0,
        "um": 0.001,
        "µm": 0.001,
        "cm": 10.0,
        "m": 1000.0,
        "in": 25.4,
        "inch": 25.4,
        "mil": 0.0254,
        "thou": 0.0254,
    }
    __slots__ = ()

    @classmethod
    def mm(cls, value: float) -> "Length":
        return cls(value, "mm")

    @classmethod
    def inch(cls, value: float) -> "Length":
        return cls(value, "in")

    @property
    def millimeters(self) -> float:
        return self._base


class Power(Quantity):
    dimension = "power"
    base_unit = "W"
    units = {"W": 1.0, "mW": 0.001, "kW": 1000.0}
    __slots__ = ()


class AngularVelocity(Quantity):
    dimension = "angular velocity"
    base_unit = "rpm"
    units = {
        "rpm": 1.0,
        "RPM": 1.0,
        "rps": 60.0,
        "rad/s": 60.0 / (2.0 * math.pi),
    }
    __slots__ = ()


class Velocity(Quantity):
    dimension = "velocity"
    base_unit = "mm/min"
    units = {
        "mm/min": 1.0,
        "mm/m": 1.0,
        "mm/s": 60.0,
        "m/min": 1000.0,
        "m/s": 60000.0,
        "in/min": 25.4,
        "in/s": 25.4 * 60.0,
    }
    __slots__ = ()


QUANTITY_TYPES = {
    "length": Length,
    "power": Power,
    "angular_velocity": AngularVelocity,
    "velocity": Velocity,
}


def parse_quantity(value, kind: Type[Q]) -> Q:
    """Parse a configuration value into ``kind``.

    Already-typed quantities pass through; bare numbers are rejected so a
    unitless value never enters the pipeline.
    """
    if isinstance(value, kind):
        return value
    if isinstance(value, Quantity):
        raise UnitError(f"Expected a {kind.dimension}, got a {value.dimension} ({value})")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        raise UnitError(f"Missing unit on {kind.dimension} value {value!r} (e.g. '{value}{kind.base_unit}')")
    if not isinstance(value, str):
        raise UnitError(f"Cannot read a {kind.dimension} from {value!r}")
    return kind.parse(value)
