"""Tests for primitive resolution, polarity, simplification and offsets.

Run:
    pytest tests/test_geometry.py -v
"""

import math

import pytest
from shapely.geometry import LinearRing, box

from conftest import gerber, mm, square_region
from gerberforge.errors import GeometryDegenerate
from gerberforge.geometry import (
    PolygonSet,
    RingKind,
    build_copper_geometry,
    circle_polygon,
    resolve_drawing,
    simplify,
)
from gerberforge.gerber_parser import parse_gerber
from gerberforge.units import Length


def resolve(text):
    return resolve_drawing(parse_gerber(text))


class TestPolarity:

    def test_clear_region_erases_equal_dark_region(self):
        text = gerber(square_region(0, 0, 5, 5), "%LPC*%\n", square_region(0, 0, 5, 5))
        assert resolve(text).raw.is_empty

    def test_clear_flash_erases_equal_dark_flash(self):
        text = gerber("%ADD10C,1*%\n", "D10*\n", f"X{mm(2)}Y{mm(2)}D03*\n", "%LPC*%\n", f"X{mm(2)}Y{mm(2)}D03*\n")
        assert resolve(text).raw.is_empty

    def test_clear_only_affects_earlier_dark(self):
        text = gerber(
            square_region(0, 0, 10, 10),
            "%LPC*%\n", square_region(4, 4, 6, 6),
            "%LPD*%\n", square_region(4.5, 4.5, 5.5, 5.5),
        )
        raw = resolve(text).raw
        assert len(raw) == 2
        assert raw.area == pytest.approx(100 - 4 + 1)

    def test_hole_rings(self):
        text = gerber(square_region(0, 0, 10, 10), "%LPC*%\n", square_region(4, 4, 6, 6))
        rings = simplify(resolve(text).raw).rings()
        assert [r.kind for r in rings] == [RingKind.OUTER, RingKind.HOLE]
        assert LinearRing(rings[0].points).is_ccw
        assert not LinearRing(rings[1].points).is_ccw


class TestPrimitiveShapes:

    def test_overlapping_pads_and_trace_merge(self, trace_gerber):
        raw = resolve(trace_gerber).raw
        assert len(raw) == 1

    def test_rectangle_draw_sweeps_hull(self):
        text = gerber("%ADD10R,1X1*%\n", "D10*\n", f"X0Y0D02*\n", f"X{mm(4)}Y0D01*\n")
        assert resolve(text).raw.area == pytest.approx(5.0)

    def test_obround_flash(self):
        text = gerber("%ADD10O,2X1*%\n", "D10*\n", "X0Y0D03*\n")
        expected = 1.0 * 1.0 + math.pi * 0.5 ** 2
        assert resolve(text).raw.area == pytest.approx(expected, rel=1e-2)

    def test_aperture_hole(self):
        text = gerber("%ADD10C,2X1*%\n", "D10*\n", "X0Y0D03*\n")
        raw = resolve(text).raw
        assert raw.area == pytest.approx(math.pi * (1.0 - 0.25), rel=1e-2)
        assert len(raw.polygons[0].interiors) == 1

    def test_polygon_aperture(self):
        text = gerber("%ADD10P,2X4*%\n", "D10*\n", "X0Y0D03*\n")
        # Square with circumradius 1
        assert resolve(text).raw.area == pytest.approx(2.0)

    def test_zero_area_primitive_is_skipped(self):
        text = gerber(
            "%ADD10R,0X1*%\n", "%ADD11C,1*%\n",
            "D10*\n", "X0Y0D03*\n",
            "D11*\n", f"X{mm(5)}Y{mm(5)}D03*\n",
        )
        resolved = resolve(text)
        assert len(resolved.raw) == 1
        assert len(resolved.warnings) == 1
        assert isinstance(resolved.warnings[0], GeometryDegenerate)
        assert resolved.warnings[0].line == 6

    def test_self_intersecting_region_is_skipped(self):
        # Asymmetric bowtie: the two lobes do not cancel out, so it has area
        text = gerber(
            "G36*\n",
            f"X{mm(0)}Y{mm(0)}D02*\n",
            "G01*\n",
            f"X{mm(4)}Y{mm(4)}D01*\n",
            f"X{mm(4)}Y{mm(0)}D01*\n",
            f"X{mm(0)}Y{mm(3)}D01*\n",
            f"X{mm(0)}Y{mm(0)}D01*\n",
            "G37*\n",
        )
        resolved = resolve(text)
        assert resolved.raw.is_empty
        assert len(resolved.warnings) == 1
        assert isinstance(resolved.warnings[0], GeometryDegenerate)
        assert "invalid" in resolved.warnings[0].message
        assert resolved.warnings[0].line == 4


class TestSimplify:

    def test_idempotent(self, trace_gerber):
        once = simplify(resolve(trace_gerber).raw)
        twice = simplify(once)
        assert once.equals(twice)
        assert len(once) == len(twice)
        assert twice.area == pytest.approx(once.area)

    def test_idempotent_with_holes(self):
        text = gerber(square_region(0, 0, 10, 10), "%LPC*%\n", square_region(2, 2, 3, 3), square_region(6, 6, 8, 7))
        once = simplify(resolve(text).raw)
        assert once.equals(simplify(once))

    def test_tiny_polygon_dropped(self):
        tiny = box(0, 0, 0.0001, 0.0001)
        big = box(1, 1, 2, 2)
        result = simplify(PolygonSet([tiny, big]))
        assert len(result) == 1
        assert result.area == pytest.approx(1.0)

    def test_empty(self):
        assert simplify(PolygonSet()).is_empty


class TestOffset:

    def test_convex_circle_shrinks_and_stays_convex(self):
        circle = PolygonSet([circle_polygon(0.0, 0.0, 5.0, 0.005)])
        for r in (0.5, 2.0, 4.5):
            shrunk = circle.offset(-Length.mm(r))
            assert shrunk.area < circle.area
            polygon = shrunk.polygons[0]
            assert polygon.convex_hull.area == pytest.approx(polygon.area, rel=1e-9)

    def test_grow(self):
        square = PolygonSet([box(0, 0, 1, 1)])
        grown = square.offset(Length.mm(0.5))
        assert grown.bounding_box().as_mm() == pytest.approx((-0.5, -0.5, 1.5, 1.5))

    def test_erode_past_width_vanishes(self):
        square = PolygonSet([box(0, 0, 1, 1)])
        assert square.offset(-Length.mm(0.6)).is_empty


class TestCopperGeometry:

    def test_bounds(self, trace_gerber):
        copper = build_copper_geometry(parse_gerber(trace_gerber))
        assert copper.calculate_bounds().as_mm() == pytest.approx((0.25, 0.25, 9.75, 1.75), abs=0.01)

    def test_empty_bounds(self):
        copper = build_copper_geometry(parse_gerber(gerber()))
        assert copper.simplified.is_empty
        assert copper.calculate_bounds().as_mm() == (0.0, 0.0, 0.0, 0.0)

    def test_debug_paths_are_closed(self, square_gerber):
        copper = build_copper_geometry(parse_gerber(square_gerber))
        for simplified in (False, True):
            paths = copper.debug_paths(simplified)
            assert len(paths) == 1
            assert paths[0][0] == paths[0][-1]
            assert len(paths[0]) == 5

    def test_polygon_set_is_immutable(self):
        polygons = PolygonSet([box(0, 0, 1, 1)])
        with pytest.raises(AttributeError):
            polygons.extra = 1
