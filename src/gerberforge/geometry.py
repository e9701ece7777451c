"""Polygon model of the copper mask: primitive resolution, polarity and simplification."""

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple

import numpy as np
import shapely
from shapely.errors import GEOSException
from shapely.geometry import GeometryCollection, LineString, MultiPolygon, Polygon, box
from shapely.geometry.polygon import orient
from shapely.ops import unary_union
from shapely.validation import explain_validity

from .errors import GeometryDegenerate
from .gerber_parser import (
    Aperture,
    CircleAperture,
    Draw,
    Flash,
    GerberDrawing,
    ObroundAperture,
    Polarity,
    PolygonAperture,
    Primitive,
    RectangleAperture,
    Region,
)
from .units import Length


logger = logging.getLogger(__name__)

DEFAULT_CHORD_TOLERANCE = Length.mm(0.005)
DEFAULT_SIMPLIFY_TOLERANCE = Length.mm(0.001)

Point2 = Tuple[float, float]


class RingKind(Enum):
    OUTER = "outer"
    HOLE = "hole"


@dataclass(frozen=True)
class Ring:
    """A closed ring in millimetres. The closing point is not repeated."""

    points: Tuple[Point2, ...]
    kind: RingKind


@dataclass(frozen=True)
class BoundingBox:
    min_x: Length
    min_y: Length
    max_x: Length
    max_y: Length

    @property
    def width(self) -> Length:
        return self.max_x - self.min_x

    @property
    def height(self) -> Length:
        return self.max_y - self.min_y

    def expanded(self, margin: Length) -> "BoundingBox":
        return BoundingBox(self.min_x - margin, self.min_y - margin, self.max_x + margin, self.max_y + margin)

    def contains(self, x: Length, y: Length) -> bool:
        return self.min_x <= x <= self.max_x and self.min_y <= y <= self.max_y

    def as_mm(self) -> Tuple[float, float, float, float]:
        return (
            self.min_x.millimeters,
            self.min_y.millimeters,
            self.max_x.millimeters,
            self.max_y.millimeters,
        )


def _polygons(geometry) -> List[Polygon]:
    """Extract the polygons of any shapely result."""
    if geometry is None or geometry.is_empty:
        return []
    if isinstance(geometry, Polygon):
        return [geometry]
    if isinstance(geometry, (MultiPolygon, GeometryCollection)):
        polygons = []
        for part in geometry.geoms:
            polygons.extend(_polygons(part))
        return polygons
    return []


class PolygonSet:
    """Immutable set of polygons in millimetres.

    Wraps a shapely MultiPolygon. Shapely validity guarantees every hole lies
    inside exactly one outer boundary.
    """

    __slots__ = ("_geometry",)

    def __init__(self, polygons: Iterable[Polygon] = ()):
        object.__setattr__(self, "_geometry", MultiPolygon([p for p in polygons if not p.is_empty]))

    def __setattr__(self, name, value):
        raise AttributeError("PolygonSet is immutable")

    @classmethod
    def from_geometry(cls, geometry) -> "PolygonSet":
        return cls(_polygons(geometry))

    @property
    def geometry(self) -> MultiPolygon:
        return self._geometry

    @property
    def polygons(self) -> List[Polygon]:
        return list(self._geometry.geoms)

    @property
    def is_empty(self) -> bool:
        return self._geometry.is_empty

    @property
    def area(self) -> float:
        """Total area in mm²."""
        return self._geometry.area

    def __len__(self):
        return len(self._geometry.geoms)

    def __iter__(self) -> Iterator[Polygon]:
        return iter(self._geometry.geoms)

    def __repr__(self):
        return f"PolygonSet({len(self)} polygons, area={self.area:.4f} mm²)"

    def equals(self, other: "PolygonSet") -> bool:
        """Topological equality, ignoring point order and ring start."""
        if self.is_empty or other.is_empty:
            return self.is_empty and other.is_empty
        return self._geometry.equals(other._geometry)

    def union(self, other: "PolygonSet") -> "PolygonSet":
        return PolygonSet.from_geometry(unary_union([self._geometry, other._geometry]))

    def difference(self, other: "PolygonSet") -> "PolygonSet":
        if self.is_empty or other.is_empty:
            return self
        return PolygonSet.from_geometry(self._geometry.difference(other._geometry))

    def offset(self, distance: Length, chord_tolerance: Length = DEFAULT_CHORD_TOLERANCE) -> "PolygonSet":
        """Grow (positive) or erode (negative) every boundary by ``distance``."""
        d = distance.millimeters
        if d == 0 or self.is_empty:
            return self
        quad_segs = _quadrant_segments(abs(d), chord_tolerance.millimeters)
        return PolygonSet.from_geometry(self._geometry.buffer(d, quad_segs=quad_segs))

    def rings(self) -> List[Ring]:
        """All rings, outer boundaries counter-clockwise and holes clockwise."""
        rings = []
        for polygon in self._geometry.geoms:
            polygon = orient(polygon, sign=1.0)
            rings.append(Ring(tuple(polygon.exterior.coords[:-1]), RingKind.OUTER))
            for interior in polygon.interiors:
                rings.append(Ring(tuple(interior.coords[:-1]), RingKind.HOLE))
        return rings

    def bounding_box(self) -> BoundingBox:
        """Bounds over all points; a zero box at the origin when empty."""
        if self.is_empty:
            zero = Length.zero()
            return BoundingBox(zero, zero, zero, zero)
        min_x, min_y, max_x, max_y = self._geometry.bounds
        return BoundingBox(Length.mm(min_x), Length.mm(min_y), Length.mm(max_x), Length.mm(max_y))

    def debug_paths(self) -> List[List[Point2]]:
        """Closed 2D vector paths (first point repeated) for diagnostic rendering."""
        paths = []
        for ring in self.rings():
            points = list(ring.points)
            paths.append(points + points[:1])
        return paths


def _segments_for_radius(radius: float, tolerance: float) -> int:
    """Vertices of a regular polygon whose chord error stays within ``tolerance``."""
    if radius <= tolerance:
        return 8
    step = 2.0 * math.acos(1.0 - tolerance / radius)
    return max(8, int(math.ceil(2.0 * math.pi / step)))


def _quadrant_segments(radius: float, tolerance: float) -> int:
    return max(2, int(math.ceil(_segments_for_radius(radius, tolerance) / 4.0)))


def regular_polygon(cx: float, cy: float, radius: float, vertices: int, rotation: float = 0.0) -> Polygon:
    """Regular polygon with circumradius ``radius``; rotation in degrees."""
    angles = np.radians(rotation) + np.linspace(0.0, 2.0 * np.pi, vertices, endpoint=False)
    xs = cx + radius * np.cos(angles)
    ys = cy + radius * np.sin(angles)
    return Polygon(np.column_stack([xs, ys]))


def circle_polygon(cx: float, cy: float, radius: float, tolerance: float) -> Polygon:
    return regular_polygon(cx, cy, radius, _segments_for_radius(radius, tolerance))


def aperture_shape(aperture: Aperture, cx: float, cy: float, tolerance: float, with_hole: bool = True) -> Polygon:
    """Outline of ``aperture`` centred at (cx, cy), in mm."""
    if isinstance(aperture, CircleAperture):
        shape = circle_polygon(cx, cy, aperture.diameter.millimeters / 2.0, tolerance)
    elif isinstance(aperture, RectangleAperture):
        w = aperture.width.millimeters / 2.0
        h = aperture.height.millimeters / 2.0
        shape = box(cx - w, cy - h, cx + w, cy + h)
    elif isinstance(aperture, ObroundAperture):
        w = aperture.width.millimeters
        h = aperture.height.millimeters
        r = min(w, h) / 2.0
        if math.isclose(w, h):
            shape = circle_polygon(cx, cy, r, tolerance)
        elif w > h:
            axis = LineString([(cx - (w / 2.0 - r), cy), (cx + (w / 2.0 - r), cy)])
            shape = axis.buffer(r, quad_segs=_quadrant_segments(r, tolerance))
        else:
            axis = LineString([(cx, cy - (h / 2.0 - r)), (cx, cy + (h / 2.0 - r))])
            shape = axis.buffer(r, quad_segs=_quadrant_segments(r, tolerance))
    elif isinstance(aperture, PolygonAperture):
        shape = regular_polygon(cx, cy, aperture.diameter.millimeters / 2.0, aperture.vertices, aperture.rotation)
    else:
        raise TypeError(f"Unknown aperture type {type(aperture).__name__}")

    if with_hole and aperture.hole is not None and aperture.hole.millimeters > 0:
        shape = shape.difference(circle_polygon(cx, cy, aperture.hole.millimeters / 2.0, tolerance))
    return shape


def primitive_polygon(primitive: Primitive, tolerance: float):
    """Convert one primitive into its polygon contribution (mm)."""
    if isinstance(primitive, Flash):
        x, y = primitive.position.to_mm()
        return aperture_shape(primitive.aperture, x, y, tolerance)

    if isinstance(primitive, Draw):
        start = primitive.start.to_mm()
        end = primitive.end.to_mm()
        aperture = primitive.aperture
        if start == end:
            return aperture_shape(aperture, start[0], start[1], tolerance, with_hole=False)
        if isinstance(aperture, CircleAperture):
            radius = aperture.diameter.millimeters / 2.0
            if radius <= 0:
                return Polygon()
            return LineString([start, end]).buffer(radius, quad_segs=_quadrant_segments(radius, tolerance))
        # Sweeping a convex aperture along a segment gives the hull of both end stamps
        stamps = [aperture_shape(aperture, x, y, tolerance, with_hole=False) for x, y in (start, end)]
        return unary_union(stamps).convex_hull

    if isinstance(primitive, Region):
        return Polygon([p.to_mm() for p in primitive.boundary])

    raise TypeError(f"Unknown primitive type {type(primitive).__name__}")


@dataclass
class ResolvedGeometry:
    raw: PolygonSet
    warnings: List[GeometryDegenerate] = field(default_factory=list)


def _record(warnings: List[GeometryDegenerate], message: str, line: Optional[int] = None):
    warning = GeometryDegenerate(message, line)
    warnings.append(warning)
    logger.warning("Skipping degenerate geometry: %s", warning)


def _contribution(primitive: Primitive, tolerance: float, warnings: List[GeometryDegenerate]):
    kind = type(primitive).__name__
    try:
        polygon = primitive_polygon(primitive, tolerance)
    except (GEOSException, ValueError) as e:
        _record(warnings, f"{kind} could not be converted: {e}", primitive.line)
        return None

    if polygon.is_empty or polygon.area <= tolerance * tolerance:
        _record(warnings, f"{kind} has zero area", primitive.line)
        return None
    if not polygon.is_valid:
        _record(warnings, f"{kind} is invalid ({explain_validity(polygon)})", primitive.line)
        return None
    return polygon


def _apply(accumulated, batch: Sequence, polarity: Polarity, warnings: List[GeometryDegenerate]):
    try:
        contribution = unary_union(batch)
        if polarity is Polarity.DARK:
            return unary_union([accumulated, contribution])
        return accumulated.difference(contribution)
    except GEOSException as e:
        if len(batch) == 1:
            _record(warnings, f"{polarity.value} contribution failed: {e}")
            return accumulated
    # Retry one by one so a single bad shape does not drop the whole batch
    for polygon in batch:
        accumulated = _apply(accumulated, [polygon], polarity, warnings)
    return accumulated


def resolve_primitives(
    primitives: Iterable[Primitive], chord_tolerance: Length = DEFAULT_CHORD_TOLERANCE
) -> ResolvedGeometry:
    """Fold primitives in order: Dark polygons are added, Clear polygons subtracted.

    Consecutive primitives of the same polarity are combined first, which
    gives the same result as applying them one at a time.
    """
    tolerance = chord_tolerance.millimeters
    warnings: List[GeometryDegenerate] = []
    accumulated = MultiPolygon()

    batch: List = []
    batch_polarity: Optional[Polarity] = None
    for primitive in primitives:
        if primitive.polarity is not batch_polarity and batch:
            accumulated = _apply(accumulated, batch, batch_polarity, warnings)
            batch = []
        batch_polarity = primitive.polarity
        polygon = _contribution(primitive, tolerance, warnings)
        if polygon is not None:
            batch.append(polygon)
    if batch:
        accumulated = _apply(accumulated, batch, batch_polarity, warnings)

    return ResolvedGeometry(PolygonSet.from_geometry(accumulated), warnings)


def resolve_drawing(drawing: GerberDrawing, chord_tolerance: Length = DEFAULT_CHORD_TOLERANCE) -> ResolvedGeometry:
    return resolve_primitives(drawing.primitives, chord_tolerance)


def simplify(polygon_set: PolygonSet, tolerance: Length = DEFAULT_SIMPLIFY_TOLERANCE) -> PolygonSet:
    """Merge overlapping boundaries and drop near-zero-area polygons and holes.

    Coordinates are snapped to a grid of ``tolerance``. Applying simplify to
    its own output returns the same set.
    """
    if polygon_set.is_empty:
        return polygon_set

    grid = tolerance.millimeters
    min_area = grid * grid
    merged = unary_union(polygon_set.polygons)
    snapped = shapely.set_precision(merged, grid)
    cleaned = snapped.simplify(0.0, preserve_topology=True)

    polygons = []
    for polygon in _polygons(cleaned):
        if polygon.area < min_area:
            continue
        holes = [ring for ring in polygon.interiors if Polygon(ring).area >= min_area]
        polygons.append(Polygon(polygon.exterior, holes))

    normalized = _polygons(shapely.normalize(MultiPolygon(polygons))) if polygons else []
    return PolygonSet(orient(p, sign=1.0) for p in normalized)


@dataclass
class CopperGeometry:
    """Raw and simplified copper mask of one drawing."""

    raw: PolygonSet
    simplified: PolygonSet
    warnings: List[GeometryDegenerate] = field(default_factory=list)

    def calculate_bounds(self) -> BoundingBox:
        return self.simplified.bounding_box()

    def debug_paths(self, simplified: bool) -> List[List[Point2]]:
        return (self.simplified if simplified else self.raw).debug_paths()


def build_copper_geometry(
    drawing: GerberDrawing,
    chord_tolerance: Length = DEFAULT_CHORD_TOLERANCE,
    simplify_tolerance: Length = DEFAULT_SIMPLIFY_TOLERANCE,
) -> CopperGeometry:
    resolved = resolve_drawing(drawing, chord_tolerance)
    simplified = simplify(resolved.raw, simplify_tolerance)
    logger.info(
        "%s: %d primitives resolved into %d polygons (%.3f mm²)",
        drawing.source, len(drawing.primitives), len(simplified), simplified.area,
    )
    return CopperGeometry(resolved.raw, simplified, resolved.warnings)
