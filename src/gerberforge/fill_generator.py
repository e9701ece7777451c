"""Fill pattern generation: tool-center paths for each copper area."""

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np
from shapely.geometry import GeometryCollection, LineString, MultiLineString, MultiPolygon, Point, Polygon

from .errors import ToolMismatch
from .geometry import PolygonSet, _polygons, _quadrant_segments
from .units import Length


logger = logging.getLogger(__name__)

# Fraction of the step distance used as the spatial comparison tolerance
TOLERANCE_FACTOR = 0.1

Point2 = Tuple[float, float]


@dataclass
class FillRegion:
    """Ordered tool-center paths covering one copper polygon."""

    paths: List[LineString]
    rings: int = 0
    rows: int = 0
    centerline: bool = False

    @property
    def start(self) -> Point2:
        return tuple(self.paths[0].coords[0])

    @property
    def end(self) -> Point2:
        return tuple(self.paths[-1].coords[-1])


@dataclass
class FillPlan:
    regions: List[FillRegion] = field(default_factory=list)
    warnings: List[ToolMismatch] = field(default_factory=list)


class FillGenerator:
    """Generate outline and raster paths for polygon areas."""

    def __init__(self, step_distance: Length, engagement_radius: Length, tolerance: Optional[Length] = None):
        """Initialize the fill generator.

        Args:
            step_distance: Spacing between raster rows
            engagement_radius: Half the width of the tool footprint; boundaries are eroded by this
            tolerance: Distance under which points are merged and containment is accepted
                       (default: a tenth of the step distance)
        """
        if step_distance <= Length.zero():
            raise ValueError(f"Step distance must be positive, got {step_distance}")
        if engagement_radius < Length.zero():
            raise ValueError(f"Engagement radius must not be negative, got {engagement_radius}")
        self.step = step_distance.millimeters
        self.radius = engagement_radius.millimeters
        self.tolerance = (tolerance.millimeters if tolerance is not None
                          else self.step * TOLERANCE_FACTOR)

    def generate_fill(self, polygon_set: PolygonSet) -> FillPlan:
        """Plan tool-center paths for every polygon of the set.

        Each polygon is eroded by the engagement radius. Surviving parts get an
        outline pass along every ring followed by boustrophedon raster rows.
        Polygons that vanish get a centerline pass and a ToolMismatch warning.

        Args:
            polygon_set: Simplified copper polygons

        Returns:
            FillPlan with one FillRegion per connected area
        """
        plan = FillPlan()
        for polygon in polygon_set:
            self._fill_polygon(polygon, plan)
        logger.debug(
            "Planned %d regions (%d paths), %d tool mismatches",
            len(plan.regions), sum(len(r.paths) for r in plan.regions), len(plan.warnings),
        )
        return plan

    def _fill_polygon(self, polygon: Polygon, plan: FillPlan):
        tol = self.tolerance
        parts = [p for p in _polygons(self._erode(polygon)) if p.area > tol * tol]

        if not parts:
            min_x, min_y, max_x, max_y = polygon.bounds
            self._mismatch(
                plan,
                f"Feature at ({min_x:.3f}, {min_y:.3f}) of {max_x - min_x:.3f} x {max_y - min_y:.3f} mm "
                f"is narrower than the tool ({2 * self.radius:.3f} mm); using a centerline pass",
            )
            plan.regions.append(FillRegion([self._extract_centerline(polygon)], centerline=True))
            return

        for part in parts:
            plan.regions.append(self._fill_part(part))

        # Narrow necks that vanished under erosion while the rest of the polygon survived
        for centerline in self._residual_centerlines(polygon, parts):
            x, y = centerline.coords[0]
            self._mismatch(plan, f"Narrow section near ({x:.3f}, {y:.3f}) is thinner than the tool; using a centerline pass")
            plan.regions.append(FillRegion([centerline], centerline=True))

    def _mismatch(self, plan: FillPlan, message: str):
        warning = ToolMismatch(message)
        plan.warnings.append(warning)
        logger.warning("%s", warning)

    def _erode(self, polygon: Polygon):
        if self.radius <= 0:
            return polygon
        return polygon.buffer(-self.radius, quad_segs=_quadrant_segments(self.radius, self.tolerance))

    def _fill_part(self, part: Polygon) -> FillRegion:
        rows = self._raster_rows(part)
        first = rows[0][0][0] if rows and rows[0] else part.exterior.coords[0]
        rings = self._extract_boundaries(part, first)

        pieces: List[List[Point2]] = list(rings)
        for segments in rows:
            pieces.extend(segments)

        return FillRegion(self._chain(pieces, part), rings=len(rings), rows=sum(1 for r in rows if r))

    def _extract_boundaries(self, part: Polygon, near: Point2) -> List[List[Point2]]:
        """Rings of the eroded part as closed point lists.

        The exterior starts at the vertex nearest ``near`` so the outline pass
        ends next to the first raster row.
        """
        boundaries = [self._rotate_ring(list(part.exterior.coords)[:-1], near)]
        for interior in part.interiors:
            coords = list(interior.coords)[:-1]
            boundaries.append(self._rotate_ring(coords, boundaries[-1][-1]))
        return boundaries

    @staticmethod
    def _rotate_ring(coords: List[Point2], near: Point2) -> List[Point2]:
        points = np.asarray(coords)
        index = int(np.argmin(np.hypot(points[:, 0] - near[0], points[:, 1] - near[1])))
        rotated = coords[index:] + coords[:index]
        return rotated + [rotated[0]]

    def row_count(self, height: float) -> int:
        """Number of raster rows for an eroded part of the given height.

        Enough rows to cover the original feature height (eroded height plus
        the tool footprint) at the step distance, and never spaced wider than
        the step distance.
        """
        tol = self.tolerance
        if height <= tol:
            return 1
        by_spacing = math.ceil((height - tol) / self.step) + 1
        by_feature = math.ceil((height + 2.0 * self.radius - tol) / self.step)
        return max(by_spacing, by_feature, 1)

    def _raster_rows(self, part: Polygon) -> List[List[List[Point2]]]:
        """Clip horizontal rows to the part, alternating direction per row."""
        min_x, min_y, max_x, max_y = part.bounds
        height = max_y - min_y
        count = self.row_count(height)

        if count == 1:
            ys = np.array([(min_y + max_y) / 2.0])
        else:
            inset = min(self.tolerance / 2.0, height / 4.0)
            ys = np.linspace(min_y + inset, max_y - inset, count)

        rows = []
        for index, y in enumerate(ys):
            scan = LineString([(min_x - 1.0, y), (max_x + 1.0, y)])
            segments = sorted(
                (self._ordered(segment, left_to_right=True) for segment in self._clip(scan, part)),
                key=lambda coords: coords[0][0],
            )
            if index % 2 == 1:
                segments = [list(reversed(s)) for s in reversed(segments)]
            rows.append(segments)
        return rows

    @staticmethod
    def _ordered(segment: LineString, left_to_right: bool) -> List[Point2]:
        coords = [tuple(c) for c in segment.coords]
        if (coords[0][0] > coords[-1][0]) == left_to_right:
            coords.reverse()
        return coords

    def _clip(self, line: LineString, geometry: Polygon) -> List[LineString]:
        """Clip a line to the geometry, keeping pieces longer than the tolerance."""
        clipped = line.intersection(geometry)
        pieces = []
        stack = [clipped]
        while stack:
            item = stack.pop()
            if item.is_empty:
                continue
            if isinstance(item, LineString):
                if item.length > self.tolerance:
                    pieces.append(item)
            elif isinstance(item, (MultiLineString, GeometryCollection)):
                stack.extend(item.geoms)
        return pieces

    def _chain(self, pieces: List[List[Point2]], part: Polygon) -> List[LineString]:
        """Join consecutive pieces into paths while the link stays inside the part."""
        governed = part.buffer(self.tolerance)
        paths: List[List[Point2]] = []
        current: List[Point2] = []

        for piece in pieces:
            if current:
                link_start, link_end = current[-1], piece[0]
                if self._distance(link_start, link_end) <= self.tolerance:
                    current.extend(piece[1:])
                    continue
                if governed.covers(LineString([link_start, link_end])):
                    current.extend(piece)
                    continue
                paths.append(current)
            current = list(piece)
        if current:
            paths.append(current)

        return [LineString(self._merge_close_points(p)) for p in paths]

    def _merge_close_points(self, points: List[Point2]) -> List[Point2]:
        merged = [points[0]]
        for point in points[1:]:
            if self._distance(merged[-1], point) > self.tolerance:
                merged.append(point)
        if len(merged) == 1:
            merged.append(merged[0])
        return merged

    @staticmethod
    def _distance(a: Point2, b: Point2) -> float:
        return math.hypot(b[0] - a[0], b[1] - a[1])

    def _extract_centerline(self, geometry: Polygon) -> LineString:
        """Spine of a thin feature along the long axis of its minimum rotated rectangle.

        The spine is shortened by half the width at each end, so a capsule
        gives back the segment it was drawn from and a round pad gives a
        single point.
        """
        min_rect = geometry.minimum_rotated_rectangle
        if not isinstance(min_rect, Polygon):
            centroid = geometry.centroid if not geometry.is_empty else Point(0.0, 0.0)
            return LineString([(centroid.x, centroid.y), (centroid.x, centroid.y)])

        p0, p1, p2, p3 = list(min_rect.exterior.coords)[:4]
        d01 = self._distance(p0, p1)
        d12 = self._distance(p1, p2)

        # Midpoints of the short sides
        if d01 > d12:
            mid1 = ((p1[0] + p2[0]) / 2, (p1[1] + p2[1]) / 2)
            mid2 = ((p3[0] + p0[0]) / 2, (p3[1] + p0[1]) / 2)
            width, length = d12, d01
        else:
            mid1 = ((p0[0] + p1[0]) / 2, (p0[1] + p1[1]) / 2)
            mid2 = ((p2[0] + p3[0]) / 2, (p2[1] + p3[1]) / 2)
            width, length = d01, d12

        spine = length - width
        if spine <= self.tolerance or length == 0:
            centre = ((mid1[0] + mid2[0]) / 2, (mid1[1] + mid2[1]) / 2)
            return LineString([centre, centre])

        inset = (width / 2) / length
        start = (mid1[0] + (mid2[0] - mid1[0]) * inset, mid1[1] + (mid2[1] - mid1[1]) * inset)
        end = (mid2[0] + (mid1[0] - mid2[0]) * inset, mid2[1] + (mid1[1] - mid2[1]) * inset)
        return LineString([start, end])

    def _residual_centerlines(self, polygon: Polygon, parts: List[Polygon]) -> List[LineString]:
        """Centerlines for sections the tool cannot enter once the polygon is eroded."""
        if self.radius <= 0:
            return []
        reach = MultiPolygon(parts).buffer(self.radius + self.tolerance,
                                           quad_segs=_quadrant_segments(self.radius, self.tolerance))
        centerlines = []
        for residual in _polygons(polygon.difference(reach)):
            rect = residual.minimum_rotated_rectangle
            if not isinstance(rect, Polygon):
                continue
            p0, p1, p2 = list(rect.exterior.coords)[:3]
            long_side = max(self._distance(p0, p1), self._distance(p1, p2))
            # Corner slivers left by rounding stay shorter than the tool diameter
            if long_side > 2.0 * self.radius:
                centerlines.append(self._extract_centerline(residual))
        return centerlines
