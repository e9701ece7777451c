"""Turn copper polygons into motion commands for a laser or a spindle."""

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union

from shapely.geometry import LineString

from .errors import ConfigError, ToolMismatch
from .fill_generator import FillGenerator, FillRegion
from .gcode_generator import (
    Comment,
    CutMove,
    LaserPower,
    MotionCommand,
    RapidMove,
    SetToolState,
    SpindleSpeed,
)
from .geometry import PolygonSet
from .units import AngularVelocity, Length, Power, Velocity


logger = logging.getLogger(__name__)

DEFAULT_CUT_DEPTH = Length.mm(0.1)
DEFAULT_SAFE_HEIGHT = Length.mm(2.0)


@dataclass(frozen=True)
class LaserSelection:
    """A laser together with the power and speed of the selected job."""

    point_diameter: Length
    max_power: Power
    laser_power: Power
    work_speed: Velocity
    s_max: int = 255

    def __post_init__(self):
        if not self.max_power > Power.zero():
            raise ConfigError(f"Laser maximum power must be positive, got {self.max_power}")

    @property
    def engagement_radius(self) -> Length:
        return self.point_diameter / 2

    def describe(self) -> str:
        return f"Power: {self.laser_power.get('W'):g} W, Work Speed: {self.work_speed.get('mm/min'):g} mm/m"


@dataclass(frozen=True)
class SpindleSelection:
    """A spindle with its installed bit and the cutting parameters of the job.

    Drill bits carry no work speed or cut depth; they cut at the plunge speed
    and the default engraving depth.
    """

    bit_diameter: Length
    spindle_rpm: AngularVelocity
    plunge_speed: Velocity
    work_speed: Optional[Velocity] = None
    max_cut_depth: Optional[Length] = None
    safe_height: Length = DEFAULT_SAFE_HEIGHT

    @property
    def engagement_radius(self) -> Length:
        return self.bit_diameter / 2

    @property
    def cut_depth(self) -> Length:
        return self.max_cut_depth if self.max_cut_depth is not None else DEFAULT_CUT_DEPTH

    @property
    def feed(self) -> Velocity:
        return self.work_speed if self.work_speed is not None else self.plunge_speed

    def describe(self) -> str:
        text = f"RPM: {self.spindle_rpm.get('rpm'):g}, Plunge Speed: {self.plunge_speed.get('mm/min'):g} mm/m"
        if self.max_cut_depth is not None:
            text += f", Max Cut Depth: {self.max_cut_depth.get('mm'):g} mm"
        if self.work_speed is not None:
            text += f", Work Speed: {self.work_speed.get('mm/min'):g} mm/m"
        return text


ToolSelection = Union[LaserSelection, SpindleSelection]


@dataclass
class ToolpathResult:
    commands: List[MotionCommand] = field(default_factory=list)
    warnings: List[ToolMismatch] = field(default_factory=list)
    regions: int = 0
    paths: int = 0
    toolpaths: List[LineString] = field(default_factory=list)


def _mm(point: Tuple[float, float]) -> Tuple[Length, Length]:
    return Length.mm(point[0]), Length.mm(point[1])


class ToolpathGenerator:
    """Generate the motion commands that remove or cut a polygon set."""

    def __init__(self, tool: ToolSelection, distance_per_step: Length, tolerance: Optional[Length] = None):
        """Initialize the generator.

        Args:
            tool: Laser or spindle selection; its engagement radius drives the boundary offset
            distance_per_step: Raster row spacing
            tolerance: Spatial comparison tolerance (default: a tenth of the step distance)
        """
        if not isinstance(tool, (LaserSelection, SpindleSelection)):
            raise TypeError(f"Unknown tool selection {type(tool).__name__}")
        self.tool = tool
        self.fill = FillGenerator(distance_per_step, tool.engagement_radius, tolerance)

    def generate(self, polygon_set: PolygonSet) -> ToolpathResult:
        """Plan and emit commands for every polygon of the set.

        Regions are visited nearest-first starting from the origin. Every path
        starts with a rapid move with the tool disengaged and only cuts after
        the tool is engaged.
        """
        plan = self.fill.generate_fill(polygon_set)
        regions = self._order_regions(plan.regions)

        result = ToolpathResult(warnings=list(plan.warnings), regions=len(regions))
        commands = result.commands
        if not regions:
            commands.append(Comment("No copper to process"))
            return result

        if isinstance(self.tool, SpindleSelection):
            # Z is unknown at program start: retract before any XY travel
            commands.append(RapidMove(z=self.tool.safe_height))
            commands.append(SetToolState(True, SpindleSpeed(self.tool.spindle_rpm)))

        for number, region in enumerate(regions, start=1):
            if region.centerline:
                commands.append(Comment(f"Region {number}: centerline pass"))
            else:
                commands.append(Comment(f"Region {number}: {region.rings} ring(s), {region.rows} raster row(s)"))
            for path in region.paths:
                self._emit_path(commands, path)
                result.toolpaths.append(path)
                result.paths += 1

        if isinstance(self.tool, SpindleSelection):
            commands.append(SetToolState(False))

        logger.info(
            "Generated %d commands for %d regions (%d paths)", len(commands), result.regions, result.paths
        )
        return result

    @staticmethod
    def _order_regions(regions: List[FillRegion]) -> List[FillRegion]:
        """Nearest-neighbour ordering by region start point; ties keep input order."""
        remaining = list(regions)
        ordered = []
        position = (0.0, 0.0)
        while remaining:
            index = min(
                range(len(remaining)),
                key=lambda i: math.hypot(remaining[i].start[0] - position[0], remaining[i].start[1] - position[1]),
            )
            region = remaining.pop(index)
            ordered.append(region)
            position = region.end
        return ordered

    def _emit_path(self, commands: List[MotionCommand], path: LineString):
        coords = [tuple(c) for c in path.coords]
        start_x, start_y = _mm(coords[0])
        tool = self.tool

        if isinstance(tool, LaserSelection):
            commands.append(RapidMove(start_x, start_y))
            commands.append(SetToolState(True, LaserPower(tool.laser_power, tool.max_power, tool.s_max)))
            targets = coords[1:] if path.length > 0 else coords[:1]
            for point in targets:
                x, y = _mm(point)
                commands.append(CutMove(x, y, feed=tool.work_speed))
            commands.append(SetToolState(False))
        else:
            depth = -tool.cut_depth
            commands.append(RapidMove(start_x, start_y, tool.safe_height))
            commands.append(CutMove(start_x, start_y, depth, feed=tool.plunge_speed))
            for point in coords[1:]:
                if path.length == 0:
                    break
                x, y = _mm(point)
                commands.append(CutMove(x, y, depth, feed=tool.feed))
            end_x, end_y = _mm(coords[-1])
            commands.append(RapidMove(end_x, end_y, tool.safe_height))
