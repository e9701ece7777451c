"""Gerber file parsing into drawing primitives."""

import logging
import math
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple, Union

import numpy as np
from gerbonara import GerberFile
from gerbonara import apertures as ap
from gerbonara import graphic_objects as go
from gerbonara.utils import MM, Inch

from .errors import MalformedDrawing, UnsupportedFeature
from .units import Length


logger = logging.getLogger(__name__)

DEFAULT_ARC_TOLERANCE = Length.mm(0.005)


class Polarity(Enum):
    DARK = "dark"
    CLEAR = "clear"


@dataclass(frozen=True)
class Position:
    x: Length
    y: Length

    def to_mm(self) -> Tuple[float, float]:
        return (self.x.millimeters, self.y.millimeters)


@dataclass(frozen=True)
class CircleAperture:
    code: int
    diameter: Length
    hole: Optional[Length] = None


@dataclass(frozen=True)
class RectangleAperture:
    code: int
    width: Length
    height: Length
    hole: Optional[Length] = None


@dataclass(frozen=True)
class ObroundAperture:
    code: int
    width: Length
    height: Length
    hole: Optional[Length] = None


@dataclass(frozen=True)
class PolygonAperture:
    code: int
    diameter: Length
    vertices: int
    rotation: float = 0.0  # degrees
    hole: Optional[Length] = None


Aperture = Union[CircleAperture, RectangleAperture, ObroundAperture, PolygonAperture]


@dataclass(frozen=True)
class Flash:
    aperture: Aperture
    position: Position
    polarity: Polarity = Polarity.DARK
    line: Optional[int] = None


@dataclass(frozen=True)
class Draw:
    aperture: Aperture
    start: Position
    end: Position
    polarity: Polarity = Polarity.DARK
    line: Optional[int] = None


@dataclass(frozen=True)
class Region:
    boundary: Tuple[Position, ...]
    polarity: Polarity = Polarity.DARK
    line: Optional[int] = None


Primitive = Union[Flash, Draw, Region]


@dataclass(frozen=True)
class GerberDrawing:
    """Result of parsing one drawing: its apertures and primitives in file order."""

    unit: str
    apertures: Dict[int, Aperture]
    primitives: Tuple[Primitive, ...]
    source: str = "<drawing>"

    def positions(self) -> Iterator[Position]:
        """Yield every coordinate referenced by the primitives, in order."""
        for primitive in self.primitives:
            if isinstance(primitive, Flash):
                yield primitive.position
            elif isinstance(primitive, Draw):
                yield primitive.start
                yield primitive.end
            else:
                yield from primitive.boundary


@dataclass(frozen=True)
class Token:
    text: str
    line: int
    extended: bool


def tokenize(text: str, source: str = "<drawing>") -> Iterator[Token]:
    """Split Gerber text into words.

    Data words end with ``*``; extended commands sit between ``%`` marks and
    may hold several words. Line breaks carry no meaning except for error
    locations.
    """
    line = 1
    buffer: List[str] = []
    word_line: Optional[int] = None
    in_extended = False
    extended_line = 0

    for char in text:
        if char == "\n":
            line += 1
            continue
        if char == "\r":
            continue
        if char == "%":
            if "".join(buffer).strip():
                raise MalformedDrawing("Command not terminated with '*'", word_line, source)
            buffer = []
            word_line = None
            if not in_extended:
                extended_line = line
            in_extended = not in_extended
            continue
        if char == "*":
            word = "".join(buffer).strip()
            if word:
                yield Token(word, word_line if word_line is not None else line, in_extended)
            buffer = []
            word_line = None
            continue
        if word_line is None and not char.isspace():
            word_line = line
        buffer.append(char)

    if in_extended:
        raise MalformedDrawing("Unterminated extended command (missing '%')", extended_line, source)
    if "".join(buffer).strip():
        raise MalformedDrawing("Command not terminated with '*'", word_line, source)


_WORD_RE = re.compile(r"^(?:G0*(?P<g>\d+))?(?P<coords>[XYIJ][-+\dXYIJ.]*)?(?:D0*(?P<d>\d+))?$")
_COMMENT_RE = re.compile(r"^G0*4(?!\d)")

_LAYER_COMMANDS = ("LN", "LM", "LR", "LS", "AB")
_IMAGE_COMMANDS = ("OF", "SF", "MI", "IR", "AS")


@dataclass(frozen=True)
class ObjectLocation:
    """Where a graphic object came from: its source line and selected D code."""

    line: int
    aperture: Optional[int] = None


@dataclass
class DrawingScan:
    """Statement-level facts gerbonara does not check or report."""

    unit: Optional[str] = None
    locations: List[ObjectLocation] = field(default_factory=list)


def scan_drawing(text: str, source: str = "<drawing>") -> DrawingScan:
    """Walk the statements of a drawing without interpreting coordinates.

    Rejects the constructs gerberforge does not implement, checks that every
    region is terminated and that the file ends with M02, and records the line
    of every statement that produces a graphic object.

    Raises:
        MalformedDrawing: unterminated region, flash inside a region, missing M02
        UnsupportedFeature: layer commands, step and repeat, negative images, G74, G91
    """
    scan = DrawingScan()
    has_format = False
    in_region = False
    region_line = 0
    contour_segments = 0
    contour_line: Optional[int] = None
    aperture: Optional[int] = None
    last_operation: Optional[int] = None
    ended = False
    last_line = 1

    def close_contour():
        nonlocal contour_segments, contour_line
        if contour_segments:
            scan.locations.append(ObjectLocation(contour_line))
        contour_segments = 0
        contour_line = None

    for token in tokenize(text, source):
        word = token.text
        last_line = token.line

        if token.extended:
            code = word[:2]
            if code == "FS":
                if re.match(r"^FS[LTD]?I", word):
                    raise UnsupportedFeature("Incremental coordinate notation", token.line, source)
                has_format = True
            elif code == "MO":
                scan.unit = {"MOMM": "mm", "MOIN": "in"}.get(word, scan.unit)
            elif code == "SR" and word not in ("SR", "SRX1Y1I0J0", "SRX1Y1"):
                raise UnsupportedFeature("Step and repeat", token.line, source)
            elif word == "IPNEG":
                raise UnsupportedFeature("Negative image polarity", token.line, source)
            elif code in _LAYER_COMMANDS:
                raise UnsupportedFeature(f"Layer command '{word}'", token.line, source)
            elif code in _IMAGE_COMMANDS:
                raise UnsupportedFeature(f"Image transformation '{word}'", token.line, source)
            continue

        if _COMMENT_RE.match(word):
            continue
        if word in ("M02", "M2", "M00", "M0"):
            ended = True
            break
        if word.startswith(("G54", "G55")) and len(word) > 3:
            word = word[3:]

        match = _WORD_RE.match(word)
        if not match:
            # Left for gerbonara to report
            continue

        g_code = int(match.group("g")) if match.group("g") is not None else None
        if g_code == 36:
            if in_region:
                raise MalformedDrawing("G36 inside a region", token.line, source)
            in_region = True
            region_line = token.line
        elif g_code == 37:
            if not in_region:
                raise MalformedDrawing("G37 without a matching G36", token.line, source)
            close_contour()
            in_region = False
        elif g_code == 74:
            raise UnsupportedFeature("Single-quadrant arcs (G74)", token.line, source)
        elif g_code == 91:
            raise UnsupportedFeature("Incremental coordinates (G91)", token.line, source)
        elif g_code in (70, 71):
            scan.unit = "in" if g_code == 70 else "mm"

        d_code = int(match.group("d")) if match.group("d") is not None else None
        if d_code is not None and d_code >= 10:
            aperture = d_code
            continue

        has_coordinates = match.group("coords") is not None
        operation = d_code if d_code is not None else (last_operation if has_coordinates else None)
        if operation is None:
            continue
        if has_coordinates and (scan.unit is None or not has_format):
            raise MalformedDrawing("Coordinate before %FS and %MO header", token.line, source)

        if operation == 1:
            if in_region:
                contour_segments += 1
                if contour_line is None:
                    contour_line = token.line
            else:
                scan.locations.append(ObjectLocation(token.line, aperture))
        elif operation == 2:
            if in_region:
                close_contour()
                contour_line = token.line
        elif operation == 3:
            if in_region:
                raise MalformedDrawing("Flash (D03) inside a region", token.line, source)
            scan.locations.append(ObjectLocation(token.line, aperture))
        last_operation = operation

    if in_region:
        raise MalformedDrawing("Unterminated region (G36 without G37)", region_line, source)
    if not ended:
        raise MalformedDrawing("Missing end-of-file marker M02", last_line, source)
    return scan


def _unit_name(unit, line: Optional[int], source: str) -> str:
    if unit == MM:
        return "mm"
    if unit == Inch:
        return "in"
    raise MalformedDrawing("Drawing declares no unit (%MO)", line, source)


def _error_line(error: Exception) -> Optional[int]:
    lineno = getattr(error, "lineno", None)
    if lineno:
        return lineno
    match = re.search(r":(\d+)\b", str(error))
    return int(match.group(1)) if match else None


class GerberParser:
    """Parse Gerber RS-274X text into an ordered list of primitives.

    gerbonara reads the drawing; its graphic objects are converted into
    gerberforge primitives with dimensioned coordinates, and arcs are split
    into chords.
    """

    def __init__(self, text: str, source: str = "<drawing>", arc_tolerance: Length = DEFAULT_ARC_TOLERANCE):
        """Initialize the parser.

        Args:
            text: Complete drawing text
            source: Name used in error messages (usually the file path)
            arc_tolerance: Maximum chord error when arcs are split into segments
        """
        self.text = text
        self.source = source
        self.arc_tolerance = arc_tolerance
        self.layer: Optional[GerberFile] = None
        self.apertures: Dict[int, Aperture] = {}
        self.primitives: List[Primitive] = []
        self._converted: Dict[int, Aperture] = {}

    def parse(self) -> GerberDrawing:
        """Parse the drawing.

        Returns:
            GerberDrawing with apertures and primitives in file order

        Raises:
            MalformedDrawing: syntax errors, missing header, unterminated region or missing M02
            UnsupportedFeature: aperture macros, layer commands and other unimplemented constructs
        """
        self.apertures = {}
        self.primitives = []
        self._converted = {}

        scan = scan_drawing(self.text, self.source)
        try:
            self.layer = GerberFile.from_string(self.text)
        except Exception as e:
            raise MalformedDrawing(f"Could not parse drawing: {e}", _error_line(e), self.source) from e

        objects = list(self.layer.objects)
        locations: List[Optional[ObjectLocation]] = list(scan.locations)
        if len(locations) != len(objects):
            logger.debug(
                "%s: %d statements for %d graphic objects, source lines unavailable",
                self.source, len(locations), len(objects),
            )
            locations = [None] * len(objects)

        for obj, location in zip(objects, locations):
            self._convert(obj, location)

        logger.debug(
            "Parsed %s: %d apertures, %d primitives, unit=%s",
            self.source, len(self.apertures), len(self.primitives), scan.unit,
        )
        return GerberDrawing(
            unit=scan.unit or "mm",
            apertures=dict(self.apertures),
            primitives=tuple(self.primitives),
            source=self.source,
        )

    def _convert(self, obj, location: Optional[ObjectLocation]):
        line = location.line if location is not None else None
        polarity = Polarity.DARK if obj.polarity_dark else Polarity.CLEAR
        unit = _unit_name(obj.unit, line, self.source)

        def position(x: float, y: float) -> Position:
            return Position(Length(x, unit), Length(y, unit))

        if isinstance(obj, go.Flash):
            aperture = self._aperture(obj.aperture, location)
            self.primitives.append(Flash(aperture, position(obj.x, obj.y), polarity, line))
        elif isinstance(obj, go.Line):
            aperture = self._aperture(obj.aperture, location)
            self.primitives.append(
                Draw(aperture, position(obj.x1, obj.y1), position(obj.x2, obj.y2), polarity, line)
            )
        elif isinstance(obj, go.Arc):
            aperture = self._aperture(obj.aperture, location)
            start = (obj.x1, obj.y1)
            center = (obj.x1 + obj.cx, obj.y1 + obj.cy)
            for end in self._arc_points(start, (obj.x2, obj.y2), center, obj.clockwise, unit):
                self.primitives.append(Draw(aperture, position(*start), position(*end), polarity, line))
                start = end
        elif isinstance(obj, go.Region):
            points = self._region_points(obj, unit)
            if len(points) < 3:
                raise MalformedDrawing(
                    f"Region contour needs at least 3 distinct points, got {len(points)}", line, self.source
                )
            boundary = tuple(position(x, y) for x, y in points)
            self.primitives.append(Region(boundary, polarity, line))
        else:
            raise UnsupportedFeature(f"Graphic object {type(obj).__name__}", line, self.source)

    def _aperture(self, aperture, location: Optional[ObjectLocation]) -> Aperture:
        """Convert a gerbonara aperture once; D codes come from the selecting statement."""
        line = location.line if location is not None else None
        if id(aperture) in self._converted:
            return self._converted[id(aperture)]
        if isinstance(aperture, ap.ApertureMacroInstance):
            raise UnsupportedFeature("Macro aperture", line, self.source)

        code = location.aperture if location is not None else None
        if code is None:
            code = max(self.apertures, default=9) + 1
        unit = _unit_name(aperture.unit, line, self.source)

        def length(value):
            return Length(value, unit)

        hole = length(aperture.hole_dia) if aperture.hole_dia else None
        if isinstance(aperture, ap.CircleAperture):
            converted = CircleAperture(code, length(aperture.diameter), hole)
        elif isinstance(aperture, ap.RectangleAperture):
            converted = RectangleAperture(code, length(aperture.w), length(aperture.h), hole)
        elif isinstance(aperture, ap.ObroundAperture):
            converted = ObroundAperture(code, length(aperture.w), length(aperture.h), hole)
        elif isinstance(aperture, ap.PolygonAperture):
            rotation = math.degrees(aperture.rotation) if aperture.rotation else 0.0
            converted = PolygonAperture(code, length(aperture.diameter), int(aperture.n_vertices), rotation, hole)
        else:
            raise UnsupportedFeature(f"Aperture type {type(aperture).__name__}", line, self.source)

        self._converted[id(aperture)] = converted
        self.apertures[code] = converted
        return converted

    def _region_points(self, region, unit: str) -> List[Tuple[float, float]]:
        """Contour of a region with arc segments split into chords and the closing point dropped."""
        outline = [tuple(p) for p in region.outline]
        arc_centers = list(region.arc_centers)
        contour: List[Tuple[float, float]] = outline[:1]
        for k in range(1, len(outline)):
            start, end = outline[k - 1], outline[k]
            arc = arc_centers[k - 1] if k - 1 < len(arc_centers) else None
            if arc is None or arc[0] is None:
                contour.append(end)
                continue
            clockwise, (ox, oy) = arc
            contour.extend(self._arc_points(start, end, (start[0] + ox, start[1] + oy), clockwise, unit))

        points: List[Tuple[float, float]] = []
        for point in contour:
            if not points or point != points[-1]:
                points.append(point)
        if len(points) > 1 and points[0] == points[-1]:
            points.pop()
        return points

    def _arc_points(
        self,
        start: Tuple[float, float],
        end: Tuple[float, float],
        center: Tuple[float, float],
        clockwise: bool,
        unit: str,
    ) -> List[Tuple[float, float]]:
        """Split a circular arc into chords ending exactly at ``end``."""
        sx, sy = start
        x, y = end
        cx, cy = center
        radius = math.hypot(sx - cx, sy - cy)
        if radius == 0.0:
            return [end]

        start_angle = math.atan2(sy - cy, sx - cx)
        end_angle = math.atan2(y - cy, x - cx)
        if clockwise:
            sweep = start_angle - end_angle
        else:
            sweep = end_angle - start_angle
        sweep %= 2.0 * math.pi
        if math.isclose(sx, x, abs_tol=1e-12) and math.isclose(sy, y, abs_tol=1e-12):
            sweep = 2.0 * math.pi

        tolerance = self.arc_tolerance.get(unit)
        if tolerance >= radius:
            max_step = math.pi / 2.0
        else:
            max_step = 2.0 * math.acos(1.0 - tolerance / radius)
        segments = max(1, int(math.ceil(sweep / max_step)))
        direction = -1.0 if clockwise else 1.0
        angles = start_angle + direction * np.linspace(0.0, sweep, segments + 1)[1:]

        points = [(cx + radius * math.cos(a), cy + radius * math.sin(a)) for a in angles[:-1]]
        points.append(end)
        return points


def parse_gerber(text: str, source: str = "<drawing>", arc_tolerance: Length = DEFAULT_ARC_TOLERANCE) -> GerberDrawing:
    """Parse Gerber text. See GerberParser.parse."""
    return GerberParser(text, source=source, arc_tolerance=arc_tolerance).parse()
