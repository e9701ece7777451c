"""G-code generation from motion commands."""

import math
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Union

from .errors import InvalidCoordinate
from .units import AngularVelocity, Length, Power, Velocity


COORDINATE_DECIMALS = 4


@dataclass(frozen=True)
class RapidMove:
    """Tool-off move; omitted axes keep their position."""

    x: Optional[Length] = None
    y: Optional[Length] = None
    z: Optional[Length] = None


@dataclass(frozen=True)
class CutMove:
    x: Length
    y: Length
    z: Optional[Length] = None
    feed: Optional[Velocity] = None


@dataclass(frozen=True)
class LaserPower:
    power: Power
    max_power: Power
    s_max: int = 255

    @property
    def s_value(self) -> int:
        """Power mapped onto the 0..s_max range of the S word."""
        fraction = min(max(self.power / self.max_power, 0.0), 1.0)
        return int(round(fraction * self.s_max))


@dataclass(frozen=True)
class SpindleSpeed:
    rpm: AngularVelocity


@dataclass(frozen=True)
class SetToolState:
    enabled: bool
    setting: Optional[Union[LaserPower, SpindleSpeed]] = None


@dataclass(frozen=True)
class Comment:
    text: str


MotionCommand = Union[RapidMove, CutMove, SetToolState, Comment]


def _format(value: float, decimals: int, what: str, index: int) -> str:
    if not math.isfinite(value):
        raise InvalidCoordinate(f"{what} is {value}", index)
    text = f"{value:.{decimals}f}"
    if text.startswith("-") and float(text) == 0.0:
        text = text[1:]
    return text


def _axes(command: Union[RapidMove, CutMove], index: int) -> str:
    words = []
    if command.x is not None:
        words.append(f"X{_format(command.x.get('mm'), COORDINATE_DECIMALS, 'X coordinate', index)}")
    if command.y is not None:
        words.append(f"Y{_format(command.y.get('mm'), COORDINATE_DECIMALS, 'Y coordinate', index)}")
    if command.z is not None:
        words.append(f"Z{_format(command.z.get('mm'), COORDINATE_DECIMALS, 'Z coordinate', index)}")
    return " ".join(words)


class GCodeFile:
    """Serialize an ordered list of motion commands to G-code text.

    Output depends only on the commands: the same list always gives the same
    text. Coordinates are written in millimetres.
    """

    def __init__(self, commands: Sequence[MotionCommand]):
        self.commands = list(commands)

    def to_string(self) -> str:
        """Render the program.

        Raises:
            InvalidCoordinate: a coordinate, feed or tool setting is NaN or infinite
        """
        lines = [
            "; G-code generated by gerberforge",
            "G21         ; Set units to millimeters",
            "G90         ; Absolute positioning",
            "M5          ; Ensure tool is off",
        ]

        feed: Optional[str] = None
        for index, command in enumerate(self.commands):
            if isinstance(command, RapidMove):
                lines.append(f"G0 {_axes(command, index)}")
            elif isinstance(command, CutMove):
                line = f"G1 {_axes(command, index)}"
                if command.feed is not None:
                    new_feed = _format(command.feed.get("mm/min"), 1, "feed rate", index)
                    if new_feed != feed:
                        line += f" F{new_feed}"
                        feed = new_feed
                lines.append(line)
            elif isinstance(command, SetToolState):
                lines.append(self._tool_state(command, index))
            elif isinstance(command, Comment):
                text = " ".join(command.text.splitlines())
                lines.append(f"; {text}" if text else ";")
            else:
                raise TypeError(f"Unknown motion command {type(command).__name__}")

        lines.append("M5          ; Ensure tool is off")
        lines.append("M2          ; Program end")
        return "\n".join(lines) + "\n"

    @staticmethod
    def _tool_state(command: SetToolState, index: int) -> str:
        if not command.enabled:
            return "M5"
        setting = command.setting
        if isinstance(setting, LaserPower):
            if not (setting.power.is_finite() and setting.max_power.is_finite()):
                raise InvalidCoordinate("laser power is not finite", index)
            return f"M4 S{setting.s_value}"
        if isinstance(setting, SpindleSpeed):
            return f"M3 S{_format(setting.rpm.get('rpm'), 0, 'spindle speed', index)}"
        return "M3"

    def __str__(self):
        return self.to_string()


@dataclass
class _Destination:
    lock: threading.Lock = field(default_factory=threading.Lock)
    stages: Dict[int, List[MotionCommand]] = field(default_factory=dict)


class GCodeAccumulator:
    """Commands per destination file, ordered by stage index.

    Stages may append concurrently; appends to one destination are serialized
    and the output order follows stage indices, not completion order.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._destinations: Dict[str, _Destination] = {}

    def append(self, destination: str, stage_index: int, commands: Sequence[MotionCommand]):
        with self._lock:
            entry = self._destinations.setdefault(destination, _Destination())
        with entry.lock:
            entry.stages.setdefault(stage_index, []).extend(commands)

    def destinations(self) -> List[str]:
        with self._lock:
            return sorted(self._destinations)

    def commands(self, destination: str) -> List[MotionCommand]:
        with self._lock:
            entry = self._destinations[destination]
        with entry.lock:
            return [c for index in sorted(entry.stages) for c in entry.stages[index]]

    def files(self) -> Dict[str, GCodeFile]:
        return {destination: GCodeFile(self.commands(destination)) for destination in self.destinations()}
