"""Machine, tool and job configuration."""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple, Union

import yaml

from .errors import ConfigError, UnitError
from .toolpath_generator import DEFAULT_SAFE_HEIGHT, LaserSelection, SpindleSelection, ToolSelection
from .units import AngularVelocity, Length, Power, Velocity, parse_quantity


logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "GERBERFORGE_CONFIG"
DEFAULT_DISTANCE_PER_STEP = Length.mm(0.1)


def load_config_file(config_path: Path) -> Dict[str, Any]:
    """Load a JSON or YAML file into a dictionary.

    Args:
        config_path: Path to a .json, .yaml or .yml file

    Returns:
        Dictionary of configuration values
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise ConfigError(f"Config file '{config_path}' not found")

    suffix = config_path.suffix.lower()
    try:
        with open(config_path, "r") as f:
            if suffix == ".json":
                data = json.load(f)
            elif suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            else:
                raise ConfigError(f"Unsupported config file format '{suffix}'. Use .json or .yaml")
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"Could not parse {config_path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{config_path}: top level must be a mapping")
    return data


def _mapping(data: Any, where: str) -> Dict[str, Any]:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{where}: expected a mapping, got {type(data).__name__}")
    return data


def _warn_unknown(data: Dict[str, Any], known: Iterable[str], where: str):
    unknown = set(data) - set(known)
    if unknown:
        logger.warning("%s: ignoring unknown keys: %s", where, ", ".join(sorted(unknown)))


def _quantity(data: Dict[str, Any], key: str, kind, where: str, default=None):
    if key not in data:
        if default is not None:
            return default
        raise ConfigError(f"{where}: missing '{key}'")
    try:
        return parse_quantity(data[key], kind)
    except UnitError as e:
        raise UnitError(f"{where}.{key}: {e}") from None


@dataclass(frozen=True)
class WorkspaceSize:
    width: Length
    height: Length


@dataclass(frozen=True)
class LaserConfig:
    point_diameter: Length
    max_power: Power
    s_max: int = 255


@dataclass(frozen=True)
class DrillBit:
    diameter: Length


@dataclass(frozen=True)
class EndMillBit:
    diameter: Length


SpindleBit = Union[DrillBit, EndMillBit]


@dataclass(frozen=True)
class SpindleConfig:
    max_speed: AngularVelocity
    bits: Dict[str, SpindleBit]
    safe_height: Length = DEFAULT_SAFE_HEIGHT


Tool = Union[LaserConfig, SpindleConfig]


@dataclass(frozen=True)
class LaserJob:
    laser_power: Power
    work_speed: Velocity


@dataclass(frozen=True)
class DrillJob:
    spindle_rpm: AngularVelocity
    plunge_speed: Velocity


@dataclass(frozen=True)
class EndMillJob:
    spindle_rpm: AngularVelocity
    max_cut_depth: Length
    plunge_speed: Velocity
    work_speed: Velocity


ToolConfig = Union[LaserJob, DrillJob, EndMillJob]


@dataclass(frozen=True)
class JobConfig:
    """Material and operation parameters for one job profile.

    ``tool`` names the machine tool, followed by the bit for spindles
    (``"spindle/vbit"``).
    """

    tool: str
    tool_power: ToolConfig
    distance_per_step: Length = DEFAULT_DISTANCE_PER_STEP

    def describe(self) -> str:
        power = self.tool_power
        if isinstance(power, LaserJob):
            return f"Power: {power.laser_power.get('W'):g} W, Work Speed: {power.work_speed.get('mm/min'):g} mm/m"
        if isinstance(power, DrillJob):
            return f"RPM: {power.spindle_rpm.get('rpm'):g}, Plunge Speed: {power.plunge_speed.get('mm/min'):g} mm/m"
        return (
            f"RPM: {power.spindle_rpm.get('rpm'):g}, Max Cut Depth: {power.max_cut_depth.get('mm'):g} mm, "
            f"Plunge Speed: {power.plunge_speed.get('mm/min'):g} mm/m, Work Speed: {power.work_speed.get('mm/min'):g} mm/m"
        )


@dataclass
class Machine:
    tools: Dict[str, Tool] = field(default_factory=dict)
    engraving_configs: Dict[str, JobConfig] = field(default_factory=dict)
    cutting_configs: Dict[str, JobConfig] = field(default_factory=dict)
    workspace_area: Optional[WorkspaceSize] = None

    def tool_selection(self, job: JobConfig) -> Tuple[str, ToolSelection]:
        """Resolve the job's tool path against this machine.

        Returns:
            Tuple of (tool description, ToolSelection)
        """
        parts = [p for p in job.tool.split("/") if p]
        if not parts:
            raise ConfigError("No tool name provided")
        if len(parts) > 2:
            raise ConfigError(f"Too many parts in tool path '{job.tool}'")

        tool_name = parts[0]
        tool = self.tools.get(tool_name)
        if tool is None:
            raise ConfigError(f"Could not find tool '{tool_name}'")

        power = job.tool_power
        if isinstance(tool, LaserConfig):
            if not isinstance(power, LaserJob):
                raise ConfigError(f"Tool '{tool_name}' is a laser but the job has no laser_power/work_speed")
            if power.laser_power > tool.max_power:
                logger.warning(
                    "Laser power %s exceeds the maximum %s of '%s'; output will be clamped",
                    power.laser_power, tool.max_power, tool_name,
                )
            selection = LaserSelection(
                point_diameter=tool.point_diameter,
                max_power=tool.max_power,
                laser_power=power.laser_power,
                work_speed=power.work_speed,
                s_max=tool.s_max,
            )
            return tool_name, selection

        if len(parts) < 2:
            raise ConfigError(f"No bit name provided for spindle '{tool_name}'")
        bit_name = parts[1]
        bit = tool.bits.get(bit_name)
        if bit is None:
            raise ConfigError(f"Spindle '{tool_name}' does not have a bit named '{bit_name}'")
        if isinstance(power, LaserJob):
            raise ConfigError(f"Tool '{tool_name}' is a spindle but the job has laser settings")
        if power.spindle_rpm > tool.max_speed:
            raise ConfigError(
                f"Spindle speed {power.spindle_rpm} exceeds the maximum {tool.max_speed} of '{tool_name}'"
            )
        if isinstance(power, EndMillJob):
            selection = SpindleSelection(
                bit_diameter=bit.diameter,
                spindle_rpm=power.spindle_rpm,
                plunge_speed=power.plunge_speed,
                work_speed=power.work_speed,
                max_cut_depth=power.max_cut_depth,
                safe_height=tool.safe_height,
            )
        else:
            selection = SpindleSelection(
                bit_diameter=bit.diameter,
                spindle_rpm=power.spindle_rpm,
                plunge_speed=power.plunge_speed,
                safe_height=tool.safe_height,
            )
        return f"{tool_name}/{bit_name}", selection


def parse_tool(data: Any, where: str) -> Tool:
    data = _mapping(data, where)
    kind = data.get("type")
    if kind == "laser":
        _warn_unknown(data, ("type", "point_diameter", "max_power", "s_max"), where)
        max_power = _quantity(data, "max_power", Power, where)
        if max_power <= Power.zero():
            raise ConfigError(f"{where}.max_power: must be positive")
        s_max = data.get("s_max", 255)
        if not isinstance(s_max, int) or s_max <= 0:
            raise ConfigError(f"{where}.s_max: must be a positive integer")
        return LaserConfig(_quantity(data, "point_diameter", Length, where), max_power, s_max)
    if kind == "spindle":
        _warn_unknown(data, ("type", "max_speed", "bits", "safe_height"), where)
        bits = {}
        for name, bit in _mapping(data.get("bits"), f"{where}.bits").items():
            bits[name] = parse_bit(bit, f"{where}.bits.{name}")
        return SpindleConfig(
            max_speed=_quantity(data, "max_speed", AngularVelocity, where),
            bits=bits,
            safe_height=_quantity(data, "safe_height", Length, where, default=DEFAULT_SAFE_HEIGHT),
        )
    raise ConfigError(f"{where}: tool type must be 'laser' or 'spindle', got {kind!r}")


def parse_bit(data: Any, where: str) -> SpindleBit:
    data = _mapping(data, where)
    kind = data.get("type")
    _warn_unknown(data, ("type", "diameter"), where)
    diameter = _quantity(data, "diameter", Length, where)
    if kind == "drill":
        return DrillBit(diameter)
    if kind == "end_mill":
        return EndMillBit(diameter)
    raise ConfigError(f"{where}: bit type must be 'drill' or 'end_mill', got {kind!r}")


def parse_job_config(data: Any, where: str) -> JobConfig:
    """Parse a job profile; the tool settings are recognised by their keys."""
    data = _mapping(data, where)
    if "tool" not in data:
        raise ConfigError(f"{where}: missing 'tool'")

    if "laser_power" in data:
        known = ("laser_power", "work_speed")
        tool_power = LaserJob(
            _quantity(data, "laser_power", Power, where),
            _quantity(data, "work_speed", Velocity, where),
        )
    elif "max_cut_depth" in data:
        known = ("spindle_rpm", "max_cut_depth", "plunge_speed", "work_speed")
        tool_power = EndMillJob(
            _quantity(data, "spindle_rpm", AngularVelocity, where),
            _quantity(data, "max_cut_depth", Length, where),
            _quantity(data, "plunge_speed", Velocity, where),
            _quantity(data, "work_speed", Velocity, where),
        )
    elif "spindle_rpm" in data:
        known = ("spindle_rpm", "plunge_speed")
        tool_power = DrillJob(
            _quantity(data, "spindle_rpm", AngularVelocity, where),
            _quantity(data, "plunge_speed", Velocity, where),
        )
    else:
        raise ConfigError(f"{where}: expected laser_power, or spindle_rpm and plunge_speed")

    _warn_unknown(data, ("tool", "distance_per_step") + known, where)
    step = _quantity(data, "distance_per_step", Length, where, default=DEFAULT_DISTANCE_PER_STEP)
    if step <= Length.zero():
        raise ConfigError(f"{where}.distance_per_step: must be positive")
    return JobConfig(str(data["tool"]), tool_power, step)


def parse_machine(data: Any, where: str) -> Machine:
    data = _mapping(data, where)
    _warn_unknown(data, ("tools", "engraving_configs", "cutting_configs", "workspace_area"), where)

    tools = {name: parse_tool(tool, f"{where}.tools.{name}")
             for name, tool in _mapping(data.get("tools"), f"{where}.tools").items()}
    engraving = {name: parse_job_config(job, f"{where}.engraving_configs.{name}")
                 for name, job in _mapping(data.get("engraving_configs"), f"{where}.engraving_configs").items()}
    cutting = {name: parse_job_config(job, f"{where}.cutting_configs.{name}")
               for name, job in _mapping(data.get("cutting_configs"), f"{where}.cutting_configs").items()}

    workspace = None
    if "workspace_area" in data:
        area = _mapping(data["workspace_area"], f"{where}.workspace_area")
        workspace = WorkspaceSize(
            _quantity(area, "width", Length, f"{where}.workspace_area"),
            _quantity(area, "height", Length, f"{where}.workspace_area"),
        )
    return Machine(tools, engraving, cutting, workspace)


def parse_machines(data: Any, where: str = "machines") -> Dict[str, Machine]:
    return {name: parse_machine(machine, f"{where}.{name}") for name, machine in _mapping(data, where).items()}


@dataclass
class Config:
    """User-wide settings: shared machines and the default engraver."""

    default_engraver: Optional[str] = None
    machines: Dict[str, Machine] = field(default_factory=dict)

    @staticmethod
    def get_path() -> Path:
        override = os.environ.get(CONFIG_ENV_VAR)
        if override:
            return Path(override)
        return Path.home() / ".config" / "gerberforge" / "config.yaml"

    @classmethod
    def from_dict(cls, data: Dict[str, Any], where: str = "config") -> "Config":
        data = _mapping(data, where)
        _warn_unknown(data, ("default_engraver", "machines"), where)
        default_engraver = data.get("default_engraver")
        if default_engraver is not None and not isinstance(default_engraver, str):
            raise ConfigError(f"{where}.default_engraver: expected 'machine/profile'")
        return cls(default_engraver, parse_machines(data.get("machines"), f"{where}.machines"))

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "Config":
        path = Path(path) if path is not None else cls.get_path()
        return cls.from_dict(load_config_file(path), str(path))

    @classmethod
    def load_or_default(cls, path: Optional[Path] = None) -> "Config":
        """Load the global config, falling back to defaults with a warning."""
        try:
            return cls.load(path)
        except ConfigError as e:
            logger.warning("Failed to read config file at %s: %s", path or cls.get_path(), e)
            return cls()
