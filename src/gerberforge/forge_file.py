"""Forge files: the list of stages that make up one build."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .config import Machine, _mapping, _warn_unknown, load_config_file, parse_machines
from .errors import ConfigError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EngraveMaskStage:
    gerber_file: Path
    gcode_file: str
    machine_config: Optional[str] = None


@dataclass(frozen=True)
class CutBoardStage:
    gcode_file: str
    machine_config: Optional[str] = None
    file: Optional[Path] = None


Stage = Union[EngraveMaskStage, CutBoardStage]


def parse_stage(data: Any, where: str) -> Stage:
    """Parse ``{engrave_mask: {...}}`` or ``{cut_board: {...}}``."""
    data = _mapping(data, where)
    if len(data) != 1:
        raise ConfigError(f"{where}: a stage must have exactly one kind, got {sorted(data)}")
    kind, body = next(iter(data.items()))
    body = _mapping(body, f"{where}.{kind}")
    machine_config = body.get("machine_config")

    if kind == "engrave_mask":
        _warn_unknown(body, ("machine_config", "gerber_file", "gcode_file"), f"{where}.{kind}")
        for key in ("gerber_file", "gcode_file"):
            if key not in body:
                raise ConfigError(f"{where}.{kind}: missing '{key}'")
        return EngraveMaskStage(Path(body["gerber_file"]), str(body["gcode_file"]), machine_config)

    if kind == "cut_board":
        _warn_unknown(body, ("machine_config", "file", "gcode_file"), f"{where}.{kind}")
        if "gcode_file" not in body:
            raise ConfigError(f"{where}.{kind}: missing 'gcode_file'")
        file = Path(body["file"]) if "file" in body else None
        return CutBoardStage(str(body["gcode_file"]), machine_config, file)

    raise ConfigError(f"{where}: unknown stage kind '{kind}'")


@dataclass
class ForgeFile:
    stages: List[Stage] = field(default_factory=list)
    machines: Dict[str, Machine] = field(default_factory=dict)
    path: Optional[Path] = None

    @property
    def directory(self) -> Path:
        """Directory that relative gerber paths are resolved against."""
        if self.path is None:
            return Path.cwd()
        return self.path.resolve().parent

    @classmethod
    def from_dict(cls, data: Dict[str, Any], path: Optional[Path] = None) -> "ForgeFile":
        where = str(path) if path is not None else "forge file"
        data = _mapping(data, where)
        _warn_unknown(data, ("stages", "machines"), where)

        stages_data = data.get("stages") or []
        if not isinstance(stages_data, list):
            raise ConfigError(f"{where}.stages: expected a list")
        stages = [parse_stage(stage, f"{where}.stages[{i}]") for i, stage in enumerate(stages_data)]
        machines = parse_machines(data.get("machines"), f"{where}.machines")
        return cls(stages, machines, path)

    @classmethod
    def load_from_path(cls, path: Path) -> "ForgeFile":
        path = Path(path)
        logger.info("Read forge file: %s", path)
        return cls.from_dict(load_config_file(path), path)
