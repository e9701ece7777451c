"""Build pipeline: forge file stages to G-code files."""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from .config import Config, JobConfig, Machine
from .errors import ConfigError, GerberForgeError, GeometryWarning
from .forge_file import CutBoardStage, EngraveMaskStage, ForgeFile, Stage
from .gcode_generator import Comment, GCodeAccumulator
from .geometry import BoundingBox, build_copper_geometry
from .gerber_parser import parse_gerber
from .toolpath_generator import ToolpathGenerator, ToolSelection
from .visualizer import render_debug_svg


logger = logging.getLogger(__name__)


@dataclass
class StageResult:
    index: int
    destination: Optional[str] = None
    bounds: Optional[BoundingBox] = None
    warnings: List[GeometryWarning] = field(default_factory=list)
    skipped: bool = False


def resolve_machine(
    machine_config: Optional[str], forge_file: ForgeFile, global_config: Config
) -> Tuple[Machine, str, str]:
    """Look up ``machine/profile``; forge file machines take precedence.

    Returns:
        Tuple of (machine, machine name, profile name)
    """
    path = machine_config or global_config.default_engraver
    if not path:
        raise ConfigError("No machine configuration given and no default engraver configured")
    logger.info("Using machine configuration: %s", path)

    parts = [p for p in path.split("/") if p]
    if len(parts) < 2:
        raise ConfigError(f"Machine profile not provided by machine config path '{path}'")
    if len(parts) > 2:
        raise ConfigError(f"Too many parts to machine config path '{path}'")

    machine_name, profile = parts
    machine = forge_file.machines.get(machine_name) or global_config.machines.get(machine_name)
    if machine is None:
        raise ConfigError(f"Failed to find machine configuration '{machine_name}'")
    return machine, machine_name, profile


def resolve_engraving_job(
    stage: EngraveMaskStage, forge_file: ForgeFile, global_config: Config
) -> Tuple[JobConfig, ToolSelection]:
    machine, machine_name, profile = resolve_machine(stage.machine_config, forge_file, global_config)
    job = machine.engraving_configs.get(profile)
    if job is None:
        raise ConfigError(f"Failed to find engraving profile '{profile}' on machine '{machine_name}'")
    tool_name, selection = machine.tool_selection(job)
    logger.info("Using tool %s (%s)", tool_name, selection.describe())
    return job, selection


def run_engrave_stage(
    index: int,
    stage: EngraveMaskStage,
    forge_file: ForgeFile,
    global_config: Config,
    accumulator: GCodeAccumulator,
    debug_directory: Optional[Path] = None,
) -> StageResult:
    """Parse, resolve and plan one engraving stage, appending its commands."""
    logger.info("Process engrave stage %d: %s", index, stage.gerber_file)
    job, selection = resolve_engraving_job(stage, forge_file, global_config)

    gerber_path = forge_file.directory / stage.gerber_file
    try:
        text = gerber_path.read_text()
    except OSError as e:
        raise GerberForgeError(f"Failed to read gerber file {gerber_path}: {e}") from e

    drawing = parse_gerber(text, source=str(stage.gerber_file))
    copper = build_copper_geometry(drawing)
    bounds = copper.calculate_bounds()

    if debug_directory is not None:
        render_debug_svg(copper.debug_paths(simplified=False), copper.raw.bounding_box(),
                         debug_directory / "gerber.svg", f"{stage.gerber_file}")

    generator = ToolpathGenerator(selection, job.distance_per_step)
    toolpath = generator.generate(copper.simplified)

    if debug_directory is not None:
        render_debug_svg(copper.debug_paths(simplified=True), bounds,
                         debug_directory / "gerber_simplified.svg", f"{stage.gerber_file} (simplified)",
                         toolpaths=toolpath.toolpaths)

    commands = [Comment(f"Stage {index}: engrave {stage.gerber_file} ({job.describe()})")]
    commands.extend(toolpath.commands)
    accumulator.append(stage.gcode_file, index, commands)

    return StageResult(index, stage.gcode_file, bounds, list(copper.warnings) + list(toolpath.warnings))


def run_stage(
    index: int,
    stage: Stage,
    forge_file: ForgeFile,
    global_config: Config,
    accumulator: GCodeAccumulator,
    target_directory: Path,
    debug: bool = False,
) -> StageResult:
    debug_directory = None
    if debug:
        debug_directory = target_directory / "debug" / f"stage{index}"
        debug_directory.mkdir(parents=True, exist_ok=True)
        logger.info("Debug output directory: %s", debug_directory)

    if isinstance(stage, EngraveMaskStage):
        return run_engrave_stage(index, stage, forge_file, global_config, accumulator, debug_directory)
    if isinstance(stage, CutBoardStage):
        logger.warning("Stage %d: board cutting is not supported, skipping (%s)", index, stage.gcode_file)
        return StageResult(index, stage.gcode_file, skipped=True)
    raise TypeError(f"Unknown stage type {type(stage).__name__}")


def build(
    forge_file_path: Path,
    target_directory: Path,
    global_config: Optional[Config] = None,
    debug: bool = False,
    jobs: int = 1,
) -> List[Path]:
    """Run every stage of a forge file and write the resulting G-code files.

    Stages run sequentially, or on a thread pool when ``jobs`` is greater
    than one. Nothing is written unless every stage succeeds; the first
    failure in stage order is raised.

    Args:
        forge_file_path: Path to the forge file
        target_directory: Directory the G-code (and debug) files are written to
        global_config: User-wide machines and default engraver
        debug: Write debug SVG renders for each stage
        jobs: Number of stages processed concurrently

    Returns:
        Paths of the written G-code files
    """
    global_config = global_config or Config()
    forge_file = ForgeFile.load_from_path(forge_file_path)
    target_directory = Path(target_directory)
    accumulator = GCodeAccumulator()

    args = (forge_file, global_config, accumulator, target_directory, debug)
    if jobs > 1 and len(forge_file.stages) > 1:
        with ThreadPoolExecutor(max_workers=jobs) as executor:
            futures = [executor.submit(run_stage, index, stage, *args)
                       for index, stage in enumerate(forge_file.stages)]
            results = [future.result() for future in futures]
    else:
        results = [run_stage(index, stage, *args) for index, stage in enumerate(forge_file.stages)]

    warning_count = sum(len(r.warnings) for r in results)
    if warning_count:
        logger.warning("%d geometry warning(s) while processing %s", warning_count, forge_file_path)

    # Render everything before touching the file system
    rendered = {destination: gcode.to_string() for destination, gcode in accumulator.files().items()}

    written = []
    for destination, text in rendered.items():
        output_file = target_directory / destination
        output_file.parent.mkdir(parents=True, exist_ok=True)
        with open(output_file, "w") as f:
            f.write(text)
        logger.info("Wrote %s", output_file)
        written.append(output_file)
    return written
