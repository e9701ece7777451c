"""
Pytest configuration and fixtures for the gerberforge test suite.
"""

import textwrap

import pytest
import yaml

from gerberforge.config import Config
from gerberforge.toolpath_generator import LaserSelection, SpindleSelection
from gerberforge.units import AngularVelocity, Length, Power, Velocity


HEADER = "%FSLAX36Y36*%\n%MOMM*%\n"


def mm(value: float) -> str:
    """Coordinate text for the 3.6 leading-omission format used by the fixtures."""
    return str(int(round(value * 1_000_000)))


def square_region(x0: float, y0: float, x1: float, y1: float) -> str:
    return (
        "G36*\n"
        f"X{mm(x0)}Y{mm(y0)}D02*\n"
        "G01*\n"
        f"X{mm(x1)}Y{mm(y0)}D01*\n"
        f"X{mm(x1)}Y{mm(y1)}D01*\n"
        f"X{mm(x0)}Y{mm(y1)}D01*\n"
        f"X{mm(x0)}Y{mm(y0)}D01*\n"
        "G37*\n"
    )


def gerber(*body: str, header: str = HEADER, end: bool = True) -> str:
    return header + "".join(body) + ("M02*\n" if end else "")


# ============================================================================
# Drawings
# ============================================================================

@pytest.fixture
def square_gerber():
    """A single 10mm x 10mm dark region at the origin."""
    return gerber(square_region(0, 0, 10, 10))


@pytest.fixture
def two_squares_gerber():
    """Two 4mm squares separated by a 2mm gap."""
    return gerber(square_region(0, 0, 4, 4), square_region(6, 0, 10, 4))


@pytest.fixture
def unterminated_region_gerber():
    return gerber(
        "G36*\n",
        f"X{mm(0)}Y{mm(0)}D02*\n",
        "G01*\n",
        f"X{mm(5)}Y{mm(0)}D01*\n",
        f"X{mm(5)}Y{mm(5)}D01*\n",
    )


@pytest.fixture
def trace_gerber():
    """Two pads joined by a 0.3mm trace."""
    return gerber(
        "%ADD10C,1.5*%\n",
        "%ADD11C,0.3*%\n",
        "D10*\n",
        f"X{mm(1)}Y{mm(1)}D03*\n",
        f"X{mm(9)}Y{mm(1)}D03*\n",
        "D11*\n",
        f"X{mm(1)}Y{mm(1)}D02*\n",
        f"X{mm(9)}Y{mm(1)}D01*\n",
    )


# ============================================================================
# Tools
# ============================================================================

@pytest.fixture
def laser():
    """1mm laser spot at 10 of 40 W."""
    return LaserSelection(
        point_diameter=Length.mm(1.0),
        max_power=Power(40, "W"),
        laser_power=Power(10, "W"),
        work_speed=Velocity(600, "mm/min"),
    )


@pytest.fixture
def spindle():
    return SpindleSelection(
        bit_diameter=Length.mm(1.0),
        spindle_rpm=AngularVelocity(10000, "rpm"),
        plunge_speed=Velocity(50, "mm/min"),
        work_speed=Velocity(200, "mm/min"),
        max_cut_depth=Length.mm(0.05),
    )


# ============================================================================
# Configuration files
# ============================================================================

MACHINES = {
    "k40": {
        "workspace_area": {"width": "300mm", "height": "200mm"},
        "tools": {
            "laser": {"type": "laser", "point_diameter": "1mm", "max_power": "40W"},
            "spindle": {
                "type": "spindle",
                "max_speed": "12000rpm",
                "bits": {
                    "vbit": {"type": "end_mill", "diameter": "0.2mm"},
                    "drill": {"type": "drill", "diameter": "0.8mm"},
                },
            },
        },
        "engraving_configs": {
            "fr4": {
                "tool": "laser",
                "distance_per_step": "0.5mm",
                "laser_power": "10W",
                "work_speed": "600mm/min",
            },
            "mill": {
                "tool": "spindle/vbit",
                "distance_per_step": "0.1mm",
                "spindle_rpm": "10000rpm",
                "max_cut_depth": "0.05mm",
                "plunge_speed": "50mm/min",
                "work_speed": "200mm/min",
            },
        },
        "cutting_configs": {},
    }
}


@pytest.fixture
def machines_data():
    return yaml.safe_load(yaml.safe_dump(MACHINES))


@pytest.fixture
def global_config(machines_data):
    return Config.from_dict({"default_engraver": "k40/fr4", "machines": machines_data})


@pytest.fixture
def write_file(tmp_path):
    """Write dedented text relative to tmp_path and return the path."""
    def write(name: str, content: str):
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(content))
        return path
    return write


@pytest.fixture
def forge_project(tmp_path, write_file):
    """Build a forge file with inline machines and the given gerber files.

    Usage: ``forge_project({"top.gbr": text}, [("top.gbr", "top.gcode")])``
    """
    def make(gerbers, stages, machine_config="k40/fr4"):
        for name, text in gerbers.items():
            write_file(name, text)
        forge = {
            "machines": MACHINES,
            "stages": [
                {"engrave_mask": {"machine_config": machine_config, "gerber_file": g, "gcode_file": out}}
                for g, out in stages
            ],
        }
        return write_file("board.forge.yaml", yaml.safe_dump(forge))
    return make
