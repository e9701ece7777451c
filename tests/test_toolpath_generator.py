"""End-to-end toolpath tests: Gerber text to motion commands.

Run:
    pytest tests/test_toolpath_generator.py -v
"""

import math

import pytest
from shapely.geometry import Point, box

from gerberforge.errors import ConfigError, ToolMismatch
from gerberforge.gcode_generator import Comment, CutMove, LaserPower, RapidMove, SetToolState, SpindleSpeed
from gerberforge.geometry import PolygonSet, build_copper_geometry
from gerberforge.gerber_parser import parse_gerber
from gerberforge.toolpath_generator import LaserSelection, ToolpathGenerator
from gerberforge.units import Length, Power, Velocity


def generate(text, tool, step=0.5):
    copper = build_copper_geometry(parse_gerber(text))
    return ToolpathGenerator(tool, Length.mm(step)).generate(copper.simplified)


def xy(command):
    return command.x.get("mm"), command.y.get("mm")


def moves(commands, kind):
    return [c for c in commands if isinstance(c, kind)]


class TestLaserSquare:

    def test_raster_line_count(self, square_gerber, laser):
        result = generate(square_gerber, laser)
        # Outline passes sit on y=0.5 and y=9.5; every other row is a raster line
        rows = {
            round(y, 6)
            for _, y in (xy(c) for c in moves(result.commands, CutMove))
            if 0.5 + 1e-6 < y < 9.5 - 1e-6
        }
        assert len(rows) == math.ceil(10 / 0.5)

    def test_emitted_coordinates_within_square(self, square_gerber, laser):
        result = generate(square_gerber, laser)
        for command in result.commands:
            if isinstance(command, (RapidMove, CutMove)):
                x, y = xy(command)
                assert -0.5 <= x <= 10.5
                assert -0.5 <= y <= 10.5

    def test_cuts_only_while_engaged(self, square_gerber, laser):
        result = generate(square_gerber, laser)
        engaged = False
        for command in result.commands:
            if isinstance(command, SetToolState):
                engaged = command.enabled
            elif isinstance(command, CutMove):
                assert engaged
            elif isinstance(command, RapidMove):
                assert not engaged

    def test_laser_power_and_feed(self, square_gerber, laser):
        result = generate(square_gerber, laser)
        on = [c for c in moves(result.commands, SetToolState) if c.enabled]
        assert on
        assert all(isinstance(c.setting, LaserPower) and c.setting.s_value == 64 for c in on)
        assert all(c.feed == Velocity(600, "mm/min") for c in moves(result.commands, CutMove))

    def test_region_comment(self, square_gerber, laser):
        result = generate(square_gerber, laser)
        comments = [c.text for c in moves(result.commands, Comment)]
        assert comments == ["Region 1: 1 ring(s), 20 raster row(s)"]
        assert result.regions == 1
        assert result.paths == 1


class TestTwoSquares:

    def test_single_rapid_between_squares(self, two_squares_gerber, laser):
        result = generate(two_squares_gerber, laser)
        rapids = moves(result.commands, RapidMove)
        # One rapid to reach the first square, one transition to the second
        assert len(rapids) == 2
        assert xy(rapids[0])[0] < 4
        assert xy(rapids[1])[0] > 6

        first_cut = next(i for i, c in enumerate(result.commands) if isinstance(c, CutMove))
        last_cut = max(i for i, c in enumerate(result.commands) if isinstance(c, CutMove))
        between = [c for c in result.commands[first_cut:last_cut] if isinstance(c, RapidMove)]
        assert len(between) == 1

    def test_no_cuts_outside_offset_boundaries(self, two_squares_gerber, laser):
        result = generate(two_squares_gerber, laser)
        allowed = box(0.5, 0.5, 3.5, 3.5).union(box(6.5, 0.5, 9.5, 3.5)).buffer(1e-6)
        for command in moves(result.commands, CutMove):
            assert allowed.covers(Point(*xy(command)))

    def test_regions_visited_nearest_first(self, laser):
        far = box(20, 20, 24, 24)
        near = box(0, 0, 4, 4)
        result = ToolpathGenerator(laser, Length.mm(0.5)).generate(PolygonSet([far, near]))
        first_rapid = moves(result.commands, RapidMove)[0]
        assert xy(first_rapid)[0] < 4


class TestSpecialCases:

    def test_empty_set(self, laser):
        result = ToolpathGenerator(laser, Length.mm(0.5)).generate(PolygonSet())
        assert result.commands == [Comment("No copper to process")]

    def test_thin_trace_reports_tool_mismatch(self, trace_gerber):
        wide_laser = LaserSelection(Length.mm(2.0), Power(40, "W"), Power(40, "W"), Velocity(600, "mm/min"))
        result = generate(trace_gerber, wide_laser, step=0.2)
        assert result.warnings
        assert all(isinstance(w, ToolMismatch) for w in result.warnings)
        assert any("centerline" in c.text for c in moves(result.commands, Comment))

    def test_rejects_unknown_tool(self):
        with pytest.raises(TypeError):
            ToolpathGenerator(object(), Length.mm(0.5))

    @pytest.mark.parametrize("max_power", [0, -5])
    def test_rejects_non_positive_max_power(self, max_power):
        with pytest.raises(ConfigError, match="maximum power"):
            LaserSelection(Length.mm(0.1), Power(max_power, "W"), Power(0, "W"), Velocity(100, "mm/min"))


class TestSpindle:

    def test_spindle_sequence(self, square_gerber, spindle):
        result = generate(square_gerber, spindle, step=0.5)
        commands = result.commands

        assert commands[0] == RapidMove(z=Length.mm(2.0))
        assert commands[1] == SetToolState(True, SpindleSpeed(spindle.spindle_rpm))
        assert commands[-1] == SetToolState(False)

        rapids = moves(commands, RapidMove)
        assert all(r.z == Length.mm(2.0) for r in rapids)
        cuts = moves(commands, CutMove)
        assert all(c.z == Length.mm(-0.05) for c in cuts)
        # Plunge at plunge speed, then cut at work speed
        assert cuts[0].feed == Velocity(50, "mm/min")
        assert cuts[1].feed == Velocity(200, "mm/min")

    def test_retracts_before_first_travel(self, square_gerber, spindle):
        commands = generate(square_gerber, spindle).commands
        first_rapid = moves(commands, RapidMove)[0]
        assert first_rapid.x is None and first_rapid.y is None
        assert first_rapid.z == spindle.safe_height
        second_rapid = moves(commands, RapidMove)[1]
        assert second_rapid.x is not None and second_rapid.z == spindle.safe_height
