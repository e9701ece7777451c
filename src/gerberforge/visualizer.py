"""Debug rendering of copper geometry and tool paths."""

import logging
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

from matplotlib.collections import LineCollection
from matplotlib.figure import Figure
from matplotlib.patches import Rectangle
from shapely.geometry import LineString

from .geometry import BoundingBox


logger = logging.getLogger(__name__)

Point2 = Tuple[float, float]


class PCBVisualizer:
    """Render copper outlines and tool paths into a single figure.

    Uses the object-oriented matplotlib API (no pyplot state) so stages can
    render from worker threads.
    """

    def __init__(self, figsize=(12, 10)):
        """Initialize the visualizer.

        Args:
            figsize: Figure size in inches (width, height)
        """
        self.figsize = figsize
        self.fig: Optional[Figure] = None
        self.ax = None

    def _ensure_axes(self):
        if self.fig is None:
            self.fig = Figure(figsize=self.figsize)
            self.ax = self.fig.add_subplot(1, 1, 1)
            self.ax.set_aspect("equal")
            self.ax.set_facecolor("#1a1a1a")  # Dark background like PCB
            self.fig.patch.set_facecolor("#2a2a2a")

    def plot_outlines(
        self,
        paths: Sequence[Sequence[Point2]],
        color: str = "gold",
        linewidth: float = 0.5,
        label: str = "Copper",
    ):
        """Plot closed outline paths.

        Args:
            paths: Closed point lists in mm (first point repeated)
            color: Line color
            linewidth: Line width
            label: Label for legend
        """
        self._ensure_axes()
        segments = [list(path) for path in paths if len(path) >= 2]
        if segments:
            self.ax.add_collection(LineCollection(segments, colors=color, linewidths=linewidth, label=label))

    def plot_paths(
        self,
        paths: List[LineString],
        color: str = "cyan",
        alpha: float = 0.6,
        linewidth: float = 0.3,
        label: str = "Tool paths",
    ):
        """Plot tool-center paths."""
        self._ensure_axes()
        for path in paths:
            coords = list(path.coords)
            if len(coords) >= 2:
                self.ax.plot([c[0] for c in coords], [c[1] for c in coords],
                             color=color, alpha=alpha, linewidth=linewidth)
        if paths:
            self.ax.plot([], [], color=color, alpha=alpha, linewidth=linewidth * 3, label=label)

    def plot_bounds(self, bounds: BoundingBox, color: str = "red", linewidth: float = 0.5):
        """Draw the bounding box outline."""
        self._ensure_axes()
        min_x, min_y, max_x, max_y = bounds.as_mm()
        self.ax.add_patch(Rectangle((min_x, min_y), max_x - min_x, max_y - min_y,
                                    fill=False, edgecolor=color, linewidth=linewidth, linestyle="--"))

    def set_bounds(self, bounds: BoundingBox, margin: float = 2.0):
        """Set the plot limits to the bounding box plus a margin in mm."""
        if self.ax is None:
            return
        min_x, min_y, max_x, max_y = bounds.as_mm()
        self.ax.set_xlim(min_x - margin, max_x + margin)
        self.ax.set_ylim(min_y - margin, max_y + margin)

    def add_labels(self, title: str = "Copper Mask", show_grid: bool = True):
        if self.ax is None:
            return

        self.ax.set_xlabel("X (mm)", color="white")
        self.ax.set_ylabel("Y (mm)", color="white")
        self.ax.set_title(title, color="white", fontsize=14, fontweight="bold")
        if show_grid:
            self.ax.grid(True, alpha=0.2, color="gray", linestyle="--", linewidth=0.5)
        self.ax.tick_params(colors="white", which="both")

        if self.ax.get_legend_handles_labels()[0]:
            self.ax.legend(facecolor="#2a2a2a", edgecolor="gray", labelcolor="white")

    def save(self, output_path: Union[str, Path]):
        """Save the figure; the format follows the file suffix."""
        if self.fig is None:
            return
        self.fig.tight_layout()
        self.fig.savefig(output_path, facecolor=self.fig.get_facecolor())
        logger.info("Saved debug render to %s", output_path)

    def close(self):
        self.fig = None
        self.ax = None


def render_debug_svg(
    paths: Sequence[Sequence[Point2]],
    bounds: BoundingBox,
    output_path: Union[str, Path],
    title: str,
    toolpaths: Optional[List[LineString]] = None,
):
    """Write outlines, the bounding box and optional tool paths to an SVG file."""
    viz = PCBVisualizer()
    viz.plot_outlines(paths)
    viz.plot_bounds(bounds)
    if toolpaths:
        viz.plot_paths(toolpaths)
    viz.set_bounds(bounds)
    viz.add_labels(title=title)
    viz.save(output_path)
    viz.close()
