"""Errors and recorded warnings raised by the gerberforge pipeline."""

from typing import Optional


class GerberForgeError(Exception):
    """Base class for fatal pipeline errors."""


class DrawingError(GerberForgeError):
    """A problem located at a line of a Gerber drawing."""

    def __init__(self, message: str, line: Optional[int] = None, source: Optional[str] = None):
        self.message = message
        self.line = line
        self.source = source
        super().__init__(self._format())

    def _format(self) -> str:
        if self.line is None:
            return self.message if self.source is None else f"{self.source}: {self.message}"
        location = f"line {self.line}" if self.source is None else f"{self.source}:{self.line}"
        return f"{location}: {self.message}"


class MalformedDrawing(DrawingError):
    """The drawing text cannot be parsed (syntax, header or unit mismatch)."""


class UnsupportedFeature(DrawingError):
    """The drawing is valid Gerber but uses a construct that is not implemented."""


class InvalidCoordinate(GerberForgeError):
    """A non-finite value reached the G-code serializer."""

    def __init__(self, message: str, index: Optional[int] = None):
        self.index = index
        super().__init__(message if index is None else f"command {index}: {message}")


class ConfigError(GerberForgeError):
    """Machine, tool or build file configuration is missing or inconsistent."""


class UnitError(ConfigError, ValueError):
    """A quantity has no unit, an unknown unit or the wrong dimension."""


class GeometryWarning(UserWarning):
    """Non-fatal problem recorded while processing geometry."""

    def __init__(self, message: str, line: Optional[int] = None):
        self.message = message
        self.line = line
        super().__init__(message if line is None else f"line {line}: {message}")


class GeometryDegenerate(GeometryWarning):
    """Zero-area or self-intersecting input skipped during resolution."""


class ToolMismatch(GeometryWarning):
    """Tool too wide for a feature; a centerline pass was planned instead."""
