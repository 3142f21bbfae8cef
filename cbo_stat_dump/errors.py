"""Exceptions raised while dumping statistics."""

from __future__ import annotations


class DumpError(Exception):
    """A fatal failure in one stage of a dump.

    Attributes:
        stage: Name of the stage that failed (e.g. "statistics", "ddl").
        message: Underlying cause.
    """

    def __init__(self, stage: str, message: str):
        self.stage = stage
        self.message = message
        super().__init__(f"{stage}: {message}")


class StatisticsDecodeError(DumpError):
    """A catalog row does not have the shape expected for its epoch."""


class PlanParseError(DumpError):
    """EXPLAIN output is not a well-formed JSON plan."""


class LiteralEncodingError(ValueError):
    """A value cannot be rendered as a literal of its declared type."""
