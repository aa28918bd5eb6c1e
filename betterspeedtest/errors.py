"""Exceptions that terminate a betterspeedtest run.

Failures that are absorbed into the statistics (a session that reports no
rate, a probe that times out) are represented in the data models instead.
"""


class SpeedTestError(Exception):
    """Base class for run-terminating errors."""


class ConfigError(SpeedTestError):
    """A command-line argument is missing or invalid."""


class LaunchFailure(SpeedTestError):
    """A probe or session subprocess could not be started."""

    def __init__(self, command: list[str], reason: str):
        self.command = command
        self.reason = reason
        super().__init__(f"Could not start {command[0]!r}: {reason}")


class MeasurementCancelled(SpeedTestError):
    """The run was interrupted before the current phase finished."""
